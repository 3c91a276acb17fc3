import numpy as np
import pytest

from spatialews import Grid, as_grid, as_grids
from spatialews.exceptions import InsufficientDataError, InvalidInputError


def test_kind_follows_dtype():
    assert as_grid(np.zeros((3, 4), dtype=bool)).kind == "boolean"
    assert as_grid(np.zeros((3, 4), dtype=int)).kind == "continuous"
    assert as_grid([[0.5, 1.0], [2.0, 3.0]]).kind == "continuous"


def test_grid_is_immutable_copy():
    data = np.zeros((4, 4))
    grid = as_grid(data)
    data[0, 0] = 10.0
    assert grid[0, 0] == 0.0
    with pytest.raises(ValueError):
        grid.values[0, 0] = 1.0


def test_as_grid_returns_grids_unchanged():
    grid = Grid(np.ones((2, 2)))
    assert as_grid(grid) is grid


def test_equality():
    assert Grid(np.ones((2, 2))) == Grid(np.ones((2, 2)))
    assert Grid(np.ones((2, 2), dtype=bool)) != Grid(np.ones((2, 2)))


@pytest.mark.parametrize("bad", [
    np.zeros(5),
    np.zeros((2, 2, 2)),
    np.array([[1.0, np.nan]]),
    np.array([[1.0, np.inf]]),
    np.array([["a", "b"]]),
    np.ma.masked_array(np.zeros((2, 2)), mask=[[True, False], [False, False]]),
])
def test_invalid_grids(bad):
    with pytest.raises(InvalidInputError):
        as_grid(bad)


def test_empty_grid():
    with pytest.raises(InsufficientDataError):
        as_grid(np.zeros((0, 5)))


def test_neighbors_at_edges():
    grid = Grid(np.zeros((3, 3)))
    assert sorted(grid.neighbors(0, 0)) == [(0, 1), (1, 0)]
    assert len(grid.neighbors(0, 0, rule=8)) == 3
    assert len(grid.neighbors(1, 1, rule=8)) == 8
    assert len(grid.neighbors(1, 1, rule=4)) == 4
    with pytest.raises(InvalidInputError):
        grid.neighbors(3, 0)
    with pytest.raises(InvalidInputError):
        grid.neighbors(0, 0, rule=6)


def test_collections():
    stack = np.zeros((3, 5, 5))
    assert len(as_grids(stack)) == 3
    assert len(as_grids([np.zeros((2, 2)), np.ones((3, 3))])) == 2
    # A nested list of rows is one grid
    assert len(as_grids([[0, 1], [1, 0]])) == 1
    assert as_grids(np.ones((4, 4)))[0].shape == (4, 4)
    with pytest.raises(InsufficientDataError):
        as_grids([])
