import numpy as np
import pytest
from scipy import stats

from spatialews import coarse_grain, generic_indicators, raw_cg_moran, raw_cg_skewness, raw_cg_variance
from spatialews.exceptions import InvalidInputError


def test_coarse_grain_block_means():
    grid = np.arange(16, dtype=float).reshape(4, 4)
    assert coarse_grain(grid, 2).values.tolist() == [[2.5, 4.5], [10.5, 12.5]]


def test_coarse_grain_drops_incomplete_blocks():
    coarse = coarse_grain(np.ones((10, 11)), 3)
    assert coarse.shape == (3, 3)
    assert np.all(coarse.values == 1.0)


@pytest.mark.parametrize("subsize", [0, -1, 2.5, 11])
def test_coarse_grain_invalid_subsize(subsize):
    with pytest.raises(InvalidInputError):
        coarse_grain(np.ones((10, 10)), subsize)


@pytest.mark.parametrize("value", [0.0, 0.1, 7.3])
def test_constant_grid_indicators_are_zero(value):
    grid = np.full((12, 12), value)
    assert generic_indicators(grid, subsize=2) == {"variance": 0.0, "skewness": 0.0, "moran": 0.0}


def test_moments_match_scipy(rng):
    values = rng.random((12, 12))
    assert raw_cg_variance(values) == pytest.approx(np.var(values))
    assert raw_cg_skewness(values) == pytest.approx(stats.skew(values.ravel()))


def test_checkerboard_moran(checkerboard):
    assert raw_cg_moran(checkerboard, neighborhood=4) == pytest.approx(-1.0)
    # Diagonal neighbours share the cell's value
    assert raw_cg_moran(checkerboard, neighborhood=8) > -1.0


def test_smooth_grid_is_autocorrelated(rng):
    rows, cols = np.indices((30, 30))
    smooth = np.sin(rows / 5.0) + np.cos(cols / 5.0)
    assert raw_cg_moran(smooth) > 0.8
    assert abs(raw_cg_moran(rng.random((30, 30)))) < 0.15


def test_coarse_graining_reduces_variance(rng):
    grid = rng.random((40, 40)) < 0.5
    assert raw_cg_variance(grid, subsize=4) < raw_cg_variance(grid, subsize=1)


def test_generic_indicator_options(rng):
    grid = rng.random((20, 20)) < 0.3
    out = generic_indicators(grid, subsize=1)
    assert out["variance"] == pytest.approx(raw_cg_variance(grid))
    assert out["moran"] == pytest.approx(raw_cg_moran(grid))
    coarse = generic_indicators(grid, subsize=2, moran_subsize=2)
    assert coarse["moran"] == pytest.approx(raw_cg_moran(grid, subsize=2))


@pytest.mark.parametrize("shape", [(1, 1), (3, 3), (2, 7)])
def test_small_grids_clamp_subsize(rng, shape):
    out = generic_indicators(rng.random(shape) < 0.5)
    assert set(out) == {"variance", "skewness", "moran"}
    assert all(np.isfinite(v) for v in out.values())
    if min(shape) == max(shape):
        # A single coarse cell carries no variance
        assert out["variance"] == 0.0
    assert generic_indicators(np.ones((1, 1))) == {"variance": 0.0, "skewness": 0.0, "moran": 0.0}


def test_clamped_subsize_matches_explicit(rng):
    grid = rng.random((3, 5))
    assert generic_indicators(grid, subsize=10, moran_subsize=10) == generic_indicators(grid, subsize=3, moran_subsize=3)
    with pytest.raises(InvalidInputError):
        generic_indicators(grid, subsize=0)
