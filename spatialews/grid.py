from typing import List, Tuple

import numpy as np

from .exceptions import InvalidInputError, InsufficientDataError

BOOLEAN = "boolean"
CONTINUOUS = "continuous"

# Row/column offsets of the 4- and 8-neighbourhoods
NEIGHBOR_OFFSETS = {
    4: ((-1, 0), (1, 0), (0, -1), (0, 1)),
    8: ((-1, -1), (-1, 0), (-1, 1), (0, -1), (0, 1), (1, -1), (1, 0), (1, 1)),
}


def check_neighborhood(neighborhood):
    """Return ``neighborhood`` as an int after checking it is 4 or 8."""
    if neighborhood not in NEIGHBOR_OFFSETS:
        raise InvalidInputError(f"neighborhood must be 4 or 8, got {neighborhood!r}")
    return int(neighborhood)


class Grid:
    """
    Immutable 2D grid of boolean or real cell values.

    The cell values are stored in a read-only numpy array; every transformation
    (coarse-graining, null generation) produces a new ``Grid``. Use
    :func:`as_grid` to build one from arbitrary array-like input, which is where
    shape, type and missing-value checks happen.

    Parameters
    ----------
    values : array-like
        2D array of booleans or real numbers without NaN/inf entries.

    Attributes
    ----------
    kind : str
        ``"boolean"`` when the cells are booleans, ``"continuous"`` otherwise.
    """

    __slots__ = ("_values", "kind")

    def __init__(self, values):
        if isinstance(values, Grid):
            values = values.values
        array = _validated_array(values)
        array = np.array(array, copy=True)
        array.setflags(write=False)
        self._values = array
        self.kind = BOOLEAN if array.dtype == np.bool_ else CONTINUOUS

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def shape(self) -> Tuple[int, int]:
        return self._values.shape

    @property
    def size(self) -> int:
        return self._values.size

    @property
    def is_boolean(self) -> bool:
        return self.kind == BOOLEAN

    def as_float(self) -> np.ndarray:
        """Return a writable float64 copy of the cell values."""
        return self._values.astype(np.float64)

    def cover(self) -> float:
        """Fraction of active cells (boolean grids) or mean cell value (continuous grids)."""
        return float(np.mean(self._values))

    def neighbors(self, row: int, col: int, rule: int = 4) -> List[Tuple[int, int]]:
        """
        In-bounds neighbour coordinates of cell ``(row, col)``.

        Edges are hard boundaries: cells on the border simply have fewer
        neighbours.
        """
        rule = check_neighborhood(rule)
        nrow, ncol = self.shape
        if not (0 <= row < nrow and 0 <= col < ncol):
            raise InvalidInputError(f"Cell ({row}, {col}) is outside a {nrow}x{ncol} grid")
        out = []
        for dr, dc in NEIGHBOR_OFFSETS[rule]:
            r, c = row + dr, col + dc
            if 0 <= r < nrow and 0 <= c < ncol:
                out.append((r, c))
        return out

    def __getitem__(self, key):
        return self._values[key]

    def __eq__(self, other):
        if not isinstance(other, Grid):
            return NotImplemented
        return self.kind == other.kind and np.array_equal(self._values, other._values)

    __hash__ = None

    def __repr__(self):
        return f"Grid(shape={self.shape}, kind={self.kind!r})"


def _validated_array(values) -> np.ndarray:
    if isinstance(values, np.ma.MaskedArray):
        if np.ma.is_masked(values):
            raise InvalidInputError("Grid contains masked (missing) values")
        values = values.filled()

    array = np.asarray(values)
    if array.ndim != 2:
        raise InvalidInputError(f"Grid must be two-dimensional, got {array.ndim} dimension(s)")
    if array.size == 0:
        raise InsufficientDataError(f"Grid must have at least one row and one column, got shape {array.shape}")

    if array.dtype == np.bool_:
        return array
    if not (np.issubdtype(array.dtype, np.integer) or np.issubdtype(array.dtype, np.floating)):
        raise InvalidInputError(f"Grid values must be boolean or real numbers, got dtype {array.dtype}")
    if not np.all(np.isfinite(array)):
        raise InvalidInputError("Grid contains missing or non-finite values; clean it before analysis")
    return array


def as_grid(data) -> Grid:
    """
    Ingest array-like data as a :class:`Grid`.

    Parameters
    ----------
    data : Grid, np.ndarray or nested sequence
        2D boolean or numeric data. ``Grid`` instances are returned unchanged.

    Returns
    -------
    Grid

    Raises
    ------
    InvalidInputError
        If the data is not 2D, is not boolean/real, or contains NaN, inf or
        masked cells.
    InsufficientDataError
        If the grid has no cells.
    """
    if isinstance(data, Grid):
        return data
    return Grid(data)


def split_collection(data) -> list:
    """
    Split grid input into its individual (not yet validated) grids.

    A single 2D array, nested list of rows or ``Grid`` yields a one-element
    list; a list/tuple of arrays or a 3D array (stacked along the first axis)
    yields one element per grid, in order.
    """
    if isinstance(data, Grid):
        return [data]
    if isinstance(data, (list, tuple)):
        if not data:
            raise InsufficientDataError("Empty collection of grids")
        first = data[0]
        # A nested list of scalars is a single grid
        if not isinstance(first, (Grid, np.ndarray, list, tuple)):
            return [data]
        if isinstance(first, (list, tuple)) and first and np.isscalar(first[0]):
            return [data]
        return list(data)
    if not isinstance(data, np.ma.MaskedArray) and np.ndim(data) == 3:
        return list(np.asarray(data))
    return [data]


def as_grids(data) -> List[Grid]:
    """Ingest a single grid or an ordered collection of grids (see :func:`split_collection`)."""
    return [as_grid(item) for item in split_collection(data)]
