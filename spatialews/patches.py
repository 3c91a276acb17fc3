from typing import List, NamedTuple, Tuple

import numpy as np
from skimage import measure

from .exceptions import InvalidInputError
from .grid import as_grid, check_neighborhood

# skimage connectivity is expressed in orthogonal hops
_CONNECTIVITY = {4: 1, 8: 2}


class Patch(NamedTuple):
    """A maximal connected set of active cells."""
    label: int
    size: int
    coords: np.ndarray


def _boolean_values(grid) -> np.ndarray:
    grid = as_grid(grid)
    if not grid.is_boolean:
        raise InvalidInputError(
            "Patch detection requires a boolean grid; threshold continuous grids first "
            "(e.g. as_grid(values > threshold))"
        )
    return grid.values


def label_patches(grid, neighborhood=4) -> Tuple[np.ndarray, int]:
    """
    Label the patches (connected regions of active cells) of a boolean grid.

    Parameters
    ----------
    grid : Grid or array-like
        Boolean grid; ``True`` cells are active.
    neighborhood : int, default 4
        Adjacency rule, 4 (von Neumann) or 8 (Moore). Edges of the grid are
        hard boundaries, no periodic wrapping is applied.

    Returns
    -------
    tuple
        (labels, n_patches) where:
        - labels : np.ndarray - int array of the grid's shape, 0 for inactive
          cells and 1..n_patches for the patch each active cell belongs to
        - n_patches : int - number of patches found

    Notes
    -----
    Labelling is delegated to ``skimage.measure.label``, a two-pass union-find
    that visits each cell once, so the cost is O(rows * cols).

    Examples
    --------
    >>> g = np.array([[1, 0, 0], [0, 1, 0], [0, 0, 0]], dtype=bool)
    >>> label_patches(g, neighborhood=4)[1]
    2
    >>> label_patches(g, neighborhood=8)[1]
    1
    """
    values = _boolean_values(grid)
    neighborhood = check_neighborhood(neighborhood)
    labels, n_patches = measure.label(values, connectivity=_CONNECTIVITY[neighborhood],
                                      background=0, return_num=True)
    return labels, int(n_patches)


def patchsizes(grid, neighborhood=4) -> np.ndarray:
    """
    Sizes (cell counts) of all patches of a boolean grid, sorted in increasing order.

    A grid without active cells gives an empty array, a fully active grid a
    single patch of ``rows * cols`` cells. The sizes always sum to the number
    of active cells.
    """
    labels, n_patches = label_patches(grid, neighborhood)
    if n_patches == 0:
        return np.zeros(0, dtype=np.int64)
    sizes = np.bincount(labels.ravel(), minlength=n_patches + 1)[1:]
    return np.sort(sizes.astype(np.int64))


def extract_patches(grid, neighborhood=4) -> List[Patch]:
    """
    Extract every patch with its cell coordinates.

    Returns
    -------
    list of Patch
        One entry per patch in label order; ``coords`` is an (size, 2) array
        of (row, col) indices.
    """
    labels, n_patches = label_patches(grid, neighborhood)
    if n_patches == 0:
        return []
    rows, cols = np.nonzero(labels)
    patch_ids = labels[rows, cols]
    order = np.argsort(patch_ids, kind="stable")
    coords = np.column_stack((rows[order], cols[order]))
    bounds = np.searchsorted(patch_ids[order], np.arange(1, n_patches + 2))
    patches = []
    for label in range(1, n_patches + 1):
        cells = coords[bounds[label - 1]:bounds[label]]
        patches.append(Patch(label=label, size=len(cells), coords=cells))
    return patches


def percolation(grid, neighborhood=4) -> bool:
    """
    Whether a single patch spans the grid from top to bottom or from left to right.
    """
    labels, n_patches = label_patches(grid, neighborhood)
    if n_patches == 0:
        return False
    top, bottom = set(labels[0][labels[0] > 0]), set(labels[-1][labels[-1] > 0])
    left, right = set(labels[:, 0][labels[:, 0] > 0]), set(labels[:, -1][labels[:, -1] > 0])
    return bool(top & bottom) or bool(left & right)
