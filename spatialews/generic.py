import numpy as np
from numba import njit

from .exceptions import InvalidInputError
from .grid import Grid, as_grid, check_neighborhood


def coarse_grain(grid, subsize):
    """
    Block-average a grid into non-overlapping ``subsize x subsize`` blocks.

    Parameters
    ----------
    grid : Grid or array-like
        Grid to coarse-grain.
    subsize : int
        Side length of the blocks in cells. 1 returns the grid values as floats.

    Returns
    -------
    Grid
        Continuous grid of shape ``(rows // subsize, cols // subsize)`` holding
        the block means.

    Notes
    -----
    When the grid dimensions are not multiples of ``subsize`` the incomplete
    blocks on the last rows/columns are dropped, so every coarse cell is the
    mean of exactly ``subsize**2`` cells.

    Raises
    ------
    InvalidInputError
        If ``subsize`` is not a positive integer or exceeds a grid dimension.
    """
    grid = as_grid(grid)
    if int(subsize) != subsize or subsize < 1:
        raise InvalidInputError(f"subsize must be a positive integer, got {subsize!r}")
    subsize = int(subsize)
    nrow, ncol = grid.shape
    if subsize > nrow or subsize > ncol:
        raise InvalidInputError(f"subsize {subsize} is larger than the {nrow}x{ncol} grid")

    out_rows, out_cols = nrow // subsize, ncol // subsize
    values = grid.as_float()[:out_rows * subsize, :out_cols * subsize]
    blocks = values.reshape(out_rows, subsize, out_cols, subsize)
    return Grid(blocks.mean(axis=(1, 3)))


@njit(nogil=True, cache=True)
def _moran_kernel(z, diagonal):
    """
    Sum over cells of z_i times the mean of z over the in-bounds neighbours of i.

    ``diagonal`` selects the 8-neighbourhood instead of the 4-neighbourhood.
    Cells without neighbours (1x1 grid) contribute nothing.
    """
    H, W = z.shape
    total = 0.0
    for i in range(H):
        for j in range(W):
            acc = 0.0
            n = 0
            for di in range(-1, 2):
                for dj in range(-1, 2):
                    if di == 0 and dj == 0:
                        continue
                    if not diagonal and di != 0 and dj != 0:
                        continue
                    r = i + di
                    c = j + dj
                    if r >= 0 and r < H and c >= 0 and c < W:
                        acc += z[r, c]
                        n += 1
            if n > 0:
                total += z[i, j] * acc / n
    return total


def _values(grid, subsize):
    grid = as_grid(grid)
    if subsize != 1:
        grid = coarse_grain(grid, subsize)
    return grid.as_float()


def raw_cg_variance(grid, subsize=1):
    """Population variance of the (coarse-grained) cell values."""
    values = _values(grid, subsize)
    if np.ptp(values) == 0:
        return 0.0
    return float(np.var(values))


def raw_cg_skewness(grid, subsize=1):
    """
    Skewness (third standardised moment) of the (coarse-grained) cell values.

    A constant grid has zero skewness.
    """
    values = _values(grid, subsize)
    if np.ptp(values) == 0:
        return 0.0
    dev = values - values.mean()
    m2 = np.mean(dev ** 2)
    return float(np.mean(dev ** 3) / m2 ** 1.5)


def raw_cg_moran(grid, subsize=1, neighborhood=4):
    """
    Lag-1 spatial autocorrelation (Moran's I) of the (coarse-grained) grid.

    Weights are the 4- or 8-neighbourhood, row-normalised, so that

        I = sum_i z_i * mean_{j in N(i)} z_j / sum_i z_i^2

    with z the deviations from the grid mean. Edges are hard boundaries.
    Constant grids, and grids with a single cell, return 0.
    """
    neighborhood = check_neighborhood(neighborhood)
    values = _values(grid, subsize)
    if np.ptp(values) == 0:
        return 0.0
    z = np.ascontiguousarray(values - values.mean())
    denom = np.sum(z ** 2)
    return float(_moran_kernel(z, neighborhood == 8) / denom)


def _clamped(subsize, shape):
    """``subsize`` reduced to the smallest grid dimension; invalid values are left to coarse_grain."""
    if isinstance(subsize, (int, np.integer)) and subsize > min(shape):
        return int(min(shape))
    return subsize


def generic_indicators(grid, subsize=4, neighborhood=4, moran_subsize=None):
    """
    Variance, skewness and Moran's I of a grid.

    Parameters
    ----------
    grid : Grid or array-like
        Grid to analyse. Boolean grids are treated as 0/1 values.
    subsize : int, default 4
        Coarse-graining block size applied before variance and skewness.
        Reduced to the smallest grid dimension on grids smaller than that.
    neighborhood : int, default 4
        Neighbourhood of the Moran's I weight matrix.
    moran_subsize : int, optional
        Coarse-graining block size for Moran's I; defaults to 1 (no
        coarse-graining). Reduced like ``subsize``.

    Returns
    -------
    dict
        ``{"variance": float, "skewness": float, "moran": float}``. A grid
        reduced to a single coarse cell gives 0 for all three.
    """
    grid = as_grid(grid)
    subsize = _clamped(subsize, grid.shape)
    moran_subsize = 1 if moran_subsize is None else _clamped(moran_subsize, grid.shape)
    coarse = coarse_grain(grid, subsize) if subsize != 1 else grid
    return {
        "variance": raw_cg_variance(coarse),
        "skewness": raw_cg_skewness(coarse),
        "moran": raw_cg_moran(grid, moran_subsize, neighborhood),
    }
