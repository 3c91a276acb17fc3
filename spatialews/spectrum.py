import math

import numpy as np
import pandas as pd
from numba import njit

from .exceptions import InvalidInputError
from .grid import as_grid

DETREND_METHODS = ("mean", "plane", "none")


@njit(nogil=True, cache=True)
def _radial_means(power, dist, nbins):
    """
    Average ``power`` over integer radial bins.

    Parameters
    ----------
    power : np.ndarray
        2D float64 array of spectral power, zero frequency at the centre
    dist : np.ndarray
        2D int64 array (same shape) of rounded distances to the centre
    nbins : int
        Number of bins; bin ``k`` holds distance ``k``

    Returns
    -------
    tuple
        (means, counts) arrays of length ``nbins``; bins without cells have
        a count of 0 and a mean of 0
    """
    sums = np.zeros(nbins, dtype=np.float64)
    counts = np.zeros(nbins, dtype=np.int64)
    H, W = power.shape
    for i in range(H):
        for j in range(W):
            d = dist[i, j]
            sums[d] += power[i, j]
            counts[d] += 1
    means = np.zeros(nbins, dtype=np.float64)
    for k in range(nbins):
        if counts[k] > 0:
            means[k] = sums[k] / counts[k]
    return means, counts


def _detrended(values, detrend):
    if detrend == "mean":
        return values - values.mean()
    if detrend == "plane":
        nrow, ncol = values.shape
        rows, cols = np.mgrid[0:nrow, 0:ncol]
        design = np.column_stack((rows.ravel(), cols.ravel(), np.ones(values.size)))
        coef, *_ = np.linalg.lstsq(design, values.ravel(), rcond=None)
        return values - (design @ coef).reshape(values.shape)
    if detrend == "none":
        return values
    raise InvalidInputError(f"detrend must be one of {DETREND_METHODS}, got {detrend!r}")


def radial_distances(shape):
    """
    Integer-rounded distance (in pixels) of every cell to the zero-frequency
    cell of a centred spectrum of the given shape.
    """
    nrow, ncol = shape
    rows, cols = np.mgrid[0:nrow, 0:ncol]
    dist = np.sqrt((rows - nrow // 2) ** 2 + (cols - ncol // 2) ** 2)
    return np.rint(dist).astype(np.int64)


def rspectrum(grid, detrend="mean") -> pd.DataFrame:
    """
    Radially-averaged power spectrum (r-spectrum) of a grid.

    Parameters
    ----------
    grid : Grid or array-like
        Boolean or real grid without missing values.
    detrend : {"mean", "plane", "none"}, default "mean"
        Trend removed before the transform: the grid mean, a least-squares
        plane in row/column position, or nothing.

    Returns
    -------
    pd.DataFrame
        Columns ``dist`` (integer radial distance in pixels, increasing from 1)
        and ``rspec`` (mean power of the frequencies at that distance). The
        zero-frequency bin is left out. A 1x1 grid gives an empty frame.

    Notes
    -----
    Steps:
    1. Remove the trend selected by ``detrend``
    2. Compute the 2D FFT and the power |F|^2 / N^2, with N the number of cells
    3. Shift the spectrum so the zero frequency sits at ``(rows // 2, cols // 2)``
    4. Round the distance of each frequency to that centre and average the
       power within each integer distance

    Examples
    --------
    >>> spec = rspectrum(np.ones((10, 10)))
    >>> bool((spec["rspec"] == 0).all())
    True
    """
    grid = as_grid(grid)
    values = _detrended(grid.as_float(), detrend)
    ncell = values.size

    power = np.abs(np.fft.fftshift(np.fft.fft2(values))) ** 2 / ncell ** 2
    dist = radial_distances(values.shape)
    nbins = int(dist.max()) + 1

    means, counts = _radial_means(np.ascontiguousarray(power), dist, nbins)
    keep = np.nonzero(counts[1:] > 0)[0] + 1
    return pd.DataFrame({"dist": keep.astype(np.int64), "rspec": means[keep]})


def _check_range(name, bounds):
    try:
        lo, hi = (float(b) for b in bounds)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"{name} must be a pair of numbers, got {bounds!r}") from e
    if not (0.0 <= lo <= hi <= 1.0):
        raise InvalidInputError(f"{name} must satisfy 0 <= low <= high <= 1, got {bounds!r}")
    return lo, hi


def sdr(grid, low_range=(0, 0.2), high_range=(0.8, 1), detrend="mean") -> float:
    """
    Spectral density ratio between the low- and high-frequency bands of the r-spectrum.

    Parameters
    ----------
    grid : Grid or array-like
        Grid to analyse.
    low_range, high_range : tuple of float
        Bands given as fractions of the largest radial distance of the
        r-spectrum. A band ``(lo, hi)`` holds the distances ``d`` with
        ``lo * dmax < d <= hi * dmax``. Both must lie within [0, 1]; overlap
        between the two bands is not checked.
    detrend : str, default "mean"
        Passed to :func:`rspectrum`.

    Returns
    -------
    float
        Mean power of the low band divided by mean power of the high band.
        NaN when a band holds no distance or the high band carries no power
        (e.g. a constant grid).
    """
    low = _check_range("low_range", low_range)
    high = _check_range("high_range", high_range)
    spec = rspectrum(grid, detrend)
    if spec.empty:
        return math.nan

    dmax = spec["dist"].max()
    dist = spec["dist"].to_numpy()
    rspec = spec["rspec"].to_numpy()

    def band_mean(bounds):
        mask = (dist > bounds[0] * dmax) & (dist <= bounds[1] * dmax)
        return rspec[mask].mean() if mask.any() else math.nan

    low_power, high_power = band_mean(low), band_mean(high)
    if not np.isfinite(low_power) or not np.isfinite(high_power) or high_power == 0:
        return math.nan
    return float(low_power / high_power)
