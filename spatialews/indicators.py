"""
Ready-made indicator functions.

Each factory returns a callable ``Grid -> dict`` that can be passed to
``compute_indicator`` and re-applied to null grids by ``indictest``. The
callables are small classes rather than closures so that they can be sent to
worker processes.
"""
import math

import numpy as np

from .exceptions import InsufficientDataError
from .generic import generic_indicators
from .grid import as_grid, check_neighborhood
from .patches import patchsizes, percolation
from .psd import FAMILIES, fit_psd, plrange
from .spectrum import _check_range, sdr


class GenericSEWS:
    """Variance, skewness and Moran's I, see :func:`spatialews.generic.generic_indicators`."""

    def __init__(self, subsize=4, neighborhood=4, moranI_coarse_grain=False):
        self.subsize = subsize
        self.neighborhood = check_neighborhood(neighborhood)
        self.moranI_coarse_grain = moranI_coarse_grain

    def __call__(self, grid):
        moran_subsize = self.subsize if self.moranI_coarse_grain else 1
        return generic_indicators(grid, self.subsize, self.neighborhood, moran_subsize)

    def __repr__(self):
        return f"GenericSEWS(subsize={self.subsize}, neighborhood={self.neighborhood})"


class SpectralSEWS:
    """Spectral density ratio of the r-spectrum, see :func:`spatialews.spectrum.sdr`."""

    def __init__(self, sdr_low_range=(0, 0.2), sdr_high_range=(0.8, 1), detrend="mean"):
        self.low_range = _check_range("sdr_low_range", sdr_low_range)
        self.high_range = _check_range("sdr_high_range", sdr_high_range)
        self.detrend = detrend

    def __call__(self, grid):
        return {"sdr": sdr(grid, self.low_range, self.high_range, self.detrend)}

    def __repr__(self):
        return f"SpectralSEWS(low_range={self.low_range}, high_range={self.high_range})"


class PatchDistrSEWS:
    """
    Indicators based on the patches of a boolean grid.

    Returns ``cover`` (fraction of active cells), ``npatches``, ``max_patch``
    (largest patch size), ``percolation`` (1 if a patch spans the grid),
    ``plrange``, ``psd_best`` (position in ``FAMILIES`` of the family ranked
    first by :func:`spatialews.psd.fit_psd`) and ``pl_expo`` (fitted
    power-law exponent). Values that cannot be computed, e.g. the fit of a
    grid with fewer than two distinct patch sizes, are NaN.
    """

    def __init__(self, families=FAMILIES, xmin=None, neighborhood=4, criterion="aic", min_tail=10):
        self.families = tuple(families)
        self.xmin = xmin
        self.neighborhood = check_neighborhood(neighborhood)
        self.criterion = criterion
        self.min_tail = min_tail

    def __call__(self, grid):
        grid = as_grid(grid)
        sizes = patchsizes(grid, self.neighborhood)
        values = {
            "cover": grid.cover(),
            "npatches": float(sizes.size),
            "max_patch": float(sizes.max()) if sizes.size else 0.0,
            "percolation": float(percolation(grid, self.neighborhood)),
            "plrange": math.nan,
            "psd_best": math.nan,
            "pl_expo": math.nan,
        }
        if sizes.size == 0:
            return values
        values["plrange"] = plrange(sizes, self.min_tail)
        try:
            result = self._fit_sizes(sizes)
        except InsufficientDataError:
            return values
        values["psd_best"] = float(FAMILIES.index(result.best.family))
        if "pl" in result.fits and result.fits["pl"].available:
            values["pl_expo"] = result.fits["pl"].params["expo"]
        return values

    def _fit_sizes(self, sizes, **kwargs):
        kwargs.setdefault("xmin", self.xmin)
        kwargs.setdefault("criterion", self.criterion)
        kwargs.setdefault("min_tail", self.min_tail)
        return fit_psd(sizes, families=self.families, **kwargs)

    def fit(self, grid, **kwargs):
        """
        Full distribution fit of the patch sizes of ``grid``.

        Keyword arguments are passed to :func:`spatialews.psd.fit_psd`.

        Raises
        ------
        InsufficientDataError
            If the grid has no patch or no family can be fitted.
        """
        sizes = patchsizes(grid, self.neighborhood)
        if sizes.size == 0:
            raise InsufficientDataError("The grid has no active cell, no patch-size distribution to fit")
        return self._fit_sizes(sizes, **kwargs)

    def __repr__(self):
        return f"PatchDistrSEWS(families={self.families}, xmin={self.xmin}, neighborhood={self.neighborhood})"


def generic_sews(subsize=4, neighborhood=4, moranI_coarse_grain=False):
    """
    Indicator function computing variance, skewness and Moran's I.

    Parameters
    ----------
    subsize : int, default 4
        Coarse-graining block size for variance and skewness.
    neighborhood : int, default 4
        Neighbourhood of Moran's I.
    moranI_coarse_grain : bool, default False
        Also coarse-grain the grid before computing Moran's I.
    """
    return GenericSEWS(subsize, neighborhood, moranI_coarse_grain)


def spectral_sews(sdr_low_range=(0, 0.2), sdr_high_range=(0.8, 1), detrend="mean"):
    """Indicator function computing the spectral density ratio ``sdr``."""
    return SpectralSEWS(sdr_low_range, sdr_high_range, detrend)


def patchdistr_sews(families=FAMILIES, xmin=None, neighborhood=4, criterion="aic", min_tail=10):
    """
    Indicator function computing patch-based indicators, see :class:`PatchDistrSEWS`.

    Every null replicate is refitted with all ``families``; restricting them
    (e.g. to ``("pl", "exp")``) shortens significance tests considerably.
    """
    return PatchDistrSEWS(families, xmin, neighborhood, criterion, min_tail)


def combine(*funs):
    """
    Indicator function merging the outputs of several indicator functions.

    Later functions win on duplicate names.
    """
    return _Combined(funs)


class _Combined:
    def __init__(self, funs):
        self.funs = tuple(funs)

    def __call__(self, grid):
        out = {}
        for fun in self.funs:
            result = fun(grid)
            out.update(result if isinstance(result, dict) else {"value": float(result)})
        return out


def indicator_names(fun, shape=(8, 8), boolean=True):
    """Names returned by an indicator function, found by evaluating it on a small random grid."""
    rng = np.random.default_rng(0)
    grid = rng.random(shape) < 0.5 if boolean else rng.random(shape)
    return list(fun(as_grid(grid)))
