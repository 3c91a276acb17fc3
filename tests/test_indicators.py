import math
import pickle

import numpy as np
import pytest

from spatialews import (
    combine,
    compute_indicator,
    generic_sews,
    patchdistr_sews,
    patchsizes,
    percolation,
    spectral_sews,
)
from spatialews.exceptions import InsufficientDataError, InvalidInputError
from spatialews.indicators import indicator_names


def test_generic_sews(rng):
    out = generic_sews(subsize=2)(rng.random((16, 16)) < 0.4)
    assert set(out) == {"variance", "skewness", "moran"}


def test_spectral_sews(rng):
    assert set(spectral_sews()(rng.random((16, 16)))) == {"sdr"}
    with pytest.raises(InvalidInputError):
        spectral_sews(sdr_low_range=(0.5, 0.1))


def test_patchdistr_sews(rng):
    grid = rng.random((64, 64)) < 0.55
    out = patchdistr_sews()(grid)
    sizes = patchsizes(grid)
    assert out["cover"] == pytest.approx(grid.mean())
    assert out["npatches"] == sizes.size
    assert out["max_patch"] == sizes.max()
    assert out["percolation"] == float(percolation(grid))
    assert np.isfinite(out["pl_expo"])
    assert out["psd_best"] in (0.0, 1.0, 2.0, 3.0)
    assert 0.0 <= out["plrange"] <= 1.0


def test_patchdistr_sews_on_empty_grid():
    fun = patchdistr_sews()
    out = fun(np.zeros((10, 10), dtype=bool))
    assert out["npatches"] == 0
    assert out["max_patch"] == 0
    assert math.isnan(out["pl_expo"])
    assert math.isnan(out["psd_best"])
    with pytest.raises(InsufficientDataError):
        fun.fit(np.zeros((10, 10), dtype=bool))


def test_patchdistr_full_fit(rng):
    grid = rng.random((64, 64)) < 0.55
    result = patchdistr_sews(families=("pl", "exp")).fit(grid, xmin=1)
    assert set(result.fits) == {"pl", "exp"}
    assert result.xmin == 1


def test_combine(rng):
    fun = combine(generic_sews(subsize=2), spectral_sews(), lambda g: g.cover())
    names = indicator_names(fun)
    assert names == ["variance", "skewness", "moran", "sdr", "value"]


def test_indicator_functions_pickle(rng):
    grid = rng.random((16, 16)) < 0.5
    for fun in (generic_sews(subsize=2), spectral_sews(), patchdistr_sews(families=("pl", "exp"))):
        clone = pickle.loads(pickle.dumps(fun))
        first, second = fun(grid), clone(grid)
        assert first.keys() == second.keys()
        assert all(first[k] == second[k] or (math.isnan(first[k]) and math.isnan(second[k])) for k in first)


def test_patchdistr_best_family_code(rng):
    grid = rng.random((48, 48)) < 0.5
    fun = patchdistr_sews(families=("exp", "pl"), xmin=1)
    out = fun(grid)
    best = fun.fit(grid).best.family
    assert out["psd_best"] == ("pl", "tpl", "lnorm", "exp").index(best)


@pytest.mark.parametrize("shape", [(1, 1), (3, 3)])
def test_indicators_on_tiny_grids(shape):
    grid = np.ones(shape, dtype=bool)
    trend = compute_indicator(grid, combine(generic_sews(), spectral_sews(), patchdistr_sews()))
    assert trend.errors == {}
    values = trend[0].values
    assert values["variance"] == 0.0
    assert values["moran"] == 0.0
    assert values["cover"] == 1.0
    assert values["npatches"] == 1.0
