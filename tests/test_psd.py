import math

import numpy as np
import pytest

from spatialews import psd
from spatialews.exceptions import FitUnavailableError, InsufficientDataError, InvalidInputError
from spatialews.psd import (
    dexp,
    dlnorm,
    dpl,
    dtpl,
    exp_fit,
    fit_psd,
    pl_fit,
    plrange,
    ppl,
    rpl,
    tpl_fit,
    xmin_estim,
)


@pytest.fixture(scope="module")
def pl_sample():
    return rpl(5000, 2.5, xmin=1, rng=42)


@pytest.fixture(scope="module")
def geom_sample():
    return np.random.default_rng(7).geometric(0.3, size=3000)


def test_pmfs_sum_to_one():
    x = np.arange(1, 100000)
    assert dpl(x, 2.5).sum() == pytest.approx(1.0, abs=1e-4)
    assert dexp(x, 0.2).sum() == pytest.approx(1.0, abs=1e-8)
    assert dlnorm(x, 1.0, 1.0).sum() == pytest.approx(1.0, abs=1e-6)
    assert dtpl(np.arange(1, 5000), 1.5, 0.01).sum() == pytest.approx(1.0, abs=1e-4)
    # Truncated supports start at xmin
    assert dpl(np.arange(5, 100000), 2.5, xmin=5).sum() == pytest.approx(1.0, abs=1e-3)


def test_pl_cdf_matches_pmf():
    assert float(ppl(1, 2.5)) == pytest.approx(float(dpl(1, 2.5)))
    assert float(ppl(3, 2.5)) == pytest.approx(float(dpl(np.arange(1, 4), 2.5).sum()))


def test_rpl_support():
    sample = rpl(1000, 2.0, xmin=3, rng=1)
    assert sample.dtype == np.int64
    assert sample.min() >= 3


def test_pl_fit_recovers_exponent(pl_sample):
    fit = pl_fit(pl_sample, xmin=1)
    assert fit.params["expo"] == pytest.approx(2.5, abs=0.1)
    assert fit.n == pl_sample.size
    assert 0 <= fit.ks_pvalue <= 1
    assert fit.aic == pytest.approx(2 - 2 * fit.loglik)


def test_exp_fit_recovers_rate(geom_sample):
    fit = exp_fit(geom_sample, xmin=1)
    assert fit.params["rate"] == pytest.approx(-math.log(0.7), abs=0.03)


def test_pl_beats_exp_on_power_law(pl_sample):
    result = fit_psd(pl_sample, families=("pl", "exp"), xmin=1)
    assert result.ranking[0] == "pl"
    assert result.delta_ic()["pl"] == 0.0
    assert result.xmin == 1


def test_exp_beats_pl_on_geometric(geom_sample):
    result = fit_psd(geom_sample, families=("pl", "exp"), xmin=1)
    assert result.best.family == "exp"


def test_tpl_close_to_pl_without_cutoff():
    sample = rpl(1000, 2.0, xmin=1, rng=3)
    tpl = tpl_fit(sample, xmin=1)
    pl = pl_fit(sample, xmin=1)
    # Nested models: the cutoff can only improve the likelihood
    assert tpl.loglik >= pl.loglik - 0.5
    assert tpl.params["rate"] < 0.05


def test_all_families_share_xmin(pl_sample):
    result = fit_psd(pl_sample[:1000], xmin=2)
    assert {f.xmin for f in result.fits.values()} == {2}
    frame = result.to_frame()
    assert set(frame["family"]) == set(psd.FAMILIES)


def test_unavailable_family_is_recorded(pl_sample, monkeypatch):
    def failing(sample, xmin=1):
        raise FitUnavailableError("lnorm: does not converge")

    monkeypatch.setitem(psd._FITTERS, "lnorm", failing)
    result = fit_psd(pl_sample, families=("pl", "lnorm"), xmin=1)
    assert not result.fits["lnorm"].available
    assert "converge" in result.fits["lnorm"].reason
    assert result.ranking == ["pl"]


def test_no_family_fits():
    with pytest.raises(InsufficientDataError):
        fit_psd([1, 2, 5, 5, 5], xmin=5)
    with pytest.raises(FitUnavailableError):
        pl_fit([4, 4, 4])


@pytest.mark.parametrize("bad", [[], [0, 1, 2], [1.5, 2], [1, np.nan], [-3]])
def test_invalid_samples(bad):
    with pytest.raises(InvalidInputError):
        fit_psd(bad)


def test_invalid_options(pl_sample):
    with pytest.raises(InvalidInputError):
        fit_psd(pl_sample, families=("pl", "weibull"))
    with pytest.raises(InvalidInputError):
        fit_psd(pl_sample, criterion="hqic")


def test_xmin_estim():
    body = np.random.default_rng(5).integers(1, 5, size=300)
    sample = np.concatenate((body, rpl(700, 2.2, xmin=5, rng=5)))
    xmin = xmin_estim(sample)
    assert xmin in sample
    assert xmin_estim([2, 3]) == 2


def test_plrange():
    assert math.isnan(plrange([3, 3, 3]))
    value = plrange(rpl(500, 2.0, xmin=1, rng=2))
    assert 0.0 <= value <= 1.0


def test_gof_bootstrap():
    sample = rpl(300, 2.2, xmin=1, rng=11)
    result = fit_psd(sample, families=("pl",), xmin=1, gof_bootstrap=5, seed=1)
    assert 0.0 <= result.fits["pl"].gof_pvalue <= 1.0
    assert math.isnan(fit_psd(sample, families=("pl",), xmin=1).fits["pl"].gof_pvalue)


def test_pl_ranks_above_lnorm(pl_sample):
    result = fit_psd(pl_sample, families=("pl", "lnorm"), xmin=1)
    assert result.ranking[0] == "pl"
