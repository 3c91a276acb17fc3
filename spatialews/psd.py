"""
Fitting of heavy-tailed distributions to patch-size samples.

Patch sizes are positive integers, so every family is fitted by maximum
likelihood over its *discrete* support ``x >= xmin``:

- ``pl``: power law, P(x) = x^-a / zeta(a, xmin)
- ``tpl``: power law with exponential cutoff, P(x) ~ x^-a exp(-rate * x)
- ``lnorm``: discretised lognormal, P(x) = (S(x) - S(x + 1)) / S(xmin) with S
  the continuous lognormal survival function
- ``exp``: discrete exponential, P(x) = (1 - exp(-rate)) exp(-rate (x - xmin))

All families requested in one call share the same ``xmin`` so that their
information criteria are computed on the same data and can be ranked.
"""
import math
from typing import Dict, NamedTuple

import numpy as np
import pandas as pd
from scipy import integrate, optimize, special, stats

from .exceptions import FitUnavailableError, InsufficientDataError, InvalidInputError

FAMILIES = ("pl", "tpl", "lnorm", "exp")
N_PARAMS = {"pl": 1, "tpl": 2, "lnorm": 2, "exp": 1}
CRITERIA = ("aic", "bic")

# Search bounds for the power-law exponent and the cutoff rate
PL_EXPO_BOUNDS = (1.0 + 1e-6, 20.0)
TPL_EXPO_BOUNDS = (0.0, 20.0)
TPL_RATE_BOUNDS = (1e-8, 20.0)

# Terms of the tpl normalising sum computed exactly before switching to an integral
_TPL_HEAD = 2000
# Support covered by the exact power-law sampler before the continuous approximation
_RPL_TABLE = 100000


class CandidateFit(NamedTuple):
    """
    One fitted distribution family.

    ``available`` is False when the family could not be identified from the
    sample; ``reason`` then says why and the numeric fields are NaN.
    """
    family: str
    params: Dict[str, float]
    xmin: int
    n: int
    loglik: float = math.nan
    aic: float = math.nan
    bic: float = math.nan
    ks_stat: float = math.nan
    ks_pvalue: float = math.nan
    gof_pvalue: float = math.nan
    available: bool = True
    reason: str = ""

    def ic(self, criterion="aic"):
        return self.aic if criterion == "aic" else self.bic


def _unavailable(family, xmin, n, reason):
    return CandidateFit(family=family, params={}, xmin=int(xmin), n=int(n),
                        available=False, reason=reason)


class PSDFit:
    """
    Result of :func:`fit_psd`: every candidate fit plus their ranking.

    Attributes
    ----------
    fits : dict
        Family name -> CandidateFit, for every requested family (available or not).
    ranking : list of str
        Available families ordered by increasing information criterion.
    criterion : str
        ``"aic"`` or ``"bic"``.
    xmin : int
        Lower cutoff shared by all fits.
    """

    def __init__(self, fits, criterion, xmin):
        self.fits = fits
        self.criterion = criterion
        self.xmin = int(xmin)
        available = [f for f in fits.values() if f.available]
        self.ranking = [f.family for f in sorted(available, key=lambda f: f.ic(criterion))]

    @property
    def best(self) -> CandidateFit:
        return self.fits[self.ranking[0]]

    def delta_ic(self) -> Dict[str, float]:
        """Difference in information criterion to the best family."""
        best = self.best.ic(self.criterion)
        return {name: self.fits[name].ic(self.criterion) - best for name in self.ranking}

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for fit in self.fits.values():
            row = {
                "family": fit.family, "available": fit.available, "xmin": fit.xmin,
                "n": fit.n, "loglik": fit.loglik, "aic": fit.aic, "bic": fit.bic,
                "ks_stat": fit.ks_stat, "ks_pvalue": fit.ks_pvalue,
                "gof_pvalue": fit.gof_pvalue, "reason": fit.reason,
                "rank": self.ranking.index(fit.family) + 1 if fit.family in self.ranking else np.nan,
            }
            for key, value in fit.params.items():
                row[key] = value
            rows.append(row)
        return pd.DataFrame(rows)

    def __repr__(self):
        return f"PSDFit(xmin={self.xmin}, criterion={self.criterion!r}, ranking={self.ranking})"


# ---------------------------------------------------------------------------
# Input handling
# ---------------------------------------------------------------------------

def check_sample(sample) -> np.ndarray:
    """Validate a sample of patch sizes and return it as a sorted int64 array."""
    values = np.asarray(sample)
    if values.ndim != 1:
        values = values.ravel()
    if values.size == 0:
        raise InvalidInputError("Cannot fit a distribution to an empty sample")
    if values.dtype == np.bool_ or not np.issubdtype(values.dtype, np.number):
        raise InvalidInputError(f"Sample must contain integers, got dtype {values.dtype}")
    if not np.all(np.isfinite(values)):
        raise InvalidInputError("Sample contains missing or non-finite values")
    if np.any(values != np.round(values)):
        raise InvalidInputError("Sample must contain integer values (patch sizes)")
    if np.any(values < 1):
        raise InvalidInputError("Sample values must be positive integers")
    return np.sort(values.astype(np.int64))


def _tail(sample, xmin):
    return sample[sample >= xmin]


def _require_identifiable(family, tail, xmin):
    if tail.size < 2 or np.unique(tail).size < 2:
        raise FitUnavailableError(
            f"{family}: need at least 2 distinct values >= xmin={xmin}, "
            f"got {np.unique(tail).size} in {tail.size} point(s)"
        )


def _information_criteria(loglik, k, n):
    return 2 * k - 2 * loglik, k * math.log(n) - 2 * loglik


# ---------------------------------------------------------------------------
# Probability mass and cumulative distribution functions
# ---------------------------------------------------------------------------

def dpl(x, expo, xmin=1):
    """Probability mass of the discrete power law."""
    x = np.asarray(x, dtype=float)
    return x ** (-expo) / special.zeta(expo, xmin)


def ppl(x, expo, xmin=1):
    """P(X <= x) for the discrete power law."""
    x = np.asarray(x, dtype=float)
    return 1.0 - special.zeta(expo, x + 1) / special.zeta(expo, xmin)


def _tpl_log_norm(expo, rate, xmin):
    x = np.arange(xmin, xmin + _TPL_HEAD, dtype=float)
    logterms = -expo * np.log(x) - rate * x
    top = logterms.max()
    head = np.exp(logterms - top).sum()
    # Remaining terms approximated by the integral over [x - 1/2, x + 1/2] cells
    tail, _ = integrate.quad(lambda t: math.exp(-expo * math.log(t) - rate * t - top),
                             xmin + _TPL_HEAD - 0.5, np.inf)
    return top + math.log(head + tail)


def dtpl(x, expo, rate, xmin=1):
    """Probability mass of the discrete power law with exponential cutoff."""
    x = np.asarray(x, dtype=float)
    return np.exp(-expo * np.log(x) - rate * x - _tpl_log_norm(expo, rate, xmin))


def ptpl(x, expo, rate, xmin=1):
    """P(X <= x) for the discrete power law with exponential cutoff."""
    x = np.atleast_1d(np.asarray(x, dtype=np.int64))
    support = np.arange(xmin, max(int(x.max()), xmin) + 1)
    cdf = np.cumsum(dtpl(support, expo, rate, xmin))
    idx = np.clip(x - xmin, -1, support.size - 1)
    return np.where(idx < 0, 0.0, cdf[np.maximum(idx, 0)])


def _lnorm_logsf(x, meanlog, sdlog):
    return stats.norm.logsf((np.log(x) - meanlog) / sdlog)


def dlnorm(x, meanlog, sdlog, xmin=1):
    """Probability mass of the discretised lognormal, P(X = x) = (S(x) - S(x+1)) / S(xmin)."""
    x = np.asarray(x, dtype=float)
    return np.exp(_lnorm_logpmf(x, meanlog, sdlog, xmin))


def _lnorm_logpmf(x, meanlog, sdlog, xmin):
    upper = _lnorm_logsf(x, meanlog, sdlog)
    lower = _lnorm_logsf(x + 1, meanlog, sdlog)
    with np.errstate(divide="ignore", invalid="ignore"):
        return upper + np.log1p(-np.exp(lower - upper)) - _lnorm_logsf(xmin, meanlog, sdlog)


def plnorm(x, meanlog, sdlog, xmin=1):
    """P(X <= x) for the discretised lognormal."""
    x = np.asarray(x, dtype=float)
    return 1.0 - np.exp(_lnorm_logsf(x + 1, meanlog, sdlog) - _lnorm_logsf(xmin, meanlog, sdlog))


def dexp(x, rate, xmin=1):
    """Probability mass of the discrete exponential."""
    x = np.asarray(x, dtype=float)
    return -np.expm1(-rate) * np.exp(-rate * (x - xmin))


def pexp(x, rate, xmin=1):
    """P(X <= x) for the discrete exponential."""
    x = np.asarray(x, dtype=float)
    return -np.expm1(-rate * (x - xmin + 1))


def family_cdf(fit: CandidateFit, x):
    """Evaluate the cumulative distribution of a fitted family at ``x``."""
    p, xmin = fit.params, fit.xmin
    if fit.family == "pl":
        return ppl(x, p["expo"], xmin)
    if fit.family == "tpl":
        return ptpl(x, p["expo"], p["rate"], xmin)
    if fit.family == "lnorm":
        return plnorm(x, p["meanlog"], p["sdlog"], xmin)
    if fit.family == "exp":
        return pexp(x, p["rate"], xmin)
    raise InvalidInputError(f"Unknown family: {fit.family!r}")


# ---------------------------------------------------------------------------
# Goodness of fit
# ---------------------------------------------------------------------------

def ks_distance(tail, cdf):
    """
    Kolmogorov-Smirnov distance between the empirical CDF of ``tail`` and a
    discrete model CDF.

    Both CDFs are step functions jumping at integers, so the maximum is
    attained at a sample value or just before one.
    """
    tail = np.sort(tail)
    n = tail.size
    values = np.unique(tail)
    model_at = cdf(values)
    model_before = cdf(values - 1)
    emp_at = np.searchsorted(tail, values, side="right") / n
    emp_before = np.searchsorted(tail, values, side="left") / n
    return float(max(np.max(np.abs(emp_at - model_at)), np.max(np.abs(emp_before - model_before))))


def _with_ks(fit: CandidateFit, tail):
    ks_stat = ks_distance(tail, lambda x: family_cdf(fit, x))
    ks_pvalue = float(stats.kstwo.sf(ks_stat, tail.size))
    return fit._replace(ks_stat=ks_stat, ks_pvalue=ks_pvalue)


# ---------------------------------------------------------------------------
# Maximum likelihood fits
# ---------------------------------------------------------------------------

def _pl_loglik(expo, sum_log, n, xmin):
    return -expo * sum_log - n * math.log(special.zeta(expo, xmin))


def pl_fit(sample, xmin=1):
    """
    Fit a discrete power law to the values of ``sample`` that are >= ``xmin``.

    The exponent maximises the exact discrete likelihood (Clauset et al. 2009,
    eq. 3.5), the normalising constant being the Hurwitz zeta function.

    Returns
    -------
    CandidateFit
        With ``params = {"expo": a}``.

    Raises
    ------
    FitUnavailableError
        If fewer than 2 distinct values lie above ``xmin`` or the optimiser
        does not return a finite exponent.
    """
    sample = check_sample(sample)
    tail = _tail(sample, xmin)
    _require_identifiable("pl", tail, xmin)
    n = tail.size
    sum_log = float(np.log(tail).sum())

    res = optimize.minimize_scalar(lambda a: -_pl_loglik(a, sum_log, n, xmin),
                                   bounds=PL_EXPO_BOUNDS, method="bounded")
    expo = float(res.x)
    loglik = -float(res.fun)
    if not (res.success and np.isfinite(expo) and np.isfinite(loglik)):
        raise FitUnavailableError(f"pl: exponent optimisation failed ({res.message})")

    aic, bic = _information_criteria(loglik, N_PARAMS["pl"], n)
    fit = CandidateFit("pl", {"expo": expo}, int(xmin), n, loglik, aic, bic)
    return _with_ks(fit, tail)


def tpl_fit(sample, xmin=1):
    """
    Fit a discrete power law with exponential cutoff, P(x) ~ x^-expo * exp(-rate * x).

    The normalising constant is summed exactly over the first terms of the
    support and completed with an integral for the remainder.
    """
    sample = check_sample(sample)
    tail = _tail(sample, xmin)
    _require_identifiable("tpl", tail, xmin)
    n = tail.size
    sum_log = float(np.log(tail).sum())
    sum_x = float(tail.sum())

    def negloglik(theta):
        expo, lograte = theta
        rate = math.exp(lograte)
        return expo * sum_log + rate * sum_x + n * _tpl_log_norm(expo, rate, xmin)

    # Start from the pure power law and the exponential rate
    try:
        expo0 = pl_fit(tail, xmin).params["expo"]
    except FitUnavailableError:
        expo0 = 1.5
    expo0 = min(max(expo0, TPL_EXPO_BOUNDS[0] + 0.1), TPL_EXPO_BOUNDS[1] - 0.1)
    rate0 = min(max(1.0 / max(tail.mean(), 1.0), TPL_RATE_BOUNDS[0] * 10), 1.0)

    res = optimize.minimize(negloglik, x0=[expo0, math.log(rate0)], method="L-BFGS-B",
                            bounds=[TPL_EXPO_BOUNDS, tuple(math.log(b) for b in TPL_RATE_BOUNDS)])
    expo, rate = float(res.x[0]), float(math.exp(res.x[1]))
    loglik = -float(res.fun)
    if not (np.isfinite(expo) and np.isfinite(rate) and np.isfinite(loglik)):
        raise FitUnavailableError(f"tpl: optimisation failed ({res.message})")

    aic, bic = _information_criteria(loglik, N_PARAMS["tpl"], n)
    fit = CandidateFit("tpl", {"expo": expo, "rate": rate}, int(xmin), n, loglik, aic, bic)
    return _with_ks(fit, tail)


def lnorm_fit(sample, xmin=1):
    """Fit a discretised lognormal truncated below at ``xmin``."""
    sample = check_sample(sample)
    tail = _tail(sample, xmin)
    _require_identifiable("lnorm", tail, xmin)
    n = tail.size
    x = tail.astype(float)

    def negloglik(theta):
        meanlog, logsd = theta
        ll = _lnorm_logpmf(x, meanlog, math.exp(logsd), xmin).sum()
        return -ll if np.isfinite(ll) else np.inf

    logs = np.log(x)
    theta0 = [float(logs.mean()), math.log(max(float(logs.std()), 0.1))]
    res = optimize.minimize(negloglik, x0=theta0, method="Nelder-Mead",
                            options={"xatol": 1e-6, "fatol": 1e-8, "maxiter": 4000})
    meanlog, sdlog = float(res.x[0]), float(math.exp(res.x[1]))
    loglik = -float(res.fun)
    if not (res.success and np.isfinite(loglik) and sdlog > 0):
        raise FitUnavailableError(f"lnorm: optimisation failed ({res.message})")

    aic, bic = _information_criteria(loglik, N_PARAMS["lnorm"], n)
    fit = CandidateFit("lnorm", {"meanlog": meanlog, "sdlog": sdlog}, int(xmin), n, loglik, aic, bic)
    return _with_ks(fit, tail)


def exp_fit(sample, xmin=1):
    """
    Fit a discrete exponential above ``xmin``.

    The MLE has a closed form: rate = log(1 + 1 / (mean(x) - xmin)).
    """
    sample = check_sample(sample)
    tail = _tail(sample, xmin)
    _require_identifiable("exp", tail, xmin)
    n = tail.size
    excess = float(tail.mean()) - xmin
    rate = math.log1p(1.0 / excess)
    loglik = n * math.log(-math.expm1(-rate)) - rate * excess * n

    aic, bic = _information_criteria(loglik, N_PARAMS["exp"], n)
    fit = CandidateFit("exp", {"rate": rate}, int(xmin), n, loglik, aic, bic)
    return _with_ks(fit, tail)


_FITTERS = {"pl": pl_fit, "tpl": tpl_fit, "lnorm": lnorm_fit, "exp": exp_fit}


# ---------------------------------------------------------------------------
# xmin estimation, sampling and bootstrap
# ---------------------------------------------------------------------------

def xmin_estim(sample, min_tail=10):
    """
    Estimate the lower cutoff of the power-law regime.

    Following Clauset et al. (2009), every distinct value that leaves at least
    ``min_tail`` points (and 2 distinct values) above it is tried as ``xmin``,
    and the one minimising the KS distance between the data and the fitted
    power law is kept. Samples too small for any candidate return their
    minimum.
    """
    sample = check_sample(sample)
    values = np.unique(sample)
    best_xmin, best_ks = int(values[0]), np.inf
    # The largest value can never be a candidate: its tail has a single distinct value
    for candidate in values[:-1]:
        tail = _tail(sample, candidate)
        if tail.size < min_tail:
            break
        try:
            fit = pl_fit(tail, candidate)
        except FitUnavailableError:
            continue
        if fit.ks_stat < best_ks:
            best_xmin, best_ks = int(candidate), fit.ks_stat
    return best_xmin


def rpl(n, expo, xmin=1, rng=None):
    """
    Draw ``n`` values from a discrete power law.

    Values up to ``xmin + 100000`` are drawn exactly by inverting the CDF;
    beyond, the continuous approximation of Clauset et al. (2009, eq. D.6) is
    used.
    """
    rng = np.random.default_rng(rng)
    support = np.arange(xmin, xmin + _RPL_TABLE)
    cdf = ppl(support, expo, xmin)
    u = rng.random(n)
    out = support[np.minimum(np.searchsorted(cdf, u, side="left"), support.size - 1)]
    beyond = u > cdf[-1]
    if np.any(beyond):
        approx = np.floor((xmin - 0.5) * (1.0 - u[beyond]) ** (-1.0 / (expo - 1.0)) + 0.5)
        out = out.astype(np.float64)
        out[beyond] = np.maximum(approx, support[-1] + 1)
    return out.astype(np.int64)


def pl_gof_bootstrap(sample, fit: CandidateFit, nboot=100, estimate_xmin=True, min_tail=10, rng=None):
    """
    Semi-parametric bootstrap p-value of a power-law fit (Clauset et al. 2009, sec. 4.1).

    Each synthetic sample draws values below ``xmin`` from the data and values
    above it from the fitted power law, in the observed proportions. The
    p-value is the fraction of synthetic KS distances at least as large as the
    observed one; synthetic samples on which the power law cannot be fitted
    are left out of the count.
    """
    rng = np.random.default_rng(rng)
    sample = check_sample(sample)
    xmin = fit.xmin
    body = sample[sample < xmin]
    n, n_tail = sample.size, int(np.sum(sample >= xmin))
    exceed, done = 0, 0
    for _ in range(nboot):
        k = rng.binomial(n, n_tail / n)
        synthetic = np.concatenate((rng.choice(body, size=n - k) if body.size else np.zeros(0, np.int64),
                                    rpl(k, fit.params["expo"], xmin, rng)))
        if synthetic.size == 0:
            continue
        b_xmin = xmin_estim(synthetic, min_tail) if estimate_xmin else xmin
        try:
            b_fit = pl_fit(synthetic, b_xmin)
        except FitUnavailableError:
            continue
        done += 1
        exceed += b_fit.ks_stat >= fit.ks_stat
    return exceed / done if done else math.nan


def fit_psd(sample, families=FAMILIES, xmin=None, criterion="aic", gof_bootstrap=0,
            min_tail=10, seed=None) -> PSDFit:
    """
    Fit candidate distributions to a sample of patch sizes and rank them.

    Parameters
    ----------
    sample : array-like
        Positive integers, typically the output of ``patchsizes``.
    families : sequence of str, default ("pl", "tpl", "lnorm", "exp")
        Families to fit.
    xmin : int, optional
        Lower cutoff shared by all families. Estimated with :func:`xmin_estim`
        when None.
    criterion : {"aic", "bic"}, default "aic"
        Information criterion used for ranking; lower is better.
    gof_bootstrap : int, default 0
        Number of bootstrap samples for the power-law goodness-of-fit p-value
        (``gof_pvalue`` of the ``pl`` fit). 0 skips the bootstrap; the analytic
        KS p-value is always computed.
    min_tail : int, default 10
        Minimum number of points above a candidate ``xmin`` during estimation.
    seed : int or np.random.Generator, optional
        Random source for the bootstrap.

    Returns
    -------
    PSDFit
        Holds every family's CandidateFit, including unavailable ones with
        the reason recorded.

    Raises
    ------
    InvalidInputError
        On an empty or non-positive-integer sample, or unknown families.
    InsufficientDataError
        If none of the requested families could be fitted.
    """
    sample = check_sample(sample)
    families = list(families)
    unknown = [f for f in families if f not in _FITTERS]
    if unknown or not families:
        raise InvalidInputError(f"Unknown or empty family list {families}; choose from {FAMILIES}")
    if criterion not in CRITERIA:
        raise InvalidInputError(f"criterion must be one of {CRITERIA}, got {criterion!r}")

    if xmin is None:
        xmin = xmin_estim(sample, min_tail)
    elif xmin < 1:
        raise InvalidInputError(f"xmin must be a positive integer, got {xmin}")
    xmin = int(xmin)
    n_tail = int(np.sum(sample >= xmin))

    fits = {}
    for family in families:
        try:
            fits[family] = _FITTERS[family](sample, xmin)
        except FitUnavailableError as e:
            fits[family] = _unavailable(family, xmin, n_tail, str(e))

    if not any(f.available for f in fits.values()):
        reasons = "; ".join(f.reason for f in fits.values())
        raise InsufficientDataError(f"No distribution could be fitted to the sample: {reasons}")

    if gof_bootstrap and "pl" in fits and fits["pl"].available:
        pvalue = pl_gof_bootstrap(sample, fits["pl"], nboot=gof_bootstrap, min_tail=min_tail, rng=seed)
        fits["pl"] = fits["pl"]._replace(gof_pvalue=pvalue)

    return PSDFit(fits, criterion, xmin)


def plrange(sample, min_tail=10):
    """
    Fraction of the (log-scaled) range of patch sizes over which a power law holds.

    Computed as ``(log10 max - log10 xmin) / (log10 max - log10 min)`` with
    ``xmin`` from :func:`xmin_estim`. Returns NaN when the sample has fewer
    than 2 distinct values.
    """
    sample = check_sample(sample)
    lo, hi = int(sample[0]), int(sample[-1])
    if lo == hi:
        return math.nan
    xmin = xmin_estim(sample, min_tail)
    return (math.log10(hi) - math.log10(xmin)) / (math.log10(hi) - math.log10(lo))
