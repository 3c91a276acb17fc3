import math
import warnings
from numbers import Real
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional

import numpy as np
import pandas as pd

from .exceptions import InvalidInputError, SpatialEWSError
from .execution import ExecutionContext, TaskFailure, run_tasks
from .grid import Grid, as_grid, split_collection
from .nullmodels import NullModel, check_null_method, resolve_family

# Options that can be set per grid through indictest(overrides=...)
OVERRIDE_KEYS = ("nulln", "null_method", "family")

# Relative spread below which null values are treated as identical
_ROUNDING = 64 * np.finfo(float).eps


class IndicatorResult(NamedTuple):
    """
    Indicator values of one grid.

    ``index`` is the grid's position in the collection it came from. When the
    grid could not be ingested or the indicator function failed, ``values``
    is empty and ``error`` holds the exception.
    """
    index: int
    values: Dict[str, float]
    error: Optional[BaseException] = None
    grid: Optional[Grid] = None
    fun: Optional[Callable] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _as_values(output) -> Dict[str, float]:
    """Normalise the output of an indicator function to a name -> float dict."""
    if isinstance(output, Mapping):
        items = output.items()
    elif isinstance(output, (Real, np.number)):
        items = [("value", output)]
    else:
        raise InvalidInputError(
            f"Indicator functions must return a mapping of named numbers or a number, got {type(output).__name__}"
        )
    values = {}
    for name, value in items:
        try:
            values[str(name)] = float(value)
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Indicator {name!r} is not numeric: {value!r}") from e
    return values


def _evaluate(fun, grid):
    return _as_values(fun(grid))


def _evaluate_task(task):
    fun, grid = task
    return _evaluate(fun, grid)


class Trend:
    """
    Ordered indicator results, one per input grid.

    Results are kept in the order of the input collection, which usually
    follows an environmental gradient. Failed grids keep their slot with the
    error attached.
    """

    def __init__(self, results: List[IndicatorResult], fun: Callable):
        self.results = list(results)
        self.fun = fun

    @property
    def names(self) -> List[str]:
        """Indicator names in order of first appearance."""
        names = []
        for result in self.results:
            for name in result.values:
                if name not in names:
                    names.append(name)
        return names

    @property
    def grids(self) -> List[Optional[Grid]]:
        return [r.grid for r in self.results]

    @property
    def errors(self) -> Dict[int, BaseException]:
        return {r.index: r.error for r in self.results if r.error is not None}

    def values(self, name) -> np.ndarray:
        """Values of one indicator across the trend, NaN for failed grids."""
        return np.array([r.values.get(name, np.nan) for r in self.results], dtype=float)

    def to_frame(self) -> pd.DataFrame:
        """Long-format table with columns ``index``, ``indicator``, ``value`` and ``error``."""
        rows = []
        for result in self.results:
            if result.error is not None:
                rows.append({"index": result.index, "indicator": None, "value": np.nan,
                             "error": repr(result.error)})
                continue
            for name, value in result.values.items():
                rows.append({"index": result.index, "indicator": name, "value": value, "error": None})
        return pd.DataFrame(rows, columns=["index", "indicator", "value", "error"])

    def __len__(self):
        return len(self.results)

    def __getitem__(self, i):
        return self.results[i]

    def __iter__(self):
        return iter(self.results)

    def __repr__(self):
        return f"Trend({len(self)} grid(s), indicators={self.names}, errors={len(self.errors)})"


def compute_indicator(grids, fun: Callable[[Grid], Any], context: Optional[ExecutionContext] = None) -> Trend:
    """
    Apply an indicator function to one grid or an ordered collection of grids.

    Parameters
    ----------
    grids : array-like, Grid, or sequence of them
        A single 2D grid, a list of grids, or a 3D array of stacked grids.
    fun : callable
        Indicator function ``Grid -> mapping of named numbers`` (a single
        number is named ``"value"``). It must be deterministic and free of
        side effects, as it is re-applied to null grids by :func:`indictest`.
    context : ExecutionContext, optional
        Execution across grids; sequential by default.

    Returns
    -------
    Trend
        One IndicatorResult per grid, in input order. Grids that fail
        ingestion or computation keep their position with ``error`` set.

    Examples
    --------
    >>> from spatialews.indicators import generic_sews
    >>> grids = [np.random.rand(32, 32) for _ in range(3)]
    >>> trend = compute_indicator(grids, generic_sews(subsize=2))
    >>> trend.to_frame().head()
    """
    if not callable(fun):
        raise InvalidInputError("fun must be callable")
    items = split_collection(grids)

    ingested = []
    for item in items:
        try:
            ingested.append(as_grid(item))
        except (SpatialEWSError, ValueError) as e:
            ingested.append(e)

    tasks = [(fun, g) for g in ingested if isinstance(g, Grid)]
    outputs = iter(run_tasks(_evaluate_task, tasks, context, desc="Computing indicators", capture_errors=True))

    results = []
    for index, grid in enumerate(ingested):
        if not isinstance(grid, Grid):
            results.append(IndicatorResult(index, {}, grid, None, fun))
            continue
        output = next(outputs)
        if isinstance(output, TaskFailure):
            results.append(IndicatorResult(index, {}, output.error, grid, fun))
        else:
            results.append(IndicatorResult(index, output, None, grid, fun))
    return Trend(results, fun)


class NullReplicateSet:
    """
    Indicator values of the null replicates of one grid, with their summary.

    Attributes
    ----------
    index : int
        Position of the grid in its collection.
    names : list of str
        Indicator names, the columns of ``values``.
    observed : dict
        Indicator values of the observed grid.
    values : np.ndarray
        Array of shape (nulln, len(names)), rows in replicate order.
    mean, sd, qlow, qhigh, pval, zscore : dict
        Per-indicator summary of the null distribution. ``pval`` is
        ``(#{null >= observed} + 1) / (N + 1)`` over the N finite null values,
        so a low p-value means the observed value lies above the null
        distribution. When all null values are equal, ``sd`` is 0 and
        ``zscore`` is NaN.
    n_valid : dict
        Per-indicator number N of finite null values behind the summary.
        Replicates where the indicator is NaN or infinite are left out of
        the summary and counted here; ``n_valid < nulln`` flags them.
    null_grids : list of Grid or None
        The null grids themselves when kept.
    error : Exception or None
        Set when the test of this grid could not be run; all other
        attributes are then empty.
    """

    def __init__(self, index, names, observed, values, null_method, family, qlow=0.05, qhigh=0.95,
                 null_grids=None, error=None):
        self.index = index
        self.names = list(names)
        self.observed = dict(observed)
        self.values = np.asarray(values, dtype=float)
        self.nulln = self.values.shape[0]
        self.null_method = null_method
        self.family = family
        self.quantiles = (qlow, qhigh)
        self.null_grids = null_grids
        self.error = error
        self.mean, self.sd, self.qlow, self.qhigh, self.pval, self.zscore = {}, {}, {}, {}, {}, {}
        self.n_valid = {}
        for k, name in enumerate(self.names):
            self._summarise(name, self.values[:, k], qlow, qhigh)

    @classmethod
    def failed(cls, index, error, null_method=None, family=None):
        return cls(index, [], {}, np.zeros((0, 0)), null_method, family, error=error)

    def _summarise(self, name, null_values, qlow, qhigh):
        obs = self.observed.get(name, math.nan)
        finite = null_values[np.isfinite(null_values)]
        self.n_valid[name] = int(finite.size)
        if finite.size == 0:
            self.mean[name] = self.sd[name] = self.qlow[name] = self.qhigh[name] = math.nan
            self.pval[name] = self.zscore[name] = math.nan
            return
        # Null values equal up to rounding: their std is noise
        degenerate = np.ptp(finite) <= _ROUNDING * np.max(np.abs(finite))
        mean = float(finite[0]) if degenerate else float(finite.mean())
        sd = 0.0 if degenerate else float(finite.std())
        self.mean[name], self.sd[name] = mean, sd
        self.qlow[name], self.qhigh[name] = (float(q) for q in np.quantile(finite, [qlow, qhigh]))
        if np.isfinite(obs):
            self.pval[name] = float((np.sum(finite >= obs) + 1) / (finite.size + 1))
            self.zscore[name] = (obs - mean) / sd if sd > 0 else math.nan
        else:
            self.pval[name] = self.zscore[name] = math.nan

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_frame(self) -> pd.DataFrame:
        """One row per indicator with the observed value and the null summary."""
        if self.error is not None:
            return pd.DataFrame([{"index": self.index, "indicator": None, "error": repr(self.error)}])
        return pd.DataFrame([{
            "index": self.index,
            "indicator": name,
            "value": self.observed.get(name, math.nan),
            "null_mean": self.mean[name],
            "null_sd": self.sd[name],
            "null_qlow": self.qlow[name],
            "null_qhigh": self.qhigh[name],
            "zscore": self.zscore[name],
            "pval": self.pval[name],
            "nulln": self.nulln,
            "n_valid": self.n_valid[name],
            "null_method": self.null_method,
            "error": None,
        } for name in self.names])

    def __repr__(self):
        if self.error is not None:
            return f"NullReplicateSet(index={self.index}, error={self.error!r})"
        return f"NullReplicateSet(index={self.index}, nulln={self.nulln}, pval={self.pval})"


class IndicatorTest:
    """
    Null-model test of every grid of a trend.

    ``null_method``, ``nulln`` and ``family`` are the options of the call;
    per-grid values (after overrides and automatic family choice) are on
    each NullReplicateSet.
    """

    def __init__(self, sets: List[NullReplicateSet], trend: Trend, null_method, nulln, family=None):
        self.sets = list(sets)
        self.trend = trend
        self.null_method = null_method
        self.nulln = nulln
        self.family = family

    @property
    def errors(self) -> Dict[int, BaseException]:
        return {s.index: s.error for s in self.sets if s.error is not None}

    def pvalues(self, name) -> np.ndarray:
        return np.array([s.pval.get(name, np.nan) for s in self.sets], dtype=float)

    def to_frame(self) -> pd.DataFrame:
        columns = ["index", "indicator", "value", "null_mean", "null_sd", "null_qlow",
                   "null_qhigh", "zscore", "pval", "nulln", "n_valid", "null_method", "error"]
        frames = [s.to_frame() for s in self.sets]
        return pd.concat(frames, ignore_index=True).reindex(columns=columns)

    def __len__(self):
        return len(self.sets)

    def __getitem__(self, i):
        return self.sets[i]

    def __iter__(self):
        return iter(self.sets)

    def __repr__(self):
        return f"IndicatorTest({len(self)} grid(s), null_method={self.null_method!r}, nulln={self.nulln})"


def _replicate_task(task):
    model, fun, seed_seq, keep = task
    null_grid = model.draw(np.random.default_rng(seed_seq))
    return _evaluate(fun, null_grid), (null_grid if keep else None)


def _test_grid(task):
    """Fit the null model of one grid, compute the indicator on its replicates and summarise."""
    (result, null_method, family, null_control, nulln, seed_seq,
     qlow, qhigh, keep_nulls, replicate_context) = task

    model = NullModel(null_method, family, null_control).fit(result.grid)
    streams = seed_seq.spawn(nulln)
    outputs = run_tasks(_replicate_task, [(model, result.fun, s, keep_nulls) for s in streams],
                        replicate_context, desc=f"Null replicates (grid {result.index})")

    names = list(result.values)
    values = np.array([[vals.get(name, np.nan) for name in names] for vals, _ in outputs], dtype=float)
    null_grids = [g for _, g in outputs] if keep_nulls else None
    return NullReplicateSet(result.index, names, result.values, values, null_method, family,
                            qlow, qhigh, null_grids=null_grids)


def indictest(
    x,
    nulln: int = 99,
    null_method: str = "perm",
    family: Optional[str] = None,
    null_control: Optional[dict] = None,
    qlow: float = 0.05,
    qhigh: float = 0.95,
    seed=None,
    context: Optional[ExecutionContext] = None,
    replicate_context: Optional[ExecutionContext] = None,
    keep_nulls: bool = False,
    overrides: Optional[Dict[int, dict]] = None,
    verbose: bool = False,
) -> IndicatorTest:
    """
    Test indicator values against a null model.

    For each grid of the trend, a null model is fitted once, ``nulln`` null
    grids are drawn (each from its own random stream), the trend's indicator
    function is recomputed on every one of them and the observed value is
    compared with the resulting null distribution.

    Parameters
    ----------
    x : Trend or IndicatorResult
        Output of :func:`compute_indicator` (or one of its results).
    nulln : int, default 99
        Number of null replicates per grid (>= 1).
    null_method : {"perm", "intercept", "smooth"}, default "perm"
        Null model, see :mod:`spatialews.nullmodels`.
    family : {"binomial", "gaussian"}, optional
        GLM family of the intercept/smooth nulls. When None it is chosen from
        each grid's type and a single ``NullFamilyWarning`` is emitted.
    null_control : dict, optional
        Options of the smooth null (``n_knots``, ``degree``, ``alpha``, ``C``,
        ``max_iter``).
    qlow, qhigh : float, default 0.05, 0.95
        Quantiles of the null distribution reported for each indicator.
    seed : int or np.random.SeedSequence, optional
        Root of the random streams. The same seed gives identical replicate
        values whatever the execution mode.
    context : ExecutionContext, optional
        Execution across grids.
    replicate_context : ExecutionContext, optional
        Execution across the replicates of one grid; sequential by default
        (sharing the cancel event of ``context``).
    keep_nulls : bool, default False
        Keep the null grids on each NullReplicateSet.
    overrides : dict, optional
        Per-grid options, ``{grid_index: {"nulln": ..., "null_method": ...,
        "family": ...}}``. Other keys, or indices not in the trend, raise
        ``InvalidInputError``.
    verbose : bool, default False
        Print a summary of the run.

    Returns
    -------
    IndicatorTest
        One NullReplicateSet per grid, in trend order. Grids whose indicator
        or null model failed carry the error instead of replicates.

    Notes
    -----
    The p-value is ``(#{null >= observed} + 1) / (N + 1)``: low p-values mean
    the observed value is *higher* than expected under the null. The +1
    keeps p-values strictly positive and errs on the non-significant side.

    A failure to fit the null model (``NullModelFitError``) aborts the test of
    that grid; replicates are never dropped silently. Replicates on which the
    indicator is NaN or infinite are excluded from the summary of that
    indicator, counted in ``n_valid`` and reported with a ``RuntimeWarning``.

    Examples
    --------
    >>> from spatialews.indicators import generic_sews
    >>> trend = compute_indicator(grids, generic_sews())
    >>> test = indictest(trend, nulln=199, null_method="perm", seed=42)
    >>> test.to_frame()
    """
    if isinstance(x, IndicatorResult):
        if x.grid is None and x.error is None:
            raise InvalidInputError("The IndicatorResult does not carry its grid; use compute_indicator()")
        x = Trend([x], x.fun)
    if not isinstance(x, Trend):
        raise InvalidInputError(f"indictest expects a Trend or IndicatorResult, got {type(x).__name__}")
    if not (0 <= qlow <= qhigh <= 1):
        raise InvalidInputError(f"Quantiles must satisfy 0 <= qlow <= qhigh <= 1, got {qlow}, {qhigh}")

    context = context or ExecutionContext()
    if replicate_context is None:
        replicate_context = ExecutionContext(cancel_event=context.cancel_event)
    if context.mode == "processes":
        replicate_context = replicate_context.detached()
    overrides = overrides or {}
    stray = sorted(set(overrides) - {r.index for r in x.results})
    if stray:
        raise InvalidInputError(f"overrides refer to grid index(es) {stray} that are not in the trend")

    # Per-grid options
    options = []
    for result in x.results:
        opts = {"nulln": nulln, "null_method": null_method, "family": family}
        grid_overrides = overrides.get(result.index, {})
        unknown = sorted(set(grid_overrides) - set(OVERRIDE_KEYS))
        if unknown:
            raise InvalidInputError(
                f"Unknown override(s) {unknown} for grid {result.index}; allowed: {OVERRIDE_KEYS}"
            )
        opts.update(grid_overrides)
        check_null_method(opts["null_method"])
        if int(opts["nulln"]) != opts["nulln"] or opts["nulln"] < 1:
            raise InvalidInputError(f"nulln must be a positive integer, got {opts['nulln']!r}")
        options.append(opts)

    # Automatic family choice: one classification pass and one warning per call
    auto = [i for i, (r, o) in enumerate(zip(x.results, options))
            if r.ok and o["family"] is None and o["null_method"] != "perm"]
    if auto:
        chosen = resolve_family([x.results[i].grid for i in auto], None, "intercept")
        for i, fam in zip(auto, chosen):
            options[i]["family"] = fam

    seed_seq = seed if isinstance(seed, np.random.SeedSequence) else np.random.SeedSequence(seed)
    grid_streams = seed_seq.spawn(len(x.results))

    tasks = []
    for result, opts, stream in zip(x.results, options, grid_streams):
        if result.ok:
            tasks.append((result, opts["null_method"], opts["family"], null_control, int(opts["nulln"]),
                          stream, qlow, qhigh, keep_nulls, replicate_context))
    outputs = iter(run_tasks(_test_grid, tasks, context, desc="Testing grids", capture_errors=True))

    sets = []
    for result, opts in zip(x.results, options):
        if not result.ok:
            sets.append(NullReplicateSet.failed(result.index, result.error, opts["null_method"], opts["family"]))
            continue
        output = next(outputs)
        if isinstance(output, TaskFailure):
            output = NullReplicateSet.failed(result.index, output.error, opts["null_method"], opts["family"])
        sets.append(output)

    test = IndicatorTest(sets, x, null_method, nulln, family)
    partial = sorted({s.index for s in sets for name in s.names if s.n_valid[name] < s.nulln})
    if partial:
        warnings.warn(
            f"Some null replicates gave non-finite indicator values for grid(s) {partial}; "
            f"they are left out of the p-values (see n_valid)",
            RuntimeWarning,
            stacklevel=2,
        )
    if verbose:
        print(f"Null model test: {len(sets)} grid(s), method '{null_method}', {nulln} replicate(s) per grid")
        if test.errors:
            print(f"  {len(test.errors)} grid(s) could not be tested: {sorted(test.errors)}")
    return test


def indictest_grids(grids, fun, context=None, **kwargs) -> IndicatorTest:
    """Compute an indicator on ``grids`` and test it, see :func:`indictest` for ``kwargs``."""
    return indictest(compute_indicator(grids, fun, context), context=context, **kwargs)
