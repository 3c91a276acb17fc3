"""
Null models: randomised surrogates of an observed grid.

Three null hypotheses are available:

- ``perm``: random permutation of all cell values. Keeps the exact value
  distribution, destroys all spatial structure.
- ``intercept``: intercept-only GLM (binomial for boolean grids, gaussian for
  continuous ones); each null cell is drawn independently from the fitted
  distribution. Keeps the expected value distribution, not exact counts.
- ``smooth``: GLM on a tensor-product B-spline basis of row/column position;
  each null cell is drawn around its locally predicted mean. Keeps the
  large-scale trend and destroys small-scale structure. This is the most
  conservative null.

A model is fitted once per grid and then drawn from repeatedly, each draw
using its own random generator.
"""
import warnings

import numpy as np
from sklearn.linear_model import LogisticRegression, Ridge
from sklearn.preprocessing import SplineTransformer

from .exceptions import InvalidInputError, NullFamilyWarning, NullModelFitError
from .grid import Grid, as_grid

NULL_METHODS = ("perm", "intercept", "smooth")
NULL_FAMILIES = ("binomial", "gaussian")

DEFAULT_NULL_CONTROL = {
    "n_knots": 6,
    "degree": 3,
    "alpha": 1.0,
    "C": 1.0,
    "max_iter": 1000,
}


def check_null_method(method):
    if method not in NULL_METHODS:
        raise InvalidInputError(f"null_method must be one of {NULL_METHODS}, got {method!r}")
    return method


def classify_family(grid):
    """GLM family matching the value type of a grid: binomial for boolean grids, gaussian otherwise."""
    return "binomial" if as_grid(grid).is_boolean else "gaussian"


def resolve_family(grids, family=None, method="intercept"):
    """
    Family used for each grid of a null-model call.

    An explicit ``family`` applies to every grid. Otherwise each grid is
    classified with :func:`classify_family` and a single ``NullFamilyWarning``
    is emitted for the whole call. ``perm`` does not use a family: None is
    returned for every grid and nothing is emitted.
    """
    grids = [as_grid(g) for g in grids]
    if method == "perm":
        return [None] * len(grids)
    if family is not None:
        if family not in NULL_FAMILIES:
            raise InvalidInputError(f"family must be one of {NULL_FAMILIES}, got {family!r}")
        return [family] * len(grids)

    families = [classify_family(g) for g in grids]
    warnings.warn(
        f"Null model family chosen automatically from the grid type: {', '.join(sorted(set(families)))}. "
        f"Pass family= to choose it explicitly.",
        NullFamilyWarning,
        stacklevel=3,
    )
    return families


def _spline_basis(n, n_knots, degree):
    if n < 2:
        return np.ones((n, 1))
    positions = np.arange(n, dtype=float).reshape(-1, 1)
    transformer = SplineTransformer(n_knots=max(2, min(n_knots, n)), degree=degree, include_bias=True)
    return transformer.fit_transform(positions)


def spatial_basis(shape, n_knots=6, degree=3):
    """
    Tensor-product B-spline basis of row/column position.

    Returns an array of shape ``(rows * cols, k_rows * k_cols)`` whose row
    ``i * cols + j`` holds the basis functions evaluated at cell ``(i, j)``.
    """
    nrow, ncol = shape
    row_basis = _spline_basis(nrow, n_knots, degree)
    col_basis = _spline_basis(ncol, n_knots, degree)
    basis = np.einsum("ik,jl->ijkl", row_basis, col_basis)
    return basis.reshape(nrow * ncol, row_basis.shape[1] * col_basis.shape[1])


class NullModel:
    """
    Null model fitted to one grid, from which null grids can be drawn.

    Parameters
    ----------
    method : {"perm", "intercept", "smooth"}, default "perm"
        Null hypothesis.
    family : {"binomial", "gaussian"}, optional
        GLM family for ``intercept`` and ``smooth``. Chosen from the grid type
        (with a ``NullFamilyWarning``) when None.
    null_control : dict, optional
        Options of the smooth null: ``n_knots`` and ``degree`` of the spline
        basis along each axis, ``alpha`` (ridge penalty, gaussian), ``C``
        (inverse penalty, binomial) and ``max_iter``.

    Examples
    --------
    >>> model = NullModel("perm").fit(np.random.rand(20, 20))
    >>> null = model.draw(np.random.default_rng(1))
    """

    def __init__(self, method="perm", family=None, null_control=None):
        self.method = check_null_method(method)
        if family is not None and family not in NULL_FAMILIES:
            raise InvalidInputError(f"family must be one of {NULL_FAMILIES}, got {family!r}")
        self.family = family
        self.control = dict(DEFAULT_NULL_CONTROL)
        self.control.update(null_control or {})
        self.grid = None
        self.mean_ = None
        self.sd_ = None

    def fit(self, grid):
        """
        Fit the null model to ``grid``.

        Raises
        ------
        NullModelFitError
            If the underlying GLM does not converge or cannot be fitted.
        InvalidInputError
            If a binomial family is requested for a grid with values other than 0/1.
        """
        grid = as_grid(grid)
        self.grid = grid
        if self.method == "perm":
            return self
        if self.family is None:
            self.family = resolve_family([grid], None, self.method)[0]

        y = grid.as_float().ravel()
        if self.family == "binomial" and not np.all((y == 0) | (y == 1)):
            raise InvalidInputError("The binomial null family requires a grid of 0/1 or boolean values")

        if self.method == "intercept":
            # Intercept-only GLM: the MLE of the mean is the sample mean
            self.mean_ = np.full(y.shape, y.mean())
            self.sd_ = float(y.std())
        else:
            self.mean_, self.sd_ = self._fit_smooth(grid.shape, y)
        return self

    def _fit_smooth(self, shape, y):
        X = spatial_basis(shape, self.control["n_knots"], self.control["degree"])
        max_iter = self.control["max_iter"]
        try:
            if self.family == "binomial":
                if np.all(y == y[0]):
                    # Single class: the fitted probability is the class itself
                    return np.full(y.shape, y[0]), 0.0
                model = LogisticRegression(C=self.control["C"], max_iter=max_iter)
                model.fit(X, y.astype(int))
                if np.max(model.n_iter_) >= max_iter:
                    raise NullModelFitError(
                        f"Smooth binomial null model did not converge in {max_iter} iterations"
                    )
                return model.predict_proba(X)[:, 1], 0.0
            model = Ridge(alpha=self.control["alpha"])
            model.fit(X, y)
            mean = model.predict(X)
        except (ValueError, np.linalg.LinAlgError) as e:
            raise NullModelFitError(f"Smooth {self.family} null model could not be fitted: {e}") from e
        return mean, float(np.std(y - mean))

    def draw(self, rng=None) -> Grid:
        """
        Draw one null grid.

        Parameters
        ----------
        rng : np.random.Generator or int, optional
            Random source of this draw. Independent draws need independent
            generators (see ``numpy.random.SeedSequence.spawn``).
        """
        if self.grid is None:
            raise InvalidInputError("NullModel.draw() called before fit()")
        rng = np.random.default_rng(rng)
        shape = self.grid.shape

        if self.method == "perm":
            return Grid(rng.permutation(self.grid.values.ravel()).reshape(shape))
        if self.family == "binomial":
            return Grid((rng.random(self.mean_.size) < self.mean_).reshape(shape))
        return Grid(rng.normal(self.mean_, self.sd_).reshape(shape))

    def draw_many(self, nulln, seed=None):
        """Draw ``nulln`` null grids, each from its own spawned random stream."""
        streams = np.random.SeedSequence(seed).spawn(nulln)
        return [self.draw(np.random.default_rng(s)) for s in streams]


def null_perm(grid, rng=None) -> Grid:
    """One null grid with the cell values randomly permuted."""
    return NullModel("perm").fit(grid).draw(rng)


def null_intercept(grid, rng=None, family=None) -> Grid:
    """One null grid drawn from an intercept-only GLM fitted to ``grid``."""
    return NullModel("intercept", family).fit(grid).draw(rng)


def null_smooth(grid, rng=None, family=None, null_control=None) -> Grid:
    """One null grid drawn around a smooth spatial trend fitted to ``grid``."""
    return NullModel("smooth", family, null_control).fit(grid).draw(rng)


def generate_nulls(grid, null_method="perm", nulln=99, family=None, null_control=None, seed=None):
    """
    Generate ``nulln`` null grids for one grid.

    Returns
    -------
    list of Grid
        Null grids in replicate order; each replicate uses its own random
        stream spawned from ``seed``.
    """
    if nulln < 1:
        raise InvalidInputError(f"nulln must be >= 1, got {nulln}")
    model = NullModel(null_method, family, null_control).fit(grid)
    return model.draw_many(nulln, seed)
