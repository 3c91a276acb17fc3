from .exceptions import (
    SpatialEWSError,
    InvalidInputError,
    FitUnavailableError,
    InsufficientDataError,
    NullModelFitError,
    CancelledError,
    NullFamilyWarning,
)
from .grid import (
    Grid,
    as_grid,
    as_grids,
)
from .patches import (
    Patch,
    label_patches,
    patchsizes,
    extract_patches,
    percolation,
)
from .psd import (
    FAMILIES,
    CandidateFit,
    PSDFit,
    fit_psd,
    pl_fit,
    tpl_fit,
    lnorm_fit,
    exp_fit,
    xmin_estim,
    plrange,
    rpl,
    dpl,
    ppl,
    dtpl,
    ptpl,
    dlnorm,
    plnorm,
    dexp,
    pexp,
)
from .spectrum import (
    rspectrum,
    sdr,
)
from .generic import (
    coarse_grain,
    raw_cg_variance,
    raw_cg_skewness,
    raw_cg_moran,
    generic_indicators,
)
from .nullmodels import (
    NullModel,
    null_perm,
    null_intercept,
    null_smooth,
    generate_nulls,
)
from .execution import (
    ExecutionContext,
    run_tasks,
)
from .core import (
    IndicatorResult,
    Trend,
    NullReplicateSet,
    IndicatorTest,
    compute_indicator,
    indictest,
    indictest_grids,
)
from .indicators import (
    generic_sews,
    spectral_sews,
    patchdistr_sews,
    combine,
)

__version__ = '0.1.0'
__author__ = 'spatialews developers'

__all__ = [
    # Core functionality
    'Grid',
    'as_grid',
    'as_grids',
    'compute_indicator',
    'indictest',
    'indictest_grids',
    'IndicatorResult',
    'Trend',
    'NullReplicateSet',
    'IndicatorTest',
    'ExecutionContext',
    'run_tasks',

    # Indicator functions
    'generic_sews',
    'spectral_sews',
    'patchdistr_sews',
    'combine',
    'coarse_grain',
    'raw_cg_variance',
    'raw_cg_skewness',
    'raw_cg_moran',
    'generic_indicators',
    'rspectrum',
    'sdr',

    # Patches and their size distribution
    'Patch',
    'label_patches',
    'patchsizes',
    'extract_patches',
    'percolation',
    'FAMILIES',
    'CandidateFit',
    'PSDFit',
    'fit_psd',
    'pl_fit',
    'tpl_fit',
    'lnorm_fit',
    'exp_fit',
    'xmin_estim',
    'plrange',
    'rpl',
    'dpl',
    'ppl',
    'dtpl',
    'ptpl',
    'dlnorm',
    'plnorm',
    'dexp',
    'pexp',

    # Null models
    'NullModel',
    'null_perm',
    'null_intercept',
    'null_smooth',
    'generate_nulls',

    # Errors
    'SpatialEWSError',
    'InvalidInputError',
    'FitUnavailableError',
    'InsufficientDataError',
    'NullModelFitError',
    'CancelledError',
    'NullFamilyWarning',
]
