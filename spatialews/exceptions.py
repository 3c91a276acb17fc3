class SpatialEWSError(Exception):
    """Base class for all errors raised by spatialews."""


class InvalidInputError(SpatialEWSError, ValueError):
    """
    Raised when an input has the wrong shape or type, contains missing values,
    or when an option is outside its valid range.
    """


class FitUnavailableError(SpatialEWSError):
    """
    Raised when a single distribution family cannot be identified from a sample.

    This error is non-fatal: ``fit_psd`` records it on the corresponding
    ``CandidateFit`` and moves on to the next family.
    """


class InsufficientDataError(SpatialEWSError):
    """Raised when a grid or sample is too small for any computation to proceed."""


class NullModelFitError(SpatialEWSError):
    """
    Raised when the model behind the intercept or smooth null could not be fitted.

    The significance test of the affected grid is aborted rather than run with
    fewer replicates.
    """


class CancelledError(SpatialEWSError):
    """Raised when a batch is cancelled through ``ExecutionContext.cancel_event``."""


class NullFamilyWarning(UserWarning):
    """Emitted when the null-model family was chosen automatically from the grid type."""
