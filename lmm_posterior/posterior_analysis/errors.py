class PosteriorSummaryError(ValueError):
    """Base class for invalid inputs to the posterior summary pipeline"""


class InsufficientDrawsError(PosteriorSummaryError):
    """Too few draws (or replicates) for the requested computation"""


class InvalidParameterError(PosteriorSummaryError):
    """Unknown parameter name or index, or an argument outside its valid range"""


class DegenerateVarianceError(PosteriorSummaryError):
    """A variance component is exactly zero, so the correlation is undefined"""


class EmptyReplicateSetError(PosteriorSummaryError):
    """A posterior predictive check was requested without any replicate data sets"""
