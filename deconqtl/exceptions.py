class DeconvolutionError(Exception):
    """Base class for the errors raised while modeling a single QTL."""


class ConfigurationError(DeconvolutionError, ValueError):
    """Raised when a genotype configuration mode or a model setting is invalid."""


class DimensionMismatchError(DeconvolutionError, ValueError):
    """
    Raised when the genotype, expression and cell count inputs do not agree on the
    number of samples.

    """


class SingularMatrixError(DeconvolutionError, ArithmeticError):
    """Raised when the regression solver cannot fit a design matrix."""


class InvalidStateError(DeconvolutionError, RuntimeError):
    """
    Raised when the collection is used out of order, e.g. a model is requested after
    it was evicted, or AIC is computed before the best models are selected. This
    indicates a usage error rather than a problem with the data.

    """
