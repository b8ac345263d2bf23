"""
deconqtl: cell type specific eQTL deconvolution.

For one QTL, build regression models of expression on cell type proportions and
their genotype interaction terms, search over the genotype orientation of every
interaction term, and select the best full and cell type (ct) models by RSS. The
AIC delta between the best full model and the matching ct model of each cell type
is exposed for significance testing.
"""

__version__ = "0.1.0"

from deconqtl.cell_count import CellCount
from deconqtl.exceptions import (
    ConfigurationError,
    DeconvolutionError,
    DimensionMismatchError,
    InvalidStateError,
    SingularMatrixError,
)
from deconqtl.genotype_configuration import (
    GenotypeConfiguration,
    enumerate_configurations,
    swap_genotypes,
)
from deconqtl.interaction_model import InteractionModel, ModelKey, ModelKind
from deconqtl.interaction_model_collection import InteractionModelCollection, Phase
from deconqtl.regression import FitResult, aic, fit_model
from deconqtl.settings import ModelSettings

__all__ = [
    "CellCount",
    "ConfigurationError",
    "DeconvolutionError",
    "DimensionMismatchError",
    "FitResult",
    "GenotypeConfiguration",
    "InteractionModel",
    "InteractionModelCollection",
    "InvalidStateError",
    "ModelKey",
    "ModelKind",
    "ModelSettings",
    "Phase",
    "SingularMatrixError",
    "aic",
    "enumerate_configurations",
    "fit_model",
    "swap_genotypes",
]
