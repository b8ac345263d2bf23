import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np
import pandas as pd

from deconqtl.exceptions import InvalidStateError
from deconqtl.genotype_configuration import GenotypeConfiguration
from deconqtl.regression import AICFunction, FitResult

logger = logging.getLogger("main")


class ModelKind(Enum):
    FULL = "full"
    CT = "ct"
    REST = "ct-rest-auxiliary"


@dataclass(frozen=True)
class ModelKey:
    """
    Identifies one interaction model of a QTL.

    `celltype` is None only for the full models that include all cell types jointly.
    The string form is the model name, e.g. `fullModel_010`, `fullModel_Neut_01`,
    `ctModel_Neut_01` or `ctModel_Neut_1_restModel`.

    """

    kind: ModelKind
    configuration: GenotypeConfiguration
    celltype: str | None = None

    def __post_init__(self):
        if self.kind is not ModelKind.FULL and self.celltype is None:
            raise ValueError(f"A {self.kind.value} model key needs a cell type.")

    @property
    def name(self) -> str:
        if self.kind is ModelKind.FULL:
            if self.celltype is None:
                return f"fullModel_{self.configuration}"
            return f"fullModel_{self.celltype}_{self.configuration}"
        if self.kind is ModelKind.CT:
            return f"ctModel_{self.celltype}_{self.configuration}"
        return f"ctModel_{self.celltype}_{self.configuration}_restModel"

    def __str__(self) -> str:
        return self.name


class InteractionModel:
    """
    One regression model of a QTL: the design matrix, which cell type terms it holds,
    and after fitting its coefficients, RSS and AIC.

    Models that lose the best model selection are released, which drops the design
    matrix and the fit. After `clean_up` only the small summary values (name, RSS,
    AIC, coefficients) remain.

    """

    def __init__(
        self,
        key: ModelKey,
        design_matrix: pd.DataFrame,
        celltype_variable_indices: list[tuple[int, ...]],
        n_proportion_terms: int,
        rest_model_key: ModelKey | None = None,
    ):
        """
        :param key: Identifier of the model.
        :param design_matrix: samples x terms DataFrame, the columns are the
            variable names.
        :param celltype_variable_indices: Per cell type, the column index of its
            proportion term and, if present, of its interaction term.
        :param n_proportion_terms: Number of leading columns that are proportion
            terms. The remaining columns are interaction terms.
        :param rest_model_key: Key of the linked rest model (base ct models only).

        """
        if not isinstance(design_matrix, pd.DataFrame):
            raise ValueError("design_matrix must be a DataFrame.")
        if not 0 <= n_proportion_terms <= design_matrix.shape[1]:
            raise ValueError(
                f"n_proportion_terms must be between 0 and {design_matrix.shape[1]}."
            )
        self.key = key
        self._design_matrix: pd.DataFrame | None = design_matrix
        self.variable_names = [str(c) for c in design_matrix.columns]
        self.celltype_variable_indices = [tuple(i) for i in celltype_variable_indices]
        self.n_proportion_terms = n_proportion_terms
        self.rest_model_key = rest_model_key
        self.number_of_samples = design_matrix.shape[0]
        self.number_of_terms = design_matrix.shape[1]

        self._coefficients: np.ndarray | None = None
        self._residual_sum_of_squares: float | None = None
        self._predicted_values: np.ndarray | None = None
        self._aic: float | None = None
        self._aic_delta: float | None = None
        self.released = False

    def __repr__(self) -> str:
        rss = self._residual_sum_of_squares
        return (
            f"InteractionModel(name={self.name!r}, terms={self.number_of_terms}, "
            f"rss={rss if rss is None else round(rss, 4)}, released={self.released})"
        )

    @property
    def name(self) -> str:
        return self.key.name

    @property
    def kind(self) -> ModelKind:
        return self.key.kind

    @property
    def celltype(self) -> str | None:
        return self.key.celltype

    @property
    def genotype_configuration(self) -> GenotypeConfiguration:
        return self.key.configuration

    @property
    def number_of_parameters(self) -> int:
        return self.number_of_terms

    @property
    def design_matrix(self) -> pd.DataFrame:
        if self._design_matrix is None:
            raise InvalidStateError(
                f"The design matrix of {self.name} has been released."
            )
        return self._design_matrix

    @property
    def is_fitted(self) -> bool:
        return self._residual_sum_of_squares is not None

    def set_fit(self, result: FitResult) -> None:
        """Store the result of fitting this model's design matrix."""
        if self.released:
            raise InvalidStateError(f"{self.name} has been released, can not fit it.")
        coefficients = np.asarray(result.coefficients, dtype=float)
        if coefficients.shape != (self.number_of_terms,):
            raise ValueError(
                f"Expected {self.number_of_terms} coefficients for {self.name}, "
                f"got {coefficients.shape}"
            )
        self._coefficients = coefficients
        self._residual_sum_of_squares = float(result.residual_sum_of_squares)
        self._predicted_values = np.asarray(result.predicted_values, dtype=float)

    @property
    def coefficients(self) -> np.ndarray:
        if self._coefficients is None:
            raise InvalidStateError(f"{self.name} has not been fit.")
        return self._coefficients

    @property
    def residual_sum_of_squares(self) -> float:
        if self._residual_sum_of_squares is None:
            raise InvalidStateError(f"{self.name} has not been fit.")
        return self._residual_sum_of_squares

    @property
    def predicted_values(self) -> np.ndarray:
        if self._predicted_values is None:
            raise InvalidStateError(
                f"{self.name} has no predicted values, it was not fit or they "
                "have been cleaned up."
            )
        return self._predicted_values

    @property
    def n_nonzero_interaction_terms(self) -> int:
        """Number of strictly positive coefficients of the interaction terms."""
        return int((self.coefficients[self.n_proportion_terms :] > 0).sum())

    def set_aic(self, aic_function: AICFunction) -> float:
        self._aic = float(
            aic_function(
                self.residual_sum_of_squares,
                self.number_of_parameters,
                self.number_of_samples,
            )
        )
        return self._aic

    @property
    def aic(self) -> float:
        if self._aic is None:
            raise InvalidStateError(f"AIC of {self.name} has not been calculated.")
        return self._aic

    def set_aic_delta(self, full_model_aic: float) -> float:
        """AIC of this model minus the AIC of the full model it is compared to."""
        self._aic_delta = self.aic - full_model_aic
        return self._aic_delta

    @property
    def aic_delta(self) -> float:
        if self._aic_delta is None:
            raise InvalidStateError(f"AIC delta of {self.name} has not been set.")
        return self._aic_delta

    def celltype_betas(self) -> list[tuple[float, ...]]:
        """
        Per cell type, the coefficients of its proportion term and its interaction
        term (if the model has one).

        """
        coefficients = self.coefficients
        return [
            tuple(float(coefficients[i]) for i in index)
            for index in self.celltype_variable_indices
        ]

    def release(self) -> None:
        """Drop everything of a model that lost the selection."""
        self._design_matrix = None
        self._coefficients = None
        self._predicted_values = None
        self.released = True

    def clean_up(self, remove_predicted_values: bool = True) -> None:
        """
        Drop the large per sample arrays, keeping name, RSS, AIC and coefficients.

        :param remove_predicted_values: Also drop the predicted values.

        """
        self._design_matrix = None
        if remove_predicted_values:
            self._predicted_values = None
