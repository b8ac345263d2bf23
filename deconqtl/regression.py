import logging
import math
from dataclasses import dataclass
from typing import Protocol

import numpy as np
import pandas as pd
from scipy.optimize import nnls
from sklearn.linear_model import LinearRegression

from deconqtl.exceptions import DimensionMismatchError, SingularMatrixError

logger = logging.getLogger("main")


@dataclass
class FitResult:
    """Result of fitting one design matrix against the expression values."""

    #: One coefficient per design matrix column.
    coefficients: np.ndarray
    residual_sum_of_squares: float
    predicted_values: np.ndarray


class Fitter(Protocol):
    def __call__(
        self,
        design_matrix: pd.DataFrame | np.ndarray,
        response: np.ndarray,
        non_negative: bool,
    ) -> FitResult: ...


class AICFunction(Protocol):
    def __call__(
        self, residual_sum_of_squares: float, n_parameters: int, n_samples: int
    ) -> float: ...


def fit_model(
    design_matrix: pd.DataFrame | np.ndarray,
    response: np.ndarray,
    non_negative: bool = True,
) -> FitResult:
    """
    Regress `response` on `design_matrix` without an intercept.

    The cell type proportion columns take the role of the intercept, so none is
    added. With `non_negative` the coefficients are constrained to be >= 0 (NNLS,
    `scipy.optimize.nnls`), otherwise ordinary least squares is used
    (`sklearn.linear_model.LinearRegression`).

    :param design_matrix: samples x terms matrix.
    :param response: Expression value of every sample.
    :param non_negative: Use NNLS instead of OLS. Default is True.
    :return: The coefficients, RSS and predicted values.
    :raises DimensionMismatchError: If the number of rows of `design_matrix` is not
        the length of `response`.
    :raises SingularMatrixError: If the design matrix contains non-finite values,
        is rank deficient (OLS) or the NNLS solver does not converge.

    """
    x = np.asarray(design_matrix, dtype=float)
    y = np.asarray(response, dtype=float).ravel()

    if x.ndim != 2:
        raise DimensionMismatchError(
            f"Design matrix must be two dimensional, has shape {x.shape}"
        )
    if x.shape[0] != y.shape[0]:
        raise DimensionMismatchError(
            f"Design matrix has {x.shape[0]} rows but there are {y.shape[0]} "
            "expression values. The counts file and expression and/or genotype file "
            "do not have equal number of samples."
        )
    if not np.isfinite(x).all() or not np.isfinite(y).all():
        raise SingularMatrixError(
            "Design matrix or expression values contain NaN or infinite values."
        )

    if non_negative:
        try:
            coefficients, _ = nnls(x, y)
        except RuntimeError as exc:
            logger.error(f"NNLS did not converge: {exc}")
            raise SingularMatrixError(f"NNLS did not converge: {exc}") from exc
    else:
        rank = np.linalg.matrix_rank(x)
        if rank < x.shape[1]:
            message = (
                f"Design matrix is singular: rank {rank} with {x.shape[1]} terms "
                f"and {x.shape[0]} samples."
            )
            logger.error(message)
            raise SingularMatrixError(message)
        estimator = LinearRegression(fit_intercept=False)
        estimator.fit(x, y)
        coefficients = estimator.coef_

    coefficients = np.asarray(coefficients, dtype=float)
    predicted_values = x @ coefficients
    residuals = y - predicted_values

    return FitResult(
        coefficients=coefficients,
        residual_sum_of_squares=float(residuals @ residuals),
        predicted_values=predicted_values,
    )


def aic(residual_sum_of_squares: float, n_parameters: int, n_samples: int) -> float:
    """
    Akaike information criterion of a least squares fit, up to a constant:
    `n * ln(RSS / n) + 2 * k`.

    :param residual_sum_of_squares: RSS of the fitted model.
    :param n_parameters: Number of coefficients of the model.
    :param n_samples: Number of samples the model was fit on.
    :return: The AIC. A perfect fit (RSS of 0) gives -inf.
    :raises ValueError: If `n_samples` is not positive or the RSS is negative.

    """
    if n_samples <= 0:
        raise ValueError(f"n_samples must be positive, was: {n_samples}")
    if residual_sum_of_squares < 0:
        raise ValueError(
            f"Residual sum of squares can not be negative: {residual_sum_of_squares}"
        )
    if residual_sum_of_squares == 0:
        return -math.inf
    return n_samples * math.log(residual_sum_of_squares / n_samples) + 2 * n_parameters
