import numpy as np
import pandas as pd
import pytest

from deconqtl.cell_count import CellCount
from deconqtl.regression import FitResult


@pytest.fixture
def sample_cellcount_df():
    """Three samples, two cell types, percentages summing to 100."""
    return pd.DataFrame(
        {
            "Neut": [60.0, 50.0, 70.0],
            "Lymph": [40.0, 50.0, 30.0],
        },
        index=["sample1", "sample2", "sample3"],
    )


@pytest.fixture
def sample_cell_count(sample_cellcount_df):
    return CellCount(sample_cellcount_df)


@pytest.fixture
def sample_genotypes():
    return np.array([0.0, 1.0, 2.0])


@pytest.fixture
def sample_expression():
    return np.array([1.0, 2.0, 3.0])


@pytest.fixture
def interaction_rss_fitter():
    """
    Deterministic stand-in for the regression solver: the RSS is the sum of squares
    of the interaction columns and all coefficients are zero.

    """
    calls = []

    def fitter(design_matrix, response, non_negative):
        calls.append(list(design_matrix.columns))
        values = np.asarray(design_matrix, dtype=float)
        interaction = [i for i, c in enumerate(design_matrix.columns) if ":GT" in c]
        rss = float((values[:, interaction] ** 2).sum())
        return FitResult(
            coefficients=np.zeros(values.shape[1]),
            residual_sum_of_squares=rss,
            predicted_values=np.zeros(values.shape[0]),
        )

    fitter.calls = calls
    return fitter


@pytest.fixture
def random_locus():
    """
    Synthetic QTL with 40 samples and three cell types where the genotype effect on
    expression runs through the first cell type, with the swapped orientation.

    """
    rng = np.random.default_rng(42)
    n_samples = 40
    raw = rng.dirichlet([4.0, 3.0, 2.0], size=n_samples) * 100
    cellcount_df = pd.DataFrame(
        raw,
        columns=["Neut", "Lymph", "Mono"],
        index=[f"sample{i + 1}" for i in range(n_samples)],
    )
    genotypes = rng.integers(0, 3, size=n_samples).astype(float)
    swapped = 2 - genotypes
    expression = (
        0.05 * raw[:, 0]
        + 0.03 * raw[:, 1]
        + 0.04 * raw[:, 2]
        + 0.08 * raw[:, 0] * swapped
        + rng.normal(0, 0.1, size=n_samples)
    )
    return CellCount(cellcount_df), genotypes, expression
