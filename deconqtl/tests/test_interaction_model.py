import numpy as np
import pandas as pd
import pytest

from deconqtl.exceptions import InvalidStateError
from deconqtl.genotype_configuration import GenotypeConfiguration
from deconqtl.interaction_model import InteractionModel, ModelKey, ModelKind
from deconqtl.regression import FitResult, aic


def cfg(configuration: str) -> GenotypeConfiguration:
    return GenotypeConfiguration.from_string(configuration)


@pytest.fixture
def ct_model():
    design_matrix = pd.DataFrame(
        [[60.0, 40.0, 80.0], [50.0, 50.0, 50.0], [70.0, 30.0, 0.0]],
        columns=["Neut", "Lymph", "Lymph:GT"],
        index=["sample1", "sample2", "sample3"],
    )
    return InteractionModel(
        ModelKey(ModelKind.CT, cfg("1"), "Neut"),
        design_matrix,
        celltype_variable_indices=[(0,), (1, 2)],
        n_proportion_terms=2,
    )


def fit(coefficients, rss=2.0):
    return FitResult(
        coefficients=np.asarray(coefficients, dtype=float),
        residual_sum_of_squares=rss,
        predicted_values=np.array([1.0, 2.0, 3.0]),
    )


@pytest.mark.parametrize(
    "key, name",
    [
        (ModelKey(ModelKind.FULL, cfg("010")), "fullModel_010"),
        (ModelKey(ModelKind.FULL, cfg("01"), "Neut"), "fullModel_Neut_01"),
        (ModelKey(ModelKind.CT, cfg("01"), "Lymph"), "ctModel_Lymph_01"),
        (ModelKey(ModelKind.REST, cfg("1"), "Neut"), "ctModel_Neut_1_restModel"),
    ],
)
def test_model_names(key, name):
    assert key.name == name
    assert str(key) == name


def test_ct_key_needs_a_celltype():
    with pytest.raises(ValueError, match="needs a cell type"):
        ModelKey(ModelKind.CT, cfg("01"))


def test_unfitted_model(ct_model):
    assert not ct_model.is_fitted
    assert ct_model.number_of_parameters == 3
    assert ct_model.genotype_configuration == cfg("1")
    with pytest.raises(InvalidStateError, match="has not been fit"):
        ct_model.residual_sum_of_squares
    with pytest.raises(InvalidStateError, match="has not been fit"):
        ct_model.coefficients
    with pytest.raises(InvalidStateError):
        ct_model.aic


def test_set_fit(ct_model):
    ct_model.set_fit(fit([0.5, 0.0, 0.2]))

    assert ct_model.is_fitted
    assert ct_model.residual_sum_of_squares == 2.0
    assert ct_model.n_nonzero_interaction_terms == 1
    assert ct_model.celltype_betas() == [(0.5,), (0.0, 0.2)]


def test_set_fit_wrong_number_of_coefficients(ct_model):
    with pytest.raises(ValueError, match="Expected 3 coefficients"):
        ct_model.set_fit(fit([0.5, 0.0]))


def test_proportion_betas_are_not_counted(ct_model):
    ct_model.set_fit(fit([1.0, 1.0, 0.0]))
    assert ct_model.n_nonzero_interaction_terms == 0


def test_aic_and_delta(ct_model):
    ct_model.set_fit(fit([0.5, 0.0, 0.2], rss=6.0))

    value = ct_model.set_aic(aic)

    assert value == pytest.approx(aic(6.0, 3, 3))
    assert ct_model.aic == value
    assert ct_model.set_aic_delta(value - 1.5) == pytest.approx(1.5)
    assert ct_model.aic_delta == pytest.approx(1.5)


def test_release(ct_model):
    ct_model.set_fit(fit([0.5, 0.0, 0.2]))

    ct_model.release()

    assert ct_model.released
    with pytest.raises(InvalidStateError, match="released"):
        ct_model.design_matrix
    with pytest.raises(InvalidStateError):
        ct_model.coefficients
    with pytest.raises(InvalidStateError, match="released"):
        ct_model.set_fit(fit([0.5, 0.0, 0.2]))


def test_clean_up_keeps_summary_values(ct_model):
    ct_model.set_fit(fit([0.5, 0.0, 0.2], rss=6.0))
    ct_model.set_aic(aic)

    ct_model.clean_up(remove_predicted_values=False)
    np.testing.assert_allclose(ct_model.predicted_values, [1.0, 2.0, 3.0])

    ct_model.clean_up()
    with pytest.raises(InvalidStateError):
        ct_model.design_matrix
    with pytest.raises(InvalidStateError, match="cleaned up"):
        ct_model.predicted_values
    assert ct_model.residual_sum_of_squares == 6.0
    assert ct_model.aic == pytest.approx(aic(6.0, 3, 3))
    np.testing.assert_allclose(ct_model.coefficients, [0.5, 0.0, 0.2])
    assert "ctModel_Neut_1" in repr(ct_model)
