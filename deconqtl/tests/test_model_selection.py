import numpy as np
import pandas as pd
import pytest

from deconqtl.genotype_configuration import GenotypeConfiguration
from deconqtl.interaction_model import InteractionModel, ModelKey, ModelKind
from deconqtl.model_selection import (
    BestModelTracker,
    CandidateScore,
    is_better,
    merge_best_betas,
    select_best_model,
    update_best_betas,
)
from deconqtl.regression import FitResult


def run_tracker(scores, select_most_betas=False):
    tracker = BestModelTracker(select_most_betas)
    losers = [tracker.offer(CandidateScore(*score)) for score in scores]
    return tracker.best.name, losers


def test_first_candidate_always_wins():
    assert is_better(CandidateScore("a", 100.0, 0), None)
    assert is_better(CandidateScore("a", 100.0, 0), None, select_most_betas=True)


def test_lowest_rss_wins():
    best, losers = run_tracker([("a", 5.0), ("b", 3.0), ("c", 4.0)])
    assert best == "b"
    assert losers == [None, "a", "c"]


def test_equal_rss_last_candidate_wins():
    best, losers = run_tracker([("a", 3.0), ("b", 3.0), ("c", 4.0)])
    assert best == "b"
    assert losers == [None, "a", "c"]


def test_most_non_zero_betas_wins_over_rss():
    scores = [("a", 1.0, 1), ("b", 9.0, 2), ("c", 0.5, 1)]
    assert run_tracker(scores, select_most_betas=True)[0] == "b"
    assert run_tracker(scores, select_most_betas=False)[0] == "c"


def test_non_zero_tie_broken_by_rss():
    scores = [("a", 4.0, 2), ("b", 3.0, 2), ("c", 3.5, 2), ("d", 3.0, 2)]
    best, losers = run_tracker(scores, select_most_betas=True)
    assert best == "d"
    assert losers == [None, "a", "c", "b"]


def test_selection_is_reproducible():
    scores = [("a", 2.0, 1), ("b", 2.0, 0), ("c", 1.0, 1), ("d", 1.0, 1)]
    results = {run_tracker(scores, select_most_betas=True)[0] for _ in range(5)}
    assert results == {"d"}


def test_best_betas():
    best_betas = update_best_betas(None, np.array([-1.0, 2.0, 0.5]))
    np.testing.assert_allclose(best_betas, [0.0, 2.0, 0.5])
    best_betas = update_best_betas(best_betas, np.array([3.0, 1.0, 0.0]))
    np.testing.assert_allclose(best_betas, [3.0, 2.0, 0.5])

    merged = merge_best_betas([None, np.array([1.0, 0.0]), np.array([0.0, 4.0])])
    np.testing.assert_allclose(merged, [1.0, 4.0])
    assert merge_best_betas([None, None]) is None


def make_candidates(rss_values):
    models = []
    for i, rss in enumerate(rss_values):
        configuration = GenotypeConfiguration.from_string(format(i, "03b"))
        design_matrix = pd.DataFrame(
            np.full((3, 4), float(rss)), columns=["A", "B", "A:GT", "B:GT"]
        )
        models.append(
            InteractionModel(
                ModelKey(ModelKind.FULL, configuration),
                design_matrix,
                celltype_variable_indices=[(0, 2), (1, 3)],
                n_proportion_terms=2,
            )
        )
    return models


def rss_from_matrix_fitter(coefficients_by_rss=None):
    coefficients_by_rss = coefficients_by_rss or {}

    def fitter(design_matrix, response, non_negative):
        rss = float(np.asarray(design_matrix)[0, 0])
        return FitResult(
            coefficients=np.asarray(coefficients_by_rss.get(rss, np.zeros(4))),
            residual_sum_of_squares=rss,
            predicted_values=np.zeros(3),
        )

    return fitter


def test_select_best_model_evicts_losers_immediately():
    models = make_candidates([5.0, 3.0, 4.0, 1.0])
    evicted = []

    result = select_best_model(
        models,
        response=np.zeros(3),
        fitter=rss_from_matrix_fitter(),
        non_negative=True,
        evict=lambda model: evicted.append(model.name),
    )

    assert result.best is models[3]
    assert evicted == ["fullModel_000", "fullModel_010", "fullModel_001"]
    assert result.best_betas is None


def test_select_best_model_keeps_protected_losers():
    models = make_candidates([5.0, 3.0, 4.0])
    evicted = []

    result = select_best_model(
        models,
        response=np.zeros(3),
        fitter=rss_from_matrix_fitter(),
        non_negative=True,
        evict=lambda model: evicted.append(model.name),
        protected=[models[2].key],
    )

    assert result.best is models[1]
    assert evicted == ["fullModel_000"]


def test_select_best_model_counts_interaction_betas_only():
    # the first model has large proportion betas but no interaction betas
    coefficients = {
        2.0: [9.0, 9.0, 0.0, 0.0],
        5.0: [0.0, 0.0, 1.0, 1.0],
        4.0: [0.0, 0.0, 1.0, 0.0],
    }
    models = make_candidates([2.0, 5.0, 4.0])

    result = select_best_model(
        models,
        response=np.zeros(3),
        fitter=rss_from_matrix_fitter(coefficients),
        non_negative=True,
        evict=lambda model: None,
        select_most_betas=True,
        track_best_betas=True,
    )

    assert result.best is models[1]
    np.testing.assert_allclose(result.best_betas, [9.0, 9.0, 1.0, 1.0])


def test_select_best_model_same_winner_in_parallel():
    rss_values = [7.0, 3.0, 6.0, 3.0, 8.0, 2.5, 2.5, 9.0]

    sequential = select_best_model(
        make_candidates(rss_values),
        response=np.zeros(3),
        fitter=rss_from_matrix_fitter(),
        non_negative=True,
        evict=lambda model: None,
    )
    parallel = select_best_model(
        make_candidates(rss_values),
        response=np.zeros(3),
        fitter=rss_from_matrix_fitter(),
        non_negative=True,
        evict=lambda model: None,
        n_jobs=2,
    )

    assert sequential.best.name == parallel.best.name == "fullModel_110"


def test_select_best_model_without_candidates():
    with pytest.raises(ValueError, match="No candidate models"):
        select_best_model(
            [],
            response=np.zeros(3),
            fitter=rss_from_matrix_fitter(),
            non_negative=True,
            evict=lambda model: None,
        )
