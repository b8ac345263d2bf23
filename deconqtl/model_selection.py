import logging
from collections.abc import Callable, Hashable, Iterable, Iterator, Sequence
from dataclasses import dataclass

import numpy as np
from joblib import Parallel, delayed

from deconqtl.interaction_model import InteractionModel
from deconqtl.regression import FitResult, Fitter

logger = logging.getLogger("main")


@dataclass(frozen=True)
class CandidateScore:
    """What the selection looks at for one fitted candidate model."""

    name: Hashable
    residual_sum_of_squares: float
    n_nonzero: int = 0


def is_better(
    candidate: CandidateScore,
    best: CandidateScore | None,
    select_most_betas: bool = False,
) -> bool:
    """
    Whether `candidate` replaces the current best model.

    With `select_most_betas` the candidate with the most positive interaction
    coefficients wins, ties are broken by the lowest RSS. Otherwise only the RSS is
    used. An RSS equal to the current best wins, so among exact ties the last
    candidate is selected.

    """
    if best is None:
        return True
    lower_or_equal_rss = candidate.residual_sum_of_squares <= (
        best.residual_sum_of_squares
    )
    if select_most_betas:
        return candidate.n_nonzero > best.n_nonzero or (
            candidate.n_nonzero == best.n_nonzero and lower_or_equal_rss
        )
    return lower_or_equal_rss


class BestModelTracker:
    """
    Running best of a sequence of candidates.

    `offer` returns the name of the candidate that lost, which is either the offered
    candidate or the previous best it displaced, so that the caller can release it
    right away.

    """

    def __init__(self, select_most_betas: bool = False):
        self.select_most_betas = select_most_betas
        self._best: CandidateScore | None = None

    @property
    def best(self) -> CandidateScore | None:
        return self._best

    def offer(self, candidate: CandidateScore) -> Hashable | None:
        if is_better(candidate, self._best, self.select_most_betas):
            loser = None if self._best is None else self._best.name
            self._best = candidate
            return loser
        return candidate.name


def update_best_betas(
    best_betas: np.ndarray | None, coefficients: np.ndarray
) -> np.ndarray:
    """Element-wise maximum of the coefficients seen so far, starting from zero."""
    coefficients = np.asarray(coefficients, dtype=float)
    if best_betas is None:
        best_betas = np.zeros_like(coefficients)
    return np.maximum(best_betas, coefficients)


def merge_best_betas(partial_best_betas: Iterable[np.ndarray | None]) -> np.ndarray | None:
    """Combine best betas that were collected separately, e.g. per cell type."""
    merged = None
    for best_betas in partial_best_betas:
        if best_betas is not None:
            merged = update_best_betas(merged, best_betas)
    return merged


def fit_candidates(
    models: Sequence[InteractionModel],
    response: np.ndarray,
    fitter: Fitter,
    non_negative: bool,
    n_jobs: int = 1,
) -> Iterator[tuple[InteractionModel, FitResult]]:
    """
    Fit every candidate and yield them with their result in candidate order.

    With `n_jobs != 1` the fits run in joblib worker threads. The results are still
    yielded in candidate order, so the selection does not depend on `n_jobs`.

    """
    if n_jobs == 1:
        for model in models:
            yield model, fitter(model.design_matrix, response, non_negative)
        return

    parallel = Parallel(n_jobs=n_jobs, prefer="threads", return_as="generator")
    results = parallel(
        delayed(fitter)(model.design_matrix, response, non_negative)
        for model in models
    )
    yield from zip(models, results)


@dataclass
class SelectionResult:
    best: InteractionModel
    best_betas: np.ndarray | None = None


def select_best_model(
    models: Sequence[InteractionModel],
    response: np.ndarray,
    fitter: Fitter,
    non_negative: bool,
    evict: Callable[[InteractionModel], None],
    select_most_betas: bool = False,
    protected: Iterable[Hashable] = (),
    track_best_betas: bool = False,
    n_jobs: int = 1,
) -> SelectionResult:
    """
    Fit the candidate models and select the best one.

    Every candidate that loses, either when it is offered or when a later candidate
    displaces it, is passed to `evict` at once, unless its key is in `protected`.

    :param models: Candidate models, the order decides exact ties.
    :param response: Expression values.
    :param fitter: Regression fitting function, see `deconqtl.regression.fit_model`.
    :param non_negative: Fit with NNLS instead of OLS.
    :param evict: Called with every losing, unprotected candidate.
    :param select_most_betas: See `is_better`.
    :param protected: Keys of models that are kept even when they lose.
    :param track_best_betas: Keep the element-wise maximum of all coefficients.
    :param n_jobs: Number of joblib workers for fitting.
    :return: The best model and, if tracked, the best betas.
    :raises ValueError: If there are no candidates.

    """
    if not models:
        raise ValueError("No candidate models to select from.")

    protected = set(protected)
    tracker = BestModelTracker(select_most_betas)
    undecided: dict[Hashable, InteractionModel] = {}
    best_betas = None

    for model, result in fit_candidates(
        models, response, fitter, non_negative, n_jobs=n_jobs
    ):
        model.set_fit(result)
        if track_best_betas:
            best_betas = update_best_betas(best_betas, model.coefficients)

        undecided[model.key] = model
        score = CandidateScore(
            model.key,
            model.residual_sum_of_squares,
            model.n_nonzero_interaction_terms if select_most_betas else 0,
        )
        loser_key = tracker.offer(score)
        logger.debug(
            f"{model.name}: RSS={score.residual_sum_of_squares:.6g}, "
            f"non-zero interaction betas={score.n_nonzero}, "
            f"best so far={tracker.best.name}"
        )
        if loser_key is None:
            continue
        loser = undecided.pop(loser_key)
        if loser_key in protected:
            logger.debug(f"Keeping {loser.name}, it is needed for the AIC comparison")
        else:
            evict(loser)

    return SelectionResult(best=undecided[tracker.best.name], best_betas=best_betas)
