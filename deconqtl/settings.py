from dataclasses import dataclass

from deconqtl.exceptions import ConfigurationError
from deconqtl.genotype_configuration import GENOTYPE_CONFIGURATION_TYPES


@dataclass(frozen=True)
class ModelSettings:
    """
    Options that decide which models an `InteractionModelCollection` builds and how
    the best ones are selected.

    :param genotype_configuration_type: How full model genotype configurations are
        enumerated: "all", "two" or "one". Ignored when `use_ols` or
        `use_base_model` is set, see `enumeration_mode`.
    :param use_base_model: Model every cell type against the rest of the cell types
        instead of all cell types jointly.
    :param use_ols: Fit with ordinary least squares instead of non-negative least
        squares. With OLS the genotype orientation is not searched.
    :param select_most_betas: Prefer the model with the most positive interaction
        coefficients, ties broken on RSS.
    :param output_best_betas: Keep the element-wise maximum of the full model
        coefficients over all candidates.
    :param n_jobs: Number of joblib workers used to fit candidate models. -1 uses
        all cores.

    """

    genotype_configuration_type: str = "all"
    use_base_model: bool = False
    use_ols: bool = False
    select_most_betas: bool = False
    output_best_betas: bool = False
    n_jobs: int = 1

    def __post_init__(self):
        if self.genotype_configuration_type not in GENOTYPE_CONFIGURATION_TYPES:
            raise ConfigurationError(
                f"configurationType should be one of "
                f"{', '.join(GENOTYPE_CONFIGURATION_TYPES)}, "
                f"was: {self.genotype_configuration_type}"
            )
        if not isinstance(self.n_jobs, int) or self.n_jobs == 0:
            raise ConfigurationError(
                f"n_jobs must be a non-zero integer, was: {self.n_jobs}"
            )

    @property
    def enumeration_mode(self) -> str:
        """
        The genotype configuration enumeration mode implied by these settings. The
        base model has a fixed number of interaction terms, so it takes precedence
        over the OLS default.

        """
        if self.use_base_model:
            return "base"
        if self.use_ols:
            return "ols-default"
        return self.genotype_configuration_type

    @property
    def track_best_betas(self) -> bool:
        return self.select_most_betas or self.output_best_betas
