import logging
from enum import IntEnum

import numpy as np
import pandas as pd

from deconqtl.cell_count import CellCount
from deconqtl.design_matrix import DesignMatrixBuilder, validate_sample_counts
from deconqtl.exceptions import InvalidStateError
from deconqtl.genotype_configuration import (
    GenotypeConfiguration,
    derive_ct_configurations,
    enumerate_configurations,
    enumerate_ct_configurations,
    swap_genotypes,
)
from deconqtl.interaction_model import InteractionModel, ModelKey, ModelKind
from deconqtl.model_selection import merge_best_betas, select_best_model
from deconqtl.regression import AICFunction, Fitter, aic, fit_model
from deconqtl.settings import ModelSettings

logger = logging.getLogger("main")


class Phase(IntEnum):
    UNBUILT = 0
    BUILT = 1
    FULL_SELECTED = 2
    CT_SELECTED = 3
    AIC_COMPUTED = 4
    CLEANED = 5


class InteractionModelCollection:
    """
    All interaction models of one QTL and the data they share.

    For every genotype configuration there is one full model with the interaction
    terms of all cell types, and per cell type one ct model with the interaction term
    of that cell type removed. The collection goes through these phases, in order:

    1. `create_observed_value_matrices`: build the design matrix of every model.
    2. `find_best_full_model`: fit the full models and keep the best one (one per
       cell type with the base model).
    3. `find_best_ct_model`: fit the ct models and keep, per cell type, the best one
       and the one with the same genotype configuration as the best full model.
    4. `compute_aic`: AIC of the kept models and the AIC delta per cell type.

    Models that lose the selection are released and removed immediately, requesting
    them afterwards raises `InvalidStateError`. `run` executes all four phases.

    """

    def __init__(
        self,
        cell_count: CellCount,
        settings: ModelSettings | None = None,
        fitter: Fitter = fit_model,
        aic_function: AICFunction = aic,
        qtl_name: str | None = None,
    ):
        """
        :param cell_count: Cell type proportions of the samples.
        :param settings: Model options, default `ModelSettings()`.
        :param fitter: Regression fitting function, default
            `deconqtl.regression.fit_model`.
        :param aic_function: AIC statistic, default `deconqtl.regression.aic`.
        :param qtl_name: Name of the QTL, used in log messages and the summary.
        :raises ConfigurationError: If the settings imply an unknown genotype
            configuration mode.

        """
        if not isinstance(cell_count, CellCount):
            raise ValueError("cell_count must be a CellCount.")
        self.cell_count = cell_count
        self.settings = settings if settings is not None else ModelSettings()
        self.qtl_name = qtl_name
        self._fitter = fitter
        self._aic_function = aic_function
        self._phase = Phase.UNBUILT

        self._expression_values: np.ndarray | None = None
        self._genotypes: np.ndarray | None = None
        self._swapped_genotypes: np.ndarray | None = None

        self._models: dict[ModelKey, InteractionModel] = {}
        self._keys_by_name: dict[str, ModelKey] = {}
        self._evicted: set[str] = set()
        self._full_model_keys: list[ModelKey] = []
        self._full_model_keys_by_celltype: dict[str, list[ModelKey]] = {}
        self._ct_model_keys: dict[str, list[ModelKey]] = {
            celltype: [] for celltype in self.celltypes
        }

        self._best_full_model_key: ModelKey | None = None
        self._best_full_model_keys_by_celltype: dict[str, ModelKey] = {}
        self._best_ct_model_keys: dict[str, ModelKey] = {}
        self._matched_ct_model_keys: dict[str, ModelKey] = {}
        self._aic_deltas: dict[str, float] = {}
        self._pvalues: dict[str, float] = {}
        self._best_betas: np.ndarray | None = None

        self._make_configurations()

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def celltypes(self) -> list[str]:
        return self.cell_count.celltypes

    @property
    def sample_names(self) -> list[str]:
        return self.cell_count.sample_names

    @property
    def use_base_model(self) -> bool:
        return self.settings.use_base_model

    @property
    def expression_values(self) -> np.ndarray | None:
        return self._expression_values

    @property
    def genotypes(self) -> np.ndarray | None:
        return self._genotypes

    @property
    def swapped_genotypes(self) -> np.ndarray | None:
        return self._swapped_genotypes

    def set_expression_values(self, expression) -> None:
        """Set the expression value (response) of every sample."""
        self._require_phase(Phase.UNBUILT, action="set the expression values")
        self._expression_values = np.asarray(expression, dtype=float).ravel()

    def set_genotypes(self, genotypes) -> None:
        """Set the genotype dosage of every sample, also sets the swapped genotypes."""
        self._require_phase(Phase.UNBUILT, action="set the genotypes")
        genotypes = np.asarray(genotypes, dtype=float).ravel()
        if ((genotypes < 0) | (genotypes > 2)).any():
            logger.warning(
                f"{self._label}: genotype dosages outside of [0, 2], the swapped "
                "genotypes will be outside of [0, 2] as well"
            )
        self._genotypes = genotypes
        self._swapped_genotypes = swap_genotypes(genotypes)

    def set_pvalue(self, celltype: str, pvalue: float) -> None:
        """Store the significance of `celltype` computed by the caller."""
        self._check_celltype(celltype)
        self._pvalues[celltype] = float(pvalue)

    def get_pvalue(self, celltype: str) -> float:
        self._check_celltype(celltype)
        if celltype not in self._pvalues:
            raise InvalidStateError(f"No p-value has been set for {celltype}.")
        return self._pvalues[celltype]

    def _make_configurations(self) -> None:
        """
        Enumerate the genotype configurations and map every full model configuration
        to the ct models with the matching configuration.

        In the base model the ct model of a cell type drops the cell type's own
        interaction term, which is position 0 of the full model configuration.

        """
        mode = self.settings.enumeration_mode
        n_celltypes = self.cell_count.number_of_celltypes

        # "one" can produce duplicates for a single cell type
        self._full_configurations = list(
            dict.fromkeys(enumerate_configurations(n_celltypes, mode))
        )
        self._ct_configurations = list(
            dict.fromkeys(enumerate_ct_configurations(n_celltypes, mode))
        )

        self._genotype_config_map: dict[
            GenotypeConfiguration, dict[str, ModelKey]
        ] = {}
        for configuration in self._full_configurations:
            if self.use_base_model:
                ct_configurations = [configuration.drop(0)] * n_celltypes
            else:
                ct_configurations = derive_ct_configurations(configuration)
            self._genotype_config_map[configuration] = {
                celltype: ModelKey(ModelKind.CT, ct_configuration, celltype)
                for celltype, ct_configuration in zip(
                    self.celltypes, ct_configurations
                )
            }

        logger.debug(
            f"Genotype configuration mode '{mode}': "
            f"{len(self._full_configurations)} full model and "
            f"{len(self._ct_configurations)} ct model configurations"
        )

    @property
    def full_model_configurations(self) -> list[GenotypeConfiguration]:
        return list(self._full_configurations)

    @property
    def ct_model_configurations(self) -> list[GenotypeConfiguration]:
        return list(self._ct_configurations)

    @property
    def genotype_config_map(self) -> dict[GenotypeConfiguration, dict[str, ModelKey]]:
        return {
            configuration: dict(ct_models)
            for configuration, ct_models in self._genotype_config_map.items()
        }

    def get_ct_models_by_genotype_configuration(
        self, genotype_configuration: GenotypeConfiguration | str
    ) -> dict[str, str]:
        """
        Per cell type, the name of the ct model whose configuration matches the full
        model `genotype_configuration`.

        :raises KeyError: If `genotype_configuration` is not a full model
            configuration.

        """
        if isinstance(genotype_configuration, str):
            genotype_configuration = GenotypeConfiguration.from_string(
                genotype_configuration
            )
        if genotype_configuration not in self._genotype_config_map:
            raise KeyError(
                f"{genotype_configuration} is not a full model genotype configuration"
            )
        return {
            celltype: key.name
            for celltype, key in self._genotype_config_map[
                genotype_configuration
            ].items()
        }

    @property
    def number_of_models(self) -> int:
        """Number of models that are currently kept."""
        return len(self._models)

    @property
    def full_model_names(self) -> list[str]:
        """Names of all full models that were built, including evicted ones."""
        return [key.name for key in self._full_model_keys]

    def get_ct_model_names(self, celltype: str) -> list[str]:
        """Names of all ct models of `celltype` that were built."""
        self._check_celltype(celltype)
        return [key.name for key in self._ct_model_keys[celltype]]

    def has_interaction_model(self, key_or_name: ModelKey | str) -> bool:
        key = (
            self._keys_by_name.get(key_or_name)
            if isinstance(key_or_name, str)
            else key_or_name
        )
        return key in self._models

    def get_interaction_model(self, key_or_name: ModelKey | str) -> InteractionModel:
        """
        Get a model by its key or name.

        :raises InvalidStateError: If the model was evicted or never created.

        """
        name = key_or_name if isinstance(key_or_name, str) else key_or_name.name
        key = (
            self._keys_by_name.get(key_or_name)
            if isinstance(key_or_name, str)
            else key_or_name
        )
        if key is None or key not in self._models:
            if name in self._evicted:
                raise InvalidStateError(
                    f"Model {name} lost the model selection and has been removed."
                )
            raise InvalidStateError(f"Model {name} does not exist.")
        return self._models[key]

    def _add_interaction_model(self, model: InteractionModel) -> None:
        self._models[model.key] = model
        self._keys_by_name[model.name] = model.key
        if model.kind is ModelKind.FULL:
            self._full_model_keys.append(model.key)
            if model.celltype is not None:
                self._full_model_keys_by_celltype.setdefault(
                    model.celltype, []
                ).append(model.key)
        elif model.kind is ModelKind.CT:
            self._ct_model_keys[model.celltype].append(model.key)

    def _remove_interaction_model(self, model: InteractionModel) -> None:
        model.release()
        del self._models[model.key]
        del self._keys_by_name[model.name]
        self._evicted.add(model.name)
        logger.debug(f"{self._label}: removed {model.name}")

    @property
    def _label(self) -> str:
        return self.qtl_name if self.qtl_name is not None else "QTL"

    def _require_phase(self, *allowed: Phase, action: str) -> None:
        if self._phase not in allowed:
            raise InvalidStateError(
                f"Can not {action} when the collection is in phase "
                f"{self._phase.name}, expected "
                f"{' or '.join(phase.name for phase in allowed)}."
            )

    def _check_celltype(self, celltype: str) -> None:
        if celltype not in self._ct_model_keys:
            raise KeyError(f"Cell type '{celltype}' not found in cell counts.")

    def create_observed_value_matrices(self) -> None:
        """
        Build the design matrices of all full and ct models.

        With the base model, both rest models of every ct model are fit right away
        and the one with the lowest RSS is kept.

        :raises InvalidStateError: If the genotypes or expression values are not set,
            or the matrices were already built.
        :raises DimensionMismatchError: If the genotypes or expression values do not
            have one value per sample in the cell counts.

        """
        self._require_phase(Phase.UNBUILT, action="create the observed value matrices")
        if self._genotypes is None or self._expression_values is None:
            raise InvalidStateError(
                "Genotypes and expression values have to be set before the observed "
                "value matrices can be created."
            )
        validate_sample_counts(
            self.cell_count,
            genotypes=self._genotypes,
            expression=self._expression_values,
        )
        builder = DesignMatrixBuilder(
            self.cell_count, self._genotypes, self._swapped_genotypes
        )

        # nothing is registered until every model is built, so a failed build can
        # be repeated
        if self.use_base_model:
            models = self._create_base_models(builder)
        else:
            models = [
                builder.full_model(configuration)
                for configuration in self._full_configurations
            ]
            for configuration in self._ct_configurations:
                for celltype_index in range(len(self.celltypes)):
                    models.append(builder.ct_model(celltype_index, configuration))

        for model in models:
            self._add_interaction_model(model)
        self._phase = Phase.BUILT
        logger.info(
            f"{self._label}: built {len(self._full_model_keys)} full models and "
            f"{sum(len(keys) for keys in self._ct_model_keys.values())} ct models"
        )

    def _create_base_models(
        self, builder: DesignMatrixBuilder
    ) -> list[InteractionModel]:
        """
        Build the base full and ct models of every cell type and pick the rest model
        of every ct model. Rest models are always fit with NNLS, also when the other
        models use OLS.

        """
        models = []
        for celltype_index in range(len(self.celltypes)):
            for configuration in self._full_configurations:
                models.append(builder.base_full_model(celltype_index, configuration))
            for configuration in self._ct_configurations:
                ct_model = builder.base_ct_model(celltype_index, configuration)
                models.append(ct_model)

                rest_model, rest_model_swapped = builder.rest_models(
                    celltype_index, configuration
                )
                for candidate in (rest_model, rest_model_swapped):
                    candidate.set_fit(
                        self._fitter(
                            candidate.design_matrix,
                            self._expression_values,
                            True,
                        )
                    )
                if (
                    rest_model.residual_sum_of_squares
                    < rest_model_swapped.residual_sum_of_squares
                ):
                    kept, dropped = rest_model, rest_model_swapped
                else:
                    kept, dropped = rest_model_swapped, rest_model
                dropped.release()
                models.append(kept)
                logger.debug(
                    f"{self._label}: rest model of {ct_model.name} uses the "
                    f"{'normal' if kept is rest_model else 'swapped'} genotype"
                )
        return models

    def find_best_full_model(self) -> None:
        """
        Fit the full models and keep the one with the lowest RSS, or with
        `select_most_betas` the most positive interaction betas. With the base model
        this is done per cell type.

        """
        self._require_phase(Phase.BUILT, action="find the best full model")
        settings = self.settings
        selection_kwargs = dict(
            response=self._expression_values,
            fitter=self._fitter,
            non_negative=not settings.use_ols,
            evict=self._remove_interaction_model,
            select_most_betas=settings.select_most_betas,
            track_best_betas=settings.track_best_betas,
            n_jobs=settings.n_jobs,
        )

        if self.use_base_model:
            partial_best_betas = []
            for celltype in self.celltypes:
                candidates = [
                    self._models[key]
                    for key in self._full_model_keys_by_celltype[celltype]
                ]
                result = select_best_model(candidates, **selection_kwargs)
                self._best_full_model_keys_by_celltype[celltype] = result.best.key
                partial_best_betas.append(result.best_betas)
                logger.info(
                    f"{self._label}: best full model for {celltype} is "
                    f"{result.best.name}"
                )
            self._best_betas = merge_best_betas(partial_best_betas)
        else:
            candidates = [self._models[key] for key in self._full_model_keys]
            result = select_best_model(candidates, **selection_kwargs)
            self._best_full_model_key = result.best.key
            self._best_betas = result.best_betas
            logger.info(f"{self._label}: best full model is {result.best.name}")

        self._phase = Phase.FULL_SELECTED

    def find_best_ct_model(self) -> None:
        """
        Fit the ct models and keep, per cell type, the best one. The ct model with the
        same genotype configuration as the best full model is kept as well, because
        the AIC delta is computed against it.

        The ct models are compared with the same rule as the full models, so they
        only prefer more positive interaction betas when `select_most_betas` is set.

        """
        self._require_phase(Phase.FULL_SELECTED, action="find the best ct model")
        settings = self.settings
        for celltype in self.celltypes:
            best_full_model = self._best_full_model(celltype)
            matched_key = self._genotype_config_map[
                best_full_model.genotype_configuration
            ][celltype]
            self._matched_ct_model_keys[celltype] = matched_key

            candidates = [self._models[key] for key in self._ct_model_keys[celltype]]
            result = select_best_model(
                candidates,
                response=self._expression_values,
                fitter=self._fitter,
                non_negative=not settings.use_ols,
                evict=self._remove_interaction_model,
                select_most_betas=settings.select_most_betas,
                protected=[matched_key],
                n_jobs=settings.n_jobs,
            )
            self._best_ct_model_keys[celltype] = result.best.key
            logger.info(
                f"{self._label}: best ct model for {celltype} is {result.best.name}, "
                f"compared to the full model with {matched_key.name}"
            )

        self._phase = Phase.CT_SELECTED

    def compute_aic(self) -> None:
        """
        Compute the AIC of the best full model(s), the best ct models, the ct models
        matching the best full model configuration (and their rest models), and per
        cell type the AIC delta `AIC(matched ct model) - AIC(best full model)`.

        """
        self._require_phase(Phase.CT_SELECTED, action="compute the AIC")
        for celltype in self.celltypes:
            full_model = self._best_full_model(celltype)
            full_model.set_aic(self._aic_function)

            ct_model = self._models[self._matched_ct_model_keys[celltype]]
            ct_model.set_aic(self._aic_function)
            self._aic_deltas[celltype] = ct_model.set_aic_delta(full_model.aic)

            best_ct_model = self._models[self._best_ct_model_keys[celltype]]
            if best_ct_model is not ct_model:
                best_ct_model.set_aic(self._aic_function)
                best_ct_model.set_aic_delta(full_model.aic)

            if ct_model.rest_model_key is not None:
                self._models[ct_model.rest_model_key].set_aic(self._aic_function)

        self._phase = Phase.AIC_COMPUTED
        logger.info(f"{self._label}: AIC deltas {self._aic_deltas}")

    def run(self) -> "InteractionModelCollection":
        """Build, select the best full and ct models and compute the AIC."""
        self.create_observed_value_matrices()
        self.find_best_full_model()
        self.find_best_ct_model()
        self.compute_aic()
        return self

    def clean_up(self, remove_predicted_values: bool = True) -> None:
        """
        Drop the expression values, genotypes and design matrices. The names, RSS,
        AIC and coefficients of the kept models stay available.

        :param remove_predicted_values: Also drop the predicted values of the models.

        """
        self._expression_values = None
        self._genotypes = None
        self._swapped_genotypes = None
        for model in self._models.values():
            model.clean_up(remove_predicted_values)
        self._phase = Phase.CLEANED

    def _best_full_model(self, celltype: str | None) -> InteractionModel:
        if self.use_base_model:
            if celltype is None:
                raise InvalidStateError(
                    "The base model has a best full model per cell type, "
                    "a cell type is required."
                )
            self._check_celltype(celltype)
            key = self._best_full_model_keys_by_celltype.get(celltype)
        else:
            if celltype is not None:
                self._check_celltype(celltype)
            key = self._best_full_model_key
        if key is None:
            raise InvalidStateError("The best full model has not been selected yet.")
        return self.get_interaction_model(key)

    def get_best_full_model(self, celltype: str | None = None) -> InteractionModel:
        """
        The best full model. With the base model, the best full model of `celltype`.

        :raises InvalidStateError: If it has not been selected yet, or with the base
            model no cell type is given.

        """
        return self._best_full_model(celltype)

    def get_best_ct_model(self, celltype: str) -> InteractionModel:
        """The ct model of `celltype` with the best fit, used to report betas."""
        self._check_celltype(celltype)
        if celltype not in self._best_ct_model_keys:
            raise InvalidStateError("The best ct models have not been selected yet.")
        return self.get_interaction_model(self._best_ct_model_keys[celltype])

    def get_ct_model_same_configuration_as_best_full_model(
        self, celltype: str
    ) -> InteractionModel:
        """
        The ct model of `celltype` whose genotype configuration matches the best full
        model. This is the model the AIC delta is computed for, it may or may not be
        the best ct model.

        """
        self._check_celltype(celltype)
        if celltype not in self._matched_ct_model_keys:
            raise InvalidStateError("The best ct models have not been selected yet.")
        return self.get_interaction_model(self._matched_ct_model_keys[celltype])

    def get_rest_model(self, celltype: str) -> InteractionModel:
        """The rest model linked to the matched ct model of `celltype` (base model)."""
        ct_model = self.get_ct_model_same_configuration_as_best_full_model(celltype)
        if ct_model.rest_model_key is None:
            raise InvalidStateError("Rest models only exist for the base model.")
        return self.get_interaction_model(ct_model.rest_model_key)

    def get_full_model_aic(self, celltype: str | None = None) -> float:
        return self._best_full_model(celltype).aic

    def get_ct_model_aic(self, celltype: str) -> float:
        return self.get_ct_model_same_configuration_as_best_full_model(celltype).aic

    def get_aic_delta(self, celltype: str) -> float:
        self._check_celltype(celltype)
        if celltype not in self._aic_deltas:
            raise InvalidStateError("The AIC has not been computed yet.")
        return self._aic_deltas[celltype]

    @property
    def aic_deltas(self) -> dict[str, float]:
        return dict(self._aic_deltas)

    @property
    def best_betas(self) -> np.ndarray | None:
        """
        Element-wise maximum of the coefficients of all full models that were fit.
        None unless `select_most_betas` or `output_best_betas` is set.

        """
        return None if self._best_betas is None else self._best_betas.copy()

    def summary(self) -> pd.DataFrame:
        """
        One row per cell type with the selected models, their RSS and AIC, the AIC
        delta and the p-value, if set. Works after `clean_up`.

        """
        self._require_phase(
            Phase.AIC_COMPUTED, Phase.CLEANED, action="summarize the results"
        )
        if not self._aic_deltas:
            raise InvalidStateError("The AIC has not been computed yet.")
        rows = []
        for celltype in self.celltypes:
            full_model = self._best_full_model(celltype)
            matched = self.get_ct_model_same_configuration_as_best_full_model(celltype)
            best_ct = self.get_best_ct_model(celltype)
            rows.append(
                {
                    "qtl": self.qtl_name,
                    "celltype": celltype,
                    "full_model": full_model.name,
                    "full_model_rss": full_model.residual_sum_of_squares,
                    "full_model_aic": full_model.aic,
                    "ct_model": matched.name,
                    "ct_model_rss": matched.residual_sum_of_squares,
                    "ct_model_aic": matched.aic,
                    "aic_delta": self._aic_deltas[celltype],
                    "best_ct_model": best_ct.name,
                    "best_ct_model_rss": best_ct.residual_sum_of_squares,
                    "pvalue": self._pvalues.get(celltype, np.nan),
                }
            )
        return pd.DataFrame(rows)
