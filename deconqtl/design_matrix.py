import logging

import numpy as np
import pandas as pd
from patsy import PatsyError, dmatrix

from deconqtl.cell_count import CellCount
from deconqtl.exceptions import DimensionMismatchError
from deconqtl.genotype_configuration import GenotypeConfiguration, swap_genotypes
from deconqtl.interaction_model import InteractionModel, ModelKey, ModelKind

logger = logging.getLogger("main")

GENOTYPE_COLUMN = "GT"
SWAPPED_GENOTYPE_COLUMN = "GT_swapped"


def validate_sample_counts(
    cell_count: CellCount,
    genotypes: np.ndarray | None = None,
    expression: np.ndarray | None = None,
) -> None:
    """
    Check that the genotypes and expression values have one value per sample in the
    cell counts.

    :param cell_count: The cell counts, which define the samples.
    :param genotypes: Genotype dosages of the QTL.
    :param expression: Expression values of the QTL.
    :raises DimensionMismatchError: Naming every input whose length differs from the
        number of samples in the cell counts.

    """
    n_samples = cell_count.number_of_samples
    mismatched = []
    for label, values in (("genotype", genotypes), ("expression", expression)):
        if values is not None and len(values) != n_samples:
            mismatched.append(f"{label} ({len(values)} values)")
    if mismatched:
        message = (
            f"The counts file ({n_samples} samples) and the "
            f"{' and '.join(mismatched)} do not have equal number of samples. Check "
            "that the cell count, expression and genotype files contain the same "
            "samples."
        )
        logger.error(message)
        raise DimensionMismatchError(message)


def _genotype_column(configuration: GenotypeConfiguration, position: int) -> str:
    if configuration.is_swapped(position):
        return SWAPPED_GENOTYPE_COLUMN
    return GENOTYPE_COLUMN


class DesignMatrixBuilder:
    """
    Builds the interaction models of one QTL.

    The genotype, swapped genotype and proportion columns are collected in a single
    DataFrame once. Every model is then a patsy formula over those columns, without
    intercept, with the main effect (proportion) columns before the interaction
    columns. The patsy columns are renamed to the variable names reported for the
    model, e.g. `Neut` and `Neut:GT`.

    """

    def __init__(
        self,
        cell_count: CellCount,
        genotypes: np.ndarray,
        swapped_genotypes: np.ndarray | None = None,
    ):
        """
        :param cell_count: Cell type proportions.
        :param genotypes: Genotype dosages, one per sample.
        :param swapped_genotypes: `2 - genotypes`. Computed when not given.
        :raises DimensionMismatchError: If the genotypes do not have one value per
            sample.

        """
        validate_sample_counts(cell_count, genotypes=genotypes)
        if swapped_genotypes is None:
            swapped_genotypes = swap_genotypes(genotypes)
        validate_sample_counts(cell_count, genotypes=swapped_genotypes)

        self.cell_count = cell_count
        self.celltypes = cell_count.celltypes
        self._data = pd.DataFrame(
            cell_count.proportions,
            index=cell_count.sample_names,
            columns=[self._proportion_column(i) for i in range(len(self.celltypes))],
        )
        self._data[GENOTYPE_COLUMN] = np.asarray(genotypes, dtype=float)
        self._data[SWAPPED_GENOTYPE_COLUMN] = np.asarray(swapped_genotypes, dtype=float)

    @staticmethod
    def _proportion_column(celltype_index: int) -> str:
        return f"ct{celltype_index}"

    def _celltype_vs_rest_data(self, celltype_index: int) -> pd.DataFrame:
        proportion = self._data[self._proportion_column(celltype_index)]
        return pd.DataFrame(
            {
                "ct": proportion,
                "rest": 100 - proportion,
                GENOTYPE_COLUMN: self._data[GENOTYPE_COLUMN],
                SWAPPED_GENOTYPE_COLUMN: self._data[SWAPPED_GENOTYPE_COLUMN],
            },
            index=self._data.index,
        )

    @staticmethod
    def _design(
        terms: list[str], variable_names: list[str], data: pd.DataFrame
    ) -> pd.DataFrame:
        formula = f"{' + '.join(terms)} - 1"
        try:
            design_matrix = dmatrix(
                formula,
                data=data,
                return_type="dataframe",
                NA_action="raise",
            )
        except PatsyError as exc:
            logger.error(
                f"Error in creating model matrix with formula '{formula}': {exc}"
            )
            raise
        # patsy orders the columns by term, make the order explicit
        design_matrix = design_matrix.loc[:, terms]
        design_matrix.columns = variable_names
        return design_matrix

    def full_model(self, configuration: GenotypeConfiguration) -> InteractionModel:
        """
        Model with a proportion and an interaction term for every cell type:
        `y ~ ct_1 + ... + ct_k + ct_1:GT + ... + ct_k:GT`.

        Bit `i` of the configuration selects the genotype orientation of the
        interaction term of cell type `i`.

        """
        k = len(self.celltypes)
        if len(configuration) != k:
            raise ValueError(
                f"Full model configuration {configuration} should have length {k}"
            )
        proportion_terms = [self._proportion_column(i) for i in range(k)]
        interaction_terms = [
            f"{self._proportion_column(i)}:{_genotype_column(configuration, i)}"
            for i in range(k)
        ]
        variable_names = list(self.celltypes) + [f"{c}:GT" for c in self.celltypes]
        design_matrix = self._design(
            proportion_terms + interaction_terms, variable_names, self._data
        )
        return InteractionModel(
            key=ModelKey(ModelKind.FULL, configuration),
            design_matrix=design_matrix,
            celltype_variable_indices=[(i, k + i) for i in range(k)],
            n_proportion_terms=k,
        )

    def ct_model(
        self, celltype_index: int, configuration: GenotypeConfiguration
    ) -> InteractionModel:
        """
        The full model without the interaction term of cell type `celltype_index`.

        The configuration has one bit per remaining interaction term, assigned in
        cell type order skipping the model's own cell type.

        """
        k = len(self.celltypes)
        if len(configuration) != k - 1:
            raise ValueError(
                f"ct model configuration {configuration} should have length {k - 1}"
            )
        proportion_terms = [self._proportion_column(i) for i in range(k)]
        interaction_terms = []
        variable_names = list(self.celltypes)
        interaction_names = []
        celltype_variable_indices: list[tuple[int, ...]] = []
        position = 0
        for i, celltype in enumerate(self.celltypes):
            if i == celltype_index:
                celltype_variable_indices.append((i,))
                continue
            interaction_terms.append(
                f"{self._proportion_column(i)}:"
                f"{_genotype_column(configuration, position)}"
            )
            interaction_names.append(f"{celltype}:GT")
            celltype_variable_indices.append((i, k + position))
            position += 1

        design_matrix = self._design(
            proportion_terms + interaction_terms,
            variable_names + interaction_names,
            self._data,
        )
        return InteractionModel(
            key=ModelKey(
                ModelKind.CT, configuration, self.celltypes[celltype_index]
            ),
            design_matrix=design_matrix,
            celltype_variable_indices=celltype_variable_indices,
            n_proportion_terms=k,
        )

    def base_full_model(
        self, celltype_index: int, configuration: GenotypeConfiguration
    ) -> InteractionModel:
        """
        Cell type vs rest model: `y ~ ct + (100-ct) + ct:GT + (100-ct):GT`.

        Bit 0 of the configuration orients the `ct:GT` term, bit 1 the
        `(100-ct):GT` term.

        """
        if len(configuration) != 2:
            raise ValueError(
                f"Base full model configuration {configuration} should have length 2"
            )
        celltype = self.celltypes[celltype_index]
        terms = [
            "ct",
            "rest",
            f"ct:{_genotype_column(configuration, 0)}",
            f"rest:{_genotype_column(configuration, 1)}",
        ]
        variable_names = [
            celltype,
            f"100-{celltype}",
            f"{celltype}:GT",
            f"100-{celltype}:GT",
        ]
        design_matrix = self._design(
            terms, variable_names, self._celltype_vs_rest_data(celltype_index)
        )
        return InteractionModel(
            key=ModelKey(ModelKind.FULL, configuration, celltype),
            design_matrix=design_matrix,
            celltype_variable_indices=[(0, 2), (1, 3)],
            n_proportion_terms=2,
        )

    def base_ct_model(
        self, celltype_index: int, configuration: GenotypeConfiguration
    ) -> InteractionModel:
        """
        Cell type vs rest model without the cell type's interaction term:
        `y ~ ct + (100-ct) + (100-ct):GT`. The single configuration bit orients the
        `(100-ct):GT` term.

        """
        if len(configuration) != 1:
            raise ValueError(
                f"Base ct model configuration {configuration} should have length 1"
            )
        celltype = self.celltypes[celltype_index]
        terms = ["ct", "rest", f"rest:{_genotype_column(configuration, 0)}"]
        variable_names = [celltype, f"100-{celltype}", f"100-{celltype}:GT"]
        design_matrix = self._design(
            terms, variable_names, self._celltype_vs_rest_data(celltype_index)
        )
        return InteractionModel(
            key=ModelKey(ModelKind.CT, configuration, celltype),
            design_matrix=design_matrix,
            celltype_variable_indices=[(0,), (1, 2)],
            n_proportion_terms=2,
            rest_model_key=ModelKey(ModelKind.REST, configuration, celltype),
        )

    def rest_models(
        self, celltype_index: int, ct_configuration: GenotypeConfiguration
    ) -> tuple[InteractionModel, InteractionModel]:
        """
        The two candidate rest models of a base ct model: `y ~ ct + (100-ct) + ct:GT`
        with the normal and with the swapped genotype. Both get the key of the rest
        model linked to the ct model with `ct_configuration`.

        """
        celltype = self.celltypes[celltype_index]
        data = self._celltype_vs_rest_data(celltype_index)
        variable_names = [celltype, f"100-{celltype}", f"{celltype}:GT"]
        key = ModelKey(ModelKind.REST, ct_configuration, celltype)
        models = []
        for genotype_column in (GENOTYPE_COLUMN, SWAPPED_GENOTYPE_COLUMN):
            design_matrix = self._design(
                ["ct", "rest", f"ct:{genotype_column}"], variable_names, data
            )
            models.append(
                InteractionModel(
                    key=key,
                    design_matrix=design_matrix,
                    celltype_variable_indices=[(0, 2), (1,)],
                    n_proportion_terms=2,
                )
            )
        return models[0], models[1]
