import logging

import numpy as np
import pandas as pd

logger = logging.getLogger("main")


class CellCount:
    """
    Cell type proportions of every sample, shared by all QTLs that are modeled.

    This class handles:
        - Validation of the sample x cell type proportion DataFrame.
        - Read-only access to the cell type names, sample names and the proportion
            matrix in a fixed order.

    The proportions are percentages, so every row is expected to sum to 100. Rows
    that do not are reported but kept.

    """

    def __init__(
        self,
        cellcount_df: pd.DataFrame,
        sum_tolerance: float = 1.0,
    ):
        """
        Initialize CellCount with the sample x cell type proportions.

        :param cellcount_df: DataFrame indexed by sample name with one numeric column
            per cell type holding the percentage of that cell type in the sample.
        :param sum_tolerance: Allowed absolute deviation of a row sum from 100 before
            a warning is logged. Default is 1.0.
        :raises ValueError: If `cellcount_df` is not a DataFrame, is empty, has
            non-numeric columns or has missing values.

        """
        if not isinstance(sum_tolerance, (int, float)) or sum_tolerance < 0:
            raise ValueError("sum_tolerance must be a non-negative number.")
        self.sum_tolerance = float(sum_tolerance)
        self.cellcount_df = cellcount_df

    @property
    def cellcount_df(self) -> pd.DataFrame:
        """A copy of the validated proportion DataFrame."""
        return self._cellcount_df.copy()

    @cellcount_df.setter
    def cellcount_df(self, value: pd.DataFrame) -> None:
        """
        Set the proportion DataFrame and enforce the schema constraints.

        :param value: DataFrame with samples as index and cell types as columns.
        :raises ValueError: If the DataFrame does not satisfy the constraints.

        """
        if not isinstance(value, pd.DataFrame):
            raise ValueError("cellcount_df must be a DataFrame.")
        if value.shape[0] == 0 or value.shape[1] == 0:
            raise ValueError(
                "cellcount_df must contain at least one sample and one cell type."
            )
        non_numeric = value.columns.difference(
            value.select_dtypes(include="number").columns
        )
        if len(non_numeric) > 0:
            raise ValueError(
                f"All cell type columns must be numeric. "
                f"Non-numeric columns: {list(non_numeric)}"
            )
        if value.isna().any().any():
            raise ValueError("cellcount_df contains missing values.")
        if value.columns.duplicated().any():
            raise ValueError("Cell type names must be unique.")

        row_sums = value.sum(axis=1)
        off_rows = row_sums[(row_sums - 100).abs() > self.sum_tolerance]
        if not off_rows.empty:
            logger.warning(
                f"{len(off_rows)} sample(s) have cell type percentages that do not "
                f"sum to 100, e.g. {off_rows.index[0]}: {off_rows.iloc[0]}"
            )

        self._cellcount_df = value.astype(float)
        self._proportions = self._cellcount_df.to_numpy(copy=True)
        self._proportions.setflags(write=False)
        logger.info(
            f"Cell counts loaded for {self.number_of_samples} samples and "
            f"{self.number_of_celltypes} cell types: {self.celltypes}"
        )

    @property
    def celltypes(self) -> list[str]:
        return [str(c) for c in self._cellcount_df.columns]

    @property
    def sample_names(self) -> list[str]:
        return [str(s) for s in self._cellcount_df.index]

    @property
    def proportions(self) -> np.ndarray:
        """Read-only samples x cell types matrix of percentages."""
        return self._proportions

    @property
    def number_of_celltypes(self) -> int:
        return self._cellcount_df.shape[1]

    @property
    def number_of_samples(self) -> int:
        return self._cellcount_df.shape[0]

    def get_celltype(self, index: int) -> str:
        return self.celltypes[index]

    def celltype_index(self, celltype: str) -> int:
        """
        Position of `celltype` in the cell type order.

        :raises KeyError: If the cell type is unknown.

        """
        try:
            return self.celltypes.index(celltype)
        except ValueError:
            raise KeyError(f"Cell type '{celltype}' not found in cell counts.")
