import logging

import numpy as np
import pandas as pd
import pytest

from deconqtl.cell_count import CellCount


def test_init_valid_data(sample_cellcount_df):
    cell_count = CellCount(sample_cellcount_df)

    assert cell_count.celltypes == ["Neut", "Lymph"]
    assert cell_count.sample_names == ["sample1", "sample2", "sample3"]
    assert cell_count.number_of_celltypes == 2
    assert cell_count.number_of_samples == 3
    assert cell_count.get_celltype(1) == "Lymph"
    assert cell_count.celltype_index("Lymph") == 1
    np.testing.assert_allclose(
        cell_count.proportions, [[60, 40], [50, 50], [70, 30]]
    )


def test_proportions_are_read_only(sample_cell_count):
    with pytest.raises(ValueError):
        sample_cell_count.proportions[0, 0] = 10.0


def test_cellcount_df_returns_a_copy(sample_cell_count):
    df = sample_cell_count.cellcount_df
    df.iloc[0, 0] = 0.0
    assert sample_cell_count.proportions[0, 0] == 60.0


def test_unknown_celltype(sample_cell_count):
    with pytest.raises(KeyError, match="Cell type 'Mono' not found"):
        sample_cell_count.celltype_index("Mono")


def test_init_not_a_dataframe():
    with pytest.raises(ValueError, match="must be a DataFrame"):
        CellCount([[60, 40]])  # type: ignore


def test_init_empty():
    with pytest.raises(ValueError, match="at least one sample and one cell type"):
        CellCount(pd.DataFrame())


def test_init_non_numeric(sample_cellcount_df):
    sample_cellcount_df["label"] = ["a", "b", "c"]
    with pytest.raises(ValueError, match="Non-numeric columns: \\['label'\\]"):
        CellCount(sample_cellcount_df)


def test_init_missing_values(sample_cellcount_df):
    sample_cellcount_df.iloc[1, 1] = np.nan
    with pytest.raises(ValueError, match="missing values"):
        CellCount(sample_cellcount_df)


def test_rows_not_summing_to_100_are_kept_with_a_warning(sample_cellcount_df, caplog):
    sample_cellcount_df.iloc[2, 0] = 50.0
    with caplog.at_level(logging.WARNING, logger="main"):
        cell_count = CellCount(sample_cellcount_df)

    assert cell_count.number_of_samples == 3
    assert "do not sum to 100" in caplog.text
    assert "sample3" in caplog.text


def test_invalid_sum_tolerance(sample_cellcount_df):
    with pytest.raises(ValueError, match="sum_tolerance"):
        CellCount(sample_cellcount_df, sum_tolerance=-1)
