"""Tests for flattening aligned stacks into cell tables and back."""

import numpy as np
import pandas as pd
import pytest
import rasterio

from precip_rank.cell_table import stack_to_table, table_to_grid, write_single_band_tif
from precip_rank.grid_alignment import align_ensemble
from precip_rank.grid_sources import grid_from_array


def _stack(baseline_values, member_values, left=-2.0, top=2.0):
    baseline = grid_from_array(baseline_values, left=left, top=top)
    members = {
        model_id: grid_from_array(values, left=left, top=top)
        for model_id, values in member_values.items()
    }
    return align_ensemble(baseline, members)


def test_table_columns_and_scan_order():
    stack = _stack(
        [[1.0, 2.0], [3.0, 4.0]],
        {"A": [[10.0, 20.0], [30.0, 40.0]], "B": [[11.0, 21.0], [31.0, 41.0]]},
        left=0.0,
        top=2.0,
    )

    table = stack_to_table(stack)

    assert list(table.columns) == ["x", "y", "pr_pres", "pr_fut_A", "pr_fut_B"]
    assert table["pr_pres"].tolist() == [1.0, 2.0, 3.0, 4.0]
    assert table["x"].tolist() == [0.5, 1.5, 0.5, 1.5]
    assert table["y"].tolist() == [1.5, 1.5, 0.5, 0.5]
    assert isinstance(table.index, pd.RangeIndex)


def test_missing_baseline_dropped_missing_member_kept():
    stack = _stack(
        [[np.nan, 2.0], [3.0, 4.0]],
        {"A": [[10.0, np.nan], [30.0, 40.0]]},
    )

    table = stack_to_table(stack)

    assert len(table) == 3
    assert table["pr_pres"].notna().all()
    assert np.isnan(table.loc[0, "pr_fut_A"])


def test_region_crop_limits_rows():
    values = np.arange(16, dtype=float).reshape(4, 4)
    stack = _stack(values, {"A": values + 1})

    table = stack_to_table(stack, region=(-1.0, -1.0, 1.0, 1.0))

    assert len(table) == 4
    assert table["pr_pres"].tolist() == [5.0, 6.0, 9.0, 10.0]
    assert table["x"].between(-1.0, 1.0).all()
    assert table["y"].between(-1.0, 1.0).all()


def test_table_is_deterministic():
    values = np.random.default_rng(0).random((5, 7))
    members = {"A": values * 2, "B": values / 2}

    first = stack_to_table(_stack(values, members))
    second = stack_to_table(_stack(values, members))

    pd.testing.assert_frame_equal(first, second)
    assert first.to_csv(index=False) == second.to_csv(index=False)


def test_unknown_baseline_column():
    stack = _stack([[1.0]], {"A": [[2.0]]})

    with pytest.raises(ValueError):
        stack_to_table(stack, baseline_column="nope")


def test_table_to_grid_round_trips_column():
    stack = _stack(
        [[np.nan, 2.0], [3.0, 4.0]],
        {"A": [[10.0, 20.0], [30.0, 40.0]]},
    )
    table = stack_to_table(stack)

    grid = table_to_grid(table, "pr_fut_A", stack)

    np.testing.assert_array_equal(grid.values, [[np.nan, 20.0], [30.0, 40.0]])
    assert grid.rio.transform() == stack.rio.transform()
    assert grid.rio.crs == stack.rio.crs


def test_table_to_grid_rejects_foreign_cells():
    stack = _stack([[1.0, 2.0]], {"A": [[3.0, 4.0]]})
    table = stack_to_table(stack)
    table.loc[0, "x"] = 99.0

    with pytest.raises(ValueError):
        table_to_grid(table, "pr_pres", stack)


def test_write_single_band_tif(tmp_path):
    stack = _stack([[1.0, np.nan], [3.0, 4.0]], {"A": [[1.0, 2.0], [3.0, 4.0]]})
    grid = table_to_grid(stack_to_table(stack), "pr_pres", stack)

    out = write_single_band_tif(grid, tmp_path / "nested" / "pr_pres.tif")

    with rasterio.open(out) as src:
        assert src.count == 1
        assert src.dtypes[0] == "float32"
        assert src.transform == stack.rio.transform()
        data = src.read(1)

    np.testing.assert_array_equal(data, np.array([[1.0, np.nan], [3.0, 4.0]], dtype="float32"))
