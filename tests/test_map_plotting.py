import matplotlib

matplotlib.use("Agg")

import geopandas as gpd
import matplotlib.pyplot as plt
import numpy as np
import pytest
from shapely.geometry import LineString

from precip_rank import map_plotting
from precip_rank.cell_table import stack_to_table
from precip_rank.ensemble_stats import compute_ensemble_statistics
from precip_rank.grid_alignment import align_ensemble
from precip_rank.grid_sources import grid_from_array
from precip_rank.map_plotting import (
    _prepare_statistic_grid,
    get_coastlines,
    plot_statistic_map,
    register_coastlines,
)


def _rank_table():
    baseline = grid_from_array([[50.0, 100.0], [np.nan, 10.0]], left=-2.0, top=1.0)
    members = {
        "A": grid_from_array([[60.0, 90.0], [1.0, 20.0]], left=-2.0, top=1.0),
        "B": grid_from_array([[40.0, 110.0], [1.0, 30.0]], left=-2.0, top=1.0),
    }
    stack = align_ensemble(baseline, members)
    return compute_ensemble_statistics(stack_to_table(stack)), stack


def _coastline():
    return gpd.GeoDataFrame(geometry=[LineString([(-2, -1), (0, 1)])], crs="EPSG:4326")


def test_prepare_grid_from_table():
    table, stack = _rank_table()

    array, bounds, crs = _prepare_statistic_grid(table, "rank_pr_fut", stack)

    assert array.shape == (2, 2)
    assert np.isnan(array[1, 0])
    assert array[1, 1] == pytest.approx(1.0)
    assert bounds.left == pytest.approx(-2.0)
    assert bounds.top == pytest.approx(1.0)
    assert str(crs) == "EPSG:4326"


def test_prepare_grid_masks_infinite_values():
    grid = grid_from_array([[np.inf, 1.0]])

    array, _, _ = _prepare_statistic_grid(grid)

    assert np.isnan(array[0, 0])
    assert array[0, 1] == 1.0


def test_table_without_template_rejected():
    table, _ = _rank_table()

    with pytest.raises(ValueError):
        _prepare_statistic_grid(table, "rank_pr_fut")


def test_unsupported_source_rejected():
    with pytest.raises(TypeError):
        _prepare_statistic_grid(np.zeros((2, 2)))


def test_plot_table_with_coastlines_and_save(tmp_path):
    table, stack = _rank_table()
    out = tmp_path / "maps" / "rank.png"

    fig, ax = plot_statistic_map(
        table,
        "Rank score",
        column="rank_pr_fut",
        template=stack,
        base_shp=_coastline(),
        output_path=out,
    )

    assert out.exists()
    assert ax.get_title() == "Rank score"
    assert ax.get_xlabel() == "Longitude"
    plt.close(fig)


def test_plot_ratio_with_linear_scale():
    grid = grid_from_array([[0.5, 1.0], [1.5, 2.0]])

    fig, _ = plot_statistic_map(
        grid,
        "Ratio",
        vmin=None,
        vmax=None,
        divergence_center=None,
        base_shp=gpd.GeoDataFrame(),
    )

    plt.close(fig)


def test_plot_all_nan_raises():
    grid = grid_from_array([[np.nan, np.nan]])

    with pytest.raises(ValueError):
        plot_statistic_map(grid, "Empty", base_shp=gpd.GeoDataFrame())


def test_registered_coastlines_are_reused(monkeypatch):
    monkeypatch.setattr(map_plotting, "_coastline_cache", {})
    layer = _coastline()

    register_coastlines("LR", layer)

    assert get_coastlines("lr") is layer


def test_unknown_coastline_resolution():
    with pytest.raises(ValueError):
        get_coastlines("mr")
