from pathlib import Path

import numpy as np
import pytest
import rasterio
from rasterio.transform import from_origin

from precip_rank.exceptions import GeometryError
from precip_rank.grid_sources import future_grid_path, grid_from_array, present_grid_path
from precip_rank.pipeline import run_from_grids, run_precipitation_rank


def _write_raster(path: Path, data: np.ndarray, transform, nodata=None) -> None:
    data = np.asarray(data, dtype="float32")
    if data.ndim == 2:
        data = data[np.newaxis, ...]
    bands, height, width = data.shape

    path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=height,
        width=width,
        count=bands,
        dtype="float32",
        crs="EPSG:4326",
        transform=transform,
        nodata=nodata,
    ) as dst:
        dst.write(data)


def test_two_cell_ensemble_end_to_end():
    baseline = grid_from_array([[50.0, 100.0]])
    projections = [grid_from_array([[60.0, 90.0]]), grid_from_array([[40.0, 110.0]])]

    table, stack = run_from_grids(baseline, projections, model_ids=["A", "B"])

    assert len(table) == 2
    np.testing.assert_allclose(table["pr_fut"], [50.0, 100.0])
    np.testing.assert_allclose(table["r_pr_fut"], [1.0, 1.0])
    np.testing.assert_allclose(table["rank_pr_fut"], [0.5, 0.5])
    np.testing.assert_allclose(table["t_pr_fut"], [0.5, 0.5])
    assert list(stack.data_vars) == ["pr_pres", "pr_fut_A", "pr_fut_B"]


def test_region_limits_table():
    baseline = grid_from_array(np.arange(8, dtype=float).reshape(2, 4), left=-2.0, top=1.0)
    projections = {"A": baseline + 1.0}

    table, stack = run_from_grids(baseline, projections, region=(-1.0, -1.0, 1.0, 1.0))

    assert len(table) == 4
    assert table["x"].tolist() == [-0.5, 0.5, -0.5, 0.5]
    assert stack.sizes == {"y": 2, "x": 2}
    assert (table["rank_pr_fut"] == 1.0).all()


def test_mismatched_member_aborts_run():
    baseline = grid_from_array([[50.0, 100.0]])
    projections = [grid_from_array([[60.0, 90.0]]), grid_from_array([[60.0, 90.0]], cell_size=0.5)]

    with pytest.raises(GeometryError):
        run_from_grids(baseline, projections, model_ids=["A", "B"])


def test_run_from_files_writes_rank_grid(tmp_path):
    transform = from_origin(-2.0, 1.0, 1.0, 1.0)
    present = np.array([[600.0, 1200.0, -1.0, 240.0], [0.0, 12.0, 120.0, 360.0]])
    _write_raster(present_grid_path("10m", root=tmp_path), present, transform, nodata=-1.0)

    monthly = {
        "A": np.full((12, 2, 4), 60.0),
        "B": np.full((12, 2, 4), 5.0),
    }
    for model_id, data in monthly.items():
        _write_raster(future_grid_path(model_id, root=tmp_path), data, transform)

    out_dir = tmp_path / "out"
    table = run_precipitation_rank(
        model_ids=["A", "B"],
        region=None,
        root=tmp_path,
        output_dir=out_dir,
    )

    assert len(table) == 7
    first = table.iloc[0]
    assert first["pr_fut_A"] == pytest.approx(720.0)
    assert first["pr_fut_B"] == pytest.approx(60.0)
    assert first["rank_pr_fut"] == pytest.approx(0.5)

    with rasterio.open(out_dir / "rank_pr_fut.tif") as src:
        rank = src.read(1)
        assert src.transform == transform

    assert np.isnan(rank[0, 2])
    assert rank[1, 0] == pytest.approx(1.0)


def test_missing_member_file_raises(tmp_path):
    transform = from_origin(0.0, 1.0, 1.0, 1.0)
    _write_raster(present_grid_path("10m", root=tmp_path), [[1.0]], transform)

    with pytest.raises(FileNotFoundError):
        run_precipitation_rank(model_ids=["A"], region=None, root=tmp_path)
