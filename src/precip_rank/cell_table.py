"""
Flattening an aligned stack into a per-cell table and back onto a grid.
"""

# -----------------------------------------------------------------------------
# MODULES
# -----------------------------------------------------------------------------
from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
import pandas as pd
import rasterio
import rioxarray  # noqa: F401 - registers the rio accessor
import xarray as xr

from precip_rank.grid_alignment import crop_to_bounds
from precip_rank.logs import table_logger

PathLike = Union[str, Path]
BBox = Tuple[float, float, float, float]

COORD_COLUMNS = ["x", "y"]


# -----------------------------------------------------------------------------
# FUNCTIONS
# -----------------------------------------------------------------------------
def crop_stack(stack: xr.Dataset, region: BBox) -> xr.Dataset:
    """Crop every band of ``stack`` to ``region`` (min_lon, min_lat, max_lon, max_lat)."""
    return crop_to_bounds(stack, region)


def stack_to_table(
    stack: xr.Dataset,
    region: Optional[BBox] = None,
    baseline_column: Optional[str] = None,
) -> pd.DataFrame:
    """
    Flatten ``stack`` into one row per cell with a present baseline sample.

    Parameters
    ----------
    stack:
        Aligned stack from :func:`precip_rank.grid_alignment.align_ensemble`.
    region:
        Optional region of interest to crop to first.
    baseline_column:
        Band whose missing samples drop a cell. Defaults to the first band.

    Returns
    -------
    pd.DataFrame
        Columns ``x``, ``y`` (cell centres) followed by the bands in stack
        order. Rows follow the raster scan order, top row first. Missing
        member samples stay ``NaN``.
    """
    if region is not None:
        stack = crop_stack(stack, region)

    labels = [str(name) for name in stack.data_vars]
    if not labels:
        raise ValueError("Stack has no bands to tabulate.")

    baseline_column = baseline_column or labels[0]
    if baseline_column not in labels:
        raise ValueError(f"Baseline band '{baseline_column}' not in stack bands {labels}.")

    frame = (
        stack.drop_vars("spatial_ref", errors="ignore")
        .to_dataframe(dim_order=["y", "x"])
        .reset_index()
    )
    frame = frame[COORD_COLUMNS + labels]

    n_cells = len(frame)
    frame = frame[frame[baseline_column].notna()].reset_index(drop=True)

    table_logger.info(
        "Tabulated %s of %s cells (%s without baseline dropped)", len(frame), n_cells, n_cells - len(frame)
    )
    return frame


def table_to_grid(table: pd.DataFrame, column: str, template: Union[xr.DataArray, xr.Dataset]) -> xr.DataArray:
    """
    Re-rasterize one column of ``table`` onto the grid of ``template``.

    Cells without a row stay ``NaN``.
    """
    if column not in table.columns:
        raise ValueError(f"Column '{column}' not in table.")

    xs = template["x"].values
    ys = template["y"].values
    cols = pd.Index(xs).get_indexer(table["x"].to_numpy())
    rows = pd.Index(ys).get_indexer(table["y"].to_numpy())
    if (cols < 0).any() or (rows < 0).any():
        raise ValueError("Table contains cells that are not on the template grid.")

    values = np.full((len(ys), len(xs)), np.nan, dtype="float64")
    values[rows, cols] = table[column].to_numpy(dtype="float64")

    grid = xr.DataArray(values, dims=("y", "x"), coords={"y": ys, "x": xs}, name=column)
    if template.rio.crs is not None:
        grid = grid.rio.write_crs(template.rio.crs)
    grid = grid.rio.write_transform(template.rio.transform())
    return grid.rio.write_nodata(np.nan)


def write_single_band_tif(grid: xr.DataArray, out_path: PathLike) -> Path:
    """
    Write a single-band DataArray (dims 'y','x') to a float32 GeoTIFF with NaN no-data.
    """
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    profile = {
        "driver": "GTiff",
        "height": grid.sizes["y"],
        "width": grid.sizes["x"],
        "count": 1,
        "dtype": "float32",
        "crs": grid.rio.crs,
        "transform": grid.rio.transform(),
        "nodata": np.nan,
    }
    with rasterio.open(out_path, "w", **profile) as dst:
        dst.write(grid.values.astype("float32"), 1)

    table_logger.info("Wrote %s", out_path)
    return out_path
