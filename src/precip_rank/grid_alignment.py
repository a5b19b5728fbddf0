"""
Cropping and co-registration of the baseline and ensemble grids.

Projections share one global grid, so the first projection defines the
reference extent and the independently sourced baseline is cropped to it.
Nothing is reprojected or resampled here: any difference in shape, cell size,
extent or CRS left after cropping is a :class:`GeometryError`.
"""

# -----------------------------------------------------------------------------
# MODULES
# -----------------------------------------------------------------------------
from __future__ import annotations

from typing import List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import rioxarray  # noqa: F401 - registers the rio accessor
import xarray as xr
from rasterio.windows import Window
from rasterio.windows import transform as window_transform

from precip_rank.exceptions import GeometryError
from precip_rank.logs import align_logger

BBox = Tuple[float, float, float, float]
Raster = Union[xr.DataArray, xr.Dataset]

# Extents may differ by this fraction of a cell before they count as different.
EXTENT_TOLERANCE = 1e-3


# -----------------------------------------------------------------------------
# FUNCTIONS
# -----------------------------------------------------------------------------
def baseline_label(variable: str = "pr") -> str:
    return f"{variable}_pres"


def member_label(model_id: str, variable: str = "pr") -> str:
    return f"{variable}_fut_{model_id}"


def grid_cell_size(grid: Raster) -> Tuple[float, float]:
    """Return the positive ``(res_x, res_y)`` cell size of ``grid``."""
    transform = grid.rio.transform()
    return abs(transform.a), abs(transform.e)


def grid_bounds(grid: Raster) -> BBox:
    """Return ``(left, bottom, right, top)`` of ``grid``."""
    left, bottom, right, top = grid.rio.bounds()
    return float(left), float(bottom), float(right), float(top)


def _cell_centres(offset: float, step: float, count: int) -> np.ndarray:
    return offset + (np.arange(count) + 0.5) * step


def _covered_range(centres: np.ndarray, low: float, high: float) -> Optional[Tuple[int, int]]:
    inside = np.nonzero((centres >= low) & (centres <= high))[0]
    if inside.size == 0:
        return None
    return int(inside[0]), int(inside[-1]) + 1


def crop_to_bounds(grid: Raster, bounds: BBox) -> Raster:
    """
    Crop ``grid`` to the cells whose centres fall inside ``bounds``.

    Parameters
    ----------
    grid:
        DataArray or Dataset with ``y``/``x`` dims and a rio transform.
    bounds:
        ``(left, bottom, right, top)`` in the grid's CRS.

    Returns
    -------
    The cropped grid with its transform updated to the new origin.
    """
    left, bottom, right, top = bounds
    if left > right or bottom > top:
        raise GeometryError(f"Invalid bounds {bounds}: expected (left, bottom, right, top).")

    transform = grid.rio.transform()
    height, width = grid.sizes["y"], grid.sizes["x"]

    cols = _covered_range(_cell_centres(transform.c, transform.a, width), left, right)
    rows = _covered_range(_cell_centres(transform.f, transform.e, height), bottom, top)
    if cols is None or rows is None:
        raise GeometryError(f"Bounds {bounds} do not overlap the grid extent {grid_bounds(grid)}.")

    window = Window(cols[0], rows[0], cols[1] - cols[0], rows[1] - rows[0])
    cropped = grid.isel(y=slice(rows[0], rows[1]), x=slice(cols[0], cols[1]))
    return cropped.rio.write_transform(window_transform(window, transform))


def check_geometry(reference: xr.DataArray, grid: xr.DataArray, label: str) -> None:
    """Raise :class:`GeometryError` unless ``grid`` matches ``reference`` exactly."""
    ref_shape = (reference.sizes["y"], reference.sizes["x"])
    shape = (grid.sizes["y"], grid.sizes["x"])
    if shape != ref_shape:
        raise GeometryError(
            f"'{label}' has {shape[0]} rows x {shape[1]} cols; reference has {ref_shape[0]} x {ref_shape[1]}."
        )

    ref_res = grid_cell_size(reference)
    res = grid_cell_size(grid)
    if not np.allclose(res, ref_res, rtol=1e-6, atol=0.0):
        raise GeometryError(f"'{label}' has cell size {res}; reference has {ref_res}.")

    ref_bounds = grid_bounds(reference)
    bounds = grid_bounds(grid)
    if not np.allclose(bounds, ref_bounds, rtol=0.0, atol=EXTENT_TOLERANCE * min(ref_res)):
        raise GeometryError(f"'{label}' covers {bounds}; reference covers {ref_bounds}.")

    ref_crs, crs = reference.rio.crs, grid.rio.crs
    if ref_crs is not None and crs is not None and ref_crs != crs:
        raise GeometryError(f"'{label}' is in {crs}; reference is in {ref_crs}.")


def _resolve_members(
    projections: Union[Sequence[xr.DataArray], Mapping[str, xr.DataArray]],
    model_ids: Optional[Sequence[str]],
) -> Tuple[List[str], List[xr.DataArray]]:
    if isinstance(projections, Mapping):
        ids = [str(k) for k in projections.keys()]
        grids = list(projections.values())
        if model_ids is not None and list(model_ids) != ids:
            raise ValueError("model_ids must match the keys of the projections mapping.")
    else:
        grids = list(projections)
        if model_ids is None:
            names = [g.name for g in grids]
            if all(isinstance(n, str) and n for n in names):
                ids = list(names)
            else:
                ids = [f"{i + 1:02d}" for i in range(len(grids))]
        else:
            ids = [str(m) for m in model_ids]
            if len(ids) != len(grids):
                raise ValueError(f"Got {len(ids)} model ids for {len(grids)} projection grids.")

    if not grids:
        raise ValueError("At least one projection grid is required.")

    return ids, grids


def align_ensemble(
    baseline: xr.DataArray,
    projections: Union[Sequence[xr.DataArray], Mapping[str, xr.DataArray]],
    model_ids: Optional[Sequence[str]] = None,
    variable: str = "pr",
) -> xr.Dataset:
    """
    Crop the baseline to the first projection's extent and stack every grid.

    Parameters
    ----------
    baseline:
        Present-day grid. May cover a larger extent than the projections.
    projections:
        Ordered future grids, or an ordered ``{model_id: grid}`` mapping.
    model_ids:
        Identifiers for a sequence of projections. Defaults to the grids'
        names, or ``01``, ``02``, ... when they are unnamed.
    variable:
        Prefix of the band labels.

    Returns
    -------
    xr.Dataset
        Data variables ``{variable}_pres`` followed by
        ``{variable}_fut_<model_id>`` in input order, sharing the reference
        grid's coordinates, transform and CRS.

    Raises
    ------
    GeometryError
        If the cropped baseline or any projection differs from the reference
        geometry.
    """
    ids, grids = _resolve_members(projections, model_ids)

    labels = [baseline_label(variable)] + [member_label(m, variable) for m in ids]
    duplicates = sorted({lab for lab in labels if labels.count(lab) > 1})
    if duplicates:
        raise ValueError(f"Duplicate band labels: {duplicates}")

    reference = grids[0]
    ref_bounds = grid_bounds(reference)
    align_logger.debug("Reference extent %s from '%s'", ref_bounds, labels[1])

    cropped = crop_to_bounds(baseline, ref_bounds)
    align_logger.debug(
        "Baseline cropped from %s to %s cells",
        (baseline.sizes["y"], baseline.sizes["x"]),
        (cropped.sizes["y"], cropped.sizes["x"]),
    )

    bands = [cropped] + grids
    for label, grid in zip(labels, bands):
        check_geometry(reference, grid, label)

    data_vars = {}
    for label, grid in zip(labels, bands):
        band = grid.drop_vars("spatial_ref", errors="ignore")
        band = band.assign_coords(y=reference["y"].values, x=reference["x"].values)
        band.name = label
        data_vars[label] = band

    stack = xr.Dataset(data_vars)
    crs = reference.rio.crs if reference.rio.crs is not None else baseline.rio.crs
    if crs is not None:
        stack = stack.rio.write_crs(crs)
    stack = stack.rio.write_transform(reference.rio.transform())

    align_logger.info(
        "Aligned %s bands on a %s x %s grid", len(labels), reference.sizes["y"], reference.sizes["x"]
    )
    return stack
