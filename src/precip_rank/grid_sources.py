"""Locating and loading the precipitation grids of the ensemble.

Grids follow the WorldClim 2.1 layout: a present-day annual precipitation
layer (``bio_12``) and, per CMIP6 model, scenario and period, either a
12-band monthly precipitation layer (``prec``) or a 19-band bioclimatic layer
(``bioc``) whose band 12 is annual precipitation. Files are expected on disk
beneath ``data/worldclim``; fetching them is left to whoever provisions the
data directory.

Every grid is returned as an :class:`xarray.DataArray` with dims
``("y", "x")``, the affine transform and CRS carried by the ``rio``
accessor, and no-data masked to ``NaN``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import rioxarray as rxr
import xarray as xr
from rasterio.transform import from_origin

from precip_rank.paths import data_path

PathLike = Union[str, Path]
BBox = Tuple[float, float, float, float]

# CMIP6 models making up the ensemble.
MODEL_IDS: Tuple[str, ...] = (
    "ACCESS-CM2",
    "ACCESS-ESM1-5",
    "BCC-CSM2-MR",
    "CanESM5",
    "CMCC-ESM2",
    "CNRM-CM6-1",
    "EC-Earth3-Veg",
    "FIO-ESM-2-0",
    "GFDL-ESM4",
    "GISS-E2-1-G",
    "HadGEM3-GC31-LL",
    "INM-CM5-0",
    "IPSL-CM6A-LR",
    "MIROC6",
    "MPI-ESM1-2-HR",
    "MRI-ESM2-0",
    "UKESM1-0-LL",
)

DEFAULT_SCENARIO = "ssp585"
DEFAULT_RESOLUTION = "10m"
DEFAULT_PERIOD = "2061-2080"

# (min_lon, min_lat, max_lon, max_lat)
TROPICS_BBOX: BBox = (-180.0, -23.5, 180.0, 23.5)

PRESENT_TEMPLATE = "wc2.1_{resolution}_bio_12.tif"
FUTURE_MONTHLY_TEMPLATE = "wc2.1_{resolution}_prec_{model_id}_{scenario}_{period}.tif"
FUTURE_BIOCLIM_TEMPLATE = "wc2.1_{resolution}_bioc_{model_id}_{scenario}_{period}.tif"
BIOCLIM_ANNUAL_PRECIP_BAND = 12


def _as_path(value: PathLike) -> Path:
    """Return ``value`` as a :class:`~pathlib.Path` instance."""

    return value if isinstance(value, Path) else Path(value)


def _ensure_exists(path: Path, *, description: str) -> Path:
    """Ensure ``path`` exists before attempting to read it."""

    if not path.exists():
        raise FileNotFoundError(f"Expected {description} at '{path}'.")
    return path


def _resolve_root(root: Optional[PathLike]) -> Path:
    return data_path("worldclim") if root is None else _as_path(root)


def present_grid_path(resolution: str = DEFAULT_RESOLUTION, root: Optional[PathLike] = None) -> Path:
    """Return the path of the present-day annual precipitation grid."""

    name = PRESENT_TEMPLATE.format(resolution=resolution)
    return _resolve_root(root) / "present" / name


def future_grid_path(
    model_id: str,
    scenario: str = DEFAULT_SCENARIO,
    resolution: str = DEFAULT_RESOLUTION,
    period: str = DEFAULT_PERIOD,
    root: Optional[PathLike] = None,
    *,
    monthly: bool = True,
) -> Path:
    """Return the path of one ensemble member's future precipitation grid.

    Parameters
    ----------
    model_id, scenario, resolution, period:
        Identify the member, e.g. ``("MIROC6", "ssp585", "10m", "2061-2080")``.
    root:
        Directory holding ``present/`` and ``future/``. Defaults to
        ``data/worldclim``.
    monthly:
        ``True`` for the 12-band ``prec`` product, ``False`` for the
        bioclimatic ``bioc`` product.
    """

    template = FUTURE_MONTHLY_TEMPLATE if monthly else FUTURE_BIOCLIM_TEMPLATE
    name = template.format(
        resolution=resolution,
        model_id=model_id,
        scenario=scenario,
        period=period,
    )
    return _resolve_root(root) / "future" / name


def load_single_band(path: PathLike, band: int = 1) -> xr.DataArray:
    """
    Load one band of a raster as a float ``(y, x)`` DataArray with NaN no-data.
    """
    path = _ensure_exists(_as_path(path), description="precipitation grid")
    with rxr.open_rasterio(path, masked=True) as da:
        if band not in da["band"].values:
            raise ValueError(f"Band {band} out of range for '{path}' with {da.sizes['band']} bands.")
        grid = da.sel(band=band).drop_vars("band").astype("float64").load()

    grid.name = path.stem
    return grid


def load_annual_total(path: PathLike) -> xr.DataArray:
    """
    Sum a multi-band monthly raster into an annual total.

    A cell missing in any band is missing in the total.
    """
    path = _ensure_exists(_as_path(path), description="monthly precipitation grid")
    with rxr.open_rasterio(path, masked=True) as da:
        da = da.astype("float64").load()

    crs = da.rio.crs
    transform = da.rio.transform()
    total = da.sum(dim="band", skipna=True, min_count=da.sizes["band"])
    total = total.rio.write_crs(crs).rio.write_transform(transform)
    total.name = path.stem
    return total


def grid_from_array(
    values: Union[Sequence[Sequence[float]], np.ndarray],
    *,
    left: float = 0.0,
    top: Optional[float] = None,
    cell_size: Union[float, Tuple[float, float]] = 1.0,
    crs: Optional[str] = "EPSG:4326",
    nodata: Optional[float] = None,
    name: Optional[str] = None,
) -> xr.DataArray:
    """Build an in-memory grid from a 2-D array.

    Parameters
    ----------
    values:
        Row-major samples, first row northernmost.
    left, top:
        Outer edges of the upper-left cell. ``top`` defaults to the grid
        height in cell units so the grid sits on the origin.
    cell_size:
        Either one size for both axes or ``(res_x, res_y)``.
    nodata:
        Sentinel in ``values`` to mask to ``NaN``.
    """

    data = np.asarray(values, dtype="float64")
    if data.ndim != 2:
        raise ValueError("Grid values must be 2D.")

    if isinstance(cell_size, tuple):
        res_x, res_y = (float(c) for c in cell_size)
    else:
        res_x = res_y = float(cell_size)

    height, width = data.shape
    if top is None:
        top = height * res_y

    if nodata is not None:
        data = np.where(data == nodata, np.nan, data)

    x = left + (np.arange(width) + 0.5) * res_x
    y = top - (np.arange(height) + 0.5) * res_y

    da = xr.DataArray(data, dims=("y", "x"), coords={"y": y, "x": x}, name=name)
    if crs is not None:
        da = da.rio.write_crs(crs)
    da = da.rio.write_transform(from_origin(left, top, res_x, res_y))
    da = da.rio.write_nodata(np.nan)
    return da
