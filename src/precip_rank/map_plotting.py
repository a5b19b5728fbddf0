# MAP FUNCTIONS #

# MODULES
import numpy as np
import pandas as pd
import xarray as xr
import geopandas as gpd
import matplotlib.pyplot as plt
from matplotlib.colors import Normalize, TwoSlopeNorm
import rioxarray  # noqa: F401 - registers the rio accessor
from rasterio.coords import BoundingBox
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

from precip_rank.cell_table import table_to_grid
from precip_rank.logs import plot_logger
from precip_rank.paths import data_path

# Coastlines (loaded lazily)
_COASTLINE_PATHS = {
    "lr": data_path("coastlines", "ne_110m_coastline.shp"),
    "hr": data_path("coastlines", "ne_10m_coastline.shp"),
}

_coastline_cache: Dict[str, gpd.GeoDataFrame] = {}


def _safe_read_file(path: Union[str, Path]) -> gpd.GeoDataFrame:
    try:
        return gpd.read_file(path)
    except Exception:  # pragma: no cover - basemap is optional decoration
        plot_logger.warning("Could not read basemap %s; plotting without it", path)
        return gpd.GeoDataFrame()


def get_coastlines(resolution: str = "lr") -> gpd.GeoDataFrame:
    """Return a cached coastline layer for the requested ``resolution``.

    Parameters
    ----------
    resolution:
        ``"lr"`` (Natural Earth 1:110m, default) or ``"hr"`` (1:10m).

    Notes
    -----
    A missing shapefile yields an empty GeoDataFrame, so maps still render
    without decoration. Callers holding their own layer can register it with
    :func:`register_coastlines`.
    """

    resolution_key = resolution.lower()
    try:
        shapefile_path = _COASTLINE_PATHS[resolution_key]
    except KeyError as exc:
        raise ValueError(f"Unknown coastline resolution: {resolution!r}") from exc

    if resolution_key not in _coastline_cache:
        _coastline_cache[resolution_key] = _safe_read_file(shapefile_path)

    return _coastline_cache[resolution_key]


def register_coastlines(resolution: str, basemap: gpd.GeoDataFrame) -> None:
    """Register ``basemap`` for ``resolution`` to reuse without disk I/O."""

    _coastline_cache[resolution.lower()] = basemap


# FUNCTIONS
def _prepare_statistic_grid(
    source: Union[xr.DataArray, pd.DataFrame],
    column: Optional[str] = None,
    template: Optional[Union[xr.DataArray, xr.Dataset]] = None,
) -> Tuple[np.ndarray, BoundingBox, object]:
    """Normalise a grid or a cell table into ``(array, bounds, crs)`` for plotting.

    Non-finite values (missing cells, infinite ratios) become ``NaN`` so they
    render transparent.
    """

    if isinstance(source, pd.DataFrame):
        if column is None or template is None:
            raise ValueError("Plotting a table needs both 'column' and 'template'.")
        grid = table_to_grid(source, column, template)
    elif isinstance(source, xr.DataArray):
        grid = source
    else:
        raise TypeError("source must be an xarray.DataArray or a pandas.DataFrame")

    data = grid.values.astype("float32", copy=True)
    data[~np.isfinite(data)] = np.nan

    minx, miny, maxx, maxy = grid.rio.bounds()
    bounds = BoundingBox(left=minx, bottom=miny, right=maxx, top=maxy)
    return data, bounds, grid.rio.crs


def plot_statistic_map(
    source: Union[xr.DataArray, pd.DataFrame],
    title: str,
    column: Optional[str] = None,
    template: Optional[Union[xr.DataArray, xr.Dataset]] = None,
    label_title: str = "Share of models projecting an increase",
    cmap: str = "BrBG",
    vmin: Optional[float] = 0.0,
    vmax: Optional[float] = 1.0,
    divergence_center: Optional[float] = 0.5,
    base_shp: Optional[gpd.GeoDataFrame] = None,
    x_size: float = 14,
    y_size: float = 5,
    output_path: Optional[Union[str, Path]] = None,
    plt_show: bool = False,
):
    """
    Plot an ensemble statistic in its native CRS with coastlines on top.

    - ``source`` is either a re-rasterized grid or a cell table, in which
      case ``column`` and ``template`` select and place the values.
    - NaN cells are transparent.
    - ``divergence_center`` centres a diverging colormap (0.5 for rank and
      probability scores, 1 for ratios); ``None`` gives a linear scale.
    - ``base_shp`` defaults to the cached coastline layer and is reprojected
      to the grid CRS before overlay.
    """

    raster_data, bounds, raster_crs = _prepare_statistic_grid(source, column, template)

    values = raster_data[np.isfinite(raster_data)]
    if values.size == 0:
        raise ValueError("Grid is empty or fully NaN; nothing to plot.")

    if vmin is None:
        vmin = float(values.min())
    if vmax is None:
        vmax = float(values.max())

    if divergence_center is not None and vmin < divergence_center < vmax:
        norm = TwoSlopeNorm(vmin=vmin, vcenter=divergence_center, vmax=vmax)
    else:
        norm = Normalize(vmin=vmin, vmax=vmax)

    fig, ax = plt.subplots(figsize=(x_size, y_size))
    extent = [bounds.left, bounds.right, bounds.bottom, bounds.top]

    img = ax.imshow(
        raster_data,
        extent=extent,
        origin="upper",
        cmap=plt.get_cmap(cmap),
        norm=norm,
        interpolation="nearest",
    )
    fig.colorbar(img, ax=ax, label=label_title, shrink=0.8)

    if base_shp is None:
        base_shp = get_coastlines()

    if not base_shp.empty:
        try:
            shp_proj = base_shp.to_crs(raster_crs) if (raster_crs is not None and base_shp.crs is not None) else base_shp
            shp_proj.plot(ax=ax, color="black", linewidth=0.5)
        except Exception as e:
            plot_logger.warning("Could not reproject/plot base_shp: %s", e)

    ax.set_xlim(bounds.left, bounds.right)
    ax.set_ylim(bounds.bottom, bounds.top)
    ax.set_title(title)
    if raster_crs is not None and raster_crs.is_geographic:
        ax.set_xlabel("Longitude")
        ax.set_ylabel("Latitude")
    else:
        ax.set_xlabel("X")
        ax.set_ylabel("Y")

    if output_path is not None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=200, bbox_inches="tight")
        plot_logger.info("Saved map to %s", output_path)

    if plt_show:
        plt.show()

    return fig, ax
