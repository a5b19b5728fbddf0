"""precip_rank: ensemble precipitation change statistics on raster grids.

The top-level package re-exports the workflow so notebooks can depend on a
stable surface area. The curated groups are:

* Grid sources (:mod:`precip_rank.grid_sources`)
  - :data:`MODEL_IDS`, :data:`TROPICS_BBOX`
  - :func:`present_grid_path`, :func:`future_grid_path`
  - :func:`load_single_band`, :func:`load_annual_total`, :func:`grid_from_array`
* Alignment (:mod:`precip_rank.grid_alignment`)
  - :func:`align_ensemble`, :func:`crop_to_bounds`, :func:`check_geometry`
  - :func:`grid_bounds`, :func:`grid_cell_size`
* Cell tables (:mod:`precip_rank.cell_table`)
  - :func:`stack_to_table`, :func:`crop_stack`
  - :func:`table_to_grid`, :func:`write_single_band_tif`
* Ensemble statistics (:mod:`precip_rank.ensemble_stats`)
  - :func:`compute_ensemble_statistics`, :func:`cell_statistics`
  - :func:`block_statistics`, :func:`stat_columns`
* Pipeline (:mod:`precip_rank.pipeline`)
  - :func:`run_precipitation_rank`, :func:`run_from_grids`
* Errors (:mod:`precip_rank.exceptions`)
  - :class:`GeometryError`, :class:`RowShapeError`

Plotting lives in :mod:`precip_rank.map_plotting` and is not imported here so
that the numeric stages do not pull in matplotlib.
"""

from .cell_table import crop_stack, stack_to_table, table_to_grid, write_single_band_tif
from .ensemble_stats import (
    block_statistics,
    cell_statistics,
    compute_ensemble_statistics,
    stat_columns,
)
from .exceptions import GeometryError, RowShapeError
from .grid_alignment import (
    align_ensemble,
    check_geometry,
    crop_to_bounds,
    grid_bounds,
    grid_cell_size,
)
from .grid_sources import (
    MODEL_IDS,
    TROPICS_BBOX,
    future_grid_path,
    grid_from_array,
    load_annual_total,
    load_single_band,
    present_grid_path,
)
from .pipeline import run_from_grids, run_precipitation_rank


_GRID_SOURCES_EXPORTS = [
    "MODEL_IDS",
    "TROPICS_BBOX",
    "future_grid_path",
    "grid_from_array",
    "load_annual_total",
    "load_single_band",
    "present_grid_path",
]
_ALIGNMENT_EXPORTS = [
    "align_ensemble",
    "check_geometry",
    "crop_to_bounds",
    "grid_bounds",
    "grid_cell_size",
]
_CELL_TABLE_EXPORTS = [
    "crop_stack",
    "stack_to_table",
    "table_to_grid",
    "write_single_band_tif",
]
_STATS_EXPORTS = [
    "block_statistics",
    "cell_statistics",
    "compute_ensemble_statistics",
    "stat_columns",
]
_PIPELINE_EXPORTS = [
    "run_from_grids",
    "run_precipitation_rank",
]
_ERROR_EXPORTS = [
    "GeometryError",
    "RowShapeError",
]


__all__ = (
    _GRID_SOURCES_EXPORTS
    + _ALIGNMENT_EXPORTS
    + _CELL_TABLE_EXPORTS
    + _STATS_EXPORTS
    + _PIPELINE_EXPORTS
    + _ERROR_EXPORTS
    + ["__version__", "__author__"]
)

# Package metadata
from importlib import metadata as _metadata
from pathlib import Path


try:
    __version__ = _metadata.version("precip_rank")
except _metadata.PackageNotFoundError:
    try:  # Python 3.11+
        import tomllib
    except ModuleNotFoundError:  # pragma: no cover - Python <3.11
        tomllib = None

    _pyproject = Path(__file__).resolve().parents[2] / "pyproject.toml"
    if tomllib is not None and _pyproject.exists():
        with _pyproject.open("rb") as _fp:
            __version__ = tomllib.load(_fp)["project"]["version"]
    else:
        __version__ = "0.0.0.dev1"

__author__ = "precip_rank contributors"
