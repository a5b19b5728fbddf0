"""
End-to-end run: load the ensemble, align it, tabulate the region of interest
and compute the per-cell statistics.

Alignment and tabulation must finish before any statistic is computed; only
the statistics stage runs in parallel.
"""

# -----------------------------------------------------------------------------
# MODULES
# -----------------------------------------------------------------------------
from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional, Sequence, Tuple, Union

import pandas as pd
import xarray as xr
from tqdm.auto import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from precip_rank.cell_table import stack_to_table, table_to_grid, write_single_band_tif
from precip_rank.ensemble_stats import compute_ensemble_statistics, stat_columns
from precip_rank.grid_alignment import align_ensemble, baseline_label, crop_to_bounds
from precip_rank.grid_sources import (
    BIOCLIM_ANNUAL_PRECIP_BAND,
    DEFAULT_PERIOD,
    DEFAULT_RESOLUTION,
    DEFAULT_SCENARIO,
    MODEL_IDS,
    TROPICS_BBOX,
    future_grid_path,
    load_annual_total,
    load_single_band,
    present_grid_path,
)
from precip_rank.logs import pipeline_logger
from precip_rank.paths import outputs_path

PathLike = Union[str, Path]
BBox = Tuple[float, float, float, float]


def run_from_grids(
    baseline: xr.DataArray,
    projections: Union[Sequence[xr.DataArray], Mapping[str, xr.DataArray]],
    model_ids: Optional[Sequence[str]] = None,
    region: Optional[BBox] = None,
    variable: str = "pr",
    n_jobs: int = 1,
) -> Tuple[pd.DataFrame, xr.Dataset]:
    """
    Align in-memory grids and compute the statistics table.

    Returns
    -------
    (table, stack)
        The statistics table and the aligned stack, cropped to ``region``
        when given, for re-rasterizing table columns.
    """
    stack = align_ensemble(baseline, projections, model_ids=model_ids, variable=variable)
    if region is not None:
        stack = crop_to_bounds(stack, region)

    table = stack_to_table(stack, baseline_column=baseline_label(variable))
    n_members = len(stack.data_vars) - 1
    table = compute_ensemble_statistics(
        table,
        baseline_column=baseline_label(variable),
        n_members=n_members,
        variable=variable,
        n_jobs=n_jobs,
    )
    return table, stack


def run_precipitation_rank(
    model_ids: Sequence[str] = MODEL_IDS,
    scenario: str = DEFAULT_SCENARIO,
    resolution: str = DEFAULT_RESOLUTION,
    period: str = DEFAULT_PERIOD,
    region: Optional[BBox] = TROPICS_BBOX,
    root: Optional[PathLike] = None,
    monthly_future: bool = True,
    n_jobs: int = 1,
    output_dir: Optional[PathLike] = None,
    render: bool = False,
) -> pd.DataFrame:
    """
    Compute the precipitation rank statistics for an ensemble on disk.

    Parameters
    ----------
    model_ids, scenario, resolution, period:
        Identify the ensemble members to load.
    region:
        Region of interest ``(min_lon, min_lat, max_lon, max_lat)``;
        defaults to the tropical belt. ``None`` keeps the full extent.
    root:
        WorldClim directory holding ``present/`` and ``future/``.
    monthly_future:
        Sum 12-band monthly ``prec`` grids when ``True``; read band 12 of
        the bioclimatic ``bioc`` grids otherwise.
    n_jobs:
        Workers for the statistics stage.
    output_dir:
        When given, write ``rank_pr_fut.tif`` there (and ``rank_pr_fut.png``
        when ``render`` is set). ``render`` without ``output_dir`` writes to
        ``outputs/``.
    """
    pipeline_logger.info(
        "Loading %s members for %s / %s / %s", len(model_ids), scenario, resolution, period
    )
    baseline = load_single_band(present_grid_path(resolution, root=root))

    projections = {}
    with logging_redirect_tqdm(loggers=[pipeline_logger]):
        for model_id in tqdm(model_ids, desc="Loading ensemble", unit="model"):
            path = future_grid_path(model_id, scenario, resolution, period, root=root, monthly=monthly_future)
            if monthly_future:
                projections[model_id] = load_annual_total(path)
            else:
                projections[model_id] = load_single_band(path, band=BIOCLIM_ANNUAL_PRECIP_BAND)

    table, stack = run_from_grids(baseline, projections, region=region, n_jobs=n_jobs)

    if render and output_dir is None:
        output_dir = outputs_path()

    if output_dir is not None:
        rank_col = stat_columns()["rank_score"]
        grid = table_to_grid(table, rank_col, stack)
        write_single_band_tif(grid, Path(output_dir) / f"{rank_col}.tif")

        if render:
            # Lazy import: matplotlib/geopandas only load when a map is requested
            import matplotlib.pyplot as plt
            from precip_rank.map_plotting import plot_statistic_map

            fig, _ = plot_statistic_map(
                grid,
                f"Share of {len(model_ids)} CMIP6 models projecting wetter conditions ({scenario}, {period})",
                output_path=Path(output_dir) / f"{rank_col}.png",
            )
            plt.close(fig)

    pipeline_logger.info("Done: %s cells", len(table))
    return table
