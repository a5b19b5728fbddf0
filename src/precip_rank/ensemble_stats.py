"""
Per-cell ensemble statistics: how likely is future precipitation to exceed
present-day precipitation?

For a baseline sample ``b`` and the ensemble members ``f_1..f_n`` of
one cell:

* ``fut_mean``   mean of the members
* ``fut_sd``     sample standard deviation of the members (``n - 1``)
* ``ratio``      ``fut_mean / b``
* ``prob_score`` ``Phi((fut_mean - b) / fut_sd)``, Phi the standard normal CDF
* ``rank_score`` share of members strictly greater than ``b``

Degenerate cells are resolved before the generic formulas run:

* ``b == 0`` and ``fut_mean == 0`` gives ``ratio = 1`` (no change).
* ``b`` and every member identical gives ``prob_score = 0.5``.
* ``fut_sd == 0`` otherwise gives ``prob_score`` 1 or 0, the limit of Phi.

Missing members (``NaN``) are left out of that cell's ensemble, so ``n``
counts the members present. A cell with no members has ``NaN`` everywhere,
and a cell with one member has ``NaN`` spread.

Every cell depends only on its own samples, so the table can be split into
partitions, processed independently and concatenated back in order.
"""

# -----------------------------------------------------------------------------
# MODULES
# -----------------------------------------------------------------------------
from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, delayed, effective_n_jobs
from scipy.stats import norm
from tqdm.auto import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from precip_rank.exceptions import RowShapeError
from precip_rank.grid_alignment import baseline_label, member_label
from precip_rank.logs import stats_logger

STAT_KEYS = ("fut_mean", "fut_sd", "ratio", "prob_score", "rank_score")


def stat_columns(variable: str = "pr") -> Dict[str, str]:
    """Map each statistic to its output column name."""
    return {
        "fut_mean": f"{variable}_fut",
        "fut_sd": f"{variable}_fut_sd",
        "ratio": f"r_{variable}_fut",
        "prob_score": f"t_{variable}_fut",
        "rank_score": f"rank_{variable}_fut",
    }


# -----------------------------------------------------------------------------
# Kernel
# -----------------------------------------------------------------------------
def block_statistics(baseline: np.ndarray, members: np.ndarray) -> Dict[str, np.ndarray]:
    """
    Compute the ensemble statistics for a block of cells.

    Parameters
    ----------
    baseline : array (rows,)
    members : array (rows, n)
        ``NaN`` marks a missing member.

    Returns
    -------
    dict
        One ``(rows,)`` float array per key of :data:`STAT_KEYS`.
    """
    b = np.asarray(baseline, dtype="float64").reshape(-1)
    f = np.asarray(members, dtype="float64")
    if f.ndim != 2 or f.shape[0] != b.shape[0]:
        raise ValueError(f"members must be shaped (rows, n) with rows={b.shape[0]}, got {f.shape}")

    rows = b.shape[0]
    present = ~np.isnan(f)
    n = present.sum(axis=1)
    has_members = n > 0
    valid = has_members & ~np.isnan(b)

    f_min = np.where(present, f, np.inf).min(axis=1, initial=np.inf)
    f_max = np.where(present, f, -np.inf).max(axis=1, initial=-np.inf)
    identical = has_members & (f_min == f_max)

    with np.errstate(divide="ignore", invalid="ignore"):
        mean = np.where(has_members, np.where(present, f, 0.0).sum(axis=1) / n, np.nan)
        # exact mean for identical members, avoids rounding in sum / n
        mean = np.where(identical, f_min, mean)

        sq_dev = np.where(present, (f - mean[:, None]) ** 2, 0.0).sum(axis=1)
        sd = np.where(n > 1, np.sqrt(sq_dev / (n - 1)), np.nan)
        sd = np.where(identical & (n > 1), 0.0, sd)

        # ratio
        ratio = np.full(rows, np.nan)
        no_change = valid & (b == 0) & (mean == 0)
        ratio[no_change] = 1.0
        generic = valid & ~no_change
        ratio[generic] = mean[generic] / b[generic]

        # prob_score
        prob = np.full(rows, np.nan)
        constant = valid & identical & (f_min == b)
        prob[constant] = 0.5
        flat = valid & ~constant & (sd == 0)
        prob[flat] = np.where(mean[flat] > b[flat], 1.0, 0.0)
        spread = valid & ~constant & (sd > 0)
        prob[spread] = norm.cdf((mean[spread] - b[spread]) / sd[spread])

        # rank_score
        exceed = (present & (f > b[:, None])).sum(axis=1)
        rank = np.where(valid, exceed / n, np.nan)

    return {
        "fut_mean": mean,
        "fut_sd": sd,
        "ratio": ratio,
        "prob_score": prob,
        "rank_score": rank,
    }


def cell_statistics(
    x: float,
    y: float,
    baseline: float,
    members: Sequence[float],
    n_members: Optional[int] = None,
) -> Dict[str, float]:
    """
    Statistics for a single cell.

    Raises
    ------
    RowShapeError
        If ``members`` is not flat or its length differs from ``n_members``.
    """
    values = np.asarray(members, dtype="float64")
    if values.ndim != 1:
        raise RowShapeError(
            f"Cell at (x={x}, y={y}) has members shaped {values.shape}; expected a flat sequence.",
            coordinate=(x, y),
        )
    if n_members is not None and values.shape[0] != n_members:
        raise RowShapeError(
            f"Cell at (x={x}, y={y}) has {values.shape[0]} members; expected {n_members}.",
            coordinate=(x, y),
        )

    result = block_statistics(np.array([baseline], dtype="float64"), values.reshape(1, -1))
    return {key: float(result[key][0]) for key in STAT_KEYS}


# -----------------------------------------------------------------------------
# Table driver
# -----------------------------------------------------------------------------
def _member_columns(table: pd.DataFrame, variable: str) -> List[str]:
    prefix = member_label("", variable)
    derived = set(stat_columns(variable).values())
    return [c for c in table.columns if str(c).startswith(prefix) and c not in derived]


def _first_coordinate(table: pd.DataFrame):
    if table.empty or not {"x", "y"}.issubset(table.columns):
        return None
    return float(table["x"].iloc[0]), float(table["y"].iloc[0])


def compute_ensemble_statistics(
    table: pd.DataFrame,
    member_columns: Optional[Sequence[str]] = None,
    baseline_column: Optional[str] = None,
    n_members: Optional[int] = None,
    variable: str = "pr",
    n_jobs: int = 1,
    n_partitions: Optional[int] = None,
) -> pd.DataFrame:
    """
    Append the ensemble statistics to a cell table.

    Parameters
    ----------
    table:
        Output of :func:`precip_rank.cell_table.stack_to_table`.
    member_columns:
        Ensemble member columns. Defaults to every ``{variable}_fut_*``
        column that is not itself a statistic.
    baseline_column:
        Defaults to ``{variable}_pres``.
    n_members:
        Expected ensemble size. A different number of member columns raises
        :class:`RowShapeError` and aborts the run.
    n_jobs:
        ``1`` runs in-process; anything else is handed to
        :class:`joblib.Parallel`.
    n_partitions:
        Number of row partitions in parallel mode. Defaults to the number
        of workers.

    Returns
    -------
    pd.DataFrame
        A copy of ``table`` with the columns of :func:`stat_columns` appended,
        rows in the input order.
    """
    baseline_column = baseline_column or baseline_label(variable)
    member_columns = list(member_columns) if member_columns is not None else _member_columns(table, variable)

    missing = [c for c in [baseline_column] + member_columns if c not in table.columns]
    if missing:
        raise ValueError(f"Columns not in table: {missing}")
    if not member_columns:
        raise ValueError("No ensemble member columns found.")

    if n_members is not None and len(member_columns) != n_members:
        coordinate = _first_coordinate(table)
        raise RowShapeError(
            f"Rows carry {len(member_columns)} members; expected {n_members} "
            f"(first row at x={coordinate[0] if coordinate else None}, y={coordinate[1] if coordinate else None}).",
            coordinate=coordinate,
        )

    baseline = table[baseline_column].to_numpy(dtype="float64")
    members = table[member_columns].to_numpy(dtype="float64")

    if n_jobs == 1:
        results = [block_statistics(baseline, members)]
    else:
        parts = n_partitions or effective_n_jobs(n_jobs)
        blocks = list(zip(np.array_split(baseline, parts), np.array_split(members, parts)))
        with logging_redirect_tqdm(loggers=[stats_logger]):
            results = Parallel(n_jobs=n_jobs)(
                delayed(block_statistics)(b, f)
                for b, f in tqdm(blocks, desc="Ensemble statistics", unit="partition")
            )

    out = table.copy()
    for key, column in stat_columns(variable).items():
        out[column] = np.concatenate([r[key] for r in results]) if results else np.array([], dtype="float64")

    rank_col = stat_columns(variable)["rank_score"]
    stats_logger.info(
        "Computed statistics for %s cells with %s members; %s cells with rank > 0.5",
        len(out),
        len(member_columns),
        int((out[rank_col] > 0.5).sum()),
    )
    return out
