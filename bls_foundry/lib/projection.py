"""Log-linear trend projection.

Fits ``log(value) = a + b * t`` on a calibration window, where ``t`` is the
number of days since ``start_date``, and projects ``exp(a + b * t)`` for
every row on or after ``start_date``.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import pandas as pd

from bls_foundry.lib.errors import ProjectionError

logger = logging.getLogger(__name__)

__all__ = ["log_linear_projection"]

MIN_CALIBRATION_POINTS = 2


def _project(days: pd.Series, values: pd.Series, end_offset: float) -> pd.Series:
    projection = pd.Series(np.nan, index=days.index, dtype="float64")

    in_window = (days >= 0) & (days <= end_offset)
    usable = in_window & np.isfinite(values) & (values > 0)
    # A single distinct date cannot identify a slope
    if days[usable].nunique() < MIN_CALIBRATION_POINTS:
        logger.debug(
            "Only %d usable calibration points; projection left empty",
            int(usable.sum()),
        )
        return projection

    slope, intercept = np.polyfit(
        days[usable].to_numpy(dtype="float64"),
        np.log(values[usable].to_numpy(dtype="float64")),
        deg=1,
    )
    forward = days >= 0
    projection[forward] = np.exp(intercept + slope * days[forward])
    return projection


def log_linear_projection(
    frame: pd.DataFrame,
    date: str,
    value: str,
    start_date,
    end_date,
    group: Optional[str] = None,
) -> pd.Series:
    """Project a log-linear trend fitted between ``start_date`` and ``end_date``.

    Args:
        frame: Input table
        date: Name of the date column (anything ``pd.to_datetime`` accepts)
        value: Name of the numeric column to project
        start_date: Start of the calibration window, also the projection origin
        end_date: End of the calibration window (inclusive)
        group: Optional column; each group gets its own fit

    Returns:
        Float series aligned with ``frame``: NaN before ``start_date`` and
        everywhere in a group with fewer than two usable calibration points.
        Only strictly positive, finite values are used for calibration.

    Raises:
        ProjectionError: Missing columns or an invalid window
    """
    missing = [col for col in (date, value, group) if col and col not in frame.columns]
    if missing:
        raise ProjectionError(
            f"Columns not found: {', '.join(missing)}",
            details={"available": ", ".join(map(str, frame.columns))},
        )

    try:
        start = pd.Timestamp(start_date)
        end = pd.Timestamp(end_date)
    except (TypeError, ValueError) as exc:
        raise ProjectionError(f"Invalid calibration window: {exc}") from exc
    if pd.isna(start) or pd.isna(end) or end < start:
        raise ProjectionError(
            "Calibration window must satisfy start_date <= end_date",
            details={"start_date": str(start_date), "end_date": str(end_date)},
        )

    positional = frame.reset_index(drop=True)
    dates = pd.to_datetime(positional[date], errors="coerce")
    days = (dates - start).dt.days.astype("float64")
    values = pd.to_numeric(positional[value], errors="coerce").astype("float64")
    end_offset = float((end - start).days)

    if group is None:
        result = _project(days, values, end_offset)
    else:
        groups = positional.groupby(group, sort=False, dropna=False).indices
        parts = [
            _project(days.iloc[rows], values.iloc[rows], end_offset)
            for rows in groups.values()
        ]
        result = pd.concat(parts).sort_index() if parts else days * np.nan

    result.index = frame.index
    return result.rename("projection")
