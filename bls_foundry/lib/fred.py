"""Download and merge FRED (St. Louis Fed) series.

Example:
    from bls_foundry.lib.fred import get_fred

    frame = get_fred("UNRATE", "PAYEMS", names=["unrate", "payroll"])
    frame.columns  # ["date", "unrate", "payroll"]
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from functools import reduce
from typing import List, Optional, Sequence, Union

import pandas as pd

from bls_foundry.lib.errors import FredDownloadError, TransportError
from bls_foundry.lib.transport import (
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    HttpTransport,
    Transport,
)

logger = logging.getLogger(__name__)

__all__ = [
    "FRED_URL",
    "fred_series_url",
    "get_fred",
    "get_unemployment_rate",
]

FRED_URL = "https://fred.stlouisfed.org/graph/fredgraph.csv?id={series_id}"
DATE_COLUMN = "date"


def fred_series_url(series_id: str) -> str:
    return FRED_URL.format(series_id=series_id)


def _resolve_flags(lagged: Union[bool, Sequence[bool]], count: int) -> List[bool]:
    if isinstance(lagged, bool):
        return [lagged] * count
    flags = [bool(flag) for flag in lagged]
    if len(flags) == 1:
        return flags * count
    if len(flags) != count:
        raise ValueError(
            "`lagged` must be a single flag or one flag per series "
            f"(got {len(flags)} for {count} series)"
        )
    return flags


def _fetch_series(
    transport: Transport, series_id: str, column: str, lagged: bool
) -> Optional[pd.DataFrame]:
    url = fred_series_url(series_id)
    logger.info("Downloading %s", series_id)
    try:
        raw = transport.fetch_table(url, sep=",")
    except TransportError as exc:
        logger.warning("Error downloading %s: %s", series_id, exc.message)
        return None
    if raw.shape[1] < 2:
        logger.warning(
            "Error downloading %s: expected a date and a value column", series_id
        )
        return None

    # FRED marks missing observations with "."
    values = pd.to_numeric(raw.iloc[:, 1], errors="coerce").astype("float64")
    if lagged:
        values = values / values.shift(1) - 1
    return pd.DataFrame(
        {
            DATE_COLUMN: pd.to_datetime(raw.iloc[:, 0], errors="coerce"),
            column: values,
        }
    )


def get_fred(
    *series_ids: str,
    names: Optional[Sequence[str]] = None,
    keep_all: bool = True,
    lagged: Union[bool, Sequence[bool]] = False,
    transport: Optional[Transport] = None,
    identity_token: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> pd.DataFrame:
    """Download one or more FRED series and join them on ``date``.

    Args:
        series_ids: FRED tickers (case-insensitive)
        names: Column names, one per series; defaults to the lower-cased ticker
        keep_all: Outer join when True, inner join when False
        lagged: Replace a series by its one-period change ``x_t / x_{t-1} - 1``;
            a single flag or one per series
        transport: Transport to use; an ``HttpTransport`` is created if omitted

    Raises:
        ValueError: No series, or ``names``/``lagged`` of the wrong length
        FredDownloadError: None of the series could be downloaded
    """
    if not series_ids:
        raise ValueError("Provide at least one FRED series id")

    tickers = [str(series_id).strip().upper() for series_id in series_ids]
    if names is None:
        columns = [ticker.lower() for ticker in tickers]
    else:
        names = list(names)
        if len(names) != len(tickers):
            raise ValueError("`names` must have the same length as the series list")
        columns = [name or ticker.lower() for name, ticker in zip(names, tickers)]
    flags = _resolve_flags(lagged, len(tickers))

    with ExitStack() as stack:
        if transport is None:
            transport = stack.enter_context(
                HttpTransport(identity_token or DEFAULT_USER_AGENT, timeout=timeout)
            )
        frames = [
            frame
            for frame in (
                _fetch_series(transport, ticker, column, flag)
                for ticker, column, flag in zip(tickers, columns, flags)
            )
            if frame is not None
        ]

    if not frames:
        raise FredDownloadError(
            "No data downloaded successfully",
            details={"series": ", ".join(tickers)},
        )

    how = "outer" if keep_all else "inner"
    merged = reduce(
        lambda left, right: left.merge(right, on=DATE_COLUMN, how=how), frames
    )
    return merged.sort_values(DATE_COLUMN).reset_index(drop=True)


def get_unemployment_rate(
    transport: Optional[Transport] = None, **kwargs
) -> pd.DataFrame:
    """Unemployment level over labor force level (``full_unrate``, a decimal)."""
    frame = get_fred(
        "UNEMPLOY",
        "CLF16OV",
        names=["unemploy_level", "lf_level"],
        transport=transport,
        **kwargs,
    )
    frame["full_unrate"] = frame["unemploy_level"] / frame["lf_level"]
    return frame
