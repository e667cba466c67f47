"""BEA National Income and Product Accounts (NIPA) flat files.

BEA publishes three comma-delimited files per release: a series register, a
tables register and the observations for one frequency. A series can appear
on several table lines (``TableId:LineNo`` joined by ``|``), so the result has
one row per observation per table reference.

Example:
    from bls_foundry.lib.nipa import ingest_nipa

    nipa = ingest_nipa("Q")
    nipa[nipa["TableId"] == "T10101"]
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from typing import Optional

import pandas as pd

from bls_foundry.lib.errors import RequiredTableFetchError, TransportError
from bls_foundry.lib.periods import parse_bea_periods
from bls_foundry.lib.transport import (
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    HttpTransport,
    Transport,
)

logger = logging.getLogger(__name__)

__all__ = ["BEA_LOCATION", "ingest_nipa", "nipa_file_url"]

BEA_LOCATION = "https://apps.bea.gov/national/Release/TXT/"

SERIES_REGISTER = "SeriesRegister.txt"
TABLES_REGISTER = "TablesRegister.txt"
RAW_SERIES_CODE = "%SeriesCode"
SERIES_CODE = "SeriesCode"
TABLE_REF = "TableId:LineNo"
SOURCE_ID = "nipa"

_FREQUENCIES = ("Q", "M", "A")


def nipa_file_url(location: str, file_name: str) -> str:
    return f"{location.rstrip('/')}/{file_name}"


def _fetch(transport: Transport, location: str, file_name: str) -> pd.DataFrame:
    url = nipa_file_url(location, file_name)
    try:
        table = transport.fetch_table(url, sep=",")
    except TransportError as exc:
        raise RequiredTableFetchError(
            f"Could not retrieve {file_name}",
            source_id=SOURCE_ID,
            table=file_name,
            url=url,
            cause=exc,
        ) from exc
    return table.rename(columns={RAW_SERIES_CODE: SERIES_CODE})


def _require(table: pd.DataFrame, file_name: str, *columns: str) -> None:
    missing = [col for col in columns if col not in table.columns]
    if missing:
        raise RequiredTableFetchError(
            f"{file_name} is missing columns: {', '.join(missing)}",
            source_id=SOURCE_ID,
            table=file_name,
        )


def _split_table_refs(frame: pd.DataFrame) -> pd.DataFrame:
    """One row per ``TableId:LineNo`` reference, with both parts extracted."""
    refs = frame[TABLE_REF].str.split("|")
    exploded = (
        frame.assign(_table_ref=refs).explode("_table_ref").reset_index(drop=True)
    )
    ref = exploded["_table_ref"].str.strip()
    # Empty pieces of "A:1||B:2" are dropped; rows with no reference are kept
    keep = ref.isna() | (ref != "")
    exploded, ref = exploded[keep], ref[keep]

    exploded = exploded.assign(
        TableId=ref.str.extract(r"^([^:]+)", expand=False),
        LineNo=pd.to_numeric(
            ref.str.extract(r"([^:]+)$", expand=False), errors="coerce"
        ),
    )
    return exploded.drop(columns=["_table_ref"])


def ingest_nipa(
    frequency: str = "Q",
    location: str = BEA_LOCATION,
    transport: Optional[Transport] = None,
    *,
    identity_token: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> pd.DataFrame:
    """Download and join the NIPA registers with one frequency's data.

    Args:
        frequency: "Q" (quarterly), "M" (monthly) or "A" (annual)
        location: Release directory URL or local mirror path
        transport: Transport to use; an ``HttpTransport`` is created if omitted
        identity_token: ``User-Agent`` for the default transport

    Returns:
        Observations with ``date``, series register columns, ``TableId``,
        numeric ``LineNo`` and table register columns

    Raises:
        ValueError: Unknown frequency
        RequiredTableFetchError: Any of the three files is unusable
    """
    frequency = str(frequency).strip().upper()
    if frequency not in _FREQUENCIES:
        raise ValueError(
            f"Unknown NIPA frequency {frequency!r}; expected one of "
            f"{', '.join(_FREQUENCIES)}"
        )
    data_file = f"nipadata{frequency}.txt"

    with ExitStack() as stack:
        if transport is None:
            transport = stack.enter_context(
                HttpTransport(identity_token or DEFAULT_USER_AGENT, timeout=timeout)
            )
        series = _fetch(transport, location, SERIES_REGISTER)
        tables = _fetch(transport, location, TABLES_REGISTER)
        logger.info(
            "Loading %s data from %s", frequency, nipa_file_url(location, data_file)
        )
        data = _fetch(transport, location, data_file)

    _require(series, SERIES_REGISTER, SERIES_CODE, TABLE_REF)
    _require(tables, TABLES_REGISTER, "TableId")
    _require(data, data_file, SERIES_CODE, "Period")

    logger.info("Formatting date column...")
    dates, failures = parse_bea_periods(data["Period"])
    data = data.assign(date=dates)
    if failures:
        logger.warning("%d rows have an unknown period identifier", failures)
    if "Value" in data.columns:
        data["Value"] = pd.to_numeric(
            data["Value"].str.replace(",", "", regex=False), errors="coerce"
        ).astype("float64")

    series = series.drop_duplicates(subset=[SERIES_CODE], keep="first")
    series = series.drop(
        columns=[c for c in series.columns if c in data.columns and c != SERIES_CODE]
    )
    merged = data.merge(series, on=SERIES_CODE, how="left", validate="many_to_one")

    logger.info("Splitting %s references...", TABLE_REF)
    merged = _split_table_refs(merged)

    tables = tables.drop_duplicates(subset=["TableId"], keep="first")
    tables = tables.drop(
        columns=[c for c in tables.columns if c in merged.columns and c != "TableId"]
    )
    result = merged.merge(tables, on="TableId", how="left", validate="many_to_one")
    logger.info("Loaded %d NIPA rows", len(result))
    return result.reset_index(drop=True)
