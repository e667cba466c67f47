"""Personal Consumption Expenditures (PCE) price growth from NIPA data.

Uses three NIPA tables:

    U20405  nominal PCE by type of product; DPCERC is total PCE
    U20403  real PCE quantity indexes
    U20404  PCE price indexes

Component weights are nominal shares of total PCE. Each price series gets
1/3/6-period changes plus a weight-contribution and its annualised form.
"""

from __future__ import annotations

import logging
from typing import Optional

import pandas as pd

from bls_foundry.lib.nipa import BEA_LOCATION, ingest_nipa
from bls_foundry.lib.transport import Transport

logger = logging.getLogger(__name__)

__all__ = ["pce_inflation"]

NOMINAL_TABLE = "U20405"
QUANTITY_TABLE = "U20403"
PRICE_TABLE = "U20404"
TOTAL_PCE_SERIES = "DPCERC"

REQUIRED_COLUMNS = ("TableId", "SeriesCode", "SeriesLabel", "date", "Value")
LABEL = "SeriesLabel"


def _weights(nipa: pd.DataFrame) -> pd.DataFrame:
    nominal = nipa[nipa["TableId"] == NOMINAL_TABLE]
    total = (
        nominal.loc[nominal["SeriesCode"] == TOTAL_PCE_SERIES, ["date", "Value"]]
        .rename(columns={"Value": "TotalPCE"})
        .drop_duplicates(subset=["date"])
    )
    weights = nominal.merge(total, on="date", how="left")
    weights["PCEweight"] = weights["Value"] / weights["TotalPCE"]
    return weights[["date", LABEL, "PCEweight"]].drop_duplicates(
        subset=["date", LABEL]
    )


def _quantities(nipa: pd.DataFrame) -> pd.DataFrame:
    quantities = nipa.loc[nipa["TableId"] == QUANTITY_TABLE, [LABEL, "date", "Value"]]
    return quantities.rename(columns={"Value": "quantity"}).drop_duplicates(
        subset=["date", LABEL]
    )


def pce_inflation(
    nipa_frame: Optional[pd.DataFrame] = None,
    frequency: str = "M",
    *,
    location: str = BEA_LOCATION,
    transport: Optional[Transport] = None,
) -> pd.DataFrame:
    """Price index rows from U20404 with weights and growth measures.

    Args:
        nipa_frame: Output of ``ingest_nipa``; downloaded when omitted
        frequency: NIPA frequency to download when ``nipa_frame`` is omitted

    Returns:
        The U20404 rows plus ``PCEweight``, ``quantity``, ``DataValue_P1``,
        ``DataValue_P3``, ``DataValue_P6``, ``WDataValue_P1`` (1-period change
        times the previous period's weight) and ``WDataValue_P1a``
        (``(1 + WDataValue_P1) ** 4 - 1``). Changes are computed per
        ``SeriesLabel`` in date order.

    Raises:
        ValueError: ``nipa_frame`` lacks a required column
    """
    if nipa_frame is None:
        nipa_frame = ingest_nipa(frequency, location=location, transport=transport)

    missing = [col for col in REQUIRED_COLUMNS if col not in nipa_frame.columns]
    if missing:
        raise ValueError(f"NIPA data is missing columns: {', '.join(missing)}")

    prices = nipa_frame[nipa_frame["TableId"] == PRICE_TABLE]
    pce = (
        prices.merge(_weights(nipa_frame), on=["date", LABEL], how="left")
        .merge(_quantities(nipa_frame), on=["date", LABEL], how="left")
        .sort_values("date", kind="mergesort")
        .reset_index(drop=True)
    )

    by_label = pce.groupby(LABEL, sort=False, dropna=False)
    value = pce["Value"]
    previous = by_label["Value"].shift(1)
    pce["DataValue_P1"] = (value - previous) / previous
    pce["DataValue_P3"] = value / by_label["Value"].shift(3) - 1
    pce["DataValue_P6"] = value / by_label["Value"].shift(6) - 1
    pce["WDataValue_P1"] = pce["DataValue_P1"] * by_label["PCEweight"].shift(1)
    pce["WDataValue_P1a"] = (1 + pce["WDataValue_P1"]) ** 4 - 1

    logger.info(
        "Computed PCE growth for %d series over %d rows",
        pce[LABEL].nunique(),
        len(pce),
    )
    return pce
