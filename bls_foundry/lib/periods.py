"""Period-code to calendar-date mapping.

Conventions (declared, never inferred from data):

- Monthly periods ``M01``..``M12`` map to the first day of that month.
- ``M13`` is the annual average and maps to 31 December of the year so it
  sorts after every monthly observation of that year.
- Quarterly periods ``Q01``..``Q04`` map to the first day of the quarter's
  last month (March, June, September, December).

Anything else maps to a ``DateParseFailure`` (scalar path) or ``NaT``
(vectorised path) and is counted, never raised.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Any, Optional, Tuple, Union

import numpy as np
import pandas as pd

from bls_foundry.lib.catalog import Frequency
from bls_foundry.lib.errors import DateParseFailure

__all__ = [
    "ANNUAL_PERIOD",
    "QUARTER_END_MONTH",
    "assign_dates",
    "parse_bea_period",
    "parse_bea_periods",
    "to_date",
]

ANNUAL_PERIOD = 13
QUARTER_END_MONTH = {1: 3, 2: 6, 3: 9, 4: 12}

_MONTHLY_PATTERN = re.compile(r"^M(\d{2})$")
_QUARTERLY_PATTERN = re.compile(r"^Q0?([1-4])$")
_BEA_PATTERN = re.compile(r"^(\d{4})([QMA])(\d{0,2})$")

# Years whose dates fit in datetime64[ns]
MIN_YEAR = pd.Timestamp.min.year + 1
MAX_YEAR = pd.Timestamp.max.year - 1


def _coerce_year(year: Any) -> Optional[int]:
    try:
        value = float(str(year).strip())
    except (TypeError, ValueError):
        return None
    if np.isnan(value) or not value.is_integer() or not MIN_YEAR <= value <= MAX_YEAR:
        return None
    return int(value)


def to_date(
    period_code: Any,
    year: Any,
    frequency: Union[Frequency, str],
) -> Union[date, DateParseFailure]:
    """Map one ``(period_code, year)`` pair to its canonical date.

    Example:
        >>> to_date("M03", 1952, Frequency.MONTHLY)
        datetime.date(1952, 3, 1)
        >>> to_date("M13", 1960, Frequency.MONTHLY)
        datetime.date(1960, 12, 31)
        >>> to_date("Q02", 1999, Frequency.QUARTERLY)
        datetime.date(1999, 6, 1)
    """
    frequency = Frequency.parse(frequency)
    parsed_year = _coerce_year(year)
    if parsed_year is None:
        return DateParseFailure(period_code, year, "unparseable year")

    code = str(period_code).strip().upper() if period_code is not None else ""

    if frequency is Frequency.MONTHLY:
        match = _MONTHLY_PATTERN.match(code)
        if not match:
            return DateParseFailure(period_code, year, "not a monthly period code")
        month = int(match.group(1))
        if month == ANNUAL_PERIOD:
            return date(parsed_year, 12, 31)
        if not 1 <= month <= 12:
            return DateParseFailure(period_code, year, "month out of range")
        return date(parsed_year, month, 1)

    match = _QUARTERLY_PATTERN.match(code)
    if not match:
        return DateParseFailure(period_code, year, "not a quarterly period code")
    return date(parsed_year, QUARTER_END_MONTH[int(match.group(1))], 1)


def _monthly_parts(codes: pd.Series) -> Tuple[pd.Series, pd.Series]:
    digits = codes.str.extract(_MONTHLY_PATTERN.pattern, expand=False)
    month = pd.to_numeric(digits, errors="coerce").astype("float64")
    annual = month == ANNUAL_PERIOD
    month = month.where((month >= 1) & (month <= 12))
    day = pd.Series(np.where(month.notna(), 1, np.nan), index=codes.index)
    month = month.mask(annual, 12)
    day = day.mask(annual, 31)
    return month, day


def _quarterly_parts(codes: pd.Series) -> Tuple[pd.Series, pd.Series]:
    quarter = pd.to_numeric(
        codes.str.extract(_QUARTERLY_PATTERN.pattern, expand=False), errors="coerce"
    ).astype("float64")
    month = quarter.map(QUARTER_END_MONTH)
    day = pd.Series(np.where(month.notna(), 1, np.nan), index=codes.index)
    return month, day


def assign_dates(
    observations: pd.DataFrame,
    frequency: Union[Frequency, str],
    *,
    period_column: str = "period",
    year_column: str = "year",
    date_column: str = "date",
) -> Tuple[pd.DataFrame, int]:
    """Add a ``date`` column derived from period code and year.

    Rows whose period or year cannot be mapped get ``NaT``; they are kept
    and counted.

    Returns:
        Tuple of (new frame with the date column, number of parse failures)
    """
    frequency = Frequency.parse(frequency)
    codes = observations[period_column].astype(str).str.strip().str.upper()
    years = pd.to_numeric(observations[year_column], errors="coerce")
    years = years.where(
        (years >= MIN_YEAR) & (years <= MAX_YEAR) & (years % 1 == 0)
    )

    if frequency is Frequency.MONTHLY:
        month, day = _monthly_parts(codes)
    else:
        month, day = _quarterly_parts(codes)

    parts = pd.DataFrame(
        {"year": years, "month": month, "day": day}, index=observations.index
    )
    dates = pd.Series(pd.NaT, index=observations.index, dtype="datetime64[ns]")
    valid = parts.notna().all(axis=1)
    if valid.any():
        dates.loc[valid] = pd.to_datetime(parts.loc[valid].astype(int))

    result = observations.copy()
    result[date_column] = dates
    return result, int((~valid).sum())


def parse_bea_period(period: str) -> date:
    """Parse a BEA period string such as ``2020Q2`` or ``2020M03``.

    Annual periods (``2020`` or ``2020A``) map to 1 January. Quarterly
    periods follow the same quarter-end-month anchoring as BLS data.

    Raises:
        ValueError: If the period identifier is not recognized
    """
    text = str(period).strip().upper()
    if text.isdigit() and len(text) == 4:
        return date(int(text), 1, 1)
    match = _BEA_PATTERN.match(text)
    if not match:
        raise ValueError(f"Unknown period identifier: {period!r}")
    year, identifier, number = int(match.group(1)), match.group(2), match.group(3)
    if identifier == "A" and not number:
        return date(year, 1, 1)
    if identifier == "Q" and number and int(number) in QUARTER_END_MONTH:
        return date(year, QUARTER_END_MONTH[int(number)], 1)
    if identifier == "M" and number and 1 <= int(number) <= 12:
        return date(year, int(number), 1)
    raise ValueError(f"Unknown period identifier: {period!r}")


def parse_bea_periods(periods: pd.Series) -> Tuple[pd.Series, int]:
    """Vectorised ``parse_bea_period``; failures become ``NaT`` and are counted."""
    unique = periods.dropna().unique()
    mapping = {}
    for value in unique:
        try:
            mapping[value] = pd.Timestamp(parse_bea_period(value))
        except ValueError:
            mapping[value] = pd.NaT
    parsed = pd.to_datetime(periods.map(mapping))
    return parsed, int(parsed.isna().sum())
