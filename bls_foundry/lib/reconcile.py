"""Column reconciliation around joins.

Lookup files repeat a handful of presentation columns (``display_level``,
``selectable``, ``sort_sequence``) whose meaning is local to each file.
Those are prefixed with the table name before the table is joined, so pandas
never suffixes or overwrites them. Just before the final merge, key-table
columns that also exist on the observation table are dropped so the
observation's own value wins.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Sequence, Tuple

import pandas as pd

logger = logging.getLogger(__name__)

__all__ = [
    "KNOWN_COLLIDING_COLUMNS",
    "SERIES_ID",
    "drop_overlapping_lookup_columns",
    "drop_shared_columns",
    "prefix_colliding_columns",
]

SERIES_ID = "series_id"

# display_level: hierarchy depth (0 = top level)
# selectable: whether the code is selectable in the BLS Data Finder
# sort_sequence: display order in BLS tools
KNOWN_COLLIDING_COLUMNS: Tuple[str, ...] = (
    "display_level",
    "selectable",
    "sort_sequence",
)


def prefix_colliding_columns(
    table: pd.DataFrame,
    table_name: str,
    colliding: Iterable[str] = KNOWN_COLLIDING_COLUMNS,
) -> pd.DataFrame:
    """Rename known-colliding columns to ``{table_name}_{column}``.

    Example:
        ``display_level`` on the ``item`` table becomes ``item_display_level``.
    """
    colliding = set(colliding)
    renames = {col: f"{table_name}_{col}" for col in table.columns if col in colliding}
    if not renames:
        return table
    logger.debug("Prefixing %s columns: %s", table_name, sorted(renames))
    return table.rename(columns=renames)


def drop_overlapping_lookup_columns(
    key_table: pd.DataFrame,
    lookup: pd.DataFrame,
    keys: Sequence[str],
) -> Tuple[pd.DataFrame, List[str]]:
    """Drop lookup columns the key table already has (join keys excepted).

    The accumulated key table keeps its values; returns the trimmed lookup
    and the dropped column names.
    """
    key_set = set(keys)
    overlap = [
        col for col in lookup.columns if col in key_table.columns and col not in key_set
    ]
    if overlap:
        lookup = lookup.drop(columns=overlap)
    return lookup, overlap


def drop_shared_columns(
    key_table: pd.DataFrame,
    observations: pd.DataFrame,
    identifier: str = SERIES_ID,
) -> Tuple[pd.DataFrame, List[str]]:
    """Remove key-table columns that the observation table also carries.

    Footnote codes attached to an observation are more relevant than the
    footnotes on the series definition, so the observation side always wins.

    Returns:
        Tuple of (trimmed key table, dropped column names in key-table order)
    """
    shared = [
        col
        for col in key_table.columns
        if col != identifier and col in observations.columns
    ]
    if shared:
        logger.debug("Dropping key-table columns shadowed by observations: %s", shared)
        key_table = key_table.drop(columns=shared)
    return key_table, shared
