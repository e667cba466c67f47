"""Join-key resolution for auxiliary tables.

Most lookup tables join on ``{table}_code``. Irregular tables are declared in
``KEY_OVERRIDES`` as data keyed by ``(source_id, table_name)``; the resolver
never looks at table contents. Whether the declared columns actually exist is
checked afterwards with ``missing_key_columns``.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

__all__ = [
    "KEY_OVERRIDES",
    "default_key",
    "missing_key_columns",
    "overrides_for",
    "resolve_key",
]

KeyOverrides = Mapping[Tuple[str, str], Tuple[str, ...]]

KEY_OVERRIDES: KeyOverrides = MappingProxyType(
    {
        # CES names the datatype key "data_type_code", not "datatype_code"
        ("ces", "datatype"): ("data_type_code",),
        ("ces_allemp", "datatype"): ("data_type_code",),
        ("ces_total", "datatype"): ("data_type_code",),
        # The same characteristic code means different things per demographic
        ("cex", "characteristics"): ("demographics_code", "characteristics_code"),
        # CEX item codes are only unique within a subcategory
        ("cex", "item"): ("subcategory_code", "item_code"),
        ("su", "state_region_division"): ("srd_code",),
    }
)


def default_key(table_name: str) -> str:
    return f"{table_name}_code"


def resolve_key(
    source_id: str,
    table_name: str,
    overrides: Optional[KeyOverrides] = None,
) -> Tuple[str, ...]:
    """Return the join key column(s) for ``table_name`` within ``source_id``.

    Args:
        source_id: Data-source id (case-insensitive)
        table_name: Auxiliary table name as it appears in the catalog
        overrides: Declared exceptions; defaults to ``KEY_OVERRIDES``

    Returns:
        Tuple of one or more column names

    Example:
        >>> resolve_key("cpi", "item")
        ('item_code',)
        >>> resolve_key("cex", "item")
        ('subcategory_code', 'item_code')
    """
    declared = (KEY_OVERRIDES if overrides is None else overrides).get(
        (source_id.strip().lower(), table_name)
    )
    if declared:
        return tuple(declared)
    return (default_key(table_name),)


def overrides_for(
    source_id: str, overrides: KeyOverrides = KEY_OVERRIDES
) -> Dict[str, Tuple[str, ...]]:
    """Per-table overrides declared for one source."""
    source = source_id.strip().lower()
    return {table: keys for (sid, table), keys in overrides.items() if sid == source}


def missing_key_columns(keys: Sequence[str], columns: Iterable[str]) -> Tuple[str, ...]:
    """Key columns not present in ``columns``, in key order."""
    available = set(columns)
    return tuple(key for key in keys if key not in available)
