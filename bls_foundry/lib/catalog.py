"""Schema catalog of supported statistical archives.

Maps a data-source id to a ``SourceSpec``: the archive folder, the main
observation file and the ordered auxiliary tables to fetch. The catalog is the
single place where sources are declared; adding a source means extending the
catalog, not branching in the merge code.

Example:
    from bls_foundry.lib.catalog import resolve_source

    spec = resolve_source("cpi")
    spec.folder          # "cu"
    spec.key_table       # "series"
    spec.lookup_tables   # ("item", "area")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from bls_foundry.lib.errors import UnknownSourceError
from bls_foundry.lib.keys import KEY_OVERRIDES, overrides_for, resolve_key

__all__ = [
    "Frequency",
    "SourceSpec",
    "Catalog",
    "DEFAULT_CATALOG",
    "resolve_source",
]


class Frequency(Enum):
    """Cadence of the observations, governs period-to-date mapping."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"

    @classmethod
    def parse(cls, value: "str | Frequency") -> "Frequency":
        if isinstance(value, Frequency):
            return value
        normalized = str(value).strip().lower()
        aliases = {"m": "monthly", "q": "quarterly"}
        normalized = aliases.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            valid = ", ".join(f.value for f in cls)
            raise ValueError(
                f"Unknown frequency {value!r}; expected one of: {valid}"
            ) from None


@dataclass(frozen=True)
class SourceSpec:
    """Declarative description of one statistical archive.

    The first auxiliary table is the key table (one row per series); the
    remaining ones are lookup tables folded into it in declared order.
    """

    source_id: str
    folder: str  # Archive folder, also the file-name prefix (e.g. "cu")
    main_file: str  # Observation file (e.g. "data.0.Current")
    auxiliary_tables: Tuple[str, ...]
    frequency: Frequency = Frequency.MONTHLY
    key_overrides: Mapping[str, Tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    description: str = ""

    def __post_init__(self) -> None:
        errors = self._validate()
        if errors:
            error_msg = "\n".join(f"  - {e}" for e in errors)
            raise ValueError(
                f"SourceSpec configuration errors for {self.source_id or '?'}:\n"
                f"{error_msg}"
            )
        # Store sequences as tuples
        object.__setattr__(self, "auxiliary_tables", tuple(self.auxiliary_tables))
        object.__setattr__(
            self,
            "key_overrides",
            MappingProxyType(
                {table: tuple(keys) for table, keys in self.key_overrides.items()}
            ),
        )
        object.__setattr__(self, "frequency", Frequency.parse(self.frequency))

    def _validate(self) -> List[str]:
        errors: List[str] = []
        if not self.source_id:
            errors.append("source_id is required")
        if not self.folder:
            errors.append("folder is required (archive prefix, e.g. 'cu')")
        if not self.main_file:
            errors.append("main_file is required (e.g. 'data.0.Current')")
        if not self.auxiliary_tables:
            errors.append("auxiliary_tables needs at least the key table ('series')")
        elif len(set(self.auxiliary_tables)) != len(tuple(self.auxiliary_tables)):
            errors.append("auxiliary_tables contains duplicates")
        for table, keys in dict(self.key_overrides).items():
            if not keys:
                errors.append(f"key override for {table!r} is empty")
        return errors

    @property
    def key_table(self) -> str:
        return self.auxiliary_tables[0]

    @property
    def lookup_tables(self) -> Tuple[str, ...]:
        return self.auxiliary_tables[1:]

    def join_key(self, table_name: str) -> Tuple[str, ...]:
        """Join key(s) for ``table_name`` under this source's overrides."""
        declared = {
            (self.source_id.lower(), table): keys
            for table, keys in self.key_overrides.items()
        }
        return resolve_key(self.source_id, table_name, declared)


class Catalog:
    """Read-only registry of ``SourceSpec`` objects keyed by source id."""

    def __init__(self, specs: Iterable[SourceSpec] = ()) -> None:
        self._specs: Dict[str, SourceSpec] = {}
        for spec in specs:
            self._specs[spec.source_id.lower()] = spec

    def __contains__(self, source_id: object) -> bool:
        return isinstance(source_id, str) and source_id.strip().lower() in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    def __iter__(self):
        return iter(self._specs[key] for key in sorted(self._specs))

    def source_ids(self) -> List[str]:
        return sorted(self._specs)

    def resolve(self, source_id: str) -> SourceSpec:
        """Look up a source; raises ``UnknownSourceError`` when undeclared."""
        key = source_id.strip().lower() if isinstance(source_id, str) else ""
        spec = self._specs.get(key)
        if spec is None:
            raise UnknownSourceError(str(source_id), valid_sources=self._specs)
        return spec

    def extend(self, specs: Iterable[SourceSpec]) -> "Catalog":
        """Return a new catalog with ``specs`` added (replacing same ids)."""
        merged = dict(self._specs)
        for spec in specs:
            merged[spec.source_id.lower()] = spec
        return Catalog(merged.values())


def _bls(
    source_id: str,
    folder: str,
    main_file: str,
    tables: Tuple[str, ...],
    description: str,
    frequency: Frequency = Frequency.MONTHLY,
) -> SourceSpec:
    return SourceSpec(
        source_id=source_id,
        folder=folder,
        main_file=main_file,
        auxiliary_tables=tables,
        frequency=frequency,
        key_overrides=overrides_for(source_id, KEY_OVERRIDES),
        description=description,
    )


# Bureau of Labor Statistics flat files under download.bls.gov/pub/time.series
DEFAULT_CATALOG = Catalog(
    [
        _bls(
            "cpi",
            "cu",
            "data.0.Current",
            ("series", "item", "area"),
            "Consumer Price Index - current data",
        ),
        _bls(
            "eci",
            "ci",
            "data.1.AllData",
            (
                "series",
                "industry",
                "owner",
                "subcell",
                "occupation",
                "periodicity",
                "estimate",
            ),
            "Employment Cost Index",
            frequency=Frequency.QUARTERLY,
        ),
        _bls(
            "cex",
            "cx",
            "data.1.AllData",
            (
                "series",
                "category",
                "characteristics",
                "demographics",
                "item",
                "process",
            ),
            "Consumer Expenditure Survey",
        ),
        _bls(
            "jolts",
            "jt",
            "data.1.AllItems",
            ("series", "industry", "state", "dataelement", "sizeclass"),
            "Job Openings and Labor Turnover Survey",
        ),
        _bls(
            "cps",
            "ln",
            "data.1.AllData",
            (
                "series",
                "ages",
                "occupation",
                "race",
                "sexs",
                "born",
                "lfst",
                "education",
            ),
            "Current Population Survey",
        ),
        _bls(
            "ces",
            "ce",
            "data.0.AllCESSeries",
            ("series", "datatype", "supersector", "industry"),
            "Current Employment Statistics - all series",
        ),
        _bls(
            "ces_allemp",
            "ce",
            "data.01a.CurrentSeasAE",
            ("series", "datatype", "supersector", "industry"),
            "Current Employment Statistics - all employees, seasonally adjusted",
        ),
        _bls(
            "ces_total",
            "ce",
            "data.00a.TotalNonfarm.Employment",
            ("series", "datatype", "supersector", "industry"),
            "Current Employment Statistics - total nonfarm employment",
        ),
        _bls(
            "averageprice",
            "ap",
            "data.0.Current",
            ("series", "area", "item"),
            "Average price data - current",
        ),
        _bls(
            "food",
            "ap",
            "data.3.Food",
            ("series", "area", "item"),
            "Average price data - food items",
        ),
        _bls(
            "se",
            "sm",
            "data.0.Current",
            ("series", "industry", "data_type", "supersector", "state", "area"),
            "State and metro area employment",
        ),
        _bls(
            "su",
            "la",
            "data.1.CurrentS",
            ("series", "state_region_division", "measure", "area", "area_type"),
            "State and local area unemployment",
        ),
    ]
)


def resolve_source(source_id: str, catalog: Optional[Catalog] = None) -> SourceSpec:
    """Resolve ``source_id`` against ``catalog`` (the built-in one by default)."""
    return (catalog or DEFAULT_CATALOG).resolve(source_id)
