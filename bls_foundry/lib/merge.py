"""Multi-file ingestion and merge for statistical archives.

One ``ingest`` call walks a fixed sequence of states:

    INIT -> FETCHING_KEY_TABLE -> MERGING_AUXILIARY -> FETCHING_OBSERVATIONS
         -> DATING_OBSERVATIONS -> FINAL_MERGE -> DONE

Only the two required fetches can end in FAILED. Lookup-table problems
(fetch failures, missing join keys) are recorded in ``MergeDiagnostics`` and
the table is skipped; the key table is never modified by a skipped table.

Example:
    from bls_foundry.lib.merge import ingest

    result = ingest("cpi", "analyst@example.com")
    result.table            # observations joined with series metadata
    result.diagnostics      # skipped tables, parse-failure counts, timings
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import ExitStack
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

import pandas as pd

from bls_foundry.lib.catalog import Catalog, SourceSpec, resolve_source
from bls_foundry.lib.errors import (
    JoinKeyMissing,
    RequiredTableFetchError,
    TableFetchFailure,
    TransportError,
)
from bls_foundry.lib.keys import missing_key_columns
from bls_foundry.lib.observability import IngestTimings
from bls_foundry.lib.periods import assign_dates
from bls_foundry.lib.reconcile import (
    SERIES_ID,
    drop_overlapping_lookup_columns,
    drop_shared_columns,
    prefix_colliding_columns,
)
from bls_foundry.lib.transport import (
    DEFAULT_ARCHIVE_ROOT,
    DEFAULT_TIMEOUT,
    HttpTransport,
    Transport,
    build_file_url,
)

logger = logging.getLogger(__name__)

__all__ = [
    "MergeDiagnostics",
    "MergeOrchestrator",
    "MergeState",
    "MergedResult",
    "ingest",
    "normalize_series_ids",
]

OBSERVATION_COLUMNS = (SERIES_ID, "year", "period", "value")
FINAL_MERGE_TABLE = "observations"


class MergeState(Enum):
    INIT = "init"
    FETCHING_KEY_TABLE = "fetching_key_table"
    MERGING_AUXILIARY = "merging_auxiliary"
    FETCHING_OBSERVATIONS = "fetching_observations"
    DATING_OBSERVATIONS = "dating_observations"
    FINAL_MERGE = "final_merge"
    DONE = "done"
    FAILED = "failed"


_FAILABLE_STATES = frozenset(
    {MergeState.FETCHING_KEY_TABLE, MergeState.FETCHING_OBSERVATIONS}
)


@dataclass
class MergeDiagnostics:
    """Non-fatal conditions collected during one ingestion."""

    source_id: str
    skipped_tables: List[JoinKeyMissing] = field(default_factory=list)
    failed_tables: List[TableFetchFailure] = field(default_factory=list)
    value_parse_failures: int = 0
    date_parse_failures: int = 0
    duplicate_key_rows: Dict[str, int] = field(default_factory=dict)
    dropped_columns: Dict[str, List[str]] = field(default_factory=dict)
    observation_rows: int = 0
    phase_durations: Dict[str, float] = field(default_factory=dict)

    @property
    def skipped_count(self) -> int:
        """Lookup tables that contributed nothing, for any reason."""
        return len(self.skipped_tables) + len(self.failed_tables)

    @property
    def skipped_table_names(self) -> List[str]:
        return [n.table for n in self.skipped_tables] + [
            f.table for f in self.failed_tables
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "skipped_count": self.skipped_count,
            "skipped_tables": [n.to_dict() for n in self.skipped_tables],
            "failed_tables": [f.to_dict() for f in self.failed_tables],
            "value_parse_failures": self.value_parse_failures,
            "date_parse_failures": self.date_parse_failures,
            "duplicate_key_rows": dict(self.duplicate_key_rows),
            "dropped_columns": {k: list(v) for k, v in self.dropped_columns.items()},
            "observation_rows": self.observation_rows,
            "phase_durations": dict(self.phase_durations),
        }


@dataclass
class MergedResult:
    """Observations left-joined with series metadata, plus diagnostics."""

    table: pd.DataFrame
    diagnostics: MergeDiagnostics
    source: SourceSpec

    @property
    def row_count(self) -> int:
        return len(self.table)


def normalize_series_ids(table: pd.DataFrame) -> pd.DataFrame:
    """Strip all whitespace inside series identifiers (BLS pads them)."""
    result = table.copy()
    result[SERIES_ID] = result[SERIES_ID].str.replace(r"\s+", "", regex=True)
    return result


class MergeOrchestrator:
    """Runs one ingestion for one source; not reusable across calls."""

    def __init__(
        self,
        source: SourceSpec,
        transport: Transport,
        *,
        archive_root: str = DEFAULT_ARCHIVE_ROOT,
        max_workers: int = 1,
    ) -> None:
        self.source = source
        self.transport = transport
        self.archive_root = archive_root
        self.max_workers = max(1, max_workers)
        self.diagnostics = MergeDiagnostics(source_id=source.source_id)
        self._timings = IngestTimings()
        self._state = MergeState.INIT

    @property
    def state(self) -> MergeState:
        return self._state

    def _advance(self, state: MergeState) -> None:
        logger.debug(
            "%s: %s -> %s", self.source.source_id, self._state.value, state.value
        )
        self._state = state

    def _fail(
        self,
        message: str,
        table: str,
        url: str,
        cause: Optional[Exception] = None,
    ) -> RequiredTableFetchError:
        if self._state not in _FAILABLE_STATES:
            raise RuntimeError(f"Cannot fail from state {self._state.value}")
        self._advance(MergeState.FAILED)
        return RequiredTableFetchError(
            message,
            source_id=self.source.source_id,
            table=table,
            url=url,
            cause=cause,
            suggestion="The key table and main data file are required for every join.",
        )

    def url_for(self, file_name: str) -> str:
        return build_file_url(self.archive_root, self.source.folder, file_name)

    def run(self) -> MergedResult:
        if self._state is not MergeState.INIT:
            raise RuntimeError("MergeOrchestrator.run() may only be called once")

        with self._timings.time_phase(MergeState.FETCHING_KEY_TABLE.value):
            self._advance(MergeState.FETCHING_KEY_TABLE)
            key_table = self._fetch_key_table()

        with self._timings.time_phase(MergeState.MERGING_AUXILIARY.value):
            self._advance(MergeState.MERGING_AUXILIARY)
            key_table = self._merge_lookups(key_table)

        with self._timings.time_phase(MergeState.FETCHING_OBSERVATIONS.value):
            self._advance(MergeState.FETCHING_OBSERVATIONS)
            observations = self._fetch_observations()

        with self._timings.time_phase(MergeState.DATING_OBSERVATIONS.value):
            self._advance(MergeState.DATING_OBSERVATIONS)
            observations = self._date_observations(observations)

        with self._timings.time_phase(MergeState.FINAL_MERGE.value):
            self._advance(MergeState.FINAL_MERGE)
            table = self._final_merge(key_table, observations)

        self._advance(MergeState.DONE)
        self.diagnostics.phase_durations = self._timings.as_dict()
        logger.info(
            "Ingested %s: %d rows, %d skipped tables, %d unparseable values, "
            "%d unparseable dates",
            self.source.source_id,
            len(table),
            self.diagnostics.skipped_count,
            self.diagnostics.value_parse_failures,
            self.diagnostics.date_parse_failures,
        )
        return MergedResult(
            table=table, diagnostics=self.diagnostics, source=self.source
        )

    def _fetch_key_table(self) -> pd.DataFrame:
        name = self.source.key_table
        url = self.url_for(name)
        logger.info("Downloading %s file...", name)
        try:
            table = self.transport.fetch_table(url)
        except TransportError as exc:
            raise self._fail(
                f"Could not retrieve key table {name!r}", name, url, exc
            ) from exc

        if SERIES_ID not in table.columns:
            raise self._fail(
                f"Key table {name!r} has no {SERIES_ID!r} column", name, url
            )

        table = normalize_series_ids(table).dropna(subset=[SERIES_ID])
        deduped = table.drop_duplicates(subset=[SERIES_ID], keep="first")
        self._record_duplicates(name, len(table) - len(deduped))
        return deduped.reset_index(drop=True)

    def _fetch_lookup(self, name: str) -> Union[pd.DataFrame, TableFetchFailure]:
        url = self.url_for(name)
        logger.info("Downloading file: %s", name)
        try:
            return self.transport.fetch_table(url)
        except TransportError as exc:
            return TableFetchFailure(table=name, url=url, reason=str(exc.message))

    def _fetch_lookups(
        self,
    ) -> List[Tuple[str, Union[pd.DataFrame, TableFetchFailure]]]:
        names = self.source.lookup_tables
        if self.max_workers == 1 or len(names) < 2:
            return [(name, self._fetch_lookup(name)) for name in names]

        workers = min(self.max_workers, len(names))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                (name, executor.submit(self._fetch_lookup, name)) for name in names
            ]
            # Collected in declared order, not completion order
            return [(name, future.result()) for name, future in futures]

    def _merge_lookups(self, key_table: pd.DataFrame) -> pd.DataFrame:
        for name, fetched in self._fetch_lookups():
            if isinstance(fetched, TableFetchFailure):
                logger.warning(
                    "Could not fetch %s (%s); skipping file",
                    name,
                    fetched.reason,
                    extra=self._log_context(name),
                )
                self.diagnostics.failed_tables.append(fetched)
                continue
            key_table = self._merge_lookup(key_table, name, fetched)
        return key_table

    def _merge_lookup(
        self, key_table: pd.DataFrame, name: str, lookup: pd.DataFrame
    ) -> pd.DataFrame:
        lookup = prefix_colliding_columns(lookup, name)
        keys = self.source.join_key(name)

        missing_in_key_table = missing_key_columns(keys, key_table.columns)
        missing_in_lookup = missing_key_columns(keys, lookup.columns)
        if missing_in_key_table or missing_in_lookup:
            notice = JoinKeyMissing(
                table=name,
                keys=keys,
                missing_in_key_table=missing_in_key_table,
                missing_in_lookup=missing_in_lookup,
            )
            logger.warning(notice.describe(), extra=self._log_context(name))
            self.diagnostics.skipped_tables.append(notice)
            return key_table

        lookup, overlap = drop_overlapping_lookup_columns(key_table, lookup, keys)
        if overlap:
            self.diagnostics.dropped_columns[name] = overlap

        lookup = lookup.dropna(subset=list(keys))
        deduped = lookup.drop_duplicates(subset=list(keys), keep="first")
        self._record_duplicates(name, len(lookup) - len(deduped))

        return key_table.merge(
            deduped, on=list(keys), how="left", validate="many_to_one", sort=False
        )

    def _fetch_observations(self) -> pd.DataFrame:
        name = self.source.main_file
        url = self.url_for(name)
        logger.info("Downloading main data file: %s", name)
        try:
            observations = self.transport.fetch_table(url)
        except TransportError as exc:
            raise self._fail(
                f"Could not retrieve main data file {name!r}", name, url, exc
            ) from exc

        missing = missing_key_columns(OBSERVATION_COLUMNS, observations.columns)
        if missing:
            raise self._fail(
                f"Main data file {name!r} is missing columns: {', '.join(missing)}",
                name,
                url,
            )

        observations = normalize_series_ids(observations)
        raw_values = observations["value"]
        values = pd.to_numeric(raw_values, errors="coerce")
        unparseable = raw_values.notna() & values.isna()
        self.diagnostics.value_parse_failures = int(unparseable.sum())
        observations["value"] = values.astype("float64")
        self.diagnostics.observation_rows = len(observations)
        return observations

    def _date_observations(self, observations: pd.DataFrame) -> pd.DataFrame:
        dated, failures = assign_dates(observations, self.source.frequency)
        self.diagnostics.date_parse_failures = failures
        if failures:
            logger.warning(
                "%d of %d rows have an unrecognized period/year; date left empty",
                failures,
                len(dated),
            )
        years = pd.to_numeric(dated["year"], errors="coerce")
        dated["year"] = years.where(years % 1 == 0).astype("Int64")
        return dated

    def _final_merge(
        self, key_table: pd.DataFrame, observations: pd.DataFrame
    ) -> pd.DataFrame:
        logger.info("Merging main data with %s metadata...", self.source.key_table)
        key_table, shared = drop_shared_columns(key_table, observations)
        if shared:
            self.diagnostics.dropped_columns[FINAL_MERGE_TABLE] = shared

        merged = observations.merge(
            key_table, on=SERIES_ID, how="left", validate="many_to_one", sort=False
        )
        if len(merged) != len(observations):
            raise RuntimeError("Final merge changed the observation row count")
        return merged.reset_index(drop=True)

    def _log_context(self, table: str) -> dict:
        return {"source_id": self.source.source_id, "table": table}

    def _record_duplicates(self, table: str, count: int) -> None:
        if count:
            logger.warning(
                "%s: dropped %d rows with duplicate join keys",
                table,
                count,
                extra=self._log_context(table),
            )
            self.diagnostics.duplicate_key_rows[table] = count


def ingest(
    source_id: str,
    identity_token: str,
    *,
    transport: Optional[Transport] = None,
    archive_root: Optional[str] = None,
    catalog: Optional[Catalog] = None,
    max_workers: int = 1,
    timeout: float = DEFAULT_TIMEOUT,
) -> MergedResult:
    """Fetch, merge and date one statistical archive.

    Args:
        source_id: Catalog id (e.g. "cpi", "eci")
        identity_token: Sent unchanged as the ``User-Agent`` header
        transport: Transport to use; an ``HttpTransport`` is created if omitted
        archive_root: Root URL or directory of the archive
        catalog: Catalog to resolve against (built-in by default)
        max_workers: Concurrent lookup-table fetches (1 = sequential)
        timeout: Per-request timeout for the default HTTP transport

    Raises:
        UnknownSourceError: ``source_id`` is not in the catalog (before any I/O)
        RequiredTableFetchError: Key table or main data file unusable
    """
    source = resolve_source(source_id, catalog)

    with ExitStack() as stack:
        if transport is None:
            transport = stack.enter_context(
                HttpTransport(identity_token, timeout=timeout)
            )
        orchestrator = MergeOrchestrator(
            source,
            transport,
            archive_root=archive_root or DEFAULT_ARCHIVE_ROOT,
            max_workers=max_workers,
        )
        return orchestrator.run()
