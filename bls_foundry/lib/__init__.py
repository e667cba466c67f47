"""Library modules for the statistical-archive ingestion engine.

This package contains the schema catalog, the merge orchestrator and the
supporting transports, parsers and writers.
"""

from bls_foundry.lib.catalog import (
    DEFAULT_CATALOG,
    Catalog,
    Frequency,
    SourceSpec,
    resolve_source,
)
from bls_foundry.lib.config_loader import Settings, load_catalog, parse_sources
from bls_foundry.lib.env import env_value, load_env_file
from bls_foundry.lib.errors import (
    ConfigurationError,
    DateParseFailure,
    FoundryError,
    FredDownloadError,
    JoinKeyMissing,
    ProjectionError,
    RequiredTableFetchError,
    TableFetchFailure,
    TransportError,
    UnknownSourceError,
)
from bls_foundry.lib.fred import get_fred, get_unemployment_rate
from bls_foundry.lib.io import WriteMetadata, read_metadata, write_frame, write_result
from bls_foundry.lib.keys import KEY_OVERRIDES, resolve_key
from bls_foundry.lib.merge import (
    MergeDiagnostics,
    MergedResult,
    MergeOrchestrator,
    MergeState,
    ingest,
)
from bls_foundry.lib.nipa import BEA_LOCATION, ingest_nipa
from bls_foundry.lib.observability import setup_logging
from bls_foundry.lib.pce import pce_inflation
from bls_foundry.lib.periods import assign_dates, parse_bea_period, to_date
from bls_foundry.lib.projection import log_linear_projection
from bls_foundry.lib.transport import (
    DEFAULT_ARCHIVE_ROOT,
    HttpTransport,
    LocalTransport,
    Transport,
    build_file_url,
)

__all__ = [
    # Catalog
    "Catalog",
    "DEFAULT_CATALOG",
    "Frequency",
    "SourceSpec",
    "resolve_source",
    "KEY_OVERRIDES",
    "resolve_key",
    # Configuration
    "Settings",
    "load_catalog",
    "parse_sources",
    "env_value",
    "load_env_file",
    # Errors
    "ConfigurationError",
    "DateParseFailure",
    "FoundryError",
    "FredDownloadError",
    "JoinKeyMissing",
    "ProjectionError",
    "RequiredTableFetchError",
    "TableFetchFailure",
    "TransportError",
    "UnknownSourceError",
    # Merge
    "MergeDiagnostics",
    "MergedResult",
    "MergeOrchestrator",
    "MergeState",
    "ingest",
    "assign_dates",
    "to_date",
    # Transport
    "DEFAULT_ARCHIVE_ROOT",
    "HttpTransport",
    "LocalTransport",
    "Transport",
    "build_file_url",
    # Output
    "WriteMetadata",
    "read_metadata",
    "write_frame",
    "write_result",
    "setup_logging",
    # Other sources and analysis
    "BEA_LOCATION",
    "ingest_nipa",
    "parse_bea_period",
    "get_fred",
    "get_unemployment_rate",
    "log_linear_projection",
    "pce_inflation",
]
