"""Ingestion and merge engine for BLS flat-file archives.

Downloads the observation file of a statistical archive together with its
series and lookup tables and joins them into one analysis-ready DataFrame.

Usage:
    python -m bls_foundry list
    python -m bls_foundry ingest cpi --identity analyst@example.com --output ./out/cpi
    python -m bls_foundry nipa --frequency Q --output ./out/nipa
"""

from bls_foundry.lib.catalog import DEFAULT_CATALOG, Catalog, SourceSpec
from bls_foundry.lib.merge import MergedResult, ingest

__all__ = [
    "Catalog",
    "DEFAULT_CATALOG",
    "MergedResult",
    "SourceSpec",
    "ingest",
]

__version__ = "1.0.0"
