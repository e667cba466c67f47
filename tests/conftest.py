"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
from typing import Dict, List, Optional, Union

import pytest

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from bls_foundry.lib.catalog import Catalog, Frequency, SourceSpec  # noqa: E402
from bls_foundry.lib.errors import TransportError  # noqa: E402
from bls_foundry.lib.transport import Transport, build_file_url  # noqa: E402

ARCHIVE_ROOT = "https://archive.test/pub/time.series"


class FakeTransport(Transport):
    """In-memory transport: URL -> text, or an exception to raise."""

    def __init__(self, files: Dict[str, Union[str, Exception]]) -> None:
        self.files = dict(files)
        self.requested: List[str] = []

    def fetch_text(self, url: str) -> str:
        self.requested.append(url)
        content = self.files.get(url)
        if content is None:
            raise TransportError(f"HTTP 404 fetching {url}", url=url, status_code=404)
        if isinstance(content, Exception):
            raise content
        return content


def tsv(*rows: str) -> str:
    """Join tab-separated rows into file text."""
    return "\n".join(rows) + "\n"


CPI_SERIES = tsv(
    "series_id\tarea_code\titem_code\tseries_title\tfootnote_codes",
    "CUUR0000SA0  \t0000\tSA0\tAll items in U.S. city average\tA",
    "CUUR0000SAF1\t0000\tSAF1\tFood in U.S. city average\t",
)

CPI_ITEM = tsv(
    "item_code\titem_name\tdisplay_level\tselectable\tsort_sequence",
    "SA0\tAll items\t0\tT\t2",
    "SAF1\tFood\t1\tT\t3",
)

CPI_AREA = tsv(
    "area_code\tarea_name\tdisplay_level\tselectable\tsort_sequence",
    "0000\tU.S. city average\t0\tT\t1",
)

CPI_DATA = tsv(
    "series_id                     \tyear\tperiod\t       value\tfootnote_codes",
    "CUUR0000SA0                   \t2023\tM01\t     299.170\t",
    "CUUR0000SA0                   \t2023\tM02\t     300.840\t",
    "CUUR0000SA0                   \t2023\tM13\t     304.702\t",
    "CUUR0000SAF1                  \t2023\tM01\t     318.000\t",
    "CUUR0000SAF1                  \t2023\tM02\t           -\t",
)


@pytest.fixture
def cpi_spec() -> SourceSpec:
    """A three-table monthly source shaped like CPI."""
    return SourceSpec(
        source_id="cpi",
        folder="cu",
        main_file="data.0.Current",
        auxiliary_tables=("series", "item", "area"),
        description="Consumer Price Index",
    )


@pytest.fixture
def cpi_files() -> Dict[str, Union[str, Exception]]:
    """Archive contents for ``cpi_spec`` keyed by URL."""
    return {
        build_file_url(ARCHIVE_ROOT, "cu", "series"): CPI_SERIES,
        build_file_url(ARCHIVE_ROOT, "cu", "item"): CPI_ITEM,
        build_file_url(ARCHIVE_ROOT, "cu", "area"): CPI_AREA,
        build_file_url(ARCHIVE_ROOT, "cu", "data.0.Current"): CPI_DATA,
    }


@pytest.fixture
def cpi_catalog(cpi_spec) -> Catalog:
    return Catalog([cpi_spec])


@pytest.fixture
def quarterly_spec() -> SourceSpec:
    """A single-lookup quarterly source shaped like ECI."""
    return SourceSpec(
        source_id="eci",
        folder="ci",
        main_file="data.1.AllData",
        auxiliary_tables=("series", "owner"),
        frequency=Frequency.QUARTERLY,
    )


@pytest.fixture
def make_transport():
    """Factory building a ``FakeTransport`` from a URL mapping."""

    def _make(files: Optional[Dict[str, Union[str, Exception]]] = None):
        return FakeTransport(files or {})

    return _make
