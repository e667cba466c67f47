"""Transports that fetch delimited flat files as DataFrames.

The merge engine only needs ``fetch_table(url) -> DataFrame``. Timeouts
belong to the transport; the engine never retries.

Example:
    from bls_foundry.lib.transport import HttpTransport, build_file_url

    transport = HttpTransport("analyst@example.com")
    url = build_file_url(DEFAULT_ARCHIVE_ROOT, "cu", "series")
    series = transport.fetch_table(url)
"""

from __future__ import annotations

import io
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Union
from urllib.parse import urlparse
from urllib.request import url2pathname

import pandas as pd
import requests

from bls_foundry.lib.errors import TransportError

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_ARCHIVE_ROOT",
    "DEFAULT_TIMEOUT",
    "DEFAULT_USER_AGENT",
    "Transport",
    "HttpTransport",
    "LocalTransport",
    "build_file_url",
    "parse_table",
]

DEFAULT_ARCHIVE_ROOT = "https://download.bls.gov/pub/time.series"
DEFAULT_TIMEOUT = 60.0
DEFAULT_USER_AGENT = "bls-foundry"


def build_file_url(archive_root: str, folder: str, file_name: str) -> str:
    """Build ``{archive_root}/{folder}/{folder}.{file_name}``.

    Example:
        >>> build_file_url("https://download.bls.gov/pub/time.series", "cu", "series")
        'https://download.bls.gov/pub/time.series/cu/cu.series'
    """
    return f"{archive_root.rstrip('/')}/{folder}/{folder}.{file_name}"


def parse_table(text: str, *, sep: str = "\t") -> pd.DataFrame:
    """Parse delimited text into a string-typed DataFrame.

    Column names and cell values are stripped of surrounding whitespace and
    empty cells become missing. Type coercion is left to the caller, so codes
    such as ``"0000"`` keep their leading zeros.
    """
    frame = pd.read_csv(
        io.StringIO(text),
        sep=sep,
        dtype=str,
        keep_default_na=False,
        na_values=[""],
    )
    frame.columns = [str(col).strip() for col in frame.columns]
    for col in frame.columns:
        stripped = frame[col].str.strip()
        frame[col] = stripped.mask(stripped == "")
    return frame


class Transport(ABC):
    """Fetches one delimited table per URL."""

    @abstractmethod
    def fetch_text(self, url: str) -> str:
        """Return the raw text behind ``url`` or raise ``TransportError``."""

    def fetch_table(self, url: str, *, sep: str = "\t") -> pd.DataFrame:
        """Fetch and parse ``url``; parse problems surface as ``TransportError``."""
        text = self.fetch_text(url)
        try:
            return parse_table(text, sep=sep)
        except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
            raise TransportError(
                f"Could not parse table at {url}", url=url, cause=exc
            ) from exc


class HttpTransport(Transport):
    """HTTP transport backed by a ``requests.Session``.

    The identity token is sent unchanged as the ``User-Agent`` header; BLS
    rejects anonymous agents. No retries are attempted.
    """

    def __init__(
        self,
        identity_token: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.identity_token = identity_token
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers: Dict[str, str] = {"User-Agent": identity_token}
        if headers:
            self.headers.update(headers)

    def fetch_text(self, url: str) -> str:
        logger.debug("GET %s", url)
        try:
            response = self.session.get(url, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            raise TransportError(
                f"HTTP {status} fetching {url}", url=url, status_code=status, cause=exc
            ) from exc
        except requests.RequestException as exc:
            raise TransportError(
                f"Request failed for {url}", url=url, cause=exc
            ) from exc
        return response.text

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class LocalTransport(Transport):
    """Reads tables from a local mirror of an archive.

    URLs may be plain paths or ``file://`` URLs; relative paths resolve
    against ``root`` when given.
    """

    def __init__(
        self, root: Optional[Union[str, Path]] = None, *, encoding: str = "utf-8"
    ) -> None:
        self.root = Path(root) if root is not None else None
        self.encoding = encoding

    def _resolve(self, url: str) -> Path:
        parsed = urlparse(url)
        if parsed.scheme == "file":
            path = Path(url2pathname(parsed.path))
        else:
            path = Path(url)
        if self.root is not None and not path.is_absolute():
            path = self.root / path
        return path

    def fetch_text(self, url: str) -> str:
        path = self._resolve(url)
        logger.debug("Reading %s", path)
        try:
            return path.read_text(encoding=self.encoding)
        except (OSError, UnicodeDecodeError) as exc:
            raise TransportError(f"Could not read {path}", url=url, cause=exc) from exc
