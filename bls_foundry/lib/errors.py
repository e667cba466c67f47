"""Structured exception hierarchy and non-fatal notices.

Fatal conditions raise a ``FoundryError`` subclass carrying enough context
(source id, table, details) to diagnose the failure. Non-fatal conditions are
represented as small frozen notices that are accumulated in merge diagnostics
instead of being thrown.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

__all__ = [
    "FoundryError",
    "UnknownSourceError",
    "RequiredTableFetchError",
    "TransportError",
    "ConfigurationError",
    "FredDownloadError",
    "ProjectionError",
    "JoinKeyMissing",
    "TableFetchFailure",
    "DateParseFailure",
]


class FoundryError(Exception):
    """Base exception for all ingestion errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        source_id: Optional[str] = None,
        table: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.source_id = source_id
        self.table = table
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]

        if source_id or table:
            context = f"{source_id or '?'}.{table or '?'}"
            parts.insert(0, f"[{context}]")

        if self.details:
            parts.append("\nDetails:")
            parts.extend(f"  {k}: {v}" for k, v in self.details.items())

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "source_id": self.source_id,
            "table": self.table,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class UnknownSourceError(FoundryError):
    """Raised before any I/O when a data-source id is not in the catalog."""

    def __init__(
        self,
        source_id: str,
        *,
        valid_sources: Iterable[str] = (),
        **kwargs: Any,
    ) -> None:
        self.valid_sources = sorted(valid_sources)

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion and self.valid_sources:
            suggestion = "Choose one of: " + ", ".join(self.valid_sources)

        super().__init__(
            f"Unknown data source: {source_id!r}",
            source_id=source_id,
            suggestion=suggestion,
            **kwargs,
        )


class RequiredTableFetchError(FoundryError):
    """The key table or the main observation file could not be used.

    Every later join depends on these two tables, so the ingestion aborts.
    """

    def __init__(
        self,
        message: str,
        *,
        source_id: str,
        table: str,
        url: Optional[str] = None,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.url = url
        self.cause = cause

        details = kwargs.pop("details", {})
        if url:
            details["url"] = url
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(
            message, source_id=source_id, table=table, details=details, **kwargs
        )


class TransportError(FoundryError):
    """A remote or local table could not be retrieved or parsed."""

    def __init__(
        self,
        message: str,
        *,
        url: str,
        status_code: Optional[int] = None,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.url = url
        self.status_code = status_code
        self.cause = cause

        details = kwargs.pop("details", {})
        details["url"] = url
        if status_code is not None:
            details["status_code"] = status_code
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = (
                "Check that the archive root is reachable and that the "
                "identity token is an accepted User-Agent."
            )

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class ConfigurationError(FoundryError):
    """Invalid catalog configuration or runtime settings."""

    def __init__(
        self,
        message: str,
        *,
        issues: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> None:
        self.issues = issues or []

        details = kwargs.pop("details", {})
        if issues:
            details["issue_count"] = len(issues)
            issue_lines = "\n".join(f"  - {issue}" for issue in issues)
            message = f"{message}\n\nIssues found:\n{issue_lines}"

        super().__init__(message, details=details, **kwargs)


class FredDownloadError(FoundryError):
    """None of the requested FRED series could be downloaded."""


class ProjectionError(FoundryError):
    """Invalid inputs to the log-linear projection."""


@dataclass(frozen=True)
class JoinKeyMissing:
    """A lookup table was skipped because a declared join key is absent."""

    table: str
    keys: Tuple[str, ...]
    missing_in_key_table: Tuple[str, ...] = ()
    missing_in_lookup: Tuple[str, ...] = ()

    def describe(self) -> str:
        parts = ["Join key(s) missing."]
        if self.missing_in_key_table:
            parts.append(
                "Missing in key table: " + ", ".join(self.missing_in_key_table) + "."
            )
        if self.missing_in_lookup:
            parts.append(
                f"Missing in {self.table}: " + ", ".join(self.missing_in_lookup) + "."
            )
        parts.append(f"Skipping file: {self.table}")
        return " ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TableFetchFailure:
    """A lookup table could not be fetched; the merge proceeds without it."""

    table: str
    url: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DateParseFailure:
    """A period code/year pair that maps to no calendar date."""

    period_code: Any
    year: Any
    reason: str = field(default="unrecognized period code")

    def __bool__(self) -> bool:
        return False
