"""Logging setup and phase timing for ingestion runs.

Progress goes through module-level ``logging`` loggers; ``setup_logging``
picks a plain or JSON rendering for the whole process. ``IngestTimings``
records how long each merge state took so the durations can travel with the
diagnostics.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List, Optional

__all__ = [
    "IngestTimings",
    "JSONFormatter",
    "PhaseTimer",
    "setup_logging",
]

_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


@dataclass
class PhaseTimer:
    """Timer tracking a named merge phase."""

    name: str
    start_time: float = field(default_factory=time.perf_counter)
    end_time: Optional[float] = None

    def stop(self) -> float:
        self.end_time = time.perf_counter()
        return self.duration

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return end - self.start_time


class IngestTimings:
    """Ordered phase durations for one ingestion call."""

    def __init__(self) -> None:
        self._phases: List[PhaseTimer] = []

    @contextmanager
    def time_phase(self, name: str) -> Generator[PhaseTimer, None, None]:
        """Context manager that tracks a phase duration."""
        timer = PhaseTimer(name=name)
        self._phases.append(timer)
        try:
            yield timer
        finally:
            timer.stop()

    def as_dict(self) -> Dict[str, float]:
        return {phase.name: round(phase.duration, 6) for phase in self._phases}


class JSONFormatter(logging.Formatter):
    """Render each record as one JSON object per line.

    ``source_id`` and ``table`` passed through ``extra=`` become top-level
    keys; any other extra attributes are grouped under ``"extra"``.

    Example output:
        {"timestamp": "2025-01-15T10:30:00.123Z", "level": "WARNING",
         "logger": "bls_foundry.lib.merge", "message": "Join key(s) missing...",
         "source_id": "cpi", "table": "item"}
    """

    CONTEXT_FIELDS = ("source_id", "table")

    def __init__(self, exclude_fields: Optional[List[str]] = None):
        super().__init__()
        self.exclude_fields = frozenset(exclude_fields or ())

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: Dict[str, Any] = {
            "timestamp": timestamp.isoformat(timespec="milliseconds").replace(
                "+00:00", "Z"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in self.CONTEXT_FIELDS:
            if getattr(record, name, None) is not None:
                payload[name] = getattr(record, name)

        if record.levelno >= logging.WARNING:
            payload["source"] = f"{record.module}:{record.lineno}"
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        skip = _RESERVED_ATTRS | self.exclude_fields | set(self.CONTEXT_FIELDS)
        extra = {k: v for k, v in vars(record).items() if k not in skip}
        if extra:
            payload["extra"] = extra

        return json.dumps(payload, default=str)


def setup_logging(
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Configure the root logger with optional JSON formatting.

    Args:
        verbose: Enable debug-level logging
        json_format: Use JSON output format (for log aggregation)
        log_file: Optional file path to write logs to
    """
    level = logging.DEBUG if verbose else logging.INFO

    formatter = JSONFormatter() if json_format else logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
