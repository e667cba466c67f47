"""Write merged results with metadata tracking.

Each write produces a data file plus a ``_metadata.json`` sidecar so the
row count, columns and merge diagnostics travel with the data.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from bls_foundry.lib.merge import MergedResult

logger = logging.getLogger(__name__)

__all__ = [
    "SUPPORTED_FORMATS",
    "WriteMetadata",
    "read_metadata",
    "write_frame",
    "write_result",
]

SUPPORTED_FORMATS = ("parquet", "csv")
METADATA_FILE = "_metadata.json"


@dataclass
class WriteMetadata:
    """Metadata written alongside data files."""

    row_count: int
    columns: List[str]
    written_at: str
    source_id: Optional[str] = None
    format: str = "parquet"
    compression: Optional[str] = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WriteMetadata":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def write_frame(
    frame: pd.DataFrame,
    path: Union[str, Path],
    *,
    format: str = "parquet",
    compression: str = "snappy",
    write_metadata: bool = True,
    source_id: Optional[str] = None,
    diagnostics: Optional[Dict[str, Any]] = None,
) -> WriteMetadata:
    """Write a DataFrame to ``path/data.<format>``.

    Args:
        frame: Table to write
        path: Output directory (created if needed)
        format: "parquet" or "csv"
        compression: Compression codec for parquet
        write_metadata: Whether to write _metadata.json
        source_id: Recorded in the metadata
        diagnostics: Recorded in the metadata

    Returns:
        WriteMetadata with details about what was written
    """
    if format not in SUPPORTED_FORMATS:
        raise ValueError(
            f"Unsupported format: {format}. Use one of {', '.join(SUPPORTED_FORMATS)}"
        )

    output_path = Path(path)
    output_path.mkdir(parents=True, exist_ok=True)

    data_file = output_path / f"data.{format}"
    if format == "parquet":
        frame.to_parquet(
            data_file, engine="pyarrow", compression=compression, index=False
        )
    else:
        frame.to_csv(data_file, index=False)

    metadata = WriteMetadata(
        row_count=len(frame),
        columns=[str(col) for col in frame.columns],
        written_at=datetime.now(timezone.utc).isoformat(),
        source_id=source_id,
        format=format,
        compression=compression if format == "parquet" else None,
        diagnostics=diagnostics or {},
    )

    if write_metadata:
        metadata_file = output_path / METADATA_FILE
        metadata_file.write_text(metadata.to_json())
        logger.debug("Wrote metadata to %s", metadata_file)

    logger.info("Wrote %d rows to %s", metadata.row_count, data_file)
    return metadata


def write_result(
    result: MergedResult,
    path: Union[str, Path],
    *,
    format: str = "parquet",
    compression: str = "snappy",
    write_metadata: bool = True,
) -> WriteMetadata:
    """Write a merged ingestion result and its diagnostics."""
    return write_frame(
        result.table,
        path,
        format=format,
        compression=compression,
        write_metadata=write_metadata,
        source_id=result.source.source_id,
        diagnostics=result.diagnostics.to_dict(),
    )


def read_metadata(path: Union[str, Path]) -> Optional[WriteMetadata]:
    """Read the metadata sidecar in ``path``, if there is one."""
    metadata_file = Path(path) / METADATA_FILE
    if not metadata_file.exists():
        return None
    with open(metadata_file, encoding="utf-8") as f:
        return WriteMetadata.from_dict(json.load(f))
