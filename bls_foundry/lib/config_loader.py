"""YAML catalog extensions and runtime settings.

New archives can be declared without touching code:

    sources:
      ppi:
        folder: wp
        main_file: data.0.Current
        auxiliary_tables: [series, item, group]
        frequency: monthly
        key_overrides:
          item: [group_code, item_code]
        description: Producer Price Index

Usage:
    from bls_foundry.lib.config_loader import Settings, load_catalog

    catalog = load_catalog("./sources.yaml")
    settings = Settings.from_env()
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple, Union

import yaml

from bls_foundry.lib.catalog import DEFAULT_CATALOG, Catalog, Frequency, SourceSpec
from bls_foundry.lib.env import env_value
from bls_foundry.lib.errors import ConfigurationError
from bls_foundry.lib.transport import DEFAULT_ARCHIVE_ROOT, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

__all__ = [
    "Settings",
    "load_catalog",
    "parse_sources",
]

ENV_ARCHIVE_ROOT = "BLS_FOUNDRY_ARCHIVE_ROOT"
ENV_IDENTITY = "BLS_FOUNDRY_IDENTITY"
ENV_TIMEOUT = "BLS_FOUNDRY_TIMEOUT"
ENV_MAX_WORKERS = "BLS_FOUNDRY_MAX_WORKERS"

_REQUIRED_FIELDS = ("folder", "main_file", "auxiliary_tables")


@dataclass(frozen=True)
class Settings:
    """Runtime settings resolved from the environment and CLI flags."""

    archive_root: str = DEFAULT_ARCHIVE_ROOT
    identity_token: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    max_workers: int = 1

    @classmethod
    def from_env(cls) -> "Settings":
        issues: List[str] = []

        timeout = DEFAULT_TIMEOUT
        raw_timeout = env_value(ENV_TIMEOUT)
        if raw_timeout is not None:
            try:
                timeout = float(raw_timeout)
            except ValueError:
                issues.append(f"{ENV_TIMEOUT} must be a number, got {raw_timeout!r}")

        max_workers = 1
        raw_workers = env_value(ENV_MAX_WORKERS)
        if raw_workers is not None:
            try:
                max_workers = int(raw_workers)
            except ValueError:
                issues.append(
                    f"{ENV_MAX_WORKERS} must be an integer, got {raw_workers!r}"
                )

        if issues:
            raise ConfigurationError("Invalid environment settings", issues=issues)

        return cls(
            archive_root=env_value(ENV_ARCHIVE_ROOT, DEFAULT_ARCHIVE_ROOT)
            or DEFAULT_ARCHIVE_ROOT,
            identity_token=env_value(ENV_IDENTITY),
            timeout=timeout,
            max_workers=max(1, max_workers),
        )


# ${VAR} or $VAR inside catalog strings
_ENV_REFERENCE = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def _expand_references(value: Any, unset: Set[str]) -> Any:
    """Substitute environment variables in a catalog entry.

    Names that are not set are added to ``unset`` and left in place.
    """
    if isinstance(value, str):

        def substitute(match: re.Match) -> str:
            name = match.group(1) or match.group(2)
            if name not in os.environ:
                unset.add(name)
                return match.group(0)
            return os.environ[name]

        return _ENV_REFERENCE.sub(substitute, value)
    if isinstance(value, dict):
        return {key: _expand_references(item, unset) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand_references(item, unset) for item in value]
    return value


def _as_names(value: Any) -> Optional[Tuple[str, ...]]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return tuple(value)
    return None


def _parse_source(
    source_id: str, config: Any, issues: List[str]
) -> Optional[SourceSpec]:
    prefix = f"sources.{source_id}"
    if not isinstance(config, dict):
        issues.append(f"{prefix} must be a mapping")
        return None

    missing = [name for name in _REQUIRED_FIELDS if name not in config]
    if missing:
        issues.append(f"{prefix} is missing: {', '.join(missing)}")
        return None

    tables = _as_names(config["auxiliary_tables"])
    if not tables:
        issues.append(f"{prefix}.auxiliary_tables must be a non-empty list of names")
        return None

    try:
        frequency = Frequency.parse(config.get("frequency", "monthly"))
    except ValueError as exc:
        issues.append(f"{prefix}.frequency: {exc}")
        return None

    overrides: Dict[str, Tuple[str, ...]] = {}
    raw_overrides = config.get("key_overrides") or {}
    if not isinstance(raw_overrides, dict):
        issues.append(f"{prefix}.key_overrides must be a mapping")
        return None
    for table, keys in raw_overrides.items():
        names = _as_names(keys)
        if not names:
            issues.append(f"{prefix}.key_overrides.{table} must name key column(s)")
            continue
        if table not in tables:
            logger.warning(
                "%s.key_overrides.%s names a table that is not fetched", prefix, table
            )
        overrides[str(table)] = names

    try:
        return SourceSpec(
            source_id=source_id,
            folder=str(config["folder"]),
            main_file=str(config["main_file"]),
            auxiliary_tables=tables,
            frequency=frequency,
            key_overrides=overrides,
            description=str(config.get("description", "")),
        )
    except ValueError as exc:
        issues.append(str(exc))
        return None


def parse_sources(config: Dict[str, Any]) -> List[SourceSpec]:
    """Build ``SourceSpec`` objects from a parsed ``sources:`` document.

    Raises:
        ConfigurationError: Listing every invalid entry
    """
    if not isinstance(config, dict) or "sources" not in config:
        raise ConfigurationError("Catalog file must contain a 'sources' mapping")

    sources = config["sources"]
    if not isinstance(sources, dict):
        raise ConfigurationError("'sources' must be a mapping of id -> definition")

    issues: List[str] = []
    specs: List[SourceSpec] = []
    for source_id, entry in sources.items():
        source_id = str(source_id).strip().lower()
        unset: Set[str] = set()
        entry = _expand_references(entry, unset)
        if unset:
            issues.append(
                f"sources.{source_id} uses unset environment variable(s): "
                f"{', '.join(sorted(unset))}"
            )
            continue
        spec = _parse_source(source_id, entry, issues)
        if spec is not None:
            specs.append(spec)

    if issues:
        raise ConfigurationError("Invalid catalog configuration", issues=issues)
    return specs


def load_catalog(
    path: Union[str, Path],
    base: Optional[Catalog] = None,
) -> Catalog:
    """Load a YAML catalog file and layer it over ``base``.

    Sources in the file replace built-in sources with the same id.

    Raises:
        ConfigurationError: If the file is unreadable or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(
            f"Catalog file not found: {path}",
            details={"path": str(path)},
        )

    try:
        with open(path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            f"Could not parse catalog file {path}: {exc}",
            details={"path": str(path)},
        ) from exc

    specs = parse_sources(config)
    logger.info("Loaded %d source(s) from %s", len(specs), path)
    return (base or DEFAULT_CATALOG).extend(specs)
