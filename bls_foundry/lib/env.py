"""Environment helpers for runtime settings.

``.env`` files are loaded through python-dotenv; ``${VAR}`` references in
catalog files are expanded by ``config_loader``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

__all__ = ["env_value", "load_env_file"]


def load_env_file(
    path: Optional[Union[str, Path]] = None,
    *,
    override: bool = False,
) -> bool:
    """Load ``BLS_FOUNDRY_*`` and other variables from a .env file.

    Args:
        path: Path to the file; the current directory and its parents are
            searched when omitted
        override: Replace variables that are already set

    Returns:
        True if a file was found and loaded
    """
    return load_dotenv(dotenv_path=path, override=override)


def env_value(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return a non-empty environment variable or ``default``."""
    value = os.environ.get(name)
    return value if value else default
