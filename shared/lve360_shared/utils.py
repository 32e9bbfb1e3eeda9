"""
Shared utility functions for LVE360.

Usage:
    from lve360_shared.utils import PROJECT_ROOT, normalize_name

    config_dir = PROJECT_ROOT / "config"
    key = normalize_name("**Omega-3**")   # "omega 3"
"""

import os
import re
from pathlib import Path


def get_project_root() -> Path:
    """
    Find the project root directory.

    Walks up from this file looking for the ``config/`` directory that holds
    generation.yml. Can be overridden with the PROJECT_ROOT environment
    variable.

    Returns:
        Path: Absolute path to the project root directory
    """
    if env_root := os.getenv("PROJECT_ROOT"):
        return Path(env_root).resolve()

    current = Path(__file__).resolve().parent
    while current != current.parent:
        if (current / "config" / "generation.yml").exists() or (current / ".git").exists():
            return current
        current = current.parent

    return Path.cwd()


PROJECT_ROOT = get_project_root()


_MARKUP_RE = re.compile(r"[*_`#]")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def clean_name(raw: str) -> str:
    """Strip markdown markup and collapse whitespace, keeping case."""
    if not raw:
        return ""
    return re.sub(r"\s+", " ", _MARKUP_RE.sub("", raw)).strip()


def normalize_name(raw: str) -> str:
    """
    Merge/dedup key for a supplement name.

    Markup removed, lower-cased, punctuation stripped, whitespace collapsed.
    """
    if not raw:
        return ""
    return _NON_ALNUM_RE.sub(" ", clean_name(raw).lower()).strip()
