"""Git simulator with guided lessons."""

from __future__ import annotations

import re
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from .engine import ErrorKind, GraphError, Outcome, apply
from .models import Branch, Commit, GraphState, initial_state
from .session import GitSession

__all__ = [
    "Branch",
    "Commit",
    "ErrorKind",
    "GitSession",
    "GraphError",
    "GraphState",
    "Outcome",
    "__version__",
    "apply",
    "initial_state",
]

_VERSION_LINE = re.compile(r'^version\s*=\s*"([^"]+)"\s*$')


def _source_tree_version() -> str | None:
    """Read [project].version from a checkout's pyproject.toml, if running from source."""
    pyproject = Path(__file__).resolve().parents[2] / "pyproject.toml"
    if not pyproject.is_file():
        return None
    section = ""
    for line in pyproject.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if stripped.startswith("["):
            section = stripped
        elif section == "[project]":
            match = _VERSION_LINE.match(stripped)
            if match:
                return match.group(1)
    return None


def _resolve_version() -> str:
    found = _source_tree_version()
    if found is not None:
        return found
    try:
        return version("gitsim")
    except PackageNotFoundError:
        return "0+unknown"


__version__ = _resolve_version()
