"""
Environment helpers.

Developers keep secrets such as `GEMINI_API_KEY` in a repo-local `.env` file.
`load_dotenv_if_present()` loads it once, best-effort, without overriding
variables already set in the process environment.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path


def _iter_parents(start: Path) -> list[Path]:
    start = start.resolve()
    return [start, *list(start.parents)]


def find_env_file() -> Path | None:
    """Locate the `.env` file to load (explicit path first, then CWD upwards)."""
    explicit = os.getenv("NEARMATCH_ENV_FILE")
    if explicit:
        path = Path(explicit).expanduser().resolve()
        return path if path.is_file() else None

    for candidate in _iter_parents(Path.cwd()):
        env_path = candidate / ".env"
        if env_path.is_file():
            return env_path
        # Stop at the repository boundary.
        if (candidate / ".git").exists() or (candidate / "pyproject.toml").is_file():
            break
    return None


@lru_cache
def load_dotenv_if_present() -> Path | None:
    """Load `.env` once if present; returns the loaded path (or None)."""
    env_path = find_env_file()
    if env_path is None:
        return None

    from dotenv import load_dotenv

    load_dotenv(dotenv_path=env_path, override=False)
    return env_path
