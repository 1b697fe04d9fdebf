"""API key lookup: process environment first, then `<project_root>/.env`.

Values are returned to the caller rather than exported into `os.environ`, so
one session's `.env` never leaks into another project's process state.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] in ("'", '"') and value[-1] == value[0]:
        return value[1:-1]
    return value


def parse_env_text(text: str) -> dict[str, str]:
    """Parse KEY=VALUE lines (`export` prefix, quotes and comments allowed; no interpolation)."""

    out: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        out[key] = _unquote(value.strip())
    return out


def read_env_file(path: Path) -> dict[str, str]:
    """Return the parsed `.env` file, or {} when it is missing or unreadable."""
    if not path.is_file():
        return {}
    try:
        return parse_env_text(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError):
        return {}


def resolve_api_key(
    api_key_env: str,
    *,
    root: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> str | None:
    """Return a non-blank credential for `api_key_env`, or None if none is configured."""

    env = os.environ if environ is None else environ
    value = (env.get(api_key_env) or "").strip()
    if value:
        return value
    if root is None:
        return None
    value = (read_env_file(root / ".env").get(api_key_env) or "").strip()
    return value or None
