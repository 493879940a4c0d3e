from __future__ import annotations

import os
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any


def truthy(v: Any) -> bool:
    """
    Normalize common truthy inputs from env/kwargs.
    Accepts bools or strings like: '1', 'true', 'yes', 'on'.
    """
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    if isinstance(v, (int, float)):
        return v != 0
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y", "t"}


def now_iso() -> str:
    """UTC ISO-8601 timestamp with millisecond precision and 'Z' suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def getenv_str(name: str, default: str | None = None) -> str | None:
    """Environment lookup that treats empty strings as unset."""
    val = os.getenv(name)
    return val if val else default


def with_npm_bin(env: Mapping[str, str] | None = None) -> dict[str, str]:
    """
    Copy of `env` with ~/.npm-global/bin on PATH, so a globally installed
    firecrawl CLI is found even from non-login shells.
    """
    enriched = dict(env if env is not None else os.environ)
    npm_global_bin = os.path.join(os.environ.get("HOME", ""), ".npm-global", "bin")
    current = enriched.get("PATH") or os.environ.get("PATH", "")
    if npm_global_bin not in current.split(os.pathsep):
        enriched["PATH"] = os.pathsep.join(p for p in (npm_global_bin, current) if p)
    return enriched


def is_valid_slug(slug: str | None) -> bool:
    """A slug names exactly one directory below the artifact root."""
    if not slug:
        return False
    return ".." not in slug and "/" not in slug and not os.path.isabs(slug)
