# service/config_schema.py
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

try:
    import yaml  # type: ignore
except Exception:  # pragma: no cover
    yaml = None  # YAML optional


class ConfigError(ValueError):
    """Raised when the crawl config is invalid."""


@dataclass
class _LoadResult:
    """Internal convenience container (not required by callers)."""

    cfg: dict[str, Any]
    source: str


_NUMBER_FIELDS = ("limit", "maxDepth", "delayMs", "maxConcurrency", "pollInterval", "timeout")
_STRING_FIELDS = ("sitemap", "retrySitemap")
_PATH_LIST_FIELDS = ("includePaths", "excludePaths")
_KNOWN_FIELDS = set(_NUMBER_FIELDS) | set(_STRING_FIELDS) | set(_PATH_LIST_FIELDS) | {"fallbackCommand"}


def load_config(path: str | None = None) -> dict[str, Any]:
    """
    Load a crawl config strictly.

    Resolution order:
      1) Explicit `path` argument (if provided)
      2) os.environ['FIRECRAWL_CONFIG'] (if set)
      3) config/firecrawl.makler.json

    Raises ConfigError if the file is missing or unreadable.
    """
    resolved = path or os.environ.get("FIRECRAWL_CONFIG") or os.path.join("config", "firecrawl.makler.json")
    return _read_any(resolved).cfg


def load_crawl_config(path: str) -> dict[str, Any]:
    """
    Lenient variant used by the crawl itself: a missing or unreadable config
    file is logged and treated as an empty config, so defaults apply.
    """
    try:
        return _read_any(path).cfg
    except ConfigError as e:
        logger.warning("Could not read config at %s: %s", path, e)
        return {}


def validate(cfg: dict[str, Any]) -> None:
    """
    Validate a crawl config. Raise ConfigError on any problem.
    No prints, no sys.exit().
    """
    if not isinstance(cfg, dict):
        raise ConfigError("Config must be a dict.")

    for key in _NUMBER_FIELDS:
        if key in cfg and cfg[key] is not None:
            _require_number(cfg[key], key)

    for key in _STRING_FIELDS:
        if key in cfg and cfg[key] is not None and not isinstance(cfg[key], str):
            raise ConfigError(f"'{key}' must be a string if provided.")

    for key in _PATH_LIST_FIELDS:
        if key in cfg and cfg[key] is not None:
            _require_str_list(cfg[key], key)

    if "fallbackCommand" in cfg and cfg["fallbackCommand"] is not None:
        _require_str_list(cfg["fallbackCommand"], "fallbackCommand")
        if not cfg["fallbackCommand"]:
            raise ConfigError("'fallbackCommand' must not be empty when provided.")

    unknown = sorted(set(cfg) - _KNOWN_FIELDS)
    if unknown:
        # Unknown keys are tolerated by the crawl; flag them for the operator only.
        logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))


def _require_number(value: Any, field: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{field}' must be a number (got {value!r}).")
    if value < 0:
        raise ConfigError(f"'{field}' must be >= 0 (got {value}).")


def _require_str_list(value: Any, field: str) -> None:
    if not isinstance(value, list):
        raise ConfigError(f"'{field}' must be a list of strings.")
    for i, item in enumerate(value):
        if not isinstance(item, str) or not item.strip():
            raise ConfigError(f"{field}[{i}] must be a non-empty string.")


def _read_any(path: str) -> _LoadResult:
    lower = path.lower()
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}: {e}") from e

    if lower.endswith(".yml") or lower.endswith(".yaml"):
        if yaml is None:
            raise ConfigError("YAML config requested but PyYAML is not installed.")
        try:
            data = yaml.safe_load(text)
        except Exception as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            data = {}
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Top-level config in {path} must be an object.")
    return _LoadResult(cfg=data, source=path)
