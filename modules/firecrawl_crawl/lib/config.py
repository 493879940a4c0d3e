from __future__ import annotations

import dataclasses
import hashlib
import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .utils import getenv_str, is_valid_slug


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when provided kwargs/env/config file cannot form valid settings."""


# -----------------------------
# Constants
# -----------------------------
DEFAULT_CONFIG_PATH = os.path.join("config", "firecrawl.makler.json")
DEFAULT_RAW_ROOT = os.path.join("raw", "firecrawl")
DEFAULT_API_BASE = "https://api.firecrawl.dev"

# Used when the config carries no excludePaths at all.
DEFAULT_FORBIDDEN_SEGMENTS: tuple[str, ...] = (
    "/angebote",
    "/angebot",
    "/immobilien",
    "/objekte",
    "/expose",
    "/exposé",
    "/listing",
    "/property",
    "/inserat",
    "/kaufen",
    "/mieten",
)

# Tightened parameters for the second attempt
RETRY_MAX_LIMIT = 8
RETRY_MAX_DEPTH = 2
RETRY_MIN_DELAY_MS = 1000
RETRY_SITEMAP = "skip"

# camelCase config key -> RunConfig field
_NUMBER_KEYS = {
    "limit": "limit",
    "maxDepth": "max_depth",
    "delayMs": "delay_ms",
    "maxConcurrency": "max_concurrency",
    "pollInterval": "poll_interval",
    "timeout": "timeout",
}
_STRING_KEYS = {
    "sitemap": "sitemap",
    "retrySitemap": "retry_sitemap",
}
_PATH_LIST_KEYS = {
    "includePaths": "include_paths",
    "excludePaths": "exclude_paths",
}


# -----------------------------
# Models
# -----------------------------
@dataclass(frozen=True)
class RunConfig:
    """
    Crawl parameters for one attempt. Every field is optional; unset fields are
    simply not passed to the crawl tool.

    A retry never mutates an instance; it calls derive() for a new one.
    """

    limit: int | float | None = None
    max_depth: int | float | None = None
    delay_ms: int | float | None = None
    max_concurrency: int | float | None = None
    poll_interval: int | float | None = None
    timeout: int | float | None = None  # seconds
    sitemap: str | None = None
    retry_sitemap: str | None = None
    include_paths: tuple[str, ...] = ()
    exclude_paths: tuple[str, ...] | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> RunConfig:
        """Build from the camelCase crawl config mapping; wrong value types raise ConfigError."""
        raw = raw or {}
        if not isinstance(raw, Mapping):
            raise ConfigError("Crawl config must be an object.")

        values: dict[str, Any] = {}
        for key, attr in _NUMBER_KEYS.items():
            v = raw.get(key)
            if v is None:
                continue
            if isinstance(v, bool) or not isinstance(v, (int, float)):
                raise ConfigError(f"'{key}' must be a number (got {v!r}).")
            if v < 0:
                raise ConfigError(f"'{key}' must be >= 0 (got {v}).")
            values[attr] = v

        for key, attr in _STRING_KEYS.items():
            v = raw.get(key)
            if v is None:
                continue
            if not isinstance(v, str):
                raise ConfigError(f"'{key}' must be a string (got {v!r}).")
            values[attr] = v

        for key, attr in _PATH_LIST_KEYS.items():
            if key not in raw or raw[key] is None:
                continue
            v = raw[key]
            if not isinstance(v, list):
                raise ConfigError(f"'{key}' must be a list of strings.")
            values[attr] = tuple(p for p in v if isinstance(p, str))

        return cls(**values)

    def derive(self, **overrides: Any) -> RunConfig:
        """Return a new RunConfig with `overrides` applied (field names, snake_case)."""
        known = {f.name for f in dataclasses.fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigError(f"Unknown RunConfig fields: {sorted(unknown)}")
        return dataclasses.replace(self, **overrides)

    def retry_overrides(self) -> dict[str, Any]:
        """Parameters for the second attempt after a stall."""
        return {
            "limit": min(self.limit, RETRY_MAX_LIMIT) if self.limit is not None else RETRY_MAX_LIMIT,
            "max_depth": min(self.max_depth, RETRY_MAX_DEPTH) if self.max_depth is not None else RETRY_MAX_DEPTH,
            "max_concurrency": 1,
            "delay_ms": max(self.delay_ms, RETRY_MIN_DELAY_MS) if self.delay_ms is not None else RETRY_MIN_DELAY_MS,
            "sitemap": self.retry_sitemap if self.retry_sitemap is not None else RETRY_SITEMAP,
        }

    def forbidden_segments(self) -> list[str]:
        """
        Lowercased path segments that mark a listing page. The config's
        excludePaths win whenever the key is present, even if empty.
        """
        source = self.exclude_paths if self.exclude_paths is not None else DEFAULT_FORBIDDEN_SEGMENTS
        return [p.strip().lower() for p in source if p.strip()]

    def crawl_flags(self) -> list[str]:
        """Translate set parameters into firecrawl CLI flags."""
        flags: list[str] = []
        for attr, flag in (
            ("limit", "--limit"),
            ("max_depth", "--max-depth"),
            ("delay_ms", "--delay"),
            ("max_concurrency", "--max-concurrency"),
            ("poll_interval", "--poll-interval"),
            ("timeout", "--timeout"),
        ):
            value = getattr(self, attr)
            if value is not None:
                flags += [flag, _format_number(value)]
        if self.sitemap and self.sitemap.strip():
            flags += ["--sitemap", self.sitemap]
        if self.exclude_paths:
            flags += ["--exclude-paths", ",".join(self.exclude_paths)]
        if self.include_paths:
            flags += ["--include-paths", ",".join(self.include_paths)]
        return flags


@dataclass
class Settings:
    """
    Everything one orchestrator invocation needs: target, artifact location,
    crawl parameters and remote API access.
    """

    url: str
    slug: str
    config_path: str
    run_config: RunConfig = field(default_factory=RunConfig)
    config_hash: str = ""
    raw_root: str = DEFAULT_RAW_ROOT
    firecrawl_bin: str = "firecrawl"
    api_base: str = DEFAULT_API_BASE
    api_key: str | None = field(default=None, repr=False)
    fallback_command: tuple[str, ...] = ()

    @property
    def output_dir(self) -> str:
        return os.path.join(self.raw_root, self.slug)

    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs with validation.

        Expected kwargs:

            url: str          # required
            slug: str         # required; one path component
            config_path: str  # default: $FIRECRAWL_CONFIG or config/firecrawl.makler.json
            raw_root: str     # default: $FIRECRAWL_RAW_DIR or raw/firecrawl

        Environment: FIRECRAWL_API_KEY, FIRECRAWL_API_BASE, FIRECRAWL_BIN.
        """
        # Local import: config_schema lives in the service layer and imports nothing from here.
        from service.config_schema import load_crawl_config

        kw = dict(kwargs or {})

        url = str(kw.get("url") or "").strip()
        slug = str(kw.get("slug") or "").strip()
        if not url:
            raise ConfigError("Missing target 'url'.")
        if not is_valid_slug(slug):
            raise ConfigError(f"Invalid slug {slug!r}: must be a single path component without '..'.")

        config_path = os.path.abspath(
            str(kw.get("config_path") or getenv_str("FIRECRAWL_CONFIG") or DEFAULT_CONFIG_PATH)
        )
        raw = load_crawl_config(config_path)
        run_config = RunConfig.from_mapping(raw)

        settings = cls(
            url=url,
            slug=slug,
            config_path=config_path,
            run_config=run_config,
            config_hash=config_hash(raw),
            raw_root=str(kw.get("raw_root") or getenv_str("FIRECRAWL_RAW_DIR") or DEFAULT_RAW_ROOT),
            firecrawl_bin=getenv_str("FIRECRAWL_BIN", "firecrawl") or "firecrawl",
            api_base=(getenv_str("FIRECRAWL_API_BASE", DEFAULT_API_BASE) or DEFAULT_API_BASE).rstrip("/"),
            api_key=getenv_str("FIRECRAWL_API_KEY"),
            fallback_command=_parse_command(raw.get("fallbackCommand")),
        )
        return settings


# -----------------------------
# Helpers
# -----------------------------
def config_hash(raw: Mapping[str, Any]) -> str:
    """sha256 over the compact JSON form of the raw config mapping."""
    blob = json.dumps(raw, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


def _format_number(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _parse_command(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError("'fallbackCommand' must be a list of strings.")
    return tuple(value)
