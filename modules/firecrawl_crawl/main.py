from __future__ import annotations

import os
from typing import Any

from .lib.config import DEFAULT_CONFIG_PATH, DEFAULT_RAW_ROOT, ConfigError, Settings
from .lib.engine import run_once as _run_engine
from .lib.engine import record_setup_failure
from .lib.logging_bridge import activity as log_activity
from .lib.logging_bridge import error as log_error
from .lib.mapper import run_map as _run_map
from .lib.utils import getenv_str, is_valid_slug


def run(**kwargs: Any) -> int:
    """
    Entry point for the crawl orchestrator.

    Accepts kwargs (from the CLI or the relaunch pipeline):
      url: str             # target site
      slug: str            # artifact directory name under raw_root
      config_path: str     # crawl config (JSON/YAML)
      raw_root: str        # default raw/firecrawl

    Returns the process exit code: 0 success, 1 failure, 2 listing policy violation.
    """
    try:
        settings = Settings.from_env_and_kwargs(kwargs)
    except ConfigError as e:
        log_error({"component": "firecrawl_crawl.main", "op": "settings", "error": str(e)})
        _record_setup_failure(kwargs, str(e))
        raise

    log_activity({
        "component": "firecrawl_crawl.main",
        "op": "start",
        "url": settings.url,
        "slug": settings.slug,
        "timeout": settings.run_config.timeout,
        "api_key_present": bool(settings.api_key),
    })
    return _run_engine(settings)


def run_map(**kwargs: Any) -> int:
    """Write raw/firecrawl/<slug>/map.json for `url`; same kwargs as run()."""
    settings = Settings.from_env_and_kwargs(kwargs)
    return _run_map(settings)


def _record_setup_failure(kwargs: dict[str, Any], error: str) -> None:
    # Only possible when the artifact directory can be derived at all.
    url = str(kwargs.get("url") or "").strip()
    slug = str(kwargs.get("slug") or "").strip()
    if not url or not is_valid_slug(slug):
        return
    raw_root = str(kwargs.get("raw_root") or getenv_str("FIRECRAWL_RAW_DIR") or DEFAULT_RAW_ROOT)
    config_path = os.path.abspath(str(kwargs.get("config_path") or getenv_str("FIRECRAWL_CONFIG") or DEFAULT_CONFIG_PATH))
    record_setup_failure(url, slug, raw_root, config_path, error)
