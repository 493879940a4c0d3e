"""
Relaunch pipeline: site map, crawl, and whitelist-scrape fallback hand-off.

  map -> crawl -> exit 2 on listing violations
               -> non-zero + meta.fallback == "scrape" -> fallback command
               -> other non-zero -> propagate
  mode "scrape" skips the crawl and runs the fallback command directly.

Each step runs as its own process so the crawl's signal handling and its
write-once meta record stay scoped to that step.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

from modules.firecrawl_crawl.lib.artifacts import ArtifactPaths, read_json, write_json
from modules.firecrawl_crawl.lib.config import Settings
from modules.firecrawl_crawl.lib.fallback import FALLBACK_MODE, wants_fallback
from modules.firecrawl_crawl.lib.logging_bridge import activity as log_activity
from modules.firecrawl_crawl.lib.utils import now_iso, truthy, with_npm_bin
from service.runner import StepFailed, run_step

LOG = logging.getLogger(__name__)

MODES = ("generate", "scrape")


def run(**kwargs: Any) -> int:
    """
    kwargs:
      url: str, slug: str            # required
      mode: "generate" | "scrape"    # default "generate"
      config_path: str               # crawl config
      check_status: bool = True      # run `firecrawl --status` first

    Returns the pipeline exit code (0, 1, 2, or a propagated crawl code).
    """
    mode = str(kwargs.get("mode") or "generate")
    if mode not in MODES:
        LOG.error("Unknown mode %r (expected one of %s)", mode, ", ".join(MODES))
        return 1

    settings = Settings.from_env_and_kwargs(kwargs)
    paths = ArtifactPaths(settings.output_dir)
    env = with_npm_bin()
    step_args = ["--url", settings.url, "--slug", settings.slug, "--config", settings.config_path]
    cli = [sys.executable, "-m", "service.cli", "--raw-root", settings.raw_root]

    log_activity({"component": "relaunch", "op": "start", "slug": settings.slug, "mode": mode})

    try:
        if truthy(kwargs.get("check_status", True)):
            run_step("Firecrawl status", [settings.firecrawl_bin, "--status"], env=env, heartbeat=False)
        run_step("Map website", [*cli, "map", *step_args], env=env)

        if mode == "scrape":
            if not settings.fallback_command:
                LOG.error("Scrape mode needs 'fallbackCommand' in %s", settings.config_path)
                return 1
            run_step("Scrape whitelist", fallback_command(settings), env=env)
            _update_meta(paths, settings, result="success")
        else:
            crawl = run_step("Crawl website", [*cli, "crawl", *step_args], env=env, allow_failure=True)
            if crawl.exit_code == 2:
                LOG.error("Listing policy violated. See details: %s", paths.violations)
                return 2
            if crawl.exit_code != 0:
                if not wants_fallback(_read_meta(paths)):
                    return crawl.exit_code
                if not settings.fallback_command:
                    LOG.error("Crawl needs the whitelist fallback but no 'fallbackCommand' is configured")
                    return crawl.exit_code
                run_step("Scrape whitelist fallback", fallback_command(settings), env=env)
                _update_meta(paths, settings, result="fallback")
    except StepFailed as e:
        return e.exit_code

    if not os.path.exists(paths.map):
        LOG.error("Expected map output missing: %s", paths.map)
        return 1

    if os.path.exists(paths.violations):
        LOG.error("Listing policy violated. See details: %s", paths.violations)
        return 2

    if os.path.exists(paths.crawl):
        LOG.info("Artifacts: %s and %s", paths.crawl, paths.meta)
    else:
        LOG.info("Artifacts: %s", os.path.join(paths.output_dir, "scrape"))
    log_activity({"component": "relaunch", "op": "done", "slug": settings.slug, "mode": mode})
    return 0


def fallback_command(settings: Settings) -> list[str]:
    """Expand {url}/{slug}/{config} placeholders in the configured fallback command."""
    values = {"url": settings.url, "slug": settings.slug, "config": settings.config_path}
    return [part.format(**values) for part in settings.fallback_command]


def _read_meta(paths: ArtifactPaths) -> dict[str, Any] | None:
    try:
        data = read_json(paths.meta)
    except (OSError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def _update_meta(paths: ArtifactPaths, settings: Settings, *, result: str) -> None:
    """Record the scrape-only hand-off in the crawl's meta record."""
    meta = _read_meta(paths) or {}
    meta.setdefault("slug", settings.slug)
    meta.setdefault("url", settings.url)
    meta["runMode"] = "scrape-only"
    meta["result"] = result
    if result == "fallback":
        meta["fallback"] = FALLBACK_MODE
    meta["updatedAt"] = now_iso()
    try:
        write_json(paths.meta, meta)
    except OSError as e:
        LOG.warning("Could not update %s: %s", paths.meta, e)
