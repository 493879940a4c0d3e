"""
Orchestrator for one crawl invocation.

Flow:
  - Launch attempts through the retry controller (at most two)
  - On success, parse crawl.json and run the listing policy scan
  - Classify the run (success | fallback | failed | violations)
  - Write meta.json exactly once, last, on every path (including interrupts)

Exit codes: 0 success, 1 generic failure, 2 policy violation (exclusive),
otherwise the last attempt's exit code.
"""

from __future__ import annotations

import contextlib
import logging
import os
import time
from collections.abc import Callable
from typing import Any

from . import logging_bridge, policy
from .api_client import FirecrawlApi
from .artifacts import ArtifactPaths, MetaWriter, read_json, write_violations
from .config import RunConfig, Settings
from .fallback import apply_fallback
from .fetcher import StatusFetcher
from .launcher import TimeoutPolicy, launch
from .models import LaunchResult, Result, RunMeta
from .process_group import ProcessGroupScope, RunInterrupted
from .retry import RetryController
from .utils import now_iso, with_npm_bin

LOG = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_VIOLATIONS = 2

LaunchFn = Callable[..., LaunchResult]


def build_crawl_command(settings: Settings, paths: ArtifactPaths, cfg: RunConfig) -> list[str]:
    return [
        settings.firecrawl_bin,
        "crawl",
        settings.url,
        "--wait",
        "--progress",
        "--pretty",
        "-o",
        paths.crawl,
        *cfg.crawl_flags(),
    ]


def failure_exit_code(code: int | None) -> int:
    """Exit code for a crawl that did not succeed; 2 stays reserved for violations."""
    if code is None or code in (EXIT_SUCCESS, EXIT_VIOLATIONS):
        return EXIT_FAILURE
    return code


def run_once(
    settings: Settings,
    *,
    launcher: LaunchFn = launch,
    api: FirecrawlApi | None = None,
    timeout_policy: TimeoutPolicy | None = None,
) -> int:
    """
    Run the full crawl orchestration for `settings` and return the process exit code.

    Raises RunInterrupted / KeyboardInterrupt after the meta record has been
    written, so the caller can exit with the interrupt's code.
    """
    paths = ArtifactPaths(settings.output_dir)
    paths.ensure_dir()
    _clear_stale_outputs(paths)
    writer = MetaWriter(paths)

    cfg = settings.run_config
    t0 = time.monotonic()
    meta = RunMeta(
        url=settings.url,
        slug=settings.slug,
        started_at=now_iso(),
        config_path=settings.config_path,
        config_hash=settings.config_hash,
        timeout_seconds=cfg.timeout,
        poll_interval=cfg.poll_interval,
    )
    owns_api = api is None
    api = api or FirecrawlApi(settings.api_key, settings.api_base)

    logging_bridge.activity({
        "component": "firecrawl_crawl.engine",
        "op": "start",
        "url": settings.url,
        "slug": settings.slug,
        "config_path": settings.config_path,
        "config_hash": settings.config_hash,
    })

    exit_code = EXIT_FAILURE
    try:
        with ProcessGroupScope() as scope:
            exit_code = _orchestrate(settings, paths, meta, scope, launcher, api, timeout_policy)
    except RunInterrupted as e:
        meta.result = Result.FAILED
        meta.interrupted = e.signal_name
        meta.error = str(e)
        raise
    except KeyboardInterrupt:
        meta.result = Result.FAILED
        meta.interrupted = "SIGINT"
        meta.error = "interrupted"
        raise
    except Exception as e:
        LOG.exception("Crawl orchestration failed: %s", e)
        logging_bridge.error({
            "component": "firecrawl_crawl.engine",
            "op": "orchestrate",
            "slug": settings.slug,
            "error": repr(e),
        })
        meta.result = Result.FAILED
        meta.error = str(e) or repr(e)
        exit_code = EXIT_FAILURE
    finally:
        if owns_api:
            api.close()
        meta.finished_at = now_iso()
        meta.duration_ms = int((time.monotonic() - t0) * 1000)
        writer.write(meta)

    logging_bridge.activity({
        "component": "firecrawl_crawl.engine",
        "op": "summary",
        "slug": settings.slug,
        "result": meta.result.value,
        "fallback": meta.fallback,
        "fallback_reason": meta.fallback_reason.value if meta.fallback_reason else None,
        "attempts": len(meta.attempts),
        "job_ids": meta.job_ids,
        "violations": len(meta.violations),
        "exit_code": exit_code,
        "duration_ms": meta.duration_ms,
    })
    return exit_code


def _orchestrate(
    settings: Settings,
    paths: ArtifactPaths,
    meta: RunMeta,
    scope: ProcessGroupScope,
    launcher: LaunchFn,
    api: FirecrawlApi,
    timeout_policy: TimeoutPolicy | None,
) -> int:
    env = with_npm_bin()

    def _run_attempt(cfg: RunConfig) -> LaunchResult:
        command = build_crawl_command(settings, paths, cfg)
        LOG.info("Launching: %s", " ".join(command))
        return launcher(command, timeout=cfg.timeout, env=env, policy=timeout_policy, scope=scope)

    controller = RetryController(settings.run_config, _run_attempt, StatusFetcher(api, paths), api)
    outcome = controller.run()
    meta.attempts = outcome.attempts
    meta.job_ids = outcome.job_ids

    if not outcome.success:
        meta.result = Result.FALLBACK
        apply_fallback(meta, outcome.fallback_needed, outcome.fallback_reason)
        LOG.warning(
            "Crawl did not complete (%s); handing off to whitelist scrape",
            meta.fallback_reason.value if meta.fallback_reason else "failed",
        )
        return failure_exit_code(outcome.last_exit_code)

    if not os.path.exists(paths.crawl):
        meta.result = Result.FAILED
        meta.error = f"crawl output missing: {paths.crawl}"
        LOG.error("Crawl reported success but %s does not exist", paths.crawl)
        return EXIT_FAILURE

    try:
        parsed: Any = read_json(paths.crawl)
    except (OSError, ValueError) as e:
        meta.result = Result.FAILED
        meta.error = str(e)
        LOG.error("Could not read/parse %s: %s", paths.crawl, e)
        return EXIT_FAILURE

    violations = policy.scan(parsed, settings.run_config.forbidden_segments())
    if violations:
        meta.result = Result.VIOLATIONS
        meta.violations = violations
        path = write_violations(paths, violations)
        LOG.error("Listing policy violated (%d findings). Details: %s", len(violations), path)
        return EXIT_VIOLATIONS

    meta.result = Result.SUCCESS
    return EXIT_SUCCESS


def record_setup_failure(url: str, slug: str, raw_root: str, config_path: str | None, error: str) -> str:
    """Write a failed meta.json for a run that never got as far as launching."""
    paths = ArtifactPaths(os.path.join(raw_root, slug))
    paths.ensure_dir()
    now = now_iso()
    meta = RunMeta(url=url, slug=slug, started_at=now, config_path=config_path, finished_at=now, duration_ms=0)
    meta.result = Result.FAILED
    meta.error = error
    return MetaWriter(paths).write(meta)


def _clear_stale_outputs(paths: ArtifactPaths) -> None:
    # Outputs of a previous run for this slug must not be mistaken for this run's.
    for stale in (paths.crawl, paths.violations):
        with contextlib.suppress(FileNotFoundError):
            os.remove(stale)
