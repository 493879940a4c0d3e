"""
Two-slot retry controller for crawl attempts.

  attempt 1: RunConfig as given
    success -> done
    stalled (local timeout, or remote status scraping/queued)
            -> cancel remote job (best effort) -> attempt 2 with tightened params
    failed  -> fallback (reason "failed"), no retry
  attempt 2: any failure -> fallback (reason of attempt 2's classification)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from . import logging_bridge
from .api_client import FirecrawlApi
from .config import RunConfig
from .fetcher import StatusFetcher
from .models import Attempt, FallbackReason, LaunchResult, RemoteJobStatus
from .utils import now_iso

LOG = logging.getLogger(__name__)

MAX_ATTEMPTS = 2
STALLED_STATUSES = frozenset({"scraping", "queued"})


class AttemptClass(Enum):
    SUCCESS = "success"
    STALLED = "stalled"
    FAILED = "failed"


def classify(result: LaunchResult, snapshot: RemoteJobStatus | None = None) -> AttemptClass:
    if result.exit_code == 0:
        return AttemptClass.SUCCESS
    if result.timed_out:
        return AttemptClass.STALLED
    if snapshot is not None and snapshot.status in STALLED_STATUSES:
        return AttemptClass.STALLED
    return AttemptClass.FAILED


@dataclass
class CrawlOutcome:
    attempts: list[Attempt] = field(default_factory=list)
    job_ids: list[str] = field(default_factory=list)
    success: bool = False
    fallback_needed: bool = False
    fallback_reason: FallbackReason | None = None
    last_exit_code: int = 1


class RetryController:
    """
    Sequences at most two attempts. `run_attempt` launches one crawl with the
    given RunConfig and blocks until it has resolved.
    """

    def __init__(
        self,
        run_config: RunConfig,
        run_attempt: Callable[[RunConfig], LaunchResult],
        fetcher: StatusFetcher,
        api: FirecrawlApi,
    ):
        self.run_config = run_config
        self.run_attempt = run_attempt
        self.fetcher = fetcher
        self.api = api

    def run(self) -> CrawlOutcome:
        outcome = CrawlOutcome()

        for index in range(1, MAX_ATTEMPTS + 1):
            overrides = self.run_config.retry_overrides() if index > 1 else {}
            cfg = self.run_config.derive(**overrides) if overrides else self.run_config

            attempt = Attempt(index=index, started_at=now_iso(), overrides=overrides or None)
            t0 = time.monotonic()
            result = self.run_attempt(cfg)
            attempt.finish(result, now_iso(), int((time.monotonic() - t0) * 1000))
            outcome.attempts.append(attempt)
            if result.job_id:
                outcome.job_ids.append(result.job_id)

            if result.exit_code == 0:
                outcome.success = True
                outcome.last_exit_code = 0
                break

            outcome.last_exit_code = result.exit_code

            report = self.fetcher.fetch(result.job_id)
            snapshot = report.snapshot
            attempt.record_remote(snapshot, report.errors_count)

            verdict = classify(result, snapshot)
            outcome.fallback_reason = FallbackReason.STALLED if verdict is AttemptClass.STALLED else FallbackReason.FAILED

            logging_bridge.activity({
                "component": "firecrawl_crawl.retry",
                "op": "attempt_failed",
                "attempt": index,
                "exit_code": result.exit_code,
                "timed_out": result.timed_out,
                "job_id": result.job_id,
                "remote_status": snapshot.status,
                "verdict": verdict.value,
            })

            if verdict is AttemptClass.STALLED and result.job_id:
                attempt.cancelled = self._cancel(result.job_id)

            if index < MAX_ATTEMPTS and verdict is AttemptClass.STALLED:
                LOG.info("Attempt %d stalled; retrying with %s", index, self.run_config.retry_overrides())
                continue

            outcome.fallback_needed = True
            break

        if not outcome.success:
            outcome.fallback_needed = True
            if outcome.fallback_reason is None:
                outcome.fallback_reason = FallbackReason.FAILED
        return outcome

    def _cancel(self, job_id: str) -> bool:
        """Best effort; a failed cancel is recorded and the flow continues."""
        try:
            return self.api.cancel(job_id).ok
        except Exception as e:
            logging_bridge.error({
                "component": "firecrawl_crawl.retry",
                "op": "cancel",
                "job_id": job_id,
                "error": repr(e),
            })
            return False
