from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Result(str, Enum):
    """Terminal classification of one orchestrator invocation."""

    SUCCESS = "success"
    FALLBACK = "fallback"
    FAILED = "failed"
    VIOLATIONS = "violations"


class FallbackReason(str, Enum):
    STALLED = "stalled"
    FAILED = "failed"


@dataclass(frozen=True)
class LaunchResult:
    """How one crawl subprocess ended (or was given up on)."""

    exit_code: int
    signal: str | None = None
    timed_out: bool = False
    job_id: str | None = None
    forced: bool = False
    error: str | None = None


@dataclass(frozen=True)
class ApiResponse:
    """One remote API call. Transport problems and missing credentials are ok=False, never raised."""

    ok: bool
    status: int
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "status": self.status, "data": self.data}


@dataclass(frozen=True)
class RemoteJobStatus:
    """Snapshot of the remote crawl job as reported by the status endpoint."""

    status: str | None = None
    completed: int | None = None
    total: int | None = None

    @classmethod
    def from_response(cls, response: ApiResponse | None) -> RemoteJobStatus:
        data = response.data if response is not None else None
        if not isinstance(data, dict):
            return cls()
        nested = data.get("data") if isinstance(data.get("data"), dict) else {}
        status = data.get("status") or nested.get("status")
        return cls(
            status=status if isinstance(status, str) else None,
            completed=data.get("completed"),
            total=data.get("total"),
        )


@dataclass
class Attempt:
    """
    One crawl subprocess execution. Timing and exit fields are filled in by
    finish(); remote fields only after a failed run triggered a status fetch.
    """

    index: int
    started_at: str
    overrides: dict[str, Any] | None = None
    finished_at: str | None = None
    duration_ms: int | None = None
    exit_code: int | None = None
    signal: str | None = None
    timed_out: bool = False
    forced: bool = False
    job_id: str | None = None
    error: str | None = None
    status: str | None = None
    completed: int | None = None
    total: int | None = None
    errors_count: int | None = None
    cancelled: bool | None = None

    def finish(self, result: LaunchResult, finished_at: str, duration_ms: int) -> None:
        self.finished_at = finished_at
        self.duration_ms = duration_ms
        self.exit_code = result.exit_code
        self.signal = result.signal
        self.timed_out = result.timed_out
        self.forced = result.forced
        self.job_id = result.job_id
        self.error = result.error

    def record_remote(self, snapshot: RemoteJobStatus, errors_count: int | None) -> None:
        self.status = snapshot.status
        self.completed = snapshot.completed
        self.total = snapshot.total
        self.errors_count = errors_count

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "index": self.index,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "durationMs": self.duration_ms,
            "exitCode": self.exit_code,
            "signal": self.signal,
            "timedOut": self.timed_out,
            "jobId": self.job_id,
            "overrides": _camel_keys(self.overrides) if self.overrides else None,
        }
        if self.forced:
            out["forced"] = True
        if self.error:
            out["error"] = self.error
        if self.status is not None or self.errors_count is not None or self.cancelled is not None:
            out["status"] = self.status
            out["completed"] = self.completed
            out["total"] = self.total
            out["errorsCount"] = self.errors_count
        if self.cancelled is not None:
            out["cancelled"] = self.cancelled
        return out


@dataclass(frozen=True)
class Violation:
    url: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"url": self.url, "reason": self.reason}


@dataclass
class RunMeta:
    """The single persisted summary of one orchestrator invocation."""

    url: str
    slug: str
    started_at: str
    config_path: str | None = None
    config_hash: str | None = None
    timeout_seconds: float | None = None
    poll_interval: float | None = None
    run_mode: str = "crawl"
    finished_at: str | None = None
    duration_ms: int | None = None
    job_ids: list[str] = field(default_factory=list)
    attempts: list[Attempt] = field(default_factory=list)
    result: Result = Result.FAILED
    fallback: str | None = None
    fallback_reason: FallbackReason | None = None
    artifacts: dict[str, str | None] = field(default_factory=dict)
    violations: list[Violation] = field(default_factory=list)
    error: str | None = None
    interrupted: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "url": self.url,
            "slug": self.slug,
            "runMode": self.run_mode,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "durationMs": self.duration_ms,
            "configPath": self.config_path,
            "configHash": self.config_hash,
            "timeoutSeconds": self.timeout_seconds,
            "pollInterval": self.poll_interval,
            "jobIds": list(self.job_ids),
            "attempts": [a.to_dict() for a in self.attempts],
            "result": self.result.value,
            "fallback": self.fallback,
            "fallbackReason": self.fallback_reason.value if self.fallback_reason else None,
            "artifacts": dict(self.artifacts),
        }
        if self.violations:
            out["violations"] = [v.to_dict() for v in self.violations]
        if self.error:
            out["error"] = self.error
        if self.interrupted:
            out["interrupted"] = self.interrupted
        return out


def _camel_keys(d: dict[str, Any]) -> dict[str, Any]:
    def camel(k: str) -> str:
        head, *rest = k.split("_")
        return head + "".join(p.capitalize() for p in rest)

    return {camel(k): v for k, v in d.items()}
