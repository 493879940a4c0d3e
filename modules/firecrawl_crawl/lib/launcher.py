"""
Launch one crawl subprocess and guarantee that it resolves.

The child's stdout/stderr are streamed through to the caller's streams while
the tail of the combined output is scanned for the remote job id.

Timeout escalation (when a timeout is configured):

    RUNNING --(timeout + grace)--> SIGNALED_GRACEFUL   (SIGTERM to the group)
            --(kill_after)-------> SIGNALED_FORCEFUL   (SIGKILL to the group)
            --(force_resolve)----> FORCE_RESOLVED      (synthetic exit 137)

A natural exit moves to EXITED from any non-terminal state; an exit after the
SIGTERM still sends SIGKILL to the rest of the group. Exactly one
resolution is accepted; later events are ignored.
"""

from __future__ import annotations

import codecs
import logging
import re
import signal
import subprocess
import sys
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import IO, Any

from . import logging_bridge
from .models import LaunchResult
from .process_group import ProcessGroupScope, kill_process_group

LOG = logging.getLogger(__name__)

JOB_ID_RE = re.compile(r"Job ID:\s*([a-f0-9-]+)", re.IGNORECASE)
TAIL_CHARS = 4000
FORCED_EXIT_CODE = 137

_READ_SIZE = 4096
_READER_JOIN_SEC = 1.0
_POLL_SEC = 0.25


class LaunchState(Enum):
    RUNNING = "running"
    SIGNALED_GRACEFUL = "signaled_graceful"
    SIGNALED_FORCEFUL = "signaled_forceful"
    FORCE_RESOLVED = "force_resolved"
    EXITED = "exited"


@dataclass(frozen=True)
class TimeoutPolicy:
    """Escalation intervals in seconds."""

    grace_sec: float = 5.0
    kill_after_sec: float = 5.0
    force_resolve_after_sec: float = 2.0

    def budget(self, timeout: float) -> float:
        """Upper bound on how long a launch with `timeout` can take to resolve."""
        return timeout + self.grace_sec + self.kill_after_sec + self.force_resolve_after_sec


def extract_job_id(text: str | None) -> str | None:
    if not text:
        return None
    m = JOB_ID_RE.search(text)
    return m.group(1) if m else None


class OutputTail:
    """
    Rolling window over the combined child output.

    Each chunk is scanned together with the retained tail *before* trimming,
    so an id inside one oversized chunk is still seen. A match touching the
    end of the text may be a partial id; it is only accepted by finalize().
    """

    def __init__(self, limit: int = TAIL_CHARS):
        self.limit = limit
        self.text = ""
        self.job_id: str | None = None
        self._lock = threading.Lock()

    def feed(self, chunk: str) -> None:
        with self._lock:
            combined = self.text + chunk
            if self.job_id is None:
                for m in JOB_ID_RE.finditer(combined):
                    if m.end() < len(combined):
                        self.job_id = m.group(1)
                        break
            self.text = combined[-self.limit :]

    def finalize(self) -> str | None:
        with self._lock:
            if self.job_id is None:
                self.job_id = extract_job_id(self.text)
            return self.job_id


class _GuardedRun:
    """State machine for one running child; see module docstring."""

    def __init__(
        self,
        proc: subprocess.Popen,
        tail: OutputTail,
        policy: TimeoutPolicy,
        readers: list[threading.Thread],
    ):
        self.proc = proc
        self.tail = tail
        self.policy = policy
        self.readers = readers
        self.state = LaunchState.RUNNING
        self.timed_out = False
        self._result: LaunchResult | None = None
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._timers: list[threading.Timer] = []

    # ---- resolution guard ----
    def resolve(self, result: LaunchResult, state: LaunchState) -> bool:
        with self._lock:
            if self._result is not None:
                return False
            self._result = result
            self.state = state
        self.cancel_timers()
        self._done.set()
        return True

    @property
    def resolved(self) -> bool:
        return self._result is not None

    def wait(self) -> LaunchResult:
        # Short waits keep the main thread responsive to signal handlers.
        while not self._done.wait(_POLL_SEC):
            pass
        assert self._result is not None
        return self._result

    # ---- timers ----
    def _arm(self, delay: float, fn: Callable[[], None]) -> None:
        t = threading.Timer(delay, fn)
        t.daemon = True
        with self._lock:
            if self._result is not None:
                return
            self._timers.append(t)
        t.start()

    def cancel_timers(self) -> None:
        with self._lock:
            timers, self._timers = self._timers, []
        for t in timers:
            t.cancel()

    def start_timeout(self, timeout: float) -> None:
        self._arm(timeout + self.policy.grace_sec, self._on_timeout)

    def _on_timeout(self) -> None:
        with self._lock:
            if self._result is not None:
                return
            self.timed_out = True
            self.state = LaunchState.SIGNALED_GRACEFUL
        LOG.warning("Crawl exceeded its timeout; sending SIGTERM to pid %s", self.proc.pid)
        kill_process_group(self.proc, signal.SIGTERM)
        self._arm(self.policy.kill_after_sec, self._on_kill)

    def _on_kill(self) -> None:
        with self._lock:
            if self._result is not None:
                return
            self.state = LaunchState.SIGNALED_FORCEFUL
        LOG.warning("Crawl ignored SIGTERM; sending SIGKILL to pid %s", self.proc.pid)
        kill_process_group(self.proc, signal.SIGKILL)
        self._arm(self.policy.force_resolve_after_sec, self._on_force_resolve)

    def _on_force_resolve(self) -> None:
        result = LaunchResult(
            exit_code=FORCED_EXIT_CODE,
            signal="SIGKILL",
            timed_out=True,
            job_id=self.tail.finalize(),
            forced=True,
        )
        if self.resolve(result, LaunchState.FORCE_RESOLVED):
            LOG.error("Crawl pid %s did not report termination after SIGKILL; force-resolved", self.proc.pid)

    # ---- natural exit ----
    def watch_exit(self) -> None:
        try:
            returncode = self.proc.wait()
        except Exception as e:
            self.resolve(
                LaunchResult(exit_code=1, timed_out=self.timed_out, job_id=self.tail.finalize(), error=repr(e)),
                LaunchState.EXITED,
            )
            return
        if self.timed_out:
            # Leader gave in to SIGTERM; descendants that ignored it go now.
            kill_process_group(self.proc, signal.SIGKILL)
        for r in self.readers:
            r.join(_READER_JOIN_SEC)
        if returncode < 0:
            result = LaunchResult(
                exit_code=1,
                signal=signal.Signals(-returncode).name,
                timed_out=self.timed_out,
                job_id=self.tail.finalize(),
            )
        else:
            result = LaunchResult(exit_code=returncode, timed_out=self.timed_out, job_id=self.tail.finalize())
        self.resolve(result, LaunchState.EXITED)


def _pump(stream: IO[bytes] | None, sink: IO[str], tail: OutputTail) -> None:
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def _emit(text: str) -> None:
        if not text:
            return
        try:
            sink.write(text)
            sink.flush()
        except (ValueError, OSError):
            # Closed sink; keep draining so the child never blocks on a full pipe.
            pass
        tail.feed(text)

    read = getattr(stream, "read1", stream.read)
    try:
        for chunk in iter(lambda: read(_READ_SIZE), b""):
            _emit(decoder.decode(chunk))
    except (ValueError, OSError):
        LOG.debug("Output stream closed while reading", exc_info=True)
    _emit(decoder.decode(b"", final=True))


def launch(
    command: Sequence[str],
    *,
    timeout: float | None = None,
    env: Mapping[str, str] | None = None,
    policy: TimeoutPolicy | None = None,
    scope: ProcessGroupScope | None = None,
    stdout: IO[str] | None = None,
    stderr: IO[str] | None = None,
    popen: Callable[..., Any] = subprocess.Popen,
) -> LaunchResult:
    """
    Run `command` to completion (or forced resolution) and return its LaunchResult.

    `timeout` is in seconds; None or <= 0 waits indefinitely for a natural exit.
    Never raises for launch failures; they resolve with exit_code 1 and `error`.
    """
    policy = policy or TimeoutPolicy()
    out_sink = stdout if stdout is not None else sys.stdout
    err_sink = stderr if stderr is not None else sys.stderr

    try:
        proc = popen(
            list(command),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=dict(env) if env is not None else None,
            start_new_session=True,
        )
    except OSError as e:
        LOG.error("Failed to start %s: %s", command[0] if command else "<empty>", e)
        logging_bridge.error({
            "component": "firecrawl_crawl.launcher",
            "op": "spawn",
            "command": list(command),
            "error": repr(e),
        })
        return LaunchResult(exit_code=1, error=str(e))

    if scope is not None:
        scope.track(proc)

    tail = OutputTail()
    readers = [
        threading.Thread(target=_pump, args=(proc.stdout, out_sink, tail), name="crawl-stdout", daemon=True),
        threading.Thread(target=_pump, args=(proc.stderr, err_sink, tail), name="crawl-stderr", daemon=True),
    ]
    run = _GuardedRun(proc, tail, policy, readers)
    for r in readers:
        r.start()
    threading.Thread(target=run.watch_exit, name="crawl-exit", daemon=True).start()

    if timeout is not None and timeout > 0:
        run.start_timeout(float(timeout))

    try:
        result = run.wait()
    finally:
        run.cancel_timers()
        if scope is not None and proc.returncode is not None:
            scope.untrack(proc)

    logging_bridge.activity({
        "component": "firecrawl_crawl.launcher",
        "op": "resolved",
        "pid": proc.pid,
        "state": run.state.value,
        "exit_code": result.exit_code,
        "signal": result.signal,
        "timed_out": result.timed_out,
        "forced": result.forced,
        "job_id": result.job_id,
    })
    return result
