# service/runner.py
from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from service import logging_utils

# -----------------------------------------------------------------------------
# Config / Environment
# -----------------------------------------------------------------------------
HEARTBEAT_SEC = float(os.getenv("STEP_HEARTBEAT_SEC", "30"))

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
log = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def now_iso() -> str:
    return datetime.now(timezone.utc).astimezone().isoformat(timespec="seconds")


def _emit_activity(record: dict[str, Any]) -> None:
    """Write a structured step record; a logging failure never fails the step."""
    try:
        logging_utils.write_activity_log(record)
    except Exception as e:
        log.warning("write_activity_log failed: %s", e)


class StepFailed(RuntimeError):
    """A pipeline step exited non-zero and was not allowed to fail."""

    def __init__(self, label: str, exit_code: int):
        self.label = label
        self.exit_code = exit_code
        super().__init__(f"Step failed: {label} (code {exit_code})")


@dataclass
class StepResult:
    label: str
    exit_code: int
    duration_ms: int
    run_id: str


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------
def run_step(
    label: str,
    command: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    allow_failure: bool = False,
    heartbeat: bool = True,
    heartbeat_sec: float | None = None,
) -> StepResult:
    """
    Run one pipeline step as a subprocess with inherited stdio.

    Logs start/end lines and, while the step runs, a "still running" line every
    `heartbeat_sec` seconds.

    Raises:
        StepFailed if the step exits non-zero and allow_failure is False.
    """
    run_id = uuid.uuid4().hex
    interval = heartbeat_sec if heartbeat_sec is not None else HEARTBEAT_SEC
    log.info("[%s] Start: %s", now_iso(), label)

    t0 = time.monotonic()
    stop = threading.Event()

    def _beat() -> None:
        while not stop.wait(interval):
            log.info("[%s] Still running: %s", now_iso(), label)

    beat_thread: threading.Thread | None = None
    if heartbeat and interval > 0:
        beat_thread = threading.Thread(target=_beat, name=f"heartbeat-{label}", daemon=True)
        beat_thread.start()

    error: str | None = None
    try:
        completed = subprocess.run(list(command), env=dict(env) if env is not None else None, check=False)
        exit_code = completed.returncode if completed.returncode >= 0 else 128 - completed.returncode
    except OSError as e:
        error = repr(e)
        exit_code = 1
    finally:
        stop.set()
        if beat_thread is not None:
            beat_thread.join(timeout=1.0)

    duration_ms = int((time.monotonic() - t0) * 1000)
    log.info("[%s] End: %s (code %s)", now_iso(), label, exit_code)

    _emit_activity({
        "ts": now_iso(),
        "event": "pipeline_step",
        "run_id": run_id,
        "label": label,
        "command": list(command),
        "exit_code": exit_code,
        "allow_failure": allow_failure,
        "duration_ms": duration_ms,
        "error": error,
    })

    if exit_code != 0 and not allow_failure:
        log.error("Step failed: %s", label)
        raise StepFailed(label, exit_code)

    return StepResult(label=label, exit_code=exit_code, duration_ms=duration_ms, run_id=run_id)
