"""
Process-group lifetime scope for the orchestrator.

Every crawl subprocess runs as the leader of its own process group, so one
killpg() reaches the child and everything it spawned. The scope remembers each
group it has seen, installs SIGINT/SIGTERM handlers for its duration, and kills
all remembered groups on interrupt and again on scope exit. A group stays
registered after its leader exits: workers the leader left behind still carry
its pgid. Cleanup is idempotent.
"""

from __future__ import annotations

import contextlib
import logging
import os
import signal
import subprocess
import threading
from types import FrameType
from typing import Any

from . import logging_bridge

LOG = logging.getLogger(__name__)

_CONFIRM_WAIT_SEC = 2.0


class RunInterrupted(KeyboardInterrupt):
    """Raised in the main thread after an interrupt signal has cleaned up all children."""

    def __init__(self, signum: int):
        self.signum = signum
        self.signal_name = signal.Signals(signum).name
        self.exit_code = 128 + signum
        super().__init__(f"interrupted by {self.signal_name}")


class ProcessGroupScope:
    """
    Context manager owning the lifecycle of crawl subprocesses.

        with ProcessGroupScope() as scope:
            launch(cmd, scope=scope)

    Handlers are only installed from the main thread; elsewhere the scope still
    tracks children and kills them on exit.
    """

    def __init__(self, signals: tuple[int, ...] = (signal.SIGINT, signal.SIGTERM)):
        self._signals = signals
        self._previous: dict[int, Any] = {}
        self._children: set[subprocess.Popen] = set()
        self._groups: set[int] = set()
        # Re-entrant: a signal handler may run while the main thread is inside cleanup().
        self._lock = threading.RLock()
        self.cleanups = 0

    # ---- context manager ----
    def __enter__(self) -> ProcessGroupScope:
        if threading.current_thread() is threading.main_thread():
            for sig in self._signals:
                self._previous[sig] = signal.signal(sig, self._handle_signal)
        else:
            LOG.debug("ProcessGroupScope entered off the main thread; signal handlers not installed")
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            self.cleanup()
        finally:
            for sig, handler in self._previous.items():
                signal.signal(sig, handler)
            self._previous.clear()
        return False

    # ---- tracking ----
    def track(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._children.add(proc)
            self._groups.add(proc.pid)

    def untrack(self, proc: subprocess.Popen) -> None:
        """Forget the leader once it has been reaped; its group stays registered until cleanup()."""
        with self._lock:
            self._children.discard(proc)

    @property
    def live_children(self) -> list[subprocess.Popen]:
        with self._lock:
            return [p for p in self._children if p.returncode is None]

    @property
    def groups(self) -> list[int]:
        with self._lock:
            return sorted(self._groups)

    # ---- cleanup ----
    def cleanup(self) -> int:
        """
        SIGKILL every registered process group, whether or not its leader is
        still running, then wait briefly for unreaped leaders to be confirmed dead.
        Returns the number of groups that still had members; safe to call any
        number of times.
        """
        with self._lock:
            children = list(self._children)
            groups = sorted(self._groups)
            self._children.clear()
            self._groups.clear()
            self.cleanups += 1

        killed = sum(1 for pgid in groups if kill_group(pgid, signal.SIGKILL))
        for proc in children:
            if proc.returncode is None:
                with contextlib.suppress(subprocess.TimeoutExpired, OSError):
                    proc.wait(timeout=_CONFIRM_WAIT_SEC)

        if killed:
            logging_bridge.activity({
                "component": "firecrawl_crawl.process_group",
                "op": "cleanup",
                "killed_groups": killed,
            })
        return killed

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        LOG.warning("Signal %s received; killing crawl process groups", signal.Signals(signum).name)
        self.cleanup()
        raise RunInterrupted(signum)


def kill_group(pgid: int, sig: int) -> bool:
    """Signal process group `pgid`. False when the group is already empty or cannot be signalled."""
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        return False
    except OSError as e:
        LOG.warning("killpg(%s, %s) failed: %s", pgid, signal.Signals(sig).name, e)
        return False
    return True


def kill_process_group(proc: subprocess.Popen, sig: int) -> None:
    """Signal the child's whole process group; fall back to the child alone."""
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        return
    except OSError:
        with contextlib.suppress(OSError):
            proc.send_signal(sig)
