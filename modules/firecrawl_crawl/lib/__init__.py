# modules/firecrawl_crawl/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .config import ConfigError, RunConfig, Settings
from .engine import run_once
from .launcher import LaunchState, TimeoutPolicy, launch
from .models import Attempt, LaunchResult, RemoteJobStatus, Result, RunMeta, Violation
from .process_group import ProcessGroupScope, RunInterrupted

__all__ = [
    "Attempt",
    "ConfigError",
    "LaunchResult",
    "LaunchState",
    "ProcessGroupScope",
    "RemoteJobStatus",
    "Result",
    "RunConfig",
    "RunInterrupted",
    "RunMeta",
    "Settings",
    "TimeoutPolicy",
    "Violation",
    "launch",
    "run_once",
]
