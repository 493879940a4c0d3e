# tests/conftest.py
import json
import os
import pathlib
import sys
import tempfile
import types

import pytest
from freezegun import freeze_time

from modules.firecrawl_crawl.lib import config as fc_config
from modules.firecrawl_crawl.lib.models import ApiResponse, LaunchResult

SAFE_PAGES = [
    {
        "url": "https://makler.example/",
        "markdown": "# Willkommen\nIhr Immobilienmakler in der Region. Wir beraten persönlich.",
        "metadata": {"sourceURL": "https://makler.example/", "description": "Startseite"},
    },
    {
        "url": "https://makler.example/team",
        "markdown": "## Unser Team\nSeit 1998 für Sie da.",
        "metadata": {"sourceURL": "https://makler.example/team"},
    },
]


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls or a real firecrawl CLI).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that perform live network calls or hit external services (skipped by default).",
    )
    config.addinivalue_line(
        "markers",
        "posix: needs process groups and POSIX signals.",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    skip_posix = pytest.mark.skip(reason="needs POSIX process groups")
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "posix" in item.keywords and sys.platform == "win32":
            item.add_marker(skip_posix)
        if "live" in item.keywords and not run_live:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    tmp_logs = tempfile.mkdtemp(prefix="fc-pytest-logs-")
    monkeypatch.setenv("LOG_DIR", tmp_logs)
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")

    # Never pick up a developer's real key/config/artifact root
    for name in ("FIRECRAWL_API_KEY", "FIRECRAWL_CONFIG", "FIRECRAWL_RAW_DIR", "FIRECRAWL_BIN", "FIRECRAWL_API_BASE"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


@pytest.fixture
def read_log():
    """read_log("activity-test") -> every JSONL record written under LOG_DIR with that prefix."""

    def _read(prefix: str) -> list[dict]:
        out = []
        for p in sorted(pathlib.Path(os.environ["LOG_DIR"]).glob(f"{prefix}-*.jsonl")):
            out += [json.loads(line) for line in p.read_text(encoding="utf-8").splitlines() if line.strip()]
        return out

    return _read


# ---------------------------------------------------------------------
# Crawl settings
# ---------------------------------------------------------------------
@pytest.fixture
def crawl_config(tmp_path: pathlib.Path) -> pathlib.Path:
    cfg = {
        "limit": 20,
        "maxDepth": 3,
        "delayMs": 250,
        "maxConcurrency": 4,
        "pollInterval": 5,
        "timeout": 60,
        "sitemap": "include",
        "includePaths": ["/", "/team"],
    }
    p = tmp_path / "firecrawl.makler.json"
    p.write_text(json.dumps(cfg), encoding="utf-8")
    return p


@pytest.fixture
def settings(crawl_config, tmp_path, monkeypatch):
    """A brand-new Settings per test, writing artifacts below tmp_path/raw."""
    monkeypatch.setenv("FIRECRAWL_API_KEY", "fc-test-key")
    return fc_config.Settings.from_env_and_kwargs({
        "url": "https://makler.example",
        "slug": "makler-example",
        "config_path": str(crawl_config),
        "raw_root": str(tmp_path / "raw"),
    })


# ---------------------------------------------------------------------
# Fakes for the remote API and the crawl subprocess
# ---------------------------------------------------------------------
class FakeApi:
    """Records calls; status/cancel behaviour configurable per test."""

    def __init__(self, status="failed", cancel_ok=True, cancel_raises=None):
        self.status = status
        self.cancel_ok = cancel_ok
        self.cancel_raises = cancel_raises
        self.calls = []
        self.closed = False

    def get_status(self, job_id):
        self.calls.append(("status", job_id))
        return ApiResponse(ok=True, status=200, data={"status": self.status, "completed": 3, "total": 20})

    def get_errors(self, job_id):
        self.calls.append(("errors", job_id))
        return ApiResponse(ok=True, status=200, data={"errors": [{"url": "https://makler.example/x"}], "robotsBlocked": []})

    def cancel(self, job_id):
        self.calls.append(("cancel", job_id))
        if self.cancel_raises is not None:
            raise self.cancel_raises
        return ApiResponse(ok=self.cancel_ok, status=200 if self.cancel_ok else 500, data={})

    def close(self):
        self.closed = True


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def make_api():
    return FakeApi


class ScriptedLauncher:
    """
    Stand-in for launcher.launch(). Each call pops the next scripted step:
    (LaunchResult, crawl payload or None). A payload is written to the
    command's `-o` path, like the real crawl tool does on success.
    """

    def __init__(self, steps):
        self.steps = list(steps)
        self.commands = []
        self.timeouts = []

    def __call__(self, command, *, timeout=None, env=None, policy=None, scope=None, **kwargs):
        self.commands.append(list(command))
        self.timeouts.append(timeout)
        result, payload = self.steps.pop(0)
        if payload is not None:
            out = command[command.index("-o") + 1]
            pathlib.Path(out).write_text(json.dumps(payload), encoding="utf-8")
        return result


@pytest.fixture
def safe_pages():
    return {"status": "completed", "data": [dict(p) for p in SAFE_PAGES]}


@pytest.fixture
def scripted_launcher():
    return ScriptedLauncher


FAKE_FIRECRAWL = """#!{exe}
import json, sys
args = sys.argv[1:]
if args[:1] == ["--status"]:
    print("firecrawl: authenticated")
    sys.exit(0)
out = args[args.index("-o") + 1]
if args[0] == "map":
    data = {{"links": ["https://makler.example/", "https://makler.example/team"]}}
else:
    print("Crawling " + args[1] + " Job ID: 1234-abcd", flush=True)
    data = {{"status": "completed", "data": [{{"url": args[1] + "/", "markdown": "Hallo"}}]}}
with open(out, "w", encoding="utf-8") as f:
    json.dump(data, f)
"""


@pytest.fixture
def fake_firecrawl(tmp_path, monkeypatch) -> pathlib.Path:
    """An executable stand-in for the firecrawl CLI, wired in via FIRECRAWL_BIN."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "firecrawl"
    script.write_text(FAKE_FIRECRAWL.format(exe=sys.executable), encoding="utf-8")
    script.chmod(0o755)
    monkeypatch.setenv("FIRECRAWL_BIN", str(script))
    return script


@pytest.fixture
def launch_results():
    return types.SimpleNamespace(
        ok=lambda job="aaaa-1111": LaunchResult(exit_code=0, job_id=job),
        failed=lambda job="bbbb-2222", code=1: LaunchResult(exit_code=code, job_id=job),
        timed_out=lambda job="cccc-3333": LaunchResult(
            exit_code=137, signal="SIGKILL", timed_out=True, job_id=job, forced=True
        ),
    )
