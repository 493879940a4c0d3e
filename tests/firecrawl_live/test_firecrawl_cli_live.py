# tests/firecrawl_live/test_firecrawl_cli_live.py
from __future__ import annotations

import json
import os
import shutil

import pytest

from service import cli

# Captured at import, before the autouse fixture scrubs FIRECRAWL_* from the env.
_REAL_ENV = {
    name: os.environ[name]
    for name in ("FIRECRAWL_API_KEY", "FIRECRAWL_API_BASE", "FIRECRAWL_BIN")
    if os.environ.get(name)
}
LIVE_URL = os.getenv("FIRECRAWL_LIVE_URL", "https://example.com")


@pytest.fixture
def real_firecrawl(monkeypatch):
    binary = _REAL_ENV.get("FIRECRAWL_BIN", "firecrawl")
    if shutil.which(binary) is None:
        pytest.skip(f"{binary} not on PATH")
    for name, value in _REAL_ENV.items():
        monkeypatch.setenv(name, value)
    return binary


@pytest.fixture
def small_config(tmp_path):
    p = tmp_path / "firecrawl.live.json"
    p.write_text(json.dumps({"limit": 2, "maxDepth": 1, "timeout": 120, "sitemap": "skip"}), encoding="utf-8")
    return p


def _print_meta(raw, slug: str) -> dict:
    meta = json.loads((raw / slug / "meta.json").read_text(encoding="utf-8"))
    print(f"\n[{slug}] result={meta.get('result')}  attempts={len(meta.get('attempts') or [])}")
    return meta


@pytest.mark.live
def test_map_live(real_firecrawl, small_config, tmp_path):
    """
    Live smoke test: map a small site with the real firecrawl CLI.
    The URL count varies with the site, so only the file shape is checked.
    """
    raw = tmp_path / "raw"
    rc = cli.main(["--raw-root", str(raw), "map", "--url", LIVE_URL, "--slug", "live-smoke", "--config", str(small_config)])

    assert rc == 0
    data = json.loads((raw / "live-smoke" / "map.json").read_text(encoding="utf-8"))
    assert isinstance(data, (dict, list))


@pytest.mark.live
def test_crawl_live(real_firecrawl, small_config, tmp_path):
    """
    Live crawl capped at two pages. Needs FIRECRAWL_API_KEY for the remote job.
    Whatever the outcome, meta.json must be there and agree with the exit code.
    """
    if "FIRECRAWL_API_KEY" not in _REAL_ENV:
        pytest.skip("FIRECRAWL_API_KEY not set")
    raw = tmp_path / "raw"
    rc = cli.main(["--raw-root", str(raw), "crawl", "--url", LIVE_URL, "--slug", "live-smoke", "--config", str(small_config)])

    meta = _print_meta(raw, "live-smoke")
    if rc == 0:
        assert meta["result"] == "success"
        assert (raw / "live-smoke" / "crawl.json").exists()
    else:
        assert meta["result"] != "success"
