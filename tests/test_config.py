import json

import pytest

from modules.firecrawl_crawl.lib import config as fc_config
from modules.firecrawl_crawl.lib.config import ConfigError, RunConfig, Settings
from service import config_schema


def test_settings_from_config_file(settings, crawl_config, tmp_path):
    cfg = settings.run_config
    assert settings.url == "https://makler.example"
    assert settings.output_dir == str(tmp_path / "raw" / "makler-example")
    assert settings.config_path == str(crawl_config)
    assert cfg.limit == 20 and cfg.max_depth == 3 and cfg.timeout == 60
    assert cfg.include_paths == ("/", "/team")
    assert cfg.exclude_paths is None
    assert len(settings.config_hash) == 64
    assert settings.api_key == "fc-test-key"
    assert "fc-test-key" not in repr(settings)


def test_missing_config_file_means_defaults(tmp_path):
    s = Settings.from_env_and_kwargs({
        "url": "https://makler.example",
        "slug": "makler",
        "config_path": str(tmp_path / "nope.json"),
    })
    assert s.run_config == RunConfig()
    assert s.raw_root == fc_config.DEFAULT_RAW_ROOT
    assert s.api_key is None


def test_env_fallbacks(tmp_path, monkeypatch, crawl_config):
    monkeypatch.setenv("FIRECRAWL_CONFIG", str(crawl_config))
    monkeypatch.setenv("FIRECRAWL_RAW_DIR", str(tmp_path / "artifacts"))
    monkeypatch.setenv("FIRECRAWL_BIN", "/opt/fc/bin/firecrawl")
    monkeypatch.setenv("FIRECRAWL_API_BASE", "https://fc.internal/")

    s = Settings.from_env_and_kwargs({"url": "https://makler.example", "slug": "makler"})
    assert s.config_path == str(crawl_config)
    assert s.raw_root == str(tmp_path / "artifacts")
    assert s.firecrawl_bin == "/opt/fc/bin/firecrawl"
    assert s.api_base == "https://fc.internal"


@pytest.mark.parametrize("slug", ["", "../escape", "a/b", "/abs"])
def test_invalid_slug_rejected(slug, crawl_config):
    with pytest.raises(ConfigError):
        Settings.from_env_and_kwargs({"url": "https://makler.example", "slug": slug, "config_path": str(crawl_config)})


def test_missing_url_rejected(crawl_config):
    with pytest.raises(ConfigError):
        Settings.from_env_and_kwargs({"slug": "makler", "config_path": str(crawl_config)})


def test_wrong_value_types_rejected():
    with pytest.raises(ConfigError):
        RunConfig.from_mapping({"limit": "20"})
    with pytest.raises(ConfigError):
        RunConfig.from_mapping({"timeout": True})
    with pytest.raises(ConfigError):
        RunConfig.from_mapping({"excludePaths": "/angebote"})


def test_crawl_flags_only_for_set_fields():
    cfg = RunConfig.from_mapping({"limit": 10.0, "delayMs": 500, "excludePaths": ["/a", "/b"], "sitemap": " "})
    assert cfg.crawl_flags() == ["--limit", "10", "--delay", "500", "--exclude-paths", "/a,/b"]


def test_retry_overrides_tighten_but_never_loosen():
    loose = RunConfig(limit=50, max_depth=5, delay_ms=100)
    assert loose.retry_overrides() == {
        "limit": 8,
        "max_depth": 2,
        "max_concurrency": 1,
        "delay_ms": 1000,
        "sitemap": "skip",
    }

    tight = RunConfig(limit=3, max_depth=1, delay_ms=5000, retry_sitemap="include")
    o = tight.retry_overrides()
    assert (o["limit"], o["max_depth"], o["delay_ms"], o["sitemap"]) == (3, 1, 5000, "include")

    unset = RunConfig().retry_overrides()
    assert (unset["limit"], unset["max_depth"], unset["delay_ms"]) == (8, 2, 1000)


def test_derive_returns_new_instance():
    base = RunConfig(limit=50)
    derived = base.derive(**base.retry_overrides())
    assert base.limit == 50
    assert derived.limit == 8 and derived.max_concurrency == 1
    with pytest.raises(ConfigError):
        base.derive(bogus=1)


def test_forbidden_segments_default_and_override():
    assert "/angebote" in RunConfig().forbidden_segments()
    assert RunConfig(exclude_paths=(" /Kaufen ",)).forbidden_segments() == ["/kaufen"]
    # Present but empty: no URL segments at all
    assert RunConfig.from_mapping({"excludePaths": []}).forbidden_segments() == []


def test_fallback_command_parsed(tmp_path):
    p = tmp_path / "cfg.json"
    p.write_text(json.dumps({"fallbackCommand": ["scrape-whitelist", "{slug}"]}), encoding="utf-8")
    s = Settings.from_env_and_kwargs({"url": "https://x.example", "slug": "x", "config_path": str(p)})
    assert s.fallback_command == ("scrape-whitelist", "{slug}")


# ---------------- service.config_schema ----------------


def test_load_config_strict_missing(tmp_path):
    with pytest.raises(config_schema.ConfigError):
        config_schema.load_config(str(tmp_path / "missing.json"))


def test_load_config_yaml(tmp_path):
    p = tmp_path / "cfg.yaml"
    p.write_text("limit: 5\nexcludePaths:\n  - /angebote\n", encoding="utf-8")
    cfg = config_schema.load_config(str(p))
    assert cfg == {"limit": 5, "excludePaths": ["/angebote"]}
    config_schema.validate(cfg)


def test_load_config_from_env(crawl_config, monkeypatch):
    monkeypatch.setenv("FIRECRAWL_CONFIG", str(crawl_config))
    cfg = config_schema.load_config()
    config_schema.validate(cfg)
    assert cfg["limit"] == 20


def test_top_level_must_be_object(tmp_path):
    p = tmp_path / "cfg.json"
    p.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(config_schema.ConfigError):
        config_schema.load_config(str(p))


@pytest.mark.parametrize(
    "cfg",
    [
        {"limit": -1},
        {"maxDepth": "3"},
        {"sitemap": 1},
        {"excludePaths": ["/ok", ""]},
        {"fallbackCommand": []},
    ],
)
def test_validate_rejects(cfg):
    with pytest.raises(config_schema.ConfigError):
        config_schema.validate(cfg)


def test_lenient_loader_returns_empty_on_bad_json(tmp_path):
    p = tmp_path / "cfg.json"
    p.write_text("{not json", encoding="utf-8")
    assert config_schema.load_crawl_config(str(p)) == {}
