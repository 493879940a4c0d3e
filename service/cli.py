# service/cli.py
"""
User-facing command-line entrypoints.

Subcommands
-----------
crawl --url URL --slug SLUG [--config PATH]
    - Runs the crawl orchestrator (retry, stall detection, listing policy)
    - Exit codes: 0 success, 1 failure, 2 listing policy violation

map --url URL --slug SLUG [--config PATH]
    - Writes raw/firecrawl/<slug>/map.json and verifies it parses

relaunch --url URL --slug SLUG [--mode generate|scrape] [--config PATH]
    - map -> crawl -> whitelist-scrape fallback hand-off

validate-config [--config PATH]
    - Loads/validates a crawl config and returns nonzero on error
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from collections.abc import Iterable
from datetime import datetime

from modules import firecrawl_crawl as _crawl
from modules import relaunch as _relaunch
from modules.firecrawl_crawl.lib.config import ConfigError as SettingsError
from modules.firecrawl_crawl.lib.process_group import RunInterrupted
from service import config_schema as _config_schema
from service import logging_utils as L

LOG = logging.getLogger("service.cli")


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging() -> None:
    """Initialize a reasonable logging setup if none exists yet."""
    root = logging.getLogger()
    if not root.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )


def _now_iso():
    return datetime.now().astimezone().isoformat()


class _Parser(argparse.ArgumentParser):
    """Usage errors exit 1; exit code 2 is reserved for listing policy violations."""

    def error(self, message: str):  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


# ------------------------------ Subcommands ----------------------------------
def _target_kwargs(args: argparse.Namespace) -> dict[str, object]:
    kw: dict[str, object] = {"url": args.url, "slug": args.slug}
    if args.config:
        kw["config_path"] = args.config
    if args.raw_root:
        kw["raw_root"] = args.raw_root
    return kw


def _run_guarded(where: str, args: argparse.Namespace, fn, **kwargs) -> int:
    """Shared exit-code mapping for the target subcommands."""
    start = time.monotonic()
    try:
        return fn(**kwargs)
    except RunInterrupted as e:
        print(f"INTERRUPTED: {e}", file=sys.stderr)
        return e.exit_code
    except KeyboardInterrupt:
        return 130
    except (SettingsError, _config_schema.ConfigError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        L.write_error_log({"ts": _now_iso(), "where": where, "slug": args.slug, "error": str(e)})
        return 1
    except Exception as e:
        LOG.exception("%s failed: %s", where, e)
        print(f"FAILURE: {e}", file=sys.stderr)
        L.write_error_log({
            "ts": _now_iso(),
            "where": where,
            "slug": args.slug,
            "error": repr(e),
            "duration_ms": int((time.monotonic() - start) * 1000),
        })
        return 1


def cmd_crawl(args: argparse.Namespace) -> int:
    rc = _run_guarded("cli.crawl", args, _crawl.run, **_target_kwargs(args))
    L.write_activity_log({"ts": _now_iso(), "event": "cli_crawl", "slug": args.slug, "exit_code": rc})
    return rc


def cmd_map(args: argparse.Namespace) -> int:
    return _run_guarded("cli.map", args, _crawl.run_map, **_target_kwargs(args))


def cmd_relaunch(args: argparse.Namespace) -> int:
    kw = _target_kwargs(args)
    kw["mode"] = args.mode
    kw["check_status"] = not args.skip_status
    return _run_guarded("cli.relaunch", args, _relaunch.run, **kw)


def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
        _config_schema.validate(cfg)
        print("OK: configuration is valid.")
        return 0
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        LOG.error("Configuration validation failed: %s", e)
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1


# ------------------------------- Argparse ------------------------------------
def _add_target_args(sp: argparse.ArgumentParser) -> None:
    sp.add_argument("--url", required=True, help="Target website URL.")
    sp.add_argument("--slug", required=True, help="Artifact directory name (single path component).")
    sp.add_argument(
        "--config",
        help="Crawl config (fallbacks to FIRECRAWL_CONFIG env or config/firecrawl.makler.json).",
    )


def _build_parser() -> argparse.ArgumentParser:
    p = _Parser(
        prog="python -m service.cli",
        description="Firecrawl crawl orchestration tools",
    )
    p.add_argument(
        "--raw-root",
        help="Artifact root directory (fallbacks to FIRECRAWL_RAW_DIR env or raw/firecrawl).",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    # crawl
    sp = sub.add_parser("crawl", help="Crawl a site with timeout, retry and listing policy.")
    _add_target_args(sp)
    sp.set_defaults(func=cmd_crawl)

    # map
    sp = sub.add_parser("map", help="Write the site map for a URL.")
    _add_target_args(sp)
    sp.set_defaults(func=cmd_map)

    # relaunch
    sp = sub.add_parser("relaunch", help="Map, crawl and fall back to the whitelist scrape if needed.")
    _add_target_args(sp)
    sp.add_argument("--mode", choices=("generate", "scrape"), default="generate")
    sp.add_argument("--skip-status", action="store_true", help="Do not run `firecrawl --status` first.")
    sp.set_defaults(func=cmd_relaunch)

    # validate-config
    sp = sub.add_parser("validate-config", help="Verify crawl config correctness.")
    sp.add_argument("--config", help="Crawl config file to validate.")
    sp.set_defaults(func=cmd_validate_config)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    _ensure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
