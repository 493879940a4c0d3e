from __future__ import annotations

import logging
from collections.abc import Callable

from . import logging_bridge
from .artifacts import ArtifactPaths, read_json
from .config import Settings
from .launcher import launch
from .models import LaunchResult
from .process_group import ProcessGroupScope
from .utils import with_npm_bin

LOG = logging.getLogger(__name__)


def build_map_command(settings: Settings, paths: ArtifactPaths) -> list[str]:
    command = [settings.firecrawl_bin, "map", settings.url, "--json", "--pretty", "-o", paths.map]
    limit = settings.run_config.limit
    if limit is not None:
        command += ["--limit", str(int(limit)) if float(limit).is_integer() else str(limit)]
    return command


def run_map(settings: Settings, *, launcher: Callable[..., LaunchResult] = launch) -> int:
    """
    Write the site map to map.json and verify it is valid JSON.
    Returns the map tool's exit code, or 1 when its output is unusable.
    """
    paths = ArtifactPaths(settings.output_dir)
    paths.ensure_dir()

    with ProcessGroupScope() as scope:
        result = launcher(build_map_command(settings, paths), env=with_npm_bin(), scope=scope)

    if result.exit_code != 0:
        LOG.error("firecrawl map exited with %s", result.exit_code)
        return result.exit_code or 1

    try:
        read_json(paths.map)
    except (OSError, ValueError) as e:
        LOG.error("Map output is not valid JSON: %s", e)
        logging_bridge.error({
            "component": "firecrawl_crawl.mapper",
            "op": "validate",
            "path": paths.map,
            "error": repr(e),
        })
        return 1

    logging_bridge.activity({
        "component": "firecrawl_crawl.mapper",
        "op": "done",
        "slug": settings.slug,
        "path": paths.map,
    })
    return 0
