from __future__ import annotations

import contextlib
import json
import os
import tempfile
from dataclasses import dataclass
from typing import Any

from . import logging_bridge
from .models import RunMeta, Violation


class MetaAlreadyWrittenError(RuntimeError):
    """Raised when a second meta.json write is attempted within one invocation."""


@dataclass(frozen=True)
class ArtifactPaths:
    """Fixed file layout under raw/firecrawl/<slug>/."""

    output_dir: str

    @property
    def crawl(self) -> str:
        return os.path.join(self.output_dir, "crawl.json")

    @property
    def status(self) -> str:
        return os.path.join(self.output_dir, "status.json")

    @property
    def errors(self) -> str:
        return os.path.join(self.output_dir, "errors.json")

    @property
    def violations(self) -> str:
        return os.path.join(self.output_dir, "violations.json")

    @property
    def meta(self) -> str:
        return os.path.join(self.output_dir, "meta.json")

    @property
    def map(self) -> str:
        return os.path.join(self.output_dir, "map.json")

    def ensure_dir(self) -> None:
        os.makedirs(self.output_dir, exist_ok=True)

    def existing(self) -> dict[str, str | None]:
        """Artifact index for RunMeta; map is listed regardless, the rest only if present."""

        def _if_exists(p: str) -> str | None:
            return p if os.path.exists(p) else None

        return {
            "map": self.map,
            "crawl": _if_exists(self.crawl),
            "status": _if_exists(self.status),
            "errors": _if_exists(self.errors),
            "violations": _if_exists(self.violations),
        }


def write_json(path: str, data: Any) -> None:
    """Pretty JSON written via temp file + os.replace, so readers never see a partial file."""
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
            f.write("\n")
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.remove(tmp)
        raise


def read_json(path: str) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def write_violations(paths: ArtifactPaths, violations: list[Violation]) -> str:
    write_json(paths.violations, {"reasons": [v.to_dict() for v in violations]})
    return paths.violations


class MetaWriter:
    """Writes meta.json exactly once per invocation."""

    def __init__(self, paths: ArtifactPaths):
        self.paths = paths
        self.written = False

    def write(self, meta: RunMeta) -> str:
        if self.written:
            raise MetaAlreadyWrittenError(f"meta.json already written for {self.paths.output_dir}")
        meta.artifacts = self.paths.existing()
        write_json(self.paths.meta, meta.to_dict())
        self.written = True
        logging_bridge.activity({
            "component": "firecrawl_crawl.artifacts",
            "op": "meta_written",
            "path": self.paths.meta,
            "result": meta.result.value,
        })
        return self.paths.meta
