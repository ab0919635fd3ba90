"""Push local sources into a component container and package build contexts."""
from __future__ import annotations

import fnmatch
import io
import json
import logging
import posixpath
import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List

from .errors import DevfileValidationError
from .kube import ClusterAPI, ComponentInfo
from .resources.build import DOCKERFILE_PATH
from .resources.component import SOURCE_MOUNT_PATH

_LOG = logging.getLogger(__name__)

INDEX_PATH = Path(".odo") / "odo-file-index.json"
ALWAYS_IGNORED = (".git", ".odo")

FileIndex = Dict[str, Dict[str, float]]


@dataclass
class SyncParameters:
    """What to sync and why."""

    comp_info: ComponentInfo
    component_exists: bool
    pod_changed: bool = False
    force_build: bool = False
    ignored_files: List[str] = field(default_factory=list)


class SyncAdapter:
    """Keeps the source volume of a component in step with a local directory."""

    def __init__(self, api: ClusterAPI, context_dir: Path) -> None:
        self.api = api
        self.context_dir = Path(context_dir)

    def sync_files(self, params: SyncParameters) -> bool:
        """Push changed files and report whether devfile commands need to run."""

        current = self.scan(params.ignored_files)
        full_sync = not params.component_exists or params.pod_changed or params.force_build
        if full_sync:
            changed = sorted(current)
            deleted: List[str] = []
        else:
            previous = self._load_index()
            changed = sorted(path for path, stat in current.items() if previous.get(path) != stat)
            deleted = sorted(path for path in previous if path not in current)

        if not full_sync and not changed and not deleted:
            _LOG.info("No file changes detected, skipping sync")
            return False

        target = params.comp_info.source_mount or SOURCE_MOUNT_PATH
        if deleted:
            _LOG.debug("Removing %d deleted file(s) from %s", len(deleted), params.comp_info.pod_name)
            self.api.exec_in_container(
                params.comp_info, ["rm", "-rf", *(posixpath.join(target, path) for path in deleted)]
            )
        if changed:
            _LOG.info("Syncing %d file(s) to %s", len(changed), params.comp_info.pod_name)
            self.api.extract_project_to_component(params.comp_info, target, self.archive(changed))
        self._write_index(current)
        return True

    def build_context_archive(self, ignored_files: Iterable[str] = (), dockerfile: str = DOCKERFILE_PATH) -> bytes:
        """Package the whole source tree as a build context."""

        if not (self.context_dir / dockerfile).is_file():
            raise DevfileValidationError(f"no {dockerfile} found in {self.context_dir}")
        return self.archive(sorted(self.scan(ignored_files)))

    def scan(self, ignored_files: Iterable[str] = ()) -> FileIndex:
        patterns = list(ALWAYS_IGNORED) + list(ignored_files)
        index: FileIndex = {}
        for path in sorted(self.context_dir.rglob("*")):
            if not path.is_file():
                continue
            relative = path.relative_to(self.context_dir).as_posix()
            if self._is_ignored(relative, patterns):
                continue
            stat = path.stat()
            index[relative] = {"size": stat.st_size, "mtime": stat.st_mtime}
        return index

    @staticmethod
    def _is_ignored(relative: str, patterns: List[str]) -> bool:
        parts = relative.split("/")
        for pattern in patterns:
            pattern = pattern.strip("/")
            if fnmatch.fnmatch(relative, pattern) or any(fnmatch.fnmatch(part, pattern) for part in parts):
                return True
        return False

    def archive(self, paths: Iterable[str]) -> bytes:
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as tar:
            for relative in paths:
                tar.add(str(self.context_dir / relative), arcname=relative, recursive=False)
        return buffer.getvalue()

    def _load_index(self) -> FileIndex:
        index_file = self.context_dir / INDEX_PATH
        if not index_file.is_file():
            return {}
        try:
            data = json.loads(index_file.read_text())
        except ValueError:
            _LOG.warning("Ignoring unreadable file index %s", index_file)
            return {}
        return data.get("files", {}) if isinstance(data, dict) else {}

    def _write_index(self, index: FileIndex) -> None:
        index_file = self.context_dir / INDEX_PATH
        index_file.parent.mkdir(parents=True, exist_ok=True)
        index_file.write_text(json.dumps({"files": index}, indent=2, sort_keys=True))
