"""Helpers for multi-document deploy manifests and their local mirror."""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import IO, Any, Dict, List, Mapping, Optional

import yaml as pyyaml
from ruamel.yaml import YAML

from .errors import DevfileValidationError

_LOG = logging.getLogger(__name__)

yaml = YAML()
yaml.explicit_start = False
yaml.width = 120
yaml.indent(mapping=2, sequence=4, offset=2)

DOCUMENT_SEPARATOR = "---"
MIRROR_PATH = Path(".odo") / "manifest.yaml"

_SEPARATOR_LINE = re.compile(r"^---[ \t]*$", re.MULTILINE)
_PLACEHOLDER = re.compile(r"\{\{\s*\.?([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def split_documents(source: bytes) -> List[str]:
    """Split a manifest on ``---`` lines, dropping empty documents."""

    text = source.decode("utf-8")
    return [document for document in _SEPARATOR_LINE.split(text) if document.strip()]


def substitute(document: str, values: Mapping[str, str]) -> str:
    """Replace ``{{.KEY}}`` placeholders with their literal values.

    Placeholders without a value are left untouched.
    """

    def _replace(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key in values:
            return str(values[key])
        _LOG.debug("No substitution value for placeholder %s", key)
        return match.group(0)

    return _PLACEHOLDER.sub(_replace, document)


def decode(document: str) -> Dict[str, Any]:
    """Decode one manifest document into a generic resource with apiVersion, kind and name."""

    try:
        data = pyyaml.safe_load(document)
    except pyyaml.YAMLError as exc:
        raise DevfileValidationError(f"Failed to decode the manifest yaml: {exc}") from exc
    if not isinstance(data, dict):
        raise DevfileValidationError("Failed to decode the manifest yaml: document is not a mapping")
    metadata = data.get("metadata")
    if not data.get("apiVersion") or not data.get("kind") or not isinstance(metadata, dict) or not metadata.get("name"):
        raise DevfileValidationError("Failed to decode the manifest yaml: apiVersion, kind and metadata.name are required")
    return data


class ManifestMirror:
    """Local file mirroring the live objects returned by the last deploy."""

    def __init__(self, context_dir: Path) -> None:
        self.path = Path(context_dir) / MIRROR_PATH
        self._stream: Optional[IO[str]] = None
        self._written = 0

    def __enter__(self) -> "ManifestMirror":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._stream = self.path.open("w")
        return self

    def append(self, obj: Dict[str, Any]) -> None:
        if self._stream is None:
            raise RuntimeError("manifest mirror is not open")
        if self._written:
            self._stream.write(f"{DOCUMENT_SEPARATOR}\n")
        yaml.dump(obj, self._stream)
        self._written += 1

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        return False

    @property
    def written(self) -> int:
        return self._written
