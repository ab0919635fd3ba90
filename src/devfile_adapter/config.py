"""Configuration models and helpers for the devfile adapter."""
from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_DEBUG_PORT = 5858
ENV_FILE_PATH = Path(".odo") / "env" / "env.yaml"


class ClusterContext(BaseModel):
    """Connection context to interact with a cluster."""

    namespace: Optional[str] = None
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    verify_ssl: bool = True


class ComponentSettings(BaseModel):
    """Per-component settings stored alongside the sources."""

    name: str
    application: str = "app"
    namespace: Optional[str] = None
    debug_port: int = Field(default=DEFAULT_DEBUG_PORT, alias="debugPort")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_file(cls, path: str | Path) -> "ComponentSettings":
        document_path = Path(path)
        data = yaml.safe_load(document_path.read_text())
        if not isinstance(data, dict):
            raise ValueError("Component settings file must contain a mapping at the top level.")
        return cls.model_validate(data.get("component", data))

    @classmethod
    def from_context(cls, context_dir: str | Path) -> Optional["ComponentSettings"]:
        path = Path(context_dir) / ENV_FILE_PATH
        if not path.is_file():
            return None
        return cls.from_file(path)


class AdapterContext(BaseModel):
    """Identity of the component being worked on and where its sources live."""

    component_name: str
    application: str = "app"
    namespace: str
    context_dir: Path = Field(default_factory=Path.cwd)


class _Parameters(BaseModel):
    model_config = ConfigDict(frozen=True)


class PushParameters(_Parameters):
    """Inputs of a single push."""

    init_command: str = ""
    build_command: str = ""
    run_command: str = ""
    debug_command: str = ""
    debug: bool = False
    debug_port: int = DEFAULT_DEBUG_PORT
    force_build: bool = False
    show: bool = False
    ignored_files: List[str] = Field(default_factory=list)


class BuildParameters(_Parameters):
    """Inputs of a single image build."""

    tag: str = ""
    rootless: bool = False
    docker_config_path: Path = Field(default_factory=lambda: Path.home() / ".docker" / "config.json")
    ignored_files: List[str] = Field(default_factory=list)


class DeployParameters(_Parameters):
    """Inputs of a single manifest deployment."""

    manifest_source: bytes
    tag: str = ""
    deployment_port: int = 8080
