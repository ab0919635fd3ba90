"""Devfile document model.

Only the parts of the devfile 2.x schema the adapter acts on are modelled:
container and volume components, exec and composite commands, and lifecycle
events. Components and commands may be written in either the flat form
(``- container: {name: runtime, ...}``) or the named form
(``- name: runtime`` with a ``container`` block).
"""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import DevfileValidationError

DEFAULT_VOLUME_SIZE = "5Gi"


class DevfileModel(BaseModel):
    """Shared base model for devfile entries."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CommandGroupKind(str, Enum):
    """Groups a command can be attached to."""

    INIT = "init"
    BUILD = "build"
    RUN = "run"
    DEBUG = "debug"
    TEST = "test"


class CommandGroup(DevfileModel):
    kind: CommandGroupKind
    is_default: bool = Field(default=False, alias="isDefault")


class EnvVar(DevfileModel):
    name: str
    value: str = ""


class Endpoint(DevfileModel):
    name: str
    target_port: int = Field(alias="targetPort")


class VolumeMount(DevfileModel):
    name: str
    path: Optional[str] = None


class ContainerComponent(DevfileModel):
    name: Optional[str] = None
    image: str
    env: List[EnvVar] = Field(default_factory=list)
    endpoints: List[Endpoint] = Field(default_factory=list)
    mount_sources: bool = Field(default=True, alias="mountSources")
    volume_mounts: List[VolumeMount] = Field(default_factory=list, alias="volumeMounts")
    command: List[str] = Field(default_factory=list)
    args: List[str] = Field(default_factory=list)
    memory_limit: Optional[str] = Field(default=None, alias="memoryLimit")


class VolumeComponent(DevfileModel):
    name: Optional[str] = None
    size: str = DEFAULT_VOLUME_SIZE


class Component(DevfileModel):
    name: Optional[str] = None
    container: Optional[ContainerComponent] = None
    volume: Optional[VolumeComponent] = None

    @model_validator(mode="after")
    def _propagate_name(self) -> "Component":
        for block in (self.container, self.volume):
            if block is None:
                continue
            if block.name is None:
                block.name = self.name
            if block.name is None:
                raise ValueError("component entries must be named")
        return self


class ExecCommand(DevfileModel):
    id: Optional[str] = None
    component: str
    command_line: str = Field(alias="commandLine")
    working_dir: str = Field(default="", alias="workingDir")
    group: Optional[CommandGroup] = None
    attributes: Dict[str, str] = Field(default_factory=dict)


class CompositeCommand(DevfileModel):
    id: Optional[str] = None
    commands: List[str] = Field(default_factory=list)
    parallel: bool = False
    group: Optional[CommandGroup] = None


class Command(DevfileModel):
    """A devfile command: exactly one of ``exec_`` or ``composite`` is set."""

    id: Optional[str] = None
    exec_: Optional[ExecCommand] = Field(default=None, alias="exec")
    composite: Optional[CompositeCommand] = None

    @model_validator(mode="after")
    def _check_variant(self) -> "Command":
        variants = [block for block in (self.exec_, self.composite) if block is not None]
        if len(variants) != 1:
            raise ValueError("a command must define exactly one of 'exec' or 'composite'")
        block = variants[0]
        if block.id is None:
            block.id = self.id
        if block.id is None:
            raise ValueError("commands must have an id")
        self.id = block.id
        return self

    @property
    def key(self) -> str:
        return (self.id or "").lower()

    @property
    def group(self) -> Optional[CommandGroup]:
        block = self.exec_ or self.composite
        return block.group if block else None

    @property
    def is_composite(self) -> bool:
        return self.composite is not None


class Events(DevfileModel):
    pre_start: List[str] = Field(default_factory=list, alias="preStart")
    post_start: List[str] = Field(default_factory=list, alias="postStart")
    pre_stop: List[str] = Field(default_factory=list, alias="preStop")
    post_stop: List[str] = Field(default_factory=list, alias="postStop")


class DevfileMetadata(DevfileModel):
    name: str = ""
    version: Optional[str] = None


class Devfile(DevfileModel):
    """Parsed devfile with the queries the adapter needs."""

    schema_version: str = Field(default="2.0.0", alias="schemaVersion")
    metadata: DevfileMetadata = Field(default_factory=DevfileMetadata)
    components: List[Component] = Field(default_factory=list)
    commands: List[Command] = Field(default_factory=list)
    events: Events = Field(default_factory=Events)

    @classmethod
    def from_file(cls, path: str | Path) -> "Devfile":
        try:
            text = Path(path).read_text()
        except OSError as exc:
            raise DevfileValidationError(f"unable to read devfile {path}: {exc}") from exc
        return cls.from_yaml(text)

    @classmethod
    def from_yaml(cls, text: str) -> "Devfile":
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise DevfileValidationError(f"unable to parse devfile: {exc}") from exc
        if not isinstance(data, dict):
            raise DevfileValidationError("Devfile must contain a mapping at the top level.")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise DevfileValidationError(f"invalid devfile: {exc}") from exc

    def get_containers(self) -> List[ContainerComponent]:
        return [component.container for component in self.components if component.container is not None]

    def get_volumes(self) -> Dict[str, VolumeComponent]:
        return {
            component.volume.name: component.volume
            for component in self.components
            if component.volume is not None and component.volume.name
        }

    def get_commands(self) -> Dict[str, Command]:
        """Return all commands keyed by lowercase id."""

        return {command.key: command for command in self.commands}

    def get_events(self) -> Events:
        return self.events
