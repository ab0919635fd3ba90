"""Deployment and Service builders for a devfile component."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import Field

from .. import supervisor
from ..config import DEFAULT_DEBUG_PORT
from ..devfile import ContainerComponent, ExecCommand
from ..utils import dns1123_name
from .base import COMPONENT_LABEL, ResourceDefinition, ResourceModel
from .storage import pod_volume_name

SOURCE_VOLUME = "odo-projects"
SOURCE_MOUNT_PATH = "/projects"
SOURCE_ENV_VARS = ("PROJECTS_ROOT", "PROJECT_SOURCE", "CHE_PROJECTS_ROOT")
_PORT_NAME_MAX_LENGTH = 15


def _set_env(container: Dict[str, Any], name: str, value: str) -> None:
    env = container.setdefault("env", [])
    if any(entry.get("name") == name for entry in env):
        return
    env.append({"name": name, "value": value})


class ComponentConfig(ResourceModel):
    """Desired state of a component: its containers, volumes and supervised commands."""

    name: str
    application: str
    namespace: Optional[str] = None
    component_type: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)
    containers: List[ContainerComponent] = Field(default_factory=list)
    volume_bindings: Dict[str, str] = Field(default_factory=dict)
    run_command: Optional[ExecCommand] = None
    debug_command: Optional[ExecCommand] = None
    debug_port: int = DEFAULT_DEBUG_PORT

    def container_specs(self) -> List[Dict[str, Any]]:
        return [self._container_spec(component) for component in self.containers]

    def _container_spec(self, component: ContainerComponent) -> Dict[str, Any]:
        container: Dict[str, Any] = {
            "name": component.name,
            "image": component.image,
            "imagePullPolicy": "Always",
            "env": [{"name": env.name, "value": env.value} for env in component.env],
            "ports": self._container_ports(component),
            "volumeMounts": [{"name": supervisor.VOLUME_NAME, "mountPath": supervisor.MOUNT_PATH}],
        }
        if component.command:
            container["command"] = list(component.command)
        if component.args:
            container["args"] = list(component.args)
        if component.memory_limit:
            container["resources"] = {"limits": {"memory": component.memory_limit}}

        if component.mount_sources:
            container["volumeMounts"].append({"name": SOURCE_VOLUME, "mountPath": SOURCE_MOUNT_PATH})
            for env_name in SOURCE_ENV_VARS:
                _set_env(container, env_name, SOURCE_MOUNT_PATH)

        for mount in component.volume_mounts:
            if mount.name not in self.volume_bindings:
                continue
            container["volumeMounts"].append(
                {"name": pod_volume_name(mount.name), "mountPath": mount.path or f"/{mount.name}"}
            )

        self._wire_supervisor(component, container)
        return container

    def _wire_supervisor(self, component: ContainerComponent, container: Dict[str, Any]) -> None:
        """Make the supervisor host the run and debug commands of this container."""

        hosts_run = self.run_command is not None and self.run_command.component == component.name
        hosts_debug = self.debug_command is not None and self.debug_command.component == component.name
        if not (hosts_run or hosts_debug):
            return
        if not component.command and not component.args:
            container["command"] = supervisor.entrypoint()
            container["args"] = supervisor.entrypoint_args()
        if hosts_run:
            _set_env(container, supervisor.ENV_COMMAND_RUN, self.run_command.command_line)
            if self.run_command.working_dir:
                _set_env(container, supervisor.ENV_COMMAND_RUN_WORKING_DIR, self.run_command.working_dir)
        if hosts_debug:
            _set_env(container, supervisor.ENV_COMMAND_DEBUG, self.debug_command.command_line)
            if self.debug_command.working_dir:
                _set_env(container, supervisor.ENV_COMMAND_DEBUG_WORKING_DIR, self.debug_command.working_dir)
            _set_env(container, supervisor.ENV_DEBUG_PORT, str(self.debug_port))

    @staticmethod
    def _container_ports(component: ContainerComponent) -> List[Dict[str, Any]]:
        ports: List[Dict[str, Any]] = []
        seen = set()
        for endpoint in component.endpoints:
            if endpoint.target_port in seen:
                continue
            seen.add(endpoint.target_port)
            ports.append(
                {
                    "name": dns1123_name(endpoint.name, _PORT_NAME_MAX_LENGTH) or f"port-{endpoint.target_port}",
                    "containerPort": endpoint.target_port,
                    "protocol": "TCP",
                }
            )
        return ports

    def _metadata(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"name": self.name, "labels": dict(self.labels)}
        if self.namespace:
            metadata["namespace"] = self.namespace
        return metadata

    def _pod_volumes(self) -> List[Dict[str, Any]]:
        volumes: List[Dict[str, Any]] = [
            {"name": supervisor.VOLUME_NAME, "emptyDir": {}},
            {"name": SOURCE_VOLUME, "emptyDir": {}},
        ]
        for volume_name, pvc_name in sorted(self.volume_bindings.items()):
            volumes.append(
                {"name": pod_volume_name(volume_name), "persistentVolumeClaim": {"claimName": pvc_name}}
            )
        return volumes

    def to_deployment(self) -> ResourceDefinition:
        template = {
            "metadata": {"name": self.name, "labels": dict(self.labels)},
            "spec": {
                "initContainers": [supervisor.init_container()],
                "containers": self.container_specs(),
                "volumes": self._pod_volumes(),
            },
        }
        return ResourceDefinition(
            api_version="apps/v1",
            kind="Deployment",
            metadata=self._metadata(),
            spec={
                "replicas": 1,
                "strategy": {"type": "Recreate"},
                "selector": {"matchLabels": {COMPONENT_LABEL: self.name}},
                "template": template,
            },
        )

    def service_ports(self) -> List[Dict[str, Any]]:
        """Union of the container ports, one service port per distinct port number."""

        ports: List[Dict[str, Any]] = []
        seen = set()
        for container in self.container_specs():
            for port in container["ports"]:
                if port["containerPort"] in seen:
                    continue
                seen.add(port["containerPort"])
                ports.append(
                    {
                        "name": port["name"],
                        "port": port["containerPort"],
                        "targetPort": port["containerPort"],
                        "protocol": port["protocol"],
                    }
                )
        return ports

    def to_service(self) -> ResourceDefinition:
        return ResourceDefinition(
            api_version="v1",
            kind="Service",
            metadata=self._metadata(),
            spec={
                "ports": self.service_ports(),
                "selector": {COMPONENT_LABEL: self.name},
            },
        )
