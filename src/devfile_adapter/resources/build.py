"""Builders for the ephemeral objects an image build runs in."""
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import Field

from .base import COMPONENT_LABEL, ResourceDefinition, ResourceModel
from .secret import DOCKER_CONFIG_KEY

DOCKERFILE_PATH = "Dockerfile"

BUILD_CONTEXT_VOLUME = "build-context"
BUILD_CONTEXT_MOUNT_PATH = "/root/build-context"
REGISTRY_SECRET_VOLUME = "kaniko-secret"
REGISTRY_SECRET_MOUNT_PATH = "/root/.docker"
COMPLETION_FILE = "/tmp/complete"

INIT_CONTAINER_NAME = "init"
BUILDER_CONTAINER_NAME = "build"
INIT_IMAGE = "busybox"
BUILDER_IMAGE = "gcr.io/kaniko-project/executor:latest"

IMAGE_API_VERSION = "image.openshift.io/v1"
LATEST_TAG = "latest"


class BuildConfigSpec(ResourceModel):
    """Docker strategy BuildConfig fed from a binary (archive) input."""

    name: str
    namespace: Optional[str] = None
    tag: str
    output_kind: str = Field(default="DockerImage", description="DockerImage or ImageStreamTag.")
    push_secret: Optional[str] = None
    dockerfile_path: str = DOCKERFILE_PATH

    def to_resource(self) -> ResourceDefinition:
        metadata: Dict[str, object] = {"name": self.name}
        if self.namespace:
            metadata["namespace"] = self.namespace
        output: Dict[str, object] = {"to": {"kind": self.output_kind, "name": self.tag}}
        if self.push_secret:
            output["pushSecret"] = {"name": self.push_secret}
        return ResourceDefinition(
            api_version="build.openshift.io/v1",
            kind="BuildConfig",
            metadata=metadata,
            spec={
                "source": {"type": "Binary", "binary": {}},
                "strategy": {"type": "Docker", "dockerStrategy": {"dockerfilePath": self.dockerfile_path}},
                "output": output,
            },
        )


def image_stream(name: str, labels: Optional[Dict[str, str]] = None) -> ResourceDefinition:
    """ImageStream receiving the output of an ImageStreamTag build."""

    metadata: Dict[str, object] = {"name": name}
    if labels:
        metadata["labels"] = dict(labels)
    return ResourceDefinition(api_version=IMAGE_API_VERSION, kind="ImageStream", metadata=metadata, spec={})


class BuilderPodSpec(ResourceModel):
    """Throwaway pod running the Kaniko executor on a streamed build context."""

    name: str
    namespace: Optional[str] = None
    tag: str
    registry_secret: Optional[str] = None

    @property
    def labels(self) -> Dict[str, str]:
        return {COMPONENT_LABEL: self.name}

    def init_container(self) -> Dict[str, object]:
        return {
            "name": INIT_CONTAINER_NAME,
            "image": INIT_IMAGE,
            "imagePullPolicy": "Always",
            "command": ["/bin/sh", "-c"],
            "args": [f"while true; do sleep 1; if [ -f {COMPLETION_FILE} ]; then break; fi done"],
            "volumeMounts": [{"name": BUILD_CONTEXT_VOLUME, "mountPath": BUILD_CONTEXT_MOUNT_PATH}],
        }

    def builder_container(self) -> Dict[str, object]:
        return {
            "name": BUILDER_CONTAINER_NAME,
            "image": BUILDER_IMAGE,
            "imagePullPolicy": "Always",
            "env": [
                {"name": "DOCKER_CONFIG", "value": REGISTRY_SECRET_MOUNT_PATH},
                {"name": "AWS_ACCESS_KEY_ID", "value": "NOT_SET"},
                {"name": "AWS_SECRET_KEY", "value": "NOT_SET"},
            ],
            "args": [
                f"--dockerfile={BUILD_CONTEXT_MOUNT_PATH}/{DOCKERFILE_PATH}",
                f"--context=dir://{BUILD_CONTEXT_MOUNT_PATH}",
                f"--destination={self.tag}",
            ],
            "volumeMounts": self._builder_mounts(),
        }

    def _builder_mounts(self) -> List[Dict[str, str]]:
        mounts = [{"name": BUILD_CONTEXT_VOLUME, "mountPath": BUILD_CONTEXT_MOUNT_PATH}]
        if self.registry_secret:
            mounts.append({"name": REGISTRY_SECRET_VOLUME, "mountPath": REGISTRY_SECRET_MOUNT_PATH})
        return mounts

    def _volumes(self) -> List[Dict[str, object]]:
        volumes: List[Dict[str, object]] = [{"name": BUILD_CONTEXT_VOLUME, "emptyDir": {}}]
        if self.registry_secret:
            volumes.append(
                {
                    "name": REGISTRY_SECRET_VOLUME,
                    "secret": {
                        "secretName": self.registry_secret,
                        "items": [{"key": DOCKER_CONFIG_KEY, "path": "config.json"}],
                    },
                }
            )
        return volumes

    def to_resource(self) -> ResourceDefinition:
        metadata: Dict[str, object] = {"name": self.name, "labels": self.labels}
        if self.namespace:
            metadata["namespace"] = self.namespace
        return ResourceDefinition(
            api_version="v1",
            kind="Pod",
            metadata=metadata,
            spec={
                "restartPolicy": "Never",
                "securityContext": {"runAsUser": 0},
                "initContainers": [self.init_container()],
                "containers": [self.builder_container()],
                "volumes": self._volumes(),
            },
        )
