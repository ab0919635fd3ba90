"""Registry credential secret builder."""
from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Dict, Optional

from pydantic import Field

from ..errors import DevfileValidationError
from .base import ResourceDefinition, ResourceModel

REGISTRY_SECRET_NAME = "regcred"
DOCKER_CONFIG_KEY = ".dockerconfigjson"


class RegistrySecretConfig(ResourceModel):
    """Pull/push secret generated from a local container registry config file."""

    name: str = REGISTRY_SECRET_NAME
    namespace: Optional[str] = None
    docker_config_json: str = Field(..., description="Base64 encoded registry config file contents.")
    labels: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_docker_config(cls, path: str | Path, namespace: Optional[str] = None) -> "RegistrySecretConfig":
        config_path = Path(path).expanduser()
        try:
            raw = config_path.read_bytes()
        except OSError as exc:
            raise DevfileValidationError(f"unable to read registry config file {config_path}: {exc}") from exc
        try:
            json.loads(raw)
        except ValueError as exc:
            raise DevfileValidationError(f"registry config file {config_path} is not valid JSON") from exc
        return cls(namespace=namespace, docker_config_json=base64.b64encode(raw).decode("ascii"))

    def to_resource(self, default_namespace: Optional[str] = None) -> ResourceDefinition:
        namespace = self.namespace or default_namespace
        if not namespace:
            raise ValueError("Namespace must be provided for Secret resources.")

        metadata: Dict[str, object] = {"name": self.name, "namespace": namespace}
        if self.labels:
            metadata["labels"] = dict(self.labels)

        return ResourceDefinition(
            api_version="v1",
            kind="Secret",
            metadata=metadata,
            spec=None,
            extra={
                "type": "kubernetes.io/dockerconfigjson",
                "data": {DOCKER_CONFIG_KEY: self.docker_config_json},
            },
        )
