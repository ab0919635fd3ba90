"""PersistentVolumeClaim builders for devfile volumes."""
from __future__ import annotations

from typing import Dict, Optional

from pydantic import Field

from ..devfile import DEFAULT_VOLUME_SIZE
from ..utils import dns1123_name, short_hash
from .base import COMPONENT_LABEL, ResourceDefinition, ResourceModel

STORAGE_LABEL = "storage-name"
_MAX_NAME_LENGTH = 63


def generate_pvc_name(volume_name: str, component_name: str) -> str:
    """Return the deterministic PVC name for a devfile volume of a component."""

    suffix = short_hash(component_name, volume_name)
    base = dns1123_name(f"{volume_name}-{component_name}", _MAX_NAME_LENGTH - len(suffix) - 1)
    return f"{base}-{suffix}"


def storage_selector(volume_name: str, component_name: str) -> str:
    return f"{COMPONENT_LABEL}={component_name},{STORAGE_LABEL}={volume_name}"


def pod_volume_name(volume_name: str) -> str:
    return dns1123_name(f"{volume_name}-vol")


class StorageConfig(ResourceModel):
    """A devfile volume bound to the PVC that backs it."""

    volume_name: str
    pvc_name: str
    component_name: str
    size: str = DEFAULT_VOLUME_SIZE
    labels: Dict[str, str] = Field(default_factory=dict)

    def to_resource(self, namespace: Optional[str] = None) -> ResourceDefinition:
        metadata: Dict[str, object] = {
            "name": self.pvc_name,
            "labels": {
                **self.labels,
                COMPONENT_LABEL: self.component_name,
                STORAGE_LABEL: self.volume_name,
            },
        }
        if namespace:
            metadata["namespace"] = namespace
        return ResourceDefinition(
            api_version="v1",
            kind="PersistentVolumeClaim",
            metadata=metadata,
            spec={
                "accessModes": ["ReadWriteOnce"],
                "resources": {"requests": {"storage": self.size}},
            },
        )
