"""Shared resource definitions for the devfile adapter."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

COMPONENT_LABEL = "component"
APP_LABEL = "app"
COMPONENT_TYPE_LABEL = "component-type"
MANAGED_BY = "devfile-adapter"


class ResourceModel(BaseModel):
    """Shared base model for resource configuration objects."""

    model_config = ConfigDict(populate_by_name=True)


@dataclass(frozen=True)
class ResourceDefinition:
    """Represents a Kubernetes resource manifest."""

    api_version: str
    kind: str
    metadata: Dict[str, Any]
    spec: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": self.metadata,
        }
        if self.spec is not None:
            body["spec"] = self.spec
        if self.extra:
            body.update(self.extra)
        return body

    @property
    def name(self) -> Optional[str]:
        return self.metadata.get("name")

    @property
    def namespace(self) -> Optional[str]:
        return self.metadata.get("namespace")


def component_labels(component_name: str, application: str, component_type: str = "") -> Dict[str, str]:
    labels = {
        COMPONENT_LABEL: component_name,
        APP_LABEL: application,
        "app.kubernetes.io/instance": component_name,
        "app.kubernetes.io/part-of": application,
        "app.kubernetes.io/managed-by": MANAGED_BY,
    }
    if component_type:
        labels[COMPONENT_TYPE_LABEL] = component_type
    return labels


def component_selector(component_name: str) -> str:
    return f"{COMPONENT_LABEL}={component_name}"


def owner_reference(owner: Dict[str, Any]) -> Dict[str, Any]:
    """Owner reference pointing at a live object, enabling cascading deletion."""

    metadata = owner.get("metadata", {})
    return {
        "apiVersion": owner.get("apiVersion"),
        "kind": owner.get("kind"),
        "name": metadata.get("name"),
        "uid": metadata.get("uid"),
    }


def with_owner(metadata: Dict[str, Any], owners: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Return ``metadata`` with ``owners`` appended, skipping uids it already references."""

    references = list(metadata.get("ownerReferences") or [])
    known = {reference.get("uid") for reference in references}
    for owner in owners:
        if owner.get("uid") not in known:
            references.append(owner)
            known.add(owner.get("uid"))
    updated = dict(metadata)
    updated["ownerReferences"] = references
    return updated
