"""Deploy and remove the resources described by a multi-document manifest."""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import AdapterContext, DeployParameters
from ..errors import AdapterError, ResourceNotFoundError
from ..kube import ClusterAPI
from ..manifest import ManifestMirror, decode, split_documents, substitute
from ..resources.base import COMPONENT_LABEL, component_selector, owner_reference, with_owner
from ..resources.build import IMAGE_API_VERSION, LATEST_TAG

_LOG = logging.getLogger(__name__)

DEPLOY_SUFFIX = "-deploy"

Resource = Dict[str, Any]


def _carry_cluster_ip(desired: Resource, live: Resource) -> None:
    cluster_ip = (live.get("spec") or {}).get("clusterIP")
    if cluster_ip:
        desired.setdefault("spec", {})["clusterIP"] = cluster_ip


# Kinds whose live state holds fields that must be copied onto an update.
_UPDATE_HANDLERS: Dict[str, Callable[[Resource, Resource], None]] = {
    "Service": _carry_cluster_ip,
}


@dataclass
class DeployResult:
    applied: List[Resource] = field(default_factory=list)
    url: Optional[str] = None


class ManifestApplier:
    """Applies deploy manifests and mirrors the live results locally."""

    def __init__(self, api: ClusterAPI, context: AdapterContext) -> None:
        self.api = api
        self.context = context

    @property
    def deploy_name(self) -> str:
        return f"{self.context.component_name}{DEPLOY_SUFFIX}"

    def deploy(self, params: DeployParameters) -> DeployResult:
        """Create or update every document of the manifest.

        Documents applied before a failing one stay applied.
        """

        image_stream: Optional[Resource] = None
        tag = params.tag
        if not tag:
            image_stream, tag = self.latest_image()

        values = {
            "CONTAINER_IMAGE": tag,
            "COMPONENT_NAME": self.deploy_name,
            "PORT": str(params.deployment_port),
        }
        result = DeployResult()
        with ManifestMirror(self.context.context_dir) as mirror:
            for document in split_documents(params.manifest_source):
                live = self.apply(decode(substitute(document, values)))
                if image_stream is not None:
                    image_stream["metadata"] = with_owner(image_stream["metadata"], [owner_reference(live)])
                mirror.append(live)
                result.applied.append(live)

        if image_stream is not None:
            self.api.replace(image_stream)

        try:
            result.url = self.api.get_application_url(component_selector(self.deploy_name))
        except AdapterError as exc:
            _LOG.warning("Unable to determine the application URL for component %s: %s", self.context.component_name, exc)
        else:
            _LOG.info("Successfully deployed component: %s", result.url)
        return result

    def apply(self, desired: Resource) -> Resource:
        """Create ``desired`` or update its live counterpart; returns the live object."""

        desired = copy.deepcopy(desired)
        metadata = desired["metadata"]
        labels = metadata.get("labels") or {}
        labels[COMPONENT_LABEL] = self.deploy_name
        metadata["labels"] = labels

        kind = desired["kind"]
        _LOG.debug("Manifest type: %s/%s", desired["apiVersion"], kind)
        live = self.api.get(desired["apiVersion"], kind, metadata["name"])
        if live is None:
            _LOG.info("Creating resource of kind %s", kind)
            return self.api.create(desired)

        live_metadata = live.get("metadata") or {}
        if live_metadata.get("resourceVersion"):
            metadata["resourceVersion"] = live_metadata["resourceVersion"]
        annotations = dict(live_metadata.get("annotations") or {})
        annotations.update(metadata.get("annotations") or {})
        if annotations:
            metadata["annotations"] = annotations
        handler = _UPDATE_HANDLERS.get(kind)
        if handler is not None:
            handler(desired, live)
        _LOG.info("Updating resource of kind %s", kind)
        return self.api.replace(desired)

    def deploy_delete(self, manifest_source: bytes) -> List[Tuple[str, str]]:
        """Delete every object named in the manifest; each must exist."""

        deleted: List[Tuple[str, str]] = []
        for document in split_documents(manifest_source):
            resource = decode(document)
            kind = resource["kind"]
            name = resource["metadata"]["name"]
            if self.api.get(resource["apiVersion"], kind, name) is None:
                raise ResourceNotFoundError(f"Could not delete component {name} as component was not found")
            self.api.delete(resource["apiVersion"], kind, name, missing_ok=False)
            deleted.append((kind, name))
        return deleted

    def latest_image(self) -> Tuple[Resource, str]:
        """Return the component's ImageStream and the image reference of its latest tag."""

        name = self.context.component_name
        stream = self.api.get(IMAGE_API_VERSION, "ImageStream", name)
        if stream is None:
            raise ResourceNotFoundError(f"image stream {name} not found, build the component first")
        for tag in (stream.get("status") or {}).get("tags") or []:
            if tag.get("tag") != LATEST_TAG:
                continue
            items = tag.get("items") or []
            if items and items[0].get("dockerImageReference"):
                return stream, items[0]["dockerImageReference"]
        raise ResourceNotFoundError(f"image stream {name} has no image for tag {LATEST_TAG}")
