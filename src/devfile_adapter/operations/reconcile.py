"""Reconciliation of a component's Deployment, Service and PersistentVolumeClaims."""
from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Iterable, List, Optional

from ..config import AdapterContext
from ..devfile import DEFAULT_VOLUME_SIZE, ContainerComponent, VolumeComponent
from ..errors import AdapterError
from ..kube import ClusterAPI
from ..resources.base import owner_reference, with_owner
from ..resources.component import ComponentConfig
from ..resources.storage import StorageConfig, generate_pvc_name, storage_selector

_LOG = logging.getLogger(__name__)


class ResourceReconciler:
    """Computes and applies the create/update/delete calls that realise a component.

    Every step is idempotent given the naming rules, so a failed reconciliation is
    retried by running the whole thing again; nothing is rolled back.
    """

    def __init__(self, api: ClusterAPI, context: AdapterContext) -> None:
        self.api = api
        self.context = context

    @property
    def component_name(self) -> str:
        return self.context.component_name

    def component_exists(self) -> bool:
        return self.api.get("apps/v1", "Deployment", self.component_name) is not None

    def bind_volumes(
        self, containers: Iterable[ContainerComponent], volumes: Dict[str, VolumeComponent]
    ) -> List[StorageConfig]:
        """Return one PVC binding per volume referenced by at least one container."""

        storages: List[StorageConfig] = []
        processed = set()
        for container in containers:
            for mount in container.volume_mounts:
                if mount.name in processed:
                    continue
                processed.add(mount.name)
                pvc_name = self._existing_pvc_name(mount.name) or generate_pvc_name(mount.name, self.component_name)
                volume = volumes.get(mount.name)
                storage = StorageConfig(
                    volume_name=mount.name,
                    pvc_name=pvc_name,
                    component_name=self.component_name,
                    size=volume.size if volume is not None else DEFAULT_VOLUME_SIZE,
                )
                _LOG.debug("Volume %s is backed by PVC %s", mount.name, pvc_name)
                storages.append(storage)
        return storages

    def _existing_pvc_name(self, volume_name: str) -> Optional[str]:
        claims = self.api.list(
            "v1", "PersistentVolumeClaim", storage_selector(volume_name, self.component_name)
        )
        if len(claims) > 1:
            raise AdapterError(f"more than 1 PVC found with the storage label {volume_name}")
        if claims:
            name = claims[0]["metadata"]["name"]
            _LOG.debug("Found an existing PVC for %s, PVC %s will be re-used", volume_name, name)
            return name
        return None

    def reconcile(
        self, desired: ComponentConfig, storages: List[StorageConfig], component_exists: bool
    ) -> Dict[str, Any]:
        """Create or update the component; returns the live Deployment."""

        body = desired.to_deployment().to_dict()
        if component_exists:
            _LOG.debug("The component already exists, attempting to update it")
            deployment = self.api.replace(body)
            _LOG.info("Updated component %s", self.component_name)
        else:
            deployment = self.api.create(body)
            _LOG.info("Created component %s", self.component_name)

        owner = owner_reference(deployment)
        self.reconcile_service(desired, owner)
        self.create_missing_pvcs(storages, owner)
        return deployment

    def reconcile_service(self, desired: ComponentConfig, owner: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        service = desired.to_service().to_dict()
        live = self.api.get("v1", "Service", self.component_name)

        if not service["spec"]["ports"]:
            if live is not None:
                _LOG.debug("No ports declared, removing Service %s", self.component_name)
                self.api.delete("v1", "Service", self.component_name)
            return None

        service["metadata"] = with_owner(service["metadata"], [owner])
        if live is None:
            created = self.api.create(service)
            _LOG.debug("Created Service for component %s", self.component_name)
            return created

        service = copy.deepcopy(service)
        cluster_ip = (live.get("spec") or {}).get("clusterIP")
        if cluster_ip:
            service["spec"]["clusterIP"] = cluster_ip
        resource_version = live.get("metadata", {}).get("resourceVersion")
        if resource_version:
            service["metadata"]["resourceVersion"] = resource_version
        updated = self.api.replace(service)
        _LOG.debug("Updated Service for component %s", self.component_name)
        return updated

    def create_missing_pvcs(self, storages: List[StorageConfig], owner: Dict[str, Any]) -> List[Dict[str, Any]]:
        created: List[Dict[str, Any]] = []
        for storage in storages:
            if self.api.get("v1", "PersistentVolumeClaim", storage.pvc_name) is not None:
                continue
            body = storage.to_resource().to_dict()
            body["metadata"] = with_owner(body["metadata"], [owner])
            created.append(self.api.create(body))
            _LOG.info("Created PVC %s for volume %s", storage.pvc_name, storage.volume_name)
        return created

    def delete_component(self, label_selector: str) -> int:
        """Delete the component's Deployments; owner references cascade the rest."""

        deployments = self.api.list("apps/v1", "Deployment", label_selector)
        for deployment in deployments:
            self.api.delete(
                "apps/v1", "Deployment", deployment["metadata"]["name"], propagation_policy="Background"
            )
        return len(deployments)
