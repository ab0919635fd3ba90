import copy
import itertools
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from kubernetes.client import ApiException

from devfile_adapter.config import AdapterContext
from devfile_adapter.devfile import Devfile
from devfile_adapter.errors import (
    AdapterError,
    BuildFailedError,
    ClusterOperationError,
    CommandExecutionError,
    WaitTimeoutError,
)
from devfile_adapter.kube import ComponentInfo

NODEJS_DEVFILE = """
schemaVersion: 2.0.0
metadata:
  name: nodejs
components:
  - name: runtime
    container:
      image: node:14
      endpoints:
        - name: http-3000
          targetPort: 3000
commands:
  - id: run
    exec:
      component: runtime
      commandLine: npm start
      workingDir: /projects
      group:
        kind: run
        isDefault: true
"""


def _matches(labels: Dict[str, str], selector: Optional[str]) -> bool:
    if not selector:
        return True
    for term in selector.split(","):
        key, _, value = term.partition("=")
        if labels.get(key) != value:
            return False
    return True


def _check(token) -> None:
    if token is not None:
        token.raise_if_cancelled()


class FakeCluster:
    """In-memory stand-in for ClusterAPI."""

    namespace = "dev"

    def __init__(self) -> None:
        self.objects: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str, str]] = []
        self.execs: List[Tuple[str, str, List[str]]] = []
        self.extracts: List[Tuple[str, str, str, bytes]] = []
        self.hooks: Dict[str, Callable[..., None]] = {}
        self.exec_failures: Dict[str, Exception] = {}
        self.build_config_supported = True
        self.build_phase = "Complete"
        self.builder_pod_phase = "Succeeded"
        self.application_url: Optional[str] = None
        self.forbidden = False
        self._uids = itertools.count(1)
        self._pods = itertools.count(1)

    # helpers

    def _hook(self, name: str, *args: Any) -> None:
        hook = self.hooks.get(name)
        if hook is not None:
            hook(*args)

    def objects_of(self, kind: str) -> List[Dict[str, Any]]:
        return [obj for (obj_kind, _), obj in self.objects.items() if obj_kind == kind]

    def verbs(self, kind: str) -> List[str]:
        return [verb for verb, call_kind, _ in self.calls if call_kind == kind]

    def _sync_pod(self, deployment: Dict[str, Any], previous: Optional[Dict[str, Any]]) -> None:
        name = deployment["metadata"]["name"]
        template = deployment["spec"]["template"]
        if previous is not None and previous["spec"]["template"] == template:
            return
        for pod in self.objects_of("Pod"):
            if pod["metadata"].get("labels", {}).get("component") == name:
                del self.objects[("Pod", pod["metadata"]["name"])]
        pod_name = f"{name}-{next(self._pods)}"
        self.objects[("Pod", pod_name)] = {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {"name": pod_name, "labels": dict((template.get("metadata") or {}).get("labels") or {})},
            "spec": copy.deepcopy(template.get("spec") or {}),
            "status": {"phase": "Running"},
        }

    # ClusterAPI surface

    def get(self, api_version: str, kind: str, name: str) -> Optional[Dict[str, Any]]:
        self._hook("get", kind, name)
        if self.forbidden:
            raise ClusterOperationError(f"unable to get {kind} {name}", ApiException(status=403, reason="Forbidden"))
        obj = self.objects.get((kind, name))
        return copy.deepcopy(obj) if obj is not None else None

    def list(self, api_version: str, kind: str, label_selector: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(obj)
            for obj in self.objects_of(kind)
            if _matches(obj["metadata"].get("labels") or {}, label_selector)
        ]

    def create(self, body: Dict[str, Any]) -> Dict[str, Any]:
        kind, name = body["kind"], body["metadata"]["name"]
        self.calls.append(("create", kind, name))
        self._hook("create", body)
        if (kind, name) in self.objects:
            raise ClusterOperationError(f"unable to create {kind} {name}: 409 Conflict")
        obj = copy.deepcopy(body)
        obj["metadata"]["uid"] = f"uid-{next(self._uids)}"
        obj["metadata"]["resourceVersion"] = "1"
        if kind == "Service":
            obj["spec"].setdefault("clusterIP", "10.0.0.5")
        if kind == "Pod":
            obj["status"] = {
                "phase": "Pending",
                "initContainerStatuses": [
                    {"name": container["name"], "state": {"running": {}}}
                    for container in obj["spec"].get("initContainers", [])
                ],
            }
        self.objects[(kind, name)] = obj
        if kind == "Deployment":
            self._sync_pod(obj, None)
        return copy.deepcopy(obj)

    def replace(self, body: Dict[str, Any]) -> Dict[str, Any]:
        kind, name = body["kind"], body["metadata"]["name"]
        self.calls.append(("replace", kind, name))
        self._hook("replace", body)
        previous = self.objects.get((kind, name))
        if previous is None:
            raise ClusterOperationError(f"unable to update {kind} {name}: 404 Not Found")
        if kind == "Service" and not body["spec"].get("clusterIP"):
            raise ClusterOperationError(f"unable to update {kind} {name}: 422 spec.clusterIP is immutable")
        obj = copy.deepcopy(body)
        obj["metadata"]["uid"] = previous["metadata"]["uid"]
        obj["metadata"]["resourceVersion"] = str(int(previous["metadata"]["resourceVersion"]) + 1)
        self.objects[(kind, name)] = obj
        if kind == "Deployment":
            self._sync_pod(obj, previous)
        return copy.deepcopy(obj)

    def delete(
        self,
        api_version: str,
        kind: str,
        name: str,
        missing_ok: bool = True,
        propagation_policy: Optional[str] = None,
    ) -> None:
        self.calls.append(("delete", kind, name))
        self._hook("delete", kind, name)
        if (kind, name) not in self.objects:
            if not missing_ok:
                raise ClusterOperationError(f"unable to delete {kind} {name}: 404 Not Found")
            return
        del self.objects[(kind, name)]
        if kind == "Deployment":
            for key, obj in list(self.objects.items()):
                owners = obj["metadata"].get("ownerReferences") or []
                labels = obj["metadata"].get("labels") or {}
                if any(owner.get("name") == name for owner in owners) or (
                    key[0] == "Pod" and labels.get("component") == name
                ):
                    del self.objects[key]

    def get_or_create(self, body: Dict[str, Any]) -> Dict[str, Any]:
        existing = self.objects.get((body["kind"], body["metadata"]["name"]))
        if existing is not None:
            return copy.deepcopy(existing)
        return self.create(body)

    def is_build_config_supported(self) -> bool:
        return self.build_config_supported

    def instantiate_binary_build(self, name: str, archive: bytes) -> Dict[str, Any]:
        self.calls.append(("instantiate", "BuildConfig", name))
        self._hook("instantiate_binary_build", name, archive)
        return {"metadata": {"name": f"{name}-1"}}

    def wait_for_build_to_finish(self, build_name: str, timeout: float, token=None) -> Dict[str, Any]:
        self._hook("wait_for_build_to_finish", build_name, timeout)
        _check(token)
        if self.build_phase == "Timeout":
            raise WaitTimeoutError(f"timed out after {timeout:g}s waiting for build {build_name} to finish", "log")
        if self.build_phase != "Complete":
            raise BuildFailedError(f"build {build_name} finished with phase {self.build_phase}", "build log")
        return {"metadata": {"name": build_name}, "status": {"phase": "Complete"}}

    def wait_for_deployment_rollout(self, name: str, timeout: float = 0) -> Dict[str, Any]:
        deployment = self.objects.get(("Deployment", name))
        if deployment is None:
            raise WaitTimeoutError(f"deployment {name} not found")
        return copy.deepcopy(deployment)

    def get_pod(self, label_selector: str) -> Optional[Dict[str, Any]]:
        pods = self.list("v1", "Pod", label_selector)
        return pods[0] if pods else None

    def wait_and_get_pod(
        self, label_selector: str, phase: str = "Running", timeout: float = 0, token=None
    ) -> Dict[str, Any]:
        self._hook("wait_and_get_pod", label_selector, phase)
        _check(token)
        pod = self.get_pod(label_selector)
        if pod is None:
            raise WaitTimeoutError(f"no pod matching {label_selector}")
        if phase == "Succeeded":
            if self.builder_pod_phase == "Failed":
                raise AdapterError(f"pod {pod['metadata']['name']} failed while waiting for phase {phase}")
            if self.builder_pod_phase != "Succeeded":
                raise WaitTimeoutError(f"timed out waiting for pod matching {label_selector} to be {phase}")
            pod["status"]["phase"] = "Succeeded"
        return pod

    def wait_for_init_container_started(
        self, label_selector: str, container_name: str, timeout: float = 0, token=None
    ) -> Dict[str, Any]:
        self._hook("wait_for_init_container_started", label_selector, container_name)
        _check(token)
        pod = self.get_pod(label_selector)
        if pod is None:
            raise WaitTimeoutError(f"init container {container_name} never started")
        return pod

    def exec_in_container(self, info: ComponentInfo, command, show: bool = False) -> Tuple[str, str]:
        command = list(command)
        self.execs.append((info.pod_name, info.container_name, command))
        self._hook("exec_in_container", info, command)
        joined = " ".join(command)
        for needle, error in self.exec_failures.items():
            if needle in joined:
                raise error
        return "", ""

    def extract_project_to_component(self, info: ComponentInfo, target_path: str, archive: bytes) -> None:
        self.extracts.append((info.pod_name, info.container_name, target_path, archive))
        self._hook("extract_project_to_component", info, target_path)

    def pod_logs(self, pod_name: str, container_name: str, follow: bool = False):
        yield f"{pod_name}/{container_name} line 1\n"
        yield f"{pod_name}/{container_name} line 2\n"

    def get_application_url(self, label_selector: str) -> str:
        if self.application_url is None:
            raise AdapterError(f"no route or ingress found matching {label_selector}")
        return self.application_url


def exec_failure(command: str) -> CommandExecutionError:
    return CommandExecutionError(["/bin/sh", "-c", command], stderr="boom", reason="exit code 1")


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def context(tmp_path: Path) -> AdapterContext:
    (tmp_path / "server.js").write_text("console.log('hi')\n")
    return AdapterContext(component_name="nodejs", application="app", namespace="dev", context_dir=tmp_path)


@pytest.fixture
def nodejs_devfile() -> Devfile:
    return Devfile.from_yaml(NODEJS_DEVFILE)
