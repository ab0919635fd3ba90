"""Low-level Kubernetes client helpers for the devfile adapter."""
from __future__ import annotations

import copy
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, TypeVar

from kubernetes import client, config
from kubernetes.client import ApiException
from kubernetes.dynamic import DynamicClient, ResourceInstance
from kubernetes.dynamic.exceptions import ResourceNotFoundError as DiscoveryError
from kubernetes.stream import stream

from .config import ClusterContext
from .errors import (
    AdapterError,
    BuildFailedError,
    ClusterOperationError,
    CommandExecutionError,
    WaitTimeoutError,
)
from .interrupt import CancellationToken

_LOG = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_WAIT_TIMEOUT = 240
POD_RUNNING = "Running"
POD_SUCCEEDED = "Succeeded"
POD_FAILED = "Failed"

BUILD_API_VERSION = "build.openshift.io/v1"
_BUILD_DONE = "Complete"
_BUILD_FAILED = ("Failed", "Error", "Cancelled")


@dataclass
class ComponentInfo:
    """Where a command runs: a container in a pod, plus the mounted source path."""

    pod_name: str
    container_name: str = ""
    source_mount: str = ""


@contextmanager
def _wrap_api_errors(description: str) -> Iterator[None]:
    try:
        yield
    except ApiException as exc:
        raise ClusterOperationError(f"unable to {description}", exc) from exc


def current_namespace(kubeconfig: Optional[str] = None, context: Optional[str] = None) -> str:
    """Namespace of the selected kubeconfig context, falling back to ``default``."""

    contexts, active = config.list_kube_config_contexts(config_file=kubeconfig)
    selected = active
    if context:
        selected = next((entry for entry in contexts if entry.get("name") == context), None)
        if selected is None:
            raise AdapterError(f"context {context} not found in kubeconfig")
    return ((selected or {}).get("context") or {}).get("namespace") or "default"


def _as_dict(instance: Any) -> Dict[str, Any]:
    return instance.to_dict() if isinstance(instance, ResourceInstance) else instance


class ClusterAPI:
    """Wrapper around the Kubernetes dynamic client with component-specific helpers."""

    poll_interval = 1.0

    def __init__(self, context: ClusterContext) -> None:
        self.context = context
        api_client = config.new_client_from_config(
            config_file=context.kubeconfig,
            context=context.context,
        )
        api_client.configuration.verify_ssl = context.verify_ssl
        self.api_client = api_client
        self.dynamic = DynamicClient(api_client)
        self.core_v1 = client.CoreV1Api(api_client)
        self._sleep: Callable[[float], None] = time.sleep
        self._clock: Callable[[], float] = time.monotonic

    @property
    def namespace(self) -> str:
        if not self.context.namespace:
            raise ValueError("Namespace must be provided to work with component resources.")
        return self.context.namespace

    def _resource(self, api_version: str, kind: str) -> Any:
        """Discover the API resource serving ``kind``; its ``name`` is the plural used in URLs."""

        try:
            return self.dynamic.resources.get(api_version=api_version, kind=kind)
        except DiscoveryError as exc:
            raise ClusterOperationError(f"resource {api_version} {kind} is not available on the cluster") from exc

    def is_resource_supported(self, api_version: str, kind: str) -> bool:
        try:
            self.dynamic.resources.get(api_version=api_version, kind=kind)
        except DiscoveryError:
            return False
        return True

    def get(self, api_version: str, kind: str, name: str) -> Optional[Dict[str, Any]]:
        """Return the live object, or None when it does not exist."""

        resource = self._resource(api_version, kind)
        try:
            return _as_dict(resource.get(name=name, namespace=self.namespace))
        except ApiException as exc:
            if exc.status == 404:
                return None
            raise ClusterOperationError(f"unable to get {kind} {name}", exc) from exc

    def list(self, api_version: str, kind: str, label_selector: Optional[str] = None) -> List[Dict[str, Any]]:
        resource = self._resource(api_version, kind)
        with _wrap_api_errors(f"list {kind} matching {label_selector or 'all'}"):
            result = resource.get(namespace=self.namespace, label_selector=label_selector)
        return _as_dict(result).get("items", []) or []

    def create(self, body: Dict[str, Any]) -> Dict[str, Any]:
        resource = self._resource(body["apiVersion"], body["kind"])
        name = body.get("metadata", {}).get("name")
        _LOG.debug("Creating %s/%s", body["kind"], name)
        with _wrap_api_errors(f"create {body['kind']} {name}"):
            return _as_dict(resource.create(body=body, namespace=self.namespace))

    def replace(self, body: Dict[str, Any]) -> Dict[str, Any]:
        resource = self._resource(body["apiVersion"], body["kind"])
        name = body["metadata"]["name"]
        _LOG.debug("Updating %s/%s", body["kind"], name)
        with _wrap_api_errors(f"update {body['kind']} {name}"):
            return _as_dict(resource.replace(name=name, namespace=self.namespace, body=body))

    def delete(
        self,
        api_version: str,
        kind: str,
        name: str,
        missing_ok: bool = True,
        propagation_policy: Optional[str] = None,
    ) -> None:
        """Delete a resource, tolerating its absence unless ``missing_ok`` is False."""

        resource = self._resource(api_version, kind)
        body = {"propagationPolicy": propagation_policy} if propagation_policy else None
        try:
            resource.delete(name=name, namespace=self.namespace, body=body)
            _LOG.info("Deleted %s/%s", kind, name)
        except ApiException as exc:
            if exc.status != 404 or not missing_ok:
                raise ClusterOperationError(f"unable to delete {kind} {name}", exc) from exc
            _LOG.debug("Resource %s/%s not found during delete", kind, name)

    def get_or_create(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Return the live object named by ``body``, creating it when it is missing."""

        kind = body["kind"]
        name = body["metadata"]["name"]
        resource = self._resource(body["apiVersion"], kind)
        try:
            return _as_dict(resource.get(name=name, namespace=self.namespace))
        except ApiException as exc:
            if exc.status not in (401, 403, 404):
                raise ClusterOperationError(f"unable to get {kind} {name}", exc) from exc
            if exc.status != 404:
                _LOG.info("Insufficient permissions to read %s/%s; attempting create", kind, name)

        try:
            return _as_dict(resource.create(body=body, namespace=self.namespace))
        except ApiException as exc:
            if exc.status != 409:
                raise ClusterOperationError(f"unable to create {kind} {name}", exc) from exc
        _LOG.debug("%s/%s already exists", kind, name)
        return copy.deepcopy(body)

    # Waits

    def _poll(
        self,
        check: Callable[[], Optional[T]],
        timeout: float,
        description: str,
        token: Optional[CancellationToken] = None,
    ) -> T:
        deadline = self._clock() + timeout
        while True:
            if token is not None:
                token.raise_if_cancelled()
            result = check()
            if result is not None:
                return result
            if self._clock() >= deadline:
                raise WaitTimeoutError(f"timed out after {timeout:g}s waiting for {description}")
            self._sleep(self.poll_interval)

    def wait_for_deployment_rollout(self, name: str, timeout: float = DEFAULT_WAIT_TIMEOUT) -> Dict[str, Any]:
        def _rolled_out() -> Optional[Dict[str, Any]]:
            deployment = self.get("apps/v1", "Deployment", name)
            if deployment is None:
                return None
            status = deployment.get("status") or {}
            for condition in status.get("conditions") or []:
                if condition.get("type") == "Progressing" and condition.get("reason") == "ProgressDeadlineExceeded":
                    raise AdapterError(f"deployment {name} exceeded its progress deadline")
            generation = deployment.get("metadata", {}).get("generation", 0)
            replicas = deployment.get("spec", {}).get("replicas", 1)
            if (
                status.get("observedGeneration", 0) >= generation
                and status.get("updatedReplicas", 0) == replicas
                and status.get("availableReplicas", 0) == replicas
            ):
                return deployment
            return None

        _LOG.info("Waiting for deployment %s to roll out", name)
        return self._poll(_rolled_out, timeout, f"deployment {name} rollout")

    def get_pod(self, label_selector: str) -> Optional[Dict[str, Any]]:
        """Return the first non-terminating pod matching the selector."""

        for pod in self.list("v1", "Pod", label_selector):
            if not pod.get("metadata", {}).get("deletionTimestamp"):
                return pod
        return None

    def wait_and_get_pod(
        self,
        label_selector: str,
        phase: str = POD_RUNNING,
        timeout: float = DEFAULT_WAIT_TIMEOUT,
        token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        def _in_phase() -> Optional[Dict[str, Any]]:
            pod = self.get_pod(label_selector)
            if pod is None:
                return None
            current = (pod.get("status") or {}).get("phase")
            if current == phase:
                return pod
            if current == POD_FAILED:
                raise AdapterError(f"pod {pod['metadata']['name']} failed while waiting for phase {phase}")
            return None

        return self._poll(_in_phase, timeout, f"pod matching {label_selector} to be {phase}", token)

    def wait_for_init_container_started(
        self,
        label_selector: str,
        container_name: str,
        timeout: float = DEFAULT_WAIT_TIMEOUT,
        token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        def _started() -> Optional[Dict[str, Any]]:
            pod = self.get_pod(label_selector)
            if pod is None:
                return None
            for status in (pod.get("status") or {}).get("initContainerStatuses") or []:
                if status.get("name") == container_name and (status.get("state") or {}).get("running"):
                    return pod
            return None

        return self._poll(_started, timeout, f"init container {container_name} to start", token)

    # In-container operations

    def exec_in_container(
        self, info: ComponentInfo, command: Sequence[str], show: bool = False
    ) -> Tuple[str, str]:
        """Run ``command`` in the target container and return its stdout and stderr."""

        _LOG.debug("Executing %s in %s/%s", command, info.pod_name, info.container_name)
        with _wrap_api_errors(f"exec into pod {info.pod_name}"):
            resp = stream(
                self.core_v1.connect_get_namespaced_pod_exec,
                info.pod_name,
                self.namespace,
                container=info.container_name,
                command=list(command),
                stderr=True,
                stdin=False,
                stdout=True,
                tty=False,
                _preload_content=False,
            )
        stdout: List[str] = []
        stderr: List[str] = []
        while resp.is_open():
            resp.update(timeout=1)
            if resp.peek_stdout():
                chunk = resp.read_stdout()
                stdout.append(chunk)
                if show:
                    _LOG.info(chunk.rstrip())
            if resp.peek_stderr():
                chunk = resp.read_stderr()
                stderr.append(chunk)
                if show:
                    _LOG.info(chunk.rstrip())
        resp.close()
        out, err = "".join(stdout), "".join(stderr)
        if resp.returncode:
            raise CommandExecutionError(command, out, err, reason=f"exit code {resp.returncode}")
        return out, err

    def extract_project_to_component(self, info: ComponentInfo, target_path: str, archive: bytes) -> None:
        """Stream a tar archive into ``target_path`` inside the target container."""

        command = ["tar", "xf", "-", "-C", target_path, "--no-same-owner"]
        with _wrap_api_errors(f"copy files into pod {info.pod_name}"):
            resp = stream(
                self.core_v1.connect_get_namespaced_pod_exec,
                info.pod_name,
                self.namespace,
                container=info.container_name,
                command=command,
                stderr=True,
                stdin=True,
                stdout=True,
                tty=False,
                _preload_content=False,
            )
        errors: List[str] = []
        written = False
        deadline = self._clock() + DEFAULT_WAIT_TIMEOUT
        # tar exits on the end-of-archive blocks, which closes the stream
        while resp.is_open():
            resp.update(timeout=1)
            if resp.peek_stderr():
                errors.append(resp.read_stderr())
            if not written:
                resp.write_stdin(archive)
                written = True
            elif self._clock() >= deadline:
                resp.close()
                raise WaitTimeoutError(f"timed out copying files into pod {info.pod_name}", "".join(errors))
        resp.close()
        stderr = "".join(errors)
        if resp.returncode:
            raise CommandExecutionError(command, stderr=stderr, reason=f"exit code {resp.returncode}")
        if stderr:
            _LOG.debug("tar reported: %s", stderr.rstrip())

    def pod_logs(self, pod_name: str, container_name: str, follow: bool = False) -> Iterator[str]:
        with _wrap_api_errors(f"read logs of pod {pod_name}"):
            response = self.core_v1.read_namespaced_pod_log(
                name=pod_name,
                namespace=self.namespace,
                container=container_name,
                follow=follow,
                _preload_content=False,
            )
        for line in response:
            yield line.decode("utf-8", errors="replace") if isinstance(line, bytes) else line

    # OpenShift builds

    def is_build_config_supported(self) -> bool:
        return self.is_resource_supported(BUILD_API_VERSION, "BuildConfig")

    def instantiate_binary_build(self, build_config_name: str, archive: bytes) -> Dict[str, Any]:
        """Trigger a build of ``build_config_name`` using ``archive`` as its binary input."""

        path = (
            f"/apis/build.openshift.io/v1/namespaces/{self.namespace}"
            f"/buildconfigs/{build_config_name}/instantiatebinary"
        )
        with _wrap_api_errors(f"start build from BuildConfig {build_config_name}"):
            return self.api_client.call_api(
                path,
                "POST",
                header_params={"Content-Type": "application/octet-stream", "Accept": "application/json"},
                body=archive,
                response_type="object",
                auth_settings=["BearerToken"],
                _return_http_data_only=True,
            )

    def build_log(self, build_name: str) -> str:
        path = f"/apis/build.openshift.io/v1/namespaces/{self.namespace}/builds/{build_name}/log"
        try:
            log = self.api_client.call_api(
                path,
                "GET",
                response_type="str",
                auth_settings=["BearerToken"],
                _return_http_data_only=True,
            )
        except ApiException as exc:
            _LOG.debug("Unable to read log of build %s: %s", build_name, exc)
            return ""
        return log or ""

    def wait_for_build_to_finish(
        self, build_name: str, timeout: float, token: Optional[CancellationToken] = None
    ) -> Dict[str, Any]:
        def _finished() -> Optional[Dict[str, Any]]:
            build = self.get(BUILD_API_VERSION, "Build", build_name)
            phase = ((build or {}).get("status") or {}).get("phase")
            if phase == _BUILD_DONE:
                return build
            if phase in _BUILD_FAILED:
                raise BuildFailedError(f"build {build_name} finished with phase {phase}", self.build_log(build_name))
            return None

        try:
            return self._poll(_finished, timeout, f"build {build_name} to finish", token)
        except WaitTimeoutError as exc:
            raise WaitTimeoutError(str(exc), self.build_log(build_name)) from exc

    # Routes and ingresses

    def get_application_url(self, label_selector: str) -> str:
        """Return the externally reachable URL of the workload matching ``label_selector``."""

        if self.is_resource_supported("route.openshift.io/v1", "Route"):
            for route in self.list("route.openshift.io/v1", "Route", label_selector):
                spec = route.get("spec") or {}
                if spec.get("host"):
                    scheme = "https" if spec.get("tls") else "http"
                    return f"{scheme}://{spec['host']}{spec.get('path', '')}"
        for ingress in self.list("networking.k8s.io/v1", "Ingress", label_selector):
            spec = ingress.get("spec") or {}
            for rule in spec.get("rules") or []:
                if rule.get("host"):
                    scheme = "https" if spec.get("tls") else "http"
                    return f"{scheme}://{rule['host']}"
        raise AdapterError(f"no route or ingress found matching {label_selector}")
