"""Component adapter: push, build, deploy and the smaller day-to-day operations."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .commands import CommandGraph
from .config import AdapterContext, BuildParameters, DeployParameters, PushParameters
from .devfile import Command, CommandGroupKind, Devfile
from .errors import AdapterError, ClusterOperationError, DevfileValidationError, ResourceNotFoundError
from .interrupt import CancellationToken
from .kube import POD_RUNNING, ClusterAPI, ComponentInfo
from .operations.build import BuildPipeline, BuildResult
from .operations.deploy import DeployResult, ManifestApplier
from .operations.execute import CommandExecutionEngine, PushContext
from .operations.reconcile import ResourceReconciler
from .resources.base import component_labels, component_selector
from .resources.component import SOURCE_VOLUME, ComponentConfig
from .resources.storage import StorageConfig
from .sync import SyncAdapter, SyncParameters

_LOG = logging.getLogger(__name__)


class ComponentAdapter:
    """Drives a devfile component on a cluster."""

    def __init__(self, api: ClusterAPI, context: AdapterContext, devfile: Devfile) -> None:
        self.api = api
        self.context = context
        self.devfile = devfile
        self.graph = CommandGraph(devfile)
        self.reconciler = ResourceReconciler(api, context)
        self.sync = SyncAdapter(api, context.context_dir)
        self.engine = CommandExecutionEngine(api, self.graph)
        self.builder = BuildPipeline(api, context, self.sync)
        self.applier = ManifestApplier(api, context)

    @property
    def component_name(self) -> str:
        return self.context.component_name

    @property
    def selector(self) -> str:
        return component_selector(self.component_name)

    # Push

    def push(self, params: PushParameters) -> PushContext:
        """Create or update the component, sync sources and run its commands."""

        component_exists = self.reconciler.component_exists()
        previous_pod = None
        if component_exists:
            previous_pod = self.api.wait_and_get_pod(self.selector)["metadata"]["name"]

        _LOG.info("Validating the devfile")
        commands = self.graph.validate_push_commands(params.init_command, params.build_command, params.run_command)
        if params.debug:
            commands[CommandGroupKind.DEBUG] = self.graph.validate_debug_command(params.debug_command)
        containers = self.devfile.get_containers()
        if not any(container.mount_sources for container in containers):
            raise DevfileValidationError(
                "In order to sync files, at least one component in a devfile must set 'mountSources: true'"
            )

        ctx = PushContext(
            commands=commands,
            debug=params.debug,
            debug_port=params.debug_port,
            show=params.show,
            component_exists=component_exists,
        )

        _LOG.info("Creating Kubernetes resources for component %s", self.component_name)
        storages = self.reconciler.bind_volumes(containers, self.devfile.get_volumes())
        self.reconciler.reconcile(self.desired_component(ctx, storages), storages, component_exists)
        self.api.wait_for_deployment_rollout(self.component_name)
        pod = self.api.wait_and_get_pod(self.selector)
        ctx.pod_changed = component_exists and previous_pod != pod["metadata"]["name"]

        _LOG.info("Syncing to component %s", self.component_name)
        execution_required = self.sync.sync_files(
            SyncParameters(
                comp_info=self.source_target(pod),
                component_exists=component_exists,
                pod_changed=ctx.pod_changed,
                force_build=params.force_build or params.debug,
                ignored_files=list(params.ignored_files),
            )
        )

        post_start = self.devfile.get_events().post_start
        if not component_exists and post_start:
            _LOG.info("Executing postStart event commands for component %s", self.component_name)
            self.engine.run_events(post_start, pod["metadata"]["name"])

        if execution_required:
            _LOG.info("Executing devfile commands for component %s", self.component_name)
            self.engine.run_push_commands(ctx, pod)
        return ctx

    def desired_component(self, ctx: PushContext, storages: List[StorageConfig]) -> ComponentConfig:
        run = ctx.commands[CommandGroupKind.RUN]
        debug = ctx.commands.get(CommandGroupKind.DEBUG)
        return ComponentConfig(
            name=self.component_name,
            application=self.context.application,
            namespace=self.context.namespace,
            component_type=self.devfile.metadata.name,
            labels=component_labels(self.component_name, self.context.application, self.devfile.metadata.name),
            containers=self.devfile.get_containers(),
            volume_bindings={storage.volume_name: storage.pvc_name for storage in storages},
            run_command=run.exec_,
            debug_command=debug.exec_ if debug is not None else None,
            debug_port=ctx.debug_port,
        )

    @staticmethod
    def source_target(pod: Dict[str, Any]) -> ComponentInfo:
        """Return the first container of ``pod`` that mounts the source volume."""

        for container in pod["spec"]["containers"]:
            for mount in container.get("volumeMounts") or []:
                if mount.get("name") == SOURCE_VOLUME:
                    return ComponentInfo(
                        pod_name=pod["metadata"]["name"],
                        container_name=container["name"],
                        source_mount=mount["mountPath"],
                    )
        raise DevfileValidationError(
            f"no container of pod {pod['metadata']['name']} mounts the project source volume"
        )

    # Build and deploy

    def build(self, params: BuildParameters, token: Optional[CancellationToken] = None) -> BuildResult:
        return self.builder.build(params, token)

    def deploy(self, params: DeployParameters) -> DeployResult:
        return self.applier.deploy(params)

    def deploy_delete(self, manifest_source: bytes) -> List[Tuple[str, str]]:
        return self.applier.deploy_delete(manifest_source)

    # Day-to-day operations

    def delete(self) -> bool:
        """Delete the component; returns False when there was nothing to delete."""

        try:
            component_exists = self.reconciler.component_exists()
        except ClusterOperationError as exc:
            if not exc.is_forbidden:
                raise
            _LOG.warning("%s", exc)
            return False
        if not component_exists:
            _LOG.warning("Component %s does not exist", self.component_name)
            return False
        self.reconciler.delete_component(self.selector)
        _LOG.info("Successfully deleted component %s", self.component_name)
        return True

    def exec(self, command: Sequence[str]) -> Tuple[str, str]:
        if not self.reconciler.component_exists():
            raise ResourceNotFoundError(f"the component {self.component_name} doesn't exist on the cluster")
        container = self._container_of(self._group_command(CommandGroupKind.RUN))
        pod = self._running_pod("exec")
        info = ComponentInfo(pod_name=pod["metadata"]["name"], container_name=container)
        return self.api.exec_in_container(info, command, show=True)

    def test(self, test_command: str = "", show: bool = False) -> None:
        pod = self._running_pod("test")
        command = self.graph.validate_test_command(test_command)
        _LOG.info("Executing devfile test command for component %s", self.component_name)
        self.engine.run_test(command, pod["metadata"]["name"], show)

    def log(self, follow: bool = False, debug: bool = False) -> Iterator[str]:
        pod = self._running_pod("show logs")
        kind = CommandGroupKind.DEBUG if debug else CommandGroupKind.RUN
        container = self._container_of(self._group_command(kind))
        return self.api.pod_logs(pod["metadata"]["name"], container, follow=follow)

    def _group_command(self, kind: CommandGroupKind) -> Command:
        command = self.graph.find_by_group(kind)
        if command is None:
            raise DevfileValidationError(f'the command group of kind "{kind.value}" is not found in the devfile')
        return command

    def _container_of(self, command: Command) -> str:
        for leaf in self.graph.leaves(command):
            return leaf.component
        raise DevfileValidationError(f'the command "{command.id}" does not run in any container')

    def _running_pod(self, action: str) -> Dict[str, Any]:
        pod = self.api.get_pod(self.selector)
        if pod is None:
            raise ResourceNotFoundError(f"the component {self.component_name} doesn't exist on the cluster")
        phase = (pod.get("status") or {}).get("phase")
        if phase != POD_RUNNING:
            raise AdapterError(
                f"unable to {action}, component {self.component_name} is not in running state, current status={phase}"
            )
        return pod
