"""Image builds from local sources.

Two strategies are supported. On clusters that serve BuildConfigs the build
context is streamed into a Docker strategy BuildConfig with a binary input.
Elsewhere, or when a rootless build is requested, a throwaway pod runs the
Kaniko executor on a build context copied into its init container.

Both strategies create ephemeral cluster objects that are deleted on every
exit path, including SIGINT and SIGTERM received mid-build.
"""
from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..config import AdapterContext, BuildParameters
from ..errors import AdapterError, BuildFailedError, BuildInterruptedError, DevfileValidationError, WaitTimeoutError
from ..interrupt import CancellationToken, InterruptSupervisor
from ..kube import BUILD_API_VERSION, POD_SUCCEEDED, ClusterAPI, ComponentInfo
from ..resources.base import component_selector
from ..resources.build import (
    BUILD_CONTEXT_MOUNT_PATH,
    BUILDER_CONTAINER_NAME,
    COMPLETION_FILE,
    INIT_CONTAINER_NAME,
    LATEST_TAG,
    BuildConfigSpec,
    BuilderPodSpec,
    image_stream,
)
from ..resources.secret import REGISTRY_SECRET_NAME, RegistrySecretConfig
from ..sync import SyncAdapter

_LOG = logging.getLogger(__name__)

INTERNAL_REGISTRY_HOST = "image-registry.openshift-image-registry.svc:5000"
BUILD_TIMEOUT = 5 * 60
BUILD_POD_SUFFIX = "-build"


class BuildStrategy(str, Enum):
    BUILD_CONFIG = "buildconfig"
    KANIKO = "kaniko"


@dataclass
class BuildResult:
    """Outcome of a successful build."""

    strategy: BuildStrategy
    image: str
    build_name: str = ""


def is_internal_registry(tag: str) -> bool:
    """Return whether ``tag`` targets the cluster's internal registry.

    The tag must read ``registry/namespace/repository[:tag]``.
    """

    segments = tag.split("/")
    if len(segments) != 3:
        raise DevfileValidationError(f"invalid image tag '{tag}', must contain 3 components")
    return segments[0] == INTERNAL_REGISTRY_HOST


class BuildPipeline:
    """Builds a component image with whichever strategy the cluster allows."""

    def __init__(self, api: ClusterAPI, context: AdapterContext, sync: SyncAdapter) -> None:
        self.api = api
        self.context = context
        self.sync = sync
        self.timeout: float = BUILD_TIMEOUT

    @property
    def component_name(self) -> str:
        return self.context.component_name

    def select_strategy(self, params: BuildParameters) -> BuildStrategy:
        if not params.rootless and self.api.is_build_config_supported():
            return BuildStrategy.BUILD_CONFIG
        return BuildStrategy.KANIKO

    def build(self, params: BuildParameters, token: Optional[CancellationToken] = None) -> BuildResult:
        strategy = self.select_strategy(params)
        if params.tag:
            internal = is_internal_registry(params.tag)
        elif strategy is BuildStrategy.KANIKO:
            raise DevfileValidationError("an image tag is required when building without a BuildConfig")
        else:
            # Output goes to an ImageStreamTag in the internal registry.
            internal = True

        if not internal:
            self.ensure_registry_secret(params)

        _LOG.debug("Building %s with the %s strategy", self.component_name, strategy.value)
        if strategy is BuildStrategy.BUILD_CONFIG:
            result = self._run_build_config(params, internal, token)
        else:
            result = self._run_kaniko(params, internal, token)
        _LOG.info("Successfully built container image: %s", result.image)
        return result

    def ensure_registry_secret(self, params: BuildParameters) -> Dict[str, Any]:
        """Create the push secret from the local registry config unless it already exists."""

        config = RegistrySecretConfig.from_docker_config(params.docker_config_path)
        definition = config.to_resource(self.api.namespace)
        _LOG.info("Ensuring Secret %s", definition.name)
        return self.api.get_or_create(definition.to_dict())

    def _run_build_config(
        self, params: BuildParameters, internal: bool, token: Optional[CancellationToken]
    ) -> BuildResult:
        name = self.component_name
        tag = params.tag
        output_kind = "DockerImage"
        if not tag:
            tag = f"{name}:{LATEST_TAG}"
            output_kind = "ImageStreamTag"
            self.api.get_or_create(image_stream(name).to_dict())

        spec = BuildConfigSpec(
            name=name,
            tag=tag,
            output_kind=output_kind,
            push_secret=None if internal else REGISTRY_SECRET_NAME,
        )
        # Deleting the BuildConfig cascades to the builds started from it.
        cleanup = functools.partial(
            self.api.delete, BUILD_API_VERSION, "BuildConfig", name, propagation_policy="Background"
        )
        with InterruptSupervisor(cleanup, "build", token) as guard:
            self.api.create(spec.to_resource().to_dict())
            archive = self.sync.build_context_archive(params.ignored_files, spec.dockerfile_path)
            guard.token.raise_if_cancelled()

            build = self.api.instantiate_binary_build(name, archive)
            guard.token.raise_if_cancelled()
            build_name = build["metadata"]["name"]
            _LOG.info("Started build %s using BuildConfig", build_name)
            try:
                self.api.wait_for_build_to_finish(build_name, self.timeout, token=guard.token)
            except BuildFailedError as exc:
                raise BuildFailedError(f"unable to build image using BuildConfig {name}", exc.output) from exc
            guard.token.raise_if_cancelled()
        return BuildResult(strategy=BuildStrategy.BUILD_CONFIG, image=tag, build_name=build_name)

    def _run_kaniko(self, params: BuildParameters, internal: bool, token: Optional[CancellationToken]) -> BuildResult:
        pod_name = f"{self.component_name}{BUILD_POD_SUFFIX}"
        spec = BuilderPodSpec(
            name=pod_name,
            tag=params.tag,
            registry_secret=None if internal else REGISTRY_SECRET_NAME,
        )
        selector = component_selector(pod_name)
        cleanup = functools.partial(self.api.delete, "v1", "Pod", pod_name)

        with InterruptSupervisor(cleanup, "build", token) as guard:
            self.api.create(spec.to_resource().to_dict())
            pod = self.api.wait_for_init_container_started(selector, INIT_CONTAINER_NAME, token=guard.token)
            info = ComponentInfo(pod_name=pod["metadata"]["name"], container_name=INIT_CONTAINER_NAME)

            _LOG.info("Syncing build context to %s", info.pod_name)
            archive = self.sync.build_context_archive(params.ignored_files)
            guard.token.raise_if_cancelled()
            self.api.extract_project_to_component(info, BUILD_CONTEXT_MOUNT_PATH, archive)
            self.api.exec_in_container(info, ["touch", COMPLETION_FILE])
            _LOG.info("Started builder pod %s using Kaniko Build strategy", info.pod_name)

            try:
                self.api.wait_and_get_pod(selector, POD_SUCCEEDED, token=guard.token)
            except BuildInterruptedError:
                raise
            except WaitTimeoutError as exc:
                raise WaitTimeoutError(str(exc), self._builder_log(info.pod_name)) from exc
            except AdapterError as exc:
                raise BuildFailedError(
                    f"unable to build image using Kaniko: {exc}", self._builder_log(info.pod_name)
                ) from exc
            guard.token.raise_if_cancelled()
        return BuildResult(strategy=BuildStrategy.KANIKO, image=params.tag, build_name=pod_name)

    def _builder_log(self, pod_name: str) -> str:
        try:
            return "".join(self.api.pod_logs(pod_name, BUILDER_CONTAINER_NAME))
        except AdapterError as exc:
            _LOG.debug("Unable to read builder log of %s: %s", pod_name, exc)
            return ""
