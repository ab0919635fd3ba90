import base64
import json
import os
import signal

import pytest

from devfile_adapter.config import BuildParameters
from devfile_adapter.errors import (
    BuildFailedError,
    BuildInterruptedError,
    ClusterOperationError,
    DevfileValidationError,
    WaitTimeoutError,
)
from devfile_adapter.interrupt import CancellationToken
from devfile_adapter.operations.build import (
    INTERNAL_REGISTRY_HOST,
    BuildPipeline,
    BuildStrategy,
    is_internal_registry,
)
from devfile_adapter.resources.build import BUILD_CONTEXT_MOUNT_PATH, COMPLETION_FILE, INIT_CONTAINER_NAME
from devfile_adapter.sync import SyncAdapter

INTERNAL_TAG = f"{INTERNAL_REGISTRY_HOST}/dev/nodejs:latest"
EXTERNAL_TAG = "quay.io/someone/nodejs:latest"


@pytest.fixture
def pipeline(cluster, context):
    (context.context_dir / "Dockerfile").write_text("FROM node:14\n")
    return BuildPipeline(cluster, context, SyncAdapter(cluster, context.context_dir))


@pytest.fixture
def docker_config(tmp_path):
    path = tmp_path / "docker-config.json"
    path.write_text(json.dumps({"auths": {"quay.io": {"auth": "dXNlcjpwYXNz"}}}))
    return path


def test_tag_validation() -> None:
    with pytest.raises(DevfileValidationError):
        is_internal_registry("myrepo/foo")
    assert is_internal_registry("image-registry.openshift-image-registry.svc:5000/ns/app:latest")
    assert not is_internal_registry(EXTERNAL_TAG)


def test_strategy_selection(cluster, pipeline) -> None:
    assert pipeline.select_strategy(BuildParameters(tag=INTERNAL_TAG)) is BuildStrategy.BUILD_CONFIG
    assert pipeline.select_strategy(BuildParameters(tag=INTERNAL_TAG, rootless=True)) is BuildStrategy.KANIKO
    cluster.build_config_supported = False
    assert pipeline.select_strategy(BuildParameters(tag=INTERNAL_TAG)) is BuildStrategy.KANIKO


def test_build_config_build_cleans_up_on_success(cluster, pipeline) -> None:
    result = pipeline.build(BuildParameters(tag=INTERNAL_TAG))

    assert result.strategy is BuildStrategy.BUILD_CONFIG
    assert result.build_name == "nodejs-1"
    assert cluster.verbs("BuildConfig") == ["create", "instantiate", "delete"]
    assert ("BuildConfig", "nodejs") not in cluster.objects
    assert cluster.objects_of("Secret") == []


def test_build_config_without_tag_targets_image_stream(cluster, pipeline) -> None:
    created = []
    cluster.hooks["create"] = lambda body: created.append(body)

    result = pipeline.build(BuildParameters())

    assert result.image == "nodejs:latest"
    assert ("ImageStream", "nodejs") in cluster.objects
    build_config = next(body for body in created if body["kind"] == "BuildConfig")
    assert build_config["spec"]["output"]["to"] == {"kind": "ImageStreamTag", "name": "nodejs:latest"}
    assert "pushSecret" not in build_config["spec"]["output"]


def test_external_registry_creates_push_secret(cluster, pipeline, docker_config) -> None:
    created = []
    cluster.hooks["create"] = lambda body: created.append(body)

    pipeline.build(BuildParameters(tag=EXTERNAL_TAG, docker_config_path=docker_config))

    secret = cluster.objects[("Secret", "regcred")]
    assert secret["type"] == "kubernetes.io/dockerconfigjson"
    decoded = json.loads(base64.b64decode(secret["data"][".dockerconfigjson"]))
    assert "quay.io" in decoded["auths"]
    build_config = next(body for body in created if body["kind"] == "BuildConfig")
    assert build_config["spec"]["output"]["pushSecret"] == {"name": "regcred"}


def test_build_failure_carries_log_and_cleans_up(cluster, pipeline) -> None:
    cluster.build_phase = "Failed"

    with pytest.raises(BuildFailedError) as excinfo:
        pipeline.build(BuildParameters(tag=INTERNAL_TAG))

    assert "build log" in str(excinfo.value)
    assert ("BuildConfig", "nodejs") not in cluster.objects


def test_build_timeout_cleans_up(cluster, pipeline) -> None:
    cluster.build_phase = "Timeout"

    with pytest.raises(WaitTimeoutError):
        pipeline.build(BuildParameters(tag=INTERNAL_TAG))

    assert cluster.verbs("BuildConfig")[-1] == "delete"
    assert ("BuildConfig", "nodejs") not in cluster.objects


@pytest.mark.parametrize("phase_hook", ["instantiate_binary_build", "wait_for_build_to_finish"])
def test_interrupt_removes_build_config(cluster, pipeline, phase_hook) -> None:
    previous = signal.getsignal(signal.SIGTERM)
    cluster.hooks[phase_hook] = lambda *args: os.kill(os.getpid(), signal.SIGTERM)

    with pytest.raises(BuildInterruptedError):
        pipeline.build(BuildParameters(tag=INTERNAL_TAG))

    assert ("BuildConfig", "nodejs") not in cluster.objects
    assert signal.getsignal(signal.SIGTERM) is previous


def test_cancellation_token_stops_before_streaming(cluster, pipeline) -> None:
    token = CancellationToken()
    cluster.hooks["create"] = lambda body: token.cancel("stopped by caller")

    with pytest.raises(BuildInterruptedError, match="stopped by caller"):
        pipeline.build(BuildParameters(tag=INTERNAL_TAG), token=token)

    assert "instantiate" not in cluster.verbs("BuildConfig")
    assert ("BuildConfig", "nodejs") not in cluster.objects


def test_cancel_after_instantiate_skips_wait(cluster, pipeline) -> None:
    token = CancellationToken()
    waited = []
    cluster.hooks["instantiate_binary_build"] = lambda name, archive: token.cancel("stopped by caller")
    cluster.hooks["wait_for_build_to_finish"] = lambda *args: waited.append(args)

    with pytest.raises(BuildInterruptedError, match="stopped by caller"):
        pipeline.build(BuildParameters(tag=INTERNAL_TAG), token=token)

    assert waited == []
    assert ("BuildConfig", "nodejs") not in cluster.objects


def test_cancel_while_waiting_for_build_removes_build_config(cluster, pipeline) -> None:
    token = CancellationToken()
    cluster.hooks["wait_for_build_to_finish"] = lambda *args: token.cancel("stopped by caller")

    with pytest.raises(BuildInterruptedError, match="stopped by caller"):
        pipeline.build(BuildParameters(tag=INTERNAL_TAG), token=token)

    assert ("BuildConfig", "nodejs") not in cluster.objects


def test_cancel_while_waiting_for_builder_pod_removes_pod(cluster, pipeline) -> None:
    token = CancellationToken()
    cluster.hooks["wait_and_get_pod"] = lambda selector, phase: token.cancel("stopped by caller")

    with pytest.raises(BuildInterruptedError, match="stopped by caller"):
        pipeline.build(BuildParameters(tag=INTERNAL_TAG, rootless=True), token=token)

    assert ("Pod", "nodejs-build") not in cluster.objects


def test_cleanup_error_does_not_mask_build_error(cluster, pipeline) -> None:
    cluster.build_phase = "Failed"

    def _fail_delete(kind, name):
        raise ClusterOperationError(f"unable to delete {kind} {name}")

    cluster.hooks["delete"] = _fail_delete

    with pytest.raises(BuildFailedError):
        pipeline.build(BuildParameters(tag=INTERNAL_TAG))


def test_cleanup_error_surfaces_after_successful_build(cluster, pipeline) -> None:
    def _fail_delete(kind, name):
        raise ClusterOperationError(f"unable to delete {kind} {name}")

    cluster.hooks["delete"] = _fail_delete

    with pytest.raises(ClusterOperationError, match="unable to delete BuildConfig"):
        pipeline.build(BuildParameters(tag=INTERNAL_TAG))


def test_kaniko_build_streams_context_and_releases_init_container(cluster, pipeline, docker_config) -> None:
    cluster.build_config_supported = False
    created = []
    cluster.hooks["create"] = lambda body: created.append(body)

    result = pipeline.build(BuildParameters(tag=EXTERNAL_TAG, docker_config_path=docker_config))

    assert result.strategy is BuildStrategy.KANIKO
    pod = next(body for body in created if body["kind"] == "Pod")
    assert pod["metadata"]["name"] == "nodejs-build"
    assert pod["spec"]["restartPolicy"] == "Never"
    builder = pod["spec"]["containers"][0]
    assert f"--destination={EXTERNAL_TAG}" in builder["args"]
    assert any(volume.get("secret", {}).get("secretName") == "regcred" for volume in pod["spec"]["volumes"])

    pod_name, container, target, archive = cluster.extracts[0]
    assert (pod_name, container, target) == ("nodejs-build", INIT_CONTAINER_NAME, BUILD_CONTEXT_MOUNT_PATH)
    assert archive
    assert cluster.execs[-1] == ("nodejs-build", INIT_CONTAINER_NAME, ["touch", COMPLETION_FILE])
    assert ("Pod", "nodejs-build") not in cluster.objects


def test_kaniko_requires_tag(cluster, pipeline) -> None:
    with pytest.raises(DevfileValidationError):
        pipeline.build(BuildParameters(rootless=True))
    assert cluster.calls == []


def test_kaniko_failure_reports_builder_log(cluster, pipeline) -> None:
    cluster.builder_pod_phase = "Failed"

    with pytest.raises(BuildFailedError) as excinfo:
        pipeline.build(BuildParameters(tag=INTERNAL_TAG, rootless=True))

    assert "nodejs-build/build line 1" in str(excinfo.value)
    assert ("Pod", "nodejs-build") not in cluster.objects


def test_kaniko_interrupt_while_waiting_removes_pod(cluster, pipeline) -> None:
    cluster.hooks["wait_and_get_pod"] = lambda selector, phase: os.kill(os.getpid(), signal.SIGINT)

    with pytest.raises(BuildInterruptedError):
        pipeline.build(BuildParameters(tag=INTERNAL_TAG, rootless=True))

    assert ("Pod", "nodejs-build") not in cluster.objects


def test_missing_dockerfile_is_rejected(cluster, pipeline, context) -> None:
    (context.context_dir / "Dockerfile").unlink()

    with pytest.raises(DevfileValidationError, match="Dockerfile"):
        pipeline.build(BuildParameters(tag=INTERNAL_TAG))
    assert ("BuildConfig", "nodejs") not in cluster.objects
