from unittest.mock import MagicMock

import pytest
from kubernetes.client import ApiException

from devfile_adapter import kube
from devfile_adapter.config import ClusterContext
from devfile_adapter.errors import (
    AdapterError,
    BuildFailedError,
    BuildInterruptedError,
    ClusterOperationError,
    CommandExecutionError,
    WaitTimeoutError,
)
from devfile_adapter.interrupt import CancellationToken
from devfile_adapter.kube import ClusterAPI, ComponentInfo, current_namespace


def _service() -> dict:
    return {"apiVersion": "v1", "kind": "Service", "metadata": {"name": "nodejs"}, "spec": {"ports": []}}


def _make_api():
    api = ClusterAPI.__new__(ClusterAPI)
    api.context = ClusterContext(namespace="dev")
    api.dynamic = MagicMock()
    api.api_client = MagicMock()
    api.core_v1 = MagicMock()
    api._sleep = lambda seconds: None
    api._clock = iter(range(0, 1000, 10)).__next__
    resource = MagicMock()
    api.dynamic.resources.get.return_value = resource
    return api, resource


def test_get_returns_none_when_missing():
    api, resource = _make_api()
    resource.get.side_effect = ApiException(status=404, reason="not found")

    assert api.get("v1", "Service", "nodejs") is None


def test_get_wraps_forbidden():
    api, resource = _make_api()
    resource.get.side_effect = ApiException(status=403, reason="forbidden")

    with pytest.raises(ClusterOperationError) as excinfo:
        api.get("v1", "Service", "nodejs")

    assert excinfo.value.is_forbidden


def test_namespace_is_required():
    api, _ = _make_api()
    api.context = ClusterContext()

    with pytest.raises(ValueError):
        api.get("v1", "Service", "nodejs")


def test_get_or_create_creates_when_get_forbidden():
    api, resource = _make_api()
    resource.get.side_effect = ApiException(status=403, reason="forbidden")

    result = api.get_or_create(_service())

    assert result is resource.create.return_value
    resource.create.assert_called_once()


def test_get_or_create_returns_body_on_conflict():
    api, resource = _make_api()
    resource.get.side_effect = ApiException(status=403, reason="forbidden")
    resource.create.side_effect = ApiException(status=409, reason="conflict")

    result = api.get_or_create(_service())

    assert result == _service()


def test_get_or_create_keeps_existing():
    api, resource = _make_api()
    resource.get.return_value = {"metadata": {"name": "nodejs", "uid": "abc"}}

    assert api.get_or_create(_service())["metadata"]["uid"] == "abc"
    resource.create.assert_not_called()


def test_delete_tolerates_missing_unless_asked():
    api, resource = _make_api()
    resource.delete.side_effect = ApiException(status=404, reason="not found")

    api.delete("v1", "Service", "nodejs")
    with pytest.raises(ClusterOperationError, match="unable to delete Service nodejs"):
        api.delete("v1", "Service", "nodejs", missing_ok=False)


def test_delete_passes_propagation_policy():
    api, resource = _make_api()

    api.delete("apps/v1", "Deployment", "nodejs", propagation_policy="Background")

    resource.delete.assert_called_once_with(
        name="nodejs", namespace="dev", body={"propagationPolicy": "Background"}
    )


def test_wait_for_pod_times_out():
    api, resource = _make_api()
    resource.get.return_value = {"items": []}

    with pytest.raises(WaitTimeoutError, match="component=nodejs"):
        api.wait_and_get_pod("component=nodejs", timeout=30)


def test_wait_for_pod_fails_fast_on_failed_pod():
    api, resource = _make_api()
    resource.get.return_value = {"items": [{"metadata": {"name": "nodejs-1"}, "status": {"phase": "Failed"}}]}

    with pytest.raises(AdapterError, match="nodejs-1 failed"):
        api.wait_and_get_pod("component=nodejs")


def test_wait_stops_when_cancelled():
    api, resource = _make_api()
    resource.get.return_value = {"items": []}
    token = CancellationToken()
    api._sleep = lambda seconds: token.cancel("stopped")

    with pytest.raises(BuildInterruptedError, match="stopped"):
        api.wait_and_get_pod("component=nodejs", timeout=600, token=token)

    assert resource.get.call_count == 1


def test_get_pod_skips_terminating_pods():
    api, resource = _make_api()
    resource.get.return_value = {
        "items": [
            {"metadata": {"name": "old", "deletionTimestamp": "2024-01-01T00:00:00Z"}},
            {"metadata": {"name": "new"}},
        ]
    }

    assert api.get_pod("component=nodejs")["metadata"]["name"] == "new"


def test_failed_build_carries_log():
    api, resource = _make_api()
    resource.get.return_value = {"status": {"phase": "Failed"}}
    api.api_client.call_api.return_value = "step 1/3 failed"

    with pytest.raises(BuildFailedError) as excinfo:
        api.wait_for_build_to_finish("nodejs-1", timeout=60)

    assert excinfo.value.output == "step 1/3 failed"


def test_instantiate_binary_build_posts_archive():
    api, _ = _make_api()

    api.instantiate_binary_build("nodejs", b"archive")

    path, method = api.api_client.call_api.call_args.args
    assert path == "/apis/build.openshift.io/v1/namespaces/dev/buildconfigs/nodejs/instantiatebinary"
    assert method == "POST"
    assert api.api_client.call_api.call_args.kwargs["body"] == b"archive"


def test_current_namespace_uses_selected_context(monkeypatch):
    contexts = [
        {"name": "one", "context": {"namespace": "first"}},
        {"name": "two", "context": {}},
    ]
    monkeypatch.setattr(kube.config, "list_kube_config_contexts", lambda config_file=None: (contexts, contexts[0]))

    assert current_namespace() == "first"
    assert current_namespace(context="two") == "default"
    with pytest.raises(AdapterError, match="context three not found"):
        current_namespace(context="three")


def test_resources_resolve_through_discovery_by_kind():
    api, resource = _make_api()
    endpoints = {"apiVersion": "v1", "kind": "Endpoints", "metadata": {"name": "nodejs"}}

    api.create(endpoints)
    api.delete("networking.k8s.io/v1", "NetworkPolicy", "nodejs")

    assert api.dynamic.resources.get.call_args_list[0].kwargs == {"api_version": "v1", "kind": "Endpoints"}
    assert api.dynamic.resources.get.call_args_list[1].kwargs == {
        "api_version": "networking.k8s.io/v1",
        "kind": "NetworkPolicy",
    }
    resource.create.assert_called_once_with(body=endpoints, namespace="dev")


def _tar_stream(monkeypatch, returncode, stderr=""):
    resp = MagicMock()
    resp.is_open.side_effect = [True, True, False]
    resp.peek_stderr.side_effect = [False, bool(stderr)]
    resp.read_stderr.return_value = stderr
    resp.returncode = returncode
    monkeypatch.setattr(kube, "stream", lambda *args, **kwargs: resp)
    return resp


def test_extract_waits_for_tar_and_reports_exit_code(monkeypatch):
    api, _ = _make_api()
    resp = _tar_stream(monkeypatch, 2, "tar: write error")
    info = ComponentInfo(pod_name="nodejs-1", container_name="runtime")

    with pytest.raises(CommandExecutionError, match="exit code 2") as excinfo:
        api.extract_project_to_component(info, "/projects", b"archive")

    assert excinfo.value.stderr == "tar: write error"
    resp.write_stdin.assert_called_once_with(b"archive")
    assert resp.update.call_count == 2


def test_extract_succeeds_when_tar_exits_cleanly(monkeypatch):
    api, _ = _make_api()
    resp = _tar_stream(monkeypatch, 0)

    api.extract_project_to_component(ComponentInfo(pod_name="nodejs-1"), "/projects", b"archive")

    resp.write_stdin.assert_called_once_with(b"archive")
    resp.close.assert_called()


def test_extract_times_out_when_tar_never_exits(monkeypatch):
    api, _ = _make_api()
    resp = MagicMock()
    resp.is_open.return_value = True
    resp.peek_stderr.return_value = False
    monkeypatch.setattr(kube, "stream", lambda *args, **kwargs: resp)

    with pytest.raises(WaitTimeoutError, match="copying files into pod nodejs-1"):
        api.extract_project_to_component(ComponentInfo(pod_name="nodejs-1"), "/projects", b"archive")

    resp.write_stdin.assert_called_once_with(b"archive")
