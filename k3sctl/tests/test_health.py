from types import SimpleNamespace

import pytest
from kubernetes.client.rest import ApiException
from pydantic import SecretStr

from k3sctl.modules.k3s.errors import DeploymentError
from k3sctl.modules.k3s.health import (
    ClusterNotReady,
    build_k3s_health_script,
    check_cluster_nodes,
    wait_for_cluster,
    wait_for_node_ready,
)
from k3sctl.modules.k3s.models import AccessCredential
from k3sctl.modules.k3s.retry import RetryPolicy, RetryRunner
from k3sctl.modules.ssh import CommandOutcome

from .conftest import KUBECONFIG


def node(name, ready=True):
    condition = SimpleNamespace(type="Ready", status="True" if ready else "False")
    return SimpleNamespace(metadata=SimpleNamespace(name=name), status=SimpleNamespace(conditions=[condition]))


class FakeCoreApi:
    def __init__(self, *responses):
        self.responses = list(responses)

    def list_node(self):
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return SimpleNamespace(items=response)


@pytest.fixture
def access():
    return AccessCredential(server="https://10.10.0.20:6443", kubeconfig=SecretStr(KUBECONFIG), node_name="cluster-master")


def test_health_script_checks():
    script = build_k3s_health_script(max_retries=3, interval=2)

    assert script.startswith("#!/bin/bash\nset -e")
    assert "systemctl is-active --quiet k3s || systemctl is-active --quiet k3s-agent" in script
    assert "get --raw='/healthz'" in script
    assert 'pgrep -f "k3s agent"' in script
    assert "seq 1 3" in script
    assert "sleep 2" in script


def test_health_script_rejects_bad_arguments():
    with pytest.raises(ValueError):
        build_k3s_health_script(max_retries=0)


def test_wait_for_node_ready_retries(executor, credential, cluster, network_error):
    cluster.fail("10.10.0.21", "health", network_error)
    runner = RetryRunner(RetryPolicy(max_retries=2), name="cluster-worker-1", sleep=lambda s: None)

    wait_for_node_ready(executor, "10.10.0.21", credential, runner, max_retries=2, interval=1)

    assert cluster.kinds("10.10.0.21") == ["health", "health"]


def test_wait_for_node_ready_fails_on_script_exit(executor, credential, cluster):
    cluster.fail("10.10.0.21", "health", CommandOutcome(1, SecretStr(""), "K3s service not ready after 2 attempts"))
    runner = RetryRunner(RetryPolicy(max_retries=2), sleep=lambda s: None)

    with pytest.raises(DeploymentError) as exc_info:
        wait_for_node_ready(executor, "10.10.0.21", credential, runner)
    assert not exc_info.value.retryable


def test_check_cluster_nodes(access):
    api = FakeCoreApi([node("cluster-master"), node("cluster-worker-1", ready=False)])

    readiness = check_cluster_nodes(
        access, ["cluster-master", "cluster-worker-1", "cluster-worker-2"],
        api_factory=lambda c: api, strict=False,
    )

    assert readiness.ready == ["cluster-master"]
    assert readiness.not_ready == ["cluster-worker-1"]
    assert readiness.missing == ["cluster-worker-2"]
    assert not readiness.healthy


def test_check_cluster_nodes_strict(access):
    api = FakeCoreApi([node("cluster-master")])
    with pytest.raises(ClusterNotReady, match="missing: cluster-worker-1"):
        check_cluster_nodes(access, ["cluster-master", "cluster-worker-1"], api_factory=lambda c: api)


def test_check_cluster_nodes_forbidden(access):
    api = FakeCoreApi(ApiException(status=403, reason="Forbidden"))
    with pytest.raises(PermissionError):
        check_cluster_nodes(access, ["cluster-master"], api_factory=lambda c: api)


def test_wait_for_cluster_polls_until_ready(access):
    api = FakeCoreApi([node("cluster-master", ready=False)], [node("cluster-master")])
    runner = RetryRunner(RetryPolicy(max_retries=3), sleep=lambda s: None)

    readiness = wait_for_cluster(access, ["cluster-master"], runner, api_factory=lambda c: api)

    assert readiness.healthy
    assert runner.metrics().error_count == 1
