"""K3s node and cluster readiness checks."""
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from ..ssh import RemoteCommand, RemoteCommandExecutor, SSHCredential
from .models import AccessCredential
from .retry import RetryRunner

logger = logging.getLogger("k3s.health")

HEALTH_PHASE = 'health_check'


def _wait_loop(label: str, condition: str, max_retries: int, interval: int, indent: str = "    ") -> str:
    lines = [
        f'echo "Checking {label}..."',
        f'for i in $(seq 1 {max_retries}); do',
        f'  if {condition}; then',
        f'    echo "{label} ready (attempt $i)"',
        '    break',
        '  fi',
        f'  if [ $i -eq {max_retries} ]; then',
        f'    echo "{label} not ready after {max_retries} attempts"',
        '    exit 1',
        '  fi',
        f'  echo "Waiting for {label}... (attempt $i/{max_retries})"',
        f'  sleep {interval}',
        'done',
    ]
    return "\n".join(indent + line for line in lines)


def build_k3s_health_script(max_retries: int = 20, interval: int = 5) -> str:
    """Render the node readiness script.

    Checks, in order: the k3s or k3s-agent service is active, the API server
    answers ``/healthz`` (servers only), and either the cluster reports Ready
    nodes (servers) or the agent process is running (agents).

    Args:
        max_retries: Polls per check before the script exits non-zero
        interval: Seconds between polls

    Returns:
        str: A bash script
    """
    if max_retries < 1 or interval < 0:
        raise ValueError("max_retries must be >= 1 and interval >= 0")

    service = _wait_loop(
        "K3s service",
        "systemctl is-active --quiet k3s || systemctl is-active --quiet k3s-agent",
        max_retries, interval, indent="",
    )
    api = _wait_loop(
        "K3s API server", "sudo k3s kubectl get --raw='/healthz' >/dev/null 2>&1",
        max_retries, interval,
    )
    nodes = _wait_loop(
        "cluster nodes", "sudo k3s kubectl get nodes --no-headers | grep -qw Ready",
        max_retries, interval,
    )
    agent = _wait_loop(
        "K3s agent process", 'pgrep -f "k3s agent" >/dev/null',
        max_retries, interval,
    )
    return "\n".join([
        "#!/bin/bash",
        "set -e",
        service,
        "if systemctl is-active --quiet k3s; then",
        api,
        nodes,
        "elif systemctl is-active --quiet k3s-agent; then",
        agent,
        "fi",
        "",
    ])


def wait_for_node_ready(
    executor: RemoteCommandExecutor,
    host: str,
    credential: SSHCredential,
    runner: RetryRunner,
    max_retries: int = 20,
    interval: int = 5,
    phase: str = HEALTH_PHASE,
) -> None:
    """Run the readiness script on ``host`` under ``runner``.

    ``phase`` labels the status history and any error.

    Raises:
        DeploymentError: If the node does not become ready
    """
    command = RemoteCommand(name="k3s-readiness-check", create=build_k3s_health_script(max_retries, interval))
    runner.execute(
        lambda: executor.run(host, credential, command),
        phase,
        operation_name=f"readiness check on {host}",
    )
    logger.info("✅ K3s is ready on %s", host)


class ClusterNotReady(Exception):
    """Some expected nodes are missing or not Ready yet."""
    kind = 'unknown'

    def __init__(self, message: str, readiness: 'NodeReadiness'):
        super().__init__(message)
        self.readiness = readiness


@dataclass
class NodeReadiness:
    ready: List[str] = field(default_factory=list)
    not_ready: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.not_ready and not self.missing


def core_api_for(credential: AccessCredential) -> client.CoreV1Api:
    """Build a CoreV1Api client from an in-memory kubeconfig."""
    config_dict = yaml.safe_load(credential.reveal())
    api_client = config.new_client_from_config_dict(config_dict)
    return client.CoreV1Api(api_client)


def _is_ready(node) -> bool:
    conditions = (node.status.conditions or []) if node.status else []
    return any(c.type == 'Ready' and c.status == 'True' for c in conditions)


def check_cluster_nodes(
    credential: AccessCredential,
    expected: Iterable[str],
    api_factory: Callable[[AccessCredential], client.CoreV1Api] = core_api_for,
    strict: bool = True,
) -> NodeReadiness:
    """List cluster nodes and compare them with the expected names.

    Args:
        credential: Cluster access credential
        expected: Node names that should be registered
        api_factory: Builds the CoreV1Api client, injectable for tests
        strict: Raise ClusterNotReady when the cluster is not healthy

    Returns:
        NodeReadiness: Ready, not ready and missing node names
    """
    api = api_factory(credential)
    try:
        nodes = api.list_node().items
    except ApiException as e:
        if e.status in (401, 403):
            raise PermissionError(f"Access denied listing nodes on {credential.server}: {e.reason}") from e
        raise ConnectionError(f"Connection to {credential.server} failed listing nodes: {e.reason}") from e

    readiness = NodeReadiness()
    seen = set()
    for node in nodes:
        name = node.metadata.name
        seen.add(name)
        (readiness.ready if _is_ready(node) else readiness.not_ready).append(name)
    readiness.missing = sorted(set(expected) - seen)

    logger.debug(
        "Cluster %s: %d ready, %d not ready, %d missing",
        credential.server, len(readiness.ready), len(readiness.not_ready), len(readiness.missing)
    )

    if strict and not readiness.healthy:
        problems = []
        if readiness.not_ready:
            problems.append(f"not ready: {', '.join(readiness.not_ready)}")
        if readiness.missing:
            problems.append(f"missing: {', '.join(readiness.missing)}")
        raise ClusterNotReady(f"Cluster nodes {'; '.join(problems)}", readiness)
    return readiness


def wait_for_cluster(
    credential: AccessCredential,
    expected: Iterable[str],
    runner: RetryRunner,
    api_factory: Optional[Callable[[AccessCredential], client.CoreV1Api]] = None,
) -> NodeReadiness:
    """Poll :func:`check_cluster_nodes` under ``runner`` until healthy."""
    expected = list(expected)
    factory = api_factory or core_api_for
    return runner.execute(
        lambda: check_cluster_nodes(credential, expected, api_factory=factory),
        HEALTH_PHASE,
        operation_name="cluster node readiness",
    )
