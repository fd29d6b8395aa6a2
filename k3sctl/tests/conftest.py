import threading

import pytest

from k3sctl.modules.k3s.models import NetworkConfig, SizingConfig
from k3sctl.modules.k3s.retry import RetryPolicy, RetryRunner
from k3sctl.modules.provision import StaticProvisioner
from k3sctl.modules.ssh import (
    CommandOutcome,
    ConnectionFailure,
    ConnectionPool,
    RemoteCommandExecutor,
    SSHCredential,
)
from pydantic import SecretStr

TOKEN = "K10abcdef0123456789::server:s3cr3t-join-token"

KUBECONFIG = """apiVersion: v1
clusters:
- cluster:
    certificate-authority-data: Q0EK
    server: https://127.0.0.1:6443
  name: default
contexts:
- context:
    cluster: default
    user: default
  name: default
current-context: default
kind: Config
users:
- name: default
  user:
    client-certificate-data: Q0VSVAo=
    client-key-data: S0VZCg==
"""


def sizing(masters=1, workers=2, **kwargs):
    return SizingConfig(
        master_count=masters,
        worker_count=workers,
        master_vmid_start=kwargs.pop('master_vmid_start', 100),
        worker_vmid_start=kwargs.pop('worker_vmid_start', 110),
        network=NetworkConfig(net4_prefix="10.10.0.", net6_prefix="fd00:10::", ip_host_base=20),
        **kwargs
    )


def command_kind(script):
    """Name the K3s step a remote script belongs to."""
    if "k3s-readiness" in script or "systemctl is-active" in script:
        return "health"
    if "node-token" in script:
        return "token"
    if "k3s.yaml" in script:
        return "kubeconfig"
    if "K3S_URL=" in script:
        return "worker"
    if "--server https://" in script:
        return "secondary"
    if "--cluster-init" in script:
        return "primary"
    if "uninstall" in script:
        return "uninstall"
    return "other"


class FakeCluster:
    """Scripted remote hosts shared by all fake transports.

    ``failures`` maps ``(host, kind)`` to a list of results consumed one per
    call: an exception instance to raise or a CommandOutcome to return.
    """

    def __init__(self):
        self.calls = []
        self.failures = {}
        self.on_call = None
        self._lock = threading.Lock()

    def fail(self, host, kind, *results):
        self.failures[(host, kind)] = list(results)

    def kinds(self, host=None):
        return [kind for h, kind, _ in self.calls if host is None or h == host]

    def execute(self, host, command):
        kind = command_kind(command)
        with self._lock:
            self.calls.append((host, kind, command))
            scripted = self.failures.get((host, kind))
            result = scripted.pop(0) if scripted else None
        if self.on_call is not None:
            self.on_call(host, kind)
        if isinstance(result, Exception):
            raise result
        if isinstance(result, CommandOutcome):
            return result
        if kind == "token":
            return CommandOutcome(0, SecretStr(TOKEN + "\n"))
        if kind == "kubeconfig":
            return CommandOutcome(0, SecretStr(KUBECONFIG))
        return CommandOutcome(0, SecretStr("ok\n"))


class FakeTransport:
    def __init__(self, cluster, host):
        self.cluster = cluster
        self.host = host
        self.closed = False

    def execute(self, command, timeout=None):
        return self.cluster.execute(self.host, command)

    def close(self):
        self.closed = True


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def credential():
    return SSHCredential(username="ubuntu")


@pytest.fixture
def executor(cluster):
    pool = ConnectionPool(transport_factory=lambda host, cred, connect_timeout: FakeTransport(cluster, host))
    return RemoteCommandExecutor(pool)


@pytest.fixture
def provisioner(credential):
    return StaticProvisioner(credential)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def runner_factory(sleeps):
    policy = RetryPolicy(max_retries=1, timeout_seconds=10, initial_delay_ms=1000)

    def factory(name):
        return RetryRunner(policy, name=name, sleep=sleeps.append)
    return factory


@pytest.fixture
def network_error():
    return ConnectionFailure("Connection to host timed out")
