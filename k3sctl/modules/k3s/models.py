"""
Data models for K3s cluster bootstrap.
"""
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator

from . import constants


class NodeRole(str, Enum):
    """Node roles in the K3s cluster."""
    MASTER = 'master'
    WORKER = 'worker'


class Phase(str, Enum):
    """Bootstrap phases, each a node in the dependency graph."""
    PRIMARY_INIT = 'primary_init'
    TOKEN_FETCH = 'token_fetch'
    SECONDARY_JOIN = 'secondary_join'
    WORKER_JOIN = 'worker_join'
    CREDENTIAL_RETRIEVAL = 'credential_retrieval'


class BootstrapState(str, Enum):
    """Overall state of a bootstrap run."""
    PENDING = 'pending'
    RUNNING = 'running'
    BOOTSTRAPPED = 'bootstrapped'
    PARTIAL = 'partial'
    FAILED = 'failed'


class ResourceProfile(BaseModel):
    """Per-node VM resources."""
    model_config = ConfigDict(frozen=True)

    cores: int = Field(default=constants.DEFAULT_CORES, gt=0)
    memory: int = Field(default=constants.DEFAULT_MEMORY, gt=0, description="Memory in MiB")
    os_disk_size: int = Field(default=constants.DEFAULT_OS_DISK_SIZE, gt=0, description="OS disk in GiB")
    data_disk_size: int = Field(default=constants.DEFAULT_DATA_DISK_SIZE, ge=0, description="Data disk in GiB")


class NetworkConfig(BaseModel):
    """Address space the allocator draws node addresses from."""
    model_config = ConfigDict(frozen=True)

    net4_prefix: str = Field(..., description="IPv4 prefix, e.g. '10.10.0.'")
    net6_prefix: str = Field(default="", description="IPv6 prefix, e.g. 'fd00:10::'")
    ip_host_base: int = Field(default=20, ge=0)
    gateway4: Optional[str] = None
    gateway6: Optional[str] = None


class SizingConfig(BaseModel):
    """Cluster sizing: node counts, id blocks, addressing and resources."""
    model_config = ConfigDict(frozen=True)

    master_count: int = Field(default=1, ge=1)
    worker_count: int = Field(default=0, ge=0)
    master_vmid_start: int = Field(default=120, gt=0)
    worker_vmid_start: int = Field(default=130, gt=0)
    id_block_size: int = Field(default=constants.DEFAULT_ID_BLOCK_SIZE, gt=0)
    name_prefix: str = Field(default=constants.DEFAULT_NAME_PREFIX, min_length=1)
    network: NetworkConfig
    master_resources: ResourceProfile = Field(default_factory=ResourceProfile)
    worker_resources: ResourceProfile = Field(default_factory=ResourceProfile)

    @model_validator(mode='after')
    def check_id_blocks(self) -> 'SizingConfig':
        if self.master_count > self.id_block_size:
            raise ValueError(
                f"master_count {self.master_count} exceeds id block size {self.id_block_size}"
            )
        if self.worker_count > self.id_block_size:
            raise ValueError(
                f"worker_count {self.worker_count} exceeds id block size {self.id_block_size}"
            )
        master_end = self.master_vmid_start + self.id_block_size
        worker_end = self.worker_vmid_start + self.id_block_size
        if self.master_vmid_start < worker_end and self.worker_vmid_start < master_end:
            raise ValueError(
                f"master id block [{self.master_vmid_start}, {master_end}) overlaps "
                f"worker id block [{self.worker_vmid_start}, {worker_end})"
            )
        return self


@dataclass(frozen=True)
class NodeDescriptor:
    """Immutable identity of one cluster node."""
    role: NodeRole
    role_index: int
    global_index: int
    vm_id: int
    name: str
    ipv4: str
    ipv6: str
    resources: ResourceProfile

    @property
    def is_primary(self) -> bool:
        return self.role == NodeRole.MASTER and self.role_index == 0

    def info(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'vm_id': self.vm_id,
            'ip': self.ipv4,
            'ipv6': self.ipv6,
            'cores': self.resources.cores,
            'memory': self.resources.memory,
            'os_disk': self.resources.os_disk_size,
            'data_disk': self.resources.data_disk_size,
        }


class JoinToken:
    """Cluster join secret read from the primary control-plane node."""

    __slots__ = ('_value',)

    def __init__(self, value: Union[str, SecretStr]):
        secret = value if isinstance(value, SecretStr) else SecretStr(value)
        if not secret.get_secret_value().strip():
            raise ValueError("Join token is empty")
        object.__setattr__(self, '_value', SecretStr(secret.get_secret_value().strip()))

    def __setattr__(self, name, value):
        raise AttributeError("JoinToken is immutable")

    def reveal(self) -> str:
        return self._value.get_secret_value()

    def __eq__(self, other) -> bool:
        return isinstance(other, JoinToken) and other.reveal() == self.reveal()

    def __hash__(self) -> int:
        return hash(self.reveal())

    def __repr__(self) -> str:
        return "JoinToken('**********')"

    __str__ = __repr__


@dataclass
class PhaseResult:
    """Outcome of one phase on one node."""
    phase: Phase
    node: str
    success: bool
    error: Optional[Exception] = None
    attempts: int = 0
    skipped: bool = False
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def duration(self) -> float:
        if self.finished_at is None:
            return 0.0
        return self.finished_at - self.started_at


@dataclass(frozen=True)
class AccessCredential:
    """Administrative kubeconfig for the finished cluster."""
    server: str
    kubeconfig: SecretStr
    node_name: str

    def reveal(self) -> str:
        return self.kubeconfig.get_secret_value()

    def write(self, path: Union[str, Path]) -> Path:
        """Write the kubeconfig to ``path`` readable only by the owner."""
        path = Path(path).expanduser().absolute()
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'w') as f:
            f.write(self.reveal())
        os.chmod(path, 0o600)
        return path


@dataclass
class OperationStatus:
    """One entry in a RetryRunner's status history."""
    phase: str
    message: str
    timestamp: float
    retry_count: int = 0
    error: Optional[Exception] = None


@dataclass
class BootstrapReport:
    """Per-node, per-phase results of a bootstrap run."""
    results: List[PhaseResult] = field(default_factory=list)
    credential: Optional[AccessCredential] = None
    state: BootstrapState = BootstrapState.PENDING
    history: List[OperationStatus] = field(default_factory=list)

    def for_phase(self, phase: Phase) -> List[PhaseResult]:
        return [r for r in self.results if r.phase == phase]

    def for_node(self, name: str) -> List[PhaseResult]:
        return [r for r in self.results if r.node == name]

    def succeeded(self, phase: Optional[Phase] = None) -> List[PhaseResult]:
        return [r for r in self.results if r.success and (phase is None or r.phase == phase)]

    def failed(self, phase: Optional[Phase] = None) -> List[PhaseResult]:
        return [r for r in self.results if not r.success and (phase is None or r.phase == phase)]

    def summary(self) -> Dict[str, Any]:
        phases: Dict[str, Dict[str, int]] = {}
        for result in self.results:
            counts = phases.setdefault(result.phase.value, {'succeeded': 0, 'failed': 0, 'skipped': 0})
            if result.success:
                counts['succeeded'] += 1
            elif result.skipped:
                counts['skipped'] += 1
            else:
                counts['failed'] += 1
        return {
            'state': self.state.value,
            'phases': phases,
            'credential': self.credential is not None,
        }
