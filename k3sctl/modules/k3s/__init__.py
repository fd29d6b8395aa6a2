"""
K3s Cluster Bootstrap Module

Key Features:
- Deterministic node identity allocation (VM ids, names, addresses)
- Dependency-ordered bootstrap of the primary, secondaries and workers
- Retries with exponential backoff and classified errors
- Kubeconfig retrieval with the API endpoint rewritten for external use
- Reverse-ordered teardown
"""
from .config import ConfigError, InstallerConfig, LoggingConfig, SSHConfig
from .errors import DeploymentError, ErrorCategory, classify_error
from .models import (
    AccessCredential,
    BootstrapReport,
    BootstrapState,
    JoinToken,
    NodeDescriptor,
    NodeRole,
    Phase,
    PhaseResult,
    SizingConfig,
)
from .orchestrator import PHASE_DEPENDENCIES, BootstrapOrchestrator, OrchestratorOptions, PlannedStep
from .retry import RetryPolicy, RetryRunner
from .teardown import TeardownOrderError, TeardownPlan, teardown
from .topology import TopologyError, allocate, role_for_vm_id, summarize

__all__ = [
    'AccessCredential',
    'BootstrapOrchestrator',
    'BootstrapReport',
    'BootstrapState',
    'ConfigError',
    'DeploymentError',
    'ErrorCategory',
    'InstallerConfig',
    'JoinToken',
    'LoggingConfig',
    'NodeDescriptor',
    'NodeRole',
    'OrchestratorOptions',
    'PHASE_DEPENDENCIES',
    'Phase',
    'PhaseResult',
    'PlannedStep',
    'RetryPolicy',
    'RetryRunner',
    'SSHConfig',
    'SizingConfig',
    'TeardownOrderError',
    'TeardownPlan',
    'TopologyError',
    'allocate',
    'classify_error',
    'role_for_vm_id',
    'summarize',
    'teardown',
]
