"""Deployment error taxonomy with remediation guidance."""
import traceback
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError


class ErrorCategory(str, Enum):
    """Fixed categories every deployment failure is sorted into."""
    PERMISSION = 'permission'
    RESOURCE_CONFLICT = 'resource-conflict'
    MISSING_PREREQUISITE = 'missing-prerequisite'
    NETWORK_TIMEOUT = 'network-timeout'
    VALIDATION = 'validation'
    UNKNOWN = 'unknown'

    @property
    def retryable(self) -> bool:
        return RETRYABLE[self]


RETRYABLE: Dict[ErrorCategory, bool] = {
    ErrorCategory.PERMISSION: True,
    ErrorCategory.RESOURCE_CONFLICT: True,
    ErrorCategory.MISSING_PREREQUISITE: False,
    ErrorCategory.NETWORK_TIMEOUT: True,
    ErrorCategory.VALIDATION: False,
    ErrorCategory.UNKNOWN: True,
}

REMEDIATION: Dict[ErrorCategory, List[str]] = {
    ErrorCategory.PERMISSION: [
        "Verify the SSH user and private key are accepted by the node",
        "Check that the SSH user has passwordless sudo",
        "Confirm file permissions on the K3s token and kubeconfig paths",
    ],
    ErrorCategory.RESOURCE_CONFLICT: [
        "Check for an existing K3s installation on the node",
        "Remove stale node entries with the same name from the cluster",
        "Run the teardown for this node and re-apply",
    ],
    ErrorCategory.MISSING_PREREQUISITE: [
        "Install curl and systemd on the node image",
        "Ensure required kernel modules (br_netfilter, overlay) can be loaded",
        "Wait for cloud-init to finish before bootstrapping",
    ],
    ErrorCategory.NETWORK_TIMEOUT: [
        "Check network connectivity between this host and the node",
        "Verify DNS resolution and outbound access to get.k3s.io",
        "Ensure firewall rules allow SSH and port 6443",
        "Consider increasing timeout values if the operation is slow",
    ],
    ErrorCategory.VALIDATION: [
        "Review the configuration values for correctness",
        "Check that all required fields are provided",
    ],
    ErrorCategory.UNKNOWN: [
        "Review the error message and remote output for clues",
        "Verify all bootstrap dependencies are satisfied",
    ],
}

_KINDS = frozenset(category.value for category in ErrorCategory)

# Checked in order, first match wins
_MESSAGE_PATTERNS: List[Tuple[ErrorCategory, Tuple[str, ...]]] = [
    (ErrorCategory.PERMISSION, ("permission denied", "forbidden", "unauthorized", "access denied", "authentication failed")),
    (ErrorCategory.RESOURCE_CONFLICT, ("already exists", "conflict", "duplicate")),
    (ErrorCategory.MISSING_PREREQUISITE, ("command not found", "prerequisite", "dependency", "no such file")),
    (ErrorCategory.NETWORK_TIMEOUT, ("timed out", "timeout", "connection", "network", "unreachable")),
    (ErrorCategory.VALIDATION, ("validation", "invalid", "malformed")),
]


class DeploymentError(Exception):
    """A classified failure of one phase, carrying remediation steps."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        phase: str,
        node: Optional[str] = None,
        retryable: Optional[bool] = None,
        remediation_steps: Optional[List[str]] = None,
        original: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.phase = phase
        self.node = node
        self.retryable = category.retryable if retryable is None else retryable
        self.remediation_steps = list(REMEDIATION[category] if remediation_steps is None else remediation_steps)
        self.original = original
        self.exhausted = False

    def error_report(self) -> str:
        """Return a formatted error report with remediation guidance."""
        lines = [
            "Deployment Error Report",
            "=======================",
            f"Phase: {self.phase}",
        ]
        if self.node:
            lines.append(f"Node: {self.node}")
        lines += [
            f"Error Type: {self.category.value}",
            f"Retryable: {self.retryable}",
            f"Retries Exhausted: {self.exhausted}",
            f"Message: {self.message}",
            "",
        ]
        if self.remediation_steps:
            lines.append("Remediation Steps:")
            lines += [f"{i}. {step}" for i, step in enumerate(self.remediation_steps, 1)]
            lines.append("")
        if self.original is not None and self.original.__traceback__ is not None:
            lines.append("Stack Trace:")
            lines += traceback.format_exception(type(self.original), self.original, self.original.__traceback__)
        return "\n".join(lines).rstrip()

    def __repr__(self) -> str:
        return f"DeploymentError({self.category.value}, phase={self.phase!r}, node={self.node!r}, message={self.message!r})"


def categorize_message(message: str) -> ErrorCategory:
    lowered = (message or "").lower()
    for category, needles in _MESSAGE_PATTERNS:
        if any(needle in lowered for needle in needles):
            return category
    return ErrorCategory.UNKNOWN


def classify_error(error: BaseException, phase: str, node: Optional[str] = None) -> DeploymentError:
    """Sort an exception into the error taxonomy.

    Structured errors are mapped by kind first. Text matching on the message
    is only used when the error carries no kind.
    """
    if isinstance(error, DeploymentError):
        return error

    message = str(error) or type(error).__name__

    kind = getattr(error, 'kind', None)
    if kind in _KINDS:
        category = ErrorCategory(kind)
    elif isinstance(error, TimeoutError):
        category = ErrorCategory.NETWORK_TIMEOUT
    elif isinstance(error, ValidationError):
        category = ErrorCategory.VALIDATION
    else:
        category = categorize_message(message)

    # Non-zero remote exits are never retried mid-script
    retryable = False if getattr(error, 'terminal', False) else None

    return DeploymentError(
        message,
        category,
        phase,
        node=node,
        retryable=retryable,
        original=error,
    )
