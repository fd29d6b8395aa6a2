"""Reverse-ordered cluster teardown.

Joined nodes are uninstalled first, concurrently. The primary control-plane
node goes last, and only once every dependent node is confirmed gone.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from ..provision import Provisioner
from ..ssh import RemoteCommand, RemoteCommandExecutor
from . import constants
from .models import NodeDescriptor, NodeRole
from .topology import primary as find_primary

logger = logging.getLogger("k3s.teardown")


class TeardownOrderError(RuntimeError):
    """Raised instead of removing the primary while dependents remain."""

    def __init__(self, message: str, remaining: List[str]):
        super().__init__(message)
        self.remaining = remaining


def uninstall_command(descriptor: NodeDescriptor) -> RemoteCommand:
    if descriptor.role == NodeRole.MASTER:
        return RemoteCommand(name="k3s-uninstall-server", create="", delete=constants.UNINSTALL_SERVER_CMD)
    return RemoteCommand(name="k3s-uninstall-agent", create="", delete=constants.UNINSTALL_AGENT_CMD)


@dataclass
class TeardownPlan:
    """Teardown stages, each run to completion before the next starts."""
    dependents: List[NodeDescriptor]
    primary: NodeDescriptor

    @classmethod
    def build(cls, descriptors: Sequence[NodeDescriptor]) -> 'TeardownPlan':
        primary = find_primary(list(descriptors))
        # Workers before secondaries, newest first
        workers = [d for d in descriptors if d.role == NodeRole.WORKER]
        secondaries = [d for d in descriptors if d.role == NodeRole.MASTER and not d.is_primary]
        return cls(
            dependents=list(reversed(workers)) + list(reversed(secondaries)),
            primary=primary,
        )

    @property
    def stages(self) -> List[List[NodeDescriptor]]:
        return [self.dependents, [self.primary]]


@dataclass
class TeardownReport:
    removed: Dict[str, bool] = field(default_factory=dict)
    forced: bool = False

    @property
    def complete(self) -> bool:
        return bool(self.removed) and all(self.removed.values())

    @property
    def remaining(self) -> List[str]:
        return [name for name, ok in self.removed.items() if not ok]


def teardown(
    descriptors: Sequence[NodeDescriptor],
    executor: RemoteCommandExecutor,
    resolver: Provisioner,
    force: bool = False,
    max_parallel: int = 4,
) -> TeardownReport:
    """Uninstall K3s from every node, primary last.

    Args:
        descriptors: Allocated nodes
        executor: Runs the uninstall commands
        resolver: Maps a descriptor to its SSH host and credential
        force: Remove the primary even if some dependents failed to uninstall
        max_parallel: Concurrent uninstalls in the dependent stage

    Returns:
        TeardownReport: Per-node removal status

    Raises:
        TeardownOrderError: A dependent node could not be removed and
            ``force`` is not set. The primary is left untouched.
    """
    plan = TeardownPlan.build(descriptors)
    report = TeardownReport(forced=force)

    def remove(descriptor: NodeDescriptor) -> bool:
        try:
            host, credential = resolver.provision(descriptor)
        except Exception as e:
            logger.warning("❌ Cannot resolve %s for teardown: %s", descriptor.name, e)
            return False
        logger.info("🗑️  Uninstalling K3s from %s (%s)", descriptor.name, host)
        return executor.teardown(host, credential, uninstall_command(descriptor))

    if plan.dependents:
        with ThreadPoolExecutor(max_workers=max(1, min(max_parallel, len(plan.dependents)))) as pool:
            for descriptor, ok in zip(plan.dependents, pool.map(remove, plan.dependents)):
                report.removed[descriptor.name] = ok

    remaining = report.remaining
    if remaining:
        if not force:
            raise TeardownOrderError(
                f"Refusing to remove primary {plan.primary.name}: "
                f"dependent node(s) still present: {', '.join(remaining)}",
                remaining,
            )
        logger.warning(
            "⚠️  Forcing removal of primary %s with dependent node(s) still present: %s",
            plan.primary.name, ', '.join(remaining)
        )

    report.removed[plan.primary.name] = remove(plan.primary)

    if report.complete:
        logger.info("✅ Teardown complete for %d node(s)", len(report.removed))
    else:
        logger.error("❌ Teardown incomplete, nodes remaining: %s", ', '.join(report.remaining))
    return report
