"""Deterministic node identity allocation.

Turns a :class:`SizingConfig` into the full list of :class:`NodeDescriptor`
objects for a cluster. Control-plane nodes come first and share a single
contiguous address space with the workers that follow them.
"""
import logging
from typing import Dict, List, Optional

from .models import NodeDescriptor, NodeRole, SizingConfig

logger = logging.getLogger("k3s.topology")


class TopologyError(ValueError):
    """Raised when a sizing config cannot produce a valid allocation."""


def generate_name(role: NodeRole, role_index: int, prefix: str) -> str:
    """Generate a consistent node name from role and index.

    The first control-plane node gets an unqualified name, every other node
    gets an ordinal suffix.
    """
    if role == NodeRole.MASTER:
        return f"{prefix}-master" if role_index == 0 else f"{prefix}-master-{role_index + 1}"
    return f"{prefix}-worker-{role_index + 1}"


def generate_address(prefix: str, host_base: int, global_index: int) -> str:
    """Join prefix and host part. An empty prefix means the family is unused."""
    if not prefix:
        return ""
    return f"{prefix}{host_base + global_index}"


def global_index_for(role: NodeRole, role_index: int, master_count: int) -> int:
    if role == NodeRole.MASTER:
        return role_index
    return master_count + role_index


def _validate(config: SizingConfig) -> None:
    errors = []
    if config.master_count < 1:
        errors.append("At least one control-plane node is required")
    if config.worker_count < 0:
        errors.append("Worker count cannot be negative")
    if config.master_count > config.id_block_size:
        errors.append(
            f"{config.master_count} control-plane nodes exceed the id block of {config.id_block_size}"
        )
    if config.worker_count > config.id_block_size:
        errors.append(
            f"{config.worker_count} workers exceed the id block of {config.id_block_size}"
        )
    last_host = config.network.ip_host_base + config.master_count + config.worker_count - 1
    if last_host > 254:
        errors.append(f"IPv4 host part {last_host} is outside the usable range")
    if errors:
        raise TopologyError("; ".join(errors))


def allocate(config: SizingConfig) -> List[NodeDescriptor]:
    """Allocate identities for every node in the cluster.

    Args:
        config: Cluster sizing configuration

    Returns:
        list: Control-plane descriptors followed by worker descriptors

    Raises:
        TopologyError: If the configuration is invalid. No descriptors are
            produced in that case.
    """
    _validate(config)

    descriptors: List[NodeDescriptor] = []
    for role, count, vmid_start, resources in (
        (NodeRole.MASTER, config.master_count, config.master_vmid_start, config.master_resources),
        (NodeRole.WORKER, config.worker_count, config.worker_vmid_start, config.worker_resources),
    ):
        for role_index in range(count):
            global_index = global_index_for(role, role_index, config.master_count)
            descriptors.append(NodeDescriptor(
                role=role,
                role_index=role_index,
                global_index=global_index,
                vm_id=vmid_start + role_index,
                name=generate_name(role, role_index, config.name_prefix),
                ipv4=generate_address(config.network.net4_prefix, config.network.ip_host_base, global_index),
                ipv6=generate_address(config.network.net6_prefix, config.network.ip_host_base, global_index),
                resources=resources,
            ))

    for key in ('vm_id', 'ipv4', 'name'):
        values = [getattr(d, key) for d in descriptors]
        duplicates = sorted({str(v) for v in values if values.count(v) > 1})
        if duplicates:
            raise TopologyError(f"Duplicate {key} in allocation: {', '.join(duplicates)}")

    logger.debug(
        "Allocated %d control-plane and %d worker node(s)",
        config.master_count, config.worker_count
    )
    return descriptors


def role_for_vm_id(config: SizingConfig, vm_id: int) -> Optional[NodeRole]:
    """Return the role whose id block owns ``vm_id``, or None if unmanaged."""
    if config.master_vmid_start <= vm_id < config.master_vmid_start + config.id_block_size:
        return NodeRole.MASTER
    if config.worker_vmid_start <= vm_id < config.worker_vmid_start + config.id_block_size:
        return NodeRole.WORKER
    return None


def primary(descriptors: List[NodeDescriptor]) -> NodeDescriptor:
    for descriptor in descriptors:
        if descriptor.is_primary:
            return descriptor
    raise TopologyError("Allocation has no primary control-plane node")


def summarize(descriptors: List[NodeDescriptor]) -> Dict[str, List[Dict]]:
    """Group node info by role."""
    return {
        'masters': [d.info() for d in descriptors if d.role == NodeRole.MASTER],
        'workers': [d.info() for d in descriptors if d.role == NodeRole.WORKER],
    }
