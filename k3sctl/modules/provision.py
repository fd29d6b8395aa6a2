"""Compute provisioning seam.

Machines are created by an external tool. A provisioner only has to tell
the orchestrator how to reach each allocated node.
"""
import logging
from typing import TYPE_CHECKING, Dict, Optional, Protocol, Tuple

from .ssh import SSHCredential

if TYPE_CHECKING:
    from .k3s.models import NodeDescriptor

logger = logging.getLogger("provision")


class Provisioner(Protocol):
    def provision(self, descriptor: "NodeDescriptor") -> Tuple[str, SSHCredential]:
        ...


class StaticProvisioner:
    """Reaches nodes at their allocated IPv4 with one shared credential.

    Args:
        credential: SSH credential used for every node
        overrides: Optional node name to host mapping, for machines that
            are reachable at a different address than the allocated one
    """

    def __init__(self, credential: SSHCredential, overrides: Optional[Dict[str, str]] = None):
        self.credential = credential
        self.overrides = dict(overrides or {})

    def provision(self, descriptor: "NodeDescriptor") -> Tuple[str, SSHCredential]:
        host = self.overrides.get(descriptor.name, descriptor.ipv4)
        logger.debug("Resolved %s (vm %d) to %s", descriptor.name, descriptor.vm_id, host)
        return host, self.credential
