"""
Infrastructure modules: SSH execution, provisioning and K3s bootstrap.
"""
from .provision import Provisioner, StaticProvisioner
from .ssh import ConnectionPool, RemoteCommand, RemoteCommandExecutor, SSHCredential

__all__ = [
    'ConnectionPool',
    'Provisioner',
    'RemoteCommand',
    'RemoteCommandExecutor',
    'SSHCredential',
    'StaticProvisioner',
]
