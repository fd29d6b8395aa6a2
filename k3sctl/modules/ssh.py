"""
Remote command execution over SSH using paramiko.
"""
import io
import logging
import os
import socket
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Protocol

import paramiko
from paramiko.ssh_exception import (
    AuthenticationException,
    NoValidConnectionsError,
    SSHException,
)
from pydantic import SecretStr

logger = logging.getLogger("ssh")

REDACTED = "***"


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every secret value in ``text`` before it is logged."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


@dataclass
class SSHCredential:
    """Authentication material for one SSH user."""
    username: str
    private_key: Optional[SecretStr] = None
    key_path: Optional[str] = None
    port: int = 22

    def __post_init__(self):
        if isinstance(self.private_key, str):
            self.private_key = SecretStr(self.private_key)
        if self.key_path:
            self.key_path = os.path.expanduser(self.key_path)

    def load_pkey(self) -> Optional[paramiko.PKey]:
        """Load the private key, trying Ed25519, RSA then ECDSA."""
        if self.private_key is None and not self.key_path:
            return None

        last_error: Optional[Exception] = None
        for key_cls in (paramiko.Ed25519Key, paramiko.RSAKey, paramiko.ECDSAKey):
            try:
                if self.private_key is not None:
                    return key_cls.from_private_key(io.StringIO(self.private_key.get_secret_value()))
                return key_cls.from_private_key_file(self.key_path)
            except SSHException as e:
                last_error = e
                continue
        raise ConnectionFailure(
            f"Unsupported private key format for {self.key_path or 'inline key'}: {last_error}",
            kind="validation",
        )


@dataclass
class CommandOutcome:
    """Exit status and captured output of one remote command."""
    exit_status: int
    stdout: SecretStr
    stderr: str = ""


@dataclass
class RemoteCommand:
    """A remote command with its symmetric teardown."""
    name: str
    create: str
    delete: Optional[str] = None
    secrets: tuple = field(default_factory=tuple, repr=False)

    def describe(self, script: Optional[str] = None) -> str:
        return redact(script if script is not None else self.create, self.secrets)


class ConnectionFailure(Exception):
    """Could not reach or authenticate to the host. Safe to retry."""
    terminal = False

    def __init__(self, message: str, host: Optional[str] = None, kind: str = "network-timeout"):
        super().__init__(message)
        self.host = host
        self.kind = kind


class CommandFailure(Exception):
    """The remote command ran and exited non-zero.

    Never retried by the executor: a partially executed script is not
    resumed from the middle.
    """
    terminal = True
    kind = None

    def __init__(self, message: str, host: str, exit_status: int, stderr: str = ""):
        super().__init__(message)
        self.host = host
        self.exit_status = exit_status
        self.stderr = stderr


class Transport(Protocol):
    """Capability interface for a remote shell channel."""

    def execute(self, command: str, timeout: Optional[float] = None) -> CommandOutcome:
        ...

    def close(self) -> None:
        ...


class SSHTransport:
    """paramiko-backed remote shell to a single host."""

    def __init__(self, host: str, credential: SSHCredential, connect_timeout: float = 30.0):
        self.host = host
        self.credential = credential
        self.connect_timeout = connect_timeout
        self._client: Optional[paramiko.SSHClient] = None
        self._lock = threading.Lock()

    def _connect(self) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        pkey = self.credential.load_pkey()
        try:
            client.connect(
                hostname=self.host,
                port=self.credential.port,
                username=self.credential.username,
                pkey=pkey,
                look_for_keys=pkey is None,
                allow_agent=pkey is None,
                timeout=self.connect_timeout,
            )
        except AuthenticationException as e:
            client.close()
            raise ConnectionFailure(
                f"Authentication failed for {self.credential.username}@{self.host}: {e}",
                host=self.host, kind="permission",
            ) from e
        except (NoValidConnectionsError, SSHException, socket.timeout, OSError) as e:
            client.close()
            raise ConnectionFailure(
                f"Connection to {self.host}:{self.credential.port} failed: {e}",
                host=self.host,
            ) from e
        return client

    def _ensure_client(self) -> paramiko.SSHClient:
        with self._lock:
            transport = self._client.get_transport() if self._client else None
            if transport is None or not transport.is_active():
                logger.debug("Opening SSH connection to %s@%s", self.credential.username, self.host)
                self._client = self._connect()
            return self._client

    def execute(self, command: str, timeout: Optional[float] = None) -> CommandOutcome:
        client = self._ensure_client()
        try:
            _, stdout, stderr = client.exec_command(command, timeout=timeout)
            out = stdout.read().decode('utf-8', errors='replace')
            err = stderr.read().decode('utf-8', errors='replace')
            exit_status = stdout.channel.recv_exit_status()
        except socket.timeout as e:
            raise ConnectionFailure(f"Command on {self.host} timed out after {timeout}s", host=self.host) from e
        except SSHException as e:
            self.close()
            raise ConnectionFailure(f"SSH channel to {self.host} failed: {e}", host=self.host) from e
        return CommandOutcome(exit_status=exit_status, stdout=SecretStr(out), stderr=err)

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None


class ConnectionPool:
    """Thread-safe pool of transports keyed by ``user@host:port``."""

    def __init__(self, connect_timeout: float = 30.0, transport_factory=None):
        self.connect_timeout = connect_timeout
        self._transport_factory = transport_factory or SSHTransport
        self._connections: Dict[str, Transport] = {}
        self._lock = threading.RLock()

    def get_connection(self, host: str, credential: SSHCredential) -> Transport:
        connection_id = f"{credential.username}@{host}:{credential.port}"
        with self._lock:
            if connection_id not in self._connections:
                logger.debug("Creating new SSH transport for %s", connection_id)
                self._connections[connection_id] = self._transport_factory(
                    host, credential, connect_timeout=self.connect_timeout
                )
            return self._connections[connection_id]

    def discard(self, host: str, credential: SSHCredential) -> None:
        connection_id = f"{credential.username}@{host}:{credential.port}"
        with self._lock:
            transport = self._connections.pop(connection_id, None)
        if transport is not None:
            transport.close()

    def close_all(self) -> None:
        with self._lock:
            for connection_id, transport in self._connections.items():
                try:
                    transport.close()
                except Exception as e:
                    logger.warning("Error closing SSH transport %s: %s", connection_id, e)
            self._connections.clear()


class RemoteCommandExecutor:
    """Runs create/delete commands against hosts.

    Args:
        pool: Connection pool providing transports
        command_timeout: Timeout for a single remote command in seconds
        dry_run: If True, only log commands without executing them
    """

    def __init__(self, pool: Optional[ConnectionPool] = None, command_timeout: float = 600.0,
                 dry_run: bool = False):
        self.pool = pool or ConnectionPool()
        self.command_timeout = command_timeout
        self.dry_run = dry_run

    def run(self, host: str, credential: SSHCredential, command: RemoteCommand) -> SecretStr:
        """Execute ``command.create`` on ``host`` and return its stdout.

        Raises:
            ConnectionFailure: The host could not be reached or authenticated
            CommandFailure: The command exited non-zero
        """
        if self.dry_run:
            logger.info("[DRY RUN] Would execute on %s (%s): %s", host, command.name, command.describe())
            return SecretStr("")

        logger.debug("[%s] Executing %s", host, command.name)
        transport = self.pool.get_connection(host, credential)
        try:
            outcome = transport.execute(command.create, timeout=self.command_timeout)
        except ConnectionFailure:
            self.pool.discard(host, credential)
            raise

        if outcome.exit_status != 0:
            stderr = redact(outcome.stderr.strip(), command.secrets)
            raise CommandFailure(
                f"{command.name} on {host} exited with status {outcome.exit_status}: {stderr}",
                host=host,
                exit_status=outcome.exit_status,
                stderr=stderr,
            )
        return outcome.stdout

    def teardown(self, host: str, credential: SSHCredential, command: RemoteCommand) -> bool:
        """Run ``command.delete`` best-effort. Failures are logged, not raised."""
        if not command.delete:
            return True
        if self.dry_run:
            logger.info("[DRY RUN] Would tear down on %s (%s): %s", host, command.name, command.describe(command.delete))
            return True

        try:
            transport = self.pool.get_connection(host, credential)
            outcome = transport.execute(command.delete, timeout=self.command_timeout)
        except ConnectionFailure as e:
            self.pool.discard(host, credential)
            logger.warning("❌ Teardown of %s on %s failed: %s", command.name, host, e)
            return False

        if outcome.exit_status != 0:
            logger.warning(
                "❌ Teardown of %s on %s exited with status %d: %s",
                command.name, host, outcome.exit_status, redact(outcome.stderr.strip(), command.secrets)
            )
            return False
        logger.info("✅ Teardown of %s on %s complete", command.name, host)
        return True

    def close(self) -> None:
        self.pool.close_all()
