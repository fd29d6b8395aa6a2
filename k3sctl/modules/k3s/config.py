"""K3s installer configuration management.

Configuration is loaded with the following precedence:
1. Environment variables (SSH settings only)
2. Configuration file
3. Default values
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ...config import Config
from ..ssh import SSHCredential
from .models import SizingConfig
from .orchestrator import OrchestratorOptions

logger = logging.getLogger("k3s.config")

# Default configuration paths
DEFAULT_CONFIG_PATHS = [
    Path("~/.config/k3sctl/config.yaml"),
    Path("k3sctl.yaml"),
]


class ConfigError(ValueError):
    """Configuration could not be found, parsed or validated."""
    kind = 'validation'


class SSHConfig(BaseModel):
    """SSH connection configuration."""
    user: str = Field(default="ubuntu", description="SSH username")
    key_path: str = Field(default="~/.ssh/id_rsa", description="Path to SSH private key")
    port: int = Field(default=22, gt=0, lt=65536, description="SSH port number")
    connect_timeout: int = Field(default=Config.SSH_TIMEOUT, gt=0, description="SSH connection timeout in seconds")
    command_timeout: int = Field(default=Config.COMMAND_TIMEOUT, gt=0, description="Remote command timeout in seconds")

    @field_validator('key_path')
    @classmethod
    def expand_key_path(cls, v: str) -> str:
        """Expand the user home directory in the key path."""
        return os.path.expanduser(v)

    def credential(self) -> SSHCredential:
        return SSHCredential(username=self.user, key_path=self.key_path, port=self.port)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default=Config.LOG_LEVEL, description="Logging level")
    file: Optional[str] = Field(default=None, description="Path to log file (if None, logs to stderr only)")
    max_size_mb: int = Field(default=100, gt=0, description="Maximum log file size in MB before rotation")
    backup_count: int = Field(default=5, ge=0, description="Number of backup log files to keep")

    @field_validator('level')
    @classmethod
    def check_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return v


class InstallerConfig(BaseModel):
    """Everything needed to bootstrap or tear down one cluster."""
    model_config = ConfigDict(extra='forbid')

    sizing: SizingConfig
    ssh: SSHConfig = Field(default_factory=SSHConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    orchestrator: OrchestratorOptions = Field(default_factory=OrchestratorOptions)
    hosts: Dict[str, str] = Field(
        default_factory=dict,
        description="Node name to SSH host, for nodes not reachable at their allocated address",
    )
    kubeconfig_out: Optional[str] = Field(default=None, description="Where to write the admin kubeconfig")

    def kubeconfig_path(self) -> Path:
        path = self.kubeconfig_out or f"~/.kube/k3s-{self.sizing.name_prefix}.yaml"
        return Path(path).expanduser()

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = "<dict>") -> 'InstallerConfig':
        data = dict(data or {})
        ssh = dict(data.get('ssh') or {})
        overrides = Config.ssh_overrides()
        if overrides:
            logger.debug("Applying SSH overrides from environment: %s", ", ".join(overrides))
            ssh.update(overrides)
        data['ssh'] = ssh
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration in {source}:\n{e}") from e

    @classmethod
    def load(cls, config_path: Optional[Union[str, Path]] = None,
             search_paths: Optional[List[Path]] = None) -> 'InstallerConfig':
        """Load configuration from a YAML file and the environment.

        Args:
            config_path: Explicit config file. Must exist when given.
            search_paths: Candidate files tried in order when no explicit
                path is given

        Raises:
            ConfigError: No file found, unreadable YAML, or invalid values
        """
        if config_path:
            path = Path(config_path).expanduser().absolute()
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
        else:
            candidates = [p.expanduser().absolute() for p in (search_paths or DEFAULT_CONFIG_PATHS)]
            path = next((p for p in candidates if p.exists()), None)
            if path is None:
                raise ConfigError(
                    f"No config file found in: {', '.join(str(p) for p in candidates)}"
                )

        logger.debug("Loading configuration from %s", path)
        return cls.from_dict(cls._load_config_file(path), source=str(path))

    @staticmethod
    def _load_config_file(path: Path) -> Dict[str, Any]:
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping at the top level")
        return data

    def save(self, path: Union[str, Path]) -> Path:
        """Save configuration to a file."""
        path = Path(path).expanduser().absolute()
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            yaml.safe_dump(self.model_dump(mode='json', exclude_none=True), f,
                           default_flow_style=False, sort_keys=False)
        return path
