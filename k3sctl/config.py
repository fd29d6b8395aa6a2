"""Process-level configuration for k3sctl."""
import os
from typing import Dict

from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


class Config:
    """Defaults read from the environment, with sensible fallbacks."""

    # Timeouts (in seconds)
    SSH_TIMEOUT: int = int(os.getenv("K3SCTL_SSH_TIMEOUT", "10"))
    COMMAND_TIMEOUT: int = int(os.getenv("K3SCTL_COMMAND_TIMEOUT", "600"))
    DEPLOYMENT_TIMEOUT: int = int(os.getenv("K3SCTL_DEPLOYMENT_TIMEOUT", "1800"))  # 30 minutes

    # Retry configuration
    MAX_RETRIES: int = int(os.getenv("K3SCTL_MAX_RETRIES", "3"))
    RETRY_DELAY_MS: int = int(os.getenv("K3SCTL_RETRY_DELAY_MS", "1000"))

    # Logging
    LOG_LEVEL: str = os.getenv("K3SCTL_LOG_LEVEL", "INFO").upper()
    LOG_FORMAT: str = os.getenv(
        "K3SCTL_LOG_FORMAT",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # Security
    REDACT_KEYS: tuple = ("token", "private_key", "password", "secret")

    @classmethod
    def ssh_overrides(cls) -> Dict[str, object]:
        """SSH settings set in the environment, keyed like SSHConfig fields.

        Read on every call so overrides set after import are honoured.
        """
        overrides: Dict[str, object] = {}
        for env_var, key in (("K3SCTL_SSH_USER", "user"),
                             ("K3SCTL_SSH_KEY_PATH", "key_path"),
                             ("K3SCTL_SSH_PORT", "port")):
            value = os.getenv(env_var)
            if value:
                overrides[key] = value
        return overrides

    @classmethod
    def redact(cls, data: Dict) -> Dict:
        """Return a copy of ``data`` with secret-looking keys masked."""
        masked = {}
        for key, value in data.items():
            if isinstance(value, dict):
                masked[key] = cls.redact(value)
            elif any(k in str(key).lower() for k in cls.REDACT_KEYS) and value:
                masked[key] = "***"
            else:
                masked[key] = value
        return masked
