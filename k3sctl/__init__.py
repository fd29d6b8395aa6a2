"""k3sctl - K3s cluster bootstrap CLI."""

__version__ = "0.1.0"
