"""Helpers shared by the CLI commands."""
import logging
from pathlib import Path
from typing import List, Optional, Tuple

import typer
from rich.console import Console
from rich.table import Table

from ..logging import setup_logger
from ..modules.k3s.config import ConfigError, InstallerConfig
from ..modules.k3s.models import NodeDescriptor
from ..modules.k3s.topology import TopologyError, allocate
from ..modules.provision import StaticProvisioner
from ..modules.ssh import ConnectionPool, RemoteCommandExecutor

logger = logging.getLogger("k3sctl")

# Initialize console for rich output
console = Console()

CONFIG_OPTION_HELP = "Path to the cluster config file (defaults to ~/.config/k3sctl/config.yaml or ./k3sctl.yaml)"


def load_config(config_path: Optional[Path]) -> InstallerConfig:
    """Load the installer config, exiting with code 1 on error."""
    try:
        config = InstallerConfig.load(config_path)
    except ConfigError as e:
        console.print(f"❌ {e}")
        raise typer.Exit(code=1)

    if config.logging.file:
        setup_logger(
            "k3s",
            level=getattr(logging, config.logging.level),
            log_file=config.logging.file,
            max_size_mb=config.logging.max_size_mb,
            backup_count=config.logging.backup_count,
            console=False,
        )
    return config


def allocate_nodes(config: InstallerConfig) -> List[NodeDescriptor]:
    try:
        return allocate(config.sizing)
    except TopologyError as e:
        console.print(f"❌ Invalid topology: {e}")
        raise typer.Exit(code=1)


def build_runtime(config: InstallerConfig, dry_run: bool = False) -> Tuple[RemoteCommandExecutor, StaticProvisioner]:
    """Build the executor and provisioner described by ``config``."""
    pool = ConnectionPool(connect_timeout=config.ssh.connect_timeout)
    executor = RemoteCommandExecutor(pool, command_timeout=config.ssh.command_timeout, dry_run=dry_run)
    provisioner = StaticProvisioner(config.ssh.credential(), overrides=config.hosts)
    return executor, provisioner


def topology_table(descriptors: List[NodeDescriptor], title: str = "Cluster topology") -> Table:
    table = Table(title=title)
    table.add_column("Name", style="cyan")
    table.add_column("Role")
    table.add_column("VM ID", justify="right")
    table.add_column("IPv4")
    table.add_column("IPv6")
    table.add_column("Cores", justify="right")
    table.add_column("Memory (MiB)", justify="right")
    table.add_column("Disks (GiB)", justify="right")
    for d in descriptors:
        role = f"{d.role.value} (primary)" if d.is_primary else d.role.value
        table.add_row(
            d.name, role, str(d.vm_id), d.ipv4, d.ipv6 or "-",
            str(d.resources.cores), str(d.resources.memory),
            f"{d.resources.os_disk_size}+{d.resources.data_disk_size}",
        )
    return table
