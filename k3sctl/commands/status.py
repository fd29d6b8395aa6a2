from pathlib import Path
from typing import Optional

import typer
import yaml
from pydantic import SecretStr
from rich.table import Table

from ..modules.k3s.health import check_cluster_nodes
from ..modules.k3s.models import AccessCredential
from .common import CONFIG_OPTION_HELP, allocate_nodes, console, load_config

app = typer.Typer(help="Cluster status")


def load_credential(path: Path, node_name: str) -> AccessCredential:
    kubeconfig = path.read_text()
    document = yaml.safe_load(kubeconfig) or {}
    clusters = document.get('clusters') or [{}]
    server = (clusters[0].get('cluster') or {}).get('server', '')
    return AccessCredential(server=server, kubeconfig=SecretStr(kubeconfig), node_name=node_name)


@app.command("cluster")
def status_cluster(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
    kubeconfig: Optional[Path] = typer.Option(None, "--kubeconfig", help="Admin kubeconfig written by 'create cluster'"),
):
    """Show node readiness of a cluster."""
    config = load_config(config_path)
    descriptors = allocate_nodes(config)
    path = (kubeconfig or config.kubeconfig_path()).expanduser()
    if not path.exists():
        console.print(f"❌ Kubeconfig not found: {path}")
        raise typer.Exit(code=1)

    credential = load_credential(path, descriptors[0].name)
    console.print(f"📡 Status for cluster {config.sizing.name_prefix} ({credential.server})")
    try:
        readiness = check_cluster_nodes(credential, [d.name for d in descriptors], strict=False)
    except (ConnectionError, PermissionError) as e:
        console.print(f"❌ {e}")
        raise typer.Exit(code=1)

    table = Table()
    table.add_column("Node", style="cyan")
    table.add_column("Status")
    for name in readiness.ready:
        table.add_row(name, "✅ Ready")
    for name in readiness.not_ready:
        table.add_row(name, "⚠️  NotReady")
    for name in readiness.missing:
        table.add_row(name, "❌ Missing")
    console.print(table)

    if not readiness.healthy:
        raise typer.Exit(code=1)
