"""Show the allocated topology and bootstrap steps without touching any host."""
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from ..modules.k3s.orchestrator import BootstrapOrchestrator, PHASE_DEPENDENCIES
from .common import CONFIG_OPTION_HELP, allocate_nodes, build_runtime, console, load_config, topology_table


def plan_cmd(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
):
    """Print the allocated topology and the ordered bootstrap plan."""
    config = load_config(config_path)
    descriptors = allocate_nodes(config)
    console.print(topology_table(descriptors))

    executor, provisioner = build_runtime(config, dry_run=True)
    orchestrator = BootstrapOrchestrator(descriptors, executor, provisioner, options=config.orchestrator)

    table = Table(title="Bootstrap plan")
    table.add_column("#", justify="right")
    table.add_column("Phase", style="cyan")
    table.add_column("Node")
    table.add_column("After")
    for i, step in enumerate(orchestrator.plan(), 1):
        deps = ", ".join(d.value for d in PHASE_DEPENDENCIES[step.phase]) or "-"
        table.add_row(str(i), step.phase.value, step.node.name, deps)
    console.print(table)
