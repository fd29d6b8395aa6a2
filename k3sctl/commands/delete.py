import logging
from pathlib import Path
from typing import Optional

import typer

from ..modules.k3s.teardown import TeardownOrderError, TeardownPlan, teardown
from .common import CONFIG_OPTION_HELP, allocate_nodes, build_runtime, console, load_config

logger = logging.getLogger("k3sctl.delete")

app = typer.Typer(help="Delete clusters")


@app.command("cluster")
def delete_cluster_cmd(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
    force: bool = typer.Option(False, "--force", help="Remove the primary even if other nodes could not be removed"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be removed without removing"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Uninstall K3s from every node, joined nodes first and the primary last."""
    config = load_config(config_path)
    descriptors = allocate_nodes(config)
    plan = TeardownPlan.build(descriptors)

    order = ", ".join(d.name for d in plan.dependents) or "-"
    console.print(f"🗑️  Teardown order: [{order}] then {plan.primary.name}")

    if not yes and not dry_run:
        confirm = typer.confirm(
            f"Are you sure you want to delete cluster '{config.sizing.name_prefix}'?", default=False
        )
        if not confirm:
            console.print("❌ Deletion cancelled.")
            raise typer.Exit()

    executor, provisioner = build_runtime(config, dry_run=dry_run)
    try:
        report = teardown(
            descriptors, executor, provisioner,
            force=force, max_parallel=config.orchestrator.max_parallel,
        )
    except TeardownOrderError as e:
        console.print(f"❌ {e}")
        console.print("Fix the nodes above and retry, or pass --force.")
        raise typer.Exit(code=1)
    finally:
        executor.close()

    if not report.complete:
        console.print(f"❌ Teardown incomplete, nodes remaining: {', '.join(report.remaining)}")
        raise typer.Exit(code=1)

    kubeconfig = config.kubeconfig_path()
    if kubeconfig.exists():
        if dry_run:
            console.print(f"🧪 Would delete: {kubeconfig}")
        else:
            kubeconfig.unlink()
            console.print(f"🧹 Removed file: {kubeconfig}")

    console.print("✅ Cluster deletion complete.")
