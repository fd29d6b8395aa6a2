import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from ..modules.k3s.errors import DeploymentError
from ..modules.k3s.events import LoggingObserver
from ..modules.k3s.health import wait_for_cluster
from ..modules.k3s.models import BootstrapReport, BootstrapState
from ..modules.k3s.orchestrator import BootstrapOrchestrator
from ..modules.k3s.retry import RetryRunner
from .common import CONFIG_OPTION_HELP, allocate_nodes, build_runtime, console, load_config, topology_table

logger = logging.getLogger("k3sctl.create")

app = typer.Typer(help="Create clusters")


def results_table(report: BootstrapReport) -> Table:
    table = Table(title=f"Bootstrap result: {report.state.value}")
    table.add_column("Phase", style="cyan")
    table.add_column("Node")
    table.add_column("Result")
    table.add_column("Attempts", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Error")
    for r in report.results:
        if r.success:
            outcome = "✅ ok"
        elif r.skipped:
            outcome = "⏭️  skipped"
        else:
            outcome = "❌ failed"
        error = ""
        if r.error is not None:
            error = f"[{r.error.category.value}] {r.error.message}"
        table.add_row(r.phase.value, r.node, outcome, str(r.attempts), f"{r.duration:.1f}s", error)
    return table


@app.command("cluster")
def create_cluster_cmd(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
    kubeconfig_out: Optional[Path] = typer.Option(None, "--kubeconfig-out", help="Where to write the admin kubeconfig"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Log remote commands without running them"),
    max_parallel: Optional[int] = typer.Option(None, "--max-parallel", min=1, help="Concurrent bootstrap steps"),
    skip_health: bool = typer.Option(False, "--skip-health", help="Skip node and cluster readiness checks"),
):
    """Bootstrap a K3s cluster on the allocated nodes."""
    config = load_config(config_path)
    descriptors = allocate_nodes(config)
    console.print(topology_table(descriptors))

    updates = {}
    if max_parallel:
        updates['max_parallel'] = max_parallel
    if skip_health:
        updates['wait_for_ready'] = False
    options = config.orchestrator.model_copy(update=updates)

    executor, provisioner = build_runtime(config, dry_run=dry_run)
    orchestrator = BootstrapOrchestrator(descriptors, executor, provisioner, options=options)
    orchestrator.subscribe(LoggingObserver())

    logger.info(f"🚀 Creating cluster {config.sizing.name_prefix}{' (dry run)' if dry_run else ''}...")
    try:
        with ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(orchestrator.bootstrap)
            try:
                report = future.result()
            except KeyboardInterrupt:
                console.print("⚠️  Interrupted, waiting for running steps to finish...")
                orchestrator.cancel()
                report = future.result()
    finally:
        executor.close()

    console.print(results_table(report))

    if report.credential is not None:
        path = report.credential.write(kubeconfig_out or config.kubeconfig_path())
        console.print(f"✅ Kubeconfig written to {path} (server {report.credential.server})")

        if report.state == BootstrapState.BOOTSTRAPPED and options.wait_for_ready:
            names = [d.name for d in descriptors]
            runner = RetryRunner(options.retry, name=config.sizing.name_prefix)
            try:
                wait_for_cluster(report.credential, names, runner)
                console.print(f"✅ All {len(names)} node(s) are Ready")
            except DeploymentError as e:
                console.print(e.error_report())
                raise typer.Exit(code=1)

    if report.state == BootstrapState.BOOTSTRAPPED:
        console.print("✅ Cluster bootstrap complete.")
        return

    for result in report.failed():
        if result.error is not None and not result.skipped:
            console.print(result.error.error_report())
    if report.state == BootstrapState.PARTIAL:
        console.print("⚠️  Cluster is up but some nodes failed to join. Re-run after fixing the errors above.")
    else:
        console.print("❌ Cluster bootstrap failed.")
    raise typer.Exit(code=1)
