"""K3s cluster bootstrap orchestration.

Bootstrap is a small dependency graph of phases::

    primary_init -> token_fetch -> secondary_join
                                -> worker_join
    primary_init -> credential_retrieval

A step is one phase on one node. Steps are dispatched onto a thread pool as
soon as every predecessor phase has completed successfully. When a
predecessor fails its dependents are recorded as skipped and never run.
"""
import logging
import threading
import time
from collections import Counter
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from ..provision import Provisioner
from ..ssh import RemoteCommand, RemoteCommandExecutor
from . import constants
from .credentials import build_credential
from .errors import DeploymentError, ErrorCategory
from .events import EventBus, Observer, StepFailed, StepSkipped, StepStarted, StepSucceeded
from .health import wait_for_node_ready
from .models import (
    AccessCredential,
    BootstrapReport,
    BootstrapState,
    JoinToken,
    NodeDescriptor,
    NodeRole,
    OperationStatus,
    Phase,
    PhaseResult,
)
from .retry import RetryPolicy, RetryRunner
from .topology import primary as find_primary

logger = logging.getLogger("k3s.orchestrator")

PHASE_DEPENDENCIES: Dict[Phase, Tuple[Phase, ...]] = {
    Phase.PRIMARY_INIT: (),
    Phase.TOKEN_FETCH: (Phase.PRIMARY_INIT,),
    Phase.SECONDARY_JOIN: (Phase.TOKEN_FETCH,),
    Phase.WORKER_JOIN: (Phase.TOKEN_FETCH,),
    Phase.CREDENTIAL_RETRIEVAL: (Phase.PRIMARY_INIT,),
}

# A failure in any of these leaves no usable cluster
CRITICAL_PHASES = (Phase.PRIMARY_INIT, Phase.TOKEN_FETCH, Phase.CREDENTIAL_RETRIEVAL)

DRY_RUN_TOKEN = "dry-run-token"


class OrchestratorOptions(BaseModel):
    """Bootstrap scheduling options."""
    max_parallel: int = Field(default=4, gt=0, description="Concurrent steps")
    wait_for_ready: bool = Field(default=True, description="Run readiness checks after installs")
    health_max_retries: int = Field(default=20, gt=0)
    health_interval: int = Field(default=5, ge=0)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)


@dataclass(frozen=True)
class PlannedStep:
    phase: Phase
    node: NodeDescriptor

    def __str__(self) -> str:
        return f"{self.phase.value}@{self.node.name}"


class DependencyGraphError(ValueError):
    """The phase dependency graph has a cycle or an unknown phase."""


def phase_levels(dependencies: Dict[Phase, Sequence[Phase]]) -> List[List[Phase]]:
    """Group phases into dependency levels.

    Raises:
        DependencyGraphError: On unknown phases or cycles
    """
    for phase, deps in dependencies.items():
        unknown = [d for d in deps if d not in dependencies]
        if unknown:
            raise DependencyGraphError(f"{phase.value} depends on unknown phase(s): {unknown}")

    levels: List[List[Phase]] = []
    placed: set = set()
    remaining = [p for p in Phase if p in dependencies]
    while remaining:
        level = [p for p in remaining if all(d in placed for d in dependencies[p])]
        if not level:
            raise DependencyGraphError(
                f"Cycle in phase dependencies: {', '.join(p.value for p in remaining)}"
            )
        levels.append(level)
        placed.update(level)
        remaining = [p for p in remaining if p not in placed]
    return levels


class BootstrapOrchestrator:
    """Drives a K3s bootstrap across allocated nodes.

    Args:
        descriptors: Allocated nodes, control plane first
        executor: Runs remote commands
        resolver: Maps a descriptor to its SSH host and credential
        runner_factory: Builds a fresh RetryRunner for each step, given a name
        options: Scheduling options
    """

    def __init__(
        self,
        descriptors: Sequence[NodeDescriptor],
        executor: RemoteCommandExecutor,
        resolver: Provisioner,
        runner_factory: Optional[Callable[[str], RetryRunner]] = None,
        options: Optional[OrchestratorOptions] = None,
        dependencies: Optional[Dict[Phase, Tuple[Phase, ...]]] = None,
    ):
        self.descriptors = list(descriptors)
        self.primary = find_primary(self.descriptors)
        self.executor = executor
        self.resolver = resolver
        self.options = options or OrchestratorOptions()
        self.runner_factory = runner_factory or (
            lambda name: RetryRunner(self.options.retry, name=name)
        )
        self.dependencies = dict(dependencies or PHASE_DEPENDENCIES)
        self._levels = phase_levels(self.dependencies)
        self.events = EventBus()

        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._token: Optional[JoinToken] = None
        self._credential: Optional[AccessCredential] = None
        self._history: List[OperationStatus] = []

    @property
    def dry_run(self) -> bool:
        return getattr(self.executor, 'dry_run', False)

    def subscribe(self, observer: Observer) -> None:
        self.events.subscribe(observer)

    def cancel(self) -> None:
        """Stop dispatching new steps. Running steps finish."""
        logger.warning("⚠️  Bootstrap cancellation requested")
        self._cancelled.set()

    def nodes_for(self, phase: Phase) -> List[NodeDescriptor]:
        if phase in (Phase.PRIMARY_INIT, Phase.TOKEN_FETCH, Phase.CREDENTIAL_RETRIEVAL):
            return [self.primary]
        if phase == Phase.SECONDARY_JOIN:
            return [d for d in self.descriptors if d.role == NodeRole.MASTER and not d.is_primary]
        return [d for d in self.descriptors if d.role == NodeRole.WORKER]

    def plan(self) -> List[PlannedStep]:
        """Return every step in dependency order."""
        return [
            PlannedStep(phase, node)
            for level in self._levels
            for phase in level
            for node in self.nodes_for(phase)
        ]

    def _command_for(self, step: PlannedStep, token: Optional[JoinToken]) -> RemoteCommand:
        primary_ip = self.primary.ipv4
        if step.phase == Phase.PRIMARY_INIT:
            return RemoteCommand(
                name="k3s-primary-init",
                create=constants.primary_install_script(),
            )
        if step.phase == Phase.TOKEN_FETCH:
            return RemoteCommand(name="k3s-get-token", create=constants.read_file_script(constants.TOKEN_FILE_PATH))
        if step.phase == Phase.CREDENTIAL_RETRIEVAL:
            return RemoteCommand(
                name="k3s-get-kubeconfig",
                create=constants.read_file_script(constants.KUBECONFIG_PATH),
            )

        if token is None:
            raise DeploymentError(
                f"No join token available for {step}",
                ErrorCategory.VALIDATION,
                step.phase.value,
                node=step.node.name,
            )
        secret = token.reveal()
        if step.phase == Phase.SECONDARY_JOIN:
            return RemoteCommand(
                name="k3s-secondary-join",
                create=constants.secondary_install_script(primary_ip, secret),
                secrets=(secret,),
            )
        return RemoteCommand(
            name="k3s-worker-join",
            create=constants.worker_install_script(primary_ip, secret),
            secrets=(secret,),
        )

    def _operation(self, step: PlannedStep, host, credential, token: Optional[JoinToken]):
        command = self._command_for(step, token)

        if step.phase == Phase.TOKEN_FETCH:
            def fetch_token():
                stdout = self.executor.run(host, credential, command)
                return JoinToken(DRY_RUN_TOKEN if self.dry_run else stdout)
            return fetch_token

        if step.phase == Phase.CREDENTIAL_RETRIEVAL:
            def fetch_credential():
                stdout = self.executor.run(host, credential, command)
                if self.dry_run:
                    return None
                return build_credential(stdout, step.node)
            return fetch_credential

        return lambda: self.executor.run(host, credential, command)

    def _run_step(self, step: PlannedStep, token: Optional[JoinToken]) -> PhaseResult:
        result = PhaseResult(phase=step.phase, node=step.node.name, success=False)
        self.events.emit(StepStarted(phase=step.phase.value, node=step.node.name))
        runner = self.runner_factory(step.node.name)
        try:
            host, credential = self.resolver.provision(step.node)
            value = runner.execute(
                self._operation(step, host, credential, token),
                step.phase.value,
                operation_name=f"{step.phase.value} on {step.node.name}",
            )
            result.attempts = runner.retry_count + 1
            if step.phase in (Phase.PRIMARY_INIT, Phase.SECONDARY_JOIN, Phase.WORKER_JOIN) \
                    and self.options.wait_for_ready and not self.dry_run:
                wait_for_node_ready(
                    self.executor, host, credential, runner,
                    max_retries=self.options.health_max_retries,
                    interval=self.options.health_interval,
                    phase=step.phase.value,
                )
            with self._lock:
                if step.phase == Phase.TOKEN_FETCH:
                    self._token = value
                elif step.phase == Phase.CREDENTIAL_RETRIEVAL:
                    self._credential = value
            result.success = True
            runner.mark_complete()
        except Exception as e:
            if not result.attempts:
                result.attempts = max(runner.retry_count, 1)
            result.error = runner.mark_failed(e, step.phase.value)
        finally:
            result.finished_at = time.time()
            with self._lock:
                self._history.extend(runner.history)

        if result.success:
            self.events.emit(StepSucceeded(
                phase=step.phase.value, node=step.node.name,
                attempts=result.attempts, duration=result.duration,
            ))
        else:
            self.events.emit(StepFailed(
                phase=step.phase.value, node=step.node.name,
                category=result.error.category.value, message=result.error.message,
                attempts=result.attempts,
            ))
        return result

    def _skip(self, step: PlannedStep, reason: str) -> PhaseResult:
        error = DeploymentError(
            f"skipped: {reason}",
            ErrorCategory.VALIDATION,
            step.phase.value,
            node=step.node.name,
        )
        self.events.emit(StepSkipped(phase=step.phase.value, node=step.node.name, reason=reason))
        result = PhaseResult(phase=step.phase, node=step.node.name, success=False, error=error, skipped=True)
        result.finished_at = result.started_at
        return result

    @staticmethod
    def _final_state(results: List[PhaseResult]) -> BootstrapState:
        failed = {r.phase for r in results if not r.success}
        if not failed:
            return BootstrapState.BOOTSTRAPPED
        if failed & set(CRITICAL_PHASES):
            return BootstrapState.FAILED
        return BootstrapState.PARTIAL

    def bootstrap(self) -> BootstrapReport:
        """Run every planned step.

        Returns:
            BootstrapReport: Per-step results in completion order, the access
            credential when retrieved, and the merged status history
        """
        steps = self.plan()
        report = BootstrapReport(state=BootstrapState.RUNNING)
        logger.info(
            "🚀 Bootstrapping %d node(s) in %d step(s) from primary %s (%s)",
            len(self.descriptors), len(steps), self.primary.name, self.primary.ipv4
        )

        remaining = Counter(step.phase for step in steps)
        failed_phases: set = set()
        pending = list(steps)
        running = {}

        def record(step_result: PhaseResult) -> None:
            report.results.append(step_result)
            remaining[step_result.phase] -= 1
            if not step_result.success:
                failed_phases.add(step_result.phase)

        with ThreadPoolExecutor(max_workers=self.options.max_parallel,
                                thread_name_prefix="k3s-bootstrap") as pool:
            while pending or running:
                for step in list(pending):
                    deps = self.dependencies[step.phase]
                    failed_deps = [d for d in deps if d in failed_phases]
                    if self._cancelled.is_set():
                        pending.remove(step)
                        record(self._skip(step, "bootstrap cancelled"))
                    elif failed_deps:
                        pending.remove(step)
                        record(self._skip(step, f"{', '.join(d.value for d in failed_deps)} failed"))
                    elif all(remaining[d] == 0 for d in deps):
                        pending.remove(step)
                        with self._lock:
                            token = self._token
                        running[pool.submit(self._run_step, step, token)] = step

                if not running:
                    if pending:
                        raise DependencyGraphError(
                            f"No runnable step among: {', '.join(str(s) for s in pending)}"
                        )
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    running.pop(future)
                    record(future.result())

        report.state = self._final_state(report.results)
        report.credential = self._credential
        with self._lock:
            report.history = sorted(self._history, key=lambda status: status.timestamp)

        if report.state == BootstrapState.BOOTSTRAPPED:
            logger.info("✅ Cluster bootstrapped: %d step(s) succeeded", len(report.results))
        else:
            failed = report.failed()
            logger.error(
                "❌ Bootstrap %s: %d of %d step(s) failed or skipped",
                report.state.value, len(failed), len(report.results)
            )
        return report
