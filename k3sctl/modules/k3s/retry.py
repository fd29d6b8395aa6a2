"""Retry runner with timeout, exponential backoff and error classification.

Every slow or fallible step of a bootstrap (installs, joins, health checks,
rollout waits) runs through :class:`RetryRunner`. Attempts are strictly
sequential. Each state change is appended to a status history that metrics
are derived from.
"""
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, TypeVar

from pydantic import BaseModel, Field

from ...config import Config
from .errors import DeploymentError, classify_error
from .models import OperationStatus

logger = logging.getLogger("k3s.retry")

T = TypeVar('T')

STATUS_INITIALIZED = 'initializing'
STATUS_COMPLETE = 'complete'
STATUS_FAILED = 'failed'


class RetryPolicy(BaseModel):
    """Timeout and backoff settings for a RetryRunner."""
    timeout_seconds: float = Field(default=Config.DEPLOYMENT_TIMEOUT, gt=0, description="Per-attempt timeout")
    max_retries: int = Field(default=Config.MAX_RETRIES, ge=0, description="Retries after the first attempt")
    initial_delay_ms: int = Field(default=Config.RETRY_DELAY_MS, ge=0)
    max_delay_ms: int = Field(default=60000, ge=0)
    multiplier: float = Field(default=2.0, ge=1.0)

    def delay_ms(self, attempt: int) -> float:
        """Backoff delay after the ``attempt``-th failure (1-based)."""
        return min(self.initial_delay_ms * self.multiplier ** (attempt - 1), self.max_delay_ms)


@dataclass
class RetryMetrics:
    """Metrics derived from a status history."""
    total_duration: float = 0.0
    phase_count: Dict[str, int] = field(default_factory=dict)
    error_count: int = 0
    max_retry_count: int = 0


class OperationTimeout(TimeoutError):
    """Raised when a single attempt exceeds the runner's timeout."""


class AttemptStillRunning(OperationTimeout):
    """A timed-out attempt outlived a further timeout window.

    Starting another attempt would overlap with it, so the operation is
    given up.
    """
    terminal = True


StatusListener = Callable[[OperationStatus], None]


class RetryRunner:
    """Runs an operation with a timeout, classified errors and backoff.

    Args:
        policy: Timeout and backoff settings
        name: Label used in log lines, usually the node or component name
        sleep: Sleep function, injectable for tests
        clock: Time source for status timestamps, injectable for tests
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        name: str = "operation",
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.policy = policy or RetryPolicy()
        self.name = name
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self._history: List[OperationStatus] = []
        self._listeners: List[StatusListener] = []
        self._delays: List[float] = []
        self._abandoned: Optional[Future] = None
        self.current: Optional[OperationStatus] = None
        self._update(STATUS_INITIALIZED, "Retry runner initialized")

    def subscribe(self, listener: StatusListener) -> None:
        """Register a callback invoked with every new status."""
        self._listeners.append(listener)

    @property
    def history(self) -> List[OperationStatus]:
        with self._lock:
            return list(self._history)

    @property
    def delays(self) -> List[float]:
        """Backoff delays slept so far, in milliseconds."""
        return list(self._delays)

    def _update(self, phase: str, message: str, retry_count: int = 0,
                error: Optional[Exception] = None) -> OperationStatus:
        status = OperationStatus(
            phase=phase,
            message=message,
            timestamp=self._clock(),
            retry_count=retry_count,
            error=error,
        )
        with self._lock:
            self._history.append(status)
            self.current = status

        if error is not None:
            logger.warning("[%s] %s: %s", self.name, phase, message)
        else:
            logger.debug("[%s] %s: %s", self.name, phase, message)

        for listener in self._listeners:
            listener(status)
        return status

    def _run_with_timeout(self, operation: Callable[[], T]) -> T:
        """Race ``operation`` against the policy timeout.

        On timeout the attempt is abandoned. Cleaning up whatever it started
        is the caller's job.
        """
        timeout = self.policy.timeout_seconds
        if self._abandoned is not None:
            # A timed-out attempt may still be running; never overlap attempts
            logger.debug("[%s] Waiting up to %gs for timed-out attempt to finish", self.name, timeout)
            done, _ = wait([self._abandoned], timeout=timeout)
            if not done:
                raise AttemptStillRunning(
                    f"Previous attempt still running {timeout:g}s after timing out"
                )
            self._abandoned = None

        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"retry-{self.name}")
        try:
            future = pool.submit(operation)
            try:
                return future.result(timeout=timeout)
            except FutureTimeoutError:
                if not future.cancel():
                    self._abandoned = future
                raise OperationTimeout(f"Operation timed out after {timeout:g}s")
        finally:
            pool.shutdown(wait=False)

    def execute(self, operation: Callable[[], T], phase: str,
                operation_name: Optional[str] = None) -> T:
        """Execute ``operation`` with retries.

        Args:
            operation: Zero-argument callable to run
            phase: Phase label recorded in the status history
            operation_name: Human readable name for messages (defaults to phase)

        Returns:
            The operation's return value

        Raises:
            DeploymentError: On a terminal error, or when retries are exhausted
        """
        name = operation_name or phase
        attempts_allowed = self.policy.max_retries + 1
        retry_count = 0

        self._update(phase, f"Starting {name}")

        while True:
            try:
                result = self._run_with_timeout(operation)
            except Exception as e:
                retry_count += 1
                error = classify_error(e, phase, node=getattr(e, 'node', None) or self.name)
                self._update(
                    phase,
                    f"{name} failed (attempt {retry_count}/{attempts_allowed}): {error.message}",
                    retry_count,
                    error,
                )

                if not error.retryable:
                    if isinstance(e, AttemptStillRunning):
                        error.exhausted = True
                    raise error

                if retry_count > self.policy.max_retries:
                    error.exhausted = True
                    raise error

                delay = self.policy.delay_ms(retry_count)
                self._update(
                    phase,
                    f"Retrying {name} in {delay:g}ms (attempt {retry_count + 1}/{attempts_allowed})",
                    retry_count,
                )
                self._delays.append(delay)
                self._sleep(delay / 1000.0)
                continue

            self._update(phase, f"{name} completed successfully", retry_count)
            return result

    def mark_failed(self, error: Exception, phase: str) -> DeploymentError:
        """Record a final failure for ``phase`` and return the classified error."""
        classified = classify_error(error, phase, node=self.name)
        retry_count = self.current.retry_count if self.current else 0
        self._update(STATUS_FAILED, f"Deployment failed in {phase}: {classified.message}", retry_count, classified)
        logger.error(classified.error_report())
        return classified

    def mark_complete(self) -> None:
        retry_count = self.current.retry_count if self.current else 0
        self._update(STATUS_COMPLETE, "Deployment completed successfully", retry_count)

    @property
    def retry_count(self) -> int:
        return self.current.retry_count if self.current else 0

    def metrics(self) -> RetryMetrics:
        """Derive metrics from the status history."""
        return compute_metrics(self.history)


def compute_metrics(history: List[OperationStatus]) -> RetryMetrics:
    if not history:
        return RetryMetrics()

    phase_count: Dict[str, int] = {}
    for status in history:
        phase_count[status.phase] = phase_count.get(status.phase, 0) + 1

    return RetryMetrics(
        total_duration=history[-1].timestamp - history[0].timestamp,
        phase_count=phase_count,
        error_count=sum(1 for status in history if status.error is not None),
        max_retry_count=max((status.retry_count for status in history), default=0),
    )
