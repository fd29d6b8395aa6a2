import itertools
import threading
import time

import pytest

from k3sctl.modules.k3s.errors import DeploymentError, ErrorCategory
from k3sctl.modules.k3s.retry import RetryPolicy, RetryRunner, compute_metrics
from k3sctl.modules.ssh import CommandFailure, ConnectionFailure


def flaky(failures, result="done", error=None):
    """Operation failing ``failures`` times before returning ``result``."""
    calls = itertools.count(1)

    def operation():
        if next(calls) <= failures:
            raise error or ConnectionFailure("Connection refused")
        return result
    return operation


def make_runner(sleeps, **policy):
    clock = itertools.count(1000)
    return RetryRunner(RetryPolicy(**policy), name="cluster-master",
                       sleep=sleeps.append, clock=lambda: float(next(clock)))


def test_backoff_sequence_then_success():
    sleeps = []
    runner = make_runner(sleeps, max_retries=2)

    assert runner.execute(flaky(2), "primary_init") == "done"
    assert runner.retry_count == 2
    assert runner.delays == [1000, 2000]
    assert sleeps == [1.0, 2.0]


def test_delay_is_capped():
    policy = RetryPolicy(initial_delay_ms=1000, multiplier=10, max_delay_ms=5000)
    assert [policy.delay_ms(n) for n in (1, 2, 3, 4)] == [1000, 5000, 5000, 5000]


def test_retries_exhausted():
    sleeps = []
    runner = make_runner(sleeps, max_retries=2)

    with pytest.raises(DeploymentError) as exc_info:
        runner.execute(flaky(10), "token_fetch")

    error = exc_info.value
    assert error.exhausted
    assert error.category == ErrorCategory.NETWORK_TIMEOUT
    assert error.phase == "token_fetch"
    assert runner.retry_count == 3
    assert runner.delays == [1000, 2000]


def test_non_retryable_error_short_circuits():
    sleeps = []
    runner = make_runner(sleeps, max_retries=3)
    failure = CommandFailure("sh: curl: command not found", host="10.0.0.1", exit_status=127)

    with pytest.raises(DeploymentError) as exc_info:
        runner.execute(flaky(5, error=failure), "primary_init")

    assert exc_info.value.category == ErrorCategory.MISSING_PREREQUISITE
    assert not exc_info.value.exhausted
    assert sleeps == []
    assert runner.retry_count == 1


def test_attempt_timeout():
    runner = RetryRunner(RetryPolicy(timeout_seconds=0.05, max_retries=0), sleep=lambda s: None)

    with pytest.raises(DeploymentError) as exc_info:
        runner.execute(lambda: time.sleep(0.5), "primary_init")

    assert exc_info.value.category == ErrorCategory.NETWORK_TIMEOUT
    assert "timed out" in exc_info.value.message


def test_attempts_never_overlap():
    active = []
    overlaps = []
    lock = threading.Lock()
    calls = itertools.count(1)

    def operation():
        with lock:
            active.append(1)
            if len(active) > 1:
                overlaps.append(True)
        try:
            if next(calls) == 1:
                time.sleep(0.3)
            return "ok"
        finally:
            with lock:
                active.pop()

    runner = RetryRunner(RetryPolicy(timeout_seconds=0.2, max_retries=1), sleep=lambda s: None)
    assert runner.execute(operation, "primary_init") == "ok"
    assert overlaps == []


def test_hung_attempt_bounds_execute():
    release = threading.Event()
    calls = []

    def operation():
        calls.append(1)
        release.wait(5)
        return "late"

    runner = RetryRunner(RetryPolicy(timeout_seconds=0.1, max_retries=3), sleep=lambda s: None)
    started = time.monotonic()
    try:
        with pytest.raises(DeploymentError) as exc_info:
            runner.execute(operation, "primary_init")
        elapsed = time.monotonic() - started
    finally:
        release.set()

    assert elapsed < 1.0
    assert len(calls) == 1
    assert exc_info.value.exhausted
    assert not exc_info.value.retryable
    assert exc_info.value.category == ErrorCategory.NETWORK_TIMEOUT


def test_validation_error_makes_one_attempt():
    sleeps = []
    runner = make_runner(sleeps, max_retries=3)
    calls = []

    def operation():
        calls.append(1)
        raise ValueError("invalid node name")

    with pytest.raises(DeploymentError) as exc_info:
        runner.execute(operation, "worker_join")

    assert len(calls) == 1
    assert exc_info.value.category == ErrorCategory.VALIDATION
    assert sleeps == []


def test_history_and_metrics():
    sleeps = []
    runner = make_runner(sleeps, max_retries=2)
    runner.execute(flaky(2), "primary_init")
    runner.mark_complete()

    phases = [s.phase for s in runner.history]
    assert phases[0] == "initializing"
    assert phases[-1] == "complete"

    metrics = runner.metrics()
    assert metrics.error_count == 2
    assert metrics.max_retry_count == 2
    assert metrics.phase_count["primary_init"] == 6
    assert metrics.total_duration == runner.history[-1].timestamp - runner.history[0].timestamp


def test_listeners_receive_every_status():
    seen = []
    runner = RetryRunner(RetryPolicy(max_retries=1), sleep=lambda s: None)
    runner.subscribe(seen.append)

    runner.execute(flaky(1), "worker_join")

    assert seen == runner.history[1:]
    assert [s.error is not None for s in seen].count(True) == 1


def test_mark_failed_records_classified_error():
    runner = RetryRunner(RetryPolicy(), name="cluster-worker-1", sleep=lambda s: None)
    error = runner.mark_failed(ValueError("invalid token format"), "worker_join")

    assert error.category == ErrorCategory.VALIDATION
    assert error.node == "cluster-worker-1"
    assert runner.current.phase == "failed"
    assert runner.current.error is error


def test_compute_metrics_empty():
    metrics = compute_metrics([])
    assert metrics.total_duration == 0
    assert metrics.error_count == 0
