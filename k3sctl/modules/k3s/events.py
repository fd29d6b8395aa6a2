"""Bootstrap step events and the bus that delivers them to observers."""
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger("k3s.events")


@dataclass(frozen=True)
class StepEvent:
    phase: str
    node: str
    ts: float = field(default_factory=time.time)

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class StepStarted(StepEvent):
    pass


@dataclass(frozen=True)
class StepSucceeded(StepEvent):
    attempts: int = 1
    duration: float = 0.0


@dataclass(frozen=True)
class StepFailed(StepEvent):
    category: str = "unknown"
    message: str = ""
    attempts: int = 0


@dataclass(frozen=True)
class StepSkipped(StepEvent):
    reason: str = ""


class Observer(Protocol):
    def notify(self, event: StepEvent) -> None: ...


class EventBus:
    def __init__(self, observers: Optional[List[Observer]] = None):
        self._observers: List[Observer] = list(observers or [])

    def subscribe(self, observer: Observer) -> None:
        self._observers.append(observer)

    def emit(self, event: StepEvent) -> None:
        for observer in self._observers:
            try:
                observer.notify(event)
            except Exception as e:
                # Observers must not break a bootstrap
                logger.warning("Observer %r failed on %s: %s", observer, type(event).__name__, e)


class LoggingObserver:
    """Observer that turns step events into log lines."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logging.getLogger("k3s.progress")

    def notify(self, event: StepEvent) -> None:
        if isinstance(event, StepStarted):
            self.log.info("🚀 %s on %s started", event.phase, event.node)
        elif isinstance(event, StepSucceeded):
            self.log.info("✅ %s on %s succeeded after %d attempt(s) in %.1fs",
                          event.phase, event.node, event.attempts, event.duration)
        elif isinstance(event, StepFailed):
            self.log.error("❌ %s on %s failed [%s]: %s",
                           event.phase, event.node, event.category, event.message)
        elif isinstance(event, StepSkipped):
            self.log.warning("⏭️  %s on %s skipped: %s", event.phase, event.node, event.reason)
