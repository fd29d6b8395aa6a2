import logging

from k3sctl.modules.k3s.events import EventBus, LoggingObserver, StepFailed, StepStarted, StepSucceeded


class Recorder:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)


class Broken:
    def notify(self, event):
        raise RuntimeError("observer exploded")


def test_bus_delivers_in_order():
    recorder = Recorder()
    bus = EventBus([recorder])

    bus.emit(StepStarted(phase="primary_init", node="cluster-master"))
    bus.emit(StepSucceeded(phase="primary_init", node="cluster-master", attempts=2, duration=3.5))

    assert [type(e) for e in recorder.events] == [StepStarted, StepSucceeded]
    assert recorder.events[1].dict()["attempts"] == 2


def test_broken_observer_does_not_stop_delivery(caplog):
    recorder = Recorder()
    bus = EventBus([Broken(), recorder])

    with caplog.at_level(logging.WARNING, logger="k3s.events"):
        bus.emit(StepStarted(phase="worker_join", node="cluster-worker-1"))

    assert len(recorder.events) == 1
    assert "observer exploded" in caplog.text


def test_logging_observer(caplog):
    observer = LoggingObserver()

    with caplog.at_level(logging.INFO, logger="k3s.progress"):
        observer.notify(StepFailed(phase="token_fetch", node="cluster-master",
                                   category="network-timeout", message="Connection timed out", attempts=4))

    assert "token_fetch on cluster-master failed [network-timeout]" in caplog.text
