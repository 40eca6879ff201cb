import threading

from oddsave.errors import WatcherDeferredError, WatcherError
from oddsave.startup import initialize_watcher, retry_delay_ms


def test_retry_delay_schedule():
    assert [retry_delay_ms(n) for n in range(4)] == [50, 100, 150, 200]
    assert retry_delay_ms(19) == 1000
    assert retry_delay_ms(500) == 1000


def test_deferred_init_is_retried_until_it_succeeds():
    calls = []
    delays = []

    def init():
        calls.append(1)
        if len(calls) <= 3:
            raise WatcherDeferredError()

    assert initialize_watcher(init, sleep=delays.append)
    assert len(calls) == 4
    assert delays == [0.05, 0.1, 0.15]


def test_deferral_is_recognised_by_message():
    calls = []

    def init():
        calls.append(1)
        if len(calls) == 1:
            raise WatcherError("Watcher initialization deferred: window not yet visible")

    assert initialize_watcher(init, sleep=lambda s: None)
    assert len(calls) == 2


def test_other_errors_stop_the_loop():
    delays = []

    def init():
        raise WatcherError("Failed to watch path: permission denied")

    assert not initialize_watcher(init, sleep=delays.append)
    assert delays == []


def test_stop_event_cancels_retries():
    stop_event = threading.Event()

    def init():
        raise WatcherDeferredError()

    assert not initialize_watcher(init, sleep=lambda s: stop_event.set(), stop_event=stop_event)
