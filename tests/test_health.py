import threading

from inference import health
from inference.health import ProviderHealthTracker


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_degradation_expires_after_ttl():
    clock = FakeClock()
    tracker = ProviderHealthTracker(ttl_s=1800, clock=clock)

    assert not tracker.is_degraded("anthropic")
    tracker.mark_degraded("anthropic")
    assert tracker.is_degraded("anthropic")

    clock.now += 1799
    assert tracker.is_degraded("anthropic")
    assert tracker.snapshot() == {"anthropic": 1.0}

    clock.now += 1
    assert not tracker.is_degraded("anthropic")
    assert tracker.snapshot() == {}


def test_marks_are_per_provider():
    tracker = ProviderHealthTracker(ttl_s=60, clock=FakeClock())
    tracker.mark_degraded("openai")
    assert tracker.is_degraded("openai")
    assert not tracker.is_degraded("xai")


def test_concurrent_marks_and_checks():
    tracker = ProviderHealthTracker(ttl_s=60)
    names = [f"provider-{i}" for i in range(20)]

    def worker(name):
        for _ in range(50):
            tracker.mark_degraded(name)
            tracker.is_degraded(name)

    threads = [threading.Thread(target=worker, args=(name,)) for name in names]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert all(tracker.is_degraded(name) for name in names)


def test_shared_tracker_is_a_singleton():
    health._reset_for_testing()
    first = health.get_health_tracker()
    assert health.get_health_tracker() is first
    health._reset_for_testing()
    assert health.get_health_tracker() is not first
