"""Tests for the cooldown tracker and threshold evaluator."""

from cpuwatch.core.cooldown import CooldownTracker
from cpuwatch.core.evaluator import ThresholdEvaluator
from cpuwatch.models import ProcessIdentity, ProcessSample

P100 = ProcessIdentity(100, 1000.0)


def test_unknown_process_is_eligible():
    tracker = CooldownTracker(600)
    assert tracker.is_eligible(P100, now=0.0)


def test_suppressed_within_cooldown():
    tracker = CooldownTracker(600)
    tracker.record_notified(P100, now=1.0)

    assert not tracker.is_eligible(P100, now=2.0)
    assert not tracker.is_eligible(P100, now=600.9)


def test_eligible_once_cooldown_elapsed():
    """Exactly cooldown seconds later the process is eligible again."""
    tracker = CooldownTracker(600)
    tracker.record_notified(P100, now=1.0)

    assert tracker.is_eligible(P100, now=601.0)
    # Expired entry is cleaned up on check
    assert len(tracker) == 0


def test_record_overwrites():
    tracker = CooldownTracker(10)
    tracker.record_notified(P100, now=0.0)
    tracker.record_notified(P100, now=5.0)

    assert len(tracker) == 1
    assert tracker.entries()[0].last_notified_at == 5.0
    assert not tracker.is_eligible(P100, now=12.0)


def test_reused_pid_is_not_suppressed():
    """Same pid, different start time: a different process."""
    tracker = CooldownTracker(600)
    tracker.record_notified(P100, now=1.0)

    assert tracker.is_eligible(ProcessIdentity(100, 2000.0), now=2.0)


def test_forget():
    tracker = CooldownTracker(600)
    tracker.record_notified(P100, now=1.0)
    tracker.record_notified(ProcessIdentity(200, 1.0), now=1.0)

    tracker.forget([P100, ProcessIdentity(999, None)])

    assert [e.identity.process_id for e in tracker.entries()] == [200]


def test_exactly_at_threshold_does_not_fire():
    evaluator = ThresholdEvaluator(50.0, CooldownTracker(600))
    samples = [ProcessSample(100, "p", 50.0, 1000.0)]

    assert evaluator.evaluate(samples, now=1.0) == []


def test_above_threshold_fires():
    evaluator = ThresholdEvaluator(50.0, CooldownTracker(600))
    samples = [
        ProcessSample(100, "hot", 50.01, 1000.0),
        ProcessSample(101, "cold", 3.0, 1000.0),
    ]

    events = evaluator.evaluate(samples, now=7.0)

    assert len(events) == 1
    assert events[0].process_id == 100
    assert events[0].name == "hot"
    assert events[0].timestamp == 7.0
    assert events[0].identity == P100


def test_cooldown_suppresses_breach():
    tracker = CooldownTracker(600)
    tracker.record_notified(P100, now=1.0)
    evaluator = ThresholdEvaluator(50.0, tracker)

    events = evaluator.evaluate([ProcessSample(100, "p", 80.0, 1000.0)], now=2.0)

    assert events == []


def test_events_ordered_by_pid():
    """Delivery order is stable regardless of sample order."""
    evaluator = ThresholdEvaluator(10.0, CooldownTracker(600))
    samples = [
        ProcessSample(300, "c", 90.0, 1.0),
        ProcessSample(20, "a", 40.0, 1.0),
        ProcessSample(100, "b", 60.0, 1.0),
    ]

    first = [e.process_id for e in evaluator.evaluate(samples, now=0.0)]
    second = [e.process_id for e in evaluator.evaluate(samples[::-1], now=0.0)]

    assert first == [20, 100, 300]
    assert second == first


def test_evaluate_does_not_record():
    """Only the caller records, after a confirmed delivery."""
    tracker = CooldownTracker(600)
    evaluator = ThresholdEvaluator(50.0, tracker)
    evaluator.evaluate([ProcessSample(100, "p", 99.0, 1000.0)], now=1.0)

    assert len(tracker) == 0
