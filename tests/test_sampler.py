"""Tests for the process sampler."""

import pytest

from cpuwatch.core.sampler import ProcessSampler
from cpuwatch.models import ProcessIdentity


def make_sampler(process_table, clock, **kwargs):
    return ProcessSampler(process_table, clock=clock, **kwargs)


def test_first_sighting_is_baseline_only(process_table, clock):
    """A process seen for the first time is not reported."""
    process_table.set(100, cpu_time=5.0)
    sampler = make_sampler(process_table, clock)

    assert sampler.sample() == []
    assert ProcessIdentity(100, 1000.0) in sampler


def test_cpu_percent_from_delta(process_table, clock):
    """cpu_percent is the cpu-time delta over elapsed time, times 100."""
    process_table.set(100, cpu_time=10.0, name="busy")
    sampler = make_sampler(process_table, clock)
    sampler.sample()

    clock.advance(2.0)
    process_table.set(100, cpu_time=11.5, name="busy")
    samples = sampler.sample()

    assert len(samples) == 1
    assert samples[0].process_id == 100
    assert samples[0].name == "busy"
    assert samples[0].cpu_percent == pytest.approx(75.0)


def test_uncapped_by_default(process_table, clock):
    """Multi-core usage is reported above 100 unless normalization is on."""
    process_table.set(7, cpu_time=0.0)
    sampler = make_sampler(process_table, clock, cores=4)
    sampler.sample()

    clock.advance(1.0)
    process_table.set(7, cpu_time=3.0)

    assert sampler.divisor == 1
    assert sampler.sample()[0].cpu_percent == pytest.approx(300.0)


def test_normalized_by_cores(process_table, clock):
    """With normalization every value is divided by the core count."""
    process_table.set(7, cpu_time=0.0)
    process_table.set(8, cpu_time=0.0)
    sampler = make_sampler(process_table, clock, normalize_by_cores=True, cores=4)
    sampler.sample()

    clock.advance(1.0)
    process_table.set(7, cpu_time=3.0)
    process_table.set(8, cpu_time=0.5)
    by_pid = {s.process_id: s.cpu_percent for s in sampler.sample()}

    assert by_pid[7] == pytest.approx(75.0)
    assert by_pid[8] == pytest.approx(12.5)


def test_exited_processes_are_purged(process_table, clock):
    """Processes that disappear are dropped and reported as exited."""
    process_table.set(1, cpu_time=0.0)
    process_table.set(2, cpu_time=0.0)
    sampler = make_sampler(process_table, clock)
    sampler.sample()

    process_table.remove(2)
    clock.advance(1.0)
    sampler.sample()

    assert len(sampler) == 1
    assert sampler.last_exited == {ProcessIdentity(2, 1000.0)}


def test_unreadable_process_is_skipped_not_purged(process_table, clock):
    """A failed read skips one process without dropping its baseline."""
    process_table.set(1, cpu_time=0.0)
    process_table.set(2, cpu_time=0.0)
    sampler = make_sampler(process_table, clock)
    sampler.sample()

    process_table.unreadable.add(2)
    clock.advance(1.0)
    process_table.set(1, cpu_time=0.5)
    samples = sampler.sample()

    assert [s.process_id for s in samples] == [1]
    assert sampler.last_exited == set()
    assert ProcessIdentity(2, 1000.0) in sampler

    process_table.unreadable.clear()
    clock.advance(1.0)
    process_table.set(2, cpu_time=1.0)
    by_pid = {s.process_id: s.cpu_percent for s in sampler.sample()}

    # Averaged over both intervals since the last good read
    assert by_pid[2] == pytest.approx(50.0)


def test_pid_reuse_starts_new_baseline(process_table, clock):
    """A reused pid with a new start time is a different process."""
    process_table.set(100, cpu_time=50.0, started_at=1000.0)
    sampler = make_sampler(process_table, clock)
    sampler.sample()

    clock.advance(1.0)
    process_table.set(100, cpu_time=0.2, started_at=2000.0)

    assert sampler.sample() == []
    assert sampler.last_exited == {ProcessIdentity(100, 1000.0)}
    assert ProcessIdentity(100, 2000.0) in sampler


def test_zero_elapsed_time_reports_nothing(process_table, clock):
    process_table.set(1, cpu_time=0.0)
    sampler = make_sampler(process_table, clock)
    sampler.sample()

    process_table.set(1, cpu_time=1.0)
    assert sampler.sample() == []


def test_prime_reports_nothing(process_table, clock):
    process_table.set(1, cpu_time=0.0)
    sampler = make_sampler(process_table, clock)
    sampler.prime()

    clock.advance(1.0)
    process_table.set(1, cpu_time=0.1)
    assert sampler.sample()[0].cpu_percent == pytest.approx(10.0)
