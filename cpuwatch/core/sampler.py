"""Per-process CPU sampling for cpuwatch."""

import time
from typing import Callable, Optional

import structlog

from cpuwatch.core.process_table import ProcessTable, cpu_count
from cpuwatch.models import ProcessIdentity, ProcessSample

logger = structlog.get_logger()


class ProcessSampler:
    """Computes CPU usage per process between consecutive calls to ``sample``.

    CPU usage is not normalized by default: a process saturating two cores
    reports 200.0, the same convention ``top`` uses. With ``normalize_by_cores``
    every reported value is divided by the logical core count instead. The
    convention is fixed for the lifetime of the sampler.
    """

    def __init__(
        self,
        table: Optional[ProcessTable] = None,
        clock: Callable[[], float] = time.monotonic,
        normalize_by_cores: bool = False,
        cores: Optional[int] = None,
    ):
        """Initialize the sampler.

        Args:
            table: Process table to read from
            clock: Monotonic clock used for elapsed wall time
            normalize_by_cores: Divide usage by the logical core count
            cores: Core count override, mostly for tests
        """
        self.table = table or ProcessTable()
        self.clock = clock
        self.normalize_by_cores = normalize_by_cores
        self.divisor = (cores or cpu_count()) if normalize_by_cores else 1
        self.last_exited: set[ProcessIdentity] = set()
        self._previous: dict[ProcessIdentity, tuple[float, float]] = {}
        self.logger = logger.bind(component="ProcessSampler")

    def __len__(self) -> int:
        return len(self._previous)

    def __contains__(self, identity: ProcessIdentity) -> bool:
        return identity in self._previous

    def prime(self) -> None:
        """Record a baseline for every process without reporting anything."""
        self.sample()
        self.logger.debug("Sampler primed", tracked=len(self._previous))

    def sample(self) -> list[ProcessSample]:
        """Sample the process table.

        Processes seen for the first time only establish a baseline. Processes
        that disappeared since the last call are dropped and listed in
        ``last_exited``. A process that is listed but could not be read keeps
        its old baseline and is simply not reported this time.

        Returns:
            Samples for processes that have a previous reading
        """
        entries, skipped = self.table.read()
        now = self.clock()
        samples = []
        seen = set()

        for entry in entries:
            identity = entry.identity
            seen.add(identity)
            previous = self._previous.get(identity)
            self._previous[identity] = (entry.cpu_time, now)

            if previous is None:
                if entry.started_at is None:
                    self.logger.debug(
                        "No start time, pid reuse cannot be detected",
                        pid=entry.process_id,
                    )
                continue

            prev_cpu, prev_time = previous
            elapsed = now - prev_time
            used = entry.cpu_time - prev_cpu
            if elapsed <= 0 or used < 0:
                continue

            samples.append(
                ProcessSample(
                    process_id=entry.process_id,
                    name=entry.name,
                    cpu_percent=used / elapsed * 100 / self.divisor,
                    started_at=entry.started_at,
                )
            )

        self.last_exited = {
            identity
            for identity in self._previous
            if identity not in seen and identity.process_id not in skipped
        }
        for identity in self.last_exited:
            del self._previous[identity]

        return samples
