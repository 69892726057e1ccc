"""Data models for cpuwatch."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import NamedTuple, Optional


class ProcessIdentity(NamedTuple):
    """A pid paired with its start time.

    Operating systems reuse pids, so the start time is what tells two processes
    with the same number apart. ``started_at`` is None when the OS refused to
    report it; identity then degrades to the bare pid.
    """

    process_id: int
    started_at: Optional[float]


@dataclass(frozen=True)
class ProcessEntry:
    """One row of the OS process table."""

    process_id: int
    started_at: Optional[float]
    name: str
    cpu_time: float  # Cumulative user + system seconds

    @property
    def identity(self) -> ProcessIdentity:
        return ProcessIdentity(self.process_id, self.started_at)


@dataclass(frozen=True)
class ProcessSample:
    """CPU usage of one process between two consecutive samples."""

    process_id: int
    name: str
    cpu_percent: float
    started_at: Optional[float] = None

    @property
    def identity(self) -> ProcessIdentity:
        return ProcessIdentity(self.process_id, self.started_at)


@dataclass(frozen=True)
class CooldownEntry:
    """Last successful notification for a process."""

    identity: ProcessIdentity
    last_notified_at: float


@dataclass(frozen=True)
class NotificationEvent:
    """A breach that is eligible for notification on this tick."""

    process_id: int
    name: str
    cpu_percent: float
    timestamp: float
    started_at: Optional[float] = None
    cmdline: str = ""

    @property
    def identity(self) -> ProcessIdentity:
        return ProcessIdentity(self.process_id, self.started_at)

    def started_iso(self) -> str:
        """Process start time as ISO-8601 (UTC), or '?' when unknown."""
        if self.started_at is None:
            return "?"
        return datetime.fromtimestamp(self.started_at, tz=timezone.utc).isoformat()
