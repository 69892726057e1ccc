"""Repeat-notification suppression."""

import threading
from typing import Iterable

import structlog

from cpuwatch.models import CooldownEntry, ProcessIdentity

logger = structlog.get_logger()


class CooldownTracker:
    """Remembers when each process was last notified about."""

    def __init__(self, cooldown: float):
        """Initialize the tracker.

        Args:
            cooldown: Seconds that must pass after a successful notification
                before the same process may be notified again
        """
        self.cooldown = cooldown
        self._entries: dict[ProcessIdentity, float] = {}
        self._lock = threading.Lock()
        self.logger = logger.bind(component="CooldownTracker")

    def __len__(self) -> int:
        return len(self._entries)

    def is_eligible(self, identity: ProcessIdentity, now: float) -> bool:
        """Check whether a breach for this process may be notified.

        Expired entries are dropped on the way.
        """
        with self._lock:
            last = self._entries.get(identity)
            if last is None:
                return True
            if now - last >= self.cooldown:
                del self._entries[identity]
                return True
            return False

    def record_notified(self, identity: ProcessIdentity, now: float) -> None:
        """Record a successful notification."""
        with self._lock:
            self._entries[identity] = now
        self.logger.debug(
            "Cooldown started", pid=identity.process_id, until=now + self.cooldown
        )

    def forget(self, identities: Iterable[ProcessIdentity]) -> None:
        """Drop entries for processes that have exited."""
        with self._lock:
            for identity in identities:
                self._entries.pop(identity, None)

    def entries(self) -> list[CooldownEntry]:
        """Snapshot of the current entries, ordered by pid."""
        with self._lock:
            return [
                CooldownEntry(identity=identity, last_notified_at=last)
                for identity, last in sorted(
                    self._entries.items(), key=lambda item: _sort_key(item[0])
                )
            ]


def _sort_key(identity: ProcessIdentity) -> tuple[int, float]:
    return identity.process_id, identity.started_at or 0.0
