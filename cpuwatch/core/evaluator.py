"""Threshold evaluation."""

from typing import Iterable

import structlog

from cpuwatch.core.cooldown import CooldownTracker
from cpuwatch.models import NotificationEvent, ProcessSample

logger = structlog.get_logger()


class ThresholdEvaluator:
    """Turns process samples into notification events."""

    def __init__(self, threshold: float, tracker: CooldownTracker):
        self.threshold = threshold
        self.tracker = tracker
        self.logger = logger.bind(component="ThresholdEvaluator")

    def check_threshold(self, sample: ProcessSample) -> bool:
        """Check if a sample exceeds the threshold. Equality does not count."""
        return sample.cpu_percent > self.threshold

    def evaluate(
        self, samples: Iterable[ProcessSample], now: float
    ) -> list[NotificationEvent]:
        """Select the breaches that should be notified on this tick.

        Args:
            samples: Samples from the current tick
            now: Current time, compared against cooldown entries

        Returns:
            Events ordered by pid, then start time
        """
        events = []
        for sample in samples:
            if not self.check_threshold(sample):
                continue
            if not self.tracker.is_eligible(sample.identity, now):
                self.logger.debug(
                    "Breach suppressed by cooldown",
                    pid=sample.process_id,
                    name=sample.name,
                    cpu_percent=round(sample.cpu_percent, 1),
                )
                continue
            events.append(
                NotificationEvent(
                    process_id=sample.process_id,
                    name=sample.name,
                    cpu_percent=sample.cpu_percent,
                    timestamp=now,
                    started_at=sample.started_at,
                )
            )

        events.sort(key=lambda e: (e.process_id, e.started_at or 0.0))
        return events
