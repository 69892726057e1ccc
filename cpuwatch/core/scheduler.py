"""Tick loop driving sample -> evaluate -> notify."""

import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

import structlog

from cpuwatch.config import Settings
from cpuwatch.core.cooldown import CooldownTracker
from cpuwatch.core.evaluator import ThresholdEvaluator
from cpuwatch.core.process_table import ProcessTable
from cpuwatch.core.sampler import ProcessSampler
from cpuwatch.exceptions import DeliveryError
from cpuwatch.notifiers.telegram import TelegramNotifier

logger = structlog.get_logger()


@dataclass
class TickReport:
    """What happened during one tick."""

    samples: int = 0
    breaches: int = 0
    delivered: int = 0
    failed: int = 0
    abandoned: int = 0


class Scheduler:
    """Runs one tick every ``interval`` seconds until stopped.

    Ticks never overlap. A tick that takes longer than the interval delays the
    next one; missed ticks are not caught up.
    """

    def __init__(
        self,
        interval: float,
        sampler: ProcessSampler,
        evaluator: ThresholdEvaluator,
        tracker: CooldownTracker,
        notifier: TelegramNotifier,
        clock: Callable[[], float] = time.monotonic,
        stop_event: Optional[threading.Event] = None,
        cmdline_lookup: Optional[Callable[[int, str], str]] = None,
    ):
        """Initialize the scheduler.

        Args:
            interval: Seconds between tick starts
            sampler: Process sampler
            evaluator: Threshold evaluator
            tracker: Cooldown tracker shared with the evaluator
            notifier: Delivers notification events
            clock: Monotonic clock used for cooldown bookkeeping
            stop_event: Set to stop the loop
            cmdline_lookup: Resolves (pid, fallback) to a command line
        """
        self.interval = interval
        self.sampler = sampler
        self.evaluator = evaluator
        self.tracker = tracker
        self.notifier = notifier
        self.clock = clock
        self.stop_event = stop_event or threading.Event()
        self.cmdline_lookup = cmdline_lookup
        self.iteration = 0
        self.logger = logger.bind(component="Scheduler")

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    def stop(self) -> None:
        """Ask the loop to stop after the current notification attempt."""
        self.stop_event.set()

    def run(self) -> None:
        """Prime the sampler and tick until stopped."""
        self.logger.info("Starting monitoring loop", interval=self.interval)
        self.sampler.prime()

        next_tick = time.monotonic() + self.interval
        while not self.stop_event.wait(max(0.0, next_tick - time.monotonic())):
            started = time.monotonic()
            self.iteration += 1
            try:
                self.tick(self.clock())
            except Exception as e:
                self.logger.error(
                    "Error in monitoring loop iteration",
                    iteration=self.iteration,
                    error=str(e),
                    exc_info=True,
                )
            next_tick = max(started + self.interval, time.monotonic())

        self.logger.info("Monitoring loop stopped", iterations=self.iteration)

    def tick(self, now: float) -> TickReport:
        """Run one sample -> evaluate -> notify cycle.

        Args:
            now: Clock reading for this tick

        Returns:
            Summary of the tick
        """
        report = TickReport()
        samples = self.sampler.sample()
        report.samples = len(samples)
        if self.sampler.last_exited:
            self.tracker.forget(self.sampler.last_exited)

        events = self.evaluator.evaluate(samples, now)
        report.breaches = len(events)

        for index, event in enumerate(events):
            if self.stopping:
                report.abandoned = len(events) - index
                self.logger.info(
                    "Shutdown requested, abandoning notifications",
                    remaining=report.abandoned,
                )
                break

            if self.cmdline_lookup is not None:
                event = replace(
                    event, cmdline=self.cmdline_lookup(event.process_id, event.name)
                )

            self.logger.warning(
                "Threshold exceeded",
                pid=event.process_id,
                name=event.name,
                cpu_percent=round(event.cpu_percent, 1),
                threshold=self.evaluator.threshold,
            )
            try:
                self.notifier.notify(event)
            except DeliveryError as e:
                report.failed += 1
                self.logger.error(
                    "Notification failed, process stays eligible",
                    pid=event.process_id,
                    attempts=e.attempts,
                    status_code=e.status_code,
                    error=str(e),
                )
                continue

            self.tracker.record_notified(event.identity, now)
            report.delivered += 1

        self.logger.debug(
            "Tick complete",
            iteration=self.iteration,
            samples=report.samples,
            breaches=report.breaches,
            delivered=report.delivered,
            failed=report.failed,
        )
        return report


def build_scheduler(
    settings: Settings, stop_event: Optional[threading.Event] = None
) -> Scheduler:
    """Wire up the real process table, sampler, tracker and notifier.

    Args:
        settings: Validated settings
        stop_event: Shared stop flag, one is created when omitted

    Returns:
        A scheduler ready to ``run``
    """
    stop_event = stop_event or threading.Event()
    table = ProcessTable()
    sampler = ProcessSampler(table, normalize_by_cores=settings.normalize_by_cores)
    tracker = CooldownTracker(settings.cooldown_seconds)
    evaluator = ThresholdEvaluator(settings.threshold_percent, tracker)
    notifier = TelegramNotifier(
        token=settings.telegram_token,
        chat_id=settings.telegram_chat_id,
        threshold=settings.threshold_percent,
        timeout=settings.request_timeout,
        max_attempts=settings.max_attempts,
        retry_backoff=settings.retry_backoff,
        retry_after_cap=settings.retry_after_cap,
        stop_event=stop_event,
    )
    return Scheduler(
        interval=settings.check_interval,
        sampler=sampler,
        evaluator=evaluator,
        tracker=tracker,
        notifier=notifier,
        stop_event=stop_event,
        cmdline_lookup=table.cmdline,
    )
