"""Telegram delivery for cpuwatch alerts."""

import socket
import threading
import time
from typing import Any, Callable, Optional

import requests
import structlog

from cpuwatch.exceptions import (
    DeliveryError,
    DeliveryPermanentError,
    DeliveryTransientError,
)
from cpuwatch.models import NotificationEvent

logger = structlog.get_logger()

API_URL = "https://api.telegram.org/bot{token}/sendMessage"

# A request that could not be built will fail the same way on every attempt
MALFORMED_REQUEST_ERRORS = (
    requests.exceptions.InvalidURL,
    requests.exceptions.InvalidHeader,
    requests.exceptions.MissingSchema,
    requests.exceptions.InvalidSchema,
)


def format_message(
    event: NotificationEvent, threshold: float, hostname: Optional[str] = None
) -> str:
    """Build the plain-text alert for a breach.

    Args:
        event: The breach to describe
        threshold: Configured CPU threshold in percent
        hostname: Host name to mention, defaults to this host

    Returns:
        Message text
    """
    hostname = hostname or socket.gethostname()
    return (
        f"⚠ Process using >{threshold:.1f}% CPU on {hostname}\n"
        f"Name: {event.name}\n"
        f"PID: {event.process_id}\n"
        f"CPU: {event.cpu_percent:.1f}%\n"
        f"Started: {event.started_iso()}\n"
        f"Cmd: {event.cmdline or event.name}"
    )


class TelegramNotifier:
    """Sends alerts through the Telegram Bot API with bounded retry."""

    def __init__(
        self,
        token: str,
        chat_id: str,
        threshold: float,
        timeout: float = 10.0,
        max_attempts: int = 3,
        retry_backoff: float = 1.0,
        retry_after_cap: float = 30.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], Any] = time.sleep,
        stop_event: Optional[threading.Event] = None,
    ):
        """Initialize the notifier.

        Args:
            token: Bot token
            chat_id: Recipient chat identifier
            threshold: CPU threshold, quoted in the message header
            timeout: Per-request timeout in seconds
            max_attempts: Attempts per message, including the first one
            retry_backoff: Delay before the second attempt; doubles afterwards
            retry_after_cap: Upper bound for server-requested delays
            session: HTTP session to reuse
            sleep: Used for backoff when no stop event is given
            stop_event: When set during a backoff, delivery is abandoned
        """
        self.token = token
        self.chat_id = chat_id
        self.threshold = threshold
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff = retry_backoff
        self.retry_after_cap = retry_after_cap
        self.session = session or requests.Session()
        self.sleep = sleep
        self.stop_event = stop_event
        self.hostname = socket.gethostname()
        self.logger = logger.bind(component="TelegramNotifier")

    @property
    def url(self) -> str:
        return API_URL.format(token=self.token)

    def notify(self, event: NotificationEvent) -> None:
        """Deliver an alert for a breach.

        Raises:
            DeliveryPermanentError: The API rejected the request
            DeliveryTransientError: Every attempt failed with a retryable error
        """
        text = format_message(event, self.threshold, self.hostname)
        self.send(text)
        self.logger.info(
            "Notification sent",
            pid=event.process_id,
            name=event.name,
            cpu_percent=round(event.cpu_percent, 1),
        )

    def send(self, text: str) -> None:
        """Send a message, retrying transient failures.

        Raises:
            DeliveryPermanentError: The API rejected the request
            DeliveryTransientError: Every attempt failed with a retryable error
        """
        last_error: Optional[DeliveryTransientError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                self._post(text)
                return
            except DeliveryPermanentError as e:
                e.attempts = attempt
                self.logger.error(
                    "Delivery rejected", status_code=e.status_code, error=str(e)
                )
                raise
            except DeliveryTransientError as e:
                e.attempts = attempt
                last_error = e
                self.logger.warning(
                    "Delivery attempt failed",
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    status_code=e.status_code,
                    error=str(e),
                )

            if attempt < self.max_attempts:
                self._wait(self._backoff(attempt, last_error), attempt)

        self.logger.error(
            "Giving up on delivery", attempts=self.max_attempts, error=str(last_error)
        )
        raise last_error

    def _backoff(self, attempt: int, error: DeliveryError) -> float:
        if error.retry_after is not None:
            return min(float(error.retry_after), self.retry_after_cap)
        return self.retry_backoff * 2 ** (attempt - 1)

    def _wait(self, delay: float, attempt: int) -> None:
        if self.stop_event is None:
            self.sleep(delay)
        elif self.stop_event.wait(delay):
            raise DeliveryTransientError(
                "Delivery abandoned on shutdown", attempts=attempt
            )

    def _post(self, text: str) -> None:
        """Make one request and classify the outcome.

        Raises:
            DeliveryPermanentError: Client-side failure or malformed request
            DeliveryTransientError: Network, transport or server-side failure
        """
        try:
            response = self.session.post(
                self.url,
                json={"chat_id": self.chat_id, "text": text},
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise DeliveryTransientError(self._redact(str(e))) from None
        except MALFORMED_REQUEST_ERRORS as e:
            raise DeliveryPermanentError(self._redact(str(e))) from None
        except requests.RequestException as e:
            raise DeliveryTransientError(self._redact(str(e))) from None

        status = response.status_code
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = None
        description = (body or {}).get("description") or response.reason or ""

        if status == 429:
            parameters = (body or {}).get("parameters") or {}
            raise DeliveryTransientError(
                f"Rate limited: {description}",
                status_code=status,
                retry_after=parameters.get("retry_after"),
            )
        if status >= 500:
            raise DeliveryTransientError(
                f"Server error: {description}", status_code=status
            )
        if status >= 400:
            raise DeliveryPermanentError(
                f"Request rejected: {description}", status_code=status
            )
        if body is None:
            raise DeliveryTransientError(
                "Unreadable response from Telegram", status_code=status
            )
        if not body.get("ok", False):
            raise DeliveryPermanentError(
                f"Telegram error: {description or 'Unknown error'}",
                status_code=status,
            )

    def _redact(self, text: str) -> str:
        return text.replace(self.token, "***") if self.token else text
