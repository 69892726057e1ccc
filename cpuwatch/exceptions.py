"""Exception hierarchy for cpuwatch."""

from typing import Optional


class CpuWatchError(Exception):
    """Base class for all cpuwatch errors."""


class ConfigurationError(CpuWatchError):
    """Raised when settings are missing or invalid. Fatal at startup."""


class SampleReadError(CpuWatchError):
    """Raised when a single process could not be read from the process table."""

    def __init__(self, process_id: int, reason: str):
        super().__init__(f"Could not read process {process_id}: {reason}")
        self.process_id = process_id
        self.reason = reason


class DeliveryError(CpuWatchError):
    """Raised when a notification could not be delivered."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        attempts: int = 1,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.attempts = attempts
        self.retry_after = retry_after


class DeliveryTransientError(DeliveryError):
    """Network or server-side failure. Worth retrying."""


class DeliveryPermanentError(DeliveryError):
    """Client-side failure such as bad credentials. Retrying will not help."""
