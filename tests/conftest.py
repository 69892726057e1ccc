"""Shared pytest fixtures."""

import os
import tempfile
from typing import Generator, Optional

import pytest
import requests
import yaml

from cpuwatch.exceptions import DeliveryPermanentError, DeliveryTransientError
from cpuwatch.models import ProcessEntry


class FakeClock:
    """Clock whose time only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProcessTable:
    """Process table that returns whatever the test put in it."""

    def __init__(self):
        self.processes: dict[int, ProcessEntry] = {}
        self.unreadable: set[int] = set()
        self.cmdlines: dict[int, str] = {}

    def set(
        self,
        pid: int,
        cpu_time: float,
        name: str = "proc",
        started_at: Optional[float] = 1000.0,
    ) -> None:
        self.processes[pid] = ProcessEntry(
            process_id=pid, started_at=started_at, name=name, cpu_time=cpu_time
        )

    def remove(self, pid: int) -> None:
        self.processes.pop(pid, None)

    def read(self):
        entries = [
            entry
            for pid, entry in sorted(self.processes.items())
            if pid not in self.unreadable
        ]
        skipped = {pid for pid in self.unreadable if pid in self.processes}
        return entries, skipped

    def cmdline(self, process_id: int, default: str = "") -> str:
        return self.cmdlines.get(process_id, default)


class FakeResponse:
    """Just enough of requests.Response."""

    def __init__(self, status_code: int = 200, body=None, reason: str = "OK"):
        self.status_code = status_code
        self._body = {"ok": True, "result": {}} if body is None else body
        self.reason = reason

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeSession:
    """Records posts and replays scripted responses or exceptions."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        outcome = self.outcomes.pop(0) if self.outcomes else FakeResponse()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeNotifier:
    """Notifier that fails on request instead of talking to Telegram."""

    def __init__(self):
        self.sent = []
        self.fail_with: dict[int, Exception] = {}

    def notify(self, event) -> None:
        error = self.fail_with.get(event.process_id)
        if error is not None:
            raise error
        self.sent.append(event)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def process_table() -> FakeProcessTable:
    return FakeProcessTable()


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def transient_error() -> DeliveryTransientError:
    return DeliveryTransientError("Server error", status_code=502, attempts=3)


@pytest.fixture
def permanent_error() -> DeliveryPermanentError:
    return DeliveryPermanentError("Unauthorized", status_code=401)


@pytest.fixture
def timeout_error() -> requests.Timeout:
    return requests.Timeout("read timed out")


@pytest.fixture
def clean_env(monkeypatch):
    """Remove environment variables that would override test config."""
    for name in (
        "CPU_THRESHOLD",
        "CHECK_INTERVAL",
        "COOLDOWN_SECONDS",
        "TELEGRAM_BOT_TOKEN",
        "TELEGRAM_CHAT_ID",
        "LOGLEVEL",
        "CPUWATCH_CONFIG",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def temp_config_file(clean_env) -> Generator[str, None, None]:
    """Create a temporary config file for testing."""
    config = {
        "cpu": {"threshold": 75.0, "interval": 2.0, "cooldown": 300},
        "telegram": {"token": "123:abc", "chat_id": "42"},
        "logging": {"level": "warning"},
    }

    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.dump(config, f)
        config_path = f.name

    yield config_path

    # Cleanup
    os.unlink(config_path)


@pytest.fixture
def fake_response():
    """Factory for scripted HTTP responses."""
    return FakeResponse


@pytest.fixture
def fake_session():
    """Factory for sessions that replay scripted outcomes."""
    return FakeSession


@pytest.fixture(autouse=True)
def no_default_config(monkeypatch):
    """Keep config files on the test host out of the way."""
    monkeypatch.setattr("cpuwatch.config.DEFAULT_CONFIG_LOCATIONS", [])
