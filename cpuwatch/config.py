"""Configuration management for cpuwatch."""

import copy
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog
import yaml

from cpuwatch.exceptions import ConfigurationError

# Configure initial logging with WARNING level
logging.basicConfig(level=logging.WARNING)
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_log_level,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()

DEFAULT_CONFIG = {
    "cpu": {
        "threshold": 50.0,  # Alert when a process uses > 50% CPU
        "interval": 1.0,  # Sample every second
        "cooldown": 600,  # Ten minutes between alerts for the same process
        "normalize_by_cores": False,  # 200% means two full cores
    },
    "telegram": {
        "token": "",
        "chat_id": "",
        "timeout": 10,
        "max_attempts": 3,
        "retry_backoff": 1.0,
        "retry_after_cap": 30,
    },
    "logging": {
        "level": "info",
        "file": "stdout",  # Default to stdout for container compatibility
    },
    "paths": {},
}

DEFAULT_CONFIG_LOCATIONS = [
    "/etc/cpuwatch/config.yaml",
    "~/.config/cpuwatch/config.yaml",
    "./config.yaml",
]

CONFIG_ENV_VAR = "CPUWATCH_CONFIG"

# Environment variable -> (section, key, parser)
ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "CPU_THRESHOLD": ("cpu", "threshold", float),
    "CHECK_INTERVAL": ("cpu", "interval", float),
    "COOLDOWN_SECONDS": ("cpu", "cooldown", int),
    "TELEGRAM_BOT_TOKEN": ("telegram", "token", str),
    "TELEGRAM_CHAT_ID": ("telegram", "chat_id", str),
    "LOGLEVEL": ("logging", "level", str),
}


@dataclass(frozen=True)
class Settings:
    """Validated, immutable settings for one daemon run."""

    threshold_percent: float
    check_interval: float
    cooldown_seconds: int
    telegram_token: str
    telegram_chat_id: str
    normalize_by_cores: bool = False
    request_timeout: float = 10.0
    max_attempts: int = 3
    retry_backoff: float = 1.0
    retry_after_cap: float = 30.0

    def redacted(self) -> dict:
        """Settings safe to log."""
        return {
            "threshold_percent": self.threshold_percent,
            "check_interval": self.check_interval,
            "cooldown_seconds": self.cooldown_seconds,
            "normalize_by_cores": self.normalize_by_cores,
            "chat_id": self.telegram_chat_id,
            "token": "***" if self.telegram_token else "",
            "max_attempts": self.max_attempts,
        }


class ConfigManager:
    """Loads configuration from defaults, a YAML file and the environment."""

    def __init__(
        self,
        config_path: Optional[str] = None,
        environ: Optional[dict[str, str]] = None,
    ):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file
            environ: Environment to read overrides from, defaults to os.environ

        Raises:
            ConfigurationError: If the file cannot be read or parsed
        """
        self.environ = os.environ if environ is None else environ
        self.config_path = config_path or self.environ.get(CONFIG_ENV_VAR)
        self.config = copy.deepcopy(DEFAULT_CONFIG)

        # Try to load config from default locations if not specified
        if not self.config_path:
            for path in DEFAULT_CONFIG_LOCATIONS:
                expanded_path = os.path.expanduser(path)
                if os.path.exists(expanded_path):
                    self.config_path = expanded_path
                    break

        self.load_config()

    def load_config(self) -> dict:
        """Load configuration from file and apply environment overrides.

        Raises:
            ConfigurationError: If the file cannot be read or parsed
        """
        if self.config_path:
            try:
                with open(os.path.expanduser(self.config_path), encoding="utf-8") as f:
                    file_config = yaml.safe_load(f)
            except OSError as e:
                raise ConfigurationError(
                    f"Cannot read configuration file {self.config_path}: {e}"
                ) from e
            except yaml.YAMLError as e:
                raise ConfigurationError(
                    f"Malformed configuration file {self.config_path}: {e}"
                ) from e

            if file_config is not None and not isinstance(file_config, dict):
                raise ConfigurationError(
                    f"Configuration file {self.config_path} must contain a mapping"
                )
            if file_config:
                self._merge_config(self.config, file_config)

        self._apply_environment()
        logger.debug("Configuration loaded", config_path=self.config_path)
        return self.config

    def _merge_config(self, base: dict, override: dict) -> None:
        """Recursively merge override config into base config.

        Args:
            base: Base configuration dictionary
            override: Override configuration dictionary
        """
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._merge_config(base[key], value)
            else:
                base[key] = value

    def _apply_environment(self) -> None:
        for name, (section, key, parse) in ENV_OVERRIDES.items():
            raw = self.environ.get(name)
            if raw is None or raw == "":
                continue
            try:
                value = parse(raw)
            except ValueError:
                raise ConfigurationError(
                    f"Invalid value for {name}: {raw!r}"
                ) from None
            self.config.setdefault(section, {})[key] = value

    def settings(self) -> Settings:
        """Validate the configuration and build settings from it.

        Raises:
            ConfigurationError: If any value is missing or out of range
        """
        cpu = self._section("cpu")
        telegram = self._section("telegram")

        threshold, normalize = self.cpu_options()
        interval = _number(cpu, "interval", "cpu")
        cooldown = _number(cpu, "cooldown", "cpu")
        timeout = _number(telegram, "timeout", "telegram")
        max_attempts = _number(telegram, "max_attempts", "telegram")
        retry_backoff = _number(telegram, "retry_backoff", "telegram")
        retry_after_cap = _number(telegram, "retry_after_cap", "telegram")

        if interval <= 0:
            raise ConfigurationError("cpu.interval must be greater than zero")
        if cooldown < 0 or int(cooldown) != cooldown:
            raise ConfigurationError("cpu.cooldown must be a whole number >= 0")
        if timeout <= 0:
            raise ConfigurationError("telegram.timeout must be greater than zero")
        if max_attempts < 1 or int(max_attempts) != max_attempts:
            raise ConfigurationError("telegram.max_attempts must be a whole number >= 1")
        if retry_backoff < 0 or retry_after_cap < 0:
            raise ConfigurationError("telegram retry delays must not be negative")

        token = str(telegram.get("token") or "").strip()
        chat_id = str(telegram.get("chat_id") or "").strip()
        if not token:
            raise ConfigurationError(
                "Telegram bot token is missing (telegram.token or TELEGRAM_BOT_TOKEN)"
            )
        if not chat_id:
            raise ConfigurationError(
                "Telegram chat id is missing (telegram.chat_id or TELEGRAM_CHAT_ID)"
            )

        logging_config = self.config.get("logging", {})
        if not isinstance(logging_config, dict):
            raise ConfigurationError("Logging configuration must be a dictionary")

        return Settings(
            threshold_percent=float(threshold),
            check_interval=float(interval),
            cooldown_seconds=int(cooldown),
            telegram_token=token,
            telegram_chat_id=chat_id,
            normalize_by_cores=normalize,
            request_timeout=float(timeout),
            max_attempts=int(max_attempts),
            retry_backoff=float(retry_backoff),
            retry_after_cap=float(retry_after_cap),
        )

    def cpu_options(self) -> tuple[float, bool]:
        """Validate only the threshold and normalization options.

        Commands that never talk to Telegram use this instead of
        ``settings()`` so missing credentials do not stop them.

        Returns:
            Threshold in percent and whether to normalize by core count

        Raises:
            ConfigurationError: If either value is invalid
        """
        cpu = self._section("cpu")
        threshold = _number(cpu, "threshold", "cpu")
        if threshold < 0:
            raise ConfigurationError("cpu.threshold must not be negative")

        normalize = cpu.get("normalize_by_cores", False)
        if not isinstance(normalize, bool):
            raise ConfigurationError("cpu.normalize_by_cores must be true or false")
        return float(threshold), normalize

    def _section(self, name: str) -> dict:
        section = self.config.get(name)
        if not isinstance(section, dict):
            raise ConfigurationError(f"Configuration section '{name}' must be a mapping")
        return section

    def validate_config(self) -> bool:
        """Validate the current configuration.

        Returns:
            True if configuration is valid, False otherwise
        """
        try:
            self.settings()
            return True
        except ConfigurationError as e:
            logger.error("Configuration validation failed", error=str(e))
            return False

    def get_config(self) -> dict:
        """Get the current configuration.

        Returns:
            The current configuration dictionary
        """
        return self.config


def _number(section: dict, key: str, section_name: str) -> float:
    value = section.get(key)
    # bool is an int subclass; "true" is not a number here
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(
            f"{section_name}.{key} must be a number, got {value!r}"
        )
    return value
