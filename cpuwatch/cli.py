"""Command-line interface for cpuwatch."""

import logging
import os
import signal
import socket
import sys
import threading
import time
from typing import Optional

import click
import daemon
import daemon.pidfile
import structlog
import yaml
from rich.console import Console
from rich.table import Table

from cpuwatch import __version__
from cpuwatch.config import DEFAULT_CONFIG, ConfigManager, Settings
from cpuwatch.core.process_table import ProcessTable
from cpuwatch.core.sampler import ProcessSampler
from cpuwatch.core.scheduler import build_scheduler
from cpuwatch.exceptions import ConfigurationError, DeliveryError
from cpuwatch.notifiers.telegram import TelegramNotifier

console = Console()
logger = structlog.get_logger()


def get_app_paths(config=None):
    """Get application paths based on user permissions and config.

    Args:
        config: Optional configuration dictionary

    Returns:
        tuple: (log_file_path, pid_file_path)
    """
    if config is None:
        config = {}

    paths_config = config.get("paths") or {}

    if os.getuid() == 0:  # Root user
        default_log_path = "/var/log/cpuwatch/cpuwatch.log"
        default_pid_path = "/var/run/cpuwatch/cpuwatch.pid"
    else:
        home = os.path.expanduser("~")
        default_log_path = os.path.join(home, ".local/log/cpuwatch/cpuwatch.log")
        default_pid_path = os.path.join(home, ".local/run/cpuwatch/cpuwatch.pid")

    log_path = os.path.expanduser(paths_config.get("log_file", default_log_path))
    pid_path = os.path.expanduser(paths_config.get("pid_file", default_pid_path))
    return log_path, pid_path


def ensure_directories(*paths: str) -> None:
    """Create parent directories for the given files."""
    for path in paths:
        directory = os.path.dirname(path)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, mode=0o755, exist_ok=True)


def create_pid_file(pid_file: str) -> bool:
    """Write the current PID for foreground runs."""
    try:
        ensure_directories(pid_file)
        with open(pid_file, "w", encoding="utf-8") as f:
            f.write(str(os.getpid()))
        return True
    except OSError as e:
        logger.error("Failed to create PID file", error=str(e), pid_file=pid_file)
        return False


def remove_pid_file(pid_file: str) -> None:
    """Remove PID file."""
    try:
        if os.path.exists(pid_file):
            os.remove(pid_file)
    except OSError as e:
        logger.warning("Failed to remove PID file", error=str(e))


def read_pid(pid_file: str) -> int:
    """Read the daemon PID.

    Raises:
        FileNotFoundError: If no PID file exists
        ValueError: If the PID file is garbage
    """
    with open(pid_file, "r", encoding="utf-8") as f:
        return int(f.read().strip())


def setup_logging(config):
    """Set up logging configuration.

    Args:
        config: The configuration dictionary
    """
    if not config:
        config = {}

    log_config = config.get("logging") or {}
    log_path, _ = get_app_paths(config)

    # Check environment variable first, then config file
    env_log_level = os.environ.get("LOGLEVEL", "").upper()
    log_level = env_log_level or str(log_config.get("level", "INFO")).upper()
    if not isinstance(logging.getLevelName(log_level), int):
        log_level = "INFO"

    base_processors = [
        structlog.stdlib.filter_by_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    handlers = [logging.StreamHandler()]
    to_stdout = log_config.get("file", "stdout") == "stdout"

    if not to_stdout:
        try:
            ensure_directories(log_path)
            handlers.append(logging.FileHandler(log_path))
        except OSError:
            logger.warning(
                "Cannot write to log file, falling back to console only",
                log_path=log_path,
            )

    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(message)s",
        handlers=handlers,
        force=True,
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    if to_stdout:
        processors = [
            *base_processors,
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]
    else:
        processors = [
            *base_processors,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logger.info("Logging initialized", log_level=log_level, to_stdout=to_stdout)


def load_settings(config: Optional[str]) -> tuple[ConfigManager, Settings]:
    """Load and validate configuration, exiting on failure."""
    try:
        config_manager = ConfigManager(config)
        return config_manager, config_manager.settings()
    except ConfigurationError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(1)


def monitor_loop(config: dict, settings: Settings) -> None:
    """Main monitoring loop."""
    setup_logging(config)
    logger.info("cpuwatch started", **settings.redacted())

    stop_event = threading.Event()
    scheduler = build_scheduler(settings, stop_event)

    def handle_signal(signum, frame):
        logger.info("Signal received, shutting down", signal=signal.Signals(signum).name)
        stop_event.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    try:
        scheduler.run()
    finally:
        logger.info("Exiting monitor loop")


@click.group()
def cli():
    """cpuwatch - Telegram alerts for processes hogging the CPU."""
    pass


@cli.command("version", help="Show version information")
def show_version():
    """Show version information."""
    from importlib.metadata import PackageNotFoundError, version

    try:
        cpuwatch_version = version("cpuwatch")
    except PackageNotFoundError:
        cpuwatch_version = __version__
    console.print(f"[blue]cpuwatch version {cpuwatch_version}[/blue]")


@cli.command()
@click.option(
    "--config", "-c", type=click.Path(exists=True), help="Path to configuration file"
)
@click.option(
    "--foreground", "-f", is_flag=True, help="Run in foreground instead of as daemon"
)
def start(config: Optional[str], foreground: bool):
    """Start the monitoring daemon."""
    config_manager, settings = load_settings(config)
    full_config = config_manager.get_config()
    log_path, pid_path = get_app_paths(full_config)

    try:
        ensure_directories(log_path, pid_path)
    except OSError as e:
        click.echo(f"Error: {e}. Please check permissions.", err=True)
        sys.exit(1)

    if foreground:
        if not create_pid_file(pid_path):
            sys.exit(1)
        try:
            monitor_loop(full_config, settings)
        finally:
            remove_pid_file(pid_path)
        return

    click.echo("Starting cpuwatch in the background...")
    context = daemon.DaemonContext(
        working_directory=os.getcwd(),
        umask=0o002,
        pidfile=daemon.pidfile.TimeoutPIDLockFile(pid_path, acquire_timeout=1),
    )
    with context:
        monitor_loop(full_config, settings)


@cli.command()
@click.option(
    "--config", "-c", type=click.Path(exists=True), help="Path to configuration file"
)
def stop(config: Optional[str]):
    """Stop the monitoring daemon."""
    _, pid_path = get_app_paths(_quiet_config(config))
    try:
        pid = read_pid(pid_path)
        os.kill(pid, signal.SIGTERM)
        click.echo("Stopped cpuwatch.")
    except (FileNotFoundError, ValueError):
        click.echo("cpuwatch is not running.")
    except ProcessLookupError:
        click.echo("cpuwatch is not running.")
        remove_pid_file(pid_path)


@cli.command()
@click.option(
    "--config", "-c", type=click.Path(exists=True), help="Path to configuration file"
)
def status(config: Optional[str]):
    """Show whether the daemon is running."""
    _, pid_path = get_app_paths(_quiet_config(config))
    try:
        pid = read_pid(pid_path)
    except (FileNotFoundError, ValueError):
        click.echo("cpuwatch is not running.")
        return

    try:
        os.kill(pid, 0)
        click.echo(f"cpuwatch is running (pid {pid}).")
    except ProcessLookupError:
        click.echo("cpuwatch is not running.")
        remove_pid_file(pid_path)
    except PermissionError:
        click.echo(f"cpuwatch is running (pid {pid}, owned by another user).")


def _quiet_config(config: Optional[str]) -> dict:
    # stop/status only need paths; a broken config must not block them
    try:
        return ConfigManager(config).get_config()
    except ConfigurationError:
        return {}


@cli.command()
@click.option(
    "--config", "-c", type=click.Path(exists=True), help="Path to configuration file"
)
@click.option("--limit", "-n", default=10, show_default=True, help="Rows to show")
@click.option(
    "--interval",
    "-i",
    default=1.0,
    show_default=True,
    type=float,
    help="Seconds between the two samples",
)
def top(config: Optional[str], limit: int, interval: float):
    """Show the busiest processes right now."""
    try:
        threshold, normalize = ConfigManager(config).cpu_options()
    except ConfigurationError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(1)

    sampler = ProcessSampler(ProcessTable(), normalize_by_cores=normalize)
    sampler.prime()
    time.sleep(interval)
    samples = sorted(sampler.sample(), key=lambda s: s.cpu_percent, reverse=True)

    table = Table(
        title=f"Top processes on {socket.gethostname()}",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("PID", justify="right", style="cyan")
    table.add_column("Name")
    table.add_column("CPU", justify="right")

    for sample in samples[:limit]:
        style = "bold red" if sample.cpu_percent > threshold else "green"
        table.add_row(
            str(sample.process_id),
            sample.name,
            f"[{style}]{sample.cpu_percent:.1f}%[/{style}]",
        )

    console.print(table)
    console.print(f"Threshold: {threshold:.1f}%")


@cli.command("test-notify")
@click.option(
    "--config", "-c", type=click.Path(exists=True), help="Path to configuration file"
)
def test_notify(config: Optional[str]):
    """Send a test message to the configured Telegram chat."""
    _, settings = load_settings(config)
    notifier = TelegramNotifier(
        token=settings.telegram_token,
        chat_id=settings.telegram_chat_id,
        threshold=settings.threshold_percent,
        timeout=settings.request_timeout,
        max_attempts=settings.max_attempts,
        retry_backoff=settings.retry_backoff,
        retry_after_cap=settings.retry_after_cap,
    )
    try:
        notifier.send(f"cpuwatch test message from {socket.gethostname()}")
    except DeliveryError as e:
        click.echo(f"Delivery failed after {e.attempts} attempt(s): {e}", err=True)
        sys.exit(1)
    click.echo("Test message sent.")


@cli.group("config")
def config_group():
    """Manage configuration."""
    pass


@config_group.command("show")
@click.option(
    "--config", "-c", type=click.Path(exists=True), help="Path to configuration file"
)
def show_config(config: Optional[str]):
    """Show current configuration."""
    try:
        current = ConfigManager(config).get_config()
    except ConfigurationError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(1)

    telegram = current.get("telegram")
    if isinstance(telegram, dict) and telegram.get("token"):
        current = {**current, "telegram": {**telegram, "token": "***"}}
    click.echo(yaml.dump(current, default_flow_style=False, sort_keys=False))


@config_group.command("validate")
@click.option(
    "--config", "-c", type=click.Path(exists=True), help="Path to configuration file"
)
def validate_config(config: Optional[str]):
    """Validate configuration file."""
    try:
        ConfigManager(config).settings()
    except ConfigurationError as e:
        click.echo(f"Configuration is invalid: {e}")
        sys.exit(1)
    click.echo("Configuration is valid.")


@cli.command()
@click.option(
    "--path",
    "-p",
    type=click.Path(),
    default="config.yaml",
    help="Path to create the config file",
)
def init(path: str):
    """Initialize a new configuration file with default settings."""
    if os.path.exists(path):
        click.echo(
            f"Error: {path} already exists. Please choose a different path or remove the existing file."
        )
        sys.exit(1)

    try:
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(DEFAULT_CONFIG, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        click.echo(f"Error creating config file: {e}")
        sys.exit(1)

    click.echo(f"Created default configuration at {path}")
    click.echo("\nNext steps:")
    click.echo("1. Set telegram.token and telegram.chat_id")
    click.echo(f"2. Check delivery: cpuwatch test-notify -c {path}")
    click.echo(f"3. Start the monitor: cpuwatch start -c {path}")


if __name__ == "__main__":
    cli()
