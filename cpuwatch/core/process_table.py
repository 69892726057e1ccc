"""Process table access through psutil."""

from typing import Iterator, Optional

import psutil
import structlog

from cpuwatch.exceptions import SampleReadError
from cpuwatch.models import ProcessEntry

logger = structlog.get_logger()


class ProcessTable:
    """Reads pid, start time, name and cumulative CPU time for live processes."""

    def __init__(self):
        self.logger = logger.bind(component="ProcessTable")

    def read(self) -> tuple[list[ProcessEntry], set[int]]:
        """Read every process that can be read right now.

        Processes that exit mid-read, or that we are not allowed to inspect,
        are skipped.

        Returns:
            Tuple of (entries, pids that were listed but could not be read)
        """
        entries = []
        skipped = set()
        for proc in self._iter_processes():
            try:
                entries.append(self._read_entry(proc))
            except SampleReadError as e:
                skipped.add(e.process_id)
                self.logger.debug("Skipping process", pid=e.process_id, reason=e.reason)
        return entries, skipped

    def _iter_processes(self) -> Iterator[psutil.Process]:
        return psutil.process_iter()

    def _read_entry(self, proc: psutil.Process) -> ProcessEntry:
        """Read a single process.

        Raises:
            SampleReadError: If the process vanished or its CPU times are hidden
        """
        try:
            with proc.oneshot():
                times = proc.cpu_times()
                name = proc.name()
                started_at = self._start_time(proc)
        except psutil.ZombieProcess:
            raise SampleReadError(proc.pid, "zombie") from None
        except psutil.NoSuchProcess:
            raise SampleReadError(proc.pid, "exited") from None
        except psutil.AccessDenied:
            raise SampleReadError(proc.pid, "access denied") from None

        return ProcessEntry(
            process_id=proc.pid,
            started_at=started_at,
            name=name or "",
            cpu_time=times.user + times.system,
        )

    def _start_time(self, proc: psutil.Process) -> Optional[float]:
        # Without a start time, pid reuse cannot be detected for this process
        try:
            return proc.create_time()
        except psutil.AccessDenied:
            return None

    def cmdline(self, process_id: int, default: str = "") -> str:
        """Get the full command line of a process.

        Args:
            process_id: Process to look up
            default: Returned when the command line cannot be read

        Returns:
            Space-joined command line, or ``default``
        """
        try:
            args = psutil.Process(process_id).cmdline()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return default
        return " ".join(args) if args else default


def cpu_count() -> int:
    """Logical CPU count, never less than one."""
    return psutil.cpu_count(logical=True) or 1
