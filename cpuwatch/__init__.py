"""cpuwatch - per-process CPU usage alerts for a single host."""

__version__ = "0.1.0"
