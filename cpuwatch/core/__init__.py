"""Sampling, cooldown and scheduling for cpuwatch."""
