"""
Health monitoring module.

Background reachability probes for registered printers.
"""

from .monitor import HealthMonitor

__all__ = ["HealthMonitor"]
