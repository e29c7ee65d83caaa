"""
Dependency injection for API routes.

These are set up during app initialization.
"""

from typing import Optional

from printfleet.health import HealthMonitor
from printfleet.service import PrintService

# Global instances (set during app init)
_service: Optional[PrintService] = None
_health_monitor: Optional[HealthMonitor] = None


def init_dependencies(service: PrintService, health_monitor: HealthMonitor):
    """Initialize global dependencies."""
    global _service, _health_monitor
    _service = service
    _health_monitor = health_monitor


def get_service() -> PrintService:
    """Get print service instance."""
    if _service is None:
        raise RuntimeError("Print service not initialized")
    return _service


def get_health_monitor() -> HealthMonitor:
    """Get health monitor instance."""
    if _health_monitor is None:
        raise RuntimeError("Health monitor not initialized")
    return _health_monitor
