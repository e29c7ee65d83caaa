"""
Background health monitor for registered printers.

Periodically probes every printer through the connection manager and
detects reachability changes. Network printers get a short connect probe;
Bluetooth and USB printers report whether their session is open.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from printfleet.connections.manager import ConnectionManager
from printfleet.printers.base import PrinterDevice
from printfleet.printers.registry import PrinterRegistry

logger = logging.getLogger(__name__)


# Type alias for reachability change callback
StatusChangeCallback = Callable[
    [str, Optional[bool], bool],
    Awaitable[None]
]


class HealthMonitor:
    """
    Background task that monitors printer reachability.

    - Periodic probing of all registered printers
    - Detects transitions (reachable -> unreachable and back)
    - Fires an optional callback on every change
    """

    def __init__(
        self,
        registry: PrinterRegistry,
        connections: ConnectionManager,
        on_status_change: Optional[StatusChangeCallback] = None,
        default_interval_sec: float = 30.0
    ):
        """
        Initialize the health monitor.

        Args:
            registry: PrinterRegistry containing printers to monitor
            connections: ConnectionManager used for probing
            on_status_change: Async callback called when reachability changes.
                              Signature: (printer_id, was_reachable, is_reachable) -> None
            default_interval_sec: How often to probe (default 30s)
        """
        self.registry = registry
        self.connections = connections
        self.on_status_change = on_status_change
        self.default_interval_sec = default_interval_sec

        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._last_status: dict[str, bool] = {}

    async def start(self) -> None:
        """Start the health monitor background task."""
        if self._running:
            logger.warning("Health monitor already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._monitor_loop())
        logger.info(f"Health monitor started (interval: {self.default_interval_sec}s)")

    async def stop(self) -> None:
        """Stop the health monitor."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Health monitor stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def get_last_status(self, printer_id: str) -> Optional[bool]:
        """Last known reachability for a printer, None if never probed."""
        return self._last_status.get(printer_id)

    async def check_now(self) -> dict[str, bool]:
        """Probe all printers immediately. Returns printer_id -> reachable."""
        return await self._check_all_printers()

    async def _monitor_loop(self) -> None:
        try:
            await self._check_all_printers()
        except Exception as e:
            logger.error(f"Initial health check failed: {e}")

        while self._running:
            try:
                await asyncio.sleep(self.default_interval_sec)
                if self._running:
                    await self._check_all_printers()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Health check error: {e}")

    async def _check_all_printers(self) -> dict[str, bool]:
        printers = self.registry.list_all()
        results = await asyncio.gather(
            *(self.connections.probe(p) for p in printers),
            return_exceptions=True,
        )

        current: dict[str, bool] = {}
        for printer, result in zip(printers, results):
            if isinstance(result, BaseException):
                logger.error(f"Failed to probe {printer.id}: {result}")
                # Keep the previous state on probe errors
                continue

            current[printer.id] = result
            previous = self._last_status.get(printer.id)
            if previous != result:
                await self._handle_status_change(printer, previous, result)
            self._last_status[printer.id] = result

        # Forget printers that were removed
        for printer_id in set(self._last_status) - {p.id for p in printers}:
            del self._last_status[printer_id]

        return current

    async def _handle_status_change(
        self,
        printer: PrinterDevice,
        was_reachable: Optional[bool],
        is_reachable: bool
    ) -> None:
        label = "reachable" if is_reachable else "unreachable"
        if was_reachable is None:
            logger.info(f"[HEALTH] Printer {printer.id}: initial status = {label}")
        else:
            logger.info(f"[HEALTH] Printer {printer.id}: -> {label}")

        if not is_reachable and was_reachable:
            self._emit_event("PRINTER_OFFLINE", printer.id)
        elif is_reachable and was_reachable is False:
            self._emit_event("PRINTER_ONLINE", printer.id)

        if self.on_status_change:
            try:
                await self.on_status_change(printer.id, was_reachable, is_reachable)
            except Exception as e:
                logger.error(f"Status change callback failed: {e}")

    def _emit_event(self, event_type: str, printer_id: str) -> None:
        logger.info(f"[EVENT] {event_type}: printer={printer_id}")
