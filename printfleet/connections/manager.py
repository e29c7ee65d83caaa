"""
Connection manager for all printer transports.

Network printers (TCP/LAN) get a fresh socket per job with a cold-start
retry ladder. Bluetooth and USB printers keep a session per printer id until
disconnected. Every public method returns an outcome value; transport
exceptions never reach the caller.

Calls for the same printer id are serialised by a per-id lock. Different
printers proceed in parallel.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from printfleet.printers.base import ConnectionState, ConnectionType, PrinterDevice
from printfleet.printers.errors import (
    ConnectionFault,
    ErrorCode,
    JobFault,
    PrintFault,
    connection_fault_from,
)
from printfleet.transport.base import TransportBackend, TransportHandle

from .timing import TransportConfig

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError)


@dataclass
class SendOutcome:
    ok: bool
    attempts: int = 1
    verified: bool = True
    error: Optional[PrintFault] = None

    @property
    def retry_count(self) -> int:
        return max(self.attempts - 1, 0)


@dataclass
class ConnectOutcome:
    ok: bool
    error: Optional[PrintFault] = None


class ConnectionManager:
    def __init__(self, backend: TransportBackend, config: Optional[TransportConfig] = None):
        self._backend = backend
        self.config = config or TransportConfig()
        self._locks: dict[str, asyncio.Lock] = {}
        self._sessions: dict[str, TransportHandle] = {}
        self._tcp_handles: dict[str, TransportHandle] = {}
        self._states: dict[str, ConnectionState] = {}
        self._warming_up = False

    def _lock_for(self, printer_id: str) -> asyncio.Lock:
        lock = self._locks.get(printer_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[printer_id] = lock
        return lock

    def _state_for(self, printer_id: str) -> ConnectionState:
        state = self._states.get(printer_id)
        if state is None:
            state = ConnectionState()
            self._states[printer_id] = state
        return state

    def state(self, printer_id: str) -> ConnectionState:
        """Copy of the tracked connection state for a printer."""
        state = self._state_for(printer_id)
        return ConnectionState(
            is_connected=printer_id in self._sessions,
            last_seen=state.last_seen,
            last_error=state.last_error,
            last_error_code=state.last_error_code,
            consecutive_failures=state.consecutive_failures,
            attempts=state.attempts,
        )

    def is_connected(self, printer_id: str) -> bool:
        return printer_id in self._sessions

    @property
    def warming_up(self) -> bool:
        return self._warming_up

    def _record(self, printer_id: str, ok: bool, attempts: int = 1, error: Optional[PrintFault] = None) -> None:
        state = self._state_for(printer_id)
        state.attempts += attempts
        state.is_connected = printer_id in self._sessions
        if ok:
            state.last_seen = datetime.now()
            state.last_error = None
            state.last_error_code = None
            state.consecutive_failures = 0
        else:
            state.consecutive_failures += 1
            if error is not None:
                state.last_error = error.message
                state.last_error_code = error.code

    def _emit_event(self, event_type: str, printer_id: str, detail: str) -> None:
        logger.info(f"[EVENT] {event_type}: printer={printer_id} detail={detail}")

    # -- sending -----------------------------------------------------------

    async def send(self, printer: PrinterDevice, data: bytes) -> SendOutcome:
        """Deliver bytes to a printer. Never raises except on cancellation."""
        async with self._lock_for(printer.id):
            try:
                if printer.connection_type.is_network:
                    outcome = await self._send_tcp(printer, data)
                elif printer.connection_type == ConnectionType.BLUETOOTH:
                    outcome = await self._send_bluetooth(printer, data)
                else:
                    outcome = await self._send_usb(printer, data)
            except PrintFault as e:
                outcome = SendOutcome(False, error=e)
            except Exception as e:
                logger.exception(f"Unexpected transport error for {printer.id}")
                outcome = SendOutcome(
                    False,
                    error=JobFault(f"Unexpected transport error: {e}", ErrorCode.INTERNAL_ERROR),
                )

            self._record(printer.id, outcome.ok, outcome.attempts, outcome.error)
            return outcome

    async def _send_tcp(self, printer: PrinterDevice, data: bytes) -> SendOutcome:
        timing = self.config.tcp
        address = printer.address
        target = address.formatted

        stale = self._tcp_handles.get(printer.id)
        if stale is not None:
            await stale.close()
            self._tcp_handles.pop(printer.id, None)
            await asyncio.sleep(timing.reopen_delay)

        last_error: Optional[BaseException] = None
        for attempt, timeout in enumerate(timing.connect_timeouts, start=1):
            try:
                handle = await self._backend.open_tcp(address.address, address.port, timeout)
            except TRANSPORT_ERRORS as e:
                last_error = e
                logger.warning(
                    f"[JOB_RETRY] TCP connect attempt {attempt}/{timing.max_attempts} "
                    f"to {target} failed: {e!r}"
                )
                if attempt < timing.max_attempts:
                    await asyncio.sleep(timing.retry_delay)
                continue

            self._tcp_handles[printer.id] = handle
            try:
                await handle.write(data)
                # Give the printer time to consume the buffer before FIN
                await asyncio.sleep(timing.settle_delay)
            except TRANSPORT_ERRORS as e:
                last_error = e
                logger.warning(
                    f"[JOB_RETRY] TCP write attempt {attempt}/{timing.max_attempts} "
                    f"to {target} failed: {e!r}"
                )
            else:
                logger.info(f"Sent {len(data)} bytes to {target} (attempt {attempt})")
                return SendOutcome(True, attempt)
            finally:
                await handle.close()
                self._tcp_handles.pop(printer.id, None)

            if attempt < timing.max_attempts:
                await asyncio.sleep(timing.retry_delay)

        fault = connection_fault_from(last_error, target)
        if fault.code == ErrorCode.UNREACHABLE:
            fault = ConnectionFault(
                f"Cannot connect to printer at {target}. Check if printer is on and connected to network.",
                ErrorCode.UNREACHABLE,
            )
        logger.error(f"TCP printer {printer.id} at {target} failed after {timing.max_attempts} attempts: {fault.message}")
        return SendOutcome(False, timing.max_attempts, error=fault)

    async def _write_session(self, printer: PrinterDevice, handle: TransportHandle, data: bytes) -> SendOutcome:
        try:
            await handle.write(data)
        except TRANSPORT_ERRORS as e:
            await self._drop_session(printer.id)
            self._emit_event("SESSION_LOST", printer.id, repr(e))
            return SendOutcome(
                False,
                error=JobFault(
                    f"Failed to send data to printer at {printer.address.formatted}: {e!r}",
                    ErrorCode.SEND_FAILED,
                ),
            )
        logger.info(f"Sent {len(data)} bytes to {printer.address.formatted}")
        return SendOutcome(True)

    async def _send_bluetooth(self, printer: PrinterDevice, data: bytes) -> SendOutcome:
        handle = self._sessions.get(printer.id)
        if handle is None:
            handle = await self._open_bluetooth(printer)
        return await self._write_session(printer, handle, data)

    async def _send_usb(self, printer: PrinterDevice, data: bytes) -> SendOutcome:
        handle = self._sessions.get(printer.id)
        if handle is not None:
            return await self._write_session(printer, handle, data)

        timing = self.config.usb
        device = printer.address.address

        for attempt in range(1, timing.attempts + 1):
            if await self._wait_usb_ready(device, timing.ready_timeout):
                handle = await self._open_usb(printer)
                outcome = await self._write_session(printer, handle, data)
                outcome.attempts = attempt
                return outcome

            if attempt < timing.attempts:
                logger.warning(
                    f"[JOB_RETRY] USB printer {device} not ready (attempt {attempt}/{timing.attempts})"
                )
                await asyncio.sleep(timing.retry_delay)

        # Readiness never observed; the device may still accept a write
        self._emit_event("USB_DIRECT_SEND", printer.id, device)
        try:
            await self._backend.usb_direct_send(device, data)
        except TRANSPORT_ERRORS as e:
            return SendOutcome(False, timing.attempts, error=connection_fault_from(e, device))
        logger.warning(f"Sent {len(data)} bytes to {device} without readiness confirmation")
        return SendOutcome(True, timing.attempts, verified=False)

    # -- sessions ----------------------------------------------------------

    async def _open_bluetooth(self, printer: PrinterDevice) -> TransportHandle:
        mac = printer.address.address
        try:
            handle = await self._backend.open_bluetooth(mac, self.config.bluetooth.connect_timeout)
        except TRANSPORT_ERRORS as e:
            raise connection_fault_from(e, mac) from e
        self._sessions[printer.id] = handle
        self._emit_event("PRINTER_CONNECTED", printer.id, mac)
        return handle

    async def _open_usb(self, printer: PrinterDevice) -> TransportHandle:
        device = printer.address.address
        try:
            handle = await self._backend.open_usb(device)
        except TRANSPORT_ERRORS as e:
            raise connection_fault_from(e, device) from e
        self._sessions[printer.id] = handle
        self._emit_event("PRINTER_CONNECTED", printer.id, device)
        return handle

    async def _wait_usb_ready(self, device: str, timeout: float) -> bool:
        """Poll until the device reports ready or the timeout expires."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            try:
                if await self._backend.usb_ready(device):
                    return True
            except (OSError, PrintFault) as e:
                logger.debug(f"USB readiness check for {device} failed: {e}")
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            await asyncio.sleep(min(self.config.usb.poll_interval, remaining))

    async def _drop_session(self, printer_id: str) -> None:
        handle = self._sessions.pop(printer_id, None)
        if handle is not None:
            await handle.close()

    async def connect(self, printer: PrinterDevice) -> ConnectOutcome:
        """Open a session for a Bluetooth or USB printer."""
        if printer.connection_type.is_network:
            return ConnectOutcome(
                False,
                ConnectionFault(
                    "Network printers connect per job; manual connect is not supported",
                    ErrorCode.NOT_SUPPORTED,
                ),
            )

        async with self._lock_for(printer.id):
            if printer.id in self._sessions:
                return ConnectOutcome(True)
            try:
                if printer.connection_type == ConnectionType.BLUETOOTH:
                    await self._open_bluetooth(printer)
                else:
                    device = printer.address.address
                    if not await self._wait_usb_ready(device, self.config.usb.ready_timeout):
                        raise ConnectionFault(f"USB printer {device} not ready", ErrorCode.NOT_RESPONDING)
                    await self._open_usb(printer)
            except PrintFault as e:
                logger.warning(f"Connect to {printer.id} failed: {e.message}")
                self._record(printer.id, False, error=e)
                return ConnectOutcome(False, e)

            self._record(printer.id, True)
            return ConnectOutcome(True)

    async def disconnect(self, printer: PrinterDevice) -> ConnectOutcome:
        if printer.connection_type.is_network:
            return ConnectOutcome(
                False,
                ConnectionFault("Network printers have no session to disconnect", ErrorCode.NOT_SUPPORTED),
            )

        async with self._lock_for(printer.id):
            if printer.id in self._sessions:
                await self._drop_session(printer.id)
                self._emit_event("PRINTER_DISCONNECTED", printer.id, printer.address.formatted)
            self._state_for(printer.id).is_connected = False
            return ConnectOutcome(True)

    async def forget(self, printer_id: str) -> None:
        """Close any session and drop tracked state for a removed printer."""
        async with self._lock_for(printer_id):
            await self._drop_session(printer_id)
            self._states.pop(printer_id, None)
        self._locks.pop(printer_id, None)

    # -- warm-up and probing ----------------------------------------------

    async def warm_up(self, printers: list[PrinterDevice]) -> bool:
        """
        Pre-open and close a socket to every network printer.

        Best effort and bounded. Returns False without doing anything if a
        warm-up is already running.
        """
        if self._warming_up:
            logger.info("[WARMUP] Warm-up already in progress, skipping")
            return False

        self._warming_up = True
        try:
            network = [p for p in printers if p.connection_type.is_network]
            if not network:
                return True

            logger.info(f"[WARMUP] Warming up {len(network)} network printer(s)")
            try:
                results = await asyncio.wait_for(
                    asyncio.gather(*(self._warm_one(p) for p in network), return_exceptions=True),
                    timeout=self.config.tcp.warmup_total_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("[WARMUP] Warm-up time limit reached")
                return True

            ready = sum(1 for r in results if r is True)
            logger.info(f"[WARMUP] {ready}/{len(network)} network printer(s) answered")
            return True
        finally:
            self._warming_up = False

    async def _warm_one(self, printer: PrinterDevice) -> bool:
        timing = self.config.tcp
        address = printer.address
        async with self._lock_for(printer.id):
            for attempt in range(1, timing.warmup_attempts + 1):
                try:
                    handle = await self._backend.open_tcp(address.address, address.port, timing.warmup_timeout)
                except TRANSPORT_ERRORS as e:
                    logger.debug(f"[WARMUP] {address.formatted} attempt {attempt} failed: {e!r}")
                    continue
                await handle.close()
                return True
        return False

    async def probe(self, printer: PrinterDevice) -> bool:
        """Cheap reachability check used by the health monitor."""
        if not printer.connection_type.is_network:
            return printer.id in self._sessions

        address = printer.address
        async with self._lock_for(printer.id):
            try:
                handle = await self._backend.open_tcp(address.address, address.port, self.config.tcp.probe_timeout)
            except TRANSPORT_ERRORS:
                return False
            await handle.close()
            self._state_for(printer.id).last_seen = datetime.now()
            return True

    async def close_all(self) -> None:
        for printer_id in list(self._sessions):
            await self._drop_session(printer_id)
        for printer_id, handle in list(self._tcp_handles.items()):
            await handle.close()
            self._tcp_handles.pop(printer_id, None)
        logger.info("All printer connections closed")
