import asyncio
import errno
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Optional

from printfleet.transport.base import TransportBackend, TransportHandle

logger = logging.getLogger(__name__)


@dataclass
class MockBehavior:
    """How a mock printer at one address responds."""

    reachable: bool = True
    # Connect attempts that fail before the printer starts answering
    fail_connects: int = 0
    # Connects that hang until the caller's timeout instead of being refused
    hang_on_connect: bool = False
    write_error: Optional[BaseException] = None
    # Writes that are reset by the printer before it starts accepting data
    fail_writes: int = 0
    write_delay: float = 0.0
    usb_ready: bool = True
    direct_send_error: Optional[BaseException] = None


class MockHandle(TransportHandle):
    def __init__(self, backend: "MockBackend", target: str):
        super().__init__(target)
        self._backend = backend
        self.closed = False

    async def write(self, data: bytes) -> None:
        behavior = self._backend.behavior(self.target)
        if behavior.write_delay:
            await asyncio.sleep(behavior.write_delay)
        if behavior.write_error is not None:
            raise behavior.write_error
        if behavior.fail_writes > 0:
            behavior.fail_writes -= 1
            raise ConnectionResetError(errno.ECONNRESET, f"Connection reset by peer: {self.target}")
        self._backend.sent[self.target].append(bytes(data))
        logger.info(f"[MOCK] Printed {len(data)} bytes to {self.target}")

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._backend.closed.append(self.target)


class MockBackend(TransportBackend):
    """
    In-memory printers for tests and for running without hardware.

    Every printer is reachable unless configured otherwise with `configure`.
    Targets are "host:port" for network printers, the MAC address for
    Bluetooth and the device string for USB.
    """

    def __init__(self, default_reachable: bool = True):
        self.default_reachable = default_reachable
        self._behaviors: dict[str, MockBehavior] = {}
        self.connect_calls: list[tuple[str, float]] = []
        self.sent: dict[str, list[bytes]] = defaultdict(list)
        self.direct_sends: dict[str, list[bytes]] = defaultdict(list)
        self.closed: list[str] = []
        self.usb_ready_checks: dict[str, int] = defaultdict(int)

    def behavior(self, target: str) -> MockBehavior:
        if target not in self._behaviors:
            self._behaviors[target] = MockBehavior(reachable=self.default_reachable)
        return self._behaviors[target]

    def configure(self, target: str, **changes) -> MockBehavior:
        behavior = self.behavior(target)
        for key, value in changes.items():
            setattr(behavior, key, value)
        return behavior

    def timeouts_for(self, target: str) -> list[float]:
        return [timeout for t, timeout in self.connect_calls if t == target]

    async def _connect(self, target: str, timeout: float) -> MockHandle:
        self.connect_calls.append((target, timeout))
        behavior = self.behavior(target)

        if behavior.hang_on_connect:
            await asyncio.sleep(timeout)
            raise asyncio.TimeoutError()
        if not behavior.reachable:
            raise ConnectionRefusedError(errno.ECONNREFUSED, f"Connection refused: {target}")
        if behavior.fail_connects > 0:
            behavior.fail_connects -= 1
            raise ConnectionRefusedError(errno.ECONNREFUSED, f"Connection refused: {target}")
        return MockHandle(self, target)

    async def open_tcp(self, host: str, port: int, timeout: float) -> TransportHandle:
        return await self._connect(f"{host}:{port}", timeout)

    async def open_bluetooth(self, mac_address: str, timeout: float) -> TransportHandle:
        return await self._connect(mac_address, timeout)

    async def usb_ready(self, device: str) -> bool:
        self.usb_ready_checks[device] += 1
        behavior = self.behavior(device)
        return behavior.reachable and behavior.usb_ready

    async def open_usb(self, device: str) -> TransportHandle:
        return await self._connect(device, 0.0)

    async def usb_direct_send(self, device: str, data: bytes) -> None:
        behavior = self.behavior(device)
        if behavior.direct_send_error is not None:
            raise behavior.direct_send_error
        self.direct_sends[device].append(bytes(data))
        logger.info(f"[MOCK] Direct send of {len(data)} bytes to {device}")
