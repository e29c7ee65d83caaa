"""
Bluetooth Classic (RFCOMM) transport.

Uses the kernel's AF_BLUETOOTH sockets (Linux/BlueZ). Blocking socket calls
run in the default executor so the event loop never stalls on a slow pairing.
"""

import asyncio
import logging
import socket

from printfleet.printers.errors import ConnectionFault, ErrorCode

from .base import TransportHandle

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = 1


def bluetooth_supported() -> bool:
    return hasattr(socket, "AF_BLUETOOTH") and hasattr(socket, "BTPROTO_RFCOMM")


class BluetoothHandle(TransportHandle):
    def __init__(self, sock: socket.socket, target: str, write_timeout: float):
        super().__init__(target)
        self._sock = sock
        self._write_timeout = write_timeout

    async def write(self, data: bytes) -> None:
        loop = asyncio.get_running_loop()
        await asyncio.wait_for(
            loop.run_in_executor(None, self._sock.sendall, data),
            timeout=self._write_timeout,
        )

    async def close(self) -> None:
        try:
            self._sock.close()
        except OSError as e:
            logger.debug(f"Ignoring error while closing {self.target}: {e}")


async def open_bluetooth(
    mac_address: str,
    timeout: float,
    channel: int = DEFAULT_CHANNEL,
    write_timeout: float = 10.0,
) -> BluetoothHandle:
    if not bluetooth_supported():
        raise ConnectionFault(
            "Bluetooth RFCOMM sockets are not available on this platform",
            ErrorCode.NOT_SUPPORTED,
        )

    def _connect() -> socket.socket:
        sock = socket.socket(socket.AF_BLUETOOTH, socket.SOCK_STREAM, socket.BTPROTO_RFCOMM)
        sock.settimeout(timeout)
        try:
            sock.connect((mac_address, channel))
        except OSError:
            sock.close()
            raise
        return sock

    loop = asyncio.get_running_loop()
    # The socket timeout bounds the connect; wait_for is a backstop for stuck stacks
    sock = await asyncio.wait_for(loop.run_in_executor(None, _connect), timeout=timeout + 1.0)
    return BluetoothHandle(sock, mac_address, write_timeout)
