import asyncio
import logging

from .base import TransportHandle

logger = logging.getLogger(__name__)


class TcpHandle(TransportHandle):
    """Raw TCP stream to a network printer (port 9100 style)."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, target: str, write_timeout: float):
        super().__init__(target)
        self._reader = reader
        self._writer = writer
        self._write_timeout = write_timeout

    async def write(self, data: bytes) -> None:
        self._writer.write(data)
        await asyncio.wait_for(self._writer.drain(), timeout=self._write_timeout)

    async def close(self) -> None:
        if self._writer.is_closing():
            return
        self._writer.close()
        try:
            await asyncio.wait_for(self._writer.wait_closed(), timeout=1.0)
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"Ignoring error while closing {self.target}: {e}")


async def open_tcp(host: str, port: int, timeout: float, write_timeout: float = 10.0) -> TcpHandle:
    """Connect with a bounded timeout. Raises asyncio.TimeoutError or OSError."""
    reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    return TcpHandle(reader, writer, f"{host}:{port}", write_timeout)
