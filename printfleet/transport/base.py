"""
Transport interfaces.

Transports do raw I/O only and may raise. The connection manager owns
retries, locking and the conversion of exceptions into outcomes.
"""

from abc import ABC, abstractmethod


class TransportHandle(ABC):
    """An open byte stream to one printer."""

    def __init__(self, target: str):
        self.target = target

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Write all bytes, raising on failure or timeout."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying resource. Must not raise."""
        pass

    def __repr__(self):
        return f"{type(self).__name__}({self.target})"


class TransportBackend(ABC):
    """Factory for transport handles, one method per connection class."""

    @abstractmethod
    async def open_tcp(self, host: str, port: int, timeout: float) -> TransportHandle:
        pass

    @abstractmethod
    async def open_bluetooth(self, mac_address: str, timeout: float) -> TransportHandle:
        pass

    @abstractmethod
    async def usb_ready(self, device: str) -> bool:
        """Return True if the USB device is present and writable right now."""
        pass

    @abstractmethod
    async def open_usb(self, device: str) -> TransportHandle:
        pass

    @abstractmethod
    async def usb_direct_send(self, device: str, data: bytes) -> None:
        """Open, write and close in one go, without a readiness check."""
        pass
