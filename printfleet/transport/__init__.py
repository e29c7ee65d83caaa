from .base import TransportBackend, TransportHandle
from .bluetooth import bluetooth_supported, open_bluetooth
from .tcp import open_tcp
from .usb import open_usb, usb_direct_send, usb_ready


class NativeBackend(TransportBackend):
    """Real sockets and device nodes."""

    def __init__(self, write_timeout: float = 10.0, bluetooth_channel: int = 1):
        self.write_timeout = write_timeout
        self.bluetooth_channel = bluetooth_channel

    async def open_tcp(self, host: str, port: int, timeout: float) -> TransportHandle:
        return await open_tcp(host, port, timeout, self.write_timeout)

    async def open_bluetooth(self, mac_address: str, timeout: float) -> TransportHandle:
        return await open_bluetooth(mac_address, timeout, self.bluetooth_channel, self.write_timeout)

    async def usb_ready(self, device: str) -> bool:
        return await usb_ready(device)

    async def open_usb(self, device: str) -> TransportHandle:
        return await open_usb(device, self.write_timeout)

    async def usb_direct_send(self, device: str, data: bytes) -> None:
        await usb_direct_send(device, data, self.write_timeout)


__all__ = ["NativeBackend", "TransportBackend", "TransportHandle", "bluetooth_supported"]
