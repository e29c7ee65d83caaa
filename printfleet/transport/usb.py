"""
USB printer transport.

Two address forms are accepted:
- a printer class device node, e.g. "/dev/usb/lp0"
- a vendor/product identifier, e.g. "usb://0x0483:0x5743", driven through pyusb
"""

import asyncio
import logging
import os
import re
from typing import Optional

import usb.core
import usb.util

from printfleet.printers.errors import AddressError, ConnectionFault, ErrorCode

from .base import TransportHandle

logger = logging.getLogger(__name__)

USB_ID_RE = re.compile(r"^usb://(0x[0-9A-Fa-f]{1,4}):(0x[0-9A-Fa-f]{1,4})$")

# Common thermal printer vendor IDs
KNOWN_VENDORS = {
    0x0416: "Winbond (generic POS)",
    0x0483: "STMicroelectronics (generic POS)",
    0x04B8: "Epson",
    0x0519: "Star Micronics",
    0x0DD4: "Custom",
    0x0FE6: "ICS / Xprinter",
    0x1504: "Sewoo",
    0x1A86: "QinHeng (CH340)",
    0x1203: "TSC",
    0x28E9: "GD32 (generic label)",
}


def parse_usb_id(device: str) -> Optional[tuple[int, int]]:
    """Return (vendor_id, product_id) for usb:// identifiers, None for device paths."""
    if not device.startswith("usb://"):
        return None
    match = USB_ID_RE.match(device)
    if not match:
        raise AddressError(f"Invalid USB identifier: '{device}'. Expected usb://0xVVVV:0xPPPP")
    return int(match.group(1), 16), int(match.group(2), 16)


def format_usb_id(vendor_id: int, product_id: int) -> str:
    return f"usb://0x{vendor_id:04x}:0x{product_id:04x}"


class UsbPathHandle(TransportHandle):
    """Writes to a kernel printer device node."""

    def __init__(self, fd: int, target: str, write_timeout: float):
        super().__init__(target)
        self._fd: Optional[int] = fd
        self._write_timeout = write_timeout

    def _write_all(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            written = os.write(self._fd, view)
            view = view[written:]

    async def write(self, data: bytes) -> None:
        if self._fd is None:
            raise ConnectionError(f"USB device {self.target} is closed")
        loop = asyncio.get_running_loop()
        await asyncio.wait_for(loop.run_in_executor(None, self._write_all, data), timeout=self._write_timeout)

    async def close(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            os.close(fd)
        except OSError as e:
            logger.debug(f"Ignoring error while closing {self.target}: {e}")


class UsbDeviceHandle(TransportHandle):
    """Bulk OUT endpoint of a pyusb device."""

    def __init__(self, device, endpoint, target: str, write_timeout: float):
        super().__init__(target)
        self._device = device
        self._endpoint = endpoint
        self._write_timeout = write_timeout

    async def write(self, data: bytes) -> None:
        if self._endpoint is None:
            raise ConnectionError(f"USB device {self.target} is closed")
        loop = asyncio.get_running_loop()
        timeout_ms = int(self._write_timeout * 1000)
        await asyncio.wait_for(
            loop.run_in_executor(None, lambda: self._endpoint.write(data, timeout_ms)),
            timeout=self._write_timeout + 1.0,
        )

    async def close(self) -> None:
        if self._device is None:
            return
        device, self._device, self._endpoint = self._device, None, None
        try:
            usb.util.dispose_resources(device)
        except usb.core.USBError as e:
            logger.debug(f"Ignoring error while releasing {self.target}: {e}")


def _find_device(vendor_id: int, product_id: int):
    try:
        return usb.core.find(idVendor=vendor_id, idProduct=product_id)
    except usb.core.NoBackendError as e:
        raise ConnectionFault(f"No libusb backend available: {e}", ErrorCode.NOT_SUPPORTED)


def _claim_out_endpoint(device, target: str):
    # Printer interfaces are usually claimed by usblp
    try:
        if device.is_kernel_driver_active(0):
            device.detach_kernel_driver(0)
    except (usb.core.USBError, NotImplementedError) as e:
        logger.debug(f"Kernel driver detach skipped for {target}: {e}")

    try:
        device.set_configuration()
    except usb.core.USBError as e:
        # Already configured by a previous session
        logger.debug(f"set_configuration skipped for {target}: {e}")

    cfg = device.get_active_configuration()
    intf = cfg[(0, 0)]
    endpoint = usb.util.find_descriptor(
        intf,
        custom_match=lambda e: usb.util.endpoint_direction(e.bEndpointAddress) == usb.util.ENDPOINT_OUT,
    )
    if endpoint is None:
        raise ConnectionError(f"Could not find USB OUT endpoint on {target}")
    return endpoint


def device_ready(device: str) -> bool:
    """Blocking readiness check; run it in an executor."""
    ids = parse_usb_id(device)
    if ids is None:
        return os.path.exists(device) and os.access(device, os.W_OK)
    try:
        return _find_device(*ids) is not None
    except ConnectionFault as e:
        logger.warning(f"USB readiness check unavailable: {e.message}")
        return False


async def usb_ready(device: str) -> bool:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, device_ready, device)


async def open_usb(device: str, write_timeout: float = 10.0) -> TransportHandle:
    """Open a USB printer. Raises OSError/ConnectionError when it is not there."""
    loop = asyncio.get_running_loop()
    ids = parse_usb_id(device)

    if ids is None:
        fd = await loop.run_in_executor(None, lambda: os.open(device, os.O_WRONLY))
        return UsbPathHandle(fd, device, write_timeout)

    def _open():
        found = _find_device(*ids)
        if found is None:
            raise ConnectionError(f"USB device {device} not found")
        return found, _claim_out_endpoint(found, device)

    found, endpoint = await loop.run_in_executor(None, _open)
    return UsbDeviceHandle(found, endpoint, device, write_timeout)


async def usb_direct_send(device: str, data: bytes, write_timeout: float = 10.0) -> None:
    handle = await open_usb(device, write_timeout)
    try:
        await handle.write(data)
    finally:
        await handle.close()


def scan_usb_devices() -> list[dict]:
    """List printer device nodes and known thermal printer vendors on the bus."""
    found = []

    usb_dir = "/dev/usb"
    if os.path.isdir(usb_dir):
        for name in sorted(os.listdir(usb_dir)):
            if name.startswith("lp"):
                path = os.path.join(usb_dir, name)
                found.append({"name": f"USB Printer ({name})", "address": path})

    try:
        for dev in usb.core.find(find_all=True):
            vendor = KNOWN_VENDORS.get(dev.idVendor)
            if vendor is None:
                continue
            found.append({
                "name": f"{vendor} {dev.idProduct:04x}",
                "address": format_usb_id(dev.idVendor, dev.idProduct),
                "vendor_id": f"{dev.idVendor:04x}",
                "product_id": f"{dev.idProduct:04x}",
            })
    except (usb.core.NoBackendError, usb.core.USBError) as e:
        logger.warning(f"USB bus scan unavailable: {e}")

    return found
