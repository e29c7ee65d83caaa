"""
Best-effort printer discovery.

- Network: connect probe on common printer ports across the local /24
- USB: printer device nodes and known thermal printer vendors
- Bluetooth: devices already paired with BlueZ (`bluetoothctl devices`)

Discovery never raises: a scan that cannot run returns an empty list and
logs a warning.
"""

import asyncio
import logging
import re
import shutil
import socket
from typing import Optional

from printfleet.printers.base import DEFAULT_TCP_PORT, PrinterAddress, PrinterDevice
from printfleet.printers.errors import PrintFault
from printfleet.transport.base import TransportBackend
from printfleet.transport.usb import scan_usb_devices

logger = logging.getLogger(__name__)

DEFAULT_SUBNET = "192.168.1"
PRINTER_PORTS = (9100, 515, 631)  # raw, LPD, IPP
SCAN_TIMEOUT = 0.3
SCAN_BATCH_SIZE = 50

BLUETOOTHCTL_DEVICE_RE = re.compile(r"^Device\s+(([0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2})\s+(.*)$")


def detect_subnet() -> Optional[str]:
    """First three octets of the primary IPv4 address, or None."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # No packet is sent for a UDP connect; it only selects a route
        sock.connect(("10.255.255.255", 1))
        address = sock.getsockname()[0]
    except OSError:
        return None
    finally:
        sock.close()

    if address.startswith("127."):
        return None
    return address.rsplit(".", 1)[0]


class PrinterDiscovery:
    def __init__(self, backend: TransportBackend, timeout: float = SCAN_TIMEOUT, batch_size: int = SCAN_BATCH_SIZE):
        self._backend = backend
        self.timeout = timeout
        self.batch_size = batch_size

    async def _probe(self, ip: str, port: int) -> bool:
        try:
            handle = await self._backend.open_tcp(ip, port, self.timeout)
        except (OSError, asyncio.TimeoutError, PrintFault):
            return False
        await handle.close()
        return True

    async def _scan_host(self, ip: str, ports: list[int]) -> Optional[PrinterDevice]:
        for port in ports:
            if await self._probe(ip, port):
                return PrinterDevice(
                    id=f"{ip}:{port}",
                    name=f"Network Printer ({ip})",
                    address=PrinterAddress.tcp(ip, port),
                )
        return None

    async def scan_network(self, subnet: Optional[str] = None, port: int = DEFAULT_TCP_PORT) -> list[PrinterDevice]:
        """
        Probe hosts 1-254 of a /24, `batch_size` hosts at a time.

        Args:
            subnet: First three octets, e.g. "192.168.1". Auto-detected if omitted.
            port: Extra port to try before the standard printer ports
        """
        subnet = subnet or detect_subnet() or DEFAULT_SUBNET
        ports = list(dict.fromkeys([port, *PRINTER_PORTS]))
        hosts = [f"{subnet}.{i}" for i in range(1, 255)]

        logger.info(f"Scanning {subnet}.0/24 on ports {ports}")
        found: list[PrinterDevice] = []
        for i in range(0, len(hosts), self.batch_size):
            batch = hosts[i:i + self.batch_size]
            results = await asyncio.gather(*(self._scan_host(ip, ports) for ip in batch))
            found.extend(r for r in results if r is not None)

        logger.info(f"Network scan found {len(found)} printer(s)")
        return found

    async def scan_usb(self) -> list[PrinterDevice]:
        loop = asyncio.get_running_loop()
        try:
            entries = await loop.run_in_executor(None, scan_usb_devices)
        except OSError as e:
            logger.warning(f"USB scan failed: {e}")
            return []

        return [
            PrinterDevice(id=entry["address"], name=entry["name"], address=PrinterAddress.usb(entry["address"]))
            for entry in entries
        ]

    async def scan_bluetooth(self) -> list[PrinterDevice]:
        """Paired devices known to BlueZ."""
        if shutil.which("bluetoothctl") is None:
            logger.warning("bluetoothctl not found, Bluetooth scan unavailable")
            return []

        try:
            proc = await asyncio.create_subprocess_exec(
                "bluetoothctl", "devices",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning(f"Bluetooth scan failed: {e}")
            return []

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=10.0)
        except asyncio.TimeoutError:
            proc.kill()
            logger.warning("Bluetooth scan timed out")
            return []

        if proc.returncode != 0:
            logger.warning(f"bluetoothctl failed: {stderr.decode(errors='replace').strip()}")
            return []

        return parse_bluetoothctl_devices(stdout.decode(errors="replace"))


def parse_bluetoothctl_devices(output: str) -> list[PrinterDevice]:
    devices = []
    for line in output.splitlines():
        match = BLUETOOTHCTL_DEVICE_RE.match(line.strip())
        if not match:
            continue
        mac, name = match.group(1).upper(), match.group(3).strip() or match.group(1)
        devices.append(PrinterDevice(id=mac, name=name, address=PrinterAddress.bluetooth(mac)))
    return devices
