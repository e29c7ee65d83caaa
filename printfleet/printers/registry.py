import logging
import os
from pathlib import Path
from typing import Optional

import yaml

from .base import PrinterDevice, PrinterRole
from .errors import RegistryFault

logger = logging.getLogger(__name__)


class MemoryStore:
    """Non-persistent printer store."""

    def __init__(self):
        self._data: list[dict] = []

    def load(self) -> list[dict]:
        return [dict(entry) for entry in self._data]

    def save(self, entries: list[dict]) -> None:
        self._data = [dict(entry) for entry in entries]


class YamlFileStore:
    """Printer list persisted as a YAML document."""

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> list[dict]:
        if not self.path.exists():
            return []
        with open(self.path) as f:
            data = yaml.safe_load(f) or {}
        printers = data.get("printers", []) if isinstance(data, dict) else []
        return [entry for entry in printers if isinstance(entry, dict)]

    def save(self, entries: list[dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            yaml.safe_dump({"printers": entries}, f, sort_keys=False)
        os.replace(tmp_path, self.path)


class PrinterRegistry:
    """
    Known printers, keyed by id.

    Connection flags are runtime state and are never persisted: every printer
    loads as disconnected.
    """

    def __init__(self, store=None):
        self._store = store or MemoryStore()
        self._printers: dict[str, PrinterDevice] = {}
        self._load()

    def _load(self) -> None:
        try:
            entries = self._store.load()
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load printer registry: {e}")
            return

        for entry in entries:
            try:
                device = PrinterDevice.from_dict(entry)
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable printer entry {entry.get('id', '?')}: {e}")
                continue
            self._printers[device.id] = device.with_changes(is_connected=False)

        if self._printers:
            logger.info(f"Loaded {len(self._printers)} printer(s) from registry")

    def _persist(self) -> None:
        entries = []
        for device in self._printers.values():
            entry = device.to_dict()
            entry.pop("is_connected", None)
            entries.append(entry)
        try:
            self._store.save(entries)
        except OSError as e:
            logger.error(f"Failed to save printer registry: {e}")

    def list_all(self) -> list[PrinterDevice]:
        return list(self._printers.values())

    def get(self, printer_id: str) -> Optional[PrinterDevice]:
        return self._printers.get(printer_id)

    def require(self, printer_id: str) -> PrinterDevice:
        device = self._printers.get(printer_id)
        if device is None:
            raise RegistryFault(f"Printer not found: {printer_id}")
        return device

    def upsert(self, device: PrinterDevice) -> PrinterDevice:
        self._printers[device.id] = device
        self._persist()
        return device

    def update_runtime(self, device: PrinterDevice) -> PrinterDevice:
        """Replace a device after a connection change without touching the store."""
        if device.id in self._printers:
            self._printers[device.id] = device
        return device

    def remove(self, printer_id: str) -> PrinterDevice:
        device = self.require(printer_id)
        del self._printers[printer_id]
        self._persist()
        return device

    def by_role(self, role: PrinterRole) -> list[PrinterDevice]:
        return [p for p in self._printers.values() if p.role == role]
