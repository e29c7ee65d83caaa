"""
Configuration loading and service setup.
"""

import os
import logging
from pathlib import Path
from typing import Optional

import yaml

from printfleet.connections import ConnectionManager, TransportConfig
from printfleet.printers import MemoryStore, PrinterDevice, PrinterRegistry, YamlFileStore
from printfleet.printers.mock import MockBackend
from printfleet.protocol.escpos import DEFAULT_WIDTH
from printfleet.protocol.tspl import DEFAULT_WRAP_WIDTH
from printfleet.routing import PrintRouter
from printfleet.service import PrintService
from printfleet.transport import NativeBackend, TransportBackend

logger = logging.getLogger(__name__)

BACKEND_TYPES = ("native", "mock")


def load_config(config_path: Optional[str] = None) -> dict:
    """
    Load configuration from YAML file.

    Looks for config in order:
    1. Explicit path if provided
    2. CONFIG_FILE environment variable
    3. ./config/local.yaml
    4. ./config/default.yaml
    """
    search_paths = []

    if config_path:
        search_paths.append(Path(config_path))

    if env_path := os.environ.get("CONFIG_FILE"):
        search_paths.append(Path(env_path))

    # Default paths relative to project root
    project_root = Path(__file__).parent.parent
    search_paths.extend([
        project_root / "config" / "local.yaml",
        project_root / "config" / "default.yaml",
    ])

    for path in search_paths:
        if path.exists():
            logger.info(f"Loading config from {path}")
            with open(path) as f:
                return yaml.safe_load(f) or {}

    logger.warning("No config file found, using defaults")
    return {}


def create_backend(transport: TransportConfig) -> TransportBackend:
    if transport.backend == "mock":
        logger.info("Using mock transport backend, nothing will reach real printers")
        return MockBackend()
    if transport.backend != "native":
        raise ValueError(f"Unknown transport backend '{transport.backend}'. Expected one of {BACKEND_TYPES}")
    return NativeBackend(write_timeout=transport.write_timeout, bluetooth_channel=transport.bluetooth.channel)


def setup_registry(config: dict) -> PrinterRegistry:
    """
    Open the printer registry and seed it from the config file.

    Config format:
        registry:
          path: data/printers.yaml

        printers:
          - id: kitchen-1
            name: Kitchen
            connection_type: tcp
            address: 192.168.1.50
            port: 9100
            role: kitchen

          - id: labels
            name: Sticker Printer
            connection_type: usb
            address: usb://0x28e9:0x0289
            role: sticker
            supported_documents: [sticker]

    Seeded printers never overwrite entries already in the registry.
    """
    registry_path = (config.get("registry", {}) or {}).get("path")
    store = YamlFileStore(registry_path) if registry_path else MemoryStore()
    registry = PrinterRegistry(store)

    for printer_conf in config.get("printers", []) or []:
        printer_id = printer_conf.get("id")
        if not printer_id:
            logger.warning("Printer config missing 'id', skipping")
            continue
        if registry.get(printer_id) is not None:
            continue

        try:
            device = PrinterDevice.from_dict(printer_conf)
        except (KeyError, ValueError) as e:
            logger.error(f"Failed to register printer {printer_id}: {e}")
            continue

        registry.upsert(device)
        logger.info(f"Registered printer: {device.name} ({printer_id}) at {device.address.formatted}")

    return registry


def setup_service(config: dict) -> PrintService:
    transport = TransportConfig.from_dict(config)
    backend = create_backend(transport)
    registry = setup_registry(config)

    router = PrintRouter(registry)
    router.load_config(config)

    return PrintService(
        registry=registry,
        connections=ConnectionManager(backend, transport),
        backend=backend,
        router=router,
        receipt_width=(config.get("receipt", {}) or {}).get("width", DEFAULT_WIDTH),
        wrap_width=(config.get("sticker", {}) or {}).get("wrap_width", DEFAULT_WRAP_WIDTH),
    )


def get_server_config(config: dict) -> dict:
    """Extract server configuration."""
    server = config.get("server", {}) or {}
    return {
        "host": server.get("host", "0.0.0.0"),
        "port": server.get("port", 5001),
        "debug": server.get("debug", False),
        "cors_origins": server.get("cors_origins", None),
        "health_check_interval_sec": server.get("health_check_interval_sec", 30.0),
        "warm_up_on_start": server.get("warm_up_on_start", True),
    }
