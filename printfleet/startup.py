"""
Startup checks and validation.

Run before starting the server to catch configuration issues early.
"""

import logging
import socket
import sys
from typing import Optional

import usb.core

from printfleet.printers.base import ConnectionType, PrinterRole
from printfleet.transport import bluetooth_supported

logger = logging.getLogger(__name__)


def check_port_available(host: str, port: int) -> tuple[bool, Optional[str]]:
    """
    Check if a port is available for binding.

    Returns:
        (True, None) if available
        (False, error_message) if not
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
        return True, None
    except OSError as e:
        if e.errno == 10048 or e.errno == 98:  # Windows / Linux "address in use"
            return False, f"Port {port} is already in use. Another service may be running on this port."
        elif e.errno == 10049 or e.errno == 99:  # Can't assign address
            return False, f"Cannot bind to {host}:{port}. Check if the host address is valid."
        elif e.errno == 10013 or e.errno == 13:  # Permission denied
            return False, f"Permission denied for port {port}. Ports below 1024 require admin/root privileges."
        else:
            return False, f"Cannot bind to {host}:{port}: {e}"
    finally:
        sock.close()


def validate_config(config: dict) -> list[str]:
    """
    Validate configuration and return list of warnings/errors.

    Returns:
        List of warning/error messages (empty if all good)
    """
    issues = []

    server = config.get("server", {}) or {}
    port = server.get("port", 5001)

    if not isinstance(port, int) or port < 1 or port > 65535:
        issues.append(f"Invalid port: {port}. Must be between 1 and 65535.")
    elif port < 1024:
        issues.append(f"Port {port} is a privileged port. Consider using a port >= 1024.")

    backend = (config.get("transport", {}) or {}).get("backend", "native")
    if backend not in ("native", "mock"):
        issues.append(f"Invalid transport backend: '{backend}'. Must be 'native' or 'mock'.")

    printers = config.get("printers", []) or []
    registry_path = (config.get("registry", {}) or {}).get("path")
    if not printers and not registry_path:
        issues.append("No printers configured. Add printers through the API.")

    printer_ids = set()
    for i, printer in enumerate(printers):
        pid = printer.get("id")
        if not pid:
            issues.append(f"Printer at index {i} has no 'id' field.")
        elif pid in printer_ids:
            issues.append(f"Duplicate printer ID: '{pid}'")
        else:
            printer_ids.add(pid)

        connection_type = printer.get("connection_type")
        if connection_type not in [t.value for t in ConnectionType]:
            issues.append(f"Printer '{pid}' has invalid 'connection_type': {connection_type}")

    routing = config.get("routing", {}) or {}
    valid_roles = {r.value for r in PrinterRole}
    for role, target in routing.items():
        if role not in valid_roles:
            issues.append(f"Invalid role in routing: '{role}'")
            continue
        if isinstance(target, dict):
            target = target.get("printers", target.get("printer", []))
        targets = [target] if isinstance(target, str) else list(target or [])
        for printer_id in targets:
            if printer_id not in printer_ids and printers:
                issues.append(f"Role '{role}' routes to unknown printer '{printer_id}'.")

    return issues


def check_platform_support() -> dict[str, bool]:
    """
    Check which transports this host can drive.

    Returns:
        Dict of transport name -> is_available
    """
    support = {"bluetooth": bluetooth_supported()}

    try:
        usb.core.find(find_all=True)
        support["usb (libusb)"] = True
    except usb.core.NoBackendError:
        support["usb (libusb)"] = False

    return support


def run_startup_checks(config: dict) -> None:
    """
    Run all startup checks. Exits with error if critical issues found.

    Args:
        config: Loaded configuration dict
    """
    logger.info("Running startup checks...")

    errors = []
    warnings = []

    server = config.get("server", {}) or {}
    host = server.get("host", "0.0.0.0")
    port = server.get("port", 5001)

    available, port_error = check_port_available(host, port)
    if not available:
        errors.append(port_error)

    for issue in validate_config(config):
        if issue.startswith(("Invalid port", "Duplicate printer", "Invalid transport backend", "Invalid role")):
            errors.append(issue)
        else:
            warnings.append(issue)

    support = check_platform_support()
    missing = [name for name, available in support.items() if not available]
    if missing:
        warnings.append(f"Transports unavailable on this host: {', '.join(missing)}")

    for warning in warnings:
        logger.warning(f"  ⚠ {warning}")

    if errors:
        logger.error("Startup checks failed:")
        for error in errors:
            logger.error(f"  ✗ {error}")
        logger.error("")
        logger.error("Fix these issues and try again.")
        sys.exit(1)

    if warnings:
        logger.info(f"Startup checks passed with {len(warnings)} warning(s)")
    else:
        logger.info("Startup checks passed ✓")


def print_startup_banner(config: dict, printers: list) -> None:
    """Print a startup banner with useful info."""
    server = config.get("server", {}) or {}
    port = server.get("port", 5001)

    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        local_ip = s.getsockname()[0]
        s.close()
    except OSError:
        local_ip = "unknown"

    print("")
    print("=" * 50)
    print("  printfleet")
    print("=" * 50)
    print("")
    print(f"  Local URL:    http://localhost:{port}")
    print(f"  Network URL:  http://{local_ip}:{port}")
    print(f"  API Docs:     http://localhost:{port}/docs")
    print("")
    print("  Printers:")
    if not printers:
        print("    (none yet - POST /v1/printers to add one)")
    for printer in printers:
        print(f"    • {printer.name} ({printer.id}) {printer.connection_type.value} {printer.address.formatted}")
    print("")
    print("  Endpoints:")
    print("    POST /v1/print/receipt          - Print a receipt to many printers")
    print("    POST /v1/print/role/<role>      - Print with role routing")
    print("    GET  /v1/printers               - List printers")
    print("    GET  /v1/health                 - Health check")
    print("")
    print("=" * 50)
    print("")
