"""Tests for printer models, content parsing, errors and the registry."""

import asyncio
import errno
from datetime import datetime, timedelta

import pytest

from printfleet.content import Alignment, LineType, ReceiptLine, StickerContent, TextSize
from printfleet.printers import (
    BatchPrintResult,
    ConnectionType,
    DocumentType,
    JobStatus,
    MemoryStore,
    PrintJob,
    PrinterAddress,
    PrinterDevice,
    PrinterRegistry,
    PrinterRole,
    YamlFileStore,
)
from printfleet.printers.errors import (
    AddressError,
    ErrorCode,
    RegistryFault,
    TransportErrorType,
    classify_transport_error,
    connection_fault_from,
)


def tcp_printer(printer_id: str = "kitchen", ip: str = "192.168.1.50", **changes) -> PrinterDevice:
    device = PrinterDevice(id=printer_id, name=printer_id.title(), address=PrinterAddress.tcp(ip))
    return device.with_changes(**changes) if changes else device


class TestPrinterAddress:
    def test_tcp_defaults_to_port_9100(self):
        address = PrinterAddress.tcp("10.0.0.5")
        assert address.port == 9100
        assert address.formatted == "10.0.0.5:9100"

    def test_bluetooth_has_no_port(self):
        address = PrinterAddress.bluetooth("DC:0D:30:AA:BB:CC")
        assert address.port is None
        assert address.formatted == "DC:0D:30:AA:BB:CC"

    @pytest.mark.parametrize("connection_type, address, port", [
        (ConnectionType.TCP, "300.1.1.1", 9100),
        (ConnectionType.TCP, "printer.local", 9100),
        (ConnectionType.LAN, "192.168.1.10", 0),
        (ConnectionType.LAN, "192.168.1.10", None),
        (ConnectionType.BLUETOOTH, "DC:0D:30", None),
        (ConnectionType.BLUETOOTH, "DC:0D:30:AA:BB:CC", 1),
        (ConnectionType.USB, "", None),
    ])
    def test_invalid_addresses_are_rejected(self, connection_type, address, port):
        with pytest.raises(AddressError) as exc_info:
            PrinterAddress(connection_type, address, port)
        assert exc_info.value.code == ErrorCode.INVALID_ADDRESS

    def test_address_error_is_value_error(self):
        with pytest.raises(ValueError):
            PrinterAddress.tcp("not-an-ip")

    def test_from_dict_fills_default_port(self):
        address = PrinterAddress.from_dict({"connection_type": "lan", "address": "192.168.1.9"})
        assert address == PrinterAddress.lan("192.168.1.9", 9100)

    def test_connection_type_families(self):
        assert ConnectionType.TCP.is_network and ConnectionType.LAN.is_network
        assert ConnectionType.BLUETOOTH.is_session and ConnectionType.USB.is_session


class TestPrinterDevice:
    def test_dict_round_trip(self):
        device = PrinterDevice(
            id="labels",
            name="Sticker Printer",
            address=PrinterAddress.usb("usb://0x28e9:0x0289"),
            role=PrinterRole.STICKER,
            supported_documents=frozenset({DocumentType.STICKER}),
            last_connected_at=datetime(2024, 5, 1, 12, 30),
        )
        data = device.to_dict()
        assert data["connection_type"] == "usb"
        assert data["supported_documents"] == ["sticker"]
        assert PrinterDevice.from_dict(data) == device

    def test_defaults_support_everything(self):
        device = PrinterDevice.from_dict({"id": "p1", "connection_type": "tcp", "address": "10.0.0.1"})
        assert device.name == "p1"
        assert device.role == PrinterRole.GENERAL
        assert device.supports(DocumentType.RECEIPT)
        assert device.supports(DocumentType.STICKER)

    def test_with_changes_returns_copy(self):
        device = tcp_printer()
        connected = device.with_changes(is_connected=True)
        assert connected.is_connected is True
        assert device.is_connected is False


class TestJobsAndResults:
    def test_terminal_statuses(self):
        assert not JobStatus.PENDING.is_terminal
        assert not JobStatus.IN_PROGRESS.is_terminal
        assert JobStatus.COMPLETED.is_terminal
        assert JobStatus.FAILED.is_terminal
        assert JobStatus.CANCELLED.is_terminal

    def test_snapshot_is_independent(self):
        job = PrintJob(printer_id="p1")
        snapshot = job.snapshot()
        job.notes.append("later")
        job.status = JobStatus.COMPLETED
        assert snapshot.notes == []
        assert snapshot.status == JobStatus.PENDING

    def test_batch_counts_cancelled_as_failure(self):
        jobs = [
            PrintJob(printer_id="a", status=JobStatus.COMPLETED),
            PrintJob(printer_id="b", status=JobStatus.FAILED),
            PrintJob(printer_id="c", status=JobStatus.CANCELLED),
        ]
        result = BatchPrintResult.from_jobs(jobs, timedelta(milliseconds=1500))

        assert result.success_count == 1
        assert result.failure_count == 2
        assert result.cancelled_count == 1
        assert result.any_succeeded and not result.all_succeeded

        data = result.to_dict()
        assert data["total_duration_ms"] == 1500
        assert len(data["jobs"]) == 3


class TestContentParsing:
    def test_text_line_from_dict(self):
        line = ReceiptLine.from_dict({
            "type": "text", "text": "TOTAL", "alignment": "right", "size": "large", "bold": True,
        })
        assert line == ReceiptLine.text_line("TOTAL", alignment=Alignment.RIGHT, size=TextSize.LARGE, bold=True)

    def test_left_right_from_dict(self):
        line = ReceiptLine.from_dict({"type": "left_right", "left": "Tea", "right": "8.000"})
        assert line.line_type == LineType.LEFT_RIGHT
        assert (line.text, line.right_text) == ("Tea", "8.000")

    def test_default_type_is_text(self):
        assert ReceiptLine.from_dict({"text": "hi"}).line_type == LineType.TEXT

    def test_unknown_type_is_value_error(self):
        with pytest.raises(ValueError):
            ReceiptLine.from_dict({"type": "hologram"})

    def test_divider_keeps_one_char(self):
        assert ReceiptLine.divider("=-").char == "="

    def test_sticker_details_order(self):
        sticker = StickerContent("Budi", "Latte", variants=["Large"], additions=["Shot"], notes="Hot")
        assert sticker.details == ["Large", "Shot", "Hot"]
        assert sticker.variants == ("Large",)


class TestTransportErrorClassification:
    def test_refused_is_unreachable(self):
        error = ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused")
        assert classify_transport_error(error) == TransportErrorType.UNREACHABLE

    def test_asyncio_timeout_is_timeout(self):
        assert classify_transport_error(asyncio.TimeoutError()) == TransportErrorType.TIMEOUT

    def test_errno_timeout_is_timeout(self):
        assert classify_transport_error(OSError(errno.ETIMEDOUT, "timed out")) == TransportErrorType.TIMEOUT

    def test_permission_error(self):
        error = PermissionError(errno.EACCES, "Permission denied: '/dev/usb/lp0'")
        assert classify_transport_error(error) == TransportErrorType.PERMISSION

    def test_message_is_checked(self):
        assert classify_transport_error(Exception("device not responding")) == TransportErrorType.TIMEOUT

    def test_nested_cause_is_checked(self):
        outer = Exception("wrapper")
        outer.__cause__ = OSError(errno.EHOSTUNREACH, "No route to host")
        assert classify_transport_error(outer) == TransportErrorType.UNREACHABLE

    def test_generic_error_is_unknown(self):
        assert classify_transport_error(ValueError("bad value")) == TransportErrorType.UNKNOWN

    def test_fault_codes(self):
        assert connection_fault_from(asyncio.TimeoutError(), "10.0.0.1:9100").code == ErrorCode.NOT_RESPONDING
        assert connection_fault_from(PermissionError(errno.EACCES, "denied"), "/dev/usb/lp0").code == (
            ErrorCode.PERMISSION_DENIED
        )
        fault = connection_fault_from(ConnectionRefusedError(errno.ECONNREFUSED, "refused"), "10.0.0.1:9100")
        assert fault.code == ErrorCode.UNREACHABLE
        assert fault.to_dict() == {"error": fault.message, "code": "UNREACHABLE"}


class TestPrinterRegistry:
    def test_require_unknown_printer(self):
        registry = PrinterRegistry()
        with pytest.raises(RegistryFault) as exc_info:
            registry.require("ghost")
        assert exc_info.value.code == ErrorCode.PRINTER_NOT_FOUND

    def test_upsert_replaces_by_id(self):
        registry = PrinterRegistry()
        registry.upsert(tcp_printer())
        registry.upsert(tcp_printer(ip="192.168.1.60"))
        assert len(registry.list_all()) == 1
        assert registry.get("kitchen").address.address == "192.168.1.60"

    def test_by_role(self):
        registry = PrinterRegistry()
        registry.upsert(tcp_printer("k1", role=PrinterRole.KITCHEN))
        registry.upsert(tcp_printer("c1", "192.168.1.51", role=PrinterRole.CASHIER))
        assert [p.id for p in registry.by_role(PrinterRole.KITCHEN)] == ["k1"]

    def test_remove(self):
        registry = PrinterRegistry()
        registry.upsert(tcp_printer())
        registry.remove("kitchen")
        assert registry.get("kitchen") is None
        with pytest.raises(RegistryFault):
            registry.remove("kitchen")

    def test_yaml_store_persists_without_connection_flag(self, tmp_path):
        path = tmp_path / "data" / "printers.yaml"
        registry = PrinterRegistry(YamlFileStore(str(path)))
        registry.upsert(tcp_printer(is_connected=True))

        assert path.exists()
        assert "is_connected" not in path.read_text()

        reloaded = PrinterRegistry(YamlFileStore(str(path)))
        assert reloaded.require("kitchen") == tcp_printer()

    def test_runtime_updates_are_not_persisted(self):
        store = MemoryStore()
        registry = PrinterRegistry(store)
        device = registry.upsert(tcp_printer())
        registry.update_runtime(device.with_changes(last_connected_at=datetime(2024, 1, 1)))
        assert store.load()[0]["last_connected_at"] is None

    def test_unreadable_entries_are_skipped(self):
        store = MemoryStore()
        store.save([
            {"id": "broken", "connection_type": "bluetooth", "address": "not-a-mac"},
            {"id": "good", "connection_type": "tcp", "address": "10.0.0.2", "port": 9100},
        ])
        registry = PrinterRegistry(store)
        assert [p.id for p in registry.list_all()] == ["good"]
