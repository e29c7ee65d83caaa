"""
Print service: the public operations of printfleet.

Wires the registry, connection manager, job tracker, executor, batch
orchestrator, router and discovery together. The HTTP layer and tests talk
to this class only.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Optional, Union

from printfleet.connections.manager import ConnectionManager, ConnectOutcome
from printfleet.content import (
    Alignment,
    PrintContent,
    RawContent,
    ReceiptContent,
    ReceiptLine,
    StickerContent,
)
from printfleet.discovery import PrinterDiscovery
from printfleet.jobs.batch import BatchOrchestrator
from printfleet.jobs.executor import PrintExecutor
from printfleet.jobs.tracker import JobTracker
from printfleet.printers.base import (
    BatchPrintResult,
    ConnectionState,
    ConnectionType,
    DocumentType,
    PrintJob,
    PrinterAddress,
    PrinterDevice,
    PrinterRole,
)
from printfleet.printers.errors import BatchRequestError, ErrorCode, JobFault
from printfleet.printers.registry import PrinterRegistry
from printfleet.protocol import encode_content
from printfleet.protocol.escpos import DEFAULT_WIDTH
from printfleet.protocol.tspl import DEFAULT_WRAP_WIDTH, TsplBuilder
from printfleet.routing import PrintRouter
from printfleet.transport.base import TransportBackend

logger = logging.getLogger(__name__)


def build_test_page(printer: PrinterDevice) -> ReceiptContent:
    center = Alignment.CENTER
    return ReceiptContent(
        store_name="*** TEST PRINT ***",
        store_address="Connection Test",
        lines=(
            ReceiptLine.divider(),
            ReceiptLine.text_line(f"Printer: {printer.name}", alignment=center),
            ReceiptLine.text_line(f"Address: {printer.address.formatted}", alignment=center),
            ReceiptLine.text_line(f"Type: {printer.connection_type.value.upper()}", alignment=center),
            ReceiptLine.divider(),
            ReceiptLine.text_line("If you see this,", alignment=center),
            ReceiptLine.text_line("printing works!", alignment=center, bold=True),
            ReceiptLine.divider(),
            ReceiptLine.text_line(f"Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}", alignment=center),
        ),
        footer="*** END TEST ***",
        cut_paper=True,
    )


def build_test_label(printer: PrinterDevice) -> StickerContent:
    return StickerContent(
        customer_name="TEST PRINT",
        product_name=printer.name,
        variants=(printer.address.formatted,),
        notes="If you see this, printing works!",
    )


class PrintService:
    def __init__(
        self,
        registry: PrinterRegistry,
        connections: ConnectionManager,
        backend: TransportBackend,
        tracker: Optional[JobTracker] = None,
        router: Optional[PrintRouter] = None,
        receipt_width: int = DEFAULT_WIDTH,
        wrap_width: int = DEFAULT_WRAP_WIDTH,
    ):
        self.registry = registry
        self.connections = connections
        self.tracker = tracker or JobTracker()
        self.router = router or PrintRouter(registry)
        self.receipt_width = receipt_width
        self.wrap_width = wrap_width
        self.executor = PrintExecutor(connections, self.tracker)
        self.batch = BatchOrchestrator(self.executor, self.tracker, receipt_width, wrap_width)
        self.discovery = PrinterDiscovery(backend)

    # -- printers ------------------------------------------------------------

    def _with_runtime_state(self, device: PrinterDevice) -> PrinterDevice:
        return device.with_changes(is_connected=self.connections.is_connected(device.id))

    def register_printer(self, device: PrinterDevice) -> PrinterDevice:
        logger.info(f"Registering printer {device.id} ({device.connection_type.value} {device.address.formatted})")
        return self.registry.upsert(device.with_changes(is_connected=False))

    def add_manual_printer(
        self,
        name: str,
        connection_type: ConnectionType,
        address: str,
        port: Optional[int] = None,
        role: PrinterRole = PrinterRole.GENERAL,
        supported_documents: Optional[list[DocumentType]] = None,
        printer_id: Optional[str] = None,
    ) -> PrinterDevice:
        """
        Register a printer from its address parts.

        Raises:
            AddressError: the address does not fit the connection type
        """
        if connection_type.is_network and port is None:
            port = 9100
        device = PrinterDevice(
            id=printer_id or f"{connection_type.value}-{uuid.uuid4().hex[:8]}",
            name=name,
            address=PrinterAddress(connection_type, address.strip(), port),
            role=role,
            supported_documents=(
                frozenset(supported_documents)
                if supported_documents
                else frozenset({DocumentType.RECEIPT, DocumentType.STICKER})
            ),
        )
        return self.register_printer(device)

    def list_printers(self) -> list[PrinterDevice]:
        return [self._with_runtime_state(p) for p in self.registry.list_all()]

    def get_printer(self, printer_id: str) -> PrinterDevice:
        return self._with_runtime_state(self.registry.require(printer_id))

    async def remove_printer(self, printer_id: str) -> PrinterDevice:
        device = self.registry.require(printer_id)
        await self.connections.forget(printer_id)
        self.registry.remove(printer_id)
        logger.info(f"Removed printer {printer_id}")
        return device

    # -- connections ---------------------------------------------------------

    async def connect(self, printer_id: str) -> PrinterDevice:
        """
        Open a session for a Bluetooth or USB printer.

        Raises:
            RegistryFault: unknown printer id
            ConnectionFault: NOT_SUPPORTED for network printers, or the
                transport failure code
        """
        device = self.registry.require(printer_id)
        outcome = await self.connections.connect(device)
        if not outcome.ok:
            raise outcome.error
        updated = device.with_changes(is_connected=True, last_connected_at=datetime.now())
        self.registry.update_runtime(updated)
        return updated

    async def connect_many(self, printer_ids: list[str]) -> dict[str, ConnectOutcome]:
        devices = [self.registry.require(pid) for pid in printer_ids]
        outcomes = await asyncio.gather(*(self.connections.connect(d) for d in devices))
        for device, outcome in zip(devices, outcomes):
            if outcome.ok:
                self.registry.update_runtime(device.with_changes(is_connected=True, last_connected_at=datetime.now()))
        return {d.id: o for d, o in zip(devices, outcomes)}

    async def disconnect(self, printer_id: str) -> PrinterDevice:
        device = self.registry.require(printer_id)
        outcome = await self.connections.disconnect(device)
        if not outcome.ok:
            raise outcome.error
        updated = device.with_changes(is_connected=False)
        self.registry.update_runtime(updated)
        return updated

    def connection_status(self, printer_id: str) -> ConnectionState:
        self.registry.require(printer_id)
        return self.connections.state(printer_id)

    async def warm_up_connections(self) -> bool:
        return await self.connections.warm_up(self.registry.list_all())

    # -- printing ------------------------------------------------------------

    async def _print_one(self, printer_id: str, content: PrintContent) -> PrintJob:
        printer = self.registry.require(printer_id)
        document_type = content.document_type
        if document_type is not None and not printer.supports(document_type):
            job = self.tracker.create(printer.id, content.kind)
            self.tracker.fail(
                job,
                ErrorCode.UNSUPPORTED_CONTENT,
                f"Printer '{printer.name}' does not accept {document_type.value} jobs",
            )
            return job.snapshot()

        payload = encode_content(content, self.receipt_width, self.wrap_width)
        return await self.executor.execute(
            printer,
            payload.primary,
            auxiliary=payload.auxiliary,
            content_kind=content.kind,
        )

    async def _print_many(self, printer_ids: list[str], content: PrintContent) -> BatchPrintResult:
        if not printer_ids:
            raise BatchRequestError("At least one printer must be selected")
        printers = [self.registry.require(pid) for pid in printer_ids]
        return await self.batch.print_to_many(printers, content)

    async def print_receipt(self, printer_id: str, content: ReceiptContent) -> PrintJob:
        return await self._print_one(printer_id, content)

    async def print_receipts(self, printer_ids: list[str], content: ReceiptContent) -> BatchPrintResult:
        return await self._print_many(printer_ids, content)

    async def print_sticker(self, printer_id: str, content: StickerContent) -> PrintJob:
        return await self._print_one(printer_id, content)

    async def print_stickers(self, printer_ids: list[str], content: StickerContent) -> BatchPrintResult:
        return await self._print_many(printer_ids, content)

    async def print_raw(self, printer_id: str, data: bytes) -> PrintJob:
        return await self._print_one(printer_id, RawContent(data))

    async def print_raws(self, printer_ids: list[str], data: bytes) -> BatchPrintResult:
        return await self._print_many(printer_ids, RawContent(data))

    async def print_tspl(self, printer_id: str, commands: Union[TsplBuilder, bytes]) -> PrintJob:
        data = commands.build() if isinstance(commands, TsplBuilder) else commands
        return await self.print_raw(printer_id, data)

    async def print_tspls(self, printer_ids: list[str], commands: Union[TsplBuilder, bytes]) -> BatchPrintResult:
        data = commands.build() if isinstance(commands, TsplBuilder) else commands
        return await self.print_raws(printer_ids, data)

    async def print_to_role(self, role: PrinterRole, content: PrintContent) -> BatchPrintResult:
        printers = self.router.resolve_or_default(role, content.document_type)
        if not printers:
            raise BatchRequestError(f"No printers configured for role '{role.value}'")
        logger.info(f"Routing {content.kind.value} to role {role.value}: {[p.id for p in printers]}")
        return await self.batch.print_to_many(printers, content)

    async def print_test_page(self, printer_id: str) -> PrintJob:
        printer = self.registry.require(printer_id)
        if printer.supports(DocumentType.RECEIPT):
            return await self._print_one(printer_id, build_test_page(printer))
        return await self._print_one(printer_id, build_test_label(printer))

    # -- jobs ----------------------------------------------------------------

    def get_job_status(self, job_id: str) -> PrintJob:
        job = self.tracker.get(job_id)
        if job is None:
            raise JobFault(f"Job not found: {job_id}", ErrorCode.JOB_NOT_FOUND)
        return job

    async def cancel_job(self, job_id: str) -> PrintJob:
        return await self.tracker.cancel(job_id)

    def job_history(self, limit: int = 10) -> list[PrintJob]:
        return self.tracker.history(limit)

    # -- discovery -----------------------------------------------------------

    async def scan_network(self, subnet: Optional[str] = None, port: int = 9100) -> list[PrinterDevice]:
        return await self.discovery.scan_network(subnet, port)

    async def scan_usb(self) -> list[PrinterDevice]:
        return await self.discovery.scan_usb()

    async def scan_bluetooth(self) -> list[PrinterDevice]:
        return await self.discovery.scan_bluetooth()

    async def close(self) -> None:
        await self.connections.close_all()
