"""
API routes for printfleet.

Base URL: /v1
"""

import base64
import binascii
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from printfleet.api.dependencies import get_health_monitor, get_service
from printfleet.content import ReceiptContent, ReceiptLine, StickerContent
from printfleet.printers.base import ConnectionType, DocumentType, PrinterRole
from printfleet.printers.errors import ProtocolFault

router = APIRouter(prefix="/v1")

# Track server start time
_server_start_time = datetime.now()


# =============================================================================
# Request bodies
# =============================================================================

class PrinterCreate(BaseModel):
    name: str
    connection_type: str
    address: str
    port: Optional[int] = None
    role: str = "general"
    supported_documents: Optional[list[str]] = None
    id: Optional[str] = None


class ReceiptLineBody(BaseModel):
    type: str = "text"
    text: str = ""
    left: str = ""
    right: str = ""
    char: str = "-"
    alignment: Optional[str] = None
    size: str = "normal"
    bold: bool = False
    underline: bool = False
    image: Optional[str] = Field(default=None, description="Base64 encoded PNG/JPEG/BMP/GIF")


class ReceiptBody(BaseModel):
    lines: list[ReceiptLineBody] = Field(default_factory=list)
    store_name: Optional[str] = None
    store_address: Optional[str] = None
    footer: Optional[str] = None
    cut_paper: bool = True
    open_cash_drawer: bool = False


class StickerBody(BaseModel):
    customer_name: str
    product_name: str
    variants: list[str] = Field(default_factory=list)
    additions: list[str] = Field(default_factory=list)
    notes: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    width: int = Field(default=40, gt=0, description="Label width in mm")
    height: int = Field(default=30, gt=0, description="Label height in mm")
    gap: int = Field(default=3, ge=0, description="Gap between labels in mm")
    barcode: Optional[str] = None
    density: int = Field(default=8, ge=1, le=15)
    font_size: int = Field(default=3, ge=1, le=4)


class RawBody(BaseModel):
    data: str
    encoding: str = Field(default="base64", description="'base64' or 'hex'")


class ReceiptRequest(ReceiptBody):
    printer_ids: list[str]


class StickerRequest(StickerBody):
    printer_ids: list[str]


class RawRequest(RawBody):
    printer_ids: list[str]


class RolePrintRequest(BaseModel):
    receipt: Optional[ReceiptBody] = None
    sticker: Optional[StickerBody] = None


class ConnectRequest(BaseModel):
    printer_ids: list[str]


# =============================================================================
# Body conversion
# =============================================================================

def _decode_base64(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise ProtocolFault(f"{what} is not valid base64")


def _receipt_from(body: ReceiptBody) -> ReceiptContent:
    lines = []
    for line in body.lines:
        data = line.model_dump(exclude_none=True)
        if line.image is not None:
            data["image"] = _decode_base64(line.image, "Receipt image")
        try:
            lines.append(ReceiptLine.from_dict(data))
        except ValueError as e:
            raise ProtocolFault(f"Invalid receipt line: {e}")

    return ReceiptContent(
        lines=lines,
        store_name=body.store_name,
        store_address=body.store_address,
        footer=body.footer,
        cut_paper=body.cut_paper,
        open_cash_drawer=body.open_cash_drawer,
    )


def _sticker_from(body: StickerBody) -> StickerContent:
    return StickerContent(
        customer_name=body.customer_name,
        product_name=body.product_name,
        variants=body.variants,
        additions=body.additions,
        notes=body.notes,
        quantity=body.quantity,
        width=body.width,
        height=body.height,
        gap=body.gap,
        barcode=body.barcode,
        density=body.density,
        font_size=body.font_size,
    )


def _raw_from(body: RawBody) -> bytes:
    if body.encoding == "base64":
        return _decode_base64(body.data, "Raw data")
    if body.encoding == "hex":
        try:
            return bytes.fromhex(body.data)
        except ValueError:
            raise ProtocolFault("Raw data is not valid hex")
    raise ProtocolFault(f"Unknown encoding: '{body.encoding}'. Expected 'base64' or 'hex'")


def _role_from(value: str) -> PrinterRole:
    try:
        return PrinterRole(value)
    except ValueError:
        available = [r.value for r in PrinterRole]
        raise ProtocolFault(f"Unknown role: '{value}'. Available: {available}")


# =============================================================================
# Health and status
# =============================================================================

@router.get("/health")
async def health_check(detailed: bool = Query(default=False)):
    """
    Health check endpoint.

    Args:
        detailed: If true, include printer reachability and job counts
    """
    if not detailed:
        return {"status": "ok"}

    service = get_service()
    monitor = get_health_monitor()

    printers = {
        printer.id: {
            "reachable": monitor.get_last_status(printer.id),
            "is_connected": printer.is_connected,
        }
        for printer in service.list_printers()
    }
    degraded = any(info["reachable"] is False for info in printers.values())

    uptime_seconds = (datetime.now() - _server_start_time).total_seconds()

    return {
        "status": "degraded" if degraded else "ok",
        "uptime_seconds": int(uptime_seconds),
        "printers": printers,
        "jobs": {
            "active": len(service.tracker.active()),
        },
        "health_monitor_running": monitor.is_running,
        "warming_up": service.connections.warming_up,
        "roles_configured": len(service.router.list_routes()),
    }


@router.get("/status")
async def get_status():
    """Get connection state of all printers."""
    service = get_service()
    return {
        "printers": {
            printer.id: {
                "name": printer.name,
                "connection_type": printer.connection_type.value,
                "address": printer.address.formatted,
                **service.connection_status(printer.id).to_dict(),
            }
            for printer in service.list_printers()
        }
    }


# =============================================================================
# Printers
# =============================================================================

@router.get("/printers")
async def list_printers(role: Optional[str] = None):
    service = get_service()
    printers = service.list_printers()
    if role:
        wanted = _role_from(role)
        printers = [p for p in printers if p.role == wanted]
    return {"printers": [p.to_dict() for p in printers]}


@router.post("/printers", status_code=201)
async def add_printer(body: PrinterCreate):
    """
    Register a printer manually.

    TCP/LAN printers default to port 9100.
    """
    service = get_service()
    try:
        connection_type = ConnectionType(body.connection_type)
        documents = [DocumentType(d) for d in body.supported_documents] if body.supported_documents else None
    except ValueError as e:
        raise ProtocolFault(str(e))

    printer = service.add_manual_printer(
        name=body.name,
        connection_type=connection_type,
        address=body.address,
        port=body.port,
        role=_role_from(body.role),
        supported_documents=documents,
        printer_id=body.id,
    )
    return printer.to_dict()


@router.get("/printers/{printer_id}")
async def get_printer(printer_id: str):
    return get_service().get_printer(printer_id).to_dict()


@router.delete("/printers/{printer_id}")
async def remove_printer(printer_id: str):
    printer = await get_service().remove_printer(printer_id)
    return {"message": "Printer removed", "printer_id": printer.id}


@router.post("/printers/{printer_id}/connect")
async def connect_printer(printer_id: str):
    """Open a session to a Bluetooth or USB printer."""
    printer = await get_service().connect(printer_id)
    return printer.to_dict()


@router.post("/printers/{printer_id}/disconnect")
async def disconnect_printer(printer_id: str):
    printer = await get_service().disconnect(printer_id)
    return printer.to_dict()


@router.get("/printers/{printer_id}/connection")
async def connection_status(printer_id: str):
    return {"printer_id": printer_id, **get_service().connection_status(printer_id).to_dict()}


@router.post("/printers/{printer_id}/test")
async def print_test_page(printer_id: str):
    job = await get_service().print_test_page(printer_id)
    return job.to_dict()


@router.post("/connections/connect")
async def connect_many(body: ConnectRequest):
    """Open sessions to several printers at once. Failures are reported per printer."""
    outcomes = await get_service().connect_many(body.printer_ids)
    return {
        "results": {
            printer_id: {"ok": outcome.ok, **(outcome.error.to_dict() if outcome.error else {})}
            for printer_id, outcome in outcomes.items()
        }
    }


@router.post("/connections/warm-up")
async def warm_up():
    """
    Pre-open network printer sockets.

    Returns started=false if a warm-up is already running.
    """
    started = await get_service().warm_up_connections()
    return {"started": started}


# =============================================================================
# Printing
# =============================================================================

@router.post("/printers/{printer_id}/print/receipt")
async def print_receipt(printer_id: str, body: ReceiptBody):
    job = await get_service().print_receipt(printer_id, _receipt_from(body))
    return job.to_dict()


@router.post("/printers/{printer_id}/print/sticker")
async def print_sticker(printer_id: str, body: StickerBody):
    job = await get_service().print_sticker(printer_id, _sticker_from(body))
    return job.to_dict()


@router.post("/printers/{printer_id}/print/raw")
async def print_raw(printer_id: str, body: RawBody):
    job = await get_service().print_raw(printer_id, _raw_from(body))
    return job.to_dict()


@router.post("/print/receipt")
async def print_receipts(body: ReceiptRequest):
    """Print the same receipt on every listed printer concurrently."""
    result = await get_service().print_receipts(body.printer_ids, _receipt_from(body))
    return result.to_dict()


@router.post("/print/sticker")
async def print_stickers(body: StickerRequest):
    result = await get_service().print_stickers(body.printer_ids, _sticker_from(body))
    return result.to_dict()


@router.post("/print/raw")
async def print_raws(body: RawRequest):
    result = await get_service().print_raws(body.printer_ids, _raw_from(body))
    return result.to_dict()


@router.get("/roles")
async def list_roles():
    """
    List configured role routes.

    Roles without a route fall back to every printer of that role.
    """
    return {"roles": get_service().router.list_routes()}


@router.post("/print/role/{role}")
async def print_to_role(role: str, body: RolePrintRequest):
    """
    Print to whatever printers serve a role.

    Examples:
        POST /v1/print/role/kitchen   {"receipt": {...}}
        POST /v1/print/role/sticker   {"sticker": {...}}
    """
    if (body.receipt is None) == (body.sticker is None):
        raise ProtocolFault("Provide exactly one of 'receipt' or 'sticker'")

    content = _receipt_from(body.receipt) if body.receipt is not None else _sticker_from(body.sticker)
    result = await get_service().print_to_role(_role_from(role), content)
    return {"role": role, **result.to_dict()}


# =============================================================================
# Jobs
# =============================================================================

@router.get("/jobs")
async def job_history(limit: int = Query(default=10, ge=1, le=200)):
    return {"jobs": [job.to_dict() for job in get_service().job_history(limit)]}


@router.get("/jobs/{job_id}")
async def get_job(job_id: str):
    """Get status of a specific print job."""
    return get_service().get_job_status(job_id).to_dict()


@router.delete("/jobs/{job_id}")
async def cancel_job(job_id: str):
    """Cancel a pending or in-progress print job."""
    job = await get_service().cancel_job(job_id)
    return {"message": "Job cancelled", **job.to_dict()}


# =============================================================================
# Discovery
# =============================================================================

@router.get("/discovery/network")
async def scan_network(
    subnet: Optional[str] = Query(default=None, description="First three octets, e.g. 192.168.1"),
    port: int = Query(default=9100, ge=1, le=65535)
):
    printers = await get_service().scan_network(subnet, port)
    return {"printers": [p.to_dict() for p in printers]}


@router.get("/discovery/usb")
async def scan_usb():
    printers = await get_service().scan_usb()
    return {"printers": [p.to_dict() for p in printers]}


@router.get("/discovery/bluetooth")
async def scan_bluetooth():
    printers = await get_service().scan_bluetooth()
    return {"printers": [p.to_dict() for p in printers]}
