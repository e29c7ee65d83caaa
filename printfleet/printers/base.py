import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .errors import AddressError

DEFAULT_TCP_PORT = 9100

MAC_ADDRESS_RE = re.compile(r"^([0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2}$")
IPV4_ADDRESS_RE = re.compile(
    r"^(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}"
    r"(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)$"
)


class ConnectionType(Enum):
    BLUETOOTH = "bluetooth"
    TCP = "tcp"
    LAN = "lan"
    USB = "usb"

    @property
    def is_network(self) -> bool:
        """TCP and LAN printers get a fresh socket per job."""
        return self in (ConnectionType.TCP, ConnectionType.LAN)

    @property
    def is_session(self) -> bool:
        """Bluetooth and USB printers keep a session until disconnect."""
        return not self.is_network


class PrinterRole(Enum):
    CASHIER = "cashier"
    KITCHEN = "kitchen"
    BAR = "bar"
    STICKER = "sticker"
    GENERAL = "general"


class DocumentType(Enum):
    RECEIPT = "receipt"
    STICKER = "sticker"


class JobStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


@dataclass(frozen=True)
class PrinterAddress:
    connection_type: ConnectionType
    address: str
    port: Optional[int] = None

    def __post_init__(self):
        if self.connection_type.is_network:
            if self.port is None:
                raise AddressError(f"Port is required for {self.connection_type.value} printers")
            if not 0 < self.port < 65536:
                raise AddressError(f"Invalid port: {self.port}")
            if not IPV4_ADDRESS_RE.match(self.address or ""):
                raise AddressError(f"Invalid IP address: '{self.address}'")
        else:
            if self.port is not None:
                raise AddressError(f"Port is not allowed for {self.connection_type.value} printers")
            if self.connection_type == ConnectionType.BLUETOOTH:
                if not MAC_ADDRESS_RE.match(self.address or ""):
                    raise AddressError(f"Invalid Bluetooth MAC address: '{self.address}'")
            elif not self.address:
                raise AddressError("USB device path must not be empty")

    @classmethod
    def bluetooth(cls, mac_address: str) -> "PrinterAddress":
        return cls(ConnectionType.BLUETOOTH, mac_address)

    @classmethod
    def tcp(cls, ip_address: str, port: int = DEFAULT_TCP_PORT) -> "PrinterAddress":
        return cls(ConnectionType.TCP, ip_address, port)

    @classmethod
    def lan(cls, ip_address: str, port: int = DEFAULT_TCP_PORT) -> "PrinterAddress":
        return cls(ConnectionType.LAN, ip_address, port)

    @classmethod
    def usb(cls, device_path: str) -> "PrinterAddress":
        return cls(ConnectionType.USB, device_path)

    @property
    def formatted(self) -> str:
        if self.port is not None:
            return f"{self.address}:{self.port}"
        return self.address

    def to_dict(self) -> dict:
        return {
            "connection_type": self.connection_type.value,
            "address": self.address,
            "port": self.port,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PrinterAddress":
        connection_type = ConnectionType(data.get("connection_type", "tcp"))
        port = data.get("port")
        if port is None and connection_type.is_network:
            port = DEFAULT_TCP_PORT
        return cls(connection_type, data.get("address", ""), port)


@dataclass(frozen=True)
class PrinterDevice:
    """
    A registered printer.

    Immutable: connection changes produce a copy through `with_changes`. Mutable
    transport state lives in the connection manager, keyed by `id`.
    """

    id: str
    name: str
    address: PrinterAddress
    role: PrinterRole = PrinterRole.GENERAL
    is_connected: bool = False
    supported_documents: frozenset = frozenset({DocumentType.RECEIPT, DocumentType.STICKER})
    last_connected_at: Optional[datetime] = None

    @property
    def connection_type(self) -> ConnectionType:
        return self.address.connection_type

    def supports(self, document_type: DocumentType) -> bool:
        return document_type in self.supported_documents

    def with_changes(self, **changes) -> "PrinterDevice":
        return replace(self, **changes)

    def to_dict(self) -> dict:
        """Return printer info as dict for API responses and storage."""
        return {
            "id": self.id,
            "name": self.name,
            **self.address.to_dict(),
            "role": self.role.value,
            "is_connected": self.is_connected,
            "supported_documents": sorted(d.value for d in self.supported_documents),
            "last_connected_at": self.last_connected_at.isoformat() if self.last_connected_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PrinterDevice":
        documents = data.get("supported_documents")
        last_connected = data.get("last_connected_at")
        return cls(
            id=data["id"],
            name=data.get("name") or data["id"],
            address=PrinterAddress.from_dict(data),
            role=PrinterRole(data.get("role", "general")),
            is_connected=bool(data.get("is_connected", False)),
            supported_documents=(
                frozenset(DocumentType(d) for d in documents)
                if documents
                else frozenset({DocumentType.RECEIPT, DocumentType.STICKER})
            ),
            last_connected_at=datetime.fromisoformat(last_connected) if last_connected else None,
        )


class ContentKind(Enum):
    RECEIPT = "receipt"
    STICKER = "sticker"
    RAW = "raw"


@dataclass
class PrintJob:
    """
    One print attempt against one printer.

    Status transitions go through the JobTracker, which refuses to overwrite
    a terminal status.
    """

    printer_id: str
    content_kind: ContentKind = ContentKind.RAW
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    retry_count: int = 0
    delivery_verified: bool = True
    notes: list = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def snapshot(self) -> "PrintJob":
        return replace(self, notes=list(self.notes))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "printer_id": self.printer_id,
            "content_kind": self.content_kind.value,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error_message,
            "error_code": self.error_code,
            "retry_count": self.retry_count,
            "delivery_verified": self.delivery_verified,
            "notes": list(self.notes),
        }


@dataclass(frozen=True)
class BatchPrintResult:
    jobs: tuple
    success_count: int
    failure_count: int
    total_duration: timedelta

    @property
    def all_succeeded(self) -> bool:
        return self.failure_count == 0

    @property
    def any_succeeded(self) -> bool:
        return self.success_count > 0

    @property
    def failed_jobs(self) -> list[PrintJob]:
        return [j for j in self.jobs if j.status == JobStatus.FAILED]

    @property
    def successful_jobs(self) -> list[PrintJob]:
        return [j for j in self.jobs if j.status == JobStatus.COMPLETED]

    @property
    def cancelled_count(self) -> int:
        return sum(1 for j in self.jobs if j.status == JobStatus.CANCELLED)

    @classmethod
    def from_jobs(cls, jobs: list[PrintJob], total_duration: timedelta) -> "BatchPrintResult":
        """Aggregate terminal jobs. Anything not completed counts as a failure."""
        success = sum(1 for j in jobs if j.status == JobStatus.COMPLETED)
        return cls(
            jobs=tuple(jobs),
            success_count=success,
            failure_count=len(jobs) - success,
            total_duration=total_duration,
        )

    def to_dict(self) -> dict:
        return {
            "jobs": [j.to_dict() for j in self.jobs],
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "cancelled_count": self.cancelled_count,
            "total_duration_ms": int(self.total_duration.total_seconds() * 1000),
            "all_succeeded": self.all_succeeded,
        }


@dataclass
class ConnectionState:
    """Tracks transport state for one printer id."""

    is_connected: bool = False
    last_seen: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_code: Optional[str] = None
    consecutive_failures: int = 0
    attempts: int = 0

    def to_dict(self) -> dict:
        return {
            "is_connected": self.is_connected,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
            "last_error": self.last_error,
            "last_error_code": self.last_error_code,
            "consecutive_failures": self.consecutive_failures,
            "attempts": self.attempts,
        }
