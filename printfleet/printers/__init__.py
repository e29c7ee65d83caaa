from .base import (
    BatchPrintResult,
    ConnectionState,
    ConnectionType,
    DocumentType,
    JobStatus,
    PrinterAddress,
    PrinterDevice,
    PrinterRole,
    PrintJob,
)
from .registry import MemoryStore, PrinterRegistry, YamlFileStore

__all__ = [
    "BatchPrintResult",
    "ConnectionState",
    "ConnectionType",
    "DocumentType",
    "JobStatus",
    "MemoryStore",
    "PrintJob",
    "PrinterAddress",
    "PrinterDevice",
    "PrinterRegistry",
    "PrinterRole",
    "YamlFileStore",
]
