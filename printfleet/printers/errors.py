"""
Fault taxonomy and transport error classification.

Every fault carries a stable machine-readable code and a human-readable
message. Transport errors are classified so the connection manager can tell
an unreachable printer from one that is not responding.
"""

import asyncio
import errno
import socket
from enum import Enum, auto
from typing import Optional


class ErrorCode:
    """Stable error codes reported on failed jobs and API responses."""

    UNREACHABLE = "UNREACHABLE"
    NOT_RESPONDING = "NOT_RESPONDING"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    SEND_FAILED = "SEND_FAILED"
    NOT_SUPPORTED = "NOT_SUPPORTED"
    INVALID_CONTENT = "INVALID_CONTENT"
    UNSUPPORTED_CONTENT = "UNSUPPORTED_CONTENT"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    PRINTER_NOT_FOUND = "PRINTER_NOT_FOUND"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    INVALID_STATUS = "INVALID_STATUS"
    EMPTY_BATCH = "EMPTY_BATCH"
    CANCELLED = "CANCELLED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class PrintFault(Exception):
    """Base class for all printing faults."""

    default_code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ConnectionFault(PrintFault):
    """Transport could not be opened: unreachable, timeout, permission."""

    default_code = ErrorCode.UNREACHABLE


class ProtocolFault(PrintFault):
    """Content cannot be encoded for the target protocol."""

    default_code = ErrorCode.INVALID_CONTENT


class JobFault(PrintFault):
    """Failure after the connection was established, or a job bookkeeping error."""

    default_code = ErrorCode.SEND_FAILED


class RegistryFault(PrintFault):
    """Unknown printer id."""

    default_code = ErrorCode.PRINTER_NOT_FOUND


class AddressError(PrintFault, ValueError):
    """Printer address does not match its connection type."""

    default_code = ErrorCode.INVALID_ADDRESS


class BatchRequestError(PrintFault, ValueError):
    """Batch request is malformed (e.g. no printers selected)."""

    default_code = ErrorCode.EMPTY_BATCH


class TransportErrorType(Enum):
    """Classification of low-level transport errors."""

    UNREACHABLE = auto()  # Refused, reset, no route - the device is not there
    TIMEOUT = auto()  # Device did not answer in time
    PERMISSION = auto()  # OS refused access (device node, bluetooth pairing)
    UNKNOWN = auto()


TIMEOUT_ERRNO = {
    errno.ETIMEDOUT,
    errno.EAGAIN,
}

UNREACHABLE_ERRNO = {
    errno.ECONNREFUSED,
    errno.ECONNRESET,
    errno.ECONNABORTED,
    errno.EHOSTUNREACH,
    errno.ENETUNREACH,
    errno.EHOSTDOWN,
    errno.ENETDOWN,
    errno.EPIPE,
    errno.EIO,
    errno.ENXIO,
    errno.ENODEV,
    errno.ENOENT,
    121,  # EREMOTEIO - USB remote I/O error
}

PERMISSION_ERRNO = {
    errno.EACCES,
    errno.EPERM,
}

TIMEOUT_MESSAGES = (
    "timed out",
    "timeout",
    "not responding",
)

PERMISSION_MESSAGES = (
    "permission denied",
    "access denied",
    "not authorized",
)


def classify_transport_error(exception: BaseException) -> TransportErrorType:
    """
    Classify a transport exception.

    Args:
        exception: The exception raised while opening or writing a transport

    Returns:
        TransportErrorType for the failure
    """
    if isinstance(exception, (asyncio.TimeoutError, socket.timeout, TimeoutError)):
        return TransportErrorType.TIMEOUT

    if isinstance(exception, PermissionError):
        return TransportErrorType.PERMISSION

    if isinstance(exception, OSError) and exception.errno is not None:
        if exception.errno in TIMEOUT_ERRNO:
            return TransportErrorType.TIMEOUT
        if exception.errno in PERMISSION_ERRNO:
            return TransportErrorType.PERMISSION
        if exception.errno in UNREACHABLE_ERRNO:
            return TransportErrorType.UNREACHABLE

    error_msg = str(exception).lower()
    if any(phrase in error_msg for phrase in TIMEOUT_MESSAGES):
        return TransportErrorType.TIMEOUT
    if any(phrase in error_msg for phrase in PERMISSION_MESSAGES):
        return TransportErrorType.PERMISSION

    # Some libraries wrap the socket error
    if exception.__cause__ is not None:
        cause_result = classify_transport_error(exception.__cause__)
        if cause_result != TransportErrorType.UNKNOWN:
            return cause_result

    if isinstance(exception, (ConnectionError, OSError)):
        return TransportErrorType.UNREACHABLE

    return TransportErrorType.UNKNOWN


def connection_fault_from(exception: BaseException, target: str) -> ConnectionFault:
    """Build a ConnectionFault with a stable code from a transport exception."""
    error_type = classify_transport_error(exception)

    if error_type == TransportErrorType.TIMEOUT:
        return ConnectionFault(
            f"Printer at {target} not responding. Is it powered on?",
            ErrorCode.NOT_RESPONDING,
        )
    if error_type == TransportErrorType.PERMISSION:
        return ConnectionFault(
            f"Permission denied opening {target}: {exception}",
            ErrorCode.PERMISSION_DENIED,
        )
    return ConnectionFault(
        f"Cannot connect to printer at {target}. "
        f"Check if printer is on and connected. ({exception})",
        ErrorCode.UNREACHABLE,
    )
