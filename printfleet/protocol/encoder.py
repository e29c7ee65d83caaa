from dataclasses import dataclass
from typing import Optional

from printfleet.content import PrintContent
from printfleet.printers.base import ContentKind
from printfleet.printers.errors import ProtocolFault

from .escpos import DEFAULT_WIDTH, build_escpos, drawer_kick
from .tspl import DEFAULT_WRAP_WIDTH, build_tspl


@dataclass(frozen=True)
class EncodedPayload:
    """Bytes for one job: the primary stream and an optional trailing send."""

    primary: bytes
    auxiliary: Optional[bytes] = None


def encode_content(
    content: PrintContent,
    receipt_width: int = DEFAULT_WIDTH,
    wrap_width: int = DEFAULT_WRAP_WIDTH,
) -> EncodedPayload:
    """Encode any print content by its kind. Raises ProtocolFault when it cannot be encoded."""
    kind = getattr(content, "kind", None)

    if kind == ContentKind.RECEIPT:
        return EncodedPayload(
            build_escpos(content, receipt_width),
            drawer_kick() if content.open_cash_drawer else None,
        )
    elif kind == ContentKind.STICKER:
        return EncodedPayload(build_tspl(content, wrap_width))
    elif kind == ContentKind.RAW:
        if not content.data:
            raise ProtocolFault("Raw print data must not be empty")
        return EncodedPayload(content.data)

    raise ProtocolFault(f"Unsupported content: {type(content).__name__}")
