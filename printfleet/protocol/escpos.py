"""
ESC/POS command builder for receipt printers.

Output is deterministic: the same receipt always yields the same bytes.
Text is encoded as code page 437, the power-on default of most 58mm/80mm
thermal printers.
"""

from printfleet.content import Alignment, LineType, ReceiptContent, ReceiptLine, TextSize
from printfleet.printers.errors import ProtocolFault

from .raster import DEFAULT_MAX_WIDTH, image_to_raster

ESC = 0x1B
GS = 0x1D
LF = b"\n"

DEFAULT_WIDTH = 32
TEXT_ENCODING = "cp437"

INIT = bytes([ESC, 0x40])
CUT = bytes([GS, 0x56, 0x00])
DRAWER_KICK = bytes([ESC, 0x70, 0x00, 0x19, 0xFA])

ALIGN_CODES = {
    Alignment.LEFT: 0x00,
    Alignment.CENTER: 0x01,
    Alignment.RIGHT: 0x02,
}

# GS ! n: high nibble = width multiplier, low nibble = height multiplier
SIZE_CODES = {
    TextSize.SMALL: 0x00,
    TextSize.NORMAL: 0x00,
    TextSize.LARGE: 0x11,
    TextSize.EXTRA_LARGE: 0x22,
}

QR_ECC_LEVELS = {"L": 0x30, "M": 0x31, "Q": 0x32, "H": 0x33}
MAX_BARCODE_LENGTH = 253
MAX_QR_LENGTH = 7089


def encode_text(text: str) -> bytes:
    return text.encode(TEXT_ENCODING, errors="replace")


def format_left_right(left: str, right: str, width: int = DEFAULT_WIDTH) -> str:
    """
    Lay out `left` and `right` on one line of exactly `width` characters.

    The right field is never truncated. When both do not fit, the left field
    is cut to leave one separating space; when even that is impossible the
    right field is emitted right-justified on its own.
    """
    room = width - len(right) - 1
    if room <= 0:
        return right.rjust(width)
    if len(left) > room:
        left = left[:room]
    return left + " " * (width - len(left) - len(right)) + right


def drawer_kick() -> bytes:
    """Pulse pin 2 to open a cash drawer. Sent as its own write after the receipt."""
    return DRAWER_KICK


class EscPosBuilder:
    """Chainable ESC/POS command buffer."""

    def __init__(self, width: int = DEFAULT_WIDTH):
        if width <= 0:
            raise ProtocolFault(f"Invalid receipt width: {width}")
        self.width = width
        self._buffer = bytearray()

    def init(self) -> "EscPosBuilder":
        self._buffer += INIT
        return self

    def align(self, alignment: Alignment) -> "EscPosBuilder":
        self._buffer += bytes([ESC, 0x61, ALIGN_CODES[alignment]])
        return self

    def bold(self, on: bool = True) -> "EscPosBuilder":
        self._buffer += bytes([ESC, 0x45, 1 if on else 0])
        return self

    def underline(self, on: bool = True) -> "EscPosBuilder":
        self._buffer += bytes([ESC, 0x2D, 1 if on else 0])
        return self

    def text_size(self, size: TextSize) -> "EscPosBuilder":
        self._buffer += bytes([GS, 0x21, SIZE_CODES[size]])
        return self

    def text(self, text: str) -> "EscPosBuilder":
        self._buffer += encode_text(text)
        return self

    def line(self, text: str = "") -> "EscPosBuilder":
        self._buffer += encode_text(text) + LF
        return self

    def feed(self, lines: int = 1) -> "EscPosBuilder":
        self._buffer += LF * max(lines, 0)
        return self

    def divider(self, char: str = "-") -> "EscPosBuilder":
        return self.line((char or "-")[0] * self.width)

    def cut(self) -> "EscPosBuilder":
        self._buffer += CUT
        return self

    def barcode(self, data: str) -> "EscPosBuilder":
        """CODE128 (subset B) with human readable text below."""
        if not data:
            raise ProtocolFault("Barcode data must not be empty")
        try:
            payload = b"{B" + data.encode("ascii")
        except UnicodeEncodeError:
            raise ProtocolFault(f"Barcode data must be ASCII: '{data}'")
        if len(payload) > MAX_BARCODE_LENGTH:
            raise ProtocolFault(f"Barcode data too long: {len(data)} characters")

        self._buffer += bytes([GS, 0x68, 80])  # height in dots
        self._buffer += bytes([GS, 0x48, 2])  # HRI below
        self._buffer += bytes([GS, 0x6B, 73, len(payload)]) + payload
        return self

    def qr_code(self, data: str, module_size: int = 6, ecc: str = "M") -> "EscPosBuilder":
        if not data:
            raise ProtocolFault("QR code data must not be empty")
        payload = data.encode("utf-8")
        if len(payload) > MAX_QR_LENGTH:
            raise ProtocolFault(f"QR code data too long: {len(payload)} bytes")

        store_len = len(payload) + 3
        self._buffer += bytes([GS, 0x28, 0x6B, 4, 0, 0x31, 0x41, 0x32, 0x00])  # model 2
        self._buffer += bytes([GS, 0x28, 0x6B, 3, 0, 0x31, 0x43, module_size])
        self._buffer += bytes([GS, 0x28, 0x6B, 3, 0, 0x31, 0x45, QR_ECC_LEVELS[ecc]])
        self._buffer += bytes([GS, 0x28, 0x6B, store_len & 0xFF, store_len >> 8, 0x31, 0x50, 0x30])
        self._buffer += payload
        self._buffer += bytes([GS, 0x28, 0x6B, 3, 0, 0x31, 0x51, 0x30])
        return self

    def image(self, data: bytes, max_width: int = DEFAULT_MAX_WIDTH) -> "EscPosBuilder":
        raster = image_to_raster(data, max_width=max_width)
        self._buffer += bytes([
            GS, 0x76, 0x30, 0x00,
            raster.width_bytes & 0xFF, raster.width_bytes >> 8,
            raster.height & 0xFF, raster.height >> 8,
        ])
        self._buffer += raster.data
        return self

    def raw(self, data: bytes) -> "EscPosBuilder":
        self._buffer += data
        return self

    def build(self) -> bytes:
        return bytes(self._buffer)

    def clear(self) -> "EscPosBuilder":
        self._buffer.clear()
        return self


def _write_line(builder: EscPosBuilder, line: ReceiptLine) -> None:
    if line.line_type == LineType.TEXT:
        builder.align(line.alignment)
        if line.size != TextSize.NORMAL:
            builder.text_size(line.size)
        if line.bold:
            builder.bold(True)
        if line.underline:
            builder.underline(True)
        builder.line(line.text)
        if line.underline:
            builder.underline(False)
        if line.bold:
            builder.bold(False)
        if line.size != TextSize.NORMAL:
            builder.text_size(TextSize.NORMAL)
        builder.align(Alignment.LEFT)

    elif line.line_type == LineType.LEFT_RIGHT:
        builder.align(Alignment.LEFT)
        if line.bold:
            builder.bold(True)
        builder.line(format_left_right(line.text, line.right_text, builder.width))
        if line.bold:
            builder.bold(False)

    elif line.line_type == LineType.DIVIDER:
        builder.align(Alignment.LEFT).divider(line.char)

    elif line.line_type == LineType.BARCODE:
        builder.align(Alignment.CENTER).barcode(line.text).feed(1).align(Alignment.LEFT)

    elif line.line_type == LineType.QR_CODE:
        builder.align(Alignment.CENTER).qr_code(line.text).feed(1).align(Alignment.LEFT)

    elif line.line_type == LineType.EMPTY:
        builder.feed(1)

    elif line.line_type == LineType.IMAGE:
        builder.align(line.alignment).image(line.image).feed(1).align(Alignment.LEFT)

    else:
        raise ProtocolFault(f"Unknown receipt line type: {line.line_type}")


def build_escpos(content: ReceiptContent, width: int = DEFAULT_WIDTH) -> bytes:
    """
    Encode a receipt.

    Layout: init, centered bold store name, centered address, blank line,
    the lines, blank line and centered footer, three feeds, then a full cut
    when `cut_paper` is set. The cash drawer kick is not part of this stream.
    """
    builder = EscPosBuilder(width).init()

    if content.store_name:
        builder.align(Alignment.CENTER).bold(True).line(content.store_name).bold(False)
    if content.store_address:
        builder.align(Alignment.CENTER).line(content.store_address)
    builder.align(Alignment.LEFT).feed(1)

    for line in content.lines:
        _write_line(builder, line)

    if content.footer:
        builder.feed(1).align(Alignment.CENTER).line(content.footer).align(Alignment.LEFT)

    builder.feed(3)

    if content.cut_paper:
        builder.cut()

    return builder.build()
