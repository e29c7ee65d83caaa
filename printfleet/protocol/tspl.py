"""
TSPL (TSC Printer Language) builder for label/sticker printers.

Coordinates are in dots: 8 dots per mm at the 200 DPI reference resolution.
Every directive is ASCII and terminated by CRLF.
"""

from dataclasses import dataclass

from printfleet.content import StickerContent
from printfleet.printers.errors import ProtocolFault

EOL = "\r\n"
DOTS_PER_MM = 8
DEFAULT_WRAP_WIDTH = 24

MARGIN = 2 * DOTS_PER_MM
CUSTOMER_SPACING = 4 * DOTS_PER_MM
PRODUCT_SPACING = 6 * DOTS_PER_MM
DETAIL_SPACING = 3 * DOTS_PER_MM
BARCODE_GAP = 2 * DOTS_PER_MM
BARCODE_HEIGHT = 40


def escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def wrap_text(text: str, width: int) -> list[str]:
    """
    Greedy word wrap to at most `width` characters per line.

    Words longer than `width` are hard-broken.
    """
    if width <= 0:
        raise ProtocolFault(f"Invalid wrap width: {width}")

    lines = []
    current = ""
    for word in text.split():
        while len(word) > width:
            if current:
                lines.append(current)
                current = ""
            lines.append(word[:width])
            word = word[width:]
        if not word:
            continue
        if not current:
            current = word
        elif len(current) + 1 + len(word) <= width:
            current = f"{current} {word}"
        else:
            lines.append(current)
            current = word
    if current:
        lines.append(current)
    return lines


class TsplBuilder:
    """Chainable TSPL command buffer."""

    def __init__(self):
        self._commands: list[str] = []

    def _add(self, command: str) -> "TsplBuilder":
        self._commands.append(command + EOL)
        return self

    def size(self, width_mm: int, height_mm: int) -> "TsplBuilder":
        return self._add(f"SIZE {width_mm} mm,{height_mm} mm")

    def gap(self, distance_mm: int, offset_mm: int = 0) -> "TsplBuilder":
        return self._add(f"GAP {distance_mm} mm,{offset_mm} mm")

    def density(self, level: int) -> "TsplBuilder":
        return self._add(f"DENSITY {level}")

    def speed(self, speed: int) -> "TsplBuilder":
        return self._add(f"SPEED {speed}")

    def direction(self, direction: int) -> "TsplBuilder":
        return self._add(f"DIRECTION {direction}")

    def reference(self, x: int, y: int) -> "TsplBuilder":
        return self._add(f"REFERENCE {x},{y}")

    def cls(self) -> "TsplBuilder":
        return self._add("CLS")

    def text(
        self,
        x: int,
        y: int,
        font: int,
        rotation: int,
        x_multiplier: int,
        y_multiplier: int,
        content: str,
    ) -> "TsplBuilder":
        return self._add(
            f'TEXT {x},{y},"{font}",{rotation},{x_multiplier},{y_multiplier},"{escape(content)}"'
        )

    def block(
        self,
        x: int,
        y: int,
        width: int,
        height: int,
        font: str,
        content: str,
        rotation: int = 0,
        x_multiplier: int = 1,
        y_multiplier: int = 1,
    ) -> "TsplBuilder":
        return self._add(
            f'BLOCK {x},{y},{width},{height},"{font}",{rotation},'
            f'{x_multiplier},{y_multiplier},"{escape(content)}"'
        )

    def wrapped_text(
        self,
        x: int,
        y: int,
        font: int,
        content: str,
        width: int = DEFAULT_WRAP_WIDTH,
        line_spacing: int = DETAIL_SPACING,
    ) -> int:
        """
        Emit one TEXT directive per wrapped line.

        Returns the y coordinate below the last line.
        """
        for line in wrap_text(content, width):
            self.text(x, y, font, 0, 1, 1, line)
            y += line_spacing
        return y

    def barcode(
        self,
        x: int,
        y: int,
        code_type: str,
        height: int,
        content: str,
        human_readable: int = 1,
        rotation: int = 0,
        narrow: int = 2,
        wide: int = 5,
    ) -> "TsplBuilder":
        return self._add(
            f'BARCODE {x},{y},"{code_type}",{height},{human_readable},'
            f'{rotation},{narrow},{wide},"{escape(content)}"'
        )

    def qrcode(
        self,
        x: int,
        y: int,
        content: str,
        ecc_level: str = "M",
        cell_width: int = 4,
        mode: str = "A",
        rotation: int = 0,
    ) -> "TsplBuilder":
        return self._add(f'QRCODE {x},{y},{ecc_level},{cell_width},{mode},{rotation},"{escape(content)}"')

    def box(self, x: int, y: int, width: int, height: int, thickness: int = 2) -> "TsplBuilder":
        return self._add(f"BOX {x},{y},{x + width},{y + height},{thickness}")

    def bar(self, x: int, y: int, width: int, height: int) -> "TsplBuilder":
        return self._add(f"BAR {x},{y},{width},{height}")

    def reverse(self, x: int, y: int, width: int, height: int) -> "TsplBuilder":
        return self._add(f"REVERSE {x},{y},{width},{height}")

    def print_label(self, quantity: int = 1, copies: int = 1) -> "TsplBuilder":
        return self._add(f"PRINT {quantity},{copies}")

    def eop(self) -> "TsplBuilder":
        return self._add("EOP")

    def command_string(self) -> str:
        return "".join(self._commands)

    def build(self) -> bytes:
        """Encode the commands, prepending CLS unless the sequence already starts with it."""
        commands = self.command_string()
        if not commands.startswith("CLS"):
            commands = "CLS" + EOL + commands
        try:
            return commands.encode("ascii")
        except UnicodeEncodeError as e:
            raise ProtocolFault(f"TSPL commands must be ASCII: {e}")

    def clear(self) -> "TsplBuilder":
        self._commands.clear()
        return self

    @classmethod
    def text_label(
        cls,
        width: int,
        height: int,
        gap: int,
        text: str,
        x: int = MARGIN,
        y: int = MARGIN,
        font: int = 3,
        quantity: int = 1,
    ) -> "TsplBuilder":
        return (
            cls()
            .size(width, height)
            .gap(gap, 0)
            .density(8)
            .cls()
            .text(x, y, font, 0, 1, 1, text)
            .print_label(quantity)
        )


def validate_sticker(content: StickerContent) -> None:
    if not content.product_name or not content.product_name.strip():
        raise ProtocolFault("Sticker product name must not be empty")
    if not 1 <= content.density <= 15:
        raise ProtocolFault(f"Invalid density: {content.density}. Allowed: 1-15")
    if not 1 <= content.font_size <= 4:
        raise ProtocolFault(f"Invalid font size: {content.font_size}. Allowed: 1-4")
    if content.quantity < 1:
        raise ProtocolFault(f"Invalid quantity: {content.quantity}")
    if content.width <= 0 or content.height <= 0:
        raise ProtocolFault(f"Invalid label size: {content.width}x{content.height} mm")
    if content.gap < 0:
        raise ProtocolFault(f"Invalid label gap: {content.gap} mm")


def build_tspl(content: StickerContent, wrap_width: int = DEFAULT_WRAP_WIDTH) -> bytes:
    """Encode a sticker: customer line, product line, wrapped details, optional barcode."""
    validate_sticker(content)

    builder = TsplBuilder()
    builder.size(content.width, content.height).gap(content.gap, 0).density(content.density).cls()

    y = MARGIN
    builder.text(MARGIN, y, max(1, content.font_size - 1), 0, 1, 1, content.customer_name)
    y += CUSTOMER_SPACING

    builder.text(MARGIN, y, content.font_size, 0, 1, 1, content.product_name)
    y += PRODUCT_SPACING

    details = content.details
    if details:
        y = builder.wrapped_text(MARGIN, y, 1, ", ".join(details), width=wrap_width)

    if content.barcode:
        y += BARCODE_GAP
        builder.barcode(MARGIN, y, "CODE128", BARCODE_HEIGHT, content.barcode)

    builder.print_label(content.quantity, 1)
    return builder.build()


@dataclass(frozen=True)
class TsplDirective:
    name: str
    args: tuple = ()


def _split_args(text: str) -> list[str]:
    args = []
    current = []
    quoted = False
    escaped = False
    for ch in text:
        if escaped:
            current.append(ch)
            escaped = False
        elif quoted and ch == "\\":
            escaped = True
        elif ch == '"':
            quoted = not quoted
        elif ch == "," and not quoted:
            args.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    if quoted:
        raise ProtocolFault(f"Unterminated quoted argument: {text}")
    if current or args:
        args.append("".join(current).strip())
    return args


def parse_tspl(data: bytes) -> list[TsplDirective]:
    """
    Decode a TSPL stream into directives.

    Quoted arguments are unescaped; the quotes themselves are dropped.
    """
    try:
        text = data.decode("ascii")
    except UnicodeDecodeError as e:
        raise ProtocolFault(f"TSPL stream is not ASCII: {e}")

    directives = []
    for raw_line in text.split(EOL):
        if not raw_line.strip():
            continue
        name, _, rest = raw_line.strip().partition(" ")
        directives.append(TsplDirective(name, tuple(_split_args(rest))))
    return directives


def directive_names(data: bytes) -> list[str]:
    return [d.name for d in parse_tspl(data)]
