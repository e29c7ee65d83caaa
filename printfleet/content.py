"""
Print content value objects.

`PrintContent` is a tagged union: every variant carries a `kind` tag that
encoders dispatch on exhaustively.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from printfleet.printers.base import ContentKind, DocumentType

DEFAULT_STICKER_WIDTH = 40
DEFAULT_STICKER_HEIGHT = 30
DEFAULT_STICKER_GAP = 3


class Alignment(Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class TextSize(Enum):
    SMALL = "small"
    NORMAL = "normal"
    LARGE = "large"
    EXTRA_LARGE = "extra_large"


class LineType(Enum):
    TEXT = "text"
    LEFT_RIGHT = "left_right"
    DIVIDER = "divider"
    BARCODE = "barcode"
    QR_CODE = "qr_code"
    EMPTY = "empty"
    IMAGE = "image"


@dataclass(frozen=True)
class ReceiptLine:
    """One logical receipt line. Build through the classmethods."""

    line_type: LineType
    text: str = ""
    right_text: str = ""
    alignment: Alignment = Alignment.LEFT
    size: TextSize = TextSize.NORMAL
    bold: bool = False
    underline: bool = False
    char: str = "-"
    image: bytes = b""

    @classmethod
    def text_line(
        cls,
        text: str,
        alignment: Alignment = Alignment.LEFT,
        size: TextSize = TextSize.NORMAL,
        bold: bool = False,
        underline: bool = False,
    ) -> "ReceiptLine":
        return cls(LineType.TEXT, text, alignment=alignment, size=size, bold=bold, underline=underline)

    @classmethod
    def left_right(cls, left: str, right: str, bold: bool = False) -> "ReceiptLine":
        """Item name on the left, amount right-justified (e.g. "Coffee      3.50")."""
        return cls(LineType.LEFT_RIGHT, left, right_text=right, bold=bold)

    @classmethod
    def divider(cls, char: str = "-") -> "ReceiptLine":
        return cls(LineType.DIVIDER, char=char[:1] or "-")

    @classmethod
    def barcode(cls, data: str) -> "ReceiptLine":
        return cls(LineType.BARCODE, data, alignment=Alignment.CENTER)

    @classmethod
    def qr_code(cls, data: str) -> "ReceiptLine":
        return cls(LineType.QR_CODE, data, alignment=Alignment.CENTER)

    @classmethod
    def empty(cls) -> "ReceiptLine":
        return cls(LineType.EMPTY)

    @classmethod
    def image_line(cls, data: bytes, alignment: Alignment = Alignment.CENTER) -> "ReceiptLine":
        return cls(LineType.IMAGE, alignment=alignment, image=data)

    @classmethod
    def from_dict(cls, data: dict) -> "ReceiptLine":
        line_type = LineType(data.get("type", "text"))
        if line_type == LineType.LEFT_RIGHT:
            return cls.left_right(data.get("left", ""), data.get("right", ""), bold=data.get("bold", False))
        if line_type == LineType.DIVIDER:
            return cls.divider(data.get("char", "-"))
        if line_type == LineType.BARCODE:
            return cls.barcode(data.get("text", ""))
        if line_type == LineType.QR_CODE:
            return cls.qr_code(data.get("text", ""))
        if line_type == LineType.EMPTY:
            return cls.empty()
        if line_type == LineType.IMAGE:
            return cls.image_line(data.get("image", b""), Alignment(data.get("alignment", "center")))
        return cls.text_line(
            data.get("text", ""),
            alignment=Alignment(data.get("alignment", "left")),
            size=TextSize(data.get("size", "normal")),
            bold=data.get("bold", False),
            underline=data.get("underline", False),
        )


@dataclass(frozen=True)
class ReceiptContent:
    lines: tuple = ()
    store_name: Optional[str] = None
    store_address: Optional[str] = None
    footer: Optional[str] = None
    cut_paper: bool = True
    open_cash_drawer: bool = False

    kind = ContentKind.RECEIPT
    document_type = DocumentType.RECEIPT

    def __post_init__(self):
        # Accept any iterable of lines but store a tuple so equal content hashes equal
        object.__setattr__(self, "lines", tuple(self.lines))


@dataclass(frozen=True)
class StickerContent:
    customer_name: str
    product_name: str
    variants: tuple = ()
    additions: tuple = ()
    notes: Optional[str] = None
    quantity: int = 1
    width: int = DEFAULT_STICKER_WIDTH
    height: int = DEFAULT_STICKER_HEIGHT
    gap: int = DEFAULT_STICKER_GAP
    barcode: Optional[str] = None
    density: int = 8
    font_size: int = 3  # 1=small, 2=medium, 3=large, 4=extra large

    kind = ContentKind.STICKER
    document_type = DocumentType.STICKER

    def __post_init__(self):
        object.__setattr__(self, "variants", tuple(self.variants))
        object.__setattr__(self, "additions", tuple(self.additions))

    @property
    def details(self) -> list[str]:
        """Variants, additions and notes in print order."""
        items = [*self.variants, *self.additions]
        if self.notes:
            items.append(self.notes)
        return items


@dataclass(frozen=True)
class RawContent:
    data: bytes = field(default=b"")

    kind = ContentKind.RAW
    document_type = None

    def __post_init__(self):
        object.__setattr__(self, "data", bytes(self.data))


PrintContent = Union[ReceiptContent, StickerContent, RawContent]
