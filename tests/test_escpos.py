"""Tests for ESC/POS receipt encoding."""

import pytest
from io import BytesIO
from PIL import Image

from printfleet.content import Alignment, ReceiptContent, ReceiptLine, TextSize
from printfleet.printers.errors import ProtocolFault
from printfleet.protocol import EscPosBuilder, build_escpos, encode_content, format_left_right
from printfleet.protocol.escpos import CUT, DRAWER_KICK, INIT

ALIGN_LEFT = b"\x1b\x61\x00"
ALIGN_CENTER = b"\x1b\x61\x01"
BOLD_ON = b"\x1b\x45\x01"
BOLD_OFF = b"\x1b\x45\x00"


def create_test_png(width: int, height: int, color: int = 0) -> bytes:
    """Create a 1-bit PNG, black by default."""
    img = Image.new("1", (width, height), color)
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def printed_lines(data: bytes) -> list[bytes]:
    return data.split(b"\n")


class TestLeftRightLayout:
    def test_fitting_line_is_exact_width(self):
        line = format_left_right("Iced Latte", "28.000", 32)
        assert len(line) == 32
        assert line.startswith("Iced Latte ")
        assert line.endswith("28.000")

    def test_long_left_is_truncated_not_right(self):
        """Right field survives intact; left is cut to leave one space."""
        line = format_left_right("Extra Large Caramel Macchiato with Oat Milk", "1.250.000", 32)
        assert len(line) == 32
        assert line.endswith(" 1.250.000")
        assert line.startswith("Extra Large Caramel Ma")

    def test_right_wider_than_paper_is_kept_whole(self):
        right = "R" * 40
        assert format_left_right("Item", right, 32) == right

    def test_right_filling_line_drops_left(self):
        line = format_left_right("Item", "X" * 31, 32)
        assert line == " " + "X" * 31

    @pytest.mark.parametrize("width", [32, 48])
    def test_every_left_right_line_in_receipt_is_exact_width(self, width):
        receipt = ReceiptContent(lines=[
            ReceiptLine.left_right("Coffee", "12.000"),
            ReceiptLine.left_right("A" * 60, "99.999"),
            ReceiptLine.left_right("Tea", "8.000", bold=True),
        ])
        data = build_escpos(receipt, width)

        for text, right in (("Coffee", b"12.000"), ("A", b"99.999"), ("Tea", b"8.000")):
            line = next(l for l in printed_lines(data) if l.endswith(right))
            # Strip the alignment/bold prefix emitted before the text
            body = line[line.index(text.encode()):]
            assert len(body) == width
            assert body.endswith(right)


class TestReceiptLayout:
    def test_minimal_receipt_bytes(self):
        receipt = ReceiptContent(store_name="Shop", cut_paper=True)
        expected = (
            INIT
            + ALIGN_CENTER + BOLD_ON + b"Shop\n" + BOLD_OFF
            + ALIGN_LEFT + b"\n"
            + b"\n\n\n"
            + CUT
        )
        assert build_escpos(receipt) == expected

    def test_no_cut_when_disabled(self):
        data = build_escpos(ReceiptContent(store_name="Shop", cut_paper=False))
        assert CUT not in data
        assert data.endswith(b"\n\n\n")

    def test_footer_is_centered_after_blank_line(self):
        data = build_escpos(ReceiptContent(footer="Thank you", cut_paper=False))
        assert b"\n" + ALIGN_CENTER + b"Thank you\n" + ALIGN_LEFT + b"\n\n\n" in data

    def test_divider_spans_width(self):
        data = build_escpos(ReceiptContent(lines=[ReceiptLine.divider("=")]), width=48)
        assert b"=" * 48 + b"\n" in data
        assert b"=" * 49 not in data

    def test_text_size_and_styles_are_reset(self):
        line = ReceiptLine.text_line("BIG", alignment=Alignment.CENTER, size=TextSize.LARGE, bold=True)
        data = build_escpos(ReceiptContent(lines=[line]))
        expected = (
            ALIGN_CENTER + b"\x1d\x21\x11" + BOLD_ON + b"BIG\n"
            + BOLD_OFF + b"\x1d\x21\x00" + ALIGN_LEFT
        )
        assert expected in data

    def test_text_is_cp437_with_replacement(self):
        data = build_escpos(ReceiptContent(lines=[ReceiptLine.text_line("Café ☕")]))
        assert b"Caf\x82 ?\n" in data

    def test_barcode_is_code128_subset_b(self):
        data = build_escpos(ReceiptContent(lines=[ReceiptLine.barcode("123456789")]))
        assert b"\x1d\x68\x50" in data  # height 80
        assert b"\x1d\x48\x02" in data  # HRI below
        assert b"\x1d\x6b\x49\x0b{B123456789" in data

    def test_qr_code_store_length(self):
        payload = "https://example.com/o/1"
        data = build_escpos(ReceiptContent(lines=[ReceiptLine.qr_code(payload)]))
        store_len = len(payload) + 3
        assert bytes([0x1D, 0x28, 0x6B, store_len, 0, 0x31, 0x50, 0x30]) + payload.encode() in data
        assert b"\x1d\x28\x6b\x03\x00\x31\x51\x30" in data

    def test_same_receipt_encodes_identically(self):
        receipt = ReceiptContent(
            store_name="Kopi",
            store_address="Jl. Merdeka 1",
            lines=[ReceiptLine.left_right("Latte", "25.000"), ReceiptLine.barcode("A1")],
            footer="Bye",
        )
        assert build_escpos(receipt) == build_escpos(receipt)

    def test_empty_barcode_is_rejected(self):
        with pytest.raises(ProtocolFault):
            build_escpos(ReceiptContent(lines=[ReceiptLine.barcode("")]))

    def test_invalid_width_is_rejected(self):
        with pytest.raises(ProtocolFault):
            EscPosBuilder(width=0)


class TestImages:
    def test_raster_header_and_data(self):
        data = build_escpos(ReceiptContent(lines=[ReceiptLine.image_line(create_test_png(16, 8))]))
        header = b"\x1d\x76\x30\x00" + bytes([2, 0, 8, 0])
        assert header + b"\xff" * 16 in data

    def test_white_image_has_no_dots(self):
        data = EscPosBuilder().image(create_test_png(8, 2, color=255)).build()
        assert data == b"\x1d\x76\x30\x00" + bytes([1, 0, 2, 0]) + b"\x00\x00"

    def test_wide_image_is_scaled_to_paper(self):
        data = EscPosBuilder().image(create_test_png(800, 10)).build()
        width_bytes = data[4] | (data[5] << 8)
        assert width_bytes == 48

    def test_garbage_image_is_rejected(self):
        with pytest.raises(ProtocolFault):
            build_escpos(ReceiptContent(lines=[ReceiptLine.image_line(b"not an image")]))


class TestEncodeContent:
    def test_drawer_kick_is_separate_payload(self):
        payload = encode_content(ReceiptContent(store_name="Shop", open_cash_drawer=True))
        assert payload.auxiliary == DRAWER_KICK
        assert DRAWER_KICK not in payload.primary

    def test_no_auxiliary_without_drawer(self):
        payload = encode_content(ReceiptContent(store_name="Shop"))
        assert payload.auxiliary is None

    def test_receipt_width_is_honored(self):
        payload = encode_content(ReceiptContent(lines=[ReceiptLine.divider()]), receipt_width=48)
        assert b"-" * 48 + b"\n" in payload.primary
