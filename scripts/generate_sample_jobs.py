#!/usr/bin/env python3
"""
Generate sample print payloads for testing printers by hand.

Writes an ESC/POS receipt (with a generated logo) and a TSPL sticker to disk.
Send them with netcat or copy them to the device node:

    nc 192.168.1.50 9100 < sample_receipt.bin
    cat sample_sticker.bin > /dev/usb/lp0

Usage:
    python scripts/generate_sample_jobs.py                     # Both payloads
    python scripts/generate_sample_jobs.py --width 48          # 80mm paper
    python scripts/generate_sample_jobs.py --customer "Budi"   # Custom sticker name
"""

import argparse
from io import BytesIO
from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

from printfleet.content import Alignment, ReceiptContent, ReceiptLine, StickerContent
from printfleet.protocol import encode_content


def create_logo(text: str = "PRINTFLEET", width: int = 384, height: int = 80) -> bytes:
    """Create a monochrome PNG logo."""
    img = Image.new("1", (width, height), 1)
    draw = ImageDraw.Draw(img)

    try:
        font = ImageFont.truetype("/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf", 32)
    except OSError:
        font = ImageFont.load_default()

    bbox = draw.textbbox((0, 0), text, font=font)
    x = (width - (bbox[2] - bbox[0])) // 2
    y = (height - (bbox[3] - bbox[1])) // 2
    draw.text((x, y), text, fill=0, font=font)
    draw.rectangle([0, 0, width - 1, height - 1], outline=0, width=2)

    buffer = BytesIO()
    img.save(buffer, "PNG")
    return buffer.getvalue()


def sample_receipt(order_number: str) -> ReceiptContent:
    return ReceiptContent(
        store_name="Sample Coffee",
        store_address="Jl. Contoh No. 1",
        lines=(
            ReceiptLine.image_line(create_logo()),
            ReceiptLine.divider(),
            ReceiptLine.left_right("Order", f"#{order_number}", bold=True),
            ReceiptLine.divider(),
            ReceiptLine.left_right("2x Iced Latte", "56.000"),
            ReceiptLine.left_right("1x Croissant", "22.000"),
            ReceiptLine.divider("="),
            ReceiptLine.left_right("TOTAL", "78.000", bold=True),
            ReceiptLine.empty(),
            ReceiptLine.barcode(order_number),
            ReceiptLine.qr_code(f"https://example.com/orders/{order_number}"),
            ReceiptLine.text_line("Thank you!", alignment=Alignment.CENTER),
        ),
        footer="Powered by printfleet",
    )


def sample_sticker(customer: str, order_number: str) -> StickerContent:
    return StickerContent(
        customer_name=customer,
        product_name="Iced Latte",
        variants=("Large", "Less ice"),
        additions=("Extra shot",),
        notes="Oat milk please, no sugar syrup",
        barcode=order_number,
    )


def main():
    parser = argparse.ArgumentParser(description="Generate sample print payloads")
    parser.add_argument("--width", type=int, default=32, help="Receipt characters per line (default: 32)")
    parser.add_argument("--customer", default="TEST CUSTOMER", help="Sticker customer name")
    parser.add_argument("--order", default="1024", help="Order number used for barcodes")
    parser.add_argument("--output-dir", "-o", default=".", help="Where to write the payloads")

    args = parser.parse_args()
    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    receipt = encode_content(sample_receipt(args.order), receipt_width=args.width)
    receipt_path = output_dir / "sample_receipt.bin"
    receipt_path.write_bytes(receipt.primary)
    print(f"Created: {receipt_path} ({len(receipt.primary)} bytes, {args.width} chars/line)")

    sticker = encode_content(sample_sticker(args.customer, args.order))
    sticker_path = output_dir / "sample_sticker.bin"
    sticker_path.write_bytes(sticker.primary)
    print(f"Created: {sticker_path} ({len(sticker.primary)} bytes)")
    print("")
    print(sticker.primary.decode("ascii"))


if __name__ == "__main__":
    main()
