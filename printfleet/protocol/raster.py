"""
Raster image conversion for ESC/POS receipts.

Images are decoded with Pillow, scaled down to the printable width,
thresholded to 1-bit and packed into `GS v 0` raster rows (MSB first,
1 = black dot).
"""

from dataclasses import dataclass
from io import BytesIO

from PIL import Image, UnidentifiedImageError

from printfleet.printers.errors import ProtocolFault

# 58mm paper at 203 DPI
DEFAULT_MAX_WIDTH = 384
MAX_HEIGHT = 2400
ALLOWED_FORMATS = ("PNG", "JPEG", "BMP", "GIF")


@dataclass
class RasterImage:
    width_bytes: int
    height: int
    data: bytes

    @property
    def width(self) -> int:
        return self.width_bytes * 8


def load_image(data: bytes) -> Image.Image:
    """Decode image bytes, raising ProtocolFault for anything Pillow cannot read."""
    if not data:
        raise ProtocolFault("Image line has no data")
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ProtocolFault(f"Cannot read image: {e}")

    if image.format not in ALLOWED_FORMATS:
        raise ProtocolFault(f"Invalid format: {image.format}. Allowed: {ALLOWED_FORMATS}")
    return image


def to_monochrome(image: Image.Image, max_width: int = DEFAULT_MAX_WIDTH, threshold: int = 128) -> Image.Image:
    """
    Flatten, scale and threshold an image to mode "1".

    Transparent pixels become white. Images wider than `max_width` are scaled
    down proportionally; narrower images keep their size.
    """
    if image.mode in ("RGBA", "LA", "P"):
        rgba = image.convert("RGBA")
        background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        image = Image.alpha_composite(background, rgba)

    gray = image.convert("L")

    if gray.width > max_width:
        height = max(1, round(gray.height * max_width / gray.width))
        gray = gray.resize((max_width, height))

    if gray.height > MAX_HEIGHT:
        raise ProtocolFault(f"Image too tall: {gray.height}px. Maximum: {MAX_HEIGHT}px")

    return gray.point(lambda p: 255 if p >= threshold else 0, mode="1")


def pack_raster(image: Image.Image) -> RasterImage:
    """Pack a mode "1" image into raster bytes, padding rows to whole bytes."""
    width_bytes = (image.width + 7) // 8
    pixels = image.load()
    rows = bytearray()

    for y in range(image.height):
        row = bytearray(width_bytes)
        for x in range(image.width):
            # Pillow mode "1": 0 is black
            if pixels[x, y] == 0:
                row[x // 8] |= 0x80 >> (x % 8)
        rows += row

    return RasterImage(width_bytes=width_bytes, height=image.height, data=bytes(rows))


def image_to_raster(data: bytes, max_width: int = DEFAULT_MAX_WIDTH) -> RasterImage:
    return pack_raster(to_monochrome(load_image(data), max_width=max_width))
