"""Image preprocessing utilities.

Receipt photos come from phones: rotated via EXIF, coloured, sometimes
tiny.  ``prepare_for_ocr`` normalises them into a grayscale Pillow image
that Tesseract reads more reliably.
"""

from __future__ import annotations

from io import BytesIO

from PIL import Image, ImageOps, UnidentifiedImageError

MIN_OCR_WIDTH = 1000


class InvalidImage(ValueError):
    """Uploaded bytes are not an image Pillow can decode."""


def open_image(image_data: bytes) -> Image.Image:
    try:
        img = Image.open(BytesIO(image_data))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidImage("file is not a readable image") from exc
    return img


def prepare_for_ocr(image_data: bytes) -> Image.Image:
    """Apply EXIF orientation, grayscale, upscale and autocontrast."""
    img = open_image(image_data)
    img = ImageOps.exif_transpose(img)
    img = img.convert("L")
    w, h = img.size
    if 0 < w < MIN_OCR_WIDTH:
        scale = MIN_OCR_WIDTH / w
        img = img.resize((int(w * scale), max(1, int(h * scale))), Image.LANCZOS)
    return ImageOps.autocontrast(img)
