"""Receipt OCR via Tesseract.

Returns the raw recognised text and its non-empty lines.  Turning that
text into products is left to the client, which lets the user review
the lines before adding them to a bill.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import pytesseract

from billsplit.core.config import settings
from billsplit.utils.image_processing import InvalidImage, prepare_for_ocr

logger = logging.getLogger(__name__)


class ExtractionFailed(Exception):
    """OCR could not produce text for an image."""


@dataclass
class OCRResult:
    text: str
    lines: List[str] = field(default_factory=list)


class OCRService:
    def __init__(self, language: Optional[str] = None, tesseract_cmd: Optional[str] = None) -> None:
        self.language = language or settings.OCR_LANGUAGE
        cmd = tesseract_cmd or settings.TESSERACT_CMD
        if cmd:
            pytesseract.pytesseract.tesseract_cmd = cmd

    def extract_text(self, image_data: bytes) -> OCRResult:
        try:
            image = prepare_for_ocr(image_data)
        except InvalidImage as exc:
            raise ExtractionFailed(str(exc)) from exc
        try:
            # psm 6: a single uniform block of text, which suits receipts
            text = pytesseract.image_to_string(image, lang=self.language, config="--psm 6")
        except pytesseract.TesseractNotFoundError as exc:
            logger.error("Tesseract binary not found; set TESSERACT_CMD")
            raise ExtractionFailed("OCR engine is not available") from exc
        except pytesseract.TesseractError as exc:
            logger.warning("Tesseract failed: %s", exc)
            raise ExtractionFailed("OCR failed for this image") from exc
        text = (text or "").strip()
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        logger.info("OCR extracted %d line(s)", len(lines))
        return OCRResult(text=text, lines=lines)

    async def extract_text_async(self, image_data: bytes) -> OCRResult:
        """Run OCR in a worker thread so the event loop stays free."""
        return await asyncio.to_thread(self.extract_text, image_data)


__all__ = ["OCRService", "OCRResult", "ExtractionFailed"]
