# app/prescription_engine/text_extractor.py
"""
Text Extraction - runs Tesseract over a stored prescription image.

Uses pypdfium2 to rasterise the first page of PDF uploads. Word boxes from
image_to_data are regrouped by (block, paragraph, line) so the field parser
sees one text line per printed line.
"""
import io
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import pypdfium2
import pytesseract
from PIL import Image
from starlette.concurrency import run_in_threadpool

from app.helpers.exceptions import DependencyError, ExtractionError
from app.prescription_engine.storage import ObjectStorage

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

PDF_MAGIC = b"%PDF"


@dataclass
class ExtractionResult:
    text: str
    confidence: int  # mean word confidence, 0..100
    word_count: int = 0


def _report(progress: Optional[ProgressCallback], percent: int) -> None:
    if progress is None:
        return
    try:
        progress(percent)
    except Exception as e:
        logger.warning(f"⚠️ OCR progress callback failed at {percent}%: {e}")


def load_page_image(data: bytes, dpi: int) -> Image.Image:
    """Decode image bytes, rendering the first page when the upload is a PDF."""
    if data[:4] == PDF_MAGIC:
        pdf = pypdfium2.PdfDocument(data)
        try:
            if len(pdf) == 0:
                raise ExtractionError("PDF has no pages")
            bitmap = pdf[0].render(scale=dpi / 72.0)
            image = bitmap.to_pil()
        finally:
            pdf.close()
    else:
        image = Image.open(io.BytesIO(data))
        image.load()

    if image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    return image


def assemble_text(data: Dict[str, list]) -> Tuple[str, int, int]:
    """
    Rebuild printed lines and the mean confidence from image_to_data output.

    Returns:
        (text, rounded mean confidence, number of words used)
    """
    lines: Dict[Tuple[int, int, int], List[str]] = {}
    confidences = []

    for i, word in enumerate(data.get("text", [])):
        word = (word or "").strip()
        try:
            conf = float(data["conf"][i])
        except (TypeError, ValueError):
            conf = -1.0
        if not word or conf < 0:
            continue

        key = (int(data["block_num"][i]), int(data["par_num"][i]), int(data["line_num"][i]))
        lines.setdefault(key, []).append(word)
        if conf > 0:
            confidences.append(conf)

    text = "\n".join(" ".join(words) for _, words in sorted(lines.items()))
    mean = round(sum(confidences) / len(confidences)) if confidences else 0
    return text, max(0, min(100, mean)), sum(len(words) for words in lines.values())


class TextExtractor:
    """Tesseract OCR over images held by an ObjectStorage."""

    def __init__(self, storage: ObjectStorage, settings):
        self.storage = storage
        self.language = settings.OCR_LANGUAGE
        self.timeout = settings.OCR_TIMEOUT_SECONDS
        self.pdf_dpi = settings.OCR_PDF_DPI
        if settings.TESSERACT_CMD:
            pytesseract.pytesseract.tesseract_cmd = settings.TESSERACT_CMD

    def _run_engine(self, data: bytes) -> ExtractionResult:
        image = load_page_image(data, self.pdf_dpi)
        raw = pytesseract.image_to_data(
            image,
            lang=self.language,
            timeout=self.timeout,
            output_type=pytesseract.Output.DICT,
        )
        text, confidence, words = assemble_text(raw)
        return ExtractionResult(text=text, confidence=confidence, word_count=words)

    async def extract(self, url: str, progress: Optional[ProgressCallback] = None) -> ExtractionResult:
        """
        OCR one stored image.

        Args:
            url: URL returned by the storage when the image was ingested
            progress: Optional callback receiving 0-100

        Raises:
            ExtractionError: the image could not be fetched, decoded or read
        """
        _report(progress, 0)
        try:
            data = await self.storage.read(url)
        except DependencyError as e:
            logger.error(f"❌ Could not fetch {url} for OCR: {e.message}")
            raise ExtractionError(f"Could not fetch image for text extraction: {url}") from e
        _report(progress, 20)

        try:
            result = await run_in_threadpool(self._run_engine, data)
        except ExtractionError:
            raise
        except Exception as e:
            logger.error(f"❌ OCR failed for {url}: {e}")
            raise ExtractionError(f"Text extraction failed: {e}") from e

        _report(progress, 100)
        logger.info(f"🔎 OCR {url}: {result.word_count} words, confidence {result.confidence}%")
        return result
