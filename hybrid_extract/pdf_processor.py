"""
PDF Collaborators
Native text extraction (PyMuPDF, pypdf) and page rasterization (PyMuPDF)
"""

import io
import logging
import threading
from typing import List, Optional, Tuple

import fitz  # PyMuPDF
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from .errors import ExtractionError, DocumentUnreadableError, ImageConversionError
from .ocr.base import TextExtractor, Rasterizer, ExtractedText

logger = logging.getLogger(__name__)

# PyMuPDF is not thread-safe; OCR workers rasterize concurrently
_FITZ_LOCK = threading.Lock()


def _resolve_range(page_range: Optional[Tuple[int, int]], page_count: int) -> Tuple[int, int]:
    """Validate an inclusive 1-based range and return 0-based (start, stop)"""
    if page_range is None:
        return 0, page_count

    first, last = page_range
    if first < 1 or last < first or last > page_count:
        raise ExtractionError(f"Invalid page range {first}-{last} for {page_count} pages")
    return first - 1, last


class PyMuPDFTextExtractor(TextExtractor):
    """Reads the text layer with PyMuPDF"""

    name = "pymupdf"

    def extract(
        self,
        data: bytes,
        page_range: Optional[Tuple[int, int]] = None
    ) -> ExtractedText:
        with _FITZ_LOCK:
            try:
                doc = fitz.open(stream=data, filetype="pdf")
            except (RuntimeError, ValueError) as e:
                raise ExtractionError(f"PyMuPDF could not open document: {e}") from e

            with doc:
                if doc.needs_pass:
                    raise ExtractionError("Document is encrypted")

                page_count = len(doc)
                start, stop = _resolve_range(page_range, page_count)

                try:
                    texts = [doc[i].get_text() for i in range(start, stop)]
                except RuntimeError as e:
                    raise ExtractionError(f"PyMuPDF text extraction failed: {e}") from e

                metadata = doc.metadata or {}
                info = {
                    'title': metadata.get('title') or None,
                    'author': metadata.get('author') or None,
                    'creator': metadata.get('creator') or None,
                }

        return ExtractedText(text='\n'.join(texts), page_count=page_count, info=info)


class PypdfTextExtractor(TextExtractor):
    """Reads the text layer with pypdf; tolerant of some files PyMuPDF rejects"""

    name = "pypdf"

    def extract(
        self,
        data: bytes,
        page_range: Optional[Tuple[int, int]] = None
    ) -> ExtractedText:
        try:
            reader = PdfReader(io.BytesIO(data))
            if reader.is_encrypted:
                raise ExtractionError("Document is encrypted")

            page_count = len(reader.pages)
            start, stop = _resolve_range(page_range, page_count)
            texts = [reader.pages[i].extract_text() or "" for i in range(start, stop)]

            metadata = reader.metadata
        except (PdfReadError, ValueError, KeyError, TypeError, OSError) as e:
            raise ExtractionError(f"pypdf text extraction failed: {e}") from e

        info = {
            'title': metadata.title if metadata else None,
            'author': metadata.author if metadata else None,
            'creator': metadata.creator if metadata else None,
        }
        return ExtractedText(text='\n'.join(texts), page_count=page_count, info=info)


class ExtractorChain(TextExtractor):
    """
    Tries text extractors in order until one succeeds.

    Raises:
        ExtractionError: Listing every strategy's failure if all fail
    """

    name = "chain"

    def __init__(self, extractors: List[TextExtractor]):
        if not extractors:
            raise ValueError("ExtractorChain needs at least one extractor")
        self.extractors = list(extractors)

    def extract(
        self,
        data: bytes,
        page_range: Optional[Tuple[int, int]] = None
    ) -> ExtractedText:
        failures = []

        for extractor in self.extractors:
            try:
                result = extractor.extract(data, page_range)
                if failures:
                    logger.info(f"Text extraction succeeded with fallback strategy: {extractor.name}")
                return result
            except ExtractionError as e:
                logger.warning(f"Text extraction strategy '{extractor.name}' failed: {e}")
                failures.append(f"{extractor.name}: {e}")

        raise ExtractionError(f"All text extraction strategies failed ({'; '.join(failures)})")


def create_default_extractor() -> ExtractorChain:
    return ExtractorChain([PyMuPDFTextExtractor(), PypdfTextExtractor()])


class PyMuPDFRasterizer(Rasterizer):
    """Renders pages to PNG/JPEG with PyMuPDF"""

    def __init__(self, jpeg_quality: int = 95):
        self.jpeg_quality = jpeg_quality

    def _open(self, data: bytes) -> fitz.Document:
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except (RuntimeError, ValueError) as e:
            raise DocumentUnreadableError(f"Failed to open PDF: {e}") from e

        if doc.needs_pass:
            doc.close()
            raise DocumentUnreadableError("Document is encrypted")
        return doc

    def page_count(self, data: bytes) -> int:
        with _FITZ_LOCK:
            with self._open(data) as doc:
                return len(doc)

    def rasterize(self, data: bytes, page_number: int, density: int, fmt: str) -> bytes:
        with _FITZ_LOCK:
            with self._open(data) as doc:
                if not 1 <= page_number <= len(doc):
                    raise ImageConversionError(
                        f"Page {page_number} out of range (document has {len(doc)} pages)",
                        page_number=page_number
                    )

                try:
                    pix = doc[page_number - 1].get_pixmap(dpi=density)
                    if fmt == "jpg":
                        image = pix.tobytes(output="jpeg", jpg_quality=self.jpeg_quality)
                    else:
                        image = pix.tobytes(output="png")
                except (RuntimeError, ValueError) as e:
                    raise ImageConversionError(
                        f"Failed to render page {page_number}: {e}",
                        page_number=page_number
                    ) from e

                logger.debug(
                    f"Rendered page {page_number} at {density} DPI: "
                    f"{pix.width}x{pix.height}, {len(image)} bytes"
                )
                del pix
                return image
