"""
Tesseract OCR Engine Implementation
Local CPU-only alternative to the hosted vision model
"""

import io
import logging
from typing import Dict, List, Optional, Tuple

import pytesseract
from PIL import Image

from ..base import VisionService, VisionResponse
from ...errors import ConfigurationError, OcrError, OcrTransientError, OcrAuthError

logger = logging.getLogger(__name__)

# ISO 639-1 hint -> Tesseract traineddata name
LANGUAGE_CODES = {
    'en': 'eng',
    'vi': 'vie',
    'fr': 'fra',
    'de': 'deu',
    'es': 'spa',
    'it': 'ita',
    'pt': 'por',
    'nl': 'nld',
    'ru': 'rus',
    'ja': 'jpn',
    'ko': 'kor',
    'zh': 'chi_sim',
}

# Words below this confidence (0-100) are dropped
MIN_WORD_CONFIDENCE = 60


def to_tesseract_language(language: Optional[str]) -> str:
    """Map a language hint to a Tesseract language string ("en+vi" -> "eng+vie")"""
    if not language:
        return 'eng'
    parts = [p.strip().lower() for p in language.split('+') if p.strip()]
    return '+'.join(LANGUAGE_CODES.get(p, p) for p in parts) or 'eng'


class TesseractEngine(VisionService):
    """Tesseract OCR behind the VisionService interface. Supplies its own confidence."""

    name = "tesseract"

    def __init__(self, tesseract_cmd: Optional[str] = None, default_language: str = 'en'):
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
            logger.info(f"Using Tesseract executable: {tesseract_cmd}")

        try:
            version = pytesseract.get_tesseract_version()
        except (pytesseract.TesseractNotFoundError, OSError) as e:
            raise ConfigurationError(
                f"Tesseract executable not working: {e}. "
                "Install Tesseract or set TESSERACT_CMD."
            ) from e

        self.default_language = default_language
        logger.info(f"Tesseract engine initialized (version: {version})")

    def infer(
        self,
        image: bytes,
        prompt: str,
        mime_type: str = "image/png",
        timeout: Optional[float] = None,
        language: Optional[str] = None
    ) -> VisionResponse:
        """Prompt is ignored: Tesseract has no instruction input"""
        lang = to_tesseract_language(language or self.default_language)

        try:
            pil_image = Image.open(io.BytesIO(image))
            pil_image.load()
        except OSError as e:
            raise OcrError(f"Tesseract could not read image: {e}") from e

        try:
            data = pytesseract.image_to_data(
                pil_image,
                lang=lang,
                config='--oem 3 --psm 3',  # default engine, automatic page segmentation
                output_type=pytesseract.Output.DICT,
                timeout=timeout or 0
            )
        except pytesseract.TesseractNotFoundError as e:
            raise OcrAuthError(f"Tesseract executable not found: {e}") from e
        except pytesseract.TesseractError as e:
            if 'language' in str(e).lower():
                raise OcrAuthError(f"Tesseract language data missing for '{lang}': {e}") from e
            raise OcrError(f"Tesseract OCR processing failed: {e}") from e
        except RuntimeError as e:
            # pytesseract signals its own timeout as RuntimeError
            raise OcrTransientError(f"Tesseract OCR timed out: {e}") from e
        finally:
            pil_image.close()

        text, confidence = self._assemble(data)
        logger.debug(f"Tesseract extracted {len(text)} chars (confidence {confidence:.2f})")
        return VisionResponse(text=text, confidence=confidence)

    @staticmethod
    def _assemble(data: Dict[str, List]) -> Tuple[str, float]:
        """Join confident words line by line; average their confidences into 0-1"""
        lines: Dict[Tuple[int, int, int], List[str]] = {}
        confidences = []

        for i, conf in enumerate(data['conf']):
            try:
                conf_value = float(conf)
            except (TypeError, ValueError):
                continue
            if conf_value <= MIN_WORD_CONFIDENCE:
                continue

            word = str(data['text'][i]).strip()
            if not word:
                continue

            key = (data['block_num'][i], data['par_num'][i], data['line_num'][i])
            lines.setdefault(key, []).append(word)
            confidences.append(conf_value / 100.0)

        text = '\n'.join(' '.join(words) for _, words in sorted(lines.items()))
        avg_confidence = sum(confidences) / len(confidences) if confidences else 0.0
        return text, min(1.0, avg_confidence)
