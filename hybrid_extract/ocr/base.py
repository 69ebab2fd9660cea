"""
Base OCR Interfaces
Defines the collaborator contracts the hybrid pipeline is built on
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any, Tuple, Literal

SUPPORTED_FORMATS = ("png", "jpg")
MIN_DENSITY = 72
MAX_DENSITY = 600


@dataclass(frozen=True)
class OcrOptions:
    """Per-run OCR options (immutable for the duration of a run)"""
    enable_ocr: bool = True
    language: str = "en"
    enhance_image: bool = True
    density: int = 300  # DPI used for rasterization
    format: Literal["png", "jpg"] = "png"
    max_pages_parallel: int = 5

    def __post_init__(self):
        if self.format not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported image format: {self.format}")
        if not MIN_DENSITY <= self.density <= MAX_DENSITY:
            raise ValueError(
                f"Density must be between {MIN_DENSITY} and {MAX_DENSITY} DPI, got {self.density}"
            )
        if self.max_pages_parallel < 1:
            raise ValueError(f"max_pages_parallel must be >= 1, got {self.max_pages_parallel}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert options to dictionary"""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], **defaults) -> 'OcrOptions':
        """
        Build options from a request dictionary.

        Accepts camelCase keys (enableOcr, maxPagesParallel, ...) as sent by
        clients, as well as snake_case. "jpeg" is accepted as an alias of "jpg".

        Raises:
            ValueError: If a value is out of range or of the wrong type
        """
        aliases = {
            'enableOcr': 'enable_ocr',
            'enhanceImage': 'enhance_image',
            'maxPagesParallel': 'max_pages_parallel',
        }
        values = dict(defaults)
        for key, value in (data or {}).items():
            key = aliases.get(key, key)
            if key in cls.__dataclass_fields__:
                values[key] = value

        if values.get('format') == 'jpeg':
            values['format'] = 'jpg'

        for key in ('density', 'max_pages_parallel'):
            if key in values and (isinstance(values[key], bool) or not isinstance(values[key], int)):
                raise ValueError(f"{key} must be an integer, got {values[key]!r}")
        for key in ('enable_ocr', 'enhance_image'):
            if key in values and not isinstance(values[key], bool):
                raise ValueError(f"{key} must be a boolean, got {values[key]!r}")

        return cls(**values)


@dataclass
class VisionResponse:
    """Raw answer from a vision service. Confidence is None when the service has none."""
    text: Optional[str]
    confidence: Optional[float] = None


@dataclass
class OcrResponse:
    """Result of one VisionOCRClient call"""
    text: str
    confidence: float
    processing_time_ms: int
    attempts: int = 1
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class ExtractedText:
    """Output of a native text extractor"""
    text: str
    page_count: int
    info: Dict[str, Any] = field(default_factory=dict)  # title/author/creator


class TextExtractor(ABC):
    """Reads the native text layer of a document"""

    name: str = "extractor"

    @abstractmethod
    def extract(
        self,
        data: bytes,
        page_range: Optional[Tuple[int, int]] = None
    ) -> ExtractedText:
        """
        Extract text from the document.

        Args:
            data: Raw document bytes
            page_range: Optional inclusive 1-based (first, last) page range

        Raises:
            ExtractionError: If the text layer cannot be read
        """
        pass


class Rasterizer(ABC):
    """Renders document pages to encoded images"""

    @abstractmethod
    def page_count(self, data: bytes) -> int:
        """
        Raises:
            DocumentUnreadableError: If the document cannot be opened
        """
        pass

    @abstractmethod
    def rasterize(self, data: bytes, page_number: int, density: int, fmt: str) -> bytes:
        """
        Render one page (1-based) to PNG or JPEG bytes.

        Raises:
            DocumentUnreadableError: If the document cannot be opened
            ImageConversionError: If this page cannot be rendered
        """
        pass


class VisionService(ABC):
    """External vision-capable text recognition service"""

    name: str = "vision"

    @abstractmethod
    def infer(
        self,
        image: bytes,
        prompt: str,
        mime_type: str = "image/png",
        timeout: Optional[float] = None,
        language: Optional[str] = None
    ) -> VisionResponse:
        """
        Recognize text in one image.

        Args:
            image: Encoded PNG/JPEG bytes
            prompt: Instruction for prompt-driven services
            mime_type: MIME type of image
            timeout: Per-call timeout in seconds
            language: ISO 639-1 hint, for services that take a language directly

        Raises:
            OcrTransientError: Timeout or network failure
            OcrQuotaError: Rate limit
            OcrAuthError: Credentials or configuration rejected
        """
        pass

    def cleanup(self) -> None:
        """Release resources held by the service"""
        pass
