"""Hybrid text-layer / vision-OCR document extraction"""

from .config import HybridConfig, validate_config, get_capabilities, __version__
from .errors import (
    HybridExtractError,
    ConfigurationError,
    InvalidDocumentError,
    DocumentUnreadableError,
    ExtractionError,
    ImageConversionError,
    OcrError,
    OcrTransientError,
    OcrQuotaError,
    OcrAuthError,
    OcrPageError,
)

__all__ = [
    'HybridConfig',
    'validate_config',
    'get_capabilities',
    'HybridExtractError',
    'ConfigurationError',
    'InvalidDocumentError',
    'DocumentUnreadableError',
    'ExtractionError',
    'ImageConversionError',
    'OcrError',
    'OcrTransientError',
    'OcrQuotaError',
    'OcrAuthError',
    'OcrPageError',
    'HybridPdfProcessor',
    'HybridResult',
    'PageResult',
    'ProcessingMetadata',
    'create_hybrid_processor',
]


# Lazy import for the processor to avoid loading PyMuPDF/OpenCV when only
# configuration or errors are needed
def __getattr__(name):
    if name in ("HybridPdfProcessor", "HybridResult", "PageResult",
                "ProcessingMetadata", "create_hybrid_processor"):
        from . import hybrid_processor
        return getattr(hybrid_processor, name)
    raise AttributeError(f"module 'hybrid_extract' has no attribute '{name}'")
