"""
Vision OCR Package
Text quality validation, image preprocessing and the retrying vision client
"""

from .base import OcrOptions, OcrResponse, VisionResponse, VisionService, TextExtractor, Rasterizer
from .text_quality import (
    TextQualityValidator,
    ValidationConfig,
    ValidationMetrics,
    ValidationResult,
    validate_text_quality,
)
from .retry import RetryPolicy, with_retry

__all__ = [
    'OcrOptions',
    'OcrResponse',
    'VisionResponse',
    'VisionService',
    'TextExtractor',
    'Rasterizer',
    'TextQualityValidator',
    'ValidationConfig',
    'ValidationMetrics',
    'ValidationResult',
    'validate_text_quality',
    'RetryPolicy',
    'with_retry',
    'ImagePreprocessor',
    'VisionOCRClient',
    'create_vision_client',
]


# Lazy imports to avoid loading OpenCV when only validation is needed
def __getattr__(name):
    if name == "ImagePreprocessor":
        from .image_preprocessor import ImagePreprocessor
        return ImagePreprocessor
    if name == "VisionOCRClient":
        from .vision_client import VisionOCRClient
        return VisionOCRClient
    if name == "create_vision_client":
        from .manager import create_vision_client
        return create_vision_client
    raise AttributeError(f"module 'hybrid_extract.ocr' has no attribute '{name}'")
