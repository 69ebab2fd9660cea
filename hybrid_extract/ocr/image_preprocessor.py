"""
Image Preprocessing for Vision OCR

Turns a rasterized page into an OCR-ready payload:
- Grayscale conversion
- Size bounding (longest side <= max_dimension, aspect ratio preserved)
- Contrast normalization (min-max stretch, optional CLAHE)
- Sharpening (unsharp mask)
- Re-encoding within a byte cap
"""

import cv2
import numpy as np
import logging
from typing import Optional

from ..errors import ImageConversionError

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b'\x89PNG\r\n\x1a\n'
JPEG_SIGNATURE = b'\xff\xd8\xff'


def detect_image_format(data: bytes) -> Optional[str]:
    """Return "png", "jpg" or None from the magic bytes"""
    if data.startswith(PNG_SIGNATURE):
        return "png"
    if data.startswith(JPEG_SIGNATURE):
        return "jpg"
    return None


def detect_mime_type(data: bytes) -> str:
    """MIME type for the encoded image, defaulting to PNG"""
    return "image/jpeg" if detect_image_format(data) == "jpg" else "image/png"


class ImagePreprocessor:
    """Preprocesses page images to improve vision OCR accuracy and stay within payload limits"""

    def __init__(
        self,
        max_dimension: int = 4000,
        quality: int = 95,
        max_bytes: int = 4 * 1024 * 1024,
        reduced_quality: int = 75,
        enable_grayscale: bool = True,
        enable_contrast: bool = True,
        enable_clahe: bool = False,
        enable_sharpening: bool = True
    ):
        """
        Initialize preprocessor with enhancement options

        Args:
            max_dimension: Maximum width/height in pixels after resizing
            quality: JPEG quality used for the first encoding (0-100)
            max_bytes: Encoded size cap
            reduced_quality: JPEG quality for the single re-encode when over the cap
            enable_grayscale: Convert to single channel
            enable_contrast: Stretch intensities to the full 0-255 range
            enable_clahe: Additionally apply CLAHE (helps photos with uneven lighting)
            enable_sharpening: Apply unsharp masking
        """
        self.max_dimension = max_dimension
        self.quality = quality
        self.max_bytes = max_bytes
        self.reduced_quality = reduced_quality
        self.enable_grayscale = enable_grayscale
        self.enable_contrast = enable_contrast
        self.enable_clahe = enable_clahe
        self.enable_sharpening = enable_sharpening

    def optimize(self, image: bytes) -> bytes:
        """
        Transform encoded image bytes into an OCR-ready encoded image.

        If the result exceeds max_bytes it is re-encoded once as JPEG at
        reduced quality; if that is still too large the original bytes are
        returned unchanged.

        Raises:
            ImageConversionError: If the bytes cannot be decoded or encoded
        """
        array = self._decode(image)
        fmt = detect_image_format(image) or "png"

        processed = self.preprocess(array)
        del array

        encoded = self._encode(processed, fmt, self.quality)
        if len(encoded) <= self.max_bytes:
            return encoded

        logger.info(
            f"Encoded image is {len(encoded)} bytes (cap {self.max_bytes}), "
            f"re-encoding at quality {self.reduced_quality}"
        )
        encoded = self._encode(processed, "jpg", self.reduced_quality)
        if len(encoded) <= self.max_bytes:
            return encoded

        logger.warning(
            f"Image still {len(encoded)} bytes after re-encoding, passing original through unmodified"
        )
        return image

    def preprocess(self, image: np.ndarray) -> np.ndarray:
        """
        Apply preprocessing pipeline to a decoded image

        Args:
            image: Input image (BGR or grayscale)

        Returns:
            Preprocessed image
        """
        logger.debug(f"Preprocessing image: {image.shape}")

        if self.enable_grayscale and len(image.shape) == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

        image = self._bound_size(image)

        if self.enable_contrast:
            image = self._normalize_contrast(image)

        if self.enable_sharpening:
            image = self._sharpen(image)

        logger.debug(f"Preprocessing complete: {image.shape}")
        return image

    def _decode(self, data: bytes) -> np.ndarray:
        buffer = np.frombuffer(data, dtype=np.uint8)
        image = cv2.imdecode(buffer, cv2.IMREAD_COLOR) if buffer.size else None
        if image is None:
            raise ImageConversionError(f"Failed to decode image ({len(data)} bytes)")
        return image

    def _encode(self, image: np.ndarray, fmt: str, quality: int) -> bytes:
        if fmt == "jpg":
            ok, buffer = cv2.imencode('.jpg', image, [cv2.IMWRITE_JPEG_QUALITY, quality])
        else:
            ok, buffer = cv2.imencode('.png', image, [cv2.IMWRITE_PNG_COMPRESSION, 6])
        if not ok:
            raise ImageConversionError(f"Failed to encode image as {fmt}")
        return buffer.tobytes()

    def _bound_size(self, image: np.ndarray) -> np.ndarray:
        """Downscale so the longest side fits max_dimension, never upscale"""
        height, width = image.shape[:2]
        longest = max(height, width)
        if longest <= self.max_dimension:
            return image

        scale = self.max_dimension / longest
        new_size = (max(1, int(width * scale)), max(1, int(height * scale)))
        logger.debug(f"Resizing {width}x{height} -> {new_size[0]}x{new_size[1]}")
        return cv2.resize(image, new_size, interpolation=cv2.INTER_AREA)

    def _normalize_contrast(self, image: np.ndarray) -> np.ndarray:
        """Stretch intensities to the full range, then optionally apply CLAHE"""
        normalized = cv2.normalize(image, None, 0, 255, cv2.NORM_MINMAX)

        if self.enable_clahe and len(normalized.shape) == 2:
            clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
            normalized = clahe.apply(normalized)

        return normalized

    def _sharpen(self, image: np.ndarray) -> np.ndarray:
        """Unsharp mask: original + (original - blurred) * 0.5"""
        blurred = cv2.GaussianBlur(image, (0, 0), 3)
        return cv2.addWeighted(image, 1.5, blurred, -0.5, 0)
