"""Tests for ImagePreprocessor"""

import logging
from unittest.mock import patch

import cv2
import numpy as np
import pytest

from hybrid_extract.errors import ImageConversionError
from hybrid_extract.ocr.image_preprocessor import (
    ImagePreprocessor,
    detect_image_format,
    detect_mime_type,
)

from conftest import make_png


def decode(data: bytes) -> np.ndarray:
    return cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)


def make_jpeg(width: int = 300, height: int = 200) -> bytes:
    image = np.full((height, width, 3), 200, dtype=np.uint8)
    image[50:60, 20:280] = 20
    ok, buffer = cv2.imencode('.jpg', image)
    assert ok
    return buffer.tobytes()


class TestFormatDetection:
    def test_png(self):
        data = make_png()
        assert detect_image_format(data) == "png"
        assert detect_mime_type(data) == "image/png"

    def test_jpeg(self):
        data = make_jpeg()
        assert detect_image_format(data) == "jpg"
        assert detect_mime_type(data) == "image/jpeg"

    def test_unknown_defaults_to_png_mime(self):
        assert detect_image_format(b"GIF89a") is None
        assert detect_mime_type(b"GIF89a") == "image/png"


class TestOptimize:
    def test_output_is_grayscale_png(self):
        result = ImagePreprocessor().optimize(make_png(color=True))

        assert detect_image_format(result) == "png"
        assert decode(result).ndim == 2

    def test_jpeg_stays_jpeg(self):
        result = ImagePreprocessor().optimize(make_jpeg())
        assert detect_image_format(result) == "jpg"

    def test_large_image_bounded_preserving_aspect_ratio(self):
        preprocessor = ImagePreprocessor(max_dimension=500)
        result = decode(preprocessor.optimize(make_png(width=2000, height=1000)))

        height, width = result.shape[:2]
        assert max(height, width) <= 500
        assert width / height == pytest.approx(2.0, rel=0.01)

    def test_small_image_not_upscaled(self):
        preprocessor = ImagePreprocessor(max_dimension=4000)
        result = decode(preprocessor.optimize(make_png(width=200, height=100)))

        assert result.shape[:2] == (100, 200)

    def test_contrast_is_stretched(self):
        image = np.full((100, 100), 100, dtype=np.uint8)
        image[40:60, :] = 150
        preprocessor = ImagePreprocessor(enable_sharpening=False)

        result = preprocessor.preprocess(image)

        assert result.min() == 0
        assert result.max() == 255

    def test_undecodable_bytes_raise(self):
        with pytest.raises(ImageConversionError):
            ImagePreprocessor().optimize(b"not an image")

    def test_empty_bytes_raise(self):
        with pytest.raises(ImageConversionError):
            ImagePreprocessor().optimize(b"")


class TestByteCap:
    def test_reencodes_once_at_reduced_quality(self):
        preprocessor = ImagePreprocessor(max_bytes=1000, reduced_quality=60)

        with patch.object(preprocessor, '_encode', side_effect=[b"x" * 5000, b"y" * 500]) as encode:
            result = preprocessor.optimize(make_png())

        assert result == b"y" * 500
        assert encode.call_count == 2
        _, fmt, quality = encode.call_args_list[1].args
        assert fmt == "jpg"
        assert quality == 60

    def test_passes_original_through_when_still_too_large(self, caplog):
        original = make_png()
        preprocessor = ImagePreprocessor(max_bytes=10)

        with caplog.at_level(logging.WARNING, logger="hybrid_extract.ocr.image_preprocessor"):
            result = preprocessor.optimize(original)

        assert result == original
        assert "passing original through" in caplog.text
