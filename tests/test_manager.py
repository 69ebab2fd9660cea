"""Tests for vision service/client construction"""

from unittest.mock import patch

import pytest

from hybrid_extract.config import HybridConfig
from hybrid_extract.errors import ConfigurationError, OcrAuthError
from hybrid_extract.hybrid_processor import create_hybrid_processor
from hybrid_extract.ocr.engines.gemini_engine import GeminiEngine
from hybrid_extract.ocr.manager import create_vision_client, create_vision_service

from conftest import ScriptedVisionService


class TestCreateVisionService:
    def test_gemini(self):
        with patch('hybrid_extract.ocr.engines.gemini_engine.genai') as genai:
            service = create_vision_service(HybridConfig(gemini_api_key="secret", gemini_model="gemini-x"))

        assert isinstance(service, GeminiEngine)
        genai.GenerativeModel.assert_called_once_with("gemini-x")

    def test_gemini_without_key(self):
        with pytest.raises(OcrAuthError):
            create_vision_service(HybridConfig())

    def test_unknown_engine(self):
        with pytest.raises(ConfigurationError, match="Unknown OCR engine"):
            create_vision_service(HybridConfig(ocr_engine="abbyy"))

    def test_fallback_to_tesseract(self):
        with patch('hybrid_extract.ocr.engines.tesseract_engine.TesseractEngine') as engine_cls:
            service = create_vision_service(HybridConfig(default_language="vi"), fallback_enabled=True)

        assert service is engine_cls.return_value
        engine_cls.assert_called_once_with(tesseract_cmd=None, default_language="vi")


class TestCreateVisionClient:
    def test_client_from_config(self, no_sleep):
        config = HybridConfig(
            request_timeout=12000,
            max_retries=5,
            retry_base_delay=0.5,
            max_pages_parallel=2,
            batch_delay=0.25
        )
        service = ScriptedVisionService()

        client = create_vision_client(config, service=service, sleep=no_sleep)

        assert client.service is service
        assert client.timeout == 12.0
        assert client.batch_size == 2
        assert client.batch_delay == 0.25
        assert client.policy.max_attempts == 5
        assert client.policy.base_delay == 0.5
        assert client.engine_name == "scripted"

    def test_zero_retries_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError, match="retry"):
            create_vision_client(HybridConfig(max_retries=0), service=ScriptedVisionService())

    def test_no_engine_available(self):
        assert create_vision_client(HybridConfig()) is None


class TestCreateHybridProcessor:
    def test_with_service(self, no_sleep):
        processor = create_hybrid_processor(HybridConfig(), service=ScriptedVisionService(), sleep=no_sleep)

        assert processor.client is not None
        assert processor.sleep is no_sleep

    def test_without_engine(self):
        assert create_hybrid_processor(HybridConfig()).client is None
