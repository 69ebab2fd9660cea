"""
Vision OCR factory
Builds the configured vision service and the client that wraps it
"""

import logging
import time
from typing import Callable, Optional

from .base import VisionService
from .retry import RetryPolicy
from .vision_client import VisionOCRClient
from ..errors import ConfigurationError, OcrAuthError

logger = logging.getLogger(__name__)


def create_vision_service(config, fallback_enabled: bool = False) -> VisionService:
    """
    Create the vision service named by config.ocr_engine

    Args:
        config: HybridConfig
        fallback_enabled: Fall back to Tesseract if the primary engine cannot start

    Raises:
        ConfigurationError: Unknown engine, or engine unavailable
        OcrAuthError: Gemini selected without an API key
    """
    engine_name = config.ocr_engine

    try:
        return _create_engine(engine_name, config)
    except (ConfigurationError, OcrAuthError) as e:
        logger.error(f"Failed to initialize {engine_name}: {e}")

        if not fallback_enabled or engine_name == "tesseract":
            raise

        logger.info("Attempting fallback to Tesseract...")
        service = _create_engine("tesseract", config)
        logger.info("Fallback to Tesseract successful")
        return service


def _create_engine(engine_name: str, config) -> VisionService:
    if engine_name == "gemini":
        from .engines.gemini_engine import GeminiEngine
        return GeminiEngine(api_key=config.gemini_api_key, model_name=config.gemini_model)

    if engine_name == "tesseract":
        from .engines.tesseract_engine import TesseractEngine
        return TesseractEngine(
            tesseract_cmd=config.tesseract_cmd,
            default_language=config.default_language
        )

    raise ConfigurationError(f"Unknown OCR engine: {engine_name}")


def create_vision_client(
    config,
    service: Optional[VisionService] = None,
    sleep: Callable[[float], None] = time.sleep
) -> Optional[VisionOCRClient]:
    """
    Build a VisionOCRClient from config.

    Returns None when no OCR engine can be started; callers then fall back
    to text-only extraction.
    """
    if service is None:
        try:
            service = create_vision_service(config)
        except (ConfigurationError, OcrAuthError) as e:
            logger.warning(f"OCR unavailable, text extraction only: {e}")
            return None

    try:
        policy = RetryPolicy(
            max_attempts=config.max_retries,
            base_delay=config.retry_base_delay,
            quota_backoff_multiplier=config.quota_backoff_multiplier
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid retry settings: {e}") from e

    return VisionOCRClient(
        service,
        policy=policy,
        timeout=config.request_timeout_seconds,
        batch_size=config.max_pages_parallel,
        batch_delay=config.batch_delay,
        sleep=sleep
    )
