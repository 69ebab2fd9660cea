"""
Configuration for hybrid extraction

Values come from the environment (optionally a .env file) or are injected
directly as a HybridConfig.
"""

import os
import logging
from dataclasses import dataclass, asdict, fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError
from .ocr.text_quality import ValidationConfig

logger = logging.getLogger(__name__)

__version__ = "1.0.0"

SUPPORTED_ENGINES = ("gemini", "tesseract")

FEATURES = [
    'Intelligent hybrid workflow',
    'Text-based PDF detection',
    'Page-level classification',
    'OCR for scanned pages',
    'Batch processing',
    'Error recovery',
    'Progress tracking',
]


@dataclass
class HybridConfig:
    """Settings shared by every run of the hybrid processor"""
    # Vision service
    ocr_engine: str = "gemini"
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    tesseract_cmd: Optional[str] = None

    # Input limits
    max_file_size: int = 50 * 1024 * 1024  # bytes
    max_pages: int = 100

    # OCR dispatch
    default_density: int = 300  # DPI
    default_format: str = "png"
    default_language: str = "en"
    max_pages_parallel: int = 5
    batch_delay: float = 1.0  # seconds between OCR batches
    document_timeout: float = 600.0  # seconds, 0 disables

    # Per-call retry
    request_timeout: int = 30000  # ms per OCR attempt
    max_retries: int = 3  # attempts per call
    retry_base_delay: float = 1.0  # seconds
    quota_backoff_multiplier: float = 4.0

    # Triage thresholds. The whole-document threshold is coarse and the
    # per-page one finer; they are tuned independently.
    min_text_length_for_text_based: int = 50
    min_text_length_per_page: int = 20

    # Text quality validator thresholds
    min_absolute_length: int = 10
    min_word_count: int = 3
    min_word_density: float = 0.05
    min_text_entropy: float = 1.5
    min_average_word_length: float = 2.5
    ocr_trigger_confidence_threshold: float = 0.5

    # Image preprocessing
    image_quality: int = 95
    max_image_dimension: int = 4000  # px
    max_image_bytes: int = 4 * 1024 * 1024

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary with the API key masked"""
        data = asdict(self)
        if data['gemini_api_key']:
            data['gemini_api_key'] = '***'
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HybridConfig':
        """Create from dictionary, ignoring unknown keys"""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> 'HybridConfig':
        """
        Load configuration from environment variables (and .env if present)

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed
        """
        load_dotenv(env_file)

        return cls(
            ocr_engine=os.getenv('OCR_ENGINE', 'gemini').strip().lower(),
            gemini_api_key=os.getenv('GEMINI_API_KEY') or os.getenv('GOOGLE_API_KEY') or '',
            gemini_model=os.getenv('GEMINI_MODEL', 'gemini-2.5-flash'),
            tesseract_cmd=os.getenv('TESSERACT_CMD') or None,
            max_file_size=_env_int('OCR_MAX_FILE_SIZE', 50 * 1024 * 1024),
            max_pages=_env_int('OCR_MAX_PAGES', 100),
            default_density=_env_int('OCR_DEFAULT_DENSITY', 300),
            default_language=os.getenv('OCR_DEFAULT_LANGUAGE', 'en'),
            max_pages_parallel=_env_int('OCR_MAX_PAGES_PARALLEL', 5),
            batch_delay=_env_float('OCR_BATCH_DELAY', 1.0),
            document_timeout=_env_float('OCR_DOCUMENT_TIMEOUT', 600.0),
            request_timeout=_env_int('TIMEOUT', 30000),
            max_retries=_env_int('MAX_RETRIES', 3),
            retry_base_delay=_env_float('OCR_RETRY_BASE_DELAY', 1.0),
            quota_backoff_multiplier=_env_float('OCR_QUOTA_BACKOFF_MULTIPLIER', 4.0),
            min_text_length_for_text_based=_env_int('MIN_TEXT_LENGTH_FOR_TEXT_BASED', 50),
            min_text_length_per_page=_env_int('MIN_TEXT_LENGTH_PER_PAGE', 20),
            min_absolute_length=_env_int('MIN_ABSOLUTE_LENGTH', 10),
            min_word_count=_env_int('MIN_WORD_COUNT', 3),
            min_word_density=_env_float('MIN_WORD_DENSITY', 0.05),
            min_text_entropy=_env_float('MIN_TEXT_ENTROPY', 1.5),
            min_average_word_length=_env_float('MIN_AVERAGE_WORD_LENGTH', 2.5),
            ocr_trigger_confidence_threshold=_env_float('OCR_TRIGGER_CONFIDENCE_THRESHOLD', 0.5),
            image_quality=_env_int('OCR_IMAGE_QUALITY', 95),
            max_image_dimension=_env_int('OCR_MAX_IMAGE_SIZE', 4000),
            max_image_bytes=_env_int('OCR_MAX_IMAGE_BYTES', 4 * 1024 * 1024),
        )

    def validation_config(self) -> ValidationConfig:
        """Validator thresholds; deduction weights keep their defaults"""
        return ValidationConfig(
            min_absolute_length=self.min_absolute_length,
            min_word_count=self.min_word_count,
            min_word_density=self.min_word_density,
            min_text_entropy=self.min_text_entropy,
            min_average_word_length=self.min_average_word_length,
            confidence_threshold=self.ocr_trigger_confidence_threshold,
        )

    @property
    def request_timeout_seconds(self) -> float:
        return self.request_timeout / 1000.0

    @property
    def ocr_supported(self) -> bool:
        """Whether the configured engine can plausibly be used"""
        if self.ocr_engine == "gemini":
            return bool(self.gemini_api_key)
        return self.ocr_engine == "tesseract"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw.strip())
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw.strip())
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def validate_config(config: HybridConfig) -> Dict[str, Any]:
    """
    Check a configuration for problems without raising

    Returns:
        {"valid": bool, "issues": [str], "config": masked dict}
    """
    issues: List[str] = []

    if config.ocr_engine not in SUPPORTED_ENGINES:
        issues.append(
            f"Unknown OCR engine '{config.ocr_engine}' (expected one of {', '.join(SUPPORTED_ENGINES)})"
        )
    if config.ocr_engine == "gemini" and not config.gemini_api_key:
        issues.append("GEMINI_API_KEY is not set; OCR will be unavailable (text extraction only)")
    if config.max_file_size <= 0:
        issues.append(f"max_file_size must be positive, got {config.max_file_size}")
    if config.max_pages <= 0:
        issues.append(f"max_pages must be positive, got {config.max_pages}")
    if not 72 <= config.default_density <= 600:
        issues.append(f"default_density must be between 72 and 600, got {config.default_density}")
    if config.max_pages_parallel < 1:
        issues.append(f"max_pages_parallel must be >= 1, got {config.max_pages_parallel}")
    if config.max_retries < 1:
        issues.append(f"max_retries must be >= 1, got {config.max_retries}")
    if config.request_timeout <= 0:
        issues.append(f"request timeout must be positive, got {config.request_timeout}")
    if config.batch_delay < 0 or config.document_timeout < 0:
        issues.append("batch_delay and document_timeout must not be negative")
    if not 0.0 <= config.ocr_trigger_confidence_threshold <= 1.0:
        issues.append(
            f"OCR trigger confidence threshold must be in [0, 1], "
            f"got {config.ocr_trigger_confidence_threshold}"
        )
    if config.min_text_length_per_page > config.min_text_length_for_text_based:
        # Allowed, but the per-page check is normally the looser of the two
        logger.warning(
            f"Per-page text threshold ({config.min_text_length_per_page}) exceeds "
            f"whole-document threshold ({config.min_text_length_for_text_based})"
        )
    if not 1 <= config.image_quality <= 100:
        issues.append(f"image_quality must be between 1 and 100, got {config.image_quality}")

    return {
        'valid': not issues,
        'issues': issues,
        'config': config.to_dict(),
    }


def get_capabilities(config: HybridConfig) -> Dict[str, Any]:
    """Health/capabilities payload"""
    return {
        'status': 'ok',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'version': __version__,
        'capabilities': {
            'text_extraction': True,
            'ocr_supported': config.ocr_supported,
            'ocr_engine': config.ocr_engine,
            'gemini_model': config.gemini_model,
            'max_file_size': f"{round(config.max_file_size / 1024 / 1024)}MB",
            'max_pages': config.max_pages,
            'supported_formats': ['pdf'],
            'features': list(FEATURES),
        },
        'config': {
            'default_density': config.default_density,
            'default_format': config.default_format,
            'max_pages_parallel': config.max_pages_parallel,
            'min_text_length_for_text_based': config.min_text_length_for_text_based,
            'min_text_length_per_page': config.min_text_length_per_page,
        },
    }
