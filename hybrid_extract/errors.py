"""
Error taxonomy for hybrid extraction

Page-scoped errors (ImageConversionError, OcrPageError) degrade a single page.
Document-scoped errors (DocumentUnreadableError, InvalidDocumentError,
OcrAuthError, ConfigurationError) abort the run.
"""

from typing import Optional


class HybridExtractError(Exception):
    """Base class for all hybrid extraction errors"""


class ConfigurationError(HybridExtractError):
    """Invalid or missing configuration"""


class InvalidDocumentError(HybridExtractError):
    """Input rejected before processing (size, page limit, not a PDF)"""


class DocumentUnreadableError(HybridExtractError):
    """The document cannot be opened or rendered at all"""


class ExtractionError(HybridExtractError):
    """Native text layer could not be read"""


class ImageConversionError(HybridExtractError):
    """A page could not be rasterized or its image could not be transformed"""

    def __init__(self, message: str, page_number: Optional[int] = None):
        super().__init__(message)
        self.page_number = page_number


class OcrError(HybridExtractError):
    """Base class for vision OCR failures"""

    def __init__(self, message: str, page_number: Optional[int] = None):
        super().__init__(message)
        self.page_number = page_number


class OcrTransientError(OcrError):
    """Timeout, network failure or empty response. Retried."""


class OcrQuotaError(OcrError):
    """Rate limit or quota exhaustion. Retried with a longer backoff."""


class OcrAuthError(OcrError):
    """Bad credentials or service configuration. Never retried."""


class OcrPageError(OcrError):
    """OCR for one page failed after all retry attempts"""

    def __init__(
        self,
        message: str,
        page_number: Optional[int] = None,
        attempts: int = 0
    ):
        super().__init__(message, page_number)
        self.attempts = attempts

    @property
    def quota_exhausted(self) -> bool:
        """True if the final failure was a rate limit"""
        return isinstance(self.__cause__, OcrQuotaError)
