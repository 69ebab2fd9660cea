"""
Gemini Vision Engine
Sends page images to a Gemini model and returns the transcribed text
"""

import logging
from typing import Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from ..base import VisionService, VisionResponse
from ...errors import OcrError, OcrTransientError, OcrQuotaError, OcrAuthError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
MAX_OUTPUT_TOKENS = 8192

_AUTH_ERRORS = (
    google_exceptions.Unauthenticated,
    google_exceptions.PermissionDenied,
)

_QUOTA_ERRORS = (
    google_exceptions.ResourceExhausted,
    google_exceptions.TooManyRequests,
)

_TRANSIENT_ERRORS = (
    google_exceptions.DeadlineExceeded,
    google_exceptions.ServiceUnavailable,
    google_exceptions.InternalServerError,
    google_exceptions.GatewayTimeout,
    google_exceptions.RetryError,
    ConnectionError,
    TimeoutError,
)


def classify_error(error: Exception) -> OcrError:
    """Map a Gemini client exception onto the OCR error taxonomy"""
    message = f"Gemini Vision API call failed: {error}"

    if isinstance(error, _AUTH_ERRORS):
        return OcrAuthError(message)
    if isinstance(error, google_exceptions.InvalidArgument) and 'api key' in str(error).lower():
        return OcrAuthError(message)
    if isinstance(error, _QUOTA_ERRORS):
        return OcrQuotaError(message)
    if isinstance(error, _TRANSIENT_ERRORS):
        return OcrTransientError(message)
    if isinstance(error, google_exceptions.ClientError):
        # Rejected request (bad image, unsupported payload): retrying cannot help
        return OcrError(message)
    return OcrTransientError(message)


class GeminiEngine(VisionService):
    """Gemini vision model behind the VisionService interface"""

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model_name: str = DEFAULT_MODEL,
        max_output_tokens: int = MAX_OUTPUT_TOKENS,
        temperature: float = 0.0
    ):
        if not api_key:
            raise OcrAuthError(
                "Gemini API key is required. Set GEMINI_API_KEY environment variable "
                "or pass it to the engine."
            )

        genai.configure(api_key=api_key)
        self.model_name = model_name
        self.model = genai.GenerativeModel(model_name)
        self.generation_config = {
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        }
        logger.info(f"Gemini engine initialized (model: {model_name})")

    def infer(
        self,
        image: bytes,
        prompt: str,
        mime_type: str = "image/png",
        timeout: Optional[float] = None,
        language: Optional[str] = None
    ) -> VisionResponse:
        image_part = {
            "mime_type": mime_type,
            "data": image,
        }
        request_options = {"timeout": timeout} if timeout else None

        try:
            response = self.model.generate_content(
                [prompt, image_part],
                generation_config=self.generation_config,
                request_options=request_options
            )
        except (google_exceptions.GoogleAPICallError, google_exceptions.RetryError,
                ConnectionError, TimeoutError) as e:
            raise classify_error(e) from e

        text = self._response_text(response)
        if not text.strip():
            raise OcrTransientError("Empty response from Gemini Vision API")

        return VisionResponse(text=text.strip())

    @staticmethod
    def _response_text(response) -> str:
        # response.text raises ValueError when the candidate has no parts (blocked/empty)
        try:
            return response.text or ""
        except ValueError as e:
            finish_reason = "UNKNOWN"
            if getattr(response, 'candidates', None):
                finish_reason = str(response.candidates[0].finish_reason)
            logger.warning(f"Gemini returned no text (finish_reason: {finish_reason}): {e}")
            return ""
