"""
Vision OCR Client
Wraps a VisionService with retry/backoff, output cleanup, confidence
estimation and a paced, bounded-concurrency batch mode.
"""

import re
import time
import logging
import threading
from typing import Callable, List, Optional

from .base import VisionService, OcrResponse
from .batching import run_in_batches
from .image_preprocessor import detect_mime_type
from .post_processor import clean_ocr_output
from .prompts import EXTRACT_TEXT
from .retry import RetryPolicy, with_retry
from ..errors import OcrError, OcrTransientError, OcrAuthError, OcrPageError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0  # seconds per attempt
DEFAULT_BATCH_SIZE = 5
DEFAULT_BATCH_DELAY = 1.0  # seconds between batches

_LETTER = re.compile(r'[^\W\d_]')
_DIGIT = re.compile(r'[0-9]')
_PUNCTUATION = re.compile(r'[.,!?;:]')
_MULTI_SPACE = re.compile(r'\s{2,}')


def estimate_confidence(text: str) -> float:
    """
    Heuristic confidence for services that do not report one.

    Rewards length, character variety and visible structure. Not a calibrated
    probability.
    """
    if not text:
        return 0.0

    score = 0.5

    if len(text) > 100:
        score += 0.2
    if len(text) > 500:
        score += 0.1

    if _LETTER.search(text):
        score += 0.1
    if _DIGIT.search(text):
        score += 0.05
    if _PUNCTUATION.search(text):
        score += 0.05

    if '\n' in text:
        score += 0.05
    if _MULTI_SPACE.search(text):
        score += 0.05

    return min(score, 1.0)


class VisionOCRClient:
    """
    Calls a vision service for page images.

    The client holds no per-call mutable state and can be shared across
    worker threads.
    """

    def __init__(
        self,
        service: VisionService,
        policy: Optional[RetryPolicy] = None,
        timeout: float = DEFAULT_TIMEOUT,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        default_prompt: str = EXTRACT_TEXT,
        sleep: Callable[[float], None] = time.sleep
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        self.service = service
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.default_prompt = default_prompt
        self.sleep = sleep

    @property
    def engine_name(self) -> str:
        return self.service.name

    def extract_text(
        self,
        image: bytes,
        prompt: Optional[str] = None,
        page_number: Optional[int] = None,
        language: Optional[str] = None
    ) -> OcrResponse:
        """
        Recognize text in one image, retrying transient and quota failures.

        Args:
            image: Encoded PNG/JPEG bytes
            prompt: Instruction for the service (defaults to the full-text prompt)
            page_number: Page this image belongs to, for logging and errors
            language: Language hint passed through to the service

        Returns:
            OcrResponse with cleaned text and confidence

        Raises:
            OcrAuthError: Credentials/configuration rejected (never retried)
            OcrPageError: Attempts exhausted or request rejected for this image
        """
        start_time = time.time()
        label = f"OCR page {page_number}" if page_number is not None else "OCR"
        mime_type = detect_mime_type(image)
        attempts = 0

        def attempt():
            nonlocal attempts
            attempts += 1
            response = self.service.infer(
                image,
                prompt or self.default_prompt,
                mime_type=mime_type,
                timeout=self.timeout,
                language=language
            )
            text = clean_ocr_output(response.text or "")
            if not text:
                raise OcrTransientError("Empty response from vision service", page_number=page_number)
            return text, response.confidence

        try:
            text, confidence = with_retry(attempt, self.policy, label, sleep=self.sleep)
        except OcrAuthError:
            raise
        except OcrError as e:
            where = f" for page {page_number}" if page_number is not None else ""
            raise OcrPageError(
                f"Failed to extract text after {attempts} attempts{where}: {e}",
                page_number=page_number,
                attempts=attempts
            ) from e

        if confidence is None:
            confidence = estimate_confidence(text)

        processing_time_ms = int((time.time() - start_time) * 1000)
        logger.debug(
            f"{label}: {len(text)} chars, confidence {confidence:.2f}, "
            f"{attempts} attempt(s), {processing_time_ms}ms"
        )

        return OcrResponse(
            text=text,
            confidence=max(0.0, min(1.0, float(confidence))),
            processing_time_ms=processing_time_ms,
            attempts=attempts
        )

    def extract_text_batch(
        self,
        images: List[bytes],
        prompt: Optional[str] = None,
        start_page_number: int = 1,
        language: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> List[OcrResponse]:
        """
        Recognize text in many images, batch_size at a time with a pacing
        delay between batches.

        Never raises for a single image: failures come back as OcrResponse
        with `error` set and empty text. Items whose worker failed outside the
        retry path are retried once individually.

        Raises:
            OcrAuthError: Aborts the whole batch run
        """
        def work(index: int) -> OcrResponse:
            return self.extract_text(images[index], prompt, start_page_number + index, language)

        outcome = run_in_batches(
            list(range(len(images))),
            work,
            batch_size=self.batch_size,
            delay=self.batch_delay,
            sleep=self.sleep,
            cancel_event=cancel_event,
            fatal=(OcrAuthError,)
        )

        responses = []
        for index in range(len(images)):
            page_number = start_page_number + index

            if index in outcome.results:
                responses.append(outcome.results[index])
                continue

            error = outcome.errors.get(index)
            if error is None:
                responses.append(self._failed_response("Cancelled before dispatch"))
            elif isinstance(error, OcrPageError):
                logger.error(f"Failed to process page {page_number}: {error}")
                responses.append(self._failed_response(str(error), error.attempts))
            else:
                logger.warning(f"Batch item for page {page_number} failed ({error}), retrying individually")
                responses.append(self._extract_individually(images[index], prompt, page_number, language))

        return responses

    def _extract_individually(
        self,
        image: bytes,
        prompt: Optional[str],
        page_number: int,
        language: Optional[str]
    ) -> OcrResponse:
        try:
            return self.extract_text(image, prompt, page_number, language)
        except OcrAuthError:
            raise
        except OcrPageError as e:
            logger.error(f"Failed to process page {page_number}: {e}")
            return self._failed_response(str(e), e.attempts)
        except Exception as e:
            logger.error(f"Individual retry for page {page_number} failed: {e}", exc_info=True)
            return self._failed_response(str(e), 1)

    @staticmethod
    def _failed_response(message: str, attempts: int = 0) -> OcrResponse:
        return OcrResponse(
            text="",
            confidence=0.0,
            processing_time_ms=0,
            attempts=attempts,
            error=message
        )

    def cleanup(self) -> None:
        self.service.cleanup()
