"""Tests for VisionOCRClient"""

from unittest.mock import Mock

import pytest

from hybrid_extract.errors import (
    OcrAuthError,
    OcrError,
    OcrPageError,
    OcrQuotaError,
    OcrTransientError,
)
from hybrid_extract.ocr.base import VisionResponse, VisionService
from hybrid_extract.ocr.prompts import EXTRACT_TEXT
from hybrid_extract.ocr.retry import RetryPolicy
from hybrid_extract.ocr.vision_client import VisionOCRClient, estimate_confidence

from conftest import ScriptedVisionService, fake_page_image


def make_client(service, no_sleep, **kwargs):
    return VisionOCRClient(service, policy=RetryPolicy(base_delay=1.0), sleep=no_sleep, **kwargs)


class TestEstimateConfidence:
    def test_empty(self):
        assert estimate_confidence("") == 0.0

    def test_short_alpha(self):
        assert estimate_confidence("abc") == pytest.approx(0.6)

    def test_non_latin_letters_count_as_alphabetic(self):
        assert estimate_confidence("привет") == pytest.approx(0.6)

    def test_structure_and_variety(self):
        text = "Total: 42 items.\nShipped  today"
        # base + alpha + digit + punctuation + newline + multi-space
        assert estimate_confidence(text) == pytest.approx(0.8)

    def test_long_text_capped(self):
        text = ("Line 1: some words, numbers 123.\n  indented\n" * 20)
        assert len(text) > 500
        assert estimate_confidence(text) == 1.0

    def test_length_bonuses(self):
        assert estimate_confidence("a" * 101) == pytest.approx(0.8)
        assert estimate_confidence("a" * 501) == pytest.approx(0.9)


class TestExtractText:
    def test_success_uses_estimated_confidence(self, no_sleep):
        service = ScriptedVisionService(lambda page, n: "Hello world.")
        client = make_client(service, no_sleep)

        response = client.extract_text(fake_page_image(1), page_number=1)

        assert response.text == "Hello world."
        assert response.confidence == pytest.approx(estimate_confidence("Hello world."))
        assert response.attempts == 1
        assert response.failed is False
        assert service.calls[0]['prompt'] == EXTRACT_TEXT
        assert service.calls[0]['mime_type'] == "image/png"
        assert service.calls[0]['timeout'] == 30.0

    def test_service_confidence_preferred(self, no_sleep):
        service = ScriptedVisionService(lambda page, n: "Scanned text", confidence=0.42)
        response = make_client(service, no_sleep).extract_text(fake_page_image(1))

        assert response.confidence == pytest.approx(0.42)

    def test_prompt_and_language_passed_through(self, no_sleep):
        service = ScriptedVisionService()
        make_client(service, no_sleep).extract_text(fake_page_image(3), prompt="Read it", language="vi")

        assert service.calls[0]['prompt'] == "Read it"
        assert service.calls[0]['language'] == "vi"

    def test_code_fence_stripped(self, no_sleep):
        service = ScriptedVisionService(lambda page, n: "```text\nInvoice 7\n```")
        response = make_client(service, no_sleep).extract_text(fake_page_image(1))

        assert response.text == "Invoice 7"

    def test_empty_response_retried(self, no_sleep):
        service = ScriptedVisionService(lambda page, n: "" if n == 0 else "second try")
        response = make_client(service, no_sleep).extract_text(fake_page_image(1))

        assert response.text == "second try"
        assert response.attempts == 2
        assert no_sleep.delays == [1.0]

    def test_exhausted_retries_raise_page_error(self, no_sleep):
        def always_fail(page, n):
            raise OcrTransientError("timeout")

        service = ScriptedVisionService(always_fail)

        with pytest.raises(OcrPageError) as exc_info:
            make_client(service, no_sleep).extract_text(fake_page_image(2), page_number=2)

        error = exc_info.value
        assert error.page_number == 2
        assert error.attempts == 3
        assert isinstance(error.__cause__, OcrTransientError)
        assert error.quota_exhausted is False
        assert service.calls_for(2) == 3

    def test_quota_exhaustion_flagged(self, no_sleep):
        def rate_limited(page, n):
            raise OcrQuotaError("429")

        service = ScriptedVisionService(rate_limited)

        with pytest.raises(OcrPageError) as exc_info:
            make_client(service, no_sleep).extract_text(fake_page_image(1))

        assert exc_info.value.quota_exhausted is True
        assert no_sleep.delays == [4.0, 8.0]

    def test_rejected_request_not_retried(self, no_sleep):
        def rejected(page, n):
            raise OcrError("unsupported image")

        service = ScriptedVisionService(rejected)

        with pytest.raises(OcrPageError) as exc_info:
            make_client(service, no_sleep).extract_text(fake_page_image(1))

        assert exc_info.value.attempts == 1

    def test_auth_error_propagates(self, no_sleep):
        def bad_key(page, n):
            raise OcrAuthError("API key not valid")

        service = ScriptedVisionService(bad_key)

        with pytest.raises(OcrAuthError):
            make_client(service, no_sleep).extract_text(fake_page_image(1))
        assert len(service.calls) == 1

    def test_retry_counts_are_per_call(self, no_sleep):
        service = ScriptedVisionService(lambda page, n: "" if n == 0 else f"text {page}")
        client = make_client(service, no_sleep)

        first = client.extract_text(fake_page_image(1))
        second = client.extract_text(fake_page_image(2))

        assert first.attempts == 2
        assert second.attempts == 2

    def test_jpeg_mime_type(self, no_sleep):
        service = Mock(spec=VisionService)
        service.infer.return_value = VisionResponse(text="ok")

        make_client(service, no_sleep).extract_text(b'\xff\xd8\xff\xe0jpegdata')

        assert service.infer.call_args.kwargs['mime_type'] == "image/jpeg"


class TestExtractTextBatch:
    def test_results_in_input_order(self, no_sleep):
        service = ScriptedVisionService(delay=lambda page: 0.05 if page == 1 else 0.0)
        client = make_client(service, no_sleep, batch_size=5, batch_delay=1.0)
        images = [fake_page_image(n) for n in range(1, 8)]

        responses = client.extract_text_batch(images)

        assert [r.text for r in responses] == [f"OCR text for page {n}" for n in range(1, 8)]
        assert service.max_active <= 5
        assert no_sleep.delays == [1.0]

    def test_failed_item_does_not_fail_batch(self, no_sleep):
        def fail_page_2(page, n):
            if page == 2:
                raise OcrTransientError("timeout")
            return f"page {page}"

        service = ScriptedVisionService(fail_page_2)
        client = make_client(service, no_sleep, batch_delay=0.0)

        responses = client.extract_text_batch([fake_page_image(n) for n in (1, 2, 3)])

        assert [r.text for r in responses] == ["page 1", "", "page 3"]
        assert responses[1].failed
        assert responses[1].confidence == 0.0
        assert responses[1].attempts == 3
        # retries already exhausted, no extra individual pass
        assert service.calls_for(2) == 3

    def test_unexpected_failure_retried_individually(self, no_sleep):
        def crash_once(page, n):
            if page == 2 and n == 0:
                raise RuntimeError("connection pool closed")
            return f"page {page}"

        service = ScriptedVisionService(crash_once)
        client = make_client(service, no_sleep, batch_delay=0.0)

        responses = client.extract_text_batch([fake_page_image(n) for n in (1, 2, 3)])

        assert [r.text for r in responses] == ["page 1", "page 2", "page 3"]
        assert service.calls_for(2) == 2

    def test_persistent_unexpected_failure_isolated(self, no_sleep):
        def crash_page_2(page, n):
            if page == 2:
                raise RuntimeError("connection pool closed")
            return f"page {page}"

        service = ScriptedVisionService(crash_page_2)
        client = make_client(service, no_sleep, batch_delay=0.0)

        responses = client.extract_text_batch([fake_page_image(n) for n in (1, 2, 3)])

        assert [r.text for r in responses] == ["page 1", "", "page 3"]
        assert responses[1].failed
        assert "connection pool closed" in responses[1].error
        assert service.calls_for(2) == 2

    def test_auth_error_on_individual_retry_propagates(self, no_sleep):
        def crash_then_reject(page, n):
            if page == 2:
                if n == 0:
                    raise RuntimeError("connection pool closed")
                raise OcrAuthError("API key not valid")
            return f"page {page}"

        client = make_client(ScriptedVisionService(crash_then_reject), no_sleep, batch_delay=0.0)

        with pytest.raises(OcrAuthError):
            client.extract_text_batch([fake_page_image(n) for n in (1, 2, 3)])

    def test_cleanup_releases_service(self, no_sleep):
        service = Mock(spec=VisionService)

        make_client(service, no_sleep).cleanup()

        service.cleanup.assert_called_once_with()

    def test_auth_error_aborts_batch(self, no_sleep):
        def bad_key(page, n):
            raise OcrAuthError("API key not valid")

        client = make_client(ScriptedVisionService(bad_key), no_sleep)

        with pytest.raises(OcrAuthError):
            client.extract_text_batch([fake_page_image(1), fake_page_image(2)])

    def test_start_page_number_used_for_errors(self, no_sleep):
        def always_fail(page, n):
            raise OcrTransientError("timeout")

        client = make_client(ScriptedVisionService(always_fail), no_sleep)
        responses = client.extract_text_batch([fake_page_image(9)], start_page_number=9)

        assert "page 9" in responses[0].error
