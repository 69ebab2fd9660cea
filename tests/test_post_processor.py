"""Tests for text cleanup, prompts and per-run options"""

import pytest

from hybrid_extract.ocr.base import OcrOptions
from hybrid_extract.ocr.post_processor import clean_extracted_text, clean_ocr_output
from hybrid_extract.ocr.prompts import EXTRACT_TEXT, build_prompt


class TestCleanOcrOutput:
    def test_plain_text_trimmed(self):
        assert clean_ocr_output("  Hello\nworld \n") == "Hello\nworld"

    def test_fence_removed(self):
        assert clean_ocr_output("```\nLine one\nLine two\n```") == "Line one\nLine two"

    def test_inner_backticks_kept(self):
        assert clean_ocr_output("Run `ls` now") == "Run `ls` now"

    def test_control_characters_removed(self):
        assert clean_ocr_output("Total\x00 due\x0c") == "Total due"

    def test_empty(self):
        assert clean_ocr_output("") == ""
        assert clean_ocr_output(None) == ""


class TestCleanExtractedText:
    def test_normalizes_layout(self):
        raw = "Title  \r\n\r\n\r\n\r\nBody   text\twith\t\tgaps \n"
        assert clean_extracted_text(raw) == "Title\n\nBody text\twith gaps"

    def test_keeps_single_blank_line(self):
        assert clean_extracted_text("a\n\nb") == "a\n\nb"


class TestBuildPrompt:
    def test_no_language(self):
        assert build_prompt(None) == EXTRACT_TEXT
        assert build_prompt("") == EXTRACT_TEXT

    def test_known_language(self):
        prompt = build_prompt("vi")

        assert prompt.startswith(EXTRACT_TEXT)
        assert "Vietnamese" in prompt

    def test_unknown_language_used_verbatim(self):
        assert "Klingon" in build_prompt("Klingon")


class TestOcrOptions:
    def test_from_dict_camel_case(self):
        options = OcrOptions.from_dict(
            {'enableOcr': False, 'maxPagesParallel': 2, 'format': 'jpeg', 'ignored': 1},
            language='vi'
        )

        assert options.enable_ocr is False
        assert options.max_pages_parallel == 2
        assert options.format == 'jpg'
        assert options.language == 'vi'

    def test_request_overrides_defaults(self):
        assert OcrOptions.from_dict({'density': 150}, density=300).density == 150

    @pytest.mark.parametrize("data", [
        {'density': 20},
        {'density': "300"},
        {'format': 'tiff'},
        {'max_pages_parallel': 0},
        {'enhanceImage': "yes"},
    ])
    def test_invalid(self, data):
        with pytest.raises(ValueError):
            OcrOptions.from_dict(data)
