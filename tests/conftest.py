"""
Shared fixtures: generated PDFs, fake collaborators and a scriptable
vision service. Nothing here touches the network.
"""

import re
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

import cv2
import fitz  # PyMuPDF
import numpy as np
import pytest

from hybrid_extract.config import HybridConfig
from hybrid_extract.errors import ExtractionError, ImageConversionError
from hybrid_extract.ocr.base import (
    ExtractedText,
    Rasterizer,
    TextExtractor,
    VisionResponse,
    VisionService,
)

PNG_SIGNATURE = b'\x89PNG\r\n\x1a\n'

PAGE_TEXT_1 = "The quarterly report shows steady growth in all regions this year."
PAGE_TEXT_2 = "Operating costs fell while customer satisfaction scores kept rising."


def make_pdf(pages: List[str], metadata: Optional[Dict[str, str]] = None) -> bytes:
    """Build a PDF with one page per entry; empty strings give blank pages"""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        if text:
            page.insert_textbox(fitz.Rect(72, 72, 540, 720), text, fontsize=11)
    if metadata:
        doc.set_metadata(metadata)
    data = doc.tobytes()
    doc.close()
    return data


def make_png(width: int = 200, height: int = 100, color: bool = True) -> bytes:
    """Encode a synthetic text-like image as PNG"""
    shape = (height, width, 3) if color else (height, width)
    image = np.full(shape, 255, dtype=np.uint8)
    for y in range(10, height - 10, 20):
        image[y:y + 8, 10:width - 10] = 30
    ok, buffer = cv2.imencode('.png', image)
    assert ok
    return buffer.tobytes()


def fake_page_image(page_number: int) -> bytes:
    """PNG-signed bytes identifying a page (only valid when enhance_image is off)"""
    return PNG_SIGNATURE + f"page-{page_number}".encode()


def page_of(image: bytes) -> int:
    match = re.search(rb'page-(\d+)', image)
    return int(match.group(1)) if match else 0


class FakeExtractor(TextExtractor):
    """Serves fixed per-page text; optionally fails whole-document extraction"""

    name = "fake"

    def __init__(self, pages: List[str], fail_whole: bool = False, fail_all: bool = False):
        self.pages = pages
        self.fail_whole = fail_whole
        self.fail_all = fail_all
        self.calls: List[Optional[Tuple[int, int]]] = []

    def extract(self, data, page_range=None):
        self.calls.append(page_range)
        if self.fail_all or (self.fail_whole and page_range is None):
            raise ExtractionError("text layer unreadable")

        if page_range is None:
            selected = self.pages
        else:
            selected = self.pages[page_range[0] - 1:page_range[1]]
        return ExtractedText(
            text='\n'.join(selected),
            page_count=len(self.pages),
            info={'title': 'Fake Title', 'author': 'Fake Author', 'creator': None}
        )


class FakeRasterizer(Rasterizer):
    """Returns page-identifying bytes; can fail for chosen pages"""

    def __init__(self, page_count: int, failing_pages: Tuple[int, ...] = ()):
        self._page_count = page_count
        self.failing_pages = set(failing_pages)
        self.rendered: List[int] = []
        self._lock = threading.Lock()

    def page_count(self, data):
        return self._page_count

    def rasterize(self, data, page_number, density, fmt):
        with self._lock:
            self.rendered.append(page_number)
        if page_number in self.failing_pages:
            raise ImageConversionError(f"cannot render page {page_number}", page_number=page_number)
        return fake_page_image(page_number)


class ScriptedVisionService(VisionService):
    """
    Vision service driven by a handler(page_number, call_index) that returns
    text or raises. Tracks calls and peak concurrency.
    """

    name = "scripted"

    def __init__(
        self,
        handler: Optional[Callable[[int, int], str]] = None,
        delay: float = 0.0,
        confidence: Optional[float] = None
    ):
        self.handler = handler or (lambda page, n: f"OCR text for page {page}")
        self.delay = delay
        self.confidence = confidence
        self.calls: List[Dict] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()
        self._per_page: Dict[int, int] = {}

    def infer(self, image, prompt, mime_type="image/png", timeout=None, language=None):
        page = page_of(image)
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            call_index = self._per_page.get(page, 0)
            self._per_page[page] = call_index + 1
            self.calls.append({
                'page': page,
                'prompt': prompt,
                'mime_type': mime_type,
                'timeout': timeout,
                'language': language,
            })
        try:
            if self.delay:
                time.sleep(self.delay(page) if callable(self.delay) else self.delay)
            return VisionResponse(text=self.handler(page, call_index), confidence=self.confidence)
        finally:
            with self._lock:
                self.active -= 1

    def calls_for(self, page: int) -> int:
        return sum(1 for c in self.calls if c['page'] == page)


@pytest.fixture
def config():
    """Defaults with no pacing delay and no document timeout"""
    return HybridConfig(batch_delay=0.0, document_timeout=0.0, retry_base_delay=0.0)


@pytest.fixture
def no_sleep():
    """Sleep replacement recording requested delays"""
    delays: List[float] = []

    def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep


@pytest.fixture
def text_pdf():
    """Two text pages, with metadata"""
    return make_pdf(
        [PAGE_TEXT_1 * 3, PAGE_TEXT_2 * 3],
        metadata={'title': 'Annual Report', 'author': 'Finance Team', 'creator': 'pytest'}
    )


@pytest.fixture
def mixed_pdf():
    """Pages 1-2 have text, pages 3-4 are blank"""
    return make_pdf([PAGE_TEXT_1, PAGE_TEXT_2, "", ""])


@pytest.fixture
def blank_pdf():
    return make_pdf(["", "", ""])


@pytest.fixture
def png_bytes():
    return make_png()
