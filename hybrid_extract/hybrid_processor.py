"""
Hybrid PDF Processor

Decides page by page whether text comes from the native text layer or from
vision OCR:

1. Whole-document triage: extract the full text layer and validate it. A
   long enough, valid text layer is returned as-is.
2. Per-page classification: pages with enough native text keep it, the rest
   are queued for OCR.
3. OCR dispatch: queued pages are rasterized, preprocessed and sent to the
   vision client in paced batches of max_pages_parallel.
4. Consolidation: page texts are joined in page order, regardless of the
   order OCR work completed in.

A page whose OCR fails is skipped and the run still succeeds. Only an
unreadable document, rejected input or rejected credentials fail the run.
"""

import gc
import time
import logging
import threading
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .config import HybridConfig
from .errors import (
    ConfigurationError,
    DocumentUnreadableError,
    ExtractionError,
    ImageConversionError,
    InvalidDocumentError,
    OcrAuthError,
    OcrPageError,
)
from .memory_monitor import MemoryMonitor
from .ocr.base import OcrOptions, Rasterizer, TextExtractor
from .ocr.batching import run_in_batches
from .ocr.image_preprocessor import ImagePreprocessor
from .ocr.post_processor import clean_extracted_text
from .ocr.prompts import build_prompt
from .ocr.text_quality import TextQualityValidator
from .ocr.vision_client import VisionOCRClient
from .pdf_processor import PyMuPDFRasterizer, create_default_extractor

logger = logging.getLogger(__name__)

PDF_HEADER = b'%PDF-'

ProgressCallback = Callable[[int, int, str], None]


@dataclass(frozen=True)
class PageResult:
    """Outcome for one page. Written once, never modified."""
    page_number: int  # 1-based
    text: str
    method: str  # "text" or "ocr"
    confidence: float
    processing_time_ms: int
    skipped: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProcessingMetadata:
    """Summary of a run, computed once after every page has a result"""
    method: str  # "text-only", "ocr-only" or "hybrid"
    text_pages: int
    ocr_pages: int
    skipped_pages: int
    total_processing_time_ms: int
    average_ocr_confidence: float
    trigger_reason: str
    filename: str = ""
    file_size: int = 0
    page_count: int = 0
    title: Optional[str] = None
    author: Optional[str] = None
    creator: Optional[str] = None
    ocr_enabled: bool = True
    needs_ocr: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class HybridData:
    text: str
    metadata: ProcessingMetadata
    page_results: List[PageResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'text': self.text,
            'metadata': self.metadata.to_dict(),
            'page_results': [r.to_dict() for r in self.page_results],
        }


@dataclass
class HybridResult:
    """Top-level outcome. success=False is reserved for total failure."""
    success: bool
    data: Optional[HybridData] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {'success': self.success}
        if self.data is not None:
            result['data'] = self.data.to_dict()
        if self.error is not None:
            result['error'] = self.error
        return result


def consolidate(page_results: Iterable[PageResult]) -> Tuple[str, Dict[str, Any]]:
    """
    Join page texts in ascending page order and count page outcomes.

    Returns:
        (final text, stats) where stats has text_pages, ocr_pages,
        skipped_pages, average_ocr_confidence and method
    """
    ordered = sorted(page_results, key=lambda r: r.page_number)

    text = '\n\n'.join(r.text for r in ordered if r.text).strip()

    text_pages = sum(1 for r in ordered if r.method == "text" and not r.skipped)
    ocr_results = [r for r in ordered if r.method == "ocr" and not r.skipped]
    skipped_pages = sum(1 for r in ordered if r.skipped)

    average_ocr_confidence = (
        sum(r.confidence for r in ocr_results) / len(ocr_results) if ocr_results else 0.0
    )

    ocr_path_pages = len(ocr_results) + sum(1 for r in ordered if r.skipped and r.method == "ocr")
    if text_pages and ocr_path_pages:
        method = "hybrid"
    elif ocr_path_pages:
        method = "ocr-only"
    else:
        method = "text-only"

    return text, {
        'method': method,
        'text_pages': text_pages,
        'ocr_pages': len(ocr_results),
        'skipped_pages': skipped_pages,
        'average_ocr_confidence': average_ocr_confidence,
    }


class HybridPdfProcessor:
    """
    Text-layer / vision-OCR pipeline for one document at a time.

    Collaborators are injected; the instance holds no per-run state and may
    process several documents concurrently.
    """

    def __init__(
        self,
        extractor: Optional[TextExtractor] = None,
        rasterizer: Optional[Rasterizer] = None,
        client: Optional[VisionOCRClient] = None,
        preprocessor: Optional[ImagePreprocessor] = None,
        validator: Optional[TextQualityValidator] = None,
        config: Optional[HybridConfig] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Args:
            extractor: Native text extractor (default: PyMuPDF then pypdf)
            rasterizer: Page renderer (default: PyMuPDF)
            client: Vision OCR client; None means text extraction only
            preprocessor: Image preprocessor applied when enhance_image is set
            validator: Text quality validator for whole-document triage
            config: Limits, thresholds and pacing
            sleep: Sleep function used between OCR batches
        """
        self.config = config or HybridConfig()
        self.extractor = extractor or create_default_extractor()
        self.rasterizer = rasterizer or PyMuPDFRasterizer(jpeg_quality=self.config.image_quality)
        self.client = client
        self.preprocessor = preprocessor or ImagePreprocessor(
            max_dimension=self.config.max_image_dimension,
            quality=self.config.image_quality,
            max_bytes=self.config.max_image_bytes
        )
        self.validator = validator or TextQualityValidator(self.config.validation_config())
        self.sleep = sleep

    def default_options(self) -> OcrOptions:
        return OcrOptions(
            language=self.config.default_language,
            density=self.config.default_density,
            format=self.config.default_format,
            max_pages_parallel=self.config.max_pages_parallel
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process(
        self,
        data: bytes,
        filename: str = "document.pdf",
        options: Optional[OcrOptions] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> HybridResult:
        """
        Extract text from a PDF, using OCR only for pages that need it.

        Never raises for document or page problems: fatal conditions are
        returned as HybridResult(success=False, error=...).
        """
        start_time = time.time()
        options = options or self.default_options()

        logger.info(f"Processing {filename} ({len(data)} bytes, ocr={'on' if options.enable_ocr else 'off'})")

        try:
            result = self._run(data, filename, options, progress_callback, cancel_event, start_time)
        except (InvalidDocumentError, DocumentUnreadableError, OcrAuthError, ConfigurationError) as e:
            logger.error(f"Processing failed for {filename}: {e}", exc_info=True)
            return HybridResult(success=False, error=str(e))

        if result.success:
            meta = result.data.metadata
            logger.info(
                f"{filename}: {meta.page_count} pages, {meta.method}, "
                f"text={meta.text_pages} ocr={meta.ocr_pages} skipped={meta.skipped_pages}, "
                f"{meta.total_processing_time_ms}ms"
            )
        return result

    def check_needs_ocr(self, data: bytes) -> Dict[str, Any]:
        """
        Quick triage without OCR

        Returns:
            {"needs_ocr": bool, "text_length": int, "page_count": int}
        """
        try:
            extracted = self.extractor.extract(data)
        except ExtractionError as e:
            logger.warning(f"Text extraction failed during OCR check: {e}")
            return {'needs_ocr': True, 'text_length': 0, 'page_count': 0}

        text = clean_extracted_text(extracted.text)
        accepted, _ = self._accept_whole_document(text, extracted.page_count)
        return {
            'needs_ocr': not accepted,
            'text_length': len(text),
            'page_count': extracted.page_count,
        }

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------

    def _run(
        self,
        data: bytes,
        filename: str,
        options: OcrOptions,
        progress_callback: Optional[ProgressCallback],
        cancel_event: Optional[threading.Event],
        start_time: float
    ) -> HybridResult:
        self._validate_input(data)

        page_count = self.rasterizer.page_count(data)
        if page_count < 1:
            raise InvalidDocumentError("PDF has no pages")
        if page_count > self.config.max_pages:
            raise InvalidDocumentError(
                f"PDF has too many pages ({page_count}). Maximum allowed: {self.config.max_pages}"
            )

        self._report_progress(progress_callback, 0, page_count, "Analyzing text layer")

        base_meta = {
            'filename': filename,
            'file_size': len(data),
            'page_count': page_count,
            'ocr_enabled': options.enable_ocr and self.client is not None,
        }

        # Whole-document triage
        whole_text = None
        try:
            extracted = self.extractor.extract(data)
            whole_text = clean_extracted_text(extracted.text)
            for key in ('title', 'author', 'creator'):
                base_meta[key] = extracted.info.get(key)
            accepted, trigger_reason = self._accept_whole_document(whole_text, page_count)
        except ExtractionError as e:
            logger.warning(f"Whole-document text extraction failed: {e}")
            accepted, trigger_reason = False, f"Text extraction failed: {e}"

        if accepted:
            logger.info(f"Text layer accepted for {filename} ({len(whole_text)} chars)")
            return self._text_only_result(whole_text, base_meta, trigger_reason, False, start_time)

        if not base_meta['ocr_enabled']:
            if whole_text is None:
                return HybridResult(
                    success=False,
                    error=f"{trigger_reason} and OCR is not available"
                )
            logger.info(f"OCR disabled or unavailable, returning text layer as-is ({trigger_reason})")
            return self._text_only_result(whole_text, base_meta, trigger_reason, True, start_time)

        logger.info(f"Text layer insufficient ({trigger_reason}), classifying pages")

        # Per-page classification
        page_results: Dict[int, PageResult] = {}
        ocr_queue = self._classify_pages(data, page_count, page_results)
        self._report_progress(
            progress_callback, len(page_results), page_count,
            f"{len(page_results)} pages with text layer, {len(ocr_queue)} pages need OCR"
        )

        # OCR dispatch
        if ocr_queue:
            self._dispatch_ocr(data, ocr_queue, options, page_results, progress_callback, cancel_event)

        # Consolidation
        text, stats = consolidate(page_results.values())
        metadata = ProcessingMetadata(
            total_processing_time_ms=int((time.time() - start_time) * 1000),
            trigger_reason=trigger_reason,
            needs_ocr=True,
            **stats,
            **base_meta
        )
        ordered = [page_results[n] for n in range(1, page_count + 1)]

        self._report_progress(progress_callback, page_count, page_count, "Processing complete")
        return HybridResult(success=True, data=HybridData(text=text, metadata=metadata, page_results=ordered))

    def _validate_input(self, data: bytes) -> None:
        if len(data) > self.config.max_file_size:
            raise InvalidDocumentError(
                f"File too large ({len(data)} bytes). "
                f"Maximum size: {round(self.config.max_file_size / 1024 / 1024)}MB"
            )
        if not data.startswith(PDF_HEADER):
            raise InvalidDocumentError("Invalid PDF file format")

    def _accept_whole_document(self, text: str, page_count: int) -> Tuple[bool, str]:
        """
        Accept the text layer if it is valid and averages more than
        min_text_length_for_text_based characters per page. Returns the
        reason either way.
        """
        validation = self.validator.validate(text)
        required = self.config.min_text_length_for_text_based * max(page_count, 1)
        long_enough = len(text) > required

        logger.debug(
            f"Whole-document triage: {len(text)} chars (need > {required}), "
            f"confidence {validation.confidence:.2f}, valid={validation.is_valid}"
        )

        if not long_enough and validation.is_valid:
            return False, (
                f"Text layer too sparse ({len(text)} chars over {page_count} pages, "
                f"need more than {self.config.min_text_length_for_text_based} per page)"
            )
        return long_enough and validation.is_valid, validation.reason

    def _text_only_result(
        self,
        text: str,
        base_meta: Dict[str, Any],
        trigger_reason: str,
        needs_ocr: bool,
        start_time: float
    ) -> HybridResult:
        metadata = ProcessingMetadata(
            method="text-only",
            text_pages=base_meta['page_count'],
            ocr_pages=0,
            skipped_pages=0,
            total_processing_time_ms=int((time.time() - start_time) * 1000),
            average_ocr_confidence=0.0,
            trigger_reason=trigger_reason,
            needs_ocr=needs_ocr,
            **base_meta
        )
        return HybridResult(success=True, data=HybridData(text=text, metadata=metadata))

    def _classify_pages(
        self,
        data: bytes,
        page_count: int,
        page_results: Dict[int, PageResult]
    ) -> List[int]:
        """Record text pages in page_results; return page numbers needing OCR"""
        ocr_queue = []

        for page_number in range(1, page_count + 1):
            page_start = time.time()
            try:
                page_text = clean_extracted_text(self.extractor.extract(data, (page_number, page_number)).text)
            except ExtractionError as e:
                logger.debug(f"Page {page_number}: text extraction failed ({e})")
                page_text = ""

            if len(page_text) > self.config.min_text_length_per_page:
                page_results[page_number] = PageResult(
                    page_number=page_number,
                    text=page_text,
                    method="text",
                    confidence=1.0,
                    processing_time_ms=int((time.time() - page_start) * 1000)
                )
                logger.info(f"Page {page_number}: text layer ({len(page_text)} chars)")
            else:
                ocr_queue.append(page_number)
                logger.info(f"Page {page_number}: needs OCR ({len(page_text)} chars of text)")

        return ocr_queue

    def _dispatch_ocr(
        self,
        data: bytes,
        ocr_queue: List[int],
        options: OcrOptions,
        page_results: Dict[int, PageResult],
        progress_callback: Optional[ProgressCallback],
        cancel_event: Optional[threading.Event]
    ) -> None:
        """Run OCR for queued pages; every queued page ends up with a result"""
        prompt = build_prompt(options.language)
        deadline = (
            time.monotonic() + self.config.document_timeout
            if self.config.document_timeout > 0 else None
        )

        def ocr_page(page_number: int) -> None:
            page_start = time.time()
            try:
                image = self.rasterizer.rasterize(data, page_number, options.density, options.format)
                if options.enhance_image:
                    image = self.preprocessor.optimize(image)
                response = self.client.extract_text(
                    image, prompt=prompt, page_number=page_number, language=options.language
                )
                del image
            except (ImageConversionError, OcrPageError) as e:
                logger.warning(f"Page {page_number} skipped: {e}")
                self._write_once(page_results, self._skipped(page_number, str(e), page_start))
                return

            self._write_once(page_results, PageResult(
                page_number=page_number,
                text=response.text,
                method="ocr",
                confidence=response.confidence,
                processing_time_ms=int((time.time() - page_start) * 1000)
            ))

        text_pages = len(page_results)
        total_pages = text_pages + len(ocr_queue)

        def batch_done(done: int, total: int) -> None:
            self._report_progress(
                progress_callback, text_pages + done, total_pages,
                f"OCR processed {done}/{total} pages"
            )

        monitor = MemoryMonitor()
        monitor.start_tracking("ocr_dispatch")
        logger.info(
            f"Dispatching OCR for {len(ocr_queue)} pages "
            f"(engine: {self.client.engine_name}, parallel: {options.max_pages_parallel})"
        )

        try:
            outcome = run_in_batches(
                ocr_queue,
                ocr_page,
                batch_size=options.max_pages_parallel,
                delay=self.config.batch_delay,
                sleep=self.sleep,
                deadline=deadline,
                cancel_event=cancel_event,
                fatal=(OcrAuthError, DocumentUnreadableError),
                on_batch_done=batch_done
            )
        finally:
            monitor.release()
            monitor.stop_tracking()

        # Pages whose worker crashed outside the retry path get one sequential retry
        for index, error in sorted(outcome.errors.items()):
            page_number = ocr_queue[index]
            logger.warning(f"Page {page_number} failed in batch ({error}), retrying individually")

            if (cancel_event is not None and cancel_event.is_set()) or (
                    deadline is not None and time.monotonic() >= deadline):
                self._write_once(page_results, self._skipped(page_number, str(error)))
                continue

            try:
                ocr_page(page_number)
            except (OcrAuthError, DocumentUnreadableError):
                raise
            except Exception as e:
                logger.error(f"Page {page_number} failed again: {e}", exc_info=True)
                self._write_once(page_results, self._skipped(page_number, str(e)))

        if outcome.not_run:
            reason = "Processing cancelled" if outcome.cancelled else "Document timeout exceeded"
            for index in outcome.not_run:
                self._write_once(page_results, self._skipped(ocr_queue[index], reason))
            logger.warning(f"{reason}: {len(outcome.not_run)} pages skipped")

        gc.collect()

    @staticmethod
    def _write_once(page_results: Dict[int, PageResult], result: PageResult) -> None:
        """First write for a page wins; later writes are dropped"""
        existing = page_results.setdefault(result.page_number, result)
        if existing is not result:
            logger.debug(f"Page {result.page_number} already has a result, ignoring late write")

    @staticmethod
    def _skipped(page_number: int, error: str, page_start: Optional[float] = None) -> PageResult:
        elapsed = int((time.time() - page_start) * 1000) if page_start is not None else 0
        return PageResult(
            page_number=page_number,
            text="",
            method="ocr",
            confidence=0.0,
            processing_time_ms=elapsed,
            skipped=True,
            error=error
        )

    @staticmethod
    def _report_progress(
        progress_callback: Optional[ProgressCallback],
        current: int,
        total: int,
        message: str
    ) -> None:
        if progress_callback is None:
            return
        try:
            progress_callback(current, total, message)
        except Exception as e:
            logger.error(f"Progress callback failed: {e}")


def create_hybrid_processor(
    config: Optional[HybridConfig] = None,
    service=None,
    sleep: Callable[[float], None] = time.sleep
) -> HybridPdfProcessor:
    """
    Build a processor with default collaborators from config (or the environment)

    Args:
        config: Configuration; loaded from the environment if None
        service: Optional VisionService overriding the configured engine
        sleep: Sleep function for retry backoff and batch pacing
    """
    from .ocr.manager import create_vision_client

    config = config or HybridConfig.from_env()
    client = create_vision_client(config, service=service, sleep=sleep)
    return HybridPdfProcessor(client=client, config=config, sleep=sleep)
