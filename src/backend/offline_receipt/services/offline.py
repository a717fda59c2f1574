"""
Local receipt-extraction service.

Ties preprocessing, OCR routing, field extraction and optional semantic
merging together, and owns the observable ProcessingState. One instance
runs at most one receipt at a time.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Iterable, List, Optional, Tuple

from PIL import Image

from offline_receipt.config import settings
from offline_receipt.errors import EngineError, PipelineBusyError, PreprocessingError, ProcessingError, ReceiptOCRError
from offline_receipt.models.extraction import ExtractedReceiptData, LocalTransaction, ProcessingResult, ProcessingState
from offline_receipt.models.ocr import OCRResult
from offline_receipt.services.aggregator import MULTI_IMAGE_SEPARATOR, convert_to_transactions, deduplicate_transactions
from offline_receipt.services.ocr import OCRBackend, PaddleOCRBackend, TesseractBackend
from offline_receipt.services.parser import ReceiptParser
from offline_receipt.services.preferences import PreferenceStore, ProcessingMode
from offline_receipt.services.preprocess import ImagePreprocessor
from offline_receipt.services.router import EngineMode, EngineRouter
from offline_receipt.services.semantic import SemanticExtractor, merge_results
from offline_receipt.utils.scripts import ScriptHint, parse_script_hints

logger = logging.getLogger(__name__)

MODEL_SIZE_PER_LANGUAGE = 15 * 1024 * 1024

StateListener = Callable[[ProcessingState], None]


def get_estimated_model_size(scripts: Iterable) -> int:
    """Approximate OCR model download size in bytes (about 15 MB per language)."""
    return len(parse_script_hints(scripts)) * MODEL_SIZE_PER_LANGUAGE


class LocalReceiptService:
    """
    Offline receipt extraction pipeline.

    Blocking; run it off the interactive thread (see ReceiptWorker).
    Concurrent process_* calls on one instance raise PipelineBusyError.
    """

    def __init__(
        self,
        general: Optional[OCRBackend] = None,
        specialized: Optional[OCRBackend] = None,
        semantic: Optional[SemanticExtractor] = None,
        preprocessor: Optional[ImagePreprocessor] = None,
        parser: Optional[ReceiptParser] = None,
        preference_store: Optional[PreferenceStore] = None,
    ):
        self.general = general or TesseractBackend()
        self.specialized = specialized if specialized is not None else PaddleOCRBackend()
        self.semantic = semantic
        self.preprocessor = preprocessor or ImagePreprocessor()
        self.parser = parser or ReceiptParser()
        self.preference_store = preference_store or PreferenceStore()

        self.preferences = self.preference_store.load()
        self.router = EngineRouter(self.general, self.specialized, self.preferences.engine_mode)

        self._state = ProcessingState()
        self._listeners: List[StateListener] = []
        self._state_lock = threading.Lock()
        self._init_lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._scripts: Optional[List[ScriptHint]] = None
        self._model_size = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ProcessingState:
        return self._state

    @property
    def model_size(self) -> int:
        return self._model_size

    @property
    def engine_mode(self) -> EngineMode:
        return self.preferences.engine_mode

    @property
    def processing_mode(self) -> ProcessingMode:
        return self.preferences.processing_mode

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Register a listener for state snapshots.

        Returns:
            Callable that removes the listener
        """
        with self._state_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._state_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _update(self, **changes) -> None:
        with self._state_lock:
            self._state = replace(self._state, **changes)
            snapshot = self._state
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.warning("State listener failed", exc_info=True)

    def _reset_state(self) -> None:
        with self._state_lock:
            self._state = ProcessingState()
        self._update()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, scripts: Optional[Iterable] = None) -> None:
        """
        Initialise the general OCR engine for the given scripts.

        Idempotent: a no-op when already initialised with the same scripts.
        Concurrent callers wait for the in-flight initialisation.

        Raises:
            EngineError: Engine could not be initialised (is_ready stays False)
        """
        hints = parse_script_hints(scripts if scripts is not None else settings.DEFAULT_SCRIPTS)

        with self._init_lock:
            if self._scripts == hints and self.general.is_ready:
                return

            self._update(is_initializing=True, status="Initializing OCR engine...")
            try:
                self.general.initialize(hints)
            except EngineError as e:
                logger.error("OCR engine initialisation failed: %s", e)
                # Never leave the engine loaded for the previous scripts
                self.general.terminate()
                self._scripts = None
                self._model_size = 0
                self._update(is_ready=False, is_initializing=False, last_error=str(e), status="")
                raise

            self._scripts = hints
            self.router.set_scripts(hints)
            self._model_size = get_estimated_model_size(hints)
            self._update(is_ready=True, is_initializing=False, status="OCR engine ready")
            logger.info("OCR engine ready", extra={"scripts": [h.value for h in hints]})

    def terminate(self) -> None:
        """Tear down engine state and reset ProcessingState. In-flight OCR runs to completion."""
        with self._init_lock:
            self.general.terminate()
            if self.specialized is not None:
                self.specialized.terminate()
            if self.semantic is not None:
                self.semantic.terminate()
            self._scripts = None
            self._model_size = 0
        self._reset_state()
        logger.info("OCR engines terminated")

    def can_process_offline(self) -> bool:
        return self._state.is_ready

    def set_engine_mode(self, mode, persist: bool = True) -> None:
        """Switch the OCR engine; persist=False applies it to this process only."""
        mode = EngineMode(mode)
        self.preferences = self.preferences.model_copy(update={"engine_mode": mode})
        self.router.mode = mode
        if persist:
            self.preference_store.save(self.preferences)

    def set_processing_mode(self, mode) -> None:
        mode = ProcessingMode(mode)
        self.preferences = self.preferences.model_copy(update={"processing_mode": mode})
        self.preference_store.save(self.preferences)

    def preload_models(self, scripts: Optional[Iterable] = None, include_semantic_model: bool = True) -> None:
        """
        Make every model the current preferences need available offline.

        The specialised engine is optional: if it cannot load, the general
        engine still serves every mode, so that failure is only logged.

        Raises:
            EngineError: General OCR or semantic model could not be loaded
        """
        self._update(status="Downloading OCR models for offline use...", progress=0)
        try:
            self.initialize(scripts)
            self._update(progress=50)

            if self.engine_mode != EngineMode.TESSERACT and self.specialized is not None:
                try:
                    self.specialized.initialize(self._scripts or [])
                except EngineError:
                    logger.warning("Specialised OCR engine unavailable", exc_info=True)

            if include_semantic_model and self.processing_mode == ProcessingMode.ENHANCED \
                    and self.semantic is not None:
                self._update(status="Downloading semantic model...")
                self.semantic.preload_model()
                self._update(semantic_model_ready=True)
        except ReceiptOCRError:
            self._update(last_error="Failed to download models", status="")
            raise

        self._update(progress=100, status="All models ready for offline use")

    def initialize_enhanced_mode(self) -> None:
        """
        Switch to Enhanced mode and load OCR plus the semantic model.

        Raises:
            EngineError: No semantic extractor configured, or loading failed
        """
        self.set_processing_mode(ProcessingMode.ENHANCED)
        self._update(status="Initializing enhanced mode...")
        try:
            self.initialize(self._scripts)
            if self.semantic is None:
                raise EngineError("No semantic extractor configured")
            self.semantic.initialize()
        except ReceiptOCRError:
            self._update(last_error="Failed to initialize enhanced mode", status="")
            raise

        self._update(semantic_model_ready=True, status="Enhanced mode ready")

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_receipt(self, image_data: bytes) -> ProcessingResult:
        """
        Extract transactions from one receipt photo.

        Args:
            image_data: Encoded image bytes

        Returns:
            ProcessingResult (confidence 0-1)

        Raises:
            PipelineBusyError: Another run is in flight
            ProcessingError: Unreadable input or pipeline failure
            EngineError: OCR engine unavailable
        """
        with self._single_flight():
            start = time.perf_counter()
            try:
                image = self.preprocessor.load(image_data)
                self._ensure_initialized()

                ocr_result = self._recognize(image, report_progress=True)
                receipt = self._extract(ocr_result, report_progress=True)
                self._update(progress=90)

                transactions = convert_to_transactions(receipt)
                processing_time_ms = (time.perf_counter() - start) * 1000

                logger.info("Processed receipt", extra={
                    "merchant": receipt.merchant,
                    "transactions": len(transactions),
                    "ocr_confidence": round(ocr_result.confidence, 1),
                    "processing_time_ms": round(processing_time_ms),
                })
                self._update(progress=100)

                return ProcessingResult(
                    transactions=transactions,
                    raw_text=ocr_result.text,
                    confidence=ocr_result.confidence / 100.0,
                    processing_time_ms=processing_time_ms,
                )
            except ReceiptOCRError as e:
                logger.error("Receipt processing failed: %s", e)
                self._update(last_error=str(e))
                raise

    def process_multiple_images(self, images: List[bytes]) -> ProcessingResult:
        """
        Extract transactions from several overlapping photos of one receipt.

        Images are processed one after another in the given (top to bottom)
        order. An image whose preprocessing fails is skipped and its index
        reported in failed_images; the others still go through.

        Raises:
            PipelineBusyError: Another run is in flight
            ProcessingError: No images, unreadable input, or every image failed
            EngineError: OCR engine unavailable
        """
        if not images:
            raise ProcessingError("No images to process")

        with self._single_flight():
            start = time.perf_counter()
            try:
                decoded = [self.preprocessor.load(data) for data in images]
                self._ensure_initialized()

                all_transactions: List[LocalTransaction] = []
                texts: List[str] = []
                confidences: List[float] = []
                failed: List[int] = []

                for index, image in enumerate(decoded):
                    self._update(
                        status=f"Processing image {index + 1} of {len(decoded)}...",
                        progress=round(index / len(decoded) * 100),
                    )
                    try:
                        ocr_result = self._recognize(image, report_progress=False)
                    except PreprocessingError:
                        logger.warning("Skipping image after preprocessing failure",
                                       extra={"image_index": index}, exc_info=True)
                        failed.append(index)
                        continue

                    texts.append(ocr_result.text)
                    confidences.append(ocr_result.confidence)
                    receipt = self._extract(ocr_result, report_progress=False)
                    all_transactions.extend(convert_to_transactions(receipt))

                if not confidences:
                    raise ProcessingError("Every image failed preprocessing")

                transactions = deduplicate_transactions(all_transactions)
                processing_time_ms = (time.perf_counter() - start) * 1000

                logger.info("Processed multi-image receipt", extra={
                    "images": len(decoded),
                    "failed_images": failed,
                    "transactions": len(transactions),
                    "duplicates_removed": len(all_transactions) - len(transactions),
                })
                self._update(progress=100)

                return ProcessingResult(
                    transactions=transactions,
                    raw_text=MULTI_IMAGE_SEPARATOR.join(texts),
                    confidence=sum(confidences) / len(confidences) / 100.0,
                    processing_time_ms=processing_time_ms,
                    failed_images=failed,
                )
            except ReceiptOCRError as e:
                logger.error("Multi-image processing failed: %s", e)
                self._update(last_error=str(e))
                raise

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _single_flight(self):
        if not self._run_lock.acquire(blocking=False):
            raise PipelineBusyError("A receipt is already being processed")
        self._update(is_processing=True, progress=0, last_error=None)
        try:
            yield
        finally:
            self._update(is_processing=False, status="")
            self._run_lock.release()

    def _ensure_initialized(self) -> None:
        if not self.general.is_ready:
            self.initialize(self._scripts)

    def _orientation_detector(self) -> Optional[Callable[[Image.Image], Tuple[float, float]]]:
        return self.general.detect_orientation if self.general.is_ready else None

    def _recognize(self, image: Image.Image, report_progress: bool) -> OCRResult:
        if report_progress:
            self._update(status="Preprocessing image...")
        prepared = self.preprocessor.process(image, self._orientation_detector())

        if report_progress:
            self._update(status="Extracting text...", progress=20)
        ocr_result = self.router.recognize(prepared.image)
        if report_progress:
            self._update(progress=50)
        return ocr_result

    def _extract(self, ocr_result: OCRResult, report_progress: bool) -> ExtractedReceiptData:
        basic = self.parser.parse(ocr_result)

        if self.processing_mode != ProcessingMode.ENHANCED:
            if report_progress:
                self._update(status="Analyzing receipt...")
            return basic

        if self.semantic is None:
            logger.warning("Enhanced mode selected but no semantic extractor configured")
            return basic

        if report_progress:
            self._update(status="Applying semantic analysis...", progress=60)
        try:
            if not self.semantic.is_ready:
                self.semantic.initialize()
                self._update(semantic_model_ready=True)
            semantic_result = self.semantic.parse_receipt_text(ocr_result.text)
        except Exception:
            logger.warning("Semantic analysis failed, using heuristic fields only", exc_info=True)
            return basic

        if report_progress:
            self._update(progress=85)
        return merge_results(basic, semantic_result, ocr_result.confidence)
