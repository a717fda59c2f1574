"""
OCR backends for extracting text lines from preprocessed receipt images.

TesseractBackend is the general multi-script engine; PaddleOCRBackend is the
CJK-specialised engine and needs the optional ``cjk`` extra installed.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from enum import Enum
from typing import Iterable, List, Optional, Tuple

import numpy as np
import pytesseract
from PIL import Image
from pytesseract import Output, TesseractError

from offline_receipt.config import settings
from offline_receipt.errors import EngineError
from offline_receipt.models.ocr import BoundingBox, OCRLine, OCRResult
from offline_receipt.utils.scripts import ScriptHint

logger = logging.getLogger(__name__)


class PageSegMode(int, Enum):
    """Tesseract page segmentation modes used by the pipeline."""
    SINGLE_COLUMN = 4
    SINGLE_BLOCK = 6
    SPARSE_TEXT = 11


class OCRBackend(ABC):
    """
    Uniform recognition capability shared by both engines.

    Instances are stateful and not reentrant: callers must not run two
    recognitions on the same instance at once.
    """

    name = "ocr"

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        """True once initialize() has succeeded."""

    @abstractmethod
    def initialize(self, scripts: Iterable[ScriptHint]) -> None:
        """Load language data; raises EngineError on failure."""

    @abstractmethod
    def recognize(self, image: Image.Image, psm: PageSegMode = PageSegMode.SINGLE_BLOCK) -> OCRResult:
        """Recognise text in a preprocessed image."""

    def detect_orientation(self, image: Image.Image) -> Tuple[float, float]:
        """
        Dominant text rotation in degrees and a 0-1 confidence.

        Engines without orientation support report (0, 0.0).
        """
        return 0.0, 0.0

    def terminate(self) -> None:
        """Release engine resources."""


class TesseractBackend(OCRBackend):
    """General multi-script LSTM engine backed by pytesseract."""

    name = "tesseract"

    def __init__(self, tesseract_cmd: Optional[str] = None):
        pytesseract.pytesseract.tesseract_cmd = tesseract_cmd or settings.TESSERACT_CMD
        self._languages: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def is_ready(self) -> bool:
        return self._languages is not None

    @property
    def languages(self) -> Optional[str]:
        return self._languages

    def initialize(self, scripts: Iterable[ScriptHint]) -> None:
        """
        Check the tesseract binary and the traineddata for each script.

        Args:
            scripts: Scripts the receipts are expected to contain

        Raises:
            EngineError: Binary missing or a language pack not installed
        """
        wanted = [script.tesseract_language for script in scripts] or [ScriptHint.LATIN.tesseract_language]

        try:
            version = pytesseract.get_tesseract_version()
            installed = set(pytesseract.get_languages(config=''))
        except (TesseractError, OSError, RuntimeError) as e:
            raise EngineError(f"Tesseract is not available: {e}") from e

        missing = [lang for lang in wanted if lang not in installed]
        if missing:
            raise EngineError(f"Tesseract language data not installed: {', '.join(missing)}")

        self._languages = '+'.join(wanted)
        logger.info("Tesseract initialised", extra={"version": str(version), "languages": self._languages})

    def recognize(self, image: Image.Image, psm: PageSegMode = PageSegMode.SINGLE_BLOCK) -> OCRResult:
        """
        Run tesseract and group word boxes into lines.

        Args:
            image: Preprocessed grayscale image
            psm: Page segmentation mode

        Returns:
            OCRResult with one OCRLine per tesseract line
        """
        if not self.is_ready:
            raise EngineError("Tesseract backend is not initialised")

        config = f'--oem 1 --psm {int(psm)}'
        try:
            with self._lock:
                data = pytesseract.image_to_data(
                    image, lang=self._languages, config=config, output_type=Output.DICT)
        except (TesseractError, OSError, RuntimeError) as e:
            raise EngineError(f"Tesseract recognition failed: {e}") from e

        return self._build_result(data)

    def detect_orientation(self, image: Image.Image) -> Tuple[float, float]:
        try:
            with self._lock:
                osd = pytesseract.image_to_osd(image, output_type=Output.DICT)
        except (TesseractError, OSError, RuntimeError):
            logger.warning("Orientation detection failed", exc_info=True)
            return 0.0, 0.0

        angle = float(osd.get('orientation', 0))
        # OSD confidence is unbounded; ~10 and above is reliable
        confidence = min(1.0, float(osd.get('orientation_conf', 0.0)) / 10.0)
        return angle, confidence

    def terminate(self) -> None:
        self._languages = None

    def _build_result(self, data: dict) -> OCRResult:
        grouped: "OrderedDict[tuple, list]" = OrderedDict()
        word_confidences: List[float] = []

        for i, word in enumerate(data.get('text', [])):
            word = (word or '').strip()
            conf = float(data['conf'][i])
            if not word or conf < 0:
                continue
            key = (data['block_num'][i], data['par_num'][i], data['line_num'][i])
            grouped.setdefault(key, []).append(i)
            word_confidences.append(conf)

        lines: List[OCRLine] = []
        for indices in grouped.values():
            text = ' '.join(data['text'][i].strip() for i in indices)
            confidence = sum(float(data['conf'][i]) for i in indices) / len(indices)
            bbox = BoundingBox(
                x0=min(int(data['left'][i]) for i in indices),
                y0=min(int(data['top'][i]) for i in indices),
                x1=max(int(data['left'][i]) + int(data['width'][i]) for i in indices),
                y1=max(int(data['top'][i]) + int(data['height'][i]) for i in indices),
            )
            lines.append(OCRLine(text=text, confidence=confidence, bbox=bbox))

        confidence = sum(word_confidences) / len(word_confidences) if word_confidences else 0.0

        return OCRResult(
            text='\n'.join(line.text for line in lines),
            confidence=confidence,
            lines=lines,
            engine=self.name,
        )


class PaddleOCRBackend(OCRBackend):
    """CJK-specialised engine backed by PaddleOCR."""

    name = "paddleocr"

    def __init__(self, lang: Optional[str] = None):
        self.lang = lang or settings.PADDLE_LANG
        self._ocr = None
        self._lock = threading.Lock()

    @property
    def is_ready(self) -> bool:
        return self._ocr is not None

    def initialize(self, scripts: Iterable[ScriptHint] = ()) -> None:
        if self._ocr is not None:
            return

        try:
            from paddleocr import PaddleOCR
        except ImportError as e:
            raise EngineError("PaddleOCR is not installed; install the 'cjk' extra") from e

        try:
            self._ocr = PaddleOCR(use_angle_cls=True, lang=self.lang, show_log=False)
        except Exception as e:
            raise EngineError(f"PaddleOCR failed to load models: {e}") from e

        logger.info("PaddleOCR initialised", extra={"lang": self.lang})

    def recognize(self, image: Image.Image, psm: PageSegMode = PageSegMode.SINGLE_BLOCK) -> OCRResult:
        # PaddleOCR does its own layout analysis; psm is ignored
        if not self.is_ready:
            raise EngineError("PaddleOCR backend is not initialised")

        np_img = np.array(image.convert('RGB'))
        try:
            with self._lock:
                result = self._ocr.ocr(np_img, cls=True)
        except Exception as e:
            raise EngineError(f"PaddleOCR recognition failed: {e}") from e

        lines: List[OCRLine] = []
        for entry in self._normalize_result(result):
            if not entry or len(entry) < 2:
                continue
            box, (text, score) = entry[0], entry[1][:2]
            if not text:
                continue
            xs = [int(point[0]) for point in box]
            ys = [int(point[1]) for point in box]
            lines.append(OCRLine(
                text=text,
                confidence=float(score) * 100.0,
                bbox=BoundingBox(min(xs), min(ys), max(xs), max(ys)),
            ))

        lines.sort(key=lambda line: (line.bbox.y0, line.bbox.x0))
        confidence = sum(line.confidence for line in lines) / len(lines) if lines else 0.0

        return OCRResult(
            text='\n'.join(line.text for line in lines),
            confidence=confidence,
            lines=lines,
            engine=self.name,
        )

    def terminate(self) -> None:
        self._ocr = None

    @staticmethod
    def _normalize_result(result) -> list:
        if not result:
            return []
        if len(result) == 1 and isinstance(result[0], list):
            if result[0] and isinstance(result[0][0], list) and len(result[0][0]) == 2:
                return result[0]
            if not result[0]:
                return []
        if len(result) == 1 and result[0] is None:
            return []
        return result
