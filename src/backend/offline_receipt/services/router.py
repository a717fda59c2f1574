"""
OCR engine selection.

Routes each image to the general engine, the CJK-specialised engine, or a
hybrid that runs one quick general pass and decides from its text.
"""

import logging
from enum import Enum
from typing import Iterable, List, Optional

from PIL import Image

from offline_receipt.errors import EngineError
from offline_receipt.models.ocr import OCRResult
from offline_receipt.services.multipass import MultiPassOCR
from offline_receipt.services.ocr import OCRBackend, PageSegMode
from offline_receipt.utils.scripts import ScriptHint, cjk_routing_reason

logger = logging.getLogger(__name__)


class EngineMode(str, Enum):
    TESSERACT = "tesseract"
    SPECIALIZED = "paddleocr"
    AUTO = "auto"


class EngineRouter:
    """
    Chooses which OCR engine reads an image.

    The specialised engine is initialised lazily on first use and any
    failure there falls back to the general engine for that call.
    """

    def __init__(
        self,
        general: OCRBackend,
        specialized: Optional[OCRBackend] = None,
        mode: EngineMode = EngineMode.AUTO,
    ):
        self.general = general
        self.specialized = specialized
        self.mode = EngineMode(mode)
        self.multipass = MultiPassOCR(general)
        self._scripts: List[ScriptHint] = []

    def set_scripts(self, scripts: Iterable[ScriptHint]) -> None:
        self._scripts = list(scripts)

    def recognize(self, image: Image.Image) -> OCRResult:
        """
        Recognise an image using the current engine mode.

        Raises:
            EngineError: The general engine failed (the specialised engine never surfaces errors)
        """
        if self.mode == EngineMode.TESSERACT:
            return self.multipass.recognize(image)
        elif self.mode == EngineMode.SPECIALIZED:
            return self._recognize_specialized(image)
        elif self.mode == EngineMode.AUTO:
            return self._recognize_auto(image)
        raise ValueError(f"Unknown engine mode: {self.mode}")

    def _recognize_specialized(self, image: Image.Image, fallback_first_pass: Optional[OCRResult] = None) -> OCRResult:
        if self.specialized is None:
            return self.multipass.recognize(image, first_pass=fallback_first_pass)

        try:
            if not self.specialized.is_ready:
                self.specialized.initialize(self._scripts)
            return self.specialized.recognize(image)
        except EngineError:
            logger.warning("Specialised engine failed, falling back to %s",
                           self.general.name, exc_info=True)
            return self.multipass.recognize(image, first_pass=fallback_first_pass)

    def _recognize_auto(self, image: Image.Image) -> OCRResult:
        quick = self.general.recognize(image, PageSegMode.SINGLE_BLOCK)

        reason = cjk_routing_reason(quick.text)
        if reason is not None and self.specialized is not None:
            logger.info("CJK content detected (%s), routing to %s", reason, self.specialized.name)
            return self._recognize_specialized(image, fallback_first_pass=quick)

        return self.multipass.recognize(image, first_pass=quick)
