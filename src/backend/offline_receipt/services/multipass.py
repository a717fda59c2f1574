"""
Confidence-driven multi-pass OCR on the general engine.
"""

import logging
from typing import List, Optional

from PIL import Image

from offline_receipt.models.ocr import OCRLine, OCRResult
from offline_receipt.services.ocr import OCRBackend, PageSegMode
from offline_receipt.utils.text import normalize_line_key

logger = logging.getLogger(__name__)

EXCELLENT_CONFIDENCE = 85.0
GOOD_CONFIDENCE = 70.0
MERGE_LINE_MIN_CONFIDENCE = 60.0
CLEAR_WINNER_MARGIN = 10.0
MIN_MERGE_LINE_LENGTH = 3


def merge_passes(results: List[OCRResult]) -> OCRResult:
    """
    Merge several OCR passes over the same image.

    A pass more than 10 points ahead of the runner-up is returned outright.
    Otherwise the best pass's lines are kept and confident lines only seen
    by other passes are added, then everything is re-sorted top to bottom.
    """
    if not results:
        return OCRResult(text="", confidence=0.0)

    ranked = sorted(results, key=lambda r: r.confidence, reverse=True)
    best = ranked[0]
    if len(ranked) == 1 or best.confidence - ranked[1].confidence > CLEAR_WINNER_MARGIN:
        return best

    merged: List[OCRLine] = []
    seen = set()

    for line in best.lines:
        key = normalize_line_key(line.text)
        if len(key) < MIN_MERGE_LINE_LENGTH or key in seen:
            continue
        seen.add(key)
        merged.append(line)

    for other in ranked[1:]:
        for line in other.lines:
            key = normalize_line_key(line.text)
            if len(key) < MIN_MERGE_LINE_LENGTH or key in seen:
                continue
            if line.confidence > MERGE_LINE_MIN_CONFIDENCE:
                seen.add(key)
                merged.append(line)

    merged.sort(key=lambda line: line.bbox.y0)

    return OCRResult(
        text='\n'.join(line.text for line in merged),
        confidence=best.confidence,
        lines=merged,
        engine=best.engine,
    )


class MultiPassOCR:
    """Runs the general engine under several page segmentation modes."""

    def __init__(self, backend: OCRBackend):
        self.backend = backend

    def recognize(self, image: Image.Image, first_pass: Optional[OCRResult] = None) -> OCRResult:
        """
        Recognise an image, retrying with other layouts while confidence is poor.

        Args:
            image: Preprocessed image
            first_pass: An already computed single-block pass to reuse

        Returns:
            Best or merged OCRResult
        """
        result = first_pass or self.backend.recognize(image, PageSegMode.SINGLE_BLOCK)

        if result.confidence >= EXCELLENT_CONFIDENCE:
            logger.debug("Single block pass excellent", extra={"confidence": result.confidence})
            return result
        if result.confidence >= GOOD_CONFIDENCE:
            logger.debug("Single block pass good", extra={"confidence": result.confidence})
            return result

        passes = [result]

        column = self.backend.recognize(image, PageSegMode.SINGLE_COLUMN)
        if column.confidence >= GOOD_CONFIDENCE:
            logger.debug("Single column pass good", extra={"confidence": column.confidence})
            return column
        passes.append(column)

        passes.append(self.backend.recognize(image, PageSegMode.SPARSE_TEXT))

        merged = merge_passes(passes)
        logger.info("Merged OCR passes", extra={
            "passes": [round(p.confidence, 1) for p in passes],
            "confidence": round(merged.confidence, 1),
            "lines": len(merged.lines),
        })
        return merged
