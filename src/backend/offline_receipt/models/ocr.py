"""
OCR result dataclasses shared by every backend.

Confidence on this layer is always on the engine's 0-100 scale.
"""

from dataclasses import dataclass, field
from typing import List


@dataclass(frozen=True)
class BoundingBox:
    """Pixel rectangle of a recognised line (x0, y0) top-left, (x1, y1) bottom-right."""
    x0: int
    y0: int
    x1: int
    y1: int


@dataclass(frozen=True)
class OCRLine:
    """One recognised text line."""
    text: str
    confidence: float  # 0-100
    bbox: BoundingBox


@dataclass(frozen=True)
class OCRResult:
    """Output of a single OCR invocation."""
    text: str
    confidence: float  # 0-100
    lines: List[OCRLine] = field(default_factory=list)
    engine: str = ""
