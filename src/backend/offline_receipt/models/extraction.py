"""
Structured extraction results and pipeline state.

Confidence on this layer is on the 0-1 scale; conversion from the OCR
0-100 scale happens in ReceiptParser.parse and merge_results.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional


@dataclass
class ExtractedItem:
    """A candidate line item."""
    description: str
    amount: Decimal
    quantity: Optional[int] = None


@dataclass
class ExtractedReceiptData:
    """Structured fields extracted from one receipt image."""
    merchant: str
    date: str  # YYYY-MM-DD
    total: Decimal
    currency: str
    items: List[ExtractedItem] = field(default_factory=list)
    confidence: float = 0.0


@dataclass
class LocalTransaction:
    """Externally visible transaction candidate."""
    date: str
    description: str
    amount: Decimal
    type: str  # 'income' | 'expense'
    currency: str
    confidence: float


@dataclass
class ProcessingResult:
    """Result of processing one receipt (one or several images)."""
    transactions: List[LocalTransaction]
    raw_text: str
    confidence: float
    processing_time_ms: float
    failed_images: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class ProcessingState:
    """
    Snapshot of a pipeline instance's mutable state.

    Listeners receive a fresh snapshot after every change.
    """
    is_ready: bool = False
    is_initializing: bool = False
    is_processing: bool = False
    progress: int = 0
    status: str = ""
    last_error: Optional[str] = None
    semantic_model_ready: bool = False
