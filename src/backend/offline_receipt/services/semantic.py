"""
Semantic extraction interface and heuristic/semantic result merging.

The semantic model itself (QA or embedding based) lives outside this
package; Enhanced mode only talks to it through SemanticExtractor.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from offline_receipt.models.extraction import ExtractedItem, ExtractedReceiptData
from offline_receipt.utils.money import to_cents
from offline_receipt.utils.patterns import DEFAULT_CURRENCY, UNKNOWN_MERCHANT

logger = logging.getLogger(__name__)

MERCHANT_CONFIDENCE_FLOOR = 0.5
DATE_CONFIDENCE_FLOOR = 0.4
TOTAL_CONFIDENCE_FLOOR = 0.5
ITEM_KEY_PREFIX = 10


@dataclass
class ParsedItem:
    """Line item proposed by the semantic model."""
    name: str
    price: Decimal
    quantity: Optional[int] = None
    confidence: float = 0.0


@dataclass
class SemanticParseResult:
    """Fields proposed by the semantic model, each with its own 0-1 confidence."""
    merchant: str = UNKNOWN_MERCHANT
    merchant_confidence: float = 0.0
    date: str = ""
    date_confidence: float = 0.0
    total: Decimal = Decimal('0')
    total_confidence: float = 0.0
    currency: str = DEFAULT_CURRENCY
    currency_confidence: float = 0.0
    items: List[ParsedItem] = field(default_factory=list)
    overall_confidence: float = 0.0


class SemanticExtractor(ABC):
    """Capability backing Enhanced processing mode."""

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        """True once the model is loaded."""

    @abstractmethod
    def initialize(self) -> None:
        """Load the model; must be idempotent."""

    @abstractmethod
    def parse_receipt_text(self, text: str) -> SemanticParseResult:
        """Extract receipt fields from OCR text."""

    def preload_model(self) -> None:
        """Download/cache the model for offline use."""
        self.initialize()

    def terminate(self) -> None:
        """Release the model."""


def _item_key(description: str, amount: Decimal) -> tuple:
    return description.lower()[:ITEM_KEY_PREFIX], to_cents(amount)


def merge_results(
    basic: ExtractedReceiptData,
    semantic: SemanticParseResult,
    ocr_confidence: float,
) -> ExtractedReceiptData:
    """
    Merge heuristic fields with semantic-model fields.

    A semantic value replaces the heuristic one only when its own confidence
    clears the per-field floor. Items are unioned, semantic items first.

    Args:
        basic: Heuristic extraction (confidence 0-1)
        semantic: Semantic extraction (confidences 0-1)
        ocr_confidence: Engine confidence on the 0-100 scale

    Returns:
        Merged ExtractedReceiptData
    """
    normalized_ocr_confidence = ocr_confidence / 100.0

    if semantic.merchant_confidence > MERCHANT_CONFIDENCE_FLOOR and semantic.merchant \
            and semantic.merchant != UNKNOWN_MERCHANT:
        merchant = semantic.merchant
    else:
        merchant = basic.merchant

    if semantic.date_confidence > DATE_CONFIDENCE_FLOOR and semantic.date:
        receipt_date = semantic.date
    else:
        receipt_date = basic.date

    if semantic.total_confidence > TOTAL_CONFIDENCE_FLOOR and semantic.total > 0:
        total = semantic.total
    else:
        total = basic.total or semantic.total

    # Whichever side did not fall back to the default wins
    if semantic.currency != DEFAULT_CURRENCY or basic.currency == DEFAULT_CURRENCY:
        currency = semantic.currency
    else:
        currency = basic.currency

    items: List[ExtractedItem] = []
    seen = set()
    for item in semantic.items:
        key = _item_key(item.name, item.price)
        if key not in seen:
            seen.add(key)
            items.append(ExtractedItem(description=item.name, amount=item.price, quantity=item.quantity))
    for item in basic.items:
        key = _item_key(item.description, item.amount)
        if key not in seen:
            seen.add(key)
            items.append(item)

    confidence = max(
        basic.confidence,
        semantic.overall_confidence,
        normalized_ocr_confidence * 0.5 + semantic.overall_confidence * 0.5,
    )

    return ExtractedReceiptData(
        merchant=merchant,
        date=receipt_date,
        total=total,
        currency=currency,
        items=items,
        confidence=min(1.0, confidence),
    )
