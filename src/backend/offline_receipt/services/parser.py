"""
Receipt parser service for extracting structured data from OCR text.

Locale-aware regex heuristics for merchant, date, currency, total and
line items. Keyword tables live in utils.patterns; calendars in utils.dates.
"""

import logging
import re
from collections import Counter
from datetime import date
from decimal import Decimal
from typing import List, Optional

from offline_receipt.models.extraction import ExtractedItem, ExtractedReceiptData
from offline_receipt.models.ocr import OCRResult
from offline_receipt.utils import patterns
from offline_receipt.utils.dates import extract_date
from offline_receipt.utils.money import MoneyFormat, parse_money, to_cents
from offline_receipt.utils.text import capitalize_words, clean_ocr_text, split_lines

logger = logging.getLogger(__name__)

ZERO = Decimal('0')

# Multipliers applied to the OCR confidence when a field is missing
UNKNOWN_MERCHANT_PENALTY = 0.8
ZERO_TOTAL_PENALTY = 0.7
NO_ITEMS_PENALTY = 0.8

MERCHANT_SCAN_LINES = 8
TRAILING_NUMBER = re.compile(r"\s\d+$")


def score_confidence(
    ocr_confidence: float,
    merchant: str,
    total: Decimal,
    items: List[ExtractedItem],
) -> float:
    """
    Data confidence on the 0-1 scale.

    Starts at OCR confidence / 100 and multiplies in a penalty for each
    missing field, so it can only go down as fields go missing.

    Args:
        ocr_confidence: Engine confidence, 0-100
        merchant: Extracted merchant name
        total: Extracted total
        items: Extracted items

    Returns:
        Confidence between 0.0 and 1.0
    """
    confidence = max(0.0, min(1.0, ocr_confidence / 100.0))
    if not merchant or merchant == patterns.UNKNOWN_MERCHANT:
        confidence *= UNKNOWN_MERCHANT_PENALTY
    if not total:
        confidence *= ZERO_TOTAL_PENALTY
    if not items:
        confidence *= NO_ITEMS_PENALTY
    return confidence


class ReceiptParser:
    """Service for parsing receipt text and extracting structured data."""

    def __init__(self):
        """Initialize parser with the locale tables."""
        self.merchant_skip_patterns = patterns.flatten(patterns.MERCHANT_SKIP_PATTERNS)
        self.store_keywords = list(patterns.STORE_KEYWORDS.values())
        self.item_skip_patterns = patterns.flatten(patterns.ITEM_SKIP_PATTERNS)
        self.total_patterns = patterns.total_patterns()

    def parse(self, ocr: OCRResult, today: Optional[date] = None) -> ExtractedReceiptData:
        """
        Parse an OCR result into structured receipt fields.

        Args:
            ocr: OCR output (confidence 0-100)
            today: Reference date for year-less dates and the date fallback

        Returns:
            ExtractedReceiptData with confidence on the 0-1 scale
        """
        text = ocr.text
        cleaned_lines = [clean_ocr_text(line) for line in split_lines(text)]

        currency = self.detect_currency(text)
        receipt_date = extract_date(text, today=today)
        merchant = self.extract_merchant(cleaned_lines)
        items = self.extract_items(cleaned_lines, currency)
        total = self.extract_total(text, currency) or self.infer_total_from_items(items)

        confidence = score_confidence(ocr.confidence, merchant, total, items)

        logger.debug("Parsed receipt", extra={
            "merchant": merchant,
            "date": receipt_date,
            "total": str(total),
            "currency": currency,
            "item_count": len(items),
            "confidence": round(confidence, 3),
        })

        return ExtractedReceiptData(
            merchant=merchant,
            date=receipt_date,
            total=total,
            currency=currency,
            items=items,
            confidence=confidence,
        )

    def detect_currency(self, text: str) -> str:
        """
        Detect the receipt currency.

        Tiers, first hit wins:
        1. Most frequent currency symbol (NT$/HK$ counted before bare $)
        2. Currency code or name (USD, EUR, 円, 원 ...)
        3. Yen-style amounts: 3+ digits and no decimal point anywhere
        4. USD
        """
        counts: Counter = Counter()
        remaining = text
        for symbol, code in patterns.PREFIXED_CURRENCY_SYMBOLS.items():
            occurrences = remaining.count(symbol)
            if occurrences:
                counts[code] += occurrences
                remaining = remaining.replace(symbol, ' ')

        for symbol, code in patterns.CURRENCY_SYMBOLS.items():
            occurrences = remaining.count(symbol)
            if occurrences:
                counts[code] += occurrences

        if counts:
            # most_common keeps first-seen order on ties
            return counts.most_common(1)[0][0]

        for code, pattern in patterns.CURRENCY_CODE_PATTERNS.items():
            if pattern.search(text):
                return code

        if patterns.ZERO_DECIMAL_AMOUNT.search(text) and '.' not in text:
            return 'JPY'

        return patterns.DEFAULT_CURRENCY

    def extract_date(self, text: str, today: Optional[date] = None) -> str:
        """Receipt date as YYYY-MM-DD, today's date when none is found."""
        return extract_date(text, today=today)

    def extract_merchant(self, lines: List[str]) -> str:
        """
        Pick the most likely merchant name from the receipt header.

        Args:
            lines: Cleaned, non-empty receipt lines

        Returns:
            Capitalised merchant name or "Unknown Merchant"
        """
        best_line = None
        best_score = None

        for index, line in enumerate(lines[:MERCHANT_SCAN_LINES]):
            if len(line) < 3 or len(line) > 50:
                continue
            if any(p.search(line) for p in self.merchant_skip_patterns):
                continue

            digits = sum(1 for ch in line if ch.isdigit())
            if digits / len(line) > 0.5:
                continue

            score = 10 - index

            if line == line.upper() and any('A' <= ch <= 'Z' for ch in line):
                score += 3

            if 5 <= len(line) <= 30:
                score += 2

            if any(p.search(line) for p in self.store_keywords):
                score += 3

            # "Store 123" is fine, "7-Eleven 2F" is not
            if digits and not TRAILING_NUMBER.search(line):
                score -= 2

            if best_score is None or score > best_score:
                best_line, best_score = line, score

        if best_line is None:
            return patterns.UNKNOWN_MERCHANT

        return capitalize_words(best_line)

    def extract_items(self, lines: List[str], currency: str) -> List[ExtractedItem]:
        """
        Extract line items: a description followed by an amount at line end.

        Args:
            lines: Cleaned, non-empty receipt lines
            currency: Detected currency (selects decimal-comma parsing for EUR)

        Returns:
            Items de-duplicated by (description, amount to cents)
        """
        items: List[ExtractedItem] = []
        seen = set()

        for line in lines:
            if any(p.search(line) for p in self.item_skip_patterns):
                continue
            if len(line) < 3 or len(line) > 100:
                continue

            match = patterns.AMOUNT_AT_END.search(line)
            if not match:
                continue

            amount = self._parse_amount(match.group(1), currency)
            if amount < Decimal(str(patterns.MIN_ITEM_AMOUNT)) or amount > patterns.MAX_ITEM_AMOUNT:
                continue

            description = line[:match.start()].strip()
            description = description.rstrip(' -:.\t')

            quantity = None
            qty_match = patterns.QUANTITY_PREFIX.match(description)
            if qty_match:
                quantity = int(qty_match.group(1))
                description = description[qty_match.end():].strip()

            if len(description) < 2:
                continue
            if patterns.ITEM_DESCRIPTION_REJECT.search(description):
                continue

            description = capitalize_words(description)
            key = (description.lower(), to_cents(amount))
            if key in seen:
                continue
            seen.add(key)

            items.append(ExtractedItem(description=description, amount=amount, quantity=quantity))

        return items

    def extract_total(self, text: str, currency: str) -> Decimal:
        """
        Extract the receipt total.

        Every keyword match across the whole text is considered and the
        largest amount is kept, so the most inclusive total wins over
        subtotals. Falls back to the largest amount standing alone at the
        end of a line (capped at 100,000).

        Args:
            text: Raw OCR text
            currency: Detected currency

        Returns:
            Total amount, Decimal('0') when nothing was found
        """
        best_total = ZERO
        best_pattern = None

        for spec in self.total_patterns:
            for match in spec.compiled.finditer(text):
                amount = self._parse_amount(match.group(1), currency)
                if amount > best_total:
                    best_total = amount
                    best_pattern = spec.name

        if best_total > 0:
            logger.debug("Total matched pattern %s: %s", best_pattern, best_total)
            return best_total

        for line in text.split('\n'):
            line = line.strip()
            if patterns.DATE_AT_START.search(line):
                continue
            match = patterns.AMOUNT_AT_END.search(line)
            if not match:
                continue
            amount = self._parse_amount(match.group(1), currency)
            if best_total < amount < patterns.MAX_FALLBACK_TOTAL:
                best_total = amount

        return best_total

    def infer_total_from_items(self, items: List[ExtractedItem]) -> Decimal:
        """Sum of item amounts (zero when there are no items)."""
        return sum((item.amount for item in items), ZERO)

    def _parse_amount(self, amount_str: str, currency: str) -> Decimal:
        # "€7.00" is still a decimal point; only a comma switches to 1.234,56
        if currency == 'EUR' and ',' in amount_str:
            format_hint = MoneyFormat.EUROPEAN
        else:
            format_hint = MoneyFormat.AUTO
        amount = parse_money(amount_str, format_hint=format_hint)
        return amount if amount is not None else ZERO

