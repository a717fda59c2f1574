"""
Transaction conversion and multi-image deduplication.
"""

from typing import Dict, List, Tuple

from offline_receipt.models.extraction import ExtractedReceiptData, LocalTransaction
from offline_receipt.utils.money import to_cents

DEDUP_DESCRIPTION_PREFIX = 20
MULTI_IMAGE_SEPARATOR = '\n---\n'


def convert_to_transactions(data: ExtractedReceiptData) -> List[LocalTransaction]:
    """
    Turn one receipt into expense transactions.

    One transaction per item ("Merchant: Item"); if there are no items, one
    for the total; if the total is zero as well, none.
    """
    if data.items:
        return [
            LocalTransaction(
                date=data.date,
                description=f"{data.merchant}: {item.description}",
                amount=item.amount,
                type='expense',
                currency=data.currency,
                confidence=data.confidence,
            )
            for item in data.items
        ]

    if data.total > 0:
        return [LocalTransaction(
            date=data.date,
            description=data.merchant,
            amount=data.total,
            type='expense',
            currency=data.currency,
            confidence=data.confidence,
        )]

    return []


def dedup_key(transaction: LocalTransaction) -> Tuple[str, object]:
    return transaction.description.lower()[:DEDUP_DESCRIPTION_PREFIX], to_cents(transaction.amount)


def deduplicate_transactions(transactions: List[LocalTransaction]) -> List[LocalTransaction]:
    """
    Drop duplicates recovered from overlapping photos of one receipt.

    Duplicates share (first 20 chars of description, amount to cents); the
    one with the highest confidence survives, in first-seen position.
    """
    seen: Dict[tuple, LocalTransaction] = {}
    for transaction in transactions:
        key = dedup_key(transaction)
        existing = seen.get(key)
        if existing is None or transaction.confidence > existing.confidence:
            seen[key] = transaction
    return list(seen.values())
