"""
Tests for transaction conversion and multi-image deduplication.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from decimal import Decimal

from offline_receipt.models.extraction import ExtractedItem, ExtractedReceiptData, LocalTransaction
from offline_receipt.services.aggregator import convert_to_transactions, deduplicate_transactions


def _txn(description, amount, confidence=0.8):
    return LocalTransaction(
        date="2024-01-15",
        description=description,
        amount=Decimal(amount),
        type='expense',
        currency="USD",
        confidence=confidence,
    )


def _receipt(items=(), total="0"):
    return ExtractedReceiptData(
        merchant="Walmart",
        date="2024-01-15",
        total=Decimal(total),
        currency="USD",
        items=list(items),
        confidence=0.9,
    )


class TestConvertToTransactions:

    def test_one_transaction_per_item(self):
        data = _receipt(
            items=[ExtractedItem("Milk", Decimal("3.99")), ExtractedItem("Bread", Decimal("2.50"))],
            total="6.49",
        )
        transactions = convert_to_transactions(data)

        assert [t.description for t in transactions] == ["Walmart: Milk", "Walmart: Bread"]
        assert [t.amount for t in transactions] == [Decimal("3.99"), Decimal("2.50")]
        assert all(t.type == 'expense' for t in transactions)
        assert all(t.confidence == 0.9 for t in transactions)

    def test_total_only(self):
        transactions = convert_to_transactions(_receipt(total="45.67"))
        assert len(transactions) == 1
        assert transactions[0].description == "Walmart"
        assert transactions[0].amount == Decimal("45.67")
        assert transactions[0].date == "2024-01-15"

    def test_nothing_found(self):
        assert convert_to_transactions(_receipt()) == []


class TestDeduplicate:

    def test_idempotent(self):
        transactions = [_txn("Walmart: Milk", "3.99"), _txn("Walmart: Milk", "3.99"), _txn("Walmart: Eggs", "4.00")]
        once = deduplicate_transactions(transactions)
        assert deduplicate_transactions(once) == once
        assert len(once) == 2

    def test_highest_confidence_survives_in_first_position(self):
        transactions = [
            _txn("Walmart: Milk", "3.99", confidence=0.6),
            _txn("Walmart: Eggs", "4.00"),
            _txn("Walmart: Milk", "3.99", confidence=0.9),
        ]
        result = deduplicate_transactions(transactions)

        assert [t.description for t in result] == ["Walmart: Milk", "Walmart: Eggs"]
        assert result[0].confidence == 0.9

    def test_equal_confidence_keeps_first(self):
        first = _txn("Walmart: Milk", "3.99")
        second = _txn("WALMART: MILK", "3.99")
        assert deduplicate_transactions([first, second]) == [first]

    def test_description_compared_on_twenty_characters(self):
        transactions = [
            _txn("Trader Joe's: Organic Bananas", "1.99"),
            _txn("Trader Joe's: Organic Apples", "1.99"),
        ]
        assert len(deduplicate_transactions(transactions)) == 1

    def test_amount_compared_to_the_cent(self):
        transactions = [_txn("Walmart: Milk", "3.994"), _txn("Walmart: Milk", "3.99"), _txn("Walmart: Milk", "3.98")]
        assert len(deduplicate_transactions(transactions)) == 2
