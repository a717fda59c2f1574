"""
Small text helpers for OCR output.
"""

import re

_OCR_FIXES = [
    (re.compile(r'[oO](?=\d)'), '0'),
    (re.compile(r'(?<=\d)[oO]'), '0'),
    (re.compile(r'[lI](?=\d)'), '1'),
    (re.compile(r'(?<=\d)[lI]'), '1'),
    (re.compile(r'[Ss](?=\d{2,})'), '$'),
    (re.compile(r'\s{2,}'), ' '),
]


def clean_ocr_text(text: str) -> str:
    """
    Fix common OCR character substitutions next to digits.

    "1O.5O" -> "10.50", "l2.99" -> "12.99", "S12.99" -> "$12.99".
    """
    for pattern, replacement in _OCR_FIXES:
        text = pattern.sub(replacement, text)
    return text.strip()


def capitalize_words(text: str) -> str:
    """Lower-case the text and capitalise the first letter of each word."""
    return re.sub(r'\b\w', lambda m: m.group(0).upper(), text.lower())


def normalize_line_key(text: str) -> str:
    """Lower-case and strip all whitespace; used to compare OCR lines."""
    return re.sub(r'\s+', '', text.lower())


def split_lines(text: str) -> list:
    """Split text into stripped, non-empty lines."""
    return [line.strip() for line in text.split('\n') if line.strip()]
