"""
Writing-script hints and text-level script detection.
"""

from enum import Enum
from typing import Iterable, List, Optional
import re


class ScriptHint(Enum):
    """Scripts the OCR engines can be initialised for."""
    LATIN = "latin"
    JAPANESE = "japanese"
    TRADITIONAL_CHINESE = "traditional_chinese"

    @property
    def tesseract_language(self) -> str:
        return _TESSERACT_LANGUAGES[self]


_TESSERACT_LANGUAGES = {
    ScriptHint.LATIN: 'eng',
    ScriptHint.JAPANESE: 'jpn',
    ScriptHint.TRADITIONAL_CHINESE: 'chi_tra',
}

CJK_IDEOGRAPH_RE = re.compile(r'[一-鿿]')
KANA_RE = re.compile(r'[぀-ヿ]')
HANGUL_RE = re.compile(r'[가-힯]')
CJK_ANY_RE = re.compile(r'[぀-ヿ㐀-䶿一-鿿豈-﫿＀-￯]')

# Lexical markers that identify a CJK receipt even when the glyphs were
# misread as Latin noise (currency and invoice keywords).
CJK_MARKERS = [
    re.compile(r'NT\s*\$|HK\s*\$'),
    re.compile(r'[円￥]'),
    re.compile(r'發票|統一編號|收據|領収|レシート|合計|小計|税込'),
    re.compile(r'民國\s*\d{1,3}\s*年|令和|平成'),
]

TRADITIONAL_INDICATORS = [
    re.compile(r'[國學經濟體會認識處區過頭車開關門問間機標導計設說讓運進選還類題點應]'),
    re.compile(r'臺灣|臺北|香港|收據|發票|統一編號'),
    re.compile(r'民國\d{1,3}年'),
    re.compile(r'NT\$|HK\$|港幣|台幣'),
]


def parse_script_hints(values: Iterable) -> List[ScriptHint]:
    """Coerce strings or ScriptHint members into an ordered, de-duplicated list."""
    hints: List[ScriptHint] = []
    for value in values:
        hint = value if isinstance(value, ScriptHint) else ScriptHint(str(value).lower())
        if hint not in hints:
            hints.append(hint)
    return hints


def contains_chinese_characters(text: str) -> bool:
    """True when more than 20% of the characters are CJK ideographs."""
    if not text:
        return False
    matches = CJK_IDEOGRAPH_RE.findall(text)
    return len(matches) / len(text) > 0.2


def detect_traditional_chinese(text: str) -> bool:
    """True when the text carries Traditional Chinese-only glyphs or Taiwan/HK markers."""
    return any(pattern.search(text) for pattern in TRADITIONAL_INDICATORS)


def cjk_routing_reason(text: str, sample_size: int = 500) -> Optional[str]:
    """
    Quick script check on the head of an OCR transcript.

    Used by the engine router after a single fast pass. Returns the first
    reason the sample counts as CJK, or None for a Latin receipt.
    """
    sample = text[:sample_size]
    if detect_traditional_chinese(sample):
        return "traditional_chinese"
    if contains_chinese_characters(sample):
        return "chinese"
    if KANA_RE.search(sample):
        return "kana"
    if HANGUL_RE.search(sample):
        return "hangul"
    # A few stray ideographs or fullwidth forms among Latin noise
    if CJK_ANY_RE.search(sample):
        return "cjk_glyphs"
    if any(marker.search(sample) for marker in CJK_MARKERS):
        return "marker"
    return None

