"""
Locale keyword tables used by the receipt parser.

Every table is keyed by ScriptHint so a new locale is added by adding
entries, never by touching parser code. The parser applies all scripts'
rules at once because mixed-script receipts are common.
"""

from dataclasses import dataclass, field
from typing import Dict, List
import re

from .scripts import ScriptHint


@dataclass(frozen=True)
class PatternSpec:
    """A named, precompiled regex; the name is logged when a total matches."""
    name: str
    pattern: str
    flags: int = re.IGNORECASE
    compiled: re.Pattern = field(default=None, init=False, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, 'compiled', re.compile(self.pattern, self.flags))


def _compile(patterns: List[str], flags: int = re.IGNORECASE) -> List[re.Pattern]:
    return [re.compile(p, flags) for p in patterns]


def flatten(table: Dict[ScriptHint, list]) -> list:
    """All entries of a per-script table, in ScriptHint order."""
    return [entry for script in ScriptHint for entry in table.get(script, [])]


# ---------------------------------------------------------------------------
# Currency
# ---------------------------------------------------------------------------

# Multi-character symbols are counted (and removed) before single ones.
PREFIXED_CURRENCY_SYMBOLS = {
    'NT$': 'TWD',
    'HK$': 'HKD',
}

CURRENCY_SYMBOLS = {
    '$': 'USD',
    '€': 'EUR',
    '£': 'GBP',
    '¥': 'JPY',
    '￥': 'JPY',
    '฿': 'THB',
    '₩': 'KRW',
}

CURRENCY_CODE_PATTERNS = {
    'USD': re.compile(r'\bUSD\b|\bUS\$|\bU\.S\.', re.IGNORECASE),
    'EUR': re.compile(r'\bEUR\b|\bEURO\b', re.IGNORECASE),
    'GBP': re.compile(r'\bGBP\b|\bSTERLING\b', re.IGNORECASE),
    'JPY': re.compile(r'\bJPY\b|円|日本円', re.IGNORECASE),
    'CNY': re.compile(r'\bCNY\b|\bRMB\b|人民币', re.IGNORECASE),
    'THB': re.compile(r'\bTHB\b|\bBAHT\b', re.IGNORECASE),
    'KRW': re.compile(r'\bKRW\b|\bWON\b|원', re.IGNORECASE),
    'TWD': re.compile(r'\bTWD\b|\bNT\$|台幣|新臺幣', re.IGNORECASE),
    'HKD': re.compile(r'\bHKD\b|\bHK\$|港幣', re.IGNORECASE),
    'SGD': re.compile(r'\bSGD\b|\bS\$', re.IGNORECASE),
    'AUD': re.compile(r'\bAUD\b|\bA\$', re.IGNORECASE),
    'CAD': re.compile(r'\bCAD\b|\bC\$', re.IGNORECASE),
}

# Yen-style amounts: 3+ digits, optional thousands groups, no decimal point
ZERO_DECIMAL_AMOUNT = re.compile(r'[¥￥]?\s*\d{3,}(?:[,，]\d{3})*(?!\.)')

DEFAULT_CURRENCY = 'USD'

# ---------------------------------------------------------------------------
# Merchant
# ---------------------------------------------------------------------------

MERCHANT_SKIP_PATTERNS: Dict[ScriptHint, List[re.Pattern]] = {
    ScriptHint.LATIN: _compile([
        r'^tel[:\s]', r'^phone[:\s]', r'^fax[:\s]',
        r'^\+?\d[\d\s-]{6,}',  # Phone numbers
        r'^www\.', r'^http', r'^@',
        r'register', r'receipt', r'invoice',
        r'^date[:\s]', r'^time[:\s]',
        r'^\d{2}[/-]\d{2}',  # Dates
        r'^\d{2}:\d{2}',  # Times
        r'^order\s*#', r'^ticket\s*#', r'^trans(?:action)?',
        r'^welcome', r'^thank',
        r'^table\s*\d', r'^server', r'^cashier',
        r'^\d+\s+\w+\s+(?:st|street|ave|avenue|rd|road|blvd|dr|drive|ln|lane|way)\b',  # Street addresses
        r'^\*+$', r'^-+$', r'^=+$',  # Decorative rules
    ]),
    ScriptHint.TRADITIONAL_CHINESE: _compile([
        r'^電話[:：\s]', r'^傳真[:：\s]', r'^地址[:：\s]',
        r'^發票', r'^統一編號', r'^統編',
        r'^日期[:：\s]', r'^時間[:：\s]',
        r'^訂單', r'^單號',
        r'^歡迎', r'^謝謝', r'^感謝',
        r'^服務員', r'^收銀',
        r'^(?:台|臺)(?:北|中|南)市',  # Addresses
    ]),
    ScriptHint.JAPANESE: _compile([
        r'^〒?\d{3}-?\d{4}',  # Postal code
        r'^(?:東京都|大阪府|京都府|北海道|.{2,3}県)',  # Prefecture (address)
        r'^(?:℡|TEL)',
        r'^レシート$|^領収書$|^領収証$',
        r'^登録番号|^インボイス|^適格請求書',
        r'^(?:店舗|店番|レジ|担当)',
        r'^ありがとう|^毎度',
        r'^営業時間',
    ]),
}

STORE_KEYWORDS: Dict[ScriptHint, re.Pattern] = {
    ScriptHint.LATIN: re.compile(
        r'store|shop|market|cafe|restaurant|bar|pub|mart|supermarket|convenience', re.IGNORECASE),
    ScriptHint.TRADITIONAL_CHINESE: re.compile(
        r'商店|超市|便利|餐廳|咖啡|店|行|公司|百貨|市場|藥局|書店|麵包|飲料'),
    ScriptHint.JAPANESE: re.compile(
        r'株式会社|有限会社|合同会社|㈱|㈲|ストア|スーパー|マート|ドラッグ|薬局'),
}

UNKNOWN_MERCHANT = 'Unknown Merchant'

# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------

# Dates and times opening a line: 01/15, 2024-01-15, 113/01/15, R6.01.15, 12:30
DATE_AT_START = re.compile(
    r'^(?:\d{2}[/-]\d{2}|\d{3,4}[/.-]\d{1,2}[/.-]\d{1,2}|[RH][ \t]*\d{1,2}[./-]\d{1,2}[./-]\d{1,2}|\d{2}:\d{2})',
    re.IGNORECASE,
)

ITEM_SKIP_PATTERNS: Dict[ScriptHint, List[re.Pattern]] = {
    ScriptHint.LATIN: _compile([
        r'^total', r'^subtotal', r'^sub-total',
        r'^tax', r'^vat', r'^gst',
        r'^cash', r'^change', r'^card', r'^payment',
        r'^visa', r'^mastercard', r'^amex',
        r'^balance', r'^amount due',
        r'^date', r'^time', r'^receipt', r'^invoice',
        r'^thank', r'^please',
        r'^tel', r'^phone', r'^fax',
        DATE_AT_START.pattern,
    ]),
    ScriptHint.TRADITIONAL_CHINESE: _compile([
        r'^總計', r'^應付', r'^實付', r'^找零', r'^現金',
        r'^信用卡', r'^發票', r'^統一編號', r'^營業稅',
        r'^謝謝', r'^感謝', r'^歡迎', r'^再見',
    ]),
    ScriptHint.JAPANESE: _compile([
        r'^合計', r'^小計', r'^税', r'^消費税', r'^内税', r'^外税',
        r'^お預[りか]', r'^お釣', r'^釣銭',
    ]),
}

# Descriptions containing these are totals/payments, not items
ITEM_DESCRIPTION_REJECT = re.compile(
    r'total|subtotal|合計|小計|總計|應付|實付|tax|税|營業稅|payment|cash|change|card|'
    r'找零|現金|信用卡|お預|お釣',
    re.IGNORECASE,
)

AMOUNT_AT_END = re.compile(
    r'((?:NT|HK)?[¥￥$€£฿]?\s*(?:\d{1,3}(?:,\d{3})+|\d+)(?:[.,]\d{1,2})?)\s*$'
)

QUANTITY_PREFIX = re.compile(r'^(\d+)\s*[x×@](?![a-z])\s*', re.IGNORECASE)

MIN_ITEM_AMOUNT = 0.01
MAX_ITEM_AMOUNT = 10000

# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------

_AMT = r'([¥￥$€£฿]?[ \t]*\d(?:[\d,.]*\d)?)'
_SEP = r'[:：\t ]*'
_TW_PREFIX = r'(?:NT\$|HK\$|\$)?[ \t]*'

# Ordered most to least specific. Every match is considered and the
# largest amount wins.
TOTAL_PATTERNS: Dict[ScriptHint, List[PatternSpec]] = {
    ScriptHint.LATIN: [
        PatternSpec('grand_total', r'grand[ \t]*total' + _SEP + _AMT),
        PatternSpec('total_due', r'total[ \t]*(?:due|payable|amount)' + _SEP + _AMT),
        PatternSpec('balance_due', r'balance[ \t]*(?:due)?' + _SEP + _AMT),
        PatternSpec('amount_due', r'amount[ \t]*(?:due)?' + _SEP + _AMT),
    ],
    ScriptHint.TRADITIONAL_CHINESE: [
        PatternSpec('tw_total', r'總計' + _SEP + _TW_PREFIX + _AMT, flags=0),
        PatternSpec('tw_sum', r'合計' + _SEP + _TW_PREFIX + _AMT, flags=0),
        PatternSpec('tw_payable', r'應付' + _SEP + _TW_PREFIX + _AMT, flags=0),
        PatternSpec('tw_paid', r'實付' + _SEP + _TW_PREFIX + _AMT, flags=0),
        PatternSpec('tw_amount', r'金額' + _SEP + _TW_PREFIX + _AMT, flags=0),
        PatternSpec('tw_subtotal', r'小計' + _SEP + _TW_PREFIX + _AMT, flags=0),
        PatternSpec('nt_dollar', r'NT[ \t]*\$[ \t]*(\d[\d,]*(?:\.\d+)?)'),
        PatternSpec('hk_dollar', r'HK[ \t]*\$[ \t]*(\d[\d,]*(?:\.\d+)?)'),
    ],
    ScriptHint.JAPANESE: [
        PatternSpec('jp_tax_included', r'税込合計' + _SEP + r'([¥￥]?[ \t]*\d[\d,]*)', flags=0),
        PatternSpec('jp_payment', r'お支払い?' + _SEP + r'([¥￥]?[ \t]*\d[\d,]*)', flags=0),
        PatternSpec('jp_billed', r'ご請求額' + _SEP + r'([¥￥]?[ \t]*\d[\d,]*)', flags=0),
        PatternSpec('jp_total', r'計' + _SEP + r'([¥￥]?[ \t]*\d[\d,]*)', flags=0),
    ],
}

GENERIC_TOTAL_PATTERNS: List[PatternSpec] = [
    PatternSpec('generic_total', r'(?<!sub)(?<!sub-)(?<!sub )total' + _SEP + _AMT),
    PatternSpec('sum', r'\bsum' + _SEP + _AMT),
    PatternSpec('to_pay', r'to[ \t]*pay' + _SEP + _AMT),
]

MAX_FALLBACK_TOTAL = 100000


def total_patterns() -> List[PatternSpec]:
    """Specific totals first (per script), generic keywords last."""
    return flatten(TOTAL_PATTERNS) + GENERIC_TOTAL_PATTERNS
