"""
Multi-calendar receipt date parsing.

Supports Gregorian numeric and named-month forms, CJK 年月日 dates, the
Republic-of-China (Minguo) calendar and the Japanese Reiwa/Heisei eras.
Patterns are tried in order; the first one yielding a plausible date wins.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Optional
import logging
import re

logger = logging.getLogger(__name__)

MIN_YEAR = 2000
MAX_YEAR = 2100

MONTHS = {
    'jan': 1, 'feb': 2, 'mar': 3, 'apr': 4, 'may': 5, 'jun': 6,
    'jul': 7, 'aug': 8, 'sep': 9, 'oct': 10, 'nov': 11, 'dec': 12,
}

# Calendar offsets: gregorian_year = era_year + offset
ERA_OFFSETS = {
    'minguo': 1911,  # 民國1年 = 1912
    'reiwa': 2018,   # 令和1年 = 2019
    'heisei': 1988,  # 平成1年 = 1989
}

_MONTH_NAME = (
    r'(Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|Jun(?:e)?|Jul(?:y)?|'
    r'Aug(?:ust)?|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)'
)


@dataclass(frozen=True)
class DatePattern:
    """A named date regex and the order its groups come in."""
    name: str
    pattern: str
    layout: str  # 'ymd', 'dmy', 'mdy', 'month', 'day_month', 'era', 'roc_short', 'dm'
    era: Optional[str] = None
    flags: int = 0
    compiled: re.Pattern = field(default=None, init=False, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, 'compiled', re.compile(self.pattern, self.flags))


DATE_PATTERNS = [
    DatePattern('iso', r'(\d{4})-(\d{2})-(\d{2})', 'ymd'),
    DatePattern('ymd_slash', r'(\d{4})/(\d{1,2})/(\d{1,2})', 'ymd'),
    DatePattern('dmy_slash', r'(\d{1,2})/(\d{1,2})/(\d{4})', 'dmy'),
    DatePattern('mdy_dash', r'(\d{1,2})-(\d{1,2})-(\d{4})', 'mdy'),
    DatePattern('month_day_year', _MONTH_NAME + r'[.\s]+(\d{1,2})(?:st|nd|rd|th)?[,\s]+(\d{4})',
                'month', flags=re.IGNORECASE),
    DatePattern('day_month_year', r'(\d{1,2})(?:st|nd|rd|th)?[.\s]+' + _MONTH_NAME + r'[.,\s]+(\d{4})',
                'day_month', flags=re.IGNORECASE),
    DatePattern('cjk_ymd', r'(\d{4})\s*年\s*(\d{1,2})\s*月\s*(\d{1,2})\s*日', 'ymd'),
    DatePattern('minguo', r'民國\s*(\d{1,3})\s*年\s*(\d{1,2})\s*月\s*(\d{1,2})\s*日', 'era', era='minguo'),
    DatePattern('roc_short', r'(?<!\d)(\d{2,3})/(\d{1,2})/(\d{1,2})(?!\d)', 'roc_short'),
    DatePattern('reiwa', r'令和\s*(\d{1,2})\s*年\s*(\d{1,2})\s*月\s*(\d{1,2})\s*日', 'era', era='reiwa'),
    DatePattern('reiwa_short', r'(?<![A-Za-z])R\s*(\d{1,2})[./-](\d{1,2})[./-](\d{1,2})(?!\d)', 'era', era='reiwa'),
    DatePattern('heisei', r'平成\s*(\d{1,2})\s*年\s*(\d{1,2})\s*月\s*(\d{1,2})\s*日', 'era', era='heisei'),
    DatePattern('day_month_time', r'(?<!\d)(\d{1,2})/(\d{1,2})\s+\d{2}:\d{2}', 'dm'),
]


def _roc_short_year(value: int) -> int:
    # 113/01/15 -> 2024; 24/01/15 -> 2024
    if value > 50:
        return value + ERA_OFFSETS['minguo']
    return 2000 + value


def _components(spec: DatePattern, match: re.Match, today: date) -> Optional[tuple]:
    """Turn a match into (year, month, day) according to the pattern layout."""
    g = match.groups()
    layout = spec.layout

    if layout == 'ymd':
        return int(g[0]), int(g[1]), int(g[2])
    if layout == 'dmy':
        day, month, year = int(g[0]), int(g[1]), int(g[2])
        # US receipts print MM/DD/YYYY; a middle component above 12 can only be a day
        if month > 12 and day <= 12:
            day, month = month, day
        return year, month, day
    if layout == 'mdy':
        return int(g[2]), int(g[0]), int(g[1])
    if layout == 'month':
        return int(g[2]), MONTHS[g[0][:3].lower()], int(g[1])
    if layout == 'day_month':
        return int(g[2]), MONTHS[g[1][:3].lower()], int(g[0])
    if layout == 'era':
        return int(g[0]) + ERA_OFFSETS[spec.era], int(g[1]), int(g[2])
    if layout == 'roc_short':
        return _roc_short_year(int(g[0])), int(g[1]), int(g[2])
    if layout == 'dm':
        return today.year, int(g[1]), int(g[0])
    return None


def _is_plausible(year: int, month: int, day: int) -> bool:
    return MIN_YEAR <= year <= MAX_YEAR and 1 <= month <= 12 and 1 <= day <= 31


def parse_date(text: str, today: Optional[date] = None) -> Optional[str]:
    """
    Find the first plausible date in text.

    Args:
        text: Receipt text
        today: Reference date for year-less forms (defaults to today)

    Returns:
        Date in YYYY-MM-DD format or None

    Examples:
        >>> parse_date("令和6年1月15日")
        '2024-01-15'
        >>> parse_date("民國113年01月15日")
        '2024-01-15'
    """
    today = today or date.today()

    for spec in DATE_PATTERNS:
        for match in spec.compiled.finditer(text):
            components = _components(spec, match, today)
            if components and _is_plausible(*components):
                year, month, day = components
                logger.debug("Date matched pattern %s: %s", spec.name, match.group(0))
                return f"{year:04d}-{month:02d}-{day:02d}"

    return None


def extract_date(text: str, today: Optional[date] = None) -> str:
    """Like parse_date, but default to today's date when nothing matches."""
    today = today or date.today()
    return parse_date(text, today=today) or today.isoformat()
