"""
Tariff salary table and salary text extraction.

Typical first-year Ausbildung pay per collective agreement (EUR/month), based
on the 2025/2026 bargaining rounds. These are policy values, not computed;
bump TARIFF_TABLE_VERSION when changing any figure.
"""

import re
from typing import Dict, List, Optional

from core.models import TariffType

TARIFF_TABLE_VERSION = "2025.1"

TARIFF_FIRST_YEAR_SALARIES: Dict[TariffType, Optional[int]] = {
    TariffType.NONE: None,
    TariffType.IG_METALL: 1150,        # metal & electrical
    TariffType.VERDI: 1050,            # services, varies by sector
    TariffType.IG_BCE: 1100,           # mining, chemicals, energy
    TariffType.IG_BAU: 920,            # construction
    TariffType.NGG: 900,               # food & hospitality
    TariffType.TVOED: 1068,            # federal/municipal public sector
    TariffType.TV_L: 1068,             # state public sector
    TariffType.IT_TARIFVERTRAG: 1150,
    TariffType.EINZELHANDEL: 850,      # retail, varies by state
    TariffType.BANKING: 1150,
    TariffType.OTHER: 950,             # unnamed agreement, conservative
}

# Plausible monthly Ausbildung pay; anything outside is not a first-year figure.
MIN_PLAUSIBLE_SALARY = 500
MAX_PLAUSIBLE_SALARY = 2000

SALARY_KEYWORDS_DE = [
    'vergütung',
    'ausbildungsvergütung',
    'gehalt',
    'lehrjahr',
    '1. lehrjahr',
    'erstes lehrjahr',
    '1. ausbildungsjahr',
    'erstes ausbildungsjahr',
    'ausbildungsgehalt',
    'tarifvertrag',
    'tarif',
]

SALARY_KEYWORDS_EN = [
    'salary',
    'compensation',
    'first year',
    '1st year',
    'apprenticeship salary',
    'training salary',
]

SALARY_KEYWORDS: List[str] = SALARY_KEYWORDS_DE + SALARY_KEYWORDS_EN

FIRST_YEAR_MARKERS = [
    '1. lehrjahr',
    '1. ausbildungsjahr',
    'erstes lehrjahr',
    'erstes ausbildungsjahr',
    'im ersten jahr',
    'first year',
    '1st year',
]

AMOUNT_WITH_CURRENCY_RE = re.compile(
    r'(\d{1,2}[.,]?\d{3}|\d{3})(?:,\d{2})?\s*(?:eur\b|€|euro)', re.IGNORECASE
)
BARE_AMOUNT_RE = re.compile(r'\b(\d{3,4})\b')


def standard_first_year_salary(tariff_type: Optional[TariffType]) -> Optional[int]:
    """Standard first-year monthly pay for an agreement, None if undefined."""
    if not tariff_type or tariff_type == TariffType.NONE:
        return None
    return TARIFF_FIRST_YEAR_SALARIES.get(tariff_type)


def _plausible(amount: int) -> bool:
    return MIN_PLAUSIBLE_SALARY <= amount <= MAX_PLAUSIBLE_SALARY


def extract_salary_from_text(text: str) -> Optional[int]:
    """
    Pull a monthly Ausbildung salary out of free text.

    Amounts with a currency ("1.150 EUR", "1150€", "980 Euro") are tried
    first; otherwise bare 3-4 digit numbers close to a salary keyword.
    """
    clean = re.sub(r'\s+', ' ', (text or '').lower())
    if not clean:
        return None

    for match in AMOUNT_WITH_CURRENCY_RE.finditer(clean):
        amount = int(re.sub(r'[.,]', '', match.group(1)))
        if _plausible(amount):
            return amount

    for keyword in SALARY_KEYWORDS:
        index = clean.find(keyword)
        if index == -1:
            continue
        context = clean[max(0, index - 50):index + 100]
        for number in BARE_AMOUNT_RE.finditer(context):
            amount = int(number.group(1))
            if _plausible(amount):
                return amount

    return None


def is_first_year_salary(text: str) -> bool:
    """True if the text talks about the first training year."""
    lower = (text or '').lower()
    return any(marker in lower for marker in FIRST_YEAR_MARKERS)


def has_salary_keyword(text: str) -> bool:
    lower = (text or '').lower()
    return any(keyword in lower for keyword in SALARY_KEYWORDS)
