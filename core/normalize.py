"""
Deterministic normalization of extracted job fields.

- benefit phrases -> standardized benefit tags
- tech stack -> lowercase, deduplicated, sorted
- German/English date text -> datetime.date
- small helpers for locations and salary averages
"""

import logging
import math
import re
from datetime import date, datetime
from typing import Iterable, List, Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)


# Benefit phrase -> tag. Order matters: the first key that matches wins.
BENEFIT_TAGS = {
    # Vacation
    '30 tage urlaub': 'VACATION_30',
    '30 days': 'VACATION_30',
    '30 days off': 'VACATION_30',
    'urlaub': 'VACATION_25',
    'vacation': 'VACATION_25',

    # Salary & financial
    '13th salary': 'SALARY_13TH',
    '13. gehalt': 'SALARY_13TH',
    'weihnachtsgeld': 'SALARY_13TH',
    'urlaubsgeld': 'VACATION_PAY',
    'bonus': 'SALARY_BONUS',
    'erfolgsbeteiligung': 'PERFORMANCE_BONUS',
    'prämie': 'SALARY_BONUS',
    'altersvorsorge': 'PENSION_PLAN',
    'betriebliche altersvorsorge': 'PENSION_PLAN',
    'vermögenswirksame': 'VL',
    'vwl': 'VL',

    # Food & wellness
    'free food': 'FREE_FOOD',
    'kostenloses essen': 'FREE_FOOD',
    'free lunch': 'FREE_FOOD',
    'mittagessen': 'FREE_FOOD',
    'kantine': 'CANTEEN',
    'free coffee': 'FREE_COFFEE',
    'kaffee': 'FREE_COFFEE',
    'obst': 'FREE_SNACKS',
    'getränke': 'FREE_DRINKS',
    'gym': 'GYM',
    'fitness': 'GYM',
    'fitnessstudio': 'GYM',
    'gesundheitsförderung': 'HEALTH_PROMOTION',
    'health insurance': 'HEALTH_INSURANCE',
    'krankenkasse': 'HEALTH_INSURANCE',
    'massages': 'WELLNESS',
    'massage': 'WELLNESS',

    # Equipment
    'laptop': 'LAPTOP',
    'notebook': 'LAPTOP',
    'computer': 'LAPTOP',
    'tablet': 'TABLET',
    'smartphone': 'COMPANY_PHONE',
    'handy': 'COMPANY_PHONE',
    'equipment': 'TECH_EQUIPMENT',

    # Work arrangement
    'home office': 'HOME_OFFICE',
    'remote': 'HOME_OFFICE',
    'homeoffice': 'HOME_OFFICE',
    'mobiles arbeiten': 'REMOTE_WORK',
    'flexible working': 'FLEXIBLE_HOURS',
    'flexible hours': 'FLEXIBLE_HOURS',
    'gleitzeit': 'FLEXIBLE_HOURS',
    'teilzeit': 'PART_TIME_OPTION',
    '4-tage-woche': 'FOUR_DAY_WEEK',

    # Mobility
    'bahn card': 'BAHN_CARD',
    'bahncard': 'BAHN_CARD',
    'public transport': 'PUBLIC_TRANSPORT',
    'jobticket': 'PUBLIC_TRANSPORT',
    'deutschlandticket': 'PUBLIC_TRANSPORT',
    'firmenwagen': 'COMPANY_CAR',
    'car': 'CAR_BENEFIT',
    'parking': 'PARKING',
    'parkplatz': 'PARKING',
    'fahrrad': 'BIKE_LEASE',
    'bike leasing': 'BIKE_LEASE',
    'jobrad': 'BIKE_LEASE',

    # Learning & development
    'weiterbildung': 'TRAINING',
    'training': 'TRAINING',
    'fortbildung': 'TRAINING',
    'courses': 'TRAINING',
    'schulung': 'TRAINING',
    'education': 'TRAINING',
    'ausbildung': 'TRAINING',
    'english course': 'ENGLISH_COURSE',
    'sprachkurs': 'LANGUAGE_COURSE',
    'coaching': 'COACHING',
    'mentoring': 'MENTORING',
    'karriereentwicklung': 'CAREER_DEVELOPMENT',

    # Work environment
    'team events': 'TEAM_EVENTS',
    'teamevents': 'TEAM_EVENTS',
    'betriebsfest': 'COMPANY_EVENTS',
    'firmenevents': 'COMPANY_EVENTS',
    'modern office': 'MODERN_OFFICE',
    'moderne büros': 'MODERN_OFFICE',
    'küche': 'KITCHEN',

    # Family
    'kindergarten': 'DAYCARE',
    'kita': 'DAYCARE',
    'kinderbetreuung': 'CHILDCARE',
    'elternzeit': 'PARENTAL_LEAVE',
    'sabbatical': 'SABBATICAL',

    # Wellbeing
    'mental health': 'MENTAL_HEALTH',
    'therapy': 'MENTAL_HEALTH',
    'psychologische beratung': 'MENTAL_HEALTH',
    'sports': 'SPORTS',
    'sport': 'SPORTS',

    # Other
    'mitarbeiterrabatte': 'EMPLOYEE_DISCOUNTS',
    'employee discounts': 'EMPLOYEE_DISCOUNTS',
    'corporate benefits': 'EMPLOYEE_DISCOUNTS',
    'hund': 'PET_FRIENDLY',
    'pet friendly': 'PET_FRIENDLY',
    'haustier': 'PET_FRIENDLY',
    'unbefristet': 'PERMANENT_CONTRACT',
    'permanent': 'PERMANENT_CONTRACT',
    'übernahmegarantie': 'JOB_GUARANTEE',
    'übernahme': 'TAKEOVER_OPTION',
}

MONTHS = {
    'januar': 1, 'january': 1, 'jan': 1,
    'februar': 2, 'february': 2, 'feb': 2,
    'märz': 3, 'maerz': 3, 'march': 3, 'mär': 3, 'mar': 3,
    'april': 4, 'apr': 4,
    'mai': 5, 'may': 5,
    'juni': 6, 'june': 6, 'jun': 6,
    'juli': 7, 'july': 7, 'jul': 7,
    'august': 8, 'aug': 8,
    'september': 9, 'sept': 9, 'sep': 9,
    'oktober': 10, 'october': 10, 'okt': 10, 'oct': 10,
    'november': 11, 'nov': 11,
    'dezember': 12, 'december': 12, 'dez': 12, 'dec': 12,
}

ISO_DATE_RE = re.compile(r'(\d{4})-(\d{1,2})-(\d{1,2})')
NUMERIC_DATE_RE = re.compile(r'(\d{1,2})\.(\d{1,2})\.(\d{4})')
TEXTUAL_DATE_RE = re.compile(r'(\d{1,2})\.?\s*([a-zäöü]+)\.?\s*\'?(\d{2,4})')
MONTH_YEAR_RE = re.compile(r'^([a-zäöü]+)\.?\s*\'?(\d{2}|\d{4})$')

# Two different defaults: a generic parse is accepted only if both agree.
_DEFAULT_A = datetime(2000, 1, 1)
_DEFAULT_B = datetime(2001, 2, 2)


def benefit_tag(phrase: str) -> Optional[str]:
    """Return the tag for one benefit phrase, or None if nothing matches."""
    cleaned = (phrase or '').lower().strip()
    if not cleaned:
        return None
    for key, tag in BENEFIT_TAGS.items():
        if key in cleaned or cleaned in key:
            return tag
    return None


def normalize_benefits(raw_benefits: Optional[Iterable[str]]) -> List[str]:
    """
    Map raw benefit phrases to standardized tags.

    Unmatched phrases are dropped. The result is a sorted, duplicate-free list
    so that input order never changes the stored value.
    """
    tags = set()
    for phrase in raw_benefits or []:
        if not isinstance(phrase, str):
            continue
        tag = benefit_tag(phrase)
        if tag:
            tags.add(tag)
    return sorted(tags)


def normalize_tech_stack(stack: Optional[Iterable[str]]) -> List[str]:
    """Lowercase, trim, drop empties, deduplicate and sort technology names."""
    cleaned = {
        tech.lower().strip()
        for tech in (stack or [])
        if isinstance(tech, str) and tech.strip()
    }
    return sorted(cleaned)


def _two_digit_year(year: int) -> int:
    return 2000 + year if year < 100 else year


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def normalize_date(text: Optional[str]) -> Optional[date]:
    """
    Parse German/English date text.

    Recognized, in order:
        "2026-09-01"
        "01.09.2026" / "1.9.2026"
        "1. September 26" / "1. Sep 2026"
        "September 2026" / "Sep '26" (first of month)
        anything dateutil understands without guessing missing parts

    Returns None when nothing matches; None means "unknown".
    """
    if not text or not str(text).strip():
        return None

    cleaned = str(text).strip().lower()

    match = ISO_DATE_RE.search(cleaned)
    if match:
        year, month, day = (int(g) for g in match.groups())
        parsed = _safe_date(year, month, day)
        if parsed:
            return parsed

    match = NUMERIC_DATE_RE.search(cleaned)
    if match:
        day, month, year = (int(g) for g in match.groups())
        parsed = _safe_date(year, month, day)
        if parsed:
            return parsed

    match = TEXTUAL_DATE_RE.search(cleaned)
    if match:
        day, month_name, year = match.groups()
        month = MONTHS.get(month_name)
        if month:
            parsed = _safe_date(_two_digit_year(int(year)), month, int(day))
            if parsed:
                return parsed

    match = MONTH_YEAR_RE.match(cleaned)
    if match:
        month = MONTHS.get(match.group(1))
        if month:
            return _safe_date(_two_digit_year(int(match.group(2))), month, 1)

    try:
        first = date_parser.parse(cleaned, dayfirst=True, default=_DEFAULT_A)
        second = date_parser.parse(cleaned, dayfirst=True, default=_DEFAULT_B)
    except (ValueError, OverflowError, TypeError) as e:
        logger.debug(f"Unparseable date '{text}': {e}")
        return None

    if first != second:
        return None
    return first.date()


def sanitize_location(location: Optional[str]) -> str:
    """Collapse whitespace and stray commas in a location string."""
    text = re.sub(r'\s+', ' ', (location or '').strip())
    return re.sub(r',\s*,', ',', text)


def salary_average(first: Optional[int], third: Optional[int]) -> Optional[int]:
    """Mean of first- and third-year salary, or first alone, or None."""
    if not first:
        return None
    if third:
        return math.floor((first + third) / 2 + 0.5)
    return first
