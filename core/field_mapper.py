"""
Field mapping for free-text extraction values.

The extraction service answers in natural language ("gute Deutschkenntnisse",
"Realschulabschluss oder Abitur", "Tarifvertrag IG Metall"). These mappers fold
such snippets onto the closed enumerations in core.models. They never raise:
unknown input, sentinels like "not mentioned" and None all yield a default.
"""

import re
from typing import Any, List, Optional, Pattern, Tuple, Type, TypeVar

from core.models import EducationLevel, LanguageLevel, TariffType

E = TypeVar("E")

NOT_MENTIONED = {
    "",
    "null",
    "none",
    "n/a",
    "na",
    "not mentioned",
    "not specified",
    "nicht angegeben",
    "unknown",
}

# Checked top to bottom, first hit wins. Native-speaker wording is NATIVE, "fluent" is C2.
LANGUAGE_LEVEL_RULES: List[Tuple[str, LanguageLevel]] = [
    ("muttersprach", LanguageLevel.NATIVE),
    ("native", LanguageLevel.NATIVE),
    ("fluent", LanguageLevel.C2),
    ("fließend", LanguageLevel.C2),
    ("c2", LanguageLevel.C2),
    ("c1", LanguageLevel.C1),
    ("verhandlungssicher", LanguageLevel.C1),
    ("b2", LanguageLevel.B2),
    ("good", LanguageLevel.B2),
    ("sehr gut", LanguageLevel.B2),
    ("gut", LanguageLevel.B2),
    ("b1", LanguageLevel.B1),
    ("intermediate", LanguageLevel.B1),
    ("mittelstufe", LanguageLevel.B1),
    ("a2", LanguageLevel.A2),
    ("a1", LanguageLevel.A1),
    ("grundkenntnisse", LanguageLevel.A2),
    ("basic", LanguageLevel.A2),
]

EDUCATION_RULES: List[Tuple[str, EducationLevel]] = [
    ("fachabitur", EducationLevel.FACHABITUR),
    ("fachhochschulreife", EducationLevel.FACHABITUR),
    ("abitur", EducationLevel.ABITUR),
    ("allgemeine hochschulreife", EducationLevel.ABITUR),
    ("realschul", EducationLevel.REALSCHULE),
    ("mittlere reife", EducationLevel.REALSCHULE),
    ("mittlerer schulabschluss", EducationLevel.REALSCHULE),
    ("hauptschul", EducationLevel.HAUPTSCHULE),
    ("berufsbildungsreife", EducationLevel.HAUPTSCHULE),
    ("keine", EducationLevel.NONE),
    ("no degree", EducationLevel.NONE),
    ("kein abschluss", EducationLevel.NONE),
]

TARIFF_RULES: List[Tuple[Pattern, TariffType]] = [
    (re.compile(r"ig\s*metall|metall-?\s*und\s*elektro", re.I), TariffType.IG_METALL),
    (re.compile(r"ig\s*bce|chemie-?tarif", re.I), TariffType.IG_BCE),
    (re.compile(r"ig\s*bau|bauhauptgewerbe", re.I), TariffType.IG_BAU),
    (re.compile(r"ver\.di|\bverdi\b", re.I), TariffType.VERDI),
    (re.compile(r"\bngg\b|hotel-?\s*und\s*gaststätten", re.I), TariffType.NGG),
    (re.compile(r"tv[öo]e?d|tva[öo]e?d", re.I), TariffType.TVOED),
    (re.compile(r"\btv-?l\b", re.I), TariffType.TV_L),
    (re.compile(r"\bit[\s-]*tarif", re.I), TariffType.IT_TARIFVERTRAG),
    (re.compile(r"einzelhandel|handelsverband", re.I), TariffType.EINZELHANDEL),
    (re.compile(r"bankgewerbe|\bbanking\b|\bbanken\b", re.I), TariffType.BANKING),
    (re.compile(r"tarif", re.I), TariffType.OTHER),
]


def is_not_mentioned(value: Any) -> bool:
    """True for None and the sentinel strings the extractor uses for absence."""
    if value is None:
        return True
    return str(value).strip().lower() in NOT_MENTIONED


def _exact_member(enum_cls: Type[E], text: str) -> Optional[E]:
    for member in enum_cls:
        if member.value.lower() == text:
            return member
    return None


def map_german_level(text: Optional[str]) -> LanguageLevel:
    """Map a language requirement snippet to a LanguageLevel (default NONE)."""
    if is_not_mentioned(text):
        return LanguageLevel.NONE

    lower = str(text).strip().lower()
    exact = _exact_member(LanguageLevel, lower)
    if exact is not None:
        return exact

    for keyword, level in LANGUAGE_LEVEL_RULES:
        if keyword in lower:
            return level
    return LanguageLevel.NONE


# English requirements use the same scale and wording rules.
map_english_level = map_german_level


def map_education_level(text: Optional[str]) -> EducationLevel:
    """Map a school-leaving requirement to an EducationLevel (default REALSCHULE)."""
    if is_not_mentioned(text):
        return EducationLevel.REALSCHULE

    lower = str(text).strip().lower()
    exact = _exact_member(EducationLevel, lower)
    if exact is not None:
        return exact

    for keyword, level in EDUCATION_RULES:
        if keyword in lower:
            return level
    return EducationLevel.REALSCHULE


def map_tariff_type(text: Optional[str]) -> TariffType:
    """Map a union/agreement mention to a TariffType (default NONE)."""
    if is_not_mentioned(text):
        return TariffType.NONE

    cleaned = str(text).strip()
    exact = _exact_member(TariffType, cleaned.lower())
    if exact is not None:
        return exact

    for pattern, tariff in TARIFF_RULES:
        if pattern.search(cleaned):
            return tariff
    return TariffType.NONE
