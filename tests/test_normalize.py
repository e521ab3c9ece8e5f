"""
Unit tests for core/normalize.py

Covers:
- Benefit phrase to tag mapping
- Tech stack normalization
- German/English date parsing
- Location and salary-average helpers
"""

from datetime import date

import pytest

from core.normalize import (
    benefit_tag,
    normalize_benefits,
    normalize_date,
    normalize_tech_stack,
    salary_average,
    sanitize_location,
)


class TestBenefits:
    def test_vacation_and_home_office(self):
        """Test typical German benefit phrases map to tags."""
        tags = normalize_benefits(["30 Tage Urlaub", "Home Office möglich"])
        assert set(tags) == {"VACATION_30", "HOME_OFFICE"}

    def test_order_independent(self):
        """Test input order does not change the tag set."""
        phrases = ["Jobrad", "Betriebliche Altersvorsorge", "Kostenloses Essen", "Gleitzeit"]
        assert normalize_benefits(phrases) == normalize_benefits(list(reversed(phrases)))

    def test_unmatched_dropped(self):
        """Test phrases without a known tag are dropped."""
        assert normalize_benefits(["Ein nettes Team"]) == []

    def test_deduplicated_and_sorted(self):
        """Test tags are unique and sorted."""
        tags = normalize_benefits(["Gleitzeit", "flexible hours", "Jobticket"])
        assert tags == ["FLEXIBLE_HOURS", "PUBLIC_TRANSPORT"]

    def test_empty_and_invalid_input(self):
        """Test None, empty strings and non-strings are ignored."""
        assert normalize_benefits(None) == []
        assert normalize_benefits(["", "   ", None, 42]) == []

    def test_deterministic(self):
        """Test a phrase always maps to the same tag."""
        assert benefit_tag("Weihnachtsgeld") == benefit_tag("Weihnachtsgeld") == "SALARY_13TH"
        assert benefit_tag("") is None


class TestTechStack:
    def test_normalize(self):
        """Test lowercasing, trimming, dedup and sorting."""
        assert normalize_tech_stack([" Python", "java", "JAVA", "", "SQL "]) == ["java", "python", "sql"]

    @pytest.mark.parametrize("stack", [
        ["React", "TypeScript", "react"],
        ["C#", " .NET ", "Azure"],
        [],
    ])
    def test_idempotent(self, stack):
        """Test normalizing twice gives the same result."""
        once = normalize_tech_stack(stack)
        assert normalize_tech_stack(once) == once

    def test_none(self):
        """Test None gives an empty list."""
        assert normalize_tech_stack(None) == []


class TestDates:
    def test_day_month_short_year(self):
        """Test '1. September 26' parses as 2026-09-01."""
        assert normalize_date("1. September 26") == date(2026, 9, 1)

    def test_numeric(self):
        """Test German numeric dates."""
        assert normalize_date("01.09.2026") == date(2026, 9, 1)
        assert normalize_date("ab 1.8.2026") == date(2026, 8, 1)

    def test_textual_variants(self):
        """Test abbreviated and English month names."""
        assert normalize_date("15. Okt 2026") == date(2026, 10, 15)
        assert normalize_date("1 August 2026") == date(2026, 8, 1)
        assert normalize_date("1. März 2027") == date(2027, 3, 1)

    def test_month_year(self):
        """Test month-year text defaults to the first of the month."""
        assert normalize_date("September 2026") == date(2026, 9, 1)
        assert normalize_date("Aug '26") == date(2026, 8, 1)

    def test_iso(self):
        """Test ISO dates from the extraction service."""
        assert normalize_date("2026-09-01") == date(2026, 9, 1)

    def test_unparseable(self):
        """Test junk and partial dates return None."""
        assert normalize_date(None) is None
        assert normalize_date("") is None
        assert normalize_date("sofort") is None
        assert normalize_date("31.02.2026") is None


class TestHelpers:
    def test_sanitize_location(self):
        """Test whitespace and double commas are collapsed."""
        assert sanitize_location("  80331   München ,, Bayern ") == "80331 München , Bayern"
        assert sanitize_location(None) == ""

    def test_salary_average(self):
        """Test average rounding and fallbacks."""
        assert salary_average(1000, 1200) == 1100
        assert salary_average(1001, 1200) == 1101
        assert salary_average(1150, None) == 1150
        assert salary_average(None, 1300) is None
