"""
Canonical job record and closed vocabularies.

Everything the miner persists goes through JobPosting. Enumerations use the
literal strings that are stored in the database and exposed to the API, so
the values must not change once records exist.
"""

from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class LanguageLevel(str, Enum):
    NONE = "None"
    A1 = "A1"
    A2 = "A2"
    B1 = "B1"
    B2 = "B2"
    C1 = "C1"
    C2 = "C2"
    NATIVE = "Native"

    @property
    def rank(self) -> int:
        return LANGUAGE_LEVEL_RANK[self]

    def satisfies(self, requirement: "LanguageLevel") -> bool:
        """True if a speaker at this level meets ``requirement``."""
        return requirement.rank <= self.rank


LANGUAGE_LEVEL_RANK: Dict[LanguageLevel, int] = {
    level: rank for rank, level in enumerate(LanguageLevel)
}


class EducationLevel(str, Enum):
    NONE = "Keine"
    HAUPTSCHULE = "Hauptschulabschluss"
    REALSCHULE = "Realschulabschluss"
    ABITUR = "Abitur"
    FACHABITUR = "Fachabitur"


class TariffType(str, Enum):
    """Collective bargaining agreements (Tarifverträge)."""

    NONE = "None"
    IG_METALL = "IG Metall"
    VERDI = "ver.di"
    IG_BCE = "IG BCE"
    IG_BAU = "IG BAU"
    NGG = "NGG"
    TVOED = "TVöD"
    TV_L = "TV-L"
    IT_TARIFVERTRAG = "IT Tarifvertrag"
    EINZELHANDEL = "Einzelhandel"
    BANKING = "Banking"
    OTHER = "Other"


class SalarySource(str, Enum):
    SCRAPED = "scraped"
    COMPANY_WEBSITE = "company_website"
    TARIFF_STANDARD = "tariff_standard"
    NONE = "none"


class ExtractionMethod(str, Enum):
    LLM = "llm"
    HEURISTIC = "heuristic"


class Location(BaseModel):
    city: str
    zip_code: Optional[str] = None
    address: Optional[str] = None
    state: Optional[str] = None


class Salary(BaseModel):
    first_year_salary: Optional[int] = None
    third_year_salary: Optional[int] = None
    average: Optional[int] = None
    currency: str = "EUR"


class RelocationSupport(BaseModel):
    offered: bool = False
    rent_subsidy: Optional[bool] = None
    free_accommodation: Optional[bool] = None
    moving_cost_covered: Optional[bool] = None
    temporary_housing: Optional[bool] = None
    relocation_bonus: Optional[int] = None
    details: Optional[str] = None


class Contact(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None


class JobPosting(BaseModel):
    """A normalized apprenticeship posting, keyed by ``original_link``."""

    original_link: str
    source_platform: str = "ausbildung.de"

    job_title: str
    company_name: str
    locations: List[Location] = Field(default_factory=list)

    start_date: Optional[date] = None
    duration_months: int = 36
    application_deadline: Optional[date] = None
    posted_at: datetime = Field(default_factory=datetime.utcnow)
    last_checked_at: Optional[datetime] = None

    german_level_requirement: LanguageLevel = LanguageLevel.NONE
    english_level_requirement: LanguageLevel = LanguageLevel.NONE
    education_required: EducationLevel = EducationLevel.REALSCHULE
    tech_stack: List[str] = Field(default_factory=list)
    driving_license_required: bool = False

    salary: Salary = Field(default_factory=Salary)
    salary_source: SalarySource = SalarySource.NONE
    tariff_type: TariffType = TariffType.NONE

    visa_sponsorship: bool = False
    relocation_support: RelocationSupport = Field(default_factory=RelocationSupport)

    benefits: List[str] = Field(default_factory=list)
    benefits_tags: List[str] = Field(default_factory=list)
    benefits_verified: bool = False
    benefits_last_updated: Optional[datetime] = None
    description_full: Optional[str] = None
    description_snippet: Optional[str] = None

    contact_person: Contact = Field(default_factory=Contact)

    available_positions: Optional[int] = None
    vacancy_count: Optional[int] = None
    is_active: bool = True
    extraction_method: ExtractionMethod = ExtractionMethod.LLM


class ListingItem(BaseModel):
    """One entry of a source listing page."""

    url: str
    title: Optional[str] = None
    company: Optional[str] = None
    vacancy_count: Optional[int] = None
