"""
AI extraction prompt and reply normalization.

The extraction service gets a deterministic German-market prompt and answers
with JSON. The reply is parsed, validated against RawExtraction (every field
nullable) and then folded into a JobPosting with the field mappers, the
normalizers and the fast salary resolver.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.field_mapper import (
    is_not_mentioned,
    map_education_level,
    map_english_level,
    map_german_level,
    map_tariff_type,
)
from core.models import (
    Contact,
    ExtractionMethod,
    JobPosting,
    Location,
    RelocationSupport,
    Salary,
)
from core.normalize import normalize_benefits, normalize_date, normalize_tech_stack, sanitize_location
from core.salary_resolver import resolve_first_year_salary_fast

logger = logging.getLogger(__name__)

MAX_PROMPT_CHARS = 30000
SNIPPET_MAX_CHARS = 200

VISA_TRIGGER_PHRASES = [
    'relocation support',
    'visa assistance',
    'international applicants',
    'blue card',
    'relocation',
    'umsiedlung',
]

FENCE_RE = re.compile(r'^```[a-zA-Z]*\s*\n?(.*?)\n?\s*```$', re.DOTALL)


class ExtractionError(Exception):
    """Extraction of a posting failed."""


class ResponseParseError(ExtractionError):
    """The extraction reply was not a JSON object."""


PROMPT_TEMPLATE = """You are a German job market expert. Extract structured data from this German Ausbildung (apprenticeship) posting.

Rules:
1. German language level: Map text to A1, A2, B1, B2, C1, C2, or null (not mentioned).
   - If NO language level is explicitly mentioned in the posting, respond with null (NOT "not mentioned" as a string).
   - "Good German" = B2
   - "Fluent/Native" = C2

2. Salary: Extract only firstYearSalary and thirdYearSalary (monthly, EUR) when stated as numbers.
   If only "Tarifvertrag" is mentioned, return null (don't guess).

3. Visa sponsorship: Set to true ONLY if these keywords appear:
   "Relocation support", "Visa assistance", "International applicants welcome", "Blue Card"
   Otherwise, false.

4. Education level: Map to Hauptschulabschluss, Realschulabschluss, Abitur, Fachabitur, or null.

5. Tech stack: Lowercase, remove duplicates, return empty array if none mentioned.

6. Benefits: Extract and list (e.g., "30 Tage Urlaub", "Kostenlos Kaffee"), empty array if none.

7. Dates: Standardize to ISO format (YYYY-MM-DD).

8. All optional fields (like english_level_requirement, german_level_requirement): use null if not mentioned, NOT empty strings.

9. Tariff: name the collective agreement (e.g. "IG Metall", "ver.di", "TVöD", "IG BCE") or null if none is mentioned.

10. Relocation and contact: fill only what the posting states, null otherwise.

Response as JSON (no markdown, raw JSON only):
{{
  "job_title": "string",
  "company_name": "string",
  "locations": [{{ "city": "string", "zip_code": "string or null", "address": "string or null", "state": "string or null" }}],
  "start_date": "DD.MM.YYYY or similar or null",
  "duration_months": 36 or null,
  "application_deadline": "DD.MM.YYYY or similar or null",
  "available_positions": number or null,
  "german_level_requirement": "A1" | "A2" | "B1" | "B2" | "C1" | "C2" | null,
  "english_level_requirement": "A1" | "A2" | "B1" | "B2" | "C1" | "C2" | null,
  "education_required": "Hauptschulabschluss" | "Realschulabschluss" | "Abitur" | "Fachabitur" | null,
  "tech_stack": ["string"] or [],
  "driving_license_required": boolean or null,
  "salary": {{
    "firstYearSalary": number or null,
    "thirdYearSalary": number or null
  }},
  "tariff_type": "string or null",
  "visa_sponsorship": boolean,
  "relocation_support": {{
    "offered": boolean,
    "rent_subsidy": boolean or null,
    "free_accommodation": boolean or null,
    "moving_cost_covered": boolean or null,
    "temporary_housing": boolean or null,
    "relocation_bonus": number or null,
    "details": "string or null"
  }} or null,
  "benefits": ["string"] or [],
  "description_snippet": "string (short summary, max 200 chars)" or null,
  "contact_person": {{
    "name": "string or null",
    "email": "string or null",
    "phone": "string or null",
    "role": "string or null"
  }} or null
}}

Job HTML/Text:
{text}
"""


def build_prompt(cleaned_text: str, max_chars: int = MAX_PROMPT_CHARS) -> str:
    """Build the extraction prompt for one posting's cleaned text."""
    return PROMPT_TEMPLATE.format(text=(cleaned_text or "")[:max_chars])


def strip_code_fences(reply: str) -> str:
    """Remove a surrounding ```json ... ``` block, if any."""
    content = (reply or "").strip()
    match = FENCE_RE.match(content)
    if match:
        return match.group(1).strip()
    return content


def parse_reply(reply: str) -> Dict[str, Any]:
    """
    Parse the extraction service's reply into a dict.

    Raises:
        ResponseParseError: if the (unfenced) reply is not a JSON object
    """
    content = strip_code_fences(reply)
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"Invalid JSON in extraction reply: {e}") from e
    if not isinstance(data, dict):
        raise ResponseParseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _coerce_amount(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value > 0 else None
    digits = re.sub(r'[^\d]', '', str(value).split(',')[0])
    return int(digits) if digits else None


def _coerce_flag(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if is_not_mentioned(value):
        return None
    text = str(value).strip().lower()
    if text in ('true', 'yes', 'ja', '1'):
        return True
    if text in ('false', 'no', 'nein', '0'):
        return False
    return None


def _clean_optional_text(value: Any) -> Optional[str]:
    if is_not_mentioned(value):
        return None
    return str(value).strip()


class RawLocation(BaseModel):
    model_config = ConfigDict(extra='ignore')

    city: Optional[str] = None
    zip_code: Optional[str] = None
    address: Optional[str] = None
    state: Optional[str] = None

    @field_validator('city', 'zip_code', 'address', 'state', mode='before')
    @classmethod
    def _text(cls, value):
        return _clean_optional_text(value)


class RawSalary(BaseModel):
    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    first_year_salary: Optional[int] = Field(None, alias='firstYearSalary')
    third_year_salary: Optional[int] = Field(None, alias='thirdYearSalary')

    @field_validator('first_year_salary', 'third_year_salary', mode='before')
    @classmethod
    def _amount(cls, value):
        return _coerce_amount(value)


class RawRelocation(BaseModel):
    model_config = ConfigDict(extra='ignore')

    offered: Optional[bool] = None
    rent_subsidy: Optional[bool] = None
    free_accommodation: Optional[bool] = None
    moving_cost_covered: Optional[bool] = None
    temporary_housing: Optional[bool] = None
    relocation_bonus: Optional[int] = None
    details: Optional[str] = None

    @field_validator(
        'offered', 'rent_subsidy', 'free_accommodation', 'moving_cost_covered', 'temporary_housing',
        mode='before',
    )
    @classmethod
    def _flag(cls, value):
        return _coerce_flag(value)

    @field_validator('relocation_bonus', mode='before')
    @classmethod
    def _amount(cls, value):
        return _coerce_amount(value)

    @field_validator('details', mode='before')
    @classmethod
    def _text(cls, value):
        return _clean_optional_text(value)


class RawContact(BaseModel):
    model_config = ConfigDict(extra='ignore')

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None

    @field_validator('name', 'email', 'phone', 'role', mode='before')
    @classmethod
    def _text(cls, value):
        return _clean_optional_text(value)


class RawExtraction(BaseModel):
    """The extraction reply as received; every field may be null."""

    model_config = ConfigDict(extra='ignore')

    job_title: Optional[str] = None
    company_name: Optional[str] = None
    locations: Optional[List[RawLocation]] = None
    start_date: Optional[str] = None
    duration_months: Optional[int] = None
    application_deadline: Optional[str] = None
    available_positions: Optional[int] = None
    german_level_requirement: Optional[str] = None
    english_level_requirement: Optional[str] = None
    education_required: Optional[str] = None
    tech_stack: Optional[List[str]] = None
    driving_license_required: Optional[bool] = None
    salary: Optional[RawSalary] = None
    tariff_type: Optional[str] = None
    visa_sponsorship: Optional[bool] = None
    relocation_support: Optional[Union[bool, RawRelocation]] = None
    benefits: Optional[List[str]] = None
    description_snippet: Optional[str] = None
    contact_person: Optional[RawContact] = None

    @field_validator(
        'job_title', 'company_name', 'start_date', 'application_deadline',
        'german_level_requirement', 'english_level_requirement',
        'education_required', 'tariff_type', 'description_snippet',
        mode='before',
    )
    @classmethod
    def _text(cls, value):
        return _clean_optional_text(value)

    @field_validator('locations', mode='before')
    @classmethod
    def _locations(cls, value):
        if value is None:
            return None
        if isinstance(value, (str, dict)):
            value = [value]
        if not isinstance(value, list):
            return value
        return [{'city': item} if isinstance(item, str) else item for item in value if item is not None]

    @field_validator('duration_months', 'available_positions', mode='before')
    @classmethod
    def _count(cls, value):
        return _coerce_amount(value)

    @field_validator('visa_sponsorship', 'driving_license_required', mode='before')
    @classmethod
    def _flag(cls, value):
        return _coerce_flag(value)

    @field_validator('relocation_support', mode='before')
    @classmethod
    def _relocation(cls, value):
        if isinstance(value, dict):
            return value
        return _coerce_flag(value)

    @field_validator('tech_stack', 'benefits', mode='before')
    @classmethod
    def _string_list(cls, value):
        if value is None:
            return None
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list):
            return value
        return [str(item) for item in value if item is not None]


def validate_reply(data: Dict[str, Any]) -> RawExtraction:
    """
    Raises:
        ResponseParseError: if the reply does not fit the extraction schema
    """
    try:
        return RawExtraction.model_validate(data)
    except ValidationError as e:
        raise ResponseParseError(f"Extraction reply failed validation: {e.error_count()} errors") from e


def has_visa_trigger(text: Optional[str]) -> bool:
    lower = (text or "").lower()
    return any(phrase in lower for phrase in VISA_TRIGGER_PHRASES)


def _locations(raw: RawExtraction) -> List[Location]:
    locations = []
    for item in raw.locations or []:
        if not item.city:
            continue
        locations.append(Location(
            city=sanitize_location(item.city),
            zip_code=item.zip_code,
            address=item.address,
            state=item.state,
        ))
    return locations


def _relocation(value: Union[bool, RawRelocation, None]) -> RelocationSupport:
    if isinstance(value, RawRelocation):
        fields = value.model_dump(exclude_none=True)
        fields['offered'] = bool(fields.get('offered')) or any(
            fields.get(flag) for flag in ('rent_subsidy', 'free_accommodation', 'moving_cost_covered', 'temporary_housing')
        )
        return RelocationSupport(**fields)
    return RelocationSupport(offered=bool(value))


def normalize_response(
    raw: Union[RawExtraction, Dict[str, Any]],
    source_url: str,
    source_platform: str = "ausbildung.de",
) -> Optional[JobPosting]:
    """
    Turn a validated extraction reply into a JobPosting.

    Returns None when title, company or every location is missing; a
    posting without them is rejected rather than stored half-empty.
    """
    if not isinstance(raw, RawExtraction):
        raw = validate_reply(raw)

    locations = _locations(raw)
    if not raw.job_title or not raw.company_name or not locations:
        logger.warning(f"Extraction reply for {source_url} missing required fields")
        return None

    tariff_type = map_tariff_type(raw.tariff_type)
    scraped = raw.salary or RawSalary()
    resolution = resolve_first_year_salary_fast(
        scraped.first_year_salary, scraped.third_year_salary, tariff_type
    )

    snippet = raw.description_snippet[:SNIPPET_MAX_CHARS] if raw.description_snippet else None
    benefits = [b.strip() for b in raw.benefits or [] if b.strip()]

    job = JobPosting(
        original_link=source_url,
        source_platform=source_platform,
        job_title=raw.job_title,
        company_name=raw.company_name,
        locations=locations,
        start_date=normalize_date(raw.start_date),
        application_deadline=normalize_date(raw.application_deadline),
        german_level_requirement=map_german_level(raw.german_level_requirement),
        english_level_requirement=map_english_level(raw.english_level_requirement),
        education_required=map_education_level(raw.education_required),
        tech_stack=normalize_tech_stack(raw.tech_stack),
        driving_license_required=bool(raw.driving_license_required),
        salary=Salary(
            first_year_salary=resolution.first_year_salary,
            third_year_salary=resolution.third_year_salary,
            average=resolution.average,
        ),
        salary_source=resolution.source,
        tariff_type=tariff_type,
        visa_sponsorship=bool(raw.visa_sponsorship) or has_visa_trigger(raw.description_snippet),
        relocation_support=_relocation(raw.relocation_support),
        benefits=benefits,
        benefits_tags=normalize_benefits(benefits),
        description_snippet=snippet,
        contact_person=Contact(**raw.contact_person.model_dump()) if raw.contact_person else Contact(),
        available_positions=raw.available_positions,
        extraction_method=ExtractionMethod.LLM,
    )
    if raw.duration_months:
        job.duration_months = raw.duration_months
    return job
