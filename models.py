from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator


T = TypeVar("T")


# Input size limits to prevent abuse
MAX_FIELD_LENGTH = 1000  # 1KB max for most fields
MAX_URL_LENGTH = 2000


class ContactSource(str, Enum):
    WEBSITE = "website"
    AI = "ai"
    EXISTING = "existing"
    SMTP = "smtp"


class EnrichmentSource(str, Enum):
    WEBSITE = "website"
    PERPLEXITY = "perplexity"
    BOTH = "both"


class EnrichmentStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"

    @classmethod
    def from_fields(cls, *fields: Optional[str]) -> "EnrichmentStatus":
        """complete if every field is set, partial if any is, failed otherwise."""
        present = [bool(f) for f in fields]
        if present and all(present):
            return cls.COMPLETE
        if any(present):
            return cls.PARTIAL
        return cls.FAILED


@dataclass
class Outcome(Generic[T]):
    """
    Result of one external call (crawl, DNS, AI).

    Exactly one of value/error is meaningful: a failed outcome carries a short
    error code and never a value.
    """
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> "Outcome[T]":
        return cls(error=error)


# Engine input (owned by the caller, read-only here)
class LeadInput(BaseModel):
    name: str = Field(..., min_length=1, max_length=MAX_FIELD_LENGTH)
    company: Optional[str] = Field(default=None, max_length=MAX_FIELD_LENGTH)
    website: Optional[str] = Field(default=None, max_length=MAX_URL_LENGTH)
    email: Optional[str] = Field(default=None, max_length=MAX_FIELD_LENGTH)
    phone: Optional[str] = Field(default=None, max_length=100)
    linkedin_url: Optional[str] = Field(default=None, max_length=MAX_URL_LENGTH)
    headline: Optional[str] = Field(default=None, max_length=MAX_FIELD_LENGTH)

    @field_validator('name')
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be blank")
        return v.strip()


class NameParts(BaseModel):
    """Normalized (ASCII-folded, lower-case) name tokens plus their raw form."""
    first: Optional[str] = None
    last: Optional[str] = None
    first_raw: Optional[str] = None
    last_raw: Optional[str] = None


# One candidate signal with provenance
class FoundContact(BaseModel):
    value: str
    source: ContactSource


class ScrapedData(BaseModel):
    """Aggregate of every page crawled for one lead."""
    emails: List[str] = Field(default_factory=list)
    phones: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    name_match_email: Optional[str] = None  # Email found next to the lead's name
    pages_visited: List[str] = Field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return bool(self.emails or self.phones or self.description)


# AI research result, parsed from free text
class PerplexityData(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    company_description: Optional[str] = None
    business_processes: Optional[str] = None


class SmtpGuessResult(BaseModel):
    verified_email: Optional[str] = None
    catch_all: bool = False
    patterns_tried: int = 0
    error: Optional[str] = None
    unverified_guess: bool = False  # True when verified_email is an MX-backed guess
    mx_host: Optional[str] = None


# Final Enrichment Result
class EnrichmentResult(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    company_description: Optional[str] = None
    business_processes: Optional[str] = None
    enrichment_source: Optional[EnrichmentSource] = None
    all_emails_found: List[FoundContact] = Field(default_factory=list)
    all_phones_found: List[FoundContact] = Field(default_factory=list)
    enriched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: EnrichmentStatus = EnrichmentStatus.FAILED
    error: Optional[str] = None

    def email_source(self) -> Optional[ContactSource]:
        """Provenance of the chosen email, if it was found by the engine."""
        if not self.email:
            return None
        for found in self.all_emails_found:
            if found.value == self.email:
                return found.source
        return None


class BatchLeadOutcome(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    method: str = "none"  # Source of the chosen email, "none" or "error"
    status: str


class BatchEnrichmentReport(BaseModel):
    total: int = 0
    emails_found: int = 0
    phones_found: int = 0
    email_rate: str = "0%"
    results: List[BatchLeadOutcome] = Field(default_factory=list)
