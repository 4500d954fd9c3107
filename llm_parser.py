import logging
import re
from typing import Optional

from models import LeadInput, PerplexityData
from utils.contact_parsing import extract_emails, extract_phones, is_generic_email
from utils.contact_rules import ContactRules, GERMAN_RULES

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = "Du bist ein Research-Assistent. Beantworte die Fragen präzise und auf Deutsch."

RESEARCH_QUESTIONS = (
    "Finde: 1) Was macht die Firma/Person genau? "
    "2) Welche typischen Geschäftsprozesse hat dieses Unternehmen? "
    "3) E-Mail-Adresse 4) Telefonnummer 5) Website"
)

MAX_SECTION_LENGTH = 1000
MIN_FALLBACK_LINE_LENGTH = 30

# Answer sections follow the numbered questions above
_DESCRIPTION_SECTION = re.compile(
    r"(?:1\)|1\.|Was macht)[^\n]*\n([\s\S]*?)(?=(?:2\)|2\.|Welche typischen|Geschäftsprozesse))",
    re.IGNORECASE,
)
_PROCESSES_SECTION = re.compile(
    r"(?:2\)|2\.|Geschäftsprozesse|typischen Prozesse)[^\n]*\n([\s\S]*?)(?=(?:3\)|3\.|E-Mail|Email|Mail))",
    re.IGNORECASE,
)


def build_research_query(lead: LeadInput) -> str:
    """One German research question embedding everything we know about the lead."""
    query = f"Recherchiere {lead.name}"

    if lead.company:
        query += f' von der Firma "{lead.company}"'
    if lead.website:
        query += f" (Website: {lead.website})"
    if lead.linkedin_url:
        query += f" (LinkedIn: {lead.linkedin_url})"
    if lead.headline:
        query += f" (Beschreibung: {lead.headline})"

    return f"{query}. {RESEARCH_QUESTIONS}"


def parse_research_answer(content: str, rules: ContactRules = GERMAN_RULES) -> PerplexityData:
    """
    Parse the free-text research answer into structured fields.

    The remote model follows no schema, so everything is heuristic:
    - email/phone with the same patterns as the website extractor
    - website: first URL that is not a social/professional network
    - description/processes: text between the numbered question markers,
      description falls back to the first long line
    """
    return PerplexityData(
        email=_parse_email(content, rules),
        phone=_parse_phone(content, rules),
        website=_parse_website(content, rules),
        company_description=_parse_description(content),
        business_processes=_section(_PROCESSES_SECTION, content),
    )


def _parse_email(content: str, rules: ContactRules) -> Optional[str]:
    candidates = extract_emails(content, rules)
    if not candidates:
        return None
    personal = [e for e in candidates if not is_generic_email(e, rules)]
    return personal[0] if personal else candidates[0]


def _parse_phone(content: str, rules: ContactRules) -> Optional[str]:
    phones = extract_phones(content, rules)
    return phones[0] if phones else None


def _parse_website(content: str, rules: ContactRules) -> Optional[str]:
    urls = [u.rstrip(".,;:") for u in rules.url_pattern.findall(content or "")]
    if not urls:
        return None
    for url in urls:
        if not any(social in url.lower() for social in rules.social_domains):
            return url
    return urls[0]


def _section(pattern: re.Pattern, content: str) -> Optional[str]:
    match = pattern.search(content or "")
    if not match:
        return None
    return match.group(1).strip()[:MAX_SECTION_LENGTH] or None


def _parse_description(content: str) -> Optional[str]:
    description = _section(_DESCRIPTION_SECTION, content)
    if description:
        return description

    # No numbered structure: first paragraph-like line
    for line in (content or "").split("\n"):
        if len(line.strip()) > MIN_FALLBACK_LINE_LENGTH:
            return line.strip()[:MAX_SECTION_LENGTH]

    logger.debug("Research answer has no usable description")
    return None
