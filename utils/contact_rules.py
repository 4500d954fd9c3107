"""
Locale tables for contact discovery.

Everything the extractor, name normalizer and candidate generator match
against lives in one frozen ContactRules instance. Components take a
`rules` argument (default: GERMAN_RULES) so tests or other markets can swap
patterns without touching the orchestration.
"""

import re
from dataclasses import dataclass
from typing import Dict, Pattern, Tuple


@dataclass(frozen=True)
class ContactRules:
    # Name normalization
    char_folding: Dict[str, str]
    name_titles: Tuple[str, ...]
    name_separators: Tuple[str, ...]
    noble_prefixes: Tuple[str, ...]

    # Email handling
    generic_prefixes: Tuple[str, ...]
    email_templates: Tuple[str, ...]
    email_pattern: Pattern
    junk_email_suffixes: Tuple[str, ...]

    # Phone handling
    phone_pattern: Pattern
    date_pattern: Pattern
    mobile_prefixes: Tuple[str, ...]
    min_phone_digits: int

    # Crawling / AI answer parsing
    contact_paths: Tuple[str, ...]
    social_domains: Tuple[str, ...]
    url_pattern: Pattern

    # Description extraction
    min_meta_description: int = 20
    min_paragraph_length: int = 50
    max_description_length: int = 500
    proximity_window: int = 5


# German phone formats: +49 ..., 0049 ..., 0xxx ... with optional separators.
# An optional label (Tel:, Telefon:, Fon:, Phone:, Mobil:) is consumed outside group 1.
# Whitespace inside a number never crosses a line break.
_GERMAN_PHONE = re.compile(
    r"(?:(?:Tel(?:efon)?|Fon|Phone|Mobil)[ \t]*[:.][ \t]*)?"
    r"(\+49[ \t.\-/]?[\d.\-/ \t]{6,15}"
    r"|0049[ \t.\-/]?[\d.\-/ \t]{6,15}"
    r"|0[1-9][\d.\-/ \t]{5,15})",
    re.IGNORECASE,
)


GERMAN_RULES = ContactRules(
    char_folding={"ä": "ae", "ö": "oe", "ü": "ue", "ß": "ss"},
    name_titles=("dr", "prof", "dipl", "ing", "mag", "mba", "msc", "bsc", "ra"),
    name_separators=("–", "—", "|", "•"),
    noble_prefixes=("von", "van", "de", "zu", "vom"),
    generic_prefixes=(
        "info@", "kontakt@", "noreply@", "no-reply@", "office@", "mail@",
        "hello@", "hallo@", "support@", "webmaster@", "admin@", "postmaster@",
    ),
    email_templates=(
        "{f}@{d}",
        "{f}.{l}@{d}",
        "{fi}.{l}@{d}",
        "{l}@{d}",
        "{f}{l}@{d}",
        "{fi}{l}@{d}",
        "{f}-{l}@{d}",
        "{f}_{l}@{d}",
        "{l}.{f}@{d}",
    ),
    email_pattern=re.compile(r"[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}"),
    junk_email_suffixes=(".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".css", ".js"),
    phone_pattern=_GERMAN_PHONE,
    # "Stand: 01.02.2024" looks like a number starting with 01
    date_pattern=re.compile(r"(?<![\d.])\d{1,2}\.\d{1,2}\.(?:\d{4}|\d{2})(?!\d)"),
    mobile_prefixes=("+491", "01", "00491"),
    min_phone_digits=8,
    contact_paths=("/impressum", "/kontakt", "/contact", "/about", "/ueber-uns", "/"),
    social_domains=("linkedin.com", "facebook.com", "twitter.com", "instagram.com", "xing.com"),
    url_pattern=re.compile(r"https?://(?!api\.perplexity)[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}[^\s)}\]\"]*"),
)
