"""
Pattern-based contact extraction from page text and free-form answers.

Each rule is a small named function so locale-specific formats can be
replaced through ContactRules without touching the crawler or pipeline.
"""

import logging
import re
from typing import Iterable, List, Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from utils.contact_rules import ContactRules, GERMAN_RULES
from utils.names import fold_name, split_name

logger = logging.getLogger(__name__)


def dedupe(values: Iterable[str]) -> List[str]:
    """Remove duplicates, keep first-seen order."""
    seen = set()
    unique = []
    for value in values:
        if value not in seen:
            seen.add(value)
            unique.append(value)
    return unique


# ========== NORMALIZATION ==========

def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def normalize_phone(raw: str) -> str:
    """Reduce a phone number to digits with an optional leading '+'."""
    cleaned = (raw or "").strip()
    digits = re.sub(r"\D", "", cleaned)
    if not digits:
        return ""
    return f"+{digits}" if cleaned.startswith("+") else digits


def email_domain(email: str) -> str:
    email = normalize_email(email)
    if "@" not in email:
        return ""
    return email.split("@", 1)[1]


def domain_from_url(url: Optional[str]) -> Optional[str]:
    """"https://www.Firma.de/kontakt" -> "firma.de"."""
    if not url:
        return None
    raw = url.strip()
    if not re.match(r"^https?://", raw, re.IGNORECASE):
        raw = f"https://{raw}"
    host = (urlparse(raw).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host or None


def domains_match(email: str, domain: Optional[str]) -> bool:
    """True if the email lives on domain or one of its subdomains."""
    if not domain:
        return False
    mail_domain = email_domain(email)
    return mail_domain == domain or mail_domain.endswith(f".{domain}")


def is_generic_email(email: str, rules: ContactRules = GERMAN_RULES) -> bool:
    """Role mailboxes (info@, kontakt@, ...) never count as a personal contact."""
    return normalize_email(email).startswith(rules.generic_prefixes)


def is_mobile_phone(phone: str, rules: ContactRules = GERMAN_RULES) -> bool:
    return normalize_phone(phone).startswith(rules.mobile_prefixes)


# ========== EXTRACTION RULES ==========

def html_to_text(html: str) -> str:
    """Visible page text, one block per line, without script/style content."""
    soup = BeautifulSoup(html or "", "lxml")
    for elem in soup(["script", "style", "noscript"]):
        elem.decompose()
    return soup.get_text(separator="\n")


def extract_emails(text: str, rules: ContactRules = GERMAN_RULES) -> List[str]:
    """All email-looking tokens, lower-cased and deduplicated."""
    emails = []
    for match in rules.email_pattern.findall(text or ""):
        email = normalize_email(match)
        # "logo@2x.png" and friends
        if email.endswith(rules.junk_email_suffixes):
            continue
        emails.append(email)
    return dedupe(emails)


def extract_phones(text: str, rules: ContactRules = GERMAN_RULES) -> List[str]:
    """
    German-format phone numbers, normalized.

    Numbers with fewer than min_phone_digits digits are dropped, as is any
    match overlapping a dotted date ("Stand: 15.08.2024 10:30").
    """
    text = text or ""
    date_spans = [m.span() for m in rules.date_pattern.finditer(text)]
    phones = []
    for match in rules.phone_pattern.finditer(text):
        start, end = match.span(1)
        if any(s < end and start < e for s, e in date_spans):
            continue
        normalized = normalize_phone(match.group(1))
        if len(normalized.lstrip("+")) < rules.min_phone_digits:
            continue
        phones.append(normalized)
    return dedupe(phones)


def extract_description(html: str, rules: ContactRules = GERMAN_RULES) -> Optional[str]:
    """
    Short company description from a page.

    Prefers <meta name="description"> / og:description (if longer than
    min_meta_description), falls back to the first long paragraph.
    """
    soup = BeautifulSoup(html or "", "lxml")

    for attrs in ({"name": "description"}, {"property": "og:description"}):
        meta = soup.find("meta", attrs=attrs)
        content = (meta.get("content") or "").strip() if meta else ""
        if len(content) > rules.min_meta_description:
            return content

    for paragraph in soup.find_all("p"):
        text = paragraph.get_text(strip=True)
        if len(text) > rules.min_paragraph_length:
            return text[:rules.max_description_length]

    return None


def find_name_proximity_email(
    text: str,
    lead_name: str,
    website_domain: Optional[str] = None,
    rules: ContactRules = GERMAN_RULES
) -> Optional[str]:
    """
    Find a personal email printed near the lead's name (Impressum, team page).

    Every line mentioning the name opens a window of +/- proximity_window
    lines. Non-generic emails inside a window are candidates; one on the
    website's own domain wins over any other.
    """
    if not text or not lead_name:
        return None

    needles = {lead_name.lower().strip(), fold_name(lead_name.strip(), rules)}
    parts = split_name(lead_name, rules)
    if parts.first_raw and parts.last_raw:
        plain = f"{parts.first_raw} {parts.last_raw}"
        needles.update({plain.lower(), fold_name(plain, rules)})
    needles.discard("")
    # Whole words only: "Anna Berg" must not match "Johanna Bergmann"
    name_patterns = [re.compile(rf"\b{re.escape(needle)}\b") for needle in needles]

    lines = [line.strip() for line in text.split("\n") if line.strip()]
    fallback: Optional[str] = None

    for i, line in enumerate(lines):
        haystacks = (line.lower(), fold_name(line, rules))
        if not any(p.search(hay) for p in name_patterns for hay in haystacks):
            continue

        window = "\n".join(lines[max(0, i - rules.proximity_window):i + rules.proximity_window + 1])
        for email in extract_emails(window, rules):
            if is_generic_email(email, rules):
                continue
            if domains_match(email, website_domain):
                logger.debug(f"Name-proximity match on site domain: {email}")
                return email
            if fallback is None:
                fallback = email

    if fallback:
        logger.debug(f"Name-proximity match (foreign domain): {fallback}")
    return fallback


# ========== SELECTION ==========

def personal_emails(emails: Iterable[str], rules: ContactRules = GERMAN_RULES) -> List[str]:
    """All non-generic emails, normalized, in their original order."""
    return dedupe(
        normalize_email(email) for email in emails
        if email and not is_generic_email(email, rules)
    )


def pick_best_email(emails: Iterable[str], rules: ContactRules = GERMAN_RULES) -> Optional[str]:
    """First personal email; generic mailboxes are never returned."""
    candidates = personal_emails(emails, rules)
    return candidates[0] if candidates else None


def pick_best_phone(phones: Iterable[str], rules: ContactRules = GERMAN_RULES) -> Optional[str]:
    """Mobile numbers win over landlines, otherwise the first candidate."""
    phones = [p for p in phones if p]
    if not phones:
        return None
    for phone in phones:
        if is_mobile_phone(phone, rules):
            return phone
    return phones[0]
