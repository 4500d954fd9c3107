"""
Name normalization and personal email candidate generation.

German names are folded to ASCII the way mailbox names are usually built:
"Jürgen Müller" -> jürgen -> juergen, müller -> mueller.
"""

import logging
import re
import unicodedata
from typing import List, Optional

from models import NameParts
from utils.contact_rules import ContactRules, GERMAN_RULES

logger = logging.getLogger(__name__)


def fold_name(text: str, rules: ContactRules = GERMAN_RULES) -> str:
    """Lower-case, fold umlauts (ä->ae, ß->ss) and strip remaining diacritics."""
    result = (text or "").lower()
    for char, replacement in rules.char_folding.items():
        result = result.replace(char, replacement)
    decomposed = unicodedata.normalize("NFKD", result)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def _token_for_email(token: str, rules: ContactRules) -> str:
    """Folded token reduced to mailbox-safe letters and digits."""
    return re.sub(r"[^a-z0-9]", "", fold_name(token, rules))


def _is_title(token: str, rules: ContactRules) -> bool:
    cleaned = token.lower().rstrip(".")
    if cleaned in rules.name_titles:
        return True
    # Compound titles like "Dipl.-Ing." or "Prof.Dr."
    parts = [p for p in re.split(r"[.\-]+", cleaned) if p]
    return bool(parts) and all(p in rules.name_titles for p in parts)


def strip_tagline(name: str, rules: ContactRules = GERMAN_RULES) -> str:
    """Cut LinkedIn-style taglines: "Anna Schmidt – CEO bei X" -> "Anna Schmidt"."""
    cut = len(name)
    for separator in rules.name_separators:
        idx = name.find(separator)
        if idx != -1:
            cut = min(cut, idx)
    return name[:cut].strip()


def split_name(full_name: str, rules: ContactRules = GERMAN_RULES) -> NameParts:
    """
    Split a full name into normalized first/last name.

    - Drops academic titles (Dr., Prof., Dipl.-Ing., MBA, ...)
    - Noble prefixes are merged into the surname without a space:
      "Anna von Neumann" -> last = "vonneumann"
    - With a single remaining token only `first` is set.
    """
    tokens = [
        t for t in strip_tagline(full_name or "", rules).split()
        if not _is_title(t, rules)
    ]
    tokens = [t.strip(",") for t in tokens if t.strip(",")]

    if not tokens:
        return NameParts()

    first_raw = tokens[0]
    first = _token_for_email(first_raw, rules) or None

    if len(tokens) < 2:
        return NameParts(first=first, first_raw=first_raw)

    last_raw = tokens[-1]
    if len(tokens) >= 3 and tokens[-2].lower() in rules.noble_prefixes:
        last_raw = f"{tokens[-2]} {tokens[-1]}"

    last = "".join(_token_for_email(t, rules) for t in last_raw.split()) or None

    return NameParts(first=first, last=last, first_raw=first_raw, last_raw=last_raw)


def generate_email_candidates(
    first: Optional[str],
    last: Optional[str],
    domain: Optional[str],
    rules: ContactRules = GERMAN_RULES
) -> List[str]:
    """
    Ordered personal mailbox guesses for first/last at domain.

    Returns an empty list if either name part or the domain is missing.
    """
    if not first or not last or not domain:
        return []

    domain = domain.lower().strip()
    candidates: List[str] = []
    for template in rules.email_templates:
        address = template.format(f=first, l=last, fi=first[0], d=domain)
        if address not in candidates:
            candidates.append(address)

    logger.debug(f"Generated {len(candidates)} email candidates for {domain}")
    return candidates
