"""
Contact Enrichment Pipeline

Finds a personal email + phone for one lead and arbitrates between sources:
1. Website crawl (Impressum, Kontakt, ...) incl. name-proximity matching
2. SMTP verification of generated patterns - only if the crawl found no
   personal email (a human-curated Impressum beats an automated guess)
3. AI research (Perplexity Sonar) - always attempted
4. Merge, validate, pick, classify

Generic mailboxes (info@, kontakt@, ...) are never returned as the email.
The pipeline never raises: any failure ends in status="failed" + error.
"""

import asyncio
import logging
from typing import List, Optional

from config import get_settings
from models import (
    LeadInput, EnrichmentResult, EnrichmentSource, EnrichmentStatus,
    FoundContact, ContactSource, ScrapedData, PerplexityData, SmtpGuessResult,
    Outcome, NameParts, BatchEnrichmentReport, BatchLeadOutcome
)
from clients.website_crawler import WebsiteCrawler
from clients.mx_validator import MxValidator
from clients.smtp_verifier import SmtpVerifier
from clients.research_client import ResearchClient
from utils.contact_parsing import (
    domain_from_url, domains_match, email_domain, is_generic_email,
    normalize_email, normalize_phone, personal_emails, pick_best_phone,
)
from utils.contact_rules import GERMAN_RULES
from utils.names import generate_email_candidates, split_name
from utils.call_tracker import start_call_tracking, log_call_summary

logger = logging.getLogger(__name__)


async def enrich_lead(
    lead: LeadInput,
    crawler: Optional[WebsiteCrawler] = None,
    smtp_verifier: Optional[SmtpVerifier] = None,
    researcher: Optional[ResearchClient] = None,
    mx_validator: Optional[MxValidator] = None
) -> EnrichmentResult:
    """
    Main enrichment pipeline.
    Wrapped with a timeout so a hanging remote never blocks the caller forever.
    """
    timeout = get_settings().pipeline_timeout
    try:
        return await asyncio.wait_for(
            _enrich_lead_inner(lead, crawler, smtp_verifier, researcher, mx_validator),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        logger.error(f"Pipeline timeout ({timeout}s) for {lead.name}")
        return _failed_result(lead, f"Pipeline timeout nach {timeout}s")


async def _enrich_lead_inner(
    lead: LeadInput,
    crawler: Optional[WebsiteCrawler],
    smtp_verifier: Optional[SmtpVerifier],
    researcher: Optional[ResearchClient],
    mx_validator: Optional[MxValidator]
) -> EnrichmentResult:
    """
    Inner pipeline logic, strictly sequential:
    crawl -> (SMTP) -> AI -> merge -> select -> classify
    """
    enrichment_path: List[str] = []
    start_call_tracking(lead.name)
    logger.info(f"=== Starting enrichment for: {lead.name} ({lead.company or 'no company'}) ===")

    try:
        mx_validator = mx_validator or MxValidator()
        crawler = crawler or WebsiteCrawler()
        smtp_verifier = smtp_verifier or SmtpVerifier(mx_validator=mx_validator)
        researcher = researcher or ResearchClient()

        names = split_name(lead.name)
        domain = domain_from_url(lead.website)

        # Step 1: Crawl website
        scraped: Optional[ScrapedData] = None
        if lead.website:
            crawl = await crawler.crawl(lead.website, lead.name)
            if crawl.ok:
                scraped = crawl.value
                enrichment_path.append(f"website_{len(scraped.pages_visited)}_pages")
            else:
                enrichment_path.append(f"website_{crawl.error}")

        # Step 2: Personal email from the site short-circuits SMTP
        scraped_personal = personal_email_from_scrape(scraped, names, domain)
        if scraped_personal:
            enrichment_path.append("scraped_personal_email")
            logger.info(f"✓ Personal email from website: {scraped_personal}")

        # Step 3: SMTP verification of generated patterns
        smtp_result: Optional[SmtpGuessResult] = None
        if not scraped_personal and domain:
            smtp_result = await smtp_verifier.verify(names.first, names.last, domain)
            enrichment_path.append(_smtp_path_label(smtp_result))

        # Step 4: AI research (always)
        research = await researcher.research(lead)
        ai = _ai_data(research)
        enrichment_path.append("ai_research" if ai else f"ai_{research.error or 'empty'}")

        # Step 5: Merge all signals with provenance
        result = EnrichmentResult(website=lead.website)
        result.all_emails_found = merge_emails(lead.email, smtp_result, scraped, ai)
        result.all_phones_found = merge_phones(lead.phone, scraped, ai)

        # Step 6 + 7: Pick and validate email
        result.email = await select_email(
            scraped_personal, smtp_result, result.all_emails_found, domain, mx_validator
        )

        # Step 8: Phone (existing > website > AI, mobile preferred)
        result.phone = pick_best_phone(p.value for p in result.all_phones_found)

        if not result.website and ai and ai.website:
            result.website = ai.website

        # Step 9: Description (AI richer than scraped), processes AI only
        result.company_description = (ai.company_description if ai else None) or (
            scraped.description if scraped else None
        )
        result.business_processes = ai.business_processes if ai else None

        # Step 10 + 11
        result.enrichment_source = determine_enrichment_source(scraped, ai)
        result.status = EnrichmentStatus.from_fields(
            result.email, result.phone, result.company_description, result.business_processes
        )

        logger.info(
            f"=== Enrichment complete: status={result.status.value}, "
            f"source={result.enrichment_source.value if result.enrichment_source else None}, "
            f"path={' -> '.join(enrichment_path)} ==="
        )
        return result

    except Exception as e:
        logger.exception(f"Enrichment failed for {lead.name}: {e}")
        return _failed_result(lead, str(e) or type(e).__name__)

    finally:
        log_call_summary()


async def enrich_leads(
    leads: List[LeadInput],
    crawler: Optional[WebsiteCrawler] = None,
    smtp_verifier: Optional[SmtpVerifier] = None,
    researcher: Optional[ResearchClient] = None,
    mx_validator: Optional[MxValidator] = None
) -> BatchEnrichmentReport:
    """
    Enrich leads one after another (outbound probing stays throttled) and
    report hit rates with the provenance of every chosen email.
    """
    report = BatchEnrichmentReport(total=len(leads))

    for lead in leads:
        result = await enrich_lead(lead, crawler, smtp_verifier, researcher, mx_validator)

        if result.error:
            method = "error"
        elif result.email:
            source = result.email_source()
            method = source.value if source else "unknown"
        else:
            method = "none"

        report.results.append(BatchLeadOutcome(
            name=lead.name,
            email=result.email,
            phone=result.phone,
            method=method,
            status=result.status.value,
        ))

    report.emails_found = sum(1 for r in report.results if r.email)
    report.phones_found = sum(1 for r in report.results if r.phone)
    if report.total:
        report.email_rate = f"{report.emails_found / report.total * 100:.0f}%"

    logger.info(
        f"Batch enrichment: {report.total} leads, {report.emails_found} emails "
        f"({report.email_rate}), {report.phones_found} phones"
    )
    return report


# ========== HELPER FUNCTIONS ==========


def personal_email_from_scrape(
    scraped: Optional[ScrapedData],
    names: NameParts,
    domain: Optional[str]
) -> Optional[str]:
    """
    Personal email for this lead found on the website.

    1. Name-proximity match (email printed next to the lead's name)
    2. A scraped email on the site domain that looks like the lead's mailbox:
       one of the generated patterns, or the surname in the local part
    """
    if not scraped:
        return None

    if scraped.name_match_email:
        return scraped.name_match_email

    candidates = set(generate_email_candidates(names.first, names.last, domain))
    last = names.last or ""

    for email in scraped.emails:
        if is_generic_email(email) or not domains_match(email, domain):
            continue
        local_part = email.split("@", 1)[0]
        if email in candidates or (len(last) >= 3 and last in local_part):
            return email

    return None


def merge_emails(
    existing: Optional[str],
    smtp_result: Optional[SmtpGuessResult],
    scraped: Optional[ScrapedData],
    ai: Optional[PerplexityData]
) -> List[FoundContact]:
    """All emails with provenance, SMTP first, deduplicated by normalized value."""
    tagged = []
    if smtp_result and smtp_result.verified_email:
        tagged.append((smtp_result.verified_email, ContactSource.SMTP))
    if existing:
        tagged.append((existing, ContactSource.EXISTING))
    if scraped:
        tagged.extend((e, ContactSource.WEBSITE) for e in scraped.emails)
    if ai and ai.email:
        tagged.append((ai.email, ContactSource.AI))

    found: List[FoundContact] = []
    seen = set()
    for value, source in tagged:
        email = normalize_email(value)
        if email and email not in seen:
            seen.add(email)
            found.append(FoundContact(value=email, source=source))
    return found


def merge_phones(
    existing: Optional[str],
    scraped: Optional[ScrapedData],
    ai: Optional[PerplexityData]
) -> List[FoundContact]:
    """All phones with provenance (existing > website > AI), short numbers dropped."""
    tagged = []
    if existing:
        tagged.append((existing, ContactSource.EXISTING))
    if scraped:
        tagged.extend((p, ContactSource.WEBSITE) for p in scraped.phones)
    if ai and ai.phone:
        tagged.append((ai.phone, ContactSource.AI))

    found: List[FoundContact] = []
    seen = set()
    for value, source in tagged:
        phone = normalize_phone(value)
        if len(phone.lstrip("+")) < GERMAN_RULES.min_phone_digits or phone in seen:
            continue
        seen.add(phone)
        found.append(FoundContact(value=phone, source=source))
    return found


async def select_email(
    scraped_personal: Optional[str],
    smtp_result: Optional[SmtpGuessResult],
    all_emails: List[FoundContact],
    website_domain: Optional[str],
    mx_validator: MxValidator
) -> Optional[str]:
    """
    Email priority:
    (a) personal email from the website
    (b) SMTP-verified or MX-backed best guess (already authoritative)
    (c) first non-generic email among all signals that passes validation
    Anything but (b) is validated; a rejected (a) falls back to (b) if present.
    """
    smtp_email = smtp_result.verified_email if smtp_result else None
    if smtp_email and is_generic_email(smtp_email):
        # A first name like "Mail" yields mail@domain as the first pattern
        smtp_email = None

    if scraped_personal:
        validation = await validate_email(scraped_personal, website_domain, mx_validator)
        if validation.ok:
            return validation.value
        logger.info(f"✗ Email {scraped_personal} rejected ({validation.error})")
        if smtp_email:
            return smtp_email
    elif smtp_email:
        return smtp_email

    tried = {normalize_email(scraped_personal)} if scraped_personal else set()
    for candidate in personal_emails(e.value for e in all_emails):
        if candidate in tried:
            continue
        tried.add(candidate)
        validation = await validate_email(candidate, website_domain, mx_validator)
        if validation.ok:
            return validation.value
        logger.info(f"✗ Email {candidate} rejected ({validation.error})")

    return None


async def validate_email(
    email: str,
    website_domain: Optional[str],
    mx_validator: MxValidator
) -> Outcome[str]:
    """
    Reject generic mailboxes and domains without MX.
    A domain mismatch with the website is only flagged.
    """
    email = normalize_email(email)
    if is_generic_email(email):
        return Outcome.failure("generic_prefix")

    if not await mx_validator.has_mx_record(email_domain(email)):
        return Outcome.failure("no_mx_record")

    if website_domain and not domains_match(email, website_domain):
        logger.info(f"⚠️ Email domain mismatch: {email} vs website {website_domain} (kept)")

    return Outcome.success(email)


def determine_enrichment_source(
    scraped: Optional[ScrapedData],
    ai: Optional[PerplexityData]
) -> Optional[EnrichmentSource]:
    has_website_data = scraped is not None and scraped.has_data
    has_ai_data = ai is not None

    if has_website_data and has_ai_data:
        return EnrichmentSource.BOTH
    if has_website_data:
        return EnrichmentSource.WEBSITE
    if has_ai_data:
        return EnrichmentSource.PERPLEXITY
    return None


def _ai_data(research: Outcome[PerplexityData]) -> Optional[PerplexityData]:
    """AI result only counts if at least one field was parsed."""
    if not research.ok or research.value is None:
        return None
    if not any(research.value.model_dump().values()):
        return None
    return research.value


def _smtp_path_label(smtp_result: SmtpGuessResult) -> str:
    if smtp_result.catch_all:
        return "smtp_catch_all"
    if smtp_result.unverified_guess:
        return f"smtp_mx_guess_{smtp_result.error}"
    if smtp_result.verified_email:
        return f"smtp_verified_after_{smtp_result.patterns_tried}"
    return f"smtp_{smtp_result.error or 'no_match'}"


def _failed_result(lead: LeadInput, error: str) -> EnrichmentResult:
    return EnrichmentResult(
        website=lead.website,
        status=EnrichmentStatus.FAILED,
        error=error,
    )
