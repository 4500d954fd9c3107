"""
Website crawler for contact discovery.

Visits a short, fixed list of pages where German company sites print
contact data (Impressum first, home page last), one page at a time with a
politeness delay in between:

1. /impressum, /kontakt, /contact, /about, /ueber-uns, /
2. Extract emails + phones from the visible text (script/style removed)
3. Look for an email next to the lead's name (strongest signal we have)
4. Keep the home page description

Failed pages are skipped, never retried.
"""

import asyncio
import logging
import re
from typing import List, Optional

import httpx

from config import get_settings
from models import Outcome, ScrapedData
from utils.call_tracker import track_fetch
from utils.contact_parsing import (
    dedupe, domain_from_url, domains_match, extract_description,
    extract_emails, extract_phones, find_name_proximity_email, html_to_text,
)
from utils.contact_rules import ContactRules, GERMAN_RULES

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"

REQUEST_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "de-DE,de;q=0.9,en;q=0.8",
}

ACCEPTED_CONTENT_TYPES = ("text/html", "text/plain")


def normalize_url(raw: str) -> str:
    """Prepend https:// when no scheme is given and strip trailing slashes."""
    url = (raw or "").strip()
    if not re.match(r"^https?://", url, re.IGNORECASE):
        url = f"https://{url}"
    return url.rstrip("/")


class WebsiteCrawler:
    """
    Crawls a company website for contact data.

    Pass `client` to reuse an existing httpx.AsyncClient (tests use one with a
    MockTransport); otherwise a client is created per crawl and closed after.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        delay: Optional[float] = None,
        rules: ContactRules = GERMAN_RULES
    ):
        settings = get_settings()
        self.timeout = settings.fetch_timeout if timeout is None else timeout
        self.delay = settings.crawl_delay if delay is None else delay
        self.rules = rules
        self._client = client

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers=REQUEST_HEADERS
        )

    async def crawl(self, website: str, lead_name: Optional[str] = None) -> Outcome[ScrapedData]:
        """
        Crawl all contact paths of `website`.

        Returns a failed Outcome only if the URL is unusable or not a single
        page could be fetched.
        """
        base_url = normalize_url(website)
        site_domain = domain_from_url(base_url)
        if not site_domain or "." not in site_domain:
            logger.warning(f"Unusable website URL: {website!r}")
            return Outcome.failure("invalid_url")

        logger.info(f"🌐 Crawling {base_url} ({len(self.rules.contact_paths)} paths)")

        client = self._client or self._build_client()
        try:
            scraped = await self._crawl_paths(client, base_url, site_domain, lead_name)
        finally:
            if self._client is None:
                await client.aclose()

        if not scraped.pages_visited:
            logger.warning(f"✗ No page of {base_url} could be fetched")
            return Outcome.failure("unreachable")
        return Outcome.success(scraped)

    async def _crawl_paths(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        site_domain: str,
        lead_name: Optional[str]
    ) -> ScrapedData:
        all_emails: List[str] = []
        all_phones: List[str] = []
        name_matches: List[str] = []
        description: Optional[str] = None
        visited: List[str] = []

        for i, path in enumerate(self.rules.contact_paths):
            url = f"{base_url}/" if path == "/" else f"{base_url}{path}"

            if i > 0 and self.delay > 0:
                await asyncio.sleep(self.delay)

            html = await self.fetch_page(client, url)
            if not html:
                continue
            visited.append(url)

            text = html_to_text(html)
            emails = extract_emails(text, self.rules)
            phones = extract_phones(text, self.rules)
            all_emails.extend(emails)
            all_phones.extend(phones)
            logger.debug(f"  {path}: {len(emails)} emails, {len(phones)} phones")

            if lead_name:
                match = find_name_proximity_email(text, lead_name, site_domain, self.rules)
                if match:
                    logger.info(f"  ✓ Name-proximity email on {path}: {match}")
                    name_matches.append(match)

            # Only the home page description is kept
            if path == "/" and not description:
                description = extract_description(html, self.rules)

        name_match_email = next(
            (m for m in name_matches if domains_match(m, site_domain)),
            name_matches[0] if name_matches else None
        )

        scraped = ScrapedData(
            emails=dedupe(all_emails),
            phones=dedupe(all_phones),
            description=description,
            name_match_email=name_match_email,
            pages_visited=visited,
        )
        logger.info(
            f"Crawl done: {len(visited)} pages, {len(scraped.emails)} emails, "
            f"{len(scraped.phones)} phones, description={'yes' if description else 'no'}"
        )
        return scraped

    async def fetch_page(self, client: httpx.AsyncClient, url: str) -> Optional[str]:
        """GET one page; None on error, non-2xx or non-HTML content."""
        try:
            response = await client.get(url, headers=REQUEST_HEADERS, timeout=self.timeout, follow_redirects=True)
        except httpx.HTTPError as e:
            logger.debug(f"  GET {url}: failed ({type(e).__name__})")
            track_fetch(url, success=False)
            return None

        content_type = response.headers.get("content-type", "").lower()
        if not response.is_success or not any(t in content_type for t in ACCEPTED_CONTENT_TYPES):
            logger.debug(f"  GET {url}: skipped ({response.status_code}, {content_type or 'no content-type'})")
            track_fetch(url, success=False)
            return None

        track_fetch(url, success=True)
        return response.text
