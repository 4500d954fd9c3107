import asyncio

import dns.exception

from clients.mx_validator import MxValidator
from clients.smtp_verifier import AiosmtplibTransport, SmtpVerifier
from models import (
    ContactSource, EnrichmentSource, EnrichmentStatus, LeadInput, Outcome,
    PerplexityData, ScrapedData, SmtpGuessResult,
)
from pipeline import enrich_lead, enrich_leads, merge_phones, personal_email_from_scrape
from tests.fakes import (
    FakeCrawler, FakeResearcher, FakeResolver, FakeSmtpTransport, FakeSmtpVerifier, LocalSmtpServer,
)
from utils.names import split_name

DOMAIN = "schmidt-consulting.de"
ANNA = LeadInput(name="Anna Schmidt", website=f"https://{DOMAIN}")
MX_OK = {DOMAIN: [(10, f"mx.{DOMAIN}.")], "gmail.com": [(5, "gmail-smtp-in.l.google.com.")]}


def scraped(**kwargs) -> Outcome:
    kwargs.setdefault("pages_visited", [f"https://{DOMAIN}/impressum"])
    return Outcome.success(ScrapedData(**kwargs))


def run(lead, crawl=None, smtp=None, ai=None, mx=None, crawler=None):
    return asyncio.run(enrich_lead(
        lead,
        crawler=crawler or FakeCrawler(outcome=crawl or Outcome.failure("unreachable")),
        smtp_verifier=smtp or FakeSmtpVerifier(),
        researcher=FakeResearcher(ai),
        mx_validator=MxValidator(resolver=FakeResolver(MX_OK if mx is None else mx)),
    ))


def test_smtp_verified_email_when_website_has_nothing() -> None:
    transport = FakeSmtpTransport(rcpt_codes={f"anna.schmidt@{DOMAIN}": 250})
    mx_validator = MxValidator(resolver=FakeResolver(MX_OK))
    verifier = SmtpVerifier(mx_validator=mx_validator, transport_factory=lambda: transport)

    result = asyncio.run(enrich_lead(
        ANNA,
        crawler=FakeCrawler(outcome=Outcome.failure("unreachable")),
        smtp_verifier=verifier,
        researcher=FakeResearcher(None),
        mx_validator=mx_validator,
    ))

    assert result.email == f"anna.schmidt@{DOMAIN}"
    assert len(transport.rcpt_addresses) == 3
    assert result.email_source() == ContactSource.SMTP
    # No website data and no AI answer
    assert result.enrichment_source is None
    assert result.status == EnrichmentStatus.PARTIAL
    assert result.error is None


def test_generic_only_scrape_gives_no_email() -> None:
    result = run(
        ANNA,
        crawl=scraped(emails=["kontakt@firma.de"], phones=["0301234567"]),
    )

    assert result.email is None
    assert [e.value for e in result.all_emails_found] == ["kontakt@firma.de"]
    assert result.phone == "0301234567"
    assert result.status == EnrichmentStatus.PARTIAL
    assert result.enrichment_source == EnrichmentSource.WEBSITE


def test_no_mx_for_lead_domain_falls_back_to_ai_email() -> None:
    verifier = SmtpVerifier(
        mx_validator=MxValidator(resolver=FakeResolver({"gmail.com": [(5, "gmail-smtp-in.l.google.com.")]})),
        transport_factory=FakeSmtpTransport,
    )

    result = run(
        ANNA,
        smtp=verifier,
        ai=PerplexityData(email="anna.schmidt@gmail.com"),
        mx={"gmail.com": [(5, "gmail-smtp-in.l.google.com.")]},
    )

    assert result.email == "anna.schmidt@gmail.com"
    assert result.email_source() == ContactSource.AI
    assert result.enrichment_source == EnrichmentSource.PERPLEXITY


def test_ai_email_on_domain_without_mx_is_rejected() -> None:
    result = run(
        ANNA,
        smtp=FakeSmtpVerifier(SmtpGuessResult(error="no_mx_record")),
        ai=PerplexityData(email=f"anna@{DOMAIN}"),
        mx={},
    )

    assert result.email is None
    assert result.all_emails_found[0].value == f"anna@{DOMAIN}"


def test_dns_trouble_keeps_plausible_email() -> None:
    result = run(
        ANNA,
        ai=PerplexityData(email=f"anna.schmidt@{DOMAIN}"),
        mx={DOMAIN: dns.exception.Timeout()},
    )

    assert result.email == f"anna.schmidt@{DOMAIN}"


def test_name_match_skips_smtp() -> None:
    smtp = FakeSmtpVerifier(SmtpGuessResult(verified_email=f"anna@{DOMAIN}"))

    result = run(
        ANNA,
        crawl=scraped(
            emails=[f"anna.schmidt@{DOMAIN}", f"info@{DOMAIN}"],
            name_match_email=f"anna.schmidt@{DOMAIN}",
        ),
        smtp=smtp,
    )

    assert result.email == f"anna.schmidt@{DOMAIN}"
    assert result.email_source() == ContactSource.WEBSITE
    assert smtp.calls == []


def test_surname_email_on_site_domain_skips_smtp() -> None:
    smtp = FakeSmtpVerifier()

    result = run(ANNA, crawl=scraped(emails=[f"info@{DOMAIN}", f"a.schmidt@{DOMAIN}"]), smtp=smtp)

    assert result.email == f"a.schmidt@{DOMAIN}"
    assert smtp.calls == []


def test_foreign_scraped_email_does_not_skip_smtp() -> None:
    smtp = FakeSmtpVerifier(SmtpGuessResult(verified_email=f"anna.schmidt@{DOMAIN}", patterns_tried=3))

    result = run(ANNA, crawl=scraped(emails=["webdesign@agentur.de"]), smtp=smtp)

    assert smtp.calls == [("anna", "schmidt", DOMAIN)]
    assert result.email == f"anna.schmidt@{DOMAIN}"


def test_catch_all_guess_is_used() -> None:
    smtp = FakeSmtpVerifier(SmtpGuessResult(verified_email=f"anna@{DOMAIN}", catch_all=True, patterns_tried=1))

    result = run(ANNA, smtp=smtp)

    assert result.email == f"anna@{DOMAIN}"


def test_unreachable_smtp_guess_is_used() -> None:
    smtp = FakeSmtpVerifier(SmtpGuessResult(
        verified_email=f"anna.schmidt@{DOMAIN}", unverified_guess=True, error="connect_timeout"
    ))

    result = run(ANNA, smtp=smtp, ai=PerplexityData(email="anna.schmidt@gmail.com"))

    assert result.email == f"anna.schmidt@{DOMAIN}"
    assert result.email_source() == ContactSource.SMTP


def test_generic_smtp_guess_is_never_returned() -> None:
    lead = LeadInput(name="Mail Schmidt", website=f"https://{DOMAIN}")
    smtp = FakeSmtpVerifier(SmtpGuessResult(verified_email=f"mail@{DOMAIN}", catch_all=True))

    result = run(lead, smtp=smtp, ai=PerplexityData(email="mail.schmidt@gmail.com"))

    assert result.email == "mail.schmidt@gmail.com"


def test_existing_email_wins_over_ai_email() -> None:
    lead = LeadInput(name="Anna Schmidt", email=f"Anna@{DOMAIN}")

    result = run(lead, ai=PerplexityData(email="anna.schmidt@gmail.com"))

    assert result.email == f"anna@{DOMAIN}"
    assert result.email_source() == ContactSource.EXISTING


def test_rejected_existing_email_falls_through_to_ai_email() -> None:
    lead = LeadInput(name="Anna Schmidt", email="anna@alte-firma.de", website=f"https://{DOMAIN}")

    result = run(
        lead,
        smtp=FakeSmtpVerifier(SmtpGuessResult(error="no_mx_record")),
        ai=PerplexityData(email="anna.schmidt@gmail.com"),
        mx={"gmail.com": [(5, "gmail-smtp-in.l.google.com.")]},
    )

    assert [e.value for e in result.all_emails_found] == ["anna@alte-firma.de", "anna.schmidt@gmail.com"]
    assert result.email == "anna.schmidt@gmail.com"
    assert result.email_source() == ContactSource.AI


def test_lead_without_website_skips_crawl_and_smtp() -> None:
    crawler = FakeCrawler()
    smtp = FakeSmtpVerifier()

    result = asyncio.run(enrich_lead(
        LeadInput(name="Anna Schmidt"),
        crawler=crawler,
        smtp_verifier=smtp,
        researcher=FakeResearcher(PerplexityData(website="https://schmidt-consulting.de")),
        mx_validator=MxValidator(resolver=FakeResolver(MX_OK)),
    ))

    assert crawler.calls == []
    assert smtp.calls == []
    assert result.website == "https://schmidt-consulting.de"


def test_mobile_phone_preferred_and_deduplicated() -> None:
    lead = LeadInput(name="Anna Schmidt", website=f"https://{DOMAIN}", phone="030 1234567")

    result = run(
        lead,
        crawl=scraped(phones=["0301234567"]),
        ai=PerplexityData(phone="+49 170 1234567"),
    )

    assert result.phone == "+491701234567"
    assert [(p.value, p.source) for p in result.all_phones_found] == [
        ("0301234567", ContactSource.EXISTING),
        ("+491701234567", ContactSource.AI),
    ]


def test_complete_result_from_both_sources() -> None:
    result = run(
        ANNA,
        crawl=scraped(
            emails=[f"anna.schmidt@{DOMAIN}"],
            phones=["0301234567"],
            description="Beratung für den Mittelstand aus Berlin.",
            name_match_email=f"anna.schmidt@{DOMAIN}",
        ),
        ai=PerplexityData(
            email=f"anna.schmidt@{DOMAIN}",
            company_description="Schmidt Consulting berät Mittelständler bei der Digitalisierung.",
            business_processes="Akquise, Beratung, Abrechnung",
        ),
    )

    assert result.status == EnrichmentStatus.COMPLETE
    assert result.enrichment_source == EnrichmentSource.BOTH
    # AI description wins over the scraped one
    assert result.company_description.startswith("Schmidt Consulting berät")
    assert result.business_processes == "Akquise, Beratung, Abrechnung"
    assert [e.value for e in result.all_emails_found] == [f"anna.schmidt@{DOMAIN}"]
    assert result.all_emails_found[0].source == ContactSource.WEBSITE


def test_scraped_description_used_without_ai() -> None:
    result = run(ANNA, crawl=scraped(description="Beratung für den Mittelstand aus Berlin."))

    assert result.company_description == "Beratung für den Mittelstand aus Berlin."
    assert result.business_processes is None


def test_empty_ai_answer_does_not_count_as_source() -> None:
    result = run(LeadInput(name="Anna Schmidt"), ai=PerplexityData())

    assert result.enrichment_source is None
    assert result.status == EnrichmentStatus.FAILED
    assert result.error is None


def test_crashing_component_gives_failed_result() -> None:
    result = run(ANNA, crawler=FakeCrawler(error=RuntimeError("boom")))

    assert result.status == EnrichmentStatus.FAILED
    assert result.error == "boom"
    assert result.email is None
    assert result.phone is None
    assert result.website == ANNA.website


def test_personal_email_from_scrape_ignores_short_surname_substrings() -> None:
    names = split_name("Li Xu")
    data = ScrapedData(emails=["xuan@firma.de", "li.xu@firma.de"])

    assert personal_email_from_scrape(data, names, "firma.de") == "li.xu@firma.de"
    assert personal_email_from_scrape(None, names, "firma.de") is None


def test_merge_phones_drops_short_numbers() -> None:
    found = merge_phones("12345", None, PerplexityData(phone="0171 2345678"))

    assert [p.value for p in found] == ["01712345678"]


def test_batch_report() -> None:
    smtp = FakeSmtpVerifier(SmtpGuessResult(verified_email=f"anna.schmidt@{DOMAIN}", patterns_tried=3))
    leads = [ANNA, LeadInput(name="Max Mustermann")]

    report = asyncio.run(enrich_leads(
        leads,
        crawler=FakeCrawler(outcome=Outcome.failure("unreachable")),
        smtp_verifier=smtp,
        researcher=FakeResearcher(None),
        mx_validator=MxValidator(resolver=FakeResolver(MX_OK)),
    ))

    assert report.total == 2
    assert report.emails_found == 1
    assert report.phones_found == 0
    assert report.email_rate == "50%"
    assert [(r.name, r.method, r.status) for r in report.results] == [
        ("Anna Schmidt", "smtp", "partial"),
        ("Max Mustermann", "none", "failed"),
    ]


def test_batch_report_marks_errors() -> None:
    report = asyncio.run(enrich_leads(
        [ANNA],
        crawler=FakeCrawler(error=ValueError("kaputt")),
        smtp_verifier=FakeSmtpVerifier(),
        researcher=FakeResearcher(None),
        mx_validator=MxValidator(resolver=FakeResolver(MX_OK)),
    ))

    assert report.results[0].method == "error"
    assert report.email_rate == "0%"


def test_broken_mail_server_only_aborts_smtp() -> None:
    greeting = b"220-" + b"x" * 70000 + b"\r\n220 ready\r\n"

    async def scenario():
        async with LocalSmtpServer(greeting=greeting) as server:
            mx_validator = MxValidator(resolver=FakeResolver({DOMAIN: [(10, "127.0.0.1.")]}))
            verifier = SmtpVerifier(
                mx_validator=mx_validator,
                transport_factory=AiosmtplibTransport,
                port=server.port,
                timeout=2.0,
            )
            return await enrich_lead(
                ANNA,
                crawler=FakeCrawler(outcome=Outcome.failure("unreachable")),
                smtp_verifier=verifier,
                researcher=FakeResearcher(PerplexityData(
                    phone="+49 170 1234567",
                    company_description="Beratung für den Mittelstand.",
                )),
                mx_validator=mx_validator,
            )

    result = asyncio.run(scenario())

    assert result.error is None
    assert result.status == EnrichmentStatus.PARTIAL
    assert result.phone == "+491701234567"
    assert result.company_description == "Beratung für den Mittelstand."
    assert result.email is None
