"""
DNS MX validation.

Two questions are answered here:
- does the domain receive mail at all? (fail-open on DNS trouble)
- which host should an SMTP probe talk to? (lowest preference value)
"""

import logging
from typing import List, Optional, Tuple

import dns.asyncresolver
import dns.exception
import dns.resolver

from config import get_settings
from models import Outcome
from utils.call_tracker import track_dns

logger = logging.getLogger(__name__)

# (preference, host)
MxRecord = Tuple[int, str]


class MxValidator:
    """
    MX lookups via dnspython's async resolver.

    `resolver` only needs an awaitable `resolve(domain, "MX")`; tests pass a
    fake one.
    """

    def __init__(
        self,
        resolver=None,
        timeout: Optional[float] = None,
        lifetime: Optional[float] = None
    ):
        if resolver is None:
            settings = get_settings()
            resolver = dns.asyncresolver.Resolver()
            resolver.timeout = settings.dns_timeout if timeout is None else timeout
            resolver.lifetime = settings.dns_lifetime if lifetime is None else lifetime
        self._resolver = resolver

    async def lookup(self, domain: str) -> Outcome[List[MxRecord]]:
        """
        Resolve MX records, sorted by preference.

        Failure codes: "no_mx_record" (NXDOMAIN / no answer / null MX),
        "dns_error" (timeouts, SERVFAIL, anything else from the resolver).
        """
        domain = (domain or "").strip().lower()
        if not domain:
            return Outcome.failure("no_mx_record")

        try:
            answers = await self._resolver.resolve(domain, "MX")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer) as e:
            logger.debug(f"MX {domain}: none ({type(e).__name__})")
            track_dns(domain, success=False)
            return Outcome.failure("no_mx_record")
        except dns.exception.DNSException as e:
            logger.warning(f"MX lookup for {domain} failed: {type(e).__name__}")
            track_dns(domain, success=False)
            return Outcome.failure("dns_error")

        records = sorted(
            (int(answer.preference), str(answer.exchange).rstrip(".").lower())
            for answer in answers
        )
        # Null MX (RFC 7505) has exchange "."
        records = [(pref, host) for pref, host in records if host]

        track_dns(domain, success=bool(records))
        if not records:
            return Outcome.failure("no_mx_record")

        logger.debug(f"MX {domain}: {records}")
        return Outcome.success(records)

    async def has_mx_record(self, domain: str) -> bool:
        """
        True if the domain has at least one MX record.

        Fail-open: a lookup that errors out (timeout, SERVFAIL) counts as True
        so a plausible email is not discarded over transient DNS trouble.
        """
        outcome = await self.lookup(domain)
        if outcome.ok:
            return True
        return outcome.error != "no_mx_record"

    async def primary_mx(self, domain: str) -> Outcome[str]:
        """Host with the lowest preference value, or "no_mx_record"."""
        outcome = await self.lookup(domain)
        if not outcome.ok:
            return Outcome.failure("no_mx_record")
        return Outcome.success(outcome.value[0][1])
