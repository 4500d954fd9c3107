"""
SMTP mailbox verification (probe only, never sends mail).

Talks to the primary MX of a domain and asks RCPT TO for guessed addresses:

    Disconnected -> Connected -> Greeted (EHLO) -> SenderAccepted (MAIL FROM)
        -> CatchAllProbe -> ProbingCandidate(i) -> Done

- 250 on a random mailbox: catch-all domain, first candidate is the best guess
- 250 on a candidate: mailbox exists
- 450/451/452: greylisting, stop without a conclusion
- anything else: RSET and try the next candidate

The transport is closed on every exit path. DATA is never issued.
"""

import asyncio
import errno
import logging
import secrets
from enum import Enum
from typing import Callable, List, NamedTuple, Optional

import aiosmtplib

from config import get_settings
from clients.mx_validator import MxValidator
from models import SmtpGuessResult
from utils.call_tracker import track_smtp
from utils.names import generate_email_candidates

logger = logging.getLogger(__name__)

MAX_PROBES = 9
GREYLIST_CODES = (450, 451, 452)

# Port 25 unreachable: fall back to an MX-backed first.last guess
UNREACHABLE_ERRORS = ("connect_timeout", "connection_refused", "host_unreachable")

_UNREACHABLE_ERRNOS = {errno.EHOSTUNREACH, errno.ENETUNREACH}


class SmtpReply(NamedTuple):
    code: int
    text: str


class SmtpState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    GREETED = "greeted"
    SENDER_ACCEPTED = "sender_accepted"
    CATCH_ALL_PROBE = "catch_all_probe"
    PROBING = "probing"
    DONE = "done"


class SmtpSessionError(Exception):
    """Aborts a probe session; `code` ends up in SmtpGuessResult.error."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


class AiosmtplibTransport:
    """
    SMTP transport on top of aiosmtplib.

    aiosmtplib owns the socket and reply parsing (multi-line replies, line
    limits); this class only exposes the two primitives the probe needs and
    maps library errors onto the errors SmtpProbeSession understands:

    - `connect()` returns the server greeting
    - `command()` sends one line and returns the complete reply, whatever its code
    """

    def __init__(self):
        self._smtp: Optional[aiosmtplib.SMTP] = None

    async def connect(self, host: str, port: int, timeout: float) -> SmtpReply:
        # No implicit TLS / STARTTLS: the probe only needs plain RCPT answers
        self._smtp = aiosmtplib.SMTP(
            hostname=host, port=port, timeout=timeout, use_tls=False, start_tls=False
        )
        try:
            response = await self._smtp.connect()
        except aiosmtplib.SMTPConnectResponseError as e:
            return SmtpReply(e.code, e.message)
        except aiosmtplib.SMTPConnectTimeoutError as e:
            raise asyncio.TimeoutError() from e
        except aiosmtplib.SMTPConnectError as e:
            if isinstance(e.__cause__, OSError):
                raise e.__cause__
            raise OSError(str(e)) from e
        except (aiosmtplib.SMTPException, ValueError) as e:
            logger.debug(f"SMTP greeting from {host} unusable: {e}")
            raise SmtpSessionError("protocol_error") from e
        return SmtpReply(response.code, response.message)

    async def command(self, line: str, timeout: float) -> SmtpReply:
        if self._smtp is None:
            raise ConnectionResetError("not connected")
        try:
            response = await self._smtp.execute_command(
                line.encode("ascii", errors="ignore"), timeout=timeout
            )
        except aiosmtplib.SMTPTimeoutError as e:
            raise asyncio.TimeoutError() from e
        except aiosmtplib.SMTPServerDisconnected as e:
            raise ConnectionResetError(str(e)) from e
        except (aiosmtplib.SMTPException, ValueError) as e:
            # Malformed or oversized reply
            logger.debug(f"SMTP reply to {line.split(' ', 1)[0]} unusable: {e}")
            raise SmtpSessionError("protocol_error") from e
        return SmtpReply(response.code, response.message)

    async def close(self) -> None:
        if self._smtp is None:
            return
        self._smtp.close()
        self._smtp = None


class SmtpProbeSession:
    """One SMTP conversation with one MX host."""

    def __init__(
        self,
        transport,
        host: str,
        port: int,
        timeout: float,
        sender_domain: str
    ):
        self.transport = transport
        self.host = host
        self.port = port
        self.timeout = timeout
        self.sender_domain = sender_domain
        self.state = SmtpState.DISCONNECTED
        self.rcpt_count = 0
        self.greeting: Optional[SmtpReply] = None

    async def run(self, candidates: List[str], domain: str) -> SmtpGuessResult:
        result = SmtpGuessResult(mx_host=self.host)
        try:
            await self._connect()
            await self._greet()
            await self._mail_from()

            self.state = SmtpState.CATCH_ALL_PROBE
            fake = f"{secrets.token_hex(8)}-nonexistent@{domain}"
            reply = await self._rcpt(fake)
            if reply.code == 250:
                logger.info(f"SMTP {self.host}: catch-all domain, using first pattern as best guess")
                result.catch_all = True
                result.verified_email = candidates[0]
                return result

            self.state = SmtpState.PROBING
            for candidate in candidates[:MAX_PROBES]:
                await self._reset()
                reply = await self._rcpt(candidate)
                if reply.code == 250:
                    logger.info(f"SMTP ✓ mailbox accepted: {candidate}")
                    result.verified_email = candidate
                    return result
                logger.debug(f"SMTP ✗ {candidate}: {reply.code}")

            logger.info(f"SMTP {self.host}: none of {min(len(candidates), MAX_PROBES)} patterns accepted")
            return result

        except SmtpSessionError as e:
            result.error = e.code
            return result
        except asyncio.TimeoutError:
            result.error = "timeout"
            return result
        except ConnectionError:
            result.error = "connection_closed"
            return result
        except OSError as e:
            logger.debug(f"SMTP {self.host}: {e}")
            result.error = "network_error"
            return result

        finally:
            result.patterns_tried = self.rcpt_count
            await self._quit()
            self.state = SmtpState.DONE

    async def _connect(self) -> None:
        try:
            self.greeting = await self.transport.connect(self.host, self.port, self.timeout)
        except asyncio.TimeoutError:
            raise SmtpSessionError("connect_timeout")
        except ConnectionRefusedError:
            raise SmtpSessionError("connection_refused")
        except OSError as e:
            if e.errno in _UNREACHABLE_ERRNOS:
                raise SmtpSessionError("host_unreachable")
            logger.debug(f"SMTP connect to {self.host} failed: {e}")
            raise SmtpSessionError("network_error")
        self.state = SmtpState.CONNECTED

    async def _greet(self) -> None:
        greeting = self.greeting
        if greeting.code >= 400:
            raise SmtpSessionError(f"greeting_rejected:{greeting.code}")
        await self.transport.command(f"EHLO {self.sender_domain}", self.timeout)
        self.state = SmtpState.GREETED

    async def _mail_from(self) -> None:
        reply = await self.transport.command(f"MAIL FROM:<verify@{self.sender_domain}>", self.timeout)
        if reply.code != 250:
            raise SmtpSessionError(f"mail_from_rejected:{reply.code}")
        self.state = SmtpState.SENDER_ACCEPTED

    async def _reset(self) -> None:
        await self.transport.command("RSET", self.timeout)
        await self._mail_from()

    async def _rcpt(self, address: str) -> SmtpReply:
        self.rcpt_count += 1
        reply = await self.transport.command(f"RCPT TO:<{address}>", self.timeout)
        track_smtp(address, reply.code)
        if reply.code in GREYLIST_CODES:
            logger.info(f"SMTP {self.host}: greylisted ({reply.code}), stopping")
            raise SmtpSessionError("greylisted")
        return reply

    async def _quit(self) -> None:
        """QUIT (best effort) and close the socket, whatever state we are in."""
        try:
            if self.state != SmtpState.DISCONNECTED:
                await self.transport.command("QUIT", self.timeout)
        except (asyncio.TimeoutError, OSError, SmtpSessionError) as e:
            logger.debug(f"SMTP QUIT on {self.host} failed: {e!r}")
        finally:
            await self.transport.close()


class SmtpVerifier:
    """
    Guesses and verifies a personal mailbox for first/last at domain.

    `transport_factory` builds a fresh transport per session (tests pass a
    scripted fake).
    """

    def __init__(
        self,
        mx_validator: Optional[MxValidator] = None,
        transport_factory: Callable[[], object] = AiosmtplibTransport,
        port: Optional[int] = None,
        timeout: Optional[float] = None,
        sender_domain: Optional[str] = None
    ):
        settings = get_settings()
        self.mx_validator = mx_validator or MxValidator()
        self.transport_factory = transport_factory
        self.port = settings.smtp_port if port is None else port
        self.timeout = settings.smtp_timeout if timeout is None else timeout
        self.sender_domain = sender_domain or settings.smtp_sender_domain

    async def verify(self, first: Optional[str], last: Optional[str], domain: str) -> SmtpGuessResult:
        candidates = generate_email_candidates(first, last, domain)
        if not candidates:
            return SmtpGuessResult(error="no_candidates")

        domain = domain.lower().strip()
        mx = await self.mx_validator.primary_mx(domain)
        if not mx.ok:
            logger.info(f"SMTP skipped for {domain}: no MX record")
            return SmtpGuessResult(error="no_mx_record")

        logger.info(f"📧 SMTP probing {len(candidates)} patterns at {mx.value}")
        session = SmtpProbeSession(
            self.transport_factory(), mx.value, self.port, self.timeout, self.sender_domain
        )
        result = await session.run(candidates, domain)

        if result.error in UNREACHABLE_ERRORS:
            # Port 25 blocked or filtered, but the domain does take mail
            result.verified_email = f"{first}.{last}@{domain}"
            result.unverified_guess = True
            logger.info(f"SMTP unreachable ({result.error}), best guess: {result.verified_email}")
        elif result.error:
            logger.info(f"SMTP aborted for {domain}: {result.error}")

        return result
