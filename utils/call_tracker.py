"""
External call tracking for one enrichment run.

Records every outbound call (page fetches, DNS lookups, SMTP probes, AI
research) with an estimated cost and logs one summary block per lead.

Uses contextvars for task-safe per-request tracking.
"""

import logging
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from datetime import datetime

logger = logging.getLogger(__name__)


# Estimated costs per call (in USD)
API_COSTS = {
    # OpenRouter perplexity/sonar: $1/1M tokens in+out plus $5/1000 requests
    "sonar_input": 0.001,
    "sonar_output": 0.001,
    "sonar_request": 0.005,

    # Own infrastructure, no per-call price
    "http_fetch": 0.0,
    "dns_mx": 0.0,
    "smtp_probe": 0.0,
}

# Estimated tokens per research call (input, output)
RESEARCH_TOKEN_ESTIMATE = (300, 700)


@dataclass
class ExternalCall:
    """Record of a single outbound call."""
    api_name: str
    call_type: str
    estimated_cost: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)
    success: bool = True
    details: str = ""


@dataclass
class CallSummary:
    """Summary of calls for an enrichment run."""
    total_cost: float = 0.0
    calls_by_api: Dict[str, int] = field(default_factory=dict)
    failures_by_api: Dict[str, int] = field(default_factory=dict)
    call_details: List[ExternalCall] = field(default_factory=list)


class CallTracker:
    """
    Tracks outbound calls for a single lead.

    Usage:
        tracker = CallTracker("Anna Schmidt")
        tracker.track_page_fetch("https://firma.de/impressum", success=True)
        tracker.track_smtp_probe("anna@firma.de", code=550)
        tracker.log_summary()
    """

    def __init__(self, lead_name: str = ""):
        self.lead_name = lead_name
        self.calls: List[ExternalCall] = []
        self.start_time = datetime.now()

    def track_page_fetch(self, url: str, success: bool = True):
        self.calls.append(ExternalCall(
            api_name="Website",
            call_type="fetch",
            success=success,
            details=url
        ))

    def track_dns_lookup(self, domain: str, success: bool = True):
        self.calls.append(ExternalCall(
            api_name="DNS",
            call_type="mx",
            success=success,
            details=domain
        ))

    def track_smtp_probe(self, address: str, code: Optional[int] = None):
        """Track one RCPT TO probe (no mail is ever sent)."""
        self.calls.append(ExternalCall(
            api_name="SMTP",
            call_type="rcpt",
            success=code == 250,
            details=f"{address} -> {code if code is not None else 'n/a'}"
        ))

    def track_research_call(self, success: bool = True):
        """Track an OpenRouter research call (perplexity/sonar)."""
        input_tokens, output_tokens = RESEARCH_TOKEN_ESTIMATE
        cost = (
            (input_tokens / 1000) * API_COSTS["sonar_input"] +
            (output_tokens / 1000) * API_COSTS["sonar_output"] +
            API_COSTS["sonar_request"]
        )
        self.calls.append(ExternalCall(
            api_name="OpenRouter (Sonar)",
            call_type="research",
            estimated_cost=cost,
            success=success,
            details=f"{input_tokens}+{output_tokens} tokens"
        ))

    def get_summary(self) -> CallSummary:
        """Get call summary for this run."""
        summary = CallSummary()

        for call in self.calls:
            summary.total_cost += call.estimated_cost
            summary.calls_by_api[call.api_name] = summary.calls_by_api.get(call.api_name, 0) + 1
            if not call.success:
                summary.failures_by_api[call.api_name] = summary.failures_by_api.get(call.api_name, 0) + 1

        summary.call_details = self.calls
        return summary

    def log_summary(self) -> CallSummary:
        """Log a formatted call summary."""
        summary = self.get_summary()
        duration = (datetime.now() - self.start_time).total_seconds()

        lines = [
            f"",
            f"{'='*60}",
            f"CALL SUMMARY: {self.lead_name}",
            f"{'='*60}",
            f"Duration: {duration:.1f}s",
            f"Total external calls: {len(self.calls)}",
            f"Estimated Total Cost: ${summary.total_cost:.4f}",
            f"",
            f"Breakdown:",
        ]

        for api_name, count in sorted(summary.calls_by_api.items()):
            failed = summary.failures_by_api.get(api_name, 0)
            lines.append(f"  - {api_name}: {count} calls ({failed} failed)")

        lines.append(f"{'='*60}")

        # Log as single block
        logger.info("\n".join(lines))

        return summary


# Task-safe per-request tracker using contextvars
_current_tracker: ContextVar[Optional[CallTracker]] = ContextVar('call_tracker', default=None)


def start_call_tracking(lead_name: str = "") -> CallTracker:
    """Start tracking calls for a new enrichment run."""
    tracker = CallTracker(lead_name)
    _current_tracker.set(tracker)
    return tracker


def get_call_tracker() -> Optional[CallTracker]:
    return _current_tracker.get()


def track_fetch(url: str, success: bool = True):
    tracker = _current_tracker.get()
    if tracker:
        tracker.track_page_fetch(url, success)


def track_dns(domain: str, success: bool = True):
    tracker = _current_tracker.get()
    if tracker:
        tracker.track_dns_lookup(domain, success)


def track_smtp(address: str, code: Optional[int] = None):
    tracker = _current_tracker.get()
    if tracker:
        tracker.track_smtp_probe(address, code)


def track_research(success: bool = True):
    tracker = _current_tracker.get()
    if tracker:
        tracker.track_research_call(success)


def log_call_summary() -> Optional[CallSummary]:
    """Log the call summary for the current run."""
    tracker = _current_tracker.get()
    if tracker:
        return tracker.log_summary()
    return None
