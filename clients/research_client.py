"""
AI research client (Perplexity Sonar via OpenRouter).

One chat completion per lead: a German research question about the person
and company, answered in free text and parsed heuristically by llm_parser.

API: https://openrouter.ai/api/v1/chat/completions
"""

import logging
from typing import Optional

import httpx

from config import get_settings
from llm_parser import SYSTEM_PROMPT, build_research_query, parse_research_answer
from models import LeadInput, Outcome, PerplexityData
from utils.call_tracker import track_research

logger = logging.getLogger(__name__)


class ResearchClient:
    """
    OpenRouter client for lead research.

    Never raises: HTTP errors, timeouts and unusable responses all come back
    as a failed Outcome so the pipeline can carry on without AI data.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        settings = get_settings()
        self.api_key = settings.openrouter_api_key if api_key is None else api_key
        self.url = settings.openrouter_url
        self.model = settings.research_model
        self.temperature = settings.research_temperature
        self.referer = settings.app_referer
        self.title = settings.app_title
        self.timeout = settings.api_timeout if timeout is None else timeout
        self._client = client

    def build_request(self, lead: LeadInput) -> dict:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_research_query(lead)},
            ],
            "temperature": self.temperature,
        }

    async def research(self, lead: LeadInput) -> Outcome[PerplexityData]:
        if not self.api_key:
            logger.warning("OpenRouter API key not configured - skipping AI research")
            return Outcome.failure("not_configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.referer,
            "X-Title": self.title,
        }

        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        try:
            response = await client.post(
                self.url, json=self.build_request(lead), headers=headers, timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error(f"OpenRouter API error: {status_code}")
            if status_code in (401, 402, 403):
                logger.error(f"OpenRouter auth/payment error (status {status_code}) - check billing")
            track_research(success=False)
            return Outcome.failure(f"http_{status_code}")
        except httpx.TimeoutException:
            logger.warning(f"OpenRouter research timed out after {self.timeout}s")
            track_research(success=False)
            return Outcome.failure("timeout")
        except httpx.HTTPError as e:
            logger.warning(f"OpenRouter research failed: {type(e).__name__}: {e}")
            track_research(success=False)
            return Outcome.failure("network_error")
        except ValueError:
            logger.warning("OpenRouter returned invalid JSON")
            track_research(success=False)
            return Outcome.failure("invalid_response")
        finally:
            if self._client is None:
                await client.aclose()

        track_research(success=True)
        content = _first_choice_content(data)
        if not content:
            logger.warning("OpenRouter answer had no content")
            return Outcome.failure("empty_response")

        parsed = parse_research_answer(content)
        logger.info(
            f"AI research: email={'yes' if parsed.email else 'no'}, phone={'yes' if parsed.phone else 'no'}, "
            f"website={parsed.website or '-'}, description={'yes' if parsed.company_description else 'no'}"
        )
        return Outcome.success(parsed)


def _first_choice_content(data) -> Optional[str]:
    """choices[0].message.content, tolerant of any missing level."""
    if not isinstance(data, dict):
        return None
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None
    return content if isinstance(content, str) and content.strip() else None
