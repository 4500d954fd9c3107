import asyncio
import json

import httpx

from clients.research_client import ResearchClient
from models import LeadInput
from tests.test_llm_parser import ANSWER

LEAD = LeadInput(name="Anna Schmidt", company="Schmidt Consulting", website="https://schmidt-consulting.de")


def make_client(handler, api_key: str = "test-key") -> ResearchClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ResearchClient(client=client, api_key=api_key, timeout=5.0)


def completion(content) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def test_research_success_sends_openrouter_request() -> None:
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=completion(ANSWER))

    outcome = asyncio.run(make_client(handler).research(LEAD))

    assert outcome.ok
    assert outcome.value.email == "anna.schmidt@schmidt-consulting.de"
    assert outcome.value.phone == "+49301234567"

    request = requests[0]
    assert request.method == "POST"
    assert request.headers["authorization"] == "Bearer test-key"
    assert "x-title" in request.headers
    assert "http-referer" in request.headers
    body = json.loads(request.content)
    assert body["messages"][0]["role"] == "system"
    assert body["messages"][1]["content"].startswith("Recherchiere Anna Schmidt")


def test_research_without_api_key_makes_no_call() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=completion(ANSWER))

    outcome = asyncio.run(make_client(handler, api_key="").research(LEAD))

    assert outcome.error == "not_configured"
    assert calls == []


def test_research_http_error() -> None:
    outcome = asyncio.run(make_client(lambda r: httpx.Response(500, text="oops")).research(LEAD))

    assert outcome.error == "http_500"
    assert outcome.value is None


def test_research_payment_required() -> None:
    outcome = asyncio.run(make_client(lambda r: httpx.Response(402, json={})).research(LEAD))

    assert outcome.error == "http_402"


def test_research_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    outcome = asyncio.run(make_client(handler).research(LEAD))

    assert outcome.error == "timeout"


def test_research_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("dns failure", request=request)

    outcome = asyncio.run(make_client(handler).research(LEAD))

    assert outcome.error == "network_error"


def test_research_invalid_json() -> None:
    outcome = asyncio.run(make_client(lambda r: httpx.Response(200, content=b"<html>")).research(LEAD))

    assert outcome.error == "invalid_response"


def test_research_empty_choices() -> None:
    outcome = asyncio.run(make_client(lambda r: httpx.Response(200, json={"choices": []})).research(LEAD))

    assert outcome.error == "empty_response"


def test_research_blank_content() -> None:
    outcome = asyncio.run(make_client(lambda r: httpx.Response(200, json=completion("  "))).research(LEAD))

    assert outcome.error == "empty_response"
