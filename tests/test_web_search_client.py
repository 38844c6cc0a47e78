"""Tests for the web answer/search client, driven through httpx.MockTransport."""

import json
from datetime import date

import httpx
import pytest

from arbiter.configuration.app_configuration import WebSettings
from arbiter.core.errors import BreakerOpen, MalformedResponse, UpstreamUnavailable
from arbiter.resilience.circuit_breaker import CircuitBreaker
from arbiter.resilience.concurrency_gate import ConcurrencyGate
from arbiter.services.web_search_client import WebAnswer, WebSearchClient, clean_url


def make_client(handler, breaker=None):
    transport = httpx.MockTransport(handler)
    return WebSearchClient(
        WebSettings(answer_url="https://web.test/answer", search_url="https://web.test/search"),
        breaker or CircuitBreaker("web"),
        ConcurrencyGate(),
        http_client=httpx.AsyncClient(transport=transport),
    )


@pytest.mark.asyncio
async def test_answer_posts_query_and_parses_urls(monkeypatch):
    monkeypatch.setenv("EXA_API_KEY", "exa-test")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200, json={"answer": "The earth is an oblate spheroid.", "urls": ["https://nasa.gov/earth)."]}
        )

    client = make_client(handler)
    answer = await client.answer("Is the earth flat?")

    assert answer == WebAnswer("The earth is an oblate spheroid.", ["https://nasa.gov/earth"])
    assert answer.has_grounding
    assert seen["url"] == "https://web.test/answer"
    assert seen["auth"] == "Bearer exa-test"
    assert seen["body"]["query"] == "Is the earth flat?"
    await client.close()


@pytest.mark.asyncio
async def test_search_returns_ranked_results():
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["numResults"] == 2
        return httpx.Response(
            200,
            json={
                "results": [
                    {"title": "First", "url": "https://a.example/1", "text": "one"},
                    {"title": "No url"},
                    {"title": "Second", "url": "https://a.example/2"},
                ]
            },
        )

    client = make_client(handler)
    results = await client.search("tides", result_count=2)

    assert [(r.title, r.url, r.snippet) for r in results] == [
        ("First", "https://a.example/1", "one"),
        ("Second", "https://a.example/2", ""),
    ]
    await client.close()


@pytest.mark.asyncio
async def test_news_search_dates_the_query():
    queries = []

    def handler(request: httpx.Request) -> httpx.Response:
        queries.append(json.loads(request.content)["query"])
        return httpx.Response(200, json={"results": []})

    client = make_client(handler)
    await client.news_search("space", today=date(2024, 5, 1))

    assert queries == ["latest news about space as of 2024-05-01"]
    await client.close()


@pytest.mark.asyncio
async def test_http_error_becomes_upstream_unavailable_and_trips_breaker():
    breaker = CircuitBreaker("web", failure_threshold=2)
    client = make_client(lambda request: httpx.Response(503, text="unavailable"), breaker)

    for _ in range(2):
        with pytest.raises(UpstreamUnavailable, match="HTTP 503"):
            await client.answer("anything")

    with pytest.raises(BreakerOpen):
        await client.answer("anything")
    await client.close()


@pytest.mark.asyncio
async def test_non_json_body_is_malformed():
    client = make_client(lambda request: httpx.Response(200, text="<html>oops</html>"))

    with pytest.raises(MalformedResponse):
        await client.answer("anything")
    await client.close()


def test_parse_answer_falls_back_to_urls_in_text():
    answer = WebSearchClient.parse_answer({"answer": "See https://who.int/vaccines, it is clear."})

    assert answer.urls == ["https://who.int/vaccines"]


def test_no_results_answer_has_no_grounding():
    assert not WebAnswer("No relevant results were found.", []).has_grounding
    assert not WebAnswer("   ", []).has_grounding


def test_clean_url():
    assert clean_url("  https://example.org/page).  ") == "https://example.org/page"
