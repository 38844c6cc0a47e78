"""
Client for the web answer and web search endpoints (Exa-compatible).

Both calls run inside a fact-check gate slot and through the web breaker.
Transport and HTTP errors are wrapped into :class:`UpstreamUnavailable`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

import httpx

from arbiter.configuration.app_configuration import WebSettings
from arbiter.core.errors import MalformedResponse, UpstreamUnavailable
from arbiter.resilience.circuit_breaker import CircuitBreaker
from arbiter.resilience.concurrency_gate import ConcurrencyGate, PriorityClass
from arbiter.util.logger import get_logger

logger = get_logger("web_search_client")

_URL_IN_TEXT = re.compile(r"(https?://[^\s<>\"'`]+)")
_TRAILING_PUNCTUATION = re.compile(r"[)\].,;:!?]+$")
_NO_RESULTS = re.compile(r"no relevant results|no results", re.IGNORECASE)


def clean_url(url: str) -> str:
    """Trim whitespace and trailing punctuation picked up from prose."""
    return _TRAILING_PUNCTUATION.sub("", url.strip())


@dataclass(frozen=True, slots=True)
class WebAnswer:
    answer_text: str = ""
    urls: List[str] = field(default_factory=list)

    @property
    def has_grounding(self) -> bool:
        """False for an empty answer or one that reports no results."""
        text = self.answer_text.strip()
        return bool(text) and not _NO_RESULTS.search(text)


@dataclass(frozen=True, slots=True)
class SearchResult:
    title: str
    url: str
    snippet: str = ""


class WebSearchClient:
    """
    Async HTTP client for ``/answer`` and ``/search``.

    Args:
        settings: Endpoint URLs, timeout and API key.
        breaker: Breaker of the web dependency.
        gate: Shared concurrency gate.
        http_client: Optional pre-built ``httpx.AsyncClient`` (tests pass one
            with a mock transport).
    """

    def __init__(
        self,
        settings: WebSettings,
        breaker: CircuitBreaker,
        gate: ConcurrencyGate,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings
        self._breaker = breaker
        self._gate = gate
        self._http = http_client or httpx.AsyncClient(timeout=settings.timeout_seconds)

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._settings.api_key}", "Content-Type": "application/json"}

    async def _post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._http.post(url, json=payload, headers=self._headers())
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise UpstreamUnavailable("web", f"HTTP {exc.response.status_code} from {url}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable("web", f"{type(exc).__name__}: {exc}") from exc
        except ValueError as exc:
            raise MalformedResponse(f"non-JSON body from {url}") from exc
        if not isinstance(data, dict):
            raise MalformedResponse(f"unexpected body type {type(data).__name__} from {url}")
        return data

    async def _guarded_post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with self._gate.slot(PriorityClass.FACT_CHECK):
            return await self._breaker.execute(lambda: self._post(url, payload))

    @staticmethod
    def parse_answer(data: Dict[str, Any]) -> WebAnswer:
        """Build a :class:`WebAnswer`; URLs come from ``urls`` or, failing that, the answer text."""
        answer = data.get("answer")
        answer_text = answer if isinstance(answer, str) else ""

        raw_urls = data.get("urls") or []
        if isinstance(raw_urls, str):
            raw_urls = [raw_urls]
        urls = [clean_url(u) for u in raw_urls if isinstance(u, str)]

        if not urls and answer_text:
            urls = [clean_url(m) for m in _URL_IN_TEXT.findall(answer_text)]

        if not urls and isinstance(data.get("citations"), list):
            urls = [clean_url(c["url"]) for c in data["citations"] if isinstance(c, dict) and c.get("url")]

        return WebAnswer(answer_text=answer_text, urls=urls)

    async def answer(self, query: str) -> WebAnswer:
        """Ask the answer endpoint for grounding on ``query``."""
        data = await self._guarded_post(self._settings.answer_url, {"query": query, "type": "neural"})
        result = self.parse_answer(data)
        logger.debug("[WEB] answer: %d chars, %d urls", len(result.answer_text), len(result.urls))
        return result

    async def search(self, query: str, result_count: int = 10) -> List[SearchResult]:
        """Return up to ``result_count`` results in ranked order."""
        data = await self._guarded_post(self._settings.search_url, {"query": query, "numResults": result_count})
        results: List[SearchResult] = []
        for item in data.get("results") or []:
            if not isinstance(item, dict) or not item.get("url"):
                continue
            results.append(
                SearchResult(
                    title=str(item.get("title") or ""),
                    url=clean_url(str(item["url"])),
                    snippet=str(item.get("text") or item.get("snippet") or ""),
                )
            )
        logger.debug("[WEB] search %r: %d results", query[:60], len(results))
        return results[:result_count]

    async def news_search(self, topic: str, result_count: int = 5, today: Optional[date] = None) -> List[SearchResult]:
        """Search biased toward recent coverage of ``topic``."""
        stamp = (today or date.today()).isoformat()
        return await self.search(f"latest news about {topic} as of {stamp}", result_count)

    async def close(self) -> None:
        await self._http.aclose()
