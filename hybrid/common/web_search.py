"""
Web Search Client

Live search against the Brave Search API. Returns raw results with a
parsed publication time; relevance scoring and freshness filtering live
in the web source executor.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from urllib.parse import urlparse

import httpx

from .errors import SourceUpstreamFailure

logger = logging.getLogger("hybrid.common.web_search")

_UNIT_SECONDS = {
    "second": 1,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
    "week": 7 * 86400,
    "month": 30 * 86400,
    "year": 365 * 86400,
}

_RELATIVE_AGE = re.compile(r"(\d+)\s*(second|minute|hour|day|week|month|year)s?\s+ago", re.IGNORECASE)
_ABSOLUTE_FORMATS = ("%B %d, %Y", "%b %d, %Y", "%d %B %Y", "%d %b %Y", "%Y-%m-%d")


def parse_age(age: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Parse a result age into a UTC datetime.

    Handles "N <unit>s ago" (month = 30 days, year = 365 days), ISO
    timestamps and "March 3, 2025" style dates. Returns None otherwise.
    """
    if not age:
        return None
    now = now or datetime.now(timezone.utc)
    text = age.strip()

    match = _RELATIVE_AGE.search(text)
    if match:
        amount = int(match.group(1))
        return now - timedelta(seconds=amount * _UNIT_SECONDS[match.group(2).lower()])

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except ValueError:
        pass

    for fmt in _ABSOLUTE_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def host_of(url: str) -> str:
    """Hostname without a leading 'www.'"""
    host = (urlparse(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


@dataclass
class WebResult:
    """A single web search hit"""
    title: str
    url: str
    description: str
    age: str = ""
    published: Optional[datetime] = None

    @property
    def host(self) -> str:
        return host_of(self.url)


class BraveSearchClient:
    """
    Brave Search API client.

    GET {endpoint}?q=...&count=...&freshness=pd|pw|pm|py with the
    X-Subscription-Token header.
    """

    def __init__(
        self,
        api_key: str,
        endpoint: str = "https://api.search.brave.com/res/v1/web/search",
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self._endpoint = endpoint
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    @property
    def is_available(self) -> bool:
        return bool(self._api_key)

    async def search(self, query: str, count: int = 10, freshness: Optional[str] = None) -> List[WebResult]:
        if not self._api_key:
            raise SourceUpstreamFailure("web", "Brave API key not configured")

        params = {"q": query, "count": count}
        if freshness:
            params["freshness"] = freshness
        headers = {
            "Accept": "application/json",
            "X-Subscription-Token": self._api_key,
        }

        try:
            response = await self._client.get(self._endpoint, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise SourceUpstreamFailure("web", f"request failed: {e}") from e

        if response.status_code != 200:
            raise SourceUpstreamFailure("web", response.text[:200], status_code=response.status_code)

        try:
            raw_results = (response.json().get("web") or {}).get("results") or []
        except (ValueError, AttributeError) as e:
            raise SourceUpstreamFailure("web", f"malformed response: {e}") from e

        now = datetime.now(timezone.utc)
        results = []
        for item in raw_results:
            url = item.get("url")
            if not url:
                continue
            age = item.get("age") or ""
            published = parse_age(item.get("page_age"), now) or parse_age(age, now)
            results.append(WebResult(
                title=item.get("title", ""),
                url=url,
                description=item.get("description", ""),
                age=age,
                published=published,
            ))

        logger.debug("Brave returned %d results for freshness=%s", len(results), freshness)
        return results

    async def close(self) -> None:
        await self._client.aclose()
