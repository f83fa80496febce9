"""Web and image search over the Brave Search API."""

from __future__ import annotations

import time
from typing import Any, Dict, Optional

import httpx

from aibase.config.settings import get_settings
from aibase.core.exceptions import ToolError
from aibase.core.logging import get_logger

logger = get_logger(__name__)

SAFESEARCH_LEVELS = ("off", "moderate", "strict")


def _make_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=httpx.Timeout(timeout))


def _api_key() -> str:
    api_key = get_settings().brave_api_key
    if not api_key:
        raise ToolError(
            "BRAVE_API_KEY environment variable is not set. Get your API key from https://brave.com/search/api/",
            tool="web_search",
        )
    return api_key


async def _brave_get(endpoint: str, params: Dict[str, Any], label: str) -> Dict[str, Any]:
    settings = get_settings()
    url = f"{settings.brave_search_base_url.rstrip('/')}/{endpoint}"
    headers = {"Accept": "application/json", "X-Subscription-Token": _api_key()}
    start = time.perf_counter()
    try:
        async with _make_client(settings.http_timeout_seconds) as client:
            res = await client.get(url, params=params, headers=headers)
    except httpx.HTTPError as exc:
        raise ToolError(f"{label} failed: {exc}", tool="web_search") from exc

    latency_ms = int((time.perf_counter() - start) * 1000)
    if res.status_code >= 400:
        logger.warning(
            f"Brave {endpoint} returned {res.status_code}",
            data={"latency_ms": latency_ms, "query": params.get("q")},
        )
        raise ToolError(f"{label} failed: {res.status_code} {res.reason_phrase} - {res.text}", tool="web_search")

    logger.debug(f"Brave {endpoint} ok", data={"latency_ms": latency_ms})
    return res.json()


def _check_query(search_query: str, function: str) -> None:
    if not search_query or not isinstance(search_query, str):
        raise ToolError(
            f"{function} requires 'search_query'. Usage: await {function}(search_query='your query')",
            tool="web_search",
        )


async def web_search(
    search_query: str,
    count: int = 10,
    country: Optional[str] = None,
    search_lang: Optional[str] = None,
    safesearch: str = "strict",
    freshness: Optional[str] = None,
) -> Dict[str, Any]:
    """Search the web.

    Args:
        search_query: Query string
        count: Number of results (default 10)
        country: Country code, e.g. "US" or "ID"
        search_lang: Language code, e.g. "en"
        safesearch: "off", "moderate" or "strict"
        freshness: "pd", "pw", "pm", "py" or a date range
    """
    _check_query(search_query, "web_search")
    params: Dict[str, Any] = {"q": search_query, "count": str(count), "safesearch": safesearch or "strict"}
    if country:
        params["country"] = country
    if search_lang:
        params["search_lang"] = search_lang
    if freshness:
        params["freshness"] = freshness

    data = await _brave_get("web/search", params, "Web search")
    results = [
        {
            "title": item.get("title") or "",
            "url": item.get("url") or "",
            "description": item.get("description") or "",
            "age": item.get("age") or item.get("page_age"),
            "language": item.get("language"),
            "favicon": (item.get("meta_url") or {}).get("favicon"),
        }
        for item in (data.get("web") or {}).get("results") or []
    ]
    return {"query": search_query, "results": results, "total": len(results)}


async def image_search(
    search_query: str,
    count: int = 20,
    country: Optional[str] = None,
    safesearch: str = "strict",
    spellcheck: Optional[bool] = None,
) -> Dict[str, Any]:
    """Search for images; results carry thumbnail and source URLs."""
    _check_query(search_query, "image_search")
    params: Dict[str, Any] = {"q": search_query, "count": str(count), "safesearch": safesearch or "strict"}
    if country:
        params["country"] = country
    if spellcheck is not None:
        params["spellcheck"] = "true" if spellcheck else "false"

    data = await _brave_get("images/search", params, "Image search")
    results = []
    for item in data.get("results") or []:
        properties = item.get("properties") or {}
        results.append(
            {
                "title": item.get("title") or "",
                "url": properties.get("url") or item.get("url") or "",
                "thumbnail": (item.get("thumbnail") or {}).get("src") or "",
                "source": item.get("source") or "",
                "width": properties.get("width"),
                "height": properties.get("height"),
            }
        )
    return {"query": search_query, "results": results, "total": len(results)}
