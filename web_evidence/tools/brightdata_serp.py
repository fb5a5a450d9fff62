"""Google organic results through the Bright Data unlocking proxy."""
from __future__ import annotations

import json
import math
from typing import Any
from urllib.parse import urlencode

import httpx
from loguru import logger

from web_evidence.config import settings
from web_evidence.research_core.models.interfaces import SerpResponse, SerpResult
from web_evidence.tools import web_utils

GOOGLE_SEARCH_URL = "https://www.google.com/search"
DEFAULT_DEPTH = 10
MAX_DEPTH = 30
RESULTS_PER_PAGE = 10

# Known payload shapes, tried in order; the first non-empty list wins.
RESULT_PATHS: tuple[tuple[str, ...], ...] = (
    ("organic", "results"),
    ("organic_results",),
    ("organic",),
    ("results",),
    ("data", "results"),
    ("data", "organic_results"),
    ("data", "organic", "results"),
)


def clamp_depth(depth: int | None) -> int:
    if depth is None:
        return DEFAULT_DEPTH
    return min(max(int(depth), 1), MAX_DEPTH)


def build_search_url(keyword: str, *, start: int = 0, gl: str | None = None, hl: str | None = None) -> str:
    params: dict[str, Any] = {}
    keyword = keyword.strip()
    if keyword:
        params["q"] = keyword
    if gl:
        params["gl"] = gl.lower()
    if hl:
        params["hl"] = hl.lower()
    if start > 0:
        params["start"] = start
    if not params:
        return GOOGLE_SEARCH_URL
    return f"{GOOGLE_SEARCH_URL}?{urlencode(params)}"


def _dig(payload: Any, path: tuple[str, ...]) -> Any:
    node = payload
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _first_str(item: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = item.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _first_number(item: dict[str, Any], *keys: str) -> int | float | None:
    for key in keys:
        value = item.get(key)
        # bool is an int subclass; rank flags are not positions
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
    return None


def parse_results(payload: Any) -> list[SerpResult]:
    """Normalize the organic results of any known SERP payload shape."""
    candidates: list[Any] = []
    for path in RESULT_PATHS:
        found = _dig(payload, path)
        if isinstance(found, list) and found:
            candidates = found
            break

    output: list[SerpResult] = []
    for item in candidates:
        if not isinstance(item, dict):
            continue
        url = _first_str(item, "url", "link", "href")
        if not url:
            continue
        output.append(
            SerpResult(
                url=url,
                title=_first_str(item, "title", "name") or url,
                description=_first_str(item, "description", "snippet", "subtitle"),
                position=_first_number(item, "position", "rank", "index"),
                domain=_first_str(item, "domain") or web_utils.extract_domain(url),
            )
        )
    return output


def unwrap_body(data: Any) -> Any:
    """The proxy wraps the engine payload under `body`, as a JSON string or object."""
    if not isinstance(data, dict):
        return data
    body = data.get("body")
    if isinstance(body, str):
        try:
            return json.loads(body)
        except json.JSONDecodeError:
            return None
    if isinstance(body, dict):
        return body
    return data


class BrightDataSerpClient:
    """Paginating SERP client. Missing credentials soft-disable it."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        zone: str | None = None,
        request_url: str | None = None,
        log_raw: bool | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = (settings.brightdata_serp_api_key if api_key is None else api_key).strip()
        self.zone = (settings.brightdata_serp_zone if zone is None else zone).strip()
        self.request_url = request_url or settings.brightdata_request_url
        self.log_raw = settings.brightdata_log_raw if log_raw is None else log_raw
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.zone)

    async def fetch_google_organic_serp(
        self,
        keyword: str,
        *,
        depth: int | None = DEFAULT_DEPTH,
        gl: str | None = None,
        hl: str | None = None,
    ) -> SerpResponse:
        if not self.configured:
            logger.warning("Missing BRIGHTDATA_SERP_API_KEY or BRIGHTDATA_SERP_ZONE; SERP disabled")
            return SerpResponse(results=[], raw=None, request_count=0)

        target = clamp_depth(depth)
        max_pages = math.ceil(target / RESULTS_PER_PAGE)
        collected: list[SerpResult] = []
        seen: set[str] = set()
        raw_pages: list[Any] = []
        request_count = 0

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for page in range(max_pages):
                target_url = build_search_url(keyword, start=page * RESULTS_PER_PAGE, gl=gl, hl=hl)
                request_count += 1
                try:
                    response = await client.post(
                        self.request_url,
                        json={"zone": self.zone, "url": target_url, "format": "json"},
                        headers={
                            "Authorization": f"Bearer {self.api_key}",
                            "Content-Type": "application/json",
                        },
                    )
                except httpx.HTTPError as exc:
                    logger.error(f"Bright Data SERP request failed keyword={keyword!r}: {exc}")
                    break
                body_text = response.text
                try:
                    data = json.loads(body_text) if body_text else None
                except json.JSONDecodeError:
                    data = None
                raw_pages.append(data if data is not None else body_text)

                if self.log_raw:
                    logger.debug(f"Bright Data raw response (page {page + 1}): {body_text}")

                if not response.is_success:
                    logger.error(
                        f"Bright Data SERP error status={response.status_code} "
                        f"keyword={keyword!r} body={body_text[:2000]}"
                    )
                    break
                if data is None:
                    logger.error(f"Bright Data SERP returned a non-JSON body for {keyword!r}: {body_text[:2000]}")
                    break

                inner = unwrap_body(data)
                page_results = parse_results(inner) if inner is not None else []
                if not page_results:
                    if page == 0:
                        logger.warning(f"Bright Data SERP returned no items keyword={keyword!r} depth={target}")
                    break

                for result in page_results:
                    if result.url in seen:
                        continue
                    seen.add(result.url)
                    collected.append(result)
                if len(collected) >= target:
                    break

        return SerpResponse(
            results=collected[:target],
            raw=raw_pages,
            request_count=request_count,
            provider="brightdata",
        )


async def fetch_google_organic_serp(
    keyword: str,
    *,
    depth: int | None = DEFAULT_DEPTH,
    gl: str | None = None,
    hl: str | None = None,
) -> SerpResponse:
    """Fetch organic results with credentials from settings."""
    return await BrightDataSerpClient().fetch_google_organic_serp(keyword, depth=depth, gl=gl, hl=hl)
