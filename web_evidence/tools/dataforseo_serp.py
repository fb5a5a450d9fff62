from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from web_evidence.config import settings
from web_evidence.research_core.models.interfaces import SerpResponse, SerpResult
from web_evidence.tools.brightdata_serp import clamp_depth

DATAFORSEO_LIVE_URL = "https://api.dataforseo.com/v3/serp/google/organic/live/advanced"
DEFAULT_DEVICE = "desktop"
DEFAULT_ENGINE = "google.com"


def parse_task_items(payload: Any) -> tuple[str | None, list[SerpResult]]:
    """Pull the task id and organic items out of a live/advanced response."""
    tasks = payload.get("tasks") if isinstance(payload, dict) else None
    task = tasks[0] if isinstance(tasks, list) and tasks else None
    if not isinstance(task, dict):
        return None, []

    task_id = task.get("id") if isinstance(task.get("id"), str) else None
    result = task.get("result")
    first = result[0] if isinstance(result, list) and result else None
    items = first.get("items") if isinstance(first, dict) else None
    if not isinstance(items, list):
        return task_id, []

    output: list[SerpResult] = []
    for item in items:
        if not isinstance(item, dict) or item.get("type") != "organic":
            continue
        url = item.get("url")
        if not isinstance(url, str) or not url:
            continue
        rank = item.get("rank_group")
        output.append(
            SerpResult(
                url=url,
                title=item["title"] if isinstance(item.get("title"), str) else url,
                description=item["description"] if isinstance(item.get("description"), str) else None,
                position=rank if isinstance(rank, int) and not isinstance(rank, bool) else None,
                domain=item["domain"] if isinstance(item.get("domain"), str) else None,
            )
        )
    return task_id, output


async def fetch_google_organic_serp(
    keyword: str,
    *,
    depth: int | None = 10,
    location_name: str | None = None,
    language_code: str | None = None,
    device: str = DEFAULT_DEVICE,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SerpResponse:
    """Single live request; DataForSEO paginates server-side up to `depth`."""
    if not settings.dataforseo_user or not settings.dataforseo_pass:
        logger.warning("Missing DATAFORSEO_USER or DATAFORSEO_PASS; SERP disabled")
        return SerpResponse(results=[], raw=None, request_count=0, provider="dataforseo")

    target = clamp_depth(depth)
    payload = [
        {
            "keyword": keyword.strip(),
            "location_name": location_name or settings.dataforseo_location_name,
            "language_code": language_code or settings.dataforseo_language_code,
            "device": device,
            "depth": target,
            "se_domain": DEFAULT_ENGINE,
        }
    ]

    try:
        async with httpx.AsyncClient(timeout=30.0, transport=transport) as client:
            response = await client.post(
                DATAFORSEO_LIVE_URL,
                json=payload,
                auth=(settings.dataforseo_user, settings.dataforseo_pass),
            )
    except httpx.HTTPError as exc:
        logger.error(f"DataForSEO request failed keyword={keyword!r}: {exc}")
        return SerpResponse(results=[], raw=None, request_count=1, provider="dataforseo")

    try:
        data = response.json()
    except ValueError:
        data = None

    if not response.is_success or data is None:
        logger.error(f"DataForSEO SERP error status={response.status_code} body={response.text[:2000]}")
        return SerpResponse(results=[], raw=data or response.text, request_count=1, provider="dataforseo")

    task_id, results = parse_task_items(data)
    return SerpResponse(
        results=results[:target],
        raw=data,
        request_count=1,
        task_id=task_id,
        provider="dataforseo",
    )
