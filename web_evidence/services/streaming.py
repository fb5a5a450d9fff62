from __future__ import annotations

import inspect
from typing import Any, Callable

from loguru import logger

from web_evidence.models.events import EventType, PipelineEvent, PipelineStage
from web_evidence.services import logger as log_service


def stage_changed(stage: PipelineStage, **kwargs: Any) -> PipelineEvent:
    return PipelineEvent(event=EventType.STAGE_CHANGED, data={"stage": stage.value, **kwargs})


def plan_ready(
    queries: list[str],
    *,
    use_web_search: bool,
    reason: str | None = None,
    target_depth: int | None = None,
    time_sensitive: bool | None = None,
) -> PipelineEvent:
    data: dict[str, Any] = {"queries": queries, "use_web_search": use_web_search}
    if reason:
        data["reason"] = reason
    if target_depth is not None:
        data["target_depth"] = target_depth
    if time_sensitive is not None:
        data["time_sensitive"] = time_sensitive
    return PipelineEvent(event=EventType.PLAN_READY, data=data)


def search_started(query: str, queries: list[str]) -> PipelineEvent:
    """Emit once search is confirmed; `query` is the joined label for status UIs."""
    return PipelineEvent(event=EventType.SEARCH_STARTED, data={"query": query, "queries": queries})


def serp_fetched(
    query: str,
    *,
    results_count: int,
    requested: int,
    serp_requests: int,
    provider: str | None = None,
) -> PipelineEvent:
    data: dict[str, Any] = {
        "query": query,
        "results_count": results_count,
        "requested": requested,
        "serp_requests": serp_requests,
    }
    if provider:
        data["provider"] = provider
    return PipelineEvent(event=EventType.SERP_FETCHED, data=data)


def page_fetched(
    url: str,
    *,
    status: str,
    searched: int,
    blocked_reason: str | None = None,
    text_length: int = 0,
) -> PipelineEvent:
    data: dict[str, Any] = {
        "type": "page_fetch_progress",
        "url": url,
        "status": status,
        "searched": searched,
        "text_length": text_length,
    }
    if blocked_reason:
        data["blocked_reason"] = blocked_reason
    return PipelineEvent(event=EventType.PAGE_FETCHED, data=data)


def evidence_selected(urls: list[str], *, usable: int, policy: str) -> PipelineEvent:
    return PipelineEvent(
        event=EventType.EVIDENCE_SELECTED,
        data={"urls": urls, "usable": usable, "policy": policy},
    )


def pipeline_complete(
    *,
    chunks: int,
    sources: int,
    serp_requests: int,
    serp_estimated_usd: float,
    skipped: bool = False,
    skip_reason: str | None = None,
    runtime_ms: int | None = None,
) -> PipelineEvent:
    data: dict[str, Any] = {
        "chunks": chunks,
        "sources": sources,
        "serp_requests": serp_requests,
        "serp_estimated_usd": serp_estimated_usd,
        "skipped": skipped,
    }
    if skip_reason:
        data["skip_reason"] = skip_reason
    if runtime_ms is not None:
        data["runtime_ms"] = runtime_ms
    return PipelineEvent(event=EventType.PIPELINE_COMPLETE, data=data)


def error(message: str, stage: str | None = None) -> PipelineEvent:
    data: dict[str, Any] = {"message": message}
    if stage:
        data["stage"] = stage
    return PipelineEvent(event=EventType.ERROR, data=data)


def log_sink(event: PipelineEvent) -> None:
    """Default event sink: route pipeline events into the structured log."""
    log_service.log_event(
        event_type=event.event.value,
        message=f"web pipeline {event.event.value}",
        data=event.data,
    )


async def invoke_callback(callback: Callable[..., Any] | None, *args: Any) -> None:
    """Call a sync or async caller hook; hook failures are logged, never raised."""
    if callback is None:
        return
    try:
        outcome = callback(*args)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception as exc:
        logger.warning(f"Pipeline callback {getattr(callback, '__name__', callback)!r} failed: {exc}")
