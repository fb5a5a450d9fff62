from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from loguru import logger

from web_evidence.agents.evidence_gate import EvidenceGateAgent
from web_evidence.agents.query_planner import QueryPlanner, normalize_queries
from web_evidence.agents.url_selector import (
    MAX_SERP_RESULTS,
    EvidencePolicy,
    select_evidence,
    select_serp_results,
)
from web_evidence.models.events import EventSink, PipelineEvent, PipelineStage
from web_evidence.research_core.evidence.chunker import (
    MAX_PAGE_CHARS,
    ExcerptStrategy,
    excerpt_card,
    resolve_chunk_shape,
)
from web_evidence.research_core.evidence.scoring import extract_keywords, score_card
from web_evidence.research_core.models.interfaces import (
    EvidenceGate,
    PipelineCost,
    QueryPlan,
    SerpResponse,
    SerpResult,
    SourceCard,
    WebPipelineChunk,
    WebPipelineResult,
)
from web_evidence.research_core.scrape.service import PageFetcher
from web_evidence.services import streaming
from web_evidence.services.pricing import BRIGHTDATA_UNLOCKER_COST_USD, serp_request_cost
from web_evidence.tools import brightdata_serp, serp_provider

DEFAULT_QUERY_COUNT = 1
DEFAULT_TARGET_USABLE_PAGES = 10
DEFAULT_RESULTS_PER_QUERY = 10
EXTENDED_RESULTS_PER_QUERY = 20
EXPANSION_BATCH = 1

SerpSearch = Callable[..., Awaitable[SerpResponse]]


class GatePolicy(str, Enum):
    NON_EMPTY = "non_empty"
    LLM = "llm"


@dataclass
class PipelineOptions:
    current_date: str | None = None
    location_name: str | None = None
    language_code: str | None = None
    country_code: str | None = None
    recent_messages: list[dict[str, str]] | None = None
    allow_skip: bool | None = None
    query_count: int = DEFAULT_QUERY_COUNT
    max_evidence_sources: int | None = None
    target_usable_pages: int | None = None
    results_per_query_override: int | None = None
    excerpt_mode: str | None = "auto"  # snippets | balanced | rich | auto
    excerpt_strategy: ExcerptStrategy = ExcerptStrategy.SEQUENTIAL
    chunk_words: int | None = None
    chunk_count: int | None = None
    evidence_policy: EvidencePolicy = EvidencePolicy.TARGET
    max_results_per_domain: int = 0
    gate_policy: GatePolicy = GatePolicy.NON_EMPTY
    stop_when_enough: bool = False
    max_page_chars: int = 0
    deadline_ms: int | None = None
    cancel_event: asyncio.Event | None = None
    precomputed_plan: QueryPlan | None = None
    classify_time: bool = True
    on_search_start: Callable[[dict[str, Any]], Any] | None = None
    on_progress: Callable[[dict[str, Any]], Any] | None = None


def resolve_results_per_query(plan: QueryPlan, queries: list[str], override: int | None) -> int:
    """Per-query SERP depth: explicit override, then the planner's overall depth, then 10/20."""
    if override:
        return brightdata_serp.clamp_depth(round(override))
    if plan.target_depth and queries:
        return brightdata_serp.clamp_depth(math.ceil(plan.target_depth / len(queries)))
    if plan.result_count == EXTENDED_RESULTS_PER_QUERY and len(queries) == 1:
        return EXTENDED_RESULTS_PER_QUERY
    return DEFAULT_RESULTS_PER_QUERY


def resolve_page_char_cap(options: PipelineOptions) -> int:
    """Extracted-text cap per page; 0 means uncapped."""
    if options.max_page_chars > 0:
        return options.max_page_chars
    if options.excerpt_strategy in (ExcerptStrategy.START_WINDOW, ExcerptStrategy.KEYWORD_WINDOW):
        return MAX_PAGE_CHARS
    return 0


@dataclass
class _RunState:
    queries: list[str] = field(default_factory=list)
    results: list[SerpResult] = field(default_factory=list)
    cards: list[SourceCard] = field(default_factory=list)
    cost: PipelineCost = field(default_factory=PipelineCost)
    time_sensitive: bool = False


class WebSearchPipeline:
    """Prompt in, grounded excerpts out.

    Flow:
      1. Plan: decide whether search helps and write the queries
      2. Search: one SERP call per query, sequentially
      3. Select the deduplicated, capped working set
      4. Fetch pages over a bounded worker pool
      5. Score, select evidence, excerpt into chunks
      6. Optionally gate the chunks with an LLM and expand once

    Every stage transition is emitted as a PipelineEvent to the sink.
    """

    def __init__(
        self,
        *,
        planner: QueryPlanner | None = None,
        serp_search: SerpSearch | None = None,
        fetcher: PageFetcher | None = None,
        gate: EvidenceGateAgent | None = None,
        event_sink: EventSink | None = None,
    ):
        self.planner = planner
        self.serp_search = serp_search or serp_provider.search
        self.fetcher = fetcher
        self.gate = gate
        self.event_sink = event_sink or streaming.log_sink

    def _emit(self, event: PipelineEvent) -> None:
        try:
            self.event_sink(event)
        except Exception as exc:
            logger.warning(f"Event sink failed for {event.event.value}: {exc}")

    def _stage(self, stage: PipelineStage, **kwargs: Any) -> None:
        self._emit(streaming.stage_changed(stage, **kwargs))

    async def run(self, prompt: str, options: PipelineOptions | None = None) -> WebPipelineResult:
        options = options or PipelineOptions()
        started = time.perf_counter()
        state = _RunState()
        try:
            result = await self._run(prompt, options, state)
        except Exception as exc:
            logger.exception(f"Web pipeline failed: {exc}")
            self._emit(streaming.error(str(exc)))
            result = WebPipelineResult(
                queries=state.queries,
                results=state.results,
                collected_urls=[card.url for card in state.cards],
                time_sensitive=state.time_sensitive,
                cost=state.cost,
            )

        self._stage(PipelineStage.DONE)
        self._emit(
            streaming.pipeline_complete(
                chunks=len(result.chunks),
                sources=len(result.sources),
                serp_requests=result.cost.serp_requests,
                serp_estimated_usd=result.cost.serp_estimated_usd,
                skipped=result.skipped,
                skip_reason=result.skip_reason,
                runtime_ms=int((time.perf_counter() - started) * 1000),
            )
        )
        return result

    async def _plan(self, prompt: str, options: PipelineOptions, count: int) -> QueryPlan:
        if options.precomputed_plan is not None:
            return options.precomputed_plan

        location: dict[str, str] | None = None
        if options.location_name:
            location = {"city": options.location_name}
            if options.country_code:
                location["country_code"] = options.country_code
        elif options.country_code:
            location = {"country_code": options.country_code}

        planner = self.planner or QueryPlanner()
        try:
            return await planner.plan(
                prompt,
                count=count,
                current_date=options.current_date,
                recent_messages=options.recent_messages,
                location=location,
                classify_time=options.classify_time,
            )
        except Exception as exc:
            logger.warning(f"Query planner failed; searching with the prompt: {exc}")
            return QueryPlan(use_web_search=True, queries=[prompt] * count, reason="planner_fallback")

    async def _run(self, prompt: str, options: PipelineOptions, state: _RunState) -> WebPipelineResult:
        self._stage(PipelineStage.START)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + options.deadline_ms / 1000 if options.deadline_ms else None

        trimmed = (prompt or "").strip()
        if not trimmed:
            self._stage(PipelineStage.SKIP, reason="Empty prompt")
            return WebPipelineResult(queries=[], skipped=True, skip_reason="Empty prompt")

        count = max(1, int(options.query_count or DEFAULT_QUERY_COUNT))
        self._stage(PipelineStage.PLANNING)
        plan = await self._plan(trimmed, options, count)
        state.queries = normalize_queries(plan.queries, trimmed, count)
        state.time_sensitive = bool(plan.time_sensitive)
        self._emit(
            streaming.plan_ready(
                state.queries,
                use_web_search=plan.use_web_search,
                reason=plan.reason,
                target_depth=plan.target_depth,
                time_sensitive=plan.time_sensitive,
            )
        )

        if not plan.use_web_search and options.allow_skip is not False:
            reason = plan.reason or "Search not needed"
            logger.info(f"Skipping web search: {reason}")
            self._stage(PipelineStage.SKIP, reason=reason)
            return WebPipelineResult(
                queries=state.queries,
                skipped=True,
                skip_reason=reason,
                time_sensitive=state.time_sensitive,
                cost=PipelineCost(unlocker_estimated_usd=BRIGHTDATA_UNLOCKER_COST_USD),
            )

        results_per_query = resolve_results_per_query(plan, state.queries, options.results_per_query_override)
        chunk_words, chunk_count = resolve_chunk_shape(
            plan.excerpt_mode if options.excerpt_mode in (None, "auto") else options.excerpt_mode,
            chunk_words=options.chunk_words,
            chunk_count=options.chunk_count,
        )
        target_usable = max(
            1,
            options.target_usable_pages
            or options.max_evidence_sources
            or results_per_query
            or DEFAULT_TARGET_USABLE_PAGES,
        )

        query_label = " | ".join(state.queries).strip() or trimmed
        self._stage(PipelineStage.SEARCHING)
        self._emit(streaming.search_started(query_label, state.queries))
        await streaming.invoke_callback(options.on_search_start, {"query": query_label, "queries": state.queries})

        collected = await self._search(state, options, results_per_query)
        max_items = min(MAX_SERP_RESULTS, results_per_query * len(state.queries))
        state.results = select_serp_results(
            collected,
            max_items,
            max_per_domain=options.max_results_per_domain,
        )
        logger.info(
            f"SERP selection: {len(collected)} candidates -> {len(state.results)} selected "
            f"({state.cost.serp_requests} requests, {results_per_query} per query)"
        )

        if not state.results:
            return WebPipelineResult(
                queries=state.queries,
                skipped=options.allow_skip is True,
                skip_reason="No SERP results" if options.allow_skip is True else None,
                time_sensitive=state.time_sensitive,
                cost=state.cost,
            )

        keywords = extract_keywords(" ".join(state.queries))
        fetcher = self.fetcher or PageFetcher()
        # None leaves an injected fetcher on its own cap.
        page_chars = resolve_page_char_cap(options) or None

        async def on_card(card: SourceCard, searched: int) -> None:
            self._emit(
                streaming.page_fetched(
                    card.url,
                    status=card.status,
                    searched=searched,
                    blocked_reason=card.blocked_reason,
                    text_length=len(card.text),
                )
            )
            await streaming.invoke_callback(
                options.on_progress, {"type": "page_fetch_progress", "searched": searched}
            )

        self._stage(PipelineStage.FETCHING, candidates=len(state.results))
        batch = await fetcher.fetch_all(
            state.results,
            target_usable=target_usable,
            stop_when_enough=options.stop_when_enough,
            on_card=on_card,
            deadline=deadline,
            cancel_event=options.cancel_event,
            max_page_chars=page_chars,
        )
        self._stage(PipelineStage.SCORING)
        state.cards = [score_card(card, keywords) for card in batch.cards]

        desired = max(1, min(target_usable, options.max_evidence_sources or target_usable))
        evidence, chunks = self._select_and_chunk(state, options, keywords, desired, chunk_words, chunk_count)
        gate = await self._gate(trimmed, state.queries, evidence, chunks, options)

        expanded = False
        remaining = list(batch.remaining)
        if options.gate_policy is GatePolicy.LLM and not gate.enough_evidence and remaining:
            extra, remaining = remaining[:EXPANSION_BATCH], remaining[EXPANSION_BATCH:]
            logger.info(f"Evidence gate not satisfied; fetching {len(extra)} more page(s)")
            self._stage(PipelineStage.FETCHING, candidates=len(extra), expansion=True)
            extra_batch = await fetcher.fetch_all(
                extra,
                on_card=on_card,
                deadline=deadline,
                cancel_event=options.cancel_event,
                max_page_chars=page_chars,
            )
            state.cards.extend(score_card(card, keywords) for card in extra_batch.cards)
            evidence, chunks = self._select_and_chunk(state, options, keywords, desired, chunk_words, chunk_count)
            gate = await self._gate(trimmed, state.queries, evidence, chunks, options)
            expanded = True

        return WebPipelineResult(
            queries=state.queries,
            results=state.results,
            chunks=chunks,
            sources=[{"title": card.title, "url": card.url} for card in evidence],
            gate=gate,
            expanded=expanded,
            skipped=False,
            collected_urls=[card.url for card in state.cards],
            time_sensitive=state.time_sensitive,
            cost=state.cost,
        )

    async def _search(self, state: _RunState, options: PipelineOptions, depth: int) -> list[SerpResult]:
        collected: list[SerpResult] = []
        for query in state.queries:
            try:
                response = await self.serp_search(
                    query,
                    depth=depth,
                    gl=options.country_code,
                    hl=options.language_code,
                    location_name=options.location_name,
                )
            except Exception as exc:
                logger.error(f"SERP search failed for {query!r}: {exc}")
                continue

            state.cost.serp_requests += response.request_count
            state.cost.serp_estimated_usd += response.request_count * serp_request_cost(response.provider)
            collected.extend(response.results)
            self._emit(
                streaming.serp_fetched(
                    query,
                    results_count=len(response.results),
                    requested=depth,
                    serp_requests=state.cost.serp_requests,
                    provider=response.provider,
                )
            )
        return collected

    def _select_and_chunk(
        self,
        state: _RunState,
        options: PipelineOptions,
        keywords: list[str],
        desired: int,
        chunk_words: int,
        chunk_count: int,
    ) -> tuple[list[SourceCard], list[WebPipelineChunk]]:
        self._stage(PipelineStage.SELECTING)
        evidence = select_evidence(
            state.cards,
            policy=options.evidence_policy,
            target=desired,
            serp_count=len(state.results),
        )
        usable = sum(1 for card in state.cards if card.usable)
        self._emit(
            streaming.evidence_selected(
                [card.url for card in evidence],
                usable=usable,
                policy=options.evidence_policy.value,
            )
        )

        self._stage(PipelineStage.CHUNKING)
        chunks: list[WebPipelineChunk] = []
        for card in evidence:
            chunks.extend(
                excerpt_card(
                    card,
                    keywords,
                    strategy=options.excerpt_strategy,
                    chunk_words=chunk_words,
                    chunk_count=chunk_count,
                )
            )
        return evidence, chunks

    async def _gate(
        self,
        prompt: str,
        queries: list[str],
        evidence: list[SourceCard],
        chunks: list[WebPipelineChunk],
        options: PipelineOptions,
    ) -> EvidenceGate:
        if options.gate_policy is GatePolicy.NON_EMPTY or not evidence:
            return EvidenceGate(enough_evidence=len(evidence) > 0)
        gate = self.gate or EvidenceGateAgent()
        return await gate.evaluate(prompt, chunks, previous_queries=queries)


async def run_web_search_pipeline(
    prompt: str,
    options: PipelineOptions | None = None,
    **deps: Any,
) -> WebPipelineResult:
    """Run the pipeline once. `deps` are forwarded to WebSearchPipeline."""
    return await WebSearchPipeline(**deps).run(prompt, options)
