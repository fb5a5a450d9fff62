from __future__ import annotations

import json

import pytest

from web_evidence.models.events import EventType, PipelineStage
from web_evidence.research_core.models.interfaces import (
    EvidenceGate,
    PipelineCost,
    SerpResult,
    SourceCard,
    WebPipelineChunk,
    WebPipelineResult,
)
from web_evidence.services import streaming
from web_evidence.services.pricing import calculate_cost, serp_request_cost
from web_evidence.tools.web_utils import extract_domain


def test_to_dict_emits_camel_case_shape():
    result = WebPipelineResult(
        queries=["q"],
        results=[SerpResult(url="https://a.com", title="A", domain="a.com", position=1)],
        chunks=[WebPipelineChunk(text="t", url="https://a.com", title="A", domain="a.com", score=3)],
        sources=[{"title": "A", "url": "https://a.com"}],
        gate=EvidenceGate(enough_evidence=True),
        collected_urls=["https://a.com"],
        cost=PipelineCost(serp_requests=2, serp_estimated_usd=0.003),
    )
    payload = result.to_dict()

    assert payload["gate"] == {"enoughEvidence": True}
    assert "skipReason" not in payload
    assert payload["collectedUrls"] == ["https://a.com"]
    assert payload["results"][0]["position"] == 1
    assert payload["cost"] == {
        "serpRequests": 2,
        "serpEstimatedUsd": 0.003,
        "brightdataUnlockerRequests": 0,
        "brightdataUnlockerEstimatedUsd": 0.0,
    }
    json.dumps(payload)


def test_to_dict_includes_optional_fields_when_set():
    result = WebPipelineResult(
        queries=[],
        gate=EvidenceGate(enough_evidence=False, suggested_queries=["other"]),
        skipped=True,
        skip_reason="Empty prompt",
    )
    payload = result.to_dict()
    assert payload["skipReason"] == "Empty prompt"
    assert payload["gate"]["suggestedQueries"] == ["other"]


def test_source_card_usable_requires_ok_and_text():
    assert SourceCard(url="u", title="t", domain=None, status="ok", text="x").usable
    assert not SourceCard(url="u", title="t", domain=None, status="ok").usable
    assert not SourceCard(url="u", title="t", domain=None, status="timeout").usable


@pytest.mark.parametrize(
    ("url", "domain"),
    [
        ("https://www.Example.com/path", "example.com"),
        ("http://sub.example.org:8080/x", "sub.example.org"),
        ("www.news.com/article", "news.com"),
        ("", None),
        (None, None),
    ],
)
def test_extract_domain(url, domain):
    assert extract_domain(url) == domain


def test_calculate_cost():
    assert calculate_cost("openai/gpt-oss-20b", 1_000_000, 0, 1_000_000) == pytest.approx(0.17)
    assert calculate_cost("unknown-model", 1_000_000, 0, 1_000_000) == 0.0


def test_serp_request_cost():
    assert serp_request_cost("brightdata") == 0.0015
    assert serp_request_cost("dataforseo") == 0.002


def test_event_factories_and_sse_format():
    event = streaming.page_fetched("https://a.com", status="blocked", searched=3, blocked_reason="captcha")
    assert event.event == EventType.PAGE_FETCHED
    assert event.data["type"] == "page_fetch_progress"
    assert event.data["blocked_reason"] == "captcha"

    stage = streaming.stage_changed(PipelineStage.FETCHING, candidates=4)
    assert stage.data == {"stage": "fetching", "candidates": 4}
    assert stage.format() == 'event: stage_changed\ndata: {"stage": "fetching", "candidates": 4}\n\n'


def test_log_sink_accepts_any_event_payload():
    streaming.log_sink(streaming.error("boom", stage="fetching"))
    streaming.log_sink(streaming.plan_ready(["q"], use_web_search=True, reason="message"))


@pytest.mark.asyncio
async def test_invoke_callback_supports_sync_async_and_failures():
    seen: list[int] = []

    async def async_hook(value):
        seen.append(value * 10)

    def broken(value):
        raise RuntimeError("nope")

    await streaming.invoke_callback(seen.append, 1)
    await streaming.invoke_callback(async_hook, 2)
    await streaming.invoke_callback(broken, 3)
    await streaming.invoke_callback(None, 4)
    assert seen == [1, 20]
