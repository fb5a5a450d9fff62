from __future__ import annotations

import asyncio

import httpx
import pytest

from web_evidence.research_core.models.interfaces import SerpResult
from web_evidence.research_core.scrape.service import PageFetcher


def _results(count: int) -> list[SerpResult]:
    return [SerpResult(url=f"https://site{i}.com/page", title=f"Site {i}") for i in range(count)]


def _page(body: str) -> str:
    return f"<html><head><script>track()</script></head><body><main><p>{body}</p></main></body></html>"


@pytest.mark.asyncio
async def test_fetch_card_ok():
    async def fetcher(url: str) -> str:
        return _page("Paris is 18 degrees")

    card = await PageFetcher(fetcher=fetcher).fetch_card(_results(1)[0])

    assert card.status == "ok"
    assert card.text == "Paris is 18 degrees"
    assert card.domain == "site0.com"
    assert card.blocked_reason is None


@pytest.mark.asyncio
async def test_js_required_page_is_blocked():
    async def fetcher(url: str) -> str:
        return _page("Please enable JavaScript to view this site")

    card = await PageFetcher(fetcher=fetcher).fetch_card(_results(1)[0])

    assert card.status == "blocked"
    assert card.blocked_reason == "js_required"
    assert card.text == ""
    assert card.relevance_score == 0


@pytest.mark.asyncio
async def test_slow_page_times_out():
    async def fetcher(url: str) -> str:
        await asyncio.sleep(5)
        return _page("late")

    card = await PageFetcher(fetcher=fetcher, timeout_ms=20).fetch_card(_results(1)[0])
    assert card.status == "timeout"
    assert card.text == ""


@pytest.mark.asyncio
async def test_fetch_errors_and_empty_pages_become_error_cards():
    async def broken(url: str) -> str:
        raise RuntimeError("connection reset")

    async def empty(url: str) -> str:
        return "<html><body><script>only()</script></body></html>"

    assert (await PageFetcher(fetcher=broken).fetch_card(_results(1)[0])).status == "error"
    assert (await PageFetcher(fetcher=empty).fetch_card(_results(1)[0])).status == "error"


@pytest.mark.asyncio
async def test_http_path_checks_status_and_content_type():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "site0.com":
            return httpx.Response(
                200,
                headers={"content-type": "text/html; charset=utf-8"},
                content=_page("café menu").encode("utf-8"),
            )
        if request.url.host == "site1.com":
            return httpx.Response(404, headers={"content-type": "text/html"}, content=b"<p>missing</p>")
        return httpx.Response(200, headers={"content-type": "application/pdf"}, content=b"%PDF-1.7")

    fetcher = PageFetcher(transport=httpx.MockTransport(handler))
    batch = await fetcher.fetch_all(_results(3))

    by_url = {card.url: card for card in batch.cards}
    assert by_url["https://site0.com/page"].status == "ok"
    assert by_url["https://site0.com/page"].text == "café menu"
    assert by_url["https://site1.com/page"].status == "error"
    assert by_url["https://site2.com/page"].status == "error"
    assert batch.remaining == []


@pytest.mark.asyncio
async def test_http_path_caps_body_bytes():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-type": "text/plain"}, content=b"a" * 5000)

    card = await PageFetcher(transport=httpx.MockTransport(handler), max_bytes=100).fetch_card(_results(1)[0])
    assert card.status == "ok"
    assert len(card.text) == 100


@pytest.mark.asyncio
async def test_fetch_all_respects_concurrency_and_reports_progress():
    active = 0
    peak = 0

    async def fetcher(url: str) -> str:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return _page(f"content for {url}")

    progress: list[int] = []
    batch = await PageFetcher(fetcher=fetcher, concurrency=3).fetch_all(
        _results(10),
        on_card=lambda card, searched: progress.append(searched),
    )

    assert len(batch.cards) == 10
    assert peak == 3
    assert progress == list(range(1, 11))
    assert {card.url for card in batch.cards} == {r.url for r in _results(10)}


@pytest.mark.asyncio
async def test_fetch_all_stops_when_enough_usable_pages():
    async def fetcher(url: str) -> str:
        return _page("useful")

    batch = await PageFetcher(fetcher=fetcher, concurrency=1).fetch_all(
        _results(5),
        target_usable=2,
        stop_when_enough=True,
    )
    assert len(batch.cards) == 2
    assert [r.url for r in batch.remaining] == [r.url for r in _results(5)[2:]]


@pytest.mark.asyncio
async def test_fetch_all_without_early_exit_fetches_everything():
    async def fetcher(url: str) -> str:
        return _page("useful")

    batch = await PageFetcher(fetcher=fetcher, concurrency=2).fetch_all(_results(6), target_usable=1)
    assert len(batch.cards) == 6


@pytest.mark.asyncio
async def test_deadline_cancels_in_flight_fetches():
    async def fetcher(url: str) -> str:
        await asyncio.sleep(10)
        return _page("never")

    loop = asyncio.get_running_loop()
    batch = await PageFetcher(fetcher=fetcher, concurrency=2, timeout_ms=60_000).fetch_all(
        _results(5),
        deadline=loop.time() + 0.05,
    )

    assert [card.status for card in batch.cards] == ["timeout", "timeout"]
    assert len(batch.remaining) == 3


@pytest.mark.asyncio
async def test_cancel_event_stops_new_work():
    calls: list[str] = []

    async def fetcher(url: str) -> str:
        calls.append(url)
        return _page("x")

    cancel = asyncio.Event()
    cancel.set()
    batch = await PageFetcher(fetcher=fetcher).fetch_all(_results(4), cancel_event=cancel)

    assert calls == []
    assert batch.cards == []
    assert len(batch.remaining) == 4


@pytest.mark.asyncio
async def test_per_call_text_cap_overrides_fetcher_default():
    async def fetcher(url: str) -> str:
        return _page("word " * 2000)

    page_fetcher = PageFetcher(fetcher=fetcher, max_page_chars=500)

    assert len((await page_fetcher.fetch_card(_results(1)[0])).text) == 500
    capped = await page_fetcher.fetch_card(_results(1)[0], max_page_chars=120)
    assert len(capped.text) == 120

    batch = await page_fetcher.fetch_all(_results(2), max_page_chars=80)
    assert [len(card.text) for card in batch.cards] == [80, 80]
