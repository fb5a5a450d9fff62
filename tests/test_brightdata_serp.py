from __future__ import annotations

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from web_evidence.config import settings
from web_evidence.tools import brightdata_serp
from web_evidence.tools.brightdata_serp import (
    BrightDataSerpClient,
    build_search_url,
    clamp_depth,
    parse_results,
    unwrap_body,
)

ITEMS = [
    {"link": "https://www.example.com/a", "title": "A", "snippet": "first", "rank": 1},
    {"url": "https://news.example.org/b", "name": "B", "description": "second", "position": 2},
]


@pytest.mark.parametrize(
    "payload",
    [
        {"organic": {"results": ITEMS}},
        {"organic_results": ITEMS},
        {"organic": ITEMS},
        {"results": ITEMS},
        {"data": {"results": ITEMS}},
        {"data": {"organic_results": ITEMS}},
        {"data": {"organic": {"results": ITEMS}}},
    ],
)
def test_parse_results_accepts_every_known_shape(payload):
    results = parse_results(payload)
    assert [r.url for r in results] == ["https://www.example.com/a", "https://news.example.org/b"]
    assert results[0].title == "A"
    assert results[0].description == "first"
    assert results[0].position == 1
    assert results[0].domain == "example.com"
    assert results[1].domain == "news.example.org"


def test_parse_results_first_non_empty_shape_wins():
    payload = {
        "organic_results": [],
        "organic": [{"url": "https://first.com"}],
        "results": [{"url": "https://second.com"}],
    }
    assert [r.url for r in parse_results(payload)] == ["https://first.com"]


def test_parse_results_drops_items_without_url_and_falls_back_title():
    payload = {"organic": [{"title": "no url"}, "junk", {"href": "https://x.io/p", "index": True}]}
    results = parse_results(payload)
    assert len(results) == 1
    assert results[0].title == "https://x.io/p"
    assert results[0].position is None


def test_parse_results_unknown_shape_is_empty():
    assert parse_results({"something": []}) == []
    assert parse_results(None) == []


def test_unwrap_body_handles_string_object_and_garbage():
    inner = {"organic": ITEMS}
    assert unwrap_body({"body": json.dumps(inner)}) == inner
    assert unwrap_body({"body": inner}) == inner
    assert unwrap_body({"body": "<html>"}) is None
    assert unwrap_body(inner) == inner


def test_clamp_depth():
    assert clamp_depth(None) == 10
    assert clamp_depth(0) == 1
    assert clamp_depth(-5) == 1
    assert clamp_depth(15) == 15
    assert clamp_depth(100) == 30


def test_build_search_url_encodes_params():
    url = build_search_url("paris weather", start=10, gl="FR", hl="EN")
    query = parse_qs(urlparse(url).query)
    assert url.startswith("https://www.google.com/search?")
    assert query == {"q": ["paris weather"], "gl": ["fr"], "hl": ["en"], "start": ["10"]}
    assert "start" not in build_search_url("x")


def _page(start: int, count: int = 10) -> dict:
    return {
        "body": json.dumps(
            {"organic": [{"link": f"https://site{start + i}.com/", "title": f"r{start + i}"} for i in range(count)]}
        )
    }


def _client(handler) -> BrightDataSerpClient:
    return BrightDataSerpClient(api_key="key", zone="zone", transport=httpx.MockTransport(handler))


def _start(request: httpx.Request) -> int:
    body = json.loads(request.content)
    return int(parse_qs(urlparse(body["url"]).query).get("start", ["0"])[0])


@pytest.mark.asyncio
async def test_missing_credentials_return_empty_without_requests(monkeypatch):
    monkeypatch.setattr(settings, "brightdata_serp_api_key", "")
    monkeypatch.setattr(settings, "brightdata_serp_zone", "")

    response = await brightdata_serp.fetch_google_organic_serp("anything", depth=10)

    assert response.results == []
    assert response.raw is None
    assert response.request_count == 0


@pytest.mark.asyncio
async def test_paginates_until_depth_and_sends_auth():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_page(_start(request)))

    response = await _client(handler).fetch_google_organic_serp("q", depth=15)

    assert response.request_count == 2
    assert len(response.results) == 15
    assert [_start(r) for r in seen] == [0, 10]
    assert seen[0].headers["Authorization"] == "Bearer key"
    body = json.loads(seen[0].content)
    assert body["zone"] == "zone"
    assert body["format"] == "json"
    assert len(response.raw) == 2


@pytest.mark.asyncio
async def test_depth_is_clamped_to_three_pages():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_page(_start(request)))

    response = await _client(handler).fetch_google_organic_serp("q", depth=100)
    assert response.request_count == 3
    assert len(response.results) == 30


@pytest.mark.asyncio
async def test_stops_on_empty_page():
    def handler(request: httpx.Request) -> httpx.Response:
        if _start(request) == 0:
            return httpx.Response(200, json=_page(0))
        return httpx.Response(200, json={"body": json.dumps({"organic": []})})

    response = await _client(handler).fetch_google_organic_serp("q", depth=30)
    assert response.request_count == 2
    assert len(response.results) == 10


@pytest.mark.asyncio
async def test_non_2xx_keeps_partial_results():
    def handler(request: httpx.Request) -> httpx.Response:
        if _start(request) == 0:
            return httpx.Response(200, json=_page(0))
        return httpx.Response(502, text="bad gateway")

    response = await _client(handler).fetch_google_organic_serp("q", depth=30)
    assert response.request_count == 2
    assert len(response.results) == 10


@pytest.mark.asyncio
async def test_non_json_body_stops_pagination():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>not json</html>")

    response = await _client(handler).fetch_google_organic_serp("q", depth=20)
    assert response.request_count == 1
    assert response.results == []


@pytest.mark.asyncio
async def test_duplicates_across_pages_are_dropped():
    def handler(request: httpx.Request) -> httpx.Response:
        # Every page repeats the same five URLs plus five new ones.
        start = _start(request)
        items = [{"link": f"https://dup{i}.com/"} for i in range(5)]
        items += [{"link": f"https://new{start + i}.com/"} for i in range(5)]
        return httpx.Response(200, json={"body": json.dumps({"organic": items})})

    response = await _client(handler).fetch_google_organic_serp("q", depth=20)
    urls = [r.url for r in response.results]
    assert len(urls) == len(set(urls)) == 15


@pytest.mark.asyncio
async def test_transport_error_returns_what_was_collected():
    def handler(request: httpx.Request) -> httpx.Response:
        if _start(request) == 0:
            return httpx.Response(200, json=_page(0))
        raise httpx.ConnectError("boom")

    response = await _client(handler).fetch_google_organic_serp("q", depth=20)
    assert response.request_count == 2
    assert len(response.results) == 10


@pytest.mark.asyncio
async def test_always_queries_google_and_takes_no_engine_argument():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_page(0))

    client = _client(handler)
    await client.fetch_google_organic_serp("q", depth=10, gl="fr", hl="fr")

    assert urlparse(json.loads(seen[0].content)["url"]).netloc == "www.google.com"
    with pytest.raises(TypeError):
        await client.fetch_google_organic_serp("q", depth=10, search_engine="bing.com")
