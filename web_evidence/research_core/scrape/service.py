from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger

from web_evidence.config import settings
from web_evidence.research_core.extract.service import detect_block_reason, extract_page_text
from web_evidence.research_core.models.interfaces import FetchStatus, SerpResult, SourceCard
from web_evidence.tools import web_utils

FETCH_CONCURRENCY = 12
PAGE_TIMEOUT_MS = 3_000

HtmlFetcher = Callable[[str], Awaitable[str]]
CardHook = Callable[[SourceCard, int], Any]


@dataclass(slots=True)
class FetchBatch:
    cards: list[SourceCard] = field(default_factory=list)
    # Candidates never picked up because the workers stopped early.
    remaining: list[SerpResult] = field(default_factory=list)


def _failed_card(result: SerpResult, status: FetchStatus, *, blocked_reason: str | None = None) -> SourceCard:
    return SourceCard(
        url=result.url,
        title=result.title or result.url,
        domain=result.domain or web_utils.extract_domain(result.url),
        status=status,
        text="",
        relevance_score=0,
        description=result.description,
        position=result.position,
        blocked_reason=blocked_reason,
    )


class PageFetcher:
    """Bounded-concurrency page fetcher producing one SourceCard per candidate."""

    def __init__(
        self,
        *,
        concurrency: int | None = None,
        timeout_ms: int | None = None,
        max_bytes: int | None = None,
        extractor_mode: str | None = None,
        max_page_chars: int = 0,
        user_agent: str | None = None,
        fetcher: HtmlFetcher | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.concurrency = max(int(concurrency or settings.fetch_concurrency or FETCH_CONCURRENCY), 1)
        self.timeout_ms = max(int(timeout_ms or settings.page_timeout_ms or PAGE_TIMEOUT_MS), 1)
        self.max_bytes = max(int(max_bytes or settings.page_max_bytes), 1)
        self.extractor_mode = (extractor_mode or settings.extractor_mode).lower().strip()
        self.max_page_chars = max(int(max_page_chars), 0)
        self.user_agent = user_agent or settings.user_agent
        self._fetcher = fetcher
        self._transport = transport

    def _client(self) -> contextlib.AbstractAsyncContextManager[httpx.AsyncClient | None]:
        if self._fetcher is not None:
            return contextlib.nullcontext()
        return httpx.AsyncClient(
            follow_redirects=True,
            headers={"User-Agent": self.user_agent},
            transport=self._transport,
        )

    async def fetch_card(
        self,
        result: SerpResult,
        client: httpx.AsyncClient | None = None,
        *,
        max_page_chars: int | None = None,
    ) -> SourceCard:
        """Fetch and extract one page. Never raises; failures become card statuses.

        `max_page_chars` overrides the fetcher-wide text cap for this call.
        """
        if client is None and self._fetcher is None:
            async with self._client() as own_client:
                return await self.fetch_card(result, own_client, max_page_chars=max_page_chars)

        cap = self.max_page_chars if max_page_chars is None else max(int(max_page_chars), 0)
        try:
            text = await asyncio.wait_for(self._load_text(result.url, client, cap), timeout=self.timeout_ms / 1000)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.debug(f"Page fetch timed out after {self.timeout_ms}ms: {result.url}")
            return _failed_card(result, "timeout")
        except Exception as exc:
            logger.debug(f"Page fetch failed for {result.url}: {exc}")
            return _failed_card(result, "error")

        blocked_reason = detect_block_reason(text)
        if blocked_reason:
            return _failed_card(result, "blocked", blocked_reason=blocked_reason)

        return SourceCard(
            url=result.url,
            title=result.title or result.url,
            domain=result.domain or web_utils.extract_domain(result.url),
            status="ok",
            text=text,
            description=result.description,
            position=result.position,
        )

    async def _load_text(self, url: str, client: httpx.AsyncClient | None, max_chars: int) -> str:
        html = await self._load_html(url, client)
        text = extract_page_text(html, mode=self.extractor_mode, max_chars=max_chars)
        if not text:
            raise RuntimeError("Page has no extractable text")
        return text

    async def _load_html(self, url: str, client: httpx.AsyncClient | None) -> str:
        if self._fetcher is not None:
            return await self._fetcher(url)
        if client is None:
            raise RuntimeError("No HTTP client available")

        async with client.stream("GET", url) as response:
            content_type = response.headers.get("content-type", "")
            if not response.is_success or "text" not in content_type:
                raise RuntimeError(f"Fetch failed: {response.status_code} ({content_type or 'no content-type'})")
            body = bytearray()
            async for chunk in response.aiter_bytes():
                body.extend(chunk)
                if len(body) >= self.max_bytes:
                    break
            encoding = response.charset_encoding or "utf-8"
            return bytes(body[: self.max_bytes]).decode(encoding, errors="replace")

    async def fetch_all(
        self,
        candidates: list[SerpResult],
        *,
        target_usable: int | None = None,
        stop_when_enough: bool = False,
        on_card: CardHook | None = None,
        deadline: float | None = None,
        cancel_event: asyncio.Event | None = None,
        max_page_chars: int | None = None,
    ) -> FetchBatch:
        """Fan candidates out over a fixed worker pool sharing one cursor.

        `deadline` is an event-loop time: workers take no new candidates past
        it and in-flight fetches are cancelled (recorded as timeouts).
        """
        batch = FetchBatch()
        if not candidates:
            return batch

        loop = asyncio.get_running_loop()
        cursor = 0
        usable = 0
        in_flight: dict[int, SerpResult] = {}

        def should_stop() -> bool:
            if cancel_event is not None and cancel_event.is_set():
                return True
            if deadline is not None and loop.time() >= deadline:
                return True
            return bool(stop_when_enough and target_usable and usable >= target_usable)

        async def record(card: SourceCard) -> None:
            nonlocal usable
            batch.cards.append(card)
            if card.usable:
                usable += 1
            if on_card is not None:
                try:
                    outcome = on_card(card, len(batch.cards))
                    if asyncio.iscoroutine(outcome):
                        await outcome
                except Exception as exc:
                    logger.warning(f"Fetch progress hook failed: {exc}")

        async def worker(client: httpx.AsyncClient | None) -> None:
            nonlocal cursor
            while not should_stop():
                current = cursor
                cursor += 1
                if current >= len(candidates):
                    return
                in_flight[current] = candidates[current]
                card = await self.fetch_card(candidates[current], client, max_page_chars=max_page_chars)
                del in_flight[current]
                await record(card)

        async with self._client() as client:
            workers = [
                asyncio.create_task(worker(client))
                for _ in range(min(self.concurrency, len(candidates)))
            ]
            if deadline is None:
                await asyncio.gather(*workers)
            else:
                _done, pending = await asyncio.wait(workers, timeout=max(deadline - loop.time(), 0))
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                for result in list(in_flight.values()):
                    await record(_failed_card(result, "timeout"))
                if pending:
                    logger.warning(f"Fetch deadline reached; {len(pending)} workers cancelled")

        batch.remaining = list(candidates[min(cursor, len(candidates)):])
        return batch
