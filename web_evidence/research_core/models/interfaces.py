from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal


FetchStatus = Literal["ok", "blocked", "timeout", "error"]
BlockReason = Literal["captcha", "auth_wall", "access_denied", "js_required"]


@dataclass(frozen=True, slots=True)
class SerpResult:
    url: str
    title: str
    description: str | None = None
    position: int | float | None = None
    domain: str | None = None


@dataclass(frozen=True, slots=True)
class SourceCard:
    url: str
    title: str
    domain: str | None
    status: FetchStatus
    text: str = ""
    relevance_score: float = 0
    description: str | None = None
    position: int | float | None = None
    blocked_reason: str | None = None
    content_score: float | None = None

    @property
    def usable(self) -> bool:
        return self.status == "ok" and bool(self.text)


@dataclass(slots=True)
class WebPipelineChunk:
    text: str
    url: str
    title: str
    domain: str | None
    score: float


@dataclass(slots=True)
class QueryPlan:
    use_web_search: bool
    queries: list[str] = field(default_factory=list)
    reason: str | None = None
    target_depth: int | None = None
    time_sensitive: bool | None = None
    time_reason: str | None = None
    result_count: int | None = None
    excerpt_mode: str | None = None


@dataclass(slots=True)
class SerpResponse:
    results: list[SerpResult]
    raw: Any
    request_count: int
    task_id: str | None = None
    provider: str = "brightdata"


@dataclass(slots=True)
class PipelineCost:
    serp_requests: int = 0
    serp_estimated_usd: float = 0.0
    unlocker_requests: int = 0
    unlocker_estimated_usd: float = 0.0


@dataclass(slots=True)
class EvidenceGate:
    enough_evidence: bool
    suggested_queries: list[str] = field(default_factory=list)


@dataclass(slots=True)
class WebPipelineResult:
    queries: list[str]
    results: list[SerpResult] = field(default_factory=list)
    chunks: list[WebPipelineChunk] = field(default_factory=list)
    sources: list[dict[str, str]] = field(default_factory=list)
    gate: EvidenceGate = field(default_factory=lambda: EvidenceGate(enough_evidence=False))
    expanded: bool = False
    skipped: bool = False
    skip_reason: str | None = None
    collected_urls: list[str] = field(default_factory=list)
    time_sensitive: bool = False
    reused_persistent_query: bool = False
    serp_cache_hits: int = 0
    page_cache_hits: int = 0
    cost: PipelineCost = field(default_factory=PipelineCost)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase shape the chat handler consumes."""
        payload: dict[str, Any] = {
            "queries": list(self.queries),
            "results": [
                {
                    "url": r.url,
                    "title": r.title,
                    "description": r.description,
                    "position": r.position,
                    "domain": r.domain,
                }
                for r in self.results
            ],
            "chunks": [
                {
                    "text": c.text,
                    "url": c.url,
                    "title": c.title,
                    "domain": c.domain,
                    "score": c.score,
                }
                for c in self.chunks
            ],
            "sources": [dict(s) for s in self.sources],
            "gate": {"enoughEvidence": self.gate.enough_evidence},
            "expanded": self.expanded,
            "skipped": self.skipped,
            "collectedUrls": list(self.collected_urls),
            "timeSensitive": self.time_sensitive,
            "reusedPersistentQuery": self.reused_persistent_query,
            "serpCacheHits": self.serp_cache_hits,
            "pageCacheHits": self.page_cache_hits,
            "cost": {
                "serpRequests": self.cost.serp_requests,
                "serpEstimatedUsd": self.cost.serp_estimated_usd,
                "brightdataUnlockerRequests": self.cost.unlocker_requests,
                "brightdataUnlockerEstimatedUsd": self.cost.unlocker_estimated_usd,
            },
        }
        if self.gate.suggested_queries:
            payload["gate"]["suggestedQueries"] = list(self.gate.suggested_queries)
        if self.skip_reason is not None:
            payload["skipReason"] = self.skip_reason
        return payload
