"""SERP working-set selection and post-fetch evidence selection."""

from __future__ import annotations

from dataclasses import replace
from enum import Enum

from web_evidence.research_core.models.interfaces import SerpResult, SourceCard
from web_evidence.tools import web_utils

MAX_SERP_RESULTS = 30
CONTENT_SCORE_WEIGHT = 20


class EvidencePolicy(str, Enum):
    HALF_SERP = "half_serp"
    DOMAIN_CAPPED = "domain_capped"
    TARGET = "target"


def select_serp_results(
    results: list[SerpResult],
    max_items: int,
    *,
    max_per_domain: int = 0,
) -> list[SerpResult]:
    """Dedupe by URL and cap the working set, optionally per domain.

    `max_per_domain=0` means no domain cap. Items without a URL or a
    resolvable domain are dropped. The output carries the resolved domain.
    """
    selected: list[SerpResult] = []
    seen: set[str] = set()
    domain_counts: dict[str, int] = {}

    for result in results:
        if len(selected) >= max_items:
            break
        url = (result.url or "").strip()
        if not url or url in seen:
            continue
        domain = result.domain or web_utils.extract_domain(url)
        if not domain:
            continue
        if max_per_domain > 0 and domain_counts.get(domain, 0) >= max_per_domain:
            continue
        seen.add(url)
        domain_counts[domain] = domain_counts.get(domain, 0) + 1
        selected.append(replace(result, url=url, domain=domain))

    return selected


def _combined_score(card: SourceCard) -> float:
    return card.relevance_score + (card.content_score or 0) * CONTENT_SCORE_WEIGHT


def select_evidence(
    cards: list[SourceCard],
    *,
    policy: EvidencePolicy = EvidencePolicy.TARGET,
    target: int = 10,
    serp_count: int = 0,
    domain_quota: int = 2,
    max_domain_capped: int = 5,
    floor: int = 3,
) -> list[SourceCard]:
    """Pick the evidence subset from scored cards. Only ok cards are eligible."""
    usable = [card for card in cards if card.usable]
    if not usable:
        return []

    if policy is EvidencePolicy.TARGET:
        ranked = sorted(usable, key=_combined_score, reverse=True)
        return ranked[: max(1, min(len(ranked), target))]

    ranked = sorted(usable, key=lambda card: card.relevance_score, reverse=True)

    if policy is EvidencePolicy.HALF_SERP:
        return ranked[: max(1, serp_count // 2)]

    # Domain-capped: quota per domain until the page cap, then top up to the floor.
    selected: list[SourceCard] = []
    domain_counts: dict[str | None, int] = {}
    for card in ranked:
        if len(selected) >= max_domain_capped:
            break
        if domain_counts.get(card.domain, 0) >= domain_quota:
            continue
        domain_counts[card.domain] = domain_counts.get(card.domain, 0) + 1
        selected.append(card)

    if len(selected) < floor:
        for card in ranked:
            if len(selected) >= floor:
                break
            if card not in selected:
                selected.append(card)

    return selected
