"""Keyword-based relevance and content-quality heuristics.

Scores are ordinal ranking signals: higher is better, nothing more.
"""
from __future__ import annotations

import re
from dataclasses import replace

from web_evidence.research_core.models.interfaces import SourceCard

MAX_KEYWORDS = 20

STOPWORDS = frozenset(
    {
        "the",
        "a",
        "an",
        "to",
        "for",
        "and",
        "or",
        "of",
        "in",
        "on",
        "at",
        "by",
        "from",
        "with",
        "about",
        "as",
        "into",
        "over",
        "after",
        "than",
        "out",
        "up",
        "down",
        "off",
        "near",
        "latest",
        "today",
        "new",
        "recent",
    }
)

_NON_KEYWORD_CHARS = re.compile(r"[^a-z0-9\s-]")
_DIGIT_RUN = re.compile(r"\d+")


def extract_keywords(text: str) -> list[str]:
    """Stopword-filtered prompt keywords; the first 20 tokens, de-duplicated in order."""
    tokens = [
        word
        for word in _NON_KEYWORD_CHARS.sub(" ", text.lower()).split()
        if word and word not in STOPWORDS
    ][:MAX_KEYWORDS]
    return list(dict.fromkeys(tokens))


def count_occurrences(text: str, term: str) -> int:
    if not term:
        return 0
    return len(re.findall(re.escape(term), text, flags=re.IGNORECASE))


def compute_relevance_score(title: str, text: str, keywords: list[str]) -> int:
    if not keywords:
        return 0
    haystack = f"{title.lower()} {text.lower()}"
    return sum(haystack.count(kw) for kw in keywords if kw)


def compute_content_score(text: str, keywords: list[str]) -> float:
    """Blend keyword density (70%) with numeric-token density (30%), capped at 1."""
    if not text:
        return 0.0
    lowered = text.lower()
    keyword_weight = sum(count_occurrences(lowered, kw.lower()) for kw in keywords)
    numeric_density = min(1.0, len(_DIGIT_RUN.findall(text)) / 5)
    density_score = min(1.0, keyword_weight / 5)
    return min(1.0, density_score * 0.7 + numeric_density * 0.3)


def score_card(card: SourceCard, keywords: list[str]) -> SourceCard:
    if not card.usable:
        return replace(card, text="", relevance_score=0, content_score=0.0)
    return replace(
        card,
        relevance_score=compute_relevance_score(card.title, card.text, keywords),
        content_score=compute_content_score(card.text, keywords),
    )
