from __future__ import annotations

from enum import Enum

from web_evidence.research_core.models.interfaces import SourceCard, WebPipelineChunk
from web_evidence.tools.web_utils import normalize_whitespace

EXCERPT_WORDS = 400
KEYWORD_WINDOW_WORDS = 120
DEFAULT_CHUNK_WORDS = 1000
DEFAULT_CHUNK_COUNT = 1
# Page text cap for the fixed-excerpt strategies.
MAX_PAGE_CHARS = 4000

CHUNK_PRESETS: dict[str, tuple[int, int]] = {
    "snippets": (1000, 1),
    "balanced": (1000, 2),
    "rich": (1000, 4),
}


class ExcerptStrategy(str, Enum):
    START_WINDOW = "start_window"
    KEYWORD_WINDOW = "keyword_window"
    SEQUENTIAL = "sequential"


def resolve_chunk_shape(
    excerpt_mode: str | None,
    *,
    chunk_words: int | None = None,
    chunk_count: int | None = None,
) -> tuple[int, int]:
    """(words per chunk, chunks per page) from an excerpt mode plus explicit overrides."""
    preset_words, preset_count = CHUNK_PRESETS.get(excerpt_mode or "balanced", CHUNK_PRESETS["balanced"])
    return (
        chunk_words if chunk_words is not None else preset_words,
        chunk_count if chunk_count is not None else preset_count,
    )


def _words(text: str) -> list[str]:
    cleaned = normalize_whitespace(text or "")
    return cleaned.split(" ") if cleaned else []


def start_window(text: str, *, excerpt_words: int = EXCERPT_WORDS) -> str:
    return " ".join(_words(text)[:excerpt_words])


def keyword_window(
    text: str,
    keywords: list[str],
    *,
    window_words: int = KEYWORD_WINDOW_WORDS,
    excerpt_words: int = EXCERPT_WORDS,
) -> str:
    """Excerpt centred on the densest keyword window.

    Windows are scored by how many of their words contain a keyword; ties go to the
    earliest window. With no hits anywhere this is the start window.
    """
    words = _words(text)
    if len(words) <= excerpt_words:
        return " ".join(words)

    keyword_set = {kw.lower() for kw in keywords if kw}
    hits = [1 if any(kw in word.lower() for kw in keyword_set) else 0 for word in words]
    window = min(window_words, len(words))

    current = sum(hits[:window])
    best_score, best_start = current, 0
    for start in range(1, len(words) - window + 1):
        current += hits[start + window - 1] - hits[start - 1]
        if current > best_score:
            best_score, best_start = current, start

    if best_score == 0:
        return " ".join(words[:excerpt_words])

    center = best_start + window // 2
    start = max(0, center - excerpt_words // 2)
    end = min(len(words), start + excerpt_words)
    start = max(0, end - excerpt_words)
    return " ".join(words[start:end])


def slice_text_into_chunks(text: str, chunk_words: int, chunk_count: int) -> list[str]:
    """Consecutive `chunk_words`-word slices from the start, at most `chunk_count` of them."""
    if not text or chunk_words <= 0 or chunk_count <= 0:
        return []
    words = _words(text)
    chunks: list[str] = []
    for index in range(chunk_count):
        start = index * chunk_words
        if start >= len(words):
            break
        chunks.append(" ".join(words[start:start + chunk_words]))
    return chunks


def excerpt_texts(
    text: str,
    keywords: list[str],
    *,
    strategy: ExcerptStrategy,
    chunk_words: int = DEFAULT_CHUNK_WORDS,
    chunk_count: int = DEFAULT_CHUNK_COUNT,
) -> list[str]:
    if strategy is ExcerptStrategy.START_WINDOW:
        excerpt = start_window(text)
        return [excerpt] if excerpt else []
    if strategy is ExcerptStrategy.KEYWORD_WINDOW:
        excerpt = keyword_window(text, keywords)
        return [excerpt] if excerpt else []
    return slice_text_into_chunks(text, chunk_words, chunk_count)


def excerpt_card(
    card: SourceCard,
    keywords: list[str],
    *,
    strategy: ExcerptStrategy = ExcerptStrategy.SEQUENTIAL,
    chunk_words: int = DEFAULT_CHUNK_WORDS,
    chunk_count: int = DEFAULT_CHUNK_COUNT,
) -> list[WebPipelineChunk]:
    if not card.usable:
        return []
    return [
        WebPipelineChunk(
            text=chunk_text,
            url=card.url,
            title=card.title,
            domain=card.domain,
            score=card.relevance_score,
        )
        for chunk_text in excerpt_texts(
            card.text,
            keywords,
            strategy=strategy,
            chunk_words=chunk_words,
            chunk_count=chunk_count,
        )
        if chunk_text
    ]
