from __future__ import annotations

from web_evidence.research_core.evidence.chunker import (
    EXCERPT_WORDS,
    ExcerptStrategy,
    excerpt_card,
    keyword_window,
    resolve_chunk_shape,
    slice_text_into_chunks,
    start_window,
)
from web_evidence.research_core.models.interfaces import SourceCard


def _card(text: str, status: str = "ok") -> SourceCard:
    return SourceCard(
        url="https://a.com/p",
        title="Title",
        domain="a.com",
        status=status,
        text=text if status == "ok" else "",
        relevance_score=7 if status == "ok" else 0,
    )


def test_resolve_chunk_shape_presets_and_overrides():
    assert resolve_chunk_shape("snippets") == (1000, 1)
    assert resolve_chunk_shape("balanced") == (1000, 2)
    assert resolve_chunk_shape("rich") == (1000, 4)
    assert resolve_chunk_shape(None) == (1000, 2)
    assert resolve_chunk_shape("unknown") == (1000, 2)
    assert resolve_chunk_shape("rich", chunk_words=50, chunk_count=1) == (50, 1)


def test_slice_text_into_chunks_stops_on_short_text():
    text = " ".join(f"w{i}" for i in range(10))
    assert slice_text_into_chunks(text, 4, 2) == ["w0 w1 w2 w3", "w4 w5 w6 w7"]
    assert slice_text_into_chunks(text, 4, 5) == ["w0 w1 w2 w3", "w4 w5 w6 w7", "w8 w9"]
    assert slice_text_into_chunks("", 4, 2) == []
    assert slice_text_into_chunks(text, 0, 2) == []


def test_start_window_takes_leading_words():
    text = " ".join(f"w{i}" for i in range(1000))
    excerpt = start_window(text).split(" ")
    assert len(excerpt) == EXCERPT_WORDS
    assert excerpt[0] == "w0"


def test_keyword_window_centres_on_keyword_cluster():
    words = ["filler"] * 1000
    for i in range(700, 720):
        words[i] = "eclipse"
    excerpt = keyword_window(" ".join(words), ["eclipse"]).split(" ")
    assert len(excerpt) == EXCERPT_WORDS
    assert excerpt.count("eclipse") == 20


def test_keyword_window_without_hits_is_start_window():
    text = " ".join(f"w{i}" for i in range(1000))
    assert keyword_window(text, ["absent"]) == start_window(text)


def test_keyword_window_near_end_stays_inside_text():
    words = ["filler"] * 1000
    words[-1] = "eclipse"
    excerpt = keyword_window(" ".join(words), ["eclipse"]).split(" ")
    assert len(excerpt) == EXCERPT_WORDS
    assert excerpt[-1] == "eclipse"


def test_excerpt_card_carries_provenance():
    card = _card(" ".join(f"w{i}" for i in range(25)))
    chunks = excerpt_card(card, [], strategy=ExcerptStrategy.SEQUENTIAL, chunk_words=10, chunk_count=2)
    assert len(chunks) == 2
    assert all(c.url == card.url and c.title == card.title and c.domain == "a.com" for c in chunks)
    assert all(c.score == 7 for c in chunks)


def test_fixed_excerpt_strategies_emit_one_chunk():
    card = _card(" ".join(f"w{i}" for i in range(3000)))
    for strategy in (ExcerptStrategy.START_WINDOW, ExcerptStrategy.KEYWORD_WINDOW):
        chunks = excerpt_card(card, ["w5"], strategy=strategy, chunk_words=10, chunk_count=4)
        assert len(chunks) == 1


def test_unusable_card_yields_no_chunks():
    assert excerpt_card(_card("", status="blocked"), ["x"]) == []


def test_keyword_window_matches_keywords_inside_words():
    words = ["filler"] * 1000
    for i in range(700, 710):
        words[i] = "Paris's"
    excerpt = keyword_window(" ".join(words), ["paris"]).split(" ")
    assert len(excerpt) == EXCERPT_WORDS
    assert excerpt.count("Paris's") == 10
    assert excerpt != start_window(" ".join(words)).split(" ")
