"""HTML to plain text for fetched pages, plus soft-block detection."""
from __future__ import annotations

import re

from bs4 import BeautifulSoup

from web_evidence.research_core.models.interfaces import BlockReason
from web_evidence.tools.web_utils import normalize_whitespace

MAIN_REGION_PATTERNS = (
    re.compile(r"<main[\s\S]*?</main>", re.IGNORECASE),
    re.compile(r"<article[\s\S]*?</article>", re.IGNORECASE),
    re.compile(r"<section[\s\S]*?</section>", re.IGNORECASE),
)
CONTENT_DIV_PATTERN = re.compile(
    r"<div[^>]+(?:content|article|main|body|post)[^>]*>[\s\S]*?</div>",
    re.IGNORECASE,
)
SKIPPED_TAGS = ("script", "style", "noscript")

# Checked in order; the first hit names the block.
BLOCK_SIGNALS: tuple[tuple[BlockReason, tuple[str, ...]], ...] = (
    ("captcha", ("captcha",)),
    ("auth_wall", ("subscribe", "sign in", "log in")),
    ("access_denied", ("access denied", "forbidden")),
    ("js_required", ("enable javascript",)),
)


def isolate_main_html(html: str) -> str:
    """Best-effort regex cut to the main content region; whole document when nothing matches."""
    for pattern in MAIN_REGION_PATTERNS:
        match = pattern.search(html)
        if match and match.group(0):
            return match.group(0)
    match = CONTENT_DIV_PATTERN.search(html)
    return match.group(0) if match else html


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(list(SKIPPED_TAGS)):
        tag.decompose()
    return normalize_whitespace(soup.get_text(" "))


def _extract_with_trafilatura(html: str) -> str:
    import trafilatura

    extracted = trafilatura.extract(html, output_format="txt")
    if not isinstance(extracted, str):
        return ""
    return normalize_whitespace(extracted)


def _truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[:max_chars]


def extract_page_text(html: str, *, mode: str = "regex", max_chars: int = 0) -> str:
    """Plain text of a page.

    `regex` isolates a main region first and converts it with BeautifulSoup.
    `trafilatura` asks trafilatura for the article body and falls back to the
    regex path when it finds nothing. `max_chars > 0` truncates the result.
    """
    text = ""
    if mode == "trafilatura":
        text = _extract_with_trafilatura(html)
    if not text:
        main_html = isolate_main_html(html)
        text = html_to_text(main_html or html)
    return _truncate(text, max_chars)


def detect_block_reason(text: str) -> BlockReason | None:
    lower = text.lower()
    for reason, signals in BLOCK_SIGNALS:
        if any(signal in lower for signal in signals):
            return reason
    return None
