from __future__ import annotations

import re
from urllib.parse import urlparse


def normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def extract_domain(url: str | None) -> str | None:
    """Hostname without a leading `www.`, lowercased; None when nothing usable."""
    if not url:
        return None
    try:
        host = urlparse(url.strip()).hostname or ""
    except ValueError:
        host = ""
    if not host:
        # Scheme-less or malformed: take everything before the first slash.
        host = re.sub(r"^https?://", "", url.strip(), flags=re.IGNORECASE).split("/")[0]
    host = re.sub(r"^www\.", "", host, flags=re.IGNORECASE).lower()
    return host or None
