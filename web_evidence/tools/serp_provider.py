from __future__ import annotations

from web_evidence.config import settings
from web_evidence.research_core.models.interfaces import SerpResponse
from web_evidence.tools import brightdata_serp, dataforseo_serp


async def search(
    keyword: str,
    *,
    depth: int,
    gl: str | None = None,
    hl: str | None = None,
    location_name: str | None = None,
) -> SerpResponse:
    """Route one SERP request to the configured provider."""
    provider = settings.serp_provider.lower().strip()

    if provider == "brightdata":
        return await brightdata_serp.fetch_google_organic_serp(keyword, depth=depth, gl=gl, hl=hl)

    if provider == "dataforseo":
        return await dataforseo_serp.fetch_google_organic_serp(
            keyword,
            depth=depth,
            location_name=location_name,
            language_code=hl,
        )

    raise ValueError(f"Unsupported SERP_PROVIDER: {settings.serp_provider}")
