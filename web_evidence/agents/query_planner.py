"""Decides whether a prompt needs web search and writes the search queries."""
from __future__ import annotations

import json
import time
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from web_evidence.config import settings
from web_evidence.llm_client import StructuredCompletionAdapter, client as llm_client
from web_evidence.research_core.models.interfaces import QueryPlan
from web_evidence.services import logger as log_service
from web_evidence.services.pricing import calculate_cost

ALLOWED_DEPTHS = (15, 30, 50, 100)
RECENT_MESSAGE_LIMIT = 6
FALLBACK_REASON = "planner_fallback"

QUERY_WRITER_SYSTEM_PROMPT = """You are a search query writer for a web search pipeline.
Return JSON only with this shape:
{{ "useWebSearch": boolean, "queries": string[], "reason": string, "targetDepth": number }}
Rules:
- Decide whether web search will materially help answer the prompt.
- If web search will NOT help (purely conversational, personal preference, creative writing, general advice), set "useWebSearch": false and return an empty queries array.
- If web search WILL help (facts, stats, current events, prices, schedules, citations), set "useWebSearch": true and produce {count} concise queries.
- Use the prompt as the primary signal. Use recent messages only to disambiguate.
- If the prompt implies recency, use the provided current date to anchor queries.
- Prefer breadth across queries: cover different angles of the same question.
- Queries should be short, specific, and not include quotes.
- If "useWebSearch" is false, include a short reason in "reason" (max 12 words).
- Choose a "targetDepth" from [15, 30, 50, 100] to signal how many URLs to fetch overall. Use lower for narrow/urgent/local questions; higher for broad research. If unsure, pick 30.
- Do not include commentary or extra fields."""

QUERY_AND_TIME_SYSTEM_PROMPT = """You decide if web search is needed AND write queries AND classify time-sensitivity.
Return ONLY JSON:
{{
  "useWebSearch": boolean,
  "queries": string[],
  "reason": string,
  "targetDepth": number,
  "timeSensitive": boolean,
  "timeReason": string
}}
Rules:
- If web search will NOT help, set useWebSearch=false, queries=[], include a short reason.
- If web search WILL help, set useWebSearch=true and produce {count} concise queries.
- Choose targetDepth from [15,30,50,100]; lower for narrow/local/urgent, higher for broad research.
- timeSensitive=true only when data older than ~24h is insufficient (live scores, breaking news, current traffic/stock/flight status, "right now" weather); otherwise false.
- Keep reasons short (<=12 words). No extra fields."""

TIME_SENSITIVITY_SYSTEM_PROMPT = """You classify whether a user question needs fresh/real-time data.
Return JSON only:
{ "timeSensitive": boolean, "reason": string }
Rules:
- Only mark timeSensitive=true if data older than ~24 hours is likely insufficient (live scores, breaking news, current traffic/stock/flight status, "right now" weather).
- For stable schedules, routine recipes/how-tos, evergreen facts, or yesterday's news being acceptable, return false.
- Keep reason brief (<= 12 words)."""

QUERY_WRITER_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "useWebSearch": {"type": "boolean"},
        "queries": {"type": "array", "items": {"type": "string"}},
        "reason": {"type": "string"},
        "targetDepth": {"type": "number"},
    },
    "required": ["useWebSearch", "queries"],
}

QUERY_AND_TIME_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        **QUERY_WRITER_SCHEMA["properties"],
        "timeSensitive": {"type": "boolean"},
        "timeReason": {"type": "string"},
    },
    "required": ["useWebSearch", "queries", "timeSensitive"],
}

TIME_SENSITIVITY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "timeSensitive": {"type": "boolean"},
        "reason": {"type": "string"},
    },
    "required": ["timeSensitive"],
}


class QueryWriterOutput(BaseModel):
    """Lenient view of the planner JSON. Wrongly typed fields read as missing."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    use_web_search: bool | None = Field(default=None, alias="useWebSearch")
    queries: list[str] = Field(default_factory=list)
    reason: str | None = None
    target_depth: float | None = Field(default=None, alias="targetDepth")
    time_sensitive: bool | None = Field(default=None, alias="timeSensitive")
    time_reason: str | None = Field(default=None, alias="timeReason")
    result_count: int | None = Field(default=None, alias="resultCount")
    excerpt_mode: str | None = Field(default=None, alias="excerptMode")

    @field_validator("use_web_search", "time_sensitive", mode="before")
    @classmethod
    def _strict_bool(cls, value: Any) -> Any:
        return value if isinstance(value, bool) else None

    @field_validator("queries", mode="before")
    @classmethod
    def _string_list(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, str)]

    @field_validator("reason", "time_reason", "excerpt_mode", mode="before")
    @classmethod
    def _stripped_str(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else None

    @field_validator("target_depth", mode="before")
    @classmethod
    def _number(cls, value: Any) -> Any:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return value

    @field_validator("result_count", mode="before")
    @classmethod
    def _whole_number(cls, value: Any) -> int | None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return int(value) if float(value).is_integer() else None


def normalize_queries(raw_queries: list[str], prompt: str, count: int) -> list[str]:
    """Trim, drop blanks, dedupe case-insensitively, cap at `count`, pad with the prompt."""
    unique: list[str] = []
    seen: set[str] = set()
    for query in raw_queries:
        cleaned = query.strip()
        if not cleaned or cleaned.lower() in seen:
            continue
        seen.add(cleaned.lower())
        unique.append(cleaned)

    final = unique[:count]
    while len(final) < count:
        final.append(prompt.strip())
    return final


def resolve_target_depth(value: float | None) -> int | None:
    if value is None:
        return None
    rounded = int(round(value))
    return rounded if rounded in ALLOWED_DEPTHS else None


def _format_context(
    prompt: str,
    current_date: str | None,
    recent_messages: list[dict[str, str]] | None,
    location: dict[str, str] | None,
) -> str:
    location = location or {}
    city = location.get("city")
    country = location.get("country_code") or location.get("countryCode")
    if city:
        location_line = f"User location: {city}" + (f" ({country})" if country else "")
    elif country:
        location_line = f"User country: {country}"
    else:
        location_line = "User location: Unknown"

    recent = recent_messages[-RECENT_MESSAGE_LIMIT:] if recent_messages else []
    recent_block = "\n".join(f"{m.get('role', 'user')}: {m.get('content', '')}" for m in recent) or "None"

    return "\n".join(
        [
            f"Current date: {current_date or 'Unknown'}",
            location_line,
            "Recent messages (for context only):",
            recent_block,
            "User prompt:",
            prompt,
        ]
    )


class QueryPlanner:
    """One structured LLM call deciding search need, queries, depth and freshness."""

    def __init__(self, llm: StructuredCompletionAdapter | None = None, model: str | None = None):
        self._llm = llm
        self.model = model or settings.planner_model
        self.max_tokens = max(int(settings.planner_max_tokens), 1)

    @property
    def llm(self) -> StructuredCompletionAdapter:
        if self._llm is None:
            self._llm = llm_client()
        return self._llm

    async def _call(self, caller: str, *, messages: list[dict[str, str]], schema_name: str,
                    schema: dict[str, Any], max_tokens: int, temperature: float = 0.2) -> str:
        start = time.perf_counter()
        status = "success"
        error: str | None = None
        usage = None
        try:
            response = await self.llm.complete_json(
                messages=messages,
                schema_name=schema_name,
                schema=schema,
                model=self.model,
                temperature=temperature,
                enforce_json=True,
                max_tokens=max_tokens,
                extra_params={"reasoning_effort": "low"},
            )
            usage = response.usage
            return response.text
        except Exception as exc:
            status = "error"
            error = str(exc)
            raise
        finally:
            input_tokens = usage.input_tokens if usage else 0
            output_tokens = usage.output_tokens if usage else 0
            log_service.log_llm_call(
                model=self.model,
                caller=caller,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                duration_ms=int((time.perf_counter() - start) * 1000),
                estimated_cost=calculate_cost(self.model, input_tokens, 0, output_tokens),
                status=status,
                error=error,
            )

    async def plan(
        self,
        prompt: str,
        *,
        count: int = 2,
        current_date: str | None = None,
        recent_messages: list[dict[str, str]] | None = None,
        location: dict[str, str] | None = None,
        classify_time: bool = True,
    ) -> QueryPlan:
        prompt = (prompt or "").strip()
        if not prompt:
            raise ValueError("prompt must be non-empty")
        count = max(int(count), 1)

        system_prompt = QUERY_AND_TIME_SYSTEM_PROMPT if classify_time else QUERY_WRITER_SYSTEM_PROMPT
        messages = [
            {"role": "system", "content": system_prompt.format(count=count)},
            {"role": "user", "content": _format_context(prompt, current_date, recent_messages, location)},
        ]

        try:
            text = await self._call(
                "query_and_time" if classify_time else "query_writer",
                messages=messages,
                schema_name="query_and_time" if classify_time else "query_writer",
                schema=QUERY_AND_TIME_SCHEMA if classify_time else QUERY_WRITER_SCHEMA,
                max_tokens=self.max_tokens,
            )
            parsed = QueryWriterOutput.model_validate(json.loads(text))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning(f"Planner returned unparseable output; searching with the prompt: {exc}")
            return self._fallback(prompt, count)
        except Exception as exc:
            logger.warning(f"Planner call failed; searching with the prompt: {exc}")
            return self._fallback(prompt, count)

        use_web_search = True if parsed.use_web_search is None else parsed.use_web_search
        reason = parsed.reason
        if not use_web_search and not reason:
            reason = "Not needed"

        return QueryPlan(
            use_web_search=use_web_search,
            queries=normalize_queries(parsed.queries, prompt, count),
            reason=reason,
            target_depth=resolve_target_depth(parsed.target_depth),
            time_sensitive=bool(parsed.time_sensitive) if classify_time else None,
            time_reason=parsed.time_reason if classify_time else None,
            result_count=int(parsed.result_count) if parsed.result_count in (10, 20) else None,
            excerpt_mode=parsed.excerpt_mode,
        )

    async def assess_time_sensitivity(self, prompt: str, current_date: str | None = None) -> tuple[bool, str | None]:
        """Standalone freshness check; any failure reads as not time-sensitive."""
        messages = [
            {"role": "system", "content": TIME_SENSITIVITY_SYSTEM_PROMPT},
            {"role": "user", "content": f"Current date: {current_date or 'Unknown'}\nUser prompt: {prompt}"},
        ]
        try:
            text = await self._call(
                "time_sensitivity",
                messages=messages,
                schema_name="time_sensitivity_classifier",
                schema=TIME_SENSITIVITY_SCHEMA,
                max_tokens=80,
                temperature=0.1,
            )
            payload = json.loads(text)
        except Exception as exc:
            logger.warning(f"Time-sensitivity check failed: {exc}")
            return False, None

        if not isinstance(payload, dict) or not isinstance(payload.get("timeSensitive"), bool):
            return False, None
        reason = payload.get("reason")
        return payload["timeSensitive"], reason.strip() if isinstance(reason, str) else None

    @staticmethod
    def _fallback(prompt: str, count: int) -> QueryPlan:
        return QueryPlan(
            use_web_search=True,
            queries=[prompt] * count,
            reason=FALLBACK_REASON,
        )
