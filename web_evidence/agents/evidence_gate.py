from __future__ import annotations

import json
import time
from typing import Any

from loguru import logger

from web_evidence.config import settings
from web_evidence.llm_client import StructuredCompletionAdapter, client as llm_client
from web_evidence.research_core.models.interfaces import EvidenceGate, WebPipelineChunk
from web_evidence.services import logger as log_service
from web_evidence.services.pricing import calculate_cost

CHUNK_CLIP_CHARS = 1200
MAX_SUGGESTED_QUERIES = 2

GATE_SYSTEM_PROMPT = """You are an evidence gate for a search pipeline.
Return JSON only with:
{ "enoughEvidence": boolean, "suggestedQueries": string[] }
Rules:
- If the provided chunks contain enough evidence to answer the prompt, return true.
- If the chunks are too thin, off-topic, or missing key details, return false.
- If you return false, propose up to 2 concise alternative queries that try new angles and avoid the previous queries/sources.
- No extra fields or commentary."""

GATE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "enoughEvidence": {"type": "boolean"},
        "suggestedQueries": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["enoughEvidence", "suggestedQueries"],
}


def summarize_chunks(chunks: list[WebPipelineChunk]) -> str:
    parts: list[str] = []
    for index, chunk in enumerate(chunks, start=1):
        content = chunk.text
        if len(content) > CHUNK_CLIP_CHARS:
            content = f"{content[:CHUNK_CLIP_CHARS]}..."
        lines = [f"Chunk {index}"]
        if chunk.title:
            lines.append(f"Title: {chunk.title}")
        if chunk.url:
            lines.append(f"URL: {chunk.url}")
        lines.append(content)
        parts.append("\n".join(lines))
    return "\n\n".join(parts)


def parse_gate(text: str) -> EvidenceGate:
    """Read the gate JSON. Anything unexpected means not enough evidence."""
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return EvidenceGate(enough_evidence=False)
    if not isinstance(payload, dict) or not isinstance(payload.get("enoughEvidence"), bool):
        return EvidenceGate(enough_evidence=False)

    raw = payload.get("suggestedQueries")
    suggestions = [q.strip() for q in raw if isinstance(q, str) and q.strip()] if isinstance(raw, list) else []
    return EvidenceGate(
        enough_evidence=payload["enoughEvidence"],
        suggested_queries=suggestions[:MAX_SUGGESTED_QUERIES],
    )


class EvidenceGateAgent:
    """LLM judgement of whether the selected chunks can answer the prompt."""

    def __init__(self, llm: StructuredCompletionAdapter | None = None, model: str | None = None):
        self._llm = llm
        self.model = model or settings.planner_model
        self.max_tokens = max(int(settings.gate_max_tokens), 1)

    async def evaluate(
        self,
        prompt: str,
        chunks: list[WebPipelineChunk],
        previous_queries: list[str] | None = None,
    ) -> EvidenceGate:
        if not chunks:
            return EvidenceGate(enough_evidence=False)

        previous = "\n".join(previous_queries) if previous_queries else "None"
        messages = [
            {"role": "system", "content": GATE_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": f"Prompt:\n{prompt}\n\nPrevious queries:\n{previous}\n\nChunks:\n{summarize_chunks(chunks)}",
            },
        ]

        start = time.perf_counter()
        try:
            llm = self._llm or llm_client()
            response = await llm.complete_json(
                messages=messages,
                schema_name="evidence_gate",
                schema=GATE_SCHEMA,
                model=self.model,
                temperature=0.2,
                enforce_json=True,
                max_tokens=self.max_tokens,
                extra_params={"reasoning_effort": "low"},
            )
        except Exception as exc:
            logger.warning(f"Evidence gate call failed: {exc}")
            log_service.log_llm_call(
                model=self.model,
                caller="evidence_gate",
                duration_ms=int((time.perf_counter() - start) * 1000),
                status="error",
                error=str(exc),
            )
            return EvidenceGate(enough_evidence=False)

        log_service.log_llm_call(
            model=self.model,
            caller="evidence_gate",
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            duration_ms=int((time.perf_counter() - start) * 1000),
            estimated_cost=calculate_cost(
                self.model, response.usage.input_tokens, 0, response.usage.output_tokens
            ),
        )
        return parse_gate(response.text)
