"""OpenAI-compatible structured-output client used by the planner and the evidence gate."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from web_evidence.config import settings


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class LLMResponse:
    text: str
    usage: Usage = field(default_factory=Usage)


class StructuredCompletionAdapter:
    def __init__(self, openai_client: Any):
        self._client = openai_client

    @staticmethod
    def _temperature_for_model(model: str, temperature: float) -> float:
        # Some OpenAI GPT-5-compatible gateways reject any temperature but 1.
        lowered = (model or "").lower()
        if "gpt-5" in lowered:
            return 1
        return temperature

    @staticmethod
    def _response_format(schema_name: str, schema: dict[str, Any], enforce_json: bool) -> dict[str, Any]:
        if not enforce_json:
            return {"type": "json_object"}
        return {
            "type": "json_schema",
            "json_schema": {"name": schema_name, "schema": schema},
        }

    def _from_openai_response(self, response: Any) -> LLMResponse:
        choices = getattr(response, "choices", None) or []
        text = ""
        if choices:
            message = getattr(choices[0], "message", None)
            text = (getattr(message, "content", None) or "").strip()

        usage = getattr(response, "usage", None)
        return LLMResponse(
            text=text,
            usage=Usage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
        )

    async def complete_json(
        self,
        *,
        messages: list[dict[str, str]],
        schema_name: str,
        schema: dict[str, Any],
        model: str,
        temperature: float = 0.2,
        enforce_json: bool = True,
        max_tokens: int = 400,
        extra_params: dict[str, Any] | None = None,
    ) -> LLMResponse:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": self._temperature_for_model(model, temperature),
            "response_format": self._response_format(schema_name, schema, enforce_json),
        }
        if extra_params:
            kwargs["extra_body"] = dict(extra_params)

        response = await self._client.chat.completions.create(**kwargs)
        return self._from_openai_response(response)


def get_client() -> StructuredCompletionAdapter:
    """Build the adapter over the OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    if not settings.deepinfra_api_key:
        raise RuntimeError("DEEPINFRA_API_KEY is not configured")
    base_url = settings.llm_base_url.strip() or "https://api.deepinfra.com/v1/openai"
    openai_client = AsyncOpenAI(
        api_key=settings.deepinfra_api_key,
        base_url=base_url,
    )
    return StructuredCompletionAdapter(openai_client)


_client: StructuredCompletionAdapter | None = None


def client() -> StructuredCompletionAdapter:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
