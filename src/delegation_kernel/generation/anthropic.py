"""
Anthropic-backed generation service.

Sends one system prompt plus a JSON-serialized user message and parses the
model's text reply as JSON. Code fences and trailing commas are tolerated.
"""

from __future__ import annotations

import json
import re
from typing import Any

import anthropic
from anthropic import AsyncAnthropic

from ..errors import GenerationError
from ..logging import get_logger, truncate_for_log
from .base import GenerationService

logger = get_logger(__name__)

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"```\s*$")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


class AnthropicGenerationService(GenerationService):
    def __init__(
        self,
        *,
        api_key: str | None = None,
        client: AsyncAnthropic | None = None,
        max_retries: int = 2,
        timeout: float | None = None,
    ) -> None:
        if client is None:
            client_kwargs: dict[str, Any] = {"max_retries": max_retries}
            if api_key:
                client_kwargs["api_key"] = api_key
            if timeout is not None:
                client_kwargs["timeout"] = timeout
            client = AsyncAnthropic(**client_kwargs)
        self._client = client

    async def generate(
        self,
        *,
        system_prompt: str,
        structured_input: dict[str, Any],
        model_id: str,
        max_tokens: int,
    ) -> Any:
        try:
            response = await self._client.messages.create(
                model=model_id,
                max_tokens=max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": json.dumps(structured_input)}],
            )
        except anthropic.APIError as exc:
            logger.warning("Generation call failed", model=model_id, error=str(exc))
            raise GenerationError(f"Generation call failed: {exc}", cause=exc) from exc

        text = "\n".join(
            getattr(block, "text", "")
            for block in response.content
            if getattr(block, "type", None) == "text"
        ).strip()
        if not text:
            raise GenerationError("Generation service returned an empty response")
        return parse_json_reply(text)


def parse_json_reply(text: str) -> Any:
    cleaned = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text.strip()))
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    # Trailing-comma repair applies only to replies that fail to parse as sent.
    try:
        return json.loads(_TRAILING_COMMA.sub(r"\1", cleaned))
    except json.JSONDecodeError as exc:
        logger.warning("Generation reply is not valid JSON", preview=truncate_for_log(text, 120))
        raise GenerationError(f"Failed to parse generated JSON: {exc}", cause=exc) from exc
