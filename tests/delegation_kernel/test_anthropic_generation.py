from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import anthropic
import httpx
import pytest

from delegation_kernel.errors import GenerationError
from delegation_kernel.generation import AnthropicGenerationService
from delegation_kernel.generation.anthropic import parse_json_reply


def _client(*blocks: SimpleNamespace) -> SimpleNamespace:
    response = SimpleNamespace(content=list(blocks))
    return SimpleNamespace(messages=SimpleNamespace(create=AsyncMock(return_value=response)))


def _text(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="text", text=text)


@pytest.mark.asyncio
async def test_generate_sends_structured_input_and_parses_reply() -> None:
    client = _client(_text('{"subject": "Hi", "body": "Hello"}'))
    service = AnthropicGenerationService(client=client)

    result = await service.generate(
        system_prompt="system",
        structured_input={"requestId": "r1", "step": {"action": "Draft"}},
        model_id="claude-test",
        max_tokens=256,
    )

    assert result == {"subject": "Hi", "body": "Hello"}
    kwargs = client.messages.create.await_args.kwargs
    assert kwargs["model"] == "claude-test"
    assert kwargs["max_tokens"] == 256
    assert kwargs["system"] == "system"
    assert json.loads(kwargs["messages"][0]["content"]) == {"requestId": "r1", "step": {"action": "Draft"}}


@pytest.mark.asyncio
async def test_generate_joins_text_blocks_and_skips_others() -> None:
    client = _client(
        SimpleNamespace(type="thinking", thinking="..."),
        _text('```json\n{"subject": "Hi",'),
        _text('"body": "Hello",}\n```'),
    )
    service = AnthropicGenerationService(client=client)

    result = await service.generate(system_prompt="s", structured_input={}, model_id="m", max_tokens=10)

    assert result == {"subject": "Hi", "body": "Hello"}


@pytest.mark.asyncio
async def test_empty_reply_is_a_generation_error() -> None:
    service = AnthropicGenerationService(client=_client(_text("   ")))

    with pytest.raises(GenerationError):
        await service.generate(system_prompt="s", structured_input={}, model_id="m", max_tokens=10)


@pytest.mark.asyncio
async def test_api_failure_is_a_generation_error() -> None:
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    client = SimpleNamespace(
        messages=SimpleNamespace(create=AsyncMock(side_effect=anthropic.APIConnectionError(request=request)))
    )
    service = AnthropicGenerationService(client=client)

    with pytest.raises(GenerationError) as exc_info:
        await service.generate(system_prompt="s", structured_input={}, model_id="m", max_tokens=10)
    assert isinstance(exc_info.value.cause, anthropic.APIConnectionError)
    assert exc_info.value.retryable


def test_parse_json_reply() -> None:
    assert parse_json_reply('```\n[1, 2,]\n```') == [1, 2]
    assert parse_json_reply('{"a": {"b": 1,},}') == {"a": {"b": 1}}
    with pytest.raises(GenerationError):
        parse_json_reply("Sure! Here is your email.")


def test_parse_json_reply_keeps_commas_inside_valid_strings() -> None:
    reply = '{"subject": "Items", "body": "Bring a, b, ]"}'

    assert parse_json_reply(reply) == {"subject": "Items", "body": "Bring a, b, ]"}
