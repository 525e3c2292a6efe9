"""Shared generate-and-validate path for the email drafting handlers."""

from __future__ import annotations

from typing import Any

from ..contracts import DraftEmail, parse_draft_email
from ..generation import DRAFT_EMAIL_SYSTEM_PROMPT, GenerationService
from ..types import RequestRecord, StepRecord

DEFAULT_DRAFT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_DRAFT_MAX_TOKENS = 2048


def build_generation_input(request: RequestRecord, step: StepRecord) -> dict[str, Any]:
    return {
        "requestId": request.request_id,
        "requestTitle": request.title,
        "requestSummary": request.summary,
        "rawInput": request.raw_input,
        "step": {"action": step.action, "detail": step.detail},
    }


class DraftComposer:
    def __init__(
        self,
        generation: GenerationService,
        *,
        model_id: str = DEFAULT_DRAFT_MODEL,
        max_tokens: int = DEFAULT_DRAFT_MAX_TOKENS,
        system_prompt: str = DRAFT_EMAIL_SYSTEM_PROMPT,
    ) -> None:
        self._generation = generation
        self._model_id = model_id
        self._max_tokens = max_tokens
        self._system_prompt = system_prompt

    async def compose(self, request: RequestRecord, step: StepRecord) -> DraftEmail:
        """Raises ``GenerationError`` or ``DraftSchemaError``."""
        raw = await self._generation.generate(
            system_prompt=self._system_prompt,
            structured_input=build_generation_input(request, step),
            model_id=self._model_id,
            max_tokens=self._max_tokens,
        )
        return parse_draft_email(raw)
