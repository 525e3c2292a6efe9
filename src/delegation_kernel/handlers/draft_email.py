from __future__ import annotations

import time

from ..errors import DraftSchemaError, GenerationError
from ..redaction import redact_fields
from ..types import ActionType, FailureReason
from .base import ActionHandler, HandlerCall, HandlerResult, _failed, _succeeded
from .drafting import DraftComposer


class DraftEmailHandler(ActionHandler):
    name = "Email.Draft"
    version = "1.0.0"
    action_type = ActionType.DRAFT_EMAIL

    def __init__(self, composer: DraftComposer) -> None:
        self._composer = composer

    async def run(self, call: HandlerCall) -> HandlerResult:
        start = time.monotonic()
        try:
            draft = await self._composer.compose(call.request, call.step)
        except GenerationError as exc:
            return _failed(start, FailureReason.LLM_ERROR, str(exc))
        except DraftSchemaError as exc:
            return _failed(start, FailureReason.SCHEMA_VALIDATION, str(exc))
        return _succeeded(start, redact_fields(draft.to_output()))
