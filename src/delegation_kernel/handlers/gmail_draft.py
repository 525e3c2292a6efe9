from __future__ import annotations

import time

from ..contracts import DraftEmail, read_draft_output
from ..errors import DraftApiError, DraftSchemaError, GenerationError, TokenAuthError
from ..gmail import DraftClient, TokenProvider
from ..logging import get_logger
from ..redaction import redact_sensitive
from ..types import ActionType, FailureReason
from .base import ActionHandler, HandlerCall, HandlerResult, _failed, _succeeded
from .drafting import DraftComposer

logger = get_logger(__name__)


class GmailDraftHandler(ActionHandler):
    """Create a draft in the user's Gmail mailbox.

    A draft already stored on the step's outcome is sent instead of generating
    a new one. A step whose outcome already records a Gmail draft is reported
    as succeeded without creating another. The mailbox receives the draft text
    as generated; only the persisted copy is redacted.
    """

    name = "Gmail.CreateDraft"
    version = "1.0.0"
    action_type = ActionType.CREATE_GMAIL_DRAFT

    def __init__(
        self,
        composer: DraftComposer,
        tokens: TokenProvider,
        drafts: DraftClient,
    ) -> None:
        self._composer = composer
        self._tokens = tokens
        self._drafts = drafts

    async def run(self, call: HandlerCall) -> HandlerResult:
        start = time.monotonic()
        try:
            return await self._run(call, start)
        except Exception as exc:
            logger.log_error(exc, "Gmail draft handler failed", step_id=call.step.step_id)
            return _failed(start, FailureReason.UNKNOWN, str(exc) or type(exc).__name__)

    async def _run(self, call: HandlerCall, start: float) -> HandlerResult:
        if _delivered(call.previous_output):
            logger.info("Gmail draft already created", step_id=call.step.step_id)
            return _succeeded(start, dict(call.previous_output))

        draft: DraftEmail | None = read_draft_output(call.previous_output)
        if draft is None:
            try:
                draft = await self._composer.compose(call.request, call.step)
            except GenerationError as exc:
                return _failed(start, FailureReason.LLM_ERROR, str(exc))
            except DraftSchemaError as exc:
                return _failed(start, FailureReason.SCHEMA_VALIDATION, str(exc))
        else:
            logger.debug("Reusing stored draft", step_id=call.step.step_id)

        try:
            access_token = await self._tokens.get_access_token(call.user_id)
        except TokenAuthError as exc:
            return _failed(start, FailureReason.GMAIL_AUTH, str(exc))

        try:
            created = await self._drafts.create_draft(access_token, draft.subject, draft.body)
        except DraftApiError as exc:
            return _failed(start, FailureReason.GMAIL_API, str(exc))

        return _succeeded(
            start,
            {
                "provider": "gmail",
                "draft_id": created.draft_id,
                "thread_id": created.thread_id,
                "subject": redact_sensitive(draft.subject),
                "body": redact_sensitive(draft.body),
            },
        )


def _delivered(output: dict | None) -> bool:
    return (
        isinstance(output, dict)
        and output.get("provider") == "gmail"
        and isinstance(output.get("draft_id"), str)
        and bool(output["draft_id"])
    )
