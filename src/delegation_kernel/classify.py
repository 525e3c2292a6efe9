from __future__ import annotations

from .types import ActionType


def classify_action_type(action: str, detail: str | None = None) -> ActionType:
    """Classify a plan step once, when the plan is recorded.

    A step that mentions both "gmail" and "draft" creates a Gmail draft; one
    that mentions both "draft" and "email" only drafts the text. Everything
    else is left to the user.
    """
    text = f"{action or ''} {detail or ''}".lower()
    if "gmail" in text and "draft" in text:
        return ActionType.CREATE_GMAIL_DRAFT
    if "draft" in text and "email" in text:
        return ActionType.DRAFT_EMAIL
    return ActionType.USER_ONLY
