from .base import ActionHandler, HandlerCall, HandlerError, HandlerResult
from .draft_email import DraftEmailHandler
from .drafting import DEFAULT_DRAFT_MAX_TOKENS, DEFAULT_DRAFT_MODEL, DraftComposer, build_generation_input
from .gmail_draft import GmailDraftHandler
from .registry import HandlerRegistry

__all__ = [
    "ActionHandler",
    "HandlerCall",
    "HandlerError",
    "HandlerResult",
    "DraftEmailHandler",
    "DraftComposer",
    "DEFAULT_DRAFT_MAX_TOKENS",
    "DEFAULT_DRAFT_MODEL",
    "build_generation_input",
    "GmailDraftHandler",
    "HandlerRegistry",
]
