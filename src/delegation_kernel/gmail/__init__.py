from .client import CreatedDraft, DraftClient, GmailDraftClient, build_raw_message
from .tokens import (
    GoogleTokenProvider,
    InMemoryOAuthAccountStore,
    OAuthAccount,
    OAuthAccountStore,
    TokenProvider,
)

__all__ = [
    "CreatedDraft",
    "DraftClient",
    "GmailDraftClient",
    "build_raw_message",
    "GoogleTokenProvider",
    "InMemoryOAuthAccountStore",
    "OAuthAccount",
    "OAuthAccountStore",
    "TokenProvider",
]
