"""Wires settings into the kernel services used by the HTTP surface."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from delegation_kernel import (
    DelegationAuthorizer,
    DraftComposer,
    DraftEmailHandler,
    ExecutionOrchestrator,
    ExecutionStore,
    GmailDraftHandler,
    HandlerRegistry,
    InMemoryExecutionStore,
    PostgresExecutionStore,
)
from delegation_kernel.db import ensure_schema
from delegation_kernel.generation import AnthropicGenerationService, GenerationService
from delegation_kernel.gmail import (
    DraftClient,
    GmailDraftClient,
    GoogleTokenProvider,
    InMemoryOAuthAccountStore,
    OAuthAccountStore,
    TokenProvider,
)
from delegation_kernel.logging import get_logger

from .db import get_pool
from .settings import Settings

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    store: ExecutionStore
    authorizer: DelegationAuthorizer
    orchestrator: ExecutionOrchestrator
    closeables: list[Any] = field(default_factory=list)

    async def close(self) -> None:
        for item in self.closeables:
            await item.close()


def build_services(
    settings: Settings,
    *,
    store: ExecutionStore,
    generation: GenerationService,
    tokens: TokenProvider,
    drafts: DraftClient,
) -> ServiceContainer:
    composer = DraftComposer(
        generation,
        model_id=settings.draft_model,
        max_tokens=settings.draft_max_tokens,
    )
    handlers = HandlerRegistry(
        [
            DraftEmailHandler(composer),
            GmailDraftHandler(composer, tokens, drafts),
        ]
    )
    return ServiceContainer(
        store=store,
        authorizer=DelegationAuthorizer(store, recent_runs=settings.recent_runs_limit),
        orchestrator=ExecutionOrchestrator(
            store,
            handlers,
            note_max_chars=settings.note_max_chars,
            recent_runs=settings.recent_runs_limit,
        ),
        closeables=[item for item in (tokens, drafts) if hasattr(item, "close")],
    )


async def build_container(
    settings: Settings,
    *,
    accounts: OAuthAccountStore | None = None,
) -> ServiceContainer:
    if settings.store_backend == "memory":
        store: ExecutionStore = InMemoryExecutionStore()
    elif settings.store_backend == "postgres":
        pool = await get_pool(settings.pg_dsn)
        await ensure_schema(pool)
        store = PostgresExecutionStore(pool=pool)
    else:
        raise ValueError(f"Unknown store backend: {settings.store_backend}")

    if accounts is None:
        # Credential storage lives outside this service; deployments inject their own store.
        accounts = InMemoryOAuthAccountStore()

    generation = AnthropicGenerationService(
        api_key=settings.anthropic_api_key,
        timeout=settings.http_timeout_sec,
    )
    tokens = GoogleTokenProvider(
        accounts=accounts,
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        token_endpoint=settings.google_token_endpoint,
        refresh_skew_seconds=settings.token_refresh_skew_sec,
        timeout_seconds=settings.http_timeout_sec,
    )
    drafts = GmailDraftClient(
        api_base=settings.gmail_api_base,
        timeout_seconds=settings.http_timeout_sec,
    )
    logger.info(
        "Delegation services built",
        store_backend=settings.store_backend,
        draft_model=settings.draft_model,
    )
    return build_services(settings, store=store, generation=generation, tokens=tokens, drafts=drafts)
