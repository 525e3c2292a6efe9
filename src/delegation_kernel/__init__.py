"""
Delegation kernel.

Turns a user-approved plan into attempted actions under a scoped delegation
and keeps an idempotent ledger of what was attempted, what succeeded and what
may be retried.
"""

from .authorizer import DelegationAuthorizer
from .classify import classify_action_type
from .errors import (
    DelegationKernelError,
    DraftApiError,
    DraftSchemaError,
    ErrorCode,
    GenerationError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    TokenAuthError,
)
from .handlers import DraftComposer, DraftEmailHandler, GmailDraftHandler, HandlerRegistry
from .orchestrator import ExecutionOrchestrator
from .planning import PlanRecorder, RequestRegistry
from .redaction import REDACTION_MARKER, redact_sensitive
from .store import ExecutionStore, InMemoryExecutionStore, PostgresExecutionStore
from .types import (
    RETRYABLE_REASONS,
    ActionLogType,
    ActionType,
    DelegationRecord,
    DelegationScope,
    ExecuteMode,
    FailureReason,
    OutcomeResult,
    RequestStatus,
    RequestView,
    RunStatus,
    RunStepStatus,
)

__version__ = "0.1.0"

__all__ = [
    "DelegationAuthorizer",
    "ExecutionOrchestrator",
    "PlanRecorder",
    "RequestRegistry",
    "classify_action_type",
    "redact_sensitive",
    "REDACTION_MARKER",
    # Handlers
    "DraftComposer",
    "DraftEmailHandler",
    "GmailDraftHandler",
    "HandlerRegistry",
    # Stores
    "ExecutionStore",
    "InMemoryExecutionStore",
    "PostgresExecutionStore",
    # Types
    "ActionLogType",
    "ActionType",
    "DelegationRecord",
    "DelegationScope",
    "ExecuteMode",
    "FailureReason",
    "OutcomeResult",
    "RequestStatus",
    "RequestView",
    "RETRYABLE_REASONS",
    "RunStatus",
    "RunStepStatus",
    # Errors
    "DelegationKernelError",
    "DraftApiError",
    "DraftSchemaError",
    "ErrorCode",
    "GenerationError",
    "InvalidInputError",
    "InvalidStateError",
    "NotFoundError",
    "TokenAuthError",
]
