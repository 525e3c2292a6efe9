"""
Records and enumerations for requests, plans, delegations and execution runs.

State transitions:
- Request: INTERPRETED -> AWAITING_AUTHORITY (plan recorded)
           -> AUTHORIZED (delegation granted)
           -> DONE | ERROR | AUTHORIZED (execution finished)
- ExecutionRun: STARTED -> SUCCEEDED | FAILED | PARTIAL (never reopened)
- ExecutionRunStep: ATTEMPTED -> SUCCEEDED | FAILED, or SKIPPED directly
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from .errors import InvalidInputError
from .ids import new_id, utc_now
from .logging import get_logger

logger = get_logger(__name__)


class RequestStatus(str, Enum):
    INTERPRETING = "INTERPRETING"
    INTERPRETED = "INTERPRETED"
    PLANNING = "PLANNING"
    PLANNED = "PLANNED"
    AWAITING_AUTHORITY = "AWAITING_AUTHORITY"
    AUTHORIZED = "AUTHORIZED"
    DONE = "DONE"
    ERROR = "ERROR"


class ActionType(str, Enum):
    DRAFT_EMAIL = "DRAFT_EMAIL"
    CREATE_GMAIL_DRAFT = "CREATE_GMAIL_DRAFT"
    USER_ONLY = "USER_ONLY"

    @classmethod
    def parse(cls, value: Any) -> ActionType | None:
        try:
            return cls(str(value))
        except ValueError:
            return None


class StepEffort(str, Enum):
    QUICK = "QUICK"
    SHORT = "SHORT"
    MEDIUM = "MEDIUM"
    LONG = "LONG"


class StepDelegation(str, Enum):
    CAN_DRAFT = "CAN_DRAFT"
    CAN_REMIND = "CAN_REMIND"
    CAN_TRACK = "CAN_TRACK"
    USER_ONLY = "USER_ONLY"


class StepStatus(str, Enum):
    PENDING = "PENDING"
    DONE = "DONE"


class OutcomeResult(str, Enum):
    DONE = "DONE"
    ERROR = "ERROR"
    SKIPPED = "SKIPPED"
    PENDING = "PENDING"
    BLOCKED = "BLOCKED"
    DEFERRED = "DEFERRED"


class DelegationStatus(str, Enum):
    APPROVED = "APPROVED"
    REVOKED = "REVOKED"


class RunStatus(str, Enum):
    STARTED = "STARTED"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    PARTIAL = "PARTIAL"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.STARTED


class RunStepStatus(str, Enum):
    ATTEMPTED = "ATTEMPTED"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class FailureReason(str, Enum):
    NOT_APPROVED = "NOT_APPROVED"
    SCOPE_DENIED = "SCOPE_DENIED"
    LLM_ERROR = "LLM_ERROR"
    SCHEMA_VALIDATION = "SCHEMA_VALIDATION"
    GMAIL_AUTH = "GMAIL_AUTH"
    GMAIL_API = "GMAIL_API"
    UNKNOWN = "UNKNOWN"

    @property
    def retryable(self) -> bool:
        return self in RETRYABLE_REASONS


# Only mechanical failures are retried; the rest need a plan or authorization change.
RETRYABLE_REASONS: frozenset[FailureReason] = frozenset(
    {
        FailureReason.GMAIL_API,
        FailureReason.GMAIL_AUTH,
        FailureReason.LLM_ERROR,
        FailureReason.UNKNOWN,
    }
)


class ActionLogType(str, Enum):
    CONTEXT_USED = "CONTEXT_USED"
    EXECUTION_ATTEMPTED = "EXECUTION_ATTEMPTED"
    EXECUTION_SUCCEEDED = "EXECUTION_SUCCEEDED"
    EXECUTION_FAILED = "EXECUTION_FAILED"
    EXECUTION_SKIPPED = "EXECUTION_SKIPPED"
    DELEGATION_GRANTED = "DELEGATION_GRANTED"
    STATUS_CHANGED = "STATUS_CHANGED"


class ExecuteMode(str, Enum):
    ALL = "ALL"
    RETRY_FAILED = "RETRY_FAILED"


# =============================================================================
# Records
# =============================================================================


@dataclass
class RequestRecord:
    user_id: str
    raw_input: str
    status: RequestStatus = RequestStatus.INTERPRETED
    title: str | None = None
    summary: str | None = None
    domain: str | None = None
    request_id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "title": self.title,
            "summary": self.summary,
            "raw_input": self.raw_input,
            "domain": self.domain,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class PlanRecord:
    request_id: str
    total_steps: int
    estimated_total_effort: str | None = None
    deadline: str | None = None
    plan_result: dict[str, Any] = field(default_factory=dict)
    plan_id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "request_id": self.request_id,
            "total_steps": self.total_steps,
            "estimated_total_effort": self.estimated_total_effort,
            "deadline": self.deadline,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class OutcomeRecord:
    step_id: str
    result: OutcomeResult
    notes: str | None = None
    output: dict[str, Any] | None = None
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "result": self.result.value,
            "notes": self.notes,
            "output": self.output,
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class StepRecord:
    plan_id: str
    sequence: int
    action: str
    action_type: str
    detail: str | None = None
    effort: StepEffort | None = None
    delegation: StepDelegation = StepDelegation.USER_ONLY
    status: StepStatus = StepStatus.PENDING
    suggested_date: str | None = None
    dependencies: list[dict[str, Any]] = field(default_factory=list)
    step_id: str = field(default_factory=new_id)
    outcome: OutcomeRecord | None = None

    @property
    def resolved_action_type(self) -> ActionType | None:
        return ActionType.parse(self.action_type)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "plan_id": self.plan_id,
            "sequence": self.sequence,
            "action": self.action,
            "detail": self.detail,
            "action_type": self.action_type,
            "effort": self.effort.value if self.effort else None,
            "delegation": self.delegation.value,
            "status": self.status.value,
            "suggested_date": self.suggested_date,
            "dependencies": list(self.dependencies),
            "outcome": self.outcome.to_dict() if self.outcome else None,
        }


_SCOPE_KEYS: dict[str, str] = {
    "canDraftEmail": "can_draft_email",
    "can_draft_email": "can_draft_email",
    "canCreateGmailDraft": "can_create_gmail_draft",
    "can_create_gmail_draft": "can_create_gmail_draft",
}


@dataclass(frozen=True)
class DelegationScope:
    can_draft_email: bool = False
    can_create_gmail_draft: bool = False

    @classmethod
    def default(cls) -> DelegationScope:
        return cls(can_draft_email=True, can_create_gmail_draft=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> DelegationScope:
        if payload is None:
            return cls.default()
        if not isinstance(payload, Mapping):
            raise InvalidInputError("scope must be an object of boolean flags")
        flags: dict[str, bool] = {}
        for key, value in payload.items():
            attr = _SCOPE_KEYS.get(str(key))
            if attr is None:
                logger.warning("Ignoring unknown delegation scope flag", flag=str(key))
                continue
            if not isinstance(value, bool):
                raise InvalidInputError(f"scope flag {key!r} must be a boolean")
            flags[attr] = value
        return cls(**flags)

    def allows(self, action_type: ActionType) -> bool:
        if action_type is ActionType.DRAFT_EMAIL:
            return self.can_draft_email
        if action_type is ActionType.CREATE_GMAIL_DRAFT:
            return self.can_create_gmail_draft
        return False

    def flag_name(self, action_type: ActionType) -> str:
        if action_type is ActionType.CREATE_GMAIL_DRAFT:
            return "canCreateGmailDraft"
        return "canDraftEmail"

    def to_dict(self) -> dict[str, bool]:
        return {
            "canDraftEmail": self.can_draft_email,
            "canCreateGmailDraft": self.can_create_gmail_draft,
        }


@dataclass
class DelegationRecord:
    request_id: str
    user_id: str
    plan_id: str | None
    scope: DelegationScope
    approved_step_ids: frozenset[str]
    status: DelegationStatus = DelegationStatus.APPROVED
    delegation_id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)

    def approves(self, step_id: str) -> bool:
        return step_id in self.approved_step_ids

    def to_dict(self) -> dict[str, Any]:
        return {
            "delegation_id": self.delegation_id,
            "request_id": self.request_id,
            "user_id": self.user_id,
            "plan_id": self.plan_id,
            "status": self.status.value,
            "scope": self.scope.to_dict(),
            "approved_step_ids": sorted(self.approved_step_ids),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class ExecutionRunStepRecord:
    run_id: str
    step_id: str
    status: RunStepStatus
    reason: FailureReason | None = None
    message: str | None = None
    run_step_id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_step_id": self.run_step_id,
            "run_id": self.run_id,
            "step_id": self.step_id,
            "status": self.status.value,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class RunCounts:
    actionable: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0

    def summary(self) -> str:
        return (
            f"actionable:{self.actionable} success:{self.success} "
            f"failed:{self.failed} skipped:{self.skipped}"
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "actionable": self.actionable,
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
        }


@dataclass
class ExecutionRunRecord:
    request_id: str
    user_id: str
    delegation_id: str
    mode: ExecuteMode
    status: RunStatus = RunStatus.STARTED
    summary: str | None = None
    error: str | None = None
    counts: RunCounts = field(default_factory=RunCounts)
    run_id: str = field(default_factory=new_id)
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None
    steps: list[ExecutionRunStepRecord] = field(default_factory=list)

    @property
    def is_finished(self) -> bool:
        return self.finished_at is not None or self.status.is_terminal

    def latest_step_records(self) -> dict[str, ExecutionRunStepRecord]:
        latest: dict[str, ExecutionRunStepRecord] = {}
        for record in sorted(self.steps, key=lambda item: item.updated_at):
            latest[record.step_id] = record
        return latest

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "request_id": self.request_id,
            "user_id": self.user_id,
            "delegation_id": self.delegation_id,
            "mode": self.mode.value,
            "status": self.status.value,
            "summary": self.summary,
            "error": self.error,
            "counts": self.counts.to_dict(),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "steps": [step.to_dict() for step in self.steps],
        }


@dataclass
class ActionLogEntry:
    action: ActionLogType
    request_id: str
    step_id: str | None = None
    delegation_id: str | None = None
    run_id: str | None = None
    message: str | None = None
    payload_preview: dict[str, Any] | None = None
    log_id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "log_id": self.log_id,
            "action": self.action.value,
            "request_id": self.request_id,
            "step_id": self.step_id,
            "delegation_id": self.delegation_id,
            "run_id": self.run_id,
            "message": self.message,
            "payload_preview": self.payload_preview,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class RequestView:
    """Read model returned to callers of the authorizer and the orchestrator."""

    request: RequestRecord
    plan: PlanRecord | None
    steps: list[StepRecord] = field(default_factory=list)
    delegations: list[DelegationRecord] = field(default_factory=list)
    runs: list[ExecutionRunRecord] = field(default_factory=list)

    @property
    def status(self) -> RequestStatus:
        return self.request.status

    def step(self, step_id: str) -> StepRecord | None:
        for step in self.steps:
            if step.step_id == step_id:
                return step
        return None

    def to_dict(self) -> dict[str, Any]:
        data = self.request.to_dict()
        data["plan"] = None
        if self.plan is not None:
            data["plan"] = {**self.plan.to_dict(), "steps": [step.to_dict() for step in self.steps]}
        data["delegations"] = [item.to_dict() for item in self.delegations]
        data["execution_runs"] = [run.to_dict() for run in self.runs]
        return data
