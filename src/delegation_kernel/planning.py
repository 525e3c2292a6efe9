"""
Request registration and plan recording.

Plans are generated elsewhere; this module only validates a generated plan
payload, classifies each step once and persists the plan atomically.
"""

from __future__ import annotations

from typing import Any, Mapping

from .classify import classify_action_type
from .errors import InvalidInputError
from .logging import get_logger
from .store import ExecutionStore
from .types import (
    ActionLogEntry,
    ActionLogType,
    PlanRecord,
    RequestRecord,
    RequestStatus,
    StepDelegation,
    StepEffort,
    StepRecord,
    StepStatus,
)

logger = get_logger(__name__)

_DELEGATION_MAP = {
    "can_draft": StepDelegation.CAN_DRAFT,
    "can_remind": StepDelegation.CAN_REMIND,
    "can_track": StepDelegation.CAN_TRACK,
}


def map_effort(value: Any) -> StepEffort | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return StepEffort(value.strip().upper())
    except ValueError:
        logger.warning("Unrecognized step effort", effort=value)
        return None


def map_delegation(value: Any) -> StepDelegation:
    return _DELEGATION_MAP.get(str(value or "").strip().lower(), StepDelegation.USER_ONLY)


def map_step_status(value: Any) -> StepStatus:
    return StepStatus.DONE if str(value or "").strip().lower() == "done" else StepStatus.PENDING


class RequestRegistry:
    def __init__(self, store: ExecutionStore) -> None:
        self._store = store

    async def create(
        self,
        user_id: str,
        raw_input: str,
        *,
        title: str | None = None,
        summary: str | None = None,
        domain: str | None = None,
    ) -> RequestRecord:
        if not isinstance(raw_input, str) or not raw_input.strip():
            raise InvalidInputError("raw_input is required")
        request = RequestRecord(
            user_id=user_id,
            raw_input=raw_input,
            status=RequestStatus.INTERPRETED,
            title=title,
            summary=summary,
            domain=domain,
        )
        return await self._store.create_request(request)


class PlanRecorder:
    def __init__(self, store: ExecutionStore) -> None:
        self._store = store

    async def record(
        self,
        request_id: str,
        user_id: str,
        plan_payload: Mapping[str, Any],
    ) -> tuple[PlanRecord, list[StepRecord]]:
        plan, steps = build_plan(request_id, plan_payload)
        log = ActionLogEntry(
            action=ActionLogType.STATUS_CHANGED,
            request_id=request_id,
            message=f"Plan recorded; status {RequestStatus.AWAITING_AUTHORITY.value}",
            payload_preview={
                "planId": plan.plan_id,
                "countSteps": len(steps),
                "status": RequestStatus.AWAITING_AUTHORITY.value,
            },
        )
        await self._store.record_plan(plan, steps, user_id=user_id, log=log)
        logger.info(
            "Plan recorded",
            request_id=request_id,
            plan_id=plan.plan_id,
            steps=len(steps),
            action_types=[step.action_type for step in steps],
        )
        return plan, steps


def build_plan(request_id: str, payload: Mapping[str, Any]) -> tuple[PlanRecord, list[StepRecord]]:
    if not isinstance(payload, Mapping):
        raise InvalidInputError("Plan payload must be an object")
    raw_steps = payload.get("steps")
    if not isinstance(raw_steps, list):
        raise InvalidInputError("Plan payload missing steps")
    total_steps = payload.get("total_steps")
    if isinstance(total_steps, bool) or not isinstance(total_steps, (int, float)):
        raise InvalidInputError("Plan payload missing total_steps")
    if not isinstance(payload.get("next_action"), Mapping):
        raise InvalidInputError("Plan payload missing next_action")

    plan = PlanRecord(
        request_id=request_id,
        total_steps=int(total_steps),
        estimated_total_effort=_optional_text(payload.get("estimated_total_effort")),
        deadline=_optional_text(payload.get("deadline")),
        plan_result=dict(payload),
    )

    steps: list[StepRecord] = []
    seen: set[int] = set()
    for index, raw in enumerate(raw_steps):
        if not isinstance(raw, Mapping):
            raise InvalidInputError(f"steps[{index}] must be an object")
        number = raw.get("step_number")
        if isinstance(number, bool) or not isinstance(number, int):
            raise InvalidInputError(f"steps[{index}].step_number must be an integer")
        if number in seen:
            raise InvalidInputError(f"duplicate step_number {number}")
        seen.add(number)
        action = raw.get("action")
        if not isinstance(action, str) or not action.strip():
            raise InvalidInputError(f"steps[{index}].action is required")
        detail = _optional_text(raw.get("detail"))
        dependencies = raw.get("dependencies")
        steps.append(
            StepRecord(
                plan_id=plan.plan_id,
                sequence=number,
                action=action,
                detail=detail,
                action_type=classify_action_type(action, detail).value,
                effort=map_effort(raw.get("effort")),
                delegation=map_delegation(raw.get("delegation")),
                status=map_step_status(raw.get("status")),
                suggested_date=_optional_text(raw.get("suggested_date")),
                dependencies=list(dependencies) if isinstance(dependencies, list) else [],
            )
        )
    steps.sort(key=lambda step: step.sequence)
    return plan, steps


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
