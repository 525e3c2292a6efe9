from __future__ import annotations

from typing import Any, Iterable, Mapping

from .errors import InvalidInputError, NotFoundError
from .logging import get_logger
from .store import ExecutionStore
from .types import (
    ActionLogEntry,
    ActionLogType,
    DelegationRecord,
    DelegationScope,
    DelegationStatus,
    RequestStatus,
    RequestView,
)

logger = get_logger(__name__)


class DelegationAuthorizer:
    """Grants a scoped delegation over some or all steps of a request's plan."""

    def __init__(self, store: ExecutionStore, *, recent_runs: int = 5) -> None:
        self._store = store
        self._recent_runs = recent_runs

    async def authorize(
        self,
        request_id: str,
        user_id: str,
        *,
        plan_id: str | None = None,
        scope: DelegationScope | Mapping[str, Any] | None = None,
        approved_step_ids: Iterable[str] | None = None,
    ) -> tuple[RequestView, DelegationRecord]:
        view = await self._store.get_request_view(request_id, user_id, recent_runs=0)
        if view is None or view.plan is None:
            raise NotFoundError("Request or plan not found")
        if plan_id is not None and view.plan.plan_id != plan_id:
            raise NotFoundError("Plan does not match request")

        resolved_scope = scope if isinstance(scope, DelegationScope) else DelegationScope.from_payload(scope)

        plan_step_ids = [step.step_id for step in view.steps]
        if approved_step_ids is None:
            approved = frozenset(plan_step_ids)
        else:
            if isinstance(approved_step_ids, (str, bytes)):
                raise InvalidInputError("approved_step_ids must be a list of step ids")
            requested = list(approved_step_ids)
            invalid = sorted({step_id for step_id in requested if step_id not in set(plan_step_ids)})
            if invalid:
                raise InvalidInputError(
                    "approved_step_ids must belong to plan steps: " + ", ".join(str(i) for i in invalid)
                )
            approved = frozenset(requested)

        delegation = DelegationRecord(
            request_id=request_id,
            user_id=user_id,
            plan_id=view.plan.plan_id,
            scope=resolved_scope,
            approved_step_ids=approved,
            status=DelegationStatus.APPROVED,
        )
        log = ActionLogEntry(
            action=ActionLogType.DELEGATION_GRANTED,
            request_id=request_id,
            delegation_id=delegation.delegation_id,
            payload_preview={
                "requestId": request_id,
                "planId": view.plan.plan_id,
                "countSteps": len(approved),
                "scope": resolved_scope.to_dict(),
            },
        )
        await self._store.grant_delegation(delegation, log=log, new_status=RequestStatus.AUTHORIZED)
        logger.event(
            "delegation_granted",
            "Delegation granted",
            request_id=request_id,
            user_id=user_id,
            delegation_id=delegation.delegation_id,
            approved_steps=len(approved),
            scope=resolved_scope.to_dict(),
        )

        refreshed = await self._store.get_request_view(request_id, user_id, recent_runs=self._recent_runs)
        if refreshed is None:
            raise NotFoundError("Request not found")
        return refreshed, delegation
