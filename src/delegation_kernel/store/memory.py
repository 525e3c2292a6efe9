from __future__ import annotations

import asyncio
import copy
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, AsyncIterator, Iterable

from ..errors import InvalidStateError, NotFoundError
from ..ids import utc_now
from ..types import (
    ActionLogEntry,
    DelegationRecord,
    DelegationStatus,
    ExecutionRunRecord,
    ExecutionRunStepRecord,
    OutcomeRecord,
    PlanRecord,
    RequestRecord,
    RequestStatus,
    RequestView,
    RunCounts,
    RunStatus,
    StepRecord,
)
from .base import ExecutionStore, merge_outcome


class InMemoryExecutionStore(ExecutionStore):
    """In-memory ledger store.

    Suitable for testing and single-process deployments. Records handed out
    are copies, and multi-record writes roll back as a unit on failure.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._requests: dict[str, RequestRecord] = {}
        self._plans: dict[str, PlanRecord] = {}  # request_id -> plan
        self._steps: dict[str, StepRecord] = {}
        self._outcomes: dict[str, OutcomeRecord] = {}
        self._delegations: list[DelegationRecord] = []
        self._runs: dict[str, ExecutionRunRecord] = {}
        self._logs: list[ActionLogEntry] = []

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[None]:
        async with self._lock:
            snapshot = self._snapshot()
            try:
                yield
            except BaseException:
                self._restore(snapshot)
                raise

    def _snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(
            {
                "requests": self._requests,
                "plans": self._plans,
                "steps": self._steps,
                "outcomes": self._outcomes,
                "delegations": self._delegations,
                "runs": self._runs,
                "logs": self._logs,
            }
        )

    def _restore(self, snapshot: dict[str, Any]) -> None:
        self._requests = snapshot["requests"]
        self._plans = snapshot["plans"]
        self._steps = snapshot["steps"]
        self._outcomes = snapshot["outcomes"]
        self._delegations = snapshot["delegations"]
        self._runs = snapshot["runs"]
        self._logs = snapshot["logs"]

    # -- requests and plans -------------------------------------------------

    async def create_request(self, request: RequestRecord) -> RequestRecord:
        async with self._lock:
            if request.request_id in self._requests:
                raise ValueError(f"Request {request.request_id} already exists")
            self._requests[request.request_id] = copy.deepcopy(request)
            return copy.deepcopy(request)

    async def get_request_view(
        self,
        request_id: str,
        user_id: str,
        *,
        recent_runs: int = 5,
    ) -> RequestView | None:
        async with self._lock:
            request = self._requests.get(request_id)
            if request is None or request.user_id != user_id:
                return None
            plan = self._plans.get(request_id)
            steps: list[StepRecord] = []
            if plan is not None:
                for step in sorted(
                    (s for s in self._steps.values() if s.plan_id == plan.plan_id),
                    key=lambda s: s.sequence,
                ):
                    steps.append(replace(step, outcome=self._outcomes.get(step.step_id)))
            delegations = sorted(
                (d for d in self._delegations if d.request_id == request_id and d.user_id == user_id),
                key=lambda d: d.created_at,
                reverse=True,
            )
            runs = sorted(
                (r for r in self._runs.values() if r.request_id == request_id),
                key=lambda r: r.started_at,
                reverse=True,
            )[: max(recent_runs, 0)]
            return copy.deepcopy(
                RequestView(request=request, plan=plan, steps=steps, delegations=delegations, runs=runs)
            )

    async def record_plan(
        self,
        plan: PlanRecord,
        steps: list[StepRecord],
        *,
        user_id: str,
        log: ActionLogEntry,
        new_status: RequestStatus = RequestStatus.AWAITING_AUTHORITY,
    ) -> None:
        async with self._transaction():
            request = self._requests.get(plan.request_id)
            if request is None or request.user_id != user_id:
                raise NotFoundError("Request not found")
            if plan.request_id in self._plans:
                raise InvalidStateError("Request already has a plan")
            self._plans[plan.request_id] = copy.deepcopy(plan)
            for step in steps:
                if step.step_id in self._steps:
                    raise ValueError(f"Step {step.step_id} already exists")
                self._steps[step.step_id] = replace(copy.deepcopy(step), outcome=None)
            self._logs.append(copy.deepcopy(log))
            self._set_status(request, new_status)

    # -- delegations --------------------------------------------------------

    async def grant_delegation(
        self,
        delegation: DelegationRecord,
        *,
        log: ActionLogEntry,
        new_status: RequestStatus = RequestStatus.AUTHORIZED,
    ) -> None:
        async with self._transaction():
            request = self._requests.get(delegation.request_id)
            if request is None or request.user_id != delegation.user_id:
                raise NotFoundError("Request not found")
            self._delegations.append(copy.deepcopy(delegation))
            self._logs.append(copy.deepcopy(log))
            self._set_status(request, new_status)

    async def latest_approved_delegation(self, request_id: str, user_id: str) -> DelegationRecord | None:
        async with self._lock:
            approved = [
                d
                for d in self._delegations
                if d.request_id == request_id and d.user_id == user_id and d.status is DelegationStatus.APPROVED
            ]
            if not approved:
                return None
            return copy.deepcopy(max(approved, key=lambda d: d.created_at))

    # -- runs ---------------------------------------------------------------

    async def latest_run(self, request_id: str) -> ExecutionRunRecord | None:
        async with self._lock:
            runs = [r for r in self._runs.values() if r.request_id == request_id]
            if not runs:
                return None
            return copy.deepcopy(max(runs, key=lambda r: r.started_at))

    async def begin_run(
        self,
        run: ExecutionRunRecord,
        *,
        expected: Iterable[RequestStatus] | None = None,
    ) -> ExecutionRunRecord:
        async with self._lock:
            request = self._requests.get(run.request_id)
            if request is None:
                raise NotFoundError("Request not found")
            if expected is not None and request.status not in set(expected):
                raise InvalidStateError(f"Request is not executable in status {request.status.value}")
            for existing in self._runs.values():
                if existing.request_id == run.request_id and existing.status is RunStatus.STARTED:
                    raise InvalidStateError("Request already has an execution in progress")
            if run.run_id in self._runs:
                raise ValueError(f"Run {run.run_id} already exists")
            self._runs[run.run_id] = copy.deepcopy(run)
            return copy.deepcopy(run)

    async def record_step(
        self,
        run_step: ExecutionRunStepRecord,
        *,
        outcome: OutcomeRecord | None = None,
        log: ActionLogEntry | None = None,
    ) -> None:
        async with self._transaction():
            run = self._open_run(run_step.run_id)
            record = copy.deepcopy(run_step)
            record.updated_at = utc_now()
            for index, existing in enumerate(run.steps):
                if existing.run_step_id == record.run_step_id:
                    record.created_at = existing.created_at
                    run.steps[index] = record
                    break
            else:
                run.steps.append(record)
            if outcome is not None:
                self._upsert_outcome(outcome)
            if log is not None:
                self._logs.append(copy.deepcopy(log))

    async def finish_run(
        self,
        run_id: str,
        *,
        status: RunStatus,
        counts: RunCounts,
        summary: str | None = None,
        error: str | None = None,
    ) -> ExecutionRunRecord:
        if status is RunStatus.STARTED:
            raise ValueError("finish_run requires a terminal status")
        async with self._lock:
            run = self._open_run(run_id)
            run.status = status
            run.counts = copy.deepcopy(counts)
            run.summary = summary
            run.error = error
            run.finished_at = utc_now()
            return copy.deepcopy(run)

    def _open_run(self, run_id: str) -> ExecutionRunRecord:
        run = self._runs.get(run_id)
        if run is None:
            raise InvalidStateError(f"Execution run {run_id} not found")
        if run.is_finished:
            raise InvalidStateError(f"Execution run {run_id} is already finished")
        return run

    # -- outcomes and audit -------------------------------------------------

    async def get_outcome(self, step_id: str) -> OutcomeRecord | None:
        async with self._lock:
            return copy.deepcopy(self._outcomes.get(step_id))

    async def upsert_outcome(self, outcome: OutcomeRecord) -> OutcomeRecord:
        async with self._lock:
            return copy.deepcopy(self._upsert_outcome(outcome))

    def _upsert_outcome(self, outcome: OutcomeRecord) -> OutcomeRecord:
        if outcome.step_id not in self._steps:
            raise InvalidStateError(f"Step {outcome.step_id} not found")
        merged = merge_outcome(self._outcomes.get(outcome.step_id), copy.deepcopy(outcome))
        merged.updated_at = utc_now()
        self._outcomes[outcome.step_id] = merged
        return merged

    async def append_action_log(self, entry: ActionLogEntry) -> None:
        async with self._lock:
            self._logs.append(copy.deepcopy(entry))

    async def list_action_logs(self, request_id: str) -> list[ActionLogEntry]:
        async with self._lock:
            return [copy.deepcopy(entry) for entry in self._logs if entry.request_id == request_id]

    async def transition_request_status(
        self,
        request_id: str,
        *,
        expected: Iterable[RequestStatus],
        new_status: RequestStatus,
    ) -> bool:
        allowed = set(expected)
        async with self._lock:
            request = self._requests.get(request_id)
            if request is None or request.status not in allowed:
                return False
            self._set_status(request, new_status)
            return True

    @staticmethod
    def _set_status(request: RequestRecord, status: RequestStatus) -> None:
        request.status = status
        request.updated_at = utc_now()
