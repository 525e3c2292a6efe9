"""
Outcome and run ledger store interface.

Implementations must make every multi-record write below a single atomic
unit: either all of its records become visible or none of them does.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable

from ..types import (
    ActionLogEntry,
    DelegationRecord,
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


class ExecutionStore(ABC):
    # -- requests and plans -------------------------------------------------

    @abstractmethod
    async def create_request(self, request: RequestRecord) -> RequestRecord: ...

    @abstractmethod
    async def get_request_view(
        self,
        request_id: str,
        user_id: str,
        *,
        recent_runs: int = 5,
    ) -> RequestView | None:
        """Request with plan, ordered steps and outcomes, delegations and
        runs (both newest first). ``None`` if the user does not own it."""
        ...

    @abstractmethod
    async def record_plan(
        self,
        plan: PlanRecord,
        steps: list[StepRecord],
        *,
        user_id: str,
        log: ActionLogEntry,
        new_status: RequestStatus = RequestStatus.AWAITING_AUTHORITY,
    ) -> None:
        """Persist plan and steps, append ``log`` and move the request.

        Raises:
            NotFoundError: request missing for ``user_id``
            InvalidStateError: request already has a plan
        """
        ...

    # -- delegations --------------------------------------------------------

    @abstractmethod
    async def grant_delegation(
        self,
        delegation: DelegationRecord,
        *,
        log: ActionLogEntry,
        new_status: RequestStatus = RequestStatus.AUTHORIZED,
    ) -> None:
        """Insert the delegation, append ``log`` and move the request."""
        ...

    @abstractmethod
    async def latest_approved_delegation(self, request_id: str, user_id: str) -> DelegationRecord | None: ...

    # -- runs ---------------------------------------------------------------

    @abstractmethod
    async def latest_run(self, request_id: str) -> ExecutionRunRecord | None: ...

    @abstractmethod
    async def begin_run(
        self,
        run: ExecutionRunRecord,
        *,
        expected: Iterable[RequestStatus] | None = None,
    ) -> ExecutionRunRecord:
        """Open ``run`` in STARTED status.

        Raises InvalidStateError without writing if the request already has a
        STARTED run, or if ``expected`` is given and the request status is not
        in it at the time of the insert.
        """
        ...

    @abstractmethod
    async def record_step(
        self,
        run_step: ExecutionRunStepRecord,
        *,
        outcome: OutcomeRecord | None = None,
        log: ActionLogEntry | None = None,
    ) -> None:
        """Upsert ``run_step`` by id, plus the optional outcome and log.

        Raises InvalidStateError if the run is missing or already finished.
        """
        ...

    @abstractmethod
    async def finish_run(
        self,
        run_id: str,
        *,
        status: RunStatus,
        counts: RunCounts,
        summary: str | None = None,
        error: str | None = None,
    ) -> ExecutionRunRecord: ...

    # -- outcomes and audit -------------------------------------------------

    @abstractmethod
    async def get_outcome(self, step_id: str) -> OutcomeRecord | None: ...

    @abstractmethod
    async def upsert_outcome(self, outcome: OutcomeRecord) -> OutcomeRecord:
        """One outcome per step. ``result`` and ``notes`` are replaced;
        ``output`` is replaced only when a new one is supplied."""
        ...

    @abstractmethod
    async def append_action_log(self, entry: ActionLogEntry) -> None: ...

    @abstractmethod
    async def list_action_logs(self, request_id: str) -> list[ActionLogEntry]:
        """Audit entries in append order."""
        ...

    @abstractmethod
    async def transition_request_status(
        self,
        request_id: str,
        *,
        expected: Iterable[RequestStatus],
        new_status: RequestStatus,
    ) -> bool:
        """Conditional update; ``False`` if the current status is not expected."""
        ...


def merge_outcome(existing: OutcomeRecord | None, incoming: OutcomeRecord) -> OutcomeRecord:
    if existing is None or incoming.output is not None:
        return incoming
    return OutcomeRecord(
        step_id=incoming.step_id,
        result=incoming.result,
        notes=incoming.notes,
        output=existing.output,
        updated_at=incoming.updated_at,
    )
