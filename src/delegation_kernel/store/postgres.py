"""
PostgreSQL ledger store.

Raw SQL over an asyncpg pool against the ``delegation`` schema created by
``delegation_kernel.db.ensure_schema``. Every multi-record write runs inside
one ``conn.transaction()``.
"""

from __future__ import annotations

import json
from typing import Any, Iterable

import asyncpg

from ..errors import InvalidStateError, NotFoundError
from ..types import (
    ActionLogEntry,
    ActionLogType,
    DelegationRecord,
    DelegationScope,
    DelegationStatus,
    ExecuteMode,
    ExecutionRunRecord,
    ExecutionRunStepRecord,
    FailureReason,
    OutcomeRecord,
    OutcomeResult,
    PlanRecord,
    RequestRecord,
    RequestStatus,
    RequestView,
    RunCounts,
    RunStatus,
    RunStepStatus,
    StepDelegation,
    StepEffort,
    StepRecord,
    StepStatus,
)
from .base import ExecutionStore

_REQUEST_COLUMNS = "request_id, user_id, status, title, summary, raw_input, domain, created_at, updated_at"
_RUN_COLUMNS = (
    "run_id, request_id, user_id, delegation_id, mode, status, summary, error, counts, started_at, finished_at"
)
_DELEGATION_COLUMNS = "delegation_id, request_id, user_id, plan_id, status, scope, approved_step_ids, created_at"


class PostgresExecutionStore(ExecutionStore):
    def __init__(self, *, pool) -> None:
        self._pool = pool

    # -- requests and plans -------------------------------------------------

    async def create_request(self, request: RequestRecord) -> RequestRecord:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO delegation.requests (
                  request_id, user_id, status, title, summary, raw_input, domain, created_at, updated_at
                ) VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9);
                """,
                request.request_id,
                request.user_id,
                request.status.value,
                request.title,
                request.summary,
                request.raw_input,
                request.domain,
                request.created_at,
                request.updated_at,
            )
        return request

    async def get_request_view(
        self,
        request_id: str,
        user_id: str,
        *,
        recent_runs: int = 5,
    ) -> RequestView | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_REQUEST_COLUMNS} FROM delegation.requests WHERE request_id=$1 AND user_id=$2;",
                request_id,
                user_id,
            )
            if not row:
                return None
            request = _request_from_row(row)

            plan_row = await conn.fetchrow(
                """
                SELECT plan_id, request_id, total_steps, estimated_total_effort, deadline, plan_result, created_at
                FROM delegation.plans
                WHERE request_id=$1;
                """,
                request_id,
            )
            plan = _plan_from_row(plan_row) if plan_row else None

            steps: list[StepRecord] = []
            if plan is not None:
                step_rows = await conn.fetch(
                    """
                    SELECT s.step_id, s.plan_id, s.sequence, s.action, s.detail, s.action_type, s.effort,
                           s.delegation, s.status, s.suggested_date, s.dependencies,
                           o.result AS outcome_result, o.notes AS outcome_notes,
                           o.output AS outcome_output, o.updated_at AS outcome_updated_at
                    FROM delegation.steps s
                    LEFT JOIN delegation.outcomes o ON o.step_id = s.step_id
                    WHERE s.plan_id=$1
                    ORDER BY s.sequence ASC;
                    """,
                    plan.plan_id,
                )
                steps = [_step_from_row(r) for r in step_rows]

            delegation_rows = await conn.fetch(
                f"""
                SELECT {_DELEGATION_COLUMNS}
                FROM delegation.delegations
                WHERE request_id=$1 AND user_id=$2
                ORDER BY created_at DESC;
                """,
                request_id,
                user_id,
            )
            run_rows = await conn.fetch(
                f"""
                SELECT {_RUN_COLUMNS}
                FROM delegation.execution_runs
                WHERE request_id=$1
                ORDER BY started_at DESC
                LIMIT $2;
                """,
                request_id,
                max(recent_runs, 0),
            )
            runs = [await self._load_run_steps(conn, _run_from_row(r)) for r in run_rows]

        return RequestView(
            request=request,
            plan=plan,
            steps=steps,
            delegations=[_delegation_from_row(r) for r in delegation_rows],
            runs=runs,
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
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT status FROM delegation.requests WHERE request_id=$1 AND user_id=$2 FOR UPDATE;",
                    plan.request_id,
                    user_id,
                )
                if not row:
                    raise NotFoundError("Request not found")
                existing = await conn.fetchval(
                    "SELECT plan_id FROM delegation.plans WHERE request_id=$1;",
                    plan.request_id,
                )
                if existing is not None:
                    raise InvalidStateError("Request already has a plan")
                await conn.execute(
                    """
                    INSERT INTO delegation.plans (
                      plan_id, request_id, total_steps, estimated_total_effort, deadline, plan_result, created_at
                    ) VALUES ($1,$2,$3,$4,$5,$6::jsonb,$7);
                    """,
                    plan.plan_id,
                    plan.request_id,
                    plan.total_steps,
                    plan.estimated_total_effort,
                    plan.deadline,
                    json.dumps(plan.plan_result),
                    plan.created_at,
                )
                await conn.executemany(
                    """
                    INSERT INTO delegation.steps (
                      step_id, plan_id, sequence, action, detail, action_type, effort,
                      delegation, status, suggested_date, dependencies
                    ) VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9,$10,$11::jsonb);
                    """,
                    [
                        (
                            step.step_id,
                            plan.plan_id,
                            step.sequence,
                            step.action,
                            step.detail,
                            step.action_type,
                            step.effort.value if step.effort else None,
                            step.delegation.value,
                            step.status.value,
                            step.suggested_date,
                            json.dumps(step.dependencies),
                        )
                        for step in steps
                    ],
                )
                await _insert_log(conn, log)
                await _set_status(conn, plan.request_id, new_status)

    # -- delegations --------------------------------------------------------

    async def grant_delegation(
        self,
        delegation: DelegationRecord,
        *,
        log: ActionLogEntry,
        new_status: RequestStatus = RequestStatus.AUTHORIZED,
    ) -> None:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT status FROM delegation.requests WHERE request_id=$1 AND user_id=$2 FOR UPDATE;",
                    delegation.request_id,
                    delegation.user_id,
                )
                if not row:
                    raise NotFoundError("Request not found")
                await conn.execute(
                    """
                    INSERT INTO delegation.delegations (
                      delegation_id, request_id, user_id, plan_id, status, scope, approved_step_ids, created_at
                    ) VALUES ($1,$2,$3,$4,$5,$6::jsonb,$7,$8);
                    """,
                    delegation.delegation_id,
                    delegation.request_id,
                    delegation.user_id,
                    delegation.plan_id,
                    delegation.status.value,
                    json.dumps(delegation.scope.to_dict()),
                    sorted(delegation.approved_step_ids),
                    delegation.created_at,
                )
                await _insert_log(conn, log)
                await _set_status(conn, delegation.request_id, new_status)

    async def latest_approved_delegation(self, request_id: str, user_id: str) -> DelegationRecord | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_DELEGATION_COLUMNS}
                FROM delegation.delegations
                WHERE request_id=$1 AND user_id=$2 AND status=$3
                ORDER BY created_at DESC
                LIMIT 1;
                """,
                request_id,
                user_id,
                DelegationStatus.APPROVED.value,
            )
        return _delegation_from_row(row) if row else None

    # -- runs ---------------------------------------------------------------

    async def latest_run(self, request_id: str) -> ExecutionRunRecord | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_RUN_COLUMNS}
                FROM delegation.execution_runs
                WHERE request_id=$1
                ORDER BY started_at DESC
                LIMIT 1;
                """,
                request_id,
            )
            if not row:
                return None
            return await self._load_run_steps(conn, _run_from_row(row))

    async def begin_run(
        self,
        run: ExecutionRunRecord,
        *,
        expected: Iterable[RequestStatus] | None = None,
    ) -> ExecutionRunRecord:
        async with self._pool.acquire() as conn:
            try:
                async with conn.transaction():
                    status = await conn.fetchval(
                        "SELECT status FROM delegation.requests WHERE request_id=$1 FOR UPDATE;",
                        run.request_id,
                    )
                    if status is None:
                        raise NotFoundError("Request not found")
                    if expected is not None and status not in {item.value for item in expected}:
                        raise InvalidStateError(f"Request is not executable in status {status}")
                    await conn.execute(
                        """
                        INSERT INTO delegation.execution_runs (
                          run_id, request_id, user_id, delegation_id, mode, status, counts, started_at
                        ) VALUES ($1,$2,$3,$4,$5,$6,$7::jsonb,$8);
                        """,
                        run.run_id,
                        run.request_id,
                        run.user_id,
                        run.delegation_id,
                        run.mode.value,
                        RunStatus.STARTED.value,
                        json.dumps(run.counts.to_dict()),
                        run.started_at,
                    )
            except asyncpg.UniqueViolationError as exc:
                raise InvalidStateError("Request already has an execution in progress", cause=exc) from exc
        return run

    async def record_step(
        self,
        run_step: ExecutionRunStepRecord,
        *,
        outcome: OutcomeRecord | None = None,
        log: ActionLogEntry | None = None,
    ) -> None:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await _lock_open_run(conn, run_step.run_id)
                await conn.execute(
                    """
                    INSERT INTO delegation.execution_run_steps (
                      run_step_id, run_id, step_id, status, reason, message, created_at, updated_at
                    ) VALUES ($1,$2,$3,$4,$5,$6,$7,now())
                    ON CONFLICT (run_step_id) DO UPDATE
                    SET status=EXCLUDED.status,
                        reason=EXCLUDED.reason,
                        message=EXCLUDED.message,
                        updated_at=now();
                    """,
                    run_step.run_step_id,
                    run_step.run_id,
                    run_step.step_id,
                    run_step.status.value,
                    run_step.reason.value if run_step.reason else None,
                    run_step.message,
                    run_step.created_at,
                )
                if outcome is not None:
                    await _upsert_outcome(conn, outcome)
                if log is not None:
                    await _insert_log(conn, log)

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
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await _lock_open_run(conn, run_id)
                row = await conn.fetchrow(
                    f"""
                    UPDATE delegation.execution_runs
                    SET status=$2, counts=$3::jsonb, summary=$4, error=$5, finished_at=now()
                    WHERE run_id=$1
                    RETURNING {_RUN_COLUMNS};
                    """,
                    run_id,
                    status.value,
                    json.dumps(counts.to_dict()),
                    summary,
                    error,
                )
                return await self._load_run_steps(conn, _run_from_row(row))

    async def _load_run_steps(self, conn, run: ExecutionRunRecord) -> ExecutionRunRecord:
        rows = await conn.fetch(
            """
            SELECT run_step_id, run_id, step_id, status, reason, message, created_at, updated_at
            FROM delegation.execution_run_steps
            WHERE run_id=$1
            ORDER BY created_at ASC;
            """,
            run.run_id,
        )
        run.steps = [_run_step_from_row(r) for r in rows]
        return run

    # -- outcomes and audit -------------------------------------------------

    async def get_outcome(self, step_id: str) -> OutcomeRecord | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT step_id, result, notes, output, updated_at FROM delegation.outcomes WHERE step_id=$1;",
                step_id,
            )
        if not row:
            return None
        return OutcomeRecord(
            step_id=row["step_id"],
            result=OutcomeResult(row["result"]),
            notes=row["notes"],
            output=_coerce_json(row["output"]),
            updated_at=row["updated_at"],
        )

    async def upsert_outcome(self, outcome: OutcomeRecord) -> OutcomeRecord:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                return await _upsert_outcome(conn, outcome)

    async def append_action_log(self, entry: ActionLogEntry) -> None:
        async with self._pool.acquire() as conn:
            await _insert_log(conn, entry)

    async def list_action_logs(self, request_id: str) -> list[ActionLogEntry]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT log_id, action, request_id, step_id, delegation_id, run_id, message,
                       payload_preview, created_at
                FROM delegation.action_logs
                WHERE request_id=$1
                ORDER BY seq ASC;
                """,
                request_id,
            )
        return [
            ActionLogEntry(
                action=ActionLogType(r["action"]),
                request_id=r["request_id"],
                step_id=r["step_id"],
                delegation_id=r["delegation_id"],
                run_id=r["run_id"],
                message=r["message"],
                payload_preview=_coerce_json(r["payload_preview"]),
                log_id=r["log_id"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    async def transition_request_status(
        self,
        request_id: str,
        *,
        expected: Iterable[RequestStatus],
        new_status: RequestStatus,
    ) -> bool:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE delegation.requests
                SET status=$2, updated_at=now()
                WHERE request_id=$1 AND status = ANY($3::text[])
                RETURNING request_id;
                """,
                request_id,
                new_status.value,
                [status.value for status in expected],
            )
        return row is not None


# =============================================================================
# SQL helpers
# =============================================================================


async def _set_status(conn, request_id: str, status: RequestStatus) -> None:
    await conn.execute(
        "UPDATE delegation.requests SET status=$2, updated_at=now() WHERE request_id=$1;",
        request_id,
        status.value,
    )


async def _insert_log(conn, entry: ActionLogEntry) -> None:
    await conn.execute(
        """
        INSERT INTO delegation.action_logs (
          log_id, action, request_id, step_id, delegation_id, run_id, message, payload_preview, created_at
        ) VALUES ($1,$2,$3,$4,$5,$6,$7,$8::jsonb,$9);
        """,
        entry.log_id,
        entry.action.value,
        entry.request_id,
        entry.step_id,
        entry.delegation_id,
        entry.run_id,
        entry.message,
        json.dumps(entry.payload_preview) if entry.payload_preview is not None else None,
        entry.created_at,
    )


async def _lock_open_run(conn, run_id: str) -> None:
    row = await conn.fetchrow(
        "SELECT status, finished_at FROM delegation.execution_runs WHERE run_id=$1 FOR UPDATE;",
        run_id,
    )
    if not row:
        raise InvalidStateError(f"Execution run {run_id} not found")
    if row["finished_at"] is not None or row["status"] != RunStatus.STARTED.value:
        raise InvalidStateError(f"Execution run {run_id} is already finished")


async def _upsert_outcome(conn, outcome: OutcomeRecord) -> OutcomeRecord:
    exists = await conn.fetchval("SELECT 1 FROM delegation.steps WHERE step_id=$1;", outcome.step_id)
    if not exists:
        raise InvalidStateError(f"Step {outcome.step_id} not found")
    row = await conn.fetchrow(
        """
        INSERT INTO delegation.outcomes (step_id, result, notes, output, updated_at)
        VALUES ($1,$2,$3,$4::jsonb,now())
        ON CONFLICT (step_id) DO UPDATE
        SET result=EXCLUDED.result,
            notes=EXCLUDED.notes,
            output=COALESCE(EXCLUDED.output, delegation.outcomes.output),
            updated_at=now()
        RETURNING step_id, result, notes, output, updated_at;
        """,
        outcome.step_id,
        outcome.result.value,
        outcome.notes,
        json.dumps(outcome.output) if outcome.output is not None else None,
    )
    return OutcomeRecord(
        step_id=row["step_id"],
        result=OutcomeResult(row["result"]),
        notes=row["notes"],
        output=_coerce_json(row["output"]),
        updated_at=row["updated_at"],
    )


# =============================================================================
# Row mappers
# =============================================================================


def _request_from_row(row) -> RequestRecord:
    return RequestRecord(
        request_id=row["request_id"],
        user_id=row["user_id"],
        status=RequestStatus(row["status"]),
        title=row["title"],
        summary=row["summary"],
        raw_input=row["raw_input"],
        domain=row["domain"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _plan_from_row(row) -> PlanRecord:
    return PlanRecord(
        plan_id=row["plan_id"],
        request_id=row["request_id"],
        total_steps=row["total_steps"],
        estimated_total_effort=row["estimated_total_effort"],
        deadline=row["deadline"],
        plan_result=_coerce_json(row["plan_result"]) or {},
        created_at=row["created_at"],
    )


def _step_from_row(row) -> StepRecord:
    outcome = None
    if row["outcome_result"] is not None:
        outcome = OutcomeRecord(
            step_id=row["step_id"],
            result=OutcomeResult(row["outcome_result"]),
            notes=row["outcome_notes"],
            output=_coerce_json(row["outcome_output"]),
            updated_at=row["outcome_updated_at"],
        )
    return StepRecord(
        step_id=row["step_id"],
        plan_id=row["plan_id"],
        sequence=row["sequence"],
        action=row["action"],
        detail=row["detail"],
        action_type=row["action_type"],
        effort=StepEffort(row["effort"]) if row["effort"] else None,
        delegation=StepDelegation(row["delegation"]),
        status=StepStatus(row["status"]),
        suggested_date=row["suggested_date"],
        dependencies=list(_coerce_json(row["dependencies"]) or []),
        outcome=outcome,
    )


def _delegation_from_row(row) -> DelegationRecord:
    scope = _coerce_json(row["scope"]) or {}
    return DelegationRecord(
        delegation_id=row["delegation_id"],
        request_id=row["request_id"],
        user_id=row["user_id"],
        plan_id=row["plan_id"],
        status=DelegationStatus(row["status"]),
        scope=DelegationScope.from_payload(scope),
        approved_step_ids=frozenset(row["approved_step_ids"] or []),
        created_at=row["created_at"],
    )


def _run_from_row(row) -> ExecutionRunRecord:
    counts = _coerce_json(row["counts"]) or {}
    return ExecutionRunRecord(
        run_id=row["run_id"],
        request_id=row["request_id"],
        user_id=row["user_id"],
        delegation_id=row["delegation_id"],
        mode=ExecuteMode(row["mode"]),
        status=RunStatus(row["status"]),
        summary=row["summary"],
        error=row["error"],
        counts=RunCounts(
            actionable=int(counts.get("actionable", 0)),
            success=int(counts.get("success", 0)),
            failed=int(counts.get("failed", 0)),
            skipped=int(counts.get("skipped", 0)),
        ),
        started_at=row["started_at"],
        finished_at=row["finished_at"],
    )


def _run_step_from_row(row) -> ExecutionRunStepRecord:
    return ExecutionRunStepRecord(
        run_step_id=row["run_step_id"],
        run_id=row["run_id"],
        step_id=row["step_id"],
        status=RunStepStatus(row["status"]),
        reason=FailureReason(row["reason"]) if row["reason"] else None,
        message=row["message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _coerce_json(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return value
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value
