"""
Execution orchestrator.

Walks a request's plan steps in sequence order under its latest approved
delegation, dispatches each approved, in-scope step to its action handler and
records exactly one terminal result per step:

    unsupported action type -> SKIPPED / UNKNOWN
    not approved            -> SKIPPED / NOT_APPROVED
    scope flag not granted  -> SKIPPED / SCOPE_DENIED
    handler succeeded       -> SUCCEEDED, outcome DONE
    handler failed          -> FAILED / <reason>, outcome ERROR

A step failure never aborts the run. ``RETRY_FAILED`` re-runs only the
steps whose latest record in the previous run failed with a retryable reason.
"""

from __future__ import annotations

from enum import Enum

from .errors import InvalidStateError, NotFoundError
from .handlers import HandlerCall, HandlerError, HandlerRegistry, HandlerResult
from .hashing import content_hash
from .logging import StructuredLogger, get_logger
from .store import ExecutionStore
from .types import (
    ActionLogEntry,
    ActionLogType,
    DelegationRecord,
    ExecuteMode,
    ExecutionRunRecord,
    ExecutionRunStepRecord,
    FailureReason,
    OutcomeRecord,
    OutcomeResult,
    RequestRecord,
    RequestStatus,
    RequestView,
    RunCounts,
    RunStatus,
    RunStepStatus,
    StepRecord,
)

logger = get_logger(__name__)

NO_RETRYABLE_STEPS = "No retryable failed steps."
EXECUTION_FAILURES = "Execution had failures"


class _StepResult(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


def allowed_statuses(mode: ExecuteMode) -> frozenset[RequestStatus]:
    if mode is ExecuteMode.RETRY_FAILED:
        return frozenset({RequestStatus.AUTHORIZED, RequestStatus.ERROR})
    return frozenset({RequestStatus.AUTHORIZED})


def retryable_step_ids(run: ExecutionRunRecord | None) -> set[str]:
    if run is None:
        return set()
    return {
        record.step_id
        for record in run.latest_step_records().values()
        if record.status is RunStepStatus.FAILED and record.reason is not None and record.reason.retryable
    }


def resolve_request_status(mode: ExecuteMode, counts: RunCounts) -> RequestStatus:
    if counts.failed > 0:
        return RequestStatus.ERROR
    if mode is ExecuteMode.ALL and counts.success > 0 and counts.skipped == 0:
        return RequestStatus.DONE
    return RequestStatus.AUTHORIZED


def resolve_run_status(counts: RunCounts) -> RunStatus:
    if counts.actionable == 0:
        return RunStatus.PARTIAL
    if counts.failed > 0 and counts.success == 0:
        return RunStatus.FAILED
    if counts.failed == 0 and counts.skipped == 0 and counts.success == counts.actionable:
        return RunStatus.SUCCEEDED
    return RunStatus.PARTIAL


class ExecutionOrchestrator:
    def __init__(
        self,
        store: ExecutionStore,
        handlers: HandlerRegistry,
        *,
        note_max_chars: int = 200,
        recent_runs: int = 5,
    ) -> None:
        self._store = store
        self._handlers = handlers
        self._note_max_chars = note_max_chars
        self._recent_runs = recent_runs

    async def execute(
        self,
        request_id: str,
        user_id: str,
        mode: ExecuteMode | str = ExecuteMode.ALL,
    ) -> RequestView:
        mode = ExecuteMode(mode)
        view = await self._store.get_request_view(request_id, user_id, recent_runs=0)
        if view is None or view.plan is None:
            raise NotFoundError("Request or plan not found")
        expected = allowed_statuses(mode)
        if view.status not in expected:
            raise InvalidStateError(f"Request is not executable in status {view.status.value} (mode {mode.value})")
        delegation = await self._store.latest_approved_delegation(request_id, user_id)
        if delegation is None:
            raise InvalidStateError("No approved delegation for request")

        previous_run = await self._store.latest_run(request_id) if mode is ExecuteMode.RETRY_FAILED else None
        run = await self._store.begin_run(
            ExecutionRunRecord(
                request_id=request_id,
                user_id=user_id,
                delegation_id=delegation.delegation_id,
                mode=mode,
            ),
            expected=expected,
        )
        run_log = logger.bind(request_id=request_id, run_id=run.run_id, user_id=user_id)
        run_log.event("run_started", "Execution run started", mode=mode.value, delegation_id=delegation.delegation_id)

        counts = RunCounts()
        try:
            steps = list(view.steps)
            if mode is ExecuteMode.RETRY_FAILED:
                retry_ids = retryable_step_ids(previous_run)
                if not retry_ids:
                    await self._store.finish_run(
                        run.run_id,
                        status=RunStatus.PARTIAL,
                        counts=counts,
                        summary=NO_RETRYABLE_STEPS,
                    )
                    run_log.event("run_finished", "No retryable failed steps", status=RunStatus.PARTIAL.value)
                    return await self._refreshed_view(request_id, user_id)
                steps = [step for step in steps if step.step_id in retry_ids]

            for step in sorted(steps, key=lambda item: item.sequence):
                result = await self._process_step(
                    run=run,
                    request=view.request,
                    step=step,
                    delegation=delegation,
                    counts=counts,
                    log=run_log.bind(step_id=step.step_id),
                )
                if result is _StepResult.SUCCEEDED:
                    counts.success += 1
                elif result is _StepResult.FAILED:
                    counts.failed += 1
                else:
                    counts.skipped += 1
        except Exception as exc:
            run_log.log_error(exc, "Execution run aborted")
            await self._store.finish_run(
                run.run_id,
                status=RunStatus.FAILED,
                counts=counts,
                summary=counts.summary(),
                error=str(exc) or type(exc).__name__,
            )
            raise

        run_status = resolve_run_status(counts)
        await self._store.finish_run(
            run.run_id,
            status=run_status,
            counts=counts,
            summary=counts.summary(),
            error=EXECUTION_FAILURES if counts.failed > 0 else None,
        )

        new_status = resolve_request_status(mode, counts)
        if new_status is not view.status:
            moved = await self._store.transition_request_status(
                request_id,
                expected=expected,
                new_status=new_status,
            )
            if moved:
                await self._store.append_action_log(
                    ActionLogEntry(
                        action=ActionLogType.STATUS_CHANGED,
                        request_id=request_id,
                        delegation_id=delegation.delegation_id,
                        run_id=run.run_id,
                        message=f"{view.status.value} -> {new_status.value}",
                        payload_preview={"from": view.status.value, "to": new_status.value},
                    )
                )
            else:
                run_log.warning(
                    "Request status changed during execution; final status not applied",
                    target_status=new_status.value,
                )

        run_log.event(
            "run_finished",
            "Execution run finished",
            status=run_status.value,
            request_status=new_status.value,
            **counts.to_dict(),
        )
        return await self._refreshed_view(request_id, user_id)

    async def _process_step(
        self,
        *,
        run: ExecutionRunRecord,
        request: RequestRecord,
        step: StepRecord,
        delegation: DelegationRecord,
        counts: RunCounts,
        log: StructuredLogger,
    ) -> _StepResult:
        action_type = step.resolved_action_type
        if action_type is None or not self._handlers.supports(action_type):
            await self._skip(run, step, delegation, FailureReason.UNKNOWN, f"Unsupported action type: {step.action_type}")
            log.info("Step skipped", reason=FailureReason.UNKNOWN.value, action_type=step.action_type)
            return _StepResult.SKIPPED

        if not delegation.approves(step.step_id):
            await self._skip(run, step, delegation, FailureReason.NOT_APPROVED, "Step not approved")
            log.info("Step skipped", reason=FailureReason.NOT_APPROVED.value)
            return _StepResult.SKIPPED

        counts.actionable += 1
        if not delegation.scope.allows(action_type):
            flag = delegation.scope.flag_name(action_type)
            await self._skip(run, step, delegation, FailureReason.SCOPE_DENIED, f"Scope does not allow {flag}")
            log.info("Step skipped", reason=FailureReason.SCOPE_DENIED.value, flag=flag)
            return _StepResult.SKIPPED

        handler = self._handlers.get(action_type)
        run_step = ExecutionRunStepRecord(run_id=run.run_id, step_id=step.step_id, status=RunStepStatus.ATTEMPTED)
        await self._store.record_step(
            run_step,
            log=self._log_entry(
                ActionLogType.EXECUTION_ATTEMPTED,
                run,
                step,
                delegation,
                message=getattr(handler, "description", None) or f"Running {handler.name}",
                payload_preview={
                    "actionType": action_type.value,
                    "handler": f"{handler.name}@{handler.version}",
                    "inputHash": content_hash(
                        {"action": step.action, "detail": step.detail, "actionType": action_type.value},
                        truncate=16,
                    ),
                },
            ),
        )

        previous = await self._store.get_outcome(step.step_id)
        call = HandlerCall(
            request=request,
            step=step,
            user_id=run.user_id,
            run_id=run.run_id,
            previous_output=previous.output if previous else None,
        )
        try:
            result = await handler.run(call)
        except Exception as exc:
            log.log_error(exc, "Action handler raised")
            result = HandlerResult(
                status="failed",
                error=HandlerError(reason=FailureReason.UNKNOWN, message=str(exc) or type(exc).__name__),
            )

        if result.succeeded:
            output = result.output or {}
            run_step.status = RunStepStatus.SUCCEEDED
            await self._store.record_step(
                run_step,
                outcome=OutcomeRecord(step_id=step.step_id, result=OutcomeResult.DONE, output=output),
                log=self._log_entry(
                    ActionLogType.EXECUTION_SUCCEEDED,
                    run,
                    step,
                    delegation,
                    message="Step completed",
                    payload_preview={
                        "actionType": action_type.value,
                        "outputKeys": sorted(output),
                        "outputHash": content_hash(output, truncate=16),
                        "latencyMs": result.latency_ms,
                    },
                ),
            )
            log.info("Step succeeded", action_type=action_type.value, latency_ms=result.latency_ms)
            return _StepResult.SUCCEEDED

        error = result.error or HandlerError(reason=FailureReason.UNKNOWN, message="Handler failed")
        note = self._truncate(error.message)
        run_step.status = RunStepStatus.FAILED
        run_step.reason = error.reason
        run_step.message = note
        await self._store.record_step(
            run_step,
            outcome=OutcomeRecord(step_id=step.step_id, result=OutcomeResult.ERROR, notes=note),
            log=self._log_entry(
                ActionLogType.EXECUTION_FAILED,
                run,
                step,
                delegation,
                message=note,
                payload_preview={"reason": error.reason.value, "retryable": error.reason.retryable},
            ),
        )
        log.warning(
            "Step failed",
            action_type=action_type.value,
            reason=error.reason.value,
            retryable=error.reason.retryable,
        )
        return _StepResult.FAILED

    async def _skip(
        self,
        run: ExecutionRunRecord,
        step: StepRecord,
        delegation: DelegationRecord,
        reason: FailureReason,
        message: str,
    ) -> None:
        await self._store.record_step(
            ExecutionRunStepRecord(
                run_id=run.run_id,
                step_id=step.step_id,
                status=RunStepStatus.SKIPPED,
                reason=reason,
                message=message,
            ),
            outcome=OutcomeRecord(step_id=step.step_id, result=OutcomeResult.SKIPPED, notes=self._truncate(message)),
            log=self._log_entry(
                ActionLogType.EXECUTION_SKIPPED,
                run,
                step,
                delegation,
                message=message,
                payload_preview={"reason": reason.value},
            ),
        )

    @staticmethod
    def _log_entry(
        action: ActionLogType,
        run: ExecutionRunRecord,
        step: StepRecord,
        delegation: DelegationRecord,
        *,
        message: str | None = None,
        payload_preview: dict | None = None,
    ) -> ActionLogEntry:
        return ActionLogEntry(
            action=action,
            request_id=run.request_id,
            step_id=step.step_id,
            delegation_id=delegation.delegation_id,
            run_id=run.run_id,
            message=message,
            payload_preview=payload_preview,
        )

    def _truncate(self, text: str) -> str:
        return text[: self._note_max_chars]

    async def _refreshed_view(self, request_id: str, user_id: str) -> RequestView:
        view = await self._store.get_request_view(request_id, user_id, recent_runs=self._recent_runs)
        if view is None:
            raise NotFoundError("Request not found")
        return view
