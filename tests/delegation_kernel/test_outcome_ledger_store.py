from __future__ import annotations

import pytest

from delegation_kernel import InvalidStateError, NotFoundError, OutcomeResult, RequestStatus
from delegation_kernel.types import (
    ExecuteMode,
    ExecutionRunRecord,
    ExecutionRunStepRecord,
    OutcomeRecord,
    RunCounts,
    RunStatus,
    RunStepStatus,
)
from tests.delegation_kernel._testkit import DRAFT_STEP, USER_ID, USER_STEP, Harness


async def _authorized(harness: Harness):
    view = await harness.authorized_request([DRAFT_STEP, USER_STEP])
    delegation = await harness.store.latest_approved_delegation(view.request.request_id, USER_ID)
    assert delegation is not None
    return view, delegation


def _run(view, delegation) -> ExecutionRunRecord:
    return ExecutionRunRecord(
        request_id=view.request.request_id,
        user_id=USER_ID,
        delegation_id=delegation.delegation_id,
        mode=ExecuteMode.ALL,
    )


@pytest.mark.asyncio
async def test_upserting_an_outcome_twice_keeps_one_row_with_latest_values() -> None:
    harness = Harness()
    view = await harness.planned_request([DRAFT_STEP])
    step_id = view.steps[0].step_id

    await harness.store.upsert_outcome(
        OutcomeRecord(step_id=step_id, result=OutcomeResult.DONE, notes="first", output={"subject": "A"})
    )
    await harness.store.upsert_outcome(OutcomeRecord(step_id=step_id, result=OutcomeResult.ERROR, notes="second"))

    outcome = await harness.store.get_outcome(step_id)
    assert outcome is not None
    assert outcome.result is OutcomeResult.ERROR
    assert outcome.notes == "second"
    assert outcome.output == {"subject": "A"}

    await harness.store.upsert_outcome(
        OutcomeRecord(step_id=step_id, result=OutcomeResult.DONE, output={"subject": "B"})
    )
    outcome = await harness.store.get_outcome(step_id)
    assert outcome.notes is None
    assert outcome.output == {"subject": "B"}

    refreshed = await harness.view(view.request.request_id)
    assert [step.outcome.result for step in refreshed.steps] == [OutcomeResult.DONE]


@pytest.mark.asyncio
async def test_outcome_requires_existing_step() -> None:
    harness = Harness()

    with pytest.raises(InvalidStateError):
        await harness.store.upsert_outcome(OutcomeRecord(step_id="ghost", result=OutcomeResult.DONE))
    assert await harness.store.get_outcome("ghost") is None


@pytest.mark.asyncio
async def test_only_one_started_run_per_request() -> None:
    harness = Harness()
    view, delegation = await _authorized(harness)

    run = await harness.store.begin_run(_run(view, delegation))
    with pytest.raises(InvalidStateError):
        await harness.store.begin_run(_run(view, delegation))

    await harness.store.finish_run(run.run_id, status=RunStatus.PARTIAL, counts=RunCounts())
    second = await harness.store.begin_run(_run(view, delegation))
    assert second.status is RunStatus.STARTED


@pytest.mark.asyncio
async def test_finished_run_is_immutable() -> None:
    harness = Harness()
    view, delegation = await _authorized(harness)
    step_id = view.steps[0].step_id
    run = await harness.store.begin_run(_run(view, delegation))
    record = ExecutionRunStepRecord(run_id=run.run_id, step_id=step_id, status=RunStepStatus.ATTEMPTED)
    await harness.store.record_step(record)
    record.status = RunStepStatus.SUCCEEDED
    await harness.store.record_step(record)

    finished = await harness.store.finish_run(
        run.run_id,
        status=RunStatus.SUCCEEDED,
        counts=RunCounts(actionable=1, success=1),
        summary="actionable:1 success:1 failed:0 skipped:0",
    )
    assert finished.finished_at is not None
    assert [item.status for item in finished.steps] == [RunStepStatus.SUCCEEDED]

    with pytest.raises(InvalidStateError):
        await harness.store.record_step(
            ExecutionRunStepRecord(run_id=run.run_id, step_id=step_id, status=RunStepStatus.FAILED)
        )
    with pytest.raises(InvalidStateError):
        await harness.store.finish_run(run.run_id, status=RunStatus.FAILED, counts=RunCounts())
    with pytest.raises(ValueError):
        await harness.store.finish_run(run.run_id, status=RunStatus.STARTED, counts=RunCounts())

    latest = await harness.store.latest_run(view.request.request_id)
    assert latest.status is RunStatus.SUCCEEDED
    assert latest.counts.success == 1


@pytest.mark.asyncio
async def test_record_step_rolls_back_as_a_unit() -> None:
    harness = Harness()
    view, delegation = await _authorized(harness)
    run = await harness.store.begin_run(_run(view, delegation))
    logs_before = await harness.store.list_action_logs(view.request.request_id)

    with pytest.raises(InvalidStateError):
        await harness.store.record_step(
            ExecutionRunStepRecord(run_id=run.run_id, step_id=view.steps[0].step_id, status=RunStepStatus.SKIPPED),
            outcome=OutcomeRecord(step_id="ghost", result=OutcomeResult.SKIPPED),
        )

    latest = await harness.store.latest_run(view.request.request_id)
    assert latest.steps == []
    assert len(await harness.store.list_action_logs(view.request.request_id)) == len(logs_before)


@pytest.mark.asyncio
async def test_records_handed_out_are_copies() -> None:
    harness = Harness()
    view = await harness.planned_request([DRAFT_STEP])

    view.request.title = "changed locally"
    view.steps[0].action = "changed locally"

    fresh = await harness.view(view.request.request_id)
    assert fresh.request.title == "Get deposit back"
    assert fresh.steps[0].action == DRAFT_STEP[0]


@pytest.mark.asyncio
async def test_begin_run_rechecks_request_status() -> None:
    harness = Harness()
    view, delegation = await _authorized(harness)

    with pytest.raises(InvalidStateError):
        await harness.store.begin_run(
            _run(view, delegation),
            expected=[RequestStatus.ERROR],
        )
    assert await harness.store.latest_run(view.request.request_id) is None

    orphan = _run(view, delegation)
    orphan.request_id = "missing"
    with pytest.raises(NotFoundError):
        await harness.store.begin_run(orphan)

    run = await harness.store.begin_run(_run(view, delegation), expected=[RequestStatus.AUTHORIZED])
    assert run.status is RunStatus.STARTED
