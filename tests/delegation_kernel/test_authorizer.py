from __future__ import annotations

import pytest

from delegation_kernel import (
    ActionLogType,
    DelegationScope,
    InvalidInputError,
    NotFoundError,
    RequestStatus,
)
from delegation_kernel.types import DelegationStatus
from tests.delegation_kernel._testkit import (
    DRAFT_STEP,
    GMAIL_STEP,
    OTHER_USER_ID,
    USER_ID,
    USER_STEP,
    Harness,
)


@pytest.mark.asyncio
async def test_authorize_defaults_to_all_steps_and_default_scope() -> None:
    harness = Harness()
    view = await harness.planned_request([DRAFT_STEP, GMAIL_STEP, USER_STEP])

    refreshed, delegation = await harness.authorizer.authorize(view.request.request_id, USER_ID)

    assert delegation.status is DelegationStatus.APPROVED
    assert delegation.approved_step_ids == frozenset(step.step_id for step in view.steps)
    assert delegation.scope == DelegationScope(can_draft_email=True, can_create_gmail_draft=False)
    assert delegation.plan_id == view.plan.plan_id
    assert refreshed.status is RequestStatus.AUTHORIZED
    assert [item.delegation_id for item in refreshed.delegations] == [delegation.delegation_id]

    logs = await harness.store.list_action_logs(view.request.request_id)
    granted = logs[-1]
    assert granted.action is ActionLogType.DELEGATION_GRANTED
    assert granted.delegation_id == delegation.delegation_id
    assert granted.payload_preview["countSteps"] == 3
    assert granted.payload_preview["scope"] == {"canDraftEmail": True, "canCreateGmailDraft": False}


@pytest.mark.asyncio
async def test_authorize_subset_with_explicit_scope() -> None:
    harness = Harness()
    view = await harness.planned_request([DRAFT_STEP, GMAIL_STEP])
    first = view.steps[0].step_id

    _, delegation = await harness.authorizer.authorize(
        view.request.request_id,
        USER_ID,
        plan_id=view.plan.plan_id,
        scope={"can_draft_email": False, "canCreateGmailDraft": True},
        approved_step_ids=[first],
    )

    assert delegation.approved_step_ids == frozenset({first})
    assert delegation.scope.can_draft_email is False
    assert delegation.scope.can_create_gmail_draft is True


@pytest.mark.asyncio
async def test_authorize_rejects_foreign_step_ids_without_writing() -> None:
    harness = Harness()
    view = await harness.planned_request([DRAFT_STEP])
    other = await harness.planned_request([DRAFT_STEP])
    logs_before = await harness.store.list_action_logs(view.request.request_id)

    with pytest.raises(InvalidInputError):
        await harness.authorizer.authorize(
            view.request.request_id,
            USER_ID,
            approved_step_ids=[view.steps[0].step_id, other.steps[0].step_id],
        )

    after = await harness.view(view.request.request_id)
    assert after.delegations == []
    assert after.status is RequestStatus.AWAITING_AUTHORITY
    assert len(await harness.store.list_action_logs(view.request.request_id)) == len(logs_before)
    assert await harness.store.latest_approved_delegation(view.request.request_id, USER_ID) is None


@pytest.mark.asyncio
async def test_authorize_rejects_bare_string_step_ids() -> None:
    harness = Harness()
    view = await harness.planned_request([DRAFT_STEP])

    with pytest.raises(InvalidInputError):
        await harness.authorizer.authorize(
            view.request.request_id,
            USER_ID,
            approved_step_ids=view.steps[0].step_id,
        )


@pytest.mark.asyncio
async def test_authorize_rejects_non_boolean_scope_flags() -> None:
    harness = Harness()
    view = await harness.planned_request([DRAFT_STEP])

    with pytest.raises(InvalidInputError):
        await harness.authorizer.authorize(view.request.request_id, USER_ID, scope={"canDraftEmail": "yes"})

    assert (await harness.view(view.request.request_id)).delegations == []


@pytest.mark.asyncio
async def test_authorize_not_found_cases() -> None:
    harness = Harness()
    view = await harness.planned_request([DRAFT_STEP])
    unplanned = await harness.registry.create(USER_ID, "Remind me to renew my passport")

    with pytest.raises(NotFoundError):
        await harness.authorizer.authorize(view.request.request_id, OTHER_USER_ID)
    with pytest.raises(NotFoundError):
        await harness.authorizer.authorize(view.request.request_id, USER_ID, plan_id="some-other-plan")
    with pytest.raises(NotFoundError):
        await harness.authorizer.authorize(unplanned.request_id, USER_ID)
    with pytest.raises(NotFoundError):
        await harness.authorizer.authorize("missing", USER_ID)


@pytest.mark.asyncio
async def test_delegation_grant_is_atomic(monkeypatch) -> None:
    harness = Harness()
    view = await harness.planned_request([DRAFT_STEP])

    def _fail(request, status):
        raise RuntimeError("disk full")

    monkeypatch.setattr(harness.store, "_set_status", _fail)

    with pytest.raises(RuntimeError):
        await harness.authorizer.authorize(view.request.request_id, USER_ID)

    monkeypatch.undo()
    after = await harness.view(view.request.request_id)
    assert after.delegations == []
    assert after.status is RequestStatus.AWAITING_AUTHORITY
    logs = await harness.store.list_action_logs(view.request.request_id)
    assert all(entry.action is not ActionLogType.DELEGATION_GRANTED for entry in logs)
