from __future__ import annotations

import asyncio

import pytest

from delegation_kernel import InMemoryExecutionStore, InvalidStateError, RequestStatus, RunStatus
from tests.delegation_kernel._testkit import GMAIL_STEP, USER_ID, Harness

GMAIL_SCOPE = {"canDraftEmail": True, "canCreateGmailDraft": True}


class _PausingStore(InMemoryExecutionStore):
    """Holds the next delegation lookup until ``release`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.pause_next = False
        self.paused = asyncio.Event()
        self.release = asyncio.Event()

    async def latest_approved_delegation(self, request_id: str, user_id: str):
        delegation = await super().latest_approved_delegation(request_id, user_id)
        if self.pause_next:
            self.pause_next = False
            self.paused.set()
            await self.release.wait()
        return delegation


@pytest.mark.asyncio
async def test_stale_execution_fails_once_request_is_done() -> None:
    store = _PausingStore()
    harness = Harness(store=store)
    view = await harness.authorized_request([GMAIL_STEP], scope=GMAIL_SCOPE)
    request_id = view.request.request_id

    store.pause_next = True
    stale = asyncio.create_task(harness.orchestrator.execute(request_id, USER_ID))
    await store.paused.wait()

    first = await harness.orchestrator.execute(request_id, USER_ID)
    assert first.status is RequestStatus.DONE
    logs_before = await store.list_action_logs(request_id)

    store.release.set()
    with pytest.raises(InvalidStateError):
        await stale

    after = await harness.view(request_id)
    assert after.status is RequestStatus.DONE
    assert [run.status for run in after.runs] == [RunStatus.SUCCEEDED]
    assert len(harness.drafts.calls) == 1
    assert len(await store.list_action_logs(request_id)) == len(logs_before)


@pytest.mark.asyncio
async def test_concurrent_executions_process_steps_once() -> None:
    harness = Harness()
    view = await harness.authorized_request([GMAIL_STEP], scope=GMAIL_SCOPE)
    request_id = view.request.request_id

    results = await asyncio.gather(
        harness.orchestrator.execute(request_id, USER_ID),
        harness.orchestrator.execute(request_id, USER_ID),
        return_exceptions=True,
    )

    failures = [item for item in results if isinstance(item, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], InvalidStateError)
    assert len(harness.drafts.calls) == 1
    assert (await harness.view(request_id)).status is RequestStatus.DONE
