from __future__ import annotations

import pytest

fastapi = pytest.importorskip("fastapi")
app_module = pytest.importorskip("delegation_api.app")

from delegation_api.container import build_services
from delegation_api.settings import Settings
from delegation_kernel import ExecuteMode, InMemoryExecutionStore, PlanRecorder, RequestRegistry
from tests.delegation_kernel._testkit import (
    DRAFT_STEP,
    OTHER_USER_ID,
    USER_ID,
    USER_STEP,
    FakeDraftClient,
    FakeGenerationService,
    FakeTokenProvider,
    plan_payload,
)


def _services():
    return build_services(
        Settings(),
        store=InMemoryExecutionStore(),
        generation=FakeGenerationService(),
        tokens=FakeTokenProvider(),
        drafts=FakeDraftClient(),
    )


async def _planned(services, steps) -> str:
    request = await RequestRegistry(services.store).create(USER_ID, "Get my deposit back", title="Deposit")
    await PlanRecorder(services.store).record(request.request_id, USER_ID, plan_payload(steps))
    return request.request_id


@pytest.mark.asyncio
async def test_authorize_then_execute_then_read() -> None:
    services = _services()
    request_id = await _planned(services, [DRAFT_STEP, USER_STEP])

    authorized = await app_module.authorize_request(
        services,
        user_id=USER_ID,
        req=app_module.AuthorizeRequest(request_id=request_id),
    )
    assert authorized["request"]["status"] == "AUTHORIZED"
    assert authorized["delegation"]["scope"] == {"canDraftEmail": True, "canCreateGmailDraft": False}

    executed = await app_module.execute_request(
        services,
        user_id=f"  {USER_ID} ",
        req=app_module.ExecuteRequest(request_id=request_id),
    )
    runs = executed["request"]["execution_runs"]
    assert len(runs) == 1
    assert runs[0]["status"] == "PARTIAL"
    assert executed["request"]["status"] == "AUTHORIZED"
    outcomes = [step["outcome"]["result"] for step in executed["request"]["plan"]["steps"]]
    assert outcomes == ["DONE", "SKIPPED"]

    read = await app_module.read_request(services, user_id=USER_ID, request_id=request_id)
    assert read == executed


@pytest.mark.asyncio
async def test_missing_user_is_unauthorized() -> None:
    services = _services()

    for user_id in (None, "   "):
        with pytest.raises(fastapi.HTTPException) as exc_info:
            await app_module.execute_request(
                services,
                user_id=user_id,
                req=app_module.ExecuteRequest(request_id="anything"),
            )
        assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_kernel_errors_map_to_http_statuses() -> None:
    services = _services()
    request_id = await _planned(services, [DRAFT_STEP])

    with pytest.raises(fastapi.HTTPException) as not_found:
        await app_module.authorize_request(
            services,
            user_id=OTHER_USER_ID,
            req=app_module.AuthorizeRequest(request_id=request_id),
        )
    assert not_found.value.status_code == 404

    with pytest.raises(fastapi.HTTPException) as bad_input:
        await app_module.authorize_request(
            services,
            user_id=USER_ID,
            req=app_module.AuthorizeRequest(request_id=request_id, approved_step_ids=["not-a-step"]),
        )
    assert bad_input.value.status_code == 400

    with pytest.raises(fastapi.HTTPException) as not_authorized:
        await app_module.execute_request(
            services,
            user_id=USER_ID,
            req=app_module.ExecuteRequest(request_id=request_id, mode=ExecuteMode.ALL),
        )
    assert not_authorized.value.status_code == 409

    with pytest.raises(fastapi.HTTPException) as unknown:
        await app_module.read_request(services, user_id=USER_ID, request_id="missing")
    assert unknown.value.status_code == 404


def test_execute_request_accepts_mode_strings() -> None:
    req = app_module.ExecuteRequest.model_validate({"request_id": "r1", "mode": "RETRY_FAILED"})

    assert req.mode is ExecuteMode.RETRY_FAILED
    assert app_module.ExecuteRequest(request_id="r1").mode is ExecuteMode.ALL
