from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Header, HTTPException, Request
from pydantic import BaseModel, Field

from delegation_kernel import (
    DelegationKernelError,
    ExecuteMode,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from delegation_kernel.logging import configure_logging, get_logger

from .container import ServiceContainer, build_container
from .settings import get_settings, load_env

load_env()

logger = get_logger(__name__)

app = FastAPI(title="Delegation Kernel API", version="0.1.0")


class AuthorizeRequest(BaseModel):
    request_id: str
    plan_id: str | None = None
    scope: dict[str, Any] | None = None
    approved_step_ids: list[str] | None = None


class ExecuteRequest(BaseModel):
    request_id: str
    mode: ExecuteMode = Field(default=ExecuteMode.ALL)


def _http_error(exc: DelegationKernelError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=exc.message)
    if isinstance(exc, InvalidInputError):
        return HTTPException(status_code=400, detail=exc.message)
    if isinstance(exc, InvalidStateError):
        return HTTPException(status_code=409, detail=exc.message)
    return HTTPException(status_code=500, detail=exc.message)


def _require_user(user_id: str | None) -> str:
    if user_id is None or not user_id.strip():
        raise HTTPException(status_code=401, detail="unauthorized")
    return user_id.strip()


def _container(request: Request) -> ServiceContainer:
    container: ServiceContainer | None = getattr(request.app.state, "services", None)
    if container is None:
        raise HTTPException(status_code=503, detail="service not ready")
    return container


# =============================================================================
# Handlers
# =============================================================================


async def authorize_request(
    services: ServiceContainer,
    *,
    user_id: str | None,
    req: AuthorizeRequest,
) -> dict[str, Any]:
    user = _require_user(user_id)
    try:
        view, delegation = await services.authorizer.authorize(
            req.request_id,
            user,
            plan_id=req.plan_id,
            scope=req.scope,
            approved_step_ids=req.approved_step_ids,
        )
    except DelegationKernelError as exc:
        logger.warning(
            "Authorization rejected",
            request_id=req.request_id,
            user_id=user,
            error_code=exc.code.value,
            error=exc.message,
        )
        raise _http_error(exc) from exc
    return {"request": view.to_dict(), "delegation": delegation.to_dict()}


async def execute_request(
    services: ServiceContainer,
    *,
    user_id: str | None,
    req: ExecuteRequest,
) -> dict[str, Any]:
    user = _require_user(user_id)
    try:
        view = await services.orchestrator.execute(req.request_id, user, req.mode)
    except DelegationKernelError as exc:
        logger.warning(
            "Execution rejected",
            request_id=req.request_id,
            user_id=user,
            error_code=exc.code.value,
            error=exc.message,
        )
        raise _http_error(exc) from exc
    return {"request": view.to_dict()}


async def read_request(
    services: ServiceContainer,
    *,
    user_id: str | None,
    request_id: str,
) -> dict[str, Any]:
    user = _require_user(user_id)
    view = await services.store.get_request_view(request_id, user)
    if view is None:
        raise HTTPException(status_code=404, detail="Request not found")
    return {"request": view.to_dict()}


# =============================================================================
# Routes
# =============================================================================


@app.on_event("startup")
async def _startup() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, json_output=settings.log_json)
    app.state.services = await build_container(settings)


@app.on_event("shutdown")
async def _shutdown() -> None:
    services: ServiceContainer | None = getattr(app.state, "services", None)
    if services is not None:
        await services.close()


@app.get("/healthz")
async def healthz() -> dict[str, bool]:
    return {"ok": True}


@app.post("/authorize")
async def authorize(
    req: AuthorizeRequest,
    request: Request,
    x_user_id: str | None = Header(default=None),
) -> dict[str, Any]:
    return await authorize_request(_container(request), user_id=x_user_id, req=req)


@app.post("/execute")
async def execute(
    req: ExecuteRequest,
    request: Request,
    x_user_id: str | None = Header(default=None),
) -> dict[str, Any]:
    return await execute_request(_container(request), user_id=x_user_id, req=req)


@app.get("/requests/{request_id}")
async def get_request(
    request_id: str,
    request: Request,
    x_user_id: str | None = Header(default=None),
) -> dict[str, Any]:
    return await read_request(_container(request), user_id=x_user_id, request_id=request_id)
