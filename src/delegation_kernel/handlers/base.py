from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Literal

from ..types import ActionType, FailureReason, RequestRecord, StepRecord


@dataclass
class HandlerCall:
    request: RequestRecord
    step: StepRecord
    user_id: str
    run_id: str
    previous_output: dict[str, Any] | None = None


@dataclass
class HandlerError:
    reason: FailureReason
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"reason": self.reason.value, "message": self.message}


@dataclass
class HandlerResult:
    status: Literal["succeeded", "failed"]
    output: dict[str, Any] | None = None
    error: HandlerError | None = None
    latency_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class ActionHandler(ABC):
    name: str
    version: str
    action_type: ActionType

    @abstractmethod
    async def run(self, call: HandlerCall) -> HandlerResult:
        raise NotImplementedError


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _succeeded(start: float, output: dict[str, Any]) -> HandlerResult:
    return HandlerResult(status="succeeded", output=output, latency_ms=_elapsed_ms(start))


def _failed(start: float, reason: FailureReason, message: str) -> HandlerResult:
    return HandlerResult(
        status="failed",
        error=HandlerError(reason=reason, message=message),
        latency_ms=_elapsed_ms(start),
    )
