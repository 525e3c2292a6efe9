"""
Error taxonomy for the delegation kernel.

Two families live here:
- Precondition errors (NotFound, InvalidState, InvalidInput) raised by the
  authorizer, the plan recorder and the orchestrator before any write.
- Collaborator errors raised by the generation service, the token provider
  and the draft API. Handlers turn these into per-step failure reasons; they
  never cross the step boundary.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standardized error codes."""

    # Precondition errors (1xxx)
    NOT_FOUND = "DK_1000"
    INVALID_STATE = "DK_1001"
    INVALID_INPUT = "DK_1002"

    # Collaborator errors (2xxx)
    GENERATION_ERROR = "DK_2000"
    TOKEN_AUTH_ERROR = "DK_2001"
    DRAFT_API_ERROR = "DK_2002"
    DRAFT_SCHEMA_ERROR = "DK_2003"

    # Internal errors (9xxx)
    INTERNAL_ERROR = "DK_9000"


class DelegationKernelError(Exception):
    """
    Base exception for all kernel errors.

    Attributes:
        code: Standardized error code for programmatic handling
        message: Human-readable error message
        retryable: Whether the failed operation may succeed on a later attempt
        cause: Original exception that caused this error
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        retryable: bool | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        self.cause = cause

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "cause": str(self.cause) if self.cause else None,
        }


# =============================================================================
# Precondition Errors
# =============================================================================


class NotFoundError(DelegationKernelError):
    """Request, plan or related record does not exist for the caller."""

    code = ErrorCode.NOT_FOUND


class InvalidStateError(DelegationKernelError):
    """Record exists but is not in a state that allows the operation."""

    code = ErrorCode.INVALID_STATE


class InvalidInputError(DelegationKernelError):
    """Caller-supplied input failed validation."""

    code = ErrorCode.INVALID_INPUT


# =============================================================================
# Collaborator Errors
# =============================================================================


class GenerationError(DelegationKernelError):
    """The text-generation service failed or returned unusable output."""

    code = ErrorCode.GENERATION_ERROR
    retryable = True


class TokenAuthError(DelegationKernelError):
    """No usable access token could be obtained for the user."""

    code = ErrorCode.TOKEN_AUTH_ERROR
    retryable = True


class DraftApiError(DelegationKernelError):
    """The external draft-creation API rejected the request."""

    code = ErrorCode.DRAFT_API_ERROR
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        http_status: int | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.http_status = http_status


class DraftSchemaError(DelegationKernelError):
    """Generated draft does not satisfy the draft schema."""

    code = ErrorCode.DRAFT_SCHEMA_ERROR
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        errors: list[str] | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.errors = list(errors or [])


def is_retryable(error: Exception) -> bool:
    if isinstance(error, DelegationKernelError):
        return error.retryable
    return False
