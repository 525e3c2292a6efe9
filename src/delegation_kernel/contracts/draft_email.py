from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from jsonschema import Draft202012Validator

from ..errors import DraftSchemaError

DRAFT_EMAIL_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "$id": "delegation_kernel/draft_email.v1",
    "type": "object",
    "required": ["subject", "body", "assumptions", "needsUserInput"],
    "properties": {
        "subject": {"type": "string", "minLength": 1, "maxLength": 140},
        "body": {"type": "string", "minLength": 1, "maxLength": 5000},
        "tone": {"type": "string", "enum": ["formal", "professional", "friendly", "direct"]},
        "assumptions": {"type": "array", "items": {"type": "string"}},
        "needsUserInput": {"type": "array", "items": {"type": "string"}},
    },
}

_VALIDATOR = Draft202012Validator(DRAFT_EMAIL_SCHEMA)


@dataclass(frozen=True)
class DraftEmail:
    subject: str
    body: str
    tone: str | None = None
    assumptions: list[str] = field(default_factory=list)
    needs_user_input: list[str] = field(default_factory=list)

    def to_output(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "subject": self.subject,
            "body": self.body,
            "assumptions": list(self.assumptions),
            "needs_user_input": list(self.needs_user_input),
        }
        if self.tone is not None:
            data["tone"] = self.tone
        return data


def parse_draft_email(value: Any) -> DraftEmail:
    """Validate a generated draft and keep only the known fields."""
    errors = sorted(_VALIDATOR.iter_errors(value), key=lambda err: list(err.path))
    if errors:
        messages = [_format_error(err) for err in errors]
        raise DraftSchemaError("Invalid draft schema: " + "; ".join(messages), errors=messages)
    return DraftEmail(
        subject=value["subject"],
        body=value["body"],
        tone=value.get("tone"),
        assumptions=list(value["assumptions"]),
        needs_user_input=list(value["needsUserInput"]),
    )


def read_draft_output(output: dict[str, Any] | None) -> DraftEmail | None:
    """Recover a draft previously stored on a step outcome, if any.

    Outputs recorded after a draft was delivered carry redacted text and are
    never treated as drafts.
    """
    if not isinstance(output, dict) or "draft_id" in output:
        return None
    subject = output.get("subject")
    body = output.get("body")
    if not isinstance(subject, str) or not isinstance(body, str):
        return None
    assumptions = output.get("assumptions")
    needs_user_input = output.get("needs_user_input", output.get("needsUserInput"))
    return DraftEmail(
        subject=subject,
        body=body,
        tone=output.get("tone") if isinstance(output.get("tone"), str) else None,
        assumptions=[item for item in assumptions if isinstance(item, str)] if isinstance(assumptions, list) else [],
        needs_user_input=(
            [item for item in needs_user_input if isinstance(item, str)]
            if isinstance(needs_user_input, list)
            else []
        ),
    )


def _format_error(error) -> str:
    location = ".".join(str(part) for part in error.path) or "$"
    return f"{location}: {error.message}"
