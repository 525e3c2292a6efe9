from __future__ import annotations

import asyncio
import base64
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import aiohttp

from ..errors import DraftApiError
from ..logging import get_logger, truncate_for_log

logger = get_logger(__name__)

_LINE_BREAKS = re.compile(r"[\r\n]+")

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1"


@dataclass(frozen=True)
class CreatedDraft:
    draft_id: str
    thread_id: str | None = None


class DraftClient(ABC):
    @abstractmethod
    async def create_draft(
        self,
        access_token: str,
        subject: str,
        body: str,
        to: str | None = None,
    ) -> CreatedDraft:
        """Create a draft in the user's mailbox or raise ``DraftApiError``."""
        raise NotImplementedError


def _header_value(value: str) -> str:
    # Line breaks would start a new header.
    return _LINE_BREAKS.sub(" ", value).strip()


def build_raw_message(subject: str, body: str, to: str | None = None) -> str:
    """RFC 2822 text/plain message, base64url encoded without padding."""
    lines = []
    if to:
        lines.append(f"To: {_header_value(to)}")
    lines.append(f"Subject: {_header_value(subject)}")
    lines.append('Content-Type: text/plain; charset="UTF-8"')
    lines.append("")
    lines.append(body)
    message = "\r\n".join(lines)
    return base64.urlsafe_b64encode(message.encode("utf-8")).decode("ascii").rstrip("=")


class GmailDraftClient(DraftClient):
    def __init__(
        self,
        *,
        api_base: str = GMAIL_API_BASE,
        timeout_seconds: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout_seconds
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def create_draft(
        self,
        access_token: str,
        subject: str,
        body: str,
        to: str | None = None,
    ) -> CreatedDraft:
        session = await self._get_session()
        url = f"{self._api_base}/users/me/drafts"
        headers = {"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"}
        request_body = {"message": {"raw": build_raw_message(subject, body, to)}}
        try:
            async with session.post(
                url,
                json=request_body,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                if response.status >= 400:
                    text = await response.text()
                    logger.warning(
                        "Gmail draft creation rejected",
                        status=response.status,
                        response=truncate_for_log(text, 200),
                    )
                    raise DraftApiError(
                        f"Gmail API error: {response.status} {text}",
                        http_status=response.status,
                    )
                payload: dict[str, Any] = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            error = str(exc) or type(exc).__name__
            logger.warning("Gmail draft request failed", error=error)
            raise DraftApiError(f"Gmail API request failed: {error}", cause=exc) from exc

        draft_id = payload.get("id")
        if not isinstance(draft_id, str) or not draft_id:
            raise DraftApiError("Gmail API response has no draft id")
        message = payload.get("message") if isinstance(payload.get("message"), dict) else {}
        thread_id = message.get("threadId")
        return CreatedDraft(draft_id=draft_id, thread_id=thread_id if isinstance(thread_id, str) else None)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
