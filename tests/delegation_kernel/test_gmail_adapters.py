from __future__ import annotations

import asyncio
import base64
from datetime import timedelta
from typing import Any

import pytest

from delegation_kernel.errors import DraftApiError, TokenAuthError
from delegation_kernel.gmail import (
    GmailDraftClient,
    GoogleTokenProvider,
    InMemoryOAuthAccountStore,
    OAuthAccount,
    build_raw_message,
)
from delegation_kernel.ids import utc_now


class _Response:
    def __init__(self, status: int, payload: Any = None, text: str = "") -> None:
        self.status = status
        self._payload = payload
        self._text = text

    async def text(self) -> str:
        return self._text

    async def json(self, content_type=None) -> Any:
        return self._payload

    async def __aenter__(self) -> "_Response":
        return self

    async def __aexit__(self, *exc) -> None:
        return None


class _Session:
    closed = False

    def __init__(self, *responses: _Response | Exception) -> None:
        self.responses = list(responses)
        self.posts: list[dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> _Response:
        self.posts.append({"url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _decode(raw: str) -> str:
    padded = raw + "=" * (-len(raw) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")


def test_build_raw_message() -> None:
    raw = build_raw_message("Deposit", "Hello\nthere", to="landlord@example.com")

    assert "=" not in raw
    assert _decode(raw) == (
        "To: landlord@example.com\r\n"
        "Subject: Deposit\r\n"
        'Content-Type: text/plain; charset="UTF-8"\r\n'
        "\r\n"
        "Hello\nthere"
    )
    assert not _decode(build_raw_message("S", "B")).startswith("To:")


@pytest.mark.asyncio
async def test_create_draft_posts_raw_message() -> None:
    session = _Session(_Response(200, {"id": "d-1", "message": {"id": "m-1", "threadId": "t-1"}}))
    client = GmailDraftClient(api_base="https://gmail.test/v1/", session=session)

    created = await client.create_draft("tok", "Subject", "Body")

    assert created.draft_id == "d-1"
    assert created.thread_id == "t-1"
    post = session.posts[0]
    assert post["url"] == "https://gmail.test/v1/users/me/drafts"
    assert post["headers"]["Authorization"] == "Bearer tok"
    assert _decode(post["json"]["message"]["raw"]).endswith("\r\n\r\nBody")


@pytest.mark.asyncio
async def test_create_draft_rejections_raise_api_error() -> None:
    client = GmailDraftClient(session=_Session(_Response(403, text="insufficient scope")))

    with pytest.raises(DraftApiError) as exc_info:
        await client.create_draft("tok", "Subject", "Body")
    assert exc_info.value.http_status == 403
    assert "insufficient scope" in exc_info.value.message

    client = GmailDraftClient(session=_Session(_Response(200, {"message": {}})))
    with pytest.raises(DraftApiError):
        await client.create_draft("tok", "Subject", "Body")


@pytest.mark.asyncio
async def test_token_provider_returns_live_token_without_refresh() -> None:
    accounts = InMemoryOAuthAccountStore(
        [OAuthAccount(user_id="u1", access_token="live", refresh_token="r", expires_at=utc_now() + timedelta(hours=1))]
    )
    session = _Session()
    provider = GoogleTokenProvider(accounts=accounts, client_id="id", client_secret="secret", session=session)

    assert await provider.get_access_token("u1") == "live"
    assert session.posts == []


@pytest.mark.asyncio
async def test_token_provider_refreshes_near_expiry() -> None:
    accounts = InMemoryOAuthAccountStore(
        [OAuthAccount(user_id="u1", access_token="old", refresh_token="r", expires_at=utc_now() + timedelta(seconds=30))]
    )
    session = _Session(_Response(200, {"access_token": "new", "expires_in": 3600}))
    provider = GoogleTokenProvider(
        accounts=accounts,
        client_id="id",
        client_secret="secret",
        token_endpoint="https://oauth.test/token",
        session=session,
    )

    assert await provider.get_access_token("u1") == "new"

    post = session.posts[0]
    assert post["url"] == "https://oauth.test/token"
    assert post["data"]["grant_type"] == "refresh_token"
    assert post["data"]["refresh_token"] == "r"
    saved = await accounts.get("u1")
    assert saved.access_token == "new"
    assert saved.refresh_token == "r"
    assert not saved.expires_within(60)


@pytest.mark.asyncio
async def test_token_provider_failures() -> None:
    expired = OAuthAccount(user_id="u1", access_token="old", refresh_token="r", expires_at=utc_now())
    no_refresh = OAuthAccount(user_id="u2", access_token=None, refresh_token=None)
    accounts = InMemoryOAuthAccountStore([expired, no_refresh])

    missing_creds = GoogleTokenProvider(accounts=accounts, client_id=None, client_secret=None, session=_Session())
    rejected = GoogleTokenProvider(
        accounts=accounts,
        client_id="id",
        client_secret="secret",
        session=_Session(_Response(400, text="invalid_grant")),
    )

    with pytest.raises(TokenAuthError):
        await missing_creds.get_access_token("nobody")
    with pytest.raises(TokenAuthError):
        await missing_creds.get_access_token("u2")
    with pytest.raises(TokenAuthError):
        await missing_creds.get_access_token("u1")
    with pytest.raises(TokenAuthError):
        await rejected.get_access_token("u1")
    assert (await accounts.get("u1")).access_token == "old"


def test_build_raw_message_folds_header_line_breaks() -> None:
    raw = build_raw_message("Deposit\r\nBcc: attacker@example.com", "Body", to="a@example.com\nCc: b@example.com")

    headers = _decode(raw).split("\r\n\r\n", 1)[0].split("\r\n")
    assert headers == [
        "To: a@example.com Cc: b@example.com",
        "Subject: Deposit Bcc: attacker@example.com",
        'Content-Type: text/plain; charset="UTF-8"',
    ]


@pytest.mark.asyncio
async def test_timeouts_map_to_adapter_errors() -> None:
    client = GmailDraftClient(session=_Session(asyncio.TimeoutError()))
    with pytest.raises(DraftApiError) as draft_exc:
        await client.create_draft("tok", "Subject", "Body")
    assert "TimeoutError" in draft_exc.value.message

    accounts = InMemoryOAuthAccountStore(
        [OAuthAccount(user_id="u1", access_token="old", refresh_token="r", expires_at=utc_now())]
    )
    provider = GoogleTokenProvider(
        accounts=accounts,
        client_id="id",
        client_secret="secret",
        session=_Session(asyncio.TimeoutError()),
    )
    with pytest.raises(TokenAuthError):
        await provider.get_access_token("u1")
