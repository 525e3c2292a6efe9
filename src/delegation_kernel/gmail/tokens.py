"""
Access-token provider for the Gmail draft API.

The provider returns the stored access token while it is still valid and
refreshes it against the Google token endpoint once it is within the refresh
skew of expiry. Every failure surfaces as ``TokenAuthError``.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any

import aiohttp

from ..errors import TokenAuthError
from ..ids import utc_now
from ..logging import get_logger

logger = get_logger(__name__)

GOOGLE_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"


@dataclass(frozen=True)
class OAuthAccount:
    user_id: str
    provider: str = "google"
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None
    scope: str | None = None

    def expires_within(self, seconds: float, *, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or utc_now()
        return self.expires_at - now <= timedelta(seconds=seconds)


class OAuthAccountStore(ABC):
    @abstractmethod
    async def get(self, user_id: str, provider: str = "google") -> OAuthAccount | None: ...

    @abstractmethod
    async def save(self, account: OAuthAccount) -> None: ...


class InMemoryOAuthAccountStore(OAuthAccountStore):
    def __init__(self, accounts: list[OAuthAccount] | None = None) -> None:
        self._lock = asyncio.Lock()
        self._accounts: dict[tuple[str, str], OAuthAccount] = {}
        for account in accounts or []:
            self._accounts[(account.user_id, account.provider)] = account

    async def get(self, user_id: str, provider: str = "google") -> OAuthAccount | None:
        async with self._lock:
            return self._accounts.get((user_id, provider))

    async def save(self, account: OAuthAccount) -> None:
        async with self._lock:
            self._accounts[(account.user_id, account.provider)] = account


class TokenProvider(ABC):
    @abstractmethod
    async def get_access_token(self, user_id: str) -> str:
        """Return a live bearer token or raise ``TokenAuthError``."""
        raise NotImplementedError


class GoogleTokenProvider(TokenProvider):
    def __init__(
        self,
        *,
        accounts: OAuthAccountStore,
        client_id: str | None,
        client_secret: str | None,
        token_endpoint: str = GOOGLE_TOKEN_ENDPOINT,
        refresh_skew_seconds: float = 60.0,
        timeout_seconds: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._accounts = accounts
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_endpoint = token_endpoint
        self._skew = refresh_skew_seconds
        self._timeout = timeout_seconds
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def get_access_token(self, user_id: str) -> str:
        account = await self._accounts.get(user_id, "google")
        if account is None:
            raise TokenAuthError("Google account not connected")
        if account.access_token and not account.expires_within(self._skew):
            return account.access_token
        if not account.refresh_token:
            raise TokenAuthError("Missing refresh token")
        refreshed = await self._refresh(account)
        await self._accounts.save(refreshed)
        return refreshed.access_token or ""

    async def _refresh(self, account: OAuthAccount) -> OAuthAccount:
        if not self._client_id or not self._client_secret:
            raise TokenAuthError("Google OAuth client credentials are not configured")
        form = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "refresh_token": account.refresh_token or "",
            "grant_type": "refresh_token",
        }
        session = await self._get_session()
        try:
            async with session.post(
                self._token_endpoint,
                data=form,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                if response.status >= 400:
                    text = await response.text()
                    logger.warning("Token refresh rejected", user_id=account.user_id, status=response.status)
                    raise TokenAuthError(f"Token refresh failed: {response.status} {text}")
                payload: dict[str, Any] = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            error = str(exc) or type(exc).__name__
            logger.warning("Token refresh request failed", user_id=account.user_id, error=error)
            raise TokenAuthError(f"Token refresh failed: {error}", cause=exc) from exc

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise TokenAuthError("Token refresh response has no access_token")
        expires_in = payload.get("expires_in")
        expires_at = None
        if isinstance(expires_in, (int, float)):
            expires_at = utc_now() + timedelta(seconds=float(expires_in))
        return replace(
            account,
            access_token=access_token,
            expires_at=expires_at,
            refresh_token=payload.get("refresh_token") or account.refresh_token,
            scope=payload.get("scope") or account.scope,
        )

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
