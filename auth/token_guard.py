from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, TypeVar

from auth.errors import NoTokenError, PlatformError, RefreshFailedError
from auth.models import Token
from auth.session_store import SessionStore

LOGGER = logging.getLogger("replybot.auth.token_guard")

R = TypeVar("R")


class TokenGuard:
    """Hands callers a token that is not expired.

    An expired (or nearly expired) token is refreshed and written to the
    store before the caller's function runs. Refreshes are serialized by
    ``_refresh_lock`` and expiry is re-checked once it is held, so concurrent
    callers share one refresh. The store lock is only taken for the short
    load and write steps, never across the refresh request.
    """

    def __init__(
        self,
        store: SessionStore,
        refresh_fn: Callable[[str], Awaitable[Token]],
        *,
        margin_seconds: float = 60,
    ) -> None:
        self._store = store
        self._refresh_fn = refresh_fn
        self._margin_seconds = margin_seconds
        self._refresh_lock = asyncio.Lock()

    async def current_token(self) -> Token:
        async with self._refresh_lock:
            token = await self._load()
            if not token.is_expired(self._margin_seconds):
                return token
            return await self._refresh(token)

    async def with_valid_token(self, fn: Callable[[Token], R | Awaitable[R]]) -> R:
        token = await self.current_token()
        result: Any = fn(token)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _load(self) -> Token:
        async with self._store.lock:
            token = await self._store.get_token()
        if token is None:
            raise NoTokenError()
        return token

    async def _refresh(self, stale: Token) -> Token:
        if not stale.refresh_token:
            raise RefreshFailedError(
                "Token expired and no refresh token is stored; visit /login again."
            )

        LOGGER.info("Access token expired or expiring; refreshing")
        try:
            refreshed = await self._refresh_fn(stale.refresh_token)
        except PlatformError as error:
            raise RefreshFailedError(f"Token refresh failed: {error}") from error

        async with self._store.lock:
            current = await self._store.get_token()
            if current is not None and current.access_token != stale.access_token:
                # A new login landed while the refresh was in flight.
                LOGGER.info("Token replaced during refresh; keeping the newer token")
                return current
            await self._store.set_token(refreshed)
        LOGGER.info("Stored refreshed access token")
        return refreshed
