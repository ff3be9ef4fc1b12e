from __future__ import annotations

import logging
import secrets
import time
from typing import Awaitable, Callable

from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from starlette.routing import Route

from auth import x_oauth2
from auth.errors import PlatformError, StoreError
from auth.models import PendingAuth, Token
from auth.session_store import SessionStore

LOGGER = logging.getLogger("replybot.auth.flow")


def error_response(code: str, description: str, status_code: int) -> Response:
    return JSONResponse(
        {"error": code, "error_description": description},
        status_code=status_code,
    )


class AuthorizationFlow:
    """Operator login: ``/login`` starts the PKCE flow, ``/callback`` completes it.

    Only one attempt is pending at a time. ``/login`` overwrites any earlier
    attempt and never touches a stored token. ``/callback`` consumes the
    pending attempt once its state matches, so a replayed callback is rejected.
    """

    def __init__(
        self,
        *,
        store: SessionStore,
        client_id: str,
        redirect_uri: str,
        exchange_code_fn: Callable[[str, str], Awaitable[Token]],
        scopes: list[str] | None = None,
        pending_auth_ttl_seconds: int = 600,
    ) -> None:
        self.store = store
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.scopes = scopes or list(x_oauth2.DEFAULT_SCOPES)
        self.pending_auth_ttl_seconds = pending_auth_ttl_seconds
        self._exchange_code_fn = exchange_code_fn

    def routes(self) -> list[Route]:
        return [
            Route("/login", self.handle_login, methods=["GET"]),
            Route("/callback", self.handle_callback, methods=["GET"]),
        ]

    async def handle_login(self, request: Request) -> Response:
        del request
        verifier = x_oauth2.generate_code_verifier()
        state = x_oauth2.generate_state()
        authorize_url = x_oauth2.build_authorization_url(
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            scopes=self.scopes,
            state=state,
            code_challenge=x_oauth2.generate_code_challenge(verifier),
        )

        try:
            async with self.store.lock:
                await self.store.set_pending(
                    PendingAuth(csrf_state=state, pkce_verifier=verifier, created_at=time.time())
                )
        except StoreError as error:
            LOGGER.error("Failed to store pending authorization: %s", error)
            return error_response("store_error", "Failed to store pending authorization.", 500)

        LOGGER.info("Redirecting operator to X consent page")
        return RedirectResponse(url=authorize_url, status_code=302)

    async def handle_callback(self, request: Request) -> Response:
        if request.query_params.get("error"):
            LOGGER.warning(
                "X authorization returned an error: %s", request.query_params.get("error")
            )
            return error_response("x_oauth_error", "X authorization returned an error.", 400)

        code = request.query_params.get("code")
        state = request.query_params.get("state")
        if not code or not state:
            return error_response("invalid_request", "Missing code or state.", 400)

        try:
            async with self.store.lock:
                pending = await self.store.get_pending()
                if pending is None:
                    LOGGER.warning("Callback received with no pending authorization")
                    return error_response("no_pending_auth", "No pending authorization.", 500)
                if pending.is_stale(self.pending_auth_ttl_seconds):
                    await self.store.clear_pending()
                    LOGGER.warning("Callback received for an expired authorization attempt")
                    return error_response(
                        "no_pending_auth", "Pending authorization expired; visit /login again.", 500
                    )
                if not secrets.compare_digest(pending.csrf_state.encode(), state.encode()):
                    LOGGER.warning("Callback state does not match pending authorization")
                    return error_response("invalid_state", "Invalid state.", 400)
                await self.store.clear_pending()
        except StoreError as error:
            LOGGER.error("Failed to load pending authorization: %s", error)
            return error_response("store_error", "Failed to load pending authorization.", 500)

        try:
            token = await self._exchange_code_fn(code, pending.pkce_verifier)
        except PlatformError as error:
            LOGGER.error("Token exchange failed: %s", error)
            return error_response(
                "x_token_exchange_failed",
                f"Failed to exchange X authorization code: {error}",
                500,
            )

        try:
            async with self.store.lock:
                await self.store.set_token(token)
        except StoreError as error:
            LOGGER.error("Failed to store token: %s", error)
            return error_response("store_error", "Failed to store token.", 500)

        LOGGER.info("Authorization complete; token stored")
        return PlainTextResponse("Authorized. The bot can now reply to mentions.", status_code=200)
