from __future__ import annotations

import base64
import hashlib
import secrets
import time
import urllib.parse

import httpx

from auth.errors import PlatformError
from auth.models import Token

X_AUTHORIZE_URL = "https://x.com/i/oauth2/authorize"
X_TOKEN_URL = "https://api.x.com/2/oauth2/token"

DEFAULT_SCOPES = ["tweet.read", "tweet.write", "users.read", "offline.access"]


def token_from_payload(payload: object, *, now: float | None = None) -> Token:
    if not isinstance(payload, dict):
        raise PlatformError("Token response must be a JSON object.")

    access_token = payload.get("access_token")
    refresh_token = payload.get("refresh_token")
    expires_in = payload.get("expires_in")
    scope = payload.get("scope", "")

    if not isinstance(access_token, str) or not access_token:
        raise PlatformError("Token response missing access_token.")
    if refresh_token is not None and not isinstance(refresh_token, str):
        raise PlatformError("Token response refresh_token must be a string.")
    if not isinstance(expires_in, int):
        raise PlatformError("Token response missing expires_in.")
    if not isinstance(scope, str):
        raise PlatformError("Token response scope must be a string.")

    issued_at = time.time() if now is None else now
    return Token(
        access_token=access_token,
        refresh_token=refresh_token or None,
        expires_at=issued_at + expires_in,
        scope=scope,
    )


def generate_code_verifier() -> str:
    while True:
        verifier = secrets.token_urlsafe(64)
        if 43 <= len(verifier) <= 128:
            return verifier


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


def generate_state() -> str:
    return secrets.token_urlsafe(24)


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    state: str,
    code_challenge: str,
) -> str:
    query = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "state": state,
        "scope": " ".join(scopes),
    }
    return f"{X_AUTHORIZE_URL}?{urllib.parse.urlencode(query)}"


async def _token_request(
    payload: dict[str, str],
    *,
    client_id: str,
    client_secret: str,
    client: httpx.AsyncClient | None = None,
) -> Token:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        # Confidential clients authenticate with HTTP Basic on the token endpoint.
        response = await http_client.post(
            X_TOKEN_URL,
            data={**payload, "client_id": client_id},
            auth=(client_id, client_secret),
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as error:
        detail = error.response.text
        raise PlatformError(
            f"Token request failed with status {error.response.status_code}: {detail}",
            status_code=error.response.status_code,
        ) from error
    except httpx.HTTPError as error:
        raise PlatformError(f"Token request failed: {error}") from error
    finally:
        if own_client:
            await http_client.aclose()

    try:
        body = response.json()
    except ValueError as error:
        raise PlatformError("Token response is not valid JSON.") from error
    return token_from_payload(body)


async def exchange_code(
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    code_verifier: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> Token:
    return await _token_request(
        {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        },
        client_id=client_id,
        client_secret=client_secret,
        client=client,
    )


async def refresh_token(
    client_id: str,
    client_secret: str,
    refresh_token: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> Token:
    token = await _token_request(
        {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        },
        client_id=client_id,
        client_secret=client_secret,
        client=client,
    )
    if token.refresh_token is None:
        token.refresh_token = refresh_token
    return token
