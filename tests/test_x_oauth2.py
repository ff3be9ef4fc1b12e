import base64
import string
import time
import urllib.parse

import pytest

from auth.errors import PlatformError
from auth.x_oauth2 import (
    X_TOKEN_URL,
    build_authorization_url,
    exchange_code,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
    refresh_token,
    token_from_payload,
)


def _form(request) -> dict[str, list[str]]:
    return urllib.parse.parse_qs(request.content.decode("utf-8"))


def test_code_verifier_length() -> None:
    verifier = generate_code_verifier()

    assert 43 <= len(verifier) <= 128


def test_code_verifier_url_safe() -> None:
    verifier = generate_code_verifier()
    allowed = set(string.ascii_letters + string.digits + "-_")

    assert all(char in allowed for char in verifier)


def test_code_verifier_is_random() -> None:
    assert generate_code_verifier() != generate_code_verifier()


def test_state_is_random() -> None:
    assert generate_state() != generate_state()


def test_code_challenge_is_s256() -> None:
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"

    assert generate_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_build_authorization_url_contains_required_params() -> None:
    url = build_authorization_url(
        client_id="client123",
        redirect_uri="https://example.com/callback",
        scopes=["tweet.read", "users.read"],
        state="state123",
        code_challenge="challenge123",
    )

    query = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)

    assert query["client_id"] == ["client123"]
    assert query["redirect_uri"] == ["https://example.com/callback"]
    assert query["response_type"] == ["code"]
    assert query["code_challenge"] == ["challenge123"]
    assert query["code_challenge_method"] == ["S256"]
    assert query["state"] == ["state123"]
    assert query["scope"] == ["tweet.read users.read"]


def test_token_from_payload_requires_access_token() -> None:
    with pytest.raises(PlatformError, match="access_token"):
        token_from_payload({"expires_in": 7200})


def test_token_from_payload_allows_missing_refresh_token() -> None:
    token = token_from_payload({"access_token": "a", "expires_in": 60}, now=1000.0)

    assert token.refresh_token is None
    assert token.expires_at == 1060.0


@pytest.mark.asyncio
async def test_exchange_code_success(httpx_mock) -> None:
    httpx_mock.add_response(
        url=X_TOKEN_URL,
        method="POST",
        json={
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "expires_in": 7200,
            "scope": "tweet.read",
        },
    )

    token = await exchange_code(
        client_id="id",
        client_secret="secret",
        code="code123",
        redirect_uri="https://example.com/callback",
        code_verifier="verifier123",
    )

    request = httpx_mock.get_request()
    form = _form(request)
    expected_auth = base64.b64encode(b"id:secret").decode("ascii")
    assert request.headers["Authorization"] == f"Basic {expected_auth}"
    assert form["grant_type"] == ["authorization_code"]
    assert form["code"] == ["code123"]
    assert form["code_verifier"] == ["verifier123"]
    assert token.access_token == "access-1"
    assert token.refresh_token == "refresh-1"
    assert token.scope == "tweet.read"
    assert token.expires_at > time.time()


@pytest.mark.asyncio
async def test_exchange_code_error(httpx_mock) -> None:
    httpx_mock.add_response(url=X_TOKEN_URL, method="POST", status_code=401, text="unauthorized")

    with pytest.raises(PlatformError, match="Token request failed") as excinfo:
        await exchange_code(
            client_id="id",
            client_secret="secret",
            code="bad-code",
            redirect_uri="https://example.com/callback",
            code_verifier="verifier123",
        )

    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_refresh_token_success(httpx_mock) -> None:
    httpx_mock.add_response(
        url=X_TOKEN_URL,
        method="POST",
        json={
            "access_token": "access-2",
            "refresh_token": "refresh-2",
            "expires_in": 3600,
            "scope": "tweet.read users.read",
        },
    )

    token = await refresh_token(client_id="id", client_secret="secret", refresh_token="refresh-1")

    assert _form(httpx_mock.get_request())["grant_type"] == ["refresh_token"]
    assert token.access_token == "access-2"
    assert token.refresh_token == "refresh-2"


@pytest.mark.asyncio
async def test_refresh_without_new_refresh_token_keeps_old_one(httpx_mock) -> None:
    httpx_mock.add_response(
        url=X_TOKEN_URL,
        method="POST",
        json={"access_token": "access-2", "expires_in": 3600},
    )

    token = await refresh_token(client_id="id", client_secret="secret", refresh_token="refresh-1")

    assert token.refresh_token == "refresh-1"


@pytest.mark.asyncio
async def test_refresh_token_error(httpx_mock) -> None:
    httpx_mock.add_response(url=X_TOKEN_URL, method="POST", status_code=400, text="bad request")

    with pytest.raises(PlatformError, match="Token request failed"):
        await refresh_token(client_id="id", client_secret="secret", refresh_token="invalid")
