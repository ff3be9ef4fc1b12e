from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator

import httpx
from pydantic import BaseModel, ValidationError

from auth import x_oauth2
from auth.errors import PlatformError
from auth.models import Token

from .http import RETRY_EXTENSION, BearerAuth, raise_for_platform_status
from .models import Mention, StreamRule

LOGGER = logging.getLogger("replybot.platform")

STREAM_PATH = "/2/tweets/search/stream"
STREAM_RULES_PATH = "/2/tweets/search/stream/rules"
TWEETS_PATH = "/2/tweets"


class PlatformClient(ABC):
    @abstractmethod
    async def post_reply(self, token: Token, in_reply_to_id: str, text: str) -> str:
        raise NotImplementedError

    @abstractmethod
    async def register_stream_filter(self, rule: StreamRule) -> None:
        raise NotImplementedError

    @abstractmethod
    async def open_stream(self) -> AsyncIterator[Mention | PlatformError]:
        raise NotImplementedError
        yield

    @abstractmethod
    async def exchange_code(self, code: str, verifier: str) -> Token:
        raise NotImplementedError

    @abstractmethod
    async def refresh(self, refresh_token: str) -> Token:
        raise NotImplementedError


class _StreamTweet(BaseModel):
    id: str
    text: str


class _StreamError(BaseModel):
    title: str = ""
    detail: str = ""


class _StreamEnvelope(BaseModel):
    data: _StreamTweet | None = None
    errors: list[_StreamError] = []


def _json_object(response: httpx.Response, what: str) -> dict:
    try:
        payload = response.json()
    except ValueError as error:
        raise PlatformError(
            f"{what} response is not JSON.", status_code=response.status_code
        ) from error
    if not isinstance(payload, dict):
        raise PlatformError(
            f"{what} response is not a JSON object.", status_code=response.status_code
        )
    return payload


def decode_stream_line(line: str) -> Mention | PlatformError:
    """Decode one newline-delimited stream element.

    Malformed elements come back as ``PlatformError`` values rather than being
    raised, so the caller can log them and keep reading.
    """
    try:
        envelope = _StreamEnvelope.model_validate(json.loads(line))
    except (json.JSONDecodeError, ValidationError) as error:
        return PlatformError(f"Malformed stream element: {error}")

    if envelope.data is None:
        details = "; ".join(item.detail or item.title for item in envelope.errors)
        return PlatformError(f"Stream error element: {details or 'no data'}")
    return Mention(id=envelope.data.id, raw_text=envelope.data.text)


class XPlatformClient(PlatformClient):
    """X API v2 client.

    Stream rules and the filtered stream are app-level endpoints and use the
    app bearer token given at construction. Replies are posted on behalf of
    the authorized user with the token handed to ``post_reply``.
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient,
        bearer_token: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        exchange_code_fn=x_oauth2.exchange_code,
        refresh_token_fn=x_oauth2.refresh_token,
    ) -> None:
        self._client = http_client
        self._app_auth = BearerAuth(bearer_token)
        self.client_id = client_id
        self._client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._exchange_code_fn = exchange_code_fn
        self._refresh_token_fn = refresh_token_fn

    async def post_reply(self, token: Token, in_reply_to_id: str, text: str) -> str:
        try:
            response = await self._client.post(
                TWEETS_PATH,
                json={"text": text, "reply": {"in_reply_to_tweet_id": in_reply_to_id}},
                auth=BearerAuth(token.access_token),
            )
        except httpx.HTTPError as error:
            raise PlatformError(f"Posting reply failed: {error}") from error
        await raise_for_platform_status(response)

        data = _json_object(response, "Post").get("data")
        posted_id = data.get("id") if isinstance(data, dict) else None
        if not isinstance(posted_id, str):
            raise PlatformError("Post response missing data.id.", status_code=response.status_code)
        return posted_id

    async def register_stream_filter(self, rule: StreamRule) -> None:
        try:
            response = await self._client.post(
                STREAM_RULES_PATH,
                json={"add": [rule.to_payload()]},
                auth=self._app_auth,
                extensions={RETRY_EXTENSION: True},
            )
        except httpx.HTTPError as error:
            raise PlatformError(f"Registering stream rule failed: {error}") from error
        await raise_for_platform_status(response)

        all_errors = _json_object(response, "Stream rule").get("errors") or []
        rejected = [
            item
            for item in all_errors
            if not isinstance(item, dict) or item.get("title") != "DuplicateRule"
        ]
        if rejected:
            raise PlatformError(f"Stream rule rejected: {rejected}")
        if all_errors:
            LOGGER.info("Stream rule %r already registered", rule.value)

    async def open_stream(self) -> AsyncIterator[Mention | PlatformError]:
        try:
            async with self._client.stream(
                "GET",
                STREAM_PATH,
                auth=self._app_auth,
                timeout=httpx.Timeout(self._client.timeout.connect, read=None),
            ) as response:
                await raise_for_platform_status(response)
                LOGGER.info("Connected to filtered stream")
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    yield decode_stream_line(line)
        except httpx.HTTPError as error:
            raise PlatformError(f"Stream connection failed: {error}") from error

    async def exchange_code(self, code: str, verifier: str) -> Token:
        return await self._exchange_code_fn(
            client_id=self.client_id,
            client_secret=self._client_secret,
            code=code,
            redirect_uri=self.redirect_uri,
            code_verifier=verifier,
        )

    async def refresh(self, refresh_token: str) -> Token:
        return await self._refresh_token_fn(
            client_id=self.client_id,
            client_secret=self._client_secret,
            refresh_token=refresh_token,
        )
