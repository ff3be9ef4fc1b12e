from __future__ import annotations

import asyncio
import logging
import time

import httpx

from auth.errors import PlatformError

from .constants import LOGGER

HTTP_LOGGER = logging.getLogger("replybot.x_api")
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
RETRY_EXTENSION = "replybot_retry"


def is_retryable(request: httpx.Request) -> bool:
    """GET-like requests retry; anything else only when it opts in.

    A reply post must never be resent: a 5xx can arrive after X has already
    created the post.
    """
    opt_in = request.extensions.get(RETRY_EXTENSION)
    if opt_in is not None:
        return bool(opt_in)
    return request.method in IDEMPOTENT_METHODS


class RetryTransport(httpx.AsyncBaseTransport):
    """Retries idempotent X API calls on 429 (once) and 5xx (with backoff)."""

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        *,
        max_retries: int = 2,
        sleep=asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._max_retries = max(0, max_retries)
        self._sleep = sleep
        self._logger = logger or HTTP_LOGGER

    def _delay_for(self, response: httpx.Response, attempt: int) -> int | None:
        if attempt >= self._max_retries:
            return None
        if response.status_code == 429:
            if attempt > 0:
                return None
            wait_seconds = seconds_until_reset(response.headers.get("x-rate-limit-reset"))
            return 1 if wait_seconds is None else wait_seconds
        if response.status_code >= 500:
            return 2**attempt
        return None

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if self._max_retries == 0 or not is_retryable(request):
            return await self._transport.handle_async_request(request)

        attempt = 0
        while True:
            response = await self._transport.handle_async_request(request)
            delay = self._delay_for(response, attempt)
            if delay is None:
                return response

            self._logger.warning(
                "X API %s %s returned %s; retry %s/%s in %ss",
                request.method,
                request.url.path,
                response.status_code,
                attempt + 1,
                self._max_retries,
                delay,
            )
            await response.aclose()
            await self._sleep(delay)
            attempt += 1

    async def aclose(self) -> None:
        await self._transport.aclose()


class BearerAuth(httpx.Auth):
    def __init__(self, token: str) -> None:
        self._token = token

    def auth_flow(self, request: httpx.Request):
        request.headers["Authorization"] = f"Bearer {self._token}"
        yield request


def seconds_until_reset(reset_header: str | None, *, now: float | None = None) -> int | None:
    if reset_header is None:
        return None
    try:
        reset_epoch = int(reset_header)
    except ValueError:
        return None

    current = time.time() if now is None else now
    return max(0, reset_epoch - int(current))


def friendly_error_message(status_code: int, wait_seconds: int | None = None) -> str:
    if status_code == 401:
        return "Authentication failed. The X token may have expired."
    if status_code == 403:
        return "The bot does not have permission to perform this action."
    if status_code == 404:
        return "The requested resource was not found on X."
    if status_code == 429:
        wait = 0 if wait_seconds is None else wait_seconds
        return f"Rate limit exceeded. Please wait {wait} seconds."
    if status_code >= 500:
        return "X API is experiencing issues. Please try again later."
    return f"X API request failed with status {status_code}."


async def raise_for_platform_status(response: httpx.Response) -> None:
    if response.status_code < 400:
        return

    body = await response.aread()
    text = body.decode("utf-8", errors="replace")
    if len(text) > 1000:
        text = text[:1000] + "...<truncated>"
    wait_seconds = response.extensions.get("replybot_wait_seconds")
    message = friendly_error_message(response.status_code, wait_seconds)
    raise PlatformError(f"{message} ({text})", status_code=response.status_code)


async def handle_rate_limits(response: httpx.Response) -> None:
    remaining = response.headers.get("x-rate-limit-remaining")
    reset = response.headers.get("x-rate-limit-reset")
    wait_seconds = seconds_until_reset(reset)
    endpoint = str(response.request.url)

    if remaining is not None or reset is not None:
        HTTP_LOGGER.debug(
            "Rate limit state endpoint=%s remaining=%s reset=%s wait=%s",
            endpoint,
            remaining,
            reset,
            wait_seconds,
        )

    if response.status_code == 429 or remaining == "0":
        if response.status_code == 429:
            response.extensions["replybot_wait_seconds"] = wait_seconds
        HTTP_LOGGER.warning(
            "Rate limit warning endpoint=%s status=%s remaining=%s wait=%s",
            endpoint,
            response.status_code,
            remaining,
            wait_seconds,
        )


def build_api_client(
    *,
    base_url: str,
    timeout: float,
    max_retries: int,
    debug_enabled: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep=asyncio.sleep,
) -> httpx.AsyncClient:
    async def log_request(request: httpx.Request) -> None:
        if not debug_enabled:
            return
        HTTP_LOGGER.info("X API request %s %s", request.method, request.url)

    async def log_response(response: httpx.Response) -> None:
        if not debug_enabled:
            return
        HTTP_LOGGER.info(
            "X API response %s %s -> %s",
            response.request.method,
            response.request.url,
            response.status_code,
        )
        if response.status_code >= 400:
            transaction_id = response.headers.get("x-transaction-id")
            if transaction_id:
                HTTP_LOGGER.warning("X API x-transaction-id: %s", transaction_id)

    retry_transport = RetryTransport(
        transport or httpx.AsyncHTTPTransport(),
        max_retries=max_retries,
        sleep=sleep,
        logger=HTTP_LOGGER,
    )
    LOGGER.debug("Building X API client for %s", base_url)
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=timeout,
        transport=retry_transport,
        event_hooks={
            "request": [log_request],
            "response": [handle_rate_limits, log_response],
        },
    )
