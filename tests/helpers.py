import asyncio
import time
import urllib.parse

from starlette.testclient import TestClient

from auth.errors import PlatformError
from auth.flow import AuthorizationFlow
from auth.models import Token
from auth.session_store import MemorySessionStore
from replybot.app import create_app
from replybot.lookup import AnswerLookupError
from replybot.models import Answer
from replybot.platform import PlatformClient

REDIRECT_URI = "https://bot.example.com/callback"


def make_token(
    access_token: str = "x-access-token",
    refresh_token: str | None = "x-refresh-token",
    expires_in: float = 7200,
) -> Token:
    return Token(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=time.time() + expires_in,
        scope="tweet.read tweet.write users.read offline.access",
    )


class FakePlatform(PlatformClient):
    def __init__(
        self,
        *,
        stream_items=(),
        refreshed: Token | None = None,
        refresh_error: Exception | None = None,
        post_error: Exception | None = None,
    ) -> None:
        self.stream_items = list(stream_items)
        self.refreshed = refreshed
        self.refresh_error = refresh_error
        self.post_error = post_error
        self.posts: list[tuple[str, str, str]] = []
        self.rules = []
        self.refresh_calls: list[str] = []
        self.exchanges: list[tuple[str, str]] = []

    async def post_reply(self, token: Token, in_reply_to_id: str, text: str) -> str:
        self.posts.append((token.access_token, in_reply_to_id, text))
        if self.post_error is not None:
            raise self.post_error
        return f"reply-to-{in_reply_to_id}"

    async def register_stream_filter(self, rule) -> None:
        self.rules.append(rule)

    async def open_stream(self):
        for item in self.stream_items:
            yield item

    async def exchange_code(self, code: str, verifier: str) -> Token:
        self.exchanges.append((code, verifier))
        return make_token()

    async def refresh(self, refresh_token: str) -> Token:
        self.refresh_calls.append(refresh_token)
        await asyncio.sleep(0)
        if self.refresh_error is not None:
            raise self.refresh_error
        return self.refreshed or make_token(
            access_token="x-access-token-refreshed",
            refresh_token="x-refresh-token-refreshed",
        )


class FakeLookup:
    def __init__(self, answers: dict[str, Answer] | None = None, error: Exception | None = None):
        self.answers = answers or {}
        self.error = error
        self.queries: list[str] = []

    async def __call__(self, query: str) -> Answer:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        if query not in self.answers:
            raise AnswerLookupError(f"No answer for {query!r}")
        return self.answers[query]


def build_flow(*, exchange_code_fn=None, store=None, pending_auth_ttl_seconds: int = 600):
    async def _default_exchange(code: str, verifier: str) -> Token:
        del code, verifier
        return make_token()

    store = store or MemorySessionStore()
    flow = AuthorizationFlow(
        store=store,
        client_id="x-client",
        redirect_uri=REDIRECT_URI,
        exchange_code_fn=exchange_code_fn or _default_exchange,
        pending_auth_ttl_seconds=pending_auth_ttl_seconds,
    )
    return flow, TestClient(create_app(flow)), store


def start_login(test_client: TestClient) -> str:
    response = test_client.get("/login", follow_redirects=False)
    assert response.status_code == 302
    query = urllib.parse.parse_qs(urllib.parse.urlparse(response.headers["location"]).query)
    return query["state"][0]


def failing_exchange(message: str = "boom"):
    async def exchange_code_fn(code: str, verifier: str) -> Token:
        del code, verifier
        raise PlatformError(message, status_code=400)

    return exchange_code_fn
