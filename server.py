from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx
import uvicorn
from starlette.applications import Starlette

from auth.flow import AuthorizationFlow
from auth.session_store import FileSessionStore, SessionStore
from auth.token_guard import TokenGuard
from replybot.app import create_app
from replybot.constants import LOGGER, PENDING_AUTH_TTL_SECONDS, TOKEN_REFRESH_MARGIN_SECONDS
from replybot.env import Settings, load_env, load_settings, setup_logging
from replybot.http import build_api_client
from replybot.lookup import StatmuseLookup
from replybot.pipeline import ReplyPipeline
from replybot.platform import XPlatformClient
from replybot.supervisor import StreamSupervisor


@dataclass
class Bot:
    settings: Settings
    store: SessionStore
    app: Starlette
    supervisor: StreamSupervisor
    api_client: httpx.AsyncClient
    web_client: httpx.AsyncClient

    async def aclose(self) -> None:
        await self.api_client.aclose()
        await self.web_client.aclose()


def create_bot(settings: Settings | None = None, *, debug_enabled: bool = False) -> Bot:
    settings = settings or load_settings()

    store = FileSessionStore(settings.session_path)
    api_client = build_api_client(
        base_url=settings.api_base_url,
        timeout=settings.api_timeout,
        max_retries=settings.api_max_retries,
        debug_enabled=debug_enabled,
    )
    web_client = httpx.AsyncClient(timeout=settings.api_timeout)

    platform = XPlatformClient(
        http_client=api_client,
        bearer_token=settings.bearer_token,
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        redirect_uri=settings.callback_url,
    )
    flow = AuthorizationFlow(
        store=store,
        client_id=settings.client_id,
        redirect_uri=settings.callback_url,
        exchange_code_fn=platform.exchange_code,
        scopes=settings.scopes,
        pending_auth_ttl_seconds=PENDING_AUTH_TTL_SECONDS,
    )
    token_guard = TokenGuard(
        store,
        platform.refresh,
        margin_seconds=TOKEN_REFRESH_MARGIN_SECONDS,
    )
    pipeline = ReplyPipeline(
        platform=platform,
        token_guard=token_guard,
        lookup=StatmuseLookup(web_client).lookup,
    )
    supervisor = StreamSupervisor(platform=platform, pipeline=pipeline, handle=settings.handle)

    return Bot(
        settings=settings,
        store=store,
        app=create_app(flow),
        supervisor=supervisor,
        api_client=api_client,
        web_client=web_client,
    )


async def serve(bot: Bot) -> None:
    config = uvicorn.Config(
        bot.app,
        host=bot.settings.host,
        port=bot.settings.port,
        log_config=None,
    )
    http_server = uvicorn.Server(config)

    LOGGER.info("Serving login at %s/login", bot.settings.public_url)
    tasks = [
        asyncio.create_task(http_server.serve(), name="http"),
        asyncio.create_task(bot.supervisor.start(), name="stream"),
    ]
    try:
        # Whichever finishes first ends the process, and its error with it.
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        http_server.should_exit = True
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            task.result()
    finally:
        await bot.aclose()


def main() -> None:
    load_env()
    debug_enabled = setup_logging()
    bot = create_bot(debug_enabled=debug_enabled)
    print(f"go to {bot.settings.public_url}/login")
    asyncio.run(serve(bot))


if __name__ == "__main__":
    main()
