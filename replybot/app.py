from __future__ import annotations

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from auth.flow import AuthorizationFlow
from auth.session_store import SessionStore

from .constants import APP_VERSION


def health_endpoint(store: SessionStore):
    async def health_route(request: Request) -> Response:
        del request
        async with store.lock:
            token = await store.get_token()
        return JSONResponse(
            {
                "status": "ok",
                "version": APP_VERSION,
                "authorized": token is not None,
            }
        )

    return health_route


def create_app(flow: AuthorizationFlow) -> Starlette:
    routes = [
        *flow.routes(),
        Route("/health", health_endpoint(flow.store), methods=["GET"]),
    ]
    return Starlette(routes=routes)
