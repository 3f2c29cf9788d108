# server_http.py
import contextlib
from typing import Callable, Optional

import uvicorn
from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from starlette.routing import Route

from config import Settings
from gsc_auth import TokenProvider
from gsc_client import GSCClient, client_factory as make_client_factory
from gsc_server import ToolRegistry, create_registry
from logging_config import configure_logging, logger
from mcp_router import MessageRouter, RoutedResponse
from sessions import Session, SessionStore

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Accept, X-API-Key",
}

# Paths reachable without X-API-Key
PUBLIC_PATHS = frozenset({"/"})


# ---- CORS middleware ----
class CORSHeadersMiddleware:
    """Answer preflight requests and stamp CORS headers on every response."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        if scope["method"] == "OPTIONS":
            await Response(status_code=200, headers=CORS_HEADERS)(scope, receive, send)
            return

        async def send_with_cors(message):
            if message["type"] == "http.response.start":
                headers = [(k, v) for k, v in message.get("headers", []) if not k.lower().startswith(b"access-control-")]
                headers.extend((k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in CORS_HEADERS.items())
                message = {**message, "headers": headers}
            await send(message)

        await self.app(scope, receive, send_with_cors)


# ---- API key middleware ----
class APIKeyMiddleware:
    """
    Require ``X-API-Key`` to equal the configured secret.

    The health check stays public. Without a configured secret every request
    is admitted.
    """

    def __init__(self, app, api_key: Optional[str]):
        self.app = app
        self.api_key = api_key

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or not self.api_key or scope["path"] in PUBLIC_PATHS:
            await self.app(scope, receive, send)
            return
        request = Request(scope)
        if request.headers.get("x-api-key") != self.api_key:
            logger.warning("Rejected %s %s: invalid or missing X-API-Key", scope["method"], scope["path"])
            response = JSONResponse(
                {"error": "Unauthorized", "message": "Invalid or missing X-API-Key header"},
                status_code=401,
            )
            await response(scope, receive, send)
            return
        await self.app(scope, receive, send)


# ---- Request logging ----
class RequestLogMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            logger.info("%s %s", scope["method"], scope["path"])
        await self.app(scope, receive, send)


class SessionStreamResponse(StreamingResponse):
    """SSE response that removes its session once the stream stops for any reason."""

    def __init__(self, session: Session, store: SessionStore):
        super().__init__(
            session.stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )
        self.session = session
        self.store = store

    async def __call__(self, scope, receive, send):
        try:
            await super().__call__(scope, receive, send)
        finally:
            self.store.remove(self.session.id)


def _to_response(routed: RoutedResponse) -> Response:
    if routed.payload is None:
        return Response(status_code=204)
    return JSONResponse(routed.payload, status_code=routed.status_code)


async def _not_found(request: Request, exc: HTTPException) -> Response:
    return PlainTextResponse("Not Found", status_code=404)


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[ToolRegistry] = None,
    client_factory: Optional[Callable[[], GSCClient]] = None,
    store: Optional[SessionStore] = None,
) -> Starlette:
    """Wire settings, tools, sessions and router into a Starlette app."""
    settings = settings or Settings.from_env()
    registry = registry if registry is not None else create_registry()
    if client_factory is None:
        client_factory = make_client_factory(settings, TokenProvider(settings))
    store = store if store is not None else SessionStore(settings.keepalive_seconds)
    router = MessageRouter(registry, client_factory, settings)

    async def health(request: Request) -> Response:
        return JSONResponse({
            "name": settings.server_description,
            "version": settings.server_version,
            "status": "running",
            "endpoints": {"sse": "/sse"},
        })

    async def sse(request: Request) -> Response:
        if request.method == "POST":
            # Sessionless direct call
            return _to_response(await router.handle(await request.body()))
        session = store.create()
        return SessionStreamResponse(session, store)

    async def message(request: Request) -> Response:
        session_id = request.query_params.get("sessionId")
        session = store.get(session_id)
        if session is None:
            logger.warning("No live session for sessionId=%s; replying over HTTP only", session_id)
        return _to_response(await router.handle(await request.body(), session))

    @contextlib.asynccontextmanager
    async def lifespan(app):
        logger.info("%s %s ready with %d tools", settings.server_name, settings.server_version, len(registry))
        try:
            yield
        finally:
            store.close()

    routes = [
        Route("/", health, methods=["GET"]),
        Route("/sse", sse, methods=["GET", "POST"]),
        Route("/sse/message", message, methods=["POST"]),
    ]

    app = Starlette(
        routes=routes,
        exception_handlers={404: _not_found, 405: _not_found},
        lifespan=lifespan,
    )
    # Outermost first: log, answer CORS, then check the API key
    app.add_middleware(APIKeyMiddleware, api_key=settings.api_key)
    app.add_middleware(CORSHeadersMiddleware)
    app.add_middleware(RequestLogMiddleware)
    app.state.settings = settings
    app.state.sessions = store
    app.state.router = router
    return app


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    if not settings.api_key:
        logger.warning("API_KEY is not set; every request is admitted")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
