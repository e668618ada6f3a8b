"""
HTTP transport for the songbook.

A thin FastAPI application: it turns requests into Operations, hands them
to Songbook.handle() and maps the Result back onto a response. The
session key comes from the ``SessionKey`` cookie or the ``key`` query
parameter; a key passed in the query is promoted to a long-lived cookie.

Routes:
    GET    /                       search (list everything)
    GET    /search[/{query}]       search
    GET    /songs/{id}             read (?transpose=N)
    POST   /songs                  create
    PUT    /songs/{id}             update
    DELETE /songs/{id}             delete
    GET    /admin/index/{command}  reindex (command "reset")

Anything else is served from the web root, if it exists.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import Response
from fastapi.staticfiles import StaticFiles

from .api import Songbook
from .render import MIME_TEXT_HTML, MIME_TEXT_PLAIN, negotiate, render_message
from .types import Operation, OperationKind, Result, Status

logger = logging.getLogger(__name__)

SESSION_COOKIE = "SessionKey"
# Effectively permanent: 2^31 - 1 seconds
SESSION_MAX_AGE = 2_147_483_647

ADMIN_INDEX_COMMANDS = ("reset",)


def _session_key(request: Request) -> tuple[Optional[str], Optional[str]]:
    """
    Key presented by the request.

    Returns:
        (session key, key to promote into the cookie or None)
    """
    cookie = request.cookies.get(SESSION_COOKIE)
    key = request.query_params.get("key")
    if key and key != cookie:
        return key, key
    return cookie, None


def _respond(request: Request, result: Result, promote: Optional[str]) -> Response:
    response = Response(
        content=result.body,
        status_code=int(result.status),
        media_type=result.content_type,
    )
    if promote:
        response.set_cookie(SESSION_COOKIE, promote, max_age=SESSION_MAX_AGE)
    origin = request.headers.get("origin")
    if origin:
        response.headers["Access-Control-Allow-Origin"] = origin
    return response


def create_app(songbook: Optional[Songbook] = None,
               data_root: Optional[str | Path] = None) -> FastAPI:
    """
    Build the ASGI application.

    Args:
        songbook: Songbook to serve; opened from data_root when omitted,
            in which case the app closes it on shutdown
        data_root: Data root used when no songbook is given
    """
    owns_songbook = songbook is None
    if songbook is None:
        songbook = Songbook(data_root)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Serving songbook from %s", songbook.config.data_root)
        if songbook.pending_activation:
            logger.info("Administrator key: %s", songbook.admin_key)
        yield
        if owns_songbook:
            songbook.close()

    app = FastAPI(title="Songbook", lifespan=lifespan)
    app.state.songbook = songbook

    async def run(request: Request, kind: OperationKind, **fields) -> Response:
        key, promote = _session_key(request)
        operation = Operation(
            kind,
            request_key=key,
            accept=request.headers.get("accept"),
            **fields,
        )
        result = await songbook.handle(operation)
        return _respond(request, result, promote)

    async def read_body(request: Request) -> Optional[str]:
        raw = await request.body()
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return None

    def message_response(request: Request, status: Status, message: str) -> Response:
        content_type = negotiate(request.headers.get("accept"))
        if content_type != MIME_TEXT_HTML:
            content_type = MIME_TEXT_PLAIN
        _, promote = _session_key(request)
        return _respond(
            request,
            Result(status, render_message(message, content_type), content_type),
            promote,
        )

    @app.get("/")
    @app.get("/search")
    @app.get("/search/")
    async def search_all(request: Request, q: Optional[str] = None):
        return await run(request, OperationKind.SEARCH, query=q)

    @app.get("/search/{query:path}")
    async def search(request: Request, query: str):
        return await run(request, OperationKind.SEARCH, query=query)

    @app.get("/songs/{id}")
    async def get_song(request: Request, id: str, transpose: int = 0):
        return await run(request, OperationKind.READ, id=id, transpose=transpose)

    @app.post("/songs")
    @app.post("/songs/")
    async def create_song(request: Request):
        body = await read_body(request)
        if body is None:
            return message_response(request, Status.BAD_REQUEST, "Song text must be UTF-8")
        return await run(request, OperationKind.CREATE, raw_body=body)

    @app.put("/songs/{id}")
    async def update_song(request: Request, id: str):
        body = await read_body(request)
        if body is None:
            return message_response(request, Status.BAD_REQUEST, "Song text must be UTF-8")
        return await run(request, OperationKind.UPDATE, id=id, raw_body=body)

    @app.delete("/songs/{id}")
    async def delete_song(request: Request, id: str):
        return await run(request, OperationKind.DELETE, id=id)

    @app.get("/admin/index/{command}")
    async def admin_index(request: Request, command: str):
        if command not in ADMIN_INDEX_COMMANDS:
            key, _ = _session_key(request)
            if not songbook.access.check(key, needs_admin=True).allowed:
                return message_response(request, Status.FORBIDDEN, "Access forbidden")
            return message_response(request, Status.BAD_REQUEST,
                                    f"Command not supported: {command}")
        return await run(request, OperationKind.REINDEX)

    web_root = songbook.config.web_root
    if web_root.is_dir():
        app.mount("/", StaticFiles(directory=web_root, html=True), name="web")
    else:
        logger.debug("No web root at %s, static files disabled", web_root)

    return app
