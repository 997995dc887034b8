"""HTTP surface of the test daemon.

Routes:
  GET|POST /crash?status=N  -> exit the whole process with status N (default 2)
  GET|POST /                -> plain-text identity document
  anything else             -> same as '/'

The listener is bound by the caller (`bind_listener`) so bind errors surface as
startup failures before any greeting is written; uvicorn only serves it.
"""
from __future__ import annotations

import socket
from typing import Optional
from urllib.parse import parse_qs

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response
from loguru import logger

from testdaemon.core.identity import status_document
from testdaemon.core.outcome import (
    Outcome,
    StartupError,
    Terminator,
    crash_outcome,
    terminate,
    transport_failed,
)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


async def form_value(request: Request, key: str) -> Optional[str]:
    """First value for `key`, urlencoded POST body taking precedence over the query."""
    if request.method == "POST" and request.headers.get("content-type", "").startswith(FORM_CONTENT_TYPE):
        body = (await request.body()).decode("latin-1")
        values = parse_qs(body, keep_blank_values=True)
        if key in values:
            return values[key][0]
    return request.query_params.get(key)


def create_app(terminator: Terminator = terminate) -> FastAPI:
    # No docs/openapi routes: every path except /crash is the status page.
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.api_route('/crash', methods=['GET', 'POST'])
    async def crash(request: Request):
        outcome = crash_outcome(await form_value(request, 'status'))
        terminator(outcome)
        # Only reachable when the terminator does not exit (tests).
        return PlainTextResponse(outcome.reason + "\n", status_code=500)

    @app.api_route('/', methods=['GET', 'POST'])
    @app.api_route('/{path:path}', methods=['GET', 'POST'])
    def status(path: str = ""):
        return Response(status_document(), media_type="text/plain")

    return app


def bind_listener(port: int) -> socket.socket:
    try:
        return socket.create_server(("", port))
    except OSError as e:
        raise StartupError(f"error listening on port {port}: {e}") from e


def serve(app: FastAPI, sock: socket.socket) -> Outcome:
    """Serve on `sock` in the foreground. Returning at all is a transport failure."""
    config = uvicorn.Config(app, log_level="warning", access_log=False, lifespan="off")
    server = uvicorn.Server(config)
    try:
        server.run(sockets=[sock])
    except Exception as e:
        logger.exception("Serve failed")
        return transport_failed(f"Serve: {e}")
    return transport_failed("Serve: listener closed")
