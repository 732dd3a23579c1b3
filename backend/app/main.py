############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# main.py: Gateway ASGI app, middleware and error envelope
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""callgate ASGI application: middleware, error envelope and routers."""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.app.api import api_router
from backend.app.core.errors import ErrorKind, GatewayError
from backend.app.db.session import close_db, init_db
from backend.app.logging_config import (
    bind_request_context,
    clear_request_context,
    get_logger,
    setup_logging,
)
from backend.app.settings import get_settings

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Create ledger tables and the shared upstream client; release both on exit."""
    settings = get_settings()
    await init_db()
    app.state.http_client = httpx.AsyncClient()
    logger.info(
        "gateway_started",
        version=settings.app_version,
        environment=settings.environment,
        third_party_provider=settings.openai_api_key is not None,
        fine_tune_prefix=settings.fine_tune_model_prefix,
    )

    yield

    await app.state.http_client.aclose()
    await close_db()
    logger.info("gateway_stopped")


class RequestIDMiddleware:
    """Tag every HTTP request with an ``x-request-id``.

    A caller-supplied id is kept, otherwise one is generated. The id is bound
    to the log context for the whole request (auth later adds ``project_id``)
    and echoed on the response. Written as plain ASGI so the endpoint runs in
    the request's own task and a dropped client cannot cancel a ledger write
    midway.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = headers.get(b"x-request-id", b"").decode() or str(uuid.uuid4())
        bind_request_context(request_id=request_id)

        async def send_with_request_id(message):
            if message["type"] == "http.response.start":
                message = {
                    **message,
                    "headers": [*message.get("headers", []), (b"x-request-id", request_id.encode())],
                }
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            clear_request_context()


def create_app() -> FastAPI:
    """Build the gateway app: CORS, request ids, error envelope, /api/v1 and probes."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="LLM call gateway with response cache and call ledger",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        if exc.kind == ErrorKind.INTERNAL:
            logger.error("gateway_internal_error", path=request.url.path, error=exc.message)
        return JSONResponse(status_code=exc.kind.http_status, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        """Anything unexpected becomes an INTERNAL envelope; details stay in the log."""
        logger.exception("unhandled_exception", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=500,
            content=GatewayError("Internal server error", ErrorKind.INTERNAL).to_dict(),
        )

    app.include_router(api_router)
    return app


app = create_app()


def main():
    """``callgate`` console script: serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "backend.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
