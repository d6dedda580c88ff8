from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import cast

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from fieldops_backend.config import settings
from fieldops_backend.db import dispose_engine_cache
from fieldops_backend.error_handlers import register_error_handlers
from fieldops_backend.routers import sync as sync_router
from fieldops_backend.schemas_common import HealthResponse


class RequestIdMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app: ASGIApp = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id_header: bytes | None = None
        inbound_headers = cast(list[tuple[bytes, bytes]], scope.get("headers") or [])
        for key, value in inbound_headers:
            if key.lower() == b"x-request-id":
                value = value.strip()
                if value:
                    request_id_header = value
                break

        if request_id_header is None:
            request_id = str(uuid.uuid4())
            request_id_header = request_id.encode("ascii")
        else:
            # latin-1 is a 1-1 mapping for bytes -> str.
            request_id = request_id_header.decode("latin-1")

        scope.setdefault("state", {})["request_id"] = request_id

        async def send_wrapper(message: Message) -> None:
            if message.get("type") == "http.response.start":
                headers = cast(list[tuple[bytes, bytes]], message.get("headers", []))
                headers = [(k, v) for (k, v) in headers if k.lower() != b"x-request-id"]
                headers.append((b"x-request-id", request_id_header))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_wrapper)


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    yield
    # Keep aiosqlite worker threads from holding the process open.
    dispose_engine_cache()


app = FastAPI(title=settings.app_name, lifespan=_lifespan)

app.add_middleware(RequestIdMiddleware)
register_error_handlers(app)


logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

logger = logging.getLogger(__name__)
for msg in settings.security_warnings():
    logger.warning("SECURITY WARNING: %s", msg)


origins = settings.cors_origins_list()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        # Bearer tokens only; no cookies cross-origin.
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id", "Retry-After"],
    )


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse()


app.include_router(sync_router.router, prefix=settings.api_prefix)
