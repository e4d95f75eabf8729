import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from pydantic import BaseModel

from .api.conversation_routes import router as conversation_router
from .context import RelayContext
from .logging_config import logger
from .settings import Settings, settings as default_settings


class HealthResponse(BaseModel):
    status: str = "ok"
    sessions: int = 0
    conversations: int = 0


def create_app(
    settings: Optional[Settings] = None,
    *,
    relay: Optional[RelayContext] = None,
) -> FastAPI:
    """
    Build the relay application.

    The lifespan owns the RelayContext: it is started before the first
    request and stopped on shutdown. Passing `relay` injects a prebuilt
    context (tests use one backed by in-memory doubles).
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        context = relay if relay is not None else RelayContext(settings)
        await context.start()
        app.state.relay = context
        try:
            yield
        finally:
            app.state.relay = None
            await context.stop()

    app = FastAPI(title="Chat Relay", version="0.1.0", lifespan=lifespan)
    app.include_router(conversation_router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("%s %s failed", request.method, request.url.path)
            raise
        logger.info(
            "%s %s -> %d (%.0f ms)",
            request.method,
            request.url.path,
            response.status_code,
            (time.monotonic() - started) * 1000,
        )
        return response

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        context: Optional[RelayContext] = getattr(request.app.state, "relay", None)
        if context is None:
            return HealthResponse(status="starting")
        manager = context.manager
        active = [c for c in manager.conversations.values() if c.active]
        return HealthResponse(sessions=len(manager.sessions), conversations=len(active))

    return app


__all__ = ["create_app", "HealthResponse"]
