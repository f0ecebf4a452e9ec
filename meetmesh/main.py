"""FastAPI application for mesh meeting signaling."""
from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from .core.config import settings
from .core.logging import setup_logging
from .db.session import create_schema
from .routers import meetings, signaling
from .services.policy import sweeper_for
from .services.presence import PresenceHandler
from .services.registry import RoomRegistry
from .services.relay import SignalingRelay
from .services.signaling import SignalingService

setup_logging()
logger = logging.getLogger(__name__)


def build_signaling_service() -> SignalingService:
    """Wire relay, registry and presence handling from settings."""

    relay = SignalingRelay()
    registry = RoomRegistry(
        relay,
        end_room_policy=settings.end_room_policy,
        sweeper=sweeper_for(settings.discard_empty_rooms),
    )
    presence = PresenceHandler(registry, relay)
    return SignalingService(registry, relay, presence, ice_servers=settings.ice_servers)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    await create_schema()
    app.state.signaling = build_signaling_service()
    logger.info("Signaling server started | env=%s | end_room_policy=%s", settings.app_env, settings.end_room_policy)
    yield
    app.state.signaling.close()
    logger.info("Signaling server stopped")


app = FastAPI(title="Meetmesh Signaling API", version="0.1.0", lifespan=lifespan)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(meetings.router, prefix="/api", tags=["meetings"])
app.include_router(signaling.router, tags=["signaling"])


@app.get("/api/health", tags=["meta"])
async def health() -> dict[str, str]:
    """Simple liveness probe."""

    return {"status": "ok"}


@app.head("/api/health", tags=["meta"])
async def health_head() -> Response:
    """Allow HEAD for uptime monitors that only need the status code."""

    return Response(status_code=200)


def run() -> None:
    import uvicorn

    uvicorn.run("meetmesh.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
