"""Websocket signaling channel that drives a negotiation orchestrator."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Any, AsyncIterator

import websockets
from pydantic import ValidationError

from ..schemas.signaling import SessionReady, WireMessage, server_message_adapter
from .interfaces import ConnectionFactory, MediaSource
from .orchestrator import NegotiationOrchestrator

logger = logging.getLogger(__name__)


class SignalingChannel:
    """Handle lifespan of one signaling websocket and its receive loop."""

    def __init__(self, ws: Any) -> None:
        self._ws = ws
        self._closed = False
        self._receive_task: asyncio.Task[None] | None = None
        self.ready: asyncio.Future[SessionReady] = asyncio.get_running_loop().create_future()

    async def send(self, message: WireMessage) -> None:
        await self._ws.send(message.model_dump_json(by_alias=True))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._ws.close()

    def start(self, orchestrator: NegotiationOrchestrator) -> None:
        self._receive_task = asyncio.create_task(self._receive_loop(orchestrator))

    async def stop(self) -> None:
        if self._receive_task is not None and self._receive_task is not asyncio.current_task():
            self._receive_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._receive_task
        await self.close()

    async def _receive_loop(self, orchestrator: NegotiationOrchestrator) -> None:
        try:
            async for raw in self._ws:
                try:
                    message = server_message_adapter.validate_json(raw)
                except ValidationError as exc:
                    logger.warning("Ignoring malformed server message: %s", exc.errors(include_url=False))
                    continue
                if isinstance(message, SessionReady) and not self.ready.done():
                    self.ready.set_result(message)
                await orchestrator.handle(message)
        except asyncio.CancelledError:
            raise
        except websockets.ConnectionClosed as exc:
            logger.info("Signaling connection closed: %s", exc)
        finally:
            if not self.ready.done():
                self.ready.set_exception(ConnectionError("signaling closed before session was assigned"))
            # Transport loss takes the same teardown path as leaving.
            await orchestrator.shutdown()


@asynccontextmanager
async def connect_meeting(
    url: str,
    room_id: str,
    display_name: str,
    *,
    connection_factory: ConnectionFactory,
    create: bool = False,
    media: MediaSource | None = None,
    **callbacks: Any,
) -> AsyncIterator[NegotiationOrchestrator]:
    """Open a signaling websocket, enter ``room_id`` and yield the running orchestrator.

    Leaving the context closes every peer link, stops local media and the
    socket, whatever the exit path.
    """

    async with websockets.connect(url) as ws:
        channel = SignalingChannel(ws)
        orchestrator = NegotiationOrchestrator(
            channel.send,
            connection_factory,
            media=media,
            close_channel=channel.close,
            **callbacks,
        )
        await orchestrator.start_media()
        channel.start(orchestrator)
        try:
            await channel.ready
            if create:
                await orchestrator.create_room(room_id, display_name)
            else:
                await orchestrator.join_room(room_id, display_name)
            yield orchestrator
        finally:
            await orchestrator.shutdown()
            await channel.stop()
