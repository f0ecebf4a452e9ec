"""Signaling websocket endpoint."""
from __future__ import annotations

import logging
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from ..schemas.signaling import ErrorMessage, client_message_adapter
from ..services.relay import SignalingConnection
from ..services.signaling import SignalingService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_signaling_service(websocket: WebSocket) -> SignalingService:
    return websocket.app.state.signaling


@router.websocket("/ws")
async def signaling_endpoint(websocket: WebSocket) -> None:
    """One signaling session per socket; the session id is assigned here."""

    service = get_signaling_service(websocket)
    session_id = uuid4().hex
    await websocket.accept()

    service.presence.connect(SignalingConnection(session_id=session_id, send=websocket.send_json))
    await service.relay.send_to(session_id, service.session_ready(session_id))

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            # Binary frames carry the same JSON as text frames.
            raw = frame.get("text") or frame.get("bytes") or ""
            try:
                message = client_message_adapter.validate_json(raw)
            except ValidationError as exc:
                logger.warning("Malformed message from %s: %s", session_id, exc.errors(include_url=False))
                await service.relay.send_to(session_id, ErrorMessage(detail="malformed message"))
                continue
            await service.handle(session_id, message)
    except WebSocketDisconnect:
        pass
    finally:
        await service.disconnect(session_id)
