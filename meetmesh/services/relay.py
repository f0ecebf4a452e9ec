"""In-memory signaling relay keyed by session id."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable

from ..schemas.signaling import WireMessage

logger = logging.getLogger(__name__)

SendCallable = Callable[[dict], Awaitable[None]]


@dataclass(slots=True)
class SignalingConnection:
    """Connection wrapper for a signaling session."""

    session_id: str
    send: SendCallable


class SignalingRelay:
    """Route messages to connected sessions, dropping anything addressed to an absent one.

    The relay never interprets payloads and never queues: a message for a
    session that is not registered at send time is discarded.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, SignalingConnection] = {}

    def register(self, connection: SignalingConnection) -> None:
        self._connections[connection.session_id] = connection

    def unregister(self, session_id: str) -> SignalingConnection | None:
        """Forget a session; returns the removed connection, or None if already gone."""

        return self._connections.pop(session_id, None)

    def is_connected(self, session_id: str) -> bool:
        return session_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    async def send_to(self, session_id: str, message: WireMessage) -> bool:
        """Deliver to one session. Returns False when the message was dropped."""

        connection = self._connections.get(session_id)
        if connection is None:
            logger.debug("Dropping %s for absent session %s", message.type, session_id)
            return False
        try:
            await connection.send(message.to_wire())
        except Exception as exc:  # noqa: BLE001 - a dead socket must not fail the sender
            logger.warning("Send to session %s failed: %s", session_id, exc)
            return False
        return True

    async def broadcast(
        self,
        session_ids: Iterable[str],
        message: WireMessage,
        *,
        exclude: str | None = None,
    ) -> None:
        """Send to every listed session except ``exclude``."""

        payload = message.to_wire()
        targets = [
            connection
            for session_id in session_ids
            if session_id != exclude and (connection := self._connections.get(session_id)) is not None
        ]
        if not targets:
            return

        results = await asyncio.gather(*(target.send(payload) for target in targets), return_exceptions=True)
        for target, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("Broadcast to session %s failed: %s", target.session_id, result)

    def close(self) -> None:
        self._connections.clear()
