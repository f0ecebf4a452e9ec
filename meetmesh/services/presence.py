"""Session connect/disconnect handling."""
from __future__ import annotations

import logging

from .registry import RoomRegistry
from .relay import SignalingConnection, SignalingRelay

logger = logging.getLogger(__name__)


class PresenceHandler:
    """Bind transport lifetime to relay routing and room membership."""

    def __init__(self, registry: RoomRegistry, relay: SignalingRelay) -> None:
        self._registry = registry
        self._relay = relay

    def connect(self, connection: SignalingConnection) -> None:
        self._relay.register(connection)
        logger.info("Session %s connected", connection.session_id)

    async def disconnect(self, session_id: str) -> list[str]:
        """Tear down a session exactly once; returns the rooms it was removed from.

        Routing is dropped before membership so that any relay lookup racing
        with the removal already sees the session as gone.
        """

        if self._relay.unregister(session_id) is None:
            return []
        rooms = await self._registry.remove_session(session_id)
        logger.info("Session %s disconnected; left rooms %s", session_id, rooms)
        return rooms
