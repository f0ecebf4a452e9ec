"""Dispatch inbound client messages onto registry and relay operations."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from ..schemas import signaling as schemas
from .policy import is_host, may_send_chat
from .presence import PresenceHandler
from .registry import NotRoomHostError, NotRoomMemberError, RoomError, RoomNotFoundError, RoomRegistry
from .relay import SignalingRelay

logger = logging.getLogger(__name__)


class SignalingService:
    """Server side of the signaling protocol for every connected session."""

    def __init__(
        self,
        registry: RoomRegistry,
        relay: SignalingRelay,
        presence: PresenceHandler,
        *,
        ice_servers: list[str] | None = None,
    ) -> None:
        self.registry = registry
        self.relay = relay
        self.presence = presence
        self.ice_servers = list(ice_servers or [])

    def session_ready(self, session_id: str) -> schemas.SessionReady:
        return schemas.SessionReady(session_id=session_id, ice_servers=self.ice_servers)

    async def handle(self, session_id: str, message: schemas.WireMessage) -> None:
        """Apply one client message on behalf of ``session_id``.

        Room-level refusals are reported to the sender as ``error`` messages;
        they never propagate to the transport loop.
        """

        try:
            await self._dispatch(session_id, message)
        except RoomError as exc:
            logger.info("Rejected %s from %s: %s", message.type, session_id, exc)
            await self.relay.send_to(session_id, schemas.ErrorMessage(detail=str(exc)))

    async def _dispatch(self, session_id: str, message: schemas.WireMessage) -> None:
        if isinstance(message, schemas.CreateRoom):
            await self.registry.create_room(message.room_id, session_id, message.display_name)
        elif isinstance(message, schemas.JoinRoom):
            await self.registry.join_room(message.room_id, session_id, message.display_name)
        elif isinstance(message, schemas.SendOffer):
            await self.relay.send_to(
                message.to,
                schemas.RelayedOffer(
                    sender=session_id, to=message.to, sdp=message.sdp, display_name=message.display_name
                ),
            )
        elif isinstance(message, schemas.SendAnswer):
            await self.relay.send_to(
                message.to, schemas.RelayedAnswer(sender=session_id, to=message.to, sdp=message.sdp)
            )
        elif isinstance(message, schemas.SendIceCandidate):
            await self.relay.send_to(
                message.to,
                schemas.RelayedIceCandidate(sender=session_id, to=message.to, candidate=message.candidate),
            )
        elif isinstance(message, schemas.SendChat):
            await self._broadcast_chat(session_id, message)
        elif isinstance(message, schemas.EndRoom):
            await self.registry.end_room(message.room_id, requested_by=session_id)
        elif isinstance(message, schemas.RequestAdminAction):
            await self._admin_action(session_id, message)
        else:
            logger.warning("Unhandled message type %s from %s", message.type, session_id)

    async def _broadcast_chat(self, session_id: str, message: schemas.SendChat) -> None:
        room = self.registry.get(message.room_id)
        if room is None:
            logger.debug("Dropping chat for unknown room %s", message.room_id)
            return
        if not may_send_chat(room, session_id):
            raise NotRoomMemberError(message.room_id)
        await self.relay.broadcast(
            list(room.members),
            schemas.ChatBroadcast(
                room_id=message.room_id,
                sender=session_id,
                display_name=message.display_name,
                text=message.text,
                timestamp=datetime.now(timezone.utc),
            ),
        )

    async def _admin_action(self, session_id: str, message: schemas.RequestAdminAction) -> None:
        room = self.registry.get(message.room_id)
        if room is None:
            raise RoomNotFoundError(message.room_id)
        if not is_host(room, session_id):
            raise NotRoomHostError(message.room_id)
        await self.relay.broadcast(
            list(room.members),
            schemas.AdminActionBroadcast(
                room_id=message.room_id,
                sender=session_id,
                action=message.action,
                target_session_id=message.target_session_id,
            ),
        )

    async def disconnect(self, session_id: str) -> list[str]:
        return await self.presence.disconnect(session_id)

    def close(self) -> None:
        self.registry.close()
        self.relay.close()
