"""Client-side negotiation state machine for a full-mesh room.

The orchestrator consumes parsed server messages and emits client messages
through a single ``send`` coroutine, so it can be driven by a live websocket
or directly from tests.

Both the newcomer and every incumbent start an offer toward each other. When
the two offers cross (glare), the side with the smaller session id keeps its
offer and ignores the incoming one; the other side drops its own link and
answers instead. At steady state there is exactly one link per remote.
"""
from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Any, Awaitable, Callable, Dict, Sequence

from ..schemas import signaling as schemas
from .interfaces import ConnectionFactory, MediaSource, MediaTrack, MediaUnavailableError
from .peer import PeerLink, PeerState

logger = logging.getLogger(__name__)

SendCallable = Callable[[schemas.WireMessage], Awaitable[None]]
CloseCallable = Callable[[], Awaitable[None]]
MessageCallback = Callable[[Any], Awaitable[None]]
TrackCallback = Callable[[str, MediaTrack], Awaitable[None]]

_LINK_FAILURE_STATES = frozenset({"failed", "closed"})


class NegotiationOrchestrator:
    """Decide, per remote session, whether to offer or answer, and own the resulting links."""

    def __init__(
        self,
        send: SendCallable,
        connection_factory: ConnectionFactory,
        *,
        media: MediaSource | None = None,
        close_channel: CloseCallable | None = None,
        on_remote_track: TrackCallback | None = None,
        on_chat: MessageCallback | None = None,
        on_peer_left: MessageCallback | None = None,
        on_admin_action: MessageCallback | None = None,
        on_room_ended: MessageCallback | None = None,
        on_error: MessageCallback | None = None,
    ) -> None:
        self._send_message = send
        self._connection_factory = connection_factory
        self._media = media
        self._close_channel = close_channel
        self._on_remote_track = on_remote_track
        self._on_chat = on_chat
        self._on_peer_left = on_peer_left
        self._on_admin_action = on_admin_action
        self._on_room_ended = on_room_ended
        self._on_error = on_error

        self.session_id: str | None = None
        self.ice_servers: list[str] = []
        self.room_id: str | None = None
        self.display_name = ""
        self.peers: Dict[str, str] = {}
        self.links: Dict[str, PeerLink] = {}
        self.local_tracks: list[MediaTrack] = []
        self.receive_only = False

        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._media_acquired = False
        self._shut_down = False

    # -- state ---------------------------------------------------------

    @property
    def joined(self) -> bool:
        return self.room_id is not None

    @property
    def shut_down(self) -> bool:
        return self._shut_down

    def state_of(self, remote_session_id: str) -> PeerState:
        link = self.links.get(remote_session_id)
        return link.state if link is not None else PeerState.ABSENT

    def is_designated_offerer(self, remote_session_id: str) -> bool:
        """The smaller session id wins offer glare."""

        return self.session_id is not None and self.session_id < remote_session_id

    def _lock_for(self, remote_session_id: str) -> asyncio.Lock:
        # Entries vanish once no operation holds or awaits the lock.
        lock = self._locks.get(remote_session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[remote_session_id] = lock
        return lock

    # -- local media -----------------------------------------------------

    async def start_media(self) -> Sequence[MediaTrack]:
        """Acquire capture tracks; on failure continue receive-only."""

        if self._media is None:
            self.receive_only = True
            return []
        try:
            self.local_tracks = list(await self._media.acquire())
        except MediaUnavailableError as exc:
            logger.warning("Local media unavailable, joining receive-only: %s", exc)
            self.receive_only = True
            self.local_tracks = []
            return []
        self._media_acquired = True
        return self.local_tracks

    def _release_media(self) -> None:
        if not self._media_acquired or self._media is None:
            return
        self._media_acquired = False
        self.local_tracks = []
        self._media.stop()

    # -- outbound room commands -------------------------------------------

    async def _send(self, message: schemas.WireMessage) -> None:
        if self._shut_down:
            logger.debug("Channel closed; not sending %s", message.type)
            return
        await self._send_message(message)

    async def create_room(self, room_id: str, display_name: str) -> None:
        self.room_id = room_id
        self.display_name = display_name
        await self._send(schemas.CreateRoom(room_id=room_id, display_name=display_name))

    async def join_room(self, room_id: str, display_name: str) -> None:
        self.room_id = room_id
        self.display_name = display_name
        await self._send(schemas.JoinRoom(room_id=room_id, display_name=display_name))

    async def send_chat(self, text: str) -> None:
        if self.room_id is None:
            raise RuntimeError("not in a room")
        await self._send(schemas.SendChat(room_id=self.room_id, text=text, display_name=self.display_name))

    async def end_room(self) -> None:
        """Ask the server to end the room for everyone, then leave locally."""

        if self.room_id is not None:
            await self._send(schemas.EndRoom(room_id=self.room_id))
        await self.shutdown()

    async def send_admin_action(self, action: str, target_session_id: str | None = None) -> None:
        if self.room_id is None:
            raise RuntimeError("not in a room")
        await self._send(
            schemas.RequestAdminAction(room_id=self.room_id, action=action, target_session_id=target_session_id)
        )

    async def replace_video_track(self, track: MediaTrack | None) -> None:
        """Swap the outgoing video on every link, e.g. camera to screen share."""

        for link in list(self.links.values()):
            if not link.closed:
                await link.replace_track("video", track)

    # -- inbound dispatch --------------------------------------------------

    async def handle(self, message: schemas.WireMessage) -> None:
        if self._shut_down:
            return

        if isinstance(message, schemas.SessionReady):
            self.session_id = message.session_id
            self.ice_servers = list(message.ice_servers)
        elif isinstance(message, schemas.RoomCreated):
            logger.info("Room %s created", message.room_id)
        elif isinstance(message, schemas.ExistingMembers):
            for participant in message.participants:
                if participant.session_id == self.session_id:
                    continue
                self.peers[participant.session_id] = participant.display_name
                await self._guard(self.create_offer(participant.session_id), "offer", participant.session_id)
        elif isinstance(message, schemas.MemberJoined):
            if message.session_id != self.session_id:
                self.peers[message.session_id] = message.display_name
                await self._guard(self.create_offer(message.session_id), "offer", message.session_id)
        elif isinstance(message, schemas.MemberLeft):
            self.peers.pop(message.session_id, None)
            await self.close_link(message.session_id)
            if self._on_peer_left is not None:
                await self._on_peer_left(message)
        elif isinstance(message, schemas.RelayedOffer):
            if message.display_name:
                self.peers.setdefault(message.sender, message.display_name)
            await self._guard(self.handle_offer(message.sender, message.sdp), "answer", message.sender)
        elif isinstance(message, schemas.RelayedAnswer):
            await self._guard(self.handle_answer(message.sender, message.sdp), "apply answer", message.sender)
        elif isinstance(message, schemas.RelayedIceCandidate):
            await self._guard(
                self.handle_ice_candidate(message.sender, message.candidate), "add candidate", message.sender
            )
        elif isinstance(message, schemas.ChatBroadcast):
            if self._on_chat is not None:
                await self._on_chat(message)
        elif isinstance(message, schemas.RoomEnded):
            if self.room_id is None or message.room_id == self.room_id:
                logger.info("Room %s ended", message.room_id)
                await self.shutdown()
                if self._on_room_ended is not None:
                    await self._on_room_ended(message)
        elif isinstance(message, schemas.AdminActionBroadcast):
            if self._on_admin_action is not None:
                await self._on_admin_action(message)
        elif isinstance(message, schemas.ErrorMessage):
            logger.warning("Server error: %s", message.detail)
            if self._on_error is not None:
                await self._on_error(message)

    async def _guard(self, operation: Awaitable[None], what: str, remote_session_id: str) -> None:
        # One peer's engine failure must not stall negotiation with the rest.
        try:
            await operation
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to %s for %s: %s", what, remote_session_id, exc)

    # -- negotiation -------------------------------------------------------

    def _create_link(self, remote_session_id: str) -> PeerLink:
        link = PeerLink(
            remote_session_id,
            self._connection_factory,
            self.ice_servers,
            local_tracks=self.local_tracks,
            on_remote_track=self._on_remote_track,
            on_local_ice_candidate=self._send_local_candidate,
            on_state_change=self._handle_link_state,
        )
        self.links[remote_session_id] = link
        return link

    async def create_offer(self, target_session_id: str) -> None:
        async with self._lock_for(target_session_id):
            if self._shut_down:
                return
            link = self.links.get(target_session_id) or self._create_link(target_session_id)
            offer = await link.create_offer()
            await self._send(schemas.SendOffer(to=target_session_id, sdp=offer, display_name=self.display_name))

    async def handle_offer(self, sender_session_id: str, sdp: Any) -> None:
        async with self._lock_for(sender_session_id):
            if self._shut_down:
                return
            link = self.links.get(sender_session_id)
            if link is not None and link.offer_pending:
                if self.is_designated_offerer(sender_session_id):
                    logger.debug("Offer glare with %s: keeping local offer", sender_session_id)
                    return
                logger.debug("Offer glare with %s: dropping local offer to answer", sender_session_id)
                await self._discard_link(sender_session_id)
                link = None
                if self._shut_down:
                    return

            link = link or self._create_link(sender_session_id)
            answer = await link.accept_offer(sdp)
            await self._send(schemas.SendAnswer(to=sender_session_id, sdp=answer))

    async def handle_answer(self, sender_session_id: str, sdp: Any) -> None:
        async with self._lock_for(sender_session_id):
            link = self.links.get(sender_session_id)
            if link is None or not link.offer_pending:
                logger.debug("Dropping stale answer from %s", sender_session_id)
                return
            await link.accept_answer(sdp)

    async def handle_ice_candidate(self, sender_session_id: str, candidate: Any) -> None:
        async with self._lock_for(sender_session_id):
            link = self.links.get(sender_session_id)
            if link is None:
                logger.debug("Dropping candidate from %s: no link yet", sender_session_id)
                return
            await link.add_remote_candidate(candidate)

    async def close_link(self, remote_session_id: str) -> None:
        async with self._lock_for(remote_session_id):
            await self._discard_link(remote_session_id)

    async def _discard_link(self, remote_session_id: str) -> None:
        link = self.links.pop(remote_session_id, None)
        if link is not None:
            await link.close()

    async def _send_local_candidate(self, remote_session_id: str, candidate: Any) -> None:
        await self._send(schemas.SendIceCandidate(to=remote_session_id, candidate=candidate))

    async def _handle_link_state(self, link: PeerLink, state: str) -> None:
        if state not in _LINK_FAILURE_STATES:
            return
        # Runs from inside engine callbacks, possibly while the link's lock is held.
        if self.links.get(link.remote_session_id) is link:
            self.links.pop(link.remote_session_id)
        logger.info("Link to %s went %s; closing", link.remote_session_id, state)
        await link.close()

    # -- teardown ----------------------------------------------------------

    async def shutdown(self) -> None:
        """Close every link, release media and the channel. Idempotent."""

        if self._shut_down:
            return
        self._shut_down = True
        links = list(self.links.values())
        self.links.clear()
        self._locks.clear()
        for link in links:
            await link.close()
        self._release_media()
        self.room_id = None
        self.peers.clear()
        if self._close_channel is not None:
            await self._close_channel()

    leave = shutdown
