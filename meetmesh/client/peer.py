"""Per-remote connection wrapper tracking negotiation state."""
from __future__ import annotations

import enum
import logging
from typing import Awaitable, Callable, Iterable, Sequence

from .interfaces import (
    ConnectionEvents,
    ConnectionFactory,
    IceCandidate,
    MediaTrack,
    SessionDescription,
)

logger = logging.getLogger(__name__)


class PeerState(str, enum.Enum):
    ABSENT = "absent"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    CLOSED = "closed"


class PeerLinkClosedError(RuntimeError):
    pass


RemoteTrackCallback = Callable[[str, MediaTrack], Awaitable[None]]
LocalCandidateCallback = Callable[[str, IceCandidate], Awaitable[None]]
StateCallback = Callable[["PeerLink", str], Awaitable[None]]


class PeerLink:
    """Own exactly one real-time connection to one remote session.

    The link moves to ``CLOSED`` only through :meth:`close`. Engine events
    that arrive after that are ignored.
    """

    def __init__(
        self,
        remote_session_id: str,
        factory: ConnectionFactory,
        ice_servers: Sequence[str] = (),
        *,
        local_tracks: Iterable[MediaTrack] = (),
        on_remote_track: RemoteTrackCallback | None = None,
        on_local_ice_candidate: LocalCandidateCallback | None = None,
        on_state_change: StateCallback | None = None,
    ) -> None:
        self.remote_session_id = remote_session_id
        self.state = PeerState.ABSENT
        self.offer_pending = False
        self._on_remote_track = on_remote_track
        self._on_local_ice_candidate = on_local_ice_candidate
        self._on_state_change = on_state_change
        self._connection = factory(
            list(ice_servers),
            ConnectionEvents(
                on_track=self._handle_track,
                on_ice_candidate=self._handle_candidate,
                on_state_change=self._handle_state,
            ),
        )
        for track in local_tracks:
            self._connection.add_track(track)

    @property
    def closed(self) -> bool:
        return self.state is PeerState.CLOSED

    def _ensure_open(self) -> None:
        if self.closed:
            raise PeerLinkClosedError(f"link to {self.remote_session_id} is closed")

    def _mark_negotiating(self) -> None:
        # Renegotiating an established link does not drop it out of CONNECTED.
        if self.state is not PeerState.CONNECTED:
            self.state = PeerState.NEGOTIATING

    async def create_offer(self) -> SessionDescription:
        self._ensure_open()
        offer = await self._connection.create_offer()
        await self._connection.set_local_description(offer)
        self.offer_pending = True
        self._mark_negotiating()
        return offer

    async def accept_offer(self, sdp: SessionDescription) -> SessionDescription:
        """Apply a remote offer and return the local answer."""

        self._ensure_open()
        await self._connection.set_remote_description(sdp)
        answer = await self._connection.create_answer()
        await self._connection.set_local_description(answer)
        self.offer_pending = False
        self._mark_negotiating()
        return answer

    async def accept_answer(self, sdp: SessionDescription) -> None:
        self._ensure_open()
        await self._connection.set_remote_description(sdp)
        self.offer_pending = False

    async def add_remote_candidate(self, candidate: IceCandidate) -> None:
        self._ensure_open()
        await self._connection.add_ice_candidate(candidate)

    async def replace_track(self, kind: str, track: MediaTrack | None) -> None:
        self._ensure_open()
        await self._connection.replace_track(kind, track)

    async def close(self) -> None:
        """Release the connection. Safe to call any number of times."""

        if self.closed:
            return
        self.state = PeerState.CLOSED
        self.offer_pending = False
        try:
            await self._connection.close()
        except Exception as exc:  # noqa: BLE001 - teardown must always complete
            logger.warning("Closing connection to %s failed: %s", self.remote_session_id, exc)

    async def _handle_track(self, track: MediaTrack) -> None:
        if self.closed or self._on_remote_track is None:
            return
        await self._on_remote_track(self.remote_session_id, track)

    async def _handle_candidate(self, candidate: IceCandidate) -> None:
        if self.closed or self._on_local_ice_candidate is None or candidate is None:
            return
        await self._on_local_ice_candidate(self.remote_session_id, candidate)

    async def _handle_state(self, state: str) -> None:
        if self.closed:
            return
        if state == "connected":
            self.state = PeerState.CONNECTED
        if self._on_state_change is not None:
            await self._on_state_change(self, state)
