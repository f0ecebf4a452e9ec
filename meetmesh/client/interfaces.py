"""Contracts for the media engine the client drives but does not implement."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol, Sequence

SessionDescription = Any
IceCandidate = Any
MediaTrack = Any

TrackHandler = Callable[[MediaTrack], Awaitable[None]]
CandidateHandler = Callable[[IceCandidate], Awaitable[None]]
StateHandler = Callable[[str], Awaitable[None]]


@dataclass(slots=True)
class ConnectionEvents:
    """Callbacks a real-time connection invokes as things happen underneath it.

    ``on_state_change`` receives the engine's connection state name
    (``"connected"``, ``"failed"``, ``"closed"``...).
    """

    on_track: TrackHandler
    on_ice_candidate: CandidateHandler
    on_state_change: StateHandler


class RealtimeConnection(Protocol):
    def add_track(self, track: MediaTrack) -> None: ...

    async def replace_track(self, kind: str, track: MediaTrack | None) -> None: ...

    async def create_offer(self) -> SessionDescription: ...

    async def create_answer(self) -> SessionDescription: ...

    async def set_local_description(self, description: SessionDescription) -> None: ...

    async def set_remote_description(self, description: SessionDescription) -> None: ...

    async def add_ice_candidate(self, candidate: IceCandidate) -> None: ...

    async def close(self) -> None: ...


ConnectionFactory = Callable[[Sequence[str], ConnectionEvents], RealtimeConnection]


class MediaUnavailableError(RuntimeError):
    """Capture device missing or permission denied."""


class MediaSource(Protocol):
    async def acquire(self) -> Sequence[MediaTrack]:
        """Return local tracks or raise ``MediaUnavailableError``."""
        ...

    def stop(self) -> None: ...
