"""Room authorization and retention policies."""
from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Protocol

if TYPE_CHECKING:
    from .registry import Room

EndRoomPolicy = Literal["anyone", "host"]


def is_host(room: "Room", session_id: str) -> bool:
    return room.host_session_id is not None and room.host_session_id == session_id


def may_end_room(room: "Room", session_id: str, policy: EndRoomPolicy = "anyone") -> bool:
    """Return True if ``session_id`` is allowed to terminate ``room``.

    Under the default ``anyone`` policy every session may end the room.
    """

    if policy == "host":
        return is_host(room, session_id)
    return True


class RoomSweeper(Protocol):
    def should_discard(self, room: "Room") -> bool: ...


class KeepEmptyRooms:
    """Rooms live until explicitly ended."""

    def should_discard(self, room: "Room") -> bool:
        return False


class DiscardEmptyRooms:
    """Drop a room as soon as its last member leaves."""

    def should_discard(self, room: "Room") -> bool:
        return not room.members


def sweeper_for(discard_empty_rooms: bool) -> RoomSweeper:
    return DiscardEmptyRooms() if discard_empty_rooms else KeepEmptyRooms()


def may_send_chat(room: "Room", session_id: str) -> bool:
    """Only current members may post to a room's chat."""

    return session_id in room.members
