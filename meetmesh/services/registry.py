"""Room registry: membership state plus the notifications that go with it.

Every mutation of a room runs under that room's lock, and notifications
are fanned out while the lock is held. Clients therefore observe joins,
departures and termination in the same order the registry applied them.
"""
from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from typing import Dict, Set

from ..schemas.signaling import ExistingMembers, MemberInfo, MemberJoined, MemberLeft, RoomCreated, RoomEnded
from .policy import EndRoomPolicy, KeepEmptyRooms, RoomSweeper, may_end_room
from .relay import SignalingRelay

logger = logging.getLogger(__name__)


class RoomError(Exception):
    """Base class for room operation failures reported back to the caller."""


class RoomNotFoundError(RoomError):
    def __init__(self, room_id: str) -> None:
        super().__init__(f"Room {room_id!r} does not exist")
        self.room_id = room_id


class NotRoomHostError(RoomError):
    def __init__(self, room_id: str) -> None:
        super().__init__(f"Only the host may do that in room {room_id!r}")
        self.room_id = room_id


class NotRoomMemberError(RoomError):
    def __init__(self, room_id: str) -> None:
        super().__init__(f"Not a member of room {room_id!r}")
        self.room_id = room_id


@dataclass(slots=True)
class Member:
    display_name: str
    # Always True today; admission control would hook in here.
    admitted: bool = True


@dataclass
class Room:
    room_id: str
    host_session_id: str | None = None
    members: Dict[str, Member] = field(default_factory=dict)

    def member_infos(self, *, exclude: str | None = None) -> list[MemberInfo]:
        return [
            MemberInfo(session_id=session_id, display_name=member.display_name)
            for session_id, member in self.members.items()
            if session_id != exclude
        ]


class RoomRegistry:
    """Own the room table for the lifetime of the server process."""

    def __init__(
        self,
        relay: SignalingRelay,
        *,
        end_room_policy: EndRoomPolicy = "anyone",
        sweeper: RoomSweeper | None = None,
    ) -> None:
        self._relay = relay
        self._end_room_policy = end_room_policy
        self._sweeper = sweeper or KeepEmptyRooms()
        self._rooms: Dict[str, Room] = {}
        self._memberships: Dict[str, Set[str]] = {}
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, room_id: str) -> asyncio.Lock:
        lock = self._locks.get(room_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[room_id] = lock
        return lock

    def get(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def members(self, room_id: str) -> Dict[str, Member]:
        room = self._rooms.get(room_id)
        return dict(room.members) if room else {}

    def rooms_of(self, session_id: str) -> Set[str]:
        return set(self._memberships.get(session_id, ()))

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)

    async def create_room(self, room_id: str, session_id: str, display_name: str) -> Room:
        """Create a room, or take over hosting of an existing one."""

        async with self._lock_for(room_id):
            room = self._rooms.get(room_id)
            if room is None:
                room = Room(room_id=room_id)
                self._rooms[room_id] = room
            elif room.host_session_id not in (None, session_id):
                logger.info("Room %s re-created; host %s -> %s", room_id, room.host_session_id, session_id)

            room.host_session_id = session_id
            incumbents = [other for other in room.members if other != session_id]
            room.members[session_id] = Member(display_name=display_name)
            self._memberships.setdefault(session_id, set()).add(room_id)

            await self._relay.send_to(session_id, RoomCreated(room_id=room_id))
            if incumbents:
                await self._relay.broadcast(
                    incumbents, MemberJoined(session_id=session_id, display_name=display_name)
                )
            logger.info("Room %s created by %s", room_id, session_id)
            return room

    async def join_room(self, room_id: str, session_id: str, display_name: str) -> list[MemberInfo]:
        """Admit a session and return the members that were already present."""

        async with self._lock_for(room_id):
            room = self._rooms.get(room_id)
            if room is None:
                room = Room(room_id=room_id)
                self._rooms[room_id] = room

            existing = room.member_infos(exclude=session_id)
            room.members[session_id] = Member(display_name=display_name)
            self._memberships.setdefault(session_id, set()).add(room_id)

            await self._relay.send_to(session_id, ExistingMembers(room_id=room_id, participants=existing))
            await self._relay.broadcast(
                [info.session_id for info in existing],
                MemberJoined(session_id=session_id, display_name=display_name),
            )
            logger.info("%s (%s) joined room %s with %d others", session_id, display_name, room_id, len(existing))
            return existing

    async def remove_session(self, session_id: str) -> list[str]:
        """Remove a session from every room it belongs to; returns those room ids."""

        left: list[str] = []
        for room_id in sorted(self._memberships.pop(session_id, set())):
            async with self._lock_for(room_id):
                room = self._rooms.get(room_id)
                if room is None:
                    continue
                member = room.members.pop(session_id, None)
                if member is None:
                    continue
                left.append(room_id)
                await self._relay.broadcast(
                    room.members, MemberLeft(session_id=session_id, display_name=member.display_name)
                )
                if self._sweeper.should_discard(room):
                    self._discard(room)
                    logger.info("Room %s discarded after last member left", room_id)
        return left

    async def end_room(self, room_id: str, requested_by: str | None = None) -> list[str]:
        """Notify every member that the room is over and delete it.

        Returns the sessions that were notified. Raises ``NotRoomHostError``
        when the configured policy refuses ``requested_by``.
        """

        async with self._lock_for(room_id):
            room = self._rooms.get(room_id)
            if room is None:
                return []
            if requested_by is not None and not may_end_room(room, requested_by, self._end_room_policy):
                raise NotRoomHostError(room_id)

            recipients = list(room.members)
            self._discard(room)
            await self._relay.broadcast(recipients, RoomEnded(room_id=room_id))
            logger.info("Room %s ended by %s; notified %d members", room_id, requested_by, len(recipients))
            return recipients

    def _discard(self, room: Room) -> None:
        self._rooms.pop(room.room_id, None)
        for session_id in room.members:
            memberships = self._memberships.get(session_id)
            if memberships is not None:
                memberships.discard(room.room_id)
                if not memberships:
                    self._memberships.pop(session_id, None)

    def close(self) -> None:
        self._rooms.clear()
        self._memberships.clear()
