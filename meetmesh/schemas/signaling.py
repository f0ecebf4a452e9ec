"""Wire contracts for the signaling websocket.

Every message is a JSON object tagged by ``type``. Client-originated and
server-originated messages are separate unions so each side validates only
what it can legitimately receive. ``sdp`` and ``candidate`` payloads are
opaque to the server.
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class WireMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# Client -> server


class CreateRoom(WireMessage):
    type: Literal["create-room"] = "create-room"
    room_id: str
    display_name: str = ""


class JoinRoom(WireMessage):
    type: Literal["join-room"] = "join-room"
    room_id: str
    display_name: str = ""


class SendOffer(WireMessage):
    type: Literal["offer"] = "offer"
    to: str
    sdp: Any
    display_name: str | None = None


class SendAnswer(WireMessage):
    type: Literal["answer"] = "answer"
    to: str
    sdp: Any


class SendIceCandidate(WireMessage):
    type: Literal["ice-candidate"] = "ice-candidate"
    to: str
    candidate: Any


class SendChat(WireMessage):
    type: Literal["chat-message"] = "chat-message"
    room_id: str
    text: str
    display_name: str = ""


class EndRoom(WireMessage):
    type: Literal["end-room"] = "end-room"
    room_id: str


class RequestAdminAction(WireMessage):
    type: Literal["admin-action"] = "admin-action"
    room_id: str
    action: str
    target_session_id: str | None = None


ClientMessage = Annotated[
    Union[
        CreateRoom,
        JoinRoom,
        SendOffer,
        SendAnswer,
        SendIceCandidate,
        SendChat,
        EndRoom,
        RequestAdminAction,
    ],
    Field(discriminator="type"),
]


# Server -> client


class MemberInfo(BaseModel):
    session_id: str
    display_name: str


class SessionReady(WireMessage):
    type: Literal["session"] = "session"
    session_id: str
    ice_servers: list[str] = Field(default_factory=list)


class RoomCreated(WireMessage):
    type: Literal["room-created"] = "room-created"
    room_id: str


class ExistingMembers(WireMessage):
    type: Literal["existing-participants"] = "existing-participants"
    room_id: str
    participants: list[MemberInfo] = Field(default_factory=list)


class MemberJoined(WireMessage):
    type: Literal["user-joined"] = "user-joined"
    session_id: str
    display_name: str


class MemberLeft(WireMessage):
    type: Literal["user-left"] = "user-left"
    session_id: str
    display_name: str = ""


class RelayedOffer(WireMessage):
    type: Literal["offer"] = "offer"
    sender: str = Field(alias="from")
    to: str
    sdp: Any
    display_name: str | None = None


class RelayedAnswer(WireMessage):
    type: Literal["answer"] = "answer"
    sender: str = Field(alias="from")
    to: str
    sdp: Any


class RelayedIceCandidate(WireMessage):
    type: Literal["ice-candidate"] = "ice-candidate"
    sender: str = Field(alias="from")
    to: str
    candidate: Any


class ChatBroadcast(WireMessage):
    type: Literal["chat-message"] = "chat-message"
    room_id: str
    sender: str = Field(alias="from")
    display_name: str
    text: str
    timestamp: datetime


class RoomEnded(WireMessage):
    type: Literal["room-ended"] = "room-ended"
    room_id: str


class AdminActionBroadcast(WireMessage):
    type: Literal["admin-action"] = "admin-action"
    room_id: str
    sender: str = Field(alias="from")
    action: str
    target_session_id: str | None = None


class ErrorMessage(WireMessage):
    type: Literal["error"] = "error"
    detail: str


ServerMessage = Annotated[
    Union[
        SessionReady,
        RoomCreated,
        ExistingMembers,
        MemberJoined,
        MemberLeft,
        RelayedOffer,
        RelayedAnswer,
        RelayedIceCandidate,
        ChatBroadcast,
        RoomEnded,
        AdminActionBroadcast,
        ErrorMessage,
    ],
    Field(discriminator="type"),
]

client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)
server_message_adapter: TypeAdapter[ServerMessage] = TypeAdapter(ServerMessage)
