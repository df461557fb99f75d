"""Wire contracts for the signaling WebSocket.

Every frame in either direction is a JSON object ``{"type": ..., "data": ...}``.
Payload keys are camelCase on the wire and snake_case in Python.
"""
from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

MAX_ROOM_ID_LENGTH = 64
MAX_USERNAME_LENGTH = 64
MAX_CHAT_LENGTH = 2000


class InboundEventType(str, enum.Enum):
    JOIN_ROOM = "join-room"
    CREATE_ROOM = "create-room"
    LEAVE_ROOM = "leave-room"
    START_SHARING = "start-sharing"
    STOP_SHARING = "stop-sharing"
    CHAT_MESSAGE = "chat-message"
    WEBRTC_OFFER = "webrtc-offer"
    WEBRTC_ANSWER = "webrtc-answer"
    WEBRTC_ICE_CANDIDATE = "webrtc-ice-candidate"
    REQUEST_STREAM = "request-stream"


class OutboundEventType(str, enum.Enum):
    CONNECTED = "connected"
    EXISTING_USERS = "existing-users"
    ROOM_INFO = "room-info"
    ROOM_CREATED = "room-created"
    ROOM_JOINED = "room-joined"
    USER_JOINED = "user-joined"
    USER_LEFT = "user-left"
    USER_SHARING = "user-sharing"
    USER_UPDATED = "user-updated"
    CHAT_MESSAGE = "chat-message"
    WEBRTC_OFFER = "webrtc-offer"
    WEBRTC_ANSWER = "webrtc-answer"
    WEBRTC_ICE_CANDIDATE = "webrtc-ice-candidate"
    REQUEST_STREAM = "request-stream"
    ROOM_ERROR = "room-error"


class LeaveReason(str, enum.Enum):
    LEFT = "left"
    DISCONNECTED = "disconnected"


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class InboundMessage(BaseModel):
    """Envelope for client frames; ``data`` is validated per event type."""

    type: InboundEventType
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def _default_data(cls, value: object) -> object:
        return {} if value is None else value


def _clean_optional(value: object) -> object:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class JoinRoomRequest(WireModel):
    room_id: str | None = Field(default=None, max_length=MAX_ROOM_ID_LENGTH)
    room_code: str | None = Field(default=None, max_length=MAX_ROOM_ID_LENGTH)
    username: str | None = Field(default=None, max_length=MAX_USERNAME_LENGTH)

    @field_validator("room_id", "username", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return _clean_optional(value)

    @field_validator("room_code", mode="before")
    @classmethod
    def _normalise_code(cls, value: object) -> object:
        value = _clean_optional(value)
        return value.upper() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _one_target(self) -> "JoinRoomRequest":
        if (self.room_id is None) == (self.room_code is None):
            raise ValueError("exactly one of roomId or roomCode is required")
        return self


class CreateRoomRequest(WireModel):
    room_id: str | None = Field(default=None, max_length=MAX_ROOM_ID_LENGTH)
    username: str | None = Field(default=None, max_length=MAX_USERNAME_LENGTH)

    @field_validator("room_id", "username", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return _clean_optional(value)


class LeaveRoomRequest(WireModel):
    room_id: str | None = Field(default=None, max_length=MAX_ROOM_ID_LENGTH)

    @field_validator("room_id", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return _clean_optional(value)


class SharingRequest(WireModel):
    room_id: str = Field(..., min_length=1, max_length=MAX_ROOM_ID_LENGTH)

    @field_validator("room_id", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return _clean_optional(value)


class ChatMessageRequest(WireModel):
    room_id: str = Field(..., min_length=1, max_length=MAX_ROOM_ID_LENGTH)
    message: str = Field(..., min_length=1, max_length=MAX_CHAT_LENGTH)
    username: str | None = Field(default=None, max_length=MAX_USERNAME_LENGTH)

    @field_validator("message", mode="before")
    @classmethod
    def _strip_message(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("room_id", "username", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return _clean_optional(value)


class SignalRequest(WireModel):
    """Offer, answer or ICE candidate addressed to one peer."""

    target_id: str = Field(..., min_length=1)
    payload: Any
    room_id: str | None = None

    @field_validator("room_id", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return _clean_optional(value)


class StreamRequest(WireModel):
    room_id: str = Field(..., min_length=1, max_length=MAX_ROOM_ID_LENGTH)
    target_id: str = Field(..., min_length=1)

    @field_validator("room_id", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return _clean_optional(value)


class Connected(WireModel):
    id: str


class MemberInfo(WireModel):
    id: str
    username: str
    is_sharing: bool = False


class RoomInfo(WireModel):
    room_id: str
    user_count: int


class RoomJoined(WireModel):
    room_code: str
    user_count: int


class UserJoined(WireModel):
    id: str
    username: str
    user_count: int


class UserLeft(WireModel):
    id: str
    username: str
    user_count: int
    reason: LeaveReason


class UserSharing(WireModel):
    id: str
    username: str
    is_sharing: bool


class UserUpdated(WireModel):
    id: str
    username: str
    is_sharing: bool


class ChatMessage(WireModel):
    sender_id: str
    username: str
    message: str
    timestamp: int = Field(..., description="Server receive time in epoch milliseconds")


class RelayedSignal(WireModel):
    sender_id: str = Field(..., alias="from")
    room_id: str | None = None
    payload: Any = None


class StreamRequested(WireModel):
    sender_id: str = Field(..., alias="from")
    room_id: str


class RoomErrorPayload(WireModel):
    code: str
    message: str
    room_id: str | None = None


class RoomSnapshot(WireModel):
    """HTTP read model for a single room."""

    room_id: str
    created_at: str
    user_count: int
    members: list[MemberInfo]


class PeersResponse(BaseModel):
    peers: list[str]
    count: int
