"""In-memory room table with membership and eviction bookkeeping.

The store itself never awaits. Callers hold :attr:`RoomStore.lock` around a
mutation and the broadcasts it triggers so that every snapshot handed to a
client matches the member set at that moment.
"""
from __future__ import annotations

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Literal, Optional

from ..core.config import ROOM_CODE_ALPHABET

EvictionPolicy = Literal["immediate", "sweep"]

logger = logging.getLogger(__name__)


class RoomError(Exception):
    """Base class for room failures reported back to the requesting client."""

    code = "room-error"

    def __init__(self, room_id: str | None, message: str) -> None:
        super().__init__(message)
        self.room_id = room_id
        self.message = message


class RoomNotFound(RoomError):
    code = "room-not-found"

    def __init__(self, room_id: str) -> None:
        super().__init__(room_id, f"Room {room_id} does not exist")


class RoomConflict(RoomError):
    code = "room-conflict"

    def __init__(self, room_id: str) -> None:
        super().__init__(room_id, f"Room {room_id} already exists")


class RoomCodeUnavailable(RoomError):
    code = "room-code-unavailable"

    def __init__(self) -> None:
        super().__init__(None, "Could not allocate a free room code")


@dataclass(slots=True)
class Member:
    connection_id: str
    display_name: str
    is_sharing: bool = False
    joined_at: float = field(default_factory=time.time)


@dataclass(slots=True)
class Room:
    room_id: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    members: Dict[str, Member] = field(default_factory=dict)
    empty_since: Optional[float] = None

    def __len__(self) -> int:
        return len(self.members)

    def others(self, connection_id: str) -> list[Member]:
        return [member for member_id, member in self.members.items() if member_id != connection_id]


@dataclass(slots=True)
class JoinResult:
    room: Room
    member: Member
    existing: list[Member]
    member_count: int
    already_member: bool = False
    renamed: bool = False


@dataclass(slots=True)
class LeaveResult:
    room: Room
    member: Member
    member_count: int
    room_removed: bool


def default_display_name(connection_id: str) -> str:
    return f"User-{connection_id[:6]}"


def generate_room_code(length: int = 6, alphabet: str = ROOM_CODE_ALPHABET) -> str:
    """Return a random code drawn uniformly from ``alphabet``."""

    return "".join(secrets.choice(alphabet) for _ in range(length))


class RoomStore:
    """Rooms keyed by id, plus the reverse index of rooms per connection."""

    def __init__(
        self,
        *,
        eviction: EvictionPolicy = "immediate",
        empty_ttl_seconds: float = 3600,
        code_length: int = 6,
        code_alphabet: str = ROOM_CODE_ALPHABET,
        code_max_attempts: int = 10,
        code_fallback_length: int = 8,
    ) -> None:
        self.lock = asyncio.Lock()
        self._rooms: Dict[str, Room] = {}
        self._memberships: Dict[str, set[str]] = {}
        self._eviction = eviction
        self._empty_ttl = empty_ttl_seconds
        self._code_length = code_length
        self._code_alphabet = code_alphabet
        self._code_max_attempts = code_max_attempts
        self._code_fallback_length = code_fallback_length

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def rooms_of(self, connection_id: str) -> list[str]:
        return sorted(self._memberships.get(connection_id, ()))

    def create_room(
        self,
        connection_id: str,
        display_name: str,
        desired_id: str | None = None,
    ) -> JoinResult:
        """Allocate a room and make ``connection_id`` its first member."""

        room_id = self.allocate_room_id(desired_id)
        room = Room(room_id=room_id)
        self._rooms[room_id] = room
        logger.info("Room created: %s", room_id)
        return self._add_member(room, connection_id, display_name)

    def allocate_room_id(self, desired_id: str | None = None) -> str:
        """Pick the id for a new room without touching the table.

        Raises :class:`RoomConflict` for a taken ``desired_id`` and
        :class:`RoomCodeUnavailable` when no free code turns up.
        """

        if desired_id is None:
            return self._allocate_code()
        if desired_id in self._rooms:
            raise RoomConflict(desired_id)
        return desired_id

    def join(
        self,
        room_id: str,
        connection_id: str,
        display_name: str,
        *,
        create: bool = False,
    ) -> JoinResult:
        """Add a member, returning the other members and the new total."""

        room = self._rooms.get(room_id)
        if room is None:
            if not create:
                raise RoomNotFound(room_id)
            room = Room(room_id=room_id)
            self._rooms[room_id] = room
            logger.info("Room created on join: %s", room_id)

        existing = room.members.get(connection_id)
        if existing is not None:
            renamed = existing.display_name != display_name
            existing.display_name = display_name
            return JoinResult(
                room=room,
                member=existing,
                existing=room.others(connection_id),
                member_count=len(room),
                already_member=True,
                renamed=renamed,
            )
        return self._add_member(room, connection_id, display_name)

    def leave(self, room_id: str, connection_id: str, *, now: float | None = None) -> Optional[LeaveResult]:
        """Remove a member; returns None if it was not in the room."""

        room = self._rooms.get(room_id)
        if room is None:
            return None
        member = room.members.pop(connection_id, None)
        if member is None:
            return None

        rooms = self._memberships.get(connection_id)
        if rooms is not None:
            rooms.discard(room_id)
            if not rooms:
                self._memberships.pop(connection_id, None)

        removed = False
        if not room.members:
            if self._eviction == "immediate":
                self._rooms.pop(room_id, None)
                removed = True
                logger.info("Room removed: %s", room_id)
            else:
                room.empty_since = time.time() if now is None else now
        return LeaveResult(room=room, member=member, member_count=len(room), room_removed=removed)

    def set_sharing(self, room_id: str, connection_id: str, flag: bool) -> Optional[Member]:
        """Update the sharing flag; returns the member only when it changed."""

        room = self._rooms.get(room_id)
        if room is None:
            return None
        member = room.members.get(connection_id)
        if member is None or member.is_sharing == flag:
            return None
        member.is_sharing = flag
        return member

    def sweep(self, now: float | None = None) -> list[str]:
        """Evict empty rooms whose grace period has expired."""

        now = time.time() if now is None else now
        expired = [
            room_id
            for room_id, room in self._rooms.items()
            if not room.members
            and (
                self._eviction == "immediate"
                or room.empty_since is None
                or now - room.empty_since >= self._empty_ttl
            )
        ]
        for room_id in expired:
            self._rooms.pop(room_id, None)
        if expired:
            logger.info("Swept %d empty room(s)", len(expired))
        return expired

    def _add_member(self, room: Room, connection_id: str, display_name: str) -> JoinResult:
        existing = room.others(connection_id)
        member = Member(connection_id=connection_id, display_name=display_name)
        room.members[connection_id] = member
        room.empty_since = None
        self._memberships.setdefault(connection_id, set()).add(room.room_id)
        return JoinResult(room=room, member=member, existing=existing, member_count=len(room))

    def _allocate_code(self) -> str:
        for length in (self._code_length, self._code_fallback_length):
            for _ in range(self._code_max_attempts):
                code = generate_room_code(length, self._code_alphabet)
                if code not in self._rooms:
                    return code
            logger.warning("Room code collisions at length %d, widening", length)
        raise RoomCodeUnavailable()
