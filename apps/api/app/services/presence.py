"""Room presence: joins, leaves, sharing state and chat fan-out."""
from __future__ import annotations

import logging
import time

from ..schemas.signaling import (
    ChatMessage,
    LeaveReason,
    MemberInfo,
    OutboundEventType,
    RoomInfo,
    RoomJoined,
    UserJoined,
    UserLeft,
    UserSharing,
    UserUpdated,
)
from .broadcast import Broadcaster
from .rooms import JoinResult, Member, RoomNotFound, RoomStore, default_display_name

logger = logging.getLogger(__name__)


def member_info(member: Member) -> MemberInfo:
    return MemberInfo(id=member.connection_id, username=member.display_name, is_sharing=member.is_sharing)


class PresenceService:
    """Apply membership changes and broadcast the resulting deltas.

    Every public coroutine takes the store lock for the whole
    mutate-then-broadcast step.
    """

    def __init__(self, store: RoomStore, broadcaster: Broadcaster, *, auto_create: bool = True) -> None:
        self._store = store
        self._broadcaster = broadcaster
        self._auto_create = auto_create

    async def join_room(self, connection_id: str, room_id: str, username: str | None = None) -> JoinResult:
        """Join a named room, creating it first when auto-create is enabled."""

        display_name = username or default_display_name(connection_id)
        async with self._store.lock:
            result = self._store.join(room_id, connection_id, display_name, create=self._auto_create)
            self._announce_join(result)
            self._broadcaster.to_connection(
                connection_id,
                OutboundEventType.ROOM_INFO,
                RoomInfo(room_id=room_id, user_count=result.member_count),
            )
        logger.info("%s joined room %s (%d members)", connection_id, room_id, result.member_count)
        return result

    async def join_code(self, connection_id: str, room_code: str, username: str | None = None) -> JoinResult:
        """Join an existing room by code; the connection leaves any other room first."""

        display_name = username or default_display_name(connection_id)
        async with self._store.lock:
            if self._store.get(room_code) is None:
                raise RoomNotFound(room_code)
            self._leave_all(connection_id, LeaveReason.LEFT, keep=room_code)
            result = self._store.join(room_code, connection_id, display_name)
            self._announce_join(result)
            self._broadcaster.to_connection(
                connection_id,
                OutboundEventType.ROOM_JOINED,
                RoomJoined(room_code=room_code, user_count=result.member_count),
            )
        logger.info("%s joined room code %s (%d members)", connection_id, room_code, result.member_count)
        return result

    async def create_room(
        self,
        connection_id: str,
        username: str | None = None,
        desired_id: str | None = None,
    ) -> JoinResult:
        """Allocate a room, make the caller its only member and report the code."""

        display_name = username or default_display_name(connection_id)
        async with self._store.lock:
            room_id = self._store.allocate_room_id(desired_id)
            self._leave_all(connection_id, LeaveReason.LEFT)
            result = self._store.create_room(connection_id, display_name, room_id)
            self._broadcaster.to_connection(
                connection_id,
                OutboundEventType.ROOM_CREATED,
                RoomJoined(room_code=result.room.room_id, user_count=result.member_count),
            )
        return result

    async def leave_room(self, connection_id: str, room_id: str | None = None) -> int:
        """Leave one room, or every room when ``room_id`` is omitted."""

        async with self._store.lock:
            if room_id is None:
                return self._leave_all(connection_id, LeaveReason.LEFT)
            return int(self._leave(room_id, connection_id, LeaveReason.LEFT))

    async def disconnect(self, connection_id: str) -> int:
        """Registry listener: remove a vanished connection from all of its rooms."""

        async with self._store.lock:
            return self._leave_all(connection_id, LeaveReason.DISCONNECTED)

    async def set_sharing(self, connection_id: str, room_id: str, flag: bool) -> bool:
        async with self._store.lock:
            member = self._store.set_sharing(room_id, connection_id, flag)
            if member is None:
                logger.debug("Sharing update from %s ignored for room %s", connection_id, room_id)
                return False
            room = self._store.get(room_id)
            self._broadcaster.to_room(
                room,
                OutboundEventType.USER_SHARING,
                UserSharing(id=connection_id, username=member.display_name, is_sharing=flag),
            )
        logger.info("%s %s sharing in room %s", connection_id, "started" if flag else "stopped", room_id)
        return True

    async def chat(self, connection_id: str, room_id: str, message: str, username: str | None = None) -> bool:
        async with self._store.lock:
            room = self._store.get(room_id)
            member = room.members.get(connection_id) if room is not None else None
            if member is None:
                logger.debug("Chat from %s dropped: not a member of %s", connection_id, room_id)
                return False
            self._broadcaster.to_room(
                room,
                OutboundEventType.CHAT_MESSAGE,
                ChatMessage(
                    sender_id=connection_id,
                    username=username or member.display_name,
                    message=message,
                    timestamp=int(time.time() * 1000),
                ),
            )
        return True

    def _announce_join(self, result: JoinResult) -> None:
        connection_id = result.member.connection_id
        self._broadcaster.to_connection(
            connection_id,
            OutboundEventType.EXISTING_USERS,
            [member_info(member) for member in result.existing],
        )
        if result.already_member:
            if result.renamed:
                self._broadcaster.to_room(
                    result.room,
                    OutboundEventType.USER_UPDATED,
                    UserUpdated(
                        id=connection_id,
                        username=result.member.display_name,
                        is_sharing=result.member.is_sharing,
                    ),
                    exclude=connection_id,
                )
            return
        self._broadcaster.to_room(
            result.room,
            OutboundEventType.USER_JOINED,
            UserJoined(id=connection_id, username=result.member.display_name, user_count=result.member_count),
            exclude=connection_id,
        )

    def _leave(self, room_id: str, connection_id: str, reason: LeaveReason) -> bool:
        result = self._store.leave(room_id, connection_id)
        if result is None:
            return False
        self._broadcaster.to_room(
            result.room,
            OutboundEventType.USER_LEFT,
            UserLeft(
                id=connection_id,
                username=result.member.display_name,
                user_count=result.member_count,
                reason=reason,
            ),
        )
        logger.info("%s left room %s (%s, %d remaining)", connection_id, room_id, reason.value, result.member_count)
        return True

    def _leave_all(self, connection_id: str, reason: LeaveReason, keep: str | None = None) -> int:
        left = 0
        for room_id in self._store.rooms_of(connection_id):
            if room_id != keep and self._leave(room_id, connection_id, reason):
                left += 1
        return left
