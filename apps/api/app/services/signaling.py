"""Signaling hub: wires the registry, rooms, presence and relay together."""
from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any, Awaitable, Callable, Dict, Type

from pydantic import BaseModel, ValidationError

from ..core.config import Settings, get_settings
from ..schemas import signaling as schemas
from .broadcast import Broadcaster
from .connections import ConnectionRegistry, SendCallable
from .presence import PresenceService
from .relay import SignalingRelay, SignalKind
from .rooms import RoomError, RoomStore

logger = logging.getLogger(__name__)

Handler = Callable[[str, Any], Awaitable[None]]


class SignalingHub:
    """Process-wide signaling state; created empty at startup, discarded at shutdown."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.connections = ConnectionRegistry(queue_size=self.settings.outbound_queue_size)
        self.rooms = RoomStore(
            eviction=self.settings.room_eviction,
            empty_ttl_seconds=self.settings.room_empty_ttl_seconds,
            code_length=self.settings.room_code_length,
            code_alphabet=self.settings.room_code_alphabet,
            code_max_attempts=self.settings.room_code_max_attempts,
            code_fallback_length=self.settings.room_code_fallback_length,
        )
        self.broadcaster = Broadcaster(self.connections)
        self.presence = PresenceService(
            self.rooms, self.broadcaster, auto_create=self.settings.auto_create_rooms
        )
        self.relay = SignalingRelay(self.broadcaster)
        self.connections.add_disconnect_listener(self.presence.disconnect)
        self._sweeper: asyncio.Task[None] | None = None

        events = schemas.InboundEventType
        self._handlers: Dict[schemas.InboundEventType, tuple[Type[BaseModel], Handler]] = {
            events.JOIN_ROOM: (schemas.JoinRoomRequest, self._on_join_room),
            events.CREATE_ROOM: (schemas.CreateRoomRequest, self._on_create_room),
            events.LEAVE_ROOM: (schemas.LeaveRoomRequest, self._on_leave_room),
            events.START_SHARING: (schemas.SharingRequest, self._on_start_sharing),
            events.STOP_SHARING: (schemas.SharingRequest, self._on_stop_sharing),
            events.CHAT_MESSAGE: (schemas.ChatMessageRequest, self._on_chat_message),
            events.WEBRTC_OFFER: (schemas.SignalRequest, self._relay_handler(SignalKind.OFFER)),
            events.WEBRTC_ANSWER: (schemas.SignalRequest, self._relay_handler(SignalKind.ANSWER)),
            events.WEBRTC_ICE_CANDIDATE: (schemas.SignalRequest, self._relay_handler(SignalKind.ICE_CANDIDATE)),
            events.REQUEST_STREAM: (schemas.StreamRequest, self._on_request_stream),
        }
        missing = set(events) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for inbound events: {sorted(item.value for item in missing)}")

    async def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="room-sweeper")

    async def shutdown(self) -> None:
        """Stop the sweeper and let queued deliveries finish."""

        if self._sweeper is not None:
            self._sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        await self.connections.drain(self.settings.shutdown_drain_seconds)

    def connect(self, send: SendCallable) -> str:
        connection_id = self.connections.register(send)
        self.broadcaster.to_connection(
            connection_id, schemas.OutboundEventType.CONNECTED, schemas.Connected(id=connection_id)
        )
        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        await self.connections.unregister(connection_id)

    async def handle_message(self, connection_id: str, message: Any) -> bool:
        """Validate one inbound frame and run its handler.

        Returns False when the frame was malformed and dropped.
        """

        try:
            inbound = schemas.InboundMessage.model_validate(message)
        except ValidationError as exc:
            logger.warning("Dropping malformed frame from %s: %s", connection_id, exc.errors(include_url=False))
            return False

        model, handler = self._handlers[inbound.type]
        try:
            request = model.model_validate(inbound.data)
        except ValidationError as exc:
            logger.warning(
                "Dropping invalid %s from %s: %s",
                inbound.type.value,
                connection_id,
                exc.errors(include_url=False),
            )
            return False

        try:
            await handler(connection_id, request)
        except RoomError as exc:
            logger.info("%s for %s: %s", exc.code, connection_id, exc.message)
            self.broadcaster.to_connection(
                connection_id,
                schemas.OutboundEventType.ROOM_ERROR,
                schemas.RoomErrorPayload(code=exc.code, message=exc.message, room_id=exc.room_id),
            )
        return True

    async def _on_join_room(self, connection_id: str, request: schemas.JoinRoomRequest) -> None:
        if request.room_code is not None:
            await self.presence.join_code(connection_id, request.room_code, request.username)
        else:
            await self.presence.join_room(connection_id, request.room_id, request.username)

    async def _on_create_room(self, connection_id: str, request: schemas.CreateRoomRequest) -> None:
        await self.presence.create_room(connection_id, request.username, request.room_id)

    async def _on_leave_room(self, connection_id: str, request: schemas.LeaveRoomRequest) -> None:
        await self.presence.leave_room(connection_id, request.room_id)

    async def _on_start_sharing(self, connection_id: str, request: schemas.SharingRequest) -> None:
        await self.presence.set_sharing(connection_id, request.room_id, True)

    async def _on_stop_sharing(self, connection_id: str, request: schemas.SharingRequest) -> None:
        await self.presence.set_sharing(connection_id, request.room_id, False)

    async def _on_chat_message(self, connection_id: str, request: schemas.ChatMessageRequest) -> None:
        await self.presence.chat(connection_id, request.room_id, request.message, request.username)

    async def _on_request_stream(self, connection_id: str, request: schemas.StreamRequest) -> None:
        self.relay.request_stream(connection_id, request.target_id, request.room_id)

    def _relay_handler(self, kind: SignalKind) -> Handler:
        async def handle(connection_id: str, request: schemas.SignalRequest) -> None:
            self.relay.relay(kind, connection_id, request.target_id, request.payload, request.room_id)

        return handle

    async def _sweep_loop(self) -> None:
        interval = self.settings.room_sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            async with self.rooms.lock:
                self.rooms.sweep()
