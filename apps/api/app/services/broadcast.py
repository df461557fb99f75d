"""Fan-out helpers on top of the connection registry."""
from __future__ import annotations

from typing import Any, Iterable

from pydantic import BaseModel

from ..schemas.signaling import OutboundEventType
from .connections import ConnectionRegistry
from .rooms import Room


def encode(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True)
    if isinstance(data, (list, tuple)):
        return [encode(item) for item in data]
    return data


def envelope(event: OutboundEventType, data: Any = None) -> dict:
    """Build the ``{"type", "data"}`` frame sent to clients."""

    return {"type": event.value, "data": encode(data)}


class Broadcaster:
    """Deliver events to one connection or to every member of a room."""

    def __init__(self, connections: ConnectionRegistry) -> None:
        self._connections = connections

    def to_connection(self, connection_id: str, event: OutboundEventType, data: Any = None) -> bool:
        return self._connections.deliver(connection_id, envelope(event, data))

    def to_room(
        self,
        room: Room,
        event: OutboundEventType,
        data: Any = None,
        exclude: str | None = None,
    ) -> int:
        """Send one copy to each current member except ``exclude``; returns deliveries queued."""

        return self.to_many((member_id for member_id in room.members if member_id != exclude), event, data)

    def to_many(self, connection_ids: Iterable[str], event: OutboundEventType, data: Any = None) -> int:
        message = envelope(event, data)
        delivered = 0
        for connection_id in connection_ids:
            if self._connections.deliver(connection_id, message):
                delivered += 1
        return delivered
