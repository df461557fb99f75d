"""Point-to-point forwarding of WebRTC negotiation messages."""
from __future__ import annotations

import enum
import logging
from typing import Any

from ..schemas.signaling import OutboundEventType, RelayedSignal, StreamRequested
from .broadcast import Broadcaster

logger = logging.getLogger(__name__)


class SignalKind(str, enum.Enum):
    OFFER = "webrtc-offer"
    ANSWER = "webrtc-answer"
    ICE_CANDIDATE = "webrtc-ice-candidate"

    @property
    def event(self) -> OutboundEventType:
        return OutboundEventType(self.value)


class SignalingRelay:
    """Stateless relay; stale targets are dropped rather than reported."""

    def __init__(self, broadcaster: Broadcaster) -> None:
        self._broadcaster = broadcaster

    def relay(
        self,
        kind: SignalKind,
        sender_id: str,
        target_id: str,
        payload: Any,
        room_id: str | None = None,
    ) -> bool:
        message = RelayedSignal(sender_id=sender_id, room_id=room_id, payload=payload)
        delivered = self._broadcaster.to_connection(target_id, kind.event, message)
        if delivered:
            logger.debug("Relayed %s from %s to %s", kind.value, sender_id, target_id)
        else:
            logger.debug("Dropped %s from %s: target %s is gone", kind.value, sender_id, target_id)
        return delivered

    def request_stream(self, sender_id: str, target_id: str, room_id: str) -> bool:
        """Ask ``target_id`` to start sending its stream to ``sender_id``."""

        message = StreamRequested(sender_id=sender_id, room_id=room_id)
        delivered = self._broadcaster.to_connection(target_id, OutboundEventType.REQUEST_STREAM, message)
        if not delivered:
            logger.debug("Dropped stream request from %s: target %s is gone", sender_id, target_id)
        return delivered
