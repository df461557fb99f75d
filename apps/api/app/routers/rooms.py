"""Read-only HTTP views over live signaling state."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..schemas.signaling import PeersResponse, RoomSnapshot
from ..services.presence import member_info
from ..services.signaling import SignalingHub

router = APIRouter()


def get_hub(request: Request) -> SignalingHub:
    return request.app.state.hub


@router.get("/peers", response_model=PeersResponse)
async def list_peers(hub: SignalingHub = Depends(get_hub)) -> PeersResponse:
    """Return the ids of every live connection."""

    peers = hub.connections.ids()
    return PeersResponse(peers=peers, count=len(peers))


@router.get("/rooms/{room_id}", response_model=RoomSnapshot)
async def get_room(room_id: str, hub: SignalingHub = Depends(get_hub)) -> RoomSnapshot:
    """Return the current members of a room."""

    async with hub.rooms.lock:
        room = hub.rooms.get(room_id)
        if room is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
        return RoomSnapshot(
            room_id=room.room_id,
            created_at=room.created_at.isoformat(),
            user_count=len(room),
            members=[member_info(member) for member in room.members.values()],
        )
