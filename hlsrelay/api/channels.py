"""Channel status API endpoints"""

from typing import Any

from fastapi import APIRouter, HTTPException, Request

router = APIRouter(prefix="/channels", tags=["Channels"])


def _channel_payload(supervisor: Any) -> dict[str, Any]:
    status = supervisor.get_status()
    status["descriptor"] = supervisor.descriptor.to_dict()
    status["manifest_url"] = f"/streams/{supervisor.descriptor.manifest_path.name}"
    return status


@router.get("")
async def list_channels(request: Request) -> dict[str, Any]:
    """List every supervised channel with its current state."""
    group = request.app.state.supervisors
    channels = [_channel_payload(s) for s in sorted(group.supervisors, key=lambda s: s.channel_id)]
    return {"channels": channels, "total": len(channels)}


@router.get("/{channel_id}")
async def get_channel(channel_id: int, request: Request) -> dict[str, Any]:
    """Get one channel's state."""
    supervisor = request.app.state.supervisors.get(channel_id)
    if supervisor is None:
        raise HTTPException(status_code=404, detail=f"Channel {channel_id} not found")
    return _channel_payload(supervisor)
