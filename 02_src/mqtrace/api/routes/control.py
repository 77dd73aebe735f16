"""Control API routes."""

from pydantic import BaseModel
from fastapi import APIRouter, HTTPException

from ...app import Application


class RelayStatusResponse(BaseModel):
    """Response model for relay status."""

    running: bool
    address: str | None
    active_connections: int


def create_control_router(app: Application) -> APIRouter:
    """Create control router."""
    router = APIRouter(prefix="/api", tags=["control"])

    @router.get("/relay", response_model=RelayStatusResponse)
    async def relay_status() -> dict:
        """Relay address and open connection count."""
        relay = app.relay
        if relay is None or relay.address is None:
            return {"running": False, "address": None, "active_connections": 0}
        return {
            "running": True,
            "address": relay.address,
            "active_connections": relay.active_connections,
        }

    @router.delete("/profile/data")
    async def delete_profile_data() -> dict:
        """Stop all traces and drop everything stored for the profile."""
        try:
            await app.delete_profile_data()
            return {"status": "ok", "profile": app.profile}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    return router
