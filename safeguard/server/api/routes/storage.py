"""
Storage introspection routes.
"""

from fastapi import APIRouter, HTTPException

from ..dependencies import get_server

router = APIRouter(prefix="/api", tags=["storage"])


@router.get("/storage/info")
async def storage_info():
    """Which backend is selected and why, plus its current health."""
    server = get_server()
    container = server.service_container
    if not container or not container.selector or not container.repository:
        raise HTTPException(status_code=503, detail="Credential service not available")

    health = await container.repository.health_check()
    return {
        "success": True,
        "selection": container.selector.service_info(),
        "health": health.unwrap(),
    }
