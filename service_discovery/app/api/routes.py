"""API routes for the discovery service."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..conversation.discovery_service import DiscoveryService
from ..errors import INTERNAL_ERROR, VALIDATION_ERROR
from ..models import DiscoveryRequest

router = APIRouter()

_ERROR_STATUS = {
    VALIDATION_ERROR: 400,
    INTERNAL_ERROR: 500,
}


def get_discovery_service(request: Request) -> DiscoveryService:
    """Get discovery service from application state."""
    return request.app.state.discovery_service


@router.post("/discover")
async def discover(
    request: DiscoveryRequest,
    discovery_service: DiscoveryService = Depends(get_discovery_service)
):
    """Handle one conversational discovery turn."""
    response = await discovery_service.handle_turn(request)
    status_code = _ERROR_STATUS.get(response.error, 200) if not response.success else 200
    return JSONResponse(status_code=status_code, content=response.to_payload())
