"""Registered clients router."""

from fastapi import APIRouter, Depends

from ..dependencies import get_registry, require_credential
from ..models import RegisteredClient
from ..registry import ClientRegistry
from ..schemas import RegisteredClientsResponse

router = APIRouter(prefix="/crud", tags=["registered-clients"])


@router.get("/registered-clients", response_model=RegisteredClientsResponse)
async def registered_clients(
    _: int = Depends(require_credential),
    registry: ClientRegistry = Depends(get_registry),
) -> dict[str, list[RegisteredClient]]:
    """Get all registered clients."""
    return {"clients": await registry.list_registrations()}
