"""Health check router."""

from fastapi import APIRouter, Depends

from ..dependencies import get_orchestrator
from ..orchestrator import ProvisioningOrchestrator
from ..schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(orchestrator: ProvisioningOrchestrator = Depends(get_orchestrator)) -> dict:
    """Health check endpoint with worker pool occupancy."""
    return {
        "status": "ok",
        "queued_jobs": orchestrator.queued_jobs,
        "active_jobs": orchestrator.active_jobs,
    }
