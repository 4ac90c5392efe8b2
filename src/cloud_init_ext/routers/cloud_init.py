"""cloud-init router.

Nodes call this on first boot. The response only acknowledges that the job
was queued; provisioning happens in the background.
"""

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..dependencies import get_orchestrator
from ..errors import JobRejected
from ..orchestrator import ProvisioningOrchestrator
from ..schemas import CloudInitRequest

router = APIRouter(tags=["provisioning"])


@router.post(
    "/cloud-init",
    status_code=status.HTTP_200_OK,
    response_class=Response,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "Provisioning queue is full"}},
)
async def cloud_init(
    payload: CloudInitRequest,
    orchestrator: ProvisioningOrchestrator = Depends(get_orchestrator),
) -> Response:
    """Queue provisioning of a booting node."""
    try:
        orchestrator.provision(payload.hostname, fqdn=payload.fqdn)
    except JobRejected as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
    return Response(status_code=status.HTTP_200_OK)
