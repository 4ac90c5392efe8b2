"""FastAPI dependencies.

Collaborators are built in the application lifespan and stored on
``app.state``; these accessors hand them to routes.
"""

from fastapi import Header, Request

from cloud_init_ext.auth import CredentialValidator
from cloud_init_ext.orchestrator import ProvisioningOrchestrator
from cloud_init_ext.registry import ClientRegistry


def get_orchestrator(request: Request) -> ProvisioningOrchestrator:
    return request.app.state.orchestrator


def get_registry(request: Request) -> ClientRegistry:
    return request.app.state.registry


def get_credential_validator(request: Request) -> CredentialValidator:
    return request.app.state.credential_validator


async def require_credential(
    request: Request,
    authorization: str | None = Header(None),
) -> int:
    """Validate the Authorization header and return the caller's user id.

    Raises Unauthorized, rendered as 401 by the app's exception handler.
    """
    return await get_credential_validator(request).validate(authorization)
