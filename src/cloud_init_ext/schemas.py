"""Request and response schemas."""

from pydantic import BaseModel, ConfigDict, Field


class CloudInitRequest(BaseModel):
    """First-boot call made by a node's cloud-init."""

    fqdn: str = Field(max_length=255)
    hostname: str = Field(min_length=1, max_length=255)


class RegisteredClientRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ip: str
    hostname: str


class RegisteredClientsResponse(BaseModel):
    clients: list[RegisteredClientRead]


class HealthResponse(BaseModel):
    status: str
    queued_jobs: int
    active_jobs: int
