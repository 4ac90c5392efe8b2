"""Bearer-token credential checks for the inspection API."""

import hashlib
from typing import Protocol

from sqlalchemy import select
import structlog

from cloud_init_ext.database import SessionMaker
from cloud_init_ext.models import User

logger = structlog.get_logger(__name__)


class Unauthorized(Exception):
    """Credential missing or unknown."""


class CredentialValidator(Protocol):
    async def validate(self, token: str | None) -> int:
        """Return the id of the principal owning ``token``.

        Raises:
            Unauthorized: Token missing or unknown
        """
        ...


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class DatabaseCredentialValidator:
    """Looks tokens up in the ``users`` table."""

    def __init__(self, session_maker: SessionMaker):
        self._session_maker = session_maker

    async def validate(self, token: str | None) -> int:
        if not token:
            raise Unauthorized("Missing Authorization header")

        async with self._session_maker() as session:
            result = await session.execute(select(User.id).where(User.token_hash == hash_token(token)))
            user_id = result.scalar_one_or_none()

        if user_id is None:
            logger.warning("unknown_api_token")
            raise Unauthorized("Unknown token")
        return user_id
