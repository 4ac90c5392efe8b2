"""Registered client storage."""

import asyncio
from ipaddress import IPv4Address, IPv6Address, ip_address

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
import structlog

from cloud_init_ext.database import SessionMaker
from cloud_init_ext.errors import DuplicateAddress, InvalidAddress, PersistenceError
from cloud_init_ext.models import IP_CONSTRAINT, RegisteredClient

logger = structlog.get_logger(__name__)


class ClientRegistry:
    """Sole writer of ``registered_clients`` rows.

    Each operation checks out its own session, so nothing holds a connection
    while playbooks run. Reading the assigned addresses and registering a new
    one is a read-modify-write: callers must hold ``pool_lock`` across both
    calls. The unique constraint on ``ip`` is the backstop and surfaces as
    ``DuplicateAddress``.
    """

    def __init__(self, session_maker: SessionMaker):
        self._session_maker = session_maker
        self.pool_lock = asyncio.Lock()

    async def all_assigned(self) -> set[IPv4Address | IPv6Address]:
        """Get every registered address.

        Raises:
            InvalidAddress: A stored value is not an IP address
            PersistenceError: Storage failed
        """
        try:
            async with self._session_maker() as session:
                result = await session.execute(select(RegisteredClient.ip))
                values = result.scalars().all()
        except (SQLAlchemyError, OSError) as e:
            logger.error("registry_read_failed", error=str(e), error_type=type(e).__name__)
            raise PersistenceError(f"Unable to read registered clients: {e}") from e

        assigned = set()
        for value in values:
            try:
                assigned.add(ip_address(value.strip()))
            except ValueError:
                raise InvalidAddress(value) from None
        return assigned

    async def register(self, address: IPv4Address, hostname: str) -> RegisteredClient:
        """Record an address as assigned to a host.

        Raises:
            DuplicateAddress: The address is already registered
            PersistenceError: Storage failed
        """
        client = RegisteredClient(ip=str(address), hostname=hostname)
        try:
            async with self._session_maker() as session:
                session.add(client)
                await session.commit()
                await session.refresh(client)
        except IntegrityError as e:
            if _is_address_conflict(e):
                logger.warning("registry_duplicate_address", ip=str(address), hostname=hostname)
                raise DuplicateAddress(str(address)) from e
            logger.error("registry_write_rejected", ip=str(address), hostname=hostname, error=str(e.orig))
            raise PersistenceError(f"Unable to register {hostname} at {address}: {e.orig}") from e
        except (SQLAlchemyError, OSError) as e:
            logger.error(
                "registry_write_failed",
                ip=str(address),
                hostname=hostname,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceError(f"Unable to register {hostname} at {address}: {e}") from e

        logger.info("client_registered", id=client.id, ip=client.ip, hostname=hostname)
        return client

    async def list_registrations(self) -> list[RegisteredClient]:
        """Get all registrations ordered by id."""
        try:
            async with self._session_maker() as session:
                result = await session.execute(select(RegisteredClient).order_by(RegisteredClient.id))
                return list(result.scalars().all())
        except (SQLAlchemyError, OSError) as e:
            logger.error("registry_read_failed", error=str(e), error_type=type(e).__name__)
            raise PersistenceError(f"Unable to read registered clients: {e}") from e


def _is_address_conflict(error: IntegrityError) -> bool:
    # PostgreSQL names the constraint; SQLite names the column
    message = str(error.orig)
    return IP_CONSTRAINT in message or f"{RegisteredClient.__tablename__}.ip" in message
