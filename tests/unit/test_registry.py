"""Tests for ClientRegistry against SQLite."""

from ipaddress import IPv4Address, IPv6Address
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from cloud_init_ext.errors import DuplicateAddress, InvalidAddress, PersistenceError
from cloud_init_ext.models import RegisteredClient
from cloud_init_ext.registry import ClientRegistry


@pytest.mark.asyncio
async def test_empty_registry(registry):
    assert await registry.all_assigned() == set()
    assert await registry.list_registrations() == []


@pytest.mark.asyncio
async def test_register_then_read(registry):
    client = await registry.register(IPv4Address("10.10.0.1"), "node-1")
    await registry.register(IPv4Address("10.10.0.2"), "node-2")

    assert client.id is not None
    assert await registry.all_assigned() == {IPv4Address("10.10.0.1"), IPv4Address("10.10.0.2")}

    rows = await registry.list_registrations()
    assert [(r.ip, r.hostname) for r in rows] == [("10.10.0.1", "node-1"), ("10.10.0.2", "node-2")]


@pytest.mark.asyncio
async def test_duplicate_address_rejected_by_storage(registry):
    await registry.register(IPv4Address("10.10.0.3"), "node-7")

    with pytest.raises(DuplicateAddress) as exc_info:
        await registry.register(IPv4Address("10.10.0.3"), "node-8")

    assert exc_info.value.retryable is True
    rows = await registry.list_registrations()
    assert [r.hostname for r in rows] == ["node-7"]


@pytest.mark.asyncio
async def test_other_integrity_errors_are_not_retryable(registry):
    with pytest.raises(PersistenceError) as exc_info:
        await registry.register(IPv4Address("10.10.0.4"), None)

    assert not isinstance(exc_info.value, DuplicateAddress)
    assert exc_info.value.retryable is False
    assert await registry.all_assigned() == set()


@pytest.mark.asyncio
async def test_ipv6_rows_are_returned_for_the_allocator_to_reject(registry, session_maker):
    async with session_maker() as session:
        session.add(RegisteredClient(ip="fd00::5", hostname="v6-node"))
        await session.commit()

    assert await registry.all_assigned() == {IPv6Address("fd00::5")}


@pytest.mark.asyncio
async def test_unparseable_row_raises_invalid_address(registry, session_maker):
    async with session_maker() as session:
        session.add(RegisteredClient(ip="not-an-ip", hostname="broken"))
        await session.commit()

    with pytest.raises(InvalidAddress):
        await registry.all_assigned()


@pytest.mark.asyncio
async def test_storage_failure_maps_to_persistence_error():
    session = MagicMock()
    session.__aenter__.side_effect = OperationalError("SELECT", {}, Exception("connection refused"))
    registry = ClientRegistry(MagicMock(return_value=session))

    with pytest.raises(PersistenceError):
        await registry.all_assigned()

    with pytest.raises(PersistenceError):
        await registry.register(IPv4Address("10.10.0.1"), "node-1")
