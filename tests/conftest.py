"""Shared fixtures for cloud-init-ext tests."""

import asyncio
from collections.abc import AsyncGenerator
from ipaddress import IPv4Address, IPv6Address, ip_address

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from cloud_init_ext.allocator import AddressAllocator
from cloud_init_ext.database import SessionMaker, create_engine, create_schema, create_session_maker
from cloud_init_ext.errors import DuplicateAddress
from cloud_init_ext.orchestrator import ProvisioningOrchestrator
from cloud_init_ext.playbooks import Playbook, PlaybookCatalog, PlaybookFunction
from cloud_init_ext.registry import ClientRegistry

SSH_KEY = "/etc/cloud-init-ext/id_ed25519"


class FakeClientRegistry:
    """In-memory registry that yields between reads and writes.

    The yields give concurrent jobs a chance to interleave, so a missing pool
    lock shows up as DuplicateAddress.
    """

    def __init__(self, initial: dict[str, str] | None = None):
        self.rows: dict[IPv4Address | IPv6Address, str] = {
            ip_address(ip): hostname for ip, hostname in (initial or {}).items()
        }
        self.pool_lock = asyncio.Lock()
        self.register_calls: list[tuple[IPv4Address, str]] = []
        # Addresses a "foreign" writer claims right before our insert lands
        self.steal_next: list[IPv4Address] = []

    async def all_assigned(self) -> set[IPv4Address | IPv6Address]:
        await asyncio.sleep(0)
        return set(self.rows)

    async def register(self, address: IPv4Address, hostname: str) -> None:
        await asyncio.sleep(0)
        self.register_calls.append((address, hostname))
        if self.steal_next:
            stolen = self.steal_next.pop(0)
            self.rows[stolen] = "someone-else"
        if address in self.rows:
            raise DuplicateAddress(str(address))
        self.rows[address] = hostname


class RecordingRunner:
    """Playbook runner that records calls and can fail on a chosen function."""

    def __init__(self, fail_on: dict[PlaybookFunction, Exception] | None = None, delay: float = 0):
        self.calls: list[tuple[PlaybookFunction, IPv4Address, str]] = []
        self.fail_on = fail_on or {}
        self.delay = delay

    async def run(self, playbook: Playbook, target: IPv4Address, credential: str) -> None:
        self.calls.append((playbook.function, target, credential))
        if self.delay:
            await asyncio.sleep(self.delay)
        if playbook.function in self.fail_on:
            raise self.fail_on[playbook.function]


class RecordingSink:
    def __init__(self, error: Exception | None = None):
        self.reports: list[tuple[str, Exception]] = []
        self.error = error

    async def report(self, hostname: str, error: Exception) -> None:
        self.reports.append((hostname, error))
        if self.error is not None:
            raise self.error


@pytest.fixture
def playbooks() -> list[Playbook]:
    return [
        Playbook(function=PlaybookFunction.BASE_CONFIG, path="/etc/cloud-init-ext/ip.yml"),
        Playbook(function=PlaybookFunction.METRICS_AGENT, path="/etc/cloud-init-ext/node_exporter.yml"),
    ]


@pytest.fixture
def catalog(playbooks) -> PlaybookCatalog:
    return PlaybookCatalog(playbooks)


@pytest.fixture
def allocator() -> AddressAllocator:
    return AddressAllocator()


@pytest.fixture
def fake_registry() -> FakeClientRegistry:
    return FakeClientRegistry()


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_orchestrator(fake_registry, allocator, catalog, runner, sink):
    """Build an orchestrator wired to fakes; keyword overrides replace any collaborator."""

    def _make(**overrides) -> ProvisioningOrchestrator:
        kwargs = {
            "registry": fake_registry,
            "allocator": allocator,
            "catalog": catalog,
            "runner": runner,
            "sink": sink,
            "credential": SSH_KEY,
            "shutdown_grace_period": 1.0,
        }
        kwargs.update(overrides)
        return ProvisioningOrchestrator(**kwargs)

    return _make


@pytest.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'registry.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine) -> SessionMaker:
    return create_session_maker(db_engine)


@pytest.fixture
def registry(session_maker) -> ClientRegistry:
    return ClientRegistry(session_maker)


@pytest.fixture
def make_fake_registry():
    return FakeClientRegistry


@pytest.fixture
def make_runner():
    return RecordingRunner


@pytest.fixture
def make_sink():
    return RecordingSink
