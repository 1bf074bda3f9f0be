"""Shared pytest fixtures for fretebot tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from fretebot.api import services as services_module  # noqa: E402
from fretebot.conversation.engine import ConversationEngine  # noqa: E402
from fretebot.conversation.sessions import InMemorySessionStore, KeyedLock  # noqa: E402
from fretebot.domain.identity import Driver  # noqa: E402

from helpers import (  # noqa: E402
    FakeClock,
    FakeDriverDirectory,
    FakeFreightRepository,
    FakeGateway,
    FakeOracle,
)


@pytest.fixture(autouse=True)
def _reset_services():
    """The HTTP service graph is a module-level singleton; never leak it."""
    services_module.set_services(None)
    yield
    services_module.set_services(None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def freights() -> FakeFreightRepository:
    return FakeFreightRepository()


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def drivers() -> FakeDriverDirectory:
    return FakeDriverDirectory(
        [
            # Stored in free format, without country code
            Driver(id="drv-1", name="Joao", whatsapp="(31) 99157-0107"),
            Driver(id="drv-2", name="Inativo", whatsapp="31988887777", active=False),
        ]
    )


@pytest.fixture
def engine(gateway, oracle, drivers, freights, store, clock) -> ConversationEngine:
    return ConversationEngine(
        gateway=gateway,
        oracle=oracle,
        drivers=drivers,
        freights=freights,
        store=store,
        locks=KeyedLock(),
        clock=clock,
    )
