"""
Test Configuration
==================

Pytest fixtures for dealproof tests.
"""

import itertools
import os
from collections.abc import AsyncGenerator, Callable

import pytest
import pytest_asyncio

# Set test environment
os.environ["ENVIRONMENT"] = "testing"
os.environ["ZK_BACKEND"] = "mock"

from dealproof.config import Settings, ZKSettings  # noqa: E402
from dealproof.zk.ceremony import CeremonyManager  # noqa: E402
from dealproof.zk.engine import ZKEngine  # noqa: E402
from dealproof.zk.keys import KeyRegistry  # noqa: E402
from dealproof.zk.mock import MockProvingBackend  # noqa: E402
from tests.factories import FakeClock  # noqa: E402


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for async tests."""
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def id_factory() -> Callable[[], str]:
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


@pytest.fixture
def nonce_source() -> Callable[[], int]:
    counter = itertools.count(1000)
    return lambda: next(counter)


@pytest.fixture
def zk_settings() -> ZKSettings:
    return ZKSettings(
        min_contributions=2,
        max_participants=4,
        proof_timeout_seconds=5.0,
        proving_max_attempts=2,
    )


@pytest.fixture
def settings(zk_settings: ZKSettings) -> Settings:
    return Settings(environment="testing", zk=zk_settings)


@pytest.fixture
def backend() -> MockProvingBackend:
    counter = itertools.count(1)
    return MockProvingBackend(randomness=lambda: next(counter))


@pytest.fixture
def registry() -> KeyRegistry:
    return KeyRegistry()


@pytest.fixture
def ceremony_manager(
    registry: KeyRegistry,
    backend: MockProvingBackend,
    zk_settings: ZKSettings,
    clock: FakeClock,
    id_factory: Callable[[], str],
) -> CeremonyManager:
    return CeremonyManager(
        registry,
        backend,
        config=zk_settings,
        clock=clock,
        id_factory=id_factory,
    )


@pytest.fixture
def engine(
    settings: Settings,
    backend: MockProvingBackend,
    clock: FakeClock,
    id_factory: Callable[[], str],
    nonce_source: Callable[[], int],
) -> ZKEngine:
    return ZKEngine(
        settings=settings,
        backend=backend,
        clock=clock,
        id_factory=id_factory,
        nonce_source=nonce_source,
    )


@pytest_asyncio.fixture
async def ready_engine(engine: ZKEngine) -> AsyncGenerator[ZKEngine, None]:
    """Engine with completed trusted setup for every relation."""
    await engine.initialize()
    await engine.trusted_setup_all()
    yield engine


@pytest.fixture
def standard_deck() -> list[int]:
    return list(range(52))
