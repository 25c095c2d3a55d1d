"""
Shared fixtures.

Every test gets a fresh in-memory SQLite database and an empty cache.
Async code is driven with asyncio.run so no async test plugin is needed.
"""

import pytest

from balance_engine.orchestrator import create_app_components
from balance_engine.services.cache import InMemoryCacheStore
from tests.helpers import USER_A, USER_B, USER_C, InMemorySettings, run


@pytest.fixture
def cache_store():
    return InMemoryCacheStore()


@pytest.fixture
def components(cache_store):
    service, directory, database = create_app_components(
        settings=InMemorySettings(),
        cache_store=cache_store,
    )
    yield service, directory
    database.dispose()


@pytest.fixture
def service(components):
    return components[0]


@pytest.fixture
def directory(components):
    return components[1]


@pytest.fixture
def group_id(directory):
    """A group of A (admin), B and C."""
    async def setup():
        group = await directory.create_group("Trip", created_by=USER_A)
        await directory.add_member(group.id, USER_B)
        await directory.add_member(group.id, USER_C)
        return group.id
    return run(setup())
