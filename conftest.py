import pytest
from django.core.cache import cache


@pytest.fixture(autouse=True)
def test_container():
    """Fresh in-memory gateway, notifier and cache for every test."""
    from infrastructure.container import container

    container.configure_for_testing()
    cache.clear()
    yield container
    container.reset()
    cache.clear()


@pytest.fixture
def gateway(test_container):
    return test_container.gateway()


@pytest.fixture
def notifier(test_container):
    return test_container.notifier()
