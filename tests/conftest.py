"""Shared fixtures: an in-memory store with a started Device and Sentinels on it"""

import pytest

from nodething import Device, MemoryStore, Sentinel, ThingConfig


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "slow: marks test as slow running test")


@pytest.fixture
def config():
    return ThingConfig(device_name="lamp")


@pytest.fixture
def store():
    store = MemoryStore()
    yield store
    store.close()


@pytest.fixture
def device(store, config):
    device = Device(store, config)
    device.start()
    yield device
    device.stop()


@pytest.fixture
def make_sentinel(store, config):
    sentinels = []

    def _make(**overrides):
        sentinel_config = ThingConfig.from_options(overrides, base=config) if overrides else config
        sentinel = Sentinel(store, sentinel_config)
        sentinels.append(sentinel)
        return sentinel

    yield _make
    for sentinel in sentinels:
        sentinel.close()


@pytest.fixture
def sentinel(make_sentinel):
    return make_sentinel()
