import logging

import pytest

from iot_mqtt_client import (
    ConnectionManager,
    configure_asyncio_compatibility,
    reset_event_loop_policy,
    resolve_config,
)
from .fakes import FakeTransportFactory

# === Configure Logging ===
logging.basicConfig(level=logging.DEBUG, format="%(levelname)-8s %(name)s %(message)s")

RECONNECT_DELAY_MS = 100


# === Pytest Hooks for Event Loop Compatibility ===
def pytest_configure(config):
    configure_asyncio_compatibility()


def pytest_unconfigure(config):
    reset_event_loop_policy()


@pytest.fixture
def config():
    return resolve_config(
        namespace_prefix="X1",
        qos=1,
        client_identifier="web_X1_test",
        reconnect_delay_ms=RECONNECT_DELAY_MS,
    )


@pytest.fixture
def factory():
    return FakeTransportFactory()


@pytest.fixture
def manager(config, factory):
    return ConnectionManager(config, transport_factory=factory)
