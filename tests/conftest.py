from collections.abc import Iterator

import pytest

from tessera.core.bus import Bus, EventPayload
from tessera.util import log as log_module


@pytest.fixture
def bus() -> Bus:
    return Bus()


@pytest.fixture
def bus_events(bus: Bus) -> list[EventPayload]:
    received: list[EventPayload] = []
    bus.subscribe_all(received.append)
    return received


@pytest.fixture(autouse=True)
def _log_teardown() -> Iterator[None]:
    config = log_module._config
    saved = (config.level, config.format, config.console)
    yield
    log_module.Log.close()
    config.level, config.format, config.console = saved
    config.log_file_path = None


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
