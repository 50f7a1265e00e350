"""
Shared fixtures for the gateway test-suite.
"""

import pytest
import pytest_asyncio

from fs_gateway.utils.config import ReconnectConfig, SwitchConfig

from .mock_switch import MockSwitch

@pytest_asyncio.fixture
async def mock_switch():
    switch = MockSwitch()
    await switch.start()
    yield switch
    await switch.stop()

@pytest.fixture
def switch_config():
    """Build a SwitchConfig for a mock switch with short timeouts and backoff."""
    def _build(port: int, **overrides) -> SwitchConfig:
        values = dict(
            host="127.0.0.1",
            port=port,
            password="ClueCon",
            connect_timeout=1.0,
            auth_timeout=1.0,
            command_timeout=1.0,
            job_timeout=2.0,
            reconnect=ReconnectConfig(initial_delay=0.05, max_delay=0.2, backoff_factor=2.0),
        )
        values.update(overrides)
        return SwitchConfig(**values)
    return _build
