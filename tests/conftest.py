import pytest

from scopesync.mock import MockResourceManager, MockScopeResource, MOCK_RESOURCE
from scopesync.sync import SettingsSynchronizer
from scopesync.transport import Transport


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "hardware: marks test that require a physical oscilloscope"
    )


@pytest.fixture
def resource():
    return MockScopeResource()


@pytest.fixture
def rm(resource):
    return MockResourceManager(resource)


@pytest.fixture
def transport(rm):
    t = Transport(rm=rm, timeout_ms=1000)
    assert t.connect(MOCK_RESOURCE)
    yield t
    t.close()


@pytest.fixture
def synchronizer(transport):
    s = SettingsSynchronizer(transport)
    yield s
    s.shutdown()
