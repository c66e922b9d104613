import pytest

from dhool_access.core.access_control import AccessRegistry, AccessService
from dhool_access.core.config import AccessSettings


@pytest.fixture
def settings():
    return AccessSettings(_env_file=None)


@pytest.fixture
def registry():
    return AccessRegistry()


@pytest.fixture
def service(registry, settings):
    return AccessService(registry=registry, settings=settings)
