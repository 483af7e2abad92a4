import pytest

from geofusion.config import get_settings


@pytest.fixture(autouse=True)
def fresh_settings():
    # settings are cached per process, tests changing the environment need a
    # clean cache on both sides
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
