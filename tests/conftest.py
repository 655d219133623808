import pytest

from dbaccess.core.config import Config
from dbaccess.core.pool import drivers
from tests.utils.fake_driver import FakeDriver


@pytest.fixture
def fake_driver(monkeypatch: pytest.MonkeyPatch) -> FakeDriver:
    """Route both driver identifiers to one in-process fake."""
    driver = FakeDriver()
    monkeypatch.setitem(drivers._drivers, drivers.DEFAULT_DRIVER, driver)
    monkeypatch.setitem(drivers._drivers, drivers.SENTRY_DRIVER, driver)
    return driver


@pytest.fixture
def config() -> Config:
    return Config(host="db.local", port=3306, user="app", password="secret", name="shop")
