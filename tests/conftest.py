from datetime import datetime, timezone

import pytest

from flashmark.application.sync.authority import IdentityAuthority
from flashmark.infrastructure.store.sqlite_store import SqliteAuthorityStore, SqliteCardStore

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def mock_vault(tmp_path):
    """Creates a temporary directory structure mimicking a vault."""
    d = tmp_path / "MyVault"
    d.mkdir()
    return d


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config/logs
    monkeypatch.setenv("HOME", str(home))
    for var in ("DATABASE_PATH", "AUTHORITY_DATABASE_PATH", "DEVICE_ID", "DEVICE_TOKEN"):
        monkeypatch.delenv(f"FLASHMARK_{var}", raising=False)
    return home


@pytest.fixture
def card_store():
    store = SqliteCardStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def authority_store():
    store = SqliteAuthorityStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def authority(authority_store):
    return IdentityAuthority(authority_store)
