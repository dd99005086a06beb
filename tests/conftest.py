"""Shared test fixtures and configuration.

Sets up fake environment variables so hard75.config doesn't sys.exit(),
and provides common fixtures like a temp cache and an in-memory backend.
"""

import os

# Patch env vars BEFORE any hard75 imports
os.environ.setdefault("API_BASE_URL", "http://api.test")
os.environ.setdefault("API_TOKEN", "fake-token-for-tests")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("CACHE_PATH", ":memory:")

import pytest


@pytest.fixture
def cache(tmp_path):
    """Return a LocalCache backed by a temp file."""
    from hard75.data.cache import LocalCache
    return LocalCache(db_path=str(tmp_path / "test_cache.db"))


@pytest.fixture
def fake_api():
    """Return an in-memory backend implementing ApiPort."""
    from fakes import FakeApi
    return FakeApi()


@pytest.fixture
def error_handler():
    from hard75.core.errors import ErrorHandler
    return ErrorHandler()


@pytest.fixture
def service(fake_api, cache, error_handler):
    """Return an online SyncService wired to the fake backend."""
    from hard75.core.sync_service import SyncService
    return SyncService(
        fake_api, cache, error_handler=error_handler,
        online=True, sync_interval=300, persist_pending=True,
    )


@pytest.fixture
def offline_service(fake_api, cache, error_handler):
    """Return a SyncService that starts offline."""
    from hard75.core.sync_service import SyncService
    return SyncService(
        fake_api, cache, error_handler=error_handler,
        online=False, sync_interval=300, persist_pending=True,
    )
