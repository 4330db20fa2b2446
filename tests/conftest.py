"""Shared fixtures for the SafeTube test suite."""

import json
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from safetube.database import Database
from safetube.services.error_handler import RetryOptions
from safetube.services.legacy_loader import LegacyDocumentLoader
from safetube.services.migration import MigrationService
from safetube.services.schema_manager import SchemaManager

# Retry quickly in tests; the production unit policy waits a full second.
FAST_RETRY = RetryOptions(max_attempts=2, base_delay=1, max_delay=5)


@pytest.fixture
def db_path(tmp_path):
    """Provide a temporary database path."""
    return tmp_path / "data" / "test.db"


@pytest_asyncio.fixture
async def db(db_path):
    """Yield an open database handle on a fresh file."""
    database = Database(db_path, busy_timeout_ms=1000)
    await database.open()
    try:
        yield database
    finally:
        await database.close()


@pytest_asyncio.fixture
async def schema(db):
    return SchemaManager(db)


@pytest_asyncio.fixture
async def phase1_db(db, schema):
    """Database with the phase 1 schema applied."""
    await schema.ensure_initialized("phase1")
    return db


@pytest_asyncio.fixture
async def phase2_db(db, schema):
    """Database with the full (phase 2) schema applied."""
    await schema.ensure_initialized("phase2")
    return db


@pytest.fixture
def config_dir(tmp_path):
    """Empty directory standing in for the legacy config directory."""
    path = tmp_path / "config"
    path.mkdir()
    return path


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "data"
    path.mkdir(exist_ok=True)
    return path


@pytest.fixture
def write_legacy(config_dir):
    """Return a helper that writes a legacy JSON document."""

    def _write(name: str, data) -> Path:
        path = config_dir / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def loader(config_dir):
    return LegacyDocumentLoader(config_dir)


@pytest_asyncio.fixture
async def service(db, schema, loader, data_dir):
    return MigrationService(db, schema, loader, data_dir, retry_options=FAST_RETRY)


@pytest_asyncio.fixture
async def test_app(db, schema, service):
    """The FastAPI app with services wired to the temporary database.

    The lifespan does not run under ASGITransport, so state is set here.
    """
    from safetube.main import app

    app.state.db = db
    app.state.schema_manager = schema
    app.state.migration_service = service
    yield app


@pytest_asyncio.fixture
async def client(test_app):
    """Provide an async HTTP client for the test application."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Legacy document samples
# ---------------------------------------------------------------------------


def sample_sources() -> list[dict]:
    return [
        {
            "id": "s1",
            "type": "youtube_channel",
            "title": "Science Channel",
            "url": "https://www.youtube.com/channel/UC123",
            "channelId": "UC123",
            "sortPreference": "newestFirst",
        },
        {
            "id": "s2",
            "type": "local",
            "title": "Home Videos",
            "path": "/media/videos",
            "maxDepth": 3,
        },
        {
            "id": "s3",
            "type": "youtube_playlist",
            "title": "Bedtime",
            "url": "https://www.youtube.com/playlist?list=PL1",
            "sortOrder": "playlistOrder",
        },
    ]


def sample_watched() -> list[dict]:
    return [
        {
            "videoId": "v1",
            "source": "s1",
            "position": 10,
            "timeWatched": 20,
            "duration": 100,
            "watched": False,
            "firstWatched": "2024-01-01T00:00:00Z",
            "lastWatched": "2024-01-01T00:00:05Z",
            "title": "Volcanoes",
        },
        {
            "videoId": "local:/media/videos/cat.mp4",
            "source": "s2",
            "position": 5,
            "timeWatched": 5,
            "duration": 60,
            "watched": True,
            "firstWatched": "2024-01-03T10:00:00Z",
            "lastWatched": "2024-01-03T10:01:00Z",
            "title": "Cat",
        },
    ]
