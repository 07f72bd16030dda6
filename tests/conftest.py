"""
Pytest fixtures and configuration for all tests.
"""

import pytest
from typing import AsyncGenerator
from datetime import datetime, timedelta, timezone
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import ServerSelectionTimeoutError

from app.cache import MemoryCache, set_cache
from app.core.config import Settings

# MongoDB test database
TEST_DB_URI = "mongodb://localhost:27017"
TEST_DB_NAME = "prediction_ratings_test"

# Las ventanas se resuelven contra la hora real, las fechas de prueba también
NOW = datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture(scope="session")
def worker_id(request):
    """
    Return the worker ID when using pytest-xdist, otherwise 'master'.
    This allows each worker to use its own test database.
    """
    if hasattr(request.config, 'workerinput'):
        return request.config.workerinput['workerid']
    return 'master'


@pytest.fixture(scope="function")
async def test_db(worker_id) -> AsyncGenerator[AsyncIOMotorDatabase, None]:
    """
    Provide a clean test database for each test.

    Uses a separate database per worker when running with pytest-xdist.
    Skips the test when no MongoDB is listening locally.
    Automatically cleans up after each test.
    """
    client = AsyncIOMotorClient(TEST_DB_URI, tz_aware=True, serverSelectionTimeoutMS=1500)
    try:
        await client.admin.command("ping")
    except ServerSelectionTimeoutError:
        client.close()
        pytest.skip("MongoDB not available at " + TEST_DB_URI)

    # Use different database per worker to avoid conflicts in parallel execution
    db_name = f"{TEST_DB_NAME}_{worker_id}" if worker_id != "master" else TEST_DB_NAME
    db = client[db_name]

    yield db

    # Cleanup: drop all collections after test
    collection_names = await db.list_collection_names()
    for collection_name in collection_names:
        await db[collection_name].drop()

    client.close()


@pytest.fixture(autouse=True)
def memory_cache():
    """Fresh in-memory cache per test."""
    cache = MemoryCache()
    set_cache(cache)
    yield cache
    set_cache(None)


@pytest.fixture
def test_settings():
    """Settings with small limits so paging and snapshots are easy to check."""
    return Settings(
        mongodb_uri=TEST_DB_URI,
        mongodb_db_name=TEST_DB_NAME,
        rating_snapshot_limit=3,
        rating_default_page_size=10,
        rating_max_page_size=50,
        recalculation_timeout_seconds=10,
        upsert_chunk_size=2,
        reward_max_attempts=3,
        reward_batch_size=10,
    )


@pytest.fixture
def make_entry():
    """Factory for prediction_entries documents."""
    counter = {"n": 0}

    def _make(user_id, status="WON", score=10, resolved_at=None, submitted_at=None, entry_id=None):
        counter["n"] += 1
        resolved = resolved_at if resolved_at is not None else NOW - timedelta(days=1)
        return {
            "_id": entry_id or f"{user_id}:{counter['n']:04d}",
            "user_id": user_id,
            "status": status,
            "score_awarded": None if status == "PENDING" else score,
            "submitted_at": submitted_at or (resolved - timedelta(hours=2)),
            "resolved_at": None if status == "PENDING" else resolved,
        }

    return _make


@pytest.fixture
def sample_users():
    """Display data for the users collection."""
    return [
        {"_id": "alice", "name": "Alice", "profile_picture": "https://example.com/alice.jpg"},
        {"_id": "bob", "name": "", "username": "bob_the_tipster"},
        {"_id": "carol", "name": "Carol"},
    ]
