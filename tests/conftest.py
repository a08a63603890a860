"""Pytest fixtures for auditor tests."""
from typing import Any, Generator

import pytest
from fastapi.testclient import TestClient

from autoplay_audit.logic.models import SegmentSet
from autoplay_audit.main import app
from autoplay_audit.redis_service import DistributionStore


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (long seeded runs)"
    )


class MockRedis:
    """Mock Redis client for testing."""

    def __init__(self):
        self._store: dict[str, str] = {}
        self._hashes: dict[str, dict[str, str]] = {}
        self.eval_calls = 0

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(
        self, key: str, value: str, nx: bool = False, ex: int | None = None
    ) -> bool | None:
        if nx and key in self._store:
            return None
        self._store[key] = value
        return True

    async def delete(self, key: str) -> int:
        if key in self._store:
            del self._store[key]
            return 1
        if key in self._hashes:
            del self._hashes[key]
            return 1
        return 0

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        bucket = self._hashes.setdefault(key, {})
        value = int(bucket.get(field, "0")) + amount
        bucket[field] = str(value)
        return value

    async def hgetall(self, key: str) -> dict[str, str]:
        return dict(self._hashes.get(key, {}))

    async def eval(self, script: str, numkeys: int, *args) -> int:
        """
        Execute Lua script (simplified mock for the add-counts script).

        - KEYS[1] = args[0] (counts hash)
        - ARGV = field, increment pairs
        Applied without yielding, like a script on the server.
        """
        self.eval_calls += 1
        key = args[0]
        pairs = args[numkeys:]
        bucket = self._hashes.setdefault(key, {})
        for field, amount in zip(pairs[0::2], pairs[1::2]):
            bucket[field] = str(int(bucket.get(field, "0")) + int(amount))
        return len(pairs) // 2

    async def aclose(self) -> None:
        pass

    def clear(self) -> None:
        self._store.clear()
        self._hashes.clear()
        self.eval_calls = 0


class RecordingResultSink:
    """Result sink that keeps every event in memory."""

    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event_name: str, data: dict[str, Any]) -> None:
        self.events.append((event_name, data))

    def get_events(self, event_name: str) -> list[dict[str, Any]]:
        return [data for name, data in self.events if name == event_name]

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]


class FailingResultSink:
    """Result sink whose every emit raises."""

    def __init__(self):
        self.calls = 0

    def emit(self, event_name: str, data: dict[str, Any]) -> None:
        self.calls += 1
        raise IOError("sink unavailable")


@pytest.fixture
def mock_redis() -> MockRedis:
    """Create a fresh mock Redis for each test."""
    return MockRedis()


@pytest.fixture
def recording_sink() -> RecordingResultSink:
    return RecordingResultSink()


@pytest.fixture
def four_segments() -> SegmentSet:
    """Four equally likely segments paying 0x, 1x, 2x and 5x."""
    return SegmentSet.uniform([0.0, 1.0, 2.0, 5.0])


@pytest.fixture
def store_with_mock(mock_redis: MockRedis) -> Generator[DistributionStore, None, None]:
    """Create DistributionStore with mock client."""
    store = DistributionStore(key_prefix="test")
    store._client = mock_redis
    yield store
    mock_redis.clear()


@pytest.fixture
def client_with_mock_redis(mock_redis: MockRedis) -> Generator[TestClient, None, None]:
    """Create TestClient with mocked Redis."""
    from autoplay_audit.redis_service import distribution_store

    # Patch the global distribution_store client
    original_client = distribution_store._client
    distribution_store._client = mock_redis

    with TestClient(app) as client:
        yield client

    # Restore original
    distribution_store._client = original_client
    mock_redis.clear()


@pytest.fixture
def test_client() -> TestClient:
    """Create basic TestClient (for tests that don't need Redis)."""
    return TestClient(app)


@pytest.fixture
def failing_sink() -> FailingResultSink:
    return FailingResultSink()
