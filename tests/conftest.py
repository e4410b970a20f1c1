"""
Shared pytest fixtures for stafflock tests.

This module provides:
- Redis mocks: a plain AsyncMock and one backed by in-memory data
- A controllable millisecond clock
- A fake identity provider for the session service
- Session service instances over the in-memory record store
"""

import fnmatch
import os
import sys
from typing import Dict, List, Optional, Set
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import WatchError

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from stafflock.modules.session import InMemoryRecordStore, SessionModule


# =============================================================================
# Clock and identity doubles
# =============================================================================


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now: int = 0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class FakeIdentityProvider:
    """
    Stand-in for the credential store.

    Every identity shares ``secret``; roles are per identity.
    """

    def __init__(self, secret: str = "correct-horse", roles: Optional[Dict[str, Set[str]]] = None):
        self.secret = secret
        self.roles = roles if roles is not None else {}
        self.verify_calls: List[tuple] = []

    async def verify_credential(self, identity: str, secret: str) -> bool:
        self.verify_calls.append((identity, secret))
        return secret == self.secret

    async def get_roles(self, identity: str, claims: Optional[dict] = None) -> Set[str]:
        roles = set(self.roles.get(identity, {"teacher"}))
        if claims:
            roles.update(r for r in claims.get("roles", []))
        return roles


@pytest.fixture
def clock():
    return FakeClock(0)


@pytest.fixture
def identity_provider():
    return FakeIdentityProvider()


@pytest.fixture
def record_store():
    return InMemoryRecordStore()


@pytest.fixture
def session_module(record_store, identity_provider, clock):
    """SessionModule with a 15 minute TTL over the in-memory store."""
    return SessionModule(record_store, identity_provider, ttl_seconds=900, clock=clock)


# =============================================================================
# Redis Mocking Infrastructure
# =============================================================================


@pytest.fixture
def mock_redis():
    """Create a mock Redis client for async operations."""
    redis = AsyncMock()

    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock()
    redis.delete = AsyncMock(return_value=1)
    redis.exists = AsyncMock(return_value=0)

    redis.sadd = AsyncMock()
    redis.smembers = AsyncMock(return_value=set())

    redis.lpush = AsyncMock()
    redis.ltrim = AsyncMock()

    redis.hset = AsyncMock()
    redis.hget = AsyncMock(return_value=None)
    redis.hgetall = AsyncMock(return_value={})
    redis.hincrby = AsyncMock(return_value=1)

    redis.publish = AsyncMock()
    redis.ping = AsyncMock(return_value=True)

    return redis


class FakePipeline:
    """
    Minimal WATCH/MULTI/EXEC pipeline over a dict.

    ``conflicts`` is how many upcoming EXECs fail with WatchError, as if
    another client wrote the watched key.
    """

    def __init__(self, storage: dict, state: dict):
        self.storage = storage
        self.state = state
        self.buffer: List[tuple] = []
        self.watched: Optional[str] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.buffer = []
        self.watched = None

    async def watch(self, key):
        self.watched = key

    async def get(self, key):
        return self.storage.get(key)

    def multi(self):
        self.buffer = []

    def set(self, key, value):
        self.buffer.append((key, value))
        return self

    async def execute(self):
        self.state["executes"] += 1
        if self.state["conflicts"] > 0:
            self.state["conflicts"] -= 1
            raise WatchError("Watched variable changed.")
        for key, value in self.buffer:
            self.storage[key] = value
        return [True] * len(self.buffer)


@pytest.fixture
def mock_redis_with_data():
    """
    Redis mock with in-memory data storage for more realistic tests.

    Strings, hashes, sets and lists share one keyspace. Exposes
    ``_storage`` and ``_pipeline_state`` for assertions.
    """
    storage: dict = {}
    pipeline_state = {"conflicts": 0, "executes": 0}

    redis = AsyncMock()

    async def mock_get(key):
        return storage.get(key)

    async def mock_set(key, value, *args, **kwargs):
        storage[key] = value
        return True

    async def mock_delete(*keys):
        count = 0
        for key in keys:
            if key in storage:
                del storage[key]
                count += 1
        return count

    async def mock_exists(*keys):
        return sum(1 for k in keys if k in storage)

    async def mock_hset(key, field=None, value=None, mapping=None):
        h = storage.setdefault(key, {})
        if field is not None:
            h[field] = str(value)
        for k, v in (mapping or {}).items():
            h[k] = str(v)
        return 1

    async def mock_hget(key, field):
        return storage.get(key, {}).get(field)

    async def mock_hgetall(key):
        return dict(storage.get(key, {}))

    async def mock_hincrby(key, field, amount=1):
        h = storage.setdefault(key, {})
        h[field] = str(int(h.get(field, 0)) + amount)
        return int(h[field])

    async def mock_sadd(key, *members):
        s = storage.setdefault(key, set())
        before = len(s)
        s.update(members)
        return len(s) - before

    async def mock_smembers(key):
        return set(storage.get(key, set()))

    async def mock_lpush(key, *values):
        lst = storage.setdefault(key, [])
        for v in values:
            lst.insert(0, v)
        return len(lst)

    async def mock_ltrim(key, start, end):
        if key in storage:
            storage[key] = storage[key][start:end + 1]
        return True

    async def mock_scan_iter(match="*"):
        for key in list(storage.keys()):
            if fnmatch.fnmatch(key, match):
                yield key

    redis.get = mock_get
    redis.set = mock_set
    redis.delete = mock_delete
    redis.exists = mock_exists
    redis.hset = mock_hset
    redis.hget = mock_hget
    redis.hgetall = mock_hgetall
    redis.hincrby = mock_hincrby
    redis.sadd = mock_sadd
    redis.smembers = mock_smembers
    redis.lpush = mock_lpush
    redis.ltrim = mock_ltrim
    redis.scan_iter = mock_scan_iter
    redis.publish = AsyncMock(return_value=0)
    redis.pipeline = MagicMock(side_effect=lambda transaction=True: FakePipeline(storage, pipeline_state))

    redis._storage = storage  # Expose for test assertions
    redis._pipeline_state = pipeline_state

    return redis


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "agent: Client session agent tests")
    config.addinivalue_line("markers", "api: HTTP surface tests")
    config.addinivalue_line("markers", "slow: Tests that take a long time to run")
