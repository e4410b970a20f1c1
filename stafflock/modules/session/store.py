"""
Session Record Store - atomic per-identity storage for Session Records.

Every write goes through ``update()``, a compare-and-set: the mutator sees
the current record and returns the record to persist (or None to leave it
untouched) plus a result. Adapters guarantee that no other write lands
between the read the mutator saw and the write it produced.
"""

import asyncio
import json
import logging
from collections import defaultdict
from datetime import UTC, datetime
from typing import AsyncIterator, Callable, Dict, List, Optional, Protocol, Tuple, TypeVar

from redis.exceptions import WatchError

from .errors import ConcurrencyError
from .record import SessionRecord

logger = logging.getLogger("stafflock.session.store")

T = TypeVar("T")
Mutator = Callable[[Optional[SessionRecord]], Tuple[Optional[SessionRecord], T]]


class RecordStore(Protocol):
    """Storage contract the Session Service depends on."""

    async def get(self, identity: str) -> Optional[SessionRecord]:
        ...

    async def update(self, identity: str, mutate: Mutator) -> T:
        ...

    async def count_active(self, now: int) -> int:
        ...

    async def publish_event(self, identity: str, event_type: str, data: dict) -> None:
        ...

    def listen(self, identity: str) -> AsyncIterator[dict]:
        ...


def _event(event_type: str, data: dict) -> dict:
    return {"type": event_type, "timestamp": datetime.now(UTC).isoformat(), "data": data}


class RedisRecordStore:
    """
    Redis adapter. Records are JSON strings under ``staff:session:{identity}``
    and updates run as WATCH/MULTI/EXEC optimistic transactions.
    """

    KEY_PREFIX = "staff:session:"
    EVENTS_KEY = "staff-session:events"

    def __init__(self, redis_client, max_retries: int = 10):
        """
        Initialize Redis record store.

        Args:
            redis_client: Async Redis client
            max_retries: Attempts before a contended update gives up
        """
        self.redis = redis_client
        self.max_retries = max_retries

    def _key(self, identity: str) -> str:
        return f"{self.KEY_PREFIX}{identity}"

    def _channel(self, identity: str) -> str:
        return f"events:staff-session:{identity}"

    @staticmethod
    def _decode(raw) -> Optional[SessionRecord]:
        if not raw:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return SessionRecord.from_dict(json.loads(raw))

    async def get(self, identity: str) -> Optional[SessionRecord]:
        return self._decode(await self.redis.get(self._key(identity)))

    async def update(self, identity: str, mutate: Mutator) -> T:
        """
        Run ``mutate`` against the current record inside a WATCH transaction.

        Retries when another writer touched the key between WATCH and EXEC.

        Raises:
            ConcurrencyError: if every attempt lost the race
        """
        key = self._key(identity)

        for attempt in range(1, self.max_retries + 1):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    current = self._decode(await pipe.get(key))
                    new_record, result = mutate(current)

                    if new_record is None:
                        return result

                    pipe.multi()
                    pipe.set(key, json.dumps(new_record.to_dict()))
                    await pipe.execute()
                    return result
                except WatchError:
                    logger.debug(f"Record {key} changed during update, retrying ({attempt}/{self.max_retries})")

        logger.error(f"Giving up on contended update of {key} after {self.max_retries} attempts")
        raise ConcurrencyError("Session record is busy, try again")

    async def count_active(self, now: int) -> int:
        count = 0
        async for key in self.redis.scan_iter(match=f"{self.KEY_PREFIX}*"):
            record = self._decode(await self.redis.get(key))
            if record and record.is_live(now):
                count += 1
        return count

    async def publish_event(self, identity: str, event_type: str, data: dict) -> None:
        """Publish record change for subscribers and keep a bounded history."""
        event = json.dumps(_event(event_type, data))
        await self.redis.publish(self._channel(identity), event)
        await self.redis.lpush(self.EVENTS_KEY, event)
        await self.redis.ltrim(self.EVENTS_KEY, 0, 999)

    async def listen(self, identity: str) -> AsyncIterator[dict]:
        """Yield published events for one identity until cancelled."""
        pubsub = self.redis.pubsub()
        channel = self._channel(identity)
        try:
            await pubsub.subscribe(channel)
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                data = message["data"]
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                yield json.loads(data)
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.close()


class InMemoryRecordStore:
    """
    Process-local adapter; a single asyncio lock serialises updates.

    Used for tests and single-process deployments without Redis.
    """

    def __init__(self):
        self._records: Dict[str, dict] = {}
        self._lock = asyncio.Lock()
        self._subscribers: Dict[str, List[asyncio.Queue]] = defaultdict(list)
        self.events: List[dict] = []

    async def get(self, identity: str) -> Optional[SessionRecord]:
        data = self._records.get(identity)
        return SessionRecord.from_dict(data) if data else None

    async def update(self, identity: str, mutate: Mutator) -> T:
        async with self._lock:
            data = self._records.get(identity)
            current = SessionRecord.from_dict(data) if data else None
            new_record, result = mutate(current)
            if new_record is not None:
                self._records[identity] = new_record.to_dict()
            return result

    async def count_active(self, now: int) -> int:
        return sum(1 for data in self._records.values() if SessionRecord.from_dict(data).is_live(now))

    async def publish_event(self, identity: str, event_type: str, data: dict) -> None:
        event = _event(event_type, data)
        self.events.append(event)
        del self.events[:-1000]
        for queue in self._subscribers[identity]:
            queue.put_nowait(event)

    async def listen(self, identity: str) -> AsyncIterator[dict]:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[identity].append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers[identity].remove(queue)
