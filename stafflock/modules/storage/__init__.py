"""
Storage Module - Black Box Interface

Purpose: Own the Redis connection shared by the other modules
Interface: connect(), ping(), disconnect()
Hidden: Redis specifics, connection pooling

Can be replaced with any storage backend without affecting other modules.
"""

import logging
from typing import Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class StorageModule:
    """Black box storage abstraction."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
    ):
        """Initialize storage with connection settings."""
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._client: Optional[redis.Redis] = None

    async def connect(self) -> redis.Redis:
        """Get storage connection, verifying it answers."""
        if not self._client:
            self._client = redis.Redis(
                host=self.host,
                port=self.port,
                db=self.db,
                password=self.password,
                decode_responses=True,
            )
            await self._client.ping()
            logger.info(f"Connected to Redis at {self.host}:{self.port}/{self.db}")
        return self._client

    async def ping(self) -> bool:
        if not self._client:
            return False
        try:
            return bool(await self._client.ping())
        except redis.ConnectionError:
            return False

    async def disconnect(self):
        """Close storage connection."""
        if self._client:
            await self._client.aclose()
            self._client = None


__all__ = ["StorageModule"]
