"""
Authentication module for the stafflock API.

This module resolves the calling identity from an API key. It is designed as
a black box that can be replaced with any auth system without affecting
the session protocol.
"""

import json
import logging
import os
import secrets
from datetime import UTC, datetime
from typing import Dict, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)


class AuthModule:
    """
    API key authentication.

    Each configured key authenticates exactly one identity; the session
    record of that identity is what the caller then acts on.
    """

    def __init__(self, redis_client, api_keys: Optional[Iterable[str]] = None):
        """
        Initialize auth module.

        Args:
            redis_client: Async Redis client for audit logging (may be None)
            api_keys: ``identity:key`` entries; read from API_KEYS when omitted
        """
        self.redis = redis_client

        # Format: API_KEYS="alice:key1,bob:key2"
        self.api_keys: Dict[str, str] = self._load_api_keys(api_keys)

    @staticmethod
    def _load_api_keys(entries: Optional[Iterable[str]]) -> Dict[str, str]:
        """Parse identity:key entries; entries without an identity are skipped."""
        if entries is None:
            entries = os.environ.get("API_KEYS", "").split(",")

        keys = {}
        for entry in entries:
            entry = entry.strip()
            if not entry:
                continue

            if ":" not in entry:
                logger.warning("Ignoring API key without identity (expected identity:key)")
                continue

            identity, key = entry.split(":", 1)
            keys[key.strip()] = identity.strip()

        return keys

    async def verify_api_key(self, api_key: str) -> Tuple[bool, Optional[str]]:
        """Match ``api_key`` against every configured key in constant time."""
        if not api_key:
            return False, None

        for known, identity in self.api_keys.items():
            if secrets.compare_digest(api_key.encode("utf-8"), known.encode("utf-8")):
                await self._log_event("api_key_verified", {"identity": identity})
                return True, identity

        await self._log_event("api_key_rejected", {})
        return False, None

    async def verify_credentials(
        self,
        api_key: Optional[str] = None,
        bearer_token: Optional[str] = None,
    ) -> Tuple[bool, Optional[str], Optional[str], Optional[dict]]:
        """Same contract as EnhancedAuthModule; bearer tokens are never accepted here."""
        if api_key:
            is_valid, identity = await self.verify_api_key(api_key)
            if is_valid:
                return True, identity, "api_key", None

        return False, None, None, None

    async def _log_event(self, event_type: str, data: dict):
        if not self.redis:
            return

        event = {
            "type": event_type,
            "data": data,
            "timestamp": datetime.now(UTC).isoformat(),
        }

        await self.redis.lpush("auth:audit", json.dumps(event))
        await self.redis.ltrim("auth:audit", 0, 9999)
