"""
Write-access guard for staff-only operations.

Answers "may this identity write right now?" from the session record, and
keeps a per-identity failed-attempt counter that locks the identity out
after repeated denials.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Iterable, Optional, Set

from ..session.record import SessionRecord
from ..session.session import DEFAULT_STAFF_ROLES, SessionModule

logger = logging.getLogger("stafflock.access")


class AccessGuard:
    """Session-backed write-access checks with lockout."""

    ATTEMPTS_PREFIX = "access:attempts:"
    LOG_KEY = "access:logs"

    def __init__(
        self,
        redis_client,
        session_module: SessionModule,
        max_failed_attempts: int = 5,
        lockout_seconds: int = 900,
        staff_roles: Optional[Iterable[str]] = None,
        log_limit: int = 10000,
    ):
        """
        Initialize access guard.

        Args:
            redis_client: Async Redis client for counters and the audit list
            session_module: Source of session records and the clock
            max_failed_attempts: Denials before lockout
            lockout_seconds: Lockout duration
            staff_roles: Roles considered staff
            log_limit: Audit entries kept
        """
        self.redis = redis_client
        self.sessions = session_module
        self.max_failed_attempts = max_failed_attempts
        self.lockout_ms = lockout_seconds * 1000
        self.staff_roles = frozenset(staff_roles or DEFAULT_STAFF_ROLES)
        self.log_limit = log_limit

    def _attempts_key(self, identity: str) -> str:
        return f"{self.ATTEMPTS_PREFIX}{identity}"

    async def check_write_access(
        self,
        identity: Optional[str],
        roles: Set[str],
        device_id: Optional[str] = None,
    ) -> dict:
        """
        Decide whether ``identity`` currently holds write access.

        Args:
            identity: Authenticated identity, or None
            roles: Roles resolved for the identity
            device_id: Calling device; when given, must be the session owner

        Returns:
            {"allowed": True} or {"allowed": False, "reason": ...}
        """
        if not identity:
            return {"allowed": False, "reason": "Not authenticated"}

        now = self.sessions.now()

        if not set(roles) & self.staff_roles:
            return await self._deny(identity, "Not a staff member")

        record = await self.sessions.get_record(identity)
        if record is None:
            return await self._deny(identity, "No active session")

        if not record.is_live(now):
            if record.active:
                await self._mark_inactive(identity, now)
            return await self._deny(identity, "Session expired")

        if device_id and record.device_id != device_id:
            return await self._deny(identity, "Session is active on another device")

        lockout_until = await self._lockout_until(identity)
        if lockout_until > now:
            until = datetime.fromtimestamp(lockout_until / 1000, UTC).isoformat()
            return await self._deny(identity, f"Too many failed attempts. Locked until {until}")
        if lockout_until:
            await self.redis.hset(self._attempts_key(identity), mapping={"failed": 0, "lockout_until": 0})

        await self._record_attempt(identity, True, "Access granted", now)
        return {"allowed": True}

    async def _mark_inactive(self, identity: str, now: int) -> None:
        def decide(current: Optional[SessionRecord]):
            if current is None or current.is_live(now) or not current.active:
                return None, None
            return current.copy(active=False).clear_transfer(), None

        await self.sessions.store.update(identity, decide)

    async def _lockout_until(self, identity: str) -> int:
        value = await self.redis.hget(self._attempts_key(identity), "lockout_until")
        return int(value) if value else 0

    async def _deny(self, identity: str, reason: str) -> dict:
        await self._record_attempt(identity, False, reason, self.sessions.now())
        return {"allowed": False, "reason": reason}

    async def _record_attempt(self, identity: str, success: bool, reason: str, now: int) -> None:
        key = self._attempts_key(identity)

        if success:
            await self.redis.hset(key, mapping={"failed": 0, "last_attempt": now, "last_reason": reason})
        else:
            failed = await self.redis.hincrby(key, "failed", 1)
            update = {"last_attempt": now, "last_reason": reason}
            if failed >= self.max_failed_attempts:
                update["lockout_until"] = now + self.lockout_ms
                logger.warning(f"Write access locked for {identity} after {failed} failed attempts")
            await self.redis.hset(key, mapping=update)

        entry = {
            "identity": identity,
            "success": success,
            "reason": reason,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        await self.redis.lpush(self.LOG_KEY, json.dumps(entry))
        await self.redis.ltrim(self.LOG_KEY, 0, self.log_limit - 1)
