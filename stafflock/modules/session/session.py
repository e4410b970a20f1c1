import logging
import time
from typing import Callable, FrozenSet, Iterable, Optional, Protocol, Set

from .errors import FailedPrecondition, InvalidArgument, PermissionDenied, SessionConflict, Unauthenticated
from .record import SessionRecord
from .store import RecordStore

logger = logging.getLogger("stafflock.session")

DEFAULT_STAFF_ROLES = frozenset({"admin", "owner", "teacher"})


class IdentityProvider(Protocol):
    """Credential and role lookup the service needs from the outside."""

    async def verify_credential(self, identity: str, secret: str) -> bool:
        ...

    async def get_roles(self, identity: str, claims: Optional[dict] = None) -> Set[str]:
        ...


def epoch_ms() -> int:
    return int(time.time() * 1000)


class SessionModule:
    def __init__(
        self,
        store: RecordStore,
        identity_provider: IdentityProvider,
        ttl_seconds: int = 900,
        staff_roles: Optional[Iterable[str]] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize session module.

        Args:
            store: Session Record Store adapter
            identity_provider: Verifies credentials and resolves roles
            ttl_seconds: Fixed session lifetime (15 minutes)
            staff_roles: Roles allowed to start a session
            clock: Returns "now" in epoch milliseconds
        """
        self.store = store
        self.identity_provider = identity_provider
        self.ttl_ms = ttl_seconds * 1000
        self.staff_roles: FrozenSet[str] = frozenset(staff_roles or DEFAULT_STAFF_ROLES)
        self._clock = clock or epoch_ms

    def now(self) -> int:
        return self._clock()

    async def _authorize(
        self,
        identity: Optional[str],
        credential: Optional[str],
        claims: Optional[dict] = None,
        require_staff: bool = False,
    ) -> None:
        """Re-verify the elevation credential for a privilege-changing call."""
        if not identity:
            raise Unauthenticated("User must be authenticated")
        if not credential:
            raise InvalidArgument("Password is required")

        if require_staff:
            roles = await self.identity_provider.get_roles(identity, claims)
            if not roles & self.staff_roles:
                raise PermissionDenied("User does not have staff privileges")

        if not await self.identity_provider.verify_credential(identity, credential):
            logger.warning(f"Credential rejected for {identity}")
            raise PermissionDenied("Invalid password")

    async def start(
        self,
        identity: Optional[str],
        device_id: Optional[str],
        credential: Optional[str],
        claims: Optional[dict] = None,
    ) -> dict:
        """
        Start a staff session on ``device_id``.

        Either creates a fresh session or, when another device owns a live
        one, flags a transfer request and raises SessionConflict. The
        decision and the write happen in one compare-and-set.

        Returns:
            {"success": True, "endTime": ..., "duration": ...}

        Raises:
            SessionConflict: another device holds the session
        """
        if not device_id:
            raise InvalidArgument("Device ID is required")
        await self._authorize(identity, credential, claims, require_staff=True)

        now = self.now()

        def decide(current: Optional[SessionRecord]):
            if (
                current is not None
                and current.is_live(now)
                and current.device_id
                and current.device_id != device_id
            ):
                flagged = current.copy(
                    transfer_requested=True,
                    transfer_requested_by_device_id=device_id,
                    transfer_requested_at=now,
                )
                return flagged, (False, flagged)

            created = SessionRecord(
                owner_id=identity,
                device_id=device_id,
                start_time=now,
                end_time=now + self.ttl_ms,
                active=True,
            )
            return created, (True, created)

        created, record = await self.store.update(identity, decide)

        if not created:
            logger.info(
                f"Start refused for {identity} on {device_id}: "
                f"session owned by {record.device_id} until {record.end_time}, transfer requested"
            )
            await self._publish_event(
                identity,
                "session.conflict",
                {"deviceId": record.device_id, "transferRequestedByDeviceId": device_id},
            )
            raise SessionConflict(record.device_id, record.end_time)

        logger.info(f"Session started for {identity} on {device_id}, ends at {record.end_time}")
        await self._publish_event(identity, "session.created", {"deviceId": device_id, "endTime": record.end_time})
        return {"success": True, "endTime": record.end_time, "duration": self.ttl_ms}

    async def check(self, identity: Optional[str], device_id: Optional[str]) -> dict:
        """
        Report the session state as seen from ``device_id``.

        Read-only apart from the one-time lazy expiry write. Every branch is
        a valid result; nothing here raises for ordinary state.
        """
        if not identity:
            return {"active": False}

        now = self.now()

        def decide(current: Optional[SessionRecord]):
            if current is None:
                return None, (False, {"active": False})

            end_time = current.end_time

            if current.is_expired(now):
                result = {"active": False, "expired": True, "message": "Session has expired"}
                if current.active or current.transfer_requested:
                    return current.copy(active=False).clear_transfer(), (True, result)
                return None, (False, result)

            if not current.active:
                return None, (False, {"active": False})

            if current.transfer_requested:
                requester = current.transfer_requested_by_device_id
                if device_id and device_id == requester:
                    return None, (False, {
                        "active": False,
                        "transferRequested": True,
                        "existingDeviceId": current.device_id,
                        "existingEndTime": end_time,
                        "message": "Session transfer requested",
                    })
                if device_id and device_id == current.device_id:
                    return None, (False, {
                        "active": True,
                        "deviceId": current.device_id,
                        "endTime": end_time,
                        "remainingTime": end_time - now,
                        "transferRequested": True,
                        "transferRequestedByDeviceId": requester,
                        "message": "Another device requested session transfer",
                    })

            if device_id != current.device_id:
                return None, (False, {
                    "active": False,
                    "transferAvailable": True,
                    "existingDeviceId": current.device_id,
                    "existingEndTime": end_time,
                    "message": "Session is active on another device",
                })

            return None, (False, {
                "active": True,
                "deviceId": current.device_id,
                "endTime": end_time,
                "remainingTime": end_time - now,
            })

        expired_now, result = await self.store.update(identity, decide)

        if expired_now:
            logger.info(f"Session expired for {identity} (checked from {device_id or 'unknown'})")
            await self._publish_event(identity, "session.expired", {"deviceId": device_id})

        return result

    async def end(self, identity: Optional[str], credential: Optional[str]) -> dict:
        """
        End the current session.

        Raises:
            FailedPrecondition: no active session
        """
        await self._authorize(identity, credential)
        now = self.now()

        def decide(current: Optional[SessionRecord]):
            if current is None or not current.is_live(now):
                raise FailedPrecondition("No active session found")
            ended = current.copy(active=False, ended_at=now).clear_transfer()
            return ended, current.device_id

        device_id = await self.store.update(identity, decide)

        logger.info(f"Session ended for {identity} on {device_id}")
        await self._publish_event(identity, "session.ended", {"deviceId": device_id})
        return {"success": True}

    async def end_all(self, identity: Optional[str], credential: Optional[str]) -> dict:
        """Revoke ownership everywhere, whichever device asks."""
        await self._authorize(identity, credential)
        now = self.now()

        def decide(current: Optional[SessionRecord]):
            if current is None:
                return None, False
            revoked = current.copy(active=False, device_id=None, ended_at=now, ended_all=True).clear_transfer()
            return revoked, True

        changed = await self.store.update(identity, decide)

        logger.info(f"All sessions ended for {identity}")
        if changed:
            await self._publish_event(identity, "session.ended_all", {})
        return {"success": True}

    async def transfer(
        self,
        identity: Optional[str],
        credential: Optional[str],
        new_device_id: Optional[str],
    ) -> dict:
        """
        Hand the live session to ``new_device_id``, keeping its end time.

        Raises:
            FailedPrecondition: no live session to transfer
        """
        if not new_device_id:
            raise InvalidArgument("New device ID is required")
        await self._authorize(identity, credential)

        now = self.now()

        def decide(current: Optional[SessionRecord]):
            if current is None:
                raise FailedPrecondition("No active session found")
            if not current.is_live(now):
                raise FailedPrecondition("Session is not active")
            moved = current.copy(
                device_id=new_device_id,
                transferred_from_device_id=current.device_id,
                transferred_at=now,
            ).clear_transfer()
            return moved, moved

        record = await self.store.update(identity, decide)

        logger.info(
            f"Session for {identity} transferred from {record.transferred_from_device_id} to {new_device_id}"
        )
        await self._publish_event(
            identity,
            "session.transferred",
            {"deviceId": new_device_id, "transferredFromDeviceId": record.transferred_from_device_id},
        )
        return {"success": True, "endTime": record.end_time, "remainingTime": record.remaining(now)}

    async def get_record(self, identity: str) -> Optional[SessionRecord]:
        return await self.store.get(identity)

    async def count_active(self) -> int:
        """Number of live sessions, for monitoring."""
        return await self.store.count_active(self.now())

    async def _publish_event(self, identity: str, event_type: str, data: dict):
        """Publish session event for monitoring"""
        try:
            await self.store.publish_event(identity, event_type, data)
        except Exception as e:
            logger.warning(f"Failed to publish {event_type} for {identity}: {e}")
