"""
Session Record - the single persisted row describing who owns an identity's
staff session, when it expires and whether a transfer is pending.
"""

from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Optional


@dataclass
class SessionRecord:
    """
    One record per identity, reused across sessions and never deleted.

    Times are epoch milliseconds. ``end_time - start_time`` is the TTL.
    """

    owner_id: str
    device_id: Optional[str] = None
    start_time: int = 0
    end_time: int = 0
    active: bool = False

    # Transfer handshake state
    transfer_requested: bool = False
    transfer_requested_by_device_id: Optional[str] = None
    transfer_requested_at: Optional[int] = None

    # Audit
    transferred_from_device_id: Optional[str] = None
    transferred_at: Optional[int] = None
    ended_at: Optional[int] = None
    ended_all: bool = False

    def is_expired(self, now: int) -> bool:
        """True once end_time has passed, whatever the stored flag says."""
        return self.end_time <= now

    def is_live(self, now: int) -> bool:
        """Active and unexpired: the only state in which an owner exists."""
        return self.active and not self.is_expired(now)

    def remaining(self, now: int) -> int:
        return max(self.end_time - now, 0)

    def copy(self, **changes) -> "SessionRecord":
        return replace(self, **changes)

    def clear_transfer(self) -> "SessionRecord":
        return self.copy(
            transfer_requested=False,
            transfer_requested_by_device_id=None,
            transfer_requested_at=None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Persisted layout (camelCase, matching the wire format)."""
        data = asdict(self)
        return {
            "ownerId": data["owner_id"],
            "deviceId": data["device_id"],
            "startTime": data["start_time"],
            "endTime": data["end_time"],
            "active": data["active"],
            "transferRequested": data["transfer_requested"],
            "transferRequestedByDeviceId": data["transfer_requested_by_device_id"],
            "transferRequestedAt": data["transfer_requested_at"],
            "transferredFromDeviceId": data["transferred_from_device_id"],
            "transferredAt": data["transferred_at"],
            "endedAt": data["ended_at"],
            "endedAll": data["ended_all"],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionRecord":
        return cls(
            owner_id=data.get("ownerId", ""),
            device_id=data.get("deviceId"),
            start_time=int(data.get("startTime") or 0),
            end_time=int(data.get("endTime") or 0),
            active=bool(data.get("active", False)),
            transfer_requested=bool(data.get("transferRequested", False)),
            transfer_requested_by_device_id=data.get("transferRequestedByDeviceId"),
            transfer_requested_at=data.get("transferRequestedAt"),
            transferred_from_device_id=data.get("transferredFromDeviceId"),
            transferred_at=data.get("transferredAt"),
            ended_at=data.get("endedAt"),
            ended_all=bool(data.get("endedAll", False)),
        )
