"""
Session Module - Black Box Interface

Purpose: Own the staff-session record and its ownership/transfer state machine
Interface: start(), check(), end(), end_all(), transfer()
Hidden: Record layout, compare-and-set storage, expiry bookkeeping

Replaceable storage backend: any RecordStore (Redis, in-memory).
"""

from .errors import (
    ConcurrencyError,
    FailedPrecondition,
    InvalidArgument,
    PermissionDenied,
    SessionConflict,
    SessionServiceError,
    Unauthenticated,
)
from .record import SessionRecord
from .session import DEFAULT_STAFF_ROLES, IdentityProvider, SessionModule, epoch_ms
from .store import InMemoryRecordStore, RecordStore, RedisRecordStore

__all__ = [
    "SessionModule",
    "SessionRecord",
    "RecordStore",
    "RedisRecordStore",
    "InMemoryRecordStore",
    "IdentityProvider",
    "DEFAULT_STAFF_ROLES",
    "epoch_ms",
    "SessionServiceError",
    "Unauthenticated",
    "InvalidArgument",
    "PermissionDenied",
    "FailedPrecondition",
    "SessionConflict",
    "ConcurrencyError",
]
