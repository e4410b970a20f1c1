import json
import os
import sys

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from stafflock.modules.access import AccessGuard

PASSWORD = "correct-horse"
STAFF = {"teacher"}


@pytest.fixture
def guard(mock_redis_with_data, session_module):
    return AccessGuard(mock_redis_with_data, session_module, max_failed_attempts=3, lockout_seconds=60)


@pytest.mark.asyncio
async def test_allowed_with_live_session(guard, session_module):
    await session_module.start("alice", "A", PASSWORD)

    assert await guard.check_write_access("alice", STAFF) == {"allowed": True}
    assert await guard.check_write_access("alice", STAFF, device_id="A") == {"allowed": True}


@pytest.mark.asyncio
async def test_unauthenticated_not_recorded(guard, mock_redis_with_data):
    result = await guard.check_write_access(None, STAFF)

    assert result == {"allowed": False, "reason": "Not authenticated"}
    assert "access:logs" not in mock_redis_with_data._storage


@pytest.mark.asyncio
async def test_denial_reasons(guard, session_module, clock):
    assert (await guard.check_write_access("alice", {"student"}))["reason"] == "Not a staff member"
    assert (await guard.check_write_access("alice", STAFF))["reason"] == "No active session"

    await session_module.start("alice", "A", PASSWORD)
    assert (await guard.check_write_access("alice", STAFF, device_id="B"))["reason"] == (
        "Session is active on another device"
    )


@pytest.mark.asyncio
async def test_expired_session_marked_inactive(guard, session_module, clock):
    await session_module.start("alice", "A", PASSWORD)
    clock.now = 900_000

    result = await guard.check_write_access("alice", STAFF)

    assert result == {"allowed": False, "reason": "Session expired"}
    assert (await session_module.get_record("alice")).active is False


@pytest.mark.asyncio
async def test_lockout_after_repeated_denials(guard, session_module, clock, mock_redis_with_data):
    for _ in range(3):
        await guard.check_write_access("alice", STAFF)

    await session_module.start("alice", "A", PASSWORD)
    result = await guard.check_write_access("alice", STAFF)

    assert result["allowed"] is False
    assert result["reason"].startswith("Too many failed attempts. Locked until")
    assert mock_redis_with_data._storage["access:attempts:alice"]["lockout_until"] == str(60_000)


@pytest.mark.asyncio
async def test_lockout_expires(guard, session_module, clock, mock_redis_with_data):
    for _ in range(3):
        await guard.check_write_access("alice", STAFF)

    clock.now = 60_001
    await session_module.start("alice", "A", PASSWORD)

    assert await guard.check_write_access("alice", STAFF) == {"allowed": True}
    attempts = mock_redis_with_data._storage["access:attempts:alice"]
    assert attempts["failed"] == "0"
    assert attempts["lockout_until"] == "0"


@pytest.mark.asyncio
async def test_success_resets_failure_count(guard, session_module, mock_redis_with_data):
    await guard.check_write_access("alice", STAFF)
    await guard.check_write_access("alice", STAFF)
    await session_module.start("alice", "A", PASSWORD)

    await guard.check_write_access("alice", STAFF)
    await guard.check_write_access("alice", {"student"})

    assert mock_redis_with_data._storage["access:attempts:alice"]["failed"] == "1"


@pytest.mark.asyncio
async def test_attempts_logged(guard, session_module, mock_redis_with_data):
    await guard.check_write_access("alice", {"student"})
    await session_module.start("alice", "A", PASSWORD)
    await guard.check_write_access("alice", STAFF)

    entries = [json.loads(e) for e in mock_redis_with_data._storage["access:logs"]]
    assert [(e["success"], e["reason"]) for e in entries] == [
        (True, "Access granted"),
        (False, "Not a staff member"),
    ]
