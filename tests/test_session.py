import asyncio
import os
import sys

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from stafflock.modules.session import (
    FailedPrecondition,
    InvalidArgument,
    PermissionDenied,
    SessionConflict,
    SessionModule,
    Unauthenticated,
)

PASSWORD = "correct-horse"
TTL_MS = 900_000


def live_owners(record, now):
    """Devices that currently count as the active owner (at most one)."""
    if record is None or not record.is_live(now) or not record.device_id:
        return set()
    return {record.device_id}


@pytest.mark.asyncio
async def test_start_without_record_creates_session(session_module, clock):
    """Starting with no prior record succeeds with endTime = now + TTL."""
    clock.now = 1_000

    result = await session_module.start("alice", "device-a", PASSWORD)

    assert result == {"success": True, "endTime": 1_000 + TTL_MS, "duration": TTL_MS}
    record = await session_module.get_record("alice")
    assert record.device_id == "device-a"
    assert record.active is True
    assert record.start_time == 1_000
    assert record.transfer_requested is False


@pytest.mark.asyncio
async def test_start_from_second_device_flags_transfer(session_module, clock):
    """A conflicting Start never creates a second owner; it flags B as requester."""
    await session_module.start("alice", "device-a", PASSWORD)
    clock.now = 100_000

    with pytest.raises(SessionConflict) as exc_info:
        await session_module.start("alice", "device-b", PASSWORD)

    assert exc_info.value.existing_device_id == "device-a"
    assert exc_info.value.existing_end_time == TTL_MS
    assert exc_info.value.to_dict()["details"] == {
        "existingDeviceId": "device-a",
        "existingEndTime": TTL_MS,
    }

    record = await session_module.get_record("alice")
    assert record.device_id == "device-a"
    assert record.end_time == TTL_MS
    assert record.transfer_requested is True
    assert record.transfer_requested_by_device_id == "device-b"
    assert record.transfer_requested_at == 100_000
    assert live_owners(record, clock.now) == {"device-a"}


@pytest.mark.asyncio
async def test_same_device_retry_restarts_session(session_module, clock):
    await session_module.start("alice", "device-a", PASSWORD)
    clock.now = 60_000

    result = await session_module.start("alice", "device-a", PASSWORD)

    assert result["endTime"] == 60_000 + TTL_MS


@pytest.mark.asyncio
async def test_start_after_expiry_creates_fresh_session(session_module, clock):
    await session_module.start("alice", "device-a", PASSWORD)
    clock.now = TTL_MS + 1

    result = await session_module.start("alice", "device-b", PASSWORD)

    assert result["endTime"] == TTL_MS + 1 + TTL_MS
    record = await session_module.get_record("alice")
    assert record.device_id == "device-b"


@pytest.mark.asyncio
async def test_start_rejects_wrong_password(session_module):
    with pytest.raises(PermissionDenied):
        await session_module.start("alice", "device-a", "wrong")
    assert await session_module.get_record("alice") is None


@pytest.mark.asyncio
async def test_start_requires_staff_role(record_store, identity_provider, clock):
    identity_provider.roles["bob"] = {"student"}
    module = SessionModule(record_store, identity_provider, clock=clock)

    with pytest.raises(PermissionDenied, match="staff privileges"):
        await module.start("bob", "device-a", PASSWORD)


@pytest.mark.asyncio
async def test_start_accepts_role_from_claims(record_store, identity_provider, clock):
    identity_provider.roles["bob"] = set()
    module = SessionModule(record_store, identity_provider, clock=clock)

    result = await module.start("bob", "device-a", PASSWORD, claims={"roles": ["admin"]})

    assert result["success"] is True


@pytest.mark.asyncio
async def test_start_validates_arguments(session_module):
    with pytest.raises(Unauthenticated):
        await session_module.start(None, "device-a", PASSWORD)
    with pytest.raises(InvalidArgument):
        await session_module.start("alice", "device-a", "")
    with pytest.raises(InvalidArgument):
        await session_module.start("alice", "", PASSWORD)


@pytest.mark.asyncio
async def test_check_round_trip(session_module, clock):
    """Start(A) -> Check(A) active with same endTime -> End(A) -> Check(A) inactive."""
    started = await session_module.start("alice", "device-a", PASSWORD)
    clock.now = 5_000

    check = await session_module.check("alice", "device-a")
    assert check == {
        "active": True,
        "deviceId": "device-a",
        "endTime": started["endTime"],
        "remainingTime": started["endTime"] - 5_000,
    }

    assert await session_module.end("alice", PASSWORD) == {"success": True}
    assert await session_module.check("alice", "device-a") == {"active": False}


@pytest.mark.asyncio
async def test_check_without_record_or_identity(session_module):
    assert await session_module.check("alice", "device-a") == {"active": False}
    assert await session_module.check(None, "device-a") == {"active": False}


@pytest.mark.asyncio
async def test_check_from_other_device_offers_transfer(session_module, clock):
    await session_module.start("alice", "device-a", PASSWORD)

    result = await session_module.check("alice", "device-b")

    assert result["active"] is False
    assert result["transferAvailable"] is True
    assert result["existingDeviceId"] == "device-a"
    assert result["existingEndTime"] == TTL_MS


@pytest.mark.asyncio
async def test_check_without_device_treated_as_other_device(session_module, clock):
    await session_module.start("alice", "device-a", PASSWORD)

    result = await session_module.check("alice", None)

    assert result["active"] is False
    assert result["transferAvailable"] is True
    assert result["existingDeviceId"] == "device-a"
    record = await session_module.get_record("alice")
    assert record.transfer_requested is False


@pytest.mark.asyncio
async def test_check_is_idempotent(session_module, clock):
    await session_module.start("alice", "device-a", PASSWORD)
    before = await session_module.get_record("alice")

    for offset in (1, 2, 3):
        clock.now = offset * 1_000
        await session_module.check("alice", "device-a")
        await session_module.check("alice", "device-b")

    after = await session_module.get_record("alice")
    assert after == before


@pytest.mark.asyncio
async def test_conflict_and_transfer_scenario(session_module, clock):
    """A owns, B conflicts, A sees the request, A transfers to B, B owns with the same endTime."""
    clock.now = 0
    assert (await session_module.start("alice", "A", PASSWORD))["endTime"] == 900_000

    clock.now = 100_000
    with pytest.raises(SessionConflict) as exc_info:
        await session_module.start("alice", "B", PASSWORD)
    assert exc_info.value.existing_device_id == "A"
    assert exc_info.value.existing_end_time == 900_000

    clock.now = 100_001
    owner_view = await session_module.check("alice", "A")
    assert owner_view["active"] is True
    assert owner_view["transferRequested"] is True
    assert owner_view["transferRequestedByDeviceId"] == "B"

    requester_view = await session_module.check("alice", "B")
    assert requester_view["active"] is False
    assert requester_view["transferRequested"] is True
    assert requester_view["existingDeviceId"] == "A"
    assert requester_view["existingEndTime"] == 900_000

    transferred = await session_module.transfer("alice", PASSWORD, "B")
    assert transferred["endTime"] == 900_000
    assert transferred["remainingTime"] == 900_000 - 100_001

    b_view = await session_module.check("alice", "B")
    assert b_view["active"] is True
    assert b_view["deviceId"] == "B"
    assert b_view["endTime"] == 900_000

    a_view = await session_module.check("alice", "A")
    assert a_view["active"] is False
    assert a_view["transferAvailable"] is True
    assert a_view["existingDeviceId"] == "B"

    record = await session_module.get_record("alice")
    assert record.transferred_from_device_id == "A"
    assert record.transfer_requested is False
    assert record.transfer_requested_by_device_id is None


@pytest.mark.asyncio
async def test_transfer_never_extends_end_time(session_module, clock):
    await session_module.start("alice", "A", PASSWORD)

    for step, target in enumerate(["B", "C", "A"], start=1):
        clock.now = step * 200_000
        result = await session_module.transfer("alice", PASSWORD, target)
        assert result["endTime"] == TTL_MS

    record = await session_module.get_record("alice")
    assert record.end_time == TTL_MS
    assert record.start_time == 0


@pytest.mark.asyncio
async def test_transfer_requires_live_session(session_module, clock):
    with pytest.raises(FailedPrecondition, match="No active session"):
        await session_module.transfer("alice", PASSWORD, "B")

    await session_module.start("alice", "A", PASSWORD)
    clock.now = TTL_MS

    with pytest.raises(FailedPrecondition):
        await session_module.transfer("alice", PASSWORD, "B")


@pytest.mark.asyncio
async def test_transfer_rejects_wrong_password(session_module):
    await session_module.start("alice", "A", PASSWORD)

    with pytest.raises(PermissionDenied):
        await session_module.transfer("alice", "nope", "B")

    assert (await session_module.get_record("alice")).device_id == "A"


@pytest.mark.asyncio
async def test_expiry_scenario(session_module, record_store, clock):
    """Check after endTime reports expired on every call and writes active=false once."""
    await session_module.start("alice", "A", PASSWORD)
    clock.now = 900_001

    first = await session_module.check("alice", "A")
    second = await session_module.check("alice", "A")
    from_other = await session_module.check("alice", "B")

    assert first == {"active": False, "expired": True, "message": "Session has expired"}
    assert second == first
    assert from_other == first

    record = await session_module.get_record("alice")
    assert record.active is False
    assert [e["type"] for e in record_store.events].count("session.expired") == 1


@pytest.mark.asyncio
async def test_expiry_clears_pending_transfer(session_module, clock):
    await session_module.start("alice", "A", PASSWORD)
    with pytest.raises(SessionConflict):
        await session_module.start("alice", "B", PASSWORD)

    clock.now = TTL_MS
    await session_module.check("alice", "B")

    record = await session_module.get_record("alice")
    assert record.active is False
    assert record.transfer_requested is False
    assert record.transfer_requested_by_device_id is None


@pytest.mark.asyncio
async def test_end_all_scenario(session_module, clock):
    """EndAll clears ownership; both A and the pending B see a plain inactive result."""
    await session_module.start("alice", "A", PASSWORD)
    with pytest.raises(SessionConflict):
        await session_module.start("alice", "B", PASSWORD)

    assert await session_module.end_all("alice", PASSWORD) == {"success": True}

    assert await session_module.check("alice", "A") == {"active": False}
    assert await session_module.check("alice", "B") == {"active": False}

    record = await session_module.get_record("alice")
    assert record.device_id is None
    assert record.ended_all is True
    assert record.transfer_requested is False


@pytest.mark.asyncio
async def test_end_all_without_record_succeeds(session_module):
    assert await session_module.end_all("alice", PASSWORD) == {"success": True}
    assert await session_module.get_record("alice") is None


@pytest.mark.asyncio
async def test_end_requires_active_session(session_module):
    with pytest.raises(FailedPrecondition):
        await session_module.end("alice", PASSWORD)


@pytest.mark.asyncio
async def test_end_clears_transfer_request(session_module):
    await session_module.start("alice", "A", PASSWORD)
    with pytest.raises(SessionConflict):
        await session_module.start("alice", "B", PASSWORD)

    await session_module.end("alice", PASSWORD)

    record = await session_module.get_record("alice")
    assert record.active is False
    assert record.transfer_requested is False


@pytest.mark.asyncio
async def test_privileged_calls_reverify_credential(session_module, identity_provider):
    await session_module.start("alice", "A", PASSWORD)
    await session_module.check("alice", "A")
    await session_module.transfer("alice", PASSWORD, "B")
    await session_module.end("alice", PASSWORD)
    await session_module.end_all("alice", PASSWORD)

    # Check never asks for the credential
    assert len(identity_provider.verify_calls) == 4


@pytest.mark.asyncio
async def test_concurrent_starts_produce_single_owner(session_module, clock):
    """Simultaneous Starts from many devices leave exactly one owner."""
    devices = [f"device-{i}" for i in range(10)]

    results = await asyncio.gather(
        *(session_module.start("alice", d, PASSWORD) for d in devices),
        return_exceptions=True,
    )

    successes = [r for r in results if isinstance(r, dict)]
    conflicts = [r for r in results if isinstance(r, SessionConflict)]
    assert len(successes) == 1
    assert len(conflicts) == len(devices) - 1

    record = await session_module.get_record("alice")
    assert len(live_owners(record, clock.now)) == 1
    assert record.transfer_requested is True


@pytest.mark.asyncio
async def test_events_published_for_each_transition(session_module, record_store, clock):
    await session_module.start("alice", "A", PASSWORD)
    with pytest.raises(SessionConflict):
        await session_module.start("alice", "B", PASSWORD)
    await session_module.transfer("alice", PASSWORD, "B")
    await session_module.end("alice", PASSWORD)
    await session_module.end_all("alice", PASSWORD)

    assert [e["type"] for e in record_store.events] == [
        "session.created",
        "session.conflict",
        "session.transferred",
        "session.ended",
        "session.ended_all",
    ]


@pytest.mark.asyncio
async def test_publish_failure_does_not_fail_call(session_module, record_store):
    async def broken(*args, **kwargs):
        raise ConnectionError("pubsub down")

    record_store.publish_event = broken

    result = await session_module.start("alice", "A", PASSWORD)

    assert result["success"] is True


@pytest.mark.asyncio
async def test_count_active(session_module, clock):
    await session_module.start("alice", "A", PASSWORD)
    clock.now = 10
    await session_module.start("bob", "B", PASSWORD)
    assert await session_module.count_active() == 2

    clock.now = TTL_MS + 5
    assert await session_module.count_active() == 1
