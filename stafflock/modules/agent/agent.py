"""
Client Session Agent.

One instance per device. Drives Start/Check/Transfer against the session
service, keeps a countdown anchored to the server's end time, and reports
state changes through an EventEmitter. Every timer is an asyncio task on
the caller's event loop; no threads.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..session.errors import SessionConflict, SessionServiceError
from ..session.session import epoch_ms
from . import events
from .client import SessionClient
from .events import EventEmitter

logger = logging.getLogger(__name__)

# (reason, context) -> credential, or None when the user declines
CredentialProvider = Callable[[str, Dict[str, Any]], Awaitable[Optional[str]]]


@dataclass
class AgentSettings:
    """Timer intervals (seconds unless noted) and capability flags."""
    check_interval: float = 30.0
    fast_poll_interval: float = 2.0
    drift_interval: float = 60.0
    drift_threshold_ms: int = 2000
    grace_period: float = 5.0
    tick_interval: float = 1.0
    supports_transfer: bool = True


class AgentState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PENDING = "pending"
    OFFERED = "offered"


class SessionAgent:
    """
    Per-device session controller.

    States: IDLE (nothing held), ACTIVE (this device owns the session),
    PENDING (this device asked for a session owned elsewhere and waits for
    approval), OFFERED (a session lives elsewhere and may be pulled here).

    Responses are dropped when the agent has moved on since the request was
    sent, so a slow Check can never resurrect a revoked session.
    """

    def __init__(
        self,
        client: SessionClient,
        device_id: str,
        settings: Optional[AgentSettings] = None,
        credential_provider: Optional[CredentialProvider] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize session agent.

        Args:
            client: RPC client for the session service
            device_id: This device's persistent identifier
            settings: Timer intervals and capability flags
            credential_provider: Asked for the credential when another
                device requests this device's session
            clock: Returns "now" in epoch milliseconds
        """
        self.client = client
        self.device_id = device_id
        self.settings = settings or AgentSettings()
        self.credential_provider = credential_provider
        self._clock = clock or epoch_ms
        self.events = EventEmitter()

        self.state = AgentState.IDLE
        self.end_time: Optional[int] = None
        self.existing_device_id: Optional[str] = None

        self._generation = 0
        self._closed = False
        self._tasks: Dict[str, asyncio.Task] = {}
        self._announced: Set[str] = set()
        self._declined: Set[str] = set()
        self._prompting = False

    def on(self, event: str, callback) -> Callable[[], None]:
        return self.events.on(event, callback)

    @property
    def is_active(self) -> bool:
        return self.state is AgentState.ACTIVE

    def remaining(self) -> int:
        """Milliseconds left on the local countdown (0 when not active)."""
        if self.end_time is None:
            return 0
        return max(0, self.end_time - self._clock())

    # Lifecycle

    async def open(self) -> None:
        """Begin monitoring: an immediate Check, then one every check interval."""
        if self._closed:
            raise RuntimeError("Session agent is closed")
        self._ensure("check", self._check_loop)

    async def close(self) -> None:
        """Cancel every timer; later responses are ignored."""
        self._closed = True
        self._generation += 1
        await self._cancel_all()

    async def __aenter__(self) -> "SessionAgent":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # User actions

    async def request_start(self, credential: str) -> bool:
        """
        Start a session on this device.

        Returns:
            True when this device now owns the session, False on conflict

        Raises:
            SessionServiceError: credential or permission failures
        """
        self._require_open()
        try:
            result = await self.client.start(credential, self.device_id)
        except SessionConflict as conflict:
            if not self._closed:
                await self._on_conflict(conflict.existing_device_id, conflict.existing_end_time)
            return False

        if self._closed:
            return False
        await self._activate(result["endTime"])
        return True

    async def accept_transfer(self, credential: str) -> bool:
        """Pull the session held elsewhere onto this device."""
        self._require_open()
        if not self.settings.supports_transfer:
            raise RuntimeError("Session transfer is disabled for this agent")

        result = await self.client.transfer(credential, self.device_id)
        if self._closed:
            return False
        await self._activate(result["endTime"])
        return True

    async def approve_transfer(self, credential: str, new_device_id: str) -> dict:
        """Hand this device's session to ``new_device_id`` and drop it locally."""
        self._require_open()
        result = await self.client.transfer(credential, new_device_id)
        if self._closed:
            return result
        await self._stop("transferred", events.TRANSFERRED, {"toDeviceId": new_device_id})
        return result

    async def request_end(self, credential: str) -> None:
        self._require_open()
        await self.client.end(credential)
        if self._closed:
            return
        await self._stop("ended")

    async def request_end_all(self, credential: str) -> None:
        """End the session everywhere, whichever device holds it."""
        self._require_open()
        await self.client.end_all(credential)
        if self._closed:
            return
        await self._stop("ended_all")

    async def refresh(self) -> None:
        """Run one Check now and react to it."""
        self._require_open()
        await self._poll("refresh")

    # State transitions

    async def _activate(self, end_time: int) -> None:
        self._generation += 1
        self.state = AgentState.ACTIVE
        self.end_time = end_time
        self.existing_device_id = None
        self._cancel("fast_poll", "grace")

        self._ensure("countdown", self._countdown_loop, restart=True)
        self._ensure("drift", self._drift_loop)
        self._ensure("check", self._check_loop)

        logger.info(f"Session active on {self.device_id} until {end_time}")
        await self.events.emit(events.ACTIVE, {"endTime": end_time, "deviceId": self.device_id})

    async def _stop(self, reason: str, event: Optional[str] = None, payload: Optional[dict] = None) -> None:
        self._generation += 1
        self.state = AgentState.IDLE
        self.end_time = None
        self.existing_device_id = None
        self._announced.clear()
        self._declined.clear()
        await self._cancel_all()

        logger.info(f"Session state cleared on {self.device_id}: {reason}")
        if event:
            await self.events.emit(event, payload or {})
        await self.events.emit(events.REVOKED, {"reason": reason})

    async def _on_conflict(self, existing_device_id: Optional[str], existing_end_time: int) -> None:
        self.end_time = None
        self.existing_device_id = existing_device_id
        data = {"existingDeviceId": existing_device_id, "existingEndTime": existing_end_time}
        logger.info(f"Session held by {existing_device_id}; transfer requested from {self.device_id}")

        if self.settings.supports_transfer:
            self.state = AgentState.PENDING
            await self.events.emit(events.TRANSFER_OFFER, data)
            await self.events.emit(events.TRANSFER_PENDING, data)
            self._ensure("fast_poll", self._fast_poll_loop)
        else:
            self.state = AgentState.IDLE

        self._ensure("grace", self._grace_timer, restart=True)
        self._ensure("check", self._check_loop)

    async def _apply_check(self, result: dict) -> None:
        if result.get("active"):
            end_time = result["endTime"]
            if self.state is not AgentState.ACTIVE:
                await self._activate(end_time)
            else:
                self._sync_end_time(end_time)

            if result.get("transferRequested"):
                await self._on_transfer_request(result.get("transferRequestedByDeviceId"))
            return

        if result.get("expired"):
            if self.state is not AgentState.IDLE:
                await self._stop("expired", events.EXPIRED, {})
            return

        existing = {
            "existingDeviceId": result.get("existingDeviceId"),
            "existingEndTime": result.get("existingEndTime"),
        }

        if result.get("transferRequested"):
            if self.state is AgentState.ACTIVE:
                await self._stop("transferred", events.TRANSFERRED, {"toDeviceId": existing["existingDeviceId"]})
            elif self.settings.supports_transfer and self.state is not AgentState.PENDING:
                self.state = AgentState.PENDING
                self.existing_device_id = existing["existingDeviceId"]
                await self.events.emit(events.TRANSFER_PENDING, existing)
                self._ensure("fast_poll", self._fast_poll_loop)
            return

        if result.get("transferAvailable"):
            if self.state is AgentState.ACTIVE:
                await self._stop("transferred", events.TRANSFERRED, {"toDeviceId": existing["existingDeviceId"]})
                return
            if not self.settings.supports_transfer:
                return

            self._cancel("fast_poll")
            if self.state is not AgentState.OFFERED or self.existing_device_id != existing["existingDeviceId"]:
                self.state = AgentState.OFFERED
                self.existing_device_id = existing["existingDeviceId"]
                await self.events.emit(events.TRANSFER_OFFER, existing)
                self._ensure("grace", self._grace_timer, restart=True)
            return

        if self.state is not AgentState.IDLE:
            await self._stop("ended")

    def _sync_end_time(self, server_end_time: int) -> bool:
        diff = abs(server_end_time - (self.end_time or 0))
        if diff <= self.settings.drift_threshold_ms:
            return False
        logger.info(f"Resynchronising countdown with server (drift {diff} ms)")
        self.end_time = server_end_time
        return True

    async def _on_transfer_request(self, requester: Optional[str]) -> None:
        if not requester or not self.settings.supports_transfer:
            return

        if requester not in self._announced:
            self._announced.add(requester)
            logger.info(f"Device {requester} requested this session")
            await self.events.emit(events.TRANSFER_REQUEST, {"requestedBy": requester})

        if self.credential_provider and requester not in self._declined and not self._prompting:
            self._prompting = True
            self._ensure("prompt", lambda: self._prompt_transfer(requester))

    async def _prompt_transfer(self, requester: str) -> None:
        try:
            credential = await self.credential_provider("transfer_request", {"requestedBy": requester})
            if not credential:
                logger.info(f"Transfer to {requester} declined")
                self._declined.add(requester)
                return
            if self._closed or self.state is not AgentState.ACTIVE:
                return
            try:
                await self.approve_transfer(credential, requester)
            except SessionServiceError as e:
                logger.warning(f"Transfer to {requester} failed: {e.message}")
        finally:
            self._prompting = False

    # Timers

    async def _poll(self, source: str) -> None:
        generation = self._generation
        try:
            result = await self.client.check(self.device_id)
        except Exception as e:
            logger.warning(f"Session {source} check failed, retrying next tick: {e}")
            return

        if self._closed or generation != self._generation:
            logger.debug(f"Dropping stale {source} check result")
            return
        await self._apply_check(result)

    async def _check_loop(self) -> None:
        me = asyncio.current_task()
        while self._tasks.get("check") is me:
            await self._poll("periodic")
            if self._tasks.get("check") is not me:
                return
            await asyncio.sleep(self.settings.check_interval)

    async def _fast_poll_loop(self) -> None:
        me = asyncio.current_task()
        while self._tasks.get("fast_poll") is me and self.state is AgentState.PENDING:
            await asyncio.sleep(self.settings.fast_poll_interval)
            await self._poll("fast")

    async def _drift_loop(self) -> None:
        me = asyncio.current_task()
        while self._tasks.get("drift") is me and self.state is AgentState.ACTIVE:
            await asyncio.sleep(self.settings.drift_interval)
            await self._poll("drift")

    async def _countdown_loop(self) -> None:
        me = asyncio.current_task()
        while self._tasks.get("countdown") is me and self.state is AgentState.ACTIVE:
            remaining = self.remaining()
            if remaining <= 0:
                await self._stop("expired", events.EXPIRED, {})
                return
            await self.events.emit(events.TICK, {"remaining": remaining})
            await asyncio.sleep(min(self.settings.tick_interval, remaining / 1000))

    async def _grace_timer(self) -> None:
        await asyncio.sleep(self.settings.grace_period)
        if self._closed or self.state is AgentState.ACTIVE:
            return
        logger.info(f"Grace period over without a session on {self.device_id}")
        self._tasks.pop("grace", None)
        await self.events.emit(events.REVOKED, {"reason": "conflict"})

    # Task bookkeeping

    def _require_open(self) -> None:
        if self._closed:
            raise RuntimeError("Session agent is closed")

    def _ensure(self, name: str, factory: Callable[[], Awaitable[None]], restart: bool = False) -> None:
        task = self._tasks.get(name)
        if task and not task.done():
            if not restart:
                return
            self._cancel(name)
        self._tasks[name] = asyncio.create_task(factory(), name=f"stafflock-{name}")

    def _cancel(self, *names: str) -> None:
        current = asyncio.current_task()
        for name in names:
            task = self._tasks.pop(name, None)
            if task and task is not current and not task.done():
                task.cancel()

    async def _cancel_all(self) -> None:
        current = asyncio.current_task()
        pending = [t for t in self._tasks.values() if t is not current and not t.done()]
        self._tasks.clear()
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
