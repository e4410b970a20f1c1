"""Observer contract between the session agent and whatever renders it."""

import inspect
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

# Session is owned by this device; payload {"endTime"}
ACTIVE = "active"
# Session ran out; payload {}
EXPIRED = "expired"
# Local elevated state withdrawn; payload {"reason"}
REVOKED = "revoked"
# Session lives elsewhere and may be pulled here; payload {"existingDeviceId", "existingEndTime"}
TRANSFER_OFFER = "transfer_offer"
# This device asked for the session and awaits approval; payload {"existingDeviceId", "existingEndTime"}
TRANSFER_PENDING = "transfer_pending"
# Another device asked for this device's session; payload {"requestedBy"}
TRANSFER_REQUEST = "transfer_request"
# Session moved away from this device; payload {"toDeviceId"}
TRANSFERRED = "transferred"
# Countdown step; payload {"remaining"} in ms
TICK = "tick"

ALL_EVENTS = (ACTIVE, EXPIRED, REVOKED, TRANSFER_OFFER, TRANSFER_PENDING, TRANSFER_REQUEST, TRANSFERRED, TICK)


class EventEmitter:
    """Named-event fan-out; listeners may be plain or async callables."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = defaultdict(list)

    def on(self, event: str, callback: Callable[[Dict[str, Any]], Any]) -> Callable[[], None]:
        """
        Register ``callback`` for ``event``.

        Returns:
            A function that unregisters the callback
        """
        if event not in ALL_EVENTS:
            raise ValueError(f"Unknown session event: {event}")
        self._listeners[event].append(callback)

        def unsubscribe():
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        return unsubscribe

    async def emit(self, event: str, payload: Dict[str, Any]) -> None:
        for callback in list(self._listeners[event]):
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                # A broken listener must not stop the agent
                logger.error(f"Listener for {event} failed: {e}")
