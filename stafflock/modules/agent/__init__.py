"""
Agent Module - Black Box Interface

Purpose: Hold the staff session on one device and run the transfer handshake
Interface: SessionAgent.request_start(), accept_transfer(), approve_transfer(),
           request_end(), request_end_all(), on(event, callback)
Hidden: Timers, polling cadence, drift correction, stale-response guards

One agent per device; agents never talk to each other, only to the service.
"""

from . import events
from .agent import AgentSettings, AgentState, CredentialProvider, SessionAgent
from .client import SessionClient
from .device import DeviceIdentity, generate_device_id
from .events import EventEmitter

__all__ = [
    "SessionAgent",
    "AgentSettings",
    "AgentState",
    "CredentialProvider",
    "SessionClient",
    "DeviceIdentity",
    "generate_device_id",
    "EventEmitter",
    "events",
]
