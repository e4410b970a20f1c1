"""
Access Module - Black Box Interface

Purpose: Gate staff-only writes on a live, device-owned session
Interface: check_write_access()
Hidden: Attempt counters, lockout windows, audit log layout
"""

from .guard import AccessGuard

__all__ = ["AccessGuard"]
