"""
Stafflock - Single-Device Staff Sessions

Grants time-limited staff privileges to an identity and guarantees that
exactly one device holds them at a time, with a handshake to move the
session between devices.

Architecture:
- Each module is self-contained with clear interfaces
- Modules are completely replaceable
- All cross-device coordination goes through the session record

Modules:
- session: Session record, record store, session service
- credentials: Hashed staff credentials and role lookup
- auth: Caller identity from API keys and bearer tokens
- access: Write-access guard with lockout
- storage: Redis connection
- api: HTTP data models
- agent: Per-device client session agent
"""

__version__ = "1.0.0"
