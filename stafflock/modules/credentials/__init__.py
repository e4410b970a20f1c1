"""
Credentials Module - Black Box Interface

Purpose: Hold staff elevation secrets and role memberships
Interface: verify_credential(), get_roles(), create_credential(), delete_credential()
Hidden: Salting, key derivation, Redis layout

Any object with verify_credential() and get_roles() can stand in for it.
"""

from .store import ROLE_PRECEDENCE, CredentialStore

__all__ = ["CredentialStore", "ROLE_PRECEDENCE"]
