"""
Credential store for staff elevation secrets.

Secrets are never stored in plain text: each identity gets a random salt and
a PBKDF2-HMAC-SHA256 digest, compared in constant time. Roles live in a
Redis set per identity and may be supplemented by verified token claims.
"""

import base64
import hashlib
import json
import logging
import secrets
from datetime import UTC, datetime
from typing import Dict, Iterable, Optional, Set

from ..session.errors import InvalidArgument, PermissionDenied, Unauthenticated

logger = logging.getLogger("stafflock.credentials")

# Highest first; verify_for_role reports the first one held
ROLE_PRECEDENCE = ("admin", "owner", "teacher")


class CredentialStore:
    """
    Redis-backed implementation of the VerifyCredential / GetRoles
    collaborator consumed by the Session Service.
    """

    def __init__(
        self,
        redis_client,
        iterations: int = 200_000,
        min_length: int = 8,
        role_claims: Optional[Iterable[str]] = None,
    ):
        """
        Initialize credential store.

        Args:
            redis_client: Async Redis client
            iterations: PBKDF2 work factor for newly stored secrets
            min_length: Minimum accepted secret length
            role_claims: Claim names treated as boolean role flags
        """
        self.redis = redis_client
        self.iterations = iterations
        self.min_length = min_length
        self.role_claims = tuple(role_claims or ("owner", "admin", "teacher", "student", "parent"))

    def _credential_key(self, identity: str) -> str:
        return f"staff:credential:{identity}"

    def _roles_key(self, identity: str) -> str:
        return f"staff:roles:{identity}"

    @staticmethod
    def _derive(secret: str, salt: bytes, iterations: int) -> bytes:
        return hashlib.pbkdf2_hmac("sha256", secret.encode("utf-8"), salt, iterations)

    def _hash_secret(self, secret: str) -> Dict[str, str]:
        salt = secrets.token_bytes(16)
        digest = self._derive(secret, salt, self.iterations)
        return {
            "algorithm": "pbkdf2_sha256",
            "iterations": str(self.iterations),
            "salt": base64.b64encode(salt).decode("ascii"),
            "hash": base64.b64encode(digest).decode("ascii"),
            "created_at": datetime.now(UTC).isoformat(),
        }

    async def _load(self, identity: str) -> Optional[Dict[str, str]]:
        stored = await self.redis.hgetall(self._credential_key(identity))
        if not stored:
            return None
        return {
            (k.decode("utf-8") if isinstance(k, bytes) else k): (v.decode("utf-8") if isinstance(v, bytes) else v)
            for k, v in stored.items()
        }

    async def has_credential(self, identity: str) -> bool:
        return bool(await self.redis.exists(self._credential_key(identity)))

    async def verify_credential(self, identity: str, secret: str) -> bool:
        """
        One-way comparison of ``secret`` against the stored digest.

        Returns:
            False when no credential is set or it does not match
        """
        if not identity or not secret:
            return False

        stored = await self._load(identity)
        if not stored:
            logger.debug(f"No credential set for {identity}")
            return False

        salt = base64.b64decode(stored["salt"])
        expected = base64.b64decode(stored["hash"])
        candidate = self._derive(secret, salt, int(stored["iterations"]))
        return secrets.compare_digest(candidate, expected)

    async def create_credential(
        self, identity: str, secret: str, current_secret: Optional[str] = None
    ) -> None:
        """
        Store a new secret for ``identity``.

        Replacing an existing secret requires the current one.

        Raises:
            InvalidArgument: secret shorter than the minimum
            PermissionDenied: existing secret not supplied or wrong
        """
        if not identity:
            raise Unauthenticated("User must be authenticated")
        if not secret or len(secret) < self.min_length:
            raise InvalidArgument(f"Password must be at least {self.min_length} characters")

        if await self.has_credential(identity):
            if not current_secret or not await self.verify_credential(identity, current_secret):
                raise PermissionDenied("Current password is required to replace it")

        await self.redis.hset(self._credential_key(identity), mapping=self._hash_secret(secret))
        await self._log_event("credential_created", {"identity": identity})
        logger.info(f"Credential created for {identity}")

    async def delete_credential(self, identity: str, secret: str) -> None:
        """
        Remove the stored secret after verifying it.

        Raises:
            PermissionDenied: wrong secret
        """
        if not identity:
            raise Unauthenticated("User must be authenticated")
        if not secret:
            raise InvalidArgument("Password is required")
        if not await self.verify_credential(identity, secret):
            raise PermissionDenied("Invalid password")

        await self.redis.delete(self._credential_key(identity))
        await self._log_event("credential_deleted", {"identity": identity})
        logger.info(f"Credential deleted for {identity}")

    async def get_roles(self, identity: str, claims: Optional[dict] = None) -> Set[str]:
        """
        Roles held by ``identity``.

        Args:
            identity: Authenticated identity
            claims: Verified token claims; boolean role flags and a
                ``roles`` list are both honoured

        Returns:
            Set of role names
        """
        members = await self.redis.smembers(self._roles_key(identity))
        roles = {m.decode("utf-8") if isinstance(m, bytes) else m for m in members or ()}

        if claims:
            roles.update(name for name in self.role_claims if claims.get(name) is True)
            roles.update(r for r in claims.get("roles", []) if isinstance(r, str))

        return roles

    async def grant_roles(self, identity: str, roles: Iterable[str]) -> None:
        roles = list(roles)
        if roles:
            await self.redis.sadd(self._roles_key(identity), *roles)
            await self._log_event("roles_granted", {"identity": identity, "roles": sorted(roles)})

    async def verify_for_role(
        self, identity: str, secret: str, claims: Optional[dict] = None
    ) -> str:
        """
        Verify a secret and report the caller's highest staff role.

        Raises:
            InvalidArgument: no secret supplied
            PermissionDenied: no credential set, or it does not match
        """
        if not identity:
            raise Unauthenticated("User must be authenticated")
        if not secret:
            raise InvalidArgument("Password is required")
        if not await self.has_credential(identity):
            raise PermissionDenied("No password set for this user")
        if not await self.verify_credential(identity, secret):
            raise PermissionDenied("Invalid password")

        roles = await self.get_roles(identity, claims)
        for role in ROLE_PRECEDENCE:
            if role in roles:
                return role
        return "none"

    async def set_admin_credential(
        self,
        caller: str,
        target: str,
        secret: str,
        caller_claims: Optional[dict] = None,
    ) -> Set[str]:
        """
        Owner-only: set ``target``'s secret and grant every staff role.

        Returns:
            Roles granted to the target
        """
        if not caller:
            raise Unauthenticated("User must be authenticated")
        if "owner" not in await self.get_roles(caller, caller_claims):
            raise PermissionDenied("Only owners can set admin passwords")
        if not target or not secret:
            raise InvalidArgument("userId and password are required")
        if len(secret) < self.min_length:
            raise InvalidArgument(f"Password must be at least {self.min_length} characters")

        granted = {"owner", "admin", "teacher", "student"}
        await self.redis.hset(self._credential_key(target), mapping=self._hash_secret(secret))
        await self.grant_roles(target, granted)
        await self._log_event("admin_credential_set", {"caller": caller, "target": target})
        logger.info(f"Admin credential and roles set for {target} by {caller}")
        return granted

    async def _log_event(self, event_type: str, data: dict):
        """Append a credential event to the audit trail."""
        event = {"type": event_type, "data": data, "timestamp": datetime.now(UTC).isoformat()}
        await self.redis.lpush("credentials:audit", json.dumps(event))
        await self.redis.ltrim("credentials:audit", 0, 9999)
