"""
Dual-scheme authentication: staff JWTs first, then device/service API keys.

Verified JWT claims are returned alongside the identity so that role
claims can count towards staff roles.
"""

import json
import logging
from collections import Counter
from datetime import UTC, datetime
from typing import Optional, Tuple

from .interfaces import ApiKeyVerifier, TokenValidator

logger = logging.getLogger(__name__)

AUDIT_KEY = "auth:audit:enhanced"
AUDIT_LIMIT = 10_000

Credentials = Tuple[bool, Optional[str], Optional[str], Optional[dict]]


class EnhancedAuthModule:
    def __init__(
        self,
        redis_client,
        base_auth_module: ApiKeyVerifier,
        token_validator: TokenValidator,
        identity_claim: str = "sub",
    ):
        """
        Args:
            redis_client: Async Redis client for the audit trail, or None
            base_auth_module: API key verifier
            token_validator: JWT validator
            identity_claim: Claim used as identity, ``sub`` when absent from a token
        """
        self.redis = redis_client
        self.base_auth = base_auth_module
        self.token_validator = token_validator
        self.identity_claim = identity_claim
        self.auth_stats = Counter({"api_key": 0, "jwt": 0, "failed": 0})

    async def _from_token(self, bearer_token: str) -> Optional[Credentials]:
        valid, claims = await self.token_validator.validate_jwt_async(bearer_token)
        if not (valid and claims):
            return None

        identity = claims.get(self.identity_claim) or claims.get("sub")
        await self._audit("jwt_authenticated", {"identity": identity, "sub": claims.get("sub")})
        return True, identity, "jwt", claims

    async def verify_credentials(
        self,
        api_key: Optional[str] = None,
        bearer_token: Optional[str] = None,
    ) -> Credentials:
        """
        Returns:
            (is_valid, identity, method, claims); claims is None for API keys
        """
        if bearer_token:
            result = await self._from_token(bearer_token)
            if result:
                self.auth_stats["jwt"] += 1
                return result

        if api_key:
            valid, identity = await self.base_auth.verify_api_key(api_key)
            if valid:
                self.auth_stats["api_key"] += 1
                return True, identity, "api_key", None

        self.auth_stats["failed"] += 1
        return False, None, None, None

    async def _audit(self, event_type: str, data: dict):
        if not self.redis:
            return
        entry = {"type": event_type, "data": data, "timestamp": datetime.now(UTC).isoformat()}
        await self.redis.lpush(AUDIT_KEY, json.dumps(entry))
        await self.redis.ltrim(AUDIT_KEY, 0, AUDIT_LIMIT - 1)

    async def get_auth_stats(self) -> dict:
        return {
            "stats": dict(self.auth_stats),
            "timestamp": datetime.now(UTC).isoformat(),
        }
