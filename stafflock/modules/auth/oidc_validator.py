"""
JWT validation against an OIDC provider's published signing keys.

Verified claims are memoised per token for a few minutes, never beyond
the token's own ``exp``.
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple

import jwt
from jwt import PyJWKClient

from ...config.provider import OIDCConfig
from .interfaces import TokenValidator

logger = logging.getLogger(__name__)

ALGORITHMS = ["RS256", "RS384", "RS512"]
CLAIMS_CACHE_SECONDS = 300
JWKS_CACHE_SECONDS = 3600

Rejected = (False, None)


class OIDCValidator(TokenValidator):
    def __init__(self, config: OIDCConfig, jwks_client: Optional[PyJWKClient] = None):
        """
        Args:
            config: OIDC settings; validation is refused unless ``config.is_configured``
            jwks_client: Key client to use instead of one built from ``config.jwks_uri``
        """
        self.config = config
        self.cache: Dict[str, Tuple[Dict[str, Any], float]] = {}
        self.jwks_client = jwks_client or self._build_jwks_client(config)

    @staticmethod
    def _build_jwks_client(config: OIDCConfig) -> Optional[PyJWKClient]:
        if not (config.is_configured and config.jwks_uri):
            return None
        try:
            return PyJWKClient(config.jwks_uri, cache_keys=True, lifespan=JWKS_CACHE_SECONDS)
        except Exception as e:
            logger.warning(f"JWKS client unavailable for {config.jwks_uri}: {e}")
            return None

    def _cached(self, token: str) -> Optional[Dict[str, Any]]:
        entry = self.cache.get(token)
        if entry is None:
            return None
        claims, expires_at = entry
        if time.time() >= expires_at:
            del self.cache[token]
            return None
        return claims

    def _decode(self, token: str) -> Dict[str, Any]:
        signing_key = self.jwks_client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=ALGORITHMS,
            audience=self.config.audience,
            issuer=self.config.issuer,
            options={
                "verify_aud": bool(self.config.audience),
                "verify_iss": bool(self.config.issuer),
                "require": ["exp", "iat", "sub"],
            },
        )

    async def validate_jwt_async(self, token: str) -> Tuple[bool, Optional[Dict[str, Any]]]:
        """
        Verify signature, issuer, audience and expiry of a token.

        Args:
            token: Raw JWT, optionally prefixed with "Bearer "

        Returns:
            (True, claims) when valid, otherwise (False, None)
        """
        token = token.removeprefix("Bearer ")

        claims = self._cached(token)
        if claims is not None:
            return True, claims

        if not self.config.is_configured:
            logger.debug("OIDC disabled, token refused")
            return Rejected
        if self.jwks_client is None:
            logger.error("No JWKS client, JWT signatures cannot be verified")
            return Rejected

        try:
            claims = self._decode(token)
        except jwt.PyJWKClientError as e:
            logger.warning(f"Signing key lookup failed: {e}")
            return Rejected
        except jwt.InvalidTokenError as e:
            logger.debug(f"JWT refused ({type(e).__name__}): {e}")
            return Rejected

        self.cache[token] = (claims, min(time.time() + CLAIMS_CACHE_SECONDS, float(claims["exp"])))
        return True, claims
