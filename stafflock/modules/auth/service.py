"""
Authentication facade used by the HTTP layer.

Turns the two request headers into one ``AuthResult``; the session and
credential modules only ever see the resolved identity and its verified
claims.
"""

from dataclasses import dataclass
from typing import Any, Literal, Optional, Protocol

BEARER_PREFIX = "Bearer "


@dataclass
class AuthResult:
    """Outcome of authenticating one request."""
    ok: bool
    identity: Optional[str]
    method: Optional[Literal["api_key", "jwt"]]
    error: Optional[str] = None
    # Verified JWT claims; role flags in here count towards staff roles
    claims: Optional[dict] = None

    @classmethod
    def rejected(cls, error: str) -> "AuthResult":
        return cls(ok=False, identity=None, method=None, error=error)


class AuthenticationService(Protocol):
    async def authenticate(self, api_key: Optional[str], authorization: Optional[str]) -> AuthResult:
        ...


class DefaultAuthenticationService:
    """
    Facade over any module exposing ``verify_credentials``.

    Only ``Authorization: Bearer`` values are forwarded as tokens; other
    schemes are ignored.
    """

    def __init__(self, auth_module: Any):
        self._auth = auth_module

    @property
    def auth_module(self) -> Any:
        return self._auth

    async def authenticate(self, api_key: Optional[str], authorization: Optional[str]) -> AuthResult:
        """
        Resolve the caller from the X-API-Key and Authorization headers.

        Returns:
            AuthResult; ``ok`` is False with ``error`` set when neither verifies
        """
        bearer_token = authorization if authorization and authorization.startswith(BEARER_PREFIX) else None

        ok, identity, method, claims = await self._auth.verify_credentials(
            api_key=api_key,
            bearer_token=bearer_token,
        )
        if not (ok and identity):
            return AuthResult.rejected("Invalid credentials")

        return AuthResult(ok=True, identity=identity, method=method, claims=claims)
