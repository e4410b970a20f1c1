"""Seams between the authentication facade and its verifiers."""
from typing import Any, Dict, Optional, Protocol, Tuple


class TokenValidator(Protocol):
    async def validate_jwt_async(self, token: str) -> Tuple[bool, Optional[Dict[str, Any]]]:
        """Return (True, claims) for a verified JWT, (False, None) otherwise."""
        ...


class ApiKeyVerifier(Protocol):
    async def verify_api_key(self, api_key: str) -> Tuple[bool, Optional[str]]:
        """Return (True, identity) for a known key, (False, None) otherwise."""
        ...
