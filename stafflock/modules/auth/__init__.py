"""
Authentication Module - Black Box Interface

Purpose: Resolve the calling identity from an API key or bearer token
Interface: AuthFactory.build(), AuthenticationService.authenticate()
Hidden: Key formats, JWKS lookups, audit storage

This module can be completely replaced with any other auth implementation
(OAuth, JWT, external service) without affecting other modules.
"""

from .auth import AuthModule
from .enhanced import EnhancedAuthModule
from .factory import AuthFactory
from .oidc_validator import OIDCValidator
from .service import AuthenticationService, AuthResult, DefaultAuthenticationService

__all__ = [
    "AuthModule",
    "EnhancedAuthModule",
    "OIDCValidator",
    "AuthFactory",
    "AuthResult",
    "AuthenticationService",
    "DefaultAuthenticationService",
]
