"""Typed settings for the HTTP surface and its authentication schemes."""
import os
from dataclasses import dataclass
from typing import List, Optional, Protocol


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def _csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class OIDCConfig:
    enabled: bool
    issuer: Optional[str]
    client_id: str
    jwks_uri: Optional[str]
    audience: Optional[str]
    identity_claim: str
    # Boolean claims that grant the role of the same name
    role_claims: List[str]

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.issuer)


@dataclass
class APIConfig:
    port: int
    host: str
    debug: bool
    cors_origins: List[str]


@dataclass
class AuthConfig:
    api_keys_enabled: bool
    oauth_enabled: bool
    require_auth: bool
    # identity:key pairs
    api_keys: List[str]


class ConfigProvider(Protocol):
    def get_oidc_config(self) -> OIDCConfig: ...

    def get_api_config(self) -> APIConfig: ...

    def get_auth_config(self) -> AuthConfig: ...


class EnvConfigProvider:
    """Reads every setting from the process environment on each call."""

    def get_oidc_config(self) -> OIDCConfig:
        issuer = os.getenv("OIDC_ISSUER")
        client_id = os.getenv("OIDC_CLIENT_ID", "stafflock")
        default_jwks = f"{issuer}/jwks" if issuer else None

        return OIDCConfig(
            enabled=_flag("OIDC_ENABLED"),
            issuer=issuer,
            client_id=client_id,
            jwks_uri=os.getenv("OIDC_JWKS_URI") or default_jwks,
            audience=os.getenv("OIDC_AUDIENCE") or client_id,
            identity_claim=os.getenv("OIDC_IDENTITY_CLAIM", "sub"),
            role_claims=_csv(os.getenv("OIDC_ROLE_CLAIMS", "owner,admin,teacher,student,parent")),
        )

    def get_api_config(self) -> APIConfig:
        return APIConfig(
            port=int(os.getenv("API_PORT", "8080")),
            host=os.getenv("API_HOST", "0.0.0.0"),
            debug=_flag("API_DEBUG"),
            cors_origins=_csv(os.getenv("CORS_ORIGINS", "*")),
        )

    def get_auth_config(self) -> AuthConfig:
        """
        Raises:
            ValueError: neither API_KEYS nor OIDC_ENABLED gives callers a way in
        """
        oauth_enabled = _flag("OIDC_ENABLED")
        api_keys = _csv(os.getenv("API_KEYS", ""))

        if not api_keys and not oauth_enabled:
            raise ValueError(
                "API_KEYS is required when OIDC is disabled "
                "(format: identity:key,identity:key)"
            )

        return AuthConfig(
            api_keys_enabled=bool(api_keys),
            oauth_enabled=oauth_enabled,
            require_auth=_flag("REQUIRE_AUTH", "true"),
            api_keys=api_keys,
        )
