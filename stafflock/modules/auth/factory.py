"""
Composition root for authentication.

Callers get an ``AuthenticationService``; which modules sit behind it
depends on whether OIDC is configured.
"""

import logging
from typing import Any, Optional

from ...config.provider import ConfigProvider
from .auth import AuthModule
from .enhanced import EnhancedAuthModule
from .oidc_validator import OIDCValidator
from .service import AuthenticationService, DefaultAuthenticationService

logger = logging.getLogger(__name__)


class AuthFactory:
    @staticmethod
    def build(
        config_provider: ConfigProvider,
        redis_client: Optional[Any] = None
    ) -> AuthenticationService:
        """
        Wire API key auth, plus JWT auth when OIDC is enabled and has an issuer.

        Args:
            config_provider: Source of auth and OIDC settings
            redis_client: Async Redis client for the audit trail

        Raises:
            ValueError: no authentication scheme is configured
        """
        auth_config = config_provider.get_auth_config()
        oidc_config = config_provider.get_oidc_config()
        api_key_auth = AuthModule(redis_client, api_keys=auth_config.api_keys)

        if not (auth_config.oauth_enabled and oidc_config.is_configured):
            logger.info("Auth: API keys only")
            return DefaultAuthenticationService(api_key_auth)

        logger.info(f"Auth: API keys and JWTs from {oidc_config.issuer}")
        return DefaultAuthenticationService(
            EnhancedAuthModule(
                redis_client=redis_client,
                base_auth_module=api_key_auth,
                token_validator=OIDCValidator(oidc_config),
                identity_claim=oidc_config.identity_claim,
            )
        )

    @staticmethod
    def build_for_testing(
        api_keys: Optional[list] = None,
        mock_validator: Optional[Any] = None,
    ) -> AuthenticationService:
        """Redis-free stack; passing ``mock_validator`` turns on JWT auth."""
        api_key_auth = AuthModule(None, api_keys=api_keys or [])
        if mock_validator is None:
            return DefaultAuthenticationService(api_key_auth)

        return DefaultAuthenticationService(
            EnhancedAuthModule(
                redis_client=None,
                base_auth_module=api_key_auth,
                token_validator=mock_validator,
            )
        )
