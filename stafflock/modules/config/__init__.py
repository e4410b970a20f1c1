"""
Config Module - Black Box Interface

Purpose: Settings for the session API, read once from the environment
Interface: get_config(), ConfigModule.get(), ConfigModule.get_all(), ConfigModule.get_config_schema()
Hidden: Environment variable names, parsing and range checks
"""

import os
from typing import Any, Dict, List

# Keys every ConfigModule is guaranteed to hold, with their meaning
REQUIRED_CONFIG_KEYS = {
    "redis_host": "Redis server hostname",
    "redis_port": "Redis server port number",
    "redis_db": "Redis database number",
    "host": "API server bind address",
    "port": "API server port",
    "log_level": "Logging level (DEBUG, INFO, WARNING, ERROR)",
    "session_ttl": "Staff session time-to-live in seconds (never renewed)",
    "staff_roles": "Roles allowed to start a staff session",
    "credential_iterations": "PBKDF2 iterations for stored staff credentials",
    "min_password_length": "Minimum staff credential length",
    "max_failed_attempts": "Denied write-access checks before lockout",
    "lockout_seconds": "Write-access lockout duration in seconds",
}

OPTIONAL_CONFIG_KEYS = {
    "redis_password": {"description": "Redis authentication password", "default": None},
    "debug": {"description": "Reload the API on code changes", "default": False},
    "environment": {"description": "Deployment environment name", "default": "development"},
}


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _parse_port(value: str) -> int:
    # Kubernetes service links inject REDIS_PORT as tcp://host:port
    if value.startswith("tcp://"):
        value = value.rsplit(":", 1)[-1]
    return int(value)


def _parse_roles(value: str) -> List[str]:
    return [role.strip() for role in value.split(",") if role.strip()]


class ConfigModule:
    """Immutable snapshot of the process environment."""

    def __init__(self):
        self._config = self._read_environment()
        self._check()

    @staticmethod
    def _read_environment() -> Dict[str, Any]:
        return {
            "redis_host": os.getenv("REDIS_HOST", "localhost"),
            "redis_port": _parse_port(os.getenv("REDIS_PORT", "6379")),
            "redis_db": _env_int("REDIS_DB", 0),
            "redis_password": os.getenv("REDIS_PASSWORD"),
            "host": os.getenv("API_HOST", "0.0.0.0"),
            "port": _env_int("API_PORT", 8080),
            "log_level": os.getenv("LOG_LEVEL", "INFO"),
            "debug": os.getenv("DEBUG", "false").lower() == "true",
            "environment": os.getenv("ENVIRONMENT", "development"),
            "session_ttl": _env_int("SESSION_TTL", 900),
            "staff_roles": _parse_roles(os.getenv("STAFF_ROLES", "admin,owner,teacher")),
            "credential_iterations": _env_int("CREDENTIAL_ITERATIONS", 200_000),
            "min_password_length": _env_int("MIN_PASSWORD_LENGTH", 8),
            "max_failed_attempts": _env_int("MAX_FAILED_ATTEMPTS", 5),
            "lockout_seconds": _env_int("LOCKOUT_SECONDS", 900),
        }

    def _check(self) -> None:
        """
        Raises:
            ValueError: a required key is unset or a session setting is out of range
        """
        missing = [key for key in REQUIRED_CONFIG_KEYS if self._config.get(key) is None]
        if missing:
            raise ValueError(f"Missing required configuration keys: {', '.join(missing)}")

        if self._config["session_ttl"] <= 0:
            raise ValueError("SESSION_TTL must be a positive number of seconds")
        if not self._config["staff_roles"]:
            raise ValueError("STAFF_ROLES must name at least one role")

    def get(self, key: str, default: Any = None) -> Any:
        return self._config.get(key, default)

    def get_all(self) -> Dict[str, Any]:
        return dict(self._config)

    @staticmethod
    def get_config_schema() -> Dict[str, Any]:
        """Describe the keys this module provides, split into required and optional."""
        return {
            "required": dict(REQUIRED_CONFIG_KEYS),
            "optional": dict(OPTIONAL_CONFIG_KEYS),
        }


_instance = None


def get_config() -> ConfigModule:
    """Process-wide ConfigModule, created on first use."""
    global _instance
    if _instance is None:
        _instance = ConfigModule()
    return _instance


__all__ = ["get_config", "ConfigModule", "REQUIRED_CONFIG_KEYS", "OPTIONAL_CONFIG_KEYS"]
