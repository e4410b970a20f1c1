"""
Logging configuration for the stafflock API.

Access log lines for probe endpoints are dropped.
"""

import logging
from typing import Any, Dict

PROBE_PATHS = ("/healthz", "/health", "/metrics")


class ProbeFilter(logging.Filter):
    """Drop uvicorn access lines for probe endpoints."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name != "uvicorn.access":
            return True
        # uvicorn passes (client, method, path, http_version, status)
        args = record.args if isinstance(record.args, tuple) else ()
        if len(args) >= 3:
            path = str(args[2]).split("?", 1)[0]
            return not (args[1] == "GET" and path in PROBE_PATHS)
        message = record.getMessage()
        return not ("GET" in message and any(f"{p} " in message for p in PROBE_PATHS))


def get_logging_config(level: str = "INFO") -> Dict[str, Any]:
    """dictConfig for uvicorn and the stafflock loggers at ``level``."""
    level = level.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "probe_filter": {"()": ProbeFilter},
        },
        "formatters": {
            "default": {"format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"},
            "access": {"format": "%(message)s"},
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            },
            "access": {
                "class": "logging.StreamHandler",
                "formatter": "access",
                "stream": "ext://sys.stdout",
                "filters": ["probe_filter"],
            },
        },
        "loggers": {
            "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.error": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
            "stafflock": {"handlers": ["default"], "level": level, "propagate": False},
        },
        "root": {"level": level, "handlers": ["default"]},
    }
