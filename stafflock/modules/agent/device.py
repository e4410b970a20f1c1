"""Persistent per-device identifier."""

import json
import logging
import secrets
import string
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_FILE = Path.home() / ".stafflock" / "device.json"

_ALPHABET = string.ascii_lowercase + string.digits


def generate_device_id() -> str:
    """``device_<epoch ms>_<9 random chars>``; distinguishes devices, proves nothing."""
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(9))
    return f"device_{int(time.time() * 1000)}_{suffix}"


class DeviceIdentity:
    """
    Device identifier stored once in a small JSON file and reused afterwards.

    Deleting the file makes the next run look like a new device.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else DEFAULT_DEVICE_FILE
        self._device_id: Optional[str] = None

    def load_or_create(self) -> str:
        if self._device_id:
            return self._device_id

        device_id = self._read()
        if device_id:
            logger.info(f"Using existing device ID: {device_id}")
        else:
            device_id = generate_device_id()
            self._write(device_id)
            logger.info(f"Generated new device ID: {device_id}")

        self._device_id = device_id
        return device_id

    def _read(self) -> Optional[str]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable device file {self.path}, generating a new ID: {e}")
            return None
        device_id = data.get("device_id") if isinstance(data, dict) else None
        return device_id if isinstance(device_id, str) and device_id else None

    def _write(self, device_id: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"device_id": device_id, "created_at": datetime.now(UTC).isoformat()}
        self.path.write_text(json.dumps(payload), encoding="utf-8")
