"""
Stream client configuration loader.

Design rules:
- Import-safe (no side effects)
- JSON-only configuration, validated against stream.schema.json
- Validation failures are warnings; every field falls back to its default
- MATCHCHAT_API_BASE_URL overrides the configured base URL
"""

from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from jsonschema import Draft7Validator

from shared.logging.logger import get_logger

log = get_logger("shared.config.stream")

_CONFIG_PATH = Path(__file__).parent / "stream.json"
_SCHEMA_PATH = Path(__file__).parent / "stream.schema.json"

BASE_URL_ENV = "MATCHCHAT_API_BASE_URL"

# Server emits a liveness ping every 30 seconds.
SERVER_PING_INTERVAL_SECONDS = 30.0


@dataclass(frozen=True)
class StreamSettings:
    heartbeat_timeout_seconds: float = 45.0
    reconnect_base_delay_seconds: float = 3.0
    max_reconnect_attempts: int = 5
    near_bottom_tolerance_px: int = 50

    def reconnect_delay(self, attempt: int) -> float:
        return self.reconnect_base_delay_seconds * attempt


@dataclass(frozen=True)
class ApiSettings:
    base_url: str = "https://room-rant-backend.onrender.com"
    timeout_seconds: float = 30.0

    def rooms_url(self) -> str:
        return f"{self.base_url}/rooms"

    def join_url(self, room_id: str) -> str:
        return f"{self.base_url}/rooms/{room_id}/join"

    def messages_url(self, room_id: str) -> str:
        return f"{self.base_url}/rooms/{room_id}/messages"

    def stream_url(self, room_id: str) -> str:
        return f"{self.base_url}/rooms/{room_id}/stream"


@dataclass(frozen=True)
class ClientConfig:
    stream: StreamSettings = field(default_factory=StreamSettings)
    api: ApiSettings = field(default_factory=ApiSettings)


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------

def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        log.warning(f"stream.json not found at {path}; using defaults")
        return {}

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        log.warning(f"Failed to load stream.json ({e}); using defaults")
        return {}

    if not isinstance(data, dict):
        log.warning("stream.json root is not an object; using defaults")
        return {}
    return data


def _validate(payload: Dict[str, Any], schema_path: Path = _SCHEMA_PATH) -> None:
    if not schema_path.exists():
        log.debug(f"Schema not found at {schema_path}; skipping validation")
        return

    schema = json.loads(schema_path.read_text(encoding="utf-8"))
    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(payload), key=lambda e: list(e.path))

    for err in errors:
        loc = "/".join(str(p) for p in err.path)
        log.warning(f"stream config validation warning at '{loc}': {err.message}")


def _positive_float(raw: Dict[str, Any], key: str, default: float) -> float:
    value = raw.get(key, default)
    try:
        number = float(value)
    except (TypeError, ValueError):
        log.warning(f"{key} must be a number; defaulting to {default}")
        return default
    if not math.isfinite(number) or number <= 0:
        log.warning(f"{key} must be a positive finite number; defaulting to {default}")
        return default
    return number


def _non_negative_int(raw: Dict[str, Any], key: str, default: int) -> int:
    value = raw.get(key, default)
    if isinstance(value, bool):
        log.warning(f"{key} must be an integer; defaulting to {default}")
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        log.warning(f"{key} must be an integer; defaulting to {default}")
        return default
    if number < 0:
        log.warning(f"{key} must not be negative; defaulting to {default}")
        return default
    return number


def _load_stream_settings(raw: Optional[Dict[str, Any]]) -> StreamSettings:
    if not isinstance(raw, dict):
        return StreamSettings()

    heartbeat = _positive_float(
        raw, "heartbeat_timeout_seconds", StreamSettings.heartbeat_timeout_seconds
    )
    if heartbeat <= SERVER_PING_INTERVAL_SECONDS:
        log.warning(
            f"heartbeat_timeout_seconds={heartbeat} must exceed the server ping "
            f"interval ({SERVER_PING_INTERVAL_SECONDS}s); defaulting to "
            f"{StreamSettings.heartbeat_timeout_seconds}"
        )
        heartbeat = StreamSettings.heartbeat_timeout_seconds

    return StreamSettings(
        heartbeat_timeout_seconds=heartbeat,
        reconnect_base_delay_seconds=_positive_float(
            raw,
            "reconnect_base_delay_seconds",
            StreamSettings.reconnect_base_delay_seconds,
        ),
        max_reconnect_attempts=_non_negative_int(
            raw, "max_reconnect_attempts", StreamSettings.max_reconnect_attempts
        ),
        near_bottom_tolerance_px=_non_negative_int(
            raw, "near_bottom_tolerance_px", StreamSettings.near_bottom_tolerance_px
        ),
    )


def _load_api_settings(raw: Optional[Dict[str, Any]]) -> ApiSettings:
    raw = raw if isinstance(raw, dict) else {}

    base_url = os.getenv(BASE_URL_ENV, "").strip() or raw.get("base_url")
    if not isinstance(base_url, str) or not base_url.strip():
        base_url = ApiSettings.base_url

    return ApiSettings(
        base_url=base_url.strip().rstrip("/"),
        timeout_seconds=_positive_float(
            raw, "timeout_seconds", ApiSettings.timeout_seconds
        ),
    )


# ------------------------------------------------------------
# Public API
# ------------------------------------------------------------

def load_client_config(
    raw: Optional[Dict[str, Any]] = None,
    *,
    path: Optional[Path] = None,
) -> ClientConfig:
    """
    Load the client configuration.

    Expected shape:
    {
        "stream": {
            "heartbeat_timeout_seconds": 45,
            "reconnect_base_delay_seconds": 3,
            "max_reconnect_attempts": 5,
            "near_bottom_tolerance_px": 50
        },
        "api": {
            "base_url": "https://...",
            "timeout_seconds": 30
        }
    }
    """
    if raw is None:
        raw = _load_json(path or _CONFIG_PATH)

    _validate(raw)

    return ClientConfig(
        stream=_load_stream_settings(raw.get("stream")),
        api=_load_api_settings(raw.get("api")),
    )


__all__ = [
    "ApiSettings",
    "ClientConfig",
    "StreamSettings",
    "BASE_URL_ENV",
    "SERVER_PING_INTERVAL_SECONDS",
    "load_client_config",
]
