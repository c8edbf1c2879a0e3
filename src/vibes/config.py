"""Configuration persistence for vibes."""

from __future__ import annotations

from dataclasses import asdict, dataclass
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from vibes.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_REDIRECT_URI = "http://127.0.0.1:8989/login"


@dataclass(frozen=True)
class AppConfig:
    """Tunable settings persisted as ``config.json``."""

    redirect_uri: str = DEFAULT_REDIRECT_URI
    open_browser: bool = True
    poll_interval: float = 2.0
    tick_interval: float = 0.25
    seek_step_ms: int = 10_000
    volume_step: int = 5
    volume: int = 50
    queue_capacity: int = 50
    queue_low_water: int = 10
    token_margin_seconds: float = 60.0
    max_attempts: int = 4
    backoff_base: float = 0.5
    backoff_ceiling: float = 8.0
    request_timeout: float = 10.0


@dataclass(frozen=True)
class ClientCredentials:
    """Spotify application credentials; only ever read from the environment."""

    client_id: str
    client_secret: Optional[str]
    redirect_uri: str


def get_config_dir(app_name: str = "vibes") -> Path:
    """Return the per-user config directory, creating it on first use."""
    home = Path.home()
    if os.name == "nt":
        root = Path(os.environ.get("APPDATA") or home / "AppData" / "Roaming")
    elif os.name == "posix" and _is_macos():
        root = home / "Library" / "Application Support"
    else:
        root = Path(os.environ.get("XDG_CONFIG_HOME") or home / ".config")
    return _ensure_dir(root / app_name)


def load_config() -> AppConfig:
    """Read ``config.json``; any problem yields the defaults."""
    path = get_config_path()
    if not path.exists():
        return AppConfig()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        logger.exception("Unreadable config at %s; using defaults", path)
        return AppConfig()
    if not isinstance(raw, dict):
        logger.warning("Ignoring config at %s: expected a JSON object", path)
        return AppConfig()
    return _config_from_mapping(raw)


def save_config(cfg: AppConfig) -> None:
    """Write ``cfg`` next to the final path, then swap it into place."""
    path = get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_suffix(".tmp")
    staging.write_text(json.dumps(asdict(cfg), indent=2), encoding="utf-8")
    os.replace(staging, path)


def load_client_credentials(
    cfg: AppConfig, env_path: Optional[Path] = None
) -> ClientCredentials:
    """Read Spotify app credentials from the environment (and ``.env``)."""
    load_dotenv(dotenv_path=env_path)
    client_id = os.getenv("SPOTIFY_CLIENT_ID", "").strip()
    if not client_id:
        raise ConfigError(
            "SPOTIFY_CLIENT_ID is missing. Set it in your environment or a .env "
            "file (get one at https://developer.spotify.com/dashboard)."
        )
    secret = os.getenv("SPOTIFY_CLIENT_SECRET", "").strip() or None
    redirect = os.getenv("SPOTIFY_REDIRECT_URI", "").strip() or cfg.redirect_uri
    return ClientCredentials(
        client_id=client_id, client_secret=secret, redirect_uri=redirect
    )


def get_config_path() -> Path:
    """Location of ``config.json``."""
    return get_config_dir() / "config.json"


def _ensure_dir(path: Path) -> Path:
    """mkdir -p ``path`` and hand it back."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def _is_macos() -> bool:
    return sys.platform == "darwin"


def _get_bool(raw: dict[str, Any], key: str, default: bool) -> bool:
    value = raw.get(key)
    return value if isinstance(value, bool) else default


def _number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _get_int(
    raw: dict[str, Any],
    key: str,
    default: int,
    *,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    """Read an integer setting, clamped to the given bounds."""
    value = raw.get(key)
    result = value if _number(value) and isinstance(value, int) else default
    if min_value is not None and result < min_value:
        result = min_value
    if max_value is not None and result > max_value:
        result = max_value
    return result


def _get_float(
    raw: dict[str, Any],
    key: str,
    default: float,
    *,
    min_value: float | None = None,
) -> float:
    """Read a duration or rate; hand-written ints count as floats."""
    value = raw.get(key)
    result = float(value) if _number(value) else default
    return result if min_value is None else max(min_value, result)


def _get_str(raw: dict[str, Any], key: str, default: str) -> str:
    value = raw.get(key)
    return value if isinstance(value, str) and value else default


def _config_from_mapping(raw: dict[str, Any]) -> AppConfig:
    """Build an AppConfig from untrusted JSON, clamping each field."""
    capacity = _get_int(raw, "queue_capacity", 50, min_value=2, max_value=100)
    low_water = _get_int(
        raw, "queue_low_water", 10, min_value=1, max_value=capacity - 1
    )
    return AppConfig(
        redirect_uri=_get_str(raw, "redirect_uri", DEFAULT_REDIRECT_URI),
        open_browser=_get_bool(raw, "open_browser", True),
        poll_interval=_get_float(raw, "poll_interval", 2.0, min_value=0.5),
        tick_interval=_get_float(raw, "tick_interval", 0.25, min_value=0.05),
        seek_step_ms=_get_int(raw, "seek_step_ms", 10_000, min_value=1000),
        volume_step=_get_int(raw, "volume_step", 5, min_value=1, max_value=50),
        volume=_get_int(raw, "volume", 50, min_value=0, max_value=100),
        queue_capacity=capacity,
        queue_low_water=low_water,
        token_margin_seconds=_get_float(
            raw, "token_margin_seconds", 60.0, min_value=0.0
        ),
        max_attempts=_get_int(raw, "max_attempts", 4, min_value=1, max_value=10),
        backoff_base=_get_float(raw, "backoff_base", 0.5, min_value=0.0),
        backoff_ceiling=_get_float(raw, "backoff_ceiling", 8.0, min_value=0.0),
        request_timeout=_get_float(raw, "request_timeout", 10.0, min_value=1.0),
    )
