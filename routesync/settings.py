from __future__ import annotations

import os
from dataclasses import dataclass


def _env_first(*names: str) -> str | None:
    for name in names:
        raw = os.getenv(name)
        if raw is not None and raw.strip():
            return raw.strip()
    return None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Discovery backend (Tutum-style service API)
    discovery_url: str | None = _env_first("ROUTESYNC_DISCOVERY_URL", "TUTUM_SERVICE_API_URL")
    discovery_auth: str | None = _env_first("ROUTESYNC_DISCOVERY_AUTH", "TUTUM_AUTH")
    discovery_timeout_s: float = _env_float("ROUTESYNC_DISCOVERY_TIMEOUT_S", 10.0)

    # Core
    poll_interval_s: int = _env_int("ROUTESYNC_POLL_INTERVAL_S", 30)
    declarations_path: str = os.getenv("ROUTESYNC_DECLARATIONS_PATH", "/var/local/routesync/config.json")
    db_path: str = os.getenv("ROUTESYNC_DB_PATH", "routesync.db")

    # Admin surface
    admin_user: str = os.getenv("ROUTESYNC_ADMIN_USER", "admin")
    # No password configured means nobody can authenticate.
    admin_password: str | None = _env_first("ROUTESYNC_ADMIN_PASSWORD", "HAPROXY_UI_PASSWORD")


settings = Settings()
