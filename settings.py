from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


@dataclass(frozen=True)
class Settings:
    # Backend
    mongodb_uri: str
    connect_timeout: float
    strict_tables: bool

    # Debug
    debug_log_requests: bool


def get_settings(*, env_file: str | None = None) -> Settings:
    # Values already in the process environment win over the .env file.
    load_dotenv(env_file)

    mongodb_uri = os.getenv("MONGODB_URI", "").strip()

    # Upper bound on the startup ping only; CRUD calls use the caller's deadline.
    connect_timeout = _env_float("MONGODB_CONNECT_TIMEOUT", 10.0)

    strict_tables = _env_bool("MONGODB_STRICT_TABLES", False)
    debug_log_requests = _env_bool("DEBUG_LOG_REQUESTS", False)

    return Settings(
        mongodb_uri=mongodb_uri,
        connect_timeout=connect_timeout,
        strict_tables=strict_tables,
        debug_log_requests=debug_log_requests,
    )
