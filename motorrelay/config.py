"""Environment-driven settings for the relay process."""
from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from motorrelay.errors import ConfigError


class LogQueryPolicy(str, Enum):
    """How ``getLogs`` treats a request without a full date range."""

    LENIENT = "lenient"  # unrestricted queries return the newest entries
    STRICT = "strict"  # both startDate and endDate are required


class IdentifyPolicy(str, Enum):
    """How a second ``esp32-identify`` is treated while a device is connected."""

    REPLACE = "replace"  # last writer wins
    REJECT = "reject"  # keep the open device, refuse the newcomer


DEFAULT_PORT = 3000
DEFAULT_HOST = "0.0.0.0"
DEFAULT_STATIC_DIR = "public"


def _policy(enum_cls, raw: Optional[str], default):
    if raw is None or not raw.strip():
        return default
    try:
        return enum_cls(raw.strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConfigError(f"invalid {enum_cls.__name__} {raw!r}; expected one of: {allowed}") from None


def _port(raw: Optional[str]) -> int:
    if raw is None or not raw.strip():
        return DEFAULT_PORT
    try:
        port = int(raw)
    except ValueError:
        raise ConfigError(f"PORT must be an integer, got {raw!r}") from None
    if not 0 < port < 65536:
        raise ConfigError(f"PORT out of range: {port}")
    return port


@dataclass(frozen=True, slots=True)
class RelaySettings:
    database_url: Optional[str] = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    static_dir: Path = Path(DEFAULT_STATIC_DIR)
    log_query_policy: LogQueryPolicy = LogQueryPolicy.LENIENT
    identify_policy: IdentifyPolicy = IdentifyPolicy.REPLACE
    journal_path: Optional[Path] = None

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        *,
        load_env_file: bool = True,
    ) -> "RelaySettings":
        """Build settings from ``env`` (default: ``os.environ`` after loading ``.env``)."""
        if env is None:
            if load_env_file:
                load_dotenv()
            env = os.environ
        database_url = (env.get("RELAY_DATABASE_URL") or env.get("MONGODB_URI") or "").strip() or None
        journal = (env.get("RELAY_JOURNAL_PATH") or "").strip()
        return cls(
            database_url=database_url,
            host=(env.get("HOST") or DEFAULT_HOST).strip(),
            port=_port(env.get("PORT")),
            static_dir=Path(env.get("RELAY_STATIC_DIR") or DEFAULT_STATIC_DIR),
            log_query_policy=_policy(LogQueryPolicy, env.get("RELAY_LOG_QUERY_POLICY"), LogQueryPolicy.LENIENT),
            identify_policy=_policy(IdentifyPolicy, env.get("RELAY_IDENTIFY_POLICY"), IdentifyPolicy.REPLACE),
            journal_path=Path(journal) if journal else None,
        )


__all__ = [
    "RelaySettings",
    "LogQueryPolicy",
    "IdentifyPolicy",
    "DEFAULT_PORT",
    "DEFAULT_HOST",
]
