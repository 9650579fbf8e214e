"""Runtime settings for the ladder, read from the environment (and a .env file)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .logging_config import get_logger

log = get_logger(__name__)

load_dotenv()


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


def _int(name: str, default: int, minimum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        log.warning("Invalid %s value %r, using default %s", name, raw, default)
        return default
    if minimum is not None and value < minimum:
        log.warning("%s must be >= %s, using default %s", name, minimum, default)
        return default
    return value


def _float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        log.warning("Invalid %s value %r, using default %s", name, raw, default)
        return default
    if value <= minimum:
        log.warning("%s must be positive, using default %s", name, default)
        return default
    return value


def _id_list(name: str) -> frozenset[int]:
    ids = set()
    for part in os.getenv(name, "").split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.add(int(part))
        except ValueError:
            log.warning("Ignoring non-numeric id %r in %s", part, name)
    return frozenset(ids)


@dataclass(frozen=True)
class Settings:
    database_path: str = "./pong_rank.sqlite"
    test_mode: bool = False
    test_guild_id: int | None = None
    k_factor: int = 32
    starting_rating: int = 1500
    confirm_window_hours: int = 48
    sweep_interval_minutes: int = 60
    db_busy_timeout: float = 10.0
    notify_timeout: float = 5.0
    admin_ids: frozenset[int] = field(default_factory=frozenset)
    discord_token: str | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        test_mode = _flag("TEST_MODE")
        database_path = os.getenv(
            "DATABASE_PATH",
            "./test_pong_rank.sqlite" if test_mode else "./pong_rank.sqlite",
        )
        if _flag("EPHEMERAL_DB"):
            database_path = "file::memory:?cache=shared"

        return cls(
            database_path=database_path,
            test_mode=test_mode,
            test_guild_id=_int("TEST_GUILD_ID", 0) or None,
            k_factor=_int("K_FACTOR", 32, minimum=1),
            starting_rating=_int("STARTING_RATING", 1500, minimum=1),
            confirm_window_hours=_int("CONFIRM_WINDOW_HOURS", 48, minimum=0),
            sweep_interval_minutes=_int("SWEEP_INTERVAL_MINUTES", 60, minimum=1),
            db_busy_timeout=_float("DB_BUSY_TIMEOUT", 10.0),
            notify_timeout=_float("NOTIFY_TIMEOUT", 5.0),
            admin_ids=_id_list("ADMIN_IDS"),
            discord_token=os.getenv("DISCORD_TOKEN") or None,
        )

    def is_admin(self, user_id: int) -> bool:
        return user_id in self.admin_ids
