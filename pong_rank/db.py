import aiosqlite
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

from .errors import PersistenceError
from .logging_config import get_logger
from .models import CONFIRMED, PENDING, REJECTED, ROLE_USER, to_timestamp

log = get_logger(__name__)

# Global database settings (set by init_db)
DB_PATH = "pong_rank.sqlite"
BUSY_TIMEOUT = 10.0

# Holds a shared in-memory database open between per-call connections
_keepalive: Optional[aiosqlite.Connection] = None


def _is_uri(path: str) -> bool:
    return path.startswith("file:")


def _now() -> str:
    return to_timestamp(datetime.now(timezone.utc))


@asynccontextmanager
async def connect(db_path: Optional[str] = None, operation: Optional[str] = None) -> AsyncIterator[aiosqlite.Connection]:
    """Open a connection in autocommit mode with dict-friendly rows.

    Any sqlite failure surfaces as PersistenceError.
    """
    path = db_path or DB_PATH
    try:
        async with aiosqlite.connect(path, timeout=BUSY_TIMEOUT, isolation_level=None, uri=_is_uri(path)) as db:
            db.row_factory = aiosqlite.Row
            yield db
    except aiosqlite.Error as e:
        raise PersistenceError(str(e), operation=operation) from e


@asynccontextmanager
async def transaction(operation: Optional[str] = None) -> AsyncIterator[aiosqlite.Connection]:
    """Run the body as one write transaction.

    BEGIN IMMEDIATE takes the write lock up front, so two transactions never
    interleave their read-check-write steps. Everything is rolled back if
    the body raises.
    """
    async with connect(operation=operation) as db:
        await db.execute("BEGIN IMMEDIATE")
        try:
            yield db
        except BaseException:
            await db.execute("ROLLBACK")
            log.debug("Rolled back transaction op=%s", operation)
            raise
        await db.execute("COMMIT")


# Helper to check if a table has a column
async def table_has_column(db: aiosqlite.Connection, table: str, column: str) -> bool:
    async with db.execute(f"PRAGMA table_info({table})") as cursor:
        async for row in cursor:
            if row[1] == column:
                return True
    return False


async def init_db(db_path: str = "pong_rank.sqlite", busy_timeout: float = 10.0) -> None:
    """Initialize the database with required tables and columns."""
    global DB_PATH, BUSY_TIMEOUT, _keepalive
    DB_PATH = db_path
    BUSY_TIMEOUT = busy_timeout

    if db_path.startswith("file::memory:") or db_path == ":memory:":
        if db_path == ":memory:":
            log.warning("':memory:' is per-connection; use 'file::memory:?cache=shared' instead")
        if _keepalive is None:
            _keepalive = await aiosqlite.connect(db_path, uri=_is_uri(db_path))

    async with connect(operation="init_db") as db:
        await db.execute("PRAGMA journal_mode=WAL")
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS players (
                user_id INTEGER PRIMARY KEY,
                username TEXT NOT NULL,
                rating INTEGER NOT NULL DEFAULT 1500,
                role TEXT CHECK(role IN ('user','admin')) NOT NULL DEFAULT 'user',
                wins INTEGER NOT NULL DEFAULT 0,
                losses INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS matches (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                kind TEXT CHECK(kind IN ('singles','doubles')) NOT NULL,
                side_a1 INTEGER NOT NULL REFERENCES players(user_id),
                side_a2 INTEGER REFERENCES players(user_id),
                side_b1 INTEGER NOT NULL REFERENCES players(user_id),
                side_b2 INTEGER REFERENCES players(user_id),
                games_a INTEGER NOT NULL,
                games_b INTEGER NOT NULL,
                status TEXT CHECK(status IN ('pending','confirmed','rejected')) NOT NULL DEFAULT 'pending',
                submitted_by INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                confirm_deadline TEXT NOT NULL,
                confirmed_at TEXT,
                change_a1 INTEGER,
                change_a2 INTEGER,
                change_b1 INTEGER,
                change_b2 INTEGER
            )
            """
        )
        # auto_confirmed was added after the first release
        if not await table_has_column(db, "matches", "auto_confirmed"):
            await db.execute("ALTER TABLE matches ADD COLUMN auto_confirmed INTEGER NOT NULL DEFAULT 0")

        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS rating_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                player_id INTEGER NOT NULL REFERENCES players(user_id),
                match_id INTEGER NOT NULL,
                rating_after INTEGER NOT NULL,
                delta INTEGER NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )
        await db.execute("CREATE INDEX IF NOT EXISTS idx_matches_due ON matches(status, confirm_deadline)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_history_match ON rating_history(match_id)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_history_player ON rating_history(player_id, id)")
    log.debug("Initialized database at %s", DB_PATH)


async def close_db() -> None:
    """Release the in-memory keepalive connection, if any."""
    global _keepalive
    if _keepalive is not None:
        await _keepalive.close()
        _keepalive = None


# ========================================
# Players
# ========================================

async def get_or_create_player(user_id: int, username: str, base_rating: int = 1500, role: str = ROLE_USER) -> dict:
    """Get existing player or create new one."""
    async with connect(operation="get_or_create_player") as db:
        async with db.execute("SELECT * FROM players WHERE user_id = ?", (user_id,)) as cursor:
            row = await cursor.fetchone()
            if row:
                player = dict(row)
                log.debug("Fetched existing player user_id=%s rating=%s", user_id, player["rating"])
                return player
        now = _now()
        await db.execute(
            """
            INSERT OR IGNORE INTO players (user_id, username, rating, role, wins, losses, created_at, updated_at)
            VALUES (?, ?, ?, ?, 0, 0, ?, ?)
            """,
            (user_id, username, int(base_rating), role, now, now),
        )
        async with db.execute("SELECT * FROM players WHERE user_id = ?", (user_id,)) as cursor:
            row = await cursor.fetchone()
            player = dict(row) if row else {}
    log.debug("Created new player user_id=%s rating=%s", user_id, player.get("rating"))
    return player


async def get_player(user_id: int) -> dict | None:
    async with connect(operation="get_player") as db:
        async with db.execute("SELECT * FROM players WHERE user_id = ?", (user_id,)) as cursor:
            row = await cursor.fetchone()
            return dict(row) if row else None


async def fetch_players(db: aiosqlite.Connection, user_ids: list[int]) -> dict[int, dict]:
    """Read several players inside an open transaction, keyed by user_id."""
    if not user_ids:
        return {}
    marks = ",".join("?" for _ in user_ids)
    async with db.execute(f"SELECT * FROM players WHERE user_id IN ({marks})", tuple(user_ids)) as cursor:
        rows = await cursor.fetchall()
    return {int(r["user_id"]): dict(r) for r in rows}


async def update_rating(db: aiosqlite.Connection, user_id: int, new_rating: int, won: Optional[bool], updated_at: str) -> None:
    """Overwrite a player's rating and count the result (won=None counts nothing)."""
    if won is None:
        sql = "UPDATE players SET rating = ?, updated_at = ? WHERE user_id = ?"
    elif won:
        sql = "UPDATE players SET rating = ?, wins = wins + 1, updated_at = ? WHERE user_id = ?"
    else:
        sql = "UPDATE players SET rating = ?, losses = losses + 1, updated_at = ? WHERE user_id = ?"
    await db.execute(sql, (int(new_rating), updated_at, user_id))
    log.debug("Updated player user_id=%s rating=%s won=%s", user_id, new_rating, won)


async def restore_rating(db: aiosqlite.Connection, user_id: int, rating: int, won: Optional[bool], updated_at: str) -> None:
    """Put a rating back and uncount the result recorded by update_rating."""
    if won is None:
        sql = "UPDATE players SET rating = ?, updated_at = ? WHERE user_id = ?"
    elif won:
        sql = "UPDATE players SET rating = ?, wins = MAX(wins - 1, 0), updated_at = ? WHERE user_id = ?"
    else:
        sql = "UPDATE players SET rating = ?, losses = MAX(losses - 1, 0), updated_at = ? WHERE user_id = ?"
    await db.execute(sql, (int(rating), updated_at, user_id))
    log.debug("Restored player user_id=%s rating=%s", user_id, rating)


async def top_players(limit: int = 10) -> list[dict]:
    """Get top players by rating."""
    async with connect(operation="top_players") as db:
        async with db.execute(
            """
            SELECT * FROM players
            ORDER BY rating DESC, username ASC
            LIMIT ?
            """,
            (limit,),
        ) as cursor:
            rows = await cursor.fetchall()
            out = [dict(row) for row in rows]
    log.debug("Top players query limit=%s -> %s", limit, len(out))
    return out


async def player_rank(user_id: int) -> int | None:
    """1-based position on the leaderboard (ties share a rank)."""
    async with connect(operation="player_rank") as db:
        async with db.execute(
            """
            SELECT 1 + (SELECT COUNT(*) FROM players q WHERE q.rating > p.rating)
            FROM players p WHERE p.user_id = ?
            """,
            (user_id,),
        ) as cursor:
            row = await cursor.fetchone()
            return int(row[0]) if row else None


# ========================================
# Matches
# ========================================

async def insert_match(
    db: aiosqlite.Connection,
    kind: str,
    side_a: list[int],
    side_b: list[int],
    games_a: int,
    games_b: int,
    submitted_by: int,
    created_at: str,
    confirm_deadline: str,
) -> int:
    """Insert a pending match and return its ID."""
    a = list(side_a) + [None] * (2 - len(side_a))
    b = list(side_b) + [None] * (2 - len(side_b))
    cursor = await db.execute(
        """
        INSERT INTO matches (kind, side_a1, side_a2, side_b1, side_b2, games_a, games_b, status,
                             submitted_by, created_at, confirm_deadline)
        VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?)
        """,
        (kind, a[0], a[1], b[0], b[1], games_a, games_b, submitted_by, created_at, confirm_deadline),
    )
    match_id = cursor.lastrowid if cursor.lastrowid is not None else -1
    log.debug("Inserted pending match id=%s kind=%s A=%s B=%s score=%s-%s", match_id, kind, side_a, side_b, games_a, games_b)
    return match_id


async def fetch_match(db: aiosqlite.Connection, match_id: int) -> dict | None:
    async with db.execute("SELECT * FROM matches WHERE id = ?", (match_id,)) as cursor:
        row = await cursor.fetchone()
        data = dict(row) if row else None
    log.debug("Fetched match id=%s -> found=%s", match_id, bool(data))
    return data


async def get_match(match_id: int) -> dict | None:
    """Get a match row by ID."""
    async with connect(operation="get_match") as db:
        return await fetch_match(db, match_id)


async def mark_confirmed(
    db: aiosqlite.Connection,
    match_id: int,
    confirmed_at: str,
    changes_a: list[int],
    changes_b: list[int],
    auto: bool = False,
) -> bool:
    """Flip pending -> confirmed and store deltas. False if it was not pending."""
    a = list(changes_a) + [None] * (2 - len(changes_a))
    b = list(changes_b) + [None] * (2 - len(changes_b))
    cursor = await db.execute(
        f"""
        UPDATE matches
        SET status = '{CONFIRMED}', confirmed_at = ?, auto_confirmed = ?,
            change_a1 = ?, change_a2 = ?, change_b1 = ?, change_b2 = ?
        WHERE id = ? AND status = '{PENDING}'
        """,
        (confirmed_at, int(auto), a[0], a[1], b[0], b[1], match_id),
    )
    changed = cursor.rowcount == 1
    log.debug("mark_confirmed id=%s auto=%s -> %s", match_id, auto, changed)
    return changed


async def mark_rejected(db: aiosqlite.Connection, match_id: int) -> bool:
    """Flip pending -> rejected. False if it was not pending."""
    cursor = await db.execute(
        f"UPDATE matches SET status = '{REJECTED}' WHERE id = ? AND status = '{PENDING}'",
        (match_id,),
    )
    changed = cursor.rowcount == 1
    log.debug("mark_rejected id=%s -> %s", match_id, changed)
    return changed


async def delete_match(db: aiosqlite.Connection, match_id: int) -> None:
    await db.execute("DELETE FROM matches WHERE id = ?", (match_id,))
    log.debug("Deleted match id=%s", match_id)


async def due_match_ids(now: str) -> list[int]:
    """IDs of pending matches whose confirmation deadline has passed, oldest first."""
    async with connect(operation="due_match_ids") as db:
        async with db.execute(
            f"""
            SELECT id FROM matches
            WHERE status = '{PENDING}' AND confirm_deadline <= ?
            ORDER BY confirm_deadline ASC, id ASC
            """,
            (now,),
        ) as cursor:
            rows = await cursor.fetchall()
    ids = [int(r[0]) for r in rows]
    log.debug("Due pending matches at %s -> %s", now, len(ids))
    return ids


_PARTICIPANT_CLAUSE = "(side_a1 = ? OR side_a2 = ? OR side_b1 = ? OR side_b2 = ?)"


async def list_pending_for_user(user_id: int) -> list[dict]:
    """Pending matches the user plays in, newest first."""
    async with connect(operation="list_pending_for_user") as db:
        async with db.execute(
            f"""
            SELECT * FROM matches
            WHERE status = '{PENDING}' AND {_PARTICIPANT_CLAUSE}
            ORDER BY created_at DESC, id DESC
            """,
            (user_id,) * 4,
        ) as cursor:
            rows = await cursor.fetchall()
            out = [dict(row) for row in rows]
    log.debug("Pending matches for user=%s -> %s", user_id, len(out))
    return out


async def recent_matches(user_id: Optional[int] = None, limit: int = 10) -> list[dict]:
    """Get recent matches, optionally filtered by user_id."""
    async with connect(operation="recent_matches") as db:
        if user_id is not None:
            query = f"SELECT * FROM matches WHERE {_PARTICIPANT_CLAUSE} ORDER BY created_at DESC, id DESC LIMIT ?"
            params: tuple[Any, ...] = (user_id,) * 4 + (limit,)
        else:
            query = "SELECT * FROM matches ORDER BY created_at DESC, id DESC LIMIT ?"
            params = (limit,)
        async with db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
            out = [dict(row) for row in rows]
    log.debug("Recent matches user=%s limit=%s -> %s", user_id, limit, len(out))
    return out


# ========================================
# Rating history
# ========================================

async def append_history(
    db: aiosqlite.Connection,
    player_id: int,
    match_id: int,
    rating_after: int,
    delta: int,
    created_at: str,
) -> int:
    cursor = await db.execute(
        """
        INSERT INTO rating_history (player_id, match_id, rating_after, delta, created_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        (player_id, match_id, int(rating_after), int(delta), created_at),
    )
    log.debug("History player=%s match=%s after=%s delta=%s", player_id, match_id, rating_after, delta)
    return cursor.lastrowid if cursor.lastrowid is not None else -1


async def history_for_match(db: aiosqlite.Connection, match_id: int) -> list[dict]:
    async with db.execute(
        "SELECT * FROM rating_history WHERE match_id = ? ORDER BY id ASC",
        (match_id,),
    ) as cursor:
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


async def latest_history_id(db: aiosqlite.Connection, player_id: int) -> int | None:
    async with db.execute(
        "SELECT MAX(id) FROM rating_history WHERE player_id = ?",
        (player_id,),
    ) as cursor:
        row = await cursor.fetchone()
        return int(row[0]) if row and row[0] is not None else None


async def delete_history_for_match(db: aiosqlite.Connection, match_id: int) -> int:
    cursor = await db.execute("DELETE FROM rating_history WHERE match_id = ?", (match_id,))
    log.debug("Deleted %s history rows for match=%s", cursor.rowcount, match_id)
    return cursor.rowcount


async def rating_history(player_id: int, limit: Optional[int] = None) -> list[dict]:
    """A player's history rows, oldest first (the last ``limit`` rows when given)."""
    async with connect(operation="rating_history") as db:
        if limit is None:
            query = "SELECT * FROM rating_history WHERE player_id = ? ORDER BY id ASC"
            params: tuple[Any, ...] = (player_id,)
        else:
            query = (
                "SELECT * FROM (SELECT * FROM rating_history WHERE player_id = ? ORDER BY id DESC LIMIT ?) "
                "ORDER BY id ASC"
            )
            params = (player_id, limit)
        async with db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
            return [dict(r) for r in rows]


async def ledger_rows() -> list[dict]:
    """One row per (player, history entry) in history order; players without history get a NULL delta."""
    async with connect(operation="ledger_rows") as db:
        async with db.execute(
            """
            SELECT p.user_id, p.rating, h.delta
            FROM players p
            LEFT JOIN rating_history h ON h.player_id = p.user_id
            ORDER BY p.user_id, h.id
            """
        ) as cursor:
            rows = await cursor.fetchall()
            return [dict(r) for r in rows]
