"""SQLite storage for capsules, lifecycle events, and API keys."""

import asyncio
import logging
import secrets
import sqlite3
import time
import weakref
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from .capsule.errors import AlreadyInitialized
from .capsule.schema import Capsule, CapsuleEvent, UserCapsuleInfo

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS capsules (
    id TEXT PRIMARY KEY,
    sender TEXT NOT NULL,
    encrypted_message BLOB NOT NULL,
    unlock_timestamp INTEGER NOT NULL,
    recipient_email_hash TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    password_hint TEXT NOT NULL DEFAULT '',
    message_title TEXT NOT NULL DEFAULT '',
    created_at INTEGER NOT NULL,
    is_claimed INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS capsule_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    capsule_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    actor TEXT,
    timestamp INTEGER NOT NULL,
    FOREIGN KEY (capsule_id) REFERENCES capsules(id)
);

CREATE TABLE IF NOT EXISTS api_keys (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    key_hash TEXT NOT NULL,
    key_lookup TEXT NOT NULL,
    created_at REAL NOT NULL,
    last_used_at REAL,
    is_active INTEGER NOT NULL DEFAULT 1,
    rate_limit INTEGER NOT NULL DEFAULT 60
);

CREATE TABLE IF NOT EXISTS rate_limit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    api_key_id INTEGER NOT NULL,
    timestamp REAL NOT NULL,
    FOREIGN KEY (api_key_id) REFERENCES api_keys(id)
);

CREATE INDEX IF NOT EXISTS idx_capsules_sender ON capsules(sender);
CREATE INDEX IF NOT EXISTS idx_events_capsule ON capsule_events(capsule_id);
CREATE INDEX IF NOT EXISTS idx_api_keys_lookup ON api_keys(key_lookup);
CREATE INDEX IF NOT EXISTS idx_rate_limit_key_ts ON rate_limit_log(api_key_id, timestamp);
"""

_CAPSULE_COLUMNS = (
    "sender, encrypted_message, unlock_timestamp, recipient_email_hash, "
    "password_hash, password_hint, message_title, created_at, is_claimed"
)

_write_locks: "weakref.WeakKeyDictionary[aiosqlite.Connection, asyncio.Lock]" = (
    weakref.WeakKeyDictionary()
)


async def init_db(db_path: Path) -> None:
    """Create database tables."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        await db.executescript(SCHEMA)
        await db.commit()
    logger.info(f"[DB] Initialized database at {db_path}")


async def get_db(db_path: Path) -> aiosqlite.Connection:
    """Get a database connection."""
    db = await aiosqlite.connect(db_path)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA foreign_keys=ON")
    return db


@asynccontextmanager
async def transaction(db: aiosqlite.Connection):
    """Group writes into one commit on a connection shared by many tasks.

    Writers on the same connection take turns, so one task's rollback
    never discards another task's statements. Any exception rolls the
    whole group back.
    """
    lock = _write_locks.setdefault(db, asyncio.Lock())
    async with lock:
        try:
            yield db
        except BaseException:
            await db.rollback()
            raise
        await db.commit()


def allocate_capsule_id() -> str:
    """Generate a fresh capsule address."""
    return secrets.token_hex(16)


def _row_to_capsule(row) -> Capsule:
    return Capsule(
        sender=row["sender"],
        encrypted_message=bytes(row["encrypted_message"]),
        unlock_timestamp=row["unlock_timestamp"],
        recipient_email_hash=row["recipient_email_hash"],
        password_hash=row["password_hash"],
        password_hint=row["password_hint"],
        message_title=row["message_title"],
        created_at=row["created_at"],
        is_claimed=bool(row["is_claimed"]),
    )


async def capsule_exists(db: aiosqlite.Connection, capsule_id: str) -> bool:
    """Check whether an address already holds a capsule."""
    cursor = await db.execute("SELECT 1 FROM capsules WHERE id = ?", (capsule_id,))
    return await cursor.fetchone() is not None


async def _append_event(
    db: aiosqlite.Connection,
    capsule_id: str,
    kind: str,
    timestamp: int,
    actor: str | None = None,
) -> None:
    await db.execute(
        "INSERT INTO capsule_events (capsule_id, kind, actor, timestamp) VALUES (?, ?, ?, ?)",
        (capsule_id, kind, actor, timestamp),
    )


async def insert_capsule(db: aiosqlite.Connection, capsule_id: str, capsule: Capsule) -> None:
    """Persist a new capsule together with its ``created`` event.

    Both rows land in one transaction; a taken address leaves neither.

    Raises:
        AlreadyInitialized: If the address is already taken.
    """
    async with transaction(db):
        try:
            await db.execute(
                f"INSERT INTO capsules (id, {_CAPSULE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    capsule_id,
                    capsule.sender,
                    capsule.encrypted_message,
                    capsule.unlock_timestamp,
                    capsule.recipient_email_hash,
                    capsule.password_hash,
                    capsule.password_hint,
                    capsule.message_title,
                    capsule.created_at,
                    int(capsule.is_claimed),
                ),
            )
        except sqlite3.IntegrityError as e:
            raise AlreadyInitialized() from e
        await _append_event(db, capsule_id, "created", capsule.created_at, actor=capsule.sender)


async def get_capsule(db: aiosqlite.Connection, capsule_id: str) -> Capsule | None:
    """Read a capsule by address."""
    cursor = await db.execute(
        f"SELECT {_CAPSULE_COLUMNS} FROM capsules WHERE id = ?",
        (capsule_id,),
    )
    row = await cursor.fetchone()
    return _row_to_capsule(row) if row else None


async def claim_capsule(db: aiosqlite.Connection, capsule_id: str, timestamp: int) -> bool:
    """Flip the claim flag if it is still clear and record the ``claimed`` event.

    Returns True only for the call that performed the flip. Missing or
    already claimed capsules return False and write nothing.
    """
    async with transaction(db):
        cursor = await db.execute(
            "UPDATE capsules SET is_claimed = 1 WHERE id = ? AND is_claimed = 0",
            (capsule_id,),
        )
        if cursor.rowcount != 1:
            return False
        await _append_event(db, capsule_id, "claimed", timestamp)
    return True


async def list_capsules_by_sender(db: aiosqlite.Connection, sender: str) -> list[UserCapsuleInfo]:
    """List a sender's capsules, soonest unlock first."""
    cursor = await db.execute(
        """SELECT id, unlock_timestamp, message_title, is_claimed
           FROM capsules WHERE sender = ?
           ORDER BY unlock_timestamp ASC, created_at ASC""",
        (sender,),
    )
    rows = await cursor.fetchall()
    return [
        UserCapsuleInfo(
            capsule_id=row["id"],
            unlock_timestamp=row["unlock_timestamp"],
            message_title=row["message_title"],
            is_claimed=bool(row["is_claimed"]),
        )
        for row in rows
    ]


async def list_events(db: aiosqlite.Connection, capsule_id: str) -> list[CapsuleEvent]:
    """List a capsule's events in the order they happened."""
    cursor = await db.execute(
        """SELECT capsule_id, kind, actor, timestamp FROM capsule_events
           WHERE capsule_id = ? ORDER BY id ASC""",
        (capsule_id,),
    )
    rows = await cursor.fetchall()
    return [CapsuleEvent(**dict(row)) for row in rows]


async def store_api_key(
    db: aiosqlite.Connection,
    name: str,
    key_hash: str,
    key_lookup: str,
    rate_limit: int = 60,
) -> int:
    """Store a hashed API key. Returns the key ID."""
    async with transaction(db):
        cursor = await db.execute(
            """INSERT INTO api_keys (name, key_hash, key_lookup, created_at, rate_limit)
               VALUES (?, ?, ?, ?, ?)""",
            (name, key_hash, key_lookup, time.time(), rate_limit),
        )
    return cursor.lastrowid


async def find_key_by_lookup(db: aiosqlite.Connection, key_lookup: str) -> dict | None:
    """Find an active API key record by its lookup id."""
    cursor = await db.execute(
        "SELECT * FROM api_keys WHERE key_lookup = ? AND is_active = 1",
        (key_lookup,),
    )
    row = await cursor.fetchone()
    return dict(row) if row else None


async def list_api_keys(db: aiosqlite.Connection) -> list[dict]:
    """List all API keys (without hashes)."""
    cursor = await db.execute(
        "SELECT id, name, key_lookup, created_at, last_used_at, is_active, rate_limit "
        "FROM api_keys ORDER BY created_at DESC, id DESC"
    )
    rows = await cursor.fetchall()
    return [dict(row) for row in rows]


async def revoke_key(db: aiosqlite.Connection, key_lookup: str) -> bool:
    """Soft-delete an API key by lookup id. Returns True if found."""
    async with transaction(db):
        cursor = await db.execute(
            "UPDATE api_keys SET is_active = 0 WHERE key_lookup = ? AND is_active = 1",
            (key_lookup,),
        )
    return cursor.rowcount > 0


async def update_key_last_used(db: aiosqlite.Connection, key_id: int) -> None:
    """Update last_used_at timestamp for a key."""
    async with transaction(db):
        await db.execute(
            "UPDATE api_keys SET last_used_at = ? WHERE id = ?",
            (time.time(), key_id),
        )


async def check_and_log_rate_limit(db: aiosqlite.Connection, api_key_id: int, limit: int) -> bool:
    """Count calls in the last hour and log this one if under the limit.

    Returns True if the call is allowed.
    """
    now = time.time()
    one_hour_ago = now - 3600
    async with transaction(db):
        await db.execute("DELETE FROM rate_limit_log WHERE timestamp < ?", (one_hour_ago,))
        cursor = await db.execute(
            "SELECT COUNT(*) FROM rate_limit_log WHERE api_key_id = ? AND timestamp > ?",
            (api_key_id, one_hour_ago),
        )
        row = await cursor.fetchone()
        if row[0] >= limit:
            return False
        await db.execute(
            "INSERT INTO rate_limit_log (api_key_id, timestamp) VALUES (?, ?)",
            (api_key_id, now),
        )
    return True
