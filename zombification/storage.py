"""Database storage layer for ZOMBIEFICATION."""

import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

import aiosqlite

from .config import DATABASE_PATH, DB_BUSY_TIMEOUT
from .errors import ConcurrencyConflict
from .models import AllowanceClaim, Cure, Identity
from .timeutils import resolve_ts


logger = logging.getLogger(__name__)

TABLES = ("identities", "player_status", "bites", "cures", "allowance_claims", "game_state")

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS identities (
        fid INTEGER PRIMARY KEY,
        username TEXT,
        wallet_address TEXT,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS player_status (
        fid INTEGER PRIMARY KEY REFERENCES identities(fid),
        is_zombie INTEGER NOT NULL DEFAULT 0,
        is_cured INTEGER NOT NULL DEFAULT 0,
        became_zombie_at INTEGER,
        total_bites_sent INTEGER NOT NULL DEFAULT 0,
        updated_at INTEGER NOT NULL,
        CHECK (NOT (is_zombie = 1 AND is_cured = 1))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bites (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sender_fid INTEGER NOT NULL,
        target_fid INTEGER NOT NULL,
        target_username TEXT,
        target_wallet TEXT,
        amount INTEGER NOT NULL,
        origin_ref TEXT NOT NULL,
        origin_url TEXT,
        status TEXT NOT NULL DEFAULT 'PENDING' CHECK(status IN ('PENDING','CLAIMED','EXPIRED')),
        sent_at INTEGER NOT NULL,
        claimed_at INTEGER,
        payout_tx TEXT,
        UNIQUE(origin_ref, target_fid)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_bites_target_status ON bites(target_fid, status, sent_at)",
    """
    CREATE TABLE IF NOT EXISTS cures (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        cured_fid INTEGER NOT NULL,
        curer_fid INTEGER NOT NULL,
        payment_proof TEXT NOT NULL UNIQUE,
        origin_ref TEXT,
        cured_at INTEGER NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_cures_one_active ON cures(cured_fid) WHERE is_active = 1",
    """
    CREATE TABLE IF NOT EXISTS allowance_claims (
        fid INTEGER PRIMARY KEY,
        payout_tx TEXT,
        amount INTEGER NOT NULL,
        claimed_at INTEGER NOT NULL,
        confirmed INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS game_state (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        is_active INTEGER NOT NULL DEFAULT 0,
        started_at INTEGER,
        ends_at INTEGER,
        started_by INTEGER,
        final_announcement_sent INTEGER NOT NULL DEFAULT 0
    )
    """,
    "INSERT OR IGNORE INTO game_state (id) VALUES (1)",
]


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    text = str(exc).lower()
    return "locked" in text or "busy" in text


class GameStorage:
    """Opens short-lived connections and transactions against the game database."""

    def __init__(self, db_path: str = DATABASE_PATH, busy_timeout: float = DB_BUSY_TIMEOUT):
        self.db_path = db_path
        self.busy_timeout = busy_timeout

    async def initialize(self):
        """Create tables, indexes and the game state row."""
        async with aiosqlite.connect(self.db_path, timeout=self.busy_timeout) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            for statement in SCHEMA:
                await db.execute(statement)
            await db.commit()
        logger.info(f"Database initialized at {self.db_path}")

    async def list_tables(self) -> List[str]:
        async with self.session() as db:
            async with db.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
            ) as cursor:
                return [row[0] for row in await cursor.fetchall()]

    @asynccontextmanager
    async def session(self) -> AsyncIterator[aiosqlite.Connection]:
        """Read-only style connection in autocommit mode."""
        async with aiosqlite.connect(self.db_path, timeout=self.busy_timeout, isolation_level=None) as db:
            db.row_factory = aiosqlite.Row
            yield db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Write transaction holding the database write lock from the first statement.

        BEGIN IMMEDIATE makes every check-then-write sequence inside the block
        atomic with respect to other writers. Any exception rolls back.
        """
        async with aiosqlite.connect(self.db_path, timeout=self.busy_timeout, isolation_level=None) as db:
            db.row_factory = aiosqlite.Row
            try:
                await db.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as exc:
                if _is_lock_error(exc):
                    raise ConcurrencyConflict() from exc
                raise
            try:
                yield db
            except BaseException:
                await db.execute("ROLLBACK")
                raise
            try:
                await db.execute("COMMIT")
            except sqlite3.OperationalError as exc:
                await db.execute("ROLLBACK")
                if _is_lock_error(exc):
                    raise ConcurrencyConflict() from exc
                raise

    async def clear_all_game_data(self):
        """Clear all game data for a fresh start."""
        async with self.transaction() as db:
            for table in ("player_status", "bites", "cures", "allowance_claims", "identities"):
                await db.execute(f"DELETE FROM {table}")
            await db.execute("""
                UPDATE game_state
                SET is_active = 0, started_at = NULL, ends_at = NULL,
                    started_by = NULL, final_announcement_sent = 0
                WHERE id = 1
            """)
        logger.warning("All game data cleared")


class IdentityStore:
    """Farcaster identities seen by the game."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get(self, fid: int) -> Optional[Identity]:
        """Get an identity by fid, or None if the game has never seen it."""
        async with self.db.execute(
            "SELECT fid, username, wallet_address FROM identities WHERE fid = ?", (fid,)
        ) as cursor:
            row = await cursor.fetchone()
            return Identity(**dict(row)) if row else None

    async def upsert(self, identity: Identity, at: Optional[int] = None) -> Identity:
        """Insert, or fill in a missing username/address without overwriting."""
        ts = resolve_ts(at)
        wallet = identity.wallet_address.lower() if identity.wallet_address else None
        await self.db.execute("""
            INSERT INTO identities (fid, username, wallet_address, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(fid) DO UPDATE SET
                username = COALESCE(identities.username, excluded.username),
                wallet_address = COALESCE(identities.wallet_address, excluded.wallet_address),
                updated_at = excluded.updated_at
        """, (identity.fid, identity.username, wallet, ts, ts))
        return await self.get(identity.fid)


class CureStore:
    """Cure records."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def proof_used(self, payment_proof: str) -> bool:
        """Check if a payment has already paid for any cure."""
        async with self.db.execute(
            "SELECT 1 FROM cures WHERE payment_proof = ?", (payment_proof.lower(),)
        ) as cursor:
            return await cursor.fetchone() is not None

    async def get_active(self, cured_fid: int) -> Optional[Cure]:
        """Get the cure currently protecting a player, if any."""
        async with self.db.execute(
            "SELECT * FROM cures WHERE cured_fid = ? AND is_active = 1", (cured_fid,)
        ) as cursor:
            row = await cursor.fetchone()
            return _cure_from_row(row) if row else None

    async def record(self, cured_fid: int, curer_fid: int, payment_proof: str,
                     origin_ref: Optional[str] = None, at: Optional[int] = None) -> int:
        """Record an active cure and return its id.

        Raises sqlite3.IntegrityError if the proof was used before or the
        player already has an active cure.
        """
        cursor = await self.db.execute("""
            INSERT INTO cures (cured_fid, curer_fid, payment_proof, origin_ref, cured_at, is_active)
            VALUES (?, ?, ?, ?, ?, 1)
        """, (cured_fid, curer_fid, payment_proof.lower(), origin_ref, resolve_ts(at)))
        return cursor.lastrowid

    async def deactivate(self, cured_fid: int) -> int:
        """Retire the active cure of a player who was re-infected."""
        cursor = await self.db.execute(
            "UPDATE cures SET is_active = 0 WHERE cured_fid = ? AND is_active = 1", (cured_fid,)
        )
        return cursor.rowcount

    async def history(self, cured_fid: int) -> List[Cure]:
        """Get every cure of a player, newest first."""
        async with self.db.execute(
            "SELECT * FROM cures WHERE cured_fid = ? ORDER BY cured_at DESC, id DESC", (cured_fid,)
        ) as cursor:
            return [_cure_from_row(row) for row in await cursor.fetchall()]


class AllowanceStore:
    """One-time succumb reward claims."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get(self, fid: int) -> Optional[AllowanceClaim]:
        """Get a player's succumb claim, reserved or paid."""
        async with self.db.execute(
            "SELECT fid, payout_tx, amount, claimed_at, confirmed FROM allowance_claims WHERE fid = ?", (fid,)
        ) as cursor:
            row = await cursor.fetchone()
        if not row:
            return None
        data = dict(row)
        data["confirmed"] = bool(data["confirmed"])
        return AllowanceClaim(**data)

    async def reserve(self, fid: int, amount: int, at: Optional[int] = None):
        """Insert the claim row before paying out; the primary key forbids a second one."""
        await self.db.execute(
            "INSERT INTO allowance_claims (fid, payout_tx, amount, claimed_at) VALUES (?, NULL, ?, ?)",
            (fid, amount, resolve_ts(at))
        )

    async def confirm(self, fid: int, payout_tx: str):
        """Mark a reservation as paid by a confirmed transfer."""
        await self.db.execute(
            "UPDATE allowance_claims SET payout_tx = ?, confirmed = 1 WHERE fid = ?", (payout_tx, fid)
        )

    async def record_unconfirmed(self, fid: int, payout_tx: str):
        """Keep a reservation whose transfer was broadcast but not confirmed."""
        await self.db.execute(
            "UPDATE allowance_claims SET payout_tx = ?, confirmed = 0 WHERE fid = ?", (payout_tx, fid)
        )

    async def release(self, fid: int):
        """Drop a reservation whose payout failed before anything was sent."""
        await self.db.execute(
            "DELETE FROM allowance_claims WHERE fid = ? AND payout_tx IS NULL", (fid,)
        )


def _cure_from_row(row) -> Cure:
    data = dict(row)
    data["is_active"] = bool(data["is_active"])
    return Cure(**data)
