"""Player infection status."""

from typing import Optional

import aiosqlite

from .errors import InvalidTransition
from .models import PlayerState, PlayerStatus
from .timeutils import resolve_ts


class PlayerStateStore:
    """Reads and writes player_status rows on a caller-owned connection.

    Callers run these inside GameStorage.transaction() so that a status check
    and the write that depends on it see the same row.
    """

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get_status(self, fid: int) -> Optional[PlayerStatus]:
        """Get a player's status, or None if they have no row yet."""
        async with self.db.execute("SELECT * FROM player_status WHERE fid = ?", (fid,)) as cursor:
            row = await cursor.fetchone()
            if not row:
                return None
            data = dict(row)
            data["is_zombie"] = bool(data["is_zombie"])
            data["is_cured"] = bool(data["is_cured"])
            return PlayerStatus(**data)

    async def upsert_zombie(self, fid: int, restamp: bool = False, at: Optional[int] = None) -> PlayerStatus:
        """Make the player a zombie and clear any cure.

        became_zombie_at keeps the original infection time unless restamp is set.
        """
        ts = resolve_ts(at)
        if restamp:
            stamp_sql = "excluded.became_zombie_at"
        else:
            stamp_sql = "COALESCE(player_status.became_zombie_at, excluded.became_zombie_at)"
        await self.db.execute(f"""
            INSERT INTO player_status (fid, is_zombie, is_cured, became_zombie_at, total_bites_sent, updated_at)
            VALUES (?, 1, 0, ?, 0, ?)
            ON CONFLICT(fid) DO UPDATE SET
                is_zombie = 1,
                is_cured = 0,
                became_zombie_at = {stamp_sql},
                updated_at = excluded.updated_at
        """, (fid, ts, ts))
        return await self.get_status(fid)

    async def mark_cured(self, fid: int, at: Optional[int] = None) -> PlayerStatus:
        """Cure a zombie. Raises InvalidTransition for anyone else."""
        status = await self.get_status(fid)
        if not status or status.state is not PlayerState.ZOMBIE:
            raise InvalidTransition(f"Player {fid} is not an uncured zombie.")
        await self.db.execute(
            "UPDATE player_status SET is_zombie = 0, is_cured = 1, updated_at = ? WHERE fid = ?",
            (resolve_ts(at), fid)
        )
        return await self.get_status(fid)

    async def increment_bites_sent(self, fid: int, count: int = 1, at: Optional[int] = None):
        """Count bites sent, creating a human row for a sender seen for the first time."""
        ts = resolve_ts(at)
        await self.db.execute("""
            INSERT INTO player_status (fid, is_zombie, is_cured, became_zombie_at, total_bites_sent, updated_at)
            VALUES (?, 0, 0, NULL, ?, ?)
            ON CONFLICT(fid) DO UPDATE SET
                total_bites_sent = player_status.total_bites_sent + excluded.total_bites_sent,
                updated_at = excluded.updated_at
        """, (fid, count, ts))
