"""Game clock: the 12 hour infection window and its final announcement latch."""

import logging
from typing import Optional

import aiosqlite

from .config import GAME_DURATION_HOURS, PATIENT_ZERO_FID
from .errors import GameAlreadyActive, NotPatientZero
from .models import GameState
from .timeutils import hours_to_seconds, resolve_ts


logger = logging.getLogger(__name__)


class GameClock:
    """Reads and updates the singleton game_state row on a caller-owned connection."""

    def __init__(self, db: aiosqlite.Connection, patient_zero_fid: int = PATIENT_ZERO_FID,
                 duration_hours: float = GAME_DURATION_HOURS):
        self.db = db
        self.patient_zero_fid = patient_zero_fid
        self.duration_seconds = hours_to_seconds(duration_hours)

    async def get_state(self) -> GameState:
        async with self.db.execute("SELECT * FROM game_state WHERE id = 1") as cursor:
            row = await cursor.fetchone()
        if not row:
            return GameState(False, None, None, None, False)
        return GameState(
            is_active=bool(row["is_active"]),
            started_at=row["started_at"],
            ends_at=row["ends_at"],
            started_by=row["started_by"],
            final_announcement_sent=bool(row["final_announcement_sent"]),
        )

    async def is_active(self, at: Optional[int] = None) -> bool:
        """Check if the infection window is open; it closes at ends_at."""
        state = await self.get_state()
        return state.active_at(resolve_ts(at))

    async def start(self, initiator_fid: int, at: Optional[int] = None) -> GameState:
        """Open a new infection window. Only Patient Zero may do this, and only when none is running.

        Starting again after a game has ended opens a fresh window with its own
        final announcement.
        """
        ts = resolve_ts(at)
        if initiator_fid != self.patient_zero_fid:
            raise NotPatientZero()

        state = await self.get_state()
        if state.active_at(ts):
            raise GameAlreadyActive()
        if state.has_started:
            logger.info(f"Restarting the game; previous window ran until {state.ends_at}")

        await self.db.execute("""
            INSERT INTO game_state (id, is_active, started_at, ends_at, started_by, final_announcement_sent)
            VALUES (1, 1, ?, ?, ?, 0)
            ON CONFLICT(id) DO UPDATE SET
                is_active = 1,
                started_at = excluded.started_at,
                ends_at = excluded.ends_at,
                started_by = excluded.started_by,
                final_announcement_sent = 0
        """, (ts, ts + self.duration_seconds, initiator_fid))
        logger.info(f"Game started by fid {initiator_fid}; ends at {ts + self.duration_seconds}")
        return await self.get_state()

    async def check_and_finalize(self, at: Optional[int] = None) -> bool:
        """Latch the end of the game.

        Returns True exactly once, to the caller that should post the final
        announcement. Run inside a write transaction.
        """
        ts = resolve_ts(at)
        state = await self.get_state()
        if not state.has_ended_at(ts) or state.final_announcement_sent:
            return False

        cursor = await self.db.execute("""
            UPDATE game_state SET is_active = 0, final_announcement_sent = 1
            WHERE id = 1 AND final_announcement_sent = 0
        """)
        return cursor.rowcount == 1
