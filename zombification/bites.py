"""Bite ledger."""

import logging
import sqlite3
from typing import Iterable, List, Optional

import aiosqlite

from .config import BITE_TTL_HOURS
from .models import Bite, BiteStatus, ClaimTally, Identity
from .timeutils import hours_to_seconds, resolve_ts


logger = logging.getLogger(__name__)


class BiteLedger:
    """Records bites and flips them to claimed. Game rules are checked by the caller."""

    def __init__(self, db: aiosqlite.Connection, ttl_hours: float = BITE_TTL_HOURS):
        self.db = db
        self.ttl_seconds = hours_to_seconds(ttl_hours)

    async def record(self, sender_fid: int, target: Identity, amount: int, origin_ref: str,
                     origin_url: Optional[str] = None, at: Optional[int] = None) -> Optional[int]:
        """Insert a pending bite. Returns None if this cast already bit this target."""
        try:
            cursor = await self.db.execute("""
                INSERT INTO bites (sender_fid, target_fid, target_username, target_wallet, amount,
                                   origin_ref, origin_url, status, sent_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, 'PENDING', ?)
            """, (
                sender_fid,
                target.fid,
                target.username,
                target.wallet_address.lower() if target.wallet_address else None,
                amount,
                origin_ref,
                origin_url,
                resolve_ts(at),
            ))
        except sqlite3.IntegrityError:
            logger.info(f"Bite from cast {origin_ref} on fid {target.fid} already recorded")
            return None
        return cursor.lastrowid

    async def get(self, bite_id: int) -> Optional[Bite]:
        async with self.db.execute("SELECT * FROM bites WHERE id = ?", (bite_id,)) as cursor:
            row = await cursor.fetchone()
            return _bite_from_row(row) if row else None

    async def list_pending(self, target_fid: int, at: Optional[int] = None) -> List[Bite]:
        """Unexpired pending bites on a target, newest first."""
        cutoff = resolve_ts(at) - self.ttl_seconds
        async with self.db.execute("""
            SELECT * FROM bites
            WHERE target_fid = ? AND status = 'PENDING' AND sent_at > ?
            ORDER BY sent_at DESC, id DESC
        """, (target_fid, cutoff)) as cursor:
            return [_bite_from_row(row) for row in await cursor.fetchall()]

    async def claim(self, bite_ids: Iterable[int], target_fid: int, at: Optional[int] = None) -> ClaimTally:
        """Claim the given bites for their target.

        Ids that don't exist, belong to someone else, were already claimed or
        have expired are skipped without error.
        """
        ids = sorted({int(bite_id) for bite_id in bite_ids})
        if not ids:
            return ClaimTally(0, 0, [])

        ts = resolve_ts(at)
        cutoff = ts - self.ttl_seconds
        placeholders = ",".join("?" for _ in ids)
        async with self.db.execute(f"""
            SELECT id, amount FROM bites
            WHERE id IN ({placeholders}) AND target_fid = ? AND status = 'PENDING' AND sent_at > ?
        """, (*ids, target_fid, cutoff)) as cursor:
            rows = await cursor.fetchall()

        claimable = [row["id"] for row in rows]
        if not claimable:
            return ClaimTally(0, 0, [])

        placeholders = ",".join("?" for _ in claimable)
        await self.db.execute(f"""
            UPDATE bites SET status = 'CLAIMED', claimed_at = ?
            WHERE id IN ({placeholders}) AND status = 'PENDING'
        """, (ts, *claimable))
        return ClaimTally(len(claimable), sum(row["amount"] for row in rows), claimable)

    async def record_payout(self, bite_ids: Iterable[int], payout_tx: str):
        """Attach the reward transfer hash to claimed bites."""
        ids = list(bite_ids)
        if not ids:
            return
        placeholders = ",".join("?" for _ in ids)
        await self.db.execute(
            f"UPDATE bites SET payout_tx = ? WHERE id IN ({placeholders})", (payout_tx, *ids)
        )

    async def mark_expired(self, at: Optional[int] = None) -> int:
        """Store EXPIRED on pending bites that are past their TTL."""
        cutoff = resolve_ts(at) - self.ttl_seconds
        cursor = await self.db.execute(
            "UPDATE bites SET status = 'EXPIRED' WHERE status = 'PENDING' AND sent_at <= ?", (cutoff,)
        )
        return cursor.rowcount


def _bite_from_row(row) -> Bite:
    data = dict(row)
    data["status"] = BiteStatus(data["status"])
    return Bite(**data)
