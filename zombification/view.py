"""Read-only views of game state, shaped for an HTTP layer or the admin CLI."""

from typing import Any, Dict, List, Optional

from .bites import BiteLedger
from .clock import GameClock
from .config import BITE_TTL_HOURS, GAME_URL, PATIENT_ZERO_FID
from .models import Cure
from .players import PlayerStateStore
from .storage import CureStore, GameStorage, IdentityStore
from .timeutils import hours_to_seconds, resolve_ts


LEADERBOARD_KINDS = ("biters", "bitten")


def _cure_dict(cure: Cure) -> Dict[str, Any]:
    return {
        "id": cure.id,
        "cured_fid": cure.cured_fid,
        "curer_fid": cure.curer_fid,
        "payment_proof": cure.payment_proof,
        "origin_ref": cure.origin_ref,
        "cured_at": cure.cured_at,
        "is_active": cure.is_active,
    }


class GameView:
    """Queries behind the player status, pending bites, leaderboard and stats pages."""

    def __init__(self, storage: GameStorage, bite_ttl_hours: float = BITE_TTL_HOURS, game_url: str = GAME_URL,
                 patient_zero_fid: int = PATIENT_ZERO_FID):
        self.storage = storage
        self.patient_zero_fid = patient_zero_fid
        self.bite_ttl_hours = bite_ttl_hours
        self.ttl_seconds = hours_to_seconds(bite_ttl_hours)
        self.game_url = game_url

    async def get_player_status(self, fid: int) -> Dict[str, Any]:
        async with self.storage.session() as db:
            status = await PlayerStateStore(db).get_status(fid)
            identity = await IdentityStore(db).get(fid)
            async with db.execute(
                "SELECT COUNT(*) FROM bites WHERE target_fid = ? AND status = 'CLAIMED'", (fid,)
            ) as cursor:
                bites_received = (await cursor.fetchone())[0]

        return {
            "fid": fid,
            "username": identity.username if identity else None,
            "wallet_address": identity.wallet_address if identity else None,
            "is_in_game": status is not None,
            "state": status.state.value if status else "HUMAN",
            "is_zombie": status.is_zombie if status else False,
            "is_cured": status.is_cured if status else False,
            "became_zombie_at": status.became_zombie_at if status else None,
            "total_bites_sent": status.total_bites_sent if status else 0,
            "bites_received": bites_received,
        }

    async def list_pending_bites(self, fid: int, at: Optional[int] = None) -> List[Dict[str, Any]]:
        async with self.storage.session() as db:
            bites = await BiteLedger(db, self.bite_ttl_hours).list_pending(fid, at=at)
            senders = {}
            for bite in bites:
                if bite.sender_fid not in senders:
                    senders[bite.sender_fid] = await IdentityStore(db).get(bite.sender_fid)

        pending = []
        for bite in bites:
            sender = senders.get(bite.sender_fid)
            pending.append({
                "id": bite.id,
                "sender_fid": bite.sender_fid,
                "sender_username": sender.username if sender and sender.username else "Anonymous Zombie",
                "amount": bite.amount,
                "sent_at": bite.sent_at,
                "expires_at": bite.sent_at + self.ttl_seconds,
                "origin_ref": bite.origin_ref,
                "origin_url": bite.origin_url,
            })
        return pending

    async def get_leaderboard(self, limit: int = 50, kind: str = "biters") -> List[Dict[str, Any]]:
        """Top zombie biters (Patient Zero included), or the most bitten players."""
        if kind not in LEADERBOARD_KINDS:
            raise ValueError(f"Unknown leaderboard kind: {kind}")

        if kind == "biters":
            query = """
                SELECT ps.fid, i.username, i.wallet_address, ps.total_bites_sent AS bites,
                       ps.became_zombie_at, ps.is_zombie, ps.is_cured
                FROM player_status ps
                LEFT JOIN identities i ON i.fid = ps.fid
                WHERE ps.total_bites_sent > 0 AND (ps.is_zombie = 1 OR ps.fid = ?)
                ORDER BY ps.total_bites_sent DESC, ps.became_zombie_at IS NULL, ps.became_zombie_at ASC, ps.fid ASC
                LIMIT ?
            """
        else:
            query = """
                SELECT b.target_fid AS fid, i.username, i.wallet_address, COUNT(*) AS bites,
                       ps.became_zombie_at, ps.is_zombie, ps.is_cured
                FROM bites b
                LEFT JOIN identities i ON i.fid = b.target_fid
                LEFT JOIN player_status ps ON ps.fid = b.target_fid
                GROUP BY b.target_fid
                ORDER BY bites DESC, b.target_fid ASC
                LIMIT ?
            """

        params = (self.patient_zero_fid, int(limit)) if kind == "biters" else (int(limit),)
        async with self.storage.session() as db:
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()

        return [
            {
                "rank": rank,
                "fid": row["fid"],
                "username": row["username"],
                "wallet_address": row["wallet_address"],
                "bites": row["bites"],
                "became_zombie_at": row["became_zombie_at"],
                "is_zombie": bool(row["is_zombie"]),
                "is_cured": bool(row["is_cured"]),
            }
            for rank, row in enumerate(rows, start=1)
        ]

    async def get_game_stats(self, at: Optional[int] = None) -> Dict[str, Any]:
        cutoff = resolve_ts(at) - self.ttl_seconds
        async with self.storage.session() as db:
            async with db.execute("""
                SELECT
                    COALESCE(SUM(CASE WHEN is_zombie = 1 THEN 1 ELSE 0 END), 0) AS zombies,
                    COALESCE(SUM(CASE WHEN is_cured = 1 THEN 1 ELSE 0 END), 0) AS cured,
                    COUNT(*) AS players
                FROM player_status
            """) as cursor:
                players = await cursor.fetchone()
            async with db.execute("""
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(CASE WHEN status = 'CLAIMED' THEN 1 ELSE 0 END), 0) AS claimed,
                    COALESCE(SUM(CASE WHEN status = 'PENDING' AND sent_at > ? THEN 1 ELSE 0 END), 0) AS pending
                FROM bites
            """, (cutoff,)) as cursor:
                bites = await cursor.fetchone()
            async with db.execute("SELECT COUNT(*) FROM cures") as cursor:
                cures = (await cursor.fetchone())[0]
            async with db.execute("SELECT COUNT(*) FROM allowance_claims WHERE confirmed = 1") as cursor:
                succumbed = (await cursor.fetchone())[0]
            async with db.execute("SELECT COUNT(*) FROM identities") as cursor:
                identities = (await cursor.fetchone())[0]

        return {
            "total_zombies": players["zombies"],
            "total_cured": players["cured"],
            "total_humans": max(identities - players["zombies"] - players["cured"], 0),
            "total_players": identities,
            "total_bites": bites["total"],
            "claimed_bites": bites["claimed"],
            "pending_bites": bites["pending"],
            "total_cures": cures,
            "total_succumbed": succumbed,
        }

    async def get_cure_history(self, fid: int) -> List[Dict[str, Any]]:
        async with self.storage.session() as db:
            cures = await CureStore(db).history(fid)
        return [_cure_dict(cure) for cure in cures]

    async def get_cure_status(self, fid: int) -> Dict[str, Any]:
        async with self.storage.session() as db:
            status = await PlayerStateStore(db).get_status(fid)
            active = await CureStore(db).get_active(fid)
        return {
            "fid": fid,
            "is_cured": status.is_cured if status else False,
            "state": status.state.value if status else "HUMAN",
            "active_cure": _cure_dict(active) if active else None,
        }

    async def get_game_status(self, at: Optional[int] = None) -> Dict[str, Any]:
        ts = resolve_ts(at)
        async with self.storage.session() as db:
            clock = GameClock(db)
            state = await clock.get_state()
            active = await clock.is_active(at=ts)

        if active:
            phase = "active"
        elif state.has_started:
            phase = "ended"
        else:
            phase = "pre_game"
        return {
            "phase": phase,
            "is_active": active,
            "started_at": state.started_at,
            "ends_at": state.ends_at,
            "started_by": state.started_by,
            "seconds_remaining": state.ends_at - ts if active else 0,
            "final_announcement_sent": state.final_announcement_sent,
        }

    def format_final_summary(self, stats: Dict[str, Any]) -> str:
        """Text of the cast that closes the game."""
        return (
            "🧟 THE ZOMBIE APOCALYPSE HAS ENDED! 🧟\n\n"
            "Thank you to everyone who participated in ZOMBIEFICATION!\n\n"
            "📊 Final Stats:\n"
            f"🦷 Total Bites: {stats['total_bites']}\n"
            f"🧟 Zombies: {stats['total_zombies']}\n"
            f"💉 Cured: {stats['total_cured']}\n\n"
            f"Full standings at {self.game_url}\n\n"
            "🎁 Stay tuned for reward distribution announcements!"
        )
