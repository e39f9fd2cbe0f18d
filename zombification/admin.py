"""Admin commands for inspecting and managing a game database."""

import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

from .clock import GameClock
from .config import load_settings
from .storage import GameStorage
from .timeutils import format_clock, hours_until, now_ts
from .view import LEADERBOARD_KINDS, GameView


logger = logging.getLogger(__name__)


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


async def init_db(storage: GameStorage, args) -> int:
    await storage.initialize()
    tables = await storage.list_tables()
    print(f"✅ Database ready at {storage.db_path} ({len(tables)} tables: {', '.join(tables)})")
    return 0


async def show_status(storage: GameStorage, args) -> int:
    status = await GameView(storage).get_game_status()
    if status["phase"] == "pre_game":
        print("⏳ Waiting for Patient Zero to make the first bite")
    elif status["phase"] == "active":
        left = hours_until(status["ends_at"])
        print(f"🧟 Game active, ends at {format_clock(status['ends_at'])} ({left:.1f}h left)")
    else:
        announced = "sent" if status["final_announcement_sent"] else "NOT sent"
        print(f"🏁 Game ended at {format_clock(status['ends_at'])}, final announcement {announced}")
    if args.json:
        _print_json(status)
    return 0


async def show_stats(storage: GameStorage, args) -> int:
    _print_json(await GameView(storage).get_game_stats())
    return 0


async def show_player(storage: GameStorage, args) -> int:
    view = GameView(storage)
    player = await view.get_player_status(args.fid)
    player["pending_bites"] = await view.list_pending_bites(args.fid)
    player["cures"] = await view.get_cure_history(args.fid)
    _print_json(player)
    return 0


async def show_leaderboard(storage: GameStorage, args) -> int:
    view = GameView(storage, patient_zero_fid=args.patient_zero_fid)
    entries = await view.get_leaderboard(limit=args.limit, kind=args.kind)
    if not entries:
        print("No players yet.")
        return 0
    for entry in entries:
        name = f"@{entry['username']}" if entry["username"] else f"fid {entry['fid']}"
        marker = "💉" if entry["is_cured"] else "🧟" if entry["is_zombie"] else "🧍"
        print(f"{entry['rank']:>3}. {marker} {name} - {entry['bites']} bites")
    return 0


async def finalize(storage: GameStorage, args) -> int:
    """Latch the game as finished without posting; for when the announcement was made by hand."""
    async with storage.transaction() as db:
        latched = await GameClock(db).check_and_finalize(at=now_ts())
    if latched:
        print("✅ Game marked as finalized")
        return 0
    print("❌ Nothing to finalize (game not over, or already announced)")
    return 1


async def reset(storage: GameStorage, args) -> int:
    if not args.yes:
        print("❌ This deletes ALL game data. Re-run with --yes to confirm.")
        return 1
    await storage.clear_all_game_data()
    print("🔄 Game reset complete. All game data has been cleared.")
    return 0


COMMANDS = {
    "init-db": init_db,
    "status": show_status,
    "stats": show_stats,
    "player": show_player,
    "leaderboard": show_leaderboard,
    "finalize": finalize,
    "reset": reset,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="zombification-admin", description="Manage the ZOMBIEFICATION game database")
    parser.add_argument("--db", help="Path to the SQLite database (default: DATABASE_PATH)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the schema")
    status = sub.add_parser("status", help="Show the game clock")
    status.add_argument("--json", action="store_true", help="Also print the raw status")
    sub.add_parser("stats", help="Show game statistics")
    player = sub.add_parser("player", help="Show one player")
    player.add_argument("fid", type=int)
    leaderboard = sub.add_parser("leaderboard", help="Show the leaderboard")
    leaderboard.add_argument("--limit", type=int, default=10)
    leaderboard.add_argument("--kind", choices=LEADERBOARD_KINDS, default="biters")
    sub.add_parser("finalize", help="Mark an ended game as announced")
    reset_parser = sub.add_parser("reset", help="Delete all game data")
    reset_parser.add_argument("--yes", action="store_true", help="Confirm the reset")
    return parser


async def run_command(args) -> int:
    settings = load_settings()
    storage = GameStorage(args.db or settings.database_path)
    args.patient_zero_fid = settings.patient_zero_fid
    if args.command != "init-db":
        await storage.initialize()
    return await COMMANDS[args.command](storage, args)


def main(argv=None) -> int:
    load_dotenv()
    logging.basicConfig(level=logging.WARNING, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(run_command(args))
    except Exception as e:
        logger.error(f"{args.command} failed: {e}", exc_info=True)
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
