"""Background loops: mention polling and the end-of-game watcher."""

import asyncio
import logging
from collections import OrderedDict
from typing import Optional

from .config import (
    BOT_USERNAME,
    ERROR_BACKOFF,
    GAME_END_CHECK_INTERVAL,
    MENTION_MAX_AGE_MINUTES,
    POLL_INTERVAL,
    RECENT_MENTION_CACHE_SIZE,
)
from .engine import InfectionEngine
from .errors import ExternalServiceFailure, ValidationError
from .models import ActionResult, Identity, Message
from .parser import BiteCommand, CureCommand, MalformedCommand, SuccumbCommand, parse_command
from .timeutils import resolve_ts
from .view import GameView


logger = logging.getLogger(__name__)


class RecentMessages:
    """Bounded LRU of cast hashes this process has already handled."""

    def __init__(self, maxsize: int = RECENT_MENTION_CACHE_SIZE):
        self.maxsize = maxsize
        self._items = OrderedDict()

    def __contains__(self, key: str) -> bool:
        if key in self._items:
            self._items.move_to_end(key)
            return True
        return False

    def __len__(self) -> int:
        return len(self._items)

    def add(self, key: str):
        self._items[key] = True
        self._items.move_to_end(key)
        while len(self._items) > self.maxsize:
            self._items.popitem(last=False)


class PeriodicTask:
    """Runs run_once() every interval until stopped, sleeping longer after a failure."""

    name = "periodic task"

    def __init__(self, interval: float, error_backoff: float = ERROR_BACKOFF, error_handler=None):
        self.interval = interval
        self.error_backoff = error_backoff
        self.error_handler = error_handler
        self.running = False
        self.task: Optional[asyncio.Task] = None

    async def run_once(self) -> bool:
        """One cycle. Return False to request the error backoff before the next one."""
        raise NotImplementedError

    def start(self) -> asyncio.Task:
        self.running = True
        logger.info(f"Starting {self.name}")
        self.task = asyncio.create_task(self._loop())
        return self.task

    async def stop(self):
        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        logger.info(f"{self.name} stopped")

    async def _loop(self):
        while self.running:
            try:
                healthy = await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in {self.name}: {e}")
                if self.error_handler:
                    await self.error_handler.record(self.name, e)
                healthy = False
            try:
                await asyncio.sleep(self.interval if healthy else self.error_backoff)
            except asyncio.CancelledError:
                break


class MentionPoller(PeriodicTask):
    """Pulls mentions of the bot and feeds them, one at a time, to the engine."""

    name = "mention poller"

    def __init__(self, engine: InfectionEngine, social, bot_fid: int, bot_username: str = BOT_USERNAME,
                 poll_interval: float = POLL_INTERVAL, error_backoff: float = ERROR_BACKOFF,
                 max_age_minutes: float = MENTION_MAX_AGE_MINUTES,
                 cache_size: int = RECENT_MENTION_CACHE_SIZE, error_handler=None):
        super().__init__(poll_interval, error_backoff, error_handler)
        self.engine = engine
        self.social = social
        self.bot_fid = bot_fid
        self.bot_username = bot_username
        self.max_age_seconds = int(max_age_minutes * 60)
        self.recent = RecentMessages(cache_size)

    async def run_once(self) -> bool:
        # A failed fetch propagates to the loop and is retried next cycle.
        mentions = await self.social.list_mentions(self.bot_fid)

        failures = 0
        for message in sorted(mentions, key=lambda m: m.timestamp):
            try:
                await self.handle_mention(message)
            except Exception as e:
                failures += 1
                logger.error(f"Failed to process cast {message.id} from @{message.author_username}: {e}", exc_info=True)
                if self.error_handler:
                    await self.error_handler.record("mention", e)
        return failures == 0

    def cast_url(self, message: Message) -> str:
        return f"https://warpcast.com/{message.author_username}/{message.id}"

    async def handle_mention(self, message: Message, at: Optional[int] = None) -> Optional[ActionResult]:
        """Process a single mention. Returns the action result, or None if it was skipped."""
        if message.id in self.recent:
            return None
        if message.timestamp < resolve_ts(at) - self.max_age_seconds:
            return None
        if message.author_fid == self.bot_fid:
            return None
        self.recent.add(message.id)

        logger.info(f"Processing mention {message.id} from @{message.author_username}: {message.text!r}")
        command = parse_command(message.text, message.reply_parent_username, self.bot_username)
        sender = Identity(fid=message.author_fid, username=message.author_username)

        if isinstance(command, BiteCommand):
            if not command.targets:
                logger.info(f"No bite targets in cast {message.id}")
                return None
            result = await self.engine.process_bite(sender, command.targets, message.id,
                                                    origin_url=self.cast_url(message), at=at)
        elif isinstance(command, CureCommand):
            result = await self.engine.cure_by_username(sender, command.target_username, command.payment_proof,
                                                        origin_ref=message.id, at=at)
        elif isinstance(command, SuccumbCommand):
            result = await self.engine.process_succumb(sender.fid, identity=sender, at=at)
        elif isinstance(command, MalformedCommand):
            result = ActionResult(False, f"⚠️ {command.reason}", error=ValidationError(command.reason))
        else:
            raise TypeError(f"Unhandled command {command!r}")

        if not result.success:
            logger.info(f"Cast {message.id} rejected: {result.message}")
        await self._reply(message.id, result)
        return result

    async def _reply(self, parent_id: str, result: ActionResult):
        # State is already committed here; a failed reply is only logged.
        for text in (result.public_message, result.message):
            if not text:
                continue
            try:
                await self.social.post_reply(parent_id, text)
            except ExternalServiceFailure as e:
                logger.error(f"Failed to reply to {parent_id}: {e}")


class GameEndWatcher(PeriodicTask):
    """Posts the final announcement once the game window closes, and sweeps expired bites."""

    name = "game end watcher"

    def __init__(self, engine: InfectionEngine, view: GameView, social,
                 interval: float = GAME_END_CHECK_INTERVAL, error_handler=None):
        super().__init__(interval, interval, error_handler)
        self.engine = engine
        self.view = view
        self.social = social

    async def run_once(self, at: Optional[int] = None) -> bool:
        announced = await self.check_game_end(at=at)
        expired = await self.engine.expire_stale_bites(at=at)
        if expired:
            logger.info(f"Marked {expired} bite(s) expired")
        return announced is not False

    async def check_game_end(self, at: Optional[int] = None) -> Optional[bool]:
        """None if nothing to do, True if the final cast went out, False if posting it failed."""
        if not await self.engine.finalize_game(at=at):
            return None

        stats = await self.view.get_game_stats(at=at)
        text = self.view.format_final_summary(stats)
        logger.info(f"POSTING GAME END CAST: {text}")
        try:
            await self.social.post_public(text)
        except ExternalServiceFailure as e:
            # The latch is already set, so this announcement will not be retried.
            logger.error(f"Failed to post game end cast: {e}")
            return False
        return True
