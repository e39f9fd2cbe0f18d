"""Error tracking and owner notification for the ZOMBIEFICATION bot."""

import logging
import traceback
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from zombification.config import ERROR_NOTIFICATION_COOLDOWN


logger = logging.getLogger(__name__)

MAX_CAST_LENGTH = 320


class ErrorHandler:
    """Centralized error counting and notification system."""

    def __init__(self, social=None, owner_username: Optional[str] = None,
                 notification_cooldown: int = ERROR_NOTIFICATION_COOLDOWN):
        self.social = social
        self.owner_username = owner_username.lstrip("@") if owner_username else None
        self.error_counts: Dict[str, int] = {}
        self.last_notification: Dict[str, datetime] = {}
        self.notification_cooldown = notification_cooldown  # seconds between same error types

    def _should_notify(self, error_type: str, now: datetime) -> bool:
        last = self.last_notification.get(error_type)
        return last is None or now - last > timedelta(seconds=self.notification_cooldown)

    async def record(self, context: str, error: Exception) -> bool:
        """Count an error. Returns True if it was reported in full (traceback plus owner cast)."""
        error_type = type(error).__name__
        now = datetime.now(timezone.utc)

        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

        if not self._should_notify(error_type, now):
            logger.warning(f"{context}: {error_type} repeated ({self.error_counts[error_type]} since restart)")
            return False

        self.last_notification[error_type] = now
        tb = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        logger.error(f"{context}: {error_type}: {error}\n{tb}")

        await self.notify_owner(
            f"{context} error: {error_type}",
            f"Count: {self.error_counts[error_type]} (since restart)",
            error,
        )
        return True

    async def notify_owner(self, title: str, description: str = "", error: Exception = None) -> bool:
        """Tag the owner in a cast. Does nothing unless OWNER_USERNAME is set."""
        if not self.social or not self.owner_username:
            return False

        text = f"@{self.owner_username} 🚨 {title}"
        if description:
            text += f"\n{description}"
        if error:
            text += f"\n{str(error)[:200]}"

        try:
            await self.social.post_public(text[:MAX_CAST_LENGTH])
            logger.info(f"Sent error notification to owner: {title}")
            return True
        except Exception as e:
            logger.error(f"Failed to send error notification: {e}")
            return False

    async def send_startup_notification(self, bot_username: str) -> bool:
        """Let the owner know the bot is polling again."""
        return await self.notify_owner("✅ ZOMBIEFICATION bot started", f"Listening for @{bot_username} mentions")
