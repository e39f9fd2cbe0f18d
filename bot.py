"""Main entry point for the ZOMBIEFICATION Farcaster bot."""

import os
import sys
import signal
import asyncio
import logging

from dotenv import load_dotenv

from error_handler import ErrorHandler
from zombification.config import load_settings
from zombification.engine import InfectionEngine
from zombification.payments import Web3PaymentVerifier, Web3TokenPayout
from zombification.poller import GameEndWatcher, MentionPoller
from zombification.social import NeynarClient
from zombification.storage import GameStorage
from zombification.view import GameView


logger = logging.getLogger(__name__)


def setup_logging():
    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(os.getenv('LOG_FILE', 'zombification.log'))
        ]
    )


class ZombieBot:
    """Wires storage, Farcaster, the chain and the background loops together."""

    def __init__(self, settings):
        self.settings = settings
        self.storage = GameStorage(settings.database_path)
        self.social = NeynarClient(settings.neynar_api_key, settings.neynar_signer_uuid)
        self.error_handler = ErrorHandler(self.social, settings.owner_username)

        verifier = None
        payout = None
        if settings.chain_enabled:
            if settings.treasury_address:
                verifier = Web3PaymentVerifier(settings.token_address, settings.treasury_address,
                                               rpc_url=settings.rpc_url)
            else:
                logger.warning("CURE_TREASURY_ADDRESS not set - cures are disabled")
            if settings.bot_private_key:
                payout = Web3TokenPayout(settings.token_address, settings.bot_private_key,
                                         rpc_url=settings.rpc_url)
            else:
                logger.warning("BOT_PRIVATE_KEY not set - token payouts are disabled")
        else:
            logger.warning("ZOMBIE_TOKEN_ADDRESS not set - cures and payouts are disabled")

        self.engine = InfectionEngine(
            self.storage,
            self.social,
            verifier=verifier,
            payout=payout,
            patient_zero_fid=settings.patient_zero_fid,
            zombies_only=settings.zombies_only_bite,
            game_url=settings.game_url,
        )
        self.view = GameView(self.storage, game_url=settings.game_url, patient_zero_fid=settings.patient_zero_fid)
        self.poller = MentionPoller(self.engine, self.social, settings.bot_fid, settings.bot_username,
                                    error_handler=self.error_handler)
        self.watcher = GameEndWatcher(self.engine, self.view, self.social, error_handler=self.error_handler)

    async def start(self):
        logger.info("Setting up ZOMBIEFICATION bot...")
        await self.storage.initialize()
        self.poller.start()
        self.watcher.start()
        logger.info(f"ZOMBIEFICATION bot is ready! Listening for @{self.settings.bot_username} mentions")
        await self.error_handler.send_startup_notification(self.settings.bot_username)

    async def close(self):
        """Clean shutdown."""
        logger.info("Shutting down ZOMBIEFICATION bot...")
        await self.poller.stop()
        await self.watcher.stop()
        await self.social.close()


async def main():
    """Main function to run the bot."""
    load_dotenv()
    setup_logging()

    settings = load_settings()
    missing = settings.missing_social_settings()
    if missing:
        logger.error(f"Missing required settings: {', '.join(missing)}. Exiting.")
        sys.exit(1)

    bot = ZombieBot(settings)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # not available on Windows
            pass

    try:
        await bot.start()
        await stop.wait()
    except Exception as e:
        logger.error(f"Bot crashed: {e}", exc_info=True)
        await bot.error_handler.notify_owner("Bot Crashed", "Fatal error", e)
        raise
    finally:
        await bot.close()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    run()
