"""Game configuration constants and deployment settings."""

import os
from dataclasses import dataclass
from typing import Optional

# Game rules
BITE_AMOUNT = 1
BITE_TTL_HOURS = 4
GAME_DURATION_HOURS = 12
CURE_PRICE = 10_000
SUCCUMB_REWARD = 1_000
PATIENT_ZERO_FID = 8573

TIMEZONE = "America/Chicago"
DATABASE_PATH = "zombification.db"
DB_BUSY_TIMEOUT = 5.0  # seconds a writer waits for the database lock

# Farcaster
BOT_USERNAME = "zombie-bite"
NEYNAR_API_URL = "https://api.neynar.com/v2/farcaster"
GAME_URL = "zombie.epicdylan.com"

# Loop timing (seconds)
POLL_INTERVAL = 10
ERROR_BACKOFF = 30
GAME_END_CHECK_INTERVAL = 60
EXTERNAL_TIMEOUT = 10.0

MENTION_FETCH_LIMIT = 25
MENTION_MAX_AGE_MINUTES = 10
RECENT_MENTION_CACHE_SIZE = 1000

# $ZOMBIE token on Base
BASE_RPC_URL = "https://mainnet.base.org"
TOKEN_DECIMALS = 18
TRANSFER_GAS_LIMIT = 100_000

ERROR_NOTIFICATION_COOLDOWN = 300


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if not value:
        return default
    return int(value)


@dataclass
class Settings:
    """Deployment settings read from the environment."""
    neynar_api_key: Optional[str]
    neynar_signer_uuid: Optional[str]
    bot_fid: Optional[int]
    bot_username: str = BOT_USERNAME
    database_path: str = DATABASE_PATH
    patient_zero_fid: int = PATIENT_ZERO_FID
    rpc_url: str = BASE_RPC_URL
    bot_private_key: Optional[str] = None
    token_address: Optional[str] = None
    treasury_address: Optional[str] = None
    owner_username: Optional[str] = None
    zombies_only_bite: bool = False
    game_url: str = GAME_URL

    @property
    def chain_enabled(self) -> bool:
        """True when enough is configured to talk to the token contract."""
        return bool(self.token_address)

    def missing_social_settings(self) -> list:
        missing = []
        if not self.neynar_api_key:
            missing.append("NEYNAR_API_KEY")
        if not self.neynar_signer_uuid:
            missing.append("NEYNAR_SIGNER_UUID")
        if not self.bot_fid:
            missing.append("FARCASTER_BOT_FID")
        return missing


def load_settings() -> Settings:
    """Build Settings from environment variables (call load_dotenv first)."""
    return Settings(
        neynar_api_key=os.getenv("NEYNAR_API_KEY"),
        neynar_signer_uuid=os.getenv("NEYNAR_SIGNER_UUID"),
        bot_fid=_env_int("FARCASTER_BOT_FID", None),
        bot_username=os.getenv("FARCASTER_BOT_USERNAME", BOT_USERNAME),
        database_path=os.getenv("DATABASE_PATH", DATABASE_PATH),
        patient_zero_fid=_env_int("PATIENT_ZERO_FID", PATIENT_ZERO_FID),
        rpc_url=os.getenv("BASE_RPC_URL", BASE_RPC_URL),
        bot_private_key=os.getenv("BOT_PRIVATE_KEY"),
        token_address=os.getenv("ZOMBIE_TOKEN_ADDRESS"),
        treasury_address=os.getenv("CURE_TREASURY_ADDRESS"),
        owner_username=os.getenv("OWNER_USERNAME"),
        zombies_only_bite=_env_bool("ZOMBIES_ONLY_BITE"),
        game_url=os.getenv("GAME_URL", GAME_URL),
    )
