"""Data models for ZOMBIEFICATION."""

import enum
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import (
    AlreadyCured,
    AlreadyZombie,
    CuredCannotSuccumb,
    InvalidTransition,
    NotAZombie,
    ZombieGameError,
)


class BiteStatus(str, enum.Enum):
    PENDING = "PENDING"
    CLAIMED = "CLAIMED"
    EXPIRED = "EXPIRED"


class PlayerState(str, enum.Enum):
    HUMAN = "HUMAN"
    ZOMBIE = "ZOMBIE"
    CURED = "CURED"


class Transition(str, enum.Enum):
    INFECT = "infect"      # claiming a bite
    SUCCUMB = "succumb"
    CURE = "cure"


# Allowed (state, event) -> next state. Anything missing is rejected.
TRANSITIONS = {
    (PlayerState.HUMAN, Transition.INFECT): PlayerState.ZOMBIE,
    (PlayerState.ZOMBIE, Transition.INFECT): PlayerState.ZOMBIE,
    (PlayerState.CURED, Transition.INFECT): PlayerState.ZOMBIE,
    (PlayerState.HUMAN, Transition.SUCCUMB): PlayerState.ZOMBIE,
    (PlayerState.ZOMBIE, Transition.CURE): PlayerState.CURED,
}

REJECTIONS = {
    (PlayerState.ZOMBIE, Transition.SUCCUMB): AlreadyZombie,
    (PlayerState.CURED, Transition.SUCCUMB): CuredCannotSuccumb,
    (PlayerState.HUMAN, Transition.CURE): NotAZombie,
    (PlayerState.CURED, Transition.CURE): AlreadyCured,
}


def next_state(current: PlayerState, event: Transition) -> PlayerState:
    """Validate a transition, raising the matching InvalidTransition if refused."""
    try:
        return TRANSITIONS[(current, event)]
    except KeyError:
        error = REJECTIONS.get((current, event), InvalidTransition)
        raise error() from None


@dataclass
class Identity:
    """A Farcaster user."""
    fid: int
    username: Optional[str] = None
    wallet_address: Optional[str] = None


@dataclass
class PlayerStatus:
    """Infection status of one player."""
    fid: int
    is_zombie: bool
    is_cured: bool
    became_zombie_at: Optional[int]
    total_bites_sent: int
    updated_at: Optional[int] = None

    @property
    def state(self) -> PlayerState:
        if self.is_cured:
            return PlayerState.CURED
        if self.is_zombie:
            return PlayerState.ZOMBIE
        return PlayerState.HUMAN


def state_of(status: Optional[PlayerStatus]) -> PlayerState:
    """State of a player, treating a missing row as a human."""
    return status.state if status else PlayerState.HUMAN


@dataclass
class Bite:
    """One infection attempt from a zombie on a target."""
    id: int
    sender_fid: int
    target_fid: int
    target_username: Optional[str]
    target_wallet: Optional[str]
    amount: int
    origin_ref: str
    origin_url: Optional[str]
    status: BiteStatus
    sent_at: int
    claimed_at: Optional[int] = None
    payout_tx: Optional[str] = None


@dataclass
class Cure:
    id: int
    cured_fid: int
    curer_fid: int
    payment_proof: str
    origin_ref: Optional[str]
    cured_at: int
    is_active: bool


@dataclass
class AllowanceClaim:
    fid: int
    payout_tx: Optional[str]
    amount: int
    claimed_at: int
    confirmed: bool = False


@dataclass
class GameState:
    """The singleton game clock row."""
    is_active: bool
    started_at: Optional[int]
    ends_at: Optional[int]
    started_by: Optional[int]
    final_announcement_sent: bool

    @property
    def has_started(self) -> bool:
        return self.started_at is not None

    def active_at(self, at: int) -> bool:
        return self.has_started and self.ends_at is not None and self.started_at <= at < self.ends_at

    def has_ended_at(self, at: int) -> bool:
        return self.has_started and self.ends_at is not None and at >= self.ends_at


@dataclass
class Message:
    """A cast that mentions the bot."""
    id: str
    author_fid: int
    author_username: str
    text: str
    timestamp: int
    reply_parent_username: Optional[str] = None


@dataclass
class Receipt:
    """Acknowledgement of a posted cast."""
    id: Optional[str]
    success: bool = True


@dataclass
class ClaimTally:
    claimed_count: int
    total_amount: int
    bite_ids: List[int] = field(default_factory=list)


class BiteOutcomeKind(str, enum.Enum):
    RECORDED = "recorded"
    NOT_FOUND = "not_found"
    LOOKUP_FAILED = "lookup_failed"
    SELF_BITE = "self_bite"
    DUPLICATE = "duplicate"


@dataclass
class BiteOutcome:
    target_username: str
    kind: BiteOutcomeKind
    bite_id: Optional[int] = None
    target_fid: Optional[int] = None


@dataclass
class ActionResult:
    """Result of performing a game action."""
    success: bool
    message: str
    public_message: Optional[str] = None
    error: Optional[ZombieGameError] = None


@dataclass
class BiteResult(ActionResult):
    outcomes: List[BiteOutcome] = field(default_factory=list)
    game_started: bool = False

    @property
    def recorded(self) -> List[BiteOutcome]:
        return [o for o in self.outcomes if o.kind is BiteOutcomeKind.RECORDED]


@dataclass
class ClaimResult(ActionResult):
    claimed_count: int = 0
    total_amount: int = 0
    bite_ids: List[int] = field(default_factory=list)
    now_zombie: bool = False
    payout_tx: Optional[str] = None
    payout_error: Optional[ZombieGameError] = None


@dataclass
class CureResult(ActionResult):
    cure_id: Optional[int] = None
    target_fid: Optional[int] = None


@dataclass
class SuccumbResult(ActionResult):
    payout_tx: Optional[str] = None
    amount: int = 0
