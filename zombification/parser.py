"""Turns the text of a cast that mentions the bot into a game command.

Matchers are tried in order (cure, succumb, bite) and the first one that
recognises the text wins, so a cure or succumb directive is never also read
as a bite.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union

from .config import BOT_USERNAME

MENTION_RE = re.compile(r"@([\w-]+)")
PROOF_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass(frozen=True)
class CureCommand:
    target_username: str
    payment_proof: str


@dataclass(frozen=True)
class SuccumbCommand:
    pass


@dataclass(frozen=True)
class BiteCommand:
    targets: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class MalformedCommand:
    reason: str


Command = Union[CureCommand, SuccumbCommand, BiteCommand, MalformedCommand]
Matcher = Callable[[str, Optional[str], str], Optional[Command]]


def is_payment_proof(value: str) -> bool:
    """A transaction hash: 0x followed by 64 hex digits."""
    return bool(PROOF_RE.match(value or ""))


def is_wallet_address(value: str) -> bool:
    """An Ethereum address: 0x followed by 40 hex digits."""
    return bool(ADDRESS_RE.match(value or ""))


def _directive(bot_username: str, words: str) -> re.Pattern:
    return re.compile(rf"@{re.escape(bot_username)}\s+(?:{words})\b(.*)$", re.IGNORECASE | re.DOTALL)


def match_cure(text: str, reply_parent: Optional[str], bot_username: str) -> Optional[Command]:
    found = _directive(bot_username, "cure").search(text)
    if not found:
        return None
    args = found.group(1).split()
    if not args or not args[0].startswith("@") or len(args[0]) < 2:
        return MalformedCommand(f"Usage: @{bot_username} cure @username <payment tx hash>")
    target_match = MENTION_RE.fullmatch(args[0])
    if not target_match or target_match.group(1).lower() == bot_username.lower():
        return MalformedCommand("Tag the zombie you want to cure.")
    if len(args) < 2 or not is_payment_proof(args[1]):
        return MalformedCommand("Include the payment transaction hash (0x followed by 64 hex characters).")
    return CureCommand(target_username=target_match.group(1), payment_proof=args[1].lower())


def match_succumb(text: str, reply_parent: Optional[str], bot_username: str) -> Optional[Command]:
    found = _directive(bot_username, "succumb|claim").search(text)
    if not found:
        return None
    rest = found.group(1)
    if not rest.strip():
        return SuccumbCommand()
    # "succumb @alice" is still a bite on alice
    if MENTION_RE.sub("", rest).strip():
        return MalformedCommand(f"Usage: @{bot_username} succumb (nothing else in the cast)")
    return None


def match_bite(text: str, reply_parent: Optional[str], bot_username: str) -> Optional[Command]:
    targets = []
    for username in MENTION_RE.findall(text):
        if username.lower() != bot_username.lower() and username not in targets:
            targets.append(username)
    if reply_parent and reply_parent.lower() != bot_username.lower() and reply_parent not in targets:
        targets.append(reply_parent)
    return BiteCommand(targets=targets)


MATCHERS: List[Matcher] = [match_cure, match_succumb, match_bite]


def parse_command(text: str, reply_parent_username: Optional[str] = None,
                  bot_username: str = BOT_USERNAME) -> Command:
    """Classify a mention. Always returns exactly one command."""
    for matcher in MATCHERS:
        command = matcher(text or "", reply_parent_username, bot_username)
        if command is not None:
            return command
    return BiteCommand()
