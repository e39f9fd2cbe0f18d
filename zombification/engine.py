"""Infection engine: bite, claim, cure and succumb transitions.

Each operation re-checks its preconditions and writes inside one
GameStorage.transaction(), so two competing requests for the same player
cannot both pass a check that only one of them should. Calls to Farcaster and
the chain happen outside the transaction.
"""

import logging
import sqlite3
from typing import Iterable, List, Optional, Tuple

from .bites import BiteLedger
from .clock import GameClock
from .config import (
    BITE_AMOUNT,
    BITE_TTL_HOURS,
    CURE_PRICE,
    GAME_DURATION_HOURS,
    GAME_URL,
    PATIENT_ZERO_FID,
    SUCCUMB_REWARD,
)
from .errors import (
    AlreadyClaimed,
    CuredCannotBite,
    ExternalServiceFailure,
    GameNotStarted,
    GameOver,
    NoValidBites,
    NotFound,
    PaymentInvalid,
    PayoutUnconfirmed,
    ValidationError,
    ZombieGameError,
    ZombiesOnly,
)
from .models import (
    BiteOutcome,
    BiteOutcomeKind,
    BiteResult,
    ClaimResult,
    CureResult,
    GameState,
    Identity,
    PlayerState,
    PlayerStatus,
    SuccumbResult,
    Transition,
    next_state,
    state_of,
)
from .parser import is_payment_proof, is_wallet_address
from .players import PlayerStateStore
from .storage import AllowanceStore, CureStore, GameStorage, IdentityStore
from .timeutils import format_clock, resolve_ts


logger = logging.getLogger(__name__)


class InfectionEngine:
    """Applies game rules against the stores."""

    def __init__(self, storage: GameStorage, social, verifier=None, payout=None,
                 patient_zero_fid: int = PATIENT_ZERO_FID,
                 bite_amount: int = BITE_AMOUNT,
                 bite_ttl_hours: float = BITE_TTL_HOURS,
                 game_duration_hours: float = GAME_DURATION_HOURS,
                 cure_price: int = CURE_PRICE,
                 succumb_reward: int = SUCCUMB_REWARD,
                 zombies_only: bool = False,
                 game_url: str = GAME_URL):
        self.storage = storage
        self.social = social
        self.verifier = verifier
        self.payout = payout
        self.patient_zero_fid = patient_zero_fid
        self.bite_amount = bite_amount
        self.bite_ttl_hours = bite_ttl_hours
        self.game_duration_hours = game_duration_hours
        self.cure_price = cure_price
        self.succumb_reward = succumb_reward
        self.zombies_only = zombies_only
        self.game_url = game_url

    def _clock(self, db) -> GameClock:
        return GameClock(db, self.patient_zero_fid, self.game_duration_hours)

    def _ledger(self, db) -> BiteLedger:
        return BiteLedger(db, self.bite_ttl_hours)

    def _check_can_bite(self, sender_fid: int, status: Optional[PlayerStatus], game: GameState, at: int) -> bool:
        """Raise if the sender may not bite now. Returns True if this bite starts the game."""
        state = state_of(status)
        if state is PlayerState.CURED:
            raise CuredCannotBite()
        if self.zombies_only and sender_fid != self.patient_zero_fid and state is not PlayerState.ZOMBIE:
            raise ZombiesOnly()
        if game.active_at(at):
            return False
        if sender_fid != self.patient_zero_fid:
            raise GameOver() if game.has_started else GameNotStarted()
        return True

    async def _resolve_targets(self, targets: Iterable[str]) -> List[Tuple[str, Optional[Identity], bool]]:
        resolved = []
        for username in targets:
            try:
                identity = await self.social.resolve_username(username)
            except ExternalServiceFailure as e:
                logger.warning(f"Lookup of @{username} failed: {e}")
                resolved.append((username, None, True))
                continue
            resolved.append((username, identity, False))
        return resolved

    async def process_bite(self, sender: Identity, targets: List[str], origin_ref: str,
                           origin_url: Optional[str] = None, at: Optional[int] = None) -> BiteResult:
        """Record one bite per distinct target of a cast."""
        if not targets:
            return BiteResult(True, "")

        ts = resolve_ts(at)
        try:
            # Reject before any username lookups.
            async with self.storage.session() as db:
                status = await PlayerStateStore(db).get_status(sender.fid)
                game = await self._clock(db).get_state()
            self._check_can_bite(sender.fid, status, game, ts)

            resolved = await self._resolve_targets(targets)

            outcomes = []
            game_started = False
            async with self.storage.transaction() as db:
                players = PlayerStateStore(db)
                clock = self._clock(db)
                identities = IdentityStore(db)
                ledger = self._ledger(db)

                status = await players.get_status(sender.fid)
                game = await clock.get_state()
                if self._check_can_bite(sender.fid, status, game, ts):
                    game = await clock.start(sender.fid, at=ts)
                    game_started = True

                await identities.upsert(sender, at=ts)
                for username, target, lookup_failed in resolved:
                    if lookup_failed:
                        outcomes.append(BiteOutcome(username, BiteOutcomeKind.LOOKUP_FAILED))
                        continue
                    if target is None:
                        outcomes.append(BiteOutcome(username, BiteOutcomeKind.NOT_FOUND))
                        continue
                    if target.fid == sender.fid:
                        outcomes.append(BiteOutcome(username, BiteOutcomeKind.SELF_BITE, target_fid=target.fid))
                        continue

                    await identities.upsert(target, at=ts)
                    bite_id = await ledger.record(sender.fid, target, self.bite_amount, origin_ref, origin_url, at=ts)
                    if bite_id is None:
                        outcomes.append(BiteOutcome(username, BiteOutcomeKind.DUPLICATE, target_fid=target.fid))
                        continue
                    await players.increment_bites_sent(sender.fid, at=ts)
                    outcomes.append(BiteOutcome(username, BiteOutcomeKind.RECORDED, bite_id, target.fid))
        except ZombieGameError as e:
            return BiteResult(False, e.message, error=e)

        for outcome in outcomes:
            if outcome.kind is BiteOutcomeKind.RECORDED:
                logger.info(f"BITE RECORDED: {sender.username} ({sender.fid}) bit @{outcome.target_username}")

        public_message = None
        if game_started:
            logger.info(f"GAME STARTED by Patient Zero {sender.fid}")
            public_message = (
                "🚨 THE ZOMBIE APOCALYPSE HAS BEGUN! 🚨\n\n"
                f"{int(self.game_duration_hours)}-hour infection period started! "
                "Tag the bot and @username to spread the virus!\n\n"
                f"Game ends at {format_clock(game.ends_at)}"
            )

        return BiteResult(
            True,
            "\n".join(self._describe_outcome(o) for o in outcomes),
            public_message,
            outcomes=outcomes,
            game_started=game_started,
        )

    def _describe_outcome(self, outcome: BiteOutcome) -> str:
        name = outcome.target_username
        if outcome.kind is BiteOutcomeKind.RECORDED:
            return (f"🧟 BITE SUCCESSFUL! @{name} has been bitten and can claim {self.bite_amount} $ZOMBIE "
                    f"at {self.game_url} to join the undead horde!")
        if outcome.kind is BiteOutcomeKind.NOT_FOUND:
            return f"❌ @{name} not found on Farcaster. Make sure the username is correct!"
        if outcome.kind is BiteOutcomeKind.LOOKUP_FAILED:
            return f"⚠️ Couldn't look up @{name} right now. Try biting again in a bit."
        if outcome.kind is BiteOutcomeKind.SELF_BITE:
            return "🚫 You can't bite yourself! Find a human to infect instead! 🧟"
        return f"@{name} was already bitten by this cast."

    async def process_claim(self, target: Identity, bite_ids: Iterable[int], at: Optional[int] = None) -> ClaimResult:
        """Claim pending bites and turn the target into a zombie."""
        ts = resolve_ts(at)
        try:
            async with self.storage.transaction() as db:
                players = PlayerStateStore(db)
                tally = await self._ledger(db).claim(bite_ids, target.fid, at=ts)
                if tally.claimed_count == 0:
                    raise NoValidBites()

                status = await players.get_status(target.fid)
                previous = state_of(status)
                next_state(previous, Transition.INFECT)
                if previous is PlayerState.CURED:
                    await CureStore(db).deactivate(target.fid)

                await IdentityStore(db).upsert(target, at=ts)
                await players.upsert_zombie(target.fid, at=ts)
        except ZombieGameError as e:
            return ClaimResult(False, e.message, error=e)

        logger.info(f"fid {target.fid} claimed {tally.claimed_count} bite(s) and is now a zombie")
        bites_word = "bite" if tally.claimed_count == 1 else "bites"
        return ClaimResult(
            True,
            f"🧟 You claimed {tally.claimed_count} {bites_word} worth {tally.total_amount} $ZOMBIE. "
            "Welcome to the undead horde!",
            claimed_count=tally.claimed_count,
            total_amount=tally.total_amount,
            bite_ids=tally.bite_ids,
            now_zombie=True,
        )

    async def claim_bites(self, target_fid: int, bite_ids: Iterable[int],
                          payout_address: Optional[str] = None, at: Optional[int] = None) -> ClaimResult:
        """Claim bites and, when payouts are configured, send the claimed $ZOMBIE."""
        if payout_address and not is_wallet_address(payout_address):
            error = ValidationError(f"{payout_address} is not a valid Ethereum address.")
            return ClaimResult(False, error.message, error=error)

        result = await self.process_claim(Identity(fid=target_fid, wallet_address=payout_address), bite_ids, at=at)
        if not result.success or self.payout is None or result.total_amount <= 0:
            return result

        address = payout_address
        if not address:
            async with self.storage.session() as db:
                identity = await IdentityStore(db).get(target_fid)
            address = identity.wallet_address if identity else None
        if not address:
            result.message += " Connect a wallet to receive your $ZOMBIE."
            return result

        try:
            result.payout_tx = await self.payout.payout(address, result.total_amount)
        except ZombieGameError as e:
            # The claim stands; payouts are never retried automatically.
            logger.error(f"Bite reward payout to {address} for fid {target_fid} failed: {e}")
            result.payout_error = e
            result.message += " Your $ZOMBIE payout failed and will be handled manually."
            if isinstance(e, PayoutUnconfirmed) and e.tx_hash:
                async with self.storage.transaction() as db:
                    await self._ledger(db).record_payout(result.bite_ids, e.tx_hash)
            return result

        async with self.storage.transaction() as db:
            await self._ledger(db).record_payout(result.bite_ids, result.payout_tx)
        return result

    async def process_cure(self, curer_fid: int, target_fid: int, payment_proof: str,
                           origin_ref: Optional[str] = None, target_username: Optional[str] = None,
                           at: Optional[int] = None) -> CureResult:
        """Cure a zombie after checking the on-chain payment."""
        ts = resolve_ts(at)
        try:
            if not is_payment_proof(payment_proof):
                raise ValidationError("The payment proof must be a transaction hash (0x followed by 64 hex characters).")
            proof = payment_proof.lower()
            if self.verifier is None:
                raise ExternalServiceFailure("Cure payments can't be verified right now.")
            if not await self.verifier.verify(proof, self.cure_price):
                raise PaymentInvalid(f"That transaction isn't a valid {self.cure_price:,} $ZOMBIE cure payment.")

            async with self.storage.transaction() as db:
                cures = CureStore(db)
                players = PlayerStateStore(db)
                identities = IdentityStore(db)

                if await cures.proof_used(proof):
                    raise PaymentInvalid("That payment has already been used for a cure.")
                status = await players.get_status(target_fid)
                next_state(state_of(status), Transition.CURE)

                await identities.upsert(Identity(fid=curer_fid), at=ts)
                target = await identities.upsert(Identity(fid=target_fid, username=target_username), at=ts)
                try:
                    cure_id = await cures.record(target_fid, curer_fid, proof, origin_ref, at=ts)
                except sqlite3.IntegrityError as e:
                    raise PaymentInvalid("That payment has already been used for a cure.") from e
                await players.mark_cured(target_fid, at=ts)
        except ZombieGameError as e:
            return CureResult(False, e.message, error=e, target_fid=target_fid)

        name = f"@{target.username}" if target and target.username else f"fid {target_fid}"
        logger.info(f"CURE: fid {curer_fid} cured {name} with payment {proof}")
        return CureResult(
            True,
            f"💉 {name} has been cured! Welcome back to humanity.",
            public_message=f"💉 {name} has been CURED of the zombie virus!",
            cure_id=cure_id,
            target_fid=target_fid,
        )

    async def apply_cure(self, curer_fid: int, target_fid: int, payment_proof: str,
                         at: Optional[int] = None) -> CureResult:
        return await self.process_cure(curer_fid, target_fid, payment_proof, at=at)

    async def cure_by_username(self, curer: Identity, target_username: str, payment_proof: str,
                               origin_ref: Optional[str] = None, at: Optional[int] = None) -> CureResult:
        """Cure requested from a cast: resolve the tagged user, then cure."""
        try:
            target = await self.social.resolve_username(target_username)
            if target is None:
                raise NotFound(f"❌ @{target_username} not found on Farcaster.")
            async with self.storage.transaction() as db:
                identities = IdentityStore(db)
                await identities.upsert(curer, at=at)
                await identities.upsert(target, at=at)
        except ZombieGameError as e:
            return CureResult(False, e.message, error=e)

        return await self.process_cure(curer.fid, target.fid, payment_proof, origin_ref,
                                       target_username=target.username, at=at)

    async def _check_can_succumb(self, db, fid: int):
        if await AllowanceStore(db).get(fid):
            raise AlreadyClaimed()
        status = await PlayerStateStore(db).get_status(fid)
        next_state(state_of(status), Transition.SUCCUMB)

    async def _payout_address(self, fid: int, identity: Optional[Identity]) -> Tuple[Identity, str]:
        if identity and identity.wallet_address:
            found, address = identity, identity.wallet_address
        else:
            async with self.storage.session() as db:
                found = await IdentityStore(db).get(fid)
            if not (found and found.wallet_address):
                found = await self.social.resolve_identity(fid)
                if found is None:
                    raise NotFound(f"Farcaster user {fid} not found.")
                if not found.wallet_address:
                    raise ValidationError("Verify an Ethereum address on Farcaster to receive your $ZOMBIE.")
            address = found.wallet_address
        if not is_wallet_address(address):
            raise ValidationError(f"{address} is not a valid Ethereum address.")
        return found, address

    async def process_succumb(self, fid: int, identity: Optional[Identity] = None,
                              at: Optional[int] = None) -> SuccumbResult:
        """Turn a human into a zombie voluntarily for a one-time reward."""
        ts = resolve_ts(at)
        try:
            async with self.storage.session() as db:
                await self._check_can_succumb(db, fid)
            if self.payout is None:
                raise ExternalServiceFailure("Succumb rewards are unavailable right now.")
            identity, address = await self._payout_address(fid, identity)

            async with self.storage.transaction() as db:
                await self._check_can_succumb(db, fid)
                await AllowanceStore(db).reserve(fid, self.succumb_reward, at=ts)

            try:
                tx_hash = await self.payout.payout(address, self.succumb_reward)
            except PayoutUnconfirmed as e:
                # The transfer may still land, so the reservation stays.
                logger.error(f"Succumb payout for fid {fid} unconfirmed (tx {e.tx_hash}): {e}")
                async with self.storage.transaction() as db:
                    await AllowanceStore(db).record_unconfirmed(fid, e.tx_hash)
                raise
            except Exception:
                async with self.storage.transaction() as db:
                    await AllowanceStore(db).release(fid)
                raise

            async with self.storage.transaction() as db:
                await AllowanceStore(db).confirm(fid, tx_hash)
                await IdentityStore(db).upsert(identity, at=ts)
                await PlayerStateStore(db).upsert_zombie(fid, restamp=True, at=ts)
        except ZombieGameError as e:
            return SuccumbResult(False, e.message, error=e)

        logger.info(f"SUCCUMB: fid {fid} succumbed; {self.succumb_reward} $ZOMBIE sent in {tx_hash}")
        return SuccumbResult(
            True,
            f"🧟 You have succumbed to the infection! {self.succumb_reward:,} $ZOMBIE is on its way.",
            payout_tx=tx_hash,
            amount=self.succumb_reward,
        )

    async def succumb(self, fid: int, at: Optional[int] = None) -> SuccumbResult:
        return await self.process_succumb(fid, at=at)

    async def finalize_game(self, at: Optional[int] = None) -> bool:
        """True exactly once, when the game has ended and nobody has announced it yet."""
        async with self.storage.transaction() as db:
            return await self._clock(db).check_and_finalize(at=at)

    async def expire_stale_bites(self, at: Optional[int] = None) -> int:
        async with self.storage.transaction() as db:
            return await self._ledger(db).mark_expired(at=at)
