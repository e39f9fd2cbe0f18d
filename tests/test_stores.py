"""Tests for the player, bite, cure and allowance stores and the game clock."""

import pytest

from conftest import ALICE, BOB, HOUR, PATIENT_ZERO, T0, proof
from zombification.bites import BiteLedger
from zombification.clock import GameClock
from zombification.errors import (
    ConcurrencyConflict,
    GameAlreadyActive,
    InvalidTransition,
    NotPatientZero,
)
from zombification.models import BiteStatus, Identity, PlayerState
from zombification.players import PlayerStateStore
from zombification.storage import TABLES, AllowanceStore, CureStore, GameStorage, IdentityStore


class TestStorage:
    async def test_initialize_creates_all_tables(self, storage):
        tables = await storage.list_tables()

        assert set(TABLES) <= set(tables)

    async def test_initialize_is_repeatable(self, storage):
        await storage.initialize()

        async with storage.session() as db:
            async with db.execute("SELECT COUNT(*) FROM game_state") as cursor:
                assert (await cursor.fetchone())[0] == 1

    async def test_transaction_rolls_back_on_error(self, storage):
        with pytest.raises(RuntimeError):
            async with storage.transaction() as db:
                await IdentityStore(db).upsert(ALICE, at=T0)
                raise RuntimeError("boom")

        async with storage.session() as db:
            assert await IdentityStore(db).get(ALICE.fid) is None

    async def test_clear_all_game_data(self, storage):
        async with storage.transaction() as db:
            await IdentityStore(db).upsert(ALICE, at=T0)
            await PlayerStateStore(db).upsert_zombie(ALICE.fid, at=T0)
            await GameClock(db).start(PATIENT_ZERO.fid, at=T0)

        await storage.clear_all_game_data()

        async with storage.session() as db:
            assert await PlayerStateStore(db).get_status(ALICE.fid) is None
            assert not (await GameClock(db).get_state()).has_started

    async def test_second_writer_gets_concurrency_conflict(self, tmp_path):
        storage = GameStorage(str(tmp_path / "locked.db"), busy_timeout=0.1)
        await storage.initialize()

        async with storage.transaction():
            with pytest.raises(ConcurrencyConflict):
                async with storage.transaction():
                    pass


class TestIdentityStore:
    async def test_upsert_keeps_known_fields(self, storage):
        async with storage.transaction() as db:
            identities = IdentityStore(db)
            await identities.upsert(ALICE, at=T0)
            stored = await identities.upsert(Identity(fid=ALICE.fid), at=T0 + 1)

        assert stored.username == "alice"
        assert stored.wallet_address == ALICE.wallet_address

    async def test_wallet_is_lowercased(self, storage):
        async with storage.transaction() as db:
            stored = await IdentityStore(db).upsert(Identity(fid=7, username="x", wallet_address="0xABCDEF"), at=T0)

        assert stored.wallet_address == "0xabcdef"


class TestPlayerStateStore:
    async def test_missing_player_has_no_status(self, storage):
        async with storage.session() as db:
            assert await PlayerStateStore(db).get_status(ALICE.fid) is None

    async def test_upsert_zombie_stamps_first_infection_only(self, storage):
        async with storage.transaction() as db:
            players = PlayerStateStore(db)
            await players.upsert_zombie(ALICE.fid, at=T0)
            status = await players.upsert_zombie(ALICE.fid, at=T0 + HOUR)

        assert status.state is PlayerState.ZOMBIE
        assert status.became_zombie_at == T0

    async def test_restamp_overwrites_infection_time(self, storage):
        async with storage.transaction() as db:
            players = PlayerStateStore(db)
            await players.upsert_zombie(ALICE.fid, at=T0)
            status = await players.upsert_zombie(ALICE.fid, restamp=True, at=T0 + HOUR)

        assert status.became_zombie_at == T0 + HOUR

    async def test_mark_cured_clears_zombie_flag(self, storage):
        async with storage.transaction() as db:
            players = PlayerStateStore(db)
            await players.upsert_zombie(ALICE.fid, at=T0)
            status = await players.mark_cured(ALICE.fid, at=T0 + 1)

        assert status.is_cured
        assert not status.is_zombie
        assert status.state is PlayerState.CURED

    async def test_mark_cured_requires_a_zombie(self, storage):
        with pytest.raises(InvalidTransition):
            async with storage.transaction() as db:
                await PlayerStateStore(db).mark_cured(ALICE.fid, at=T0)

    async def test_reinfection_clears_cure(self, storage):
        async with storage.transaction() as db:
            players = PlayerStateStore(db)
            await players.upsert_zombie(ALICE.fid, at=T0)
            await players.mark_cured(ALICE.fid, at=T0 + 1)
            status = await players.upsert_zombie(ALICE.fid, at=T0 + 2)

        assert status.is_zombie
        assert not status.is_cured
        assert status.became_zombie_at == T0

    async def test_increment_bites_sent_creates_human_row(self, storage):
        async with storage.transaction() as db:
            players = PlayerStateStore(db)
            await players.increment_bites_sent(BOB.fid, at=T0)
            await players.increment_bites_sent(BOB.fid, count=2, at=T0)
            status = await players.get_status(BOB.fid)

        assert status.total_bites_sent == 3
        assert status.state is PlayerState.HUMAN


class TestBiteLedger:
    async def _record(self, storage, origin="0xcast", target=ALICE, at=T0):
        async with storage.transaction() as db:
            return await BiteLedger(db).record(PATIENT_ZERO.fid, target, 1, origin, at=at)

    async def test_record_creates_pending_bite(self, storage):
        bite_id = await self._record(storage)

        async with storage.session() as db:
            bite = await BiteLedger(db).get(bite_id)
        assert bite.status is BiteStatus.PENDING
        assert bite.target_fid == ALICE.fid
        assert bite.sent_at == T0

    async def test_same_cast_and_target_is_recorded_once(self, storage):
        assert await self._record(storage) is not None
        assert await self._record(storage) is None

    async def test_same_cast_different_targets_are_independent(self, storage):
        first = await self._record(storage, target=ALICE)
        second = await self._record(storage, target=BOB)

        assert first != second

    async def test_list_pending_newest_first(self, storage):
        older = await self._record(storage, origin="0x1", at=T0)
        newer = await self._record(storage, origin="0x2", at=T0 + 60)

        async with storage.session() as db:
            pending = await BiteLedger(db).list_pending(ALICE.fid, at=T0 + 120)
        assert [bite.id for bite in pending] == [newer, older]

    async def test_list_pending_hides_expired(self, storage):
        await self._record(storage, at=T0)

        async with storage.session() as db:
            ledger = BiteLedger(db)
            assert len(await ledger.list_pending(ALICE.fid, at=T0 + 4 * HOUR - 1)) == 1
            assert await ledger.list_pending(ALICE.fid, at=T0 + 4 * HOUR) == []

    async def test_claim_skips_invalid_ids(self, storage):
        mine = await self._record(storage, target=ALICE)
        theirs = await self._record(storage, target=BOB)

        async with storage.transaction() as db:
            tally = await BiteLedger(db).claim([mine, theirs, 999], ALICE.fid, at=T0 + 1)

        assert tally.claimed_count == 1
        assert tally.total_amount == 1
        assert tally.bite_ids == [mine]

    async def test_claim_is_single_use(self, storage):
        bite_id = await self._record(storage)

        async with storage.transaction() as db:
            ledger = BiteLedger(db)
            first = await ledger.claim([bite_id], ALICE.fid, at=T0 + 1)
            second = await ledger.claim([bite_id], ALICE.fid, at=T0 + 2)

        assert first.claimed_count == 1
        assert second.claimed_count == 0

    async def test_expired_bite_cannot_be_claimed(self, storage):
        bite_id = await self._record(storage)

        async with storage.transaction() as db:
            tally = await BiteLedger(db).claim([bite_id], ALICE.fid, at=T0 + 4 * HOUR)

        assert tally.claimed_count == 0

    async def test_mark_expired(self, storage):
        old = await self._record(storage, origin="0x1", at=T0)
        fresh = await self._record(storage, origin="0x2", at=T0 + 3 * HOUR)

        async with storage.transaction() as db:
            ledger = BiteLedger(db)
            assert await ledger.mark_expired(at=T0 + 4 * HOUR) == 1
            assert (await ledger.get(old)).status is BiteStatus.EXPIRED
            assert (await ledger.get(fresh)).status is BiteStatus.PENDING


class TestCureAndAllowanceStores:
    async def test_one_active_cure_per_player(self, storage):
        async with storage.transaction() as db:
            cures = CureStore(db)
            await cures.record(ALICE.fid, BOB.fid, proof(1), at=T0)
            assert await cures.proof_used(proof(1))
            assert (await cures.get_active(ALICE.fid)).payment_proof == proof(1)
            assert await cures.deactivate(ALICE.fid) == 1
            await cures.record(ALICE.fid, BOB.fid, proof(2), at=T0 + 1)
            history = await cures.history(ALICE.fid)

        assert [(cure.payment_proof, cure.is_active) for cure in history] == [(proof(2), True), (proof(1), False)]

    async def test_release_only_removes_unconfirmed_reservations(self, storage):
        async with storage.transaction() as db:
            allowances = AllowanceStore(db)
            await allowances.reserve(ALICE.fid, 1000, at=T0)
            await allowances.release(ALICE.fid)
            assert await allowances.get(ALICE.fid) is None

            await allowances.reserve(BOB.fid, 1000, at=T0)
            await allowances.confirm(BOB.fid, proof(3))
            await allowances.release(BOB.fid)
            claim = await allowances.get(BOB.fid)

        assert claim.payout_tx == proof(3)
        assert claim.confirmed

    async def test_unconfirmed_transfer_keeps_the_reservation(self, storage):
        async with storage.transaction() as db:
            allowances = AllowanceStore(db)
            await allowances.reserve(ALICE.fid, 1000, at=T0)
            await allowances.record_unconfirmed(ALICE.fid, proof(4))
            await allowances.release(ALICE.fid)
            claim = await allowances.get(ALICE.fid)

        assert claim.payout_tx == proof(4)
        assert not claim.confirmed


class TestGameClock:
    async def test_fresh_game_is_not_started(self, storage):
        async with storage.session() as db:
            state = await GameClock(db).get_state()

        assert not state.has_started
        assert not state.is_active

    async def test_start_opens_twelve_hour_window(self, storage):
        async with storage.transaction() as db:
            state = await GameClock(db).start(PATIENT_ZERO.fid, at=T0)

        assert state.started_at == T0
        assert state.ends_at == T0 + 12 * HOUR
        assert state.started_by == PATIENT_ZERO.fid
        assert state.active_at(T0 + 12 * HOUR - 1)
        assert not state.active_at(T0 + 12 * HOUR)

    async def test_only_patient_zero_can_start(self, storage):
        with pytest.raises(NotPatientZero):
            async with storage.transaction() as db:
                await GameClock(db).start(ALICE.fid, at=T0)

    async def test_cannot_start_twice(self, storage):
        async with storage.transaction() as db:
            clock = GameClock(db)
            await clock.start(PATIENT_ZERO.fid, at=T0)
            with pytest.raises(GameAlreadyActive):
                await clock.start(PATIENT_ZERO.fid, at=T0 + 1)

    async def test_patient_zero_can_restart_after_end(self, storage):
        async with storage.transaction() as db:
            clock = GameClock(db)
            await clock.start(PATIENT_ZERO.fid, at=T0)
            assert await clock.check_and_finalize(at=T0 + 12 * HOUR)
            state = await clock.start(PATIENT_ZERO.fid, at=T0 + 13 * HOUR)

        assert state.started_at == T0 + 13 * HOUR
        assert state.ends_at == T0 + 25 * HOUR
        assert state.is_active
        assert not state.final_announcement_sent

    async def test_is_active_covers_the_window(self, storage):
        async with storage.transaction() as db:
            clock = GameClock(db)
            assert not await clock.is_active(at=T0)
            await clock.start(PATIENT_ZERO.fid, at=T0)

            assert not await clock.is_active(at=T0 - 1)
            assert await clock.is_active(at=T0)
            assert await clock.is_active(at=T0 + 12 * HOUR - 1)
            assert not await clock.is_active(at=T0 + 12 * HOUR)

    async def test_finalize_latches_once(self, storage):
        async with storage.transaction() as db:
            clock = GameClock(db)
            await clock.start(PATIENT_ZERO.fid, at=T0)
            assert not await clock.check_and_finalize(at=T0 + HOUR)
            assert await clock.check_and_finalize(at=T0 + 12 * HOUR)
            assert not await clock.check_and_finalize(at=T0 + 13 * HOUR)
            state = await clock.get_state()

        assert state.final_announcement_sent
        assert not state.is_active

    async def test_finalize_before_start_does_nothing(self, storage):
        async with storage.transaction() as db:
            assert not await GameClock(db).check_and_finalize(at=T0)
