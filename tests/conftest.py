"""Shared fixtures: a fresh database per test and in-memory fakes for Farcaster and the chain."""

import pytest

from zombification.engine import InfectionEngine
from zombification.errors import ExternalServiceFailure, InsufficientFunds, PayoutFailed, PayoutUnconfirmed
from zombification.models import Identity, Receipt
from zombification.storage import GameStorage
from zombification.view import GameView

T0 = 1_760_000_000
HOUR = 3600
PATIENT_ZERO = Identity(fid=8573, username="dylan", wallet_address="0x" + "8" * 40)
ALICE = Identity(fid=101, username="alice", wallet_address="0x" + "a" * 40)
BOB = Identity(fid=102, username="bob", wallet_address="0x" + "b" * 40)
CAROL = Identity(fid=103, username="carol", wallet_address="0x" + "c" * 40)
DAVE = Identity(fid=104, username="dave")


def proof(n: int) -> str:
    return "0x" + f"{n:064x}"


class FakeSocialClient:
    def __init__(self, users=()):
        self.users = {user.username: user for user in users}
        self.mentions = []
        self.replies = []
        self.public_posts = []
        self.failing_lookups = set()
        self.fail_posts = False
        self.fail_mentions = False

    async def list_mentions(self, bot_fid):
        if self.fail_mentions:
            raise ExternalServiceFailure("mentions unavailable")
        return list(self.mentions)

    async def post_reply(self, parent_id, text):
        if self.fail_posts:
            raise ExternalServiceFailure("post failed")
        self.replies.append((parent_id, text))
        return Receipt(id=f"reply-{len(self.replies)}")

    async def post_public(self, text):
        if self.fail_posts:
            raise ExternalServiceFailure("post failed")
        self.public_posts.append(text)
        return Receipt(id=f"cast-{len(self.public_posts)}")

    async def resolve_username(self, username):
        if username in self.failing_lookups:
            raise ExternalServiceFailure(f"lookup of {username} timed out")
        return self.users.get(username)

    async def resolve_identity(self, fid):
        for user in self.users.values():
            if user.fid == fid:
                return user
        return None


class FakeVerifier:
    def __init__(self, valid=True):
        self.valid = valid
        self.calls = []

    async def verify(self, proof, expected_amount):
        self.calls.append((proof, expected_amount))
        return self.valid


class FakePayout:
    def __init__(self):
        self.payouts = []
        self.sent_unconfirmed = []
        self.error = None
        self.unconfirmed = False

    async def payout(self, address, amount):
        if self.error:
            raise self.error
        if self.unconfirmed:
            self.sent_unconfirmed.append((address, amount))
            raise PayoutUnconfirmed("receipt timed out", tx_hash=proof(8000 + len(self.sent_unconfirmed)))
        self.payouts.append((address, amount))
        return proof(9000 + len(self.payouts))

    def fail_with(self, error=None):
        self.error = error or PayoutFailed("transfer reverted")

    def run_dry(self):
        self.error = InsufficientFunds()

    def lose_receipts(self):
        self.unconfirmed = True


@pytest.fixture
async def storage(tmp_path):
    storage = GameStorage(str(tmp_path / "game.db"))
    await storage.initialize()
    return storage


@pytest.fixture
def social():
    return FakeSocialClient([PATIENT_ZERO, ALICE, BOB, CAROL, DAVE])


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def payout():
    return FakePayout()


@pytest.fixture
def engine(storage, social, verifier, payout):
    return InfectionEngine(storage, social, verifier=verifier, payout=payout, patient_zero_fid=PATIENT_ZERO.fid)


@pytest.fixture
def view(storage):
    return GameView(storage)


@pytest.fixture
def start_game(engine):
    """Patient Zero's opening bite on carol at T0."""
    async def _start(at=T0):
        result = await engine.process_bite(PATIENT_ZERO, ["carol"], "0xopening", at=at)
        assert result.success and result.game_started
        return result
    return _start
