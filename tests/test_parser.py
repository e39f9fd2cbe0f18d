"""Tests for the mention command parser."""

from zombification.parser import (
    BiteCommand,
    CureCommand,
    MalformedCommand,
    SuccumbCommand,
    is_payment_proof,
    is_wallet_address,
    parse_command,
)

BOT = "zombie-bite"
TX = "0x" + "ab" * 32


class TestBiteCommands:
    def test_single_target(self):
        assert parse_command("@zombie-bite @alice", bot_username=BOT) == BiteCommand(["alice"])

    def test_multiple_targets_keep_order_and_drop_duplicates(self):
        command = parse_command("@zombie-bite @alice @bob @alice", bot_username=BOT)

        assert command == BiteCommand(["alice", "bob"])

    def test_bot_is_never_a_target(self):
        command = parse_command("@alice @Zombie-Bite get her", bot_username=BOT)

        assert command == BiteCommand(["alice"])

    def test_reply_parent_is_added(self):
        command = parse_command("@zombie-bite", reply_parent_username="carol", bot_username=BOT)

        assert command == BiteCommand(["carol"])

    def test_reply_parent_already_tagged_is_not_repeated(self):
        command = parse_command("@zombie-bite @carol", reply_parent_username="carol", bot_username=BOT)

        assert command == BiteCommand(["carol"])

    def test_reply_to_the_bot_is_not_a_target(self):
        command = parse_command("@zombie-bite", reply_parent_username=BOT, bot_username=BOT)

        assert command == BiteCommand([])

    def test_no_mentions_yields_empty_bite(self):
        assert parse_command("just talking", bot_username=BOT) == BiteCommand([])

    def test_usernames_with_dots_stop_at_the_dot(self):
        command = parse_command("@zombie-bite @vitalik.eth", bot_username=BOT)

        assert command == BiteCommand(["vitalik"])


class TestCureCommands:
    def test_cure_with_target_and_proof(self):
        command = parse_command(f"@zombie-bite cure @alice {TX}", bot_username=BOT)

        assert command == CureCommand(target_username="alice", payment_proof=TX)

    def test_cure_proof_is_lowercased(self):
        command = parse_command(f"@zombie-bite CURE @alice {TX.upper().replace('0X', '0x')}", bot_username=BOT)

        assert command == CureCommand(target_username="alice", payment_proof=TX)

    def test_cure_is_never_read_as_a_bite(self):
        command = parse_command(f"@zombie-bite cure @alice {TX}", bot_username=BOT)

        assert not isinstance(command, BiteCommand)

    def test_cure_without_proof_is_malformed(self):
        command = parse_command("@zombie-bite cure @alice", bot_username=BOT)

        assert isinstance(command, MalformedCommand)
        assert "transaction hash" in command.reason

    def test_cure_with_short_proof_is_malformed(self):
        command = parse_command("@zombie-bite cure @alice 0x1234", bot_username=BOT)

        assert isinstance(command, MalformedCommand)

    def test_cure_without_target_is_malformed(self):
        command = parse_command(f"@zombie-bite cure {TX}", bot_username=BOT)

        assert isinstance(command, MalformedCommand)
        assert "Usage" in command.reason

    def test_cure_targeting_the_bot_is_malformed(self):
        command = parse_command(f"@zombie-bite cure @zombie-bite {TX}", bot_username=BOT)

        assert isinstance(command, MalformedCommand)

    def test_cured_in_a_sentence_is_not_a_cure(self):
        command = parse_command("@zombie-bite curedemon @alice", bot_username=BOT)

        assert command == BiteCommand(["alice"])


class TestSuccumbCommands:
    def test_succumb(self):
        assert parse_command("@zombie-bite succumb", bot_username=BOT) == SuccumbCommand()

    def test_claim_is_an_alias(self):
        assert parse_command("@zombie-bite claim", bot_username=BOT) == SuccumbCommand()

    def test_trailing_whitespace_is_allowed(self):
        assert parse_command("@zombie-bite Succumb  \n", bot_username=BOT) == SuccumbCommand()

    def test_succumb_followed_by_tags_is_a_bite(self):
        command = parse_command("@zombie-bite succumb @alice", bot_username=BOT)

        assert command == BiteCommand(["alice"])

    def test_succumb_with_extra_words_gets_usage(self):
        command = parse_command("@zombie-bite succumb!", bot_username=BOT)

        assert isinstance(command, MalformedCommand)
        assert "succumb" in command.reason

    def test_claim_with_extra_words_gets_usage(self):
        assert isinstance(parse_command("@zombie-bite claim please", bot_username=BOT), MalformedCommand)


class TestPaymentProof:
    def test_valid_hash(self):
        assert is_payment_proof(TX)

    def test_rejects_missing_prefix(self):
        assert not is_payment_proof("ab" * 32)

    def test_rejects_non_hex(self):
        assert not is_payment_proof("0x" + "zz" * 32)

    def test_rejects_none(self):
        assert not is_payment_proof(None)


class TestWalletAddress:
    def test_valid_address(self):
        assert is_wallet_address("0x" + "Ab" * 20)

    def test_rejects_short_address(self):
        assert not is_wallet_address("0x" + "a" * 39)

    def test_rejects_plain_text(self):
        assert not is_wallet_address("not-an-address")
