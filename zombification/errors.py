"""Typed failures for game operations.

Every error carries a message suitable for replying to the player. The
engine raises these inside a transaction body (which rolls it back) and turns
them into failed ActionResults at its public methods.
"""


class ZombieGameError(Exception):
    """Base class for all game failures."""

    default_message = "Something went wrong in the zombie apocalypse."

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(ZombieGameError):
    default_message = "That command is malformed."


class PaymentInvalid(ValidationError):
    default_message = "That payment could not be verified as a valid cure payment."


class InvalidTransition(ZombieGameError):
    default_message = "That move isn't allowed right now."


class NotAZombie(InvalidTransition):
    default_message = "That player isn't a zombie, so there's nothing to cure."


class AlreadyCured(InvalidTransition):
    default_message = "That player has already been cured."


class AlreadyZombie(InvalidTransition):
    default_message = "You're already a zombie!"


class CuredCannotSuccumb(InvalidTransition):
    default_message = "You've been cured. The cured cannot succumb again."


class AlreadyClaimed(InvalidTransition):
    default_message = "You've already claimed your succumb reward."


class NoValidBites(InvalidTransition):
    default_message = "No valid unclaimed bites to claim."


class GameNotStarted(InvalidTransition):
    default_message = "The zombie apocalypse hasn't started yet! Only Patient Zero can begin the infection..."


class GameOver(InvalidTransition):
    default_message = "The zombie apocalypse is over. No more bites!"


class GameAlreadyActive(InvalidTransition):
    default_message = "The zombie apocalypse is already underway."


class NotPatientZero(InvalidTransition):
    default_message = "Only Patient Zero can start the apocalypse."


class CuredCannotBite(InvalidTransition):
    default_message = "You've been cured and can no longer bite."


class ZombiesOnly(InvalidTransition):
    default_message = "Only zombies can bite humans! Get bitten first to join the undead horde."


class ConcurrencyConflict(InvalidTransition):
    default_message = "Someone else got there first. Please try again."


class NotFound(ZombieGameError):
    default_message = "Player not found on Farcaster."


class ExternalServiceFailure(ZombieGameError):
    default_message = "An external service is unavailable. Please try again later."


class PayoutFailed(ExternalServiceFailure):
    default_message = "The $ZOMBIE payout failed."


class InsufficientFunds(PayoutFailed):
    default_message = "The bot wallet doesn't have enough $ZOMBIE for this payout."


class PayoutUnconfirmed(PayoutFailed):
    """The transfer was broadcast but never confirmed as successful.

    The tokens may still arrive, so the payout must not be attempted again.
    """

    default_message = "The $ZOMBIE payout was sent but not confirmed. It will be checked manually."

    def __init__(self, message: str = None, tx_hash: str = None):
        super().__init__(message)
        self.tx_hash = tx_hash
