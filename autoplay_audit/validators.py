"""Pre-submission bet validation."""
from dataclasses import dataclass, field

from autoplay_audit.config import settings
from autoplay_audit.errors import InsufficientFunds, InvalidBet


@dataclass(frozen=True)
class GameLimits:
    """Betting limits of one game instance."""

    min_bet: float = settings.min_bet
    max_bet: float = settings.max_bet
    allowed_bets: tuple[float, ...] = field(default_factory=lambda: tuple(settings.allowed_bets))


def validate_bet(bet_amount: float, balance: float, limits: GameLimits) -> None:
    """
    Validate a bet before it is submitted to the driver.

    Raises INVALID_BET if the amount is non-positive, outside [min_bet, max_bet],
    not in allowed_bets (when configured) or above the current balance.
    """
    if bet_amount <= 0:
        raise InvalidBet(f"Bet amount must be positive, got {bet_amount}")

    if bet_amount < limits.min_bet or bet_amount > limits.max_bet:
        raise InvalidBet(
            f"Bet amount {bet_amount} outside limits [{limits.min_bet}, {limits.max_bet}]"
        )

    if limits.allowed_bets and bet_amount not in limits.allowed_bets:
        raise InvalidBet(
            f"Bet amount {bet_amount} not allowed. Allowed: {list(limits.allowed_bets)}"
        )

    if bet_amount > balance:
        raise InvalidBet(f"Bet amount {bet_amount} exceeds balance {balance}")


def check_affordable(bet_amount: float, balance: float) -> None:
    """Raise INSUFFICIENT_FUNDS if the next bet cannot be covered."""
    if bet_amount > balance:
        raise InsufficientFunds(
            f"Balance {balance} cannot cover bet {bet_amount}"
        )
