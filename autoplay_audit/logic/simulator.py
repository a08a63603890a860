"""In-process wheel game implementing the GameDriver protocol."""
import asyncio
import itertools

from autoplay_audit.config import settings
from autoplay_audit.errors import DriverFault, InvalidBet
from autoplay_audit.logic.models import SegmentDefinition, SegmentSet
from autoplay_audit.logic.orchestrator import SpinHandle, SpinSettlement
from autoplay_audit.logic.rng import ProductionRNG, RNGBase


class SimulatedWheel:
    """
    Headless wheel drawing segments from the declared weights.

    Used by the audit CLI and the API in place of a browser-driven game.
    Supports a forced landing index (test hook) and a settle delay to
    emulate the spin animation.
    """

    def __init__(
        self,
        segments: SegmentSet,
        rng: RNGBase | None = None,
        starting_balance: float | None = None,
        settle_delay: float | None = None,
    ):
        self.segments = segments
        self.rng = rng or ProductionRNG()
        self.balance = (
            starting_balance if starting_balance is not None
            else settings.default_starting_balance
        )
        self.settle_delay = (
            settle_delay if settle_delay is not None
            else settings.simulated_settle_delay_seconds
        )
        self._forced_index: int | None = None
        self._pending: tuple[SpinHandle, SegmentDefinition] | None = None
        self._ids = itertools.count(1)

    @property
    def spinning(self) -> bool:
        return self._pending is not None

    def set_landing_index(self, index: int | None) -> None:
        """Force every following spin onto ``index``; None restores random landing."""
        if index is not None:
            self.segments.get(index)
        self._forced_index = index

    async def current_balance(self) -> float:
        return self.balance

    async def submit_spin(self, bet_amount: float) -> SpinHandle:
        if self._pending is not None:
            raise DriverFault(f"Wheel is still spinning ({self._pending[0].spin_id})")
        if bet_amount <= 0 or bet_amount > self.balance:
            raise InvalidBet(f"Bet {bet_amount} rejected with balance {self.balance}")

        if self._forced_index is not None:
            segment = self.segments.get(self._forced_index)
        else:
            segment = self.rng.pick_segment(self.segments)

        self.balance -= bet_amount
        handle = SpinHandle(spin_id=f"sim-{next(self._ids)}", bet_amount=bet_amount)
        self._pending = (handle, segment)
        return handle

    async def await_settlement(self, handle: SpinHandle, timeout: float) -> SpinSettlement:
        if self._pending is None or self._pending[0].spin_id != handle.spin_id:
            raise DriverFault(f"No spin {handle.spin_id} in progress")

        await asyncio.sleep(self.settle_delay)

        _, segment = self._pending
        self.balance += handle.bet_amount * segment.multiplier
        self._pending = None
        return SpinSettlement(
            spin_id=handle.spin_id,
            segment_index=segment.index,
            multiplier=segment.multiplier,
            balance_after=self.balance,
        )
