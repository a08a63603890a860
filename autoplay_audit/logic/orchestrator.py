"""Spin Orchestrator: one bet/spin against an external game driver."""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Protocol

from autoplay_audit.config import settings
from autoplay_audit.errors import (
    DriverFault,
    OrchestratorError,
    OrchestratorTimeout,
    SpinInProgress,
    UnknownSegment,
)
from autoplay_audit.logic.models import BALANCE_EPSILON, SegmentSet, SpinOutcome, utcnow
from autoplay_audit.validators import GameLimits, validate_bet


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpinHandle:
    """Reference to a submitted, not yet settled spin."""

    spin_id: str
    bet_amount: float


@dataclass(frozen=True)
class SpinSettlement:
    """What the driver reports once a spin has come to rest."""

    spin_id: str
    segment_index: int
    multiplier: float
    balance_after: float


class GameDriver(Protocol):
    """Capability contract of the external game driver."""

    async def submit_spin(self, bet_amount: float) -> SpinHandle:
        """Start one spin; fails synchronously on an invalid bet."""
        ...

    async def await_settlement(self, handle: SpinHandle, timeout: float) -> SpinSettlement:
        """Block until the spin settles or the timeout elapses."""
        ...

    async def current_balance(self) -> float:
        """Read-only balance query."""
        ...


class SpinOrchestrator:
    """
    Issues exactly one spin at a time against one game instance.

    Implements:
    - Bet validation before submission (INVALID_BET)
    - Bounded settlement wait (ORCHESTRATOR_TIMEOUT)
    - Settlement consistency checks (DRIVER_FAULT)
    - Single in-flight spin guard (SPIN_IN_PROGRESS)

    Nothing is retried: resubmitting a spin against a stateful game instance
    risks a double bet.
    """

    def __init__(
        self,
        driver: GameDriver,
        segments: SegmentSet,
        limits: GameLimits | None = None,
        settlement_timeout: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.driver = driver
        self.segments = segments
        self.limits = limits or GameLimits()
        self.settlement_timeout = (
            settlement_timeout if settlement_timeout is not None
            else settings.settlement_timeout_seconds
        )
        self._clock = clock or utcnow
        self._busy = False
        # Set while a submitted spin has not been observed to settle
        self._unsettled: SpinHandle | None = None

    @property
    def has_unsettled_spin(self) -> bool:
        return self._unsettled is not None

    async def current_balance(self) -> float:
        """Balance as reported by the driver."""
        try:
            return float(await self.driver.current_balance())
        except OrchestratorError:
            raise
        except Exception as e:
            raise DriverFault(f"Balance query failed: {e}") from e

    async def spin(self, bet_amount: float, sequence: int) -> SpinOutcome:
        """
        Submit one bet and wait for its settlement.

        Args:
            bet_amount: Stake for this spin
            sequence: Position of the spin within its session (1-based)

        Returns:
            SpinOutcome satisfying the balance identity

        Raises:
            InvalidBet, OrchestratorTimeout, DriverFault, SpinInProgress
        """
        if self._busy:
            raise SpinInProgress("Another spin is in progress on this game instance.")
        if self._unsettled is not None:
            raise SpinInProgress(
                f"Spin {self._unsettled.spin_id} never settled; game state is undefined."
            )

        self._busy = True
        try:
            return await self._spin(bet_amount, sequence)
        finally:
            self._busy = False

    async def _spin(self, bet_amount: float, sequence: int) -> SpinOutcome:
        balance_before = await self.current_balance()
        validate_bet(bet_amount, balance_before, self.limits)

        try:
            handle = await self.driver.submit_spin(bet_amount)
        except OrchestratorError:
            raise
        except Exception as e:
            raise DriverFault(f"submit_spin failed: {e}") from e

        self._unsettled = handle
        logger.debug("Spin %s submitted (seq=%d, bet=%s)", handle.spin_id, sequence, bet_amount)

        try:
            settlement = await asyncio.wait_for(
                self.driver.await_settlement(handle, self.settlement_timeout),
                timeout=self.settlement_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning(
                "Spin %s not settled within %.3fs (seq=%d)",
                handle.spin_id,
                self.settlement_timeout,
                sequence,
            )
            raise OrchestratorTimeout(
                f"Spin {handle.spin_id} not settled within {self.settlement_timeout}s"
            ) from e
        except OrchestratorError:
            raise
        except Exception as e:
            raise DriverFault(f"await_settlement failed: {e}") from e

        self._unsettled = None
        return self._build_outcome(handle, settlement, balance_before, sequence)

    def _build_outcome(
        self,
        handle: SpinHandle,
        settlement: SpinSettlement,
        balance_before: float,
        sequence: int,
    ) -> SpinOutcome:
        """Cross-check the settlement against the declared model and the balance."""
        if settlement.spin_id != handle.spin_id:
            raise DriverFault(
                f"Settlement for spin {settlement.spin_id} received while waiting for {handle.spin_id}"
            )

        try:
            segment = self.segments.get(settlement.segment_index)
        except UnknownSegment as e:
            raise DriverFault(e.message) from e

        if abs(settlement.multiplier - segment.multiplier) > BALANCE_EPSILON:
            raise DriverFault(
                f"Segment {segment.index}: driver paid {settlement.multiplier}x "
                f"but model declares {segment.multiplier}x"
            )

        outcome = SpinOutcome.settle(
            sequence=sequence,
            segment=segment,
            bet_amount=handle.bet_amount,
            balance_before=balance_before,
            timestamp=self._clock(),
        )

        if abs(settlement.balance_after - outcome.balance_after) > BALANCE_EPSILON:
            raise DriverFault(
                f"Balance should be {outcome.balance_after} but driver reports "
                f"{settlement.balance_after} (segment {segment.index})"
            )

        return outcome
