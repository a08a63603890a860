"""Stop-Condition Evaluator."""
from dataclasses import dataclass

from autoplay_audit.logic.models import (
    BALANCE_EPSILON,
    SessionTotals,
    SpinOutcome,
    StopCondition,
    StopReason,
)


@dataclass(frozen=True)
class StopDecision:
    """Continue, or stop with exactly one reason."""

    stop: bool
    reason: StopReason | None
    totals: SessionTotals

    @classmethod
    def proceed(cls, totals: SessionTotals) -> "StopDecision":
        return cls(stop=False, reason=None, totals=totals)

    @classmethod
    def halt(cls, reason: StopReason, totals: SessionTotals) -> "StopDecision":
        return cls(stop=True, reason=reason, totals=totals)


def evaluate_stop(
    totals: SessionTotals,
    outcome: SpinOutcome,
    condition: StopCondition,
    cancel_requested: bool = False,
) -> StopDecision:
    """
    Decide whether the session continues after ``outcome``.

    ``totals`` are the accumulators before the outcome; the outcome is folded
    in here. When several bounds trigger on the same spin the first match in
    this order wins:

    1. MANUAL_CANCEL
    2. LOSS_LIMIT_REACHED (cumulative loss >= limit)
    3. WIN_THRESHOLD_MET (cumulative win >= threshold)
    4. SPIN_LIMIT_REACHED (spin count >= limit)

    Money bounds are compared within BALANCE_EPSILON, so float drift in the
    running sums (eight 0.1 losses sum to 0.7999999999999999) does not cost
    an extra spin.
    """
    updated = totals.apply(outcome)

    if cancel_requested:
        return StopDecision.halt(StopReason.MANUAL_CANCEL, updated)

    if condition.loss_limit is not None and updated.cumulative_loss >= condition.loss_limit - BALANCE_EPSILON:
        return StopDecision.halt(StopReason.LOSS_LIMIT_REACHED, updated)

    if condition.win_threshold is not None and updated.cumulative_win >= condition.win_threshold - BALANCE_EPSILON:
        return StopDecision.halt(StopReason.WIN_THRESHOLD_MET, updated)

    if condition.spin_count_limit is not None and updated.spin_count >= condition.spin_count_limit:
        return StopDecision.halt(StopReason.SPIN_LIMIT_REACHED, updated)

    return StopDecision.proceed(updated)
