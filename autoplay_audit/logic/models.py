"""Wheel model, spin outcomes, session state and distribution reports."""
import json
import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from autoplay_audit.config_hash import canonical_hash
from autoplay_audit.errors import ErrorBody, InvalidModel, SessionAlreadyFinalized, UnknownSegment


# Weights must sum to 1 within this tolerance
WEIGHT_TOLERANCE = 1e-6

# Allowed drift in the balance identity (before - bet + bet * multiplier)
BALANCE_EPSILON = 1e-6


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# === Wheel model ===


class SegmentDefinition(BaseModel):
    """One sector of the wheel."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=0)
    multiplier: float = Field(..., ge=0)
    weight: float = Field(..., gt=0, le=1)


class SegmentSet(BaseModel):
    """
    Declared probability model of one wheel configuration.

    Invariants:
    - at least two segments (chi-square needs one degree of freedom)
    - unique indices, kept in wheel order (ascending index)
    - weights sum to 1 within WEIGHT_TOLERANCE
    """

    model_config = ConfigDict(frozen=True)

    segments: tuple[SegmentDefinition, ...]

    @field_validator("segments")
    @classmethod
    def _sort_by_index(cls, value: tuple[SegmentDefinition, ...]) -> tuple[SegmentDefinition, ...]:
        return tuple(sorted(value, key=lambda s: s.index))

    @model_validator(mode="after")
    def _check_invariants(self) -> "SegmentSet":
        if len(self.segments) < 2:
            raise ValueError("A wheel model needs at least two segments")
        indices = [s.index for s in self.segments]
        if len(set(indices)) != len(indices):
            raise ValueError(f"Duplicate segment indices: {indices}")
        total = math.fsum(s.weight for s in self.segments)
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError(f"Segment weights sum to {total}, expected 1")
        return self

    @classmethod
    def uniform(cls, multipliers: list[float]) -> "SegmentSet":
        """Equally likely segments, indexed 0..n-1 in the given order."""
        weight = 1.0 / len(multipliers) if multipliers else 1.0
        return cls(
            segments=tuple(
                SegmentDefinition(index=i, multiplier=m, weight=weight)
                for i, m in enumerate(multipliers)
            )
        )

    @property
    def indices(self) -> list[int]:
        return [s.index for s in self.segments]

    def __len__(self) -> int:
        return len(self.segments)

    def get(self, index: int) -> SegmentDefinition:
        """Return segment by index; raise UnknownSegment if not declared."""
        for segment in self.segments:
            if segment.index == index:
                return segment
        raise UnknownSegment(f"Segment {index} is not part of the wheel model {self.indices}")

    @property
    def theoretical_rtp(self) -> float:
        """Expected return per unit bet (sum of weight x multiplier)."""
        return math.fsum(s.weight * s.multiplier for s in self.segments)

    def fingerprint(self) -> str:
        """16-char hash identifying this model; pooled counts must share it."""
        return canonical_hash([s.model_dump() for s in self.segments])


def load_segment_set(raw: Any) -> SegmentSet:
    """
    Build a SegmentSet from config data.

    Accepts either a list of segment dicts or ``{"segments": [...]}``.
    Raises InvalidModel instead of pydantic's ValidationError.
    """
    if isinstance(raw, dict):
        raw = raw.get("segments", [])
    try:
        return SegmentSet(segments=tuple(SegmentDefinition.model_validate(s) for s in raw))
    except ValidationError as e:
        raise InvalidModel(f"Invalid wheel model: {e.errors(include_url=False)}") from e


# === Spin outcome ===


class SpinOutcome(BaseModel):
    """
    Settled result of one spin.

    Enforced at construction:
    - balance_after == balance_before - bet + bet * multiplier (within BALANCE_EPSILON)
    - win_amount == max(bet * multiplier - bet, 0)
    """

    model_config = ConfigDict(frozen=True)

    segment_index: int = Field(..., ge=0)
    multiplier: float = Field(..., ge=0)
    bet_amount: float = Field(..., gt=0)
    win_amount: float = Field(..., ge=0)
    balance_before: float
    balance_after: float
    sequence: int = Field(..., ge=1)
    timestamp: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_balance_identity(self) -> "SpinOutcome":
        expected_after = self.balance_before - self.bet_amount + self.payout
        if abs(self.balance_after - expected_after) > BALANCE_EPSILON:
            raise ValueError(
                f"Balance identity violated: {self.balance_before} - {self.bet_amount} "
                f"+ {self.payout} != {self.balance_after}"
            )
        expected_win = max(self.payout - self.bet_amount, 0.0)
        if abs(self.win_amount - expected_win) > BALANCE_EPSILON:
            raise ValueError(f"win_amount {self.win_amount} != {expected_win}")
        return self

    @classmethod
    def settle(
        cls,
        *,
        sequence: int,
        segment: SegmentDefinition,
        bet_amount: float,
        balance_before: float,
        timestamp: datetime | None = None,
    ) -> "SpinOutcome":
        """Build a consistent outcome for a bet landing on ``segment``."""
        payout = bet_amount * segment.multiplier
        return cls(
            segment_index=segment.index,
            multiplier=segment.multiplier,
            bet_amount=bet_amount,
            win_amount=max(payout - bet_amount, 0.0),
            balance_before=balance_before,
            balance_after=balance_before - bet_amount + payout,
            sequence=sequence,
            timestamp=timestamp or utcnow(),
        )

    @property
    def payout(self) -> float:
        return self.bet_amount * self.multiplier

    @property
    def net(self) -> float:
        return self.payout - self.bet_amount


# === Stop conditions and session state ===


class StopCondition(BaseModel):
    """Configured bounds of an autoplay session; all optional."""

    model_config = ConfigDict(frozen=True)

    spin_count_limit: int | None = Field(default=None, ge=1)
    win_threshold: float | None = Field(default=None, gt=0)
    loss_limit: float | None = Field(default=None, gt=0)

    @property
    def is_bounded(self) -> bool:
        """False means the session only stops on cancel or failure."""
        return (
            self.spin_count_limit is not None
            or self.win_threshold is not None
            or self.loss_limit is not None
        )


class StopReason(str, Enum):
    """Terminal reason of an autoplay session."""

    MANUAL_CANCEL = "MANUAL_CANCEL"
    LOSS_LIMIT_REACHED = "LOSS_LIMIT_REACHED"
    WIN_THRESHOLD_MET = "WIN_THRESHOLD_MET"
    SPIN_LIMIT_REACHED = "SPIN_LIMIT_REACHED"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    ORCHESTRATOR_FAILURE = "ORCHESTRATOR_FAILURE"


class SessionTotals(BaseModel):
    """Running accumulators of a session. Immutable; apply() returns a new value."""

    model_config = ConfigDict(frozen=True)

    spin_count: int = 0
    cumulative_win: float = 0.0  # sum of per-spin win_amount
    cumulative_loss: float = 0.0  # sum of per-spin max(bet - payout, 0)
    total_wagered: float = 0.0
    total_returned: float = 0.0

    def apply(self, outcome: SpinOutcome) -> "SessionTotals":
        return SessionTotals(
            spin_count=self.spin_count + 1,
            cumulative_win=self.cumulative_win + outcome.win_amount,
            cumulative_loss=self.cumulative_loss + max(-outcome.net, 0.0),
            total_wagered=self.total_wagered + outcome.bet_amount,
            total_returned=self.total_returned + outcome.payout,
        )

    @property
    def net_result(self) -> float:
        return self.cumulative_win - self.cumulative_loss

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump()
        data["net_result"] = self.net_result
        return data


class AutoplaySession(BaseModel):
    """
    One automated-play run against one game instance.

    Mutated only by the session controller: outcomes are appended in spin
    order and the stop reason is set exactly once.
    """

    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    segments: SegmentSet
    stop_condition: StopCondition = Field(default_factory=StopCondition)
    outcomes: list[SpinOutcome] = Field(default_factory=list)
    totals: SessionTotals = Field(default_factory=SessionTotals)
    stop_reason: StopReason | None = None
    failure: ErrorBody | None = None
    started_at: datetime = Field(default_factory=utcnow)
    stopped_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self.stop_reason is None

    def record(self, outcome: SpinOutcome) -> SessionTotals:
        """Append the next outcome and return the updated totals."""
        if not self.is_running:
            raise SessionAlreadyFinalized(
                f"Session {self.session_id} stopped ({self.stop_reason.value}); cannot record spin"
            )
        expected_sequence = len(self.outcomes) + 1
        if outcome.sequence != expected_sequence:
            raise ValueError(
                f"Out-of-order spin: expected sequence {expected_sequence}, got {outcome.sequence}"
            )
        limit = self.stop_condition.spin_count_limit
        if limit is not None and len(self.outcomes) >= limit:
            raise ValueError(f"Spin limit {limit} already reached")
        self.segments.get(outcome.segment_index)

        self.outcomes.append(outcome)
        self.totals = self.totals.apply(outcome)
        return self.totals

    def finalize(self, reason: StopReason, failure: ErrorBody | None = None) -> None:
        """Set the terminal stop reason. Allowed exactly once."""
        if not self.is_running:
            raise SessionAlreadyFinalized(
                f"Session {self.session_id} already stopped with {self.stop_reason.value}"
            )
        self.stop_reason = reason
        self.failure = failure
        self.stopped_at = utcnow()

    def summary(self) -> dict[str, Any]:
        """Status view used by the API and the session-stopped event."""
        return {
            "session_id": self.session_id,
            "running": self.is_running,
            "spins": len(self.outcomes),
            "stop_reason": self.stop_reason.value if self.stop_reason else None,
            "failure": self.failure.model_dump() if self.failure else None,
            "totals": self.totals.to_dict(),
            "model_fingerprint": self.segments.fingerprint(),
        }


# === Distribution report ===


class Verdict(str, Enum):
    """Outcome of the goodness-of-fit test."""

    CONSISTENT = "CONSISTENT"
    DEVIATES = "DEVIATES"
    INCONCLUSIVE = "INCONCLUSIVE"


class SegmentStats(BaseModel):
    """Observed vs expected for one segment."""

    model_config = ConfigDict(frozen=True)

    index: int
    multiplier: float
    weight: float
    observed: int
    expected: float
    contribution: float  # (observed - expected)^2 / expected, 0 when expected == 0
    deviation_pct: float | None  # None when expected == 0


class DistributionReport(BaseModel):
    """Chi-square goodness-of-fit summary. Derived on demand, never mutated."""

    model_config = ConfigDict(frozen=True)

    model_fingerprint: str
    rows: tuple[SegmentStats, ...]
    sample_size: int
    statistic: float
    degrees_of_freedom: int
    critical_value: float
    p_value: float | None
    confidence_level: float
    min_expected_count: float
    sufficient_sample: bool
    verdict: Verdict
    theoretical_rtp: float
    observed_rtp: float | None

    @property
    def segments(self) -> list[int]:
        return [row.index for row in self.rows]

    @property
    def observed(self) -> dict[int, int]:
        return {row.index: row.observed for row in self.rows}

    @property
    def expected(self) -> dict[int, float]:
        return {row.index: row.expected for row in self.rows}

    def over_represented(self, max_deviation_pct: float = 50.0) -> list[int]:
        """Segments landing more than max_deviation_pct above expectation."""
        return [
            row.index
            for row in self.rows
            if row.deviation_pct is not None and row.deviation_pct > max_deviation_pct
        ]

    def under_represented(self, max_deviation_pct: float = 50.0) -> list[int]:
        """Segments landing more than max_deviation_pct below expectation."""
        return [
            row.index
            for row in self.rows
            if row.deviation_pct is not None and row.deviation_pct < -max_deviation_pct
        ]

    def unhit_segments(self) -> list[int]:
        return [row.index for row in self.rows if row.observed == 0]

    def to_event_dict(self) -> dict[str, Any]:
        """Payload of the distribution-report event."""
        return {
            "segments": self.segments,
            "expected": [row.expected for row in self.rows],
            "observed": [row.observed for row in self.rows],
            "statistic": self.statistic,
            "degrees_of_freedom": self.degrees_of_freedom,
            "critical_value": self.critical_value,
            "p_value": self.p_value,
            "sample_size": self.sample_size,
            "sufficient_sample": self.sufficient_sample,
            "verdict": self.verdict.value,
            "model_fingerprint": self.model_fingerprint,
        }

    def canonical_json(self) -> str:
        """Byte-stable serialization (sorted keys, no whitespace)."""
        return json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
