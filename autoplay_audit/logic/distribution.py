"""
Distribution Aggregator: per-segment counts and chi-square goodness-of-fit
against the declared wheel model.

Counts are append-only and order-independent: a report depends only on the
multiset of landed segments, never on arrival order.
"""
import math
import threading
from collections.abc import Mapping

from scipy import stats

from autoplay_audit.config import settings
from autoplay_audit.errors import ModelMismatch, UnknownSegment
from autoplay_audit.logic.models import (
    DistributionReport,
    SegmentSet,
    SegmentStats,
    SpinOutcome,
    Verdict,
)


def chi_square_statistic(observed: list[int], expected: list[float]) -> float:
    """Sum of (observed - expected)^2 / expected; categories with expected == 0 are skipped."""
    return math.fsum(
        (o - e) ** 2 / e for o, e in zip(observed, expected) if e > 0
    )


def critical_value(confidence_level: float, degrees_of_freedom: int) -> float:
    """Chi-square critical value at ``confidence_level`` for ``degrees_of_freedom``."""
    if not 0.0 < confidence_level < 1.0:
        raise ValueError(f"confidence_level must be in (0, 1), got {confidence_level}")
    if degrees_of_freedom < 1:
        raise ValueError(f"degrees_of_freedom must be >= 1, got {degrees_of_freedom}")
    return float(stats.chi2.ppf(confidence_level, degrees_of_freedom))


def build_report(
    segments: SegmentSet,
    counts: Mapping[int, int],
    confidence_level: float | None = None,
    min_expected_count: float | None = None,
) -> DistributionReport:
    """
    Compute a DistributionReport from per-segment counts.

    The sample is insufficient (verdict INCONCLUSIVE) when any segment's
    expected count is below ``min_expected_count``. Otherwise the statistic
    strictly above the critical value yields DEVIATES, anything else
    CONSISTENT.
    """
    confidence = confidence_level if confidence_level is not None else settings.confidence_level
    min_expected = min_expected_count if min_expected_count is not None else settings.min_expected_count

    degrees_of_freedom = len(segments) - 1
    threshold = critical_value(confidence, degrees_of_freedom)

    observed = [int(counts.get(s.index, 0)) for s in segments.segments]
    total = sum(observed)
    expected = [total * s.weight for s in segments.segments]

    rows = []
    for segment, o, e in zip(segments.segments, observed, expected):
        rows.append(
            SegmentStats(
                index=segment.index,
                multiplier=segment.multiplier,
                weight=segment.weight,
                observed=o,
                expected=e,
                contribution=(o - e) ** 2 / e if e > 0 else 0.0,
                deviation_pct=(o - e) / e * 100 if e > 0 else None,
            )
        )

    statistic = chi_square_statistic(observed, expected)
    sufficient = total > 0 and all(e >= min_expected for e in expected)

    if not sufficient:
        verdict = Verdict.INCONCLUSIVE
    elif statistic > threshold:
        verdict = Verdict.DEVIATES
    else:
        verdict = Verdict.CONSISTENT

    if total > 0:
        p_value = float(stats.chi2.sf(statistic, degrees_of_freedom))
        observed_rtp = math.fsum(o * s.multiplier for o, s in zip(observed, segments.segments)) / total
    else:
        p_value = None
        observed_rtp = None

    return DistributionReport(
        model_fingerprint=segments.fingerprint(),
        rows=tuple(rows),
        sample_size=total,
        statistic=statistic,
        degrees_of_freedom=degrees_of_freedom,
        critical_value=threshold,
        p_value=p_value,
        confidence_level=confidence,
        min_expected_count=min_expected,
        sufficient_sample=sufficient,
        verdict=verdict,
        theoretical_rtp=segments.theoretical_rtp,
        observed_rtp=observed_rtp,
    )


class DistributionAggregator:
    """
    Thread-safe per-segment landing counts for one wheel model.

    May be shared by several concurrent sessions; every update and every
    snapshot goes through a single lock.
    """

    def __init__(self, segments: SegmentSet):
        self.segments = segments
        self._counts: dict[int, int] = {index: 0 for index in segments.indices}
        self._lock = threading.Lock()

    @property
    def fingerprint(self) -> str:
        return self.segments.fingerprint()

    @property
    def total(self) -> int:
        with self._lock:
            return sum(self._counts.values())

    def record(self, outcome: SpinOutcome) -> None:
        self.record_index(outcome.segment_index)

    def record_index(self, index: int) -> None:
        if index not in self._counts:
            raise UnknownSegment(f"Segment {index} is not part of the wheel model {self.segments.indices}")
        with self._lock:
            self._counts[index] += 1

    def merge(self, counts: Mapping[int, int]) -> None:
        """Add counts from another source (all-or-nothing)."""
        for index, count in counts.items():
            if index not in self._counts:
                raise UnknownSegment(f"Segment {index} is not part of the wheel model {self.segments.indices}")
            if count < 0:
                raise ValueError(f"Negative count {count} for segment {index}")
        with self._lock:
            for index, count in counts.items():
                self._counts[index] += int(count)

    def merge_from(self, other: "DistributionAggregator") -> None:
        """Pool another aggregator's counts; both must share the same model."""
        if other.fingerprint != self.fingerprint:
            raise ModelMismatch(
                f"Cannot pool counts of model {other.fingerprint} into {self.fingerprint}"
            )
        self.merge(other.snapshot())

    def snapshot(self) -> dict[int, int]:
        """Consistent copy of the current counts."""
        with self._lock:
            return dict(self._counts)

    def report(
        self,
        confidence_level: float | None = None,
        min_expected_count: float | None = None,
    ) -> DistributionReport:
        """Compute a fresh report from a snapshot of the counts."""
        return build_report(self.segments, self.snapshot(), confidence_level, min_expected_count)
