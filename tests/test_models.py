"""Wheel model, spin outcome and session state tests."""
import pytest
from pydantic import ValidationError

from autoplay_audit.errors import ErrorCode, InvalidModel, SessionAlreadyFinalized, UnknownSegment
from autoplay_audit.logic.models import (
    AutoplaySession,
    SegmentDefinition,
    SegmentSet,
    SessionTotals,
    SpinOutcome,
    StopCondition,
    StopReason,
    load_segment_set,
)


def make_outcome(segments: SegmentSet, index: int, sequence: int, bet: float = 1.0, balance: float = 100.0) -> SpinOutcome:
    return SpinOutcome.settle(
        sequence=sequence,
        segment=segments.get(index),
        bet_amount=bet,
        balance_before=balance,
    )


class TestSegmentSet:
    """Declared wheel model invariants."""

    def test_segments_sorted_by_index(self):
        segments = load_segment_set([
            {"index": 2, "multiplier": 2.0, "weight": 0.25},
            {"index": 0, "multiplier": 0.0, "weight": 0.5},
            {"index": 1, "multiplier": 1.0, "weight": 0.25},
        ])
        assert segments.indices == [0, 1, 2]

    def test_weights_must_sum_to_one(self):
        with pytest.raises(InvalidModel) as exc_info:
            load_segment_set([
                {"index": 0, "multiplier": 0.0, "weight": 0.5},
                {"index": 1, "multiplier": 2.0, "weight": 0.4},
            ])
        assert exc_info.value.code == ErrorCode.INVALID_MODEL

    def test_duplicate_indices_rejected(self):
        with pytest.raises(InvalidModel):
            load_segment_set([
                {"index": 0, "multiplier": 0.0, "weight": 0.5},
                {"index": 0, "multiplier": 2.0, "weight": 0.5},
            ])

    def test_single_segment_rejected(self):
        with pytest.raises(InvalidModel):
            load_segment_set([{"index": 0, "multiplier": 1.0, "weight": 1.0}])

    def test_zero_weight_rejected(self):
        with pytest.raises(InvalidModel):
            load_segment_set([
                {"index": 0, "multiplier": 0.0, "weight": 1.0},
                {"index": 1, "multiplier": 2.0, "weight": 0.0},
            ])

    def test_accepts_wrapped_document(self):
        segments = load_segment_set({"segments": [
            {"index": 0, "multiplier": 0.0, "weight": 0.5},
            {"index": 1, "multiplier": 2.0, "weight": 0.5},
        ]})
        assert len(segments) == 2

    def test_uniform_weights_within_tolerance(self):
        segments = SegmentSet.uniform([0.0, 0.5, 1.0, 1.5, 2.0, 0.2, 1.2, 1.3])
        assert len(segments) == 8
        assert all(s.weight == pytest.approx(0.125) for s in segments.segments)

    def test_weight_sum_tolerance(self):
        """Weights that miss 1.0 by 5e-7 pass; a 1e-5 miss does not."""
        segments = load_segment_set([
            {"index": 0, "multiplier": 0.0, "weight": 0.3333335},
            {"index": 1, "multiplier": 1.0, "weight": 0.3333333},
            {"index": 2, "multiplier": 2.0, "weight": 0.3333337},
        ])
        assert len(segments) == 3
        with pytest.raises(InvalidModel):
            load_segment_set([
                {"index": 0, "multiplier": 0.0, "weight": 0.5},
                {"index": 1, "multiplier": 2.0, "weight": 0.49999},
            ])

    def test_theoretical_rtp(self, four_segments: SegmentSet):
        assert four_segments.theoretical_rtp == pytest.approx(2.0)

    def test_get_unknown_segment(self, four_segments: SegmentSet):
        with pytest.raises(UnknownSegment):
            four_segments.get(9)

    def test_fingerprint_independent_of_declaration_order(self):
        a = SegmentSet(segments=(
            SegmentDefinition(index=0, multiplier=0.0, weight=0.5),
            SegmentDefinition(index=1, multiplier=2.0, weight=0.5),
        ))
        b = SegmentSet(segments=(
            SegmentDefinition(index=1, multiplier=2.0, weight=0.5),
            SegmentDefinition(index=0, multiplier=0.0, weight=0.5),
        ))
        assert a.fingerprint() == b.fingerprint()
        assert len(a.fingerprint()) == 16

    def test_fingerprint_changes_with_multiplier(self):
        a = SegmentSet.uniform([0.0, 2.0])
        b = SegmentSet.uniform([0.0, 3.0])
        assert a.fingerprint() != b.fingerprint()


class TestSpinOutcome:
    """Balance identity enforced on every outcome."""

    def test_settle_win(self, four_segments: SegmentSet):
        outcome = make_outcome(four_segments, index=3, sequence=1, bet=2.0, balance=10.0)
        assert outcome.balance_after == pytest.approx(18.0)
        assert outcome.win_amount == pytest.approx(8.0)
        assert outcome.net == pytest.approx(8.0)

    def test_settle_loss(self, four_segments: SegmentSet):
        outcome = make_outcome(four_segments, index=0, sequence=1, bet=2.0, balance=10.0)
        assert outcome.balance_after == pytest.approx(8.0)
        assert outcome.win_amount == 0.0
        assert outcome.net == pytest.approx(-2.0)

    def test_break_even_is_not_a_win(self, four_segments: SegmentSet):
        outcome = make_outcome(four_segments, index=1, sequence=1, bet=2.0, balance=10.0)
        assert outcome.balance_after == pytest.approx(10.0)
        assert outcome.win_amount == 0.0

    def test_inconsistent_balance_rejected(self):
        with pytest.raises(ValidationError):
            SpinOutcome(
                segment_index=0,
                multiplier=2.0,
                bet_amount=1.0,
                win_amount=1.0,
                balance_before=10.0,
                balance_after=12.0,
                sequence=1,
            )

    def test_inconsistent_win_amount_rejected(self):
        with pytest.raises(ValidationError):
            SpinOutcome(
                segment_index=0,
                multiplier=2.0,
                bet_amount=1.0,
                win_amount=2.0,
                balance_before=10.0,
                balance_after=11.0,
                sequence=1,
            )

    def test_zero_bet_rejected(self):
        with pytest.raises(ValidationError):
            SpinOutcome(
                segment_index=0,
                multiplier=2.0,
                bet_amount=0.0,
                win_amount=0.0,
                balance_before=10.0,
                balance_after=10.0,
                sequence=1,
            )


class TestSessionTotals:
    """Gross cumulative win/loss accumulation."""

    def test_apply_accumulates_gross_win_and_loss(self, four_segments: SegmentSet):
        totals = SessionTotals()
        totals = totals.apply(make_outcome(four_segments, 3, 1))  # +4
        totals = totals.apply(make_outcome(four_segments, 0, 2))  # -1
        totals = totals.apply(make_outcome(four_segments, 0, 3))  # -1

        assert totals.spin_count == 3
        assert totals.cumulative_win == pytest.approx(4.0)
        assert totals.cumulative_loss == pytest.approx(2.0)
        assert totals.net_result == pytest.approx(2.0)
        assert totals.total_wagered == pytest.approx(3.0)
        assert totals.total_returned == pytest.approx(5.0)

    def test_apply_returns_new_value(self, four_segments: SegmentSet):
        totals = SessionTotals()
        updated = totals.apply(make_outcome(four_segments, 0, 1))
        assert totals.spin_count == 0
        assert updated.spin_count == 1


class TestStopCondition:
    def test_empty_condition_is_unbounded(self):
        assert not StopCondition().is_bounded

    def test_any_bound_makes_it_bounded(self):
        assert StopCondition(spin_count_limit=1).is_bounded
        assert StopCondition(win_threshold=5.0).is_bounded
        assert StopCondition(loss_limit=5.0).is_bounded

    def test_non_positive_bounds_rejected(self):
        with pytest.raises(ValidationError):
            StopCondition(spin_count_limit=0)
        with pytest.raises(ValidationError):
            StopCondition(loss_limit=0)


class TestAutoplaySession:
    """Outcome recording and finalization."""

    def test_record_in_order(self, four_segments: SegmentSet):
        session = AutoplaySession(segments=four_segments)
        session.record(make_outcome(four_segments, 0, 1))
        totals = session.record(make_outcome(four_segments, 2, 2, balance=99.0))
        assert [o.sequence for o in session.outcomes] == [1, 2]
        assert totals.spin_count == 2
        assert session.totals == totals

    def test_record_out_of_order_rejected(self, four_segments: SegmentSet):
        session = AutoplaySession(segments=four_segments)
        with pytest.raises(ValueError):
            session.record(make_outcome(four_segments, 0, 2))

    def test_record_beyond_spin_limit_rejected(self, four_segments: SegmentSet):
        session = AutoplaySession(
            segments=four_segments,
            stop_condition=StopCondition(spin_count_limit=1),
        )
        session.record(make_outcome(four_segments, 0, 1))
        with pytest.raises(ValueError):
            session.record(make_outcome(four_segments, 0, 2, balance=99.0))

    def test_record_unknown_segment_rejected(self, four_segments: SegmentSet):
        other = SegmentSet.uniform([0.0, 1.0, 2.0, 5.0, 10.0])
        session = AutoplaySession(segments=four_segments)
        with pytest.raises(UnknownSegment):
            session.record(make_outcome(other, 4, 1))

    def test_finalize_once(self, four_segments: SegmentSet):
        session = AutoplaySession(segments=four_segments)
        session.finalize(StopReason.MANUAL_CANCEL)
        assert not session.is_running
        assert session.stopped_at is not None
        with pytest.raises(SessionAlreadyFinalized):
            session.finalize(StopReason.SPIN_LIMIT_REACHED)
        assert session.stop_reason == StopReason.MANUAL_CANCEL

    def test_record_after_finalize_rejected(self, four_segments: SegmentSet):
        session = AutoplaySession(segments=four_segments)
        session.finalize(StopReason.MANUAL_CANCEL)
        with pytest.raises(SessionAlreadyFinalized):
            session.record(make_outcome(four_segments, 0, 1))
        assert session.outcomes == []

    def test_summary(self, four_segments: SegmentSet):
        session = AutoplaySession(segments=four_segments)
        session.record(make_outcome(four_segments, 3, 1))
        session.finalize(StopReason.WIN_THRESHOLD_MET)
        summary = session.summary()
        assert summary["stop_reason"] == "WIN_THRESHOLD_MET"
        assert summary["spins"] == 1
        assert summary["totals"]["net_result"] == pytest.approx(4.0)
        assert summary["model_fingerprint"] == four_segments.fingerprint()
