#!/usr/bin/env python3
"""
Autoplay fairness audit.

Runs N independent autoplay sessions concurrently against a seeded simulated
wheel, pools their landings into one aggregator and validates the observed
distribution against the declared model with a chi-square test.

Usage:
    python -m scripts.audit_autoplay --sessions 4 --spins 2500 --seed AUDIT_2025
    python -m scripts.audit_autoplay --segments wheel.json --spins 10000 --out out/report.json
    python -m scripts.audit_autoplay --spins 500 --loss-limit 200 --events-out out/events.jsonl

Exit status: 0 when the pooled verdict is CONSISTENT or INCONCLUSIVE, 1 when it DEVIATES.
"""
import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from autoplay_audit.config import settings
from autoplay_audit.config_hash import get_config_hash
from autoplay_audit.logic.controller import SessionController, run_sessions
from autoplay_audit.logic.distribution import DistributionAggregator
from autoplay_audit.logic.models import (
    AutoplaySession,
    DistributionReport,
    SegmentSet,
    StopCondition,
    Verdict,
    load_segment_set,
)
from autoplay_audit.logic.orchestrator import SpinOrchestrator
from autoplay_audit.logic.rng import SeededRNG, seed_to_int
from autoplay_audit.logic.simulator import SimulatedWheel
from autoplay_audit.telemetry import JsonLinesResultSink, LoggingResultSink, ResultSink


DEFAULT_SEED = "AUDIT_2025"
DEFAULT_SPINS = 1000
DEFAULT_SESSIONS = 1

# Eight equally likely slices; RTP 0.9625
DEFAULT_MULTIPLIERS = [0.0, 0.5, 1.0, 1.5, 2.0, 0.2, 1.2, 1.3]


@dataclass
class AuditResult:
    """Sessions, their own reports and the pooled report."""

    sessions: list[AutoplaySession] = field(default_factory=list)
    session_reports: list[DistributionReport] = field(default_factory=list)
    pooled_report: DistributionReport | None = None


def load_segments(path: str | None) -> SegmentSet:
    """Load a wheel model from JSON, or the default eight-slice wheel."""
    if path is None:
        return SegmentSet.uniform(DEFAULT_MULTIPLIERS)
    with open(path, "r") as f:
        return load_segment_set(json.load(f))


async def run_audit(
    segments: SegmentSet,
    sessions: int,
    stop_condition: StopCondition,
    bet_amount: float,
    starting_balance: float,
    seed_str: str,
    sink: ResultSink | None = None,
    confidence_level: float | None = None,
    min_expected_count: float | None = None,
) -> AuditResult:
    """
    Run ``sessions`` autoplay sessions concurrently and validate the pooled distribution.

    Each session gets its own simulated wheel seeded from ``seed_str`` and its
    position, so a run is reproducible for a given seed.
    """
    pooled = DistributionAggregator(segments)
    controllers = []
    for i in range(sessions):
        wheel = SimulatedWheel(
            segments,
            rng=SeededRNG(seed=seed_to_int(f"{seed_str}:{i}")),
            starting_balance=starting_balance,
        )
        controllers.append(
            SessionController(
                SpinOrchestrator(wheel, segments),
                stop_condition=stop_condition,
                bet_amount=bet_amount,
                sink=sink,
                shared_aggregator=pooled,
            )
        )

    result = AuditResult()
    result.sessions = await run_sessions(controllers)
    result.session_reports = [
        c.report_distribution(confidence_level, min_expected_count) for c in controllers
    ]
    result.pooled_report = pooled.report(confidence_level, min_expected_count)
    return result


def build_summary(result: AuditResult, seed_str: str) -> dict[str, Any]:
    """JSON document written by --out."""
    pooled = result.pooled_report
    return {
        "seed": seed_str,
        "config_hash": get_config_hash(pooled.confidence_level, pooled.min_expected_count),
        "sessions": [s.summary() for s in result.sessions],
        "session_verdicts": [r.verdict.value for r in result.session_reports],
        "pooled": pooled.model_dump(mode="json"),
    }


def print_report(report: DistributionReport) -> None:
    print(f"\nDistribution ({report.sample_size} spins, model {report.model_fingerprint}):")
    for row in report.rows:
        deviation = f"{row.deviation_pct:+.1f}%" if row.deviation_pct is not None else "n/a"
        print(
            f"  Segment {row.index} ({row.multiplier}x): observed {row.observed}, "
            f"expected {row.expected:.1f}, deviation {deviation}"
        )
    print(
        f"  Chi-square: {report.statistic:.4f} (critical {report.critical_value:.4f}, "
        f"df={report.degrees_of_freedom}, confidence {report.confidence_level:.0%})"
    )
    if report.p_value is not None:
        print(f"  p-value: {report.p_value:.4f}")
    if report.observed_rtp is not None:
        print(f"  RTP: observed {report.observed_rtp:.4%}, theoretical {report.theoretical_rtp:.4%}")
    print(f"  Verdict: {report.verdict.value}")


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Autoplay fairness audit against a simulated wheel")
    parser.add_argument("--segments", type=str, default=None, help="Wheel model JSON file")
    parser.add_argument(
        "--sessions",
        type=int,
        default=DEFAULT_SESSIONS,
        help=f"Concurrent sessions (default: {DEFAULT_SESSIONS})",
    )
    parser.add_argument(
        "--spins",
        type=int,
        default=DEFAULT_SPINS,
        help=f"Spin limit per session (default: {DEFAULT_SPINS})",
    )
    parser.add_argument("--bet", type=float, default=settings.default_bet, help="Bet per spin")
    parser.add_argument(
        "--balance",
        type=float,
        default=None,
        help="Starting balance per session (default: enough for every spin)",
    )
    parser.add_argument("--win-threshold", type=float, default=None, help="Stop when cumulative win reaches this")
    parser.add_argument("--loss-limit", type=float, default=None, help="Stop when cumulative loss reaches this")
    parser.add_argument("--seed", type=str, default=DEFAULT_SEED, help=f"Seed string (default: {DEFAULT_SEED})")
    parser.add_argument("--confidence", type=float, default=None, help="Confidence level, e.g. 0.95")
    parser.add_argument("--min-expected", type=float, default=None, help="Minimum expected count per segment")
    parser.add_argument("--events-out", type=str, default=None, help="Write result events as JSON lines")
    parser.add_argument("--out", type=str, default=None, help="Write audit summary JSON")
    parser.add_argument("--verbose", action="store_true", help="Log every event")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    segments = load_segments(args.segments)
    stop_condition = StopCondition(
        spin_count_limit=args.spins,
        win_threshold=args.win_threshold,
        loss_limit=args.loss_limit,
    )
    starting_balance = args.balance if args.balance is not None else args.bet * args.spins

    sink: ResultSink = LoggingResultSink()
    if args.events_out:
        sink = JsonLinesResultSink.open(args.events_out)

    print(f"Running audit: sessions={args.sessions}, spins={args.spins}, seed={args.seed}")
    print(f"Model fingerprint: {segments.fingerprint()}")
    print(f"Config hash: {get_config_hash(args.confidence, args.min_expected)}")

    try:
        result = asyncio.run(
            run_audit(
                segments,
                sessions=args.sessions,
                stop_condition=stop_condition,
                bet_amount=args.bet,
                starting_balance=starting_balance,
                seed_str=args.seed,
                sink=sink,
                confidence_level=args.confidence,
                min_expected_count=args.min_expected,
            )
        )
    finally:
        if isinstance(sink, JsonLinesResultSink):
            sink.close()

    print("\nSessions:")
    for session, report in zip(result.sessions, result.session_reports):
        print(
            f"  {session.session_id}: {session.stop_reason.value} after {len(session.outcomes)} spins, "
            f"net {session.totals.net_result:+.2f}, verdict {report.verdict.value}"
        )

    print_report(result.pooled_report)

    if args.out:
        out_path = Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(json.dumps(build_summary(result, args.seed), indent=2, sort_keys=True))
        print(f"\nSummary written to {out_path}")

    return 1 if result.pooled_report.verdict == Verdict.DEVIATES else 0


if __name__ == "__main__":
    sys.exit(main())
