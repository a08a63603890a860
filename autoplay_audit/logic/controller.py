"""Session Controller: drives one autoplay session to completion or cancellation."""
import asyncio
import logging
import threading
from collections.abc import Sequence

from autoplay_audit.config import settings
from autoplay_audit.errors import (
    InsufficientFunds,
    ModelMismatch,
    OrchestratorError,
    SessionAlreadyFinalized,
)
from autoplay_audit.logic.distribution import DistributionAggregator
from autoplay_audit.logic.models import (
    AutoplaySession,
    DistributionReport,
    StopCondition,
    StopReason,
)
from autoplay_audit.logic.orchestrator import SpinOrchestrator
from autoplay_audit.logic.stop_conditions import evaluate_stop
from autoplay_audit.telemetry import (
    ResultReporter,
    ResultSink,
    SessionStoppedEvent,
    SpinSettledEvent,
    SpinStartedEvent,
)
from autoplay_audit.validators import check_affordable


logger = logging.getLogger(__name__)


class CancelSignal:
    """Manual-cancel flag; may be raised from any thread or task."""

    def __init__(self):
        self._event = threading.Event()

    def request(self) -> None:
        self._event.set()

    @property
    def requested(self) -> bool:
        return self._event.is_set()


class SessionController:
    """
    Autoplay loop per session.

    Each iteration:
    1) honour a pending cancel (spin boundary)
    2) affordability check against the current balance
    3) spin through the orchestrator
    4) record outcome, update totals, feed aggregators, report to the sink
    5) evaluate stop conditions
    """

    def __init__(
        self,
        orchestrator: SpinOrchestrator,
        stop_condition: StopCondition | None = None,
        bet_amount: float | None = None,
        sink: ResultSink | None = None,
        shared_aggregator: DistributionAggregator | None = None,
        cancel: CancelSignal | None = None,
        session_id: str | None = None,
    ):
        self.orchestrator = orchestrator
        self.segments = orchestrator.segments
        self.stop_condition = stop_condition or StopCondition()
        self.bet_amount = bet_amount if bet_amount is not None else settings.default_bet
        self.reporter = ResultReporter(sink)
        self.cancel = cancel or CancelSignal()
        self.aggregator = DistributionAggregator(self.segments)

        if shared_aggregator is not None and shared_aggregator.fingerprint != self.aggregator.fingerprint:
            raise ModelMismatch(
                f"Shared aggregator model {shared_aggregator.fingerprint} does not match "
                f"session model {self.aggregator.fingerprint}"
            )
        self.shared_aggregator = shared_aggregator

        session_kwargs = {"session_id": session_id} if session_id else {}
        self.session = AutoplaySession(
            segments=self.segments,
            stop_condition=self.stop_condition,
            **session_kwargs,
        )

    @property
    def session_id(self) -> str:
        return self.session.session_id

    async def run(self) -> AutoplaySession:
        """Run until a stop condition, cancel, lack of funds or orchestrator failure."""
        session = self.session
        if not session.is_running:
            raise SessionAlreadyFinalized(f"Session {session.session_id} already ran")

        logger.info(
            "Autoplay session %s started (bet=%s, stop=%s)",
            session.session_id,
            self.bet_amount,
            self.stop_condition.model_dump(exclude_none=True),
        )
        if not self.stop_condition.is_bounded:
            logger.warning(
                "Autoplay session %s is unbounded; it stops only on cancel or failure",
                session.session_id,
            )

        while session.is_running:
            await self._step()

        self.reporter.emit_session_stopped(
            SessionStoppedEvent(
                session_id=session.session_id,
                reason=session.stop_reason.value,
                totals=session.totals.to_dict(),
                spins=len(session.outcomes),
                failure=session.failure.model_dump() if session.failure else None,
            )
        )
        logger.info(
            "Autoplay session %s stopped: %s after %d spins",
            session.session_id,
            session.stop_reason.value,
            len(session.outcomes),
        )
        return session

    async def _step(self) -> None:
        session = self.session

        # 1) Cancel raised between spins
        if self.cancel.requested:
            session.finalize(StopReason.MANUAL_CANCEL)
            return

        # 2) Affordability
        try:
            balance = await self.orchestrator.current_balance()
            check_affordable(self.bet_amount, balance)
        except InsufficientFunds as e:
            logger.info("Session %s: %s", session.session_id, e.message)
            session.finalize(StopReason.INSUFFICIENT_FUNDS)
            return
        except OrchestratorError as e:
            self._fail(e)
            return

        # 3) Spin
        sequence = len(session.outcomes) + 1
        self.reporter.emit_spin_started(
            SpinStartedEvent(session_id=session.session_id, seq=sequence, bet=self.bet_amount)
        )
        try:
            outcome = await self.orchestrator.spin(self.bet_amount, sequence)
        except OrchestratorError as e:
            self._fail(e)
            return

        # 4) Bookkeeping
        previous = session.totals
        totals = session.record(outcome)
        self.aggregator.record(outcome)
        if self.shared_aggregator is not None:
            self.shared_aggregator.record(outcome)

        self.reporter.emit_spin_settled(
            SpinSettledEvent(
                session_id=session.session_id,
                seq=sequence,
                outcome=outcome.model_dump(mode="json"),
                totals=totals.to_dict(),
            )
        )

        # 5) Stop conditions
        decision = evaluate_stop(previous, outcome, self.stop_condition, self.cancel.requested)
        if decision.stop:
            session.finalize(decision.reason)

    def _fail(self, error: OrchestratorError) -> None:
        logger.warning(
            "Session %s terminated by orchestrator failure %s: %s",
            self.session.session_id,
            error.code.value,
            error.message,
        )
        self.session.finalize(StopReason.ORCHESTRATOR_FAILURE, failure=error.to_body())

    def report_distribution(
        self,
        confidence_level: float | None = None,
        min_expected_count: float | None = None,
    ) -> DistributionReport:
        """Compute this session's distribution report and send it to the sink."""
        report = self.aggregator.report(confidence_level, min_expected_count)
        self.reporter.emit_distribution_report(report.to_event_dict(), source=self.session_id)
        return report


async def run_sessions(controllers: Sequence[SessionController]) -> list[AutoplaySession]:
    """Run independent sessions concurrently (one game instance each)."""
    return list(await asyncio.gather(*(controller.run() for controller in controllers)))
