"""Autoplay Fairness Auditor FastAPI Application."""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI, Query

from autoplay_audit.config import settings
from autoplay_audit.errors import AuditError, ErrorCode, SessionNotFound
from autoplay_audit.logic.controller import SessionController
from autoplay_audit.logic.models import StopCondition, load_segment_set
from autoplay_audit.logic.orchestrator import SpinOrchestrator
from autoplay_audit.logic.rng import ProductionRNG, SeededRNG, seed_to_int
from autoplay_audit.logic.simulator import SimulatedWheel
from autoplay_audit.middleware import ErrorHandlerMiddleware
from autoplay_audit.protocol import SessionResponse, StartSessionRequest
from autoplay_audit.redis_service import distribution_store
from autoplay_audit.telemetry import LoggingResultSink, ResultSink


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage Redis connection lifecycle."""
    await distribution_store.connect()
    yield
    await distribution_store.close()


app = FastAPI(
    title="Autoplay Fairness Auditor",
    version="0.1.0",
    description="Runs autoplay sessions against a wheel and validates its outcome distribution",
    lifespan=lifespan,
)

app.add_middleware(ErrorHandlerMiddleware)


@dataclass
class SessionEntry:
    """A registered session and where its counts go when it stops."""

    controller: SessionController
    pool: str | None = None
    task: asyncio.Task | None = None


# Session registry and result sink for this process
sessions: dict[str, SessionEntry] = {}
result_sink: ResultSink = LoggingResultSink()


def _get_entry(session_id: str) -> SessionEntry:
    entry = sessions.get(session_id)
    if entry is None:
        raise SessionNotFound(f"Unknown session {session_id}")
    return entry


def _evict_stopped_sessions() -> None:
    """Drop the oldest stopped sessions while the registry is over its cap."""
    excess = len(sessions) - settings.max_retained_sessions
    if excess <= 0:
        return
    stopped = [sid for sid, entry in sessions.items() if not entry.controller.session.is_running]
    for session_id in stopped[:excess]:
        del sessions[session_id]
    logger.debug("Evicted %d stopped sessions", min(excess, len(stopped)))


async def _run_entry(entry: SessionEntry) -> None:
    """Run the session, report its distribution and feed the pool."""
    await entry.controller.run()
    entry.controller.report_distribution()
    if entry.pool:
        await distribution_store.add_aggregator(entry.pool, entry.controller.aggregator)


def _log_task_failure(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Background session task failed", exc_info=task.exception())


@app.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


@app.post("/sessions")
async def start_session(body: StartSessionRequest) -> dict:
    """
    POST /sessions.

    Starts an autoplay session against a simulated wheel built from the
    declared model. With wait=true the session runs to completion inside the
    request; otherwise it runs in the background and can be polled/cancelled.
    """
    segments = load_segment_set(body.segments)
    stop_condition = StopCondition(
        spin_count_limit=body.spinLimit,
        win_threshold=body.winThreshold,
        loss_limit=body.lossLimit,
    )
    if body.wait and not stop_condition.is_bounded:
        raise AuditError(
            "wait=true requires at least one of spinLimit, winThreshold, lossLimit",
            code=ErrorCode.INVALID_REQUEST,
        )

    rng = SeededRNG(seed=seed_to_int(body.seed)) if body.seed else ProductionRNG()
    wheel = SimulatedWheel(
        segments,
        rng=rng,
        starting_balance=body.startingBalance,
        settle_delay=body.settleDelay,
    )
    controller = SessionController(
        SpinOrchestrator(wheel, segments),
        stop_condition=stop_condition,
        bet_amount=body.betAmount,
        sink=result_sink,
    )
    entry = SessionEntry(controller=controller, pool=body.pool)
    sessions[controller.session_id] = entry
    _evict_stopped_sessions()

    if body.wait:
        await _run_entry(entry)
    else:
        entry.task = asyncio.create_task(_run_entry(entry))
        entry.task.add_done_callback(_log_task_failure)

    return SessionResponse.from_session(controller.session).model_dump()


@app.get("/sessions/{session_id}")
async def get_session(session_id: str) -> dict:
    entry = _get_entry(session_id)
    return SessionResponse.from_session(entry.controller.session).model_dump()


@app.post("/sessions/{session_id}/cancel")
async def cancel_session(session_id: str) -> dict:
    """Raise the manual-cancel signal; honoured at the next spin boundary."""
    entry = _get_entry(session_id)
    entry.controller.cancel.request()
    return SessionResponse.from_session(entry.controller.session).model_dump()


@app.get("/sessions/{session_id}/report")
async def session_report(
    session_id: str,
    confidence: float | None = Query(default=None, gt=0, lt=1),
    minExpected: float | None = Query(default=None, ge=0),
) -> dict:
    entry = _get_entry(session_id)
    report = entry.controller.aggregator.report(confidence, minExpected)
    return report.model_dump(mode="json")


@app.get("/pools/{pool}/report")
async def pool_report(
    pool: str,
    confidence: float | None = Query(default=None, gt=0, lt=1),
    minExpected: float | None = Query(default=None, ge=0),
) -> dict:
    report = await distribution_store.report(pool, confidence, minExpected)
    return report.model_dump(mode="json")
