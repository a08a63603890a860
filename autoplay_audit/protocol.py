"""Request/response models of the audit control API."""
from typing import Any

from pydantic import BaseModel, Field

from autoplay_audit.config import settings
from autoplay_audit.logic.models import AutoplaySession, SegmentDefinition


# === Request Models ===


class StartSessionRequest(BaseModel):
    """POST /sessions request body."""

    segments: list[SegmentDefinition] = Field(..., description="Declared wheel model")
    betAmount: float = Field(default=settings.default_bet, gt=0)
    startingBalance: float = Field(default=settings.default_starting_balance, ge=0)
    spinLimit: int | None = Field(default=None, ge=1)
    winThreshold: float | None = Field(default=None, gt=0)
    lossLimit: float | None = Field(default=None, gt=0)
    seed: str | None = Field(default=None, description="Seed string for a reproducible wheel")
    pool: str | None = Field(default=None, description="Pooled distribution to add counts to")
    settleDelay: float | None = Field(default=None, ge=0)
    wait: bool = Field(default=False, description="Run to completion inside the request")


# === Response Models ===


class Totals(BaseModel):
    """Running totals of a session."""

    spinCount: int
    cumulativeWin: float
    cumulativeLoss: float
    totalWagered: float
    totalReturned: float
    netResult: float


class SessionResponse(BaseModel):
    """Session status."""

    sessionId: str
    running: bool
    spins: int
    stopReason: str | None = None
    failure: dict[str, Any] | None = None
    totals: Totals
    modelFingerprint: str

    @classmethod
    def from_session(cls, session: AutoplaySession) -> "SessionResponse":
        totals = session.totals
        return cls(
            sessionId=session.session_id,
            running=session.is_running,
            spins=len(session.outcomes),
            stopReason=session.stop_reason.value if session.stop_reason else None,
            failure=session.failure.model_dump() if session.failure else None,
            totals=Totals(
                spinCount=totals.spin_count,
                cumulativeWin=totals.cumulative_win,
                cumulativeLoss=totals.cumulative_loss,
                totalWagered=totals.total_wagered,
                totalReturned=totals.total_returned,
                netResult=totals.net_result,
            ),
            modelFingerprint=session.segments.fingerprint(),
        )
