"""Error codes and exceptions for the autoplay auditor."""
from enum import Enum

from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes surfaced by the orchestrator, the controller and the API."""

    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_MODEL = "INVALID_MODEL"
    INVALID_BET = "INVALID_BET"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    ORCHESTRATOR_TIMEOUT = "ORCHESTRATOR_TIMEOUT"
    DRIVER_FAULT = "DRIVER_FAULT"
    SPIN_IN_PROGRESS = "SPIN_IN_PROGRESS"
    UNKNOWN_SEGMENT = "UNKNOWN_SEGMENT"
    MODEL_MISMATCH = "MODEL_MISMATCH"
    SESSION_FINALIZED = "SESSION_FINALIZED"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    POOL_NOT_FOUND = "POOL_NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.INVALID_MODEL: 400,
    ErrorCode.INVALID_BET: 400,
    ErrorCode.INSUFFICIENT_FUNDS: 402,
    ErrorCode.ORCHESTRATOR_TIMEOUT: 504,
    ErrorCode.DRIVER_FAULT: 502,
    ErrorCode.SPIN_IN_PROGRESS: 409,
    ErrorCode.UNKNOWN_SEGMENT: 400,
    ErrorCode.MODEL_MISMATCH: 409,
    ErrorCode.SESSION_FINALIZED: 409,
    ErrorCode.SESSION_NOT_FOUND: 404,
    ErrorCode.POOL_NOT_FOUND: 404,
    ErrorCode.INTERNAL_ERROR: 500,
}

# Recoverable = a fresh session may succeed without changing configuration
ERROR_RECOVERABLE: dict[ErrorCode, bool] = {
    ErrorCode.INVALID_REQUEST: False,
    ErrorCode.INVALID_MODEL: False,
    ErrorCode.INVALID_BET: False,
    ErrorCode.INSUFFICIENT_FUNDS: True,
    ErrorCode.ORCHESTRATOR_TIMEOUT: True,
    ErrorCode.DRIVER_FAULT: False,
    ErrorCode.SPIN_IN_PROGRESS: True,
    ErrorCode.UNKNOWN_SEGMENT: False,
    ErrorCode.MODEL_MISMATCH: False,
    ErrorCode.SESSION_FINALIZED: False,
    ErrorCode.SESSION_NOT_FOUND: False,
    ErrorCode.POOL_NOT_FOUND: False,
    ErrorCode.INTERNAL_ERROR: True,
}


class ErrorBody(BaseModel):
    """Error body shape returned by the API and recorded on failed sessions."""

    code: str
    message: str
    recoverable: bool


class ErrorResponse(BaseModel):
    """Full error response."""

    error: ErrorBody


class AuditError(Exception):
    """Base auditor error that maps to an API error response."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str | None = None, code: ErrorCode | None = None):
        if code is not None:
            self.code = code
        self.message = message or f"Error: {self.code.value}"
        self.status_code = ERROR_HTTP_STATUS[self.code]
        self.recoverable = ERROR_RECOVERABLE[self.code]
        super().__init__(self.message)

    def to_body(self) -> ErrorBody:
        return ErrorBody(
            code=self.code.value,
            message=self.message,
            recoverable=self.recoverable,
        )

    def to_response(self) -> JSONResponse:
        """Convert to JSONResponse."""
        return JSONResponse(
            status_code=self.status_code,
            content=ErrorResponse(error=self.to_body()).model_dump(),
        )


# === Spin Orchestrator failures ===


class OrchestratorError(AuditError):
    """Any failure of a single spin; terminates the owning session."""

    code = ErrorCode.DRIVER_FAULT


class OrchestratorTimeout(OrchestratorError):
    """No settlement observed within the configured wait bound."""

    code = ErrorCode.ORCHESTRATOR_TIMEOUT


class InvalidBet(OrchestratorError):
    """Bet violates game limits or exceeds balance (detected before submission)."""

    code = ErrorCode.INVALID_BET


class DriverFault(OrchestratorError):
    """Driver reported an unexpected or inconsistent state."""

    code = ErrorCode.DRIVER_FAULT


class SpinInProgress(OrchestratorError):
    """A spin is already in flight (or never settled) on this game instance."""

    code = ErrorCode.SPIN_IN_PROGRESS


# === Controller / bookkeeping ===


class InsufficientFunds(AuditError):
    """Pre-spin affordability check failed; ends the session cleanly."""

    code = ErrorCode.INSUFFICIENT_FUNDS


class InvalidModel(AuditError):
    """Segment set or stop condition violates its invariants."""

    code = ErrorCode.INVALID_MODEL


class UnknownSegment(AuditError):
    """Segment index is not part of the declared model."""

    code = ErrorCode.UNKNOWN_SEGMENT


class ModelMismatch(AuditError):
    """Counts from a different segment model cannot be pooled."""

    code = ErrorCode.MODEL_MISMATCH


class SessionAlreadyFinalized(AuditError):
    """Stop reason already set or outcome recorded after finalization."""

    code = ErrorCode.SESSION_FINALIZED


class SessionNotFound(AuditError):
    """Unknown session id."""

    code = ErrorCode.SESSION_NOT_FOUND


class PoolNotFound(AuditError):
    """No counts stored under this pool name."""

    code = ErrorCode.POOL_NOT_FOUND
