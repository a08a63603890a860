"""Result sink delivery for autoplay sessions and distribution reports."""
import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, TextIO


logger = logging.getLogger(__name__)


# Event names
SPIN_STARTED = "spin-started"
SPIN_SETTLED = "spin-settled"
SESSION_STOPPED = "session-stopped"
DISTRIBUTION_REPORT = "distribution-report"


class ResultSink(Protocol):
    """Protocol for result sinks."""

    def emit(self, event_name: str, data: dict[str, Any]) -> None:
        """Emit a structured event."""
        ...


class LoggingResultSink:
    """Default sink that logs events."""

    def emit(self, event_name: str, data: dict[str, Any]) -> None:
        logger.info("RESULT %s: %s", event_name, data)


class JsonLinesResultSink:
    """
    Appends one JSON document per event.

    Safe to share between sessions: each event is written as a whole line
    under a lock, so concurrent writers never interleave partial messages.
    """

    def __init__(self, stream: TextIO):
        self._stream = stream
        self._lock = threading.Lock()

    @classmethod
    def open(cls, path: str | Path) -> "JsonLinesResultSink":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        return cls(open(path, "a", encoding="utf-8"))

    def emit(self, event_name: str, data: dict[str, Any]) -> None:
        line = json.dumps({"event": event_name, **data}, sort_keys=True, default=str)
        with self._lock:
            self._stream.write(line + "\n")
            self._stream.flush()

    def close(self) -> None:
        with self._lock:
            self._stream.close()


@dataclass
class SpinStartedEvent:
    """spin-started: a bet is about to be submitted."""

    session_id: str
    seq: int
    bet: float

    def to_dict(self) -> dict[str, Any]:
        return {"sessionId": self.session_id, "seq": self.seq, "bet": self.bet}


@dataclass
class SpinSettledEvent:
    """spin-settled: outcome of one spin plus running totals."""

    session_id: str
    seq: int
    outcome: dict[str, Any]
    totals: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "seq": self.seq,
            "outcome": self.outcome,
            "totals": self.totals,
        }


@dataclass
class SessionStoppedEvent:
    """session-stopped: terminal reason and final totals."""

    session_id: str
    reason: str
    totals: dict[str, Any]
    spins: int
    failure: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "reason": self.reason,
            "totals": self.totals,
            "spins": self.spins,
            "failure": self.failure,
        }


class ResultReporter:
    """Delivers events to a sink without ever raising into the caller."""

    def __init__(self, sink: ResultSink | None = None):
        self._sink = sink or LoggingResultSink()
        self._sink_errors = 0  # Counter for sink failures

    @property
    def sink_errors(self) -> int:
        return self._sink_errors

    def set_sink(self, sink: ResultSink) -> None:
        """Set the result sink (useful for testing)."""
        self._sink = sink

    def _safe_emit(self, event_name: str, data: dict[str, Any]) -> None:
        """Sink failures MUST NOT break the autoplay loop."""
        try:
            self._sink.emit(event_name, data)
        except Exception as e:
            self._sink_errors += 1
            logger.warning(
                "Result sink error (count=%d): %s - %s",
                self._sink_errors,
                event_name,
                str(e),
            )

    def emit_spin_started(self, event: SpinStartedEvent) -> None:
        self._safe_emit(SPIN_STARTED, event.to_dict())

    def emit_spin_settled(self, event: SpinSettledEvent) -> None:
        self._safe_emit(SPIN_SETTLED, event.to_dict())

    def emit_session_stopped(self, event: SessionStoppedEvent) -> None:
        self._safe_emit(SESSION_STOPPED, event.to_dict())

    def emit_distribution_report(self, report_data: dict[str, Any], source: str) -> None:
        """``source`` is the session id or pool name the counts came from."""
        self._safe_emit(DISTRIBUTION_REPORT, {"source": source, **report_data})
