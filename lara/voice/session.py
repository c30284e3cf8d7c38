from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from lara.core.errors import CaptureBusyError, StateTransitionError
from lara.core.events import NullEventLogger
from lara.core.logger import get_logger
from lara.core.run_state import RunFlagView
from lara.voice.capture import CaptureListener, RecognitionConfig, SpeechCapture, Transcript
from lara.voice.errors import CaptureErrorCode


class SessionOutcome(str, Enum):
    TRANSCRIBED = "TRANSCRIBED"
    NO_SPEECH = "NO_SPEECH"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class SessionResult:
    outcome: SessionOutcome
    text: str = ""
    error_code: Optional[CaptureErrorCode] = None
    message: str = ""

    @property
    def has_text(self) -> bool:
        return self.outcome == SessionOutcome.TRANSCRIBED and bool(self.text)


class CommandSession(CaptureListener):
    """
    One command capture: a single one-shot capture run, accumulating final
    fragments until the engine ends it. Single use.
    """

    def __init__(
        self,
        capture: SpeechCapture,
        run_flag: RunFlagView,
        *,
        trace_id: str,
        timeout_seconds: float = 10.0,
        language: str = "en-US",
        event_logger=None,
        logger=None,
    ):
        self.capture = capture
        self.run_flag = run_flag
        self.trace_id = trace_id
        self.timeout_seconds = float(timeout_seconds)
        self.language = language
        self.event_logger = event_logger or NullEventLogger()
        self.logger = logger or get_logger("voice.session")

        self._lock = threading.Lock()
        self._parts: List[str] = []
        self._error: Optional[CaptureErrorCode] = None
        self._error_message = ""
        self._aborted = False
        self._timed_out = False
        self._done = threading.Event()
        self._used = False

    def run(self) -> SessionResult:
        with self._lock:
            if self._used:
                raise StateTransitionError("A command session can only run once.", trace_id=self.trace_id)
            self._used = True

        if not self.run_flag.is_running():
            return SessionResult(SessionOutcome.CANCELLED, message="assistant stopped")

        try:
            self.capture.start(RecognitionConfig(continuous=False, interim_results=False, language=self.language), self)
        except CaptureBusyError as e:
            self.logger.warning(f"[{self.trace_id}] command session could not acquire the microphone")
            return SessionResult(SessionOutcome.FAILED, message=e.user_message)

        self.event_logger.log(self.trace_id, "session.start", {"timeout_seconds": self.timeout_seconds})
        if not self._done.wait(timeout=self.timeout_seconds):
            with self._lock:
                self._timed_out = True
            # Graceful stop flushes anything already heard.
            self.capture.stop()
            self._done.wait(timeout=2.0)

        result = self._result()
        self.event_logger.log(
            self.trace_id,
            "session.end",
            {"outcome": result.outcome.value, "text_len": len(result.text), "error": result.error_code.value if result.error_code else None},
        )
        return result

    def is_finished(self) -> bool:
        return self._done.is_set()

    # ---- capture callbacks ----
    def on_transcript(self, transcript: Transcript) -> None:
        if not transcript.is_final:
            return
        with self._lock:
            self._parts.append(transcript.text.strip())

    def on_error(self, code: CaptureErrorCode, message: str) -> None:
        with self._lock:
            if code == CaptureErrorCode.ABORTED:
                self._aborted = True
                return
            self._error = code
            self._error_message = message

    def on_end(self) -> None:
        self._done.set()

    def _result(self) -> SessionResult:
        with self._lock:
            text = " ".join(p for p in self._parts if p).strip()
            error = self._error
            message = self._error_message
            aborted = self._aborted
            timed_out = self._timed_out
        if aborted or not self.run_flag.is_running():
            return SessionResult(SessionOutcome.CANCELLED, text=text, message="cancelled")
        if text:
            return SessionResult(SessionOutcome.TRANSCRIBED, text=text)
        if error is not None and error != CaptureErrorCode.NO_SPEECH:
            return SessionResult(SessionOutcome.FAILED, error_code=error, message=message)
        if timed_out:
            return SessionResult(SessionOutcome.TIMED_OUT, message="no speech captured")
        return SessionResult(SessionOutcome.NO_SPEECH, error_code=error, message="no speech captured")
