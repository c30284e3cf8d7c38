from __future__ import annotations

import threading
import time as _time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple

from lara.core.errors import MediaServiceError, PersistenceError
from lara.services.media import Track
from lara.voice.capture import CaptureListener, CaptureRun, RecognitionConfig, SpeechCapture, Transcript
from lara.voice.errors import CaptureError, CaptureErrorCode


def wait_until(predicate: Callable[[], Any], timeout: float = 3.0, interval: float = 0.01) -> bool:
    deadline = _time.monotonic() + timeout
    while _time.monotonic() < deadline:
        if predicate():
            return True
        _time.sleep(interval)
    return bool(predicate())


class DummyLogger:
    def __init__(self):
        self.records: List[Tuple[str, str]] = []

    def _add(self, level: str, msg: str) -> None:
        self.records.append((level, str(msg)))

    def debug(self, msg, *args, **kwargs):  # noqa: ANN001
        self._add("debug", msg)

    def info(self, msg, *args, **kwargs):  # noqa: ANN001
        self._add("info", msg)

    def warning(self, msg, *args, **kwargs):  # noqa: ANN001
        self._add("warning", msg)

    def error(self, msg, *args, **kwargs):  # noqa: ANN001
        self._add("error", msg)


class MemoryEventLogger:
    def __init__(self):
        self._lock = threading.Lock()
        self.events: List[Dict[str, Any]] = []

    def log(self, trace_id: str, event_type: str, details: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            self.events.append({"trace_id": trace_id, "event": event_type, "details": dict(details or {})})

    def of(self, event_type: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [e for e in self.events if e["event"] == event_type]


# ---- scripted speech capture ----
# A script is a list of steps for one capture run:
#   ("final", text) / ("partial", text) emit a transcript,
#   ("error", code) ends the run with that error,
#   ("sleep", seconds) pauses,
#   HOLD keeps the microphone open until stop()/abort().
# A run with no script left behaves like a quiet room: it holds until stopped.
HOLD = ("hold",)


def final(text: str) -> Tuple[str, str]:
    return ("final", text)


def partial(text: str) -> Tuple[str, str]:
    return ("partial", text)


def error(code: CaptureErrorCode) -> Tuple[str, CaptureErrorCode]:
    return ("error", code)


class ScriptedSpeechCapture(SpeechCapture):
    name = "scripted"

    def __init__(self, runs: Optional[Sequence[Sequence[tuple]]] = None):
        super().__init__(logger=DummyLogger())
        self._scripts: Deque[List[tuple]] = deque(list(r) for r in (runs or []))
        self._script_lock = threading.Lock()
        self.started: List[RecognitionConfig] = []
        self.emitted: List[Transcript] = []
        self.stop_calls = 0
        self.abort_calls = 0

    def queue(self, *steps: tuple) -> None:
        with self._script_lock:
            self._scripts.append(list(steps))

    def runs_started(self) -> int:
        with self._script_lock:
            return len(self.started)

    def stop(self) -> None:
        self.stop_calls += 1
        super().stop()

    def abort(self, timeout: float = 2.0) -> None:
        self.abort_calls += 1
        super().abort(timeout=timeout)

    def _capture(self, run: CaptureRun) -> None:
        with self._script_lock:
            self.started.append(run.config)
            steps = self._scripts.popleft() if self._scripts else [HOLD]
        for step in steps:
            if run.should_halt():
                return
            kind = step[0]
            if kind in {"final", "partial"}:
                run.emit(step[1], kind == "final")
                with self._script_lock:
                    self.emitted.append(Transcript(text=step[1], is_final=kind == "final"))
            elif kind == "error":
                raise CaptureError(step[1], f"scripted {step[1].value}")
            elif kind == "sleep":
                run.stop_event.wait(timeout=float(step[1]))
            elif kind == "hold":
                while not run.should_halt():
                    _time.sleep(0.005)


class RecordingListener(CaptureListener):
    def __init__(self):
        self.started = 0
        self.transcripts: List[Transcript] = []
        self.errors: List[CaptureErrorCode] = []
        self.ended = 0
        self.end_event = threading.Event()

    def on_start(self) -> None:
        self.started += 1

    def on_transcript(self, transcript: Transcript) -> None:
        self.transcripts.append(transcript)

    def on_error(self, code: CaptureErrorCode, message: str) -> None:
        self.errors.append(code)

    def on_end(self) -> None:
        self.ended += 1
        self.end_event.set()


# ---- collaborators ----
@dataclass
class FakeMedia:
    tracks: List[Track] = field(default_factory=lambda: [Track(id="t1", name="Telugu Hits", artists=["Various"])])
    play_ok: bool = True
    fail_search: bool = False
    searches: List[str] = field(default_factory=list)
    played: List[str] = field(default_factory=list)

    def search(self, query: str) -> List[Track]:
        self.searches.append(query)
        if self.fail_search:
            raise MediaServiceError("Failed to search music.")
        return list(self.tracks)

    def play(self, track_id: str) -> bool:
        self.played.append(track_id)
        return self.play_ok


class FakePersistence:
    def __init__(self, fail: bool = False, delay_seconds: float = 0.0):
        self.fail = fail
        self.delay_seconds = float(delay_seconds)
        self.tasks: List[Tuple[str, Dict[str, Any]]] = []
        self.reminders: List[Tuple[str, Dict[str, Any]]] = []

    def create_task(self, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        if self.delay_seconds:
            _time.sleep(self.delay_seconds)
        if self.fail:
            raise PersistenceError(status_code=500, path="tasks")
        self.tasks.append((user_id, dict(fields)))
        return {"id": len(self.tasks), **fields}

    def create_reminder(self, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        if self.delay_seconds:
            _time.sleep(self.delay_seconds)
        if self.fail:
            raise PersistenceError(status_code=500, path="reminders")
        self.reminders.append((user_id, dict(fields)))
        return {"id": len(self.reminders), **fields}


class FakeSpeechOutput:
    def __init__(self):
        self.spoken: List[str] = []
        self.cancel_calls = 0
        self.closed = False

    def speak(self, trace_id: str, text: str) -> bool:
        self.spoken.append(text)
        return True

    def cancel(self) -> None:
        self.cancel_calls += 1

    def close(self) -> None:
        self.closed = True


class RecordingNavigator:
    def __init__(self):
        self.paths: List[str] = []

    def __call__(self, path: str) -> None:
        self.paths.append(path)


class FakePrimaryClassifier:
    """Stands in for the LLM tier: returns a fixed intent, raises, or hangs."""

    name = "fake-primary"

    def __init__(self, intent=None, exc: Optional[Exception] = None, delay_seconds: float = 0.0):
        self.intent = intent
        self.exc = exc
        self.delay_seconds = float(delay_seconds)
        self.calls: List[str] = []

    def classify(self, transcript: str):
        self.calls.append(transcript)
        if self.delay_seconds:
            _time.sleep(self.delay_seconds)
        if self.exc is not None:
            raise self.exc
        return self.intent


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no json")
        return self._payload
