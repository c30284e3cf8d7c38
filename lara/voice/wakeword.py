from __future__ import annotations

import dataclasses
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence

from lara.core.config import DEFAULT_WAKE_PHRASES
from lara.core.errors import CaptureBusyError, LaraError, MicrophoneUnavailableError, WakeWordError
from lara.core.events import NullEventLogger
from lara.core.logger import get_logger
from lara.core.run_state import RunFlagView
from lara.core.text_normalization import find_phrase
from lara.voice.capture import CaptureListener, RecognitionConfig, SpeechCapture, Transcript
from lara.voice.errors import CaptureErrorCode


WakeCallback = Callable[[str], None]
FatalCallback = Callable[[LaraError], None]


class WakePhase(str, Enum):
    IDLE = "IDLE"
    LISTENING = "LISTENING"
    PROCESSING = "PROCESSING"
    DISABLED = "DISABLED"
    FAILED = "FAILED"


@dataclass
class WakeWordState:
    listening: bool = False
    processing: bool = False
    last_detected_at: Optional[float] = None
    consecutive_error_count: int = 0


class RestartPolicy:
    """
    Supervisor for the continuous listener: benign endings restart freely, real
    errors are counted and the listener gives up once the count exceeds the limit.
    Any recognised speech proves the microphone healthy and resets the count.
    """

    def __init__(self, max_consecutive_errors: int = 5):
        self.max_consecutive_errors = int(max_consecutive_errors)

    def should_give_up(self, code: CaptureErrorCode, consecutive_errors: int) -> bool:
        if code.is_benign():
            return False
        if code.is_fatal():
            return True
        return consecutive_errors > self.max_consecutive_errors


class WakeWordDetector(CaptureListener):
    """
    Listens continuously for the wake phrase and hands the microphone over on a match.

    The detector never turns the assistant on: it only re-arms itself while the
    orchestrator's run flag is set.
    """

    def __init__(
        self,
        capture: SpeechCapture,
        run_flag: RunFlagView,
        *,
        on_wake: WakeCallback,
        on_fatal: Optional[FatalCallback] = None,
        phrases: Sequence[str] = DEFAULT_WAKE_PHRASES,
        max_consecutive_errors: int = 5,
        restart_delay_seconds: float = 0.3,
        language: str = "en-US",
        event_logger=None,
        logger=None,
        clock: Callable[[], float] = time.time,
    ):
        self.capture = capture
        self.run_flag = run_flag
        self.on_wake = on_wake
        self.on_fatal = on_fatal
        self.phrases: List[str] = [p.lower().strip() for p in phrases if p and p.strip()]
        self.policy = RestartPolicy(max_consecutive_errors)
        self.restart_delay_seconds = float(restart_delay_seconds)
        self.language = language
        self.event_logger = event_logger or NullEventLogger()
        self.logger = logger or get_logger("voice.wakeword")
        self.clock = clock

        self._lock = threading.RLock()
        self._state = WakeWordState()
        self._disabled = False
        self._failed = False
        self._restart_timer: Optional[threading.Timer] = None
        self._released = threading.Event()
        self._released.set()

    # ---- public API ----
    def get_state(self) -> WakeWordState:
        with self._lock:
            return dataclasses.replace(self._state)

    def phase(self) -> WakePhase:
        with self._lock:
            if self._failed:
                return WakePhase.FAILED
            if self._disabled:
                return WakePhase.DISABLED
            if self._state.processing:
                return WakePhase.PROCESSING
            if self._state.listening:
                return WakePhase.LISTENING
            return WakePhase.IDLE

    def start(self) -> bool:
        with self._lock:
            if self._disabled or self._failed:
                return False
            if not self.run_flag.is_running():
                return False
            if self._state.listening:
                return True
            self._state.listening = True
            self._released.clear()
        try:
            self.capture.start(RecognitionConfig(continuous=True, interim_results=True, language=self.language), self)
        except CaptureBusyError:
            with self._lock:
                self._state.listening = False
                self._released.set()
            self.logger.info("Wake listener: microphone busy, retrying shortly.")
            self.restart()
            return False
        except Exception as e:  # noqa: BLE001
            with self._lock:
                self._state.listening = False
                self._released.set()
            self.logger.error(f"Wake listener failed to start: {e}")
            self._fail(WakeWordError(error=str(e)))
            return False
        self.event_logger.log("wake", "wake.listen.start", {"phrases": len(self.phrases)})
        return True

    def stop(self) -> None:
        self._cancel_restart()
        with self._lock:
            listening = self._state.listening
        if listening:
            self.capture.stop()

    def restart(self) -> None:
        """Debounced re-arm: gives a finished command session time to release the microphone."""
        with self._lock:
            self._state.processing = False
            self._cancel_restart_locked()
            if self.restart_delay_seconds <= 0:
                timer = None
            else:
                timer = threading.Timer(self.restart_delay_seconds, self._restart_now)
                timer.daemon = True
                self._restart_timer = timer
        if timer is None:
            self._restart_now()
        else:
            timer.start()

    def suspend(self) -> None:
        """Release the microphone for a manually activated session; restart() re-arms."""
        with self._lock:
            self._cancel_restart_locked()
            self._state.processing = True
            listening = self._state.listening
        if listening:
            self.capture.stop()

    def disable(self) -> None:
        with self._lock:
            self._disabled = True
        self.stop()

    def enable(self) -> None:
        with self._lock:
            self._disabled = False
            self._failed = False
            self._state.consecutive_error_count = 0
            self._state.processing = False
        self.start()

    def wait_released(self, timeout: float) -> bool:
        """Block until this detector no longer holds the microphone."""
        return self._released.wait(timeout=timeout)

    # ---- capture callbacks ----
    def on_transcript(self, transcript: Transcript) -> None:
        if not transcript.is_final:
            return
        with self._lock:
            if self._state.processing or self._disabled:
                return
            self._state.consecutive_error_count = 0
        phrase = find_phrase(transcript.text, self.phrases)
        if phrase is None:
            self.logger.debug(f"Wake listener heard: {transcript.text!r}")
            return

        with self._lock:
            if self._state.processing:
                return
            self._state.processing = True
            self._state.listening = False
            self._state.last_detected_at = self.clock()
        self.capture.stop()
        self.event_logger.log("wake", "wake.detected", {"phrase": phrase})
        self.logger.info(f"Wake phrase detected: {phrase}")
        try:
            self.on_wake(phrase)
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"Wake callback failed: {e}")

    def on_error(self, code: CaptureErrorCode, message: str) -> None:
        if code.is_benign():
            self.logger.debug(f"Wake listener: {code.value}")
            return
        with self._lock:
            self._state.consecutive_error_count += 1
            count = self._state.consecutive_error_count
        self.event_logger.log("wake", "wake.error", {"code": code.value, "count": count, "message": message})
        self.logger.warning(f"Wake listener error {code.value} ({count}): {message}")
        if not self.policy.should_give_up(code, count):
            return
        if code in {CaptureErrorCode.NOT_ALLOWED, CaptureErrorCode.AUDIO_CAPTURE}:
            self._fail(MicrophoneUnavailableError(code=code.value))
        else:
            self._fail(WakeWordError(f"Wake word listening stopped: {code.value}.", code=code.value, count=count))

    def on_end(self) -> None:
        with self._lock:
            self._state.listening = False
            should_restart = (
                self.run_flag.is_running()
                and not self._disabled
                and not self._failed
                and not self._state.processing
            )
        self._released.set()
        if should_restart:
            self.logger.debug("Wake listener ended; restarting.")
            self.start()

    # ---- internals ----
    def _restart_now(self) -> None:
        with self._lock:
            self._restart_timer = None
            if self._disabled or self._failed:
                return
        if self.run_flag.is_running():
            self.start()

    def _cancel_restart(self) -> None:
        with self._lock:
            self._cancel_restart_locked()

    def _cancel_restart_locked(self) -> None:
        if self._restart_timer is not None:
            self._restart_timer.cancel()
            self._restart_timer = None

    def _fail(self, err: LaraError) -> None:
        with self._lock:
            if self._failed:
                return
            self._failed = True
            self._cancel_restart_locked()
        self.event_logger.log("wake", "wake.fatal", err.to_dict())
        self.logger.error(f"Wake listener gave up: {err.user_message}")
        if self.on_fatal is not None:
            try:
                self.on_fatal(err)
            except Exception as e:  # noqa: BLE001
                self.logger.error(f"Fatal callback failed: {e}")
