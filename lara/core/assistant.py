from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence

from lara.core.action_router import ActionResult, ActionRouter
from lara.core.config import DEFAULT_WAKE_PHRASES
from lara.core.errors import LaraError, MicrophoneUnavailableError, SessionBusyError
from lara.core.events import NullEventLogger
from lara.core.intent_classifier import FallbackIntentClassifier
from lara.core.intents import Intent, intent_to_dict, unknown_intent
from lara.core.logger import get_logger
from lara.core.run_state import RunFlag
from lara.voice.capture import SpeechCapture
from lara.voice.session import CommandSession, SessionOutcome, SessionResult
from lara.voice.tts import SpeechOutput
from lara.voice.wakeword import WakeWordDetector


Navigator = Callable[[str], None]
ErrorCallback = Callable[[LaraError], None]

NO_SPEECH_REPLY = "Sorry, I did not hear that."


class AssistantState(str, Enum):
    STOPPED = "STOPPED"
    WAKE_LISTENING = "WAKE_LISTENING"
    COMMAND_LISTENING = "COMMAND_LISTENING"
    CLASSIFYING = "CLASSIFYING"
    ROUTING = "ROUTING"
    NAVIGATING = "NAVIGATING"


@dataclass(frozen=True)
class CommandOutcome:
    trace_id: str
    transcript: str
    intent: Intent
    result: ActionResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "transcript": self.transcript,
            "intent": intent_to_dict(self.intent),
            "result": self.result.model_dump(),
        }


class AssistantOrchestrator:
    """
    Owns the run flag and the worker thread that drives
    wake -> command -> classify -> route -> (navigate) -> wake.

    stop() works from any state and from any thread, including the capture thread
    and the worker itself. A cycle that is mid-classification when stop() lands
    finishes its current call and then discards the result.

    Each start() gets a new generation with its own worker. A worker from an
    older generation may still be finishing a slow call after a restart; it holds
    nothing the new worker needs and acts on nothing once its generation is gone.
    """

    def __init__(
        self,
        *,
        capture: SpeechCapture,
        classifier: FallbackIntentClassifier,
        router: ActionRouter,
        navigator: Optional[Navigator] = None,
        speech: Optional[SpeechOutput] = None,
        wake_phrases: Sequence[str] = DEFAULT_WAKE_PHRASES,
        wake_max_consecutive_errors: int = 5,
        wake_restart_delay_seconds: float = 0.3,
        command_timeout_seconds: float = 10.0,
        language: str = "en-US",
        one_shot: bool = False,
        restart_delay_seconds: float = 0.5,
        greeting: str = "How can I help you?",
        speak_confirmations: bool = True,
        release_timeout_seconds: float = 2.0,
        join_timeout_seconds: float = 2.0,
        on_error: Optional[ErrorCallback] = None,
        event_logger=None,
        logger=None,
    ):
        self.capture = capture
        self.classifier = classifier
        self.router = router
        self.navigator = navigator
        self.speech = speech
        self.command_timeout_seconds = float(command_timeout_seconds)
        self.language = language
        self.one_shot = bool(one_shot)
        self.restart_delay_seconds = float(restart_delay_seconds)
        self.greeting = greeting
        self.speak_confirmations = bool(speak_confirmations)
        self.release_timeout_seconds = float(release_timeout_seconds)
        self.join_timeout_seconds = float(join_timeout_seconds)
        self.on_error = on_error
        self.event_logger = event_logger or NullEventLogger()
        self.logger = logger or get_logger("assistant")

        self._flag = RunFlag()
        self._state = AssistantState.STOPPED
        self._state_lock = threading.Lock()
        self._lifecycle_lock = threading.Lock()
        self._lock = threading.Lock()
        self._wake_event = threading.Event()
        self._generation = 0
        self._thread: Optional[threading.Thread] = None
        self._trigger: Optional[str] = None
        self._cycle_active = False
        self._last_error: Optional[Dict[str, Any]] = None
        self._last_command: Optional[CommandOutcome] = None

        self.detector = WakeWordDetector(
            capture,
            self._flag.view(),
            on_wake=self._on_wake,
            on_fatal=self._on_fatal,
            phrases=wake_phrases,
            max_consecutive_errors=wake_max_consecutive_errors,
            restart_delay_seconds=wake_restart_delay_seconds,
            language=language,
            event_logger=self.event_logger,
            logger=get_logger("voice.wakeword"),
        )

    # ---- controls ----
    def is_running(self) -> bool:
        return self._flag.is_running()

    def get_state(self) -> AssistantState:
        with self._state_lock:
            return self._state

    def start(self) -> bool:
        """No-op (False) when already running."""
        with self._lifecycle_lock:
            if self._flag.is_running():
                return False
            self._generation += 1
            gen = self._generation
            with self._lock:
                self._trigger = None
                self._cycle_active = False
                self._last_error = None
            self._wake_event.clear()
            self._flag.set_running()
            thread = threading.Thread(target=self._run, args=(gen,), name=f"lara-assistant-{gen}", daemon=True)
            self._thread = thread
        self._set_state("assistant", AssistantState.WAKE_LISTENING, {"one_shot": self.one_shot})
        thread.start()
        self.detector.enable()
        self.logger.info("Assistant started.")
        return True

    def stop(self) -> bool:
        """
        Hard stop. Safe from any state, any thread, any number of times.
        Returns True only for the call that actually stopped a running assistant.
        """
        with self._lifecycle_lock:
            was_running = self._flag.is_running()
            # Cleared first so nothing re-arms listening behind the abort below.
            self._flag.clear()
            thread = self._thread
            self._thread = None
        self._wake_event.set()

        self.capture.abort(timeout=self.release_timeout_seconds)
        if self.speech is not None:
            self.speech.cancel()
        self.detector.disable()

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.join_timeout_seconds)
            if thread.is_alive():
                self.logger.warning("Assistant worker still finishing a call; its result will be discarded.")
        if was_running:
            self._set_state("assistant", AssistantState.STOPPED)
            self.logger.info("Assistant stopped.")
        return was_running

    def restart(self) -> bool:
        self.stop()
        if self.restart_delay_seconds > 0:
            time.sleep(self.restart_delay_seconds)
        return self.start()

    def activate(self) -> str:
        """
        Push-to-talk: open one command session without the wake phrase.
        Starts the assistant if it is stopped. Raises SessionBusyError while a
        command is already being captured or processed.
        """
        if not self._flag.is_running():
            self.start()
        with self._lock:
            if self._cycle_active or self._trigger is not None:
                raise SessionBusyError(state=self.get_state().value)
            self._trigger = "manual"
        trace_id = uuid.uuid4().hex
        self.event_logger.log(trace_id, "assistant.activate", {})
        self.detector.suspend()
        self._wake_event.set()
        return trace_id

    def run_text(self, text: str, trace_id: Optional[str] = None) -> CommandOutcome:
        """Classify and route a typed command. Never touches the microphone."""
        trace_id = trace_id or uuid.uuid4().hex
        intent = self._classify(trace_id, text)
        result = self.router.route(intent, trace_id=trace_id)
        target = result.navigation_target
        if target:
            self._navigate(trace_id, target)
        outcome = CommandOutcome(trace_id=trace_id, transcript=text, intent=intent, result=result)
        with self._lock:
            self._last_command = outcome
        return outcome

    def status(self) -> Dict[str, Any]:
        with self._lock:
            last_error = dict(self._last_error) if self._last_error else None
            last_command = self._last_command.to_dict() if self._last_command else None
            busy = self._cycle_active
        wake = self.detector.get_state()
        return {
            "state": self.get_state().value,
            "running": self._flag.is_running(),
            "one_shot": self.one_shot,
            "busy": busy,
            "last_error": last_error,
            "last_command": last_command,
            "wake": {
                "phase": self.detector.phase().value,
                "listening": wake.listening,
                "processing": wake.processing,
                "last_detected_at": wake.last_detected_at,
                "consecutive_error_count": wake.consecutive_error_count,
            },
            "capture": self.capture.status(),
            "classifier": self.classifier.status(),
        }

    def close(self) -> None:
        self.stop()
        if self.speech is not None:
            self.speech.close()
        self.router.close()
        self.classifier.close()

    # ---- detector callbacks (capture thread) ----
    def _on_wake(self, phrase: str) -> None:
        if not self._flag.is_running():
            return
        with self._lock:
            if self._trigger is None:
                self._trigger = "wake"
        self._wake_event.set()

    def _on_fatal(self, err: LaraError) -> None:
        self._report_fatal("wake", err)

    # ---- worker ----
    def _is_current(self, gen: int) -> bool:
        return self._flag.is_running() and gen == self._generation

    def _run(self, gen: int) -> None:
        while self._is_current(gen):
            self._wake_event.wait(timeout=0.25)
            if not self._is_current(gen):
                break
            if not self._wake_event.is_set():
                continue
            self._wake_event.clear()
            # One worker per generation, so cycles never overlap within one.
            with self._lock:
                if gen != self._generation:
                    break
                source = self._trigger
                if source is None:
                    continue
                self._cycle_active = True
                self._trigger = None
            try:
                self._cycle(gen, source)
            except Exception as e:  # noqa: BLE001
                self.logger.error(f"Assistant cycle crashed: {e}")
                self._finish_cycle(gen, "assistant")
            finally:
                with self._lock:
                    if gen == self._generation:
                        self._cycle_active = False

    def _cycle(self, gen: int, source: str) -> None:
        trace_id = uuid.uuid4().hex
        self._set_state(trace_id, AssistantState.COMMAND_LISTENING, {"trigger": source}, gen=gen)

        # The detector must have released the microphone before the session takes it.
        if not self.detector.wait_released(self.release_timeout_seconds) and self._is_current(gen):
            self.logger.warning(f"[{trace_id}] wake listener did not release the microphone; aborting it")
            self.capture.abort(timeout=self.release_timeout_seconds)
        if not self._is_current(gen):
            return

        if self.greeting:
            self._speak(trace_id, self.greeting, gen)
            if not self._is_current(gen):
                return

        session = CommandSession(
            self.capture,
            self._flag.view(),
            trace_id=trace_id,
            timeout_seconds=self.command_timeout_seconds,
            language=self.language,
            event_logger=self.event_logger,
            logger=get_logger("voice.session"),
        )
        result = session.run()
        if self._is_current(gen) and self.capture.is_active():
            # Timed-out session whose engine never ended on its own.
            self.capture.abort(timeout=self.release_timeout_seconds)
        if not self._is_current(gen):
            return

        if not result.has_text:
            self._handle_empty_session(gen, trace_id, result)
            return

        self._set_state(trace_id, AssistantState.CLASSIFYING, {"text_len": len(result.text)}, gen=gen)
        intent = self._classify(trace_id, result.text)
        if not self._is_current(gen):
            self.event_logger.log(trace_id, "assistant.cycle.discarded", {"after": "classify"})
            return

        self._set_state(trace_id, AssistantState.ROUTING, {"intent": intent.kind}, gen=gen)
        action = self.router.route(intent, trace_id=trace_id)
        if not self._is_current(gen):
            self.event_logger.log(trace_id, "assistant.cycle.discarded", {"after": "route"})
            return

        target = action.navigation_target
        if target:
            self._set_state(trace_id, AssistantState.NAVIGATING, {"target": target}, gen=gen)
            self._navigate(trace_id, target)

        with self._lock:
            self._last_command = CommandOutcome(trace_id=trace_id, transcript=result.text, intent=intent, result=action)
        # Navigation may tear the assistant down (page unload calls stop()).
        if not self._is_current(gen):
            self.event_logger.log(trace_id, "assistant.cycle.discarded", {"after": "navigate" if target else "route"})
            return
        if self.speak_confirmations and action.message:
            self._speak(trace_id, action.message, gen)
        self._finish_cycle(gen, trace_id)

    def _handle_empty_session(self, gen: int, trace_id: str, result: SessionResult) -> None:
        if result.outcome == SessionOutcome.FAILED and result.error_code is not None and result.error_code.is_fatal():
            self._report_fatal(trace_id, MicrophoneUnavailableError(code=result.error_code.value, message=result.message))
            return
        if result.outcome == SessionOutcome.FAILED:
            self.logger.warning(f"[{trace_id}] command capture failed: {result.message}")
        if result.outcome != SessionOutcome.CANCELLED:
            self._speak(trace_id, NO_SPEECH_REPLY, gen)
        self._finish_cycle(gen, trace_id)

    def _finish_cycle(self, gen: int, trace_id: str) -> None:
        if not self._is_current(gen):
            return
        if self.one_shot:
            self.event_logger.log(trace_id, "assistant.one_shot.done", {})
            self.stop()
            return
        self._set_state(trace_id, AssistantState.WAKE_LISTENING, gen=gen)
        self.detector.restart()

    # ---- helpers ----
    def _classify(self, trace_id: str, text: str) -> Intent:
        try:
            return self.classifier.classify(text, trace_id=trace_id)
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"[{trace_id}] classifier raised: {e}")
            return unknown_intent(text)

    def _navigate(self, trace_id: str, target: str) -> None:
        self.event_logger.log(trace_id, "assistant.navigate", {"target": target})
        if self.navigator is None:
            self.logger.info(f"[{trace_id}] navigation requested with no navigator attached: {target}")
            return
        try:
            self.navigator(target)
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"[{trace_id}] navigation to {target} failed: {e}")

    def _speak(self, trace_id: str, text: str, gen: int) -> None:
        if self.speech is None or not text:
            return
        if not self._is_current(gen):
            self.event_logger.log(trace_id, "assistant.speech.dropped", {"chars": len(text)})
            return
        self.speech.speak(trace_id, text)

    def _report_fatal(self, trace_id: str, err: LaraError) -> None:
        with self._lock:
            self._last_error = err.to_dict()
        self.event_logger.log(trace_id, "assistant.fatal", err.to_dict())
        self.logger.error(f"Assistant stopping: {err.user_message}")
        self.stop()
        if self.on_error is not None:
            try:
                self.on_error(err)
            except Exception as e:  # noqa: BLE001
                self.logger.error(f"Error callback failed: {e}")

    def _set_state(
        self,
        trace_id: str,
        new_state: AssistantState,
        details: Optional[Dict[str, Any]] = None,
        gen: Optional[int] = None,
    ) -> None:
        with self._state_lock:
            # A worker from a stopped generation must not overwrite STOPPED.
            if gen is not None and not self._is_current(gen):
                return
            old = self._state
            self._state = new_state
        if old != new_state:
            self.event_logger.log(trace_id, "assistant.state", {"from": old.value, "to": new_state.value, **(details or {})})
