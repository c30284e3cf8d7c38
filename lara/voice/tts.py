from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import Optional

from lara.core.events import NullEventLogger
from lara.core.logger import get_logger
from lara.voice.errors import DependencyMissing, TTSError


class TTSEngine:
    name: str

    def is_available(self) -> bool: ...
    def speak(self, text: str) -> None: ...
    def interrupt(self) -> None: ...


class NullTTSEngine(TTSEngine):
    name = "none"

    def is_available(self) -> bool:
        return True

    def speak(self, text: str) -> None:
        return

    def interrupt(self) -> None:
        return


@dataclass
class Pyttsx3TTSEngine(TTSEngine):
    name: str = "pyttsx3"
    rate: Optional[int] = None
    prefer_female_voice: bool = True

    def __post_init__(self) -> None:
        self._engine = None

    def is_available(self) -> bool:
        try:
            import pyttsx3  # type: ignore  # noqa: F401

            return True
        except Exception:
            return False

    def _get_engine(self):
        if self._engine is not None:
            return self._engine
        try:
            import pyttsx3  # type: ignore
        except Exception as e:
            raise DependencyMissing(f"pyttsx3 not available: {e}") from e
        engine = pyttsx3.init()
        if self.rate is not None:
            engine.setProperty("rate", int(self.rate))
        if self.prefer_female_voice:
            for voice in engine.getProperty("voices") or []:
                name = str(getattr(voice, "name", "")).lower()
                if any(k in name for k in ("female", "woman", "samantha", "victoria", "karen", "moira", "zira")):
                    engine.setProperty("voice", voice.id)
                    break
        self._engine = engine
        return self._engine

    def speak(self, text: str) -> None:
        if not text:
            return
        try:
            eng = self._get_engine()
            eng.say(text)
            eng.runAndWait()
        except DependencyMissing:
            raise
        except Exception as e:
            raise TTSError(f"pyttsx3 TTS failed: {e}") from e

    def interrupt(self) -> None:
        if self._engine is None:
            return
        try:
            self._engine.stop()
        except Exception as e:  # noqa: BLE001
            get_logger("voice.tts").debug(f"pyttsx3 interrupt failed: {e}")


def build_tts_engine(name: str, logger=None) -> TTSEngine:
    if (name or "").lower() == "pyttsx3":
        engine = Pyttsx3TTSEngine()
        if engine.is_available():
            return engine
        (logger or get_logger("voice.tts")).warning("pyttsx3 is not installed; spoken replies are disabled.")
    return NullTTSEngine()


class SpeechOutput:
    """
    Dedicated playback thread. speak() enqueues an utterance and waits for it;
    cancel() drops everything queued and interrupts the current utterance.
    """

    def __init__(self, engine: TTSEngine, logger=None, event_logger=None, wait_timeout_seconds: float = 30.0):
        self.engine = engine
        self.logger = logger or get_logger("voice.tts")
        self.event_logger = event_logger or NullEventLogger()
        self.wait_timeout_seconds = float(wait_timeout_seconds)
        self._q: queue.Queue = queue.Queue()
        self._generation = 0
        self._gen_lock = threading.Lock()
        self._closed = threading.Event()
        self._t = threading.Thread(target=self._run, name="tts", daemon=True)
        self._t.start()

    def speak(self, trace_id: str, text: str) -> bool:
        """Returns True if the utterance finished, False if it was cancelled, failed or timed out."""
        if not text or self._closed.is_set():
            return False
        with self._gen_lock:
            gen = self._generation
        done = threading.Event()
        outcome = {"ok": False}
        self._q.put((gen, trace_id, text, done, outcome))
        done.wait(timeout=self.wait_timeout_seconds)
        return bool(outcome["ok"])

    def cancel(self) -> None:
        with self._gen_lock:
            self._generation += 1
        while True:
            try:
                item = self._q.get_nowait()
            except queue.Empty:
                break
            if item is not None:
                item[3].set()
        self.engine.interrupt()

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self.cancel()
        self._q.put(None)
        if self._t is not threading.current_thread():
            self._t.join(timeout=2.0)

    def _run(self) -> None:
        while True:
            item = self._q.get()
            if item is None:
                return
            gen, trace_id, text, done, outcome = item
            try:
                with self._gen_lock:
                    stale = gen != self._generation
                if stale:
                    continue
                self.engine.speak(text)
                with self._gen_lock:
                    outcome["ok"] = gen == self._generation
                self.event_logger.log(trace_id, "tts.ok", {"backend": self.engine.name, "chars": len(text)})
            except Exception as e:  # noqa: BLE001
                self.event_logger.log(trace_id, "tts.fail", {"backend": self.engine.name, "error": str(e)})
                self.logger.error(f"[{trace_id}] TTS error: {e}")
            finally:
                done.set()
