from __future__ import annotations

import json
import os
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Optional

from lara.core.errors import CaptureBusyError
from lara.core.logger import get_logger
from lara.voice.errors import AudioError, CaptureError, CaptureErrorCode, DependencyMissing, ModelNotConfigured


@dataclass(frozen=True)
class Transcript:
    text: str
    is_final: bool
    captured_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class RecognitionConfig:
    continuous: bool = True
    interim_results: bool = False
    language: str = "en-US"


class CaptureListener:
    """
    Callbacks for one capture run. All of them are invoked on the capture thread.
    on_end is delivered exactly once per run, after the microphone is released.
    """

    def on_start(self) -> None:
        return

    def on_transcript(self, transcript: Transcript) -> None:
        return

    def on_error(self, code: CaptureErrorCode, message: str) -> None:
        return

    def on_end(self) -> None:
        return


class CaptureRun:
    def __init__(self, run_id: int, config: RecognitionConfig, listener: CaptureListener, logger):
        self.id = run_id
        self.config = config
        self.listener = listener
        self.logger = logger
        self.stop_event = threading.Event()
        self.abort_event = threading.Event()
        self.ended = threading.Event()
        self.thread: Optional[threading.Thread] = None

    def stop_requested(self) -> bool:
        return self.stop_event.is_set()

    def aborted(self) -> bool:
        return self.abort_event.is_set()

    def should_halt(self) -> bool:
        return self.stop_event.is_set() or self.abort_event.is_set()

    def emit(self, text: str, is_final: bool) -> None:
        # Nothing reaches the consumer after an abort.
        if self.aborted():
            return
        text = (text or "").strip()
        if not text:
            return
        self.deliver(self.listener.on_transcript, Transcript(text=text, is_final=is_final))

    def deliver(self, fn: Callable[..., None], *args) -> None:
        try:
            fn(*args)
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"capture listener {getattr(fn, '__name__', fn)} raised: {e}")


class SpeechCapture(ABC):
    """
    Thread-per-run speech capture lifecycle.

    Subclasses implement _capture(run), which must hold the microphone only inside
    a context manager so it is released on every exit path. The base class maps
    failures onto CaptureErrorCode, absorbs abort noise and guarantees on_end.
    """

    name = "base"

    def __init__(self, logger=None):
        self.logger = logger or get_logger("voice.capture")
        self._lock = threading.Lock()
        self._run: Optional[CaptureRun] = None
        self._seq = 0

    def is_active(self) -> bool:
        with self._lock:
            return self._run is not None

    def status(self) -> str:
        return f"capture={self.name} active={self.is_active()}"

    def start(self, config: RecognitionConfig, listener: CaptureListener) -> None:
        with self._lock:
            if self._run is not None:
                raise CaptureBusyError(engine=self.name, active_run=self._run.id)
            self._seq += 1
            run = CaptureRun(self._seq, config, listener, self.logger)
            run.thread = threading.Thread(target=self._execute, args=(run,), name=f"capture-{self.name}-{run.id}", daemon=True)
            self._run = run
        run.thread.start()

    def stop(self) -> None:
        """Graceful: flush what was heard, then end. Safe when idle."""
        with self._lock:
            run = self._run
        if run is not None:
            run.stop_event.set()

    def abort(self, timeout: float = 2.0) -> None:
        """Hard stop: discard pending results and wait for the microphone to be released. Idempotent."""
        with self._lock:
            run = self._run
        if run is None:
            return
        run.abort_event.set()
        if run.thread is not threading.current_thread():
            run.ended.wait(timeout=timeout)

    @abstractmethod
    def _capture(self, run: CaptureRun) -> None:
        raise NotImplementedError

    def _execute(self, run: CaptureRun) -> None:
        try:
            run.deliver(run.listener.on_start)
            self._capture(run)
        except CaptureError as e:
            if not run.aborted():
                run.deliver(run.listener.on_error, e.code, str(e))
        except (DependencyMissing, ModelNotConfigured) as e:
            run.deliver(run.listener.on_error, CaptureErrorCode.SERVICE_NOT_AVAILABLE, str(e))
        except AudioError as e:
            if not run.aborted():
                run.deliver(run.listener.on_error, CaptureErrorCode.AUDIO_CAPTURE, str(e))
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"capture run {run.id} failed: {e}")
            if not run.aborted():
                run.deliver(run.listener.on_error, CaptureErrorCode.UNKNOWN, str(e))
        finally:
            if run.aborted():
                run.deliver(run.listener.on_error, CaptureErrorCode.ABORTED, "aborted")
            with self._lock:
                if self._run is run:
                    self._run = None
            run.deliver(run.listener.on_end)
            run.ended.set()


def _map_stream_error(e: Exception) -> CaptureError:
    msg = str(e).lower()
    if "permission" in msg or "denied" in msg or "not allowed" in msg:
        return CaptureError(CaptureErrorCode.NOT_ALLOWED, f"microphone permission denied: {e}")
    return CaptureError(CaptureErrorCode.AUDIO_CAPTURE, f"microphone unavailable: {e}")


def _result_text(raw: str, key: str = "text") -> str:
    try:
        obj = json.loads(raw or "{}")
    except json.JSONDecodeError:
        return ""
    return str(obj.get(key) or "").strip()


class VoskSpeechCapture(SpeechCapture):
    """
    Offline streaming recognition: sounddevice microphone stream fed into a Vosk KaldiRecognizer.
    """

    name = "vosk"

    def __init__(
        self,
        model_path: str,
        *,
        sample_rate: int = 16000,
        device_index: Optional[int] = None,
        no_speech_timeout_seconds: float = 8.0,
        speech_energy_threshold: float = 300.0,
        block_seconds: float = 0.25,
        logger=None,
    ):
        super().__init__(logger=logger)
        self.model_path = model_path
        self.sample_rate = int(sample_rate)
        self.device_index = device_index
        self.no_speech_timeout_seconds = float(no_speech_timeout_seconds)
        self.speech_energy_threshold = float(speech_energy_threshold)
        self.block_seconds = float(block_seconds)
        self._model = None
        self._model_lock = threading.Lock()

    def is_available(self) -> bool:
        return bool(self.model_path) and os.path.isdir(self.model_path)

    def status(self) -> str:
        return f"capture=vosk configured={self.is_available()} active={self.is_active()}"

    def _get_model(self):
        with self._model_lock:
            if self._model is not None:
                return self._model
            try:
                from vosk import Model  # type: ignore
            except Exception as e:
                raise DependencyMissing(f"vosk not available: {e}") from e
            if not self.is_available():
                raise ModelNotConfigured("Vosk model path not configured.")
            self._model = Model(self.model_path)
            return self._model

    def _capture(self, run: CaptureRun) -> None:
        try:
            import numpy as np  # type: ignore
            import sounddevice as sd  # type: ignore
            from vosk import KaldiRecognizer  # type: ignore
        except Exception as e:
            raise DependencyMissing(f"audio dependencies missing: {e}") from e

        model = self._get_model()
        rec = KaldiRecognizer(model, self.sample_rate)
        rec.SetWords(False)
        block = max(1, int(self.sample_rate * self.block_seconds))

        try:
            stream = sd.RawInputStream(
                samplerate=self.sample_rate,
                blocksize=block,
                dtype="int16",
                channels=1,
                device=self.device_index,
            )
        except Exception as e:
            raise _map_stream_error(e) from e

        last_voiced = time.monotonic()
        with stream:
            while not run.should_halt():
                try:
                    data, _overflowed = stream.read(block)
                except Exception as e:
                    raise AudioError(f"microphone read failed: {e}") from e
                chunk = bytes(data)

                samples = np.frombuffer(chunk, dtype=np.int16)
                if samples.size:
                    rms = float(np.sqrt(np.mean(samples.astype(np.float64) ** 2)))
                    if rms >= self.speech_energy_threshold:
                        last_voiced = time.monotonic()

                if rec.AcceptWaveform(chunk):
                    text = _result_text(rec.Result())
                    if text:
                        run.emit(text, True)
                        if not run.config.continuous:
                            return
                elif run.config.interim_results:
                    run.emit(_result_text(rec.PartialResult(), key="partial"), False)

                if (time.monotonic() - last_voiced) >= self.no_speech_timeout_seconds:
                    text = _result_text(rec.FinalResult())
                    if text:
                        run.emit(text, True)
                        return
                    raise CaptureError(CaptureErrorCode.NO_SPEECH, "no speech detected")

            if run.stop_requested() and not run.aborted():
                run.emit(_result_text(rec.FinalResult()), True)
