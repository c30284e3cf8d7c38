from __future__ import annotations

import threading

from lara.voice.tts import NullTTSEngine, Pyttsx3TTSEngine, SpeechOutput, TTSEngine, build_tts_engine
from tests.helpers.fakes import DummyLogger, MemoryEventLogger, wait_until


class RecordingEngine(TTSEngine):
    name = "recording"

    def __init__(self, block: bool = False, fail: bool = False):
        self.spoken = []
        self.interrupts = 0
        self.fail = fail
        self.release = threading.Event()
        if not block:
            self.release.set()

    def is_available(self) -> bool:
        return True

    def speak(self, text: str) -> None:
        self.spoken.append(text)
        if self.fail:
            raise RuntimeError("speaker unplugged")
        self.release.wait(timeout=2.0)

    def interrupt(self) -> None:
        self.interrupts += 1
        self.release.set()


def test_speak_waits_for_playback():
    eng = RecordingEngine()
    events = MemoryEventLogger()
    out = SpeechOutput(eng, logger=DummyLogger(), event_logger=events)
    assert out.speak("t1", "Now playing Telugu Hits") is True
    assert eng.spoken == ["Now playing Telugu Hits"]
    assert events.of("tts.ok")[0]["details"]["chars"] == len("Now playing Telugu Hits")
    out.close()


def test_cancel_interrupts_current_utterance():
    eng = RecordingEngine(block=True)
    out = SpeechOutput(eng, logger=DummyLogger())
    result = {}
    t = threading.Thread(target=lambda: result.setdefault("ok", out.speak("t1", "a long sentence")))
    t.start()
    assert wait_until(lambda: eng.spoken)
    out.cancel()
    t.join(timeout=2.0)
    assert result["ok"] is False
    assert eng.interrupts == 1
    out.close()


def test_engine_failure_is_reported_not_raised():
    events = MemoryEventLogger()
    out = SpeechOutput(RecordingEngine(fail=True), logger=DummyLogger(), event_logger=events)
    assert out.speak("t1", "hello") is False
    assert events.of("tts.fail")
    out.close()


def test_closed_output_refuses_speech():
    out = SpeechOutput(NullTTSEngine(), logger=DummyLogger())
    out.close()
    out.close()
    assert out.speak("t1", "hello") is False


def test_build_tts_engine(monkeypatch):
    monkeypatch.setattr(Pyttsx3TTSEngine, "is_available", lambda self: True)
    assert isinstance(build_tts_engine("pyttsx3"), Pyttsx3TTSEngine)
    monkeypatch.setattr(Pyttsx3TTSEngine, "is_available", lambda self: False)
    logger = DummyLogger()
    assert isinstance(build_tts_engine("pyttsx3", logger=logger), NullTTSEngine)
    assert logger.records[0][0] == "warning"
    assert isinstance(build_tts_engine("none"), NullTTSEngine)
    assert isinstance(build_tts_engine(""), NullTTSEngine)
