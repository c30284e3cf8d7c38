from __future__ import annotations

import pytest

from lara.core.errors import CaptureBusyError
from lara.voice.capture import RecognitionConfig, SpeechCapture, VoskSpeechCapture, _map_stream_error
from lara.voice.errors import CaptureErrorCode, DependencyMissing
from tests.helpers.fakes import HOLD, RecordingListener, ScriptedSpeechCapture, error, final, partial, wait_until


def test_natural_end_delivers_transcripts_then_single_on_end():
    cap = ScriptedSpeechCapture([[partial("play"), final("play telugu songs")]])
    lis = RecordingListener()
    cap.start(RecognitionConfig(continuous=False), lis)
    assert lis.end_event.wait(2.0)
    assert lis.started == 1
    assert [(t.text, t.is_final) for t in lis.transcripts] == [("play", False), ("play telugu songs", True)]
    assert lis.errors == []
    assert lis.ended == 1
    assert not cap.is_active()


def test_start_while_active_is_refused():
    cap = ScriptedSpeechCapture([[HOLD]])
    lis = RecordingListener()
    cap.start(RecognitionConfig(), lis)
    with pytest.raises(CaptureBusyError):
        cap.start(RecognitionConfig(), RecordingListener())
    cap.abort()
    assert lis.ended == 1


def test_abort_is_idempotent_and_safe_when_idle():
    cap = ScriptedSpeechCapture()
    cap.abort()
    cap.abort()
    cap.stop()

    lis = RecordingListener()
    cap.start(RecognitionConfig(), lis)
    assert wait_until(lambda: lis.started == 1)
    cap.abort()
    cap.abort()
    assert lis.ended == 1
    assert lis.errors == [CaptureErrorCode.ABORTED]
    assert not cap.is_active()


def test_abort_releases_before_returning_and_suppresses_late_results():
    cap = ScriptedSpeechCapture([[("sleep", 0.2), final("too late")]])
    lis = RecordingListener()
    cap.start(RecognitionConfig(), lis)
    cap.abort(timeout=2.0)
    assert lis.ended == 1
    assert lis.transcripts == []


def test_errors_are_reported_once_with_code():
    cap = ScriptedSpeechCapture([[error(CaptureErrorCode.NO_SPEECH)]])
    lis = RecordingListener()
    cap.start(RecognitionConfig(), lis)
    assert lis.end_event.wait(2.0)
    assert lis.errors == [CaptureErrorCode.NO_SPEECH]
    assert lis.ended == 1


def test_stop_is_graceful():
    cap = ScriptedSpeechCapture([[final("hey lara"), HOLD]])
    lis = RecordingListener()
    cap.start(RecognitionConfig(), lis)
    assert wait_until(lambda: lis.transcripts)
    cap.stop()
    assert lis.end_event.wait(2.0)
    assert lis.errors == []
    assert lis.transcripts[0].text == "hey lara"


def test_listener_exceptions_do_not_break_lifecycle():
    class Grumpy(RecordingListener):
        def on_transcript(self, transcript):
            raise RuntimeError("consumer bug")

    cap = ScriptedSpeechCapture([[final("hello")]])
    lis = Grumpy()
    cap.start(RecognitionConfig(), lis)
    assert lis.end_event.wait(2.0)
    assert lis.ended == 1


def test_missing_dependencies_map_to_service_not_available():
    class Broken(SpeechCapture):
        name = "broken"

        def _capture(self, run):
            raise DependencyMissing("no engine")

    cap = Broken()
    lis = RecordingListener()
    cap.start(RecognitionConfig(), lis)
    assert lis.end_event.wait(2.0)
    assert lis.errors == [CaptureErrorCode.SERVICE_NOT_AVAILABLE]


def test_vosk_without_model_is_service_not_available(tmp_path):
    cap = VoskSpeechCapture(str(tmp_path / "missing-model"))
    assert cap.is_available() is False
    lis = RecordingListener()
    cap.start(RecognitionConfig(), lis)
    assert lis.end_event.wait(5.0)
    assert lis.errors == [CaptureErrorCode.SERVICE_NOT_AVAILABLE]


def test_stream_error_mapping():
    assert _map_stream_error(RuntimeError("Permission denied")).code == CaptureErrorCode.NOT_ALLOWED
    assert _map_stream_error(RuntimeError("Invalid device")).code == CaptureErrorCode.AUDIO_CAPTURE


def test_base_capture_requires_an_engine():
    with pytest.raises(TypeError):
        SpeechCapture()


def test_error_codes_use_recognizer_names():
    assert [c.value for c in CaptureErrorCode] == [
        "no-speech",
        "aborted",
        "not-allowed",
        "audio-capture",
        "network-error",
        "service-not-available",
        "unknown",
    ]
    assert CaptureErrorCode("network-error") is CaptureErrorCode.NETWORK
    assert not CaptureErrorCode.NETWORK.is_benign()
    assert not CaptureErrorCode.NETWORK.is_fatal()
