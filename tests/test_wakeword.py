from __future__ import annotations

import time

import pytest

from lara.core.errors import MicrophoneUnavailableError, WakeWordError
from lara.core.run_state import RunFlag
from lara.voice.errors import CaptureErrorCode
from lara.voice.wakeword import RestartPolicy, WakePhase, WakeWordDetector
from tests.helpers.fakes import HOLD, DummyLogger, MemoryEventLogger, ScriptedSpeechCapture, error, final, partial, wait_until


def _detector(cap, flag=None, **kw):
    flag = flag or RunFlag()
    flag.set_running()
    wakes = []
    fatals = []
    seen_at_callback = []

    def on_wake(phrase):
        st = det.get_state()
        seen_at_callback.append({"listening": st.listening, "processing": st.processing, "stop_calls": cap.stop_calls})
        wakes.append(phrase)

    det = WakeWordDetector(
        cap,
        flag.view(),
        on_wake=on_wake,
        on_fatal=fatals.append,
        restart_delay_seconds=kw.pop("restart_delay_seconds", 0),
        event_logger=kw.pop("event_logger", MemoryEventLogger()),
        logger=DummyLogger(),
        **kw,
    )
    return det, flag, wakes, fatals, seen_at_callback


@pytest.mark.parametrize("utterance", ["hey lara", "Hey, Laura!", "okay so hey lora play something", "HEY LAWRA"])
def test_wake_phrase_variations_fire_exactly_once(utterance):
    cap = ScriptedSpeechCapture([[final(utterance), final("hey lara again"), HOLD]])
    det, flag, wakes, _fatals, seen = _detector(cap)
    det.start()
    assert wait_until(lambda: wakes)
    time.sleep(0.05)
    assert len(wakes) == 1
    # Listening was already off and the microphone stop requested when the callback ran.
    assert seen[0]["listening"] is False
    assert seen[0]["processing"] is True
    assert seen[0]["stop_calls"] >= 1
    assert det.wait_released(2.0)
    assert det.phase() == WakePhase.PROCESSING
    assert det.get_state().last_detected_at is not None
    assert not cap.is_active()


def test_partial_transcripts_do_not_wake():
    cap = ScriptedSpeechCapture([[partial("hey lara"), HOLD]])
    det, flag, wakes, _f, _s = _detector(cap)
    det.start()
    assert wait_until(lambda: cap.emitted)
    assert wakes == []
    det.disable()


def test_other_speech_keeps_listening():
    cap = ScriptedSpeechCapture([[final("what time is it"), final("hello there"), HOLD]])
    det, flag, wakes, _f, _s = _detector(cap)
    det.start()
    assert wait_until(lambda: len(cap.emitted) == 2)
    assert wakes == []
    assert det.phase() == WakePhase.LISTENING
    assert cap.is_active()
    det.disable()
    assert det.wait_released(2.0)


def test_benign_end_restarts_listening():
    cap = ScriptedSpeechCapture([[error(CaptureErrorCode.NO_SPEECH)], [], [final("hey lara")]])
    det, flag, wakes, fatals, _s = _detector(cap)
    det.start()
    assert wait_until(lambda: wakes)
    assert cap.runs_started() == 3
    assert fatals == []
    assert det.get_state().consecutive_error_count == 0


def test_gives_up_after_more_than_five_errors():
    events = MemoryEventLogger()
    cap = ScriptedSpeechCapture([[error(CaptureErrorCode.NETWORK)] for _ in range(6)])
    det, flag, wakes, fatals, _s = _detector(cap, event_logger=events)
    det.start()
    assert wait_until(lambda: fatals)
    assert isinstance(fatals[0], WakeWordError)
    assert cap.runs_started() == 6
    assert det.phase() == WakePhase.FAILED
    assert len(events.of("wake.error")) == 6
    time.sleep(0.05)
    assert cap.runs_started() == 6


def test_recognised_speech_resets_error_count():
    cap = ScriptedSpeechCapture(
        [[error(CaptureErrorCode.NETWORK)] for _ in range(4)]
        + [[final("just talking")]]
        + [[error(CaptureErrorCode.NETWORK)] for _ in range(4)]
        + [[final("hey lara")]]
    )
    det, flag, wakes, fatals, _s = _detector(cap)
    det.start()
    assert wait_until(lambda: wakes)
    assert fatals == []


def test_permission_denied_is_fatal_immediately():
    cap = ScriptedSpeechCapture([[error(CaptureErrorCode.NOT_ALLOWED)]])
    det, flag, wakes, fatals, _s = _detector(cap)
    det.start()
    assert wait_until(lambda: fatals)
    assert isinstance(fatals[0], MicrophoneUnavailableError)
    assert cap.runs_started() == 1


def test_does_not_start_or_restart_without_run_flag():
    cap = ScriptedSpeechCapture([[("sleep", 0.2), error(CaptureErrorCode.NO_SPEECH)]])
    flag = RunFlag()
    det, flag, wakes, _f, _s = _detector(cap, flag=flag)
    flag.clear()
    assert det.start() is False
    assert cap.runs_started() == 0

    flag.set_running()
    assert det.start() is True
    flag.clear()
    assert det.wait_released(2.0)
    time.sleep(0.05)
    assert cap.runs_started() == 1


def test_disable_and_enable():
    cap = ScriptedSpeechCapture()
    det, flag, wakes, _f, _s = _detector(cap)
    det.start()
    assert wait_until(lambda: cap.runs_started() == 1)
    det.disable()
    assert det.wait_released(2.0)
    assert det.phase() == WakePhase.DISABLED
    assert det.start() is False

    det.enable()
    assert wait_until(lambda: cap.runs_started() == 2)
    assert det.phase() == WakePhase.LISTENING
    det.disable()


def test_restart_is_debounced():
    cap = ScriptedSpeechCapture([[final("hey lara")]])
    det, flag, wakes, _f, _s = _detector(cap, restart_delay_seconds=0.2)
    det.start()
    assert wait_until(lambda: wakes)
    assert det.wait_released(2.0)
    det.restart()
    det.restart()
    time.sleep(0.05)
    assert cap.runs_started() == 1
    assert wait_until(lambda: cap.runs_started() == 2)
    time.sleep(0.3)
    assert cap.runs_started() == 2
    det.disable()


def test_restart_policy():
    p = RestartPolicy(5)
    assert p.should_give_up(CaptureErrorCode.NO_SPEECH, 100) is False
    assert p.should_give_up(CaptureErrorCode.ABORTED, 100) is False
    assert p.should_give_up(CaptureErrorCode.NOT_ALLOWED, 1) is True
    assert p.should_give_up(CaptureErrorCode.NETWORK, 5) is False
    assert p.should_give_up(CaptureErrorCode.NETWORK, 6) is True
