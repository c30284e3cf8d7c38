from __future__ import annotations

import importlib

import pytest


# Importable without the optional audio stack (vosk, sounddevice, numpy, pyttsx3).
CRITICAL_MODULES = [
    "lara.core.assistant",
    "lara.core.action_router",
    "lara.core.intent_classifier",
    "lara.voice.capture",
    "lara.voice.wakeword",
    "lara.voice.session",
    "lara.voice.tts",
    "lara.web.api",
    "app",
]


def test_suite_collects_imports():
    failures = []
    for module in CRITICAL_MODULES:
        try:
            importlib.import_module(module)
        except Exception as exc:
            failures.append(f"{module}: {exc.__class__.__name__}: {exc}")
    if failures:
        pytest.fail("Critical module import failures:\n" + "\n".join(failures))
