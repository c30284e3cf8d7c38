from __future__ import annotations

import argparse
import json
import os
import sys
import time
from typing import Optional

import uvicorn

from lara.core.action_router import ActionRouter
from lara.core.assistant import AssistantOrchestrator, Navigator
from lara.core.config import LaraConfig, load_config
from lara.core.errors import ConfigError, LaraError
from lara.core.events import EventLogger
from lara.core.intent_classifier import build_classifier
from lara.core.logger import get_logger, setup_logging
from lara.core.time_resolution import make_clock
from lara.services.media import SpotifyMediaService
from lara.services.persistence import RestPersistenceService
from lara.voice.capture import SpeechCapture, VoskSpeechCapture
from lara.voice.tts import SpeechOutput, build_tts_engine
from lara.web.api import create_app


def build_assistant(
    cfg: LaraConfig,
    *,
    event_logger,
    navigator: Optional[Navigator] = None,
    capture: Optional[SpeechCapture] = None,
    speech: Optional[SpeechOutput] = None,
) -> AssistantOrchestrator:
    if capture is None:
        capture = VoskSpeechCapture(
            cfg.capture.vosk_model_path,
            sample_rate=cfg.capture.sample_rate,
            device_index=cfg.capture.mic_device_index,
            no_speech_timeout_seconds=cfg.capture.no_speech_timeout_seconds,
            speech_energy_threshold=cfg.capture.speech_energy_threshold,
            logger=get_logger("voice.capture"),
        )
    if speech is None:
        speech = SpeechOutput(
            build_tts_engine(cfg.assistant.tts_backend, logger=get_logger("voice.tts")),
            logger=get_logger("voice.tts"),
            event_logger=event_logger,
        )

    classifier = build_classifier(cfg.classifier, event_logger=event_logger, logger=get_logger("classifier"))
    router = ActionRouter(
        user_id=cfg.services.user_id,
        media=SpotifyMediaService(
            cfg.services.media_token,
            base_url=cfg.services.media_base_url,
            timeout_seconds=cfg.services.media_timeout_seconds,
        ),
        persistence=RestPersistenceService(
            cfg.services.persistence_base_url,
            api_key=cfg.services.persistence_api_key,
            timeout_seconds=cfg.services.persistence_timeout_seconds,
        ),
        event_logger=event_logger,
        logger=get_logger("router"),
        clock=make_clock(cfg.services.timezone),
    )
    return AssistantOrchestrator(
        capture=capture,
        classifier=classifier,
        router=router,
        navigator=navigator,
        speech=speech,
        wake_phrases=cfg.wake_word.phrases,
        wake_max_consecutive_errors=cfg.wake_word.max_consecutive_errors,
        wake_restart_delay_seconds=cfg.wake_word.restart_delay_seconds,
        command_timeout_seconds=cfg.session.command_timeout_seconds,
        language=cfg.capture.language,
        one_shot=cfg.assistant.one_shot,
        restart_delay_seconds=cfg.assistant.restart_delay_seconds,
        greeting=cfg.assistant.greeting,
        speak_confirmations=cfg.assistant.speak_confirmations,
        on_error=lambda err: print(f"Lara: {err.user_message}", file=sys.stderr),
        event_logger=event_logger,
        logger=get_logger("assistant"),
    )


def _print_navigation(path: str) -> None:
    print(f"-> navigate {path}")


def _run_voice_loop(assistant: AssistantOrchestrator, logger) -> int:
    assistant.start()
    print("Lara is listening. Say \"hey Lara\" followed by a command. Ctrl+C to quit.")
    try:
        while assistant.is_running():
            time.sleep(0.25)
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        assistant.close()
    last_error = assistant.status().get("last_error")
    return 1 if last_error else 0


def main() -> None:
    ap = argparse.ArgumentParser(description="Lara voice assistant (wake phrase, command capture, intent routing)")
    ap.add_argument("--config", default=os.path.join("config", "lara.json"), help="Path to the JSON config file.")
    ap.add_argument("--text", default=None, help="Classify and route one typed command, print the result and exit.")
    ap.add_argument("--once", action="store_true", help="One-shot mode: stop after a single command.")
    ap.add_argument("--serve", action="store_true", help="Run the HTTP control surface.")
    ap.add_argument("--host", default="127.0.0.1", help="Bind host for --serve.")
    ap.add_argument("--port", type=int, default=8000, help="Bind port for --serve.")
    args = ap.parse_args()

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print(f"Config error: {e.user_message} {json.dumps(e.to_dict()['context'], default=str)}", file=sys.stderr)
        raise SystemExit(2)
    if args.once:
        cfg.assistant.one_shot = True

    logger = setup_logging(cfg.log_dir)
    event_logger = EventLogger(os.path.join(cfg.log_dir, "events.jsonl"))

    if args.text is not None:
        assistant = build_assistant(cfg, event_logger=event_logger, navigator=_print_navigation)
        try:
            outcome = assistant.run_text(args.text)
            assistant.router.drain(timeout=cfg.services.persistence_timeout_seconds)
            print(json.dumps(outcome.to_dict(), indent=2, ensure_ascii=False))
        except LaraError as e:
            print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
            raise SystemExit(1)
        finally:
            assistant.close()
        return

    if args.serve:
        assistant = build_assistant(cfg, event_logger=event_logger)
        app = create_app(assistant, event_logger=event_logger, logger=get_logger("web"))
        try:
            uvicorn.run(app, host=args.host, port=int(args.port), log_level="info")
        finally:
            assistant.close()
        return

    assistant = build_assistant(cfg, event_logger=event_logger, navigator=_print_navigation)
    raise SystemExit(_run_voice_loop(assistant, logger))


if __name__ == "__main__":
    main()
