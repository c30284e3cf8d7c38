from __future__ import annotations

import uuid
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lara import __version__
from lara.core.assistant import AssistantOrchestrator
from lara.core.errors import LaraError
from lara.core.events import NullEventLogger
from lara.core.intents import intent_to_dict
from lara.core.logger import get_logger
from lara.web.models import CommandResponse, ControlResponse, IntentResponse, TextRequest


_STATUS_BY_CODE = {
    "config_error": 500,
    "state_transition_error": 409,
    "session_busy": 409,
    "capture_busy": 409,
    "microphone_unavailable": 503,
    "wake_word_error": 503,
    "classifier_unavailable": 503,
    "classifier_timeout": 504,
    "classifier_schema_error": 502,
    "media_service_error": 502,
    "persistence_error": 502,
    "validation_error": 400,
}


def status_for_error(err: LaraError) -> int:
    return _STATUS_BY_CODE.get(err.code, 500)


def create_app(
    assistant: AssistantOrchestrator,
    *,
    event_logger=None,
    logger=None,
    allowed_origins: Optional[list[str]] = None,
) -> FastAPI:
    """Local control surface: start/stop/restart/activate plus typed classify and command."""
    app = FastAPI(title="Lara Assistant", version=__version__)
    event_logger = event_logger or NullEventLogger()
    logger = logger or get_logger("web")

    if allowed_origins:
        if any(o == "*" for o in allowed_origins):
            raise ValueError("Wildcard CORS origins are not allowed.")
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(LaraError)
    async def lara_error_handler(request: Request, exc: LaraError):
        event_logger.log("web", "web.error", {"path": request.url.path, **exc.to_dict()})
        logger.warning(f"{request.url.path}: {exc.code}")
        return JSONResponse(status_code=status_for_error(exc), content={"detail": exc.user_message, "code": exc.code})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        event_logger.log("web", "web.error", {"path": request.url.path, "code": "validation_error"})
        return JSONResponse(status_code=400, content={"detail": "Invalid request.", "code": "validation_error"})

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": __version__}

    @app.get("/assistant/status")
    def assistant_status():
        return assistant.status()

    @app.post("/assistant/start", response_model=ControlResponse)
    def assistant_start():
        changed = assistant.start()
        return ControlResponse(ok=True, changed=changed, state=assistant.get_state().value)

    @app.post("/assistant/stop", response_model=ControlResponse)
    def assistant_stop():
        changed = assistant.stop()
        return ControlResponse(ok=True, changed=changed, state=assistant.get_state().value)

    @app.post("/assistant/restart", response_model=ControlResponse)
    def assistant_restart():
        changed = assistant.restart()
        return ControlResponse(ok=True, changed=changed, state=assistant.get_state().value)

    @app.post("/assistant/activate", response_model=ControlResponse)
    def assistant_activate():
        trace_id = assistant.activate()
        return ControlResponse(ok=True, changed=True, state=assistant.get_state().value, trace_id=trace_id)

    @app.post("/intent", response_model=IntentResponse)
    def classify_text(req: TextRequest):
        trace_id = uuid.uuid4().hex
        intent = assistant.classifier.classify(req.text, trace_id=trace_id)
        return IntentResponse(trace_id=trace_id, intent=intent_to_dict(intent))

    @app.post("/command", response_model=CommandResponse)
    def run_command(req: TextRequest):
        outcome = assistant.run_text(req.text)
        return CommandResponse(**outcome.to_dict())

    return app
