from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class TextRequest(BaseModel):
    text: str = Field(default="", max_length=4000)


class IntentResponse(BaseModel):
    trace_id: str
    intent: Dict[str, Any]


class CommandResponse(BaseModel):
    trace_id: str
    transcript: str
    intent: Dict[str, Any]
    result: Dict[str, Any]


class ControlResponse(BaseModel):
    ok: bool
    changed: bool
    state: str
    trace_id: Optional[str] = None
