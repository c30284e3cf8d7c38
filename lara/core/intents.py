from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


LOW_CONFIDENCE_THRESHOLD = 0.3


class IntentSource(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


class IntentKind(str, Enum):
    PLAY_MUSIC = "play_music"
    ADD_TASK = "add_task"
    SHOW_TASKS = "show_tasks"
    ADD_REMINDER = "add_reminder"
    SHOW_REMINDERS = "show_reminders"
    NAVIGATE = "navigate"
    GENERAL_QUERY = "general_query"


class _IntentBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: IntentSource = IntentSource.FALLBACK

    def is_confident(self, threshold: float = LOW_CONFIDENCE_THRESHOLD) -> bool:
        return self.confidence >= threshold


class PlayMusic(_IntentBase):
    kind: Literal["play_music"] = "play_music"
    query: str = ""


class AddTask(_IntentBase):
    kind: Literal["add_task"] = "add_task"
    text: str
    due_date: Optional[str] = None


class ShowTasks(_IntentBase):
    kind: Literal["show_tasks"] = "show_tasks"


class AddReminder(_IntentBase):
    kind: Literal["add_reminder"] = "add_reminder"
    text: str
    time: Optional[str] = None


class ShowReminders(_IntentBase):
    kind: Literal["show_reminders"] = "show_reminders"


class Navigate(_IntentBase):
    kind: Literal["navigate"] = "navigate"
    target: str


class GeneralQuery(_IntentBase):
    kind: Literal["general_query"] = "general_query"
    text: str = ""


Intent = Annotated[
    Union[PlayMusic, AddTask, ShowTasks, AddReminder, ShowReminders, Navigate, GeneralQuery],
    Field(discriminator="kind"),
]


def unknown_intent(text: str, confidence: float = 0.1) -> GeneralQuery:
    """The answer when nothing better is known. Always below the low-confidence threshold."""
    return GeneralQuery(text=(text or "").strip(), confidence=min(confidence, LOW_CONFIDENCE_THRESHOLD - 0.01), source=IntentSource.FALLBACK)


def intent_to_dict(intent: Intent) -> dict:
    return intent.model_dump(mode="json")
