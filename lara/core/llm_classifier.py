from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from lara.core.errors import ClassifierSchemaError, ClassifierTimeoutError, ClassifierUnavailableError
from lara.core.intents import (
    AddReminder,
    AddTask,
    GeneralQuery,
    Intent,
    IntentKind,
    IntentSource,
    Navigate,
    PlayMusic,
    ShowReminders,
    ShowTasks,
)
from lara.core.navigation import resolve_page


INSTRUCTIONS = (
    "You are the intent classifier for a voice assistant named Lara. "
    "Return STRICT JSON only: one object, no markdown, no commentary.\n"
    "Schema:\n"
    "{\n"
    '  "intent": "play_music" | "add_task" | "show_tasks" | "add_reminder" | "show_reminders" | "navigate" | "general_query",\n'
    '  "query": string or null,\n'
    '  "task_text": string or null,\n'
    '  "music_query": string or null,\n'
    '  "navigation_target": string or null,\n'
    '  "time": string or null,\n'
    '  "due_date": string or null,\n'
    '  "confidence": number between 0 and 1\n'
    "}\n"
    "Rules:\n"
    '1. Play music: intent="play_music", set music_query to what should be played.\n'
    '2. Add a task: intent="add_task", set task_text; set due_date if a deadline is mentioned.\n'
    '3. See tasks: intent="show_tasks".\n'
    '4. Add a reminder: intent="add_reminder", set task_text and time if mentioned.\n'
    '5. See reminders: intent="show_reminders".\n'
    '6. Open a page: intent="navigate", set navigation_target to a path such as "/tasks", "/reminders", '
    '"/dashboard", "/healthcare", "/automotive", "/professional", "/personal-growth", "/insights", "/settings".\n'
    '7. Anything else: intent="general_query", set query.\n'
    "Unused fields must be null."
)


class PrimaryIntentPayload(BaseModel):
    """The exact JSON object the primary service must return."""

    model_config = ConfigDict(extra="forbid")
    intent: IntentKind
    query: Optional[str] = None
    task_text: Optional[str] = None
    music_query: Optional[str] = None
    navigation_target: Optional[str] = None
    time: Optional[str] = None
    due_date: Optional[str] = None
    confidence: float = Field(ge=0.0, le=1.0)

    def to_intent(self, transcript: str) -> Intent:
        src = IntentSource.PRIMARY
        conf = float(self.confidence)
        kind = self.intent
        if kind == IntentKind.PLAY_MUSIC:
            if self.music_query is None:
                raise ClassifierSchemaError(field="music_query", intent=kind.value)
            return PlayMusic(query=self.music_query.strip(), confidence=conf, source=src)
        if kind == IntentKind.ADD_TASK:
            if not (self.task_text or "").strip():
                raise ClassifierSchemaError(field="task_text", intent=kind.value)
            return AddTask(text=self.task_text.strip(), due_date=_blank_to_none(self.due_date), confidence=conf, source=src)
        if kind == IntentKind.ADD_REMINDER:
            if not (self.task_text or "").strip():
                raise ClassifierSchemaError(field="task_text", intent=kind.value)
            return AddReminder(text=self.task_text.strip(), time=_blank_to_none(self.time), confidence=conf, source=src)
        if kind == IntentKind.SHOW_TASKS:
            return ShowTasks(confidence=conf, source=src)
        if kind == IntentKind.SHOW_REMINDERS:
            return ShowReminders(confidence=conf, source=src)
        if kind == IntentKind.NAVIGATE:
            target = resolve_page(self.navigation_target)
            if target is None:
                raise ClassifierSchemaError(field="navigation_target", value=self.navigation_target)
            return Navigate(target=target, confidence=conf, source=src)
        return GeneralQuery(text=(self.query or transcript).strip(), confidence=conf, source=src)


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def extract_json_object(raw: str) -> Optional[Dict[str, Any]]:
    """
    Parse raw as a JSON object. If that fails, reparse the first balanced {...}
    substring (models like to wrap JSON in prose or code fences).
    """
    if not raw:
        return None
    try:
        obj = json.loads(raw)
        return obj if isinstance(obj, dict) else None
    except json.JSONDecodeError:
        pass

    start = raw.find("{")
    while start != -1:
        end = _balanced_end(raw, start)
        if end == -1:
            return None
        try:
            obj = json.loads(raw[start : end + 1])
            if isinstance(obj, dict):
                return obj
        except json.JSONDecodeError:
            pass
        start = raw.find("{", start + 1)
    return None


def _balanced_end(s: str, start: int) -> int:
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(s)):
        ch = s[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return -1


@dataclass(frozen=True)
class LLMClassifierConfig:
    base_url: str = "https://api.openai.com"
    model: str = "gpt-4o-mini"
    timeout_seconds: float = 3.0
    temperature: float = 0.1
    max_tokens: int = 200
    api_key: Optional[str] = None


class LLMIntentClassifier:
    """
    Primary classifier: an OpenAI-compatible /v1/chat/completions endpoint held to a strict JSON contract.

    Raises ClassifierUnavailableError / ClassifierTimeoutError / ClassifierSchemaError;
    the fallback chain turns every one of those into a pattern-matched answer.
    """

    name = "llm"

    def __init__(self, cfg: LLMClassifierConfig, session: Optional[requests.Session] = None):
        self.cfg = cfg
        self._http = session or requests.Session()

    def _call_openai_compat(self, transcript: str) -> str:
        url = f"{self.cfg.base_url.rstrip('/')}/v1/chat/completions"
        headers = {"Content-Type": "application/json"}
        if self.cfg.api_key:
            headers["Authorization"] = f"Bearer {self.cfg.api_key}"
        payload = {
            "model": self.cfg.model,
            "messages": [
                {"role": "system", "content": INSTRUCTIONS},
                {"role": "user", "content": f"Classify this command: {transcript}"},
            ],
            "temperature": self.cfg.temperature,
            "max_tokens": self.cfg.max_tokens,
        }
        try:
            r = self._http.post(url, json=payload, headers=headers, timeout=self.cfg.timeout_seconds)
        except requests.Timeout as e:
            raise ClassifierTimeoutError(timeout_seconds=self.cfg.timeout_seconds) from e
        except requests.RequestException as e:
            raise ClassifierUnavailableError(error=str(e)) from e
        if not (200 <= r.status_code < 300):
            raise ClassifierUnavailableError(status_code=r.status_code)
        try:
            data = r.json()
            return str(data["choices"][0]["message"]["content"] or "")
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ClassifierSchemaError(error=f"unexpected completion envelope: {e}") from e

    def classify(self, transcript: str) -> Intent:
        if not self.cfg.api_key:
            raise ClassifierUnavailableError(reason="no api key configured")
        raw = self._call_openai_compat(transcript)
        obj = extract_json_object(raw)
        if obj is None:
            raise ClassifierSchemaError(error="no JSON object in response")
        try:
            payload = PrimaryIntentPayload.model_validate(obj)
        except ValidationError as e:
            raise ClassifierSchemaError(errors=e.errors(include_url=False)) from e
        return payload.to_intent(transcript)
