from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from lara.core.intents import (
    AddReminder,
    AddTask,
    GeneralQuery,
    Intent,
    IntentSource,
    Navigate,
    PlayMusic,
    ShowReminders,
    ShowTasks,
    unknown_intent,
)
from lara.core.navigation import ADD_REMINDER_PATH, ADD_TASK_PATH, resolve_page
from lara.core.text_normalization import normalize_for_matching


PATTERN_CONFIDENCE = 0.7
GREETING_CONFIDENCE = 0.9
NO_MATCH_CONFIDENCE = 0.2

GENERIC_MUSIC_QUERIES = {
    "",
    "music",
    "some music",
    "a song",
    "song",
    "songs",
    "some songs",
    "a track",
    "track",
    "something",
    "anything",
}

_LEADING_WAKE = re.compile(r"^(?:hey|hi|ok|okay)\s+(?:lara|laura|lora|larra|laira|lera|lawra)\b\s*")

_TIME_TAIL = (
    r"(?P<time>"
    r"(?:at|by)\s+(?:\d.*|noon|midnight)"
    r"|in\s+(?:\d+|an?|one|two|three|five|ten|fifteen|twenty|thirty)\s+(?:minutes?|hours?|days?)\b.*"
    r"|(?:today|tonight|tomorrow)\b.*"
    r"|(?:on\s+|next\s+)(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday|week)\b.*"
    r")"
)
_REMINDER_BODY = re.compile(r"^(?P<text>.+?)\s+" + _TIME_TAIL + r"$")
_CLOCK = r"(?:\d{1,2}(?:[:\s]\d{2})?(?:\s*[ap]\.?\s?m\b\.?)?|noon|midnight)"
_DAY = (
    r"(?:today|tonight|tomorrow|this\s+(?:morning|afternoon|evening)|next\s+week"
    r"|(?:on\s+|next\s+)?(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday))"
)
# Time first, body second: "tomorrow at 5pm to call mom".
_REMINDER_LEAD = re.compile(
    r"^(?P<time>"
    r"(?:at|by)\s+" + _CLOCK + r"(?:\s+" + _DAY + r")?"
    r"|" + _DAY + r"(?:\s+(?:morning|afternoon|evening|night))?(?:\s+(?:at|by)\s+" + _CLOCK + r")?"
    r"|in\s+(?:\d+|an?|one|two|three|five|ten|fifteen|twenty|thirty)\s+(?:minutes?|hours?|days?)"
    r")\s+(?:to|that|about|for)\s+(?P<text>.+)$"
)
_TASK_DUE = re.compile(r"^(?P<text>.+?)\s+(?:(?:due|by)\s+(?:on\s+)?(?P<due>.+)|(?P<day>today|tonight|tomorrow|next week))$")
_MUSIC_PREFIX = re.compile(r"^(?:me\s+)?(?:some\s+)?(?:the\s+)?(?:(?:a\s+)?(?:song|track)\s+(?:called\s+|named\s+)?)?")
_MUSIC_SUFFIX = re.compile(r"\s+on\s+(?:spotify|youtube|apple music)$")

Builder = Callable[["re.Match[str]", str], Optional[Intent]]


@dataclass(frozen=True)
class PatternRule:
    name: str
    pattern: "re.Pattern[str]"
    build: Builder


def _show_tasks(_m: "re.Match[str]", _text: str) -> Intent:
    return ShowTasks(confidence=PATTERN_CONFIDENCE, source=IntentSource.FALLBACK)


def _show_reminders(_m: "re.Match[str]", _text: str) -> Intent:
    return ShowReminders(confidence=PATTERN_CONFIDENCE, source=IntentSource.FALLBACK)


def _add_task(m: "re.Match[str]", _text: str) -> Intent:
    body = (m.group("text") or "").strip()
    if not body:
        return Navigate(target=ADD_TASK_PATH, confidence=PATTERN_CONFIDENCE, source=IntentSource.FALLBACK)
    due: Optional[str] = None
    dm = _TASK_DUE.match(body)
    if dm:
        body = dm.group("text").strip()
        due = (dm.group("due") or dm.group("day") or "").strip() or None
    return AddTask(text=body, due_date=due, confidence=PATTERN_CONFIDENCE, source=IntentSource.FALLBACK)


def _add_reminder(m: "re.Match[str]", _text: str) -> Intent:
    body = (m.group("text") or "").strip()
    if not body:
        return Navigate(target=ADD_REMINDER_PATH, confidence=PATTERN_CONFIDENCE, source=IntentSource.FALLBACK)
    when: Optional[str] = None
    tm = _REMINDER_LEAD.match(body) or _REMINDER_BODY.match(body)
    if tm:
        body = tm.group("text").strip()
        when = re.sub(r"^at\s+", "", tm.group("time").strip())
    return AddReminder(text=body, time=when or None, confidence=PATTERN_CONFIDENCE, source=IntentSource.FALLBACK)


def _play_music(m: "re.Match[str]", _text: str) -> Intent:
    query = (m.group("query") or "").strip()
    query = _MUSIC_SUFFIX.sub("", query)
    query = _MUSIC_PREFIX.sub("", query, count=1).strip()
    if query in GENERIC_MUSIC_QUERIES:
        query = ""
    return PlayMusic(query=query, confidence=PATTERN_CONFIDENCE, source=IntentSource.FALLBACK)


def _navigate(m: "re.Match[str]", _text: str) -> Optional[Intent]:
    target = resolve_page(m.group("page"))
    if target is None:
        return None
    return Navigate(target=target, confidence=PATTERN_CONFIDENCE, source=IntentSource.FALLBACK)


def _greeting(_m: "re.Match[str]", text: str) -> Intent:
    return GeneralQuery(text=text, confidence=GREETING_CONFIDENCE, source=IntentSource.FALLBACK)


# Order matters: specific rules first, catch-alls ("play ...", "open ...") last.
DEFAULT_RULES: List[PatternRule] = [
    PatternRule(
        "show_tasks",
        re.compile(
            r"\b(?:show|open|list|view|see|display|check)\s+(?:me\s+)?(?:all\s+)?(?:of\s+)?(?:my\s+|the\s+)?tasks?\b"
            r"|\bwhat\s+(?:are|is)\s+my\s+tasks?\b"
            r"|\bwhat's\s+on\s+my\s+(?:task|to\s?do)\s+list\b"
        ),
        _show_tasks,
    ),
    PatternRule(
        "show_reminders",
        re.compile(
            r"\b(?:show|open|list|view|see|display|check)\s+(?:me\s+)?(?:all\s+)?(?:of\s+)?(?:my\s+|the\s+)?reminders?\b"
            r"|\bwhat\s+(?:are|is)\s+my\s+reminders?\b"
        ),
        _show_reminders,
    ),
    PatternRule(
        "add_task",
        re.compile(r"\b(?:add|create|make|new)\s+(?:a\s+)?(?:new\s+)?task\b(?:\s+(?:to|called|named|for|that says)\b)?\s*(?P<text>.*)$"),
        _add_task,
    ),
    PatternRule(
        "add_to_task_list",
        re.compile(r"^add\s+(?P<text>.+?)\s+to\s+(?:my\s+|the\s+)?(?:tasks?|task\s+list|to\s?do\s+list)$"),
        _add_task,
    ),
    PatternRule(
        "add_reminder",
        re.compile(
            r"\b(?:remind\s+me|(?:set|add|create)\s+(?:up\s+)?(?:a\s+)?(?:new\s+)?reminder|new\s+reminder)\b"
            r"(?:\s+(?:to|about|for|that)\b)?\s*(?P<text>.*)$"
        ),
        _add_reminder,
    ),
    PatternRule("play_music", re.compile(r"\bplay\b\s*(?P<query>.*)$"), _play_music),
    PatternRule(
        "navigate",
        re.compile(r"\b(?:go\s+to|open(?:\s+up)?|navigate\s+to|take\s+me\s+to|show\s+me|switch\s+to|bring\s+up)\s+(?P<page>.+)$"),
        _navigate,
    ),
    PatternRule(
        "greeting",
        re.compile(r"^(?:hey|hi|hello|good\s+(?:morning|afternoon|evening))(?:\s+(?:lara|laura|there))?$"),
        _greeting,
    ),
]


def strip_leading_wake_phrase(text: str) -> str:
    stripped = _LEADING_WAKE.sub("", text, count=1)
    return stripped if stripped else text


class PatternIntentClassifier:
    """
    Offline, deterministic classifier: the first matching rule wins.
    Never raises; unmatched input becomes a low-confidence GeneralQuery.
    """

    name = "patterns"

    def __init__(self, rules: Optional[List[PatternRule]] = None):
        self.rules = list(rules if rules is not None else DEFAULT_RULES)

    def match(self, transcript: str) -> Tuple[Intent, Optional[str]]:
        raw = (transcript or "").strip()
        text = strip_leading_wake_phrase(normalize_for_matching(raw))
        if not text:
            return unknown_intent(raw), None
        for rule in self.rules:
            m = rule.pattern.search(text)
            if not m:
                continue
            intent = rule.build(m, raw)
            if intent is not None:
                return intent, rule.name
        return unknown_intent(raw, NO_MATCH_CONFIDENCE), None

    def classify(self, transcript: str) -> Intent:
        return self.match(transcript)[0]

    def rule_names(self) -> List[str]:
        return [r.name for r in self.rules]
