from __future__ import annotations

import re
from typing import Dict, Optional

from lara.core.text_normalization import normalize_for_matching


PAGE_PATHS: Dict[str, str] = {
    "home": "/dashboard",
    "dashboard": "/dashboard",
    "at home": "/at-home",
    "at-home": "/at-home",
    "professional": "/professional",
    "work": "/professional",
    "tasks": "/tasks",
    "task": "/tasks",
    "add task": "/tasks/add",
    "reminders": "/reminders",
    "reminder": "/reminders",
    "add reminder": "/reminders/add",
    "personal growth": "/personal-growth",
    "personal-growth": "/personal-growth",
    "growth": "/personal-growth",
    "healthcare": "/healthcare",
    "health": "/healthcare",
    "automotive": "/automotive",
    "car": "/automotive",
    "vehicle": "/automotive",
    "insights": "/insights",
    "profile": "/settings/profile",
    "settings": "/settings",
}

KNOWN_PATHS = frozenset(PAGE_PATHS.values())

TASKS_PATH = "/tasks"
REMINDERS_PATH = "/reminders"
ADD_TASK_PATH = "/tasks/add"
ADD_REMINDER_PATH = "/reminders/add"


def _clean_page_name(name: str) -> str:
    s = normalize_for_matching(name).replace("-", " ")
    for prefix in ("the ", "my "):
        if s.startswith(prefix):
            s = s[len(prefix):]
    if s.endswith(" page"):
        s = s[: -len(" page")]
    return s.strip()


def resolve_page(name: Optional[str]) -> Optional[str]:
    """Map a spoken page name ("the reminders page", "car") to its route, or None."""
    if not name:
        return None
    if name.startswith("/") and name in KNOWN_PATHS:
        return name
    cleaned = _clean_page_name(name)
    if cleaned in PAGE_PATHS:
        return PAGE_PATHS[cleaned]
    return find_page_in_text(cleaned)


def find_page_in_text(text: str) -> Optional[str]:
    lowered = normalize_for_matching(text)
    # Longest names first so "at home" wins over "home".
    for name in sorted(PAGE_PATHS, key=len, reverse=True):
        if re.search(rf"\b{re.escape(name)}\b", lowered):
            return PAGE_PATHS[name]
    return None


def is_known_path(path: str) -> bool:
    return path in KNOWN_PATHS
