from __future__ import annotations

import re
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Set

from pydantic import BaseModel, ConfigDict

from lara.core.errors import LaraError
from lara.core.events import NullEventLogger
from lara.core.intents import (
    AddReminder,
    AddTask,
    GeneralQuery,
    Intent,
    IntentKind,
    Navigate,
    PlayMusic,
    ShowReminders,
    ShowTasks,
)
from lara.core.logger import get_logger
from lara.core.navigation import REMINDERS_PATH, TASKS_PATH
from lara.core.pattern_classifier import DEFAULT_RULES
from lara.core.time_resolution import Clock, local_clock, resolve_due_date, resolve_reminder_time
from lara.services.media import MediaService
from lara.services.persistence import PersistenceService


NAVIGATION_TARGET_KEY = "navigationTarget"

_GREETING = next(r.pattern for r in DEFAULT_RULES if r.name == "greeting")
_LOOKS_LIKE_DESCRIPTION = re.compile(
    r"^(?:to\s+|(?:attend|call|buy|send|check|review|finish|complete|do|make|get|take|read|write|prepare|schedule|book|"
    r"plan|organize|clean|fix|update|submit|pay|pick\s+up)\b)"
)

BackgroundFailureHook = Callable[[str, str, BaseException], None]


class ActionResult(BaseModel):
    model_config = ConfigDict(extra="forbid")
    success: bool
    message: str
    action: str
    data: Optional[Dict[str, Any]] = None

    @property
    def navigation_target(self) -> Optional[str]:
        if not self.data:
            return None
        target = self.data.get(NAVIGATION_TARGET_KEY)
        return str(target) if target else None


class ActionRouter:
    """
    Dispatch table from intent kind to handler. Every handler returns an ActionResult;
    nothing raises past route().

    Task and reminder creation is optimistic: route() reports success as soon as the
    write is handed to the background pool. A failed write surfaces only through the
    logger, the telemetry channel and the on_background_failure hook. Spoken times
    and due dates are resolved against the clock before the write is queued.
    """

    def __init__(
        self,
        *,
        user_id: str,
        media: Optional[MediaService] = None,
        persistence: Optional[PersistenceService] = None,
        event_logger=None,
        logger=None,
        on_background_failure: Optional[BackgroundFailureHook] = None,
        max_background_workers: int = 2,
        clock: Optional[Clock] = None,
    ):
        self.user_id = user_id
        self.media = media
        self.persistence = persistence
        self.event_logger = event_logger or NullEventLogger()
        self.logger = logger or get_logger("router")
        self.on_background_failure = on_background_failure
        self.clock = clock or local_clock

        self._executor = ThreadPoolExecutor(max_workers=max_background_workers, thread_name_prefix="router-bg")
        self._pending: Set[Future] = set()
        self._pending_cv = threading.Condition()
        self._handlers: Dict[str, Callable[[Any, str], ActionResult]] = {
            IntentKind.PLAY_MUSIC.value: self._play_music,
            IntentKind.ADD_TASK.value: self._add_task,
            IntentKind.SHOW_TASKS.value: self._show_tasks,
            IntentKind.ADD_REMINDER.value: self._add_reminder,
            IntentKind.SHOW_REMINDERS.value: self._show_reminders,
            IntentKind.NAVIGATE.value: self._navigate,
            IntentKind.GENERAL_QUERY.value: self._general_query,
        }

    def route(self, intent: Intent, trace_id: Optional[str] = None) -> ActionResult:
        trace_id = trace_id or uuid.uuid4().hex
        kind = str(getattr(intent, "kind", "unknown"))
        handler = self._handlers.get(kind)
        if handler is None:
            result = ActionResult(success=False, message="Unknown intent", action="unknown")
        else:
            try:
                result = handler(intent, trace_id)
            except LaraError as e:
                self.logger.warning(f"[{trace_id}] {kind} failed: {e.code}")
                result = ActionResult(success=False, message=e.user_message, action=kind)
            except Exception as e:  # noqa: BLE001
                self.logger.error(f"[{trace_id}] {kind} handler crashed: {e}")
                result = ActionResult(success=False, message="Sorry, I could not complete that action.", action=kind)
        self.event_logger.log(trace_id, "router.result", {"action": result.action, "success": result.success})
        return result

    def pending_writes(self) -> int:
        with self._pending_cv:
            return len(self._pending)

    def drain(self, timeout: float = 5.0) -> bool:
        """Wait until every background write has finished and been reported. True if none are left."""
        with self._pending_cv:
            return self._pending_cv.wait_for(lambda: not self._pending, timeout=timeout)

    def close(self, timeout: float = 5.0) -> None:
        self.drain(timeout=timeout)
        self._executor.shutdown(wait=False)

    # ---- handlers ----
    def _play_music(self, intent: PlayMusic, trace_id: str) -> ActionResult:
        query = (intent.query or "").strip()
        if not query:
            return ActionResult(success=False, message="Please specify a song name", action="play_music")
        if self.media is None:
            return ActionResult(success=False, message="Music playback is not available.", action="play_music")
        tracks = self.media.search(query)
        if not tracks:
            return ActionResult(success=False, message=f'No music found for "{query}"', action="play_music")
        track = tracks[0]
        if not self.media.play(track.id):
            return ActionResult(success=False, message="Failed to play music", action="play_music")
        return ActionResult(success=True, message=f"Now playing {track.name}", action="play_music", data=track.model_dump())

    def _add_task(self, intent: AddTask, trace_id: str) -> ActionResult:
        text = (intent.text or "").strip()
        if not text:
            return ActionResult(success=False, message="No task text provided", action="add_task")
        if self.persistence is None:
            return ActionResult(success=False, message="Task storage is not available.", action="add_task")
        due = resolve_due_date(intent.due_date, self.clock().date()).isoformat()
        fields: Dict[str, Any] = {"title": text, "due_date": due}
        self._submit_background(trace_id, "add_task", self.persistence.create_task, self.user_id, fields)
        return ActionResult(success=True, message=f"Task added: {text}", action="add_task", data=dict(fields))

    def _add_reminder(self, intent: AddReminder, trace_id: str) -> ActionResult:
        text = (intent.text or "").strip()
        if not text:
            return ActionResult(success=False, message="No reminder text provided", action="add_reminder")
        if self.persistence is None:
            return ActionResult(success=False, message="Reminder storage is not available.", action="add_reminder")
        remind_at = resolve_reminder_time(intent.time, self.clock()).isoformat(timespec="seconds")
        fields: Dict[str, Any] = {"title": text, "time": remind_at}
        self._submit_background(trace_id, "add_reminder", self.persistence.create_reminder, self.user_id, fields)
        message = f"Reminder set: {text}"
        if intent.time:
            # "at 5 pm" but "tomorrow at 5pm", "in ten minutes"
            message += f" at {intent.time}" if intent.time[:1].isdigit() else f" {intent.time}"
        return ActionResult(success=True, message=message, action="add_reminder", data={"title": text, "time": remind_at, "spoken_time": intent.time})

    def _show_tasks(self, _intent: ShowTasks, _trace_id: str) -> ActionResult:
        return ActionResult(success=True, message="Opening tasks page", action="show_tasks", data={NAVIGATION_TARGET_KEY: TASKS_PATH})

    def _show_reminders(self, _intent: ShowReminders, _trace_id: str) -> ActionResult:
        return ActionResult(success=True, message="Opening reminders page", action="show_reminders", data={NAVIGATION_TARGET_KEY: REMINDERS_PATH})

    def _navigate(self, intent: Navigate, _trace_id: str) -> ActionResult:
        target = (intent.target or "").strip()
        if not target:
            return ActionResult(success=False, message="Could not determine which page to open", action="navigate")
        page = target.strip("/").split("/")[-1].replace("-", " ") or "home"
        return ActionResult(success=True, message=f"Opening {page} page", action="navigate", data={NAVIGATION_TARGET_KEY: target})

    def _general_query(self, intent: GeneralQuery, _trace_id: str) -> ActionResult:
        text = (intent.text or "").strip()
        if not text:
            return ActionResult(success=False, message="I did not understand that. Please try again.", action="general_query")
        lowered = text.lower().strip(" .!?")
        if _GREETING.search(lowered):
            message = "Hello! How can I help you?"
        elif _LOOKS_LIKE_DESCRIPTION.search(lowered):
            message = 'I can help you create a task or reminder. Please say "add task" or "add reminder" followed by your description.'
        else:
            message = f"Query processed: {text}"
        return ActionResult(success=True, message=message, action="general_query", data={"query": text})

    # ---- background writes ----
    def _submit_background(self, trace_id: str, action: str, fn: Callable[..., Any], *args: Any) -> None:
        fut = self._executor.submit(fn, *args)
        with self._pending_cv:
            self._pending.add(fut)
        fut.add_done_callback(lambda f: self._on_background_done(trace_id, action, f))

    def _on_background_done(self, trace_id: str, action: str, fut: Future) -> None:
        try:
            self._report_background(trace_id, action, fut)
        finally:
            with self._pending_cv:
                self._pending.discard(fut)
                self._pending_cv.notify_all()

    def _report_background(self, trace_id: str, action: str, fut: Future) -> None:
        if fut.cancelled():
            self.event_logger.log(trace_id, "persistence.write.cancelled", {"action": action})
            return
        exc = fut.exception()
        if exc is None:
            self.event_logger.log(trace_id, "persistence.write.ok", {"action": action})
            return
        details: Dict[str, Any] = {"action": action, "error": str(exc)}
        if isinstance(exc, LaraError):
            details.update(exc.to_dict())
        self.event_logger.log(trace_id, "persistence.write.failed", details)
        self.logger.error(f"[{trace_id}] background {action} write failed: {exc}")
        if self.on_background_failure is not None:
            try:
                self.on_background_failure(trace_id, action, exc)
            except Exception as e:  # noqa: BLE001
                self.logger.error(f"[{trace_id}] background failure hook raised: {e}")
