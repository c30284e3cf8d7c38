from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from lara.core.events import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class LaraError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


# ---- Core types ----
class ConfigError(LaraError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class StateTransitionError(LaraError):
    def __init__(self, user_message: str = "Internal state error.", **ctx: Any):
        super().__init__("state_transition_error", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


# ---- Voice ----
class MicrophoneUnavailableError(LaraError):
    def __init__(self, user_message: str = "Microphone access is unavailable. Please allow microphone access.", **ctx: Any):
        super().__init__("microphone_unavailable", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class WakeWordError(LaraError):
    def __init__(self, user_message: str = "Wake word listening stopped after repeated errors.", **ctx: Any):
        super().__init__("wake_word_error", user_message, severity=Severity.ERROR, recoverable=False, context=ctx)


class CaptureBusyError(LaraError):
    def __init__(self, user_message: str = "The microphone is already in use.", **ctx: Any):
        super().__init__("capture_busy", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class SessionBusyError(LaraError):
    def __init__(self, user_message: str = "I'm still working on your last command.", **ctx: Any):
        super().__init__("session_busy", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


# ---- Classification ----
class ClassifierUnavailableError(LaraError):
    def __init__(self, user_message: str = "The language service is unavailable right now.", **ctx: Any):
        super().__init__("classifier_unavailable", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class ClassifierTimeoutError(LaraError):
    def __init__(self, user_message: str = "The language service took too long.", **ctx: Any):
        super().__init__("classifier_timeout", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class ClassifierSchemaError(LaraError):
    def __init__(self, user_message: str = "The language service returned an invalid answer.", **ctx: Any):
        super().__init__("classifier_schema_error", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


# ---- External services ----
class MediaServiceError(LaraError):
    def __init__(self, user_message: str = "Failed to play music.", **ctx: Any):
        super().__init__("media_service_error", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class PersistenceError(LaraError):
    def __init__(self, user_message: str = "Failed to save.", **ctx: Any):
        super().__init__("persistence_error", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)
