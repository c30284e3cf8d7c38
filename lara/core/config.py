from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from lara.core.errors import ConfigError


DEFAULT_WAKE_PHRASES = [
    "hey lara",
    "hey laura",
    "hey lora",
    "hey larra",
    "hey laira",
    "hey lera",
    "hey lawra",
]


class CaptureConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    language: str = "en-US"
    sample_rate: int = Field(default=16000, ge=8000)
    mic_device_index: Optional[int] = None
    vosk_model_path: str = ""
    no_speech_timeout_seconds: float = Field(default=8.0, gt=0)
    # int16 RMS above which a chunk counts as voiced
    speech_energy_threshold: float = Field(default=300.0, ge=0)


class WakeWordConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    phrases: List[str] = Field(default_factory=lambda: list(DEFAULT_WAKE_PHRASES))
    max_consecutive_errors: int = Field(default=5, ge=1)
    restart_delay_seconds: float = Field(default=0.3, ge=0)

    @field_validator("phrases")
    @classmethod
    def _phrases_not_empty(cls, v: List[str]) -> List[str]:
        cleaned = [p.strip().lower() for p in v if p and p.strip()]
        if not cleaned:
            raise ValueError("at least one wake phrase is required")
        return cleaned


class SessionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    command_timeout_seconds: float = Field(default=10.0, gt=0)


class BreakerSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")
    failures: int = Field(default=3, ge=1)
    window_seconds: int = Field(default=60, ge=1)
    cooldown_seconds: int = Field(default=30, ge=0)


class ClassifierConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    primary_enabled: bool = True
    base_url: str = "https://api.openai.com"
    model: str = "gpt-4o-mini"
    timeout_seconds: float = Field(default=3.0, gt=0)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=200, ge=16)
    low_confidence_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    breaker: BreakerSettings = Field(default_factory=BreakerSettings)
    api_key: Optional[str] = Field(default=None, exclude=True)


class ServicesConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    user_id: str = "local-user"
    persistence_base_url: str = "http://localhost:3000/api"
    persistence_timeout_seconds: float = Field(default=5.0, gt=0)
    media_base_url: str = "https://api.spotify.com/v1"
    media_timeout_seconds: float = Field(default=5.0, gt=0)
    persistence_api_key: Optional[str] = Field(default=None, exclude=True)
    media_token: Optional[str] = Field(default=None, exclude=True)
    # IANA zone for resolving spoken reminder times; system zone when unset
    timezone: Optional[str] = None

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone: {v}") from e
        return v


class AssistantConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    one_shot: bool = False
    restart_delay_seconds: float = Field(default=0.5, ge=0)
    greeting: str = "How can I help you?"
    speak_confirmations: bool = True
    tts_backend: str = "pyttsx3"  # pyttsx3|none


class LaraConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    log_dir: str = "logs"
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    wake_word: WakeWordConfig = Field(default_factory=WakeWordConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    services: ServicesConfig = Field(default_factory=ServicesConfig)
    assistant: AssistantConfig = Field(default_factory=AssistantConfig)


ENV_SECRETS = {
    "LARA_CLASSIFIER_API_KEY": ("classifier", "api_key"),
    "LARA_PERSISTENCE_API_KEY": ("services", "persistence_api_key"),
    "LARA_MEDIA_TOKEN": ("services", "media_token"),
}


def _read_json(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError("Configuration file could not be read.", path=path, error=str(e)) from e
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a JSON object.", path=path)
    return data


def load_config(path: Optional[str] = None, env: Optional[Dict[str, str]] = None) -> LaraConfig:
    """
    Load config/lara.json (missing file means defaults), then apply secrets from the environment.
    Secrets are never read from the JSON file.
    """
    raw = _read_json(path) if path else {}
    try:
        cfg = LaraConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError("Configuration is invalid.", path=path, errors=e.errors(include_url=False)) from e

    environ = os.environ if env is None else env
    for var, (section, attr) in ENV_SECRETS.items():
        setattr(getattr(cfg, section), attr, environ.get(var) or None)
    return cfg
