from __future__ import annotations

import json
import os

import pytest

from lara.core.config import DEFAULT_WAKE_PHRASES, LaraConfig, load_config
from lara.core.errors import ConfigError


def _write(tmp_path, obj) -> str:
    path = os.path.join(str(tmp_path), "lara.json")
    with open(path, "w", encoding="utf-8") as f:
        if isinstance(obj, str):
            f.write(obj)
        else:
            json.dump(obj, f)
    return path


def test_missing_file_means_defaults(tmp_path):
    cfg = load_config(os.path.join(str(tmp_path), "nope.json"), env={})
    assert isinstance(cfg, LaraConfig)
    assert cfg.wake_word.phrases == DEFAULT_WAKE_PHRASES
    assert cfg.wake_word.max_consecutive_errors == 5
    assert cfg.session.command_timeout_seconds == 10.0
    assert cfg.assistant.one_shot is False
    assert cfg.classifier.api_key is None


def test_partial_file_overrides_only_what_it_names(tmp_path):
    path = _write(tmp_path, {"assistant": {"one_shot": True}, "wake_word": {"phrases": ["  Hey Lara ", ""]}})
    cfg = load_config(path, env={})
    assert cfg.assistant.one_shot is True
    assert cfg.assistant.restart_delay_seconds == 0.5
    assert cfg.wake_word.phrases == ["hey lara"]


def test_secrets_come_from_environment_only(tmp_path):
    path = _write(tmp_path, {"classifier": {"api_key": "from-file"}})
    cfg = load_config(path, env={"LARA_CLASSIFIER_API_KEY": "sk-env", "LARA_MEDIA_TOKEN": "tok"})
    assert cfg.classifier.api_key == "sk-env"
    assert cfg.services.media_token == "tok"
    assert cfg.services.persistence_api_key is None

    cfg = load_config(path, env={})
    assert cfg.classifier.api_key is None


def test_secrets_are_excluded_from_dumps():
    cfg = load_config(None, env={"LARA_CLASSIFIER_API_KEY": "sk-env"})
    assert "api_key" not in cfg.model_dump()["classifier"]


def test_unknown_keys_are_rejected(tmp_path):
    path = _write(tmp_path, {"assistant": {"one_shot": True, "volume": 11}})
    with pytest.raises(ConfigError) as ei:
        load_config(path, env={})
    assert ei.value.code == "config_error"


def test_invalid_json_is_config_error(tmp_path):
    path = _write(tmp_path, "{not json")
    with pytest.raises(ConfigError):
        load_config(path, env={})


def test_non_object_is_config_error(tmp_path):
    path = _write(tmp_path, [1, 2, 3])
    with pytest.raises(ConfigError):
        load_config(path, env={})


@pytest.mark.parametrize(
    "bad",
    [
        {"wake_word": {"phrases": []}},
        {"wake_word": {"phrases": ["   "]}},
        {"session": {"command_timeout_seconds": 0}},
        {"classifier": {"low_confidence_threshold": 1.5}},
    ],
)
def test_out_of_range_values_are_config_errors(tmp_path, bad):
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, bad), env={})


def test_timezone_must_be_known(tmp_path):
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, {"services": {"timezone": "Mars/Olympus_Mons"}}), env={})
    cfg = load_config(_write(tmp_path, {"services": {"timezone": "Asia/Kolkata"}}), env={})
    assert cfg.services.timezone == "Asia/Kolkata"
