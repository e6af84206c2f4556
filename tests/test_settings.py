from __future__ import annotations

import logging
from pathlib import Path

import pytest

from novelscript.settings import PlayerSettings


def test_defaults_when_environment_is_empty() -> None:
    settings = PlayerSettings.from_env({})

    assert settings == PlayerSettings()
    assert settings.save_dir is None
    assert settings.loop_guard == 1000
    assert settings.numeric_log_level == logging.WARNING


def test_values_are_read_from_environment() -> None:
    settings = PlayerSettings.from_env(
        {
            "NOVELSCRIPT_SAVE_DIR": "  ~/saves  ",
            "NOVELSCRIPT_LOOP_GUARD": "50",
            "NOVELSCRIPT_HTTP_TIMEOUT": "2.5",
            "NOVELSCRIPT_MAX_SESSIONS": "8",
            "NOVELSCRIPT_LOG_LEVEL": "debug",
        }
    )

    assert settings.max_sessions == 8
    assert settings.save_dir == Path("~/saves").expanduser()
    assert settings.loop_guard == 50
    assert settings.http_timeout == 2.5
    assert settings.log_level == "DEBUG"
    assert settings.numeric_log_level == logging.DEBUG


def test_blank_values_fall_back_to_defaults() -> None:
    settings = PlayerSettings.from_env(
        {"NOVELSCRIPT_SAVE_DIR": "  ", "NOVELSCRIPT_LOG_LEVEL": ""}
    )

    assert settings.save_dir is None
    assert settings.log_level == "WARNING"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("NOVELSCRIPT_LOOP_GUARD", "many"),
        ("NOVELSCRIPT_LOOP_GUARD", "0"),
        ("NOVELSCRIPT_HTTP_TIMEOUT", "soon"),
        ("NOVELSCRIPT_HTTP_TIMEOUT", "-1"),
        ("NOVELSCRIPT_MAX_SESSIONS", "lots"),
        ("NOVELSCRIPT_MAX_SESSIONS", "0"),
        ("NOVELSCRIPT_LOG_LEVEL", "LOUD"),
    ],
)
def test_invalid_values_name_the_variable(name: str, value: str) -> None:
    with pytest.raises(ValueError) as excinfo:
        PlayerSettings.from_env({name: value})

    assert name in str(excinfo.value)
