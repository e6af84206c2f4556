"""Test configuration for the novel script project."""

from __future__ import annotations

import copy
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from typing import Any, Callable, Mapping

import pytest
import yaml

from novelscript.audio import AudioMixer, RecordingAudioBackend
from novelscript.interpreter import Interpreter
from novelscript.persistence import CursorStore


BASE_DOCUMENT: dict[str, Any] = {
    "meta": {"title": "Test Story", "author": "Tester"},
    "settings": {"textSpeed": 40, "autoSave": False, "clickToInstant": True},
    "assets": {
        "backgrounds": {"room": "bg/room.png", "star": "fx/star.png"},
        "characters": {
            "alice": {
                "base": "chars/alice.png",
                "emotions": {"happy": "chars/alice_happy.png"},
            },
            "bob": {"base": "chars/bob.png"},
        },
        "music": {"theme": "audio/theme.ogg"},
        "sfx": {"ding": "audio/ding.wav"},
    },
    "state": {"defaults": {"score": 0, "name": "", "met_bob": False}},
    "inventory": {"defaults": {"key": {"name": "Old key"}}},
    "endings": {
        "good": {"title": "Good End", "description": "Everyone is happy."},
        "bad": {"title": "Bad End"},
    },
    "script": [{"scene": "intro"}],
    "scenes": {"intro": {"actions": [{"say": {"text": "Hello"}}]}},
}


ScriptFactory = Callable[..., str]


def build_document(
    scenes: Mapping[str, list[Any]] | None = None,
    *,
    script: list[str] | None = None,
    settings: Mapping[str, Any] | None = None,
    **overrides: Any,
) -> dict[str, Any]:
    document = copy.deepcopy(BASE_DOCUMENT)
    if scenes is not None:
        document["scenes"] = {
            scene_id: {"actions": list(actions)} for scene_id, actions in scenes.items()
        }
        if script is None:
            script = [next(iter(scenes))]
    if script is not None:
        document["script"] = [{"scene": scene_id} for scene_id in script]
    if settings:
        document["settings"].update(settings)
    for key, value in overrides.items():
        if value is None:
            document.pop(key, None)
        else:
            document[key] = value
    return document


@pytest.fixture
def make_document() -> Callable[..., dict[str, Any]]:
    """Return a helper building a script document from the shared base."""

    return build_document


@pytest.fixture
def make_script() -> ScriptFactory:
    """Return a helper rendering a script document as YAML text."""

    def _factory(*args: Any, **kwargs: Any) -> str:
        return yaml.safe_dump(build_document(*args, **kwargs), sort_keys=False)

    return _factory


@pytest.fixture
def audio_backend() -> RecordingAudioBackend:
    return RecordingAudioBackend()


@pytest.fixture
def make_interpreter(
    make_script: ScriptFactory, audio_backend: RecordingAudioBackend
) -> Callable[..., Interpreter]:
    """Return a helper that loads a script into a fresh interpreter."""

    def _factory(
        *args: Any,
        cursor_store: CursorStore | None = None,
        base_url: str = "",
        loop_guard: int | None = None,
        **kwargs: Any,
    ) -> Interpreter:
        options: dict[str, Any] = {}
        if loop_guard is not None:
            options["loop_guard"] = loop_guard
        interpreter = Interpreter(
            cursor_store=cursor_store,
            audio=AudioMixer(audio_backend),
            **options,
        )
        loaded = interpreter.load_game_from_text(
            make_script(*args, **kwargs), base_url=base_url
        )
        assert loaded, interpreter.error
        return interpreter

    return _factory
