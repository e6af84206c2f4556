"""Core package for the novel script engine."""

from .errors import (
    ErrorPayload,
    NovelScriptError,
    ScriptLoadError,
    ScriptReferenceError,
    ScriptRuntimeError,
    ScriptSchemaError,
    ScriptSyntaxError,
)
from .schema import Action, ActionKind, Condition, Scene, SceneGraph
from .parser import dump_script, load_script_from_file, parse_script
from .validator import parse_and_validate, validate_scene_graph
from .conditions import evaluate
from .state import RouteHistoryEntry, RouteState
from .store import PresentationSnapshot, PresentationStore
from .scheduler import Scheduler, TimerHandle
from .audio import AudioMixer, RecordingAudioBackend
from .persistence import (
    AUTOSAVE_KEY,
    CursorStore,
    FileCursorStore,
    InMemoryCursorStore,
    SaveProgress,
)
from .loader import ScriptFetcher, resolve_asset
from .chapters import (
    ChapterProject,
    is_project_source,
    parse_base,
    parse_chapter,
    parse_config,
    resolve_chapter_game,
)
from .interpreter import Interpreter, InterpreterStatus
from .lint import LintIssue, compute_scene_reachability, lint_scenario
from .settings import PlayerSettings

__all__ = [
    "ErrorPayload",
    "NovelScriptError",
    "ScriptLoadError",
    "ScriptReferenceError",
    "ScriptRuntimeError",
    "ScriptSchemaError",
    "ScriptSyntaxError",
    "Action",
    "ActionKind",
    "Condition",
    "Scene",
    "SceneGraph",
    "parse_script",
    "load_script_from_file",
    "dump_script",
    "parse_and_validate",
    "validate_scene_graph",
    "evaluate",
    "RouteState",
    "RouteHistoryEntry",
    "PresentationSnapshot",
    "PresentationStore",
    "Scheduler",
    "TimerHandle",
    "AudioMixer",
    "RecordingAudioBackend",
    "AUTOSAVE_KEY",
    "CursorStore",
    "FileCursorStore",
    "InMemoryCursorStore",
    "SaveProgress",
    "ScriptFetcher",
    "resolve_asset",
    "ChapterProject",
    "is_project_source",
    "parse_config",
    "parse_base",
    "parse_chapter",
    "resolve_chapter_game",
    "Interpreter",
    "InterpreterStatus",
    "LintIssue",
    "lint_scenario",
    "compute_scene_reachability",
    "PlayerSettings",
]
