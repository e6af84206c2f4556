"""FastAPI application exposing validation, linting and play sessions."""

from __future__ import annotations

import logging
import uuid
from collections import OrderedDict
from dataclasses import asdict
from typing import Any, Literal

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field
from starlette.background import BackgroundTask
from starlette.responses import PlainTextResponse

from ..errors import ErrorPayload, NovelScriptError
from ..interpreter import Interpreter, InterpreterStatus
from ..lint import compute_scene_reachability, has_errors, lint_scenario
from ..loader import ScriptFetcher
from ..parser import dump_script
from ..persistence import CursorStore, FileCursorStore, InMemoryCursorStore
from ..settings import PlayerSettings
from ..store import PresentationSnapshot
from ..validator import parse_and_validate

logger = logging.getLogger(__name__)


class YAMLResponse(PlainTextResponse):
    """Plain text response carrying a normalised YAML script."""

    media_type = "application/yaml"

    def __init__(
        self,
        content: str,
        *,
        filename: str | None = None,
        status_code: int = 200,
        background: BackgroundTask | None = None,
    ) -> None:
        headers = None
        if filename:
            headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
        super().__init__(
            content=content,
            status_code=status_code,
            headers=headers,
            background=background,
        )


class ScriptRequest(BaseModel):
    """Script text submitted for validation."""

    script: str


class ReachabilitySummary(BaseModel):
    start_scene: str
    reachable_scenes: list[str]
    unreachable_scenes: list[str]


class ScriptValidationResponse(BaseModel):
    """Result of parsing and validating a script."""

    valid: Literal[True] = True
    title: str
    scene_count: int
    reachability: ReachabilitySummary


class ScenarioLintRequest(BaseModel):
    scenario: dict[str, Any] = Field(default_factory=dict)


class LintIssueModel(BaseModel):
    code: str
    severity: Literal["error", "warning"]
    message: str
    node_id: str | None = None
    hint: str = ""


class ScenarioLintResponse(BaseModel):
    valid: bool
    issues: list[LintIssueModel]


class SessionCreateRequest(BaseModel):
    """Start a play session from script text."""

    script: str
    base_url: str = ""
    save_key: str | None = None


class ChoiceRequest(BaseModel):
    index: int = Field(ge=0)


class InputRequest(BaseModel):
    answer: str


class TickRequest(BaseModel):
    ms: float = Field(ge=0)


class VideoRequest(BaseModel):
    action: Literal["complete", "skip"] = "complete"


class SessionResponse(BaseModel):
    """Current state of a play session as seen by a renderer."""

    session_id: str
    save_key: str
    status: InterpreterStatus
    scene_id: str
    action_index: int
    snapshot: dict[str, Any]
    error: ErrorPayload | None = None


def snapshot_payload(snapshot: PresentationSnapshot) -> dict[str, Any]:
    """Return a JSON-friendly view of ``snapshot`` without answer keys."""

    choice_gate = None
    if snapshot.choice_gate is not None:
        choice_gate = {
            "key": snapshot.choice_gate.key,
            "prompt": snapshot.choice_gate.prompt,
            "options": [option.text for option in snapshot.choice_gate.options],
        }
    input_gate = None
    if snapshot.input_gate is not None:
        input_gate = {
            "prompt": snapshot.input_gate.prompt,
            "attemptCount": snapshot.input_gate.attempt_count,
        }
    return {
        "background": snapshot.background,
        "foreground": snapshot.foreground,
        "stickers": {key: asdict(slot) for key, slot in snapshot.stickers.items()},
        "characters": {
            position: asdict(slot) for position, slot in snapshot.characters.items()
        },
        "speakerOrder": list(snapshot.speaker_order),
        "visibleCharacterIds": list(snapshot.visible_character_ids),
        "music": snapshot.music,
        "dialog": asdict(snapshot.dialog),
        "effect": snapshot.effect,
        "video": asdict(snapshot.video),
        "choiceGate": choice_gate,
        "inputGate": input_gate,
        "busy": snapshot.busy,
        "waitingInput": snapshot.waiting_input,
        "isFinished": snapshot.is_finished,
        "endingId": snapshot.ending_id,
    }


class _LoadFailed(Exception):
    def __init__(self, payload: ErrorPayload | None) -> None:
        super().__init__(payload.message if payload else "Failed to load script")
        self.payload = payload


class PlaySessionService:
    """Keep one :class:`Interpreter` per active play session.

    At most ``settings.max_sessions`` sessions are held; starting another one
    drops the session that was used least recently. Each session autosaves
    under the ``save_key`` of its create request, or under a key derived from
    its session id when the client sends none, so sessions never share a
    resume cursor by accident. Dropping a session keeps its autosave.
    """

    def __init__(self, settings: PlayerSettings, cursor_store: CursorStore | None = None) -> None:
        self._settings = settings
        if cursor_store is None:
            if settings.save_dir is not None:
                cursor_store = FileCursorStore(settings.save_dir)
            else:
                cursor_store = InMemoryCursorStore()
        self._cursor_store = cursor_store
        self._sessions: OrderedDict[str, Interpreter] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, request: SessionCreateRequest) -> tuple[str, Interpreter]:
        """Start a session, raising :class:`_LoadFailed` when the script is rejected."""

        session_id = uuid.uuid4().hex
        interpreter = Interpreter(
            cursor_store=self._cursor_store,
            fetcher=ScriptFetcher(timeout=self._settings.http_timeout),
            loop_guard=self._settings.loop_guard,
            autosave_key=request.save_key or f"session-{session_id}",
        )
        if not interpreter.load_game_from_text(request.script, base_url=request.base_url):
            raise _LoadFailed(interpreter.error)
        while len(self._sessions) >= self._settings.max_sessions:
            evicted, _ = self._sessions.popitem(last=False)
            logger.info("Dropped idle play session %s", evicted)
        self._sessions[session_id] = interpreter
        logger.info("Started play session %s", session_id)
        return session_id, interpreter

    def get(self, session_id: str) -> Interpreter:
        try:
            interpreter = self._sessions[session_id]
        except KeyError as exc:
            raise KeyError(f"Play session '{session_id}' does not exist.") from exc
        self._sessions.move_to_end(session_id)
        return interpreter

    def delete(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is None:
            raise KeyError(f"Play session '{session_id}' does not exist.")


def _session_response(session_id: str, interpreter: Interpreter) -> SessionResponse:
    return SessionResponse(
        session_id=session_id,
        save_key=interpreter.autosave_key,
        status=interpreter.status,
        scene_id=interpreter.scene_id,
        action_index=interpreter.action_index,
        snapshot=snapshot_payload(interpreter.snapshot),
        error=interpreter.error,
    )


def create_app(
    settings: PlayerSettings | None = None,
    *,
    cursor_store: CursorStore | None = None,
) -> FastAPI:
    """Create a FastAPI app exposing the script tooling endpoints."""

    resolved_settings = settings or PlayerSettings.from_env()
    sessions = PlaySessionService(resolved_settings, cursor_store)

    tags_metadata = [
        {
            "name": "Scripts",
            "description": "Parse, validate and lint novel scripts.",
        },
        {
            "name": "Sessions",
            "description": (
                "Drive headless play sessions and read their presentation "
                "snapshots."
            ),
        },
    ]

    app = FastAPI(
        title="Novel Script API",
        version="0.1.0",
        description=(
            "HTTP API for validating visual novel scripts, linting authoring "
            "graphs and playing scripts headlessly."
        ),
        openapi_tags=tags_metadata,
    )

    def _lookup(session_id: str) -> Interpreter:
        try:
            return sessions.get(session_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.post(
        "/api/scripts/validate",
        response_model=ScriptValidationResponse,
        tags=["Scripts"],
    )
    def validate_script(payload: ScriptRequest) -> ScriptValidationResponse:
        try:
            graph = parse_and_validate(payload.script)
        except NovelScriptError as exc:
            raise HTTPException(
                status_code=422, detail=exc.to_payload().model_dump()
            ) from exc
        report = compute_scene_reachability(graph)
        return ScriptValidationResponse(
            title=graph.meta.title,
            scene_count=len(graph.scenes),
            reachability=ReachabilitySummary(
                start_scene=report.start_scene,
                reachable_scenes=list(report.reachable_scenes),
                unreachable_scenes=list(report.unreachable_scenes),
            ),
        )

    @app.post(
        "/api/scripts/normalise",
        response_class=YAMLResponse,
        tags=["Scripts"],
    )
    def normalise_script(payload: ScriptRequest, download: bool = False) -> YAMLResponse:
        try:
            graph = parse_and_validate(payload.script)
        except NovelScriptError as exc:
            raise HTTPException(
                status_code=422, detail=exc.to_payload().model_dump()
            ) from exc
        filename = "script.yaml" if download else None
        return YAMLResponse(dump_script(graph), filename=filename)

    @app.post(
        "/api/scenarios/lint",
        response_model=ScenarioLintResponse,
        tags=["Scripts"],
    )
    def lint_scenario_endpoint(payload: ScenarioLintRequest) -> ScenarioLintResponse:
        issues = lint_scenario(payload.scenario)
        return ScenarioLintResponse(
            valid=not has_errors(issues),
            issues=[
                LintIssueModel(
                    code=issue.code,
                    severity=issue.severity,
                    message=issue.message,
                    node_id=issue.node_id,
                    hint=issue.hint,
                )
                for issue in issues
            ],
        )

    @app.post(
        "/api/sessions",
        response_model=SessionResponse,
        status_code=201,
        tags=["Sessions"],
    )
    def create_session(payload: SessionCreateRequest) -> SessionResponse:
        try:
            session_id, interpreter = sessions.create(payload)
        except _LoadFailed as exc:
            detail = exc.payload.model_dump() if exc.payload else str(exc)
            raise HTTPException(status_code=422, detail=detail) from exc
        return _session_response(session_id, interpreter)

    @app.get(
        "/api/sessions/{session_id}",
        response_model=SessionResponse,
        tags=["Sessions"],
    )
    def get_session(session_id: str) -> SessionResponse:
        return _session_response(session_id, _lookup(session_id))

    @app.post(
        "/api/sessions/{session_id}/advance",
        response_model=SessionResponse,
        tags=["Sessions"],
    )
    def advance_session(session_id: str) -> SessionResponse:
        interpreter = _lookup(session_id)
        interpreter.advance()
        return _session_response(session_id, interpreter)

    @app.post(
        "/api/sessions/{session_id}/tick",
        response_model=SessionResponse,
        tags=["Sessions"],
    )
    def tick_session(session_id: str, payload: TickRequest) -> SessionResponse:
        interpreter = _lookup(session_id)
        interpreter.tick(payload.ms)
        return _session_response(session_id, interpreter)

    @app.post(
        "/api/sessions/{session_id}/choice",
        response_model=SessionResponse,
        tags=["Sessions"],
    )
    def choose(session_id: str, payload: ChoiceRequest) -> SessionResponse:
        interpreter = _lookup(session_id)
        interpreter.submit_choice(payload.index)
        return _session_response(session_id, interpreter)

    @app.post(
        "/api/sessions/{session_id}/input",
        response_model=SessionResponse,
        tags=["Sessions"],
    )
    def answer(session_id: str, payload: InputRequest) -> SessionResponse:
        interpreter = _lookup(session_id)
        interpreter.submit_input(payload.answer)
        return _session_response(session_id, interpreter)

    @app.post(
        "/api/sessions/{session_id}/video",
        response_model=SessionResponse,
        tags=["Sessions"],
    )
    def finish_video(session_id: str, payload: VideoRequest) -> SessionResponse:
        interpreter = _lookup(session_id)
        if payload.action == "skip":
            interpreter.skip_video()
        else:
            interpreter.complete_video()
        return _session_response(session_id, interpreter)

    @app.post(
        "/api/sessions/{session_id}/restart",
        response_model=SessionResponse,
        tags=["Sessions"],
    )
    def restart_session(session_id: str) -> SessionResponse:
        interpreter = _lookup(session_id)
        interpreter.restart()
        return _session_response(session_id, interpreter)

    @app.delete(
        "/api/sessions/{session_id}",
        status_code=204,
        tags=["Sessions"],
    )
    def delete_session(session_id: str) -> None:
        try:
            sessions.delete(session_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    return app


__all__ = [
    "PlaySessionService",
    "SessionResponse",
    "YAMLResponse",
    "create_app",
    "snapshot_payload",
]
