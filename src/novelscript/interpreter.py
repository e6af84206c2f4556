"""Cooperative runtime that plays a validated scene graph.

The interpreter owns one :class:`~novelscript.store.PresentationStore`, one
:class:`~novelscript.state.RouteState` and a virtual-clock
:class:`~novelscript.scheduler.Scheduler`. Hosts construct one instance per
game, call :meth:`Interpreter.load_game`, render ``interpreter.snapshot`` and
forward player input to :meth:`Interpreter.advance`,
:meth:`Interpreter.submit_choice` and :meth:`Interpreter.submit_input`.

Execution runs actions in order until it reaches a suspension point: a
``say`` line, a ``wait`` timer, a ``choice``/``input`` gate, a ``video``
cutscene or an input-locking ``sticker``. Timer callbacks resume execution
from the scheduler. Failures never escape: they are stored in
:attr:`Interpreter.error` and freeze the machine.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Sequence

from .audio import AudioMixer
from .chapters import ChapterProject, is_project_source
from .conditions import evaluate
from .errors import ErrorPayload, NovelScriptError, ScriptRuntimeError
from .loader import ScriptFetcher, resolve_asset
from .persistence import AUTOSAVE_KEY, CursorStore, SaveProgress
from .schema import (
    Action,
    ActionKind,
    ClearStickerSpec,
    SceneGraph,
    StickerLength,
    StickerMotion,
    StickerSpec,
    chapter_target,
    parse_speaker_ref,
)
from .scheduler import Scheduler, TimerHandle
from .state import RouteHistoryEntry, RouteState
from .store import (
    ChoiceGateState,
    CharacterSlot,
    InputGateState,
    PresentationSnapshot,
    PresentationStore,
    StickerSlot,
)
from .validator import parse_and_validate

logger = logging.getLogger(__name__)

LOOP_GUARD_LIMIT = 1000
RESTORE_STEP_LIMIT = 20_000
MIN_TYPE_DELAY_MS = 16
MAX_LOCK_MS = 60_000
DEFAULT_EFFECT_MS = 350
EFFECT_DURATIONS: Dict[str, int] = {
    "shake": 280,
    "flash": 350,
    "zoom": 420,
    "blur": 420,
    "darken": 500,
    "pulse": 500,
    "tilt": 320,
}
DEFAULT_VIDEO_HOLD_TO_SKIP_MS = 800
MIN_VIDEO_HOLD_TO_SKIP_MS = 300
MAX_VIDEO_HOLD_TO_SKIP_MS = 5000
DEFAULT_STICKER_ENTER_EFFECT = "fadeIn"
DEFAULT_STICKER_ENTER_MS = 280
MAX_STICKER_TIMING_MS = 5000
DEFAULT_INPUT_ERROR = "That's not the answer."
DEFAULT_FORGIVE_MESSAGE = "I'll let that one slide. Please choose again."

_INLINE_SPEED = re.compile(r"<speed=(\d+)>(.*?)</speed>", re.IGNORECASE | re.DOTALL)


class InterpreterStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    WAITING_INPUT = "waiting_input"
    FINISHED = "finished"
    ERROR = "error"


@dataclass(frozen=True)
class SpeedSegment:
    """Characters ``start`` (exclusive) to ``end`` (inclusive) type at ``speed``."""

    start: int
    end: int
    speed: int


def parse_inline_speed(text: str) -> tuple[str, tuple[SpeedSegment, ...]]:
    """Strip ``<speed=N>...</speed>`` tags, returning text and speed spans."""

    segments: List[SpeedSegment] = []
    pieces: List[str] = []
    length = 0
    cursor = 0
    for match in _INLINE_SPEED.finditer(text):
        if match.start() > cursor:
            before = text[cursor : match.start()]
            pieces.append(before)
            length += len(before)
        span = match.group(2)
        speed = int(match.group(1))
        start = length
        pieces.append(span)
        length += len(span)
        if length > start and speed > 0:
            segments.append(SpeedSegment(start, length, max(1, speed)))
        cursor = match.end()
    if not pieces:
        return text, ()
    pieces.append(text[cursor:])
    return "".join(pieces), tuple(segments)


def typing_delay_ms(chars_per_second: float) -> int:
    """Return the delay between revealed characters at the given speed."""

    return max(MIN_TYPE_DELAY_MS, math.floor(1000 / max(1, chars_per_second)))


def _clamp_ms(value: float | None, *, low: int = 0, high: int = MAX_LOCK_MS) -> int:
    if value is None or math.isnan(value):
        return 0
    return max(low, min(high, math.floor(value)))


def _css_length(value: StickerLength | None, fallback: str | None) -> str | None:
    if isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        return f"{value:g}%"
    if isinstance(value, str) and value.strip():
        return value.strip()
    return fallback


@dataclass
class _TypingProgress:
    text: str
    segments: tuple[SpeedSegment, ...]
    default_speed: float
    revealed: int = 0

    def speed_for(self, position: int) -> float:
        for segment in self.segments:
            if segment.start < position <= segment.end:
                return segment.speed
        return self.default_speed


class Interpreter:
    """Explicit game context: one loaded script and its playback state."""

    def __init__(
        self,
        *,
        scheduler: Scheduler | None = None,
        store: PresentationStore | None = None,
        cursor_store: CursorStore | None = None,
        fetcher: ScriptFetcher | None = None,
        audio: AudioMixer | None = None,
        loop_guard: int = LOOP_GUARD_LIMIT,
        autosave_key: str = AUTOSAVE_KEY,
    ) -> None:
        self.scheduler = scheduler or Scheduler()
        self.store = store or PresentationStore()
        self.cursor_store = cursor_store
        self.fetcher = fetcher or ScriptFetcher()
        self.audio = audio or AudioMixer()
        self.loop_guard = loop_guard
        self.autosave_key = autosave_key

        self.game: SceneGraph | None = None
        self.project: ChapterProject | None = None
        self.chapter_path: str | None = None
        self.base_url = ""
        self.route = RouteState()
        self.scene_id = ""
        self.action_index = 0
        self.error: ErrorPayload | None = None

        self._loading = False
        self._type_timer: TimerHandle | None = None
        self._wait_timer: TimerHandle | None = None
        self._effect_timer: TimerHandle | None = None
        self._typing: _TypingProgress | None = None
        self._handlers: Dict[ActionKind, Callable[[Action], bool]] = {
            ActionKind.BG: self._do_background,
            ActionKind.STICKER: self._do_sticker,
            ActionKind.CLEAR_STICKER: self._do_clear_sticker,
            ActionKind.MUSIC: self._do_music,
            ActionKind.SOUND: self._do_sound,
            ActionKind.VIDEO: self._do_video,
            ActionKind.CHAR: self._do_character,
            ActionKind.SAY: self._do_say,
            ActionKind.WAIT: self._do_wait,
            ActionKind.SET: self._do_set,
            ActionKind.ADD: self._do_add,
            ActionKind.GET: self._do_get,
            ActionKind.USE: self._do_use,
            ActionKind.EFFECT: self._do_effect,
            ActionKind.GOTO: self._do_goto,
            ActionKind.INPUT: self._do_input,
            ActionKind.CHOICE: self._do_choice,
            ActionKind.BRANCH: self._do_branch,
            ActionKind.ENDING: self._do_ending,
        }

    # ------------------------------------------------------------------
    # Read-only surface
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> PresentationSnapshot:
        return self.store.snapshot

    @property
    def cursor(self) -> tuple[str, int]:
        return self.scene_id, self.action_index

    @property
    def status(self) -> InterpreterStatus:
        if self.error is not None:
            return InterpreterStatus.ERROR
        if self.game is None:
            return InterpreterStatus.IDLE
        snapshot = self.store.snapshot
        if snapshot.is_finished:
            return InterpreterStatus.FINISHED
        if snapshot.waiting_input:
            return InterpreterStatus.WAITING_INPUT
        return InterpreterStatus.RUNNING

    def tick(self, delta_ms: float) -> int:
        """Advance the virtual clock, firing any due timers."""

        return self.scheduler.advance(delta_ms)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_game(self, source: str) -> bool:
        """Fetch, parse, validate and start the script at ``source``.

        ``source`` is a single script, or a project root (a directory, a URL
        ending in ``/`` or a ``config.yaml``) whose numbered chapters are
        played in order. Returns ``True`` when playback started. Failures are
        stored in :attr:`error` instead of being raised.
        """

        self._reset()
        self._loading = True
        project: ChapterProject | None = None
        chapter_path: str | None = None
        try:
            if is_project_source(source):
                project = ChapterProject(source, self.fetcher)
                chapter_path = self._resume_chapter(project)
                graph = project.load(chapter_path)
                base_url = project.root_url
            else:
                fetched = self.fetcher.fetch(source)
                graph = parse_and_validate(fetched.text)
                base_url = fetched.base_url
        except NovelScriptError as exc:
            logger.info("Failed to load %s: %s", source, exc.message)
            self.error = exc.to_payload()
            return False
        finally:
            self._loading = False
        logger.info("Loaded script '%s' from %s", graph.meta.title, source)
        self.project = project
        self.chapter_path = chapter_path
        self._start(graph, base_url)
        return True

    def _resume_chapter(self, project: ChapterProject) -> str:
        """Return the autosaved chapter when it still exists, else the first one."""

        first = project.first_chapter()
        if not project.config().data.auto_save:
            return first
        progress = self._read_progress()
        if progress is not None and progress.chapter_path:
            if project.exists(progress.chapter_path):
                return progress.chapter_path
            logger.info("Saved chapter %s no longer exists", progress.chapter_path)
        return first

    def load_game_from_text(self, text: str, *, base_url: str = "") -> bool:
        """Like :meth:`load_game` for script text that is already in memory."""

        self._reset()
        try:
            graph = parse_and_validate(text)
        except NovelScriptError as exc:
            self.error = exc.to_payload()
            return False
        self._start(graph, base_url)
        return True

    def restart(self) -> None:
        """Forget saved progress and play again from the first scene."""

        if self.game is None:
            return
        game = self.game
        base_url = self.base_url
        project = self.project
        chapter_path = self.chapter_path
        if project is not None:
            try:
                chapter_path = project.first_chapter()
                game = project.load(chapter_path)
            except NovelScriptError as exc:
                self._fail(exc)
                return
        if self.cursor_store is not None:
            self.cursor_store.delete(self.autosave_key)
        self._reset()
        self.game = game
        self.project = project
        self.chapter_path = chapter_path
        self.base_url = base_url
        self.route = RouteState.from_graph(game)
        self.scene_id = game.first_scene
        self.action_index = 0
        logger.info("Restarting '%s'", game.meta.title)
        self._run()

    def _reset(self) -> None:
        self._cancel_timers()
        self._typing = None
        self.store.reset()
        self.audio.stop()
        self.game = None
        self.project = None
        self.chapter_path = None
        self.base_url = ""
        self.route = RouteState()
        self.scene_id = ""
        self.action_index = 0
        self.error = None

    def _start(self, graph: SceneGraph, base_url: str) -> None:
        self.game = graph
        self.base_url = base_url
        self.route = RouteState.from_graph(graph)

        progress = self._load_progress(graph)
        if progress is not None:
            progress.apply_to_state(self.route)
            self.scene_id = progress.scene_id
            self.action_index = progress.action_index
            self._restore_presentation(progress)
            logger.info(
                "Resuming '%s' at %s:%d",
                graph.meta.title,
                self.scene_id,
                self.action_index,
            )
        else:
            self.scene_id = graph.first_scene
            self.action_index = 0
        self._run()

    def _read_progress(self) -> SaveProgress | None:
        if self.cursor_store is None:
            return None
        try:
            return self.cursor_store.load(self.autosave_key)
        except KeyError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable autosave: %s", exc)
            return None

    def _load_progress(self, graph: SceneGraph) -> SaveProgress | None:
        if not graph.settings.auto_save:
            return None
        progress = self._read_progress()
        if progress is None:
            return None
        if progress.chapter_path != self.chapter_path:
            logger.info("Saved progress belongs to chapter %s", progress.chapter_path)
            return None
        scene = graph.scenes.get(progress.scene_id)
        if scene is None:
            logger.info("Saved scene '%s' no longer exists", progress.scene_id)
            return None
        if not 0 <= progress.action_index <= len(scene.actions):
            logger.info(
                "Saved cursor %s:%d is out of range", progress.scene_id, progress.action_index
            )
            return None
        return progress

    def _restore_presentation(self, progress: SaveProgress) -> None:
        """Rebuild the stage by replaying the route that led to the saved cursor.

        The walk starts at the first scene and follows script order, gotos,
        branches and the choice/input decisions recorded in the route history.
        Branches are decided by variables rebuilt during the walk, never by the
        saved ones, so they take the same way they took in the original play.
        Only presentation is applied; nothing is autosaved while walking.
        """

        assert self.game is not None
        game = self.game
        decisions: Dict[tuple[str, int], RouteHistoryEntry] = {
            (entry.scene_id, entry.action_index): entry for entry in progress.history
        }
        replay = RouteState.from_graph(game)
        target = (progress.scene_id, progress.action_index)
        scene_id, index = game.first_scene, 0

        for _ in range(RESTORE_STEP_LIMIT):
            if (scene_id, index) == target:
                break
            scene = game.scenes.get(scene_id)
            if scene is None:
                break
            if index >= len(scene.actions):
                following = game.next_scene(scene_id)
                if following is None:
                    break
                scene_id, index = following, 0
                continue

            action = scene.actions[index]
            kind = action.kind
            goto: str | None = None
            if kind is ActionKind.ENDING:
                break
            if kind is ActionKind.GOTO:
                goto = action.goto
            elif kind is ActionKind.BRANCH:
                goto = self._replay_branch(action, replay)
            elif kind in (ActionKind.CHOICE, ActionKind.INPUT):
                decision = decisions.get((scene_id, index))
                if decision is None or decision.kind != kind.value:
                    break
                goto = self._replay_decision(action, decision, replay)
            else:
                self._replay_stage(action, replay)

            if not goto:
                index += 1
            elif chapter_target(goto) is not None:
                break
            else:
                scene_id, index = goto, 0
        else:
            logger.warning(
                "Stopped rebuilding the stage after %d steps", RESTORE_STEP_LIMIT
            )

        music = self.store.snapshot.music
        if music:
            self.audio.play_music(music)

    def _replay_stage(self, action: Action, replay: RouteState) -> None:
        assert self.game is not None
        kind = action.kind
        if kind is ActionKind.BG:
            self._do_background(action, advance=False)
        elif kind is ActionKind.CHAR:
            self._do_character(action, advance=False)
        elif kind is ActionKind.STICKER:
            assert action.sticker is not None
            self.store.set_sticker(self._sticker_slot(action.sticker))
        elif kind is ActionKind.CLEAR_STICKER:
            self._clear_sticker(action)
        elif kind is ActionKind.MUSIC:
            self.store.set_music(
                resolve_asset(self.base_url, self.game.assets.music[action.music or ""])
            )
        elif kind is ActionKind.SAY:
            assert action.say is not None
            self._present_speakers(action.say.char, action.say.with_, always=True)
        elif kind is ActionKind.SET:
            replay.set_values(action.set_vars)
        elif kind is ActionKind.ADD:
            replay.add_values(action.add_vars)
        elif kind is ActionKind.GET:
            replay.give_item(action.get_item or "")
        elif kind is ActionKind.USE:
            replay.use_item(action.use_item or "")

    @staticmethod
    def _replay_branch(action: Action, replay: RouteState) -> str | None:
        branch = action.branch
        assert branch is not None
        for case in branch.cases:
            if evaluate(case.when, replay.variables, replay.inventory):
                return case.goto
        return branch.default

    def _replay_decision(
        self, action: Action, decision: RouteHistoryEntry, replay: RouteState
    ) -> str | None:
        if action.kind is ActionKind.CHOICE:
            choice = action.choice
            assert choice is not None
            self._present_speakers(choice.char, choice.with_, always=False)
            option = next(
                (option for option in choice.options if option.text == decision.value),
                None,
            )
            if option is None:
                return None
            replay.set_values(option.set_vars)
            replay.add_values(option.add_vars)
            return option.goto

        gate = action.input_gate
        assert gate is not None
        self._present_speakers(gate.char, gate.with_, always=False)
        if gate.save_as:
            replay.set_values({gate.save_as: decision.value})
        route = next(
            (route for route in gate.routes if route.equals.strip() == decision.value),
            None,
        )
        if route is None:
            return None
        replay.set_values(route.set_vars)
        replay.add_values(route.add_vars)
        return route.goto

    # ------------------------------------------------------------------
    # External events
    # ------------------------------------------------------------------

    def advance(self) -> None:
        """Handle a click/Enter/Space from the renderer."""

        if self.game is None or self.error is not None or self._loading:
            return
        snapshot = self.store.snapshot
        if snapshot.is_finished:
            return
        if snapshot.video.active:
            self.store.set_video(guide_visible=True)
            return
        if snapshot.busy:
            return

        if snapshot.waiting_input:
            if snapshot.choice_gate is not None or snapshot.input_gate is not None:
                return
            if snapshot.dialog.typing and self.game.settings.click_to_instant:
                self._cancel(self._type_timer)
                self._type_timer = None
                self._typing = None
                self.store.set_dialog(
                    typing=False, visible_text=snapshot.dialog.full_text
                )
                return
            self._cancel_typing()
            self.store.set_waiting_input(False)
            self.store.clear_dialog()
            self._increment_cursor()
        self._run()

    def submit_choice(self, option_index: int) -> None:
        """Pick option ``option_index`` of the open choice gate."""

        snapshot = self.store.snapshot
        gate = snapshot.choice_gate
        if not self._gate_accepts_input() or gate is None:
            return
        if not 0 <= option_index < len(gate.options):
            logger.debug("Ignoring out-of-range choice %d", option_index)
            return

        option = gate.options[option_index]
        forgive = (
            option.forgive_once
            if option.forgive_once is not None
            else gate.forgive_once_default
        )
        if forgive and option_index not in gate.forgiven:
            self.store.set_choice_gate(
                ChoiceGateState(
                    key=gate.key,
                    prompt=gate.prompt,
                    options=gate.options,
                    forgive_once_default=gate.forgive_once_default,
                    forgive_message=gate.forgive_message,
                    forgiven=gate.forgiven | {option_index},
                )
            )
            self.store.show_message(
                option.forgive_message or gate.forgive_message or DEFAULT_FORGIVE_MESSAGE
            )
            return

        self.route.record(
            RouteHistoryEntry(
                "choice", gate.key, option.text, self.scene_id, self.action_index
            )
        )
        self.route.set_values(option.set_vars)
        self.route.add_values(option.add_vars)
        self._close_gate(option.goto)

    def submit_input(self, answer: str) -> None:
        """Answer the open input gate."""

        snapshot = self.store.snapshot
        gate = snapshot.input_gate
        if not self._gate_accepts_input() or gate is None:
            return

        typed = answer.strip()
        route = next(
            (candidate for candidate in gate.routes if candidate.equals.strip() == typed),
            None,
        )
        if route is None and typed != gate.correct.strip():
            attempt = gate.attempt_count + 1
            self.store.set_input_gate(
                InputGateState(
                    prompt=gate.prompt,
                    correct=gate.correct,
                    errors=gate.errors,
                    routes=gate.routes,
                    save_as=gate.save_as,
                    attempt_count=attempt,
                )
            )
            self.store.show_message(self._input_error(gate.errors, attempt))
            return

        key = gate.save_as or f"{self.scene_id}:{self.action_index}"
        if gate.save_as:
            self.route.set_values({gate.save_as: typed})
        self.route.record(
            RouteHistoryEntry("input", key, typed, self.scene_id, self.action_index)
        )
        if route is not None:
            self.route.set_values(route.set_vars)
            self.route.add_values(route.add_vars)
        self._close_gate(route.goto if route is not None else None)

    def complete_video(self) -> None:
        """The cutscene played to the end."""

        self._finish_video()

    def skip_video(self) -> None:
        """The player held the skip control long enough."""

        self._finish_video()

    def update_video_skip_progress(self, progress: float) -> None:
        if self.store.snapshot.video.active:
            self.store.set_video(skip_progress=max(0.0, min(1.0, progress)))

    def _finish_video(self) -> None:
        if self.error is not None or not self.store.snapshot.video.active:
            return
        self.store.clear_video()
        self.store.set_busy(False)
        self._increment_cursor()
        self._run()

    def _gate_accepts_input(self) -> bool:
        snapshot = self.store.snapshot
        return (
            self.game is not None
            and self.error is None
            and not snapshot.busy
            and snapshot.waiting_input
        )

    def _close_gate(self, goto: str | None) -> None:
        self.store.set_waiting_input(False)
        self.store.clear_gates()
        self.store.clear_dialog()
        try:
            if goto:
                self._jump(goto)
            else:
                self._increment_cursor()
        except NovelScriptError as exc:
            self._fail(exc)
            return
        self._run()

    @staticmethod
    def _input_error(errors: Sequence[str], attempt: int) -> str:
        if not errors:
            return DEFAULT_INPUT_ERROR
        return errors[max(0, min(attempt - 1, len(errors) - 1))]

    # ------------------------------------------------------------------
    # Dispatch loop
    # ------------------------------------------------------------------

    def _run(self) -> None:
        try:
            self._run_to_pause()
        except NovelScriptError as exc:
            self._fail(exc)
        except Exception as exc:  # pragma: no cover - scripting bugs must not crash hosts
            logger.exception("Unexpected failure while running %s", self.scene_id)
            self._fail(ScriptRuntimeError(str(exc), scene_id=self.scene_id))

    def _run_to_pause(self) -> None:
        steps = 0
        while self.game is not None and self.error is None:
            if steps > self.loop_guard:
                raise ScriptRuntimeError(
                    "Infinite loop detected in script execution", scene_id=self.scene_id
                )
            scene = self.game.scenes.get(self.scene_id)
            if scene is None:
                raise ScriptRuntimeError(
                    f"Scene not found: {self.scene_id}", scene_id=self.scene_id
                )
            if self.action_index >= len(scene.actions):
                next_scene = self.game.next_scene(self.scene_id)
                if next_scene is None:
                    following = self._next_chapter()
                    if following is None:
                        self._finish(self._resolve_ending())
                        return
                    self._enter_chapter(following)
                    steps += 1
                    continue
                self._set_cursor(next_scene, 0)
                steps += 1
                continue

            action = scene.actions[self.action_index]
            logger.debug("Running %s:%d %s", self.scene_id, self.action_index, action.kind.value)
            if self._handlers[action.kind](action):
                return
            steps += 1

    def _next_chapter(self) -> str | None:
        if self.project is None or self.chapter_path is None:
            return None
        return self.project.next_chapter(self.chapter_path)

    def _fail(self, exc: NovelScriptError) -> None:
        logger.warning("Playback stopped: %s", exc.message)
        self._cancel_timers()
        self._typing = None
        self.error = exc.to_payload()

    def _resolve_ending(self) -> str | None:
        assert self.game is not None
        game = self.game
        for rule in game.ending_rules:
            if rule.ending in game.endings and evaluate(
                rule.when, self.route.variables, self.route.inventory
            ):
                return rule.ending
        if game.default_ending and game.default_ending in game.endings:
            return game.default_ending
        return None

    def _finish(self, ending_id: str | None) -> None:
        self._cancel_typing()
        self._cancel(self._wait_timer)
        self._wait_timer = None
        self.route.ending_id = ending_id
        self.store.set_waiting_input(False)
        self.store.clear_gates()
        self.store.clear_dialog()
        self.store.set_finished(ending_id)
        self._autosave()
        logger.info("Story finished with ending %s", ending_id)

    # ------------------------------------------------------------------
    # Cursor, autosave and timers
    # ------------------------------------------------------------------

    def _set_cursor(self, scene_id: str, action_index: int) -> None:
        self.scene_id = scene_id
        self.action_index = action_index
        self._autosave()

    def _increment_cursor(self) -> None:
        self._set_cursor(self.scene_id, self.action_index + 1)

    def _jump(self, target: str) -> None:
        self._cancel_timers()
        chapter = chapter_target(target)
        if chapter is not None:
            self._enter_chapter(chapter)
            return
        self._set_cursor(target, 0)

    def _enter_chapter(self, chapter_path: str) -> None:
        """Switch to another chapter, carrying variables and inventory over."""

        if self.project is None or not self.project.exists(chapter_path):
            raise ScriptRuntimeError(
                f"Chapter not found for goto target: {chapter_path}",
                scene_id=self.scene_id,
            )
        graph = self.project.load(chapter_path)
        carried = self.route
        self.route = RouteState.from_graph(graph)
        self.route.merge(carried.variables, carried.inventory)
        self.route.history = list(carried.history)
        self.game = graph
        self.chapter_path = chapter_path
        self.store.set_waiting_input(False)
        self.store.clear_gates()
        self.store.clear_dialog()
        logger.info("Entering chapter %s", chapter_path)
        self._set_cursor(graph.first_scene, 0)

    def _autosave(self) -> None:
        if self.game is None or not self.game.settings.auto_save:
            return
        if self.cursor_store is None:
            return
        progress = SaveProgress.capture(
            self.scene_id, self.action_index, self.route, self.chapter_path
        )
        try:
            self.cursor_store.save(self.autosave_key, progress)
        except (OSError, ValueError) as exc:
            logger.warning("Autosave failed: %s", exc)

    def _cancel(self, handle: TimerHandle | None) -> None:
        self.scheduler.cancel(handle)

    def _cancel_typing(self) -> None:
        self._cancel(self._type_timer)
        self._type_timer = None
        self._typing = None

    def _cancel_timers(self) -> None:
        self._cancel_typing()
        self._cancel(self._wait_timer)
        self._wait_timer = None
        if self._effect_timer is not None and self._effect_timer.active:
            self.store.set_effect(None)
        self._cancel(self._effect_timer)
        self._effect_timer = None

    # ------------------------------------------------------------------
    # Typing
    # ------------------------------------------------------------------

    def _start_typing(self, text: str, segments: tuple[SpeedSegment, ...]) -> None:
        assert self.game is not None
        if not text:
            self.store.set_dialog(typing=False, visible_text="")
            return
        self._typing = _TypingProgress(
            text=text, segments=segments, default_speed=max(1.0, self.game.settings.text_speed)
        )
        self._schedule_type_tick()

    def _schedule_type_tick(self) -> None:
        assert self._typing is not None
        speed = self._typing.speed_for(self._typing.revealed + 1)
        self._type_timer = self.scheduler.call_later(typing_delay_ms(speed), self._type_tick)

    def _type_tick(self) -> None:
        self._type_timer = None
        progress = self._typing
        if progress is None:
            return
        progress.revealed += 1
        if progress.revealed >= len(progress.text):
            self._typing = None
            self.store.set_dialog(typing=False, visible_text=progress.text)
            return
        self.store.set_dialog(visible_text=progress.text[: progress.revealed])
        self._schedule_type_tick()

    # ------------------------------------------------------------------
    # Speaker presentation
    # ------------------------------------------------------------------

    @staticmethod
    def _speaker_refs(
        char: str | None, with_: Iterable[str] | None
    ) -> list[tuple[str, str | None]]:
        refs: list[tuple[str, str | None]] = []
        for position, raw in enumerate([char, *(with_ or ())]):
            try:
                ref = parse_speaker_ref(raw or "")
            except ValueError:
                if position == 0:
                    return []
                continue
            refs.append((ref.character_id, ref.emotion))
        return refs

    def _present_speakers(
        self, char: str | None, with_: Iterable[str] | None, *, always: bool
    ) -> str | None:
        refs = self._speaker_refs(char, with_)
        if not refs:
            if always:
                self.store.set_visible_characters(())
            return None
        speaker_id = refs[0][0]
        self.store.promote_speaker(speaker_id)
        self.store.set_visible_characters(character_id for character_id, _ in refs)
        self._sync_emotions(refs)
        return speaker_id

    def _sync_emotions(self, refs: Sequence[tuple[str, str | None]]) -> None:
        assert self.game is not None
        emotions = {character_id: emotion for character_id, emotion in refs if emotion}
        if not emotions:
            return
        for position, slot in list(self.store.snapshot.characters.items()):
            emotion = emotions.get(slot.id)
            character = self.game.assets.characters.get(slot.id)
            if emotion is None or character is None:
                continue
            path = character.emotions.get(emotion, character.base)
            self.store.set_character(
                position,
                CharacterSlot(slot.id, resolve_asset(self.base_url, path), emotion),
            )

    # ------------------------------------------------------------------
    # Action handlers: return True when execution pauses
    # ------------------------------------------------------------------

    def _do_background(self, action: Action, advance: bool = True) -> bool:
        assert self.game is not None
        path = self.game.assets.backgrounds[action.bg or ""]
        self.store.set_background(resolve_asset(self.base_url, path))
        if advance:
            self._increment_cursor()
        return False

    def _sticker_slot(self, spec: StickerSpec) -> StickerSlot:
        assert self.game is not None
        path = self.game.assets.backgrounds[spec.image]
        enter = spec.enter
        effect = DEFAULT_STICKER_ENTER_EFFECT
        duration = DEFAULT_STICKER_ENTER_MS
        delay = 0
        if isinstance(enter, str):
            effect = enter
        elif isinstance(enter, StickerMotion):
            effect = enter.effect or DEFAULT_STICKER_ENTER_EFFECT
            if enter.duration is not None:
                duration = _clamp_ms(enter.duration, high=MAX_STICKER_TIMING_MS)
            delay = _clamp_ms(enter.delay, high=MAX_STICKER_TIMING_MS)
        opacity = 1.0 if spec.opacity is None else max(0.0, min(1.0, spec.opacity))
        return StickerSlot(
            id=spec.id,
            image=resolve_asset(self.base_url, path),
            x=_css_length(spec.x, "50%") or "50%",
            y=_css_length(spec.y, "50%") or "50%",
            width=_css_length(spec.width, None),
            height=_css_length(spec.height, None),
            anchor_x=spec.anchor_x or "center",
            anchor_y=spec.anchor_y or "center",
            rotate=spec.rotate or 0.0,
            opacity=opacity,
            z_index=spec.z_index or 0,
            enter_effect=effect,
            enter_duration=duration,
            enter_delay=delay,
        )

    def _do_sticker(self, action: Action) -> bool:
        assert action.sticker is not None
        self.store.set_sticker(self._sticker_slot(action.sticker))
        lock_ms = _clamp_ms(action.sticker.input_lock_ms)
        if lock_ms > 0:
            self.store.set_busy(True)
            self._wait_timer = self.scheduler.call_later(lock_ms, self._resume_after_wait)
            return True
        self._increment_cursor()
        return False

    def _clear_sticker(self, action: Action) -> None:
        target = action.clear_sticker
        sticker_id = target.id if isinstance(target, ClearStickerSpec) else target
        if sticker_id == "all":
            self.store.clear_stickers()
        elif sticker_id:
            self.store.remove_sticker(sticker_id)

    def _do_clear_sticker(self, action: Action) -> bool:
        self._clear_sticker(action)
        self._increment_cursor()
        return False

    def _do_music(self, action: Action) -> bool:
        assert self.game is not None
        url = resolve_asset(self.base_url, self.game.assets.music[action.music or ""])
        self.store.set_music(url)
        self.audio.play_music(url)
        self._increment_cursor()
        return False

    def _do_sound(self, action: Action) -> bool:
        assert self.game is not None
        self.audio.play_sound(
            resolve_asset(self.base_url, self.game.assets.sfx[action.sound or ""])
        )
        self._increment_cursor()
        return False

    def _do_video(self, action: Action) -> bool:
        assert action.video is not None
        hold = action.video.hold_to_skip_ms
        self.store.set_busy(True)
        self.store.set_waiting_input(False)
        self.store.clear_gates()
        self.store.clear_dialog()
        self.store.set_video(
            active=True,
            src=resolve_asset(self.base_url, action.video.src),
            hold_to_skip_ms=(
                DEFAULT_VIDEO_HOLD_TO_SKIP_MS
                if hold is None
                else _clamp_ms(
                    hold, low=MIN_VIDEO_HOLD_TO_SKIP_MS, high=MAX_VIDEO_HOLD_TO_SKIP_MS
                )
            ),
            guide_visible=False,
            skip_progress=0.0,
        )
        return True

    def _do_character(self, action: Action, advance: bool = True) -> bool:
        assert self.game is not None and action.char is not None
        spec = action.char
        character = self.game.assets.characters[spec.id]
        path = character.base
        if spec.emotion:
            path = character.emotions.get(spec.emotion, character.base)
        self.store.set_character(
            spec.position,
            CharacterSlot(spec.id, resolve_asset(self.base_url, path), spec.emotion),
        )
        if advance:
            self._increment_cursor()
        return False

    def _do_say(self, action: Action) -> bool:
        say = action.say
        assert say is not None
        text, segments = parse_inline_speed(say.text)
        wait_ms = _clamp_ms(say.wait)
        self.store.clear_gates()
        speaker = self._present_speakers(say.char, say.with_, always=True)
        self.store.set_waiting_input(True)
        self.store.set_dialog(speaker=speaker, full_text=text, visible_text="", typing=True)
        if wait_ms > 0:
            self.store.set_busy(True)
            self._wait_timer = self.scheduler.call_later(wait_ms, self._release_busy)
        self._start_typing(text, segments)
        return True

    def _release_busy(self) -> None:
        self._wait_timer = None
        self.store.set_busy(False)

    def _do_wait(self, action: Action) -> bool:
        self.store.set_busy(True)
        self._wait_timer = self.scheduler.call_later(
            float(action.wait or 0), self._resume_after_wait
        )
        return True

    def _resume_after_wait(self) -> None:
        self._wait_timer = None
        self.store.set_busy(False)
        self._increment_cursor()
        self._run()

    def _do_set(self, action: Action) -> bool:
        self.route.set_values(action.set_vars)
        self._increment_cursor()
        return False

    def _do_add(self, action: Action) -> bool:
        self.route.add_values(action.add_vars)
        self._increment_cursor()
        return False

    def _do_get(self, action: Action) -> bool:
        self.route.give_item(action.get_item or "")
        self._increment_cursor()
        return False

    def _do_use(self, action: Action) -> bool:
        self.route.use_item(action.use_item or "")
        self._increment_cursor()
        return False

    def _do_effect(self, action: Action) -> bool:
        effect = action.effect or ""
        self._cancel(self._effect_timer)
        self.store.set_effect(effect)
        self._effect_timer = self.scheduler.call_later(
            EFFECT_DURATIONS.get(effect, DEFAULT_EFFECT_MS), self._clear_effect
        )
        self._increment_cursor()
        return False

    def _clear_effect(self) -> None:
        self._effect_timer = None
        self.store.set_effect(None)

    def _do_goto(self, action: Action) -> bool:
        self._jump(action.goto or "")
        return False

    def _do_branch(self, action: Action) -> bool:
        branch = action.branch
        assert branch is not None
        for case in branch.cases:
            if evaluate(case.when, self.route.variables, self.route.inventory):
                self._jump(case.goto)
                return False
        if branch.default:
            self._jump(branch.default)
            return False
        self._increment_cursor()
        return False

    def _do_choice(self, action: Action) -> bool:
        choice = action.choice
        assert choice is not None
        self.store.set_waiting_input(True)
        self.store.set_input_gate(None)
        self.store.set_choice_gate(
            ChoiceGateState(
                key=choice.key or f"{self.scene_id}:{self.action_index}",
                prompt=choice.prompt,
                options=tuple(choice.options),
                forgive_once_default=bool(choice.forgive_once_default),
                forgive_message=choice.forgive_message,
            )
        )
        speaker = self._present_speakers(choice.char, choice.with_, always=False)
        self.store.show_message(choice.prompt, speaker)
        return True

    def _do_input(self, action: Action) -> bool:
        gate = action.input_gate
        assert gate is not None
        self.store.set_waiting_input(True)
        self.store.set_choice_gate(None)
        self.store.set_input_gate(
            InputGateState(
                prompt=gate.prompt,
                correct=gate.correct,
                errors=tuple(gate.errors),
                routes=tuple(gate.routes),
                save_as=gate.save_as,
            )
        )
        speaker = self._present_speakers(gate.char, gate.with_, always=False)
        self.store.show_message(gate.prompt, speaker)
        return True

    def _do_ending(self, action: Action) -> bool:
        self._finish(action.ending)
        return True


__all__ = [
    "DEFAULT_EFFECT_MS",
    "EFFECT_DURATIONS",
    "Interpreter",
    "InterpreterStatus",
    "LOOP_GUARD_LIMIT",
    "RESTORE_STEP_LIMIT",
    "SpeedSegment",
    "parse_inline_speed",
    "typing_delay_ms",
]
