"""Presentation snapshot of what should currently be on screen.

Readers only ever receive frozen :class:`PresentationSnapshot` instances. The
owning interpreter is the single writer and mutates the snapshot exclusively
through the setters on :class:`PresentationStore`, each of which swaps in a
new snapshot and notifies subscribers.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Callable, Iterable, List, Mapping

from .schema import ChoiceOption, InputRoute, Position


def _empty_mapping() -> Mapping:
    return MappingProxyType({})


@dataclass(frozen=True)
class DialogState:
    speaker: str | None = None
    full_text: str = ""
    visible_text: str = ""
    typing: bool = False


@dataclass(frozen=True)
class CharacterSlot:
    """A character stand shown at one of the three positions."""

    id: str
    image: str
    emotion: str | None = None


@dataclass(frozen=True)
class StickerSlot:
    """An overlay image placed on top of the background."""

    id: str
    image: str
    x: str = "50%"
    y: str = "50%"
    width: str | None = None
    height: str | None = None
    anchor_x: str = "center"
    anchor_y: str = "center"
    rotate: float = 0.0
    opacity: float = 1.0
    z_index: int = 0
    enter_effect: str = "fadeIn"
    enter_duration: int = 280
    enter_delay: int = 0


@dataclass(frozen=True)
class VideoCutsceneState:
    active: bool = False
    src: str | None = None
    hold_to_skip_ms: int = 800
    guide_visible: bool = False
    skip_progress: float = 0.0


@dataclass(frozen=True)
class ChoiceGateState:
    """An open choice gate waiting for :meth:`Interpreter.submit_choice`."""

    key: str
    prompt: str
    options: tuple[ChoiceOption, ...]
    forgive_once_default: bool = False
    forgive_message: str | None = None
    forgiven: frozenset[int] = frozenset()


@dataclass(frozen=True)
class InputGateState:
    """An open free-text gate waiting for :meth:`Interpreter.submit_input`."""

    prompt: str
    correct: str
    errors: tuple[str, ...] = ()
    routes: tuple[InputRoute, ...] = ()
    save_as: str | None = None
    attempt_count: int = 0


@dataclass(frozen=True)
class PresentationSnapshot:
    background: str | None = None
    foreground: str | None = None
    stickers: Mapping[str, StickerSlot] = field(default_factory=_empty_mapping)
    characters: Mapping[Position, CharacterSlot] = field(default_factory=_empty_mapping)
    speaker_order: tuple[str, ...] = ()
    visible_character_ids: tuple[str, ...] = ()
    music: str | None = None
    dialog: DialogState = field(default_factory=DialogState)
    effect: str | None = None
    video: VideoCutsceneState = field(default_factory=VideoCutsceneState)
    choice_gate: ChoiceGateState | None = None
    input_gate: InputGateState | None = None
    busy: bool = False
    waiting_input: bool = False
    is_finished: bool = False
    ending_id: str | None = None


Listener = Callable[[PresentationSnapshot], None]


class PresentationStore:
    """Hold the current :class:`PresentationSnapshot` and replace it on change."""

    def __init__(self) -> None:
        self._snapshot = PresentationSnapshot()
        self._listeners: List[Listener] = []

    @property
    def snapshot(self) -> PresentationSnapshot:
        return self._snapshot

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` after every change; returns an unsubscribe hook."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _replace(self, **changes: object) -> None:
        self._snapshot = replace(self._snapshot, **changes)
        for listener in list(self._listeners):
            listener(self._snapshot)

    def reset(self) -> None:
        self._snapshot = PresentationSnapshot()
        for listener in list(self._listeners):
            listener(self._snapshot)

    # -- scenery -------------------------------------------------------

    def set_background(self, url: str | None) -> None:
        self._replace(background=url)

    def set_foreground(self, url: str | None) -> None:
        self._replace(foreground=url)

    def set_sticker(self, slot: StickerSlot) -> None:
        stickers = dict(self._snapshot.stickers)
        stickers[slot.id] = slot
        self._replace(stickers=MappingProxyType(stickers))

    def remove_sticker(self, sticker_id: str) -> None:
        if sticker_id not in self._snapshot.stickers:
            return
        stickers = dict(self._snapshot.stickers)
        del stickers[sticker_id]
        self._replace(stickers=MappingProxyType(stickers))

    def clear_stickers(self) -> None:
        self._replace(stickers=_empty_mapping())

    def set_character(self, position: Position, slot: CharacterSlot | None) -> None:
        characters = dict(self._snapshot.characters)
        if slot is None:
            characters.pop(position, None)
        else:
            characters[position] = slot
        self._replace(characters=MappingProxyType(characters))

    def promote_speaker(self, speaker_id: str | None) -> None:
        """Move ``speaker_id`` to the front of the speaker order."""

        if not speaker_id:
            return
        order = [entry for entry in self._snapshot.speaker_order if entry != speaker_id]
        self._replace(speaker_order=(speaker_id, *order))

    def set_visible_characters(self, ids: Iterable[str]) -> None:
        unique: List[str] = []
        for raw in ids:
            trimmed = raw.strip()
            if trimmed and trimmed not in unique:
                unique.append(trimmed)
        self._replace(visible_character_ids=tuple(unique))

    def set_music(self, url: str | None) -> None:
        self._replace(music=url)

    def set_effect(self, effect: str | None) -> None:
        self._replace(effect=effect)

    # -- dialog --------------------------------------------------------

    def set_dialog(self, **changes: object) -> None:
        self._replace(dialog=replace(self._snapshot.dialog, **changes))

    def show_message(self, text: str, speaker: str | None = None) -> None:
        """Display ``text`` fully revealed."""

        self._replace(
            dialog=DialogState(
                speaker=speaker, full_text=text, visible_text=text, typing=False
            )
        )

    def clear_dialog(self) -> None:
        self._replace(dialog=DialogState())

    # -- video ---------------------------------------------------------

    def set_video(self, **changes: object) -> None:
        self._replace(video=replace(self._snapshot.video, **changes))

    def clear_video(self) -> None:
        self._replace(video=VideoCutsceneState())

    # -- gates and flags -----------------------------------------------

    def set_choice_gate(self, gate: ChoiceGateState | None) -> None:
        self._replace(choice_gate=gate)

    def set_input_gate(self, gate: InputGateState | None) -> None:
        self._replace(input_gate=gate)

    def clear_gates(self) -> None:
        self._replace(choice_gate=None, input_gate=None)

    def set_busy(self, busy: bool) -> None:
        self._replace(busy=busy)

    def set_waiting_input(self, waiting: bool) -> None:
        self._replace(waiting_input=waiting)

    def set_finished(self, ending_id: str | None) -> None:
        self._replace(is_finished=True, ending_id=ending_id)


__all__ = [
    "CharacterSlot",
    "ChoiceGateState",
    "DialogState",
    "InputGateState",
    "PresentationSnapshot",
    "PresentationStore",
    "StickerSlot",
    "VideoCutsceneState",
]
