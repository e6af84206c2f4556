"""Typed scene graph models for novel scripts.

The models mirror the YAML document one-to-one (camelCase keys are kept as
aliases) so that pydantic error locations read like document paths.

Actions and conditions are tagged unions decided by structure: an action
object carries exactly one recognised key, a condition object is either a
``{var, op, value}`` leaf or a single-key ``all``/``any``/``not`` combinator.
Discrimination happens once, at validation time, and callers branch on
:attr:`Action.kind` / :attr:`Condition.kind` instead of probing keys.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Literal, Mapping, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    model_validator,
)

Position = Literal["left", "center", "right"]
POSITIONS: tuple[Position, ...] = ("left", "center", "right")

StateValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr]
ConditionOp = Literal["eq", "ne", "gt", "gte", "lt", "lte", "in"]
NUMERIC_OPS = frozenset({"gt", "gte", "lt", "lte"})

StickerLength = Union[StrictInt, StrictFloat, StrictStr]

MAX_CHOICE_OPTIONS = 8


class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(by_alias=True, exclude_none=True, mode="json")


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------


class ConditionKind(str, Enum):
    """Structural variant of a condition node."""

    LEAF = "leaf"
    ALL = "all"
    ANY = "any"
    NOT = "not"


_COMBINATOR_KEYS = {"all": "all_of", "any": "any_of", "not": "not_"}
_LEAF_KEYS = ("var", "op", "value")


class Condition(_Model):
    """Recursive boolean expression over state variables."""

    var: str | None = None
    op: ConditionOp | None = None
    value: StateValue | list[StateValue] | None = None
    all_of: list[Condition] | None = Field(default=None, alias="all")
    any_of: list[Condition] | None = Field(default=None, alias="any")
    not_: Condition | None = Field(default=None, alias="not")

    @model_validator(mode="before")
    @classmethod
    def _discriminate(cls, data: Any) -> Any:
        if isinstance(data, cls):
            return data
        if not isinstance(data, Mapping):
            raise ValueError("condition must be an object")
        keys = set(data.keys())
        combinators = [
            key for key, attr in _COMBINATOR_KEYS.items() if key in keys or attr in keys
        ]
        if combinators:
            if len(keys) != 1:
                raise ValueError(
                    f"condition '{combinators[0]}' must be the only key in its object"
                )
            return data
        if not keys:
            raise ValueError("empty condition object")
        missing = [key for key in _LEAF_KEYS if key not in keys]
        if missing:
            raise ValueError(
                "condition leaf requires 'var', 'op' and 'value' "
                f"(missing '{missing[0]}')"
            )
        return data

    @model_validator(mode="after")
    def _check_leaf(self) -> Condition:
        if self.kind is ConditionKind.LEAF:
            if self.value is None:
                raise ValueError("condition value must not be null")
            if self.op == "in" and not isinstance(self.value, list):
                raise ValueError("op 'in' requires an array value")
            if self.op != "in" and isinstance(self.value, list):
                raise ValueError(f"op '{self.op}' requires a scalar value")
        return self

    @property
    def kind(self) -> ConditionKind:
        if self.all_of is not None:
            return ConditionKind.ALL
        if self.any_of is not None:
            return ConditionKind.ANY
        if self.not_ is not None:
            return ConditionKind.NOT
        return ConditionKind.LEAF

    def iter_leaves(self) -> Iterator[Condition]:
        """Yield every leaf in declaration order."""

        kind = self.kind
        if kind is ConditionKind.LEAF:
            yield self
        elif kind is ConditionKind.NOT:
            assert self.not_ is not None
            yield from self.not_.iter_leaves()
        else:
            children = self.all_of if kind is ConditionKind.ALL else self.any_of
            for child in children or ():
                yield from child.iter_leaves()


# ---------------------------------------------------------------------------
# Action payloads
# ---------------------------------------------------------------------------


class StickerMotion(_Model):
    effect: str | None = None
    duration: float | None = Field(default=None, ge=0)
    easing: str | None = None
    delay: float | None = Field(default=None, ge=0)


class StickerSpec(_Model):
    id: str
    image: str
    x: StickerLength | None = None
    y: StickerLength | None = None
    width: StickerLength | None = None
    height: StickerLength | None = None
    anchor_x: Literal["left", "center", "right"] | None = Field(default=None, alias="anchorX")
    anchor_y: Literal["top", "center", "bottom"] | None = Field(default=None, alias="anchorY")
    rotate: float | None = None
    opacity: float | None = None
    z_index: int | None = Field(default=None, alias="zIndex")
    enter: str | StickerMotion | None = None
    input_lock_ms: float | None = Field(default=None, alias="inputLockMs", ge=0)


class ClearStickerSpec(_Model):
    id: str
    leave: str | StickerMotion | None = None


class VideoSpec(_Model):
    src: str
    hold_to_skip_ms: float | None = Field(default=None, alias="holdToSkipMs", ge=0)


class CharSpec(_Model):
    id: str
    position: Position
    emotion: str | None = None


class SayPayload(_Model):
    text: str
    char: str | None = None
    with_: list[str] | None = Field(default=None, alias="with")
    wait: float | None = Field(default=None, ge=0)


class InputRoute(_Model):
    equals: str
    goto: str | None = None
    set_vars: dict[str, StateValue] | None = Field(default=None, alias="set")
    add_vars: dict[str, Union[StrictInt, StrictFloat]] | None = Field(
        default=None, alias="add"
    )


class InputSpec(_Model):
    prompt: str
    correct: str
    errors: list[str] = Field(default_factory=list)
    save_as: str | None = Field(default=None, alias="saveAs")
    char: str | None = None
    with_: list[str] | None = Field(default=None, alias="with")
    routes: list[InputRoute] = Field(default_factory=list)


class ChoiceOption(_Model):
    text: str
    goto: str | None = None
    set_vars: dict[str, StateValue] | None = Field(default=None, alias="set")
    add_vars: dict[str, Union[StrictInt, StrictFloat]] | None = Field(
        default=None, alias="add"
    )
    forgive_once: bool | None = Field(default=None, alias="forgiveOnce")
    forgive_message: str | None = Field(default=None, alias="forgiveMessage")


class ChoiceSpec(_Model):
    prompt: str
    options: list[ChoiceOption] = Field(min_length=1, max_length=MAX_CHOICE_OPTIONS)
    char: str | None = None
    with_: list[str] | None = Field(default=None, alias="with")
    key: str | None = None
    forgive_once_default: bool | None = Field(default=None, alias="forgiveOnceDefault")
    forgive_message: str | None = Field(default=None, alias="forgiveMessage")


class BranchCase(_Model):
    when: Condition
    goto: str


class BranchSpec(_Model):
    cases: list[BranchCase] = Field(default_factory=list)
    default: str | None = None


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class ActionKind(str, Enum):
    """The tag of an action; values are the document keys."""

    BG = "bg"
    STICKER = "sticker"
    CLEAR_STICKER = "clearSticker"
    MUSIC = "music"
    SOUND = "sound"
    VIDEO = "video"
    CHAR = "char"
    SAY = "say"
    WAIT = "wait"
    SET = "set"
    ADD = "add"
    GET = "get"
    USE = "use"
    EFFECT = "effect"
    GOTO = "goto"
    INPUT = "input"
    CHOICE = "choice"
    BRANCH = "branch"
    ENDING = "ending"


_ACTION_ATTRS: dict[ActionKind, str] = {
    ActionKind.BG: "bg",
    ActionKind.STICKER: "sticker",
    ActionKind.CLEAR_STICKER: "clear_sticker",
    ActionKind.MUSIC: "music",
    ActionKind.SOUND: "sound",
    ActionKind.VIDEO: "video",
    ActionKind.CHAR: "char",
    ActionKind.SAY: "say",
    ActionKind.WAIT: "wait",
    ActionKind.SET: "set_vars",
    ActionKind.ADD: "add_vars",
    ActionKind.GET: "get_item",
    ActionKind.USE: "use_item",
    ActionKind.EFFECT: "effect",
    ActionKind.GOTO: "goto",
    ActionKind.INPUT: "input_gate",
    ActionKind.CHOICE: "choice",
    ActionKind.BRANCH: "branch",
    ActionKind.ENDING: "ending",
}
_TAG_BY_KEY: dict[str, ActionKind] = {kind.value: kind for kind in ActionKind}
_TAG_BY_KEY.update({attr: kind for kind, attr in _ACTION_ATTRS.items()})


class Action(_Model):
    """A single instruction inside a scene; exactly one tag is set."""

    bg: str | None = None
    sticker: StickerSpec | None = None
    clear_sticker: str | ClearStickerSpec | None = Field(default=None, alias="clearSticker")
    music: str | None = None
    sound: str | None = None
    video: VideoSpec | None = None
    char: CharSpec | None = None
    say: SayPayload | None = None
    wait: StrictFloat | None = Field(default=None, ge=0)
    set_vars: dict[str, StateValue] | None = Field(default=None, alias="set")
    add_vars: dict[str, Union[StrictInt, StrictFloat]] | None = Field(
        default=None, alias="add"
    )
    get_item: str | None = Field(default=None, alias="get")
    use_item: str | None = Field(default=None, alias="use")
    effect: str | None = None
    goto: str | None = None
    input_gate: InputSpec | None = Field(default=None, alias="input")
    choice: ChoiceSpec | None = None
    branch: BranchSpec | None = None
    ending: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _single_tag(cls, data: Any) -> Any:
        if isinstance(data, cls):
            return data
        if not isinstance(data, Mapping):
            raise ValueError("action must be an object with exactly one action key")
        keys = list(data.keys())
        if not keys:
            raise ValueError("empty action object")
        unknown = [key for key in keys if key not in _TAG_BY_KEY]
        if unknown:
            raise ValueError(f"unknown action '{unknown[0]}'")
        if len(keys) > 1:
            raise ValueError(
                "ambiguous action defines several tags: " + ", ".join(map(str, keys))
            )
        if data[keys[0]] is None:
            raise ValueError(f"action '{keys[0]}' requires a value")
        return data

    @property
    def kind(self) -> ActionKind:
        for kind, attr in _ACTION_ATTRS.items():
            if getattr(self, attr) is not None:
                return kind
        raise AssertionError("action without a tag")  # pragma: no cover

    @property
    def payload(self) -> Any:
        """Return the value stored under this action's tag."""

        return getattr(self, _ACTION_ATTRS[self.kind])


# ---------------------------------------------------------------------------
# Scene graph
# ---------------------------------------------------------------------------


class Meta(_Model):
    title: str
    author: str | None = None
    version: str | None = None


class Settings(_Model):
    text_speed: float = Field(alias="textSpeed", gt=0)
    auto_save: bool = Field(alias="autoSave")
    click_to_instant: bool = Field(alias="clickToInstant")


class CharacterAsset(_Model):
    base: str
    emotions: dict[str, str] = Field(default_factory=dict)


class Assets(_Model):
    backgrounds: dict[str, str] = Field(default_factory=dict)
    characters: dict[str, CharacterAsset] = Field(default_factory=dict)
    music: dict[str, str] = Field(default_factory=dict)
    sfx: dict[str, str] = Field(default_factory=dict)


class StateBlock(_Model):
    defaults: dict[str, StateValue] = Field(default_factory=dict)


class InventoryItem(_Model):
    name: str
    description: str | None = None
    image: str | None = None
    owned: bool = False


class InventoryBlock(_Model):
    defaults: dict[str, InventoryItem] = Field(default_factory=dict)


class Ending(_Model):
    title: str
    description: str | None = None
    image: str | None = None


class EndingRule(_Model):
    when: Condition
    ending: str


class ScriptEntry(_Model):
    scene: str


class Scene(_Model):
    actions: list[Action]


class SceneGraph(_Model):
    """The parsed representation of an entire script."""

    meta: Meta
    settings: Settings
    assets: Assets = Field(default_factory=Assets)
    state: StateBlock = Field(default_factory=StateBlock)
    inventory: InventoryBlock = Field(default_factory=InventoryBlock)
    endings: dict[str, Ending] = Field(default_factory=dict)
    ending_rules: list[EndingRule] = Field(default_factory=list, alias="endingRules")
    default_ending: str | None = Field(default=None, alias="defaultEnding")
    script: list[ScriptEntry] = Field(min_length=1)
    scenes: dict[str, Scene]

    @property
    def scene_order(self) -> tuple[str, ...]:
        return tuple(entry.scene for entry in self.script)

    @property
    def first_scene(self) -> str:
        return self.script[0].scene

    def next_scene(self, scene_id: str) -> str | None:
        """Return the scene declared after ``scene_id`` in ``script``."""

        order = self.scene_order
        if scene_id not in order:
            return None
        index = order.index(scene_id)
        if index + 1 < len(order):
            return order[index + 1]
        return None

    def to_document(self) -> dict[str, Any]:
        """Return a plain mapping that parses back into an equal graph."""

        return _dump(self)


# ---------------------------------------------------------------------------
# Speaker references
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SpeakerRef:
    """A ``characterId`` or ``characterId.emotionId`` reference."""

    character_id: str
    emotion: str | None = None


def parse_speaker_ref(raw: str) -> SpeakerRef:
    """Split a speaker reference, rejecting empty parts and extra dots.

    Raises:
        ValueError: If ``raw`` is not ``id`` or ``id.emotion``.
    """

    trimmed = raw.strip()
    if not trimmed:
        raise ValueError("speaker reference must not be empty")
    parts = trimmed.split(".")
    if len(parts) > 2 or any(not part for part in parts):
        raise ValueError(
            f"invalid speaker reference '{raw}' (use 'characterId' or 'characterId.emotion')"
        )
    return SpeakerRef(parts[0], parts[1] if len(parts) == 2 else None)


# ---------------------------------------------------------------------------
# Multi-file projects
# ---------------------------------------------------------------------------


class ProjectConfig(_Model):
    """``config.yaml``: flattened meta, settings and endings of a project."""

    title: str
    author: str | None = None
    version: str | None = None
    text_speed: float = Field(alias="textSpeed", gt=0)
    auto_save: bool = Field(alias="autoSave")
    click_to_instant: bool = Field(alias="clickToInstant")
    endings: dict[str, Ending] = Field(default_factory=dict)
    ending_rules: list[EndingRule] = Field(default_factory=list, alias="endingRules")
    default_ending: str | None = Field(default=None, alias="defaultEnding")


class LayerDocument(_Model):
    """``base.yaml``: assets, state and inventory shared by chapters below it."""

    assets: Assets = Field(default_factory=Assets)
    state: dict[str, StateValue] = Field(default_factory=dict)
    inventory: dict[str, InventoryItem] = Field(default_factory=dict)


class ChapterDocument(LayerDocument):
    """A chapter file: its own layer plus ``script`` and ``scenes``."""

    script: list[ScriptEntry] = Field(min_length=1)
    scenes: dict[str, Scene]


def _strip_root(raw: str) -> str:
    return re.sub(r"^(\./|/)+", "", raw.strip().replace("\\", "/"))


def is_chapter_target(target: str) -> bool:
    """Return ``True`` for goto targets naming a chapter file (``./2.yaml``)."""

    trimmed = target.strip().replace("\\", "/")
    return trimmed.startswith("./") or trimmed.startswith("/")


def has_parent_traversal(target: str) -> bool:
    """Return ``True`` when a goto target tries to leave the project root."""

    normalized = target.strip().replace("\\", "/")
    if normalized == ".." or normalized.startswith("../"):
        return True
    if not is_chapter_target(normalized):
        return False
    body = _strip_root(normalized)
    return any(segment == ".." for segment in body.split("/"))


def collapse_path_dots(path: str) -> str:
    """Drop ``.`` segments and resolve ``..`` without climbing above the root."""

    segments: list[str] = []
    for segment in path.replace("\\", "/").split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if segments:
                segments.pop()
            continue
        segments.append(segment)
    return "/".join(segments)


def chapter_path_key(raw: str) -> str:
    """Normalise a project-relative file path to ``./dir/file.yaml`` form."""

    return "./" + collapse_path_dots(_strip_root(raw))


def chapter_target(raw: str) -> str | None:
    """Return the chapter path key a goto target names, if any.

    ``./chapter2`` and ``/story/2.yml`` are chapter targets; bare scene ids
    and targets with ``..`` segments are not.
    """

    if not is_chapter_target(raw) or has_parent_traversal(raw):
        return None
    body = _strip_root(raw)
    if not body:
        return None
    if not re.search(r"\.ya?ml$", body, re.IGNORECASE):
        body = f"{body}.yaml"
    return chapter_path_key(body)


__all__ = [
    "Action",
    "ActionKind",
    "Assets",
    "BranchCase",
    "BranchSpec",
    "CharSpec",
    "ChapterDocument",
    "CharacterAsset",
    "ChoiceOption",
    "ChoiceSpec",
    "ClearStickerSpec",
    "Condition",
    "ConditionKind",
    "ConditionOp",
    "Ending",
    "EndingRule",
    "InputRoute",
    "InputSpec",
    "InventoryBlock",
    "InventoryItem",
    "LayerDocument",
    "MAX_CHOICE_OPTIONS",
    "Meta",
    "NUMERIC_OPS",
    "POSITIONS",
    "Position",
    "ProjectConfig",
    "SayPayload",
    "Scene",
    "SceneGraph",
    "ScriptEntry",
    "Settings",
    "SpeakerRef",
    "StateBlock",
    "StateValue",
    "StickerMotion",
    "StickerSpec",
    "VideoSpec",
    "chapter_path_key",
    "chapter_target",
    "collapse_path_dots",
    "has_parent_traversal",
    "is_chapter_target",
    "parse_speaker_ref",
]
