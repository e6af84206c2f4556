"""Referential checks that must pass before a scene graph is played.

Checks run in a fixed order and stop at the first failure, which is raised as
a :class:`~novelscript.errors.ScriptReferenceError` naming the owning scene.
"""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

from .errors import ScriptReferenceError
from .parser import parse_script
from .schema import (
    NUMERIC_OPS,
    Action,
    ActionKind,
    Condition,
    ConditionKind,
    SceneGraph,
    StateValue,
    has_parent_traversal,
    is_chapter_target,
    parse_speaker_ref,
)

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "global"


def value_type_name(value: object) -> str:
    """Return ``boolean``, ``number``, ``string`` or ``array`` for ``value``."""

    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return type(value).__name__


class _GraphValidator:
    """Walk a scene graph once, raising on the first dangling reference."""

    def __init__(self, graph: SceneGraph) -> None:
        self.graph = graph
        self.defaults: Mapping[str, StateValue] = graph.state.defaults

    def run(self) -> None:
        self._check_script()
        self._check_endings()
        for scene_id, scene in self.graph.scenes.items():
            for index, action in enumerate(scene.actions):
                self._check_action(scene_id, index, action)

    # -- top level -----------------------------------------------------

    def _check_script(self) -> None:
        for entry in self.graph.script:
            if entry.scene not in self.graph.scenes:
                raise ScriptReferenceError(
                    entry.scene,
                    entry.scene,
                    f"script references missing scene: {entry.scene}",
                )

    def _check_endings(self) -> None:
        graph = self.graph
        if graph.default_ending and graph.default_ending not in graph.endings:
            raise ScriptReferenceError(
                GLOBAL_SCOPE,
                graph.default_ending,
                f"defaultEnding '{graph.default_ending}' is not defined in endings",
            )
        for index, rule in enumerate(graph.ending_rules):
            if rule.ending not in graph.endings:
                raise ScriptReferenceError(
                    GLOBAL_SCOPE,
                    rule.ending,
                    f"endingRules[{index}] references missing ending '{rule.ending}'",
                )
            self._check_condition(GLOBAL_SCOPE, f"endingRules[{index}].when", rule.when)

    # -- actions -------------------------------------------------------

    def _check_action(self, scene_id: str, index: int, action: Action) -> None:
        kind = action.kind
        label = f"actions[{index}]"
        assets = self.graph.assets

        if kind is ActionKind.GOTO:
            self._check_goto(scene_id, "goto", action.goto)
        elif kind is ActionKind.BG:
            self._require(scene_id, action.bg, assets.backgrounds, "background")
        elif kind is ActionKind.STICKER:
            assert action.sticker is not None
            self._require(
                scene_id, action.sticker.image, assets.backgrounds, "sticker image"
            )
        elif kind is ActionKind.MUSIC:
            self._require(scene_id, action.music, assets.music, "music")
        elif kind is ActionKind.SOUND:
            self._require(scene_id, action.sound, assets.sfx, "sfx")
        elif kind is ActionKind.CHAR:
            assert action.char is not None
            character = assets.characters.get(action.char.id)
            if character is None:
                raise ScriptReferenceError(
                    scene_id,
                    action.char.id,
                    f"scene '{scene_id}' uses missing character '{action.char.id}'",
                )
            emotion = action.char.emotion
            if emotion and emotion not in character.emotions:
                raise ScriptReferenceError(
                    scene_id,
                    emotion,
                    f"scene '{scene_id}' uses missing emotion '{emotion}' "
                    f"for character '{action.char.id}'",
                )
        elif kind is ActionKind.SAY:
            assert action.say is not None
            self._check_speakers(scene_id, "say", action.say.char, action.say.with_)
        elif kind is ActionKind.SET:
            assert action.set_vars is not None
            self._check_set_map(scene_id, f"{label}.set", action.set_vars)
        elif kind is ActionKind.ADD:
            assert action.add_vars is not None
            self._check_add_map(scene_id, f"{label}.add", action.add_vars)
        elif kind in (ActionKind.GET, ActionKind.USE):
            item = action.payload
            if item not in self.graph.inventory.defaults:
                raise ScriptReferenceError(
                    scene_id,
                    item,
                    f"scene '{scene_id}' uses unknown inventory item '{item}'",
                )
        elif kind is ActionKind.CHOICE:
            self._check_choice(scene_id, label, action)
        elif kind is ActionKind.BRANCH:
            self._check_branch(scene_id, label, action)
        elif kind is ActionKind.INPUT:
            self._check_input(scene_id, label, action)
        elif kind is ActionKind.ENDING:
            if action.ending not in self.graph.endings:
                raise ScriptReferenceError(
                    scene_id,
                    str(action.ending),
                    f"scene '{scene_id}' references missing ending '{action.ending}'",
                )

    def _check_choice(self, scene_id: str, label: str, action: Action) -> None:
        choice = action.choice
        assert choice is not None
        self._check_speakers(scene_id, "choice", choice.char, choice.with_)
        for option_index, option in enumerate(choice.options):
            option_label = f"choice.options[{option_index}]"
            if option.goto:
                self._check_goto(scene_id, f"{option_label}.goto", option.goto)
            if option.set_vars:
                self._check_set_map(
                    scene_id, f"{label}.{option_label}.set", option.set_vars
                )
            if option.add_vars:
                self._check_add_map(
                    scene_id, f"{label}.{option_label}.add", option.add_vars
                )

    def _check_branch(self, scene_id: str, label: str, action: Action) -> None:
        branch = action.branch
        assert branch is not None
        for case_index, case in enumerate(branch.cases):
            self._check_goto(scene_id, f"branch.cases[{case_index}].goto", case.goto)
            self._check_condition(
                scene_id, f"{label}.branch.cases[{case_index}].when", case.when
            )
        if branch.default:
            self._check_goto(scene_id, "branch.default", branch.default)

    def _check_input(self, scene_id: str, label: str, action: Action) -> None:
        gate = action.input_gate
        assert gate is not None
        self._check_speakers(scene_id, "input", gate.char, gate.with_)
        if gate.save_as:
            if gate.save_as not in self.defaults:
                raise ScriptReferenceError(
                    scene_id,
                    gate.save_as,
                    f"scene '{scene_id}' uses unknown input.saveAs variable '{gate.save_as}'",
                )
            if value_type_name(self.defaults[gate.save_as]) != "string":
                raise ScriptReferenceError(
                    scene_id,
                    gate.save_as,
                    f"scene '{scene_id}' input.saveAs '{gate.save_as}' must target a string variable",
                )
        for route_index, route in enumerate(gate.routes):
            route_label = f"input.routes[{route_index}]"
            if route.goto:
                self._check_goto(scene_id, f"{route_label}.goto", route.goto)
            if route.set_vars:
                self._check_set_map(scene_id, f"{label}.{route_label}.set", route.set_vars)
            if route.add_vars:
                self._check_add_map(scene_id, f"{label}.{route_label}.add", route.add_vars)

    # -- helpers -------------------------------------------------------

    def _require(
        self, scene_id: str, key: str | None, catalog: Mapping[str, object], noun: str
    ) -> None:
        if key not in catalog:
            raise ScriptReferenceError(
                scene_id, str(key), f"scene '{scene_id}' uses missing {noun} '{key}'"
            )

    def _check_goto(self, scene_id: str, field_label: str, target: str | None) -> None:
        if target is None:
            return
        if has_parent_traversal(target):
            raise ScriptReferenceError(
                scene_id,
                target,
                f"scene '{scene_id}' uses unsupported relative chapter path '{target}' "
                f"in {field_label} (use './...' or '/...' from root)",
            )
        if is_chapter_target(target) or target in self.graph.scenes:
            return
        raise ScriptReferenceError(
            scene_id,
            target,
            f"scene '{scene_id}' has {field_label} to missing scene '{target}'",
        )

    def _check_speakers(
        self,
        scene_id: str,
        prefix: str,
        char: str | None,
        with_: Sequence[str] | None,
    ) -> None:
        if char:
            self._check_speaker(scene_id, f"{prefix}.char", char)
        for index, companion in enumerate(with_ or ()):
            self._check_speaker(scene_id, f"{prefix}.with[{index}]", companion)

    def _check_speaker(self, scene_id: str, field_label: str, raw: str) -> None:
        try:
            ref = parse_speaker_ref(raw)
        except ValueError as exc:
            raise ScriptReferenceError(
                scene_id,
                raw,
                f"scene '{scene_id}' has invalid {field_label} '{raw}' "
                "(use 'characterId' or 'characterId.emotion')",
            ) from exc
        character = self.graph.assets.characters.get(ref.character_id)
        if character is None:
            raise ScriptReferenceError(
                scene_id,
                ref.character_id,
                f"scene '{scene_id}' uses missing speaker character "
                f"'{ref.character_id}' in {field_label}",
            )
        if ref.emotion and ref.emotion not in character.emotions:
            raise ScriptReferenceError(
                scene_id,
                ref.emotion,
                f"scene '{scene_id}' uses missing emotion '{ref.emotion}' for speaker "
                f"'{ref.character_id}' in {field_label}",
            )

    def _check_set_map(
        self, scene_id: str, field_label: str, values: Mapping[str, StateValue]
    ) -> None:
        for name, value in values.items():
            if name not in self.defaults:
                raise ScriptReferenceError(
                    scene_id,
                    name,
                    f"scene '{scene_id}' sets unknown state variable '{name}' in {field_label}",
                )
            if value_type_name(value) != value_type_name(self.defaults[name]):
                raise ScriptReferenceError(
                    scene_id,
                    name,
                    f"scene '{scene_id}' has type mismatch for state variable "
                    f"'{name}' in {field_label}",
                )

    def _check_add_map(
        self, scene_id: str, field_label: str, values: Mapping[str, float]
    ) -> None:
        for name in values:
            if name not in self.defaults:
                raise ScriptReferenceError(
                    scene_id,
                    name,
                    f"scene '{scene_id}' adds unknown state variable '{name}' in {field_label}",
                )
            if value_type_name(self.defaults[name]) != "number":
                raise ScriptReferenceError(
                    scene_id,
                    name,
                    f"scene '{scene_id}' can only use add on number variable "
                    f"'{name}' in {field_label}",
                )

    def _check_condition(
        self, scene_id: str, field_label: str, condition: Condition
    ) -> None:
        kind = condition.kind
        if kind is ConditionKind.ALL:
            for index, child in enumerate(condition.all_of or ()):
                self._check_condition(scene_id, f"{field_label}.all[{index}]", child)
            return
        if kind is ConditionKind.ANY:
            for index, child in enumerate(condition.any_of or ()):
                self._check_condition(scene_id, f"{field_label}.any[{index}]", child)
            return
        if kind is ConditionKind.NOT:
            assert condition.not_ is not None
            self._check_condition(scene_id, f"{field_label}.not", condition.not_)
            return

        name = condition.var or ""
        if name not in self.defaults:
            raise ScriptReferenceError(
                scene_id,
                name,
                f"scene '{scene_id}' uses unknown state variable '{name}' in {field_label}",
            )
        expected = value_type_name(self.defaults[name])
        value = condition.value

        if condition.op == "in":
            if not isinstance(value, list):
                raise ScriptReferenceError(
                    scene_id,
                    name,
                    f"scene '{scene_id}' uses op 'in' with non-array value in {field_label}",
                )
            for candidate in value:
                if value_type_name(candidate) != expected:
                    raise ScriptReferenceError(
                        scene_id,
                        name,
                        f"scene '{scene_id}' has type mismatch in {field_label}: "
                        f"variable '{name}' is {expected}",
                    )
            return

        if isinstance(value, list):
            raise ScriptReferenceError(
                scene_id,
                name,
                f"scene '{scene_id}' uses array value with op '{condition.op}' in {field_label}",
            )
        if value_type_name(value) != expected:
            raise ScriptReferenceError(
                scene_id,
                name,
                f"scene '{scene_id}' has type mismatch in {field_label}: "
                f"variable '{name}' is {expected}",
            )
        if condition.op in NUMERIC_OPS and expected != "number":
            raise ScriptReferenceError(
                scene_id,
                name,
                f"scene '{scene_id}' uses numeric comparison op '{condition.op}' "
                f"for non-number variable '{name}' in {field_label}",
            )


def validate_scene_graph(graph: SceneGraph) -> SceneGraph:
    """Return ``graph`` unchanged when every reference resolves.

    Raises:
        ScriptReferenceError: For the first dangling reference found.
    """

    _GraphValidator(graph).run()
    return graph


def parse_and_validate(text: str) -> SceneGraph:
    """Parse ``text`` and validate the resulting scene graph."""

    graph = validate_scene_graph(parse_script(text))
    logger.debug("Validated script '%s'", graph.meta.title)
    return graph


__all__ = [
    "GLOBAL_SCOPE",
    "parse_and_validate",
    "validate_scene_graph",
    "value_type_name",
]
