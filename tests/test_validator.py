from __future__ import annotations

import pytest

from novelscript.errors import ScriptReferenceError, ScriptSchemaError
from novelscript.parser import parse_script
from novelscript.validator import (
    GLOBAL_SCOPE,
    parse_and_validate,
    validate_scene_graph,
    value_type_name,
)


def _reference_error(text: str) -> ScriptReferenceError:
    with pytest.raises(ScriptReferenceError) as excinfo:
        parse_and_validate(text)
    return excinfo.value


def test_valid_script_passes_and_returns_graph(make_script) -> None:
    graph = parse_script(make_script())

    assert validate_scene_graph(graph) is graph


def test_script_entry_must_reference_existing_scene(make_script) -> None:
    error = _reference_error(make_script(script=["intro", "missing"]))

    assert error.message == "script references missing scene: missing"
    assert error.missing == "missing"


@pytest.mark.parametrize(
    ("actions", "message"),
    [
        ([{"goto": "nowhere"}], "scene 'intro' has goto to missing scene 'nowhere'"),
        ([{"bg": "cellar"}], "scene 'intro' uses missing background 'cellar'"),
        (
            [{"sticker": {"id": "s1", "image": "sparkle"}}],
            "scene 'intro' uses missing sticker image 'sparkle'",
        ),
        ([{"music": "battle"}], "scene 'intro' uses missing music 'battle'"),
        ([{"sound": "boom"}], "scene 'intro' uses missing sfx 'boom'"),
        (
            [{"char": {"id": "carol", "position": "left"}}],
            "scene 'intro' uses missing character 'carol'",
        ),
        (
            [{"char": {"id": "bob", "position": "right", "emotion": "sad"}}],
            "scene 'intro' uses missing emotion 'sad' for character 'bob'",
        ),
        (
            [{"say": {"text": "Hi", "char": "alice.angry"}}],
            "scene 'intro' uses missing emotion 'angry' for speaker 'alice' in say.char",
        ),
        (
            [{"say": {"text": "Hi", "char": "alice", "with": ["dave"]}}],
            "scene 'intro' uses missing speaker character 'dave' in say.with[0]",
        ),
        (
            [{"say": {"text": "Hi", "char": "a.b.c"}}],
            "scene 'intro' has invalid say.char 'a.b.c' "
            "(use 'characterId' or 'characterId.emotion')",
        ),
        (
            [{"set": {"gold": 1}}],
            "scene 'intro' sets unknown state variable 'gold' in actions[0].set",
        ),
        (
            [{"set": {"score": "high"}}],
            "scene 'intro' has type mismatch for state variable 'score' in actions[0].set",
        ),
        (
            [{"add": {"name": 1}}],
            "scene 'intro' can only use add on number variable 'name' in actions[0].add",
        ),
        ([{"use": "lamp"}], "scene 'intro' uses unknown inventory item 'lamp'"),
        ([{"ending": "secret"}], "scene 'intro' references missing ending 'secret'"),
    ],
)
def test_dangling_references_are_rejected(make_script, actions, message) -> None:
    error = _reference_error(make_script({"intro": actions}))

    assert error.message == message
    assert error.scene_id == "intro"
    assert error.to_payload().kind == "reference"


def test_choice_option_targets_and_mutations_are_checked(make_script) -> None:
    choice = {
        "prompt": "Where to?",
        "options": [
            {"text": "Stay", "add": {"score": 1}},
            {"text": "Leave", "goto": "garden"},
        ],
    }

    error = _reference_error(make_script({"intro": [{"choice": choice}]}))

    assert error.message == (
        "scene 'intro' has choice.options[1].goto to missing scene 'garden'"
    )


def test_branch_conditions_are_type_checked(make_script) -> None:
    branch = {
        "cases": [{"when": {"var": "score", "op": "eq", "value": "ten"}, "goto": "intro"}],
    }

    error = _reference_error(make_script({"intro": [{"branch": branch}]}))

    assert error.message == (
        "scene 'intro' has type mismatch in actions[0].branch.cases[0].when: "
        "variable 'score' is number"
    )


def test_numeric_operator_requires_number_variable(make_script) -> None:
    branch = {
        "cases": [{"when": {"var": "name", "op": "gt", "value": "a"}, "goto": "intro"}],
    }

    error = _reference_error(make_script({"intro": [{"branch": branch}]}))

    assert "numeric comparison op 'gt' for non-number variable 'name'" in error.message


def test_condition_variables_must_be_declared(make_script) -> None:
    branch = {
        "cases": [
            {
                "when": {"any": [{"var": "courage", "op": "gte", "value": 2}]},
                "goto": "intro",
            }
        ],
    }

    error = _reference_error(make_script({"intro": [{"branch": branch}]}))

    assert error.message == (
        "scene 'intro' uses unknown state variable 'courage' in "
        "actions[0].branch.cases[0].when.any[0]"
    )


def test_in_operator_values_must_match_variable_type(make_script) -> None:
    branch = {
        "cases": [
            {"when": {"var": "score", "op": "in", "value": [1, "two"]}, "goto": "intro"}
        ],
    }

    error = _reference_error(make_script({"intro": [{"branch": branch}]}))

    assert "type mismatch" in error.message


def test_input_save_as_must_target_string_variable(make_script) -> None:
    gate = {"prompt": "Your name?", "correct": "Alice", "saveAs": "score"}

    error = _reference_error(make_script({"intro": [{"input": gate}]}))

    assert error.message == (
        "scene 'intro' input.saveAs 'score' must target a string variable"
    )


def test_input_route_targets_are_checked(make_script) -> None:
    gate = {
        "prompt": "Password?",
        "correct": "open",
        "routes": [{"equals": "secret", "goto": "vault"}],
    }

    error = _reference_error(make_script({"intro": [{"input": gate}]}))

    assert error.message == "scene 'intro' has input.routes[0].goto to missing scene 'vault'"


def test_ending_references_are_checked_globally(make_script) -> None:
    error = _reference_error(make_script(defaultEnding="secret"))

    assert error.scene_id == GLOBAL_SCOPE
    assert error.message == "defaultEnding 'secret' is not defined in endings"

    error = _reference_error(
        make_script(
            endingRules=[{"when": {"var": "score", "op": "gt", "value": 1}, "ending": "secret"}]
        )
    )
    assert error.message == "endingRules[0] references missing ending 'secret'"


def test_first_failing_reference_wins(make_script) -> None:
    error = _reference_error(
        make_script({"intro": [{"bg": "cellar"}, {"goto": "nowhere"}]})
    )

    assert error.missing == "cellar"


def test_chapter_targets_are_valid_gotos(make_script) -> None:
    graph = parse_and_validate(
        make_script(
            {
                "intro": [
                    {
                        "choice": {
                            "prompt": "Where?",
                            "options": [
                                {"text": "On", "goto": "./chapter2.yaml"},
                                {"text": "Side", "goto": "/side/1"},
                            ],
                        }
                    },
                    {"goto": "./2.yaml"},
                ]
            }
        )
    )

    assert graph.first_scene == "intro"


@pytest.mark.parametrize(
    "target", ["../other.yaml", "..", "./../other.yaml", "/chapters/../../2.yaml"]
)
def test_parent_traversal_targets_are_rejected(make_script, target: str) -> None:
    error = _reference_error(make_script({"intro": [{"goto": target}]}))

    assert error.missing == target
    assert error.message == (
        f"scene 'intro' uses unsupported relative chapter path '{target}' in "
        "goto (use './...' or '/...' from root)"
    )


def test_parent_traversal_in_branch_default_is_rejected(make_script) -> None:
    error = _reference_error(
        make_script({"intro": [{"branch": {"cases": [], "default": "../up.yaml"}}]})
    )

    assert "in branch.default" in error.message


def test_schema_errors_surface_before_reference_checks(make_script) -> None:
    with pytest.raises(ScriptSchemaError):
        parse_and_validate(make_script({"intro": [{"goto": "nowhere", "bg": "cellar"}]}))


@pytest.mark.parametrize(
    ("value", "expected"),
    [(True, "boolean"), (3, "number"), (2.5, "number"), ("x", "string"), ([1], "array")],
)
def test_value_type_name(value, expected: str) -> None:
    assert value_type_name(value) == expected
