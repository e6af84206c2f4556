from __future__ import annotations

from textwrap import dedent

import pytest
import yaml

from novelscript.errors import ScriptSchemaError, ScriptSyntaxError
from novelscript.parser import (
    dump_script,
    format_location,
    load_document,
    load_script_from_file,
    parse_script,
)
from novelscript.schema import ActionKind, ConditionKind, parse_speaker_ref


def _schema_error(text: str) -> ScriptSchemaError:
    with pytest.raises(ScriptSchemaError) as excinfo:
        parse_script(text)
    return excinfo.value


def test_parse_script_builds_typed_scene_graph(make_script) -> None:
    text = make_script(
        {
            "intro": [
                {"bg": "room"},
                {"char": {"id": "alice", "position": "left", "emotion": "happy"}},
                {"say": {"text": "Hi!", "char": "alice.happy", "with": ["bob"]}},
                {"wait": 250},
                {"set": {"met_bob": True}},
                {"add": {"score": 2}},
                {"get": "key"},
                {"clearSticker": "all"},
                {"goto": "outro"},
            ],
            "outro": [{"ending": "good"}],
        },
        script=["intro", "outro"],
    )

    graph = parse_script(text)

    assert graph.meta.title == "Test Story"
    assert graph.settings.text_speed == 40
    assert graph.settings.click_to_instant is True
    assert graph.scene_order == ("intro", "outro")
    assert graph.first_scene == "intro"
    assert graph.next_scene("intro") == "outro"
    assert graph.next_scene("outro") is None

    kinds = [action.kind for action in graph.scenes["intro"].actions]
    assert kinds == [
        ActionKind.BG,
        ActionKind.CHAR,
        ActionKind.SAY,
        ActionKind.WAIT,
        ActionKind.SET,
        ActionKind.ADD,
        ActionKind.GET,
        ActionKind.CLEAR_STICKER,
        ActionKind.GOTO,
    ]
    say = graph.scenes["intro"].actions[2].say
    assert say is not None
    assert say.char == "alice.happy"
    assert say.with_ == ["bob"]
    assert graph.scenes["intro"].actions[3].payload == 250
    assert graph.scenes["intro"].actions[5].add_vars == {"score": 2}


def test_parse_script_discriminates_condition_variants(make_script) -> None:
    text = make_script(
        endingRules=[
            {
                "when": {
                    "all": [
                        {"var": "score", "op": "gte", "value": 3},
                        {"not": {"var": "name", "op": "in", "value": ["", "nobody"]}},
                        {"any": [{"var": "met_bob", "op": "eq", "value": True}]},
                    ]
                },
                "ending": "good",
            }
        ],
        defaultEnding="bad",
    )

    graph = parse_script(text)
    condition = graph.ending_rules[0].when

    assert condition.kind is ConditionKind.ALL
    children = condition.all_of or []
    assert [child.kind for child in children] == [
        ConditionKind.LEAF,
        ConditionKind.NOT,
        ConditionKind.ANY,
    ]
    assert [leaf.var for leaf in condition.iter_leaves()] == ["score", "name", "met_bob"]
    assert graph.default_ending == "bad"


def test_missing_required_field_reports_document_path(make_script) -> None:
    text = make_script({"intro": [{"bg": "room"}, {"bg": "room"}, {"say": {"char": "alice"}}]})

    error = _schema_error(text)

    assert error.message == "scenes.intro.actions[2].say.text: required"
    assert error.path == "scenes.intro.actions[2].say.text"
    payload = error.to_payload()
    assert payload.kind == "schema"
    assert payload.path == "scenes.intro.actions[2].say.text"


@pytest.mark.parametrize(
    ("action", "rule"),
    [
        ({}, "empty action object"),
        ({"jump": "intro"}, "unknown action 'jump'"),
        ({"bg": "room", "music": "theme"}, "ambiguous action defines several tags: bg, music"),
        ({"goto": None}, "action 'goto' requires a value"),
    ],
)
def test_actions_are_discriminated_by_a_single_key(make_script, action, rule) -> None:
    error = _schema_error(make_script({"intro": [action]}))

    assert error.path == "scenes.intro.actions[0]"
    assert error.rule == rule


def test_condition_combinator_must_be_the_only_key(make_script) -> None:
    text = make_script(
        endingRules=[
            {
                "when": {"all": [], "var": "score"},
                "ending": "good",
            }
        ]
    )

    error = _schema_error(text)

    assert error.path == "endingRules[0].when"
    assert error.rule == "condition 'all' must be the only key in its object"


def test_condition_in_requires_array_value(make_script) -> None:
    text = make_script(
        endingRules=[{"when": {"var": "score", "op": "in", "value": 3}, "ending": "good"}]
    )

    error = _schema_error(text)

    assert error.rule == "op 'in' requires an array value"


def test_choice_option_limit_is_enforced(make_script) -> None:
    options = [{"text": f"Option {index}"} for index in range(9)]
    text = make_script({"intro": [{"choice": {"prompt": "Pick", "options": options}}]})

    error = _schema_error(text)

    assert error.path == "scenes.intro.actions[0].choice.options"


def test_settings_require_positive_text_speed(make_script) -> None:
    error = _schema_error(make_script(settings={"textSpeed": 0}))

    assert error.path == "settings.textSpeed"


def test_unknown_top_level_field_is_rejected(make_script) -> None:
    error = _schema_error(make_script(chapters=["one"]))

    assert error.message == "chapters: unknown field"


def test_schema_error_details_list_every_issue(make_script) -> None:
    document_text = make_script(settings={"textSpeed": 0}, meta={})

    error = _schema_error(document_text)

    assert error.details is not None
    assert "meta.title: required" in error.details
    assert " | " in error.details


def test_yaml_syntax_error_reports_line_and_column() -> None:
    text = dedent(
        """
        meta:
          title: Broken
        scenes: [unterminated
        """
    ).lstrip()

    with pytest.raises(ScriptSyntaxError) as excinfo:
        load_document(text)

    error = excinfo.value
    assert error.message.startswith("YAML syntax error")
    assert isinstance(error.line, int) and error.line >= 1
    assert isinstance(error.column, int) and error.column >= 1
    assert error.to_payload().kind == "syntax"


@pytest.mark.parametrize("text", ["", "- just\n- a list\n", "plain text"])
def test_non_mapping_root_is_a_syntax_error(text: str) -> None:
    with pytest.raises(ScriptSyntaxError) as excinfo:
        parse_script(text)

    assert excinfo.value.message == "YAML root must be an object map"


def test_format_location_renders_indices() -> None:
    assert format_location(("scenes", "intro", "actions", 2, "say")) == (
        "scenes.intro.actions[2].say"
    )
    assert format_location(()) == "<root>"


def test_dump_script_produces_equivalent_document(make_script) -> None:
    graph = parse_script(
        make_script(
            {
                "intro": [
                    {"say": {"text": "Hi", "wait": 300}},
                    {
                        "branch": {
                            "cases": [
                                {
                                    "when": {"not": {"var": "score", "op": "lt", "value": 1}},
                                    "goto": "intro",
                                }
                            ]
                        }
                    },
                ]
            }
        )
    )

    dumped = dump_script(graph)

    assert yaml.safe_load(dumped)["settings"]["textSpeed"] == 40
    assert parse_script(dumped) == graph


def test_load_script_from_file(tmp_path, make_script) -> None:
    script_path = tmp_path / "story.yaml"
    script_path.write_text(make_script(), encoding="utf-8")

    graph = load_script_from_file(script_path)

    assert graph.scenes["intro"].actions[0].say.text == "Hello"  # type: ignore[union-attr]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("alice", ("alice", None)), ("alice.happy", ("alice", "happy")), (" bob ", ("bob", None))],
)
def test_parse_speaker_ref(raw: str, expected: tuple[str, str | None]) -> None:
    ref = parse_speaker_ref(raw)

    assert (ref.character_id, ref.emotion) == expected


@pytest.mark.parametrize("raw", ["", "  ", "a.b.c", ".happy", "alice."])
def test_parse_speaker_ref_rejects_malformed_references(raw: str) -> None:
    with pytest.raises(ValueError):
        parse_speaker_ref(raw)
