from __future__ import annotations

from typing import Any

import pytest

from novelscript.conditions import evaluate
from novelscript.schema import Condition


def _condition(data: dict[str, Any]) -> Condition:
    return Condition.model_validate(data)


VARIABLES = {"score": 5, "ratio": 0.5, "name": "Alice", "met_bob": False}


@pytest.mark.parametrize(
    ("data", "expected"),
    [
        ({"var": "score", "op": "eq", "value": 5}, True),
        ({"var": "score", "op": "eq", "value": 5.0}, True),
        ({"var": "score", "op": "ne", "value": 4}, True),
        ({"var": "score", "op": "gt", "value": 4}, True),
        ({"var": "score", "op": "gte", "value": 5}, True),
        ({"var": "score", "op": "lt", "value": 5}, False),
        ({"var": "ratio", "op": "lte", "value": 0.5}, True),
        ({"var": "name", "op": "eq", "value": "Alice"}, True),
        ({"var": "name", "op": "in", "value": ["Bob", "Alice"]}, True),
        ({"var": "score", "op": "in", "value": [1, 2, 3]}, False),
        ({"var": "met_bob", "op": "eq", "value": False}, True),
    ],
)
def test_leaf_comparisons(data: dict[str, Any], expected: bool) -> None:
    assert evaluate(_condition(data), VARIABLES) is expected


def test_missing_variable_is_false_for_every_operator() -> None:
    for op, value in [("eq", 1), ("ne", 1), ("gt", 1), ("in", [1])]:
        assert evaluate(_condition({"var": "ghost", "op": op, "value": value}), VARIABLES) is False


def test_mismatched_types_never_raise() -> None:
    assert evaluate(_condition({"var": "name", "op": "gt", "value": 3}), VARIABLES) is False
    assert evaluate(_condition({"var": "score", "op": "eq", "value": "5"}), VARIABLES) is False
    assert evaluate(_condition({"var": "met_bob", "op": "lt", "value": 1}), VARIABLES) is False


def test_booleans_are_not_numbers() -> None:
    variables = {"flag": True}

    assert evaluate(_condition({"var": "flag", "op": "eq", "value": 1}), variables) is False
    assert evaluate(_condition({"var": "flag", "op": "in", "value": [1]}), variables) is False
    assert evaluate(_condition({"var": "flag", "op": "in", "value": [True]}), variables) is True


def test_combinators() -> None:
    condition = _condition(
        {
            "all": [
                {"var": "score", "op": "gte", "value": 3},
                {"not": {"var": "met_bob", "op": "eq", "value": True}},
                {
                    "any": [
                        {"var": "name", "op": "eq", "value": "Bob"},
                        {"var": "ratio", "op": "lt", "value": 1},
                    ]
                },
            ]
        }
    )

    assert evaluate(condition, VARIABLES) is True
    assert evaluate(condition, {**VARIABLES, "met_bob": True}) is False


def test_empty_combinators() -> None:
    assert evaluate(_condition({"all": []}), VARIABLES) is True
    assert evaluate(_condition({"any": []}), VARIABLES) is False


def test_inventory_ownership_is_consulted_after_variables() -> None:
    condition = _condition({"var": "key", "op": "eq", "value": True})

    assert evaluate(condition, VARIABLES, {"key": True}) is True
    assert evaluate(condition, VARIABLES, {"key": False}) is False
    assert evaluate(condition, {"key": False}, {"key": True}) is False
