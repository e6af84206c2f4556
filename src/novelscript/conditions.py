"""Evaluate condition trees against route state."""

from __future__ import annotations

from typing import Any, Mapping

from .schema import Condition, ConditionKind

_MISSING = object()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equal(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


def _lookup(
    name: str, variables: Mapping[str, Any], inventory: Mapping[str, bool] | None
) -> Any:
    if name in variables:
        return variables[name]
    if inventory is not None and name in inventory:
        return inventory[name]
    return _MISSING


def _evaluate_leaf(
    condition: Condition,
    variables: Mapping[str, Any],
    inventory: Mapping[str, bool] | None,
) -> bool:
    current = _lookup(condition.var or "", variables, inventory)
    if current is _MISSING:
        return False

    op = condition.op
    expected = condition.value

    if op == "in":
        if not isinstance(expected, list):
            return False
        return any(_strict_equal(current, candidate) for candidate in expected)

    if isinstance(expected, list):
        return False
    if op == "eq":
        return _strict_equal(current, expected)
    if op == "ne":
        return not _strict_equal(current, expected)

    if not (_is_number(current) and _is_number(expected)):
        return False
    if op == "gt":
        return current > expected
    if op == "gte":
        return current >= expected
    if op == "lt":
        return current < expected
    if op == "lte":
        return current <= expected
    return False


def evaluate(
    condition: Condition,
    variables: Mapping[str, Any],
    inventory: Mapping[str, bool] | None = None,
) -> bool:
    """Return whether ``condition`` holds.

    Variables are looked up in ``variables`` first and then in the inventory
    ownership map. Missing variables and operands of the wrong type make a
    leaf false; evaluation never raises for a validated condition.
    """

    kind = condition.kind
    if kind is ConditionKind.ALL:
        return all(
            evaluate(child, variables, inventory) for child in condition.all_of or ()
        )
    if kind is ConditionKind.ANY:
        return any(
            evaluate(child, variables, inventory) for child in condition.any_of or ()
        )
    if kind is ConditionKind.NOT:
        assert condition.not_ is not None
        return not evaluate(condition.not_, variables, inventory)
    return _evaluate_leaf(condition, variables, inventory)


__all__ = ["evaluate"]
