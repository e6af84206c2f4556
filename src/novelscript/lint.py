"""Structural linting for authoring-tool node graphs and scene graphs."""

from __future__ import annotations

import math
import re
from collections import deque
from dataclasses import dataclass
from typing import Any, Iterable, List, Literal, Mapping, Sequence

from .schema import ActionKind, SceneGraph

Severity = Literal["error", "warning"]

MAX_OPTIONS = 8
MAX_SCENE_TEXT_SPEED = 96

_IN_RHS = re.compile(r"\bin\b\s*(.+)$")
_IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_QUOTED_LEFT = re.compile(r'"\d+"\s*(>=|>|<=|<)\s*\d+')
_QUOTED_RIGHT = re.compile(r'\d+\s*(>=|>|<=|<)\s*"\d+"')


@dataclass(frozen=True)
class LintIssue:
    """A single finding reported by :func:`lint_scenario`."""

    code: str
    severity: Severity
    message: str
    node_id: str | None = None
    hint: str = ""

    def to_payload(self) -> dict[str, object]:
        return {
            "code": self.code,
            "severity": self.severity,
            "message": self.message,
            "nodeId": self.node_id,
            "hint": self.hint,
        }


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _as_id(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _node_id(node: Mapping[str, Any]) -> str | None:
    return _as_id(node.get("id"))


def _edge_targets(entries: Any) -> list[str]:
    targets = []
    for entry in _as_list(entries):
        target = _as_id(entry.get("to")) if isinstance(entry, Mapping) else None
        if target is not None:
            targets.append(target)
    return targets


def outgoing_node_ids(node: Mapping[str, Any]) -> list[str]:
    """Return the ids a node links to, by node type.

    Targets that are not non-empty strings are ignored.
    """

    node_type = node.get("type")
    data = _as_mapping(node.get("data"))
    if node_type == "scene":
        target = _as_id(node.get("next"))
        return [target] if target is not None else []
    if node_type == "jump":
        target = _as_id(data.get("to"))
        return [target] if target is not None else []
    if node_type == "choice":
        return _edge_targets(data.get("options"))
    if node_type == "condition":
        return _edge_targets(data.get("branches"))
    return []


def collect_reachable(entry_node_id: str, nodes_by_id: Mapping[str, Mapping[str, Any]]) -> set[str]:
    """Breadth-first walk from ``entry_node_id`` over typed edges."""

    visited: set[str] = set()
    queue: deque[str] = deque([entry_node_id])
    while queue:
        current = queue.popleft()
        if not current or current in visited:
            continue
        visited.add(current)
        node = nodes_by_id.get(current)
        if node is None:
            continue
        for next_id in outgoing_node_ids(node):
            if next_id not in visited:
                queue.append(next_id)
    return visited


def lint_condition_expression(expression: Any, node_id: str | None) -> list[LintIssue]:
    """Check a condition-branch ``when`` expression."""

    issues: list[LintIssue] = []
    if not isinstance(expression, str) or not expression or expression == "default":
        return issues

    match = _IN_RHS.search(expression)
    if match:
        rhs = match.group(1).strip()
        is_array_literal = rhs.startswith("[") and rhs.endswith("]")
        if not is_array_literal and not _IDENTIFIER.match(rhs):
            issues.append(
                LintIssue(
                    "DSL_E006",
                    "error",
                    "`in` right-hand side must be an array literal or array variable.",
                    node_id,
                    "Use e.g. `x in [1,2,3]` or `x in visitedPlaces`.",
                )
            )

    if _QUOTED_LEFT.search(expression) or _QUOTED_RIGHT.search(expression):
        issues.append(
            LintIssue(
                "DSL_E005",
                "error",
                "Type mismatch in numeric comparison.",
                node_id,
                "Compare number with number only.",
            )
        )
    return issues


def _invalid_text_speed(raw: Any) -> bool:
    if raw is None or raw == "":
        return False
    try:
        speed = float(raw)
    except (TypeError, ValueError):
        return True
    return not math.isfinite(speed) or speed < 0 or speed > MAX_SCENE_TEXT_SPEED


def lint_scenario(document: Any) -> list[LintIssue]:
    """Lint an authoring-tool node graph.

    The document has the shape ``{meta, entryNodeId, nodes: [...]}``. Issues
    are returned in check order; an empty node list stops the checks early.
    """

    scenario = _as_mapping(document)
    issues: list[LintIssue] = []

    if not scenario.get("meta"):
        issues.append(
            LintIssue(
                "SCHEMA_E001",
                "error",
                "Missing meta object.",
                None,
                "Add meta with schemaVersion/title.",
            )
        )

    nodes = [node for node in _as_list(scenario.get("nodes")) if isinstance(node, Mapping)]
    if not nodes:
        issues.append(
            LintIssue(
                "SCHEMA_E002",
                "error",
                "Nodes must be a non-empty array.",
                None,
                "Add at least one node.",
            )
        )
        return issues

    nodes_by_id: dict[str, Mapping[str, Any]] = {}
    for node in nodes:
        node_id = _node_id(node)
        if node_id is not None:
            nodes_by_id[node_id] = node
    entry_node_id = _as_id(scenario.get("entryNodeId")) or _as_id(scenario.get("entry_node_id"))
    if not entry_node_id:
        issues.append(
            LintIssue("GRAPH_E001", "error", "Entry node is required.", None, "Set entryNodeId.")
        )

    for node in nodes:
        for next_id in outgoing_node_ids(node):
            if next_id not in nodes_by_id:
                issues.append(
                    LintIssue(
                        "GRAPH_E002",
                        "error",
                        f"Dangling edge points to missing node: {next_id}",
                        _node_id(node),
                        "Fix node link target.",
                    )
                )

    for node in nodes:
        options = _as_list(_as_mapping(node.get("data")).get("options"))
        if node.get("type") == "choice" and len(options) > MAX_OPTIONS:
            issues.append(
                LintIssue(
                    "RULE_E001",
                    "error",
                    f"Choice options exceed max limit ({MAX_OPTIONS}).",
                    _node_id(node),
                    f"Reduce options to {MAX_OPTIONS} or less.",
                )
            )

    for node in nodes:
        if node.get("type") != "scene":
            continue
        if _invalid_text_speed(_as_mapping(node.get("data")).get("textSpeed")):
            issues.append(
                LintIssue(
                    "RULE_E002",
                    "error",
                    f"Scene textSpeed must be a number between 0 and {MAX_SCENE_TEXT_SPEED}.",
                    _node_id(node),
                    f"Set textSpeed to 0~{MAX_SCENE_TEXT_SPEED} ms per character, or remove it.",
                )
            )

    for node in nodes:
        if node.get("type") != "condition":
            continue
        for branch in _as_list(_as_mapping(node.get("data")).get("branches")):
            if isinstance(branch, Mapping):
                issues.extend(lint_condition_expression(branch.get("when"), _node_id(node)))

    if entry_node_id:
        reachable = collect_reachable(entry_node_id, nodes_by_id)
        endings = [node for node in nodes if node.get("type") == "ending"]
        if endings and not any(_node_id(node) in reachable for node in endings):
            issues.append(
                LintIssue(
                    "GRAPH_E003",
                    "error",
                    "No reachable ending node from entry.",
                    None,
                    "Connect at least one ending from reachable path.",
                )
            )

    return issues


def has_errors(issues: Iterable[LintIssue]) -> bool:
    return any(issue.severity == "error" for issue in issues)


def format_lint_report(issues: Sequence[LintIssue]) -> str:
    """Return a human-friendly report listing every issue."""

    if not issues:
        return "No issues found."
    lines = [f"{len(issues)} issue(s) found:"]
    for issue in issues:
        location = f" [{issue.node_id}]" if issue.node_id else ""
        lines.append(f"- {issue.code} ({issue.severity}){location}: {issue.message}")
        if issue.hint:
            lines.append(f"    hint: {issue.hint}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Scene graph reachability
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SceneReachabilityReport:
    """Summary of which scenes can be visited from the first script entry."""

    start_scene: str
    reachable_scenes: tuple[str, ...]
    unreachable_scenes: tuple[str, ...]

    @property
    def fully_reachable(self) -> bool:
        """Return ``True`` if every scene can be visited."""

        return not self.unreachable_scenes


def scene_targets(graph: SceneGraph, scene_id: str) -> List[str]:
    """Return every scene a scene can hand control to, in action order."""

    targets: List[str] = []
    for action in graph.scenes[scene_id].actions:
        kind = action.kind
        if kind is ActionKind.GOTO and action.goto:
            targets.append(action.goto)
        elif kind is ActionKind.BRANCH and action.branch is not None:
            targets.extend(case.goto for case in action.branch.cases)
            if action.branch.default:
                targets.append(action.branch.default)
        elif kind is ActionKind.CHOICE and action.choice is not None:
            targets.extend(option.goto for option in action.choice.options if option.goto)
        elif kind is ActionKind.INPUT and action.input_gate is not None:
            targets.extend(route.goto for route in action.input_gate.routes if route.goto)
    following = graph.next_scene(scene_id)
    if following is not None:
        targets.append(following)
    return targets


def compute_scene_reachability(graph: SceneGraph) -> SceneReachabilityReport:
    """Determine which scenes are reachable from the first script entry.

    The walk ignores conditions, so it approximates structural reachability
    and is sufficient for spotting orphaned scenes.
    """

    start = graph.first_scene
    visited: set[str] = set()
    frontier = [start]
    while frontier:
        current = frontier.pop()
        if current in visited or current not in graph.scenes:
            continue
        visited.add(current)
        frontier.extend(target for target in scene_targets(graph, current) if target not in visited)

    return SceneReachabilityReport(
        start_scene=start,
        reachable_scenes=tuple(sorted(visited)),
        unreachable_scenes=tuple(sorted(scene for scene in graph.scenes if scene not in visited)),
    )


__all__ = [
    "LintIssue",
    "SceneReachabilityReport",
    "collect_reachable",
    "compute_scene_reachability",
    "format_lint_report",
    "has_errors",
    "lint_condition_expression",
    "lint_scenario",
    "outgoing_node_ids",
    "scene_targets",
]
