"""Turn raw script text into a typed :class:`~novelscript.schema.SceneGraph`."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping, Sequence, Type, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from .errors import ScriptSchemaError, ScriptSyntaxError
from .schema import SceneGraph

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_RULE_NAMES = {
    "missing": "required",
    "extra_forbidden": "unknown field",
}


def format_location(location: Sequence[Any]) -> str:
    """Render a pydantic error location as ``scenes.intro.actions[2].say``."""

    rendered = ""
    for part in location:
        if isinstance(part, int):
            rendered += f"[{part}]"
        elif rendered:
            rendered += f".{part}"
        else:
            rendered = str(part)
    return rendered or "<root>"


def _describe(error: Mapping[str, Any]) -> str:
    error_type = str(error.get("type", ""))
    if error_type in _RULE_NAMES:
        return _RULE_NAMES[error_type]
    message = str(error.get("msg", "invalid value"))
    prefix = "Value error, "
    if message.startswith(prefix):
        message = message[len(prefix) :]
    return message


def load_document(text: str) -> dict[str, Any]:
    """Parse YAML ``text`` into a plain mapping.

    Raises:
        ScriptSyntaxError: If the text is not well-formed YAML or the root is
            not a mapping.
    """

    try:
        data = yaml.safe_load(text)
    except yaml.MarkedYAMLError as exc:
        mark = exc.problem_mark or exc.context_mark
        line = mark.line + 1 if mark is not None else None
        column = mark.column + 1 if mark is not None else None
        problem = exc.problem or exc.context or "invalid YAML"
        raise ScriptSyntaxError(
            f"YAML syntax error: {problem}",
            line=line,
            column=column,
            details=str(exc),
        ) from exc
    except yaml.YAMLError as exc:
        raise ScriptSyntaxError(f"YAML syntax error: {exc}") from exc

    if not isinstance(data, dict):
        raise ScriptSyntaxError("YAML root must be an object map")
    return data


def validate_model(
    model: Type[ModelT], document: Mapping[str, Any], *, source: str | None = None
) -> ModelT:
    """Validate ``document`` against ``model``.

    When ``source`` is given, error paths are prefixed with it so failures in
    multi-file projects name the offending file.

    Raises:
        ScriptSchemaError: With the path and rule of the first failing field.
    """

    try:
        return model.model_validate(document)
    except ValidationError as exc:
        issues = exc.errors()
        first = issues[0]
        prefix = f"{source}: " if source else ""
        details = " | ".join(
            f"{prefix}{format_location(issue['loc'])}: {_describe(issue)}"
            for issue in issues
        )
        raise ScriptSchemaError(
            f"{prefix}{format_location(first['loc'])}", _describe(first), details=details
        ) from exc


def build_scene_graph(document: Mapping[str, Any]) -> SceneGraph:
    """Validate ``document`` against the scene graph models.

    Raises:
        ScriptSchemaError: With the path and rule of the first failing field.
    """

    return validate_model(SceneGraph, document)


def parse_script(text: str) -> SceneGraph:
    """Parse script text in both phases and return the scene graph."""

    graph = build_scene_graph(load_document(text))
    logger.debug(
        "Parsed script '%s' with %d scenes", graph.meta.title, len(graph.scenes)
    )
    return graph


def load_script_from_file(path: str | Path) -> SceneGraph:
    """Read and parse a script stored on disk."""

    script_path = Path(path)
    return parse_script(script_path.read_text(encoding="utf-8"))


def dump_script(graph: SceneGraph) -> str:
    """Serialise ``graph`` back to YAML text."""

    return yaml.safe_dump(graph.to_document(), sort_keys=False, allow_unicode=True)


__all__ = [
    "build_scene_graph",
    "dump_script",
    "format_location",
    "load_document",
    "load_script_from_file",
    "parse_script",
    "validate_model",
]
