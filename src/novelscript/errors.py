"""Error taxonomy shared by the parser, validator and interpreter."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

ErrorKind = Literal["load", "syntax", "schema", "reference", "runtime"]


class ErrorPayload(BaseModel):
    """Serialisable description of a failure, ready for an error banner."""

    kind: ErrorKind
    message: str
    line: int | None = None
    column: int | None = None
    path: str | None = None
    scene_id: str | None = None
    details: str | None = None


class NovelScriptError(Exception):
    """Base class for every structured script failure."""

    kind: ErrorKind = "runtime"

    def __init__(self, message: str, *, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> ErrorPayload:
        """Return the structured form of this error."""

        return ErrorPayload(kind=self.kind, message=self.message, details=self.details)


class ScriptLoadError(NovelScriptError):
    """Raised when the script document cannot be fetched."""

    kind: ErrorKind = "load"


class ScriptSyntaxError(NovelScriptError):
    """Raised when the document is not well-formed YAML."""

    kind: ErrorKind = "syntax"

    def __init__(
        self,
        message: str,
        *,
        line: int | None = None,
        column: int | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.line = line
        self.column = column

    def to_payload(self) -> ErrorPayload:
        return ErrorPayload(
            kind=self.kind,
            message=self.message,
            line=self.line,
            column=self.column,
            details=self.details,
        )


class ScriptSchemaError(NovelScriptError):
    """Raised when structured data does not match the scene graph shape."""

    kind: ErrorKind = "schema"

    def __init__(self, path: str, rule: str, *, details: str | None = None) -> None:
        super().__init__(f"{path}: {rule}", details=details)
        self.path = path
        self.rule = rule

    def to_payload(self) -> ErrorPayload:
        return ErrorPayload(
            kind=self.kind,
            message=self.message,
            path=self.path,
            details=self.details,
        )


class ScriptReferenceError(NovelScriptError):
    """Raised when a scene refers to something that does not exist."""

    kind: ErrorKind = "reference"

    def __init__(self, scene_id: str, missing: str, message: str) -> None:
        super().__init__(message)
        self.scene_id = scene_id
        self.missing = missing

    def to_payload(self) -> ErrorPayload:
        return ErrorPayload(
            kind=self.kind,
            message=self.message,
            scene_id=self.scene_id,
            details=self.missing,
        )


class ScriptRuntimeError(NovelScriptError):
    """Raised when playback cannot continue (loop guard, vanished scene)."""

    kind: ErrorKind = "runtime"

    def __init__(self, message: str, *, scene_id: str | None = None) -> None:
        super().__init__(message)
        self.scene_id = scene_id

    def to_payload(self) -> ErrorPayload:
        return ErrorPayload(kind=self.kind, message=self.message, scene_id=self.scene_id)


__all__ = [
    "ErrorKind",
    "ErrorPayload",
    "NovelScriptError",
    "ScriptLoadError",
    "ScriptReferenceError",
    "ScriptRuntimeError",
    "ScriptSchemaError",
    "ScriptSyntaxError",
]
