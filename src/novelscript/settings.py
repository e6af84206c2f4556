"""Configuration helpers for deploying the novel script player."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .interpreter import LOOP_GUARD_LIMIT

_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def _normalise_path(value: str | None) -> Path | None:
    if value is None:
        return None

    trimmed = value.strip()
    if not trimmed:
        return None

    return Path(trimmed).expanduser()


def _normalise_string(value: str | None, *, default: str) -> str:
    if value is None:
        return default

    trimmed = value.strip()
    return trimmed or default


@dataclass(frozen=True)
class PlayerSettings:
    """Deployment settings for the player, CLI and HTTP service.

    The helper reads from environment variables so the player can be
    configured without modifying application code. Paths are expanded to
    support ``~`` prefixes while empty strings are treated as if the variable
    was unset.
    """

    save_dir: Path | None = None
    loop_guard: int = LOOP_GUARD_LIMIT
    http_timeout: float = 10.0
    max_sessions: int = 100
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PlayerSettings":
        """Return settings populated from ``environ``.

        Args:
            environ: Optional mapping of environment variables. When omitted,
                :data:`os.environ` is used.
        """

        source = environ if environ is not None else os.environ

        save_dir = _normalise_path(source.get("NOVELSCRIPT_SAVE_DIR"))

        loop_guard = LOOP_GUARD_LIMIT
        loop_guard_raw = source.get("NOVELSCRIPT_LOOP_GUARD")
        if loop_guard_raw is not None and loop_guard_raw.strip():
            try:
                loop_guard = int(loop_guard_raw.strip())
            except ValueError as exc:
                raise ValueError("NOVELSCRIPT_LOOP_GUARD must be a positive integer.") from exc
            if loop_guard < 1:
                raise ValueError("NOVELSCRIPT_LOOP_GUARD must be greater than zero.")

        http_timeout = 10.0
        timeout_raw = source.get("NOVELSCRIPT_HTTP_TIMEOUT")
        if timeout_raw is not None and timeout_raw.strip():
            try:
                http_timeout = float(timeout_raw.strip())
            except ValueError as exc:
                raise ValueError("NOVELSCRIPT_HTTP_TIMEOUT must be a number of seconds.") from exc
            if http_timeout <= 0:
                raise ValueError("NOVELSCRIPT_HTTP_TIMEOUT must be greater than zero.")

        max_sessions = 100
        max_sessions_raw = source.get("NOVELSCRIPT_MAX_SESSIONS")
        if max_sessions_raw is not None and max_sessions_raw.strip():
            try:
                max_sessions = int(max_sessions_raw.strip())
            except ValueError as exc:
                raise ValueError("NOVELSCRIPT_MAX_SESSIONS must be a positive integer.") from exc
            if max_sessions < 1:
                raise ValueError("NOVELSCRIPT_MAX_SESSIONS must be greater than zero.")

        log_level = _normalise_string(
            source.get("NOVELSCRIPT_LOG_LEVEL"), default="WARNING"
        ).upper()
        if log_level not in _LOG_LEVELS:
            raise ValueError(
                "NOVELSCRIPT_LOG_LEVEL must be one of " + ", ".join(_LOG_LEVELS) + "."
            )

        return cls(
            save_dir=save_dir,
            loop_guard=loop_guard,
            http_timeout=http_timeout,
            max_sessions=max_sessions,
            log_level=log_level,
        )

    @property
    def numeric_log_level(self) -> int:
        return getattr(logging, self.log_level)


__all__ = ["PlayerSettings"]
