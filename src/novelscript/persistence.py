"""Autosave persistence for the playback cursor."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping

from .schema import StateValue, chapter_path_key, chapter_target
from .state import RouteHistoryEntry, RouteState

AUTOSAVE_KEY = "vn-engine-autosave"


@dataclass
class SaveProgress:
    """Represents the data required to resume a playthrough."""

    scene_id: str
    action_index: int
    variables: Dict[str, StateValue] = field(default_factory=dict)
    inventory: Dict[str, bool] = field(default_factory=dict)
    history: List[RouteHistoryEntry] = field(default_factory=list)
    ending_id: str | None = None
    chapter_path: str | None = None

    def to_payload(self) -> Dict[str, object]:
        """Return a JSON-serialisable representation of the progress."""

        payload: Dict[str, object] = {
            "sceneId": self.scene_id,
            "actionIndex": self.action_index,
            "routeVars": dict(self.variables),
            "inventory": dict(self.inventory),
            "routeHistory": [entry.to_payload() for entry in self.history],
            "resolvedEndingId": self.ending_id,
        }
        if self.chapter_path is not None:
            payload["chapterPath"] = self.chapter_path
        return payload

    @classmethod
    def from_payload(cls, payload: object) -> "SaveProgress":
        """Build progress from its stored representation.

        Only ``sceneId`` and ``actionIndex`` are mandatory; malformed optional
        entries are dropped rather than rejected.

        Raises:
            ValueError: If the cursor fields are missing or mistyped.
        """

        if not isinstance(payload, Mapping):
            raise ValueError("Invalid save payload: expected an object")

        scene_id = payload.get("sceneId")
        action_index = payload.get("actionIndex")
        if not isinstance(scene_id, str):
            raise ValueError("Invalid save payload: sceneId must be a string")
        if not isinstance(action_index, int) or isinstance(action_index, bool):
            raise ValueError("Invalid save payload: actionIndex must be an integer")

        variables: Dict[str, StateValue] = {}
        raw_vars = payload.get("routeVars")
        if isinstance(raw_vars, Mapping):
            for name, value in raw_vars.items():
                if isinstance(value, (str, int, float, bool)):
                    variables[str(name)] = value

        inventory: Dict[str, bool] = {}
        raw_inventory = payload.get("inventory")
        if isinstance(raw_inventory, Mapping):
            for item, owned in raw_inventory.items():
                if isinstance(owned, bool):
                    inventory[str(item)] = owned

        history: List[RouteHistoryEntry] = []
        raw_history = payload.get("routeHistory")
        if isinstance(raw_history, list):
            for raw_entry in raw_history:
                entry = RouteHistoryEntry.from_payload(raw_entry)
                if entry is not None:
                    history.append(entry)

        ending_id = payload.get("resolvedEndingId")
        chapter_path = payload.get("chapterPath")
        if isinstance(chapter_path, str) and chapter_path.strip():
            chapter_path = chapter_target(chapter_path) or chapter_path_key(chapter_path)
        else:
            chapter_path = None
        return cls(
            scene_id=scene_id,
            action_index=action_index,
            variables=variables,
            inventory=inventory,
            history=history,
            ending_id=ending_id if isinstance(ending_id, str) else None,
            chapter_path=chapter_path,
        )

    @classmethod
    def capture(
        cls,
        scene_id: str,
        action_index: int,
        state: RouteState,
        chapter_path: str | None = None,
    ) -> "SaveProgress":
        """Create progress for the cursor from the provided route state."""

        return cls(
            scene_id=scene_id,
            action_index=action_index,
            variables=dict(state.variables),
            inventory=dict(state.inventory),
            history=list(state.history),
            ending_id=state.ending_id,
            chapter_path=chapter_path,
        )

    def apply_to_state(self, state: RouteState) -> None:
        """Overlay the saved branching state onto ``state``."""

        state.merge(self.variables, self.inventory)
        state.history = list(self.history)
        state.ending_id = self.ending_id


class CursorStore(ABC):
    """Interface describing how resume cursors are persisted."""

    @abstractmethod
    def save(self, key: str, progress: SaveProgress) -> None:
        """Persist the progress for later retrieval."""

    @abstractmethod
    def load(self, key: str) -> SaveProgress:
        """Return the progress stored under ``key``.

        Raises:
            KeyError: If nothing is stored under ``key``.
            ValueError: If the stored payload is unreadable.
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the stored progress if it exists."""

    @abstractmethod
    def list_keys(self) -> List[str]:
        """Return all keys stored in this persistence layer."""


class InMemoryCursorStore(CursorStore):
    """Keep resume cursors in local process memory."""

    def __init__(self) -> None:
        self._payloads: Dict[str, str] = {}

    def save(self, key: str, progress: SaveProgress) -> None:
        self._payloads[_validate_key(key)] = json.dumps(progress.to_payload())

    def load(self, key: str) -> SaveProgress:
        validated = _validate_key(key)
        try:
            raw = self._payloads[validated]
        except KeyError as exc:
            raise KeyError(f"No progress stored under '{key}'") from exc
        return SaveProgress.from_payload(json.loads(raw))

    def delete(self, key: str) -> None:
        self._payloads.pop(_validate_key(key), None)

    def list_keys(self) -> List[str]:
        return sorted(self._payloads.keys())

    def write_raw(self, key: str, raw: str) -> None:
        """Store ``raw`` text verbatim, bypassing serialisation."""

        self._payloads[_validate_key(key)] = raw


class FileCursorStore(CursorStore):
    """Persist resume cursors as JSON files on disk."""

    def __init__(self, storage_dir: Path) -> None:
        self.storage_dir = storage_dir
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def save(self, key: str, progress: SaveProgress) -> None:
        save_file = self._save_path(key)
        save_file.write_text(json.dumps(progress.to_payload(), indent=2), encoding="utf-8")

    def load(self, key: str) -> SaveProgress:
        save_file = self._save_path(key)
        if not save_file.exists():
            raise KeyError(f"No progress stored under '{key}'")
        try:
            payload = json.loads(save_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Save file '{save_file.name}' is not valid JSON") from exc
        return SaveProgress.from_payload(payload)

    def delete(self, key: str) -> None:
        save_file = self._save_path(key)
        if save_file.exists():
            save_file.unlink()

    def list_keys(self) -> List[str]:
        return sorted(
            save_path.stem
            for save_path in self.storage_dir.glob("*.json")
            if save_path.is_file()
        )

    def _save_path(self, key: str) -> Path:
        validated = _validate_key(key)
        return self.storage_dir / f"{validated}.json"


def _validate_key(key: str) -> str:
    if not isinstance(key, str):
        raise TypeError("key must be a string")
    stripped = key.strip()
    if not stripped:
        raise ValueError("key must be a non-empty string")
    if "/" in stripped or "\\" in stripped or stripped.startswith("."):
        raise ValueError("key must not contain path separators")
    return stripped


__all__ = [
    "AUTOSAVE_KEY",
    "CursorStore",
    "FileCursorStore",
    "InMemoryCursorStore",
    "SaveProgress",
]
