"""Route state tracked while a script is played."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Literal, Mapping

from .schema import SceneGraph, StateValue

RouteKind = Literal["choice", "input"]


@dataclass(frozen=True)
class RouteHistoryEntry:
    """A decision the player made at a choice or input gate."""

    kind: RouteKind
    key: str
    value: str
    scene_id: str
    action_index: int

    def to_payload(self) -> Dict[str, object]:
        return {
            "kind": self.kind,
            "key": self.key,
            "value": self.value,
            "sceneId": self.scene_id,
            "actionIndex": self.action_index,
        }

    @classmethod
    def from_payload(cls, payload: Any) -> "RouteHistoryEntry | None":
        """Return an entry for well-formed payloads and ``None`` otherwise."""

        if not isinstance(payload, Mapping):
            return None
        kind = payload.get("kind")
        key = payload.get("key")
        value = payload.get("value")
        scene_id = payload.get("sceneId")
        action_index = payload.get("actionIndex")
        if kind not in ("choice", "input"):
            return None
        if not isinstance(key, str) or not isinstance(value, str):
            return None
        if not isinstance(scene_id, str):
            return None
        if not isinstance(action_index, int) or isinstance(action_index, bool):
            return None
        return cls(kind, key, value, scene_id, action_index)


@dataclass
class RouteState:
    """Mutable branching state of a single playthrough.

    The route state keeps track of four pieces of information:

    * ``variables`` – the current value of every declared state variable.
    * ``inventory`` – ownership flags for declared inventory items.
    * ``history`` – a chronological log of choice and input decisions.
    * ``ending_id`` – the ending resolved when the story finished.
    """

    variables: Dict[str, StateValue] = field(default_factory=dict)
    inventory: Dict[str, bool] = field(default_factory=dict)
    history: List[RouteHistoryEntry] = field(default_factory=list)
    ending_id: str | None = None

    @classmethod
    def from_graph(cls, graph: SceneGraph) -> "RouteState":
        """Return a fresh state seeded from the graph's declared defaults."""

        return cls(
            variables=dict(graph.state.defaults),
            inventory={
                item_id: item.owned
                for item_id, item in graph.inventory.defaults.items()
            },
        )

    def merge(
        self,
        variables: Mapping[str, StateValue] | None = None,
        inventory: Mapping[str, bool] | None = None,
    ) -> None:
        """Overlay restored values on top of the current ones."""

        if variables:
            self.variables.update(variables)
        if inventory:
            self.inventory.update(inventory)

    def set_values(self, values: Mapping[str, StateValue] | None) -> None:
        if not values:
            return
        for name, value in values.items():
            self.variables[self._validate_label(name, "variable")] = value

    def add_values(self, deltas: Mapping[str, float] | None) -> None:
        """Increment numeric variables; non-numeric targets are left alone."""

        if not deltas:
            return
        for name, delta in deltas.items():
            current = self.variables.get(name)
            if isinstance(current, bool) or not isinstance(current, (int, float)):
                continue
            self.variables[name] = current + delta

    def give_item(self, item: str) -> None:
        self.inventory[self._validate_label(item, "item")] = True

    def use_item(self, item: str) -> None:
        self.inventory[self._validate_label(item, "item")] = False

    def record(self, entry: RouteHistoryEntry) -> None:
        """Append a decision to the route history."""

        self.history.append(entry)

    def variables_view(self) -> Mapping[str, StateValue]:
        return MappingProxyType(self.variables)

    def inventory_view(self) -> Mapping[str, bool]:
        return MappingProxyType(self.inventory)

    @staticmethod
    def _validate_label(value: str, field_name: str) -> str:
        if not isinstance(value, str):
            raise TypeError(f"{field_name} must be a string, got {type(value)!r}")

        stripped = value.strip()
        if not stripped:
            raise ValueError(f"{field_name} must be a non-empty string")
        return stripped


__all__ = ["RouteHistoryEntry", "RouteKind", "RouteState"]
