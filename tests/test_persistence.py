import json
from pathlib import Path

import pytest

from novelscript.persistence import (
    AUTOSAVE_KEY,
    FileCursorStore,
    InMemoryCursorStore,
    SaveProgress,
)
from novelscript.state import RouteHistoryEntry, RouteState


@pytest.fixture
def sample_progress() -> SaveProgress:
    state = RouteState(
        variables={"score": 3, "name": "Alice"},
        inventory={"key": True},
        history=[RouteHistoryEntry("choice", "intro:2", "Left", "intro", 2)],
    )
    return SaveProgress.capture("hall", 4, state)


def test_payload_uses_document_keys(sample_progress: SaveProgress) -> None:
    payload = sample_progress.to_payload()

    assert payload == {
        "sceneId": "hall",
        "actionIndex": 4,
        "routeVars": {"score": 3, "name": "Alice"},
        "inventory": {"key": True},
        "routeHistory": [
            {
                "kind": "choice",
                "key": "intro:2",
                "value": "Left",
                "sceneId": "intro",
                "actionIndex": 2,
            }
        ],
        "resolvedEndingId": None,
    }
    assert SaveProgress.from_payload(payload) == sample_progress


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"actionIndex": 0},
        {"sceneId": "intro"},
        {"sceneId": "intro", "actionIndex": "3"},
        {"sceneId": "intro", "actionIndex": False},
    ],
)
def test_from_payload_rejects_invalid_cursor(payload) -> None:
    with pytest.raises(ValueError):
        SaveProgress.from_payload(payload)


def test_from_payload_drops_malformed_optional_fields() -> None:
    progress = SaveProgress.from_payload(
        {
            "sceneId": "intro",
            "actionIndex": 1,
            "routeVars": {"score": 2, "bad": {"nested": True}},
            "inventory": {"key": "yes", "map": True},
            "routeHistory": [{"kind": "choice"}, "junk"],
            "resolvedEndingId": 7,
        }
    )

    assert progress.variables == {"score": 2}
    assert progress.inventory == {"map": True}
    assert progress.history == []
    assert progress.ending_id is None


def test_apply_to_state_overlays_saved_values(sample_progress: SaveProgress) -> None:
    state = RouteState(variables={"score": 0, "name": "", "met_bob": False})

    sample_progress.apply_to_state(state)

    assert state.variables == {"score": 3, "name": "Alice", "met_bob": False}
    assert state.inventory == {"key": True}
    assert state.history == sample_progress.history


def test_in_memory_cursor_store_round_trip(sample_progress: SaveProgress) -> None:
    store = InMemoryCursorStore()
    store.save(AUTOSAVE_KEY, sample_progress)

    assert store.load(AUTOSAVE_KEY) == sample_progress
    assert store.list_keys() == [AUTOSAVE_KEY]

    store.delete(AUTOSAVE_KEY)
    assert store.list_keys() == []
    with pytest.raises(KeyError):
        store.load(AUTOSAVE_KEY)


def test_in_memory_cursor_store_reports_unreadable_payloads() -> None:
    store = InMemoryCursorStore()
    store.write_raw("slot", "{not json")

    with pytest.raises(ValueError):
        store.load("slot")


def test_cursor_store_validates_keys(sample_progress: SaveProgress) -> None:
    store = InMemoryCursorStore()
    with pytest.raises(ValueError):
        store.save("   ", sample_progress)
    with pytest.raises(ValueError):
        store.save("../escape", sample_progress)
    with pytest.raises(TypeError):
        store.save(123, sample_progress)  # type: ignore[arg-type]


def test_file_cursor_store_round_trip(
    tmp_path: Path, sample_progress: SaveProgress
) -> None:
    store = FileCursorStore(tmp_path / "saves")
    store.save("slot-1", sample_progress)

    saved = json.loads((tmp_path / "saves" / "slot-1.json").read_text(encoding="utf-8"))
    assert saved["sceneId"] == "hall"
    assert store.load("slot-1") == sample_progress
    assert store.list_keys() == ["slot-1"]

    store.delete("slot-1")
    assert store.list_keys() == []
    with pytest.raises(KeyError):
        store.load("slot-1")


def test_file_cursor_store_rejects_invalid_json(tmp_path: Path) -> None:
    store = FileCursorStore(tmp_path)
    (tmp_path / "broken.json").write_text("{", encoding="utf-8")

    with pytest.raises(ValueError):
        store.load("broken")
