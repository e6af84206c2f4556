from __future__ import annotations

import dataclasses

import pytest

from novelscript.store import (
    CharacterSlot,
    DialogState,
    PresentationSnapshot,
    PresentationStore,
    StickerSlot,
)


def test_snapshots_are_immutable() -> None:
    store = PresentationStore()
    snapshot = store.snapshot

    with pytest.raises(dataclasses.FrozenInstanceError):
        snapshot.background = "bg.png"  # type: ignore[misc]
    with pytest.raises(TypeError):
        snapshot.stickers["x"] = StickerSlot("x", "x.png")  # type: ignore[index]


def test_setters_replace_the_snapshot_and_notify_listeners() -> None:
    store = PresentationStore()
    seen: list[PresentationSnapshot] = []
    unsubscribe = store.subscribe(seen.append)
    before = store.snapshot

    store.set_background("bg/room.png")

    assert store.snapshot is not before
    assert before.background is None
    assert store.snapshot.background == "bg/room.png"
    assert seen == [store.snapshot]

    unsubscribe()
    store.set_music("theme.ogg")
    assert len(seen) == 1


def test_character_slots_by_position() -> None:
    store = PresentationStore()

    store.set_character("left", CharacterSlot("alice", "alice.png"))
    store.set_character("right", CharacterSlot("bob", "bob.png", "sad"))
    store.set_character("left", None)

    assert dict(store.snapshot.characters) == {"right": CharacterSlot("bob", "bob.png", "sad")}


def test_speaker_order_and_visible_characters() -> None:
    store = PresentationStore()

    store.promote_speaker("alice")
    store.promote_speaker("bob")
    store.promote_speaker("alice")
    store.set_visible_characters([" alice ", "bob", "alice", ""])

    assert store.snapshot.speaker_order == ("alice", "bob")
    assert store.snapshot.visible_character_ids == ("alice", "bob")


def test_stickers_are_keyed_by_id() -> None:
    store = PresentationStore()

    store.set_sticker(StickerSlot("a", "a.png"))
    store.set_sticker(StickerSlot("b", "b.png", x="10%"))
    store.set_sticker(StickerSlot("a", "a2.png"))
    store.remove_sticker("missing")

    assert {key: slot.image for key, slot in store.snapshot.stickers.items()} == {
        "a": "a2.png",
        "b": "b.png",
    }

    store.remove_sticker("a")
    assert list(store.snapshot.stickers) == ["b"]

    store.clear_stickers()
    assert dict(store.snapshot.stickers) == {}


def test_dialog_updates_are_partial() -> None:
    store = PresentationStore()

    store.set_dialog(speaker="alice", full_text="Hello", visible_text="", typing=True)
    store.set_dialog(visible_text="He")

    assert store.snapshot.dialog == DialogState("alice", "Hello", "He", True)

    store.show_message("Try again")
    assert store.snapshot.dialog == DialogState(None, "Try again", "Try again", False)

    store.clear_dialog()
    assert store.snapshot.dialog == DialogState()


def test_flags_and_reset() -> None:
    store = PresentationStore()

    store.set_busy(True)
    store.set_waiting_input(True)
    store.set_video(active=True, src="intro.mp4")
    store.set_finished("good")

    snapshot = store.snapshot
    assert snapshot.busy and snapshot.waiting_input
    assert snapshot.video.active and snapshot.video.src == "intro.mp4"
    assert snapshot.is_finished and snapshot.ending_id == "good"

    store.reset()
    assert store.snapshot == PresentationSnapshot()
