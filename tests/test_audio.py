from __future__ import annotations

from novelscript.audio import AudioEvent, AudioMixer, RecordingAudioBackend


class _BrokenBackend(RecordingAudioBackend):
    def play_sound(self, url: str) -> None:
        raise RuntimeError("autoplay blocked")


def test_only_one_music_track_is_live() -> None:
    backend = RecordingAudioBackend()
    mixer = AudioMixer(backend)

    mixer.play_music("a.ogg")
    mixer.play_music("a.ogg")
    mixer.play_music("b.ogg")
    mixer.stop()

    assert backend.events == [
        AudioEvent("music", "a.ogg"),
        AudioEvent("stop"),
        AudioEvent("music", "b.ogg"),
        AudioEvent("stop"),
    ]
    assert mixer.current_music is None


def test_sound_failures_are_swallowed() -> None:
    mixer = AudioMixer(_BrokenBackend())

    mixer.play_sound("ding.wav")

    assert mixer.current_music is None
