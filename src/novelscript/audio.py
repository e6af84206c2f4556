"""Background music and sound effect discipline."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Protocol

logger = logging.getLogger(__name__)


class AudioBackend(Protocol):
    """Whatever actually produces sound for the host."""

    def play_music(self, url: str) -> None:
        ...

    def stop_music(self) -> None:
        ...

    def play_sound(self, url: str) -> None:
        ...


@dataclass(frozen=True)
class AudioEvent:
    kind: str
    url: str | None = None


class RecordingAudioBackend:
    """Backend that records calls instead of playing anything."""

    def __init__(self) -> None:
        self.events: List[AudioEvent] = []

    def play_music(self, url: str) -> None:
        self.events.append(AudioEvent("music", url))

    def stop_music(self) -> None:
        self.events.append(AudioEvent("stop"))

    def play_sound(self, url: str) -> None:
        self.events.append(AudioEvent("sound", url))


class AudioMixer:
    """Keep at most one music track live and fire sounds without blocking."""

    def __init__(self, backend: AudioBackend | None = None) -> None:
        self.backend: AudioBackend = backend or RecordingAudioBackend()
        self._current_music: str | None = None

    @property
    def current_music(self) -> str | None:
        return self._current_music

    def play_music(self, url: str | None) -> None:
        """Switch the background track; ``None`` stops it."""

        if url == self._current_music:
            return
        if self._current_music is not None:
            self.backend.stop_music()
        self._current_music = url
        if url is None:
            return
        try:
            self.backend.play_music(url)
        except Exception:  # pragma: no cover - depends on host audio stack
            logger.warning("Unable to start music %s", url, exc_info=True)

    def play_sound(self, url: str) -> None:
        try:
            self.backend.play_sound(url)
        except Exception:
            logger.debug("Sound effect %s failed to play", url, exc_info=True)

    def stop(self) -> None:
        self.play_music(None)


__all__ = ["AudioBackend", "AudioEvent", "AudioMixer", "RecordingAudioBackend"]
