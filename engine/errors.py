"""
Player error kinds.

Every failure the engine surfaces derives from PlayerError so the command
surface can report it and keep running. Each subclass maps to one
user-visible message.
"""

from __future__ import annotations


class PlayerError(Exception):
    """Base class for all engine-level failures."""


class TrackNotFoundError(PlayerError, OSError):
    """The track path does not exist or cannot be read."""

    def __init__(self, path: str, reason: str = "") -> None:
        self.path = str(path)
        self.reason = reason
        msg = f"Cannot open track: {self.path}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class DecodeError(PlayerError):
    """Container not recognised, no decoder for the codec, or bad format info."""


class NoAudioTracksError(PlayerError):
    """The container opened fine but carries no decodable audio track."""

    def __init__(self, path: str) -> None:
        self.path = str(path)
        super().__init__(f"No audio tracks in {self.path}")


class AudioOutputError(PlayerError):
    """The output device is unavailable or refused the stream format."""


class InvalidVolumeError(PlayerError, ValueError):
    def __init__(self, level: float) -> None:
        self.level = level
        super().__init__(f"Volume must be 0.0 to 1.0, got {level}")
