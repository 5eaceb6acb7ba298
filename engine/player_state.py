from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from engine.errors import InvalidVolumeError
from engine.sample_source import SampleSource
from engine.sink import OutputDevice, SoundDeviceSink
from log.log_manager import get_logger

logger = get_logger("player")


class TransportState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"


@dataclass(frozen=True, slots=True)
class PlayerStatus:
    track: Optional[Path]
    state: TransportState
    elapsed_seconds: float
    volume: float
    duration_seconds: Optional[float] = None


class PlayerState:
    """At most one active sink plus the path of the track it is playing.

    Invariant: sink is set iff current_track is set. A failed play() leaves
    both cleared. Not thread-safe on its own; TransportCoordinator serializes
    access.
    """

    def __init__(
        self,
        device: OutputDevice,
        *,
        open_source: Callable[[Path], SampleSource] = SampleSource.open,
        default_volume: float = 1.0,
    ) -> None:
        self._device = device
        self._open_source = open_source
        self._sink: Optional[SoundDeviceSink] = None
        self._current_track: Optional[Path] = None
        self._volume = float(default_volume)

    # -------------------------------------------------
    # Transport operations
    # -------------------------------------------------

    def play(self, path: str | Path, volume: float | None = None) -> None:
        """Replace whatever is playing with path.

        volume is applied as-is (validation belongs to set_volume); None keeps
        the last level set. Errors from the device, the decoder or the sink
        propagate unchanged and leave the player idle.
        """
        self.stop()

        path = Path(path)
        level = self._volume if volume is None else float(volume)
        source: Optional[SampleSource] = None
        sink: Optional[SoundDeviceSink] = None
        try:
            self._device.open()
            source = self._open_source(path)
            sink = self._device.create_sink(source.channels, source.sample_rate)
            sink.set_volume(level)
            sink.append(source)
        except Exception as e:
            logger.warning("play failed for %s: %s: %s", path, type(e).__name__, e)
            if sink is not None:
                sink.stop()
            if source is not None:
                source.close()
            self._sink = None
            self._current_track = None
            raise

        self._sink = sink
        self._current_track = path
        self._volume = level
        logger.info("playing %s volume=%.2f", path, level)

    def pause(self) -> None:
        if self._sink is None:
            return
        self._sink.pause()
        logger.info("paused %s", self._current_track)

    def resume(self) -> None:
        if self._sink is None:
            return
        self._sink.resume()
        logger.info("resumed %s", self._current_track)

    def stop(self) -> None:
        sink = self._sink
        track = self._current_track
        self._sink = None
        self._current_track = None
        if sink is not None:
            sink.stop()
            logger.info("stopped %s", track)

    def set_volume(self, level: float) -> None:
        # NaN fails both comparisons and is rejected too.
        if not 0.0 <= level <= 1.0:
            raise InvalidVolumeError(level)
        self._volume = float(level)
        if self._sink is not None:
            self._sink.set_volume(self._volume)
        logger.debug("volume %.2f", self._volume)

    # -------------------------------------------------
    # Read-only views
    # -------------------------------------------------

    @property
    def sink(self) -> Optional[SoundDeviceSink]:
        return self._sink

    @property
    def current_track(self) -> Optional[Path]:
        return self._current_track

    @property
    def volume(self) -> float:
        if self._sink is not None:
            return self._sink.volume
        return self._volume

    @property
    def state(self) -> TransportState:
        sink = self._sink
        if sink is None:
            return TransportState.IDLE
        if sink.finished:
            # Drained on its own: give the output stream back now.
            sink.stop()
            return TransportState.IDLE
        if sink.is_paused:
            return TransportState.PAUSED
        return TransportState.PLAYING

    @property
    def elapsed_seconds(self) -> float:
        sink = self._sink
        if sink is None:
            return 0.0
        return sink.samples_played / float(sink.channels * sink.sample_rate)

    @property
    def duration_seconds(self) -> Optional[float]:
        sink = self._sink
        if sink is None or sink.source is None:
            return None
        return sink.source.track.duration_seconds

    def status(self) -> PlayerStatus:
        return PlayerStatus(
            track=self._current_track,
            state=self.state,
            elapsed_seconds=self.elapsed_seconds,
            volume=self.volume,
            duration_seconds=self.duration_seconds,
        )
