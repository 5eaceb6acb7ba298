"""
Output device and sink.

A sink owns one sample source and plays it asynchronously:

    feeder thread:    source.read(block) -> _Ring.push()
    PortAudio thread: _Ring.pull() -> volume -> outdata

Pause writes silence without pulling from the ring, so nothing is lost or
repeated across a pause/resume boundary. Stop aborts the stream, joins the
feeder (an in-flight packet decode is allowed to finish) and closes the
source. The sink's finished event is set when the stream drains naturally
or is stopped.

sounddevice is imported lazily: PortAudio is only needed once a device is
actually opened.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Any, Optional

import numpy as np

from engine.errors import AudioOutputError
from engine.sample_source import SampleSource
from engine.tuning import PlayerTuning, load_player_tuning
from log.log_manager import get_logger

logger = get_logger("sink")

_EMPTY = np.zeros(0, dtype=np.float32)

# Feeder re-checks the stop flag at this interval while the ring is full.
_FEED_POLL_S = 0.05


class _Ring:
    """Bounded queue of interleaved sample blocks between feeder and callback."""

    def __init__(self, capacity_samples: int) -> None:
        self.q: deque[np.ndarray] = deque()
        self.samples = 0
        self.eof = False
        self.capacity = max(1, int(capacity_samples))
        self._cond = threading.Condition()
        # Scratch buffer reused by pull() to avoid per-callback allocations.
        self._scratch: np.ndarray | None = None

    def has_space(self) -> bool:
        with self._cond:
            return self.samples < self.capacity

    def wait_for_space(self, stop: threading.Event) -> bool:
        """Block until there is room. False if stop was requested meanwhile."""
        with self._cond:
            while self.samples >= self.capacity and not stop.is_set():
                self._cond.wait(_FEED_POLL_S)
            return not stop.is_set()

    def push(self, a: np.ndarray, eof: bool) -> None:
        with self._cond:
            if a.size:
                self.q.append(a)
                self.samples += a.size
            if eof:
                self.eof = True

    def pull(self, n: int) -> tuple[np.ndarray, int, bool]:
        out = self._scratch
        if out is None or out.shape != (n,):
            out = np.zeros(n, dtype=np.float32)
            self._scratch = out
        else:
            out.fill(0.0)
        filled = 0
        with self._cond:
            while filled < n and self.q:
                a = self.q[0]
                take = min(n - filled, a.size)
                out[filled:filled + take] = a[:take]
                if take == a.size:
                    self.q.popleft()
                else:
                    self.q[0] = a[take:]
                self.samples -= take
                filled += take
            done = self.eof and not self.q
            self._cond.notify_all()
        return out, filled, done

    def clear(self) -> None:
        with self._cond:
            self.q.clear()
            self.samples = 0
            self._cond.notify_all()


class SoundDeviceSink:
    def __init__(
        self,
        sd: Any,
        *,
        channels: int,
        sample_rate: int,
        device: int | str | None = None,
        block_frames: int = 2048,
        ring_blocks: int = 8,
        latency: str | float = "high",
    ) -> None:
        self._sd = sd
        self.channels = int(channels)
        self.sample_rate = int(sample_rate)
        self.device = device
        self.block_frames = int(block_frames)
        self.latency = latency

        self._ring = _Ring(self.block_frames * self.channels * int(ring_blocks))
        self._volume = 1.0
        self._paused = False
        self._stop_event = threading.Event()
        self._finished = threading.Event()

        self._source: Optional[SampleSource] = None
        self._stream: Any = None
        self._feeder: Optional[threading.Thread] = None

        # Counters written by the callback only.
        self.samples_played = 0
        self.underflow_count = 0
        self.last_status: str = ""

    # -------------------------------------------------
    # Sink operations
    # -------------------------------------------------

    def append(self, source: SampleSource) -> None:
        """Start playing source. A sink plays exactly one source."""
        if self._source is not None:
            raise AudioOutputError("Sink already has a source; build a new sink per track")
        if source.channels != self.channels or source.sample_rate != self.sample_rate:
            raise AudioOutputError(
                f"Sink format {self.channels}ch/{self.sample_rate}Hz does not match "
                f"source {source.channels}ch/{source.sample_rate}Hz"
            )
        self._source = source

        # Prebuffer so the first callbacks do not start on an empty ring.
        while self._ring.has_space() and self._feed_block():
            pass

        try:
            self._stream = self._sd.OutputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                blocksize=self.block_frames,
                latency=self.latency,
                device=self.device,
                callback=self._callback,
                finished_callback=self._on_stream_finished,
            )
        except Exception as ex:
            self.stop()
            raise AudioOutputError(
                f"Cannot open output stream device={self.device} sr={self.sample_rate} ch={self.channels}: {ex}"
            ) from ex

        if not self._ring.eof:
            self._feeder = threading.Thread(target=self._feed, name="sink-feeder", daemon=True)
            self._feeder.start()

        try:
            self._stream.start()
        except Exception as ex:
            self.stop()
            raise AudioOutputError(f"Cannot start output stream: {ex}") from ex
        logger.info(
            "sink started %s device=%s sr=%d ch=%d block=%d",
            source.track.path, self.device, self.sample_rate, self.channels, self.block_frames,
        )

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def stop(self) -> None:
        """Halt output and release the source. Idempotent."""
        if self._stop_event.is_set():
            return
        self._stop_event.set()

        stream = self._stream
        if stream is not None:
            try:
                stream.abort()
                stream.close()
            except Exception as ex:
                logger.warning("error closing output stream: %s: %s", type(ex).__name__, ex)

        feeder = self._feeder
        if feeder is not None and feeder is not threading.current_thread():
            feeder.join()

        if self._source is not None:
            self._source.close()
        self._ring.clear()
        self._finished.set()
        logger.info("sink stopped after %s", self._stats())

    def set_volume(self, level: float) -> None:
        self._volume = float(level)

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    @property
    def source(self) -> Optional[SampleSource]:
        return self._source

    def wait_until_finished(self, timeout: float | None = None) -> bool:
        return self._finished.wait(timeout)

    # -------------------------------------------------
    # Background delivery
    # -------------------------------------------------

    def _feed_block(self) -> bool:
        """Move one block from the source into the ring. False at end of stream."""
        pcm = self._source.read(self.block_frames * self.channels)
        eof = pcm.size == 0 or self._source.exhausted
        self._ring.push(pcm, eof)
        return not eof

    def _feed(self) -> None:
        try:
            while self._ring.wait_for_space(self._stop_event):
                if not self._feed_block():
                    break
        except Exception:
            logger.exception("feeder failed for %s", self._source.track.path)
            self._ring.push(_EMPTY, True)

    def _callback(self, outdata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:
        # Runs on the PortAudio thread: no logging, no blocking I/O.
        if status:
            self.last_status = str(status)
        if self._paused or self._stop_event.is_set():
            outdata.fill(0)
            return

        n = frames * self.channels
        block, filled, done = self._ring.pull(n)
        if filled < n and not done:
            self.underflow_count += 1
        outdata[:] = block.reshape(frames, self.channels)
        if self._volume != 1.0:
            outdata *= self._volume
        self.samples_played += filled
        if done:
            raise self._sd.CallbackStop

    def _stats(self) -> str:
        text = f"{self.samples_played} samples, {self.underflow_count} underflows"
        if self.last_status:
            text += f", last status: {self.last_status}"
        return text

    def _on_stream_finished(self) -> None:
        if not self._stop_event.is_set():
            logger.info("sink drained after %s", self._stats())
        self._finished.set()


class OutputDevice:
    """Playback target: validates the output device and builds sinks for it."""

    def __init__(self, tuning: PlayerTuning | None = None, *, backend: Any = None) -> None:
        self.tuning = tuning or load_player_tuning()
        self._backend = backend

    def _sd(self) -> Any:
        if self._backend is None:
            try:
                import sounddevice as sd
            except OSError as ex:
                # Raised when the PortAudio shared library is missing.
                raise AudioOutputError(f"PortAudio is not available: {ex}") from ex
            self._backend = sd
        return self._backend

    def open(self) -> dict:
        """Check that the configured output device exists; return its info."""
        sd = self._sd()
        try:
            info = sd.query_devices(self.tuning.device, kind="output")
        except (sd.PortAudioError, ValueError) as ex:
            raise AudioOutputError(f"No usable output device ({self.tuning.device or 'default'}): {ex}") from ex
        logger.debug("output device %s", dict(info).get("name", "?"))
        return dict(info)

    def create_sink(self, channels: int, sample_rate: int) -> SoundDeviceSink:
        return SoundDeviceSink(
            self._sd(),
            channels=channels,
            sample_rate=sample_rate,
            device=self.tuning.device,
            block_frames=self.tuning.block_frames,
            ring_blocks=self.tuning.ring_blocks,
            latency=self.tuning.latency,
        )

    def list_devices(self) -> list[dict]:
        sd = self._sd()
        try:
            devices = sd.query_devices()
        except sd.PortAudioError as ex:
            raise AudioOutputError(f"Cannot list output devices: {ex}") from ex
        return [dict(d) for d in devices if int(dict(d).get("max_output_channels", 0)) > 0]
