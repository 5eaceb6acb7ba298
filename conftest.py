"""Shared fixtures: WAV writer and a stand-in for the sounddevice module."""

from __future__ import annotations

import struct
import wave
import zlib
from pathlib import Path

import numpy as np
import pytest

from engine.player_state import PlayerState
from engine.sink import OutputDevice
from engine.transport import create_transport
from engine.tuning import PlayerTuning

SAMPLE_RATE = 44100
BLOCK_FRAMES = 1024


def write_wav(path: Path, seconds: float, *, sample_rate: int = SAMPLE_RATE, channels: int = 1) -> np.ndarray:
    """Write a 16-bit PCM WAV and return the expected float32 interleaved samples."""
    frames = int(round(seconds * sample_rate))
    t = np.arange(frames, dtype=np.float64) / sample_rate
    data = np.empty((frames, channels), dtype=np.int16)
    for ch in range(channels):
        tone = 0.5 * np.sin(2 * np.pi * (440.0 + 110.0 * ch) * t)
        data[:, ch] = np.round(tone * 32767).astype(np.int16)
    with wave.open(str(path), "wb") as w:
        w.setnchannels(channels)
        w.setsampwidth(2)
        w.setframerate(sample_rate)
        w.writeframes(data.tobytes())
    return (data.astype(np.float32) / 32768.0).reshape(-1)


def write_png(path: Path, width: int = 4, height: int = 4) -> Path:
    """Write a small valid RGB PNG (a container with a video stream only)."""

    def chunk(tag: bytes, data: bytes) -> bytes:
        crc = zlib.crc32(tag + data) & 0xFFFFFFFF
        return struct.pack(">I", len(data)) + tag + data + struct.pack(">I", crc)

    header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    rows = b"".join(b"\x00" + b"\xff\x80\x00" * width for _ in range(height))
    path.write_bytes(
        b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", header) + chunk(b"IDAT", zlib.compress(rows)) + chunk(b"IEND", b"")
    )
    return path


class FakeCallbackStop(Exception):
    pass


class FakePortAudioError(Exception):
    pass


class FakeOutputStream:
    """Records the callback and lets a test run it one block at a time."""

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.callback = kwargs["callback"]
        self.finished_callback = kwargs["finished_callback"]
        self.blocksize = int(kwargs["blocksize"])
        self.channels = int(kwargs["channels"])
        self.active = False
        self.closed = False

    def start(self) -> None:
        self.active = True

    def tick(self) -> np.ndarray | None:
        if not self.active:
            return None
        out = np.full((self.blocksize, self.channels), np.nan, dtype=np.float32)
        try:
            self.callback(out, self.blocksize, None, None)
        except FakeCallbackStop:
            self.active = False
            self.finished_callback()
        return out

    def run_until_done(self, max_ticks: int = 100_000) -> list[np.ndarray]:
        blocks = []
        for _ in range(max_ticks):
            out = self.tick()
            if out is None:
                break
            blocks.append(out)
        return blocks

    def abort(self) -> None:
        if self.active:
            self.active = False
            self.finished_callback()

    def close(self) -> None:
        self.closed = True


class FakeSoundDevice:
    CallbackStop = FakeCallbackStop
    PortAudioError = FakePortAudioError

    def __init__(self, *, device_available: bool = True) -> None:
        self.device_available = device_available
        self.streams: list[FakeOutputStream] = []

    def OutputStream(self, **kwargs) -> FakeOutputStream:
        stream = FakeOutputStream(**kwargs)
        self.streams.append(stream)
        return stream

    def query_devices(self, device=None, kind=None):
        if not self.device_available:
            raise FakePortAudioError("Error querying device -1")
        info = {"index": 0, "name": "Fake Output", "max_output_channels": 2}
        if kind is not None:
            return info
        return [info, {"index": 1, "name": "Fake Mic", "max_output_channels": 0}]


@pytest.fixture
def fake_sd() -> FakeSoundDevice:
    return FakeSoundDevice()


@pytest.fixture
def tuning() -> PlayerTuning:
    # Ring large enough to prebuffer a few seconds of audio: no feeder timing in tests.
    return PlayerTuning(block_frames=BLOCK_FRAMES, ring_blocks=512)


@pytest.fixture
def player(fake_sd, tuning) -> PlayerState:
    p = PlayerState(OutputDevice(tuning, backend=fake_sd))
    yield p
    p.stop()


@pytest.fixture
def transport(player):
    return create_transport(player)


@pytest.fixture
def two_second_wav(tmp_path) -> tuple[Path, np.ndarray]:
    path = tmp_path / "two_seconds.wav"
    expected = write_wav(path, 2.0)
    return path, expected
