"""
Container readers and codec decoders.

Two capability sets sit behind the sample source:

- FormatReader: probe a container, pick its default audio track, hand out
  packets one at a time.
- Decoder: turn one packet into interleaved float32 samples and report the
  codec parameters (channels, sample rate).

Decoders are looked up by codec name in a registry at construction time.
PyAV (FFmpeg) provides the concrete implementations; other decoders can be
registered under additional codec names with @register_decoder.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Dict, Iterator, Optional, Protocol

import av
import numpy as np
from av.error import FFmpegError

from engine.errors import DecodeError


@dataclass(frozen=True, slots=True)
class CodecParams:
    codec_name: str
    channels: Optional[int]
    sample_rate: Optional[int]
    duration_frames: Optional[int] = None


class FormatReader(Protocol):
    def default_track(self) -> Optional[Any]: ...

    def next_packet(self) -> Optional[Any]: ...

    def close(self) -> None: ...


class Decoder(Protocol):
    codec_params: CodecParams

    def decode(self, packet: Any) -> np.ndarray: ...

    def flush(self) -> np.ndarray: ...


DecoderFactory = Callable[[Any], Decoder]

_DECODERS: Dict[str, DecoderFactory] = {}


def register_decoder(*codec_names: str) -> Callable[[DecoderFactory], DecoderFactory]:
    """Register a decoder factory for one or more codec names."""

    def wrap(factory: DecoderFactory) -> DecoderFactory:
        for name in codec_names:
            _DECODERS[name] = factory
        return factory

    return wrap


def create_decoder(track: Any) -> Decoder:
    codec_name = track_codec_name(track)
    factory = _DECODERS.get(codec_name)
    if factory is None:
        raise DecodeError(f"No decoder available for codec '{codec_name}'")
    try:
        return factory(track)
    except (FFmpegError, ValueError) as e:
        raise DecodeError(f"Cannot initialise '{codec_name}' decoder: {e}") from e


def track_codec_name(track: Any) -> str:
    try:
        return str(track.codec_context.name)
    except AttributeError:
        return "unknown"


# =============================
# Sample conversion
# =============================


def _to_float32(arr: np.ndarray) -> np.ndarray:
    if arr.dtype == np.float32:
        return arr
    if np.issubdtype(arr.dtype, np.floating):
        return arr.astype(np.float32, copy=False)
    if np.issubdtype(arr.dtype, np.signedinteger):
        info = np.iinfo(arr.dtype)
        return (arr.astype(np.float32) / max(abs(info.min), info.max)).astype(np.float32, copy=False)
    if np.issubdtype(arr.dtype, np.unsignedinteger):
        info = np.iinfo(arr.dtype)
        mid = (info.max + 1) / 2.0
        return ((arr.astype(np.float32) - mid) / mid).astype(np.float32, copy=False)
    return arr.astype(np.float32)


def interleave_planar(arr: np.ndarray) -> np.ndarray:
    """(channels, frames) planar PCM -> flat interleaved float32 samples."""
    if arr.ndim == 1:
        arr = arr[None, :]
    return np.ascontiguousarray(_to_float32(arr).T).reshape(-1)


# =============================
# PyAV implementations
# =============================


class PyAVFormatReader:
    """Demuxer over an already-open file object."""

    def __init__(self, container: Any) -> None:
        self._container = container
        self._stream: Any = None
        self._packets: Optional[Iterator[Any]] = None

    @classmethod
    def probe(cls, fileobj: BinaryIO, path: str = "") -> "PyAVFormatReader":
        try:
            container = av.open(fileobj, mode="r")
        except FFmpegError as e:
            raise DecodeError(f"Unrecognised container format: {path or fileobj!r} ({e})") from e
        return cls(container)

    def default_track(self) -> Optional[Any]:
        if self._stream is None:
            self._stream = next((s for s in self._container.streams if s.type == "audio"), None)
        return self._stream

    def next_packet(self) -> Optional[Any]:
        if self._stream is None:
            return None
        if self._packets is None:
            self._packets = self._container.demux(self._stream)
        return next(self._packets, None)

    def close(self) -> None:
        self._packets = None
        self._container.close()


def _context_channels(ctx: Any) -> Optional[int]:
    layout = getattr(ctx, "layout", None)
    if layout is not None and getattr(layout, "channels", None):
        return len(layout.channels)
    return int(getattr(ctx, "channels", 0) or 0) or None


def _stream_duration_frames(stream: Any, sample_rate: Optional[int]) -> Optional[int]:
    if not sample_rate:
        return None
    try:
        if stream.duration is None or stream.time_base is None:
            return None
        return int(round(float(stream.duration * stream.time_base) * sample_rate))
    except (TypeError, ValueError):
        return None


@register_decoder(
    "mp3",
    "mp3float",
    "mp2",
    "flac",
    "vorbis",
    "libvorbis",
    "opus",
    "libopus",
    "aac",
    "alac",
    "pcm_u8",
    "pcm_s16le",
    "pcm_s16be",
    "pcm_s24le",
    "pcm_s32le",
    "pcm_f32le",
    "pcm_f64le",
    "pcm_alaw",
    "pcm_mulaw",
)
class PyAVDecoder:
    """FFmpeg codec decoder producing interleaved float32 samples."""

    def __init__(self, stream: Any) -> None:
        self._stream = stream
        ctx = stream.codec_context
        channels = _context_channels(ctx)
        sample_rate = int(ctx.sample_rate or 0) or None
        self.codec_params = CodecParams(
            codec_name=str(ctx.name),
            channels=channels,
            sample_rate=sample_rate,
            duration_frames=_stream_duration_frames(stream, sample_rate),
        )
        # Layout and rate are taken from the first decoded frame; only the
        # sample format changes (planar float32).
        self._resampler = av.AudioResampler(format="fltp")

    def decode(self, packet: Any) -> np.ndarray:
        chunks = []
        for frame in packet.decode():
            for out_frame in self._resampler.resample(frame):
                pcm = interleave_planar(out_frame.to_ndarray())
                if pcm.size:
                    chunks.append(pcm)
        if not chunks:
            return np.zeros(0, dtype=np.float32)
        if len(chunks) == 1:
            return chunks[0]
        return np.concatenate(chunks)

    def flush(self) -> np.ndarray:
        """Drain samples still held by the format converter at end of stream."""
        chunks = []
        for out_frame in self._resampler.resample(None):
            # A passthrough converter echoes the None back.
            if out_frame is None:
                continue
            pcm = interleave_planar(out_frame.to_ndarray())
            if pcm.size:
                chunks.append(pcm)
        if not chunks:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(chunks)
