"""
Sample source: a decoded audio file exposed as a pull-based stream of
interleaved float32 samples.

Codecs decode whole packets at a time while the output sink wants a uniform
"give me the next samples" interface. The source keeps one decoded packet
in a buffer and hands it out sample by sample (next_sample / iteration) or
in blocks (read), decoding the next packet only when the buffer runs dry.

A packet that fails to decode ends the stream. There is no retry and no
skipping to the following packet.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, BinaryIO, Callable, Optional

import numpy as np
from av.error import FFmpegError

from engine.decoders import Decoder, FormatReader, PyAVFormatReader, create_decoder
from engine.errors import DecodeError, NoAudioTracksError, TrackNotFoundError
from engine.track import Track
from log.log_manager import get_logger

logger = get_logger("source")

_EMPTY = np.zeros(0, dtype=np.float32)


class SampleSource:
    def __init__(self, track: Track, fileobj: BinaryIO, reader: FormatReader, decoder: Decoder) -> None:
        self.track = track
        self._fileobj = fileobj
        self._reader = reader
        self._decoder = decoder

        self._buffer: np.ndarray = _EMPTY
        self._cursor = 0
        self._exhausted = False
        self._closed = False

        self.samples_read = 0
        # "eof", "decode_error" or "closed" once the stream has ended.
        self.end_reason: Optional[str] = None

    @classmethod
    def open(
        cls,
        path: str | Path,
        *,
        probe: Callable[[BinaryIO, str], FormatReader] = PyAVFormatReader.probe,
        decoder_factory: Callable[[Any], Decoder] = create_decoder,
    ) -> "SampleSource":
        """Open path, pick its default audio track and build a decoder for it.

        Raises TrackNotFoundError, DecodeError or NoAudioTracksError. Nothing
        stays open when construction fails.
        """
        path = Path(path)
        try:
            fileobj = open(path, "rb")
        except FileNotFoundError as e:
            raise TrackNotFoundError(str(path), "no such file") from e
        except OSError as e:
            raise TrackNotFoundError(str(path), e.strerror or str(e)) from e

        reader: Optional[FormatReader] = None
        try:
            reader = probe(fileobj, str(path))
            stream = reader.default_track()
            if stream is None:
                raise NoAudioTracksError(str(path))
            decoder = decoder_factory(stream)
            params = decoder.codec_params
            if not params.channels or not params.sample_rate:
                raise DecodeError(
                    f"Unknown stream format in {path} (channels={params.channels}, sample_rate={params.sample_rate})"
                )
        except Exception:
            if reader is not None:
                reader.close()
            fileobj.close()
            raise

        track = Track(
            path=path,
            channels=int(params.channels),
            sample_rate=int(params.sample_rate),
            codec_name=params.codec_name,
            duration_frames=params.duration_frames,
        )
        logger.info(
            "opened %s codec=%s ch=%d sr=%d",
            path, track.codec_name, track.channels, track.sample_rate,
        )
        return cls(track, fileobj, reader, decoder)

    # -------------------------------------------------
    # Format metadata
    # -------------------------------------------------

    @property
    def channels(self) -> int:
        return self.track.channels

    @property
    def sample_rate(self) -> int:
        return self.track.sample_rate

    @property
    def exhausted(self) -> bool:
        """True once no further samples will be produced."""
        return self._exhausted and self._cursor >= self._buffer.size

    @property
    def closed(self) -> bool:
        return self._closed

    # -------------------------------------------------
    # Pull interface
    # -------------------------------------------------

    def next_sample(self) -> Optional[float]:
        """Return the next interleaved sample, or None once exhausted."""
        if self._cursor >= self._buffer.size and not self._refill():
            return None
        value = float(self._buffer[self._cursor])
        self._cursor += 1
        self.samples_read += 1
        return value

    def __iter__(self) -> "SampleSource":
        return self

    def __next__(self) -> float:
        value = self.next_sample()
        if value is None:
            raise StopIteration
        return value

    def read(self, count: int) -> np.ndarray:
        """Return up to count samples; an empty array means exhausted."""
        parts = []
        remaining = int(count)
        while remaining > 0:
            if self._cursor >= self._buffer.size and not self._refill():
                break
            take = min(remaining, self._buffer.size - self._cursor)
            parts.append(self._buffer[self._cursor:self._cursor + take])
            self._cursor += take
            remaining -= take

        got = int(count) - remaining
        self.samples_read += got
        if not parts:
            return _EMPTY
        if len(parts) == 1:
            return parts[0]
        return np.concatenate(parts)

    def _refill(self) -> bool:
        """Decode packets until one yields samples. False means end of stream."""
        while not self._exhausted:
            try:
                packet = self._reader.next_packet()
                if packet is None:
                    pcm = self._decoder.flush()
                    self._end("eof")
                else:
                    pcm = self._decoder.decode(packet)
            except (FFmpegError, ValueError) as e:
                # Known limitation: a corrupt packet ends playback.
                logger.warning(
                    "decode failed in %s after %d samples, ending stream: %s",
                    self.track.path, self.samples_read, e,
                )
                self._end("decode_error")
                return False

            if pcm.size:
                self._buffer = pcm
                self._cursor = 0
                return True
        return False

    def _end(self, reason: str) -> None:
        self._exhausted = True
        if self.end_reason is None:
            self.end_reason = reason
        logger.debug("stream ended (%s) %s", reason, self.track.path)
        self._release()

    # -------------------------------------------------
    # Lifetime
    # -------------------------------------------------

    def close(self) -> None:
        """Release the container and file handle. Safe to call repeatedly."""
        self._exhausted = True
        self._buffer = _EMPTY
        self._cursor = 0
        if self.end_reason is None:
            self.end_reason = "closed"
        self._release()

    def _release(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._reader.close()
        finally:
            self._fileobj.close()
        logger.debug("released %s", self.track.path)

    def __enter__(self) -> "SampleSource":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
