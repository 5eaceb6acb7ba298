from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path

@dataclass(frozen=True, slots=True)
class Track:
    path: Path
    channels: int
    sample_rate: int
    codec_name: str
    duration_frames: int | None = None

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def duration_seconds(self) -> float | None:
        if self.duration_frames is None or self.sample_rate <= 0:
            return None
        return self.duration_frames / float(self.sample_rate)
