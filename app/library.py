from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, Optional

PLAYABLE_EXTENSIONS = frozenset({"mp3", "wav", "flac", "ogg"})


def is_playable(path: Path) -> bool:
    return path.suffix.lower().lstrip(".") in PLAYABLE_EXTENSIONS


def scan_directory(directory: str | Path) -> list[Path]:
    """Playable files directly inside directory, in directory iteration order.

    Raises NotADirectoryError / FileNotFoundError for a bad directory.
    """
    directory = Path(directory)
    if not directory.is_dir():
        if directory.exists():
            raise NotADirectoryError(f"Not a directory: {directory}")
        raise FileNotFoundError(f"Directory not found: {directory}")

    found: list[Path] = []
    with os.scandir(directory) as it:
        for entry in it:
            if not entry.is_file():
                continue
            p = Path(entry.path)
            if is_playable(p):
                found.append(p)
    return found


@dataclass
class Library:
    """Tracks of one directory addressed by 1-based index."""

    directory: Path
    tracks: Dict[int, Path] = field(default_factory=dict)

    @classmethod
    def load(cls, directory: str | Path) -> "Library":
        directory = Path(directory)
        paths = scan_directory(directory)
        return cls(directory=directory, tracks={i: p for i, p in enumerate(paths, start=1)})

    def get(self, index: int) -> Optional[Path]:
        return self.tracks.get(index)

    def index_of(self, path: Optional[Path]) -> Optional[int]:
        if path is None:
            return None
        for i, p in self.tracks.items():
            if p == path:
                return i
        return None

    def __len__(self) -> int:
        return len(self.tracks)

    def __iter__(self) -> Iterator[tuple[int, Path]]:
        return iter(self.tracks.items())
