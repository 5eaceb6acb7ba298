from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any


# Central defaults (used as fallbacks when env vars and/or player_tuning.json are absent).
DEFAULT_BLOCK_FRAMES = 2048
DEFAULT_RING_BLOCKS = 8
DEFAULT_VOLUME = 1.0
DEFAULT_LATENCY = "high"

# Safety clamps so a bad tuning file cannot starve the callback.
MIN_BLOCK_FRAMES = 64
MIN_RING_BLOCKS = 2


@dataclass(frozen=True, slots=True)
class PlayerTuning:
    """Loaded tuning values (output buffering and startup volume)."""

    block_frames: int = DEFAULT_BLOCK_FRAMES
    ring_blocks: int = DEFAULT_RING_BLOCKS
    device: int | str | None = None  # None => system default output
    latency: str | float = DEFAULT_LATENCY
    default_volume: float = DEFAULT_VOLUME


def _repo_root() -> Path:
    # engine/ is a direct child of repo root.
    return Path(__file__).resolve().parents[1]


def _tuning_path() -> Path:
    env = (os.environ.get("MUSICPLAYER_TUNING_PATH") or "").strip()
    if env:
        p = Path(env)
        if not p.is_absolute():
            p = _repo_root() / p
        return p
    return _repo_root() / "player_tuning.json"


def resolve_tuning_path() -> Path:
    """Return the resolved path to the active tuning file (for diagnostics)."""

    return _tuning_path()


def _read_json(path: Path) -> dict[str, Any] | None:
    try:
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    return data


def _get(obj: dict[str, Any], *keys: str) -> Any:
    cur: Any = obj
    for k in keys:
        if not isinstance(cur, dict) or k not in cur:
            return None
        cur = cur[k]
    return cur


def _as_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_device(value: Any) -> int | str | None:
    # sounddevice accepts either a device index or a name substring.
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        return text


def _as_latency(value: Any) -> str | float | None:
    if value is None:
        return None
    text = str(value).strip().lower()
    if text in ("low", "high"):
        return text
    return _as_float(text)


def _env(name: str) -> str | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip()


def _first(*values: Any) -> Any:
    for v in values:
        if v is not None:
            return v
    return None


def load_player_tuning() -> PlayerTuning:
    """Merge defaults, player_tuning.json and MUSICPLAYER_* env vars.

    Precedence: env vars win over the JSON file, which wins over defaults.
    Values that fail to parse are ignored.
    """

    data = _read_json(_tuning_path()) or {}

    block_frames = _first(
        _as_int(_env("MUSICPLAYER_BLOCK_FRAMES")),
        _as_int(_get(data, "output", "block_frames")),
        DEFAULT_BLOCK_FRAMES,
    )
    ring_blocks = _first(
        _as_int(_env("MUSICPLAYER_RING_BLOCKS")),
        _as_int(_get(data, "output", "ring_blocks")),
        DEFAULT_RING_BLOCKS,
    )
    device = _first(
        _as_device(_env("MUSICPLAYER_OUTPUT_DEVICE")),
        _as_device(_get(data, "output", "device")),
    )
    latency = _first(
        _as_latency(_env("MUSICPLAYER_LATENCY")),
        _as_latency(_get(data, "output", "latency")),
        DEFAULT_LATENCY,
    )
    default_volume = _first(
        _as_float(_env("MUSICPLAYER_DEFAULT_VOLUME")),
        _as_float(_get(data, "player", "default_volume")),
        DEFAULT_VOLUME,
    )
    if not 0.0 <= default_volume <= 1.0:
        default_volume = DEFAULT_VOLUME

    return PlayerTuning(
        block_frames=max(MIN_BLOCK_FRAMES, block_frames),
        ring_blocks=max(MIN_RING_BLOCKS, ring_blocks),
        device=device,
        latency=latency,
        default_volume=default_volume,
    )
