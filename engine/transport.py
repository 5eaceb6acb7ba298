"""
TransportCoordinator: serializes transport commands against one PlayerState.

Each command holds the lock for exactly one PlayerState operation. play()
can then wait for the sink's finished event without the lock, so pause,
stop and volume commands issued meanwhile still get through, and the
process returns as soon as the track drains.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import ContextManager, Optional

from engine.player_state import PlayerState, PlayerStatus
from log.log_manager import get_logger

logger = get_logger("transport")


class TransportCoordinator:
    def __init__(self, player: PlayerState, lock: ContextManager) -> None:
        self._player = player
        self._lock = lock

    @property
    def player(self) -> PlayerState:
        return self._player

    def play(self, path: str | Path, volume: float | None = None, *, wait: bool = False) -> None:
        logger.debug("cmd play %s", path)
        with self._lock:
            self._player.play(path, volume)
            sink = self._player.sink
        if wait and sink is not None:
            sink.wait_until_finished()

    def pause(self) -> None:
        logger.debug("cmd pause")
        with self._lock:
            self._player.pause()

    def resume(self) -> None:
        logger.debug("cmd resume")
        with self._lock:
            self._player.resume()

    def stop(self) -> None:
        logger.debug("cmd stop")
        with self._lock:
            self._player.stop()

    def set_volume(self, level: float) -> None:
        logger.debug("cmd volume %s", level)
        with self._lock:
            self._player.set_volume(level)

    def status(self) -> PlayerStatus:
        with self._lock:
            return self._player.status()

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block (lock not held) until the current sink finishes.

        Returns True immediately when nothing is loaded.
        """
        with self._lock:
            sink = self._player.sink
        if sink is None:
            return True
        return sink.wait_until_finished(timeout)


def create_transport(player: PlayerState) -> TransportCoordinator:
    return TransportCoordinator(player, threading.Lock())
