from __future__ import annotations

import itertools
import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

from .models import GameMap, Move

LOGGER = logging.getLogger(__name__)


class VisGraphRecorder:
    """Write finished battles as `{"map": ..., "moves": [...]}` files for the visualizer."""

    LATEST_NAME: str = "latest.json"

    def __init__(self, directory: Union[str, Path], logger: Optional[logging.Logger] = None) -> None:
        self.directory = Path(directory)
        self.logger = logger or LOGGER
        self._lock = threading.Lock()
        self._sequence = itertools.count()

    @staticmethod
    def build_payload(game_map: GameMap, moves: Sequence[Move]) -> Dict[str, Any]:
        return {"map": game_map.to_dict(), "moves": [m.to_dict() for m in moves]}

    def _next_path(self) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        with self._lock:
            sequence = next(self._sequence)
        return self.directory / f"{stamp}-{sequence:04d}.json"

    def record(self, game_map: GameMap, moves: Sequence[Move]) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._next_path()
        with path.open("w", encoding="utf-8") as handle:
            json.dump(self.build_payload(game_map, moves), handle)
        self._point_latest(path)
        self.logger.debug("Recorded battle to %s", path)
        return path

    def _point_latest(self, path: Path) -> None:
        latest = self.directory / self.LATEST_NAME
        with self._lock:
            staging = self.directory / f".{self.LATEST_NAME}.tmp"
            if staging.is_symlink() or staging.exists():
                staging.unlink()
            try:
                staging.symlink_to(path.name)
            except OSError as exc:
                # No symlink support: keep a plain copy instead.
                self.logger.debug("symlink failed (%s), copying %s", exc, path.name)
                staging.write_bytes(path.read_bytes())
            os.replace(staging, latest)


def load_recording(path: Union[str, Path]) -> Dict[str, Any]:
    with Path(path).open("r", encoding="utf-8") as handle:
        return json.load(handle)
