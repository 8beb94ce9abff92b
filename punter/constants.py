import os
from pathlib import Path
from typing import Optional, Tuple


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    if raw.strip().lower() in {"none", "off"}:
        return None
    return float(raw)


# Identity
PUNTER_NAME: str = os.environ.get("PUNTER_NAME", "hayatox")

# Online play
DEFAULT_SERVER_HOST: str = os.environ.get("PUNTER_HOST", "punter.inf.ed.ac.uk")
CONNECT_TIMEOUT_SECONDS: float = 30.0

# External bot deadlines (None disables the deadline)
SETUP_TIMEOUT_SECONDS: Optional[float] = _env_float("PUNTER_SETUP_TIMEOUT", 10.0)
TURN_TIMEOUT_SECONDS: Optional[float] = _env_float("PUNTER_TURN_TIMEOUT", 1.0)
BOT_STDERR_INHERIT: bool = bool(os.environ.get("PUNTER_BOT_STDERR"))

# Move selection
SLOW_MOVE_SECONDS: float = 1.0
STRATEGIES: Tuple[str, ...] = ("Stupid", "Greedy", "EdgeWeight")
DEFAULT_STRATEGY: str = "EdgeWeight"

# Framing
MAX_LENGTH_PREFIX_DIGITS: int = 20
# digits plus surrounding whitespace
MAX_LENGTH_PREFIX_BYTES: int = 256

# Encoded game state
STATE_FORMAT_VERSION: int = 1

# Arena
DEFAULT_GAMES_PER_MAP: int = 8
INTERNAL_ARENA_MAPS: Tuple[str, ...] = ("sample.json",)
RECORD_DIR: Optional[str] = os.environ.get("PUNTER_RECORD_DIR") or None

# Bundled maps
MAPS_DIR: Path = Path(__file__).resolve().parent / "data"

# Random map generation
MAP_WIDTH: float = 100.0
MAP_HEIGHT: float = 100.0
MAP_JITTER_RATIO: float = 0.3


def normalize_strategy(name: str) -> str:
    """Return the canonical strategy name, case-insensitively."""
    for strategy in STRATEGIES:
        if strategy.lower() == str(name).strip().lower():
            return strategy
    raise ValueError(f"unknown strategy: {name!r} (expected one of {', '.join(STRATEGIES)})")
