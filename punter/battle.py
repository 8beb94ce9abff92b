"""
One complete match between a fixed seating of bots.

The battle keeps its own referee `Game`: every move is validated against it
before being broadcast, and final scores come from it rather than from what
the bots believe.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .bots import BotTemplate
from .models import GameMap, Move, Pass, PunterError, Score, Settings, Setup
from .replay import VisGraphRecorder
from .state import Game

LOGGER = logging.getLogger(__name__)


@dataclass
class PunterResult:
    punter: int
    name: str
    score: int
    rank: int
    move_count: int
    consumed_time: float
    faults: int


def rank_scores(scores: Sequence[int]) -> List[int]:
    """Rank 1 is best; equal scores share a rank."""
    return [1 + sum(1 for other in scores if other > score) for score in scores]


class Battle:
    def __init__(
        self,
        game_map: GameMap,
        bots: Sequence[BotTemplate],
        settings: Optional[Settings] = None,
        on_turn: Optional[Callable[[], None]] = None,
        recorder: Optional[VisGraphRecorder] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if not bots:
            raise ValueError("a battle needs at least one bot")
        self.game_map = game_map
        self.bots = list(bots)
        self.settings = settings or Settings()
        self.on_turn = on_turn
        self.recorder = recorder
        self.logger = logger or LOGGER

        punters = len(self.bots)
        self.referee = Game.from_map(game_map, me=0, punters=punters, settings=self.settings, logger=self.logger)
        self.history: List[Move] = []
        self.move_counts = [0] * punters
        self.consumed = [0.0] * punters
        self.faults = [0] * punters
        self.active = [True] * punters

    def _fault(self, punter: int, what: str, error: object) -> None:
        self.faults[punter] += 1
        self.logger.warning("Punter %s (%s) %s: %s", punter, self.bots[punter].name, what, error)

    def _setup(self) -> None:
        punters = len(self.bots)
        for punter, bot in enumerate(self.bots):
            setup = Setup(punter, punters, self.game_map, self.settings)
            started = time.monotonic()
            try:
                futures = bot.setup(setup)
            except PunterError as exc:
                self._fault(punter, "failed setup", exc)
                self.active[punter] = False
                continue
            finally:
                self.consumed[punter] += time.monotonic() - started
            if futures and self.settings.futures:
                self.referee.set_futures(punter, futures)

    def _turn(self, punter: int, last_moves: List[Move]) -> Move:
        move: Move = Pass(punter)
        if self.active[punter]:
            started = time.monotonic()
            try:
                move = self.bots[punter].play(list(last_moves))
            except PunterError as exc:
                self._fault(punter, "failed to move", exc)
                move = Pass(punter)
            finally:
                self.consumed[punter] += time.monotonic() - started

        problem = self.referee.validate_move(move, punter)
        if problem is not None:
            self._fault(punter, "made an invalid move", problem)
            move = Pass(punter)
        self.referee.apply_move(move)
        self.move_counts[punter] += 1
        return move

    def run(self) -> List[PunterResult]:
        punters = len(self.bots)
        turns = len(self.game_map.rivers)
        self._setup()

        last_moves: List[Move] = [Pass(p) for p in range(punters)]
        for turn in range(turns):
            punter = turn % punters
            move = self._turn(punter, last_moves)
            last_moves[punter] = move
            self.history.append(move)
            if self.on_turn is not None:
                self.on_turn()

        scores = [self.referee.score(p) for p in range(punters)]
        wire_scores = [Score(p, s) for p, s in enumerate(scores)]
        for offset in range(punters):
            punter = (turns + offset) % punters
            if self.active[punter]:
                started = time.monotonic()
                try:
                    self.bots[punter].stop(list(last_moves), wire_scores)
                except PunterError as exc:
                    self._fault(punter, "failed at stop", exc)
                finally:
                    self.consumed[punter] += time.monotonic() - started
            last_moves[punter] = Pass(punter)

        if self.recorder is not None:
            self.recorder.record(self.game_map, self.history)

        ranks = rank_scores(scores)
        self.logger.info(
            "Battle over: %s",
            ", ".join(f"{bot.name}={score}" for bot, score in zip(self.bots, scores)),
        )
        return [
            PunterResult(
                punter=p,
                name=self.bots[p].name,
                score=scores[p],
                rank=ranks[p],
                move_count=self.move_counts[p],
                consumed_time=self.consumed[p],
                faults=self.faults[p],
            )
            for p in range(punters)
        ]
