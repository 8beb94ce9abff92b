"""
Arena: many independent battles over maps x repetitions, run on a thread
pool, folded into per-map statistics keyed by bot name.
"""
import logging
import os
import random
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from tabulate import tabulate
from tqdm import tqdm

from .battle import Battle, PunterResult
from .bots import BotMaker
from .constants import DEFAULT_GAMES_PER_MAP
from .maps import load_map
from .models import GameMap, Settings
from .replay import VisGraphRecorder

LOGGER = logging.getLogger(__name__)


@dataclass
class BotStat:
    scores: List[int] = field(default_factory=list)
    ranks: List[int] = field(default_factory=list)
    move_count: int = 0
    consumed_time: float = 0.0
    faults: int = 0

    def add(self, result: PunterResult) -> None:
        self.scores.append(result.score)
        self.ranks.append(result.rank)
        self.move_count += result.move_count
        self.consumed_time += result.consumed_time
        self.faults += result.faults

    def merge(self, other: "BotStat") -> None:
        self.scores.extend(other.scores)
        self.ranks.extend(other.ranks)
        self.move_count += other.move_count
        self.consumed_time += other.consumed_time
        self.faults += other.faults

    @property
    def games(self) -> int:
        return len(self.scores)

    @property
    def mean_score(self) -> float:
        return sum(self.scores) / len(self.scores) if self.scores else 0.0

    @property
    def mean_rank(self) -> float:
        return sum(self.ranks) / len(self.ranks) if self.ranks else 0.0

    @property
    def wins(self) -> int:
        return sum(1 for rank in self.ranks if rank == 1)


class ArenaStats:
    """Statistics of every bot over the battles played on one map."""

    HEADERS = ["bot", "games", "mean score", "mean rank", "wins", "moves", "time (s)", "faults"]

    def __init__(self, map_name: str) -> None:
        self.map_name = map_name
        self.bots: Dict[str, BotStat] = {}

    def add(self, results: Sequence[PunterResult]) -> None:
        for result in results:
            self.bots.setdefault(result.name, BotStat()).add(result)

    def merge(self, other: "ArenaStats") -> None:
        for name, stat in other.bots.items():
            self.bots.setdefault(name, BotStat()).merge(stat)

    def rows(self) -> List[List[object]]:
        ordered = sorted(self.bots.items(), key=lambda item: (item[1].mean_rank, -item[1].mean_score, item[0]))
        return [
            [
                name,
                stat.games,
                stat.mean_score,
                stat.mean_rank,
                stat.wins,
                stat.move_count,
                stat.consumed_time,
                stat.faults,
            ]
            for name, stat in ordered
        ]

    def format_table(self) -> str:
        table = tabulate(self.rows(), headers=self.HEADERS, floatfmt=".2f")
        return f"{self.map_name}\n{table}"


def unique_names(makers: Sequence[BotMaker]) -> List[BotMaker]:
    """Suffix repeated bot names with `#n` so their statistics stay apart."""
    totals: Dict[str, int] = {}
    for maker in makers:
        totals[maker.name] = totals.get(maker.name, 0) + 1
    seen: Dict[str, int] = {}
    renamed = []
    for maker in makers:
        if totals[maker.name] == 1:
            renamed.append(maker)
            continue
        seen[maker.name] = seen.get(maker.name, 0) + 1
        renamed.append(BotMaker(f"{maker.name}#{seen[maker.name]}", maker.factory))
    return renamed


class Arena:
    def __init__(
        self,
        bot_makers: Sequence[BotMaker],
        maps: Sequence[Tuple[str, GameMap]],
        games_per_map: int = DEFAULT_GAMES_PER_MAP,
        settings: Optional[Settings] = None,
        workers: Optional[int] = None,
        seed: int = 0,
        shuffle: bool = True,
        recorder: Optional[VisGraphRecorder] = None,
        progress: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if not bot_makers:
            raise ValueError("an arena needs at least one bot")
        self.bot_makers = unique_names(bot_makers)
        self.maps = list(maps)
        self.games_per_map = games_per_map
        self.settings = settings or Settings()
        self.workers = workers or os.cpu_count() or 1
        self.seed = seed
        self.shuffle = shuffle
        self.recorder = recorder
        self.progress = progress
        self.logger = logger or LOGGER
        self._progress_lock = threading.Lock()
        self._bar: Optional[tqdm] = None

    def seating(self, map_index: int, game_index: int) -> List[BotMaker]:
        """Seat order of one battle; depends only on the seed and the battle's position."""
        makers = list(self.bot_makers)
        if self.shuffle:
            random.Random(f"{self.seed}:{map_index}:{game_index}").shuffle(makers)
        return makers

    def _tick(self) -> None:
        with self._progress_lock:
            if self._bar is not None:
                self._bar.update(1)

    def play(self, map_index: int, game_index: int) -> List[PunterResult]:
        map_name, game_map = self.maps[map_index]
        logger = self.logger.getChild(f"battle-{map_index}-{game_index}")
        bots = [maker.make(logger) for maker in self.seating(map_index, game_index)]
        logger.debug("Battle %s on %s: %s", game_index, map_name, [bot.name for bot in bots])
        battle = Battle(game_map, bots, self.settings, on_turn=self._tick, recorder=self.recorder, logger=logger)
        return battle.run()

    def run(self) -> Dict[str, ArenaStats]:
        tasks = [(m, g) for m in range(len(self.maps)) for g in range(self.games_per_map)]
        total_turns = sum(len(self.maps[m][1].rivers) for m, _ in tasks)
        results: Dict[Tuple[int, int], List[PunterResult]] = {}

        self._bar = tqdm(total=total_turns, desc="Arena", unit="turn", disable=not self.progress)
        try:
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                futures = {executor.submit(self.play, m, g): (m, g) for m, g in tasks}
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
        finally:
            self._bar.close()
            self._bar = None

        # Fold in task order so the outcome does not depend on completion order.
        stats: Dict[str, ArenaStats] = {}
        for map_index, game_index in tasks:
            map_name = self.maps[map_index][0]
            stats.setdefault(map_name, ArenaStats(map_name)).add(results[(map_index, game_index)])
        for map_stats in stats.values():
            self.logger.info("\n%s", map_stats.format_table())
        return stats


def sample_battle(map_name: str = "sample.json", games: int = 1, strategy: str = "EdgeWeight") -> ArenaStats:
    """Two copies of one strategy on a bundled map with fixed seating."""
    makers = [BotMaker.internal(strategy), BotMaker.internal(strategy)]
    arena = Arena(makers, [(map_name, load_map(map_name))], games_per_map=games, workers=1, shuffle=False)
    return arena.run()[map_name]
