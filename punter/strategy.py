"""Move selection: EdgeWeight (primary), Greedy and Stupid."""
import logging
import time
from collections import deque
from typing import Callable, Dict, List, Optional

from .constants import SLOW_MOVE_SECONDS, normalize_strategy
from .models import Claim, Move, Pass
from .state import Game

LOGGER = logging.getLogger(__name__)


def _claim(game: Game, index: int) -> Claim:
    source, target = game.river_sites(index)
    return Claim(game.me, source, target)


def play_stupid(game: Game) -> Move:
    """Claim the first unclaimed river, or pass when none is left."""
    for index, edge in enumerate(game.edges):
        if edge.is_unclaimed:
            return _claim(game, index)
    return Pass(game.me)


def edge_weights(game: Game) -> List[int]:
    """Total score each edge unlocks for `game.me`, summed over all mines.

    For each mine a BFS runs over rivers that are unclaimed or already mine,
    recording the edge each node was discovered through. Walking the discovery
    order backwards, every node pushes its promise (distance squared) plus
    everything promised beyond it onto its parent edge and parent node.
    """
    weights = [0] * len(game.edges)
    me = game.me
    for position, mine in enumerate(game.mines):
        table = game.distances[position]
        parent_edge: Dict[int, int] = {}
        parent_node: Dict[int, int] = {}
        order = [mine]
        seen = {mine}
        queue = deque([mine])
        while queue:
            node = queue.popleft()
            for neighbour, index in game.adjacency[node]:
                if neighbour in seen:
                    continue
                edge = game.edges[index]
                if not (edge.is_unclaimed or edge.owned_by(me)):
                    continue
                seen.add(neighbour)
                parent_edge[neighbour] = index
                parent_node[neighbour] = node
                order.append(neighbour)
                queue.append(neighbour)

        promise = {node: table[node] ** 2 for node in order}
        for node in reversed(order[1:]):
            weights[parent_edge[node]] += promise[node]
            promise[parent_node[node]] += promise[node]
    return weights


def play_edge_weight(game: Game) -> Move:
    weights = edge_weights(game)
    best: Optional[int] = None
    for index, edge in enumerate(game.edges):
        if edge.is_unclaimed and (best is None or weights[index] > weights[best]):
            best = index
    if best is None:
        return Pass(game.me)
    if weights[best] <= 0:
        return play_stupid(game)
    return _claim(game, best)


def play_greedy(game: Game) -> Move:
    """Extend my territory by the unclaimed river farthest along an owned path."""
    best: Optional[int] = None
    best_length = -1
    for mine in game.mines:
        lengths = {mine: 0}
        queue = deque([mine])
        while queue:
            node = queue.popleft()
            for neighbour, index in game.adjacency[node]:
                edge = game.edges[index]
                if edge.is_unclaimed:
                    if lengths[node] + 1 > best_length:
                        best, best_length = index, lengths[node] + 1
                elif edge.owned_by(game.me) and neighbour not in lengths:
                    lengths[neighbour] = lengths[node] + 1
                    queue.append(neighbour)
    if best is None:
        return play_stupid(game)
    return _claim(game, best)


STRATEGY_FUNCTIONS: Dict[str, Callable[[Game], Move]] = {
    "Stupid": play_stupid,
    "Greedy": play_greedy,
    "EdgeWeight": play_edge_weight,
}


def choose_move(game: Game, strategy: str, logger: Optional[logging.Logger] = None) -> Move:
    log = logger or LOGGER
    play = STRATEGY_FUNCTIONS[normalize_strategy(strategy)]
    started = time.monotonic()
    move = play(game)
    elapsed = time.monotonic() - started
    if elapsed >= SLOW_MOVE_SECONDS:
        log.warning("%s took %.2fs to choose a move", strategy, elapsed)
    else:
        log.debug("%s chose %s in %.3fs", strategy, move, elapsed)
    return move
