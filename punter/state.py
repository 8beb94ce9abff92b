import base64
import binascii
import json
import logging
import zlib
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .constants import STATE_FORMAT_VERSION
from .models import (
    Claim,
    Edge,
    Future,
    GameMap,
    Move,
    Option,
    Pass,
    ProtocolError,
    Settings,
    Setup,
    Splurge,
)

LOGGER = logging.getLogger(__name__)

# (neighbour node, edge index)
Adjacency = List[List[Tuple[int, int]]]


@dataclass
class GameExtension:
    futures_on: bool = False
    splurge_on: bool = False
    options_on: bool = False
    # mine node -> target node, chosen once at setup
    futures: Optional[Dict[int, int]] = None
    prior_passes: int = 0
    prior_options: int = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "GameExtension":
        return cls(
            futures_on=settings.futures,
            splurge_on=settings.splurge,
            options_on=settings.options,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "futures_on": self.futures_on,
            "splurge_on": self.splurge_on,
            "options_on": self.options_on,
            "futures": None if self.futures is None else [[m, t] for m, t in sorted(self.futures.items())],
            "prior_passes": self.prior_passes,
            "prior_options": self.prior_options,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GameExtension":
        futures = data.get("futures")
        return cls(
            futures_on=bool(data["futures_on"]),
            splurge_on=bool(data["splurge_on"]),
            options_on=bool(data["options_on"]),
            futures=None if futures is None else {int(m): int(t) for m, t in futures},
            prior_passes=int(data.get("prior_passes", 0)),
            prior_options=int(data.get("prior_options", 0)),
        )


def build_adjacency(node_count: int, edges: List[Edge]) -> Adjacency:
    adjacency: Adjacency = [[] for _ in range(node_count)]
    for index, edge in enumerate(edges):
        adjacency[edge.source].append((edge.target, index))
        adjacency[edge.target].append((edge.source, index))
    return adjacency


def bfs_distances(adjacency: Adjacency, start: int) -> Dict[int, int]:
    """Hop distance from `start` to every node reachable over the full topology."""
    distances = {start: 0}
    queue = deque([start])
    while queue:
        node = queue.popleft()
        next_distance = distances[node] + 1
        for neighbour, _ in adjacency[node]:
            if neighbour not in distances:
                distances[neighbour] = next_distance
                queue.append(neighbour)
    return distances


class Game:
    """Dense graph model of one match as seen by punter `me`.

    Nodes are site ids renumbered by sorted rank. The topology, adjacency and
    per-mine distance tables never change after construction; only the claim
    state of `edges` does.
    """

    def __init__(
        self,
        me: int,
        punters: int,
        site_ids: List[int],
        mines: List[int],
        edges: List[Edge],
        extension: Optional[GameExtension] = None,
        distances: Optional[List[Dict[int, int]]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.me = me
        self.punters = punters
        self.site_ids: List[int] = list(site_ids)
        self.site_to_node: Dict[int, int] = {site: node for node, site in enumerate(self.site_ids)}
        self.mines: List[int] = list(mines)
        self.edges: List[Edge] = edges
        self.extension = extension or GameExtension()
        self.logger = logger or LOGGER

        self.edge_index: Dict[Tuple[int, int], int] = {
            (edge.source, edge.target): index for index, edge in enumerate(edges)
        }
        self.adjacency = build_adjacency(len(self.site_ids), edges)
        if distances is None:
            distances = [bfs_distances(self.adjacency, mine) for mine in self.mines]
        self.distances: List[Dict[int, int]] = distances

        # Futures reported by other punters; only a referee fills this in.
        self.punter_futures: Dict[int, Dict[int, int]] = {}

    # Construction

    @classmethod
    def from_map(
        cls,
        game_map: GameMap,
        me: int,
        punters: int,
        settings: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "Game":
        log = logger or LOGGER
        site_ids = sorted({site.id for site in game_map.sites})
        lookup = {site: node for node, site in enumerate(site_ids)}

        def node_of(site: int, what: str) -> int:
            try:
                return lookup[site]
            except KeyError:
                raise ProtocolError(f"{what} references unknown site {site}") from None

        mines = sorted({node_of(mine, "mine") for mine in game_map.mines})

        edges: List[Edge] = []
        seen = set()
        for river in game_map.rivers:
            a = node_of(river.source, "river")
            b = node_of(river.target, "river")
            key = (min(a, b), max(a, b))
            if a == b or key in seen:
                log.warning("Ignoring %s river %s-%s", "looping" if a == b else "duplicate", river.source, river.target)
                continue
            seen.add(key)
            edges.append(Edge(key[0], key[1]))

        return cls(
            me=me,
            punters=punters,
            site_ids=site_ids,
            mines=mines,
            edges=edges,
            extension=GameExtension.from_settings(settings or Settings()),
            logger=log,
        )

    @classmethod
    def from_setup(cls, setup: Setup, logger: Optional[logging.Logger] = None) -> "Game":
        return cls.from_map(setup.map, setup.punter, setup.punters, setup.settings, logger=logger)

    # Lookups

    def node_of(self, site: int) -> Optional[int]:
        return self.site_to_node.get(site)

    def site_of(self, node: int) -> int:
        return self.site_ids[node]

    def find_edge(self, source_site: int, target_site: int) -> Optional[int]:
        """Edge index for a river given in site ids, in either orientation."""
        a = self.site_to_node.get(source_site)
        b = self.site_to_node.get(target_site)
        if a is None or b is None:
            return None
        return self.edge_index.get((min(a, b), max(a, b)))

    def distance(self, mine_position: int, node: int) -> Optional[int]:
        return self.distances[mine_position].get(node)

    def owned_edges(self, punter: int) -> List[int]:
        return [i for i, edge in enumerate(self.edges) if edge.owned_by(punter)]

    def unclaimed_edges(self) -> List[int]:
        return [i for i, edge in enumerate(self.edges) if edge.is_unclaimed]

    def river_sites(self, index: int) -> Tuple[int, int]:
        edge = self.edges[index]
        return self.site_ids[edge.source], self.site_ids[edge.target]

    # Mutation

    def claim_edge(self, punter: int, index: int, is_option: bool = False) -> bool:
        edge = self.edges[index]
        if not edge.claim(punter, is_option):
            self.logger.warning(
                "Rejected %s by punter %s on river %s-%s (%s)",
                "option" if is_option else "claim",
                punter,
                *self.river_sites(index),
                edge.claim_state,
            )
            return False
        self.logger.debug("Punter %s %s river %s-%s", punter, "optioned" if is_option else "claimed", *self.river_sites(index))
        return True

    def apply_claim(self, punter: int, source: int, target: int, is_option: bool = False) -> bool:
        index = self.find_edge(source, target)
        if index is None:
            self.logger.warning("Punter %s referenced missing river %s-%s", punter, source, target)
            return False
        return self.claim_edge(punter, index, is_option)

    def apply_move(self, move: Move) -> bool:
        """Apply one move of any kind. Failed claims are logged and skipped."""
        if isinstance(move, Claim):
            applied = self.apply_claim(move.punter, move.source, move.target)
        elif isinstance(move, Option):
            applied = self.apply_claim(move.punter, move.source, move.target, is_option=True)
            if applied and move.punter == self.me:
                self.extension.prior_options += 1
        elif isinstance(move, Splurge):
            applied = True
            for leg in move.legs():
                applied = self.apply_claim(leg.punter, leg.source, leg.target) and applied
        else:
            applied = True

        if move.punter == self.me:
            if isinstance(move, Pass):
                self.extension.prior_passes += 1
            else:
                self.extension.prior_passes = 0
        return applied

    def apply_moves(self, moves: Iterable[Move]) -> None:
        for move in moves:
            self.apply_move(move)

    def apply_moves_excluding_me(self, moves: Iterable[Move]) -> None:
        """Apply a server batch, skipping my own moves which are already applied."""
        for move in moves:
            if move.punter != self.me:
                self.apply_move(move)

    def validate_move(self, move: Move, punter: int) -> Optional[str]:
        """Return why `move` is not a legal move for `punter` now, or None."""
        if move.punter != punter:
            return f"move attributed to punter {move.punter}"
        if isinstance(move, Pass):
            return None
        if isinstance(move, Splurge):
            if not self.extension.splurge_on:
                return "splurges are disabled"
            if len(move.route) < 2:
                return "splurge route needs at least two sites"
            legs = move.legs()
            is_option = False
        elif isinstance(move, Option):
            if not self.extension.options_on:
                return "options are disabled"
            legs = [Claim(move.punter, move.source, move.target)]
            is_option = True
        else:
            legs = [move]
            is_option = False

        used = set()
        for leg in legs:
            index = self.find_edge(leg.source, leg.target)
            if index is None:
                return f"no river {leg.source}-{leg.target}"
            if index in used:
                return f"river {leg.source}-{leg.target} used twice"
            used.add(index)
            if not self.edges[index].can_claim(punter, is_option):
                return f"river {leg.source}-{leg.target} is {self.edges[index].claim_state}"
        return None

    # Futures

    def setup_futures(self) -> Dict[int, int]:
        """Pick the nearest non-mine node for every mine, once."""
        if self.extension.futures is not None:
            return self.extension.futures
        mine_set = set(self.mines)
        futures: Dict[int, int] = {}
        for position, mine in enumerate(self.mines):
            candidates = [
                (distance, node)
                for node, distance in self.distances[position].items()
                if distance > 0 and node not in mine_set
            ]
            if candidates:
                futures[mine] = min(candidates)[1]
        self.extension.futures = futures
        return futures

    def futures_message(self) -> List[Future]:
        futures = self.extension.futures or {}
        return [Future(self.site_ids[m], self.site_ids[t]) for m, t in sorted(futures.items())]

    def set_futures(self, punter: int, futures: Iterable[Future]) -> Dict[int, int]:
        """Register futures a punter reported at setup. Bad entries are dropped."""
        existing = self.futures_for(punter)
        if existing is not None:
            self.logger.warning("Futures of punter %s are already set", punter)
            return existing
        mine_set = set(self.mines)
        chosen: Dict[int, int] = {}
        for future in futures:
            mine = self.site_to_node.get(future.source)
            target = self.site_to_node.get(future.target)
            if mine not in mine_set or target is None or target in mine_set:
                self.logger.warning("Punter %s sent invalid future %s -> %s", punter, future.source, future.target)
                continue
            chosen[mine] = target
        if punter == self.me:
            self.extension.futures = chosen
        else:
            self.punter_futures[punter] = chosen
        return chosen

    def futures_for(self, punter: int) -> Optional[Dict[int, int]]:
        if punter == self.me:
            return self.extension.futures
        return self.punter_futures.get(punter)

    # Scoring

    def reachable(self, punter: int, mine: int) -> List[int]:
        """Nodes reachable from `mine` over rivers owned by `punter`."""
        seen = {mine}
        queue = deque([mine])
        while queue:
            node = queue.popleft()
            for neighbour, index in self.adjacency[node]:
                if neighbour not in seen and self.edges[index].owned_by(punter):
                    seen.add(neighbour)
                    queue.append(neighbour)
        return list(seen)

    def score(self, punter: int, futures: Optional[Dict[int, int]] = None) -> int:
        if futures is None and self.extension.futures_on:
            futures = self.futures_for(punter)
        futures = futures or {}

        total = 0
        for position, mine in enumerate(self.mines):
            table = self.distances[position]
            reached = self.reachable(punter, mine)
            for node in reached:
                total += table[node] ** 2
            target = futures.get(mine)
            if target is not None and target in table:
                bonus = table[target] ** 3
                total += bonus if target in reached else -bonus
        return total

    def scores(self) -> List[int]:
        return [self.score(punter) for punter in range(self.punters)]

    def summary(self) -> Dict[int, Dict[str, Any]]:
        return {
            punter: {
                "score": self.score(punter),
                "rivers": [self.river_sites(i) for i in self.owned_edges(punter)],
            }
            for punter in range(self.punters)
        }

    # Serialization

    def to_dict(self) -> Dict[str, Any]:
        node_count = len(self.site_ids)
        return {
            "version": STATE_FORMAT_VERSION,
            "me": self.me,
            "punters": self.punters,
            "site_ids": self.site_ids,
            "mines": self.mines,
            "edges": [[e.source, e.target, e.owner, e.option_owner] for e in self.edges],
            "extension": self.extension.to_dict(),
            "distances": [[table.get(node, -1) for node in range(node_count)] for table in self.distances],
            "punter_futures": [
                [punter, [[m, t] for m, t in sorted(chosen.items())]]
                for punter, chosen in sorted(self.punter_futures.items())
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], logger: Optional[logging.Logger] = None) -> "Game":
        if data.get("version") != STATE_FORMAT_VERSION:
            raise ProtocolError(f"unsupported state version {data.get('version')!r}")
        try:
            game = cls(
                me=int(data["me"]),
                punters=int(data["punters"]),
                site_ids=[int(s) for s in data["site_ids"]],
                mines=[int(m) for m in data["mines"]],
                edges=[Edge(int(s), int(t), owner, option) for s, t, owner, option in data["edges"]],
                extension=GameExtension.from_dict(data["extension"]),
                distances=[
                    {node: distance for node, distance in enumerate(row) if distance >= 0}
                    for row in data["distances"]
                ],
                logger=logger,
            )
            for punter, chosen in data.get("punter_futures", []):
                game.punter_futures[int(punter)] = {int(m): int(t) for m, t in chosen}
        except (KeyError, TypeError, ValueError, IndexError) as exc:
            raise ProtocolError(f"malformed game state: {exc}") from exc
        return game

    def encode(self) -> str:
        raw = json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")
        return base64.b64encode(zlib.compress(raw)).decode("ascii")

    @classmethod
    def decode(cls, blob: Any, logger: Optional[logging.Logger] = None) -> "Game":
        if not isinstance(blob, str):
            raise ProtocolError("state must be a string")
        try:
            raw = zlib.decompress(base64.b64decode(blob.encode("ascii"), validate=True))
            data = json.loads(raw.decode("utf-8"))
        except (binascii.Error, zlib.error, UnicodeError, ValueError) as exc:
            raise ProtocolError(f"undecodable game state: {exc}") from exc
        if not isinstance(data, dict):
            raise ProtocolError("game state must decode to an object")
        return cls.from_dict(data, logger=logger)
