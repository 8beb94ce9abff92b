"""
Punter side of the match protocol.

Online: one long-lived connection, the `Game` stays in memory between turns.
Offline: one request per process; the whole `Game` travels in the `state`
field of every message.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .constants import DEFAULT_STRATEGY, PUNTER_NAME
from .io import MessageIO
from .models import Future, Move, ProtocolError, Score, Setup, moves_from_list
from .state import Game
from .strategy import choose_move

LOGGER = logging.getLogger(__name__)

MESSAGE_KINDS = ("setup", "move", "stop", "timeout")


def handshake_message(name: str) -> Dict[str, str]:
    return {"me": name}


def parse_handshake_reply(message: Any, name: str) -> str:
    if not isinstance(message, dict) or not isinstance(message.get("you"), str):
        raise ProtocolError(f"handshake: expected {{'you': name}}, got {message!r}")
    if message["you"] != name:
        LOGGER.warning("Server greeted us as %r instead of %r", message["you"], name)
    return message["you"]


def handshake(io: MessageIO, name: str) -> str:
    io.write(handshake_message(name))
    return parse_handshake_reply(io.read(), name)


def message_kind(message: Any) -> str:
    """Classify an incoming server message by its distinguishing key."""
    if isinstance(message, dict):
        if "punter" in message:
            return "setup"
        if "move" in message:
            return "move"
        if "stop" in message:
            return "stop"
        if "timeout" in message:
            return "timeout"
    raise ProtocolError(f"unrecognised message: {str(message)[:200]}")


def _body(message: Dict[str, Any], key: str) -> Dict[str, Any]:
    body = message.get(key)
    if not isinstance(body, dict):
        raise ProtocolError(f"{key}: expected an object")
    return body


def parse_moves(message: Dict[str, Any]) -> List[Move]:
    return moves_from_list(_body(message, "move").get("moves"))


def parse_stop(message: Dict[str, Any]) -> Tuple[List[Move], List[Score]]:
    body = _body(message, "stop")
    moves = moves_from_list(body.get("moves"))
    scores = body.get("scores", [])
    if not isinstance(scores, list):
        raise ProtocolError("stop: scores must be a list")
    return moves, [Score.from_dict(s) for s in scores]


def setup_message(setup: Setup, state: Optional[str] = None) -> Dict[str, Any]:
    message = setup.to_dict()
    if state is not None:
        message["state"] = state
    return message


def setup_reply(punter: int, futures: Optional[List[Future]] = None, state: Optional[str] = None) -> Dict[str, Any]:
    reply: Dict[str, Any] = {"ready": punter}
    if futures is not None:
        reply["futures"] = [f.to_dict() for f in futures]
    if state is not None:
        reply["state"] = state
    return reply


def parse_setup_reply(message: Any, punter: int) -> List[Future]:
    if not isinstance(message, dict) or "ready" not in message:
        raise ProtocolError(f"setup reply: expected {{'ready': ...}}, got {str(message)[:200]}")
    if message["ready"] != punter:
        raise ProtocolError(f"setup reply: ready {message['ready']!r} but punter is {punter}")
    futures = message.get("futures") or []
    if not isinstance(futures, list):
        raise ProtocolError("setup reply: futures must be a list")
    return [Future.from_dict(f) for f in futures]


def move_request(moves: List[Move], state: Optional[str] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {"move": {"moves": [m.to_dict() for m in moves]}}
    if state is not None:
        message["state"] = state
    return message


def stop_message(moves: List[Move], scores: List[Score], state: Optional[str] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {
        "stop": {"moves": [m.to_dict() for m in moves], "scores": [s.to_dict() for s in scores]}
    }
    if state is not None:
        message["state"] = state
    return message


def move_reply(move: Move, state: Optional[str] = None) -> Dict[str, Any]:
    reply = move.to_dict()
    if state is not None:
        reply["state"] = state
    return reply


def prepare_game(setup: Setup, use_futures: bool, logger: logging.Logger) -> Tuple[Game, Optional[List[Future]]]:
    game = Game.from_setup(setup, logger=logger)
    futures = None
    if use_futures and game.extension.futures_on:
        game.setup_futures()
        futures = game.futures_message()
    logger.info(
        "Punter %s of %s: %d sites, %d rivers, %d mines",
        setup.punter, setup.punters, len(game.site_ids), len(game.edges), len(game.mines),
    )
    return game, futures


def log_scores(game: Game, scores: List[Score], logger: logging.Logger) -> None:
    for score in scores:
        marker = " (me)" if score.punter == game.me else ""
        logger.info("Punter %s%s scored %s", score.punter, marker, score.score)
    local = game.score(game.me)
    reported = {s.punter: s.score for s in scores}
    if game.me in reported and reported[game.me] != local:
        logger.warning("Server scored me %s, local score is %s", reported[game.me], local)


class OnlineSession:
    """Stateful client: handshake, setup, gameplay until stop.

    Phases only move forward: handshake -> setup -> gameplay -> stopped.
    """

    def __init__(
        self,
        io: MessageIO,
        strategy: str = DEFAULT_STRATEGY,
        name: str = PUNTER_NAME,
        use_futures: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.io = io
        self.strategy = strategy
        self.name = name
        self.use_futures = use_futures
        self.logger = logger or LOGGER
        self.phase = "handshake"
        self.game: Optional[Game] = None
        self.scores: List[Score] = []
        self.handlers: Dict[str, Callable[[Dict[str, Any]], None]] = {
            "setup": self.handle_setup,
            "move": self.handle_move,
            "stop": self.handle_stop,
            "timeout": self.handle_timeout,
        }

    def run(self) -> List[Score]:
        handshake(self.io, self.name)
        self.phase = "setup"
        while self.phase != "stopped":
            message = self.io.read()
            self.handlers[message_kind(message)](message)
        return self.scores

    def _expect(self, *phases: str) -> None:
        if self.phase not in phases:
            raise ProtocolError(f"unexpected message in phase {self.phase!r}")

    def _current_game(self) -> Game:
        self._expect("gameplay")
        if self.game is None:
            raise ProtocolError("gameplay message before any game was set up")
        return self.game

    def handle_setup(self, message: Dict[str, Any]) -> None:
        self._expect("setup")
        setup = Setup.from_dict(message)
        self.game, futures = prepare_game(setup, self.use_futures, self.logger)
        self.io.write(setup_reply(setup.punter, futures))
        self.phase = "gameplay"

    def handle_move(self, message: Dict[str, Any]) -> None:
        game = self._current_game()
        game.apply_moves_excluding_me(parse_moves(message))
        move = choose_move(game, self.strategy, self.logger)
        game.apply_move(move)
        self.io.write(move_reply(move))

    def handle_stop(self, message: Dict[str, Any]) -> None:
        game = self._current_game()
        moves, self.scores = parse_stop(message)
        game.apply_moves_excluding_me(moves)
        log_scores(game, self.scores, self.logger)
        for punter, info in game.summary().items():
            self.logger.info("Punter %s: local score %s, %d rivers", punter, info["score"], len(info["rivers"]))
        self.phase = "stopped"

    def handle_timeout(self, message: Dict[str, Any]) -> None:
        self.logger.warning("Server reported a timeout: %s", str(message.get("timeout"))[:200])


def run_offline_turn(
    io: MessageIO,
    strategy: str = DEFAULT_STRATEGY,
    name: str = PUNTER_NAME,
    use_futures: bool = False,
    logger: Optional[logging.Logger] = None,
) -> str:
    """Handle exactly one offline request and return its kind."""
    log = logger or LOGGER
    handshake(io, name)
    message = io.read()
    kind = message_kind(message)

    if kind == "setup":
        setup = Setup.from_dict(message)
        game, futures = prepare_game(setup, use_futures, log)
        io.write(setup_reply(setup.punter, futures, state=game.encode()))
    elif kind == "move":
        game = Game.decode(message.get("state"), logger=log)
        game.apply_moves_excluding_me(parse_moves(message))
        move = choose_move(game, strategy, log)
        game.apply_move(move)
        io.write(move_reply(move, state=game.encode()))
    elif kind == "stop":
        game = Game.decode(message.get("state"), logger=log)
        moves, scores = parse_stop(message)
        game.apply_moves_excluding_me(moves)
        log_scores(game, scores, log)
    else:
        log.warning("Server reported a timeout: %s", str(message.get("timeout"))[:200])
    return kind
