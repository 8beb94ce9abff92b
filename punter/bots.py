"""
Bots a battle can seat. The set is closed: an `InternalBot` runs a strategy
in-process on a resident `Game`, an `ExternalBot` spawns a program speaking the
offline protocol once per request.
"""
import logging
import shlex
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from .constants import DEFAULT_STRATEGY, SETUP_TIMEOUT_SECONDS, TURN_TIMEOUT_SECONDS, normalize_strategy
from .io import ChildIO
from .models import Future, Move, ProtocolError, PunterError, Score, Setup, move_from_dict
from .protocol import move_request, parse_setup_reply, setup_message, stop_message
from .state import Game
from .strategy import choose_move

LOGGER = logging.getLogger(__name__)


class BotError(PunterError):
    """An external bot failed to start, crashed, timed out or replied badly."""


class BotTemplate:
    """Common contract: `setup` once, `play` per turn, `stop` at the end."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None) -> None:
        self.name = name
        self.logger = logger or LOGGER
        self.punter: Optional[int] = None

    def setup(self, setup: Setup) -> List[Future]:
        raise NotImplementedError

    def play(self, moves: List[Move]) -> Move:
        raise NotImplementedError

    def stop(self, moves: List[Move], scores: List[Score]) -> None:
        raise NotImplementedError


class InternalBot(BotTemplate):
    def __init__(
        self,
        strategy: str = DEFAULT_STRATEGY,
        use_futures: bool = False,
        name: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.strategy = normalize_strategy(strategy)
        super().__init__(name or self.strategy, logger)
        self.use_futures = use_futures
        self.game: Optional[Game] = None

    def setup(self, setup: Setup) -> List[Future]:
        self.punter = setup.punter
        self.game = Game.from_setup(setup, logger=self.logger)
        if self.use_futures and self.game.extension.futures_on:
            self.game.setup_futures()
            return self.game.futures_message()
        return []

    def play(self, moves: List[Move]) -> Move:
        if self.game is None:
            raise BotError(f"{self.name} asked to play before setup")
        self.game.apply_moves_excluding_me(moves)
        move = choose_move(self.game, self.strategy, self.logger)
        self.game.apply_move(move)
        return move

    def stop(self, moves: List[Move], scores: List[Score]) -> None:
        if self.game is not None:
            self.game.apply_moves_excluding_me(moves)


class ExternalBot(BotTemplate):
    """A program run fresh for every request, carrying its state between runs."""

    def __init__(
        self,
        command: Sequence[str],
        setup_timeout: Optional[float] = SETUP_TIMEOUT_SECONDS,
        turn_timeout: Optional[float] = TURN_TIMEOUT_SECONDS,
        name: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.command = list(command)
        super().__init__(name or " ".join(self.command), logger)
        self.setup_timeout = setup_timeout
        self.turn_timeout = turn_timeout
        self.state: Optional[str] = None

    def _exchange(self, message: Dict[str, Any], timeout: Optional[float], expect_reply: bool = True) -> Any:
        try:
            child = ChildIO(self.command)
        except PunterError as exc:
            raise BotError(f"{self.name}: {exc}") from exc
        expired = threading.Event()

        def expire() -> None:
            expired.set()
            child.process.kill()

        timer = None
        if timeout is not None:
            timer = threading.Timer(timeout, expire)
            timer.daemon = True
            timer.start()
        try:
            hello = child.read()
            if not isinstance(hello, dict) or not isinstance(hello.get("me"), str):
                raise ProtocolError(f"bad handshake {str(hello)[:200]}")
            child.write({"you": hello["me"]})
            child.write(message)
            reply = child.read() if expect_reply else None
            code = child.finish()
        except PunterError as exc:
            if expired.is_set():
                raise BotError(f"{self.name} exceeded its {timeout}s deadline") from exc
            raise BotError(f"{self.name}: {exc}") from exc
        finally:
            if timer is not None:
                timer.cancel()
            child.close()
        if expired.is_set():
            raise BotError(f"{self.name} exceeded its {timeout}s deadline")
        if code != 0:
            raise BotError(f"{self.name} exited with status {code}")
        return reply

    def _take_state(self, reply: Dict[str, Any]) -> None:
        state = reply.get("state")
        if not isinstance(state, str):
            raise BotError(f"{self.name} replied without a state")
        self.state = state

    def setup(self, setup: Setup) -> List[Future]:
        self.punter = setup.punter
        reply = self._exchange(setup_message(setup), self.setup_timeout)
        try:
            futures = parse_setup_reply(reply, setup.punter)
        except ProtocolError as exc:
            raise BotError(f"{self.name}: {exc}") from exc
        self._take_state(reply)
        return futures

    def play(self, moves: List[Move]) -> Move:
        if self.state is None:
            raise BotError(f"{self.name} asked to play before setup")
        reply = self._exchange(move_request(moves, self.state), self.turn_timeout)
        try:
            move = move_from_dict(reply)
        except ProtocolError as exc:
            raise BotError(f"{self.name}: {exc}") from exc
        self._take_state(reply)
        return move

    def stop(self, moves: List[Move], scores: List[Score]) -> None:
        if self.state is None:
            return
        self._exchange(stop_message(moves, scores, self.state), self.turn_timeout, expect_reply=False)


@dataclass
class BotMaker:
    """Named factory producing a fresh bot instance per battle."""

    name: str
    factory: Callable[..., BotTemplate]

    def make(self, logger: Optional[logging.Logger] = None) -> BotTemplate:
        bot = self.factory(logger)
        bot.name = self.name
        return bot

    @classmethod
    def internal(cls, strategy: str, use_futures: bool = False) -> "BotMaker":
        strategy = normalize_strategy(strategy)
        return cls(strategy, lambda logger: InternalBot(strategy, use_futures, logger=logger))

    @classmethod
    def external(
        cls,
        command: str,
        setup_timeout: Optional[float] = SETUP_TIMEOUT_SECONDS,
        turn_timeout: Optional[float] = TURN_TIMEOUT_SECONDS,
    ) -> "BotMaker":
        argv = shlex.split(command)
        return cls(command, lambda logger: ExternalBot(argv, setup_timeout, turn_timeout, logger=logger))
