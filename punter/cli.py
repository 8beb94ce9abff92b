import argparse
import logging
import os
import sys
from typing import List, Optional, Sequence

from .arena import Arena
from .bots import BotMaker
from .constants import (
    DEFAULT_GAMES_PER_MAP,
    DEFAULT_SERVER_HOST,
    DEFAULT_STRATEGY,
    INTERNAL_ARENA_MAPS,
    PUNTER_NAME,
    RECORD_DIR,
    SETUP_TIMEOUT_SECONDS,
    STRATEGIES,
    TURN_TIMEOUT_SECONDS,
    normalize_strategy,
)
from .io import MessageIO, TcpIO
from .maps import generate_map, load_map, write_map
from .models import PunterError, Settings
from .protocol import OnlineSession, run_offline_turn
from .replay import VisGraphRecorder

LOGGER = logging.getLogger("punter")

COMMANDS = ("offline", "online", "arena", "match", "generate-map")
INTERNAL_PREFIX = "internal:"


def configure_logging(verbosity: int) -> None:
    level = logging.WARNING if verbosity <= 0 else logging.INFO if verbosity == 1 else logging.DEBUG
    override = os.environ.get("PUNTER_LOG")
    if override:
        named = logging.getLevelName(override.strip().upper())
        if isinstance(named, int):
            level = named
    # stdout carries protocol frames in offline mode
    logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s %(name)s %(message)s")


def _timeout(value: str) -> Optional[float]:
    if value.strip().lower() in {"none", "off"}:
        return None
    return float(value)


def parse_bot(entry: str, args: argparse.Namespace) -> BotMaker:
    """`internal:<Strategy>` runs in-process; anything else is a command line."""
    if entry.startswith(INTERNAL_PREFIX):
        return BotMaker.internal(entry[len(INTERNAL_PREFIX):], use_futures=args.futures)
    return BotMaker.external(entry, setup_timeout=args.setup_timeout, turn_timeout=args.turn_timeout)


def _settings(args: argparse.Namespace) -> Settings:
    return Settings(futures=args.futures, splurge=args.splurge, options=args.options)


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="count", default=0, help="-v for INFO, -vv for DEBUG")
    common.add_argument("--futures", action="store_true", help="Use futures when the game allows them")

    player = argparse.ArgumentParser(add_help=False)
    player.add_argument("--strategy", type=normalize_strategy, default=DEFAULT_STRATEGY, help=f"One of {', '.join(STRATEGIES)}")
    player.add_argument("--name", default=PUNTER_NAME, help=f"Handshake name (default: {PUNTER_NAME})")

    tournament = argparse.ArgumentParser(add_help=False)
    tournament.add_argument("--games", type=int, default=DEFAULT_GAMES_PER_MAP, help="Battles per map")
    tournament.add_argument("--workers", type=int, default=None, help="Parallel battles (default: CPU count)")
    tournament.add_argument("--seed", type=int, default=0, help="Seat shuffling seed")
    tournament.add_argument("--record", default=RECORD_DIR, help="Write every battle to this directory")
    tournament.add_argument("--splurge", action="store_true", help="Enable splurges")
    tournament.add_argument("--options", action="store_true", help="Enable options")
    tournament.add_argument("--setup-timeout", type=_timeout, default=SETUP_TIMEOUT_SECONDS, help="Seconds; 'none' disables")
    tournament.add_argument("--turn-timeout", type=_timeout, default=TURN_TIMEOUT_SECONDS, help="Seconds; 'none' disables")
    tournament.add_argument("--no-progress", action="store_true", help="Hide the progress bar")

    parser = argparse.ArgumentParser(prog="punter", description="Punter bot and battle arena.")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("offline", parents=[common, player], help="Answer one offline request on stdin/stdout")

    online = sub.add_parser("online", parents=[common, player], help="Play one match against a server")
    online.add_argument("--host", default=DEFAULT_SERVER_HOST)
    online.add_argument("--port", type=int, required=True)

    arena = sub.add_parser("arena", parents=[common, tournament], help="Run a tournament")
    arena.add_argument("--internal", action="store_true", help="BOTs are strategy names (default: all strategies)")
    arena.add_argument("--maps", nargs="+", default=list(INTERNAL_ARENA_MAPS), help="Map files or bundled map names")
    arena.add_argument("bots", nargs="*", metavar="BOT", help="Bot command lines, or internal:<Strategy>")

    match = sub.add_parser("match", parents=[common, tournament], help="Play a fixed map and bot list repeatedly")
    match.add_argument("--map", required=True, help="Map file or bundled map name")
    match.add_argument("bots", nargs="+", metavar="BOT", help="Bot command lines, or internal:<Strategy>")

    generate = sub.add_parser("generate-map", parents=[common], help="Write a random planar map")
    generate.add_argument("--sites", type=int, default=40)
    generate.add_argument("--rivers", type=int, default=70)
    generate.add_argument("--mines", type=int, default=4)
    generate.add_argument("--seed", type=int, default=None)
    generate.add_argument("output")
    return parser


def _run_tournament(args: argparse.Namespace, makers: List[BotMaker], map_names: Sequence[str]) -> int:
    maps = [(str(name), load_map(name)) for name in map_names]
    recorder = VisGraphRecorder(args.record) if args.record else None
    arena = Arena(
        makers,
        maps,
        games_per_map=args.games,
        settings=_settings(args),
        workers=args.workers,
        seed=args.seed,
        recorder=recorder,
        progress=not args.no_progress,
    )
    for stats in arena.run().values():
        print(stats.format_table())
        print()
    return 0


def run(args: argparse.Namespace) -> int:
    if args.command == "offline":
        run_offline_turn(MessageIO.stdio(), args.strategy, args.name, args.futures)
        return 0

    if args.command == "online":
        with TcpIO(args.host, args.port) as io:
            scores = OnlineSession(io, args.strategy, args.name, args.futures).run()
        for score in scores:
            LOGGER.info("Final score of punter %s: %s", score.punter, score.score)
        return 0

    if args.command == "arena":
        if args.internal:
            names = args.bots or list(STRATEGIES)
            makers = [BotMaker.internal(name, use_futures=args.futures) for name in names]
        else:
            if not args.bots:
                LOGGER.error("arena needs bot commands, or --internal")
                return 2
            makers = [parse_bot(entry, args) for entry in args.bots]
        return _run_tournament(args, makers, args.maps)

    if args.command == "match":
        return _run_tournament(args, [parse_bot(entry, args) for entry in args.bots], [args.map])

    if args.command == "generate-map":
        game_map = generate_map(args.sites, args.rivers, args.mines, args.seed)
        write_map(game_map, args.output)
        print(f"Wrote {args.output}: {len(game_map.sites)} sites, {len(game_map.rivers)} rivers")
        return 0

    raise ValueError(f"unknown command {args.command!r}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or argv[0] not in COMMANDS + ("-h", "--help"):
        argv.insert(0, "offline")
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    try:
        return run(args)
    except (PunterError, OSError, ValueError) as exc:
        LOGGER.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
