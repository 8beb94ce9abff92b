import pytest

from punter.cli import build_parser, main
from punter.maps import load_map


def test_no_subcommand_means_offline():
    args = build_parser().parse_args(["offline"])
    assert args.strategy == "EdgeWeight"
    assert args.futures is False


def test_strategy_names_are_validated():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["offline", "--strategy", "Clever"])


def test_timeouts_can_be_disabled():
    args = build_parser().parse_args(["match", "--map", "sample.json", "--turn-timeout", "none", "internal:Stupid"])
    assert args.turn_timeout is None


def test_generate_map_command(tmp_path, capsys):
    output = tmp_path / "generated.json"
    assert main(["generate-map", "--sites", "12", "--rivers", "20", "--mines", "2", "--seed", "5", str(output)]) == 0
    game_map = load_map(output)
    assert len(game_map.sites) == 12
    assert "Wrote" in capsys.readouterr().out


def test_internal_arena_command(capsys):
    code = main(["arena", "--internal", "--games", "2", "--workers", "2", "--no-progress", "EdgeWeight", "Stupid"])
    assert code == 0
    out = capsys.readouterr().out
    assert "sample.json" in out
    assert "EdgeWeight" in out and "Stupid" in out


def test_match_command_with_internal_bots(capsys):
    code = main(["match", "--map", "sample.json", "--games", "1", "--no-progress", "internal:EdgeWeight", "internal:EdgeWeight"])
    assert code == 0
    assert "EdgeWeight#1" in capsys.readouterr().out


def test_arena_without_bots_is_an_error():
    assert main(["arena", "--no-progress"]) == 2


def test_missing_map_exits_with_error():
    assert main(["match", "--map", "missing.json", "--no-progress", "internal:Stupid"]) == 1
