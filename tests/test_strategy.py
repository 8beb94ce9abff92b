import logging

import pytest

from punter import strategy
from punter.models import Claim, GameMap, Pass, River, Site
from punter.state import Game
from punter.strategy import choose_move, edge_weights, play_edge_weight, play_greedy, play_stupid


def test_stupid_takes_first_unclaimed(sample_map):
    game = Game.from_map(sample_map, me=1, punters=2)
    assert play_stupid(game) == Claim(1, 3, 4)
    game.apply_move(Claim(0, 3, 4))
    assert play_stupid(game) == Claim(1, 0, 1)


def test_pass_when_everything_is_claimed(ring_map):
    game = Game.from_map(ring_map, me=0, punters=2)
    for edge in game.edges:
        edge.owner = 1
    assert play_stupid(game) == Pass(0)
    assert play_edge_weight(game) == Pass(0)
    assert play_greedy(game) == Pass(0)


def test_edge_weight_opening_on_sample(sample_map):
    game = Game.from_map(sample_map, me=0, punters=2)
    weights = edge_weights(game)
    # 1-3 and 3-5 tie for the best weight; the lower edge index wins
    assert weights[3] == weights[6] == max(weights)
    assert play_edge_weight(game) == Claim(0, 1, 3)


def test_edge_weights_on_a_path():
    # 0 - 1 - 2 - 3 with a mine at 0: each edge carries everything beyond it
    game_map = GameMap(
        sites=[Site(i) for i in range(4)],
        rivers=[River(0, 1), River(1, 2), River(2, 3)],
        mines=[0],
    )
    game = Game.from_map(game_map, me=0, punters=2)
    assert edge_weights(game) == [1 + 4 + 9, 4 + 9, 9]


def test_edge_weights_skip_rivers_owned_by_others():
    game_map = GameMap(
        sites=[Site(i) for i in range(4)],
        rivers=[River(0, 1), River(1, 2), River(2, 3)],
        mines=[0],
    )
    game = Game.from_map(game_map, me=0, punters=2)
    game.apply_move(Claim(1, 1, 2))
    assert edge_weights(game) == [1, 0, 0]
    game.apply_move(Claim(0, 0, 1))
    assert edge_weights(game) == [1, 0, 0]


def test_edge_weights_traverse_my_rivers(ring_map):
    game = Game.from_map(ring_map, me=0, punters=2)
    game.apply_move(Claim(0, 10, 20))
    weights = edge_weights(game)
    assert weights[0] > 0
    assert play_edge_weight(game) != Claim(0, 10, 20)


def test_edge_weight_falls_back_without_mines():
    game_map = GameMap(sites=[Site(0), Site(1), Site(2)], rivers=[River(1, 2), River(0, 1)], mines=[])
    game = Game.from_map(game_map, me=0, punters=1)
    assert play_edge_weight(game) == Claim(0, 1, 2)


def test_greedy_extends_owned_path(ring_map):
    game = Game.from_map(ring_map, me=0, punters=2)
    assert play_greedy(game) == Claim(0, 10, 20)
    game.apply_move(Claim(0, 10, 20))
    assert play_greedy(game) == Claim(0, 20, 30)


def test_choose_move_dispatches_by_name(sample_map):
    game = Game.from_map(sample_map, me=0, punters=2)
    assert choose_move(game, "stupid") == play_stupid(game)
    assert choose_move(game, "EdgeWeight") == play_edge_weight(game)
    with pytest.raises(ValueError):
        choose_move(game, "Clever")


def test_slow_move_is_logged(sample_map, monkeypatch, caplog):
    monkeypatch.setattr(strategy, "SLOW_MOVE_SECONDS", 0.0)
    game = Game.from_map(sample_map, me=0, punters=2)
    with caplog.at_level(logging.WARNING):
        move = choose_move(game, "EdgeWeight")
    assert move == Claim(0, 1, 3)
    assert "took" in caplog.text
