import random

import pytest

from punter.models import Claim, Future, GameMap, Option, Pass, ProtocolError, River, Settings, Site, Splurge
from punter.state import Game
from punter.strategy import choose_move


def test_node_numbering_ignores_site_order(sample_map):
    reference = Game.from_map(sample_map, me=0, punters=2)
    rng = random.Random(7)
    for _ in range(10):
        sites = list(sample_map.sites)
        rng.shuffle(sites)
        game = Game.from_map(GameMap(sites, sample_map.rivers, sample_map.mines), me=0, punters=2)
        assert game.site_to_node == reference.site_to_node
        assert [(e.source, e.target) for e in game.edges] == [(e.source, e.target) for e in reference.edges]


def test_sparse_ids_are_ranked(ring_map):
    game = Game.from_map(ring_map, me=0, punters=2)
    assert game.site_ids == [10, 20, 30, 40, 50]
    assert game.mines == [0, 2]
    assert all(edge.source < edge.target for edge in game.edges)
    assert game.edge_index[(0, 4)] == 4


def test_bfs_distances_on_five_nodes():
    game_map = GameMap(
        sites=[Site(i) for i in range(5)],
        rivers=[River(0, 1), River(1, 2), River(2, 3), River(3, 0)],
        mines=[0],
    )
    game = Game.from_map(game_map, me=0, punters=1)
    assert game.distances[0] == {0: 0, 1: 1, 2: 2, 3: 1}
    assert game.distance(0, 4) is None


def test_unknown_river_endpoint_is_rejected():
    game_map = GameMap(sites=[Site(0), Site(1)], rivers=[River(0, 9)], mines=[0])
    with pytest.raises(ProtocolError):
        Game.from_map(game_map, me=0, punters=1)


def test_duplicate_rivers_are_dropped(caplog):
    game_map = GameMap(sites=[Site(0), Site(1)], rivers=[River(0, 1), River(1, 0)], mines=[0])
    game = Game.from_map(game_map, me=0, punters=1)
    assert len(game.edges) == 1
    assert "duplicate" in caplog.text


def test_missing_river_claim_is_ignored(ring_map, caplog):
    game = Game.from_map(ring_map, me=0, punters=2)
    assert game.apply_move(Claim(1, 10, 30)) is False
    assert game.owned_edges(1) == []
    assert "missing river" in caplog.text


def test_conflicting_claim_keeps_first_owner(ring_map):
    game = Game.from_map(ring_map, me=0, punters=2)
    assert game.apply_move(Claim(0, 20, 10))
    assert not game.apply_move(Claim(1, 10, 20))
    assert game.edges[0].owner == 0


def test_score_counts_squared_distances(ring_map):
    game = Game.from_map(ring_map, me=0, punters=2)
    game.apply_moves([Claim(0, 10, 20), Claim(0, 20, 30)])
    # mine 10 reaches 20 (d=1) and 30 (d=2); mine 30 reaches 20 (d=1) and 10 (d=2)
    assert game.score(0) == 10
    assert game.score(1) == 0


def test_futures_bonus_and_penalty(ring_map):
    game = Game.from_map(ring_map, me=0, punters=2, settings=Settings(futures=True))
    game.apply_moves([Claim(0, 10, 20), Claim(0, 20, 30)])
    game.set_futures(0, [Future(10, 40), Future(30, 20)])
    # 10 -> 40 missed: -2^3, 30 -> 20 reached: +1^3
    assert game.score(0) == 10 - 8 + 1


def test_futures_are_never_overwritten(ring_map, caplog):
    game = Game.from_map(ring_map, me=0, punters=2, settings=Settings(futures=True))
    game.set_futures(0, [Future(10, 40)])
    game.set_futures(0, [Future(10, 20)])
    assert game.extension.futures == {0: 3}
    assert "already set" in caplog.text


def test_invalid_futures_are_dropped(ring_map):
    game = Game.from_map(ring_map, me=0, punters=2, settings=Settings(futures=True))
    chosen = game.set_futures(1, [Future(20, 40), Future(10, 30), Future(10, 99), Future(30, 40)])
    assert chosen == {2: 3}
    assert game.futures_for(1) == {2: 3}


def test_futures_ignored_when_disabled(ring_map):
    game = Game.from_map(ring_map, me=0, punters=2)
    game.extension.futures = {0: 3}
    game.apply_move(Claim(0, 10, 20))
    assert game.score(0) == 1 + 0


def test_setup_futures_picks_nearest_non_mine(ring_map):
    game = Game.from_map(ring_map, me=0, punters=2, settings=Settings(futures=True))
    assert game.setup_futures() == {0: 1, 2: 1}
    assert game.futures_message() == [Future(10, 20), Future(30, 20)]


def test_splurge_claims_every_leg(ring_map):
    game = Game.from_map(ring_map, me=1, punters=2, settings=Settings(splurge=True))
    assert game.validate_move(Splurge(1, [10, 20, 30]), 1) is None
    game.apply_move(Splurge(1, [10, 20, 30]))
    assert game.owned_edges(1) == [0, 1]


def test_option_on_claimed_river(ring_map):
    game = Game.from_map(ring_map, me=1, punters=2, settings=Settings(options=True))
    game.apply_move(Claim(0, 10, 20))
    assert game.validate_move(Option(1, 10, 20), 1) is None
    assert game.apply_move(Option(1, 10, 20))
    assert game.edges[0].claim_state == "optioned"
    assert game.extension.prior_options == 1
    assert game.score(1) == 1


def test_validate_move_reasons(ring_map):
    game = Game.from_map(ring_map, me=0, punters=2)
    game.apply_move(Claim(0, 10, 20))
    assert game.validate_move(Pass(1), 1) is None
    assert "attributed" in game.validate_move(Claim(0, 20, 30), 1)
    assert "no river" in game.validate_move(Claim(1, 10, 30), 1)
    assert "claimed" in game.validate_move(Claim(1, 10, 20), 1)
    assert "disabled" in game.validate_move(Splurge(1, [20, 30, 40]), 1)
    assert "disabled" in game.validate_move(Option(1, 10, 20), 1)


def test_splurge_may_not_reuse_a_river(ring_map):
    game = Game.from_map(ring_map, me=0, punters=2, settings=Settings(splurge=True))
    assert "twice" in game.validate_move(Splurge(0, [10, 20, 10]), 0)


def test_pass_counter_resets(ring_map):
    game = Game.from_map(ring_map, me=0, punters=2)
    game.apply_moves([Pass(0), Pass(1), Pass(0)])
    assert game.extension.prior_passes == 2
    game.apply_move(Claim(0, 10, 20))
    assert game.extension.prior_passes == 0


def test_apply_moves_excluding_me(ring_map):
    game = Game.from_map(ring_map, me=0, punters=2)
    game.apply_moves_excluding_me([Claim(0, 10, 20), Claim(1, 20, 30)])
    assert game.edges[0].is_unclaimed
    assert game.edges[1].owner == 1


def test_replaying_moves_is_deterministic(sample_map):
    moves = [Claim(0, 1, 3), Claim(1, 5, 7), Claim(0, 3, 5), Claim(1, 1, 7), Claim(0, 6, 7)]
    results = []
    for _ in range(2):
        game = Game.from_map(sample_map, me=0, punters=2)
        game.apply_moves(moves)
        results.append(game.scores())
    assert results[0] == results[1]


def test_encode_decode_preserves_behaviour(sample_map):
    game = Game.from_map(sample_map, me=1, punters=2, settings=Settings(futures=True, options=True))
    game.setup_futures()
    game.apply_moves([Claim(0, 1, 3), Claim(1, 5, 7), Pass(1), Option(1, 1, 3)])
    game.set_futures(0, [Future(1, 0)])

    clone = Game.decode(game.encode())
    assert clone.to_dict() == game.to_dict()
    assert clone.scores() == game.scores()
    assert clone.summary() == game.summary()
    assert clone.extension == game.extension
    assert clone.adjacency == game.adjacency
    assert choose_move(clone, "EdgeWeight") == choose_move(game, "EdgeWeight")


def test_encoded_state_is_a_string(ring_map):
    assert isinstance(Game.from_map(ring_map, me=0, punters=2).encode(), str)


@pytest.mark.parametrize("blob", [None, "", "not base64!", "aGVsbG8="])
def test_decode_garbage(blob):
    with pytest.raises(ProtocolError):
        Game.decode(blob)


def test_decode_rejects_other_versions(ring_map):
    data = Game.from_map(ring_map, me=0, punters=2).to_dict()
    data["version"] = 999
    with pytest.raises(ProtocolError):
        Game.from_dict(data)


def test_summary_lists_owned_rivers(ring_map):
    game = Game.from_map(ring_map, me=0, punters=2)
    game.apply_moves([Claim(1, 40, 30)])
    summary = game.summary()
    assert summary[1] == {"score": 1, "rivers": [(30, 40)]}
    assert summary[0] == {"score": 0, "rivers": []}
