from punter.arena import Arena, ArenaStats, BotStat, sample_battle, unique_names
from punter.battle import PunterResult
from punter.bots import BotMaker


def _summary(stats):
    return {
        map_name: {
            name: (stat.scores, stat.ranks, stat.move_count, stat.faults)
            for name, stat in map_stats.bots.items()
        }
        for map_name, map_stats in stats.items()
    }


def _arena(sample_map, ring_map, workers):
    makers = [BotMaker.internal("EdgeWeight"), BotMaker.internal("Greedy"), BotMaker.internal("Stupid")]
    maps = [("sample", sample_map), ("ring", ring_map)]
    return Arena(makers, maps, games_per_map=4, workers=workers, seed=3)


def test_worker_count_does_not_change_results(sample_map, ring_map):
    serial = _arena(sample_map, ring_map, workers=1).run()
    parallel = _arena(sample_map, ring_map, workers=4).run()
    assert _summary(serial) == _summary(parallel)


def test_every_bot_plays_every_battle(sample_map, ring_map):
    stats = _arena(sample_map, ring_map, workers=2).run()
    assert list(stats) == ["sample", "ring"]
    for map_stats in stats.values():
        assert sorted(map_stats.bots) == ["EdgeWeight", "Greedy", "Stupid"]
        assert all(stat.games == 4 for stat in map_stats.bots.values())
    ring_moves = sum(stat.move_count for stat in stats["ring"].bots.values())
    assert ring_moves == 4 * 5


def test_seating_depends_only_on_seed(sample_map, ring_map):
    one = _arena(sample_map, ring_map, workers=1)
    two = _arena(sample_map, ring_map, workers=8)
    for game in range(4):
        assert [m.name for m in one.seating(1, game)] == [m.name for m in two.seating(1, game)]


def test_unique_names_for_repeated_bots():
    makers = unique_names([BotMaker.internal("Stupid"), BotMaker.internal("Greedy"), BotMaker.internal("Stupid")])
    assert [m.name for m in makers] == ["Stupid#1", "Greedy", "Stupid#2"]
    assert makers[2].make().name == "Stupid#2"


def test_stats_merge_and_table():
    first = ArenaStats("m")
    first.add([PunterResult(0, "a", 10, 1, 3, 0.5, 0), PunterResult(1, "b", 4, 2, 3, 0.25, 1)])
    second = ArenaStats("m")
    second.add([PunterResult(0, "b", 12, 1, 3, 0.25, 0), PunterResult(1, "a", 12, 1, 3, 0.5, 0)])
    first.merge(second)
    assert first.bots["a"].scores == [10, 12]
    assert first.bots["b"].ranks == [2, 1]
    assert first.bots["a"].wins == 2
    assert first.bots["b"].faults == 1
    assert first.bots["a"].consumed_time == 1.0
    table = first.format_table()
    assert table.splitlines()[0] == "m"
    assert "mean rank" in table
    rows = [line.split()[0] for line in table.splitlines()[3:]]
    assert rows == ["a", "b"]


def test_bot_stat_means_of_nothing():
    assert BotStat().mean_score == 0.0
    assert BotStat().mean_rank == 0.0


def test_sample_battle_golden_scores():
    stats = sample_battle("sample.json", games=3)
    assert stats.bots["EdgeWeight#1"].scores == [22, 22, 22]
    assert stats.bots["EdgeWeight#2"].scores == [22, 22, 22]
    assert stats.bots["EdgeWeight#1"].ranks == [1, 1, 1]
