import pytest

from discoveries import DISCOVERIES, apply_discovery, roll_discovery
from fleets import advance_probes, launch_probe, outstanding_long_range
from helpers import FixedRandom, add_player, give, grid_positions, make_config, make_ctx
from world import CommandValidationError, Probe


def run_for(ctx, total_ms, step_ms=50.0):
    arrived = []
    elapsed = 0.0
    while elapsed < total_ms:
        arrived.extend(advance_probes(ctx, step_ms))
        elapsed += step_ms
    return arrived


class TestLaunch:
    def test_deducts_cost_and_carries_payload(self, ctx):
        give(ctx, 0, "p1", 50)
        probe = launch_probe(ctx, "p1", 0, 1)
        assert ctx.state.territories[0].army_size == 40
        assert probe.armies == 10
        assert not probe.long_range
        assert probe.duration == pytest.approx(4000.0)  # 100 / 1.25 * 50
        assert ctx.state.probes == [probe]

    def test_needs_more_than_cost(self, ctx):
        give(ctx, 0, "p1", 10)
        with pytest.raises(CommandValidationError):
            launch_probe(ctx, "p1", 0, 1)
        assert ctx.state.territories[0].army_size == 10
        assert ctx.state.probes == []

    def test_source_must_be_owned(self, ctx):
        give(ctx, 0, "p2", 50)
        with pytest.raises(CommandValidationError):
            launch_probe(ctx, "p1", 0, 1)

    def test_unreachable_target(self):
        ctx = make_ctx(positions=grid_positions() + [(5000.0, 5000.0)])
        add_player(ctx, "p1")
        give(ctx, 0, "p1", 50)
        with pytest.raises(CommandValidationError):
            launch_probe(ctx, "p1", 0, 25)
        assert ctx.state.territories[0].army_size == 50

    def test_long_range_duration_is_clamped(self, ctx):
        give(ctx, 0, "p1", 50)
        probe = launch_probe(ctx, "p1", 0, 2)
        assert probe.long_range
        assert probe.duration == pytest.approx(20000.0)

    def test_game_speed_scales_duration(self):
        ctx = make_ctx(config=make_config(game_speed=2.0))
        add_player(ctx, "p1")
        give(ctx, 0, "p1", 50)
        assert launch_probe(ctx, "p1", 0, 1).duration == pytest.approx(2000.0)

    def test_drive_bonus_speeds_up_probes(self, ctx):
        give(ctx, 0, "p1", 50)
        ctx.state.players["p1"].discoveries["drive"] = 1
        assert launch_probe(ctx, "p1", 0, 1).duration == pytest.approx(4000.0 / 1.2)


class TestAiLongRangeGates:
    def test_cap_on_outstanding_fleets(self, ctx):
        give(ctx, 0, "p2", 100)
        launch_probe(ctx, "p2", 0, 2)
        launch_probe(ctx, "p2", 0, 3)
        assert outstanding_long_range(ctx.state, "p2") == 2
        with pytest.raises(CommandValidationError):
            launch_probe(ctx, "p2", 0, 4)
        assert ctx.state.territories[0].army_size == 80

    def test_surplus_threshold(self, ctx):
        give(ctx, 0, "p2", 15)
        with pytest.raises(CommandValidationError):
            launch_probe(ctx, "p2", 0, 2)
        # short range is not gated
        launch_probe(ctx, "p2", 0, 1)

    def test_humans_are_not_capped(self, ctx):
        give(ctx, 0, "p1", 100)
        for target in (2, 3, 4):
            launch_probe(ctx, "p1", 0, target)
        assert outstanding_long_range(ctx.state, "p1") == 3


class TestArrival:
    def test_fires_exactly_once(self):
        ctx = make_ctx(rng=FixedRandom(0.1))
        add_player(ctx, "p1")
        give(ctx, 0, "p1", 50)
        probe = Probe(id=0, from_territory_id=0, to_territory_id=1, player_id="p1",
                      start_time=0.0, duration=2000.0, armies=10)
        ctx.state.probes.append(probe)

        assert run_for(ctx, 1950) == []
        assert probe.progress < 1.0
        assert not probe.resolved

        arrived = advance_probes(ctx, 50)
        assert arrived == [probe]
        assert probe.progress == 1.0
        assert probe.outcome == "colonized"
        assert ctx.state.probes == []

        assert run_for(ctx, 1000) == []
        target = ctx.state.territories[1]
        assert target.owner_id == "p1"
        assert target.army_size == 1
        assert target.hidden_army_size == 0
        assert not target.is_colonizable
        assert target.discovery == "standard_planet"

    def test_progress_never_decreases(self, ctx):
        give(ctx, 0, "p1", 50)
        probe = launch_probe(ctx, "p1", 0, 1)
        seen = []
        for _ in range(10):
            advance_probes(ctx, 100)
            seen.append(probe.progress)
        assert seen == sorted(seen)

    def test_enemy_target_fights(self, ctx):
        give(ctx, 0, "p1", 50)
        give(ctx, 1, "p2", 5)
        launch_probe(ctx, "p1", 0, 1)
        arrived = run_for(ctx, 4000)
        assert [p.outcome for p in arrived] == ["combat"]
        assert ctx.state.territories[1].owner_id == "p1"
        assert ctx.state.territories[1].army_size == 4
        assert len(ctx.combat_results) == 1

    def test_own_target_reinforces(self, ctx):
        give(ctx, 0, "p1", 50)
        give(ctx, 1, "p1", 3)
        launch_probe(ctx, "p1", 0, 1)
        run_for(ctx, 4000)
        assert ctx.state.territories[1].army_size == 13

    def test_target_lost_in_flight_becomes_combat(self, ctx):
        give(ctx, 0, "p1", 50)
        give(ctx, 1, "p1", 3)
        launch_probe(ctx, "p1", 0, 1)
        give(ctx, 1, "p2", 20)
        arrived = run_for(ctx, 4000)
        assert arrived[0].outcome == "combat"
        assert ctx.state.territories[1].owner_id == "p2"
        assert ctx.state.territories[1].army_size == 16


class TestDiscoveries:
    def test_table_probabilities(self):
        assert sum(d.probability for d in DISCOVERIES) == pytest.approx(0.85)

    @pytest.mark.parametrize(
        "roll, expected",
        [(0.0, "standard_planet"), (0.3, "rich_minerals"), (0.84, "friendly_aliens"), (0.99, "standard_planet")],
    )
    def test_roll(self, roll, expected):
        assert roll_discovery(roll).id == expected

    def _get(self, did):
        return next(d for d in DISCOVERIES if d.id == did)

    def test_drive_rebuilds_range_once(self, ctx):
        t = give(ctx, 0, "p1", 1)
        before = ctx.ranges.rebuilds
        apply_discovery(ctx, t, ctx.state.players["p1"], self._get("precursor_drive"))
        assert ctx.player_range("p1") == pytest.approx(120.0)
        assert ctx.ranges.rebuilds == before + 1

        # same new range for another player reuses the cached adjacency
        t2 = give(ctx, 24, "p2", 1)
        apply_discovery(ctx, t2, ctx.state.players["p2"], self._get("precursor_drive"))
        assert ctx.ranges.rebuilds == before + 1

    def test_nanotech_speeds_generation(self, ctx):
        t = give(ctx, 0, "p1", 1)
        player = ctx.state.players["p1"]
        apply_discovery(ctx, t, player, self._get("precursor_nanotech"))
        assert player.army_gen_rate == pytest.approx(1350.0)

    def test_friendly_aliens_add_armies(self, ctx):
        t = give(ctx, 0, "p1", 1)
        apply_discovery(ctx, t, ctx.state.players["p1"], self._get("friendly_aliens"))
        assert t.army_size == 51

    def test_factory_doubles_production(self, ctx):
        t = give(ctx, 0, "p1", 1)
        apply_discovery(ctx, t, ctx.state.players["p1"], self._get("factory_complex"))
        assert t.army_gen_multiplier == 2.0
        assert t.discovery == "factory_complex"

    def test_weapons_raise_attack_bonus(self, ctx):
        t = give(ctx, 0, "p1", 1)
        player = ctx.state.players["p1"]
        apply_discovery(ctx, t, player, self._get("precursor_weapons"))
        assert player.attack_bonus == pytest.approx(0.1)
