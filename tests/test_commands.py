import pytest

from commands import apply_command, command_from_message
from helpers import give
from world import Command, CommandType, CommandValidationError, Probe, SupplyRoute


def attack(pid, src, dst):
    return Command(type=CommandType.ATTACK_TERRITORY, player_id=pid, from_id=src, to_id=dst)


def transfer(pid, src, dst):
    return Command(type=CommandType.TRANSFER_ARMIES, player_id=pid, from_id=src, to_id=dst)


class TestAttack:
    def test_victory_leaves_one_at_home(self, ctx):
        give(ctx, 0, "p1", 10)
        give(ctx, 1, "p2", 5)
        res = apply_command(ctx, attack("p1", 0, 1))
        assert res.result == "victory"
        assert ctx.state.territories[0].army_size == 1
        assert ctx.state.territories[1].owner_id == "p1"
        # 9 attackers against 5 at the midpoint; captured garrison is 80% of defenders
        assert ctx.state.territories[1].army_size == 4

    def test_not_adjacent(self, ctx):
        give(ctx, 0, "p1", 10)
        give(ctx, 12, "p2", 5)
        with pytest.raises(CommandValidationError, match="adjacent"):
            apply_command(ctx, attack("p1", 0, 12))
        assert ctx.state.territories[0].army_size == 10

    def test_colonizable_target(self, ctx):
        give(ctx, 0, "p1", 10)
        with pytest.raises(CommandValidationError, match="probe"):
            apply_command(ctx, attack("p1", 0, 1))

    def test_needs_two_armies(self, ctx):
        give(ctx, 0, "p1", 1)
        give(ctx, 1, "p2", 5)
        with pytest.raises(CommandValidationError):
            apply_command(ctx, attack("p1", 0, 1))

    def test_own_territory(self, ctx):
        give(ctx, 0, "p1", 10)
        give(ctx, 1, "p1", 5)
        with pytest.raises(CommandValidationError):
            apply_command(ctx, attack("p1", 0, 1))

    def test_source_not_owned(self, ctx):
        give(ctx, 0, "p2", 10)
        give(ctx, 1, "p2", 5)
        with pytest.raises(CommandValidationError):
            apply_command(ctx, attack("p1", 0, 1))

    def test_unknown_territory(self, ctx):
        give(ctx, 0, "p1", 10)
        with pytest.raises(CommandValidationError, match="Unknown territory"):
            apply_command(ctx, attack("p1", 0, 999))


class TestTransfer:
    def test_moves_half(self, ctx):
        give(ctx, 0, "p1", 11)
        give(ctx, 1, "p1", 2)
        assert apply_command(ctx, transfer("p1", 0, 1)) == 5
        assert ctx.state.territories[0].army_size == 6
        assert ctx.state.territories[1].army_size == 7

    def test_needs_two_armies(self, ctx):
        give(ctx, 0, "p1", 1)
        give(ctx, 1, "p1", 2)
        with pytest.raises(CommandValidationError):
            apply_command(ctx, transfer("p1", 0, 1))

    def test_both_must_be_owned(self, ctx):
        give(ctx, 0, "p1", 10)
        give(ctx, 1, "p2", 2)
        with pytest.raises(CommandValidationError):
            apply_command(ctx, transfer("p1", 0, 1))


class TestDispatch:
    def test_probe_and_route(self, ctx):
        for tid in (0, 1, 2):
            give(ctx, tid, "p1", 1)
        ctx.state.territories[0].army_size = 30
        probe = apply_command(
            ctx, Command(type=CommandType.LAUNCH_PROBE, player_id="p1", from_id=0, to_id=5)
        )
        route = apply_command(
            ctx, Command(type=CommandType.CREATE_SUPPLY_ROUTE, player_id="p1", from_id=0, to_id=2)
        )
        assert isinstance(probe, Probe)
        assert isinstance(route, SupplyRoute)

    def test_select_returns_territory(self, ctx):
        cmd = Command(type=CommandType.SELECT_TERRITORY, player_id="p1", territory_id=7)
        assert apply_command(ctx, cmd).id == 7

    def test_unknown_player(self, ctx):
        with pytest.raises(CommandValidationError, match="Unknown player"):
            apply_command(ctx, attack("ghost", 0, 1))

    def test_eliminated_player(self, ctx):
        give(ctx, 0, "p1", 10)
        give(ctx, 1, "p2", 5)
        ctx.state.players["p1"].is_eliminated = True
        with pytest.raises(CommandValidationError, match="Eliminated"):
            apply_command(ctx, attack("p1", 0, 1))

    def test_game_not_running(self, ctx):
        give(ctx, 0, "p1", 10)
        give(ctx, 1, "p2", 5)
        ctx.state.game_phase = "lobby"
        with pytest.raises(CommandValidationError, match="not running"):
            apply_command(ctx, attack("p1", 0, 1))
        assert ctx.state.territories[0].army_size == 10

    def test_select_allowed_outside_play(self, ctx):
        ctx.state.game_phase = "ended"
        cmd = Command(type=CommandType.SELECT_TERRITORY, player_id="p1", territory_id=2)
        assert apply_command(ctx, cmd).id == 2


class TestCommandFromMessage:
    def test_attack_payload(self):
        cmd = command_from_message(
            "p1", "ATTACK_TERRITORY", {"fromTerritoryId": 3, "toTerritoryId": 4}, timestamp=12.0
        )
        assert cmd.type == CommandType.ATTACK_TERRITORY
        assert (cmd.from_id, cmd.to_id) == (3, 4)
        assert cmd.player_id == "p1"
        assert cmd.timestamp == 12.0
        assert cmd.tick is None

    def test_select_payload(self):
        cmd = command_from_message("p1", "SELECT_TERRITORY", {"territoryId": "9"})
        assert cmd.territory_id == 9

    def test_unknown_type(self):
        with pytest.raises(CommandValidationError, match="Unknown command type"):
            command_from_message("p1", "NUKE", {})

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"fromTerritoryId": 1},
            {"fromTerritoryId": "x", "toTerritoryId": 2},
            {"fromTerritoryId": True, "toTerritoryId": 2},
            {"fromTerritoryId": [1], "toTerritoryId": 2},
        ],
    )
    def test_bad_payload(self, payload):
        with pytest.raises(CommandValidationError):
            command_from_message("p1", "TRANSFER_ARMIES", payload)

    def test_missing_payload(self):
        with pytest.raises(CommandValidationError):
            command_from_message("p1", "LAUNCH_PROBE")
