"""Map and context builders shared by the test modules."""

from config import load_game_config
from world import HUMAN, GameContext, Player, build_world, set_owner


class FixedRandom:
    """
    Deterministic stand-in for ``random.Random``.

    ``FixedRandom(0.5)`` always returns the midpoint; a sequence is cycled.
    """

    def __init__(self, values=0.5):
        if isinstance(values, (int, float)):
            values = [float(values)]
        if not values:
            raise ValueError("FixedRandom needs at least one value")
        self._values = [float(v) for v in values]
        self._i = 0

    def random(self):
        v = self._values[self._i % len(self._values)]
        self._i += 1
        return v

    def choices(self, population, weights=None, k=1):
        # heaviest pick so bot choices stay deterministic
        if weights is None:
            return [population[0]] * k
        w = list(weights)
        best = max(range(len(population)), key=lambda i: w[i])
        return [population[best]] * k


def grid_positions(size=5, spacing=100.0):
    """size x size lattice; id = row * size + col."""
    return [(col * spacing, row * spacing) for row in range(size) for col in range(size)]


def make_config(**overrides):
    """Defaults from sim_config.json with a grid-friendly jump range."""
    overrides.setdefault("jump_range", 100.0)
    return load_game_config(**overrides)


def make_ctx(positions=None, rng=None, config=None, hidden=5, clock_value=1000.0):
    """Lobby-phase context on explicit positions with fixed hidden armies."""
    positions = positions if positions is not None else grid_positions()
    config = config or make_config()
    rng = rng if rng is not None else FixedRandom(0.5)
    state, ranges, spatial = build_world(positions, config, rng, [hidden] * len(positions))
    return GameContext(
        config=config,
        state=state,
        rng=rng,
        ranges=ranges,
        spatial=spatial,
        clock=lambda: clock_value,
    )


def add_player(ctx, pid, player_type=HUMAN):
    player = Player(id=pid, name=pid, type=player_type, army_gen_rate=ctx.config.army_generation_rate)
    ctx.state.players[pid] = player
    return player


def give(ctx, tid, pid, army):
    """Hand territory ``tid`` to ``pid`` with ``army`` armies."""
    set_owner(ctx.state, ctx.state.territories[tid], pid, army)
    return ctx.state.territories[tid]
