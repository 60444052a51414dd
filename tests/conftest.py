"""Shared test fixtures."""

import random

import pytest

from helpers import FixedRandom, add_player, make_config, make_ctx
from world import AI, HUMAN


@pytest.fixture
def rng():
    """Deterministic RNG seeded at 42."""
    return random.Random(42)


@pytest.fixture
def midpoint():
    """Randomness pinned to the middle of every range."""
    return FixedRandom(0.5)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def ctx():
    """5x5 grid, spacing 100, jump range 100, players p1 (human) and p2 (AI)."""
    c = make_ctx()
    add_player(c, "p1", HUMAN)
    add_player(c, "p2", AI)
    c.state.game_phase = "playing"
    return c
