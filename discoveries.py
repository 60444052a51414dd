#!/usr/bin/env python3
"""What a probe finds on a newly colonized territory."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from world import NANOTECH_GEN_BONUS, GameContext, Player, Territory

logger = logging.getLogger(__name__)

FRIENDLY_ALIEN_ARMIES = 50


@dataclass(frozen=True)
class Discovery:
    id: str
    name: str
    probability: float
    bonus_kind: Optional[str] = None  # empire-wide bonus counter to bump
    gen_multiplier: float = 1.0  # territory production multiplier
    armies: int = 0


DISCOVERIES: List[Discovery] = [
    Discovery("standard_planet", "Standard Planet", 0.25),
    Discovery("rich_minerals", "Rich Mineral Deposits", 0.15, gen_multiplier=1 / 0.67),
    Discovery("precursor_weapons", "Precursor Weapons", 0.10, bonus_kind="weapons"),
    Discovery("precursor_drive", "Precursor Drive System", 0.10, bonus_kind="drive"),
    Discovery("precursor_shield", "Precursor Shield Matrix", 0.10, bonus_kind="shield"),
    Discovery("precursor_nanotech", "Precursor Nanotechnology", 0.08, bonus_kind="nanotech"),
    Discovery("factory_complex", "Precursor Factory Complex", 0.05, gen_multiplier=2.0),
    Discovery("friendly_aliens", "Friendly Aliens", 0.02, armies=FRIENDLY_ALIEN_ARMIES),
]
_BY_ID = {d.id: d for d in DISCOVERIES}


def roll_discovery(roll: float) -> Discovery:
    """Map a uniform roll in [0, 1) onto the cumulative discovery table."""
    cumulative = 0.0
    for d in DISCOVERIES:
        cumulative += d.probability
        if roll <= cumulative:
            return d
    return _BY_ID["standard_planet"]


def apply_discovery(ctx: GameContext, territory: Territory, player: Player, discovery: Discovery) -> None:
    territory.discovery = discovery.id
    if discovery.gen_multiplier != 1.0:
        territory.army_gen_multiplier = discovery.gen_multiplier
    if discovery.armies:
        territory.army_size += discovery.armies

    if discovery.bonus_kind:
        old_range = ctx.player_range(player.id)
        player.discoveries[discovery.bonus_kind] = player.bonus(discovery.bonus_kind) + 1
        if discovery.bonus_kind == "nanotech":
            player.army_gen_rate *= 1.0 - NANOTECH_GEN_BONUS
        elif discovery.bonus_kind == "drive":
            new_range = ctx.player_range(player.id)
            if new_range != old_range:
                # one adjacency rebuild per drive discovery; cached afterwards
                ctx.ranges.adjacency_for(new_range)

    if discovery.id != "standard_planet":
        logger.info(
            "t=%d: %s discovered %s at territory #%d",
            ctx.state.tick, player.name, discovery.name, territory.id,
        )


def process_discovery(ctx: GameContext, territory: Territory, player: Player) -> Discovery:
    discovery = roll_discovery(ctx.rng.random())
    apply_discovery(ctx, territory, player, discovery)
    return discovery
