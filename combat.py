#!/usr/bin/env python3
"""
Combat resolution.

``resolve_combat`` is pure: callers pass army counts and a randomness source
and get an outcome back. ``apply_attack`` writes an outcome onto the state.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Protocol

from config import GameConfig
from world import CombatResult, GameContext, Territory, set_owner

logger = logging.getLogger(__name__)


class RandomSource(Protocol):
    def random(self) -> float: ...


@dataclass(frozen=True)
class CombatOutcome:
    victory: bool
    attacking_armies: int
    defending_armies: int
    attack_power: float
    defense_power: float
    attacker_survivors: int
    defender_survivors: int

    @property
    def target_army(self) -> int:
        """Army left on the contested territory, whoever owns it afterwards."""
        return self.defender_survivors

    @property
    def result(self) -> str:
        return "victory" if self.victory else "defeat"


def can_attack(army_size: int, config: GameConfig) -> bool:
    return army_size >= config.min_attack_armies


def committed_armies(army_size: int, config: GameConfig) -> int:
    """Armies sent when attacking from a territory; the rest stays home."""
    return max(0, army_size - config.army_left_after_attack)


def resolve_combat(
    attacking_armies: int,
    defending_armies: int,
    config: GameConfig,
    rng: RandomSource,
    attack_bonus: float = 0.0,
    defense_bonus: float = 0.0,
) -> CombatOutcome:
    """
    One round of battle between a committed force and a garrison.

    attack  = attackers * (base_a + U[0, range_a]) * (1 + attack_bonus)
    defense = defenders * (base_d + U[0, range_d]) * (1 + defense_bonus)

    Strictly greater attack power wins. Survivors are rounded down.
    """
    if attacking_armies < 0 or defending_armies < 0:
        raise ValueError("army counts must be non-negative")

    attack_mult = config.attack_base_multiplier + rng.random() * config.attack_random_range
    defense_mult = config.defense_base_multiplier + rng.random() * config.defense_random_range
    attack_power = attacking_armies * attack_mult * (1.0 + attack_bonus)
    defense_power = defending_armies * defense_mult * (1.0 + defense_bonus)

    return CombatOutcome(
        victory=attack_power > defense_power,
        attacking_armies=attacking_armies,
        defending_armies=defending_armies,
        attack_power=attack_power,
        defense_power=defense_power,
        attacker_survivors=max(0, math.floor(attacking_armies * config.attacker_survival_rate)),
        defender_survivors=max(0, math.floor(defending_armies * config.defender_survival_rate)),
    )


def apply_attack(ctx: GameContext, attacker_id: str, from_id: int, target: Territory, attacking_armies: int) -> CombatResult:
    """
    Resolve ``attacking_armies`` against ``target`` and write the outcome back.

    The caller has already removed the committed armies from their source.
    The result is also queued on ``ctx.combat_results`` for broadcast.
    """
    state = ctx.state
    defender_id = target.owner_id
    attacker = state.players.get(attacker_id)
    defender = state.players.get(defender_id) if defender_id else None

    outcome = resolve_combat(
        attacking_armies,
        target.army_size,
        ctx.config,
        ctx.rng,
        attack_bonus=attacker.attack_bonus if attacker else 0.0,
        defense_bonus=defender.defense_bonus if defender else 0.0,
    )
    target.last_combat_flash = ctx.now()

    if outcome.victory:
        set_owner(state, target, attacker_id, outcome.target_army)
        logger.info(
            "t=%d: %s took territory #%d from %s (%.1f vs %.1f)",
            state.tick, attacker_id, target.id, defender_id, outcome.attack_power, outcome.defense_power,
        )
    else:
        target.army_size = outcome.target_army
        logger.debug(
            "t=%d: %s failed to take territory #%d (%.1f vs %.1f)",
            state.tick, attacker_id, target.id, outcome.attack_power, outcome.defense_power,
        )

    result = CombatResult(
        attacker_id=attacker_id,
        defender_id=defender_id,
        from_territory_id=from_id,
        to_territory_id=target.id,
        result=outcome.result,
        surviving_armies=outcome.target_army,
        timestamp=ctx.now(),
    )
    ctx.combat_results.append(result)
    return result
