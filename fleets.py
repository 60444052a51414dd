#!/usr/bin/env python3
"""
Probe / fleet scheduler.

Probes are launched from an owned territory, travel for a duration derived
from distance and speed class, and resolve exactly once on arrival.
"""
from __future__ import annotations

import logging
from typing import List

from combat import apply_attack
from discoveries import process_discovery
from world import (
    CommandValidationError,
    GameContext,
    GameState,
    Probe,
    distance,
    set_owner,
)

logger = logging.getLogger(__name__)


def short_range_duration(dist: float, ctx: GameContext, speed_bonus: float = 0.0) -> float:
    cfg = ctx.config
    ms = dist / cfg.probe_speed_units_per_update * cfg.probe_update_interval_ms
    return ms / cfg.game_speed / (1.0 + speed_bonus)


def long_range_duration(dist: float, ctx: GameContext, speed_bonus: float = 0.0) -> float:
    """Subspace travel time, clamped so very short and very long hops stay playable."""
    cfg = ctx.config
    ms = dist / (cfg.long_range_base_speed * cfg.subspace_speed) * 1000.0
    ms = max(cfg.long_range_min_duration, min(cfg.long_range_max_duration, ms))
    return ms / cfg.game_speed / (1.0 + speed_bonus)


def outstanding_long_range(state: GameState, player_id: str) -> int:
    return sum(1 for p in state.probes if p.player_id == player_id and p.long_range and not p.resolved)


def launch_probe(ctx: GameContext, player_id: str, from_id: int, to_id: int) -> Probe:
    """
    Validate and launch a probe from ``from_id`` toward ``to_id``.

    Raises CommandValidationError before touching the state when the source is
    not owned by the player, holds too few armies, or the target is neither
    adjacent nor reachable on the player's range graph.
    """
    state = ctx.state
    cfg = ctx.config
    player = state.players.get(player_id)
    if player is None:
        raise CommandValidationError(f"Unknown player {player_id}")

    source = state.territories.get(from_id)
    target = state.territories.get(to_id)
    if source is None or target is None:
        raise CommandValidationError("Unknown territory")
    if from_id == to_id:
        raise CommandValidationError("Probe target must differ from its source")
    if source.owner_id != player_id:
        raise CommandValidationError("You don't own the source territory")
    if source.army_size <= cfg.probe_cost:
        raise CommandValidationError(
            f"Need more than {cfg.probe_cost} armies to launch a probe (have {source.army_size})"
        )

    long_range = to_id not in source.neighbors
    if long_range:
        path = ctx.ranges.path_for(ctx.player_range(player_id), from_id, to_id)
        if path is None:
            raise CommandValidationError("Target is out of range")
        if player.is_ai:
            if outstanding_long_range(state, player_id) >= cfg.ai_max_long_range_fleets:
                raise CommandValidationError("Too many long-range fleets in flight")
            if source.army_size - cfg.probe_cost < cfg.ai_surplus_threshold:
                raise CommandValidationError("Not enough surplus armies for a long-range fleet")

    dist = distance(state, from_id, to_id)
    if long_range:
        duration = long_range_duration(dist, ctx, player.speed_bonus)
    else:
        duration = short_range_duration(dist, ctx, player.speed_bonus)

    source.army_size -= cfg.probe_cost
    probe = Probe(
        id=state.next_probe_id,
        from_territory_id=from_id,
        to_territory_id=to_id,
        player_id=player_id,
        start_time=state.clock_ms,
        duration=max(duration, 1.0),
        armies=cfg.probe_cost,
        long_range=long_range,
    )
    state.next_probe_id += 1
    state.probes.append(probe)
    logger.debug(
        "t=%d: %s launched %s probe %d: %d -> %d (%.0f ms)",
        state.tick, player_id, "long-range" if long_range else "short-range",
        probe.id, from_id, to_id, probe.duration,
    )
    return probe


def resolve_arrival(ctx: GameContext, probe: Probe) -> str:
    """
    Apply a probe's arrival. Returns "colonized", "combat", "reinforced", or
    "lost" when the sender has been eliminated meanwhile.

    The branch is chosen by the target's owner at arrival time, not at launch.
    """
    state = ctx.state
    target = state.territories[probe.to_territory_id]
    player = state.players.get(probe.player_id)
    if player is None or player.is_eliminated:
        return "lost"

    if target.is_colonizable:
        set_owner(state, target, probe.player_id, ctx.config.initial_colonized_army_size)
        logger.info("t=%d: %s colonized territory #%d", state.tick, probe.player_id, target.id)
        process_discovery(ctx, target, player)
        return "colonized"

    if target.owner_id == probe.player_id:
        target.army_size += probe.armies
        return "reinforced"

    apply_attack(ctx, probe.player_id, probe.from_territory_id, target, probe.armies)
    return "combat"


def advance_probes(ctx: GameContext, delta_ms: float) -> List[Probe]:
    """Move every in-flight probe forward; returns the probes that arrived."""
    arrived: List[Probe] = []
    for probe in ctx.state.probes:
        if probe.resolved:
            continue
        probe.elapsed_ms += delta_ms
        if probe.duration <= 0:
            progress = 1.0
        else:
            progress = min(1.0, probe.elapsed_ms / probe.duration)
        probe.progress = max(probe.progress, progress)
        if probe.progress >= 1.0:
            probe.resolved = True
            probe.outcome = resolve_arrival(ctx, probe)
            arrived.append(probe)

    if arrived:
        ctx.state.probes = [p for p in ctx.state.probes if not p.resolved]
    return arrived
