#!/usr/bin/env python3
from __future__ import annotations

import logging
import random
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from combat import can_attack
from config import GameConfig
from fleets import outstanding_long_range
from supply import find_route
from world import (
    CombatResult,
    Command,
    CommandType,
    GameContext,
    GameState,
    Probe,
    Territory,
)

logger = logging.getLogger(__name__)

AGGRESSIVE = "aggressive"
CONSOLIDATING = "consolidating"

HUMAN_COLOR = "#00ffff"
AI_COLORS = ["#ff4444", "#44ff44", "#4444ff", "#ffff44", "#ff44ff", "#44ffff", "#ff8844", "#8844ff"]

FIRST_NAMES = [
    "Alex", "Blake", "Casey", "Dana", "Emma", "Felix", "Grace", "Hunter", "Iris", "Jack",
    "Kai", "Luna", "Max", "Nova", "Owen", "Piper", "Quinn", "Riley", "Sage", "Tyler",
]
CLAN_NAMES = [
    "StarForge", "VoidHunters", "NebulaRise", "CosmicFury", "SolarFlare", "DarkMatter",
    "GalaxyCorp", "NovaStrike", "CelestialWar", "SpaceRaiders", "StellarWolves", "OrbitClan",
]


@dataclass
class BotState:
    player_id: str
    rng: random.Random
    next_decision_ms: float = 0.0
    battles_won: int = 0
    battles_lost: int = 0
    colonized: int = 0
    faults: int = 0
    decisions: int = 0
    last_posture: Optional[str] = None


def generate_ai_name(index: int) -> str:
    first = FIRST_NAMES[index % len(FIRST_NAMES)]
    clan = CLAN_NAMES[(index // len(FIRST_NAMES)) % len(CLAN_NAMES)]
    return f"[{clan}] {first}"


def player_color(index: int) -> str:
    return AI_COLORS[index % len(AI_COLORS)]


def new_bot(player_id: str, seed_rng: random.Random) -> BotState:
    # seeded from the engine rng so a fixed game seed fixes every bot
    return BotState(player_id=player_id, rng=random.Random(seed_rng.random()))


def schedule_next(bot: BotState, now_ms: float, config: GameConfig) -> float:
    """Next decision time: base interval plus jitter, in simulated ms."""
    wait = config.ai_decision_interval_ms + bot.rng.random() * config.ai_decision_jitter_ms
    bot.next_decision_ms = now_ms + wait / config.game_speed
    return bot.next_decision_ms


def partition_groups(ai_ids: Sequence[str], group_count: int) -> List[List[str]]:
    """
    Split ``ai_ids`` into ``group_count`` contiguous groups whose sizes differ
    by at most one. Groups may be empty when there are fewer bots than groups.
    """
    if group_count <= 0:
        raise ValueError("group_count must be positive")
    base, extra = divmod(len(ai_ids), group_count)
    groups: List[List[str]] = []
    start = 0
    for i in range(group_count):
        size = base + (1 if i < extra else 0)
        groups.append(list(ai_ids[start:start + size]))
        start += size
    return groups


# ---------- Board reading helpers ----------


def posture_for(state: GameState, player_id: str, config: GameConfig) -> str:
    total = len(state.territories)
    if total == 0:
        return CONSOLIDATING
    owned = sum(1 for t in state.territories.values() if t.owner_id == player_id)
    return AGGRESSIVE if owned / total < config.ai_aggression_threshold else CONSOLIDATING


def _is_frontier(state: GameState, player_id: str, territory: Territory) -> bool:
    return any(state.territories[n].owner_id != player_id for n in territory.neighbors)


def _probe_targets_in_flight(state: GameState, player_id: str) -> set:
    return {p.to_territory_id for p in state.probes if p.player_id == player_id and not p.resolved}


def _attack_command(ctx: GameContext, player_id: str, bot: BotState, owned: List[Territory]) -> Optional[Command]:
    state = ctx.state
    mult = ctx.config.ai_attack_strength_multiplier
    candidates: List[Tuple[int, int]] = []
    weights: List[float] = []
    for src in owned:
        if not can_attack(src.army_size, ctx.config):
            continue
        for nid in src.neighbors:
            dst = state.territories[nid]
            if dst.is_colonizable or dst.owner_id in (None, player_id):
                continue
            if src.army_size > dst.army_size * mult:
                candidates.append((src.id, nid))
                weights.append(src.army_size / max(1, dst.army_size))
    if not candidates:
        return None
    from_id, to_id = bot.rng.choices(candidates, weights=weights, k=1)[0]
    return Command(
        type=CommandType.ATTACK_TERRITORY,
        player_id=player_id,
        from_id=from_id,
        to_id=to_id,
        reason="attack weaker neighbor",
    )


def _colonize_command(ctx: GameContext, player_id: str, bot: BotState, owned: List[Territory]) -> Optional[Command]:
    state = ctx.state
    pending = _probe_targets_in_flight(state, player_id)
    candidates: List[Tuple[int, int]] = []
    weights: List[float] = []
    for src in owned:
        if src.army_size <= ctx.config.probe_cost:
            continue
        for nid in src.neighbors:
            dst = state.territories[nid]
            if dst.is_colonizable and nid not in pending:
                candidates.append((src.id, nid))
                weights.append(float(src.army_size))
    if not candidates:
        return None
    from_id, to_id = bot.rng.choices(candidates, weights=weights, k=1)[0]
    return Command(
        type=CommandType.LAUNCH_PROBE,
        player_id=player_id,
        from_id=from_id,
        to_id=to_id,
        reason="colonize neighbor",
    )


def _long_range_command(ctx: GameContext, player_id: str, owned: List[Territory]) -> Optional[Command]:
    """Nearest colonizable territory beyond direct jumps, from the richest source."""
    state = ctx.state
    cfg = ctx.config
    if outstanding_long_range(state, player_id) >= cfg.ai_max_long_range_fleets:
        return None
    sources = [t for t in owned if t.army_size - cfg.probe_cost >= cfg.ai_surplus_threshold]
    if not sources:
        return None
    src = max(sources, key=lambda t: (t.army_size, -t.id))
    pending = _probe_targets_in_flight(state, player_id)
    reachable = ctx.ranges.reachable_from(ctx.player_range(player_id), src.id)
    row = ctx.ranges.matrix[src.id]
    best: Optional[int] = None
    for tid in sorted(reachable):
        t = state.territories[tid]
        if not t.is_colonizable or tid in src.neighbors or tid in pending:
            continue
        if best is None or row[tid] < row[best]:
            best = tid
    if best is None:
        return None
    return Command(
        type=CommandType.LAUNCH_PROBE,
        player_id=player_id,
        from_id=src.id,
        to_id=best,
        reason="long-range expansion",
    )


def _transfer_command(ctx: GameContext, player_id: str, owned: List[Territory]) -> Optional[Command]:
    state = ctx.state
    interior = [t for t in owned if t.army_size > 1 and not _is_frontier(state, player_id, t)]
    interior.sort(key=lambda t: (-t.army_size, t.id))
    for src in interior:
        fronts = [
            state.territories[n]
            for n in src.neighbors
            if state.territories[n].owner_id == player_id
            and _is_frontier(state, player_id, state.territories[n])
        ]
        if not fronts:
            continue
        dst = min(fronts, key=lambda t: (t.army_size, t.id))
        return Command(
            type=CommandType.TRANSFER_ARMIES,
            player_id=player_id,
            from_id=src.id,
            to_id=dst.id,
            reason="reinforce frontier",
        )
    return None


def _supply_route_command(ctx: GameContext, player_id: str, owned: List[Territory]) -> Optional[Command]:
    state = ctx.state
    active = state.active_routes_for(player_id)
    if len(active) >= ctx.config.max_routes_per_player:
        return None
    interior = [t for t in owned if not _is_frontier(state, player_id, t)]
    frontier = [t for t in owned if _is_frontier(state, player_id, t)]
    if not interior or not frontier:
        return None
    src = max(interior, key=lambda t: (t.army_size, -t.id))
    linked = {frozenset((r.from_id, r.to_id)) for r in active}
    for dst in sorted(frontier, key=lambda t: (t.army_size, t.id)):
        if frozenset((src.id, dst.id)) in linked:
            continue
        if find_route(state, player_id, src.id, dst.id) is None:
            continue
        return Command(
            type=CommandType.CREATE_SUPPLY_ROUTE,
            player_id=player_id,
            from_id=src.id,
            to_id=dst.id,
            reason="supply frontier",
        )
    return None


def decide(ctx: GameContext, player_id: str, bot: BotState) -> List[Command]:
    """
    Pick this bot's commands for the current decision.

    Only reads the state; the engine applies the returned commands through the
    normal validation path.
    """
    state = ctx.state
    owned = state.owned_by(player_id)
    if not owned:
        return []

    posture = posture_for(state, player_id, ctx.config)
    bot.last_posture = posture
    bot.decisions += 1

    if posture == AGGRESSIVE:
        order = (
            _attack_command(ctx, player_id, bot, owned)
            or _colonize_command(ctx, player_id, bot, owned)
            or _long_range_command(ctx, player_id, owned)
        )
    else:
        order = (
            _transfer_command(ctx, player_id, owned)
            or _supply_route_command(ctx, player_id, owned)
            or _colonize_command(ctx, player_id, bot, owned)
        )
    return [order] if order is not None else []


def _eligible(state: GameState, player_id: str) -> bool:
    player = state.players.get(player_id)
    return player is not None and player.is_ai and not player.is_eliminated


def run_group(
    ctx: GameContext,
    bots: Dict[str, BotState],
    player_ids: Sequence[str],
    executor: Optional[Executor] = None,
) -> List[Command]:
    """
    Evaluate every due bot in ``player_ids`` and collect their commands.

    A bot whose decision raises is logged, counted and skipped for this
    turn; the other bots' commands are still returned.
    """
    now = ctx.state.clock_ms
    due = [
        pid
        for pid in player_ids
        if pid in bots and _eligible(ctx.state, pid) and bots[pid].next_decision_ms <= now
    ]
    if not due:
        return []

    results: Dict[str, List[Command]] = {}
    if executor is not None:
        # warm the range cache on this thread; workers only read it
        for pid in due:
            ctx.player_adjacency(pid)
        futures = {pid: executor.submit(decide, ctx, pid, bots[pid]) for pid in due}
        for pid in due:
            try:
                results[pid] = futures[pid].result()
            except Exception:
                logger.exception("t=%d: AI %s decision failed", ctx.state.tick, pid)
                bots[pid].faults += 1
    else:
        for pid in due:
            try:
                results[pid] = decide(ctx, pid, bots[pid])
            except Exception:
                logger.exception("t=%d: AI %s decision failed", ctx.state.tick, pid)
                bots[pid].faults += 1

    commands: List[Command] = []
    for pid in due:
        schedule_next(bots[pid], now, ctx.config)
        commands.extend(results.get(pid, []))
    return commands


def update_bot_memory(
    bots: Dict[str, BotState],
    combat_results: Sequence[CombatResult],
    arrivals: Sequence[Probe] = (),
) -> None:
    """Fold one tick's outcomes into each bot's counters."""
    for res in combat_results:
        attacker = bots.get(res.attacker_id)
        defender = bots.get(res.defender_id) if res.defender_id else None
        won = res.result == "victory"
        if attacker is not None:
            if won:
                attacker.battles_won += 1
            else:
                attacker.battles_lost += 1
        if defender is not None:
            if won:
                defender.battles_lost += 1
            else:
                defender.battles_won += 1
    for probe in arrivals:
        bot = bots.get(probe.player_id)
        if bot is not None and probe.outcome == "colonized":
            bot.colonized += 1


def get_ai_debug_state(state: GameState, bots: Dict[str, BotState]) -> dict:
    """JSON-serializable view of bot memory for debugging."""
    out = []
    for pid, bot in bots.items():
        player = state.players.get(pid)
        out.append(
            {
                "id": pid,
                "name": player.name if player else pid,
                "territories": player.territories_owned if player else 0,
                "posture": bot.last_posture,
                "nextDecisionMs": bot.next_decision_ms,
                "battlesWon": bot.battles_won,
                "battlesLost": bot.battles_lost,
                "colonized": bot.colonized,
                "faults": bot.faults,
                "decisions": bot.decisions,
            }
        )
    return {"tick": state.tick, "bots": out}
