#!/usr/bin/env python3
"""
Supply routes: standing orders that move armies between a player's own
territories along a fixed path.

Transfers and validation run on their own intervals; the engine keeps the
accumulators and calls in here when a pass is due.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from graph import find_path, is_valid_chain
from world import (
    CommandValidationError,
    GameContext,
    GameState,
    SupplyDelivery,
    SupplyRoute,
    adjacency_from_state,
)

logger = logging.getLogger(__name__)


def _owned_adjacency(state: GameState, player_id: str) -> List[List[int]]:
    """Adjacency restricted to territories owned by ``player_id``."""
    adj: List[List[int]] = []
    for tid in range(len(state.territories)):
        t = state.territories[tid]
        if t.owner_id != player_id:
            adj.append([])
            continue
        adj.append([n for n in t.neighbors if state.territories[n].owner_id == player_id])
    return adj


def find_route(state: GameState, player_id: str, from_id: int, to_id: int) -> Optional[List[int]]:
    return find_path(_owned_adjacency(state, player_id), from_id, to_id)


def create_supply_route(ctx: GameContext, player_id: str, from_id: int, to_id: int) -> SupplyRoute:
    state = ctx.state
    source = state.territories.get(from_id)
    dest = state.territories.get(to_id)
    if source is None or dest is None:
        raise CommandValidationError("Unknown territory")
    if from_id == to_id:
        raise CommandValidationError("A supply route needs two different territories")
    if source.owner_id != player_id or dest.owner_id != player_id:
        raise CommandValidationError("Both ends of a supply route must be your territories")

    active = state.active_routes_for(player_id)
    for route in active:
        if {route.from_id, route.to_id} == {from_id, to_id}:
            raise CommandValidationError("A supply route already links these territories")
    if len(active) >= ctx.config.max_routes_per_player:
        raise CommandValidationError(
            f"Supply route limit reached ({ctx.config.max_routes_per_player})"
        )

    path = find_route(state, player_id, from_id, to_id)
    if path is None:
        raise CommandValidationError("No path through your territories")

    route = SupplyRoute(
        id=state.next_route_id,
        player_id=player_id,
        from_id=from_id,
        to_id=to_id,
        path=path,
    )
    state.next_route_id += 1
    state.supply_routes.append(route)
    logger.info(
        "t=%d: %s created supply route %d: %d -> %d (%d hops)",
        state.tick, player_id, route.id, from_id, to_id, len(path) - 1,
    )
    return route


def process_transfers(ctx: GameContext) -> List[SupplyDelivery]:
    """
    One transfer pass over every active route.

    Amounts are planned first against a per-source budget and only then
    deducted, so routes sharing a source split what it has instead of each
    spending the full army.
    """
    state = ctx.state
    cfg = ctx.config
    floor = cfg.supply_min_garrison
    budget: Dict[int, int] = {}
    planned: List[Tuple[SupplyRoute, int]] = []

    for route in state.supply_routes:
        if not route.active:
            continue
        source = state.territories[route.from_id]
        dest = state.territories[route.to_id]
        if source.owner_id != route.player_id or dest.owner_id != route.player_id:
            continue
        available = budget.setdefault(source.id, max(0, source.army_size - floor))
        if available <= 0:
            continue
        amount = available if cfg.supply_max_transfer is None else min(available, cfg.supply_max_transfer)
        if amount <= 0:
            continue
        budget[source.id] = available - amount
        planned.append((route, amount))

    created: List[SupplyDelivery] = []
    for route, amount in planned:
        state.territories[route.from_id].army_size -= amount
        hops = max(1, len(route.path) - 1)
        delivery = SupplyDelivery(
            route_id=route.id,
            player_id=route.player_id,
            to_id=route.to_id,
            amount=amount,
            remaining_ms=hops * cfg.supply_delay_per_hop_ms / cfg.game_speed,
        )
        state.deliveries.append(delivery)
        created.append(delivery)

    if created:
        logger.debug("t=%d: %d supply transfers dispatched", state.tick, len(created))
    return created


def advance_deliveries(ctx: GameContext, delta_ms: float) -> List[SupplyDelivery]:
    """Count down in-transit armies; land those that are due. Returns landed deliveries."""
    state = ctx.state
    landed: List[SupplyDelivery] = []
    pending: List[SupplyDelivery] = []
    for d in state.deliveries:
        d.remaining_ms -= delta_ms
        if d.remaining_ms > 0:
            pending.append(d)
            continue
        dest = state.territories[d.to_id]
        if dest.owner_id == d.player_id:
            dest.army_size += d.amount
            landed.append(d)
        else:
            # destination lost while in transit
            logger.debug(
                "t=%d: %d supply armies lost at territory #%d", state.tick, d.amount, d.to_id
            )
    state.deliveries = pending
    return landed


def _route_problem(state: GameState, route: SupplyRoute, adjacency: List[List[int]]) -> Optional[str]:
    for tid in (route.from_id, route.to_id):
        if state.territories[tid].owner_id != route.player_id:
            return "endpoint changed owner"
    for tid in route.path:
        if state.territories[tid].owner_id != route.player_id:
            return "path crosses foreign territory"
    if not is_valid_chain(adjacency, route.path):
        return "path edge no longer adjacent"
    return None


def validate_routes(ctx: GameContext) -> List[SupplyRoute]:
    """Deactivate every route that is no longer valid. Returns those routes."""
    state = ctx.state
    adjacency = adjacency_from_state(state)
    dropped: List[SupplyRoute] = []
    for route in state.supply_routes:
        if not route.active:
            continue
        problem = _route_problem(state, route, adjacency)
        if problem is None:
            continue
        route.active = False
        route.deactivated_reason = problem
        dropped.append(route)
        logger.info(
            "t=%d: supply route %d (%d->%d) deactivated: %s",
            state.tick, route.id, route.from_id, route.to_id, problem,
        )
    return dropped


def deactivate_routes_touching(state: GameState, territory_id: int, reason: str = "owner changed") -> int:
    return state.deactivate_routes_touching(territory_id, reason)
