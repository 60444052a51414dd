#!/usr/bin/env python3
"""
Command validation and application.

Human clients and bots go through the same path: ``apply_command`` validates
and raises CommandValidationError before mutating anything.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from combat import apply_attack, can_attack, committed_armies
from fleets import launch_probe
from supply import create_supply_route
from world import (
    PHASE_PLAYING,
    Command,
    CommandType,
    CommandValidationError,
    GameContext,
    Territory,
)


def _territory(ctx: GameContext, tid: Optional[int]) -> Territory:
    if tid is None:
        raise CommandValidationError("Missing territory id")
    territory = ctx.state.territories.get(tid)
    if territory is None:
        raise CommandValidationError(f"Unknown territory {tid}")
    return territory


def _endpoints(ctx: GameContext, command: Command):
    source = _territory(ctx, command.from_id)
    target = _territory(ctx, command.to_id)
    if source.id == target.id:
        raise CommandValidationError("Source and target must differ")
    return source, target


def _attack(ctx: GameContext, command: Command):
    source, target = _endpoints(ctx, command)
    pid = command.player_id
    if source.owner_id != pid:
        raise CommandValidationError("You don't own the source territory")
    if target.owner_id == pid:
        raise CommandValidationError("Cannot attack your own territory")
    if target.is_colonizable:
        raise CommandValidationError("Territory is unexplored; launch a probe to colonize it")
    if target.id not in source.neighbors:
        raise CommandValidationError("Target is not adjacent")
    if not can_attack(source.army_size, ctx.config):
        raise CommandValidationError(
            f"Need at least {ctx.config.min_attack_armies} armies to attack (have {source.army_size})"
        )

    sent = committed_armies(source.army_size, ctx.config)
    source.army_size -= sent
    return apply_attack(ctx, pid, source.id, target, sent)


def _transfer(ctx: GameContext, command: Command) -> int:
    source, target = _endpoints(ctx, command)
    pid = command.player_id
    if source.owner_id != pid or target.owner_id != pid:
        raise CommandValidationError("Both territories must be yours")
    if target.id not in source.neighbors:
        raise CommandValidationError("Target is not adjacent")
    if source.army_size <= 1:
        raise CommandValidationError("Not enough armies to transfer")

    amount = source.army_size // 2
    source.army_size -= amount
    target.army_size += amount
    return amount


def _probe(ctx: GameContext, command: Command):
    if command.from_id is None or command.to_id is None:
        raise CommandValidationError("Missing territory id")
    return launch_probe(ctx, command.player_id, command.from_id, command.to_id)


def _supply_route(ctx: GameContext, command: Command):
    if command.from_id is None or command.to_id is None:
        raise CommandValidationError("Missing territory id")
    return create_supply_route(ctx, command.player_id, command.from_id, command.to_id)


def _select(ctx: GameContext, command: Command) -> Territory:
    return _territory(ctx, command.territory_id)


_HANDLERS = {
    CommandType.ATTACK_TERRITORY: _attack,
    CommandType.TRANSFER_ARMIES: _transfer,
    CommandType.LAUNCH_PROBE: _probe,
    CommandType.CREATE_SUPPLY_ROUTE: _supply_route,
    CommandType.SELECT_TERRITORY: _select,
}


def apply_command(ctx: GameContext, command: Command) -> Any:
    """
    Validate and apply one command.

    Returns what the command produced: a CombatResult, the transferred amount,
    a Probe, a SupplyRoute, or the selected Territory.
    """
    player = ctx.state.players.get(command.player_id)
    if player is None:
        raise CommandValidationError(f"Unknown player {command.player_id}")
    if player.is_eliminated:
        raise CommandValidationError("Eliminated players cannot issue commands")
    if command.type != CommandType.SELECT_TERRITORY and ctx.state.game_phase != PHASE_PLAYING:
        raise CommandValidationError(f"Game is not running (phase: {ctx.state.game_phase})")

    handler = _HANDLERS.get(command.type)
    if handler is None:
        raise CommandValidationError(f"Unsupported command {command.type}")
    return handler(ctx, command)


def _int_field(payload: Dict[str, Any], key: str) -> int:
    value = payload.get(key)
    if value is None:
        raise CommandValidationError(f"Missing field '{key}'")
    if isinstance(value, bool):
        raise CommandValidationError(f"Field '{key}' must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise CommandValidationError(f"Field '{key}' must be an integer") from None


def command_from_message(
    player_id: str,
    msg_type: str,
    payload: Optional[Dict[str, Any]] = None,
    timestamp: float = 0.0,
) -> Command:
    """Build a Command from an inbound wire message (camelCase payload keys)."""
    try:
        ctype = CommandType(msg_type)
    except ValueError:
        raise CommandValidationError(f"Unknown command type '{msg_type}'") from None

    payload = payload or {}
    if ctype == CommandType.SELECT_TERRITORY:
        return Command(
            type=ctype,
            player_id=player_id,
            territory_id=_int_field(payload, "territoryId"),
            timestamp=timestamp,
        )
    return Command(
        type=ctype,
        player_id=player_id,
        from_id=_int_field(payload, "fromTerritoryId"),
        to_id=_int_field(payload, "toTerritoryId"),
        timestamp=timestamp,
    )
