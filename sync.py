#!/usr/bin/env python3
"""
Wire snapshots, deltas and per-connection sync bookkeeping.

Snapshots are plain JSON-ready dicts with camelCase keys. Territory and player
maps are keyed by string id so they survive a JSON round trip unchanged.
"""
from __future__ import annotations

import json
import logging
import zlib
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Optional

from world import CombatResult, CommandError, GameState, Player, Probe, SupplyRoute, Territory

logger = logging.getLogger(__name__)

FULL_STATE = "FULL_STATE"
DELTA_STATE = "DELTA_STATE"
COMBAT_RESULT = "COMBAT_RESULT"
COMMAND_ERROR = "COMMAND_ERROR"
TERRITORY_SELECTED = "TERRITORY_SELECTED"

# Ticks whose checksums are kept for STATE_ACK verification
CHECKSUM_HISTORY = 64

_SCALARS = ("gamePhase", "winner", "lastUpdate")
_LISTS = ("probes", "supplyRoutes")
_MAPS = ("territories", "players")


def territory_to_wire(t: Territory) -> Dict[str, Any]:
    return {
        "id": t.id,
        "ownerId": t.owner_id,
        "armySize": t.army_size,
        "hiddenArmySize": t.hidden_army_size,
        "x": t.x,
        "y": t.y,
        "radius": t.radius,
        "neighbors": list(t.neighbors),
        "isColonizable": t.is_colonizable,
        "lastCombatFlash": t.last_combat_flash,
        "discovery": t.discovery,
    }


def player_to_wire(p: Player) -> Dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "type": p.type,
        "color": p.color,
        "territoriesOwned": p.territories_owned,
        "totalArmies": p.total_armies,
        "isEliminated": p.is_eliminated,
        "armyGenRate": p.army_gen_rate,
        "discoveries": dict(p.discoveries),
    }


def probe_to_wire(p: Probe) -> Dict[str, Any]:
    return {
        "id": p.id,
        "fromTerritoryId": p.from_territory_id,
        "toTerritoryId": p.to_territory_id,
        "playerId": p.player_id,
        "progress": p.progress,
        "startTime": p.start_time,
        "duration": p.duration,
        "longRange": p.long_range,
    }


def route_to_wire(r: SupplyRoute) -> Dict[str, Any]:
    return {
        "id": r.id,
        "playerId": r.player_id,
        "from": r.from_id,
        "to": r.to_id,
        "path": list(r.path),
        "active": r.active,
    }


def snapshot_state(state: GameState) -> Dict[str, Any]:
    """Full wire view of ``state``."""
    return {
        "tick": state.tick,
        "gamePhase": state.game_phase,
        "winner": state.winner,
        "lastUpdate": state.last_update,
        "territories": {str(tid): territory_to_wire(t) for tid, t in state.territories.items()},
        "players": {pid: player_to_wire(p) for pid, p in state.players.items()},
        "probes": [probe_to_wire(p) for p in state.probes],
        "supplyRoutes": [route_to_wire(r) for r in state.supply_routes],
    }


def _diff_map(prev: Dict[str, dict], cur: Dict[str, dict]) -> Dict[str, dict]:
    changed: Dict[str, dict] = {}
    for key, entry in cur.items():
        old = prev.get(key)
        if old is None:
            changed[key] = entry
            continue
        fields = {k: v for k, v in entry.items() if old.get(k) != v}
        if fields:
            changed[key] = fields
    return changed


def compute_delta(prev: Dict[str, Any], cur: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fields of ``cur`` that differ from ``prev``.

    Territories and players carry only their changed fields; probe and route
    lists are sent whole when anything in them changed. ``tick`` is always set.
    """
    delta: Dict[str, Any] = {"tick": cur["tick"]}
    for key in _SCALARS:
        if prev.get(key) != cur.get(key):
            delta[key] = cur.get(key)
    for key in _MAPS:
        changed = _diff_map(prev.get(key, {}), cur.get(key, {}))
        if changed:
            delta[key] = changed
    removed = [pid for pid in prev.get("players", {}) if pid not in cur.get("players", {})]
    if removed:
        delta["removedPlayers"] = removed
    for key in _LISTS:
        if prev.get(key) != cur.get(key):
            delta[key] = cur.get(key)
    return delta


def apply_delta(snapshot: Dict[str, Any], delta: Dict[str, Any]) -> Dict[str, Any]:
    """Client-side counterpart of ``compute_delta``; returns a new snapshot."""
    out = dict(snapshot)
    out["tick"] = delta["tick"]
    for key in _SCALARS + _LISTS:
        if key in delta:
            out[key] = delta[key]
    for key in _MAPS:
        if key not in delta:
            continue
        merged = dict(out.get(key, {}))
        for item_id, fields in delta[key].items():
            merged[item_id] = {**merged.get(item_id, {}), **fields}
        out[key] = merged
    if "removedPlayers" in delta:
        out["players"] = {k: v for k, v in out["players"].items() if k not in delta["removedPlayers"]}
    return out


def state_checksum(snapshot: Dict[str, Any]) -> int:
    """CRC32 of the snapshot's canonical JSON encoding."""
    blob = json.dumps(snapshot, sort_keys=True, separators=(",", ":"))
    return zlib.crc32(blob.encode("utf-8")) & 0xFFFFFFFF


# ---------- Outbound messages ----------


def game_state_update(kind: str, game_state: Dict[str, Any], timestamp: float) -> Dict[str, Any]:
    return {"type": kind, "gameState": game_state, "timestamp": timestamp}


def combat_result_message(res: CombatResult) -> Dict[str, Any]:
    return {
        "type": COMBAT_RESULT,
        "attackerId": res.attacker_id,
        "defenderId": res.defender_id,
        "fromTerritoryId": res.from_territory_id,
        "toTerritoryId": res.to_territory_id,
        "result": res.result,
        "survivingArmies": res.surviving_armies,
        "timestamp": res.timestamp,
    }


def command_error_message(err: CommandError) -> Dict[str, Any]:
    return {
        "type": COMMAND_ERROR,
        "command": err.command.value if hasattr(err.command, "value") else err.command,
        "reason": err.reason,
        "timestamp": err.timestamp,
    }


def territory_selected_message(territory: Territory, timestamp: float) -> Dict[str, Any]:
    return {"type": TERRITORY_SELECTED, "territory": territory_to_wire(territory), "timestamp": timestamp}


# ---------- Per-connection sync ----------


@dataclass
class ConnectionSync:
    conn_id: str
    last_sent: Optional[Dict[str, Any]] = None
    needs_full: bool = True
    desyncs: int = 0


class StateSynchronizer:
    """
    Tracks what each connection last received and decides between FULL_STATE
    and DELTA_STATE. Desync on any connection only forces a full resend to
    that connection.
    """

    def __init__(self):
        self._conns: Dict[str, ConnectionSync] = {}
        self._checksums: "OrderedDict[int, int]" = OrderedDict()

    def __contains__(self, conn_id: str) -> bool:
        return conn_id in self._conns

    def __len__(self) -> int:
        return len(self._conns)

    def register(self, conn_id: str) -> ConnectionSync:
        conn = ConnectionSync(conn_id=conn_id)
        self._conns[conn_id] = conn
        return conn

    def unregister(self, conn_id: str) -> None:
        self._conns.pop(conn_id, None)

    def request_resync(self, conn_id: str) -> None:
        conn = self._conns.get(conn_id)
        if conn is not None:
            conn.needs_full = True

    def needs_full(self, conn_id: str) -> bool:
        conn = self._conns.get(conn_id)
        return conn is None or conn.needs_full

    def verify(self, conn_id: str, tick: int, checksum: int) -> bool:
        """Compare a client's acknowledged checksum with what was sent for ``tick``."""
        conn = self._conns.get(conn_id)
        if conn is None:
            return False
        expected = self._checksums.get(tick)
        if expected is not None and expected == checksum:
            return True
        conn.needs_full = True
        conn.desyncs += 1
        logger.warning(
            "Desync on %s at tick %d (expected %s, got %s); forcing full state",
            conn_id, tick, expected, checksum,
        )
        return False

    def updates_for(self, snapshot: Dict[str, Any], timestamp: float) -> Dict[str, Dict[str, Any]]:
        """One GameStateUpdate per registered connection for ``snapshot``."""
        self._checksums[snapshot["tick"]] = state_checksum(snapshot)
        while len(self._checksums) > CHECKSUM_HISTORY:
            self._checksums.popitem(last=False)

        deltas: Dict[int, Dict[str, Any]] = {}
        out: Dict[str, Dict[str, Any]] = {}
        for conn_id, conn in self._conns.items():
            if conn.needs_full or conn.last_sent is None:
                out[conn_id] = game_state_update(FULL_STATE, snapshot, timestamp)
                conn.needs_full = False
            else:
                # connections that saw the same previous snapshot share one diff
                key = id(conn.last_sent)
                if key not in deltas:
                    deltas[key] = compute_delta(conn.last_sent, snapshot)
                out[conn_id] = game_state_update(DELTA_STATE, deltas[key], timestamp)
            conn.last_sent = snapshot
        return out

    def full_update(self, conn_id: str, snapshot: Dict[str, Any], timestamp: float) -> Dict[str, Any]:
        """FULL_STATE for a single connection outside the tick broadcast (e.g. on connect)."""
        conn = self._conns.get(conn_id) or self.register(conn_id)
        self._checksums[snapshot["tick"]] = state_checksum(snapshot)
        conn.last_sent = snapshot
        conn.needs_full = False
        return game_state_update(FULL_STATE, snapshot, timestamp)
