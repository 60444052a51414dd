#!/usr/bin/env python3
from __future__ import annotations

import logging
import math
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from config import GameConfig
from graph import RangeIndex, SpatialGrid, build_distance_matrix

logger = logging.getLogger(__name__)

HUMAN = "human"
AI = "ai"

PHASE_LOBBY = "lobby"
PHASE_PLAYING = "playing"
PHASE_ENDED = "ended"

# Empire-wide discovery bonus kinds tracked per player
DISCOVERY_BONUS_KINDS = ("weapons", "shield", "drive", "nanotech")
DRIVE_RANGE_BONUS = 0.2
DRIVE_SPEED_BONUS = 0.2
WEAPONS_ATTACK_BONUS = 0.1
SHIELD_DEFENSE_BONUS = 0.1
NANOTECH_GEN_BONUS = 0.1


@dataclass
class Territory:
    id: int
    x: float
    y: float
    radius: float = 25.0
    owner_id: Optional[str] = None  # None while colonizable
    army_size: int = 0
    hidden_army_size: int = 0  # defenders not yet revealed by a probe
    neighbors: List[int] = field(default_factory=list)
    is_colonizable: bool = True
    last_combat_flash: float = 0.0  # presentation marker, not interpreted here
    generation_ms: float = 0.0  # time accumulated toward the next army
    army_gen_multiplier: float = 1.0  # >1 produces faster
    discovery: Optional[str] = None


@dataclass
class Player:
    id: str
    name: str
    type: str = HUMAN  # "human" | "ai"
    color: str = "#ffffff"
    army_gen_rate: float = 1500.0  # ms per army
    territories_owned: int = 0
    total_armies: int = 0
    is_eliminated: bool = False
    has_owned_territory: bool = False
    discoveries: Dict[str, int] = field(default_factory=dict)

    @property
    def is_ai(self) -> bool:
        return self.type == AI

    def bonus(self, kind: str) -> int:
        return self.discoveries.get(kind, 0)

    @property
    def attack_bonus(self) -> float:
        return WEAPONS_ATTACK_BONUS * self.bonus("weapons")

    @property
    def defense_bonus(self) -> float:
        return SHIELD_DEFENSE_BONUS * self.bonus("shield")

    @property
    def speed_bonus(self) -> float:
        return DRIVE_SPEED_BONUS * self.bonus("drive")

    def jump_range(self, base_range: float) -> float:
        return base_range * (1.0 + DRIVE_RANGE_BONUS * self.bonus("drive"))


@dataclass
class Probe:
    id: int
    from_territory_id: int
    to_territory_id: int
    player_id: str
    start_time: float
    duration: float
    armies: int = 0
    long_range: bool = False
    progress: float = 0.0  # 0..1, never decreases
    elapsed_ms: float = 0.0
    resolved: bool = False
    outcome: Optional[str] = None  # "colonized" | "combat" | "reinforced" | "lost"


@dataclass
class SupplyRoute:
    id: int
    player_id: str
    from_id: int
    to_id: int
    path: List[int]
    active: bool = True
    deactivated_reason: Optional[str] = None


@dataclass
class SupplyDelivery:
    route_id: int
    player_id: str
    to_id: int
    amount: int
    remaining_ms: float


@dataclass
class GameState:
    territories: Dict[int, Territory]
    players: Dict[str, Player] = field(default_factory=dict)
    probes: List[Probe] = field(default_factory=list)
    supply_routes: List[SupplyRoute] = field(default_factory=list)
    deliveries: List[SupplyDelivery] = field(default_factory=list)
    game_phase: str = PHASE_LOBBY
    winner: Optional[str] = None
    tick: int = 0
    last_update: float = 0.0
    clock_ms: float = 0.0  # simulated time, sum of all deltas
    next_probe_id: int = 0
    next_route_id: int = 0

    def owned_by(self, player_id: str) -> List[Territory]:
        return [t for t in self.territories.values() if t.owner_id == player_id]

    def active_routes_for(self, player_id: str) -> List[SupplyRoute]:
        return [r for r in self.supply_routes if r.active and r.player_id == player_id]

    def deactivate_routes_touching(self, territory_id: int, reason: str) -> int:
        """Deactivate every active route that starts or ends at ``territory_id``."""
        count = 0
        for route in self.supply_routes:
            if route.active and territory_id in (route.from_id, route.to_id):
                route.active = False
                route.deactivated_reason = reason
                count += 1
                logger.info(
                    "t=%d: supply route %d (%d->%d) deactivated: %s",
                    self.tick, route.id, route.from_id, route.to_id, reason,
                )
        return count


class CommandType(str, Enum):
    ATTACK_TERRITORY = "ATTACK_TERRITORY"
    TRANSFER_ARMIES = "TRANSFER_ARMIES"
    LAUNCH_PROBE = "LAUNCH_PROBE"
    CREATE_SUPPLY_ROUTE = "CREATE_SUPPLY_ROUTE"
    SELECT_TERRITORY = "SELECT_TERRITORY"


@dataclass
class Command:
    """A validated-on-apply intent, issued by a human client or a bot."""

    type: CommandType
    player_id: str
    from_id: Optional[int] = None
    to_id: Optional[int] = None
    territory_id: Optional[int] = None  # SELECT_TERRITORY only
    timestamp: float = 0.0
    tick: Optional[int] = None  # tick the command was accepted for
    reason: Optional[str] = None  # why a bot chose it (for logs)


class CommandValidationError(Exception):
    """Exception raised when a command fails validation."""
    pass


@dataclass
class CommandError:
    command: CommandType
    reason: str
    timestamp: float
    player_id: Optional[str] = None


@dataclass
class CombatResult:
    attacker_id: str
    defender_id: Optional[str]
    from_territory_id: int
    to_territory_id: int
    result: str  # "victory" | "defeat"
    surviving_armies: int
    timestamp: float


@dataclass
class GameContext:
    """
    Everything a component needs for one tick, passed explicitly.

    The tick loop owns the context; components receive it per call and must
    not keep references to it between ticks.
    """

    config: GameConfig
    state: GameState
    rng: random.Random
    ranges: RangeIndex
    spatial: SpatialGrid
    clock: Callable[[], float] = field(default=lambda: time.time() * 1000.0)
    combat_results: List[CombatResult] = field(default_factory=list)

    def now(self) -> float:
        return self.clock()

    def player_range(self, player_id: str) -> float:
        player = self.state.players.get(player_id)
        if player is None:
            return self.config.jump_range
        return player.jump_range(self.config.jump_range)

    def player_adjacency(self, player_id: str) -> List[List[int]]:
        return self.ranges.adjacency_for(self.player_range(player_id))


# ---------- Ownership bookkeeping ----------


def set_owner(state: GameState, territory: Territory, player_id: str, army_size: int) -> Optional[str]:
    """
    Hand ``territory`` to ``player_id`` with ``army_size`` armies.

    Returns the previous owner. Routes touching the territory are
    deactivated on any change of owner.
    """
    previous = territory.owner_id
    territory.owner_id = player_id
    territory.is_colonizable = False
    territory.army_size = max(0, int(army_size))
    territory.hidden_army_size = 0
    territory.generation_ms = 0.0
    if previous != player_id:
        state.deactivate_routes_touching(territory.id, "owner changed")
        player = state.players.get(player_id)
        if player is not None:
            player.has_owned_territory = True
    return previous


def recompute_player_stats(state: GameState) -> List[str]:
    """Refresh derived player counters. Returns ids eliminated by this pass."""
    counts: Dict[str, int] = {pid: 0 for pid in state.players}
    armies: Dict[str, int] = {pid: 0 for pid in state.players}
    for t in state.territories.values():
        if t.owner_id in counts:
            counts[t.owner_id] += 1
            armies[t.owner_id] += t.army_size

    eliminated: List[str] = []
    for pid, player in state.players.items():
        player.territories_owned = counts[pid]
        player.total_armies = armies[pid]
        if player.territories_owned > 0:
            player.has_owned_territory = True
        elif player.has_owned_territory and not player.is_eliminated:
            player.is_eliminated = True
            eliminated.append(pid)
            logger.info("t=%d: player %s (%s) eliminated", state.tick, player.name, pid)
    return eliminated


# ---------- Map generation ----------


def poisson_disk_sample(
    count: int,
    width: float,
    height: float,
    min_distance: float,
    rng: random.Random,
    max_attempts: int = 30,
) -> List[Tuple[float, float]]:
    """Up to ``count`` points no closer than ``min_distance`` to each other."""
    cell = min_distance / math.sqrt(2)
    cols = int(math.ceil(width / cell))
    rows = int(math.ceil(height / cell))
    grid: Dict[Tuple[int, int], int] = {}
    points: List[Tuple[float, float]] = []
    active: List[int] = []

    def cell_of(p: Tuple[float, float]) -> Tuple[int, int]:
        return int(p[0] / cell), int(p[1] / cell)

    first = (rng.random() * width, rng.random() * height)
    points.append(first)
    active.append(0)
    grid[cell_of(first)] = 0

    while active and len(points) < count:
        idx = rng.randrange(len(active))
        px, py = points[active[idx]]
        found = False
        for _ in range(max_attempts):
            angle = rng.random() * 2 * math.pi
            dist = min_distance + rng.random() * min_distance
            cand = (px + math.cos(angle) * dist, py + math.sin(angle) * dist)
            if not (0 <= cand[0] < width and 0 <= cand[1] < height):
                continue
            gx, gy = cell_of(cand)
            ok = True
            for dx in range(-2, 3):
                for dy in range(-2, 3):
                    nx, ny = gx + dx, gy + dy
                    if not (0 <= nx < cols and 0 <= ny < rows):
                        continue
                    other = grid.get((nx, ny))
                    if other is not None and math.dist(cand, points[other]) < min_distance:
                        ok = False
                        break
                if not ok:
                    break
            if ok:
                points.append(cand)
                active.append(len(points) - 1)
                grid[(gx, gy)] = len(points) - 1
                found = True
                break
        if not found:
            active.pop(idx)

    return points


def build_world(
    positions: Sequence[Tuple[float, float]],
    config: GameConfig,
    rng: Optional[random.Random] = None,
    hidden_armies: Optional[Sequence[int]] = None,
) -> Tuple[GameState, RangeIndex, SpatialGrid]:
    """
    Build a lobby-phase state from explicit positions.

    Territory ids are the position indices, so they line up with the
    distance matrix rows.
    """
    rng = rng or random.Random()
    matrix = build_distance_matrix(positions)
    ranges = RangeIndex(matrix)
    adjacency = ranges.adjacency_for(config.jump_range)
    spatial = SpatialGrid(config.spatial_cell_size)

    territories: Dict[int, Territory] = {}
    for i, (x, y) in enumerate(positions):
        if hidden_armies is not None:
            hidden = int(hidden_armies[i])
        else:
            hidden = rng.randint(1, max(1, config.hidden_army_max))
        territories[i] = Territory(
            id=i,
            x=float(x),
            y=float(y),
            radius=config.territory_radius,
            hidden_army_size=hidden,
            neighbors=list(adjacency[i]),
        )
        spatial.insert(i, float(x), float(y), config.territory_radius)

    return GameState(territories=territories), ranges, spatial


def create_galaxy(config: GameConfig, rng: random.Random) -> Tuple[GameState, RangeIndex, SpatialGrid]:
    positions = poisson_disk_sample(
        config.territory_count,
        config.map_width,
        config.map_height,
        config.min_territory_spacing,
        rng,
    )
    state, ranges, spatial = build_world(positions, config, rng)
    links = sum(len(t.neighbors) for t in state.territories.values()) // 2
    logger.info("Generated %d territories with %d connections", len(positions), links)
    return state, ranges, spatial


def distribute_starting_territories(state: GameState, config: GameConfig, rng: random.Random) -> Dict[str, int]:
    """Give every player exactly one random starting territory."""
    available = sorted(state.territories)
    rng.shuffle(available)
    players = list(state.players.values())
    if len(players) > len(available):
        raise ValueError("More players than territories on the map.")
    starts: Dict[str, int] = {}
    for player, tid in zip(players, available):
        set_owner(state, state.territories[tid], player.id, config.initial_starting_army)
        starts[player.id] = tid
    recompute_player_stats(state)
    return starts


def distance(state: GameState, a: int, b: int) -> float:
    ta = state.territories[a]
    tb = state.territories[b]
    return math.hypot(ta.x - tb.x, ta.y - tb.y)


def adjacency_from_state(state: GameState) -> List[List[int]]:
    """Current ``neighbors`` lists as an id-indexed adjacency list."""
    return [list(state.territories[i].neighbors) for i in range(len(state.territories))]
