#!/usr/bin/env python3
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

_BASE_DIR = Path(__file__).resolve().parent
_CONFIG_PATH = _BASE_DIR / "config" / "sim_config.json"

# Keys only the server adapter reads; they never reach GameConfig.
_SERVER_KEYS = {"port"}


def _load_config() -> Dict[str, Any]:
    if not _CONFIG_PATH.exists():
        raise FileNotFoundError(f"Config file not found: {_CONFIG_PATH}")
    with _CONFIG_PATH.open("r", encoding="utf-8") as f:
        return json.load(f)


SIM_CONFIG: Dict[str, Any] = _load_config()


@dataclass(frozen=True)
class GameConfig:
    """
    Immutable tunables for one game.

    Read once at game start. All time values are milliseconds of simulated
    time at ``game_speed == 1.0``; ``game_speed`` scales every time-based
    rate uniformly.
    """

    # Map
    map_width: float = 2000.0
    map_height: float = 2000.0
    territory_count: int = 200
    territory_radius: float = 25.0
    min_territory_spacing: float = 80.0
    hidden_army_max: int = 50
    jump_range: float = 120.0
    spatial_cell_size: float = 100.0

    # Clock
    tick_rate: int = 20
    game_speed: float = 1.0
    game_timer_minutes: float = 10.0
    human_player_count: int = 1
    ai_player_count: int = 19

    # Armies
    army_generation_rate: float = 1500.0  # ms per army
    initial_starting_army: int = 50
    initial_colonized_army_size: int = 1

    # Probes / fleets
    probe_cost: int = 10
    probe_update_interval_ms: float = 50.0
    probe_speed_units_per_update: float = 1.25
    subspace_speed: float = 1 / 6.0
    long_range_base_speed: float = 25.0
    long_range_min_duration: float = 1000.0
    long_range_max_duration: float = 20000.0
    ai_max_long_range_fleets: int = 2
    ai_surplus_threshold: int = 10

    # Combat
    min_attack_armies: int = 2
    army_left_after_attack: int = 1
    attack_base_multiplier: float = 0.8
    attack_random_range: float = 0.4
    defense_base_multiplier: float = 0.9
    defense_random_range: float = 0.2
    attacker_survival_rate: float = 0.7
    defender_survival_rate: float = 0.8

    # Supply routes
    supply_transfer_interval_ms: float = 3000.0
    supply_validation_interval_ms: float = 4500.0
    supply_delay_per_hop_ms: float = 2000.0
    supply_max_transfer: Optional[int] = None
    supply_min_garrison: int = 0
    max_routes_per_player: int = 20

    # AI
    ai_decision_interval_ms: float = 1000.0
    ai_decision_jitter_ms: float = 500.0
    ai_group_count: int = 4
    ai_aggression_threshold: float = 0.3
    ai_attack_strength_multiplier: float = 1.5
    ai_worker_threads: int = 0

    @property
    def tick_interval_ms(self) -> float:
        return 1000.0 / float(self.tick_rate)

    @property
    def game_duration_ms(self) -> float:
        """Simulated duration before the timer win condition applies (0 disables)."""
        return self.game_timer_minutes * 60_000.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GameConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known - _SERVER_KEYS
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")
        cfg = cls(**{k: v for k, v in data.items() if k in known})
        cfg.validate()
        return cfg

    def validate(self) -> None:
        if self.tick_rate <= 0:
            raise ValueError("tick_rate must be positive")
        if self.game_speed <= 0:
            raise ValueError("game_speed must be positive")
        if self.ai_group_count <= 0:
            raise ValueError("ai_group_count must be positive")
        if self.long_range_min_duration > self.long_range_max_duration:
            raise ValueError("long_range_min_duration exceeds long_range_max_duration")
        if self.army_left_after_attack < 1:
            raise ValueError("army_left_after_attack must keep at least one army at the source")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_game_config(**overrides: Any) -> GameConfig:
    """Build a GameConfig from ``sim_config.json`` with optional overrides."""
    merged = {k: v for k, v in SIM_CONFIG.items() if k not in _SERVER_KEYS}
    merged.update(overrides)
    return GameConfig.from_dict(merged)
