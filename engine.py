#!/usr/bin/env python3
"""
Authoritative tick loop.

``GameEngine.advance`` is the single writer: it runs the staggered AI group,
applies pending commands, advances probes and supply, generates armies,
checks for a winner and takes the tick's snapshot, in that order.
"""
from __future__ import annotations

import logging
import random
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from bots import (
    HUMAN_COLOR,
    BotState,
    generate_ai_name,
    new_bot,
    partition_groups,
    player_color,
    run_group,
    schedule_next,
    update_bot_memory,
)
from commands import apply_command
from config import GameConfig, load_game_config
from fleets import advance_probes
from supply import advance_deliveries, process_transfers, validate_routes
from sync import snapshot_state, territory_selected_message
from world import (
    AI,
    HUMAN,
    PHASE_ENDED,
    PHASE_LOBBY,
    PHASE_PLAYING,
    CombatResult,
    Command,
    CommandError,
    CommandType,
    CommandValidationError,
    GameContext,
    Player,
    Probe,
    build_world,
    create_galaxy,
    distribute_starting_territories,
    recompute_player_stats,
)

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    tick: int
    combat_results: List[CombatResult] = field(default_factory=list)
    command_errors: Dict[str, List[CommandError]] = field(default_factory=dict)  # issuer only
    selections: Dict[str, List[dict]] = field(default_factory=dict)  # issuer only
    arrivals: List[Probe] = field(default_factory=list)
    eliminated: List[str] = field(default_factory=list)
    timestamp: float = 0.0  # lastUpdate of the snapshot
    snapshot: Dict[str, Any] = field(default_factory=dict)


class GameEngine:
    """
    One game: config, state and the accumulators that drive it.

    Pass ``positions`` to build the map from explicit coordinates instead of
    generating a galaxy.
    """

    def __init__(
        self,
        config: Optional[GameConfig] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None,
        positions: Optional[Sequence[Tuple[float, float]]] = None,
        hidden_armies: Optional[Sequence[int]] = None,
    ):
        self.config = config or load_game_config()
        self.rng = rng or random.Random()
        if positions is not None:
            state, ranges, spatial = build_world(positions, self.config, self.rng, hidden_armies)
        else:
            state, ranges, spatial = create_galaxy(self.config, self.rng)

        self.ctx = GameContext(config=self.config, state=state, rng=self.rng, ranges=ranges, spatial=spatial)
        if clock is not None:
            self.ctx.clock = clock

        self.bots: Dict[str, BotState] = {}
        self.groups: List[List[str]] = [[] for _ in range(self.config.ai_group_count)]
        self._pending: List[Command] = []
        self._last_snapshot: Optional[Dict[str, Any]] = None
        self._transfer_ms = 0.0
        self._validation_ms = 0.0
        self._human_count = 0
        self._executor: Optional[ThreadPoolExecutor] = None
        if self.config.ai_worker_threads > 0:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.ai_worker_threads, thread_name_prefix="ai"
            )

    @property
    def state(self):
        return self.ctx.state

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    # ---------- Lobby ----------

    def add_player(
        self,
        name: str,
        player_type: str = HUMAN,
        player_id: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Player:
        if self.state.game_phase != PHASE_LOBBY:
            raise ValueError("Players can only join while the game is in the lobby")
        if player_type not in (HUMAN, AI):
            raise ValueError(f"Unknown player type {player_type!r}")

        if player_id is None:
            prefix = "ai" if player_type == AI else "human"
            player_id = f"{prefix}_{len(self.state.players)}"
        if player_id in self.state.players:
            raise ValueError(f"Player id {player_id} already taken")

        player = Player(
            id=player_id,
            name=name,
            type=player_type,
            color=color or (HUMAN_COLOR if player_type == HUMAN else player_color(len(self.bots))),
            army_gen_rate=self.config.army_generation_rate,
        )
        self.state.players[player_id] = player
        if player_type == AI:
            bot = new_bot(player_id, self.rng)
            schedule_next(bot, self.state.clock_ms, self.config)
            self.bots[player_id] = bot
        else:
            self._human_count += 1
        logger.info("Player %s joined as %s (%s)", name, player_type, player_id)
        return player

    def add_ai_players(self, count: Optional[int] = None) -> List[Player]:
        count = self.config.ai_player_count if count is None else count
        start = len(self.bots)
        return [self.add_player(generate_ai_name(start + i), AI) for i in range(count)]

    @property
    def human_count(self) -> int:
        return self._human_count

    def start_game(self) -> Dict[str, int]:
        """Hand out starting territories and switch to the playing phase."""
        state = self.state
        if state.game_phase != PHASE_LOBBY:
            raise ValueError(f"Game already started (phase: {state.game_phase})")
        if not state.players:
            raise ValueError("Cannot start a game without players")

        starts = distribute_starting_territories(state, self.config, self.rng)
        self.groups = partition_groups(sorted(self.bots), self.config.ai_group_count)
        state.game_phase = PHASE_PLAYING
        state.last_update = self.ctx.now()
        logger.info(
            "Game started: %d players (%d AI) on %d territories",
            len(state.players), len(self.bots), len(state.territories),
        )
        return starts

    # ---------- Commands ----------

    def submit_command(self, command: Command) -> None:
        """Queue a command for the next tick. Unstamped commands get the current tick."""
        if command.tick is None:
            command.tick = self.state.tick
        if not command.timestamp:
            command.timestamp = self.ctx.now()
        self._pending.append(command)

    def _apply_pending(self, report: TickReport) -> None:
        state = self.state
        now = self.ctx.now()
        pending, self._pending = self._pending, []
        for cmd in pending:
            if cmd.tick is not None and cmd.tick > state.tick:
                self._pending.append(cmd)
                continue
            if cmd.tick is not None and cmd.tick < state.tick:
                logger.debug("t=%d: dropping stale %s from %s (tick %d)", state.tick, cmd.type, cmd.player_id, cmd.tick)
                self._error(report, cmd, "Command expired; resend", now)
                continue
            try:
                result = apply_command(self.ctx, cmd)
            except CommandValidationError as e:
                self._error(report, cmd, str(e), now)
                continue
            if cmd.type == CommandType.SELECT_TERRITORY:
                report.selections.setdefault(cmd.player_id, []).append(
                    territory_selected_message(result, now)
                )

    def _error(self, report: TickReport, cmd: Command, reason: str, now: float) -> None:
        report.command_errors.setdefault(cmd.player_id, []).append(
            CommandError(command=cmd.type, reason=reason, timestamp=now, player_id=cmd.player_id)
        )
        if cmd.player_id in self.bots:
            logger.debug("t=%d: AI %s %s rejected: %s", self.state.tick, cmd.player_id, cmd.type.value, reason)

    # ---------- Tick ----------

    def _run_ai(self) -> None:
        if not self.bots:
            return
        group = self.groups[self.state.tick % len(self.groups)]
        for cmd in run_group(self.ctx, self.bots, group, self._executor):
            cmd.tick = self.state.tick
            cmd.timestamp = self.ctx.now()
            self._pending.append(cmd)

    def _run_supply(self, delta_ms: float) -> None:
        cfg = self.config
        advance_deliveries(self.ctx, delta_ms)

        self._transfer_ms += delta_ms
        interval = cfg.supply_transfer_interval_ms / cfg.game_speed
        if self._transfer_ms >= interval:
            self._transfer_ms -= interval
            process_transfers(self.ctx)

        self._validation_ms += delta_ms
        interval = cfg.supply_validation_interval_ms / cfg.game_speed
        if self._validation_ms >= interval:
            self._validation_ms -= interval
            validate_routes(self.ctx)

    def _generate_armies(self, delta_ms: float) -> None:
        state = self.state
        speed = self.config.game_speed
        for t in state.territories.values():
            if t.owner_id is None:
                continue
            player = state.players.get(t.owner_id)
            if player is None or player.is_eliminated:
                continue
            interval = player.army_gen_rate / t.army_gen_multiplier / speed
            if interval <= 0:
                continue
            t.generation_ms += delta_ms
            if t.generation_ms >= interval:
                produced = int(t.generation_ms // interval)
                t.army_size += produced
                t.generation_ms -= produced * interval

    def _check_winner(self) -> None:
        state = self.state
        if state.game_phase != PHASE_PLAYING:
            return
        alive = [p for p in state.players.values() if not p.is_eliminated and p.territories_owned > 0]
        if len(state.players) >= 2:
            # elimination wins need an opponent
            if len(alive) == 1:
                self._end(alive[0].id, "last player standing")
                return
            if not alive:
                self._end(None, "no players left")
                return

        duration = self.config.game_duration_ms / self.config.game_speed
        if duration > 0 and state.clock_ms >= duration:
            if not alive:
                self._end(None, "timer expired")
                return
            best = max(p.territories_owned for p in alive)
            leaders = [p for p in alive if p.territories_owned == best]
            self._end(leaders[0].id if len(leaders) == 1 else None, "timer expired")

    def _end(self, winner: Optional[str], reason: str) -> None:
        state = self.state
        state.game_phase = PHASE_ENDED
        state.winner = winner
        if winner is None:
            logger.info("t=%d: game ended in a draw (%s)", state.tick, reason)
        else:
            logger.info("t=%d: game won by %s (%s)", state.tick, state.players[winner].name, reason)

    def advance(self, delta_ms: float) -> TickReport:
        """Run one tick of ``delta_ms`` simulated milliseconds."""
        state = self.state
        report = TickReport(tick=state.tick)
        self.ctx.combat_results = []

        if state.game_phase == PHASE_PLAYING:
            state.clock_ms += delta_ms
            state.last_update = self.ctx.now()

            self._run_ai()
            self._apply_pending(report)
            report.arrivals = advance_probes(self.ctx, delta_ms)
            self._run_supply(delta_ms)
            self._generate_armies(delta_ms)

            report.eliminated = recompute_player_stats(state)
            self._check_winner()
            report.combat_results = list(self.ctx.combat_results)
            update_bot_memory(self.bots, report.combat_results, report.arrivals)
        else:
            # outside play only selections are answered
            self._apply_pending(report)

        # diffing per connection happens in StateSynchronizer
        report.snapshot = snapshot_state(state)
        report.timestamp = state.last_update
        self._last_snapshot = report.snapshot

        if state.game_phase != PHASE_LOBBY:
            state.tick += 1
        return report

    def snapshot(self) -> Dict[str, Any]:
        return snapshot_state(self.state)

    @property
    def last_snapshot(self) -> Dict[str, Any]:
        """The snapshot produced by the latest tick, or a fresh one before the first tick."""
        if self._last_snapshot is None:
            return snapshot_state(self.state)
        return self._last_snapshot
