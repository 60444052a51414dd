#!/usr/bin/env python3
from __future__ import annotations

import asyncio
import logging
import os
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from bots import get_ai_debug_state
from commands import command_from_message
from config import SIM_CONFIG, GameConfig, load_game_config
from engine import GameEngine, TickReport
from sync import (
    StateSynchronizer,
    combat_result_message,
    command_error_message,
    territory_to_wire,
)
from world import HUMAN, PHASE_ENDED, PHASE_LOBBY, CommandError, CommandValidationError

logger = logging.getLogger(__name__)

# Per-connection outbound backlog before the client is dropped to a full resync
QUEUE_MAX = 256

_simulation_task: asyncio.Task | None = None


class InboundMessage(BaseModel):
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[float] = None
    tick: Optional[int] = None
    checksum: Optional[int] = None


@dataclass
class Client:
    conn_id: str
    player_id: Optional[str]  # None for spectators
    queue: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=QUEUE_MAX))


def create_engine(config: Optional[GameConfig] = None) -> GameEngine:
    eng = GameEngine(config or load_game_config())
    eng.add_ai_players()
    return eng


engine: GameEngine = create_engine()
engine_lock = asyncio.Lock()
synchronizer = StateSynchronizer()
clients: Dict[str, Client] = {}


def reset_server(new_engine: GameEngine) -> None:
    """Swap in a fresh engine and forget every connection."""
    global engine, engine_lock, synchronizer
    engine = new_engine
    engine_lock = asyncio.Lock()
    synchronizer = StateSynchronizer()
    clients.clear()


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine_lock:
        _maybe_start()
    await start_simulation()
    try:
        yield
    finally:
        if _simulation_task is not None:
            _simulation_task.cancel()
            await asyncio.gather(_simulation_task, return_exceptions=True)
        engine.close()


app = FastAPI(lifespan=lifespan)


def _maybe_start() -> None:
    """Start once enough humans have joined (immediately when none are expected)."""
    if engine.state.game_phase != PHASE_LOBBY:
        return
    if engine.human_count >= engine.config.human_player_count:
        engine.start_game()


def _enqueue(client: Client, message: Dict[str, Any]) -> None:
    try:
        client.queue.put_nowait(message)
    except asyncio.QueueFull:
        # client is too far behind: drop the backlog and resend everything
        while not client.queue.empty():
            client.queue.get_nowait()
        synchronizer.request_resync(client.conn_id)
        logger.warning("Client %s fell behind; dropping backlog", client.conn_id)


def _to_player(player_id: str, message: Dict[str, Any]) -> None:
    for client in clients.values():
        if client.player_id == player_id:
            _enqueue(client, message)


def dispatch_report(report: TickReport) -> None:
    """Fan one tick's output out to the connected clients."""
    updates = synchronizer.updates_for(report.snapshot, report.timestamp)
    for conn_id, update in updates.items():
        client = clients.get(conn_id)
        if client is not None:
            _enqueue(client, update)

    for res in report.combat_results:
        msg = combat_result_message(res)
        for client in clients.values():
            _enqueue(client, msg)

    for pid, errors in report.command_errors.items():
        for err in errors:
            _to_player(pid, command_error_message(err))
    for pid, selections in report.selections.items():
        for msg in selections:
            _to_player(pid, msg)


@app.get("/")
async def index():
    """Lightweight health endpoint for the backend."""
    return JSONResponse(
        {
            "status": "ok",
            "service": "starthrone-backend",
            "phase": engine.state.game_phase,
            "tick": engine.state.tick,
            "players": len(engine.state.players),
            "connections": len(clients),
        }
    )


@app.get("/state")
async def state_endpoint():
    async with engine_lock:
        data = engine.last_snapshot
    return JSONResponse(data)


@app.get("/ai")
async def ai_endpoint():
    async with engine_lock:
        data = get_ai_debug_state(engine.state, engine.bots)
    return JSONResponse(data)


@app.get("/territory/{territory_id}")
async def territory_detail(territory_id: int):
    async with engine_lock:
        territory = engine.state.territories.get(territory_id)
        if territory is None:
            return JSONResponse({"error": "not found"}, status_code=404)
        data = territory_to_wire(territory)
        owner = engine.state.players.get(territory.owner_id) if territory.owner_id else None
        data["ownerName"] = owner.name if owner else None
        data["incomingProbes"] = [
            p.id for p in engine.state.probes if p.to_territory_id == territory_id
        ]
        data["supplyRoutes"] = [
            r.id
            for r in engine.state.supply_routes
            if r.active and territory_id in (r.from_id, r.to_id)
        ]
    return JSONResponse(data)


def _join(name: Optional[str], player_id: Optional[str]) -> Optional[str]:
    existing = engine.state.players.get(player_id) if player_id else None
    if existing is not None and existing.type == HUMAN:
        logger.info("WS: player %s reconnected", player_id)
        return player_id
    if existing is not None:
        logger.warning("WS: refusing to attach a connection to %s player %s", existing.type, player_id)
    if name and engine.state.game_phase == PHASE_LOBBY:
        return engine.add_player(name, HUMAN).id
    return None


def _error_for(client: Client, command: str, reason: str) -> None:
    err = CommandError(
        command=command,
        reason=reason,
        timestamp=engine.ctx.now(),
        player_id=client.player_id,
    )
    _enqueue(client, command_error_message(err))


async def handle_message(client: Client, raw: str) -> None:
    try:
        msg = InboundMessage.model_validate_json(raw)
    except ValidationError as e:
        _error_for(client, "INVALID_MESSAGE", f"Malformed message: {e.error_count()} error(s)")
        return

    if msg.type == "RESYNC":
        synchronizer.request_resync(client.conn_id)
        return
    if msg.type == "STATE_ACK":
        if msg.tick is None or msg.checksum is None:
            _error_for(client, msg.type, "STATE_ACK needs tick and checksum")
            return
        synchronizer.verify(client.conn_id, msg.tick, msg.checksum)
        return

    if client.player_id is None:
        _error_for(client, msg.type, "Spectators cannot issue commands")
        return
    try:
        command = command_from_message(client.player_id, msg.type, msg.payload, msg.timestamp or 0.0)
    except CommandValidationError as e:
        _error_for(client, msg.type, str(e))
        return
    async with engine_lock:
        engine.submit_command(command)


async def _sender(ws: WebSocket, client: Client) -> None:
    while True:
        message = await client.queue.get()
        await ws.send_json(message)


@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket, name: Optional[str] = None, player_id: Optional[str] = None):
    await ws.accept()
    async with engine_lock:
        pid = _join(name, player_id)
        client = Client(conn_id=uuid.uuid4().hex, player_id=pid)
        clients[client.conn_id] = client
        synchronizer.register(client.conn_id)
        _maybe_start()
        full = synchronizer.full_update(client.conn_id, engine.snapshot(), engine.ctx.now())
    logger.info("WS: client %s connected as %s", client.conn_id, pid or "spectator")

    await ws.send_json(
        {"type": "WELCOME", "playerId": pid, "connectionId": client.conn_id, "tickRate": engine.config.tick_rate}
    )
    await ws.send_json(full)
    sender = asyncio.create_task(_sender(ws, client))
    try:
        while True:
            raw = await ws.receive_text()
            await handle_message(client, raw)
    except WebSocketDisconnect:
        logger.info("WS: client %s disconnected", client.conn_id)
    except Exception:
        logger.exception("WS: unexpected error in websocket handler")
    finally:
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
        clients.pop(client.conn_id, None)
        synchronizer.unregister(client.conn_id)


async def start_simulation() -> None:
    global _simulation_task
    logger.info("startup: simulation task starting (tick rate %d)", engine.config.tick_rate)

    async def run():
        while True:
            delay = engine.config.tick_interval_ms / 1000.0
            try:
                async with engine_lock:
                    report = engine.advance(engine.config.tick_interval_ms)
                    dispatch_report(report)
                    ended = engine.state.game_phase == PHASE_ENDED
                if report.tick % 200 == 0:
                    logger.debug("SIM: tick %d", report.tick)
                if ended:
                    logger.info("SIM: game over at tick %d, winner=%s", report.tick, engine.state.winner)
                    return
            except Exception:
                logger.exception("SIM: error in background loop")
                await asyncio.sleep(1.0)
                continue
            await asyncio.sleep(delay)

    _simulation_task = asyncio.create_task(run())


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", SIM_CONFIG.get("port", 8000)))
    reload_flag = os.environ.get("RELOAD", "").lower() in {"1", "true", "yes", "on"}
    uvicorn.run("main:app", host=host, port=port, reload=reload_flag)
