from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import websockets
from websockets.asyncio.server import ServerConnection, serve

from holdem.models import ActionRejected, TableConfig
from holdem.rooms import RoomRegistry
from holdem.timers import AsyncioScheduler, Scheduler

LOGGER = logging.getLogger("poker_server")

# TableServer glues rooms to WebSocket clients. Rooms never see sockets; they
# emit events and this class routes them to connection handles.


def _whole_number(value: object) -> object:
    # JSON clients often encode chip counts as 60.0.
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _mask_hole_cards(payload: Dict[str, object], viewer: str) -> Dict[str, object]:
    """Copy of ``payload`` with other players' hole cards hidden from ``viewer``.

    Payloads that carry hand evaluations are showdown reveals and pass through.
    """
    players = payload.get("players")
    if payload.get("handEvaluations") or not isinstance(players, list):
        return payload
    masked = []
    for entry in players:
        if isinstance(entry, dict) and entry.get("holeCards") and entry.get("connectionHandle") != viewer:
            entry = dict(entry, holeCards=[])
        masked.append(entry)
    return dict(payload, players=masked)


@dataclass
class ClientSession:
    handle: str
    websocket: ServerConnection
    outbox: "asyncio.Queue[str]" = field(default_factory=asyncio.Queue)
    writer_task: Optional[asyncio.Task] = None


class TableServer:
    def __init__(self, config: TableConfig, scheduler: Optional[Scheduler] = None) -> None:
        self.config = config
        self.sessions: Dict[str, ClientSession] = {}
        self.registry = RoomRegistry(config, sink=self._deliver, scheduler=scheduler or AsyncioScheduler())
        self._handles = itertools.count(1)
        self._handlers: Dict[str, Callable[[ClientSession, Dict[str, object]], None]] = {
            "joinRoom": self._on_join_room,
            "leaveRoom": self._on_leave_room,
            "playerAction": self._on_player_action,
            "rebuy": self._on_rebuy,
            "updateSettings": self._on_update_settings,
            "getSettings": self._on_get_settings,
            "requestRebuy": self._on_request_rebuy,
            "disconnect": self._on_disconnect,
        }

    async def start(self, host: str = "0.0.0.0", port: int = 3001) -> None:
        async with serve(self._handle_connection, host, port):
            LOGGER.info("Poker room server listening on %s:%s", host, port)
            await asyncio.Future()

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        session = self.open_session(websocket)
        session.writer_task = asyncio.create_task(self._drain_outbox(session))
        LOGGER.info("Connection %s opened", session.handle)
        try:
            async for raw in websocket:
                self.dispatch(session, self._decode(raw))
        except websockets.ConnectionClosed:
            pass
        finally:
            self.close_session(session)
        LOGGER.info("Connection %s closed", session.handle)

    def open_session(self, websocket: ServerConnection) -> ClientSession:
        session = ClientSession(handle=f"conn-{next(self._handles)}", websocket=websocket)
        self.sessions[session.handle] = session
        return session

    def close_session(self, session: ClientSession) -> None:
        self.registry.disconnect(session.handle)
        self.sessions.pop(session.handle, None)
        if session.writer_task is not None:
            session.writer_task.cancel()

    async def _drain_outbox(self, session: ClientSession) -> None:
        # One writer per connection keeps each client's messages in emit order.
        while True:
            message = await session.outbox.get()
            try:
                await session.websocket.send(message)
            except websockets.ConnectionClosed:
                return

    def dispatch(self, session: ClientSession, message: Dict[str, object]) -> None:
        msg_type = message.get("type")
        handler = self._handlers.get(msg_type) if isinstance(msg_type, str) else None
        if handler is None:
            self._send_error(session, code="UNKNOWN_TYPE", msg="Unsupported message type")
            return
        try:
            handler(session, message)
        except ActionRejected as exc:
            LOGGER.warning("Rejected %s from %s: %s", msg_type, session.handle, exc.msg)
            self._send_error(session, code=exc.code, msg=exc.msg)

    # Handlers --------------------------------------------------------

    def _on_join_room(self, session: ClientSession, message: Dict[str, object]) -> None:
        self.registry.join_room(session.handle, message.get("roomId"), message.get("playerName"))

    def _on_leave_room(self, session: ClientSession, message: Dict[str, object]) -> None:
        self.registry.leave_room(session.handle)

    def _on_player_action(self, session: ClientSession, message: Dict[str, object]) -> None:
        amount = _whole_number(message.get("amount"))
        self.registry.player_action(session.handle, message.get("action"), amount)  # type: ignore[arg-type]

    def _on_rebuy(self, session: ClientSession, message: Dict[str, object]) -> None:
        chip_amount = _whole_number(message.get("chipAmount"))
        self.registry.rebuy(session.handle, message.get("buyChips"), chip_amount)  # type: ignore[arg-type]

    def _on_update_settings(self, session: ClientSession, message: Dict[str, object]) -> None:
        changes = message.get("settings")
        if changes is None:
            changes = {key: value for key, value in message.items() if key != "type"}
        self.registry.update_settings(session.handle, changes)

    def _on_get_settings(self, session: ClientSession, message: Dict[str, object]) -> None:
        self.registry.get_settings(session.handle)

    def _on_request_rebuy(self, session: ClientSession, message: Dict[str, object]) -> None:
        self.registry.request_rebuy(session.handle)

    def _on_disconnect(self, session: ClientSession, message: Dict[str, object]) -> None:
        self.registry.disconnect(session.handle)

    # Outbound --------------------------------------------------------

    def _deliver(self, room_id: str, event: str, payload: Dict[str, object], target: Optional[str]) -> None:
        handles = [target] if target is not None else self.registry.members(room_id)
        for handle in handles:
            session = self.sessions.get(handle)
            if session is not None:
                session.outbox.put_nowait(self._envelope(event, _mask_hole_cards(payload, handle)))

    def _send_error(self, session: ClientSession, code: str, msg: str) -> None:
        session.outbox.put_nowait(self._envelope("error", {"code": code, "msg": msg}))

    def _envelope(self, msg_type: str, payload: Dict[str, object]) -> str:
        body: Dict[str, object] = {"type": msg_type, "v": 1, "ts": datetime.now(timezone.utc).isoformat()}
        body.update(payload)
        return json.dumps(body)

    def _decode(self, raw: object) -> Dict[str, object]:
        try:
            message = json.loads(raw)  # type: ignore[arg-type]
        except (TypeError, json.JSONDecodeError):
            return {}
        return message if isinstance(message, dict) else {}
