from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Dict, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed


def _state_message(bridge) -> str:
    payload: Dict[str, Any] = bridge.get_state()
    return json.dumps({"type": "state", "ts": time.time(), "payload": payload})


class StateServer:
    """Websocket server pushing bridge state to every client once per interval.

    Clients may also send {"type": "getState"} for an immediate reply.
    """

    def __init__(self, bridge, host: str = "127.0.0.1", port: int = 8765, interval: float = 1.0):
        self.bridge = bridge
        self.host = host
        self.port = port
        self.interval = interval
        self.clients: Set[Any] = set()
        self._server = None
        self._task: Optional[asyncio.Task] = None

    async def _handler(self, ws, *maybe_path):
        self.clients.add(ws)
        try:
            await ws.send(_state_message(self.bridge))
            async for raw in ws:
                try:
                    obj = json.loads(raw)
                except ValueError:
                    continue
                if isinstance(obj, dict) and obj.get("type") == "getState":
                    await ws.send(_state_message(self.bridge))
        except ConnectionClosed:
            pass
        finally:
            self.clients.discard(ws)

    async def _broadcast(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if not self.clients:
                continue
            msg = _state_message(self.bridge)
            for ws in list(self.clients):
                try:
                    await ws.send(msg)
                except ConnectionClosed:
                    self.clients.discard(ws)

    async def start(self) -> int:
        self._server = await websockets.serve(self._handler, self.host, self.port)
        bound = self._server.sockets[0].getsockname()[1] if self._server.sockets else self.port
        self.port = int(bound)
        self._task = asyncio.create_task(self._broadcast())
        print(f"[ws] serving state on ws://{self.host}:{self.port}", flush=True)
        return self.port

    async def close(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
