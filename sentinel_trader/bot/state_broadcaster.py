"""
State broadcaster: pushes the published engine state to subscribers on a
fixed interval and serves it over a websocket.

Each subscriber gets a one-slot queue; a slow client only ever sees the
latest state. Clients may send JSON control messages ({"action": ...}) and
receive {"ok": bool, ...} replies.
"""
import asyncio
import json
from typing import Any, Callable, Dict, Mapping, Optional, Set

import websockets
from loguru import logger


class StateBroadcaster:

    def __init__(
        self,
        snapshot: Callable[[], Dict[str, Any]],
        interval: float = 1.0,
        control: Optional[Callable[[Mapping[str, Any]], Dict[str, Any]]] = None,
    ):
        self.snapshot = snapshot
        self.interval = interval
        self.control = control
        self._subscribers: Set[asyncio.Queue] = set()
        self._running = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    def publish(self, state: Dict[str, Any]) -> None:
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(state)

    def query(self) -> Dict[str, Any]:
        return self.snapshot()

    async def run(self) -> None:
        self._running = True
        while self._running:
            self.publish(self.snapshot())
            await asyncio.sleep(self.interval)

    def stop(self) -> None:
        self._running = False

    def handle_message(self, raw: str) -> Dict[str, Any]:
        try:
            message = json.loads(raw)
        except ValueError:
            return {"ok": False, "error": "invalid JSON"}
        if not isinstance(message, Mapping) or "action" not in message:
            return {"ok": False, "error": "missing action"}
        if message["action"] == "state" or self.control is None:
            return {"ok": True, "action": "state", "data": self.query()}
        return self.control(message)

    async def _handler(self, ws) -> None:
        queue = self.subscribe()
        logger.info(f"Client connected ({self.subscriber_count} total)")

        async def _sender():
            while True:
                state = await queue.get()
                await ws.send(json.dumps({"type": "state", "data": state}))

        sender = asyncio.create_task(_sender())
        try:
            async for raw in ws:
                reply = self.handle_message(raw)
                await ws.send(json.dumps({"type": "reply", **reply}))
        except websockets.ConnectionClosed:
            pass
        finally:
            sender.cancel()
            self.unsubscribe(queue)
            logger.info(f"Client disconnected ({self.subscriber_count} left)")

    async def serve(self, host: str = "0.0.0.0", port: int = 3001) -> None:
        async with websockets.serve(self._handler, host, port):
            logger.info(f"State server listening on ws://{host}:{port}")
            await asyncio.Future()
