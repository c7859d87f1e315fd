"""Sentinel — live stream over WebSocket.

Every client receives an `initial_state` envelope on connect, then `pulse`
envelopes after each ingestion cycle and `log` lines for operator notices.
"""

import logging
from datetime import datetime, timezone

from fastapi import WebSocket

from backend.scheduler import CycleReport
from fusion_engine.store import IntelligenceStore

logger = logging.getLogger("sentinel.ws")


class StreamManager:
    """Tracks stream subscribers and pushes store-derived envelopes to them."""

    def __init__(self, store: IntelligenceStore):
        self.store = store
        self._clients: list[WebSocket] = []

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def subscribe(self, websocket: WebSocket):
        """Accept the client and hand it the currently visible sitreps."""
        await websocket.accept()
        self._clients.append(websocket)
        logger.info("[ws] Subscriber joined (%d live)", len(self._clients))
        await self._send(websocket, {
            "action": "initial_state",
            "data": [s.to_wire() for s in self.store.visible_sitreps()],
            "status": self.store.status(),
        })

    def unsubscribe(self, websocket: WebSocket):
        if websocket in self._clients:
            self._clients.remove(websocket)
            logger.info("[ws] Subscriber left (%d live)", len(self._clients))

    async def publish_pulse(self, report: CycleReport):
        """New confirmed sitreps and forecasts from one cycle, with store status."""
        await self._publish({
            "action": "pulse",
            "data": [s.to_wire() for s in [*report.new_sitreps, *report.forecasts]],
            "latencyMs": report.latency_ms,
            "status": self.store.status(),
        })

    async def publish_log(self, message: str):
        await self._publish({
            "action": "log",
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def _publish(self, envelope: dict):
        for websocket in list(self._clients):
            await self._send(websocket, envelope)

    async def _send(self, websocket: WebSocket, envelope: dict):
        # a failed send means the client is gone
        try:
            await websocket.send_json(envelope)
        except Exception as e:
            logger.debug("[ws] Dropping subscriber: %s", e)
            self.unsubscribe(websocket)
