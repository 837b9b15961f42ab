"""
Websocket fan-out of reconciliation outcomes to dashboards.

Each event carries the correlation id of the run that produced it, so a
dashboard can fetch the full trace from `/traces/{correlation_id}`. The hub
also keeps the last known state per screen; a dashboard that connects late
gets that snapshot in its hello message instead of waiting for the next sweep.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

from screensync.schemas.screen import ReconcileResult
from screensync.schemas.trace import PublishTrace, SweepResult

logger = logging.getLogger(__name__)

PUBLISH_COMPLETED = "publish_completed"
RECONCILE_COMPLETED = "reconcile_completed"
SWEEP_COMPLETED = "sweep_completed"


def publish_event(trace: PublishTrace) -> dict[str, Any]:
    return {
        "correlation_id": trace.correlation_id,
        "advertiser_id": trace.advertiser_id,
        "dry_run": trace.dry_run,
        "outcome": trace.outcome.value,
        "success_count": trace.summary.success_count,
        "failed_count": trace.summary.failed_count,
        "failed_screens": [s.screen_id for s in trace.screens if not s.ok],
        "failure_code": trace.failure.code.value if trace.failure else None,
    }


def reconcile_event(result: ReconcileResult) -> dict[str, Any]:
    return {
        "correlation_id": result.correlation_id,
        "screen_id": result.screen_id,
        "state": result.state,
        "in_sync": result.in_sync,
        "repaired": result.repaired,
        "healthy": result.healthy,
        "warnings": list(result.warnings),
        "failure_code": result.failure.code.value if result.failure else None,
    }


def sweep_event(result: SweepResult) -> dict[str, Any]:
    return {"processed": result.processed, "ok": result.ok, "failed": result.failed, "errors": list(result.errors)}


class RealtimeHub:
    def __init__(self) -> None:
        self._clients: set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self._revision = 0
        self._screen_states: dict[str, dict[str, Any]] = {}

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._clients.add(websocket)
            screens = dict(self._screen_states)
        await websocket.send_text(
            json.dumps(
                {
                    "type": "hello",
                    "service": "screensync",
                    "revision": self._revision,
                    "screens": screens,
                    "ts": datetime.now(timezone.utc).isoformat(),
                },
                default=str,
            )
        )

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._clients.discard(websocket)

    async def publish(self, event_type: str, payload: dict[str, Any] | None = None) -> int:
        self._revision += 1
        message = json.dumps(
            {
                "type": event_type,
                "revision": self._revision,
                "payload": payload or {},
                "ts": datetime.now(timezone.utc).isoformat(),
            },
            default=str,
        )
        async with self._lock:
            clients = list(self._clients)

        stale: list[WebSocket] = []
        for client in clients:
            try:
                await client.send_text(message)
            except Exception:
                stale.append(client)

        if stale:
            logger.debug("dropping %s stale websocket clients", len(stale))
            async with self._lock:
                for client in stale:
                    self._clients.discard(client)
        return self._revision

    async def publish_completed(self, trace: PublishTrace) -> int:
        return await self.publish(PUBLISH_COMPLETED, publish_event(trace))

    async def reconcile_completed(self, result: ReconcileResult) -> int:
        payload = reconcile_event(result)
        async with self._lock:
            self._screen_states[result.screen_id] = payload
        return await self.publish(RECONCILE_COMPLETED, payload)

    async def sweep_completed(self, result: SweepResult) -> int:
        return await self.publish(SWEEP_COMPLETED, sweep_event(result))

    def screen_state(self, screen_id: str) -> dict[str, Any] | None:
        return self._screen_states.get(screen_id)

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def client_count(self) -> int:
        return len(self._clients)


hub = RealtimeHub()
