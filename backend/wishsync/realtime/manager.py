import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from fastapi import WebSocket
from sqlalchemy.ext.asyncio import AsyncSession

from wishsync.core.config import settings
from wishsync.core.logger import get_logger
from wishsync.core.metrics import service_metrics
from wishsync.realtime.snapshots import SnapshotAssembler

logger = get_logger("ws")


@dataclass(eq=False)
class Subscriber:
    websocket: WebSocket
    viewer_id: int

    async def send(self, payload: dict[str, Any], timeout: float) -> None:
        await asyncio.wait_for(self.websocket.send_json(payload), timeout=timeout)


@dataclass
class _Gate:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class BroadcastHub:
    """Live viewers grouped by wishlist share id.

    The registry is the only state shared between requests; every access goes
    through ``_lock``. Sends happen outside that lock on a copy of the set.

    Snapshot load plus delivery for one list runs under that list's gate, so
    viewers receive snapshots in the order the mutations committed.
    """

    def __init__(self, assembler: SnapshotAssembler, send_timeout: float | None = None) -> None:
        self._assembler = assembler
        self._send_timeout = send_timeout or settings.ws_send_timeout_seconds
        self._lock = asyncio.Lock()
        self._connections: dict[str, set[Subscriber]] = {}
        self._gates: dict[str, _Gate] = {}

    @property
    def assembler(self) -> SnapshotAssembler:
        return self._assembler

    @asynccontextmanager
    async def _in_order(self, share_id: str) -> AsyncIterator[None]:
        async with self._lock:
            gate = self._gates.get(share_id)
            if gate is None:
                gate = self._gates[share_id] = _Gate()
            gate.users += 1
        try:
            async with gate.lock:
                yield
        finally:
            async with self._lock:
                gate.users -= 1
                if not gate.users:
                    self._gates.pop(share_id, None)

    async def subscribe(self, share_id: str, websocket: WebSocket, viewer_id: int) -> Subscriber:
        subscriber = Subscriber(websocket=websocket, viewer_id=viewer_id)
        async with self._lock:
            self._connections.setdefault(share_id, set()).add(subscriber)
            total = len(self._connections[share_id])
        logger.info("WS subscribe share_id=%s viewer=%s total=%s", share_id, viewer_id, total)
        return subscriber

    async def unsubscribe(self, share_id: str, subscriber: Subscriber) -> None:
        async with self._lock:
            self._discard(share_id, [subscriber])
            total = len(self._connections.get(share_id, ()))
        logger.info("WS unsubscribe share_id=%s viewer=%s total=%s", share_id, subscriber.viewer_id, total)

    async def attach(
        self,
        db: AsyncSession,
        share_id: str,
        websocket: WebSocket,
        viewer_id: int,
    ) -> Subscriber | None:
        """Subscribe a viewer and send it the current snapshot.

        Returns ``None`` for an unknown list. Nothing stays registered when
        the load or the first send fails.
        """
        async with self._in_order(share_id):
            subscriber = await self.subscribe(share_id, websocket, viewer_id)
            attached = False
            try:
                state = await self._assembler.load(db, share_id)
                if state is None:
                    return None
                snapshot = self._assembler.render(state, viewer_id)
                await subscriber.send(snapshot.model_dump(mode="json", by_alias=True), self._send_timeout)
                attached = True
                return subscriber
            finally:
                if not attached:
                    await self.unsubscribe(share_id, subscriber)

    def _discard(self, share_id: str, subscribers: list[Subscriber]) -> None:
        live = self._connections.get(share_id)
        if live is None:
            return
        live.difference_update(subscribers)
        if not live:
            self._connections.pop(share_id, None)

    async def subscriber_count(self, share_id: str) -> int:
        async with self._lock:
            return len(self._connections.get(share_id, ()))

    async def share_ids(self) -> list[str]:
        async with self._lock:
            return list(self._connections)

    async def publish(self, db: AsyncSession, share_id: str, actor_id: int | None = None) -> int:
        """Send a fresh viewer-scoped snapshot to every subscriber of ``share_id``.

        Returns the number of successful deliveries. Never raises: a broadcast
        problem must not fail the mutation that triggered it.
        """
        async with self._in_order(share_id):
            return await self._deliver(db, share_id, actor_id)

    async def _deliver(self, db: AsyncSession, share_id: str, actor_id: int | None) -> int:
        async with self._lock:
            targets = list(self._connections.get(share_id, ()))
        if not targets:
            return 0

        try:
            state = await self._assembler.load(db, share_id)
        except Exception:
            logger.exception("WS snapshot load failed share_id=%s actor=%s", share_id, actor_id)
            return 0
        if state is None:
            logger.warning("WS publish for unknown share_id=%s", share_id)
            return 0

        delivered = 0
        dead: list[Subscriber] = []
        for subscriber in targets:
            try:
                snapshot = self._assembler.render(state, subscriber.viewer_id)
                await subscriber.send(snapshot.model_dump(mode="json", by_alias=True), self._send_timeout)
                delivered += 1
            except Exception:
                logger.info(
                    "WS delivery failed share_id=%s viewer=%s, dropping connection",
                    share_id,
                    subscriber.viewer_id,
                    exc_info=True,
                )
                dead.append(subscriber)

        service_metrics.record_broadcast(delivered, len(dead))
        if dead:
            async with self._lock:
                self._discard(share_id, dead)
                total = len(self._connections.get(share_id, ()))
            logger.info("WS pruned share_id=%s removed=%s total=%s", share_id, len(dead), total)

        logger.debug(
            "WS publish share_id=%s actor=%s delivered=%s/%s",
            share_id,
            actor_id,
            delivered,
            len(targets),
        )
        return delivered
