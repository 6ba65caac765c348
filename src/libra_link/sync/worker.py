"""Background drain of the outbox to the sync-events endpoint."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import timedelta
from typing import Optional, Protocol

from libra_link.api.types import SyncEvent
from libra_link.errors import LibraLinkError
from libra_link.library.models import OutboxEvent, SyncCheckpoint, utcnow

log = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 25
DEFAULT_INTERVAL = 10.0
MAX_BACKOFF_EXPONENT = 6


class SyncAPI(Protocol):
    async def store_sync_event(self, event: SyncEvent) -> None: ...


class SyncStore(Protocol):
    def list_pending_outbox(self, limit: int = ...) -> list[OutboxEvent]: ...

    def mark_outbox_done(self, event_id: str) -> bool: ...

    def mark_outbox_retry(self, event_id: str, next_attempt_at, last_error: str) -> None: ...

    def upsert_sync_checkpoint(self, checkpoint: SyncCheckpoint) -> None: ...


def backoff(attempt: int) -> timedelta:
    """2^attempt seconds with the exponent clamped to [1, 6]."""
    attempt = min(max(attempt, 1), MAX_BACKOFF_EXPONENT)
    return timedelta(seconds=2**attempt)


class SyncWorker:
    def __init__(self, store: SyncStore, api: SyncAPI, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self._store = store
        self._api = api
        self._batch_size = batch_size if batch_size > 0 else DEFAULT_BATCH_SIZE
        self._stopping: Optional[asyncio.Event] = None

    @property
    def batch_size(self) -> int:
        return self._batch_size

    async def flush_once(self) -> int:
        """Send one batch of due events. Returns how many were acknowledged."""
        events = self._store.list_pending_outbox(self._batch_size)
        if events:
            log.debug("Flushing %d outbox event(s)", len(events))

        done = 0
        for event in events:
            if self._stopping is not None and self._stopping.is_set():
                break
            try:
                await self._api.store_sync_event(
                    SyncEvent(
                        entity_type=event.entity_type,
                        entity_id=event.entity_id,
                        operation=event.operation,
                        idempotency_key=event.idempotency_key,
                        client_ts=event.created_at or utcnow(),
                        payload=event.payload if event.payload is not None else {},
                        base_version=event.base_version,
                    )
                )
            except LibraLinkError as e:
                delay = backoff(event.attempt_count + 1)
                log.warning(
                    "Outbox event %s failed (attempt %d), retry in %ss: %s",
                    event.id,
                    event.attempt_count + 1,
                    int(delay.total_seconds()),
                    e,
                )
                self._store.mark_outbox_retry(event.id, utcnow() + delay, str(e))
                continue

            if self._store.mark_outbox_done(event.id):
                done += 1
                self._store.upsert_sync_checkpoint(
                    SyncCheckpoint(last_server_timestamp=utcnow(), last_event_id=event.id)
                )
        return done

    async def run(self, interval: float = DEFAULT_INTERVAL) -> None:
        """Flush now and after every interval until ``stop()`` or cancellation."""
        if interval <= 0:
            interval = DEFAULT_INTERVAL
        self._stopping = asyncio.Event()
        log.info("Sync worker started (interval %.0fs, batch %d)", interval, self._batch_size)
        try:
            while not self._stopping.is_set():
                try:
                    await self.flush_once()
                except (sqlite3.Error, LibraLinkError) as e:
                    log.error("Outbox flush failed: %s", e)
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            log.info("Sync worker stopped")

    def stop(self) -> None:
        if self._stopping is not None:
            self._stopping.set()
