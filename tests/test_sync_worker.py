"""Tests for the outbox drain."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from libra_link.api.types import SyncEvent
from libra_link.errors import APIError, TransportError
from libra_link.library.database import Database
from libra_link.library.models import OutboxEvent, utcnow
from libra_link.sync.worker import SyncWorker, backoff


class FakeSyncAPI:
    def __init__(self, failures: dict[str, Exception] | None = None) -> None:
        self.failures = failures or {}
        self.sent: list[SyncEvent] = []

    async def store_sync_event(self, event: SyncEvent) -> None:
        error = self.failures.get(event.entity_id)
        if error is not None:
            raise error
        self.sent.append(event)


def _enqueue(db: Database, entity_id: str, **kwargs) -> OutboxEvent:
    return db.enqueue_outbox(
        OutboxEvent(
            entity_type="preference",
            entity_id=entity_id,
            payload={"themeMode": "dark"},
            base_version=3,
            **kwargs,
        )
    )


class TestBackoff:
    def test_doubles_and_clamps(self):
        assert backoff(0) == timedelta(seconds=2)
        assert backoff(1) == timedelta(seconds=2)
        assert backoff(3) == timedelta(seconds=8)
        assert backoff(6) == timedelta(seconds=64)
        assert backoff(40) == timedelta(seconds=64)


class TestFlushOnce:
    @pytest.mark.asyncio
    async def test_sends_and_acknowledges(self, db: Database):
        first = _enqueue(db, "a")
        api = FakeSyncAPI()
        worker = SyncWorker(db, api)
        assert await worker.flush_once() == 1

        sent = api.sent[0]
        assert sent.idempotency_key == first.idempotency_key
        assert sent.payload == {"themeMode": "dark"}
        assert sent.base_version == 3
        assert db.count_pending_outbox() == 0
        assert db.get_sync_checkpoint().last_event_id == first.id

    @pytest.mark.asyncio
    async def test_failure_schedules_retry(self, db: Database):
        event = _enqueue(db, "a")
        api = FakeSyncAPI({"a": TransportError("store sync event", "offline")})
        worker = SyncWorker(db, api)
        before = utcnow()
        assert await worker.flush_once() == 0

        stored = db.get_outbox_event(event.id)
        assert stored.attempt_count == 1
        assert "offline" in stored.last_error
        assert stored.next_attempt_at >= before + timedelta(seconds=2)
        assert db.list_pending_outbox() == []
        assert db.get_sync_checkpoint() is None

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_others(self, db: Database):
        _enqueue(db, "bad")
        good = _enqueue(db, "good")
        api = FakeSyncAPI({"bad": APIError("store sync event", 409, "conflict")})
        assert await SyncWorker(db, api).flush_once() == 1
        assert [e.idempotency_key for e in api.sent] == [good.idempotency_key]

    @pytest.mark.asyncio
    async def test_backoff_grows_with_attempts(self, db: Database):
        event = _enqueue(db, "a", attempt_count=3)
        api = FakeSyncAPI({"a": APIError("store sync event", 503, "down")})
        before = utcnow()
        await SyncWorker(db, api).flush_once()
        stored = db.get_outbox_event(event.id)
        assert stored.attempt_count == 4
        assert stored.next_attempt_at >= before + timedelta(seconds=16)

    @pytest.mark.asyncio
    async def test_batch_size_limits_sends(self, db: Database):
        for i in range(5):
            _enqueue(db, f"e{i}")
        api = FakeSyncAPI()
        worker = SyncWorker(db, api, batch_size=2)
        assert await worker.flush_once() == 2
        assert db.count_pending_outbox() == 3

    def test_invalid_batch_size_uses_default(self, db: Database):
        assert SyncWorker(db, FakeSyncAPI(), batch_size=0).batch_size == 25

    @pytest.mark.asyncio
    async def test_idle_outbox(self, db: Database):
        assert await SyncWorker(db, FakeSyncAPI()).flush_once() == 0


class TestRun:
    @pytest.mark.asyncio
    async def test_stop_ends_loop(self, db: Database):
        _enqueue(db, "a")
        api = FakeSyncAPI()
        worker = SyncWorker(db, api)
        task = asyncio.create_task(worker.run(interval=60))
        for _ in range(50):
            if api.sent:
                break
            await asyncio.sleep(0.01)
        worker.stop()
        await asyncio.wait_for(task, timeout=2)
        assert len(api.sent) == 1

    @pytest.mark.asyncio
    async def test_cancellation(self, db: Database):
        worker = SyncWorker(db, FakeSyncAPI())
        task = asyncio.create_task(worker.run(interval=60))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
