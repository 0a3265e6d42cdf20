import asyncio

from sync import PendingChanges, PendingSyncState, SyncQueue


def test_record_merges_fields_per_id():
    changes = PendingChanges()
    changes.record(1, {"status": "learning"})
    changes.record(1, {"priority": 2})
    changes.record(1, {"status": "mastered"})
    changes.record(2, {"isRead": True})

    assert len(changes) == 2
    assert 1 in changes
    assert changes.drain() == [(1, {"status": "mastered", "priority": 2}), (2, {"isRead": True})]


def test_drain_empties_exactly_once():
    changes = PendingChanges()
    changes.record(5, {"name": "x"})
    assert changes.drain() == [(5, {"name": "x"})]
    assert changes.drain() == []


def test_discard_drops_pending_change():
    changes = PendingChanges()
    changes.record(5, {"name": "x"})
    changes.discard(5)
    changes.discard(99)
    assert len(changes) == 0


class Recorder:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    async def __call__(self, chunk):
        self.calls.append(list(chunk))
        if self.fail:
            raise RuntimeError("sin conexión")
        return {"updated": [], "errors": []}


async def test_burst_of_changes_is_sent_once():
    sender = Recorder()
    queue = SyncQueue(sender, debounce_seconds=0.05)
    queue.start()
    try:
        queue.record(1, {"status": "learning"})
        await asyncio.sleep(0.02)
        queue.record(1, {"priority": 4})
        queue.record(2, {"status": "learning"})
        assert queue.state == PendingSyncState.pending

        await asyncio.sleep(0.3)
    finally:
        queue.shutdown()

    assert sender.calls == [[(1, {"status": "learning", "priority": 4}), (2, {"status": "learning"})]]
    assert queue.state == PendingSyncState.idle


async def test_flush_is_idempotent():
    sender = Recorder()
    queue = SyncQueue(sender, debounce_seconds=60)
    queue.start()
    queue.record(1, {"name": "x"})

    assert await queue.on_hidden() is True
    assert await queue.on_unload() is None
    assert len(sender.calls) == 1


async def test_flush_splits_in_chunks():
    sender = Recorder()
    queue = SyncQueue(sender, debounce_seconds=60, batch_size=50)
    queue.start()
    for i in range(120):
        queue.record(i, {"priority": i})

    await queue.on_unload()
    assert [len(call) for call in sender.calls] == [50, 50, 20]


async def test_failed_flush_requeues_nothing():
    errors = []

    async def on_error(error, batch):
        errors.append((str(error), batch))

    queue = SyncQueue(Recorder(fail=True), debounce_seconds=60, on_error=on_error)
    queue.start()
    queue.record(1, {"status": "learning"})

    assert await queue.flush() is False
    assert queue.state == PendingSyncState.error
    assert queue.pending_count == 0
    assert errors == [("sin conexión", [(1, {"status": "learning"})])]
    queue.shutdown()


async def test_discarding_last_change_returns_to_idle():
    queue = SyncQueue(Recorder(), debounce_seconds=60)
    queue.start()
    queue.record(1, {"status": "learning"})
    queue.discard(1)
    assert queue.state == PendingSyncState.idle
    assert await queue.flush() is None
    queue.shutdown()


async def test_state_stays_syncing_until_last_flush_finishes():
    releases = {1: asyncio.Event(), 2: asyncio.Event()}

    async def sender(chunk):
        await releases[chunk[0][0]].wait()
        return {"updated": [], "errors": []}

    queue = SyncQueue(sender, debounce_seconds=60)
    queue.start()
    queue.record(1, {"status": "learning"})
    first = asyncio.create_task(queue.flush())
    await asyncio.sleep(0)

    queue.record(2, {"status": "learning"})
    assert queue.state == PendingSyncState.syncing
    second = asyncio.create_task(queue.on_hidden())
    await asyncio.sleep(0)

    releases[1].set()
    assert await first is True
    assert queue.state == PendingSyncState.syncing

    releases[2].set()
    assert await second is True
    assert queue.state == PendingSyncState.idle
    queue.shutdown()
