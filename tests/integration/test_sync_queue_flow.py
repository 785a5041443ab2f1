"""
Sync queue processing against a real SQLite database
"""

import asyncio
from datetime import timedelta

import pytest

from shelfsync.core.exceptions import AimsRequestError, QueueItemNotFoundError, SyncDisabledError
from shelfsync.core.models import EntityType, QueueStatus, SyncAction, SyncStatus, utcnow

pytestmark = pytest.mark.integration


async def test_creates_are_pushed_and_completed(processor, queue_store, store_repository, entity_repositories,
                                                aims_gateway, seed, store, clock):
    item_ids = []
    for n in range(1, 4):
        await seed.space(f'space-{n}', external_id=f'A-00{n}', data={'name': f'Aisle {n}'})
        item_ids.append(await queue_store.queue_create(store, EntityType.SPACE, f'space-{n}'))

    result = await processor.process_pending_items()

    assert result.to_dict() == {'processed': 3, 'succeeded': 3, 'failed': 0, 'errors': []}
    assert aims_gateway.push_articles.await_count == 3
    for item_id in item_ids:
        item = await queue_store.find_item_by_id(item_id)
        assert item.status == QueueStatus.COMPLETED
        assert item.processed_at == clock.now

    space = await entity_repositories[EntityType.SPACE].find_by_id('space-2')
    assert space.sync_status == SyncStatus.SYNCED
    assert space.last_synced_at == clock.now

    store_record = await store_repository.get_store(store)
    assert store_record.last_aims_sync_at == clock.now


async def test_last_attempt_failure_is_terminal(processor, queue_store, aims_gateway, seed, store, clock):
    await seed.space('space-1', external_id='A-001')
    item_id = await queue_store.queue_update(store, EntityType.SPACE, 'space-1', changes={'name': 'x'})
    await queue_store.update_item(item_id, attempts=4)
    aims_gateway.push_articles.side_effect = AimsRequestError("Push articles failed: 502 - bad gateway", 502)

    result = await processor.process_pending_items()

    assert result.failed == 1
    item = await queue_store.find_item_by_id(item_id)
    assert item.status == QueueStatus.FAILED
    assert item.attempts == 5
    assert item.error_message == "Push articles failed: 502 - bad gateway"
    assert item.processed_at == clock.now

    # Terminal items are never picked up again
    clock.advance(days=1)
    aims_gateway.push_articles.reset_mock()
    result = await processor.process_pending_items()

    assert result.processed == 0
    aims_gateway.push_articles.assert_not_awaited()
    assert (await queue_store.find_item_by_id(item_id)).status == QueueStatus.FAILED


async def test_backoff_grows_until_terminal(processor, queue_store, aims_gateway, seed, store, clock):
    await seed.space('space-1', external_id='A-001')
    item_id = await queue_store.queue_create(store, EntityType.SPACE, 'space-1')
    aims_gateway.push_articles.side_effect = AimsRequestError("unavailable", 503)

    delays = []
    previous_schedule = None
    for attempt in range(1, 5):
        await processor.process_pending_items()
        item = await queue_store.find_item_by_id(item_id)

        assert item.status == QueueStatus.PENDING
        assert item.attempts == attempt
        delays.append(item.scheduled_at - clock.now)
        if previous_schedule:
            assert item.scheduled_at > previous_schedule
        previous_schedule = item.scheduled_at

        # Not yet due: still inside the backoff window
        assert (await processor.process_pending_items()).processed == 0
        clock.now = item.scheduled_at + timedelta(seconds=10)

    assert delays == [timedelta(milliseconds=ms) for ms in (2000, 4000, 8000, 16000)]

    await processor.process_pending_items()
    item = await queue_store.find_item_by_id(item_id)
    assert item.status == QueueStatus.FAILED
    assert item.attempts == 5


async def test_sync_disabled_store_items_are_skipped(processor, queue_store, aims_gateway, seed):
    store_id = await seed.store('store-off', code='S999', sync_enabled=False)
    await seed.space('space-1', store_id=store_id, external_id='A-001')
    item_id = await queue_store.queue_create(store_id, EntityType.SPACE, 'space-1')

    result = await processor.process_pending_items()

    assert (result.processed, result.failed) == (1, 1)
    aims_gateway.push_articles.assert_not_awaited()
    item = await queue_store.find_item_by_id(item_id)
    assert item.status == QueueStatus.FAILED
    assert 'Skipped' in item.error_message
    assert item.attempts == 0


async def test_batch_is_bounded(processor, queue_store, store):
    for n in range(60):
        await queue_store.queue_delete(store, EntityType.SPACE, f'space-{n}', external_id=f'A-{n}')

    result = await processor.process_pending_items()

    assert result.processed == 50
    assert await queue_store.get_pending_count(store) == 10


async def test_oldest_items_first(processor, queue_store, aims_gateway, store):
    processor.settings.batch_size = 2
    await queue_store.enqueue(store, EntityType.SPACE, 'newest', action=SyncAction.DELETE,
                              payload={'externalId': 'NEWEST'}, delay_ms=2000)
    await queue_store.enqueue(store, EntityType.SPACE, 'middle', action=SyncAction.DELETE,
                              payload={'externalId': 'MIDDLE'}, delay_ms=1000)
    await queue_store.enqueue(store, EntityType.SPACE, 'oldest', action=SyncAction.DELETE,
                              payload={'externalId': 'OLDEST'})

    await processor.process_pending_items()

    deleted = [c.args[1] for c in aims_gateway.delete_articles.await_args_list]
    assert deleted == [['OLDEST'], ['MIDDLE']]


async def test_settle_delay_holds_back_fresh_items(processor, queue_store, store, clock):
    await queue_store.enqueue(store, EntityType.SPACE, 'space-1', action=SyncAction.DELETE)
    # Enqueued 2s ago: still inside the 5s settle window
    clock.now = utcnow() + timedelta(seconds=2)

    assert (await processor.process_pending_items()).processed == 0

    clock.advance(seconds=5)
    assert (await processor.process_pending_items()).processed == 1


async def test_manual_sweep_overlapping_tick_pushes_once(processor, queue_store, aims_gateway, seed, store):
    await seed.space('space-1', external_id='A-001')
    item_id = await queue_store.queue_create(store, EntityType.SPACE, 'space-1')

    async def slow_push(store_id, articles):
        await asyncio.sleep(0.05)

    aims_gateway.push_articles.side_effect = slow_push

    _, manual = await asyncio.gather(processor._tick(), processor.process_pending_items())

    assert aims_gateway.push_articles.await_count == 1
    assert manual.succeeded + processor.last_result.succeeded == 1
    assert manual.processed + processor.last_result.processed == 1
    assert (await queue_store.find_item_by_id(item_id)).status == QueueStatus.COMPLETED


async def test_delete_of_missing_entity_succeeds(processor, queue_store, aims_gateway, store):
    item_id = await queue_store.queue_delete(store, EntityType.PERSON, 'person-gone')

    result = await processor.process_pending_items()

    assert result.to_dict() == {'processed': 1, 'succeeded': 1, 'failed': 0, 'errors': []}
    aims_gateway.delete_articles.assert_not_awaited()
    assert (await queue_store.find_item_by_id(item_id)).status == QueueStatus.COMPLETED


async def test_conference_room_update(processor, queue_store, aims_gateway, seed, store):
    await seed.conference_room('room-1', external_id='C-01', room_name='Board Room', has_meeting=True,
                               meeting_name='Review', participants=['Ana'])
    await queue_store.queue_update(store, EntityType.CONFERENCE, 'room-1')

    await processor.process_pending_items()

    store_arg, articles = aims_gateway.push_articles.await_args.args
    assert store_arg == store
    assert articles[0]['data1'] == 'MEETING'
    assert articles[0]['data5'] == 'Ana'


async def test_failures_are_audited(processor, queue_store, aims_gateway, error_logger, seed, store):
    await seed.space('space-1', external_id='A-001')
    await queue_store.queue_create(store, EntityType.SPACE, 'space-1')
    aims_gateway.push_articles.side_effect = AimsRequestError("quota exceeded", 429)

    await processor.process_pending_items()

    errors = await error_logger.get_recent_errors(store)
    assert len(errors) == 1
    assert errors[0]['action'] == 'AIMS_SYNC_CREATE_FAILED'
    assert errors[0]['error_message'] == "quota exceeded"
    assert await error_logger.get_error_count(store) == 1


class TestProcessItemById:

    async def test_unknown_item_changes_nothing(self, processor, queue_store, store):
        item_id = await queue_store.queue_delete(store, EntityType.SPACE, 'space-1', external_id='A-1')

        with pytest.raises(QueueItemNotFoundError, match="Item not found"):
            await processor.process_item_by_id('does-not-exist')

        item = await queue_store.find_item_by_id(item_id)
        assert item.status == QueueStatus.PENDING
        assert item.attempts == 0

    async def test_sync_disabled_store(self, processor, queue_store, seed):
        store_id = await seed.store('store-off', code='S999', sync_enabled=False)
        item_id = await queue_store.queue_delete(store_id, EntityType.SPACE, 'space-1', external_id='A-1')

        with pytest.raises(SyncDisabledError):
            await processor.process_item_by_id(item_id)

    async def test_retries_terminally_failed_item(self, processor, queue_store, aims_gateway, seed, store):
        await seed.space('space-1', external_id='A-001')
        item_id = await queue_store.queue_create(store, EntityType.SPACE, 'space-1')
        await queue_store.update_item(item_id, status=QueueStatus.FAILED, attempts=5)

        await processor.process_item_by_id(item_id)

        assert (await queue_store.find_item_by_id(item_id)).status == QueueStatus.COMPLETED
        aims_gateway.push_articles.assert_awaited_once()

    async def test_failure_is_recorded_and_raised(self, processor, queue_store, aims_gateway, seed, store, clock):
        await seed.space('space-1', external_id='A-001')
        item_id = await queue_store.queue_create(store, EntityType.SPACE, 'space-1')
        aims_gateway.push_articles.side_effect = AimsRequestError("rejected", 400)

        with pytest.raises(AimsRequestError):
            await processor.process_item_by_id(item_id)

        item = await queue_store.find_item_by_id(item_id)
        assert item.status == QueueStatus.PENDING
        assert item.attempts == 1
        assert item.error_message == "rejected"
        assert item.scheduled_at == clock.now + timedelta(milliseconds=2000)
