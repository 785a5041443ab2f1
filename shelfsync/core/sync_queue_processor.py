"""
Sync Queue Processor for ShelfSync
Background worker that drains the outbound sync queue into AIMS

Each sweep:
- claims a bounded batch of PENDING items that are past the settle delay, oldest first
- groups them by store and processes each store's items sequentially
- pushes or deletes the matching AIMS articles
- writes back entity sync status, item status and the store's last sync time
- reschedules failed items with capped exponential backoff until attempts run out
"""

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set

from shelfsync.config.config_loader import SyncQueueSettings
from shelfsync.core.article_builder import build_conference_article, build_person_article, build_space_article
from shelfsync.core.exceptions import (
    ArticleBuildError, EntityNotFoundError, QueueItemInProgressError, QueueItemNotFoundError, SyncDisabledError,
    UnsupportedActionError, UnsupportedEntityTypeError
)
from shelfsync.core.models import (
    EntityType, ItemError, ProcessResult, QueueStatus, SyncAction, SyncQueueItem, SyncStatus, utcnow
)

SKIPPED_SYNC_DISABLED = "Skipped: Sync disabled for store"

ARTICLE_BUILDERS: Dict[EntityType, Callable[[Any], Dict[str, Any]]] = {
    EntityType.SPACE: build_space_article,
    EntityType.PERSON: build_person_article,
    EntityType.CONFERENCE: build_conference_article,
}

EXTERNAL_ID_RESOLVERS: Dict[EntityType, Callable[[Any], Optional[str]]] = {
    EntityType.SPACE: lambda space: space.external_id,
    EntityType.PERSON: lambda person: person.external_id or person.virtual_space_id,
    EntityType.CONFERENCE: lambda room: room.external_id,
}


def compute_backoff_delay_ms(attempts: int, base_delay_ms: int, max_delay_ms: int) -> int:
    """Retry delay after ``attempts`` failures: base * 2^attempts, capped"""
    return min(base_delay_ms * (2 ** attempts), max_delay_ms)


def _error_message(error: Exception) -> str:
    return str(error) or error.__class__.__name__ or 'Unknown error'


class SyncQueueProcessor:
    """Single-worker drain of the sync queue into AIMS.

    At most one timer-driven sweep runs at a time; a tick that fires while a
    sweep is in progress is dropped, not queued. ``stop()`` only prevents
    future ticks, an in-flight sweep runs to completion. Manual sweeps bypass
    the tick gate but claim items the same way, so no item is processed twice.
    """

    def __init__(self, queue_store, store_repository, entity_repositories: Dict[EntityType, Any],
                 aims_gateway, settings: Optional[SyncQueueSettings] = None, error_logger=None,
                 clock: Callable[[], datetime] = utcnow):
        self.queue_store = queue_store
        self.store_repository = store_repository
        self.entity_repositories = entity_repositories
        self.aims_gateway = aims_gateway
        self.settings = settings or SyncQueueSettings()
        self.error_logger = error_logger
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        self.interval_seconds: Optional[float] = None
        self.last_tick_at: Optional[datetime] = None
        self.last_result: Optional[ProcessResult] = None

        self._in_progress = False
        self._timer_task: Optional[asyncio.Task] = None
        self._tick_tasks: Set[asyncio.Task] = set()

        self._action_handlers = {
            SyncAction.CREATE: self._push_entity,
            SyncAction.UPDATE: self._push_entity,
            SyncAction.DELETE: self._delete_entity,
        }

    @property
    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    @property
    def is_processing(self) -> bool:
        return self._in_progress

    # Lifecycle

    async def start(self, interval_seconds: Optional[float] = None):
        """Start periodic ticking; the first tick fires immediately"""
        if self.is_running:
            self.logger.info("Sync queue processor already running")
            return

        self.interval_seconds = interval_seconds or self.settings.interval_seconds
        self.logger.info(f"Starting sync queue processor with {self.interval_seconds}s interval")
        self._timer_task = asyncio.create_task(self._run_timer(self.interval_seconds))

    async def stop(self):
        """Cancel the timer; a sweep already in flight is left to finish"""
        if not self._timer_task:
            return

        self._timer_task.cancel()
        try:
            await self._timer_task
        except asyncio.CancelledError:
            pass
        self._timer_task = None
        self.logger.info("Sync queue processor stopped")

    async def wait_idle(self):
        """Wait for in-flight ticks to finish"""
        if self._tick_tasks:
            await asyncio.gather(*list(self._tick_tasks), return_exceptions=True)

    async def _run_timer(self, interval: float):
        while True:
            self._spawn_tick()
            await asyncio.sleep(interval)

    def _spawn_tick(self):
        task = asyncio.create_task(self._tick())
        self._tick_tasks.add(task)
        task.add_done_callback(self._tick_tasks.discard)

    async def _tick(self):
        """One timer-driven sweep, skipped if another is still running"""
        if self._in_progress:
            self.logger.info("Previous tick still running, skipping")
            return

        self._in_progress = True
        try:
            result = await self.process_pending_items()
            self.last_result = result
            if result.processed > 0:
                self.logger.info(
                    f"Processed {result.processed} items: {result.succeeded} succeeded, {result.failed} failed"
                )
        except Exception as e:
            self.logger.error(f"Sync queue tick error: {e}", exc_info=True)
        finally:
            self._in_progress = False
            self.last_tick_at = self.clock()

    def get_status(self) -> Dict[str, Any]:
        return {
            'is_running': self.is_running,
            'is_processing': self.is_processing,
            'interval_seconds': self.interval_seconds,
            'last_tick_at': self.last_tick_at,
            'last_result': self.last_result.to_dict() if self.last_result else None,
        }

    # Sweep

    async def process_pending_items(self, store_id: Optional[str] = None) -> ProcessResult:
        """Process due items; only a failure to read the queue propagates"""
        result = ProcessResult()

        cutoff = self.clock() - timedelta(milliseconds=self.settings.settle_delay_ms)
        items = await self.queue_store.find_due_items(
            scheduled_before=cutoff,
            limit=self.settings.batch_size,
            status=QueueStatus.PENDING,
            store_id=store_id
        )
        if not items:
            return result

        for group_store_id, store_items in self._group_by_store(items).items():
            if not store_items[0].store_sync_enabled:
                await self._skip_store_items(group_store_id, store_items, result)
                continue

            for item in store_items:
                result.processed += 1
                try:
                    await self._execute(item)
                    result.succeeded += 1
                except Exception as e:
                    message = _error_message(e)
                    result.failed += 1
                    result.errors.append(ItemError(item_id=item.id, error=message))
                    self.logger.warning(
                        f"Sync of {item.entity_type}/{item.entity_id} ({item.action}) failed: {message}"
                    )
                    await self._record_failure(item, message)

            await self._touch_store(group_store_id)

        return result

    async def process_item_by_id(self, item_id: str):
        """Reprocess one item now, regardless of its schedule; re-raises dispatch failures"""
        item = await self.queue_store.find_item_by_id(item_id)
        if not item:
            raise QueueItemNotFoundError(item_id)
        if not item.store_sync_enabled:
            raise SyncDisabledError(item.store_id)
        if not await self.queue_store.claim_item(item_id):
            raise QueueItemInProgressError(item_id)

        try:
            await self._execute(item)
        except Exception as e:
            message = _error_message(e)
            self.logger.warning(f"Manual retry of queue item {item_id} failed: {message}")
            await self._record_failure(item, message)
            raise

        await self._touch_store(item.store_id)

    @staticmethod
    def _group_by_store(items: List[SyncQueueItem]) -> Dict[str, List[SyncQueueItem]]:
        groups: Dict[str, List[SyncQueueItem]] = OrderedDict()
        for item in items:
            groups.setdefault(item.store_id, []).append(item)
        return groups

    async def _skip_store_items(self, store_id: str, items: List[SyncQueueItem], result: ProcessResult):
        self.logger.info(f"Sync disabled for store {store_id}, skipping {len(items)} items")
        for item in items:
            result.processed += 1
            result.failed += 1
            try:
                await self.queue_store.update_item(
                    item.id,
                    status=QueueStatus.FAILED,
                    error_message=SKIPPED_SYNC_DISABLED,
                    processed_at=self.clock()
                )
            except Exception as e:
                self.logger.error(f"Could not mark queue item {item.id} as skipped: {e}")

    async def _touch_store(self, store_id: str):
        try:
            await self.store_repository.update_store(store_id, last_aims_sync_at=self.clock())
        except Exception as e:
            self.logger.error(f"Could not update last AIMS sync time for store {store_id}: {e}")

    # Item execution

    async def _execute(self, item: SyncQueueItem):
        """Dispatch and complete one item already claimed as PROCESSING"""
        await self._dispatch(item)
        await self.queue_store.update_item(item.id, status=QueueStatus.COMPLETED, processed_at=self.clock())

    async def _dispatch(self, item: SyncQueueItem):
        try:
            action = SyncAction(item.action)
        except ValueError:
            raise UnsupportedActionError(item.action)

        if action is SyncAction.SYNC_FULL:
            # Full syncs run through a separate flow
            self.logger.info(f"Full sync requested for store {item.store_id}")
            return

        entity_type = self._resolve_entity_type(item.entity_type)
        await self._action_handlers[action](item, entity_type)
        await self._mark_entity_synced(entity_type, item.entity_id)

    def _resolve_entity_type(self, tag: str) -> EntityType:
        try:
            entity_type = EntityType(tag)
        except ValueError:
            raise UnsupportedEntityTypeError(tag)
        if entity_type not in self.entity_repositories:
            raise UnsupportedEntityTypeError(tag)
        return entity_type

    async def _push_entity(self, item: SyncQueueItem, entity_type: EntityType):
        """Build the article from current entity state and push it"""
        entity = await self.entity_repositories[entity_type].find_by_id(item.entity_id)
        if entity is None:
            raise ArticleBuildError(f"Failed to build article for {entity_type.value}/{item.entity_id}: not found")

        article = ARTICLE_BUILDERS[entity_type](entity)
        await self.aims_gateway.push_articles(item.store_id, [article])

    async def _delete_entity(self, item: SyncQueueItem, entity_type: EntityType):
        """Delete the entity's article; an unresolvable external id counts as already deleted"""
        external_id = (item.payload or {}).get('externalId')
        if not external_id:
            entity = await self.entity_repositories[entity_type].find_by_id(item.entity_id)
            external_id = EXTERNAL_ID_RESOLVERS[entity_type](entity) if entity else None

        if not external_id:
            self.logger.info(f"No external ID for {entity_type.value}/{item.entity_id}, skipping AIMS delete")
            return

        await self.aims_gateway.delete_articles(item.store_id, [external_id])

    async def _mark_entity_synced(self, entity_type: EntityType, entity_id: str):
        try:
            await self.entity_repositories[entity_type].update(
                entity_id, sync_status=SyncStatus.SYNCED, last_synced_at=self.clock()
            )
        except EntityNotFoundError:
            # Deleted concurrently or by this very DELETE item
            self.logger.debug(f"Could not update sync status for {entity_type.value}/{entity_id}: not found")

    # Failure bookkeeping

    async def _record_failure(self, item: SyncQueueItem, message: str):
        if self.error_logger and self.settings.audit_errors:
            try:
                await self.error_logger.log(
                    store_id=item.store_id,
                    entity_type=item.entity_type,
                    entity_id=item.entity_id,
                    action=item.action,
                    error_message=message,
                    payload=item.payload
                )
            except Exception as e:
                self.logger.error(f"Could not audit failure for queue item {item.id}: {e}")
        try:
            await self._handle_failure(item, message)
        except Exception as e:
            self.logger.error(f"Could not record failure for queue item {item.id}: {e}")

    async def _handle_failure(self, item: SyncQueueItem, message: str):
        """Reschedule with backoff, or fail permanently once attempts are exhausted"""
        attempts = item.attempts + 1
        now = self.clock()

        if attempts >= item.max_attempts:
            self.logger.error(f"Queue item {item.id} failed permanently after {attempts} attempts: {message}")
            await self.queue_store.update_item(
                item.id,
                status=QueueStatus.FAILED,
                attempts=attempts,
                error_message=message,
                processed_at=now
            )
            return

        delay_ms = compute_backoff_delay_ms(
            attempts, self.settings.base_retry_delay_ms, self.settings.max_retry_delay_ms
        )
        await self.queue_store.update_item(
            item.id,
            status=QueueStatus.PENDING,
            attempts=attempts,
            error_message=message,
            scheduled_at=now + timedelta(milliseconds=delay_ms)
        )
