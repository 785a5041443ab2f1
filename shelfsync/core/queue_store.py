"""
Durable sync queue storage
Producer helpers used by the CRUD layer and the query/update surface used by the processor
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, delete, func

from shelfsync.core.database import DatabaseService
from shelfsync.core.exceptions import EntityNotFoundError, QueueItemNotFoundError
from shelfsync.core.models import (
    EntityType, QueueStatus, StoreDB, SyncAction, SyncQueueItem, SyncQueueItemDB, SyncStatus, utcnow
)

DEFAULT_MAX_ATTEMPTS = 5

COMPLETED_RETENTION = timedelta(days=7)
FAILED_RETENTION = timedelta(days=30)
STUCK_PROCESSING_AFTER = timedelta(hours=1)
ORPHAN_SCAN_LIMIT = 1000


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class SyncQueueStore:
    """Queue table access for sync items"""

    def __init__(self, db: DatabaseService, entity_repositories: Optional[Dict[EntityType, Any]] = None,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self.db = db
        self.entity_repositories = entity_repositories or {}
        self.max_attempts = max_attempts
        self.logger = logging.getLogger(__name__)

    # Consumer side

    async def find_due_items(self, scheduled_before: datetime, limit: int,
                             status: QueueStatus = QueueStatus.PENDING,
                             store_id: Optional[str] = None) -> List[SyncQueueItem]:
        """Claim oldest-first items in ``status`` scheduled at or before the cutoff.

        Each row is moved to PROCESSING with a conditional update; only rows this
        call moved are returned, so concurrent sweeps never share an item.
        """
        query = (
            select(SyncQueueItemDB, StoreDB.sync_enabled)
            .outerjoin(StoreDB, StoreDB.id == SyncQueueItemDB.store_id)
            .where(
                SyncQueueItemDB.status == status.value,
                SyncQueueItemDB.scheduled_at <= scheduled_before
            )
            .order_by(SyncQueueItemDB.scheduled_at.asc())
            .limit(limit)
        )
        if store_id:
            query = query.where(SyncQueueItemDB.store_id == store_id)

        claimed = []
        async with self.db.get_session() as session:
            result = await session.execute(query)
            for row, sync_enabled in result.all():
                if await self._claim(session, row.id, [status]):
                    item = row.to_domain_model(store_sync_enabled=sync_enabled)
                    item.status = QueueStatus.PROCESSING
                    claimed.append(item)
        return claimed

    async def claim_item(self, item_id: str) -> bool:
        """Move one item to PROCESSING unless another worker already holds it"""
        async with self.db.get_session() as session:
            return await self._claim(
                session, item_id, [QueueStatus.PENDING, QueueStatus.FAILED, QueueStatus.COMPLETED]
            )

    @staticmethod
    async def _claim(session, item_id: str, from_statuses: List[QueueStatus]) -> bool:
        result = await session.execute(
            update(SyncQueueItemDB)
            .where(
                SyncQueueItemDB.id == item_id,
                SyncQueueItemDB.status.in_([s.value for s in from_statuses])
            )
            .values(status=QueueStatus.PROCESSING.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def find_item_by_id(self, item_id: str) -> Optional[SyncQueueItem]:
        query = (
            select(SyncQueueItemDB, StoreDB.sync_enabled)
            .outerjoin(StoreDB, StoreDB.id == SyncQueueItemDB.store_id)
            .where(SyncQueueItemDB.id == item_id)
        )
        async with self.db.get_session() as session:
            row = (await session.execute(query)).first()
            if not row:
                return None
            item, sync_enabled = row
            return item.to_domain_model(store_sync_enabled=sync_enabled)

    async def update_item(self, item_id: str, **fields):
        """Overwrite the given columns on one queue item"""
        async with self.db.get_session() as session:
            item = await session.get(SyncQueueItemDB, item_id)
            if not item:
                raise QueueItemNotFoundError(item_id)
            for key, value in fields.items():
                setattr(item, key, _enum_value(value))

    # Producer side

    async def enqueue(self, store_id: str, entity_type: EntityType, entity_id: str, action: SyncAction,
                      payload: Optional[Dict[str, Any]] = None, delay_ms: int = 0,
                      max_attempts: Optional[int] = None) -> str:
        """Queue a sync operation, coalescing with an open item for the same entity"""
        scheduled_at = utcnow() + timedelta(milliseconds=delay_ms)

        async with self.db.get_session() as session:
            result = await session.execute(
                select(SyncQueueItemDB).where(
                    SyncQueueItemDB.store_id == store_id,
                    SyncQueueItemDB.entity_type == entity_type.value,
                    SyncQueueItemDB.entity_id == entity_id,
                    SyncQueueItemDB.status.in_([QueueStatus.PENDING.value, QueueStatus.PROCESSING.value])
                ).limit(1)
            )
            existing = result.scalar_one_or_none()

            if existing:
                existing.action = action.value
                existing.payload = payload or {}
                existing.scheduled_at = scheduled_at
                return existing.id

            item = SyncQueueItemDB(
                store_id=store_id,
                entity_type=entity_type.value,
                entity_id=entity_id,
                action=action.value,
                payload=payload or {},
                status=QueueStatus.PENDING.value,
                attempts=0,
                max_attempts=max_attempts or self.max_attempts,
                scheduled_at=scheduled_at,
            )
            session.add(item)
            await session.flush()
            return item.id

    async def queue_create(self, store_id: str, entity_type: EntityType, entity_id: str,
                           entity_data: Optional[Dict[str, Any]] = None) -> str:
        await self._mark_entity_pending(entity_type, entity_id)
        return await self.enqueue(store_id, entity_type, entity_id, SyncAction.CREATE,
                                  payload={'entityData': entity_data} if entity_data else {})

    async def queue_update(self, store_id: str, entity_type: EntityType, entity_id: str,
                           changes: Optional[Dict[str, Any]] = None) -> str:
        await self._mark_entity_pending(entity_type, entity_id)
        return await self.enqueue(store_id, entity_type, entity_id, SyncAction.UPDATE,
                                  payload={'changes': changes} if changes else {})

    async def queue_delete(self, store_id: str, entity_type: EntityType, entity_id: str,
                           external_id: Optional[str] = None) -> str:
        return await self.enqueue(store_id, entity_type, entity_id, SyncAction.DELETE,
                                  payload={'externalId': external_id} if external_id else {})

    async def cancel(self, store_id: str, entity_type: EntityType, entity_id: str) -> int:
        """Close pending items for an entity without syncing them"""
        async with self.db.get_session() as session:
            result = await session.execute(
                update(SyncQueueItemDB)
                .where(
                    SyncQueueItemDB.store_id == store_id,
                    SyncQueueItemDB.entity_type == entity_type.value,
                    SyncQueueItemDB.entity_id == entity_id,
                    SyncQueueItemDB.status == QueueStatus.PENDING.value
                )
                .values(status=QueueStatus.COMPLETED.value, error_message='Cancelled', processed_at=utcnow())
            )
            return result.rowcount or 0

    async def _mark_entity_pending(self, entity_type: EntityType, entity_id: str):
        repository = self.entity_repositories.get(entity_type)
        if not repository:
            return
        try:
            await repository.update(entity_id, sync_status=SyncStatus.PENDING)
        except EntityNotFoundError:
            self.logger.debug(f"{entity_type.value}/{entity_id} not found while marking sync pending")

    # Inspection

    async def get_pending_count(self, store_id: str) -> int:
        return await self._count(store_id, [QueueStatus.PENDING, QueueStatus.PROCESSING])

    async def get_failed_count(self, store_id: str) -> int:
        return await self._count(store_id, [QueueStatus.FAILED])

    async def _count(self, store_id: str, statuses: List[QueueStatus]) -> int:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(func.count(SyncQueueItemDB.id)).where(
                    SyncQueueItemDB.store_id == store_id,
                    SyncQueueItemDB.status.in_([s.value for s in statuses])
                )
            )
            return result.scalar_one()

    async def list_items(self, store_id: Optional[str] = None, status: Optional[QueueStatus] = None,
                         limit: int = 100) -> List[SyncQueueItem]:
        query = select(SyncQueueItemDB).order_by(SyncQueueItemDB.created_at.desc()).limit(limit)
        if store_id:
            query = query.where(SyncQueueItemDB.store_id == store_id)
        if status:
            query = query.where(SyncQueueItemDB.status == status.value)

        async with self.db.get_session() as session:
            result = await session.execute(query)
            return [row.to_domain_model() for row in result.scalars().all()]

    # Maintenance

    async def cleanup(self) -> Dict[str, int]:
        """Prune finished items, fail stuck ones and drop items whose entity is gone"""
        now = utcnow()

        async with self.db.get_session() as session:
            completed = await session.execute(
                delete(SyncQueueItemDB).where(
                    SyncQueueItemDB.status == QueueStatus.COMPLETED.value,
                    SyncQueueItemDB.processed_at < now - COMPLETED_RETENTION
                )
            )
            stuck = await session.execute(
                update(SyncQueueItemDB)
                .where(
                    SyncQueueItemDB.status == QueueStatus.PROCESSING.value,
                    SyncQueueItemDB.created_at < now - STUCK_PROCESSING_AFTER
                )
                .values(
                    status=QueueStatus.FAILED.value,
                    error_message='Processing timeout - marked as stuck',
                    processed_at=now
                )
            )
            failed = await session.execute(
                delete(SyncQueueItemDB).where(
                    SyncQueueItemDB.status == QueueStatus.FAILED.value,
                    SyncQueueItemDB.created_at < now - FAILED_RETENTION
                )
            )
            counts = {
                'completed_removed': completed.rowcount or 0,
                'stuck_marked': stuck.rowcount or 0,
                'failed_removed': failed.rowcount or 0,
            }

        counts['orphaned_removed'] = await self._remove_orphans()
        self.logger.info(f"Sync queue cleanup: {counts}")
        return counts

    async def _remove_orphans(self) -> int:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(SyncQueueItemDB.id, SyncQueueItemDB.entity_type, SyncQueueItemDB.entity_id)
                .where(SyncQueueItemDB.status.in_([QueueStatus.PENDING.value, QueueStatus.FAILED.value]))
                .limit(ORPHAN_SCAN_LIMIT)
            )
            candidates = result.all()

        orphaned = []
        for item_id, entity_type, entity_id in candidates:
            try:
                repository = self.entity_repositories.get(EntityType(entity_type.lower()))
            except ValueError:
                continue
            if repository and not await repository.exists(entity_id):
                orphaned.append(item_id)

        if orphaned:
            async with self.db.get_session() as session:
                await session.execute(delete(SyncQueueItemDB).where(SyncQueueItemDB.id.in_(orphaned)))
        return len(orphaned)
