"""
Sync error audit trail
Persists AIMS sync failures to the audit log for later inspection
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError

from shelfsync.core.database import DatabaseService
from shelfsync.core.models import AuditLogDB, utcnow

ACTION_PREFIX = 'AIMS_SYNC_'
ACTION_SUFFIX = '_FAILED'


class SyncErrorLogger:
    """Writes and queries AIMS_SYNC_*_FAILED audit records"""

    def __init__(self, db: DatabaseService):
        self.db = db
        self.logger = logging.getLogger(__name__)

    async def log(self, store_id: str, entity_type: str, entity_id: str, action: str,
                  error_message: str, payload: Optional[Dict[str, Any]] = None):
        """Record a failure; never raises into the caller"""
        try:
            async with self.db.get_session() as session:
                session.add(AuditLogDB(
                    store_id=store_id,
                    action=f"{ACTION_PREFIX}{action}{ACTION_SUFFIX}",
                    entity_type=entity_type,
                    entity_id=entity_id,
                    new_data={
                        'errorMessage': error_message,
                        'requestPayload': payload,
                        'timestamp': utcnow().isoformat(),
                    }
                ))
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to record sync error for {entity_type}/{entity_id}: {e}")

    async def get_recent_errors(self, store_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(AuditLogDB)
                .where(AuditLogDB.store_id == store_id, *self._failure_filter())
                .order_by(AuditLogDB.created_at.desc(), AuditLogDB.id.desc())
                .limit(limit)
            )
            return [
                {
                    'id': row.id,
                    'action': row.action,
                    'entity_type': row.entity_type,
                    'entity_id': row.entity_id,
                    'error_message': (row.new_data or {}).get('errorMessage'),
                    'created_at': row.created_at,
                }
                for row in result.scalars().all()
            ]

    async def get_error_count(self, store_id: str, hours: int = 24) -> int:
        since = utcnow() - timedelta(hours=hours)
        async with self.db.get_session() as session:
            result = await session.execute(
                select(func.count(AuditLogDB.id))
                .where(AuditLogDB.store_id == store_id, AuditLogDB.created_at >= since, *self._failure_filter())
            )
            return result.scalar_one()

    async def cleanup(self, days_to_keep: int = 30) -> int:
        cutoff = utcnow() - timedelta(days=days_to_keep)
        async with self.db.get_session() as session:
            result = await session.execute(
                delete(AuditLogDB).where(AuditLogDB.created_at < cutoff, *self._failure_filter())
            )
            removed = result.rowcount or 0

        self.logger.info(f"Cleaned up {removed} old sync error logs")
        return removed

    @staticmethod
    def _failure_filter():
        return (AuditLogDB.action.startswith(ACTION_PREFIX), AuditLogDB.action.endswith(ACTION_SUFFIX))
