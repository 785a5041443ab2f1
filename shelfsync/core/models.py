"""
Core data models for ShelfSync - SQLAlchemy Integration
Stores, synced entities (spaces, people, conference rooms) and the outbound sync queue
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, List, Optional
import uuid

from sqlalchemy import Column, String, DateTime, Integer, Text, Boolean, JSON, ForeignKey, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how timestamps are stored"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


class EntityType(Enum):
    """Entity kinds that are mirrored to AIMS as articles"""
    SPACE = "space"
    PERSON = "person"
    CONFERENCE = "conference"


class SyncAction(Enum):
    """Queued mutation kinds"""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    SYNC_FULL = "SYNC_FULL"


class QueueStatus(Enum):
    """Sync queue item lifecycle"""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SyncStatus(Enum):
    """Per-entity AIMS sync state"""
    PENDING = "PENDING"
    SYNCED = "SYNCED"
    ERROR = "ERROR"


# SQLAlchemy Models
class StoreDB(Base):
    """Tenant/location that owns entities and sync configuration"""
    __tablename__ = 'stores'

    id = Column(String(36), primary_key=True, default=_new_id)
    code = Column(String(50), nullable=False, index=True)
    name = Column(String(200), default="")
    company_code = Column(String(50), nullable=True)
    sync_enabled = Column(Boolean, nullable=False, default=True)
    last_aims_sync_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def to_domain_model(self) -> 'Store':
        return Store(
            id=self.id,
            code=self.code,
            name=self.name or "",
            company_code=self.company_code,
            sync_enabled=bool(self.sync_enabled),
            last_aims_sync_at=self.last_aims_sync_at,
        )


class SpaceDB(Base):
    """SQLAlchemy model for Space"""
    __tablename__ = 'spaces'

    id = Column(String(36), primary_key=True, default=_new_id)
    store_id = Column(String(36), ForeignKey('stores.id'), nullable=False, index=True)
    external_id = Column(String(100), nullable=True, index=True)
    label_code = Column(String(100), nullable=True)
    data = Column(JSON, default=dict)

    sync_status = Column(String(20), nullable=False, default=SyncStatus.PENDING.value)
    last_synced_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_domain_model(self) -> 'Space':
        return Space(
            id=self.id,
            store_id=self.store_id,
            external_id=self.external_id,
            label_code=self.label_code,
            data=dict(self.data or {}),
            sync_status=SyncStatus(self.sync_status),
            last_synced_at=self.last_synced_at,
        )


class PersonDB(Base):
    """SQLAlchemy model for Person"""
    __tablename__ = 'people'

    id = Column(String(36), primary_key=True, default=_new_id)
    store_id = Column(String(36), ForeignKey('stores.id'), nullable=False, index=True)
    external_id = Column(String(100), nullable=True, index=True)
    virtual_space_id = Column(String(100), nullable=True)
    assigned_space_id = Column(String(100), nullable=True)
    data = Column(JSON, default=dict)

    sync_status = Column(String(20), nullable=False, default=SyncStatus.PENDING.value)
    last_synced_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_domain_model(self) -> 'Person':
        return Person(
            id=self.id,
            store_id=self.store_id,
            external_id=self.external_id,
            virtual_space_id=self.virtual_space_id,
            assigned_space_id=self.assigned_space_id,
            data=dict(self.data or {}),
            sync_status=SyncStatus(self.sync_status),
            last_synced_at=self.last_synced_at,
        )


class ConferenceRoomDB(Base):
    """SQLAlchemy model for ConferenceRoom"""
    __tablename__ = 'conference_rooms'

    id = Column(String(36), primary_key=True, default=_new_id)
    store_id = Column(String(36), ForeignKey('stores.id'), nullable=False, index=True)
    external_id = Column(String(100), nullable=True, index=True)
    room_name = Column(String(200), default="")

    # Meeting state rendered on the label
    has_meeting = Column(Boolean, default=False)
    meeting_name = Column(String(200), nullable=True)
    start_time = Column(String(20), nullable=True)
    end_time = Column(String(20), nullable=True)
    participants = Column(JSON, default=list)

    sync_status = Column(String(20), nullable=False, default=SyncStatus.PENDING.value)
    last_synced_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_domain_model(self) -> 'ConferenceRoom':
        return ConferenceRoom(
            id=self.id,
            store_id=self.store_id,
            external_id=self.external_id,
            room_name=self.room_name or "",
            has_meeting=bool(self.has_meeting),
            meeting_name=self.meeting_name,
            start_time=self.start_time,
            end_time=self.end_time,
            participants=list(self.participants or []),
            sync_status=SyncStatus(self.sync_status),
            last_synced_at=self.last_synced_at,
        )


class SyncQueueItemDB(Base):
    """Durable outbound sync queue entry"""
    __tablename__ = 'sync_queue_items'

    id = Column(String(36), primary_key=True, default=_new_id)
    store_id = Column(String(36), ForeignKey('stores.id'), nullable=False, index=True)
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(String(36), nullable=False)
    action = Column(String(20), nullable=False)
    payload = Column(JSON, default=dict)

    status = Column(String(20), nullable=False, default=QueueStatus.PENDING.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    error_message = Column(Text, nullable=True)

    scheduled_at = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, default=utcnow)
    processed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('idx_sync_queue_due', 'status', 'scheduled_at'),
        Index('idx_sync_queue_entity', 'store_id', 'entity_type', 'entity_id'),
    )

    def to_domain_model(self, store_sync_enabled: Optional[bool] = None) -> 'SyncQueueItem':
        return SyncQueueItem(
            id=self.id,
            store_id=self.store_id,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            action=self.action,
            payload=dict(self.payload or {}),
            status=QueueStatus(self.status),
            attempts=self.attempts or 0,
            max_attempts=self.max_attempts or 0,
            error_message=self.error_message,
            scheduled_at=self.scheduled_at,
            created_at=self.created_at,
            processed_at=self.processed_at,
            store_sync_enabled=store_sync_enabled,
        )


class AuditLogDB(Base):
    """Audit trail, used for AIMS sync failure records"""
    __tablename__ = 'audit_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    store_id = Column(String(36), nullable=True, index=True)
    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(20), nullable=True)
    entity_id = Column(String(36), nullable=True)
    new_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)


# Domain models
@dataclass
class Store:
    """Store domain model"""
    id: str
    code: str
    name: str = ""
    company_code: Optional[str] = None
    sync_enabled: bool = True
    last_aims_sync_at: Optional[datetime] = None


@dataclass
class Space:
    """Space domain model"""
    id: str
    store_id: str
    external_id: Optional[str] = None
    label_code: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    sync_status: SyncStatus = SyncStatus.PENDING
    last_synced_at: Optional[datetime] = None


@dataclass
class Person:
    """Person domain model"""
    id: str
    store_id: str
    external_id: Optional[str] = None
    virtual_space_id: Optional[str] = None
    assigned_space_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    sync_status: SyncStatus = SyncStatus.PENDING
    last_synced_at: Optional[datetime] = None


@dataclass
class ConferenceRoom:
    """Conference room domain model"""
    id: str
    store_id: str
    external_id: Optional[str] = None
    room_name: str = ""
    has_meeting: bool = False
    meeting_name: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    participants: List[str] = field(default_factory=list)
    sync_status: SyncStatus = SyncStatus.PENDING
    last_synced_at: Optional[datetime] = None


@dataclass
class SyncQueueItem:
    """Sync queue item domain model.

    ``entity_type`` and ``action`` keep the raw stored tags; the processor
    resolves them to ``EntityType``/``SyncAction`` when dispatching so that a
    row with an unknown tag fails on its own instead of breaking the fetch.
    ``store_sync_enabled`` is only populated by queries that join the store.
    """
    id: str
    store_id: str
    entity_type: str
    entity_id: str
    action: str
    payload: Dict[str, Any] = field(default_factory=dict)
    status: QueueStatus = QueueStatus.PENDING
    attempts: int = 0
    max_attempts: int = 5
    error_message: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    store_sync_enabled: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'store_id': self.store_id,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'action': self.action,
            'payload': self.payload,
            'status': self.status.value,
            'attempts': self.attempts,
            'max_attempts': self.max_attempts,
            'error_message': self.error_message,
            'scheduled_at': self.scheduled_at,
            'created_at': self.created_at,
            'processed_at': self.processed_at,
        }


@dataclass
class ItemError:
    """Failure record for one queue item within a sweep"""
    item_id: str
    error: str


@dataclass
class ProcessResult:
    """Aggregated outcome of one sweep"""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[ItemError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'processed': self.processed,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'errors': [{'item_id': e.item_id, 'error': e.error} for e in self.errors],
        }
