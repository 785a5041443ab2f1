"""
Pydantic schemas for API request/response models
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


class QueueStatusEnum(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ItemErrorSchema(BaseModel):
    item_id: str
    error: str


class ProcessResultSchema(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[ItemErrorSchema] = Field(default_factory=list)


class PushResponse(BaseModel):
    message: str
    stats: ProcessResultSchema


class ProcessorStatusResponse(BaseModel):
    is_running: bool
    is_processing: bool
    interval_seconds: Optional[float] = None
    last_tick_at: Optional[datetime] = None
    last_result: Optional[ProcessResultSchema] = None


class QueueItemSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    store_id: str
    entity_type: str
    entity_id: str
    action: str
    payload: Optional[Dict[str, Any]] = None
    status: QueueStatusEnum
    attempts: int
    max_attempts: int
    error_message: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class QueueListResponse(BaseModel):
    items: List[QueueItemSchema]
    count: int


class RetryResponse(BaseModel):
    message: str
    error: Optional[str] = None


class CleanupResponse(BaseModel):
    completed_removed: int = 0
    stuck_marked: int = 0
    failed_removed: int = 0
    orphaned_removed: int = 0


class QueueCounts(BaseModel):
    pending: int
    failed: int


class StoreSyncStatusResponse(BaseModel):
    store_id: str
    store_code: str
    sync_enabled: bool
    last_aims_sync_at: Optional[datetime] = None
    queue: QueueCounts
    aims_connected: bool
