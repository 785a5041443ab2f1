"""
Sync API Router
Manual push, queue inspection, retry and cleanup for the AIMS sync queue
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from shelfsync.api.dependencies import get_aims_gateway, get_processor, get_queue_store, get_store_repository
from shelfsync.api.schemas import (
    CleanupResponse, ProcessorStatusResponse, PushResponse, QueueItemSchema, QueueListResponse,
    QueueStatusEnum, RetryResponse, StoreSyncStatusResponse
)
from shelfsync.core.exceptions import QueueItemInProgressError, QueueItemNotFoundError, SyncDisabledError
from shelfsync.core.models import QueueStatus

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/push", response_model=PushResponse)
async def push_pending(
    store_id: Optional[str] = Query(None),
    processor=Depends(get_processor),
    queue_store=Depends(get_queue_store),
    store_repository=Depends(get_store_repository)
):
    """Run a sweep now, optionally limited to one store"""
    if store_id:
        store = await store_repository.get_store(store_id)
        if not store:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Store '{store_id}' not found")
        if not store.sync_enabled:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Sync disabled for store")

        if await queue_store.get_pending_count(store_id) == 0:
            return PushResponse(message="No pending changes to push", stats={})

    logger.info(f"Manual push triggered{f' for store {store_id}' if store_id else ''}")
    result = await processor.process_pending_items(store_id)
    return PushResponse(message="Push completed", stats=result.to_dict())


@router.get("/status", response_model=ProcessorStatusResponse)
async def get_sync_status(processor=Depends(get_processor)):
    """Processor state and the outcome of its last tick"""
    return ProcessorStatusResponse(**processor.get_status())


@router.get("/queue", response_model=QueueListResponse)
async def list_queue(
    store_id: Optional[str] = Query(None),
    status_filter: Optional[QueueStatusEnum] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=1000),
    queue_store=Depends(get_queue_store)
):
    items = await queue_store.list_items(
        store_id=store_id,
        status=QueueStatus(status_filter.value) if status_filter else None,
        limit=limit
    )
    return QueueListResponse(
        items=[QueueItemSchema(**item.to_dict()) for item in items],
        count=len(items)
    )


@router.post("/queue/{item_id}/retry", response_model=RetryResponse)
async def retry_item(item_id: str, processor=Depends(get_processor)):
    """Reprocess one queue item immediately"""
    try:
        await processor.process_item_by_id(item_id)
    except QueueItemNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (SyncDisabledError, QueueItemInProgressError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        # Failure is already recorded on the item
        return RetryResponse(message="Retry attempted but failed", error=str(e))

    return RetryResponse(message="Retry completed successfully")


@router.post("/queue/cleanup", response_model=CleanupResponse)
async def cleanup_queue(queue_store=Depends(get_queue_store)):
    counts = await queue_store.cleanup()
    return CleanupResponse(**counts)


@router.get("/stores/{store_id}/status", response_model=StoreSyncStatusResponse)
async def get_store_status(
    store_id: str,
    queue_store=Depends(get_queue_store),
    store_repository=Depends(get_store_repository),
    aims_gateway=Depends(get_aims_gateway)
):
    store = await store_repository.get_store(store_id)
    if not store:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Store '{store_id}' not found")

    return StoreSyncStatusResponse(
        store_id=store.id,
        store_code=store.code,
        sync_enabled=store.sync_enabled,
        last_aims_sync_at=store.last_aims_sync_at,
        queue={
            'pending': await queue_store.get_pending_count(store_id),
            'failed': await queue_store.get_failed_count(store_id),
        },
        aims_connected=await aims_gateway.check_health()
    )
