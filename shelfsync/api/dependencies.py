"""
API Dependencies for FastAPI Router Modules
Components are created at startup and published on ``app.state``
"""

import logging

from fastapi import HTTPException, Request, status

from shelfsync.core.queue_store import SyncQueueStore
from shelfsync.core.repositories import StoreRepository
from shelfsync.core.sync_queue_processor import SyncQueueProcessor
from shelfsync.integrations.aims_gateway import AimsGateway

logger = logging.getLogger(__name__)


def _get_component(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        logger.error(f"{name} not initialized - check application startup")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not available"
        )
    return component


async def get_processor(request: Request) -> SyncQueueProcessor:
    return _get_component(request, 'processor')


async def get_queue_store(request: Request) -> SyncQueueStore:
    return _get_component(request, 'queue_store')


async def get_store_repository(request: Request) -> StoreRepository:
    return _get_component(request, 'store_repository')


async def get_aims_gateway(request: Request) -> AimsGateway:
    return _get_component(request, 'aims_gateway')
