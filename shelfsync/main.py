"""
Main entry point for ShelfSync
Wires the database, AIMS gateway and sync queue processor into a FastAPI app
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shelfsync import __version__
from shelfsync.api import sync_router
from shelfsync.config.config_loader import SyncQueueSettings, load_config
from shelfsync.core.database import DatabaseService
from shelfsync.core.exceptions import ShelfSyncError
from shelfsync.core.logging_manager import setup_logging
from shelfsync.core.models import EntityType, utcnow
from shelfsync.core.queue_store import SyncQueueStore
from shelfsync.core.repositories import EntityRepository, StoreRepository, build_entity_repositories
from shelfsync.core.sync_error_logger import SyncErrorLogger
from shelfsync.core.sync_queue_processor import SyncQueueProcessor
from shelfsync.integrations.aims_gateway import AimsConfig, AimsGateway

logger = logging.getLogger(__name__)


@dataclass
class ShelfSyncServices:
    """Component graph shared by the API and the CLI"""
    config: Dict[str, Any]
    db: DatabaseService
    store_repository: StoreRepository
    entity_repositories: Dict[EntityType, EntityRepository]
    queue_store: SyncQueueStore
    aims_gateway: AimsGateway
    error_logger: SyncErrorLogger
    processor: SyncQueueProcessor
    settings: SyncQueueSettings

    async def close(self):
        await self.processor.stop()
        await self.processor.wait_idle()
        await self.aims_gateway.close()
        await self.db.close()


def build_services(config: Dict[str, Any], transport: Optional[httpx.AsyncBaseTransport] = None) -> ShelfSyncServices:
    """Construct every component from configuration"""
    db_config = config.get('database', {})
    db = DatabaseService(database_url=db_config['url'], echo=db_config.get('echo', False))

    settings = SyncQueueSettings.from_config(config)
    store_repository = StoreRepository(db)
    entity_repositories = build_entity_repositories(db)
    queue_store = SyncQueueStore(db, entity_repositories, max_attempts=settings.default_max_attempts)
    aims_gateway = AimsGateway(AimsConfig.from_config(config), store_repository, transport=transport)
    error_logger = SyncErrorLogger(db)

    processor = SyncQueueProcessor(
        queue_store=queue_store,
        store_repository=store_repository,
        entity_repositories=entity_repositories,
        aims_gateway=aims_gateway,
        settings=settings,
        error_logger=error_logger
    )

    return ShelfSyncServices(
        config=config,
        db=db,
        store_repository=store_repository,
        entity_repositories=entity_repositories,
        queue_store=queue_store,
        aims_gateway=aims_gateway,
        error_logger=error_logger,
        processor=processor,
        settings=settings
    )


async def shelfsync_error_handler(request: Request, exc: ShelfSyncError) -> JSONResponse:
    logger.error(f"Unhandled ShelfSync error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": exc.__class__.__name__, "detail": str(exc)}
    )


def create_app(config: Optional[Dict[str, Any]] = None, services: Optional[ShelfSyncServices] = None) -> FastAPI:
    """Create the FastAPI application; the processor starts with the app"""
    config = config if config is not None else load_config()
    services = services or build_services(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting ShelfSync v{__version__}...")
        await services.db.create_tables()

        if services.settings.enabled:
            await services.processor.start(services.settings.interval_seconds)
        else:
            logger.info("Sync queue processor disabled by configuration")

        logger.info("ShelfSync started successfully")
        yield

        logger.info("Shutting down ShelfSync...")
        await services.close()
        logger.info("ShelfSync shutdown complete")

    app = FastAPI(
        title="ShelfSync",
        description="Outbound sync queue from the store database to AIMS electronic shelf labels",
        version=__version__,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.get('api', {}).get('cors_origins', ["*"]),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"]
    )

    app.state.services = services
    app.state.processor = services.processor
    app.state.queue_store = services.queue_store
    app.state.store_repository = services.store_repository
    app.state.aims_gateway = services.aims_gateway

    app.exception_handler(ShelfSyncError)(shelfsync_error_handler)
    app.include_router(sync_router, prefix="/api/v1/sync", tags=["Synchronization"])

    @app.get("/health")
    async def health_check():
        """Database connectivity and processor state"""
        database_ok = await services.db.health_check()
        return {
            "status": "healthy" if database_ok else "degraded",
            "version": __version__,
            "timestamp": utcnow().isoformat(),
            "database": {"status": "connected" if database_ok else "error"},
            "sync_queue": {
                "running": services.processor.is_running,
                "processing": services.processor.is_processing,
            },
        }

    return app


def main(config_path: Optional[str] = None):
    config = load_config(config_path)
    setup_logging(config)

    api_config = config.get('api', {})
    uvicorn.run(
        create_app(config),
        host=api_config.get('host', '0.0.0.0'),
        port=int(api_config.get('port', 8080)),
        log_config=None
    )


if __name__ == "__main__":
    main()
