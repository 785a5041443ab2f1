"""
Pytest configuration and fixtures for ShelfSync tests
"""

import copy
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from shelfsync.config.config_loader import DEFAULT_CONFIG, SyncQueueSettings
from shelfsync.core.database import DatabaseService
from shelfsync.core.models import ConferenceRoomDB, PersonDB, SpaceDB, StoreDB, utcnow
from shelfsync.core.queue_store import SyncQueueStore
from shelfsync.core.repositories import StoreRepository, build_entity_repositories
from shelfsync.core.sync_error_logger import SyncErrorLogger
from shelfsync.core.sync_queue_processor import SyncQueueProcessor

MEMORY_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeClock:
    """Controllable replacement for utcnow()"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class Seeder:
    """Inserts stores and label entities straight into the database"""

    def __init__(self, db: DatabaseService):
        self.db = db

    async def _add(self, row):
        async with self.db.get_session() as session:
            session.add(row)
        return row.id

    async def store(self, store_id='store-1', code='S001', sync_enabled=True, company_code='ACME'):
        return await self._add(StoreDB(id=store_id, code=code, name=f"Store {code}",
                                       company_code=company_code, sync_enabled=sync_enabled))

    async def space(self, space_id, store_id='store-1', external_id=None, data=None):
        return await self._add(SpaceDB(id=space_id, store_id=store_id, external_id=external_id, data=data or {}))

    async def person(self, person_id, store_id='store-1', external_id=None, virtual_space_id=None, data=None):
        return await self._add(PersonDB(id=person_id, store_id=store_id, external_id=external_id,
                                        virtual_space_id=virtual_space_id, data=data or {}))

    async def conference_room(self, room_id, store_id='store-1', external_id=None, room_name='Room', **fields):
        return await self._add(ConferenceRoomDB(id=room_id, store_id=store_id, external_id=external_id,
                                                room_name=room_name, **fields))


@pytest.fixture
def test_config():
    """Default configuration pointed at an in-memory database with the timer off"""
    config = copy.deepcopy(DEFAULT_CONFIG)
    config['database']['url'] = MEMORY_DATABASE_URL
    config['sync_queue']['enabled'] = False
    config['aims'].update({
        'base_url': 'https://aims.test',
        'username': 'sync@example.com',
        'password': 'secret',
        'company_code': 'ACME',
        'login_base_delay_ms': 0,
    })
    return config


@pytest.fixture
async def db():
    """In-memory database with the schema created"""
    service = DatabaseService(MEMORY_DATABASE_URL)
    await service.create_tables()
    yield service
    await service.close()


@pytest.fixture
def seed(db):
    return Seeder(db)


@pytest.fixture
async def store(seed):
    """A sync-enabled store"""
    return await seed.store()


@pytest.fixture
def store_repository(db):
    return StoreRepository(db)


@pytest.fixture
def entity_repositories(db):
    return build_entity_repositories(db)


@pytest.fixture
def queue_store(db, entity_repositories):
    return SyncQueueStore(db, entity_repositories)


@pytest.fixture
def error_logger(db):
    return SyncErrorLogger(db)


@pytest.fixture
def clock():
    """Clock well past the settle delay of anything enqueued during the test"""
    return FakeClock(utcnow() + timedelta(minutes=1))


@pytest.fixture
def aims_gateway():
    gateway = AsyncMock()
    gateway.push_articles = AsyncMock(return_value=None)
    gateway.delete_articles = AsyncMock(return_value=None)
    return gateway


@pytest.fixture
def processor(queue_store, store_repository, entity_repositories, aims_gateway, error_logger, clock):
    return SyncQueueProcessor(
        queue_store=queue_store,
        store_repository=store_repository,
        entity_repositories=entity_repositories,
        aims_gateway=aims_gateway,
        settings=SyncQueueSettings(),
        error_logger=error_logger,
        clock=clock
    )
