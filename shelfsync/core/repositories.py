"""
Entity and store repositories
Read access used to build AIMS articles and write-back of sync state
"""

import logging
from enum import Enum
from typing import Any, Dict, Generic, Optional, Type, TypeVar

from shelfsync.core.database import DatabaseService
from shelfsync.core.exceptions import EntityNotFoundError
from shelfsync.core.models import (
    ConferenceRoom, ConferenceRoomDB, EntityType, Person, PersonDB, Space, SpaceDB, Store, StoreDB
)

T = TypeVar('T')


def _column_values(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Unwrap enum members into their stored values"""
    return {key: value.value if isinstance(value, Enum) else value for key, value in fields.items()}


class StoreRepository:
    """Access to store records"""

    def __init__(self, db: DatabaseService):
        self.db = db
        self.logger = logging.getLogger(__name__)

    async def get_store(self, store_id: str) -> Optional[Store]:
        async with self.db.get_session() as session:
            store = await session.get(StoreDB, store_id)
            return store.to_domain_model() if store else None

    async def update_store(self, store_id: str, **fields):
        """Update store columns, e.g. ``last_aims_sync_at``"""
        async with self.db.get_session() as session:
            store = await session.get(StoreDB, store_id)
            if not store:
                raise EntityNotFoundError('store', store_id)
            for key, value in _column_values(fields).items():
                setattr(store, key, value)


class EntityRepository(Generic[T]):
    """CRUD-lite access for one synced entity table"""

    entity_type: EntityType
    model: Type[Any]

    def __init__(self, db: DatabaseService):
        self.db = db
        self.logger = logging.getLogger(__name__)

    async def find_by_id(self, entity_id: str) -> Optional[T]:
        async with self.db.get_session() as session:
            row = await session.get(self.model, entity_id)
            return row.to_domain_model() if row else None

    async def exists(self, entity_id: str) -> bool:
        async with self.db.get_session() as session:
            return await session.get(self.model, entity_id) is not None

    async def update(self, entity_id: str, **fields):
        """Update entity columns; raises EntityNotFoundError when the row is gone"""
        async with self.db.get_session() as session:
            row = await session.get(self.model, entity_id)
            if not row:
                raise EntityNotFoundError(self.entity_type.value, entity_id)
            for key, value in _column_values(fields).items():
                setattr(row, key, value)


class SpaceRepository(EntityRepository[Space]):
    entity_type = EntityType.SPACE
    model = SpaceDB


class PersonRepository(EntityRepository[Person]):
    entity_type = EntityType.PERSON
    model = PersonDB


class ConferenceRoomRepository(EntityRepository[ConferenceRoom]):
    entity_type = EntityType.CONFERENCE
    model = ConferenceRoomDB


def build_entity_repositories(db: DatabaseService) -> Dict[EntityType, EntityRepository]:
    """Repositories for every synced entity type, keyed by type"""
    return {
        EntityType.SPACE: SpaceRepository(db),
        EntityType.PERSON: PersonRepository(db),
        EntityType.CONFERENCE: ConferenceRoomRepository(db),
    }
