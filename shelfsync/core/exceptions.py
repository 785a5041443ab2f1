"""
Exception classes for the sync pipeline.
"""

from typing import Optional


class ShelfSyncError(Exception):
    """Base exception for all ShelfSync errors."""


class QueueItemNotFoundError(ShelfSyncError):
    """Raised when a sync queue item does not exist."""

    def __init__(self, item_id: str):
        super().__init__("Item not found")
        self.item_id = item_id


class SyncDisabledError(ShelfSyncError):
    """Raised when a store has AIMS sync switched off."""

    def __init__(self, store_id: str):
        super().__init__("Sync disabled for store")
        self.store_id = store_id


class QueueItemInProgressError(ShelfSyncError):
    """Raised when another worker is already processing a queue item."""

    def __init__(self, item_id: str):
        super().__init__("Item is already being processed")
        self.item_id = item_id


class EntityNotFoundError(ShelfSyncError):
    """Raised when an entity record is missing.

    Writing sync status back onto a record that the CRUD layer deleted in the
    meantime raises this; the processor treats it as ignorable.
    """

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type} '{entity_id}' not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ArticleBuildError(ShelfSyncError):
    """Raised when an AIMS article cannot be built for an entity."""


class UnsupportedEntityTypeError(ShelfSyncError):
    """Raised for queue items tagged with an unknown entity type."""

    def __init__(self, entity_type: str):
        super().__init__(f"Unknown entity type: {entity_type}")
        self.entity_type = entity_type


class UnsupportedActionError(ShelfSyncError):
    """Raised for queue items tagged with an unknown action."""

    def __init__(self, action: str):
        super().__init__(f"Unknown action: {action}")
        self.action = action


class AimsGatewayError(ShelfSyncError):
    """Base class for AIMS gateway failures."""


class AimsConfigurationError(AimsGatewayError):
    """Raised when AIMS credentials or store settings are missing."""


class AimsRequestError(AimsGatewayError):
    """Raised when an AIMS HTTP call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)

    @property
    def is_retryable(self) -> bool:
        return self.status_code == 429 or (self.status_code is not None and 500 <= self.status_code < 600)
