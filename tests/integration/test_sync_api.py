"""
HTTP API tests for the sync routes
"""

import httpx
import pytest

from shelfsync.core.models import EntityType, QueueStatus, SpaceDB, StoreDB
from shelfsync.main import build_services, create_app

pytestmark = [pytest.mark.integration, pytest.mark.api]


class AimsStub:
    """Accepts logins and article writes unless told to reject pushes"""

    def __init__(self):
        self.reject_pushes = False
        self.article_requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith('/token'):
            return httpx.Response(200, json={'responseMessage': {'access_token': 'tok', 'expires_in': 3600}})

        self.article_requests.append(request)
        if self.reject_pushes:
            return httpx.Response(400, text="invalid article")
        return httpx.Response(200, json={'responseCode': 200})


@pytest.fixture
def aims_stub():
    return AimsStub()


@pytest.fixture
async def services(test_config, aims_stub):
    test_config['sync_queue']['settle_delay_ms'] = 0
    services = build_services(test_config, transport=httpx.MockTransport(aims_stub.handler))
    await services.db.create_tables()

    async with services.db.get_session() as session:
        session.add(StoreDB(id='store-1', code='S001', company_code='ACME', sync_enabled=True))
        session.add(StoreDB(id='store-off', code='S999', company_code='ACME', sync_enabled=False))
        session.add(SpaceDB(id='space-1', store_id='store-1', external_id='A-001', data={'name': 'Aisle 1'}))

    yield services
    await services.close()


@pytest.fixture
async def client(test_config, services):
    app = create_app(test_config, services)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"]["status"] == "connected"
    assert body["sync_queue"] == {"running": False, "processing": False}


async def test_processor_status(client):
    response = await client.get("/api/v1/sync/status")

    assert response.status_code == 200
    assert response.json()["is_running"] is False
    assert response.json()["last_result"] is None


async def test_push_for_store(client, services, aims_stub):
    item_id = await services.queue_store.queue_create('store-1', EntityType.SPACE, 'space-1')

    response = await client.post("/api/v1/sync/push", params={"store_id": "store-1"})

    assert response.status_code == 200
    assert response.json() == {
        "message": "Push completed",
        "stats": {"processed": 1, "succeeded": 1, "failed": 0, "errors": []},
    }
    assert len(aims_stub.article_requests) == 1
    assert (await services.queue_store.find_item_by_id(item_id)).status == QueueStatus.COMPLETED


async def test_push_with_nothing_pending(client):
    response = await client.post("/api/v1/sync/push", params={"store_id": "store-1"})

    assert response.status_code == 200
    assert response.json()["message"] == "No pending changes to push"
    assert response.json()["stats"]["processed"] == 0


async def test_push_all_stores(client, services):
    await services.queue_store.queue_create('store-1', EntityType.SPACE, 'space-1')

    response = await client.post("/api/v1/sync/push")

    assert response.json()["stats"]["succeeded"] == 1


async def test_push_unknown_store(client):
    response = await client.post("/api/v1/sync/push", params={"store_id": "store-404"})

    assert response.status_code == 404


async def test_push_disabled_store(client):
    response = await client.post("/api/v1/sync/push", params={"store_id": "store-off"})

    assert response.status_code == 409


async def test_list_queue(client, services):
    item_id = await services.queue_store.queue_create('store-1', EntityType.SPACE, 'space-1')
    await services.queue_store.queue_delete('store-1', EntityType.SPACE, 'space-2', external_id='A-002')

    response = await client.get("/api/v1/sync/queue", params={"store_id": "store-1", "limit": 1})
    assert response.status_code == 200
    assert response.json()["count"] == 1

    await services.queue_store.update_item(item_id, status=QueueStatus.FAILED)
    response = await client.get("/api/v1/sync/queue", params={"status": "FAILED"})
    items = response.json()["items"]
    assert [item["id"] for item in items] == [item_id]
    assert items[0]["status"] == "FAILED"


async def test_list_queue_rejects_unknown_status(client):
    response = await client.get("/api/v1/sync/queue", params={"status": "LOST"})

    assert response.status_code == 422


async def test_retry_unknown_item(client):
    response = await client.post("/api/v1/sync/queue/missing/retry")

    assert response.status_code == 404
    assert response.json()["detail"] == "Item not found"


async def test_retry_disabled_store(client, services):
    item_id = await services.queue_store.queue_delete('store-off', EntityType.SPACE, 'space-9', external_id='Z')

    response = await client.post(f"/api/v1/sync/queue/{item_id}/retry")

    assert response.status_code == 409


async def test_retry_item_already_processing(client, services, aims_stub):
    item_id = await services.queue_store.queue_create('store-1', EntityType.SPACE, 'space-1')
    await services.queue_store.update_item(item_id, status=QueueStatus.PROCESSING)

    response = await client.post(f"/api/v1/sync/queue/{item_id}/retry")

    assert response.status_code == 409
    assert response.json()["detail"] == "Item is already being processed"
    assert aims_stub.article_requests == []


async def test_retry_success(client, services):
    item_id = await services.queue_store.queue_create('store-1', EntityType.SPACE, 'space-1')
    await services.queue_store.update_item(item_id, status=QueueStatus.FAILED, attempts=5)

    response = await client.post(f"/api/v1/sync/queue/{item_id}/retry")

    assert response.status_code == 200
    assert response.json() == {"message": "Retry completed successfully", "error": None}


async def test_retry_failure_is_reported(client, services, aims_stub):
    aims_stub.reject_pushes = True
    item_id = await services.queue_store.queue_create('store-1', EntityType.SPACE, 'space-1')

    response = await client.post(f"/api/v1/sync/queue/{item_id}/retry")

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Retry attempted but failed"
    assert "400" in body["error"]

    item = await services.queue_store.find_item_by_id(item_id)
    assert item.attempts == 1
    assert item.status == QueueStatus.PENDING


async def test_cleanup(client):
    response = await client.post("/api/v1/sync/queue/cleanup")

    assert response.status_code == 200
    assert response.json() == {
        "completed_removed": 0, "stuck_marked": 0, "failed_removed": 0, "orphaned_removed": 0
    }


async def test_store_status(client, services):
    await services.queue_store.queue_create('store-1', EntityType.SPACE, 'space-1')

    response = await client.get("/api/v1/sync/stores/store-1/status")

    assert response.status_code == 200
    body = response.json()
    assert body["store_code"] == "S001"
    assert body["sync_enabled"] is True
    assert body["queue"] == {"pending": 1, "failed": 0}
    assert body["aims_connected"] is True


async def test_store_status_unknown_store(client):
    response = await client.get("/api/v1/sync/stores/store-404/status")

    assert response.status_code == 404


async def test_build_services_applies_max_attempts(test_config):
    test_config['sync_queue']['default_max_attempts'] = 3
    services = build_services(test_config)
    try:
        assert services.queue_store.max_attempts == 3
    finally:
        await services.close()
