import httpx
import pytest
from fastapi.testclient import TestClient

from commissionlink.api.main import (
    app,
    get_commission_service,
    get_sales_tracker,
    get_settings,
    get_smart_links,
    get_sync_manager,
)
from commissionlink.ingest.backend import BackendError
from commissionlink.ingest.shopify import ShopifyAuthError
from commissionlink.jobs.commissions import CommissionService
from commissionlink.jobs.product_sync import ProductSyncManager
from commissionlink.jobs.sales import SalesTracker
from commissionlink.jobs.smart_links import SmartLinkService
from commissionlink.utils.urls import TRACKING_COOKIE, load_tracking

from conftest import FakeCatalog, make_node

SHOP_HEADER = {"X-Shopify-Shop-Domain": "demo.myshopify.com"}


@pytest.fixture()
def catalog():
    return FakeCatalog([make_node(1, "Galaxy phone", product_type="Phones"), make_node(2, "Novel")])


@pytest.fixture()
def tracker(backend, settings, catalog):
    return SalesTracker(backend, settings=settings, catalog=catalog)


@pytest.fixture()
def client(backend, settings, catalog, tracker):
    manager = ProductSyncManager(catalog, backend, settings=settings)
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_sync_manager] = lambda: manager
    app.dependency_overrides[get_sales_tracker] = lambda: tracker
    app.dependency_overrides[get_smart_links] = lambda: SmartLinkService(backend, settings=settings)
    app.dependency_overrides[get_commission_service] = lambda: CommissionService(backend, catalog)
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_sync_products(client, backend):
    response = client.get("/products/sync", params={"shop": "demo"})

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 2
    assert body["lastSync"] is not None
    status = client.get("/products/sync/status", params={"shop": "demo"}).json()
    assert status["isRecent"] is True
    assert status["inProgress"] is False


def test_sync_without_token_is_unauthorized(client, catalog, monkeypatch):
    async def no_token(shop_id, **kwargs):
        raise ShopifyAuthError("No Shopify access token for demo")

    monkeypatch.setattr(catalog, "fetch_products", no_token)

    response = client.get("/products/sync", params={"shop": "demo"})

    assert response.status_code == 401


def test_resync_missing_product(client):
    assert client.post("/products/999/resync", params={"shop": "demo"}).status_code == 404


def test_resync_product(client):
    response = client.post("/products/1/resync", params={"shop": "demo"})

    assert response.status_code == 200
    assert response.json()["product"]["productId"] == "1"


def test_categories_and_resolve(client):
    categories = client.get("/commissions/categories").json()
    assert len(categories) == 37

    resolved = client.post("/commissions/resolve", json={"product": {"productType": "Phones"}, "price": 999}).json()
    assert resolved == {
        "rate": 4,
        "category": "Phones & Tablets",
        "subcategory": "Phones",
        "isDefault": False,
        "price": 999.0,
        "value": 39.96,
    }


def test_overview(client):
    client.get("/products/sync", params={"shop": "demo"})

    overview = client.get("/commissions/overview", params={"shop": "demo"}).json()

    assert overview["totalCommissions"] == 0
    assert overview["categoryStats"]["total_products"] == 2


def test_track_redirects_and_sets_cookie(client, backend, settings):
    backend.links["trk-1"] = {"shopId": "demo", "productId": "42", "affiliateId": "aff-9"}

    response = client.get("/track/trk-1", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"].startswith("https://demo.myshopify.com/products/42?ref_track=trk-1")
    payload = load_tracking(response.cookies[TRACKING_COOKIE], settings.signing_secret, max_age=60)
    assert payload["trackId"] == "trk-1"
    assert payload["affiliateId"] == "aff-9"
    assert backend.clicks[0]["ip_address"] == "testclient"


def test_track_ignores_foreign_redirect(client, backend):
    backend.links["trk-1"] = {"shopId": "demo", "productId": "42", "affiliateId": "aff-9"}

    response = client.get("/track/trk-1", params={"redirect_to": "https://evil.example/phish"}, follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"].startswith("https://demo.myshopify.com/products/42?")


def test_unknown_track_redirects_to_shop(client):
    response = client.get("/track/nope", params={"shop": "demo"}, follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "https://demo.myshopify.com"
    assert TRACKING_COOKIE not in response.cookies


def test_webhook_requires_shop_header(client):
    assert client.post("/webhooks/orders/created", json={"id": 1}).status_code == 400


def test_order_created_webhook(client, backend):
    backend.links["abc"] = {"affiliateId": "aff-1"}
    order = {
        "id": 5001,
        "currency": "USD",
        "created_at": "2024-03-01T12:00:00Z",
        "note_attributes": [{"name": "commission_track_id", "value": "abc"}],
        "line_items": [{"id": 1, "product_id": 1, "title": "Galaxy phone", "product_type": "Phones", "price": "500", "quantity": 1}],
    }

    response = client.post("/webhooks/orders/created", json=order, headers=SHOP_HEADER)

    assert response.status_code == 200
    assert response.json() == {"success": True, "attributed": True}
    assert backend.sales[0]["shopId"] == "demo"
    assert backend.sales[0]["commissionValue"] == 20.0


def test_order_paid_webhook_without_attribution(client, backend):
    response = client.post("/webhooks/orders/paid", json={"id": 1, "line_items": []}, headers=SHOP_HEADER)

    assert response.json() == {"success": True, "attributed": False}
    assert backend.sales == []


def test_webhook_acknowledges_when_processing_fails(client, tracker, monkeypatch):
    async def explode(order, attribution=None):
        raise BackendError("backend down", status_code=503)

    monkeypatch.setattr(tracker, "process_order", explode)

    response = client.post("/webhooks/orders/created", json={"id": 1}, headers=SHOP_HEADER)

    assert response.status_code == 200
    assert response.json() == {"success": True, "attributed": False}


def test_order_update_webhook_acknowledges_when_backend_fails(client, tracker, monkeypatch):
    async def explode(order):
        raise httpx.ConnectError("backend unreachable")

    monkeypatch.setattr(tracker, "process_order_update", explode)

    response = client.post("/webhooks/orders/updated", json={"id": 7}, headers=SHOP_HEADER)

    assert response.status_code == 200
    assert response.json() == {"success": True, "updated": False}


def test_order_updated_webhook(client, backend):
    order = {"id": 7, "financial_status": "paid", "total_price": "50.00"}

    response = client.post("/webhooks/orders/updated", json=order, headers=SHOP_HEADER)

    assert response.json() == {"success": True, "updated": True}
    assert backend.sale_updates == [
        {"shopId": "demo", "orderId": 7, "fromStatus": "pending", "toStatus": "paid", "orderTotal": 50.0}
    ]
