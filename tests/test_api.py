"""
HTTP adapter tests against an in-memory engine.
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from marketplace.config import Settings
from marketplace.engine import MarketplaceEngine
from marketplace.main import create_app
from marketplace.mongo import MongoListingStore
from marketplace.rotation import RotationScheduler


@pytest.fixture
def client(engine, store):
    scheduler = RotationScheduler(store, discount=Decimal("0.5"))
    app = create_app(
        settings=Settings(rotation_enabled=False, store_backend="memory"),
        engine=engine,
        scheduler=scheduler,
    )
    with TestClient(app) as c:
        yield c


def sell(client, price="100", seller="S-001"):
    resp = client.post("/api/v1/listings", json={
        "seller_id": seller, "item_payload": "DIAMOND", "price": price,
    })
    assert resp.status_code == 201
    return resp.json()


class TestListings:
    def test_sell_and_browse(self, client):
        listing = sell(client, "12.345")
        assert listing["price"] == "12.35"
        assert listing["tier"] == "normal"

        page = client.get("/api/v1/listings", params={"page_size": 9}).json()
        assert page["total"] == 1
        assert page["items"][0]["id"] == listing["id"]

    def test_invalid_price(self, client):
        resp = client.post("/api/v1/listings", json={
            "seller_id": "S-001", "item_payload": "DIAMOND", "price": "-1",
        })
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_LISTING"

    def test_unknown_listing(self, client):
        assert client.get("/api/v1/listings/nope").status_code == 404


class TestPurchase:
    def test_purchase_then_conflict(self, client):
        listing = sell(client)
        url = f"/api/v1/listings/{listing['id']}/purchase"
        body = {"buyer_id": "B-001", "expected_version": listing["version"]}

        resp = client.post(url, json=body)
        assert resp.status_code == 200
        assert resp.json()["charged"] == "100.00"

        again = client.post(url, json=body)
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "LISTING_UNAVAILABLE"

    def test_insufficient_funds(self, client):
        listing = sell(client)
        resp = client.post(f"/api/v1/listings/{listing['id']}/purchase", json={
            "buyer_id": "B-002", "expected_version": 0,
        })
        assert resp.status_code == 402
        assert client.get("/api/v1/listings").json()["total"] == 1

    def test_transaction_history(self, client):
        listing = sell(client, "10")
        client.post(f"/api/v1/listings/{listing['id']}/purchase", json={
            "buyer_id": "B-001", "expected_version": 0,
        })
        history = client.get("/api/v1/transactions/S-001").json()["transactions"]
        assert len(history) == 1
        assert history[0]["buyer_id"] == "B-001"
        assert history[0]["price"] == "10.00"

    def test_store_down_is_503(self, client, store):
        listing = sell(client)
        store.disconnect()
        resp = client.post(f"/api/v1/listings/{listing['id']}/purchase", json={
            "buyer_id": "B-001", "expected_version": 0,
        })
        assert resp.status_code == 503


class TestAdmin:
    def test_rotate_now(self, client):
        for _ in range(3):
            sell(client)
        assert client.post("/api/v1/admin/rotate", params={"batch_size": 2}).json() == {"rotated": 2}

        black = client.get("/api/v1/listings", params={"tier": "black_market"}).json()
        assert black["total"] == 2
        assert all(item["price"] == "50.00" for item in black["items"])

    def test_rotation_status(self, client):
        status = client.get("/api/v1/admin/rotation").json()
        assert status["running"] is False
        assert status["batch_size"] == 5

    def test_seed_replaces_listings(self, client):
        sell(client)
        resp = client.post("/api/v1/admin/seed").json()
        assert resp["status"] == "seeded"
        normal = client.get("/api/v1/listings").json()["total"]
        black = client.get("/api/v1/listings", params={"tier": "black_market"}).json()["total"]
        assert normal + black == resp["listings"]

    def test_reseed_does_not_grow_buyer_balances(self, client, engine):
        client.post("/api/v1/admin/seed")
        first = engine.funds.balance("B-0001")
        client.post("/api/v1/admin/seed")
        assert engine.funds.balance("B-0001") == first

    def test_reseed_refused_on_mongo_backend(self, funds, inventory, ledger):
        collection = MagicMock()
        engine = MarketplaceEngine(
            store=MongoListingStore(collection),
            funds=funds,
            inventory=inventory,
            ledger=ledger,
        )
        app = create_app(
            settings=Settings(rotation_enabled=False, store_backend="mongo"),
            engine=engine,
        )
        with TestClient(app) as c:
            resp = c.post("/api/v1/admin/seed")

        assert resp.status_code == 409
        collection.delete_many.assert_not_called()
        collection.insert_one.assert_not_called()

    def test_health(self, client):
        assert client.get("/api/v1/health").json()["status"] == "healthy"

    def test_health_degraded_when_mongo_unreachable(self, client):
        client.app.state.connection = MagicMock(ping=MagicMock(return_value=False))
        resp = client.get("/api/v1/health")
        assert resp.status_code == 503
        assert resp.json()["status"] == "degraded"
