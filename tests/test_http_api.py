"""Tests for the HTTP routes and error mapping."""

import asyncio
from datetime import timedelta

import pytest
from aiohttp.test_utils import TestClient, TestServer

from campus_eats.app import CampusEatsApp
from campus_eats.handlers.payment_handlers import CALLBACK_ACK
from campus_eats.models.order import OrderStatus, PaymentStatus
from campus_eats.utils.clock import utc_now

from .fakes import gateway_down, stk_callback_payload

CUSTOMER = {"X-User-Id": "student-1"}
ADMIN = {"X-User-Id": "admin-1", "X-Cafeteria-Id": "caf-main"}


@pytest.fixture
def app(db, gateway):
    db.add_menu_item("burger", "100", stock=10, category_id="mains")
    db.add_menu_item("fries", "60", stock=1, category_id="sides")
    db.add_discount(20, scope="item", menu_item_id="burger")
    return CampusEatsApp(db=db, gateway=gateway)


def _run(app, scenario):
    async def run():
        async with TestClient(TestServer(app.application)) as client:
            return await scenario(client)
    return asyncio.run(run())


async def _place_order(client, quantity=2):
    response = await client.post("/api/orders", json={
        "cafeteria_id": "caf-main",
        "items": [{"menu_item_id": "burger", "quantity": quantity}],
    }, headers=CUSTOMER)
    return response.status, await response.json()


class TestOrderRoutes:
    def test_create_order(self, app):
        status, body = _run(app, _place_order)

        assert status == 201
        assert body["total"] == "160.00"
        assert body["discount_amount"] == "40.00"
        assert body["status"] == "pending"
        assert body["discount_ids"] == [1]

    def test_requires_user(self, app):
        async def scenario(client):
            response = await client.post("/api/orders", json={"cafeteria_id": "caf-main", "items": []})
            return response.status

        assert _run(app, scenario) == 401

    def test_stock_error_is_bad_request(self, app):
        async def scenario(client):
            response = await client.post("/api/orders", json={
                "cafeteria_id": "caf-main",
                "items": [{"menu_item_id": "fries", "quantity": 3}],
            }, headers=CUSTOMER)
            return response.status, await response.json()

        status, body = _run(app, scenario)

        assert status == 400
        assert body["success"] is False
        assert body["details"]["stock"] == 1

    def test_invalid_json_is_bad_request(self, app):
        async def scenario(client):
            response = await client.post("/api/orders", data="not json", headers=CUSTOMER)
            return response.status

        assert _run(app, scenario) == 400

    def test_unknown_order_is_not_found(self, app):
        async def scenario(client):
            response = await client.get("/api/orders/missing", headers=CUSTOMER)
            return response.status, await response.json()

        status, body = _run(app, scenario)

        assert status == 404
        assert body["error"] == "Order missing not found"

    def test_admin_status_update(self, app, db):
        async def scenario(client):
            _, order = await _place_order(client)
            response = await client.put(
                f"/api/admin/orders/{order['order_id']}/status",
                json={"status": "confirmed"},
                headers=ADMIN
            )
            return response.status, order["order_id"]

        status, order_id = _run(app, scenario)

        assert status == 200
        assert db.state.orders[order_id].status == OrderStatus.CONFIRMED

    def test_invalid_transition_is_bad_request(self, app):
        async def scenario(client):
            _, order = await _place_order(client)
            response = await client.put(
                f"/api/admin/orders/{order['order_id']}/status",
                json={"status": "delivered"},
                headers=ADMIN
            )
            return response.status, await response.json()

        status, body = _run(app, scenario)

        assert status == 400
        assert body["details"] == {"current": "pending", "requested": "delivered"}

    def test_admin_routes_need_cafeteria(self, app):
        async def scenario(client):
            response = await client.get("/api/admin/orders", headers=CUSTOMER)
            return response.status

        assert _run(app, scenario) == 403


class TestPaymentRoutes:
    def test_initiate_and_callback(self, app, db):
        async def scenario(client):
            _, order = await _place_order(client)
            response = await client.post("/api/payments/mpesa/initiate", json={
                "order_id": order["order_id"],
                "phone_number": "0712345678",
            }, headers=CUSTOMER)
            initiated = await response.json()

            callback = await client.post(
                "/api/payments/mpesa/callback",
                json=stk_callback_payload(initiated["checkout_request_id"])
            )
            status = await client.get(f"/api/payments/status/{order['order_id']}", headers=CUSTOMER)
            return initiated, await callback.json(), await status.json()

        initiated, ack, status = _run(app, scenario)

        assert initiated["success"] is True
        assert "KES 160.00" in initiated["message"]
        assert ack == CALLBACK_ACK
        assert status["payment_status"] == "paid"
        assert status["order_status"] == "confirmed"
        assert status["mpesa_receipt_number"] == "QKX1234ABC"

    def test_callback_for_unknown_checkout_is_acknowledged(self, app, db):
        async def scenario(client):
            response = await client.post(
                "/api/payments/mpesa/callback",
                json=stk_callback_payload("ws_CO_unknown")
            )
            return response.status, await response.json()

        assert _run(app, scenario) == (200, CALLBACK_ACK)

    def test_malformed_callback_is_acknowledged(self, app):
        async def scenario(client):
            response = await client.post("/api/payments/mpesa/callback", data="garbage")
            return response.status, await response.json()

        assert _run(app, scenario) == (200, CALLBACK_ACK)

    def test_gateway_failure_is_bad_gateway(self, app, gateway):
        gateway.fail_with = gateway_down()

        async def scenario(client):
            _, order = await _place_order(client)
            response = await client.post("/api/payments/mpesa/initiate", json={
                "order_id": order["order_id"],
                "phone_number": "254712345678",
            }, headers=CUSTOMER)
            return response.status

        assert _run(app, scenario) == 502

    def test_manual_confirm(self, app, db):
        async def scenario(client):
            _, order = await _place_order(client)
            response = await client.post(f"/api/payments/manual-confirm/{order['order_id']}", headers=ADMIN)
            return response.status, order["order_id"]

        status, order_id = _run(app, scenario)

        assert status == 200
        assert db.state.orders[order_id].payment_status == PaymentStatus.PAID


class TestAdminRoutes:
    def test_create_discount(self, app, db):
        now = utc_now()

        async def scenario(client):
            response = await client.post("/api/admin/discounts", json={
                "name": "Lunch deal",
                "type": "fixed",
                "value": "10",
                "scope": "category",
                "category_id": "sides",
                "start_date": (now - timedelta(hours=1)).isoformat(),
                "end_date": (now + timedelta(days=1)).isoformat(),
            }, headers=ADMIN)
            return response.status, await response.json()

        status, body = _run(app, scenario)

        assert status == 201
        assert body["cafeteria_id"] == "caf-main"
        assert body["scope"] == "category"

    def test_bulk_price_update(self, app, db):
        async def scenario(client):
            response = await client.post("/api/admin/menu/bulk-price", json={
                "mode": "bulk_percentage",
                "value": "10",
            }, headers=ADMIN)
            return response.status, await response.json()

        status, body = _run(app, scenario)

        assert status == 200
        assert body["updated"] == 2
        assert len(db.state.price_history) == 2

    def test_price_history_for_item(self, app):
        async def scenario(client):
            await client.put("/api/admin/menu/burger/price", json={"price": "120"}, headers=ADMIN)
            response = await client.get("/api/admin/menu/burger/price-history", headers=ADMIN)
            return response.status, await response.json()

        status, body = _run(app, scenario)

        assert status == 200
        assert body[0]["old_price"] == "100.00"
        assert body[0]["new_price"] == "120.00"
        assert body[0]["change_type"] == "individual"

    def test_restock_and_availability(self, app, db):
        async def scenario(client):
            restocked = await client.put("/api/admin/menu/fries/stock", json={"quantity": 4}, headers=ADMIN)
            hidden = await client.put(
                "/api/admin/menu/fries/availability", json={"available": False}, headers=ADMIN
            )
            return restocked.status, hidden.status

        assert _run(app, scenario) == (200, 200)
        assert db.state.menu_items["fries"].stock == 5
        assert not db.state.menu_items["fries"].available

    def test_restock_other_cafeteria_item(self, app, db):
        db.add_menu_item("pizza", "300", cafeteria_id="caf-annex")

        async def scenario(client):
            response = await client.put("/api/admin/menu/pizza/stock", json={"quantity": 4}, headers=ADMIN)
            return response.status

        assert _run(app, scenario) == 400
        assert db.state.menu_items["pizza"].stock == 10


class TestReadRoutes:
    def test_list_menu(self, app):
        async def scenario(client):
            response = await client.get("/api/cafeterias/caf-main/menu?category_id=mains")
            return response.status, await response.json()

        status, body = _run(app, scenario)

        assert status == 200
        assert [item["menu_item_id"] for item in body] == ["burger"]

    def test_invoice_after_payment(self, app):
        async def scenario(client):
            _, order = await _place_order(client)
            missing = await client.get(f"/api/orders/{order['order_id']}/invoice", headers=CUSTOMER)
            await client.post(f"/api/payments/manual-confirm/{order['order_id']}", headers=ADMIN)
            found = await client.get(f"/api/orders/{order['order_id']}/invoice", headers=CUSTOMER)
            return missing.status, found.status, await found.json()

        missing, found, invoice = _run(app, scenario)

        assert missing == 404
        assert found == 200
        assert invoice["total"] == "160.00"
        assert invoice["invoice_number"].startswith("ORD-MAIN-")

    def test_list_transactions(self, app):
        async def scenario(client):
            _, order = await _place_order(client)
            for _ in range(2):
                await client.post("/api/payments/mpesa/initiate", json={
                    "order_id": order["order_id"],
                    "phone_number": "0712345678",
                }, headers=CUSTOMER)
            response = await client.get(f"/api/payments/transactions/{order['order_id']}", headers=CUSTOMER)
            other = await client.get(
                f"/api/payments/transactions/{order['order_id']}", headers={"X-User-Id": "student-2"}
            )
            return await response.json(), other.status

        transactions, other_status = _run(app, scenario)

        assert [t["checkout_request_id"] for t in transactions] == ["ws_CO_0001", "ws_CO_0002"]
        assert all(t["status"] == "pending" for t in transactions)
        assert other_status == 404


class TestMenuAdministrationRoutes:
    def test_category_and_item_lifecycle(self, app, db):
        async def scenario(client):
            created = await client.post("/api/admin/categories", json={"name": "Breakfast"}, headers=ADMIN)
            category = await created.json()
            item = await client.post("/api/admin/menu", json={
                "name": "Mandazi",
                "price": "20",
                "category_id": category["category_id"],
                "stock": 30,
            }, headers=ADMIN)
            item_body = await item.json()
            edited = await client.put(
                f"/api/admin/menu/{item_body['menu_item_id']}",
                json={"price": "25", "change_reason": "Flour prices"},
                headers=ADMIN
            )
            listed = await client.get("/api/cafeterias/caf-main/categories")
            return created.status, item.status, edited.status, await edited.json(), await listed.json()

        created, item, edited, edited_body, categories = _run(app, scenario)

        assert (created, item, edited) == (201, 201, 200)
        assert edited_body["price"] == "25.00"
        assert db.state.price_history[0].change_reason == "Flour prices"
        assert [c["name"] for c in categories] == ["Breakfast"]

    def test_delete_unused_item(self, app, db):
        db.add_menu_item("special", "250")

        async def scenario(client):
            response = await client.delete("/api/admin/menu/special", headers=ADMIN)
            return response.status

        assert _run(app, scenario) == 200
        assert "special" not in db.state.menu_items

    def test_non_finite_price_is_bad_request(self, app, db):
        async def scenario(client):
            single = await client.put("/api/admin/menu/burger/price", json={"price": "NaN"}, headers=ADMIN)
            bulk = await client.post("/api/admin/menu/bulk-price", json={
                "mode": "bulk_percentage", "value": "Infinity",
            }, headers=ADMIN)
            return single.status, bulk.status

        assert _run(app, scenario) == (400, 400)
        assert db.state.price_history == []

    def test_preview_with_bad_quantity_is_bad_request(self, app):
        async def scenario(client):
            response = await client.post("/api/discounts/preview", json={
                "cafeteria_id": "caf-main",
                "items": [{"menu_item_id": "burger", "quantity": "two"}],
            })
            return response.status, await response.json()

        status, body = _run(app, scenario)

        assert status == 400
        assert body["details"]["errors"][0]["loc"] == ["quantity"]

    def test_discount_with_mixed_date_offsets(self, app):
        async def scenario(client):
            response = await client.post("/api/admin/discounts", json={
                "name": "Semester",
                "value": "5",
                "start_date": "2026-01-01T00:00:00Z",
                "end_date": "2026-12-01T00:00:00",
            }, headers=ADMIN)
            return response.status

        assert _run(app, scenario) == 201


class TestInvoiceRoutes:
    def test_admin_lists_and_reads_invoices(self, app):
        async def scenario(client):
            _, order = await _place_order(client)
            await client.post(f"/api/payments/manual-confirm/{order['order_id']}", headers=ADMIN)
            listed = await (await client.get("/api/admin/invoices", headers=ADMIN)).json()
            single = await client.get(f"/api/admin/invoices/{listed[0]['invoice_id']}", headers=ADMIN)
            other = await client.get(
                f"/api/admin/invoices/{listed[0]['invoice_id']}",
                headers={"X-User-Id": "admin-2", "X-Cafeteria-Id": "caf-annex"}
            )
            return listed, single.status, await single.json(), other.status

        listed, status, invoice, other_status = _run(app, scenario)

        assert len(listed) == 1
        assert status == 200
        assert invoice["total"] == "160.00"
        assert other_status == 404
