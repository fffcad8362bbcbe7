import unittest
from types import SimpleNamespace
from unittest import mock

import stripe
from bson import ObjectId

import config
import orders
import payments
import paypal
from auth import create_token, hash_password
from bricklink import BrickLinkError
from cart import cart_totals, price_cart
from tests.helpers import ApiTestCase, make_product

ADMIN = {"id": "u1", "email": "admin@example.com", "name": "Admin", "role": "admin"}


class AdminTestCase(ApiTestCase):

    def setUp(self):
        super().setUp()
        self.headers = {"Authorization": "Bearer " + create_token(ADMIN)}
        self.products.insert_many([
            make_product(1001, "sw0001", "Luke Skywalker", 5.5, 3),
            make_product(1002, "hp0001", "Harry Potter", 9.0, 1),
        ])

    def place_order(self, provider, order_id, items=None):
        lines = price_cart(self.db, items or [{"id": "1001", "qty": 2}])
        oid = orders.create_order(provider, lines, cart_totals(lines), payer={"email": "bo@example.com"}, order_id=order_id)
        return self.orders.find_one({"_id": ObjectId(oid)})

    def post(self, path, **kwargs):
        kwargs.setdefault("headers", self.headers)
        return self.client.post("/api/admin" + path, **kwargs)


class TestAdminAuth(AdminTestCase):

    def test_requires_token(self):
        res = self.client.get("/api/admin/orders")
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.json()["detail"], "Missing Authorization header")

        res = self.client.get("/api/admin/orders", headers={"Authorization": "Token abc"})
        self.assertEqual(res.json()["detail"], "Invalid Authorization header")

        res = self.client.get("/api/admin/orders", headers={"Authorization": "Bearer not-a-jwt"})
        self.assertEqual(res.status_code, 401)

    def test_staff_is_forbidden(self):
        token = create_token(dict(ADMIN, role="staff"))
        res = self.client.get("/api/admin/orders", headers={"Authorization": "Bearer " + token})
        self.assertEqual(res.status_code, 403)

    def test_expired_token(self):
        token = create_token(ADMIN, expires_minutes=-1)
        res = self.client.get("/api/admin/orders", headers={"Authorization": "Bearer " + token})
        self.assertEqual(res.json()["detail"], "Invalid or expired token")

    def test_static_admin_token(self):
        self.patch_config(ADMIN_TOKEN="s3cret-token")
        res = self.client.get("/api/admin/orders", headers={"Authorization": "Bearer s3cret-token"})
        self.assertEqual(res.status_code, 200)

    def test_login(self):
        self.db[config.USERS_COLLECTION].insert_one({
            "name": "Admin",
            "email": "admin@example.com",
            "password_hash": hash_password("hunter2222"),
            "role": "admin",
            "is_active": True,
        })
        res = self.client.post("/api/admin/login", json={"email": "admin@example.com", "password": "hunter2222"})
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(body["user"]["role"], "admin")

        res = self.client.get("/api/admin/orders", headers={"Authorization": "Bearer " + body["token"]})
        self.assertEqual(res.status_code, 200)

        res = self.client.post("/api/admin/login", json={"email": "admin@example.com", "password": "wrong"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["detail"], "Invalid credentials")


class TestAdminOrders(AdminTestCase):

    def test_list_orders(self):
        self.place_order("bank", "K1")
        self.place_order("paypal", "PP1", [{"id": "1002"}])

        body = self.client.get("/api/admin/orders", headers=self.headers).json()
        self.assertEqual(len(body["orders"]), 2)
        self.assertIn("items", body["orders"][0])

        body = self.client.get("/api/admin/orders", params={"compact": "1", "limit": "1"}, headers=self.headers).json()
        self.assertEqual(len(body["orders"]), 1)
        row = body["orders"][0]
        self.assertEqual(set(row), {"id", "orderId", "provider", "status", "grandTotal", "currency", "itemsCount", "payer", "created_at"})
        self.assertEqual(row["payer"], "bo@example.com")

    def test_mark_paid(self):
        self.place_order("bank", "K1")
        res = self.post("/orders/K1/mark-paid")
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(body["status"], "paid")
        self.assertTrue(body["stock"][0]["ok"])
        self.assertEqual(self.qty_of(1001), 1)
        self.assertEqual(self.orders.find_one({"orderId": "K1"})["markedPaidBy"], "admin@example.com")

        res = self.post("/orders/K1/mark-paid")
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.json()["detail"], "already_paid")
        self.assertEqual(self.qty_of(1001), 1)

    def test_mark_paid_rejects_closed_orders(self):
        orders.mark_cancelled(self.db, self.place_order("paypal", "PP9"))
        res = self.post("/orders/PP9/mark-paid")
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.json()["detail"], "order_cancelled")

        order = self.place_order("bank", "K2")
        orders.claim_refund(self.db, order)
        orders.mark_refunded(self.db, order, {"orderId": "K2"})
        res = self.post("/orders/K2/mark-paid")
        self.assertEqual(res.json()["detail"], "already_refunded")
        self.assertEqual(self.qty_of(1001), 3)

    def test_mark_paid_by_mongo_id(self):
        order = self.place_order("bank", None)
        res = self.post("/orders/%s/mark-paid" % order["_id"])
        self.assertEqual(res.status_code, 200)
        self.assertEqual(self.post("/orders/K404/mark-paid").status_code, 404)


class TestRestock(AdminTestCase):

    def test_batch(self):
        res = self.post("/restock", json={"items": [
            {"inventoryId": 1001, "qty": 2},
            {"id": "9999", "qty": 1},
            {"id": "hp0001", "qty": -5},
            {"qty": 1},
        ]})
        self.assertEqual(res.status_code, 200)
        results = res.json()["results"]
        self.assertTrue(results[0]["ok"])
        self.assertEqual(results[1]["reason"], "not_found")
        self.assertEqual(results[2]["reason"], "insufficient_stock")
        self.assertEqual(results[3]["reason"], "bad_item")
        self.assertEqual(results[0]["item"]["inventoryId"], 1001)
        self.assertEqual(self.qty_of(1001), 5)
        self.assertEqual(self.qty_of(1002), 1)

    def test_single_item(self):
        res = self.post("/restock", json={"id": "sw0001", "qty": -1})
        self.assertTrue(res.json()["results"][0]["ok"])
        self.assertEqual(self.qty_of(1001), 2)

    def test_invalid_payload(self):
        res = self.post("/restock", json={})
        self.assertEqual(res.status_code, 422)
        self.assertEqual(res.json()["detail"], "invalid_payload")


class TestRefundAndRestock(AdminTestCase):

    def paid_paypal_order(self):
        order = self.place_order("paypal", "PP1")
        orders.mark_paid(self.db, order, {"captureIds": ["CAP1"]})
        self.assertEqual(self.qty_of(1001), 1)

    def test_test_mode_refund(self):
        self.patch_config(PAYPAL_TEST_MODE=True)
        self.paid_paypal_order()

        res = self.post("/refund-and-restock", params={"captureId": "CAP1"})
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(body["refunds"][0]["id"], "TEST-REFUND")
        self.assertEqual(len(body["restocked"]), 1)
        self.assertEqual(self.qty_of(1001), 3)

        order = self.orders.find_one({"orderId": "PP1"})
        self.assertEqual(order["status"], "refunded")
        self.assertFalse(order["stockApplied"])
        self.assertEqual(order["refunds"][0]["captureId"], "CAP1")
        self.assertEqual(order["refunds"][0]["amount"], 11.0)

        res = self.post("/refund-and-restock", params={"captureId": "CAP1"})
        self.assertEqual(res.status_code, 409)
        self.assertEqual(self.qty_of(1001), 3)

    def test_paypal_refund(self):
        self.patch_config(PAYPAL_TEST_MODE=False)
        self.paid_paypal_order()
        client = mock.MagicMock()
        client.refund_capture.return_value = {"id": "R1", "status": "COMPLETED"}
        with mock.patch.object(paypal, "get_client", return_value=client):
            res = self.post("/refund-and-restock", params={"orderId": "PP1"})
        self.assertEqual(res.json()["refunds"], [{"captureId": "CAP1", "id": "R1", "status": "COMPLETED"}])
        client.refund_capture.assert_called_once_with("CAP1")

    def test_paypal_refund_failure(self):
        self.patch_config(PAYPAL_TEST_MODE=False)
        self.paid_paypal_order()
        client = mock.MagicMock()
        client.refund_capture.side_effect = paypal.PayPalError("nope", 422)
        with mock.patch.object(paypal, "get_client", return_value=client):
            res = self.post("/refund-and-restock", params={"orderId": "PP1"})
        self.assertEqual(res.status_code, 502)
        self.assertEqual(self.orders.find_one({"orderId": "PP1"})["status"], "paid")
        self.assertEqual(self.qty_of(1001), 1)

    def paid_stripe_order(self):
        order = self.place_order("stripe", "ref-1")
        self.orders.update_one({"_id": order["_id"]}, {"$set": {"stripeSessionId": "cs_1"}})
        orders.mark_paid(self.db, order)
        self.assertEqual(self.qty_of(1001), 1)

    def test_stripe_refund(self):
        self.paid_stripe_order()
        refund = SimpleNamespace(id="re_1", status="succeeded")
        with mock.patch.object(payments, "refund_session", return_value=refund) as refund_session:
            res = self.post("/refund-and-restock", params={"orderId": "ref-1"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["refunds"], [{"sessionId": "cs_1", "id": "re_1", "status": "succeeded"}])
        refund_session.assert_called_once_with("cs_1")
        self.assertEqual(self.qty_of(1001), 3)
        self.assertEqual(self.orders.find_one({"orderId": "ref-1"})["refunds"][0]["provider"], "stripe")

        # the customer reloading the thank-you page must not revive the order
        session = SimpleNamespace(id="cs_1", payment_status="paid", customer_details=None)
        with mock.patch.object(payments, "retrieve_session", return_value=session):
            res = self.client.get("/api/checkout/stripe/confirm", params={"session_id": "cs_1"})
        self.assertEqual(res.status_code, 409)
        self.assertEqual(self.orders.find_one({"orderId": "ref-1"})["status"], "refunded")
        self.assertEqual(self.qty_of(1001), 3)

    def test_stripe_refund_failure(self):
        self.paid_stripe_order()
        with mock.patch.object(payments, "refund_session", side_effect=stripe.StripeError("declined")):
            res = self.post("/refund-and-restock", params={"orderId": "ref-1"})
        self.assertEqual(res.status_code, 502)
        self.assertEqual(res.json()["detail"], "stripe_refund_failed")
        self.assertEqual(self.orders.find_one({"orderId": "ref-1"})["status"], "paid")
        self.assertEqual(self.qty_of(1001), 1)

    def test_refund_in_progress_is_rejected(self):
        self.patch_config(PAYPAL_TEST_MODE=True)
        self.paid_paypal_order()
        order = self.orders.find_one({"orderId": "PP1"})
        orders.claim_refund(self.db, order)
        with mock.patch.object(orders, "find_order", return_value=order):
            res = self.post("/refund-and-restock", params={"orderId": "PP1"})
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.json()["detail"], "already_refunded")
        self.assertEqual(self.qty_of(1001), 1)

    def test_unpaid_bank_order_does_not_restock(self):
        self.place_order("bank", "K1")
        body = self.post("/refund-and-restock", params={"orderId": "K1"}).json()
        self.assertEqual(body["restocked"], [])
        self.assertEqual(self.qty_of(1001), 3)

    def test_errors(self):
        self.assertEqual(self.post("/refund-and-restock").status_code, 400)
        self.assertEqual(self.post("/refund-and-restock", params={"orderId": "NOPE"}).status_code, 404)
        self.place_order("paypal", "PP2")
        res = self.post("/refund-and-restock", params={"orderId": "PP2"})
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.json()["detail"], "no_capture")


class TestMaintenanceRoutes(AdminTestCase):

    def test_sync_bricklink(self):
        with mock.patch("routers.admin.BrickLinkClient") as client_cls, \
                mock.patch("routers.admin.sync_inventory", return_value={"upserted": 1, "matched": 0, "pruned": 0, "kept": 1, "skipped": 0}) as sync:
            client_cls.return_value.configured = True
            res = self.post("/sync-bricklink", params={"prune": "1"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["upserted"], 1)
        self.assertTrue(res.json()["ok"])
        self.assertTrue(sync.call_args[1]["prune"])

    def test_sync_errors(self):
        with mock.patch("routers.admin.BrickLinkClient") as client_cls:
            client_cls.return_value.configured = False
            self.assertEqual(self.post("/sync-bricklink").status_code, 503)

        with mock.patch("routers.admin.BrickLinkClient") as client_cls, \
                mock.patch("routers.admin.sync_inventory", side_effect=BrickLinkError("down", 500)):
            client_cls.return_value.configured = True
            self.assertEqual(self.post("/sync-bricklink").status_code, 502)

    def test_ensure_indexes(self):
        created = {"products": ["inventoryId_1"], "orders": ["orderId_1"]}
        with mock.patch("routers.admin.ensure_indexes", return_value=created):
            res = self.post("/ensure-indexes")
        self.assertEqual(res.json(), {"ok": True, "indexes": created})

    def test_purge_and_backfill(self):
        self.products.insert_one({"name": "broken"})
        self.assertEqual(self.post("/purge-incomplete").json()["removed"], 1)
        self.products.update_one({"inventoryId": 1001}, {"$set": {"themeKey": None}})
        body = self.post("/backfill-themes").json()
        self.assertEqual((body["scanned"], body["updated"], body["ok"]), (2, 1, True))


if __name__ == "__main__":
    unittest.main()
