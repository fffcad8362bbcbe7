import smtplib
import unittest
from types import SimpleNamespace
from unittest import mock

import orders
import payments
import paypal
from tests.helpers import ApiTestCase, make_product

CAPTURE = {
    "id": "PP1",
    "status": "COMPLETED",
    "purchase_units": [{"payments": {"captures": [{"id": "CAP1"}]}}],
    "payer": {"email_address": "bo@example.com", "name": {"given_name": "Bo", "surname": "Brick"}},
}


class CheckoutTestCase(ApiTestCase):

    def setUp(self):
        super().setUp()
        self.patch_config(SITE_URL="https://shop.test")
        self.products.insert_many([
            make_product(1001, "sw0001", "Luke Skywalker", 5.5, 3),
            make_product(1002, "hp0001", "Harry Potter", 9.0, 1),
        ])

    def order(self, order_id):
        return self.orders.find_one({"orderId": order_id})

    def refund(self, order_id):
        order = self.order(order_id)
        orders.claim_refund(self.db, order)
        orders.mark_refunded(self.db, order, {"orderId": order_id})


class TestBankCheckout(CheckoutTestCase):

    def test_creates_pending_order_without_touching_stock(self):
        res = self.client.post("/api/checkout/bank", json={
            "items": [{"id": "1001", "qty": 2, "price": 0.01}],
            "postageId": "letter",
            "payer": {"name": "Bo", "email": "bo@example.com"},
        })
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertTrue(body["orderId"].startswith("K"))
        self.assertEqual(body["total"], 14.5)
        self.assertEqual(body["payBy"], "bank")
        self.assertIn("held for 48 hours", body["message"])

        order = self.order(body["orderId"])
        self.assertEqual(order["status"], "pending")
        self.assertEqual(order["provider"], "bank")
        self.assertEqual(order["totals"]["itemsTotal"], 11.0)
        self.assertEqual(order["payer"]["email"], "bo@example.com")
        self.assertFalse(order["stockApplied"])
        self.assertEqual(self.qty_of(1001), 3)

    def test_cart_errors(self):
        cases = [
            ({"items": [{"id": "1002", "qty": 2}]}, 400, "insufficient_stock"),
            ({"items": [{"id": "9999"}]}, 404, "product_not_found"),
            ({"items": [{"id": "1001"}], "postageId": "rocket"}, 404, "unknown_postage"),
            ({"items": []}, 400, "cart_empty"),
        ]
        for payload, status, code in cases:
            with self.subTest(code=code):
                res = self.client.post("/api/checkout/bank", json=payload)
                self.assertEqual(res.status_code, status)
                self.assertEqual(res.json()["detail"], code)
        self.assertEqual(self.orders.count_documents({}), 0)


class TestPayPalCheckout(CheckoutTestCase):

    def setUp(self):
        super().setUp()
        self.paypal = mock.MagicMock()
        self.paypal.configured = True
        self.paypal.create_order.return_value = ("PP1", "https://paypal.test/approve")
        self.paypal.capture_order.return_value = CAPTURE
        patcher = mock.patch.object(paypal, "get_client", return_value=self.paypal)
        patcher.start()
        self.addCleanup(patcher.stop)

        mailer = mock.patch("routers.checkout.send_order_email", return_value={"ok": True})
        self.send_email = mailer.start()
        self.addCleanup(mailer.stop)

    def create(self):
        res = self.client.post("/api/checkout/paypal", json={"items": [{"id": "1001", "qty": 2}], "postageId": "letter"})
        self.assertEqual(res.status_code, 200)
        return res.json()

    def test_create(self):
        self.assertEqual(self.create(), {"orderId": "PP1", "approveUrl": "https://paypal.test/approve"})
        args, kwargs = self.paypal.create_order.call_args
        self.assertEqual(args[0][0]["price"], 5.5)
        self.assertEqual(kwargs["postage"]["id"], "letter")
        self.assertTrue(kwargs["reference"].startswith("ref-"))
        self.assertEqual(self.order("PP1")["status"], "pending")

    def test_not_configured(self):
        self.paypal.configured = False
        res = self.client.post("/api/checkout/paypal", json={"items": [{"id": "1001"}]})
        self.assertEqual(res.status_code, 503)
        self.assertEqual(res.json()["detail"], "paypal_not_configured")

    def test_create_failure(self):
        self.paypal.create_order.side_effect = paypal.PayPalError("boom", 500)
        res = self.client.post("/api/checkout/paypal", json={"items": [{"id": "1001"}]})
        self.assertEqual(res.status_code, 502)
        self.assertEqual(self.orders.count_documents({}), 0)

    def test_capture_takes_stock_once(self):
        self.create()
        res = self.client.post("/api/checkout/paypal/capture", json={"orderId": "PP1"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {"ok": True, "orderId": "PP1", "status": "paid", "captureIds": ["CAP1"]})

        order = self.order("PP1")
        self.assertEqual(order["status"], "paid")
        self.assertTrue(order["stockApplied"])
        self.assertEqual(order["payer"]["email"], "bo@example.com")
        self.assertEqual(self.qty_of(1001), 1)
        self.send_email.assert_called_once()

        res = self.client.post("/api/checkout/paypal/capture", json={"orderId": "PP1"})
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.json()["detail"], "already_captured")
        self.assertEqual(self.qty_of(1001), 1)

    def test_capture_not_completed(self):
        self.create()
        self.paypal.capture_order.return_value = dict(CAPTURE, status="PENDING")
        res = self.client.post("/api/checkout/paypal/capture", json={"orderId": "PP1"})
        self.assertEqual(res.status_code, 502)
        self.assertEqual(res.json()["detail"], "capture_not_completed")
        self.assertEqual(self.order("PP1")["status"], "pending")
        self.assertEqual(self.qty_of(1001), 3)

    def test_capture_unknown_order(self):
        res = self.client.post("/api/checkout/paypal/capture", json={"orderId": "NOPE"})
        self.assertEqual(res.status_code, 404)
        self.paypal.capture_order.assert_not_called()

    def test_email_failure_does_not_fail_capture(self):
        self.send_email.side_effect = smtplib.SMTPException("down")
        self.create()
        res = self.client.post("/api/checkout/paypal/capture", json={"orderId": "PP1"})
        self.assertEqual(res.status_code, 200)

    def test_return_redirects(self):
        self.create()
        res = self.client.get("/api/checkout/paypal/return", params={"token": "PP1"}, follow_redirects=False)
        self.assertEqual(res.status_code, 302)
        self.assertEqual(res.headers["location"], "https://shop.test/thank-you?provider=paypal&orderId=PP1")

        # a second visit is already captured and still lands on the thank-you page
        res = self.client.get("/api/checkout/paypal/return", params={"token": "PP1"}, follow_redirects=False)
        self.assertEqual(res.headers["location"], "https://shop.test/thank-you?provider=paypal&orderId=PP1")
        self.assertEqual(self.qty_of(1001), 1)

    def test_refunded_order_cannot_be_captured_again(self):
        self.create()
        self.client.post("/api/checkout/paypal/capture", json={"orderId": "PP1"})
        self.refund("PP1")
        self.assertEqual(self.qty_of(1001), 3)

        res = self.client.post("/api/checkout/paypal/capture", json={"orderId": "PP1"})
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.json()["detail"], "already_refunded")
        self.assertEqual(self.paypal.capture_order.call_count, 1)

        res = self.client.get("/api/checkout/paypal/return", params={"token": "PP1"}, follow_redirects=False)
        self.assertEqual(res.headers["location"], "https://shop.test/checkout?error=already_refunded")
        self.assertEqual(self.order("PP1")["status"], "refunded")
        self.assertEqual(self.qty_of(1001), 3)

    def test_cancel(self):
        self.create()
        res = self.client.get("/api/checkout/paypal/cancel", params={"token": "PP1"}, follow_redirects=False)
        self.assertEqual(res.status_code, 302)
        self.assertEqual(res.headers["location"], "https://shop.test/checkout?canceled=1")
        self.assertEqual(self.order("PP1")["status"], "cancelled")

        res = self.client.post("/api/checkout/paypal/capture", json={"orderId": "PP1"})
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.json()["detail"], "order_cancelled")
        self.paypal.capture_order.assert_not_called()

    def test_cancel_leaves_paid_orders_alone(self):
        self.create()
        self.client.post("/api/checkout/paypal/capture", json={"orderId": "PP1"})
        res = self.client.get("/api/checkout/paypal/cancel", params={"token": "PP1"}, follow_redirects=False)
        self.assertEqual(res.headers["location"], "https://shop.test/checkout?canceled=1")
        self.assertEqual(self.order("PP1")["status"], "paid")

        res = self.client.get("/api/checkout/paypal/cancel", follow_redirects=False)
        self.assertEqual(res.status_code, 302)

    def test_return_errors(self):
        res = self.client.get("/api/checkout/paypal/return", follow_redirects=False)
        self.assertEqual(res.headers["location"], "https://shop.test/checkout?error=missing_order_id")
        res = self.client.get("/api/checkout/paypal/return", params={"token": "NOPE"}, follow_redirects=False)
        self.assertEqual(res.headers["location"], "https://shop.test/checkout?error=order_not_found")


class TestStripeCheckout(CheckoutTestCase):

    def setUp(self):
        super().setUp()
        session = SimpleNamespace(id="cs_test_1", url="https://stripe.test/cs_test_1")
        create = mock.patch.object(payments, "create_checkout_session", return_value=session)
        self.create_session = create.start()
        self.addCleanup(create.stop)

    def create(self):
        res = self.client.post("/api/checkout/stripe", json={"items": [{"id": "1001", "qty": 1}]})
        self.assertEqual(res.status_code, 200)
        return res.json()

    def confirm(self, payment_status="paid"):
        session = SimpleNamespace(
            id="cs_test_1",
            payment_status=payment_status,
            customer_details=SimpleNamespace(email="bo@example.com"),
        )
        with mock.patch.object(payments, "retrieve_session", return_value=session):
            return self.client.get("/api/checkout/stripe/confirm", params={"session_id": "cs_test_1"})

    def test_create(self):
        body = self.create()
        self.assertEqual(body["url"], "https://stripe.test/cs_test_1")
        self.assertEqual(body["sessionId"], "cs_test_1")
        order = self.order(body["orderId"])
        self.assertEqual(order["provider"], "stripe")
        self.assertEqual(order["stripeSessionId"], "cs_test_1")

    def test_confirm_is_idempotent(self):
        body = self.create()
        res = self.confirm()
        self.assertEqual(res.json(), {"ok": True, "status": "paid", "orderId": body["orderId"]})
        self.assertEqual(self.qty_of(1001), 2)
        self.assertEqual(self.order(body["orderId"])["payer"]["email"], "bo@example.com")

        self.assertTrue(self.confirm().json()["ok"])
        self.assertEqual(self.qty_of(1001), 2)

    def test_confirm_after_refund_keeps_order_refunded(self):
        body = self.create()
        self.confirm()
        self.refund(body["orderId"])
        self.assertEqual(self.qty_of(1001), 3)

        res = self.confirm()
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.json()["detail"], "already_refunded")
        self.assertEqual(self.order(body["orderId"])["status"], "refunded")
        self.assertEqual(self.qty_of(1001), 3)

    def test_confirm_unpaid(self):
        self.create()
        body = self.confirm("unpaid").json()
        self.assertEqual(body, {"ok": False, "status": "pending", "paymentStatus": "unpaid"})
        self.assertEqual(self.qty_of(1001), 3)

    def test_confirm_unknown_session(self):
        self.assertEqual(self.confirm().status_code, 404)


class TestStripeNotConfigured(CheckoutTestCase):

    def test_create_returns_503(self):
        self.patch_config(STRIPE_SECRET_KEY=None)
        res = self.client.post("/api/checkout/stripe", json={"items": [{"id": "1001"}]})
        self.assertEqual(res.status_code, 503)
        self.assertEqual(res.json()["detail"], "stripe_not_configured")


class TestOrderStatusAndConfirmation(CheckoutTestCase):

    def setUp(self):
        super().setUp()
        res = self.client.post("/api/checkout/bank", json={"items": [{"id": "1001"}]})
        self.order_id = res.json()["orderId"]

    def test_order_status(self):
        body = self.client.get("/api/checkout/order-status", params={"orderId": self.order_id}).json()
        self.assertEqual(body["status"], "pending")
        self.assertEqual(body["totals"]["grandTotal"], 5.5)
        self.assertIsNotNone(body["createdAt"])

        res = self.client.get("/api/checkout/order-status", params={"orderId": "K0"})
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json(), {"status": "unknown"})
        self.assertEqual(self.client.get("/api/checkout/order-status").status_code, 400)

    def test_send_confirmation(self):
        self.patch_config(SMTP_HOST="")
        res = self.client.post("/api/checkout/send-confirmation", params={"orderId": self.order_id})
        self.assertEqual(res.status_code, 503)

        with mock.patch("routers.checkout.send_order_email", return_value={"ok": True}) as send:
            res = self.client.post("/api/checkout/send-confirmation", params={"orderId": self.order_id})
        self.assertEqual(res.json(), {"ok": True})
        self.assertEqual(send.call_args[0][0]["orderId"], self.order_id)

        with mock.patch("routers.checkout.send_order_email", side_effect=smtplib.SMTPException("down")):
            res = self.client.post("/api/checkout/send-confirmation", params={"orderId": self.order_id})
        self.assertEqual(res.status_code, 502)

        res = self.client.post("/api/checkout/send-confirmation", params={"orderId": "K0"})
        self.assertEqual(res.status_code, 404)


class TestCreateOrder(CheckoutTestCase):

    def test_bank_order(self):
        res = self.client.post("/api/orders", json={
            "method": "bank",
            "items": [{"inventoryId": 1001, "qty": 2, "price": 0.01}],
            "contact": {"name": "Bo", "email": "bo@example.com"},
        })
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertTrue(body["ok"])
        self.assertTrue(body["reference"].startswith("K"))
        self.assertEqual(body["subtotal"], 11.0)
        self.assertEqual(self.orders.find_one()["orderId"], body["reference"])

    def test_paypal_order_has_no_reference(self):
        body = self.client.post("/api/orders", json={"method": "PAYPAL", "items": [{"id": "hp0001"}]}).json()
        self.assertIsNone(body["reference"])
        self.assertEqual(body["subtotal"], 9.0)

    def test_rejects_bad_requests(self):
        res = self.client.post("/api/orders", json={"method": "crypto", "items": [{"inventoryId": 1001}]})
        self.assertEqual(res.json()["detail"], "Missing method or items")
        res = self.client.post("/api/orders", json={"method": "bank", "items": [{"name": "no id"}]})
        self.assertEqual(res.json()["detail"], "No valid items")
        res = self.client.post("/api/orders", json={"method": "bank", "items": [{"inventoryId": 9999}]})
        self.assertEqual(res.status_code, 404)


if __name__ == "__main__":
    unittest.main()
