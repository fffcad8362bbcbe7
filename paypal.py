"""
PayPal REST client (OAuth2 client credentials + Orders v2).
"""
import logging
import time
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote

import requests

import config

logger = logging.getLogger(__name__)


class PayPalError(RuntimeError):
    def __init__(self, message: str, status: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.status = status
        self.details = details


def to2(value: float) -> str:
    """PayPal wants amounts as strings with two decimals."""
    return "%.2f" % (round(float(value) * 100) / 100)


def build_order_payload(
    lines: Iterable[Dict[str, Any]],
    postage: Optional[Dict[str, Any]] = None,
    reference: Optional[str] = None,
    return_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
    currency: Optional[str] = None,
) -> Dict[str, Any]:
    """Orders v2 payload where item_total + shipping always equals amount.value."""
    currency = (currency or config.CURRENCY).upper()
    lines = list(lines)

    item_total = round(sum(round(float(i["price"]), 2) * int(i["qty"]) for i in lines), 2)
    shipping = round(float(postage["price"]), 2) if postage else 0.0
    grand = round(item_total + shipping, 2)

    breakdown: Dict[str, Any] = {"item_total": {"currency_code": currency, "value": to2(item_total)}}
    if postage:
        breakdown["shipping"] = {"currency_code": currency, "value": to2(shipping)}

    items = []
    for i in lines:
        item = {
            "name": str(i.get("name") or "Item")[:127],
            "quantity": str(int(i["qty"])),
            "unit_amount": {"currency_code": currency, "value": to2(i["price"])},
        }
        sku = str(i.get("itemNo") or i.get("id") or "")[:127]
        if sku:
            item["sku"] = sku
        items.append(item)

    unit: Dict[str, Any] = {
        "reference_id": reference or "order-1",
        "items": items,
        "amount": {"currency_code": currency, "value": to2(grand), "breakdown": breakdown},
    }
    if reference:
        unit["custom_id"] = reference

    if postage:
        # a selected option avoids SHIPPING_OPTION_NOT_SELECTED
        unit["shipping"] = {"options": [{
            "id": str(postage.get("id") or "postage"),
            "label": str(postage.get("label") or "Shipping"),
            "type": "SHIPPING",
            "selected": True,
            "amount": {"currency_code": currency, "value": to2(shipping)},
        }]}

    context = {
        "brand_name": config.BRAND_NAME,
        "user_action": "PAY_NOW",
        "return_url": return_url or config.SITE_URL + "/api/checkout/paypal/return",
        "cancel_url": cancel_url or config.SITE_URL + "/api/checkout/paypal/cancel",
    }
    if not postage:
        context["shipping_preference"] = "NO_SHIPPING"

    return {"intent": "CAPTURE", "purchase_units": [unit], "application_context": context}


def capture_ids(capture: Dict[str, Any]) -> List[str]:
    ids = []
    for unit in capture.get("purchase_units") or []:
        for cap in (unit.get("payments") or {}).get("captures") or []:
            if cap.get("id"):
                ids.append(cap["id"])
    return ids


def payer_from(capture: Dict[str, Any]) -> Dict[str, Optional[str]]:
    payer = capture.get("payer") or {}
    name = payer.get("name") or {}
    full = " ".join(p for p in (name.get("given_name"), name.get("surname")) if p) or None
    return {"name": full, "email": payer.get("email_address")}


class PayPalClient:
    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 20.0,
    ) -> None:
        self.client_id = client_id if client_id is not None else config.PAYPAL_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else config.PAYPAL_CLIENT_SECRET
        self.base_url = (base_url or config.paypal_base_url()).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def access_token(self) -> str:
        if not self.configured:
            raise PayPalError("PayPal client/secret missing in env")
        if self._token and time.time() < self._token_expires_at:
            return self._token

        res = self.session.post(
            self.base_url + "/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )
        body = self._json(res)
        if res.status_code >= 400 or not body.get("access_token"):
            logger.error("PayPal OAuth failed (%s): %s", res.status_code, str(body)[:400])
            raise PayPalError("PayPal OAuth failed (%s)" % res.status_code, res.status_code, body)

        self._token = body["access_token"]
        # refresh a minute early
        self._token_expires_at = time.time() + max(0, int(body.get("expires_in") or 0) - 60)
        return self._token

    @staticmethod
    def _json(res: requests.Response) -> Dict[str, Any]:
        try:
            data = res.json()
        except ValueError:
            return {"raw": (res.text or "")[:600]}
        return data if isinstance(data, dict) else {"data": data}

    def _request(self, method: str, path: str, payload: Optional[dict] = None, request_id: Optional[str] = None) -> Dict[str, Any]:
        headers = {
            "Authorization": "Bearer %s" % self.access_token(),
            "Content-Type": "application/json",
        }
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        res = self.session.request(method, self.base_url + path, json=payload, headers=headers, timeout=self.timeout)
        body = self._json(res)
        if res.status_code >= 400:
            logger.error("PayPal %s %s failed (%s): %s", method, path, res.status_code, str(body)[:600])
            raise PayPalError("PayPal %s failed (%s)" % (path, res.status_code), res.status_code, body)
        return body

    def create_order(
        self,
        lines: Iterable[Dict[str, Any]],
        postage: Optional[Dict[str, Any]] = None,
        reference: Optional[str] = None,
    ) -> Tuple[str, str]:
        """Create an order and return (order_id, approve_url)."""
        payload = build_order_payload(lines, postage=postage, reference=reference)
        body = self._request("POST", "/v2/checkout/orders", payload, request_id="ord-%s" % uuid.uuid4().hex)
        order_id = body.get("id")
        approve = next((l.get("href") for l in body.get("links") or [] if l.get("rel") in ("approve", "payer-action")), None)
        if not order_id or not approve:
            raise PayPalError("PayPal response missing id/approveUrl", 502, body)
        return order_id, approve

    def capture_order(self, order_id: str) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/v2/checkout/orders/%s/capture" % quote(order_id, safe=""),
            request_id="cap-%s" % order_id,
        )

    def get_order(self, order_id: str) -> Dict[str, Any]:
        return self._request("GET", "/v2/checkout/orders/%s" % quote(order_id, safe=""))

    def refund_capture(self, capture_id: str) -> Dict[str, Any]:
        """Full refund of one capture."""
        return self._request(
            "POST",
            "/v2/payments/captures/%s/refund" % quote(capture_id, safe=""),
            payload={},
            request_id="ref-%s" % capture_id,
        )


_client: Optional[PayPalClient] = None


def get_client() -> PayPalClient:
    global _client
    if _client is None:
        _client = PayPalClient()
    return _client
