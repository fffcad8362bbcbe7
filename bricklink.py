"""
BrickLink Store API client.

Requests are signed with OAuth 1.0a (HMAC-SHA1 in the Authorization header).
Responses come wrapped as {"meta": {...}, "data": ...}.
"""
import html
import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from requests_oauthlib import OAuth1

import config
from themes import classify_product

logger = logging.getLogger(__name__)

IMAGE_URL_TEMPLATE = "https://img.bricklink.com/ItemImage/MN/0/{item_no}.png"
STOCKROOM_IDS = {"A", "B", "C"}
RETRY_STATUSES = {429, 500, 502, 503, 504}


class BrickLinkError(RuntimeError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class BrickLinkClient:
    def __init__(
        self,
        consumer_key: Optional[str] = None,
        consumer_secret: Optional[str] = None,
        token_value: Optional[str] = None,
        token_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        backoff_seconds: float = 1.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.consumer_key = consumer_key if consumer_key is not None else config.BL_KEY
        self.consumer_secret = consumer_secret if consumer_secret is not None else config.BL_SECRET
        self.token_value = token_value if token_value is not None else config.BL_TOKEN
        self.token_secret = token_secret if token_secret is not None else config.BL_TOKEN_SECRET
        self.base_url = (base_url or config.BL_API_BASE).rstrip("/")
        self.timeout = max(1.0, timeout if timeout is not None else config.BL_TIMEOUT_SECONDS)
        self.retries = max(0, retries if retries is not None else config.BL_MAX_RETRIES)
        self.backoff_seconds = backoff_seconds
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return all([self.consumer_key, self.consumer_secret, self.token_value, self.token_secret])

    def _auth(self) -> OAuth1:
        return OAuth1(
            self.consumer_key,
            self.consumer_secret,
            self.token_value,
            self.token_secret,
            signature_method="HMAC-SHA1",
            signature_type="AUTH_HEADER",
        )

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if not self.configured:
            raise BrickLinkError("BrickLink credentials missing (BL_* env vars).")

        url = self.base_url + "/" + path.lstrip("/")
        clean = {k: v for k, v in (params or {}).items() if v is not None}
        attempt = 0
        while True:
            attempt += 1
            try:
                response = self.session.get(
                    url,
                    params=clean,
                    auth=self._auth(),
                    timeout=self.timeout,
                    headers={"Accept": "application/json"},
                )
            except requests.RequestException as exc:
                if attempt > self.retries:
                    raise BrickLinkError("BrickLink request failed: %s" % exc)
                logger.warning("BrickLink %s failed (%s); retry %d", path, exc, attempt)
                time.sleep(self.backoff_seconds)
                continue

            if response.status_code in RETRY_STATUSES and attempt <= self.retries:
                logger.warning("BrickLink %s HTTP %d; retry %d", path, response.status_code, attempt)
                time.sleep(self.backoff_seconds)
                continue

            if response.status_code >= 400:
                body = (response.text or "")[:300]
                logger.error("BrickLink %s HTTP %d: %s", path, response.status_code, body)
                raise BrickLinkError("BrickLink %s %d: %s" % (path, response.status_code, body), response.status_code)

            try:
                payload = response.json()
            except ValueError:
                raise BrickLinkError("BrickLink %s returned invalid JSON" % path, response.status_code)

            meta = payload.get("meta") if isinstance(payload, dict) else None
            if isinstance(meta, dict):
                try:
                    code = int(meta.get("code") or 0)
                except (TypeError, ValueError):
                    code = 0
                if code >= 400:
                    message = meta.get("message") or meta.get("description") or "error"
                    raise BrickLinkError("BrickLink %s meta %d: %s" % (path, code, message), code)

            if isinstance(payload, dict) and "data" in payload:
                return payload["data"]
            return payload

    def inventories(self, item_type: Optional[str] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
        """All store lots. BrickLink returns them in one response."""
        data = self.get("/inventories", {"item_type": item_type, "status": status})
        return data if isinstance(data, list) else []

    def item(self, item_type: str, item_no: str) -> Dict[str, Any]:
        data = self.get("/items/%s/%s" % (quote(item_type.upper(), safe=""), quote(item_no, safe="")))
        return data if isinstance(data, dict) else {}


# ----- lot normalisation -----

def decode_name(value: Optional[str]) -> str:
    return html.unescape(value or "").strip()


def image_url_for(item_no: Optional[str], image_url: Optional[str] = None) -> Optional[str]:
    direct = (image_url or "").strip()
    if direct:
        return direct
    code = (item_no or "").strip()
    return IMAGE_URL_TEMPLATE.format(item_no=quote(code, safe="")) if code else None


def lot_item_no(lot: Dict[str, Any]) -> Optional[str]:
    item = lot.get("item") or {}
    return item.get("no") or item.get("number") or lot.get("item_no") or lot.get("itemNo") or None


def lot_type(lot: Dict[str, Any]) -> str:
    item = lot.get("item") or {}
    return str(item.get("type") or lot.get("type") or lot.get("item_type") or "").upper()


def is_minifig(lot: Dict[str, Any]) -> bool:
    if not lot:
        return False
    if lot_type(lot) == "MINIFIG":
        return True
    item = lot.get("item") or {}
    for name in (item.get("name"), lot.get("name")):
        if isinstance(name, str) and "minifig" in name.lower():
            return True
    return False


def is_for_sale(lot: Dict[str, Any]) -> bool:
    """Stockroom lots (A/B/C) are not listed in the store."""
    if lot.get("is_stock_room"):
        return False
    stockroom = str(lot.get("stockroom_id") or lot.get("stockroom") or "").strip().upper()
    return stockroom not in STOCKROOM_IDS


def _to_number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def lot_to_product(lot: Dict[str, Any]) -> Dict[str, Any]:
    """Normalise a BrickLink inventory lot into a product document."""
    item = lot.get("item") or {}
    item_no = lot_item_no(lot)
    name = decode_name(item.get("name") or lot.get("name")) or item_no
    price = _to_number(lot.get("unit_price", lot.get("price")))
    qty = _to_number(lot.get("quantity", lot.get("qty"))) or 0
    inventory_id = lot.get("inventory_id") or lot.get("inventoryId")

    doc = {
        "inventoryId": int(inventory_id) if inventory_id else None,
        "itemNo": item_no,
        "name": name,
        "type": lot_type(lot) or "MINIFIG",
        "condition": lot.get("new_or_used") or lot.get("condition") or None,
        "price": round(price, 2) if price is not None else None,
        "qty": max(0, int(qty)),
        "imageUrl": image_url_for(item_no, item.get("image_url") or lot.get("image_url")),
        "remarks": lot.get("remarks") or None,
        "description": decode_name(lot.get("description")) or None,
    }
    doc.update(classify_product(doc))
    return doc
