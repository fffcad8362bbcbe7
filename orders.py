"""
Order lifecycle: pending -> paid -> refunded (or cancelled).

Stock is only taken when an order becomes paid, and only once per order.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId

import config
from database import create_document, is_object_id, to_str_id
from inventory import decrement_for_items, restock_for_items
from schemas import Order

logger = logging.getLogger(__name__)

PENDING = "pending"
PAID = "paid"
REFUNDED = "refunded"
CANCELLED = "cancelled"

# 409 detail for a transition attempted from the wrong state
CONFLICT_CODES = {PAID: "already_paid", REFUNDED: "already_refunded", CANCELLED: "order_cancelled"}


class OrderStateError(Exception):
    """Raised when an order is not in the state a transition starts from."""

    def __init__(self, status: Optional[str]):
        super().__init__("order is %s" % status)
        self.status = status


def create_order(
    provider: str,
    lines: List[Dict[str, Any]],
    totals: Dict[str, Any],
    payer: Optional[Dict[str, Any]] = None,
    order_id: Optional[str] = None,
    postage_id: Optional[str] = None,
    stripe_session_id: Optional[str] = None,
) -> str:
    """Insert a pending order and return its Mongo id."""
    order = Order(
        provider=provider,
        orderId=order_id,
        items=lines,
        totals=totals,
        payer=payer or {},
        postageId=postage_id,
        stripeSessionId=stripe_session_id,
    )
    return create_document(config.ORDERS_COLLECTION, order)


def find_order(db, order_id: Optional[str] = None, capture_id: Optional[str] = None, session_id: Optional[str] = None) -> Optional[dict]:
    """Look an order up by PayPal/bank order id (or Mongo id), capture id or Stripe session."""
    orders = db[config.ORDERS_COLLECTION]
    if capture_id:
        return orders.find_one({"captureIds": capture_id})
    if session_id:
        return orders.find_one({"stripeSessionId": session_id})
    if order_id:
        doc = orders.find_one({"orderId": order_id})
        if doc is None and is_object_id(order_id):
            doc = orders.find_one({"_id": ObjectId(order_id)})
        return doc
    return None


def _touch(fields: Dict[str, Any]) -> Dict[str, Any]:
    fields["updated_at"] = datetime.now(timezone.utc)
    return fields


def apply_stock_once(db, order: dict) -> List[Dict[str, Any]]:
    """Decrement stock for the order's lines unless that already happened."""
    claimed = db[config.ORDERS_COLLECTION].find_one_and_update(
        {"_id": order["_id"], "stockApplied": {"$ne": True}},
        {"$set": {"stockApplied": True}},
    )
    if claimed is None:
        return []
    results = decrement_for_items(db, claimed.get("items") or [])
    short = [r for r in results if not r["ok"]]
    if short:
        logger.warning("Order %s: stock not applied for %s", order.get("orderId") or order["_id"], [r["id"] for r in short])
    return results


def _transition(db, order: dict, from_status: str, fields: Dict[str, Any]) -> None:
    result = db[config.ORDERS_COLLECTION].update_one(
        {"_id": order["_id"], "status": from_status},
        {"$set": _touch(fields)},
    )
    if result.matched_count == 0:
        current = db[config.ORDERS_COLLECTION].find_one({"_id": order["_id"]}) or {}
        raise OrderStateError(current.get("status"))


def mark_paid(db, order: dict, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Move a pending order to paid and take its stock. Returns the stock results."""
    fields = dict(extra or {})
    fields["status"] = PAID
    fields["paidAt"] = datetime.now(timezone.utc)
    _transition(db, order, PENDING, fields)
    stock = apply_stock_once(db, order)
    logger.info("Order %s marked paid (%s)", order.get("orderId") or order["_id"], order.get("provider"))
    return {"stock": stock}


def mark_cancelled(db, order: dict) -> None:
    _transition(db, order, PENDING, {"status": CANCELLED, "cancelledAt": datetime.now(timezone.utc)})
    logger.info("Order %s cancelled", order.get("orderId") or order["_id"])


def claim_refund(db, order: dict) -> Optional[dict]:
    """
    Flag the order as refunded before any money moves.

    Returns the document as it was before the claim, or None when another
    refund already holds it.
    """
    return db[config.ORDERS_COLLECTION].find_one_and_update(
        {"_id": order["_id"], "status": {"$ne": REFUNDED}},
        {"$set": _touch({"status": REFUNDED})},
    )


def release_refund(db, prior: dict) -> None:
    db[config.ORDERS_COLLECTION].update_one(
        {"_id": prior["_id"], "status": REFUNDED},
        {"$set": _touch({"status": prior.get("status") or PENDING})},
    )


def mark_refunded(db, order: dict, refund: Dict[str, Any]) -> Dict[str, Any]:
    """Record the refund and put back any stock the order had taken."""
    restocked = []
    claimed = db[config.ORDERS_COLLECTION].find_one_and_update(
        {"_id": order["_id"], "stockApplied": True},
        {"$set": {"stockApplied": False}},
    )
    if claimed is not None:
        restocked = restock_for_items(db, claimed.get("items") or [])
    db[config.ORDERS_COLLECTION].update_one(
        {"_id": order["_id"]},
        {"$set": _touch({"status": REFUNDED}), "$push": {"refunds": refund}},
    )
    logger.info("Order %s refunded, %d line(s) restocked", order.get("orderId") or order["_id"], len(restocked))
    return {"restocked": restocked}


def serialize(order: dict) -> dict:
    return to_str_id(order)


def compact(order: dict) -> dict:
    totals = order.get("totals") or {}
    items = order.get("items") or []
    return {
        "id": str(order.get("_id")),
        "orderId": order.get("orderId"),
        "provider": order.get("provider"),
        "status": order.get("status"),
        "grandTotal": totals.get("grandTotal"),
        "currency": totals.get("currency"),
        "itemsCount": sum(int(i.get("qty") or 0) for i in items),
        "payer": (order.get("payer") or {}).get("email"),
        "created_at": order.get("created_at"),
    }
