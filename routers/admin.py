"""
Admin routes. Everything except login requires an admin bearer token.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr

import config
import orders
import payments
import paypal
from auth import AuthUser, create_token, require_admin, verify_password
from bricklink import BrickLinkClient, BrickLinkError
from catalog import truthy
from database import ensure_indexes, get_db
from inventory import adjust_stock, backfill_themes, purge_incomplete, sync_inventory

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin")


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RestockItem(BaseModel):
    inventoryId: Optional[int] = None
    id: Optional[str] = None
    qty: int = 0


class RestockRequest(BaseModel):
    items: Optional[List[RestockItem]] = None
    inventoryId: Optional[int] = None
    id: Optional[str] = None
    qty: int = 0


@router.post("/login")
def login(req: LoginRequest, db=Depends(get_db)):
    user = db[config.USERS_COLLECTION].find_one({"email": req.email})
    if not user or not user.get("is_active", True):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    if not verify_password(req.password, user.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    claims = {"id": str(user.get("_id")), "email": user["email"], "name": user["name"], "role": user.get("role", "staff")}
    return {"token": create_token(claims), "user": claims}


@router.get("/orders")
def list_orders(limit: int = 50, compact: Optional[str] = None, admin: AuthUser = Depends(require_admin), db=Depends(get_db)):
    limit = max(1, min(100, limit))
    docs = db[config.ORDERS_COLLECTION].find({}).sort("created_at", -1).limit(limit)
    view = orders.compact if truthy(compact) else orders.serialize
    return {"orders": [view(d) for d in docs]}


@router.post("/orders/{order_id}/mark-paid")
def mark_paid(order_id: str, admin: AuthUser = Depends(require_admin), db=Depends(get_db)):
    order = orders.find_order(db, order_id=order_id)
    if not order:
        raise HTTPException(status_code=404, detail="order_not_found")
    if order.get("status") != orders.PENDING:
        raise HTTPException(status_code=409, detail=orders.CONFLICT_CODES.get(order.get("status"), "order_not_pending"))
    try:
        result = orders.mark_paid(db, order, {"markedPaidBy": admin.email or admin.id})
    except orders.OrderStateError as e:
        raise HTTPException(status_code=409, detail=orders.CONFLICT_CODES.get(e.status, "order_not_pending"))
    return {"ok": True, "orderId": order.get("orderId"), "status": orders.PAID, "stock": result["stock"]}


@router.post("/restock")
def restock(req: RestockRequest, admin: AuthUser = Depends(require_admin), db=Depends(get_db)):
    items = req.items
    if items is None and (req.inventoryId or req.id):
        items = [RestockItem(inventoryId=req.inventoryId, id=req.id, qty=req.qty)]
    if not items:
        raise HTTPException(status_code=422, detail="invalid_payload")

    results = []
    for it in items:
        ref = it.inventoryId or it.id
        if not it.qty or not ref:
            results.append({"ok": False, "reason": "bad_item", "item": it.model_dump()})
            continue
        result = adjust_stock(db, ref, it.qty)
        result["item"] = it.model_dump()
        results.append(result)
    return {"ok": True, "results": results}


def _refund_payment(order: dict, capture_ids: List[str]) -> List[dict]:
    refunds = []
    if order.get("provider") == "paypal":
        if not capture_ids:
            raise HTTPException(status_code=409, detail="no_capture")
        for cid in capture_ids:
            if config.PAYPAL_TEST_MODE:
                logger.info("PAYPAL_TEST_MODE: skipping refund of capture %s", cid)
                refunds.append({"captureId": cid, "id": "TEST-REFUND", "status": "COMPLETED"})
                continue
            try:
                body = paypal.get_client().refund_capture(cid)
            except paypal.PayPalError as e:
                logger.error("Refund of capture %s failed: %s", cid, e)
                raise HTTPException(status_code=502, detail="paypal_refund_failed")
            refunds.append({"captureId": cid, "id": body.get("id"), "status": body.get("status")})
    elif order.get("provider") == "stripe" and order.get("status") == orders.PAID:
        session_id = order.get("stripeSessionId")
        if not session_id:
            raise HTTPException(status_code=409, detail="no_stripe_session")
        try:
            refund = payments.refund_session(session_id)
        except payments.StripeNotConfigured:
            raise HTTPException(status_code=503, detail="stripe_not_configured")
        except stripe.StripeError as e:
            logger.error("Refund of Stripe session %s failed: %s", session_id, e)
            raise HTTPException(status_code=502, detail="stripe_refund_failed")
        refunds.append({"sessionId": session_id, "id": refund.id, "status": refund.status})
    return refunds


@router.post("/refund-and-restock")
def refund_and_restock(
    captureId: Optional[str] = None,
    orderId: Optional[str] = None,
    admin: AuthUser = Depends(require_admin),
    db=Depends(get_db),
):
    if not captureId and not orderId:
        raise HTTPException(status_code=400, detail="missing_captureId_or_orderId")

    order = orders.find_order(db, order_id=orderId, capture_id=captureId)
    if not order:
        raise HTTPException(status_code=404, detail="order_not_found")
    if order.get("status") == orders.REFUNDED:
        raise HTTPException(status_code=409, detail="already_refunded")

    prior = orders.claim_refund(db, order)
    if prior is None:
        raise HTTPException(status_code=409, detail="already_refunded")

    capture_ids = [captureId] if captureId else list(prior.get("captureIds") or [])
    try:
        refunds = _refund_payment(prior, capture_ids)
    except HTTPException:
        orders.release_refund(db, prior)
        raise

    refund = {
        "captureId": capture_ids[0] if capture_ids else None,
        "orderId": order.get("orderId"),
        "provider": order.get("provider"),
        "at": datetime.now(timezone.utc),
        "amount": (order.get("totals") or {}).get("grandTotal"),
    }
    result = orders.mark_refunded(db, order, refund)
    return {"ok": True, "orderId": order.get("orderId"), "refunds": refunds, "restocked": result["restocked"]}


@router.post("/sync-bricklink")
def sync_bricklink(prune: Optional[str] = None, admin: AuthUser = Depends(require_admin), db=Depends(get_db)):
    client = BrickLinkClient()
    if not client.configured:
        raise HTTPException(status_code=503, detail="bricklink_not_configured")
    try:
        stats = sync_inventory(db, client, prune=truthy(prune))
    except BrickLinkError as e:
        logger.error("BrickLink sync failed: %s", e)
        raise HTTPException(status_code=502, detail="bricklink_failed")
    return dict(stats, ok=True)


@router.post("/ensure-indexes")
def run_ensure_indexes(admin: AuthUser = Depends(require_admin), db=Depends(get_db)):
    return {"ok": True, "indexes": ensure_indexes(db)}


@router.post("/backfill-themes")
def run_backfill_themes(admin: AuthUser = Depends(require_admin), db=Depends(get_db)):
    return dict(backfill_themes(db), ok=True)


@router.post("/purge-incomplete")
def run_purge_incomplete(admin: AuthUser = Depends(require_admin), db=Depends(get_db)):
    return dict(purge_incomplete(db), ok=True)
