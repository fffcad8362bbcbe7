"""
Checkout routes for PayPal, Stripe and bank transfer.

Every flow re-prices the cart from the database and stores a pending order.
Stock is taken only once the payment is confirmed.
"""
import logging
import smtplib
import time
import uuid
from typing import List, Optional
from urllib.parse import quote

import stripe
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

import config
import orders
import payments
import paypal
from cart import CartError, cart_totals, price_cart, resolve_postage
from database import get_db
from mailer import MailNotConfigured, send_order_email
from schemas import CartItem, Payer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/checkout")

BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


class CheckoutRequest(BaseModel):
    items: List[CartItem]
    postageId: Optional[str] = None
    payer: Optional[Payer] = None


class CaptureRequest(BaseModel):
    orderId: str


def base36(n: int) -> str:
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = BASE36[r] + out
        if n == 0:
            return out


def bank_reference() -> str:
    return "K" + base36(int(time.time() * 1000))


def _priced(db, req: CheckoutRequest):
    try:
        lines = price_cart(db, req.items)
        postage = resolve_postage(req.postageId)
    except CartError as e:
        raise HTTPException(status_code=e.status, detail=e.code)
    return lines, postage, cart_totals(lines, postage)


def _payer(req: CheckoutRequest) -> dict:
    return req.payer.model_dump() if req.payer else {}


# ----- PayPal -----

@router.post("/paypal")
def paypal_create(req: CheckoutRequest, db=Depends(get_db)):
    client = paypal.get_client()
    if not client.configured:
        raise HTTPException(status_code=503, detail="paypal_not_configured")

    lines, postage, totals = _priced(db, req)
    reference = "ref-" + uuid.uuid4().hex[:12]
    try:
        order_id, approve_url = client.create_order(lines, postage=postage, reference=reference)
    except paypal.PayPalError as e:
        logger.error("PayPal create failed: %s", e)
        raise HTTPException(status_code=502, detail="paypal_create_failed")

    orders.create_order(
        "paypal",
        lines,
        totals,
        payer=_payer(req),
        order_id=order_id,
        postage_id=postage["id"] if postage else None,
    )
    return {"orderId": order_id, "approveUrl": approve_url}


def _notify(db, order_id: str) -> None:
    order = orders.find_order(db, order_id=order_id)
    try:
        send_order_email(order)
    except MailNotConfigured:
        logger.info("SMTP not configured; no confirmation email for %s", order_id)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Confirmation email for %s failed: %s", order_id, e)


def _state_conflict(status: Optional[str]) -> HTTPException:
    if status == orders.PAID:
        return HTTPException(status_code=409, detail="already_captured")
    return HTTPException(status_code=409, detail=orders.CONFLICT_CODES.get(status, "order_not_pending"))


def capture_paypal_order(db, order_id: str) -> dict:
    order = orders.find_order(db, order_id=order_id)
    if not order:
        raise HTTPException(status_code=404, detail="order_not_found")
    if order.get("status") != orders.PENDING:
        raise _state_conflict(order.get("status"))

    try:
        capture = paypal.get_client().capture_order(order_id)
    except paypal.PayPalError as e:
        logger.error("PayPal capture %s failed: %s", order_id, e)
        raise HTTPException(status_code=502, detail="paypal_capture_failed")

    if capture.get("status") != "COMPLETED":
        logger.error("PayPal capture %s not completed: %s", order_id, capture.get("status"))
        raise HTTPException(status_code=502, detail="capture_not_completed")

    capture_ids = paypal.capture_ids(capture)
    extra = {"captureIds": capture_ids, "paypalStatus": capture.get("status")}
    for key, value in paypal.payer_from(capture).items():
        if value and not (order.get("payer") or {}).get(key):
            extra["payer." + key] = value
    try:
        orders.mark_paid(db, order, extra)
    except orders.OrderStateError as e:
        raise _state_conflict(e.status)
    _notify(db, order_id)
    return {"ok": True, "orderId": order_id, "status": orders.PAID, "captureIds": capture_ids}


@router.post("/paypal/capture")
def paypal_capture(req: CaptureRequest, db=Depends(get_db)):
    return capture_paypal_order(db, req.orderId.strip())


@router.get("/paypal/return")
def paypal_return(token: Optional[str] = None, orderId: Optional[str] = None, db=Depends(get_db)):
    site = config.SITE_URL
    order_id = (token or orderId or "").strip()
    if not order_id:
        return RedirectResponse(site + "/checkout?error=missing_order_id", status_code=302)
    try:
        capture_paypal_order(db, order_id)
    except HTTPException as e:
        if e.detail != "already_captured":
            return RedirectResponse(site + "/checkout?error=" + quote(str(e.detail)), status_code=302)
    return RedirectResponse(site + "/thank-you?provider=paypal&orderId=" + quote(order_id), status_code=302)


@router.get("/paypal/cancel")
def paypal_cancel(token: Optional[str] = None, db=Depends(get_db)):
    order = orders.find_order(db, order_id=token.strip()) if token else None
    if order and order.get("status") == orders.PENDING:
        try:
            orders.mark_cancelled(db, order)
        except orders.OrderStateError as e:
            logger.info("PayPal order %s not cancelled, now %s", token, e.status)
    return RedirectResponse(config.SITE_URL + "/checkout?canceled=1", status_code=302)


# ----- Stripe -----

@router.post("/stripe")
def stripe_create(req: CheckoutRequest, db=Depends(get_db)):
    lines, postage, totals = _priced(db, req)
    reference = "ref-" + uuid.uuid4().hex[:12]
    try:
        session = payments.create_checkout_session(lines, postage=postage, reference=reference)
    except payments.StripeNotConfigured:
        raise HTTPException(status_code=503, detail="stripe_not_configured")
    except stripe.StripeError as e:
        logger.error("Stripe session failed: %s", e)
        raise HTTPException(status_code=502, detail="stripe_session_failed")

    orders.create_order(
        "stripe",
        lines,
        totals,
        payer=_payer(req),
        order_id=reference,
        postage_id=postage["id"] if postage else None,
        stripe_session_id=session.id,
    )
    return {"url": session.url, "sessionId": session.id, "orderId": reference}


@router.get("/stripe/confirm")
def stripe_confirm(session_id: str, db=Depends(get_db)):
    try:
        session = payments.retrieve_session(session_id)
    except payments.StripeNotConfigured:
        raise HTTPException(status_code=503, detail="stripe_not_configured")
    except stripe.StripeError as e:
        logger.error("Stripe session %s lookup failed: %s", session_id, e)
        raise HTTPException(status_code=502, detail="stripe_lookup_failed")

    order = orders.find_order(db, session_id=session_id)
    if not order:
        raise HTTPException(status_code=404, detail="order_not_found")

    if getattr(session, "payment_status", None) != "paid":
        return {"ok": False, "status": order.get("status"), "paymentStatus": getattr(session, "payment_status", None)}

    status = order.get("status")
    if status == orders.PENDING:
        extra = {}
        details = getattr(session, "customer_details", None)
        email = getattr(details, "email", None) if details else None
        if email and not (order.get("payer") or {}).get("email"):
            extra["payer.email"] = email
        try:
            orders.mark_paid(db, order, extra)
            status = orders.PAID
        except orders.OrderStateError as e:
            status = e.status
    if status != orders.PAID:
        raise HTTPException(status_code=409, detail=orders.CONFLICT_CODES.get(status, "order_not_pending"))
    return {"ok": True, "status": orders.PAID, "orderId": order.get("orderId")}


# ----- Bank transfer -----

@router.post("/bank")
def bank_checkout(req: CheckoutRequest, db=Depends(get_db)):
    lines, postage, totals = _priced(db, req)
    reference = bank_reference()
    orders.create_order(
        "bank",
        lines,
        totals,
        payer=_payer(req),
        order_id=reference,
        postage_id=postage["id"] if postage else None,
    )
    return {
        "orderId": reference,
        "total": totals["grandTotal"],
        "currency": totals["currency"],
        "payBy": "bank",
        "bank": {
            "name": config.BANK_ACCOUNT_NAME,
            "bsb": config.BANK_BSB,
            "account": config.BANK_ACCOUNT_NUMBER,
            "referenceHint": config.BANK_REFERENCE_HINT,
        },
        "message": "Please make a bank transfer using the details above. "
                   "Your order will be held for %d hours." % config.BANK_HOLD_HOURS,
    }


# ----- Order status / confirmation -----

@router.get("/order-status")
def order_status(orderId: Optional[str] = None, db=Depends(get_db)):
    if not orderId:
        raise HTTPException(status_code=400, detail="missing_orderId")
    order = orders.find_order(db, order_id=orderId)
    if not order:
        return JSONResponse(status_code=404, content={"status": "unknown"})
    created = order.get("created_at")
    return {
        "status": order.get("status"),
        "totals": order.get("totals"),
        "createdAt": created.isoformat() if created else None,
    }


@router.post("/send-confirmation")
def send_confirmation(orderId: str, db=Depends(get_db)):
    order = orders.find_order(db, order_id=orderId)
    if not order:
        raise HTTPException(status_code=404, detail="order_not_found")
    try:
        return send_order_email(order)
    except MailNotConfigured:
        raise HTTPException(status_code=503, detail="smtp_not_configured")
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Confirmation email for %s failed: %s", orderId, e)
        raise HTTPException(status_code=502, detail="send_failed")


# ----- Generic order creation -----

orders_router = APIRouter()

PROVIDERS = {"BANK": "bank", "PAYPAL": "paypal", "STRIPE": "stripe"}


class OrderLine(BaseModel):
    inventoryId: Optional[int] = None
    id: Optional[str] = None
    itemNo: Optional[str] = None
    name: Optional[str] = None
    imageUrl: Optional[str] = None
    price: Optional[float] = None
    qty: int = 1


class OrderRequest(BaseModel):
    method: str
    items: List[OrderLine]
    contact: Optional[Payer] = None


@orders_router.post("/api/orders")
def create_order(req: OrderRequest, db=Depends(get_db)):
    provider = PROVIDERS.get(req.method.strip().upper())
    if not provider or not req.items:
        raise HTTPException(status_code=400, detail="Missing method or items")

    cart = [
        {"id": str(line.inventoryId or line.id), "name": line.name, "qty": line.qty, "imageUrl": line.imageUrl}
        for line in req.items
        if (line.inventoryId or line.id) and line.qty > 0
    ]
    if not cart:
        raise HTTPException(status_code=400, detail="No valid items")

    try:
        lines = price_cart(db, cart)
    except CartError as e:
        raise HTTPException(status_code=e.status, detail=e.code)
    totals = cart_totals(lines)
    reference = bank_reference() if provider == "bank" else None
    order_id = orders.create_order(
        provider,
        lines,
        totals,
        payer=req.contact.model_dump() if req.contact else {},
        order_id=reference,
    )
    return {"ok": True, "orderId": order_id, "reference": reference, "subtotal": totals["itemsTotal"]}
