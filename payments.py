"""
Stripe Checkout helpers.
"""
import logging
from typing import Any, Dict, Iterable, Optional

import stripe

import config

logger = logging.getLogger(__name__)


class StripeNotConfigured(RuntimeError):
    pass


def _configure() -> None:
    if not config.STRIPE_SECRET_KEY:
        raise StripeNotConfigured("STRIPE_SECRET_KEY missing")
    stripe.api_key = config.STRIPE_SECRET_KEY


def cents(value: float) -> int:
    return int(round(float(value) * 100))


def build_line_items(lines: Iterable[Dict[str, Any]], postage: Optional[Dict[str, Any]] = None) -> list:
    currency = config.CURRENCY.lower()
    line_items = []
    for line in lines:
        product_data: Dict[str, Any] = {"name": line["name"]}
        if line.get("imageUrl"):
            product_data["images"] = [line["imageUrl"]]
        line_items.append({
            "quantity": int(line["qty"]),
            "price_data": {
                "currency": currency,
                "unit_amount": cents(line["price"]),
                "product_data": product_data,
            },
        })
    if postage and postage.get("price"):
        line_items.append({
            "quantity": 1,
            "price_data": {
                "currency": currency,
                "unit_amount": cents(postage["price"]),
                "product_data": {"name": postage.get("label") or "Postage"},
            },
        })
    return line_items


def create_checkout_session(lines: Iterable[Dict[str, Any]], postage: Optional[Dict[str, Any]] = None, reference: Optional[str] = None):
    _configure()
    base = config.SITE_URL
    session = stripe.checkout.Session.create(
        mode="payment",
        line_items=build_line_items(lines, postage),
        client_reference_id=reference,
        metadata={"order_ref": reference or ""},
        success_url=base + "/thank-you?provider=stripe&session_id={CHECKOUT_SESSION_ID}",
        cancel_url=base + "/checkout?canceled=1",
    )
    logger.info("Created Stripe session %s for %s", session.id, reference)
    return session


def retrieve_session(session_id: str):
    _configure()
    return stripe.checkout.Session.retrieve(session_id)


def refund_session(session_id: str):
    """Refund the full payment behind a completed Checkout session."""
    _configure()
    session = stripe.checkout.Session.retrieve(session_id)
    refund = stripe.Refund.create(payment_intent=session.payment_intent)
    logger.info("Refunded Stripe session %s (%s)", session_id, refund.id)
    return refund
