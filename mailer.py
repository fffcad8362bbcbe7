"""
Order confirmation email sent to the sales inbox.
"""
import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from typing import Any, Dict

import config

logger = logging.getLogger(__name__)


class MailNotConfigured(RuntimeError):
    pass


def _fmt_total(order: Dict[str, Any]) -> str:
    totals = order.get("totals") or {}
    total = totals.get("grandTotal")
    if total is None:
        return ""
    currency = totals.get("currency") or config.CURRENCY
    return "%.2f %s" % (float(total), currency)


def build_order_email(order: Dict[str, Any]) -> EmailMessage:
    order_ref = order.get("orderId") or str(order.get("_id") or "")
    total = _fmt_total(order)
    payer = order.get("payer") or {}
    buyer = " · ".join(p for p in (payer.get("name"), payer.get("email")) if p)
    captures = order.get("captureIds") or []
    placed = order.get("created_at")

    lines = ["Order: %s" % (order_ref or "-"),
             "Capture: %s" % (", ".join(captures) or "-"),
             "Provider: %s" % (order.get("provider") or "-"),
             "Status: %s" % (order.get("status") or "-")]
    if buyer:
        lines.append("Buyer: %s" % buyer)
    lines += ["", "Items:"]
    for it in order.get("items") or []:
        lines.append("• %s ×%s — $%.2f" % (it.get("name"), it.get("qty"), float(it.get("price") or 0)))
    lines.append("")
    if total:
        lines.append("Total: %s" % total)
    if isinstance(placed, datetime):
        lines.append("Placed: %s" % placed.strftime("%Y-%m-%d %H:%M UTC"))

    msg = EmailMessage()
    msg["Subject"] = ("New order %s — %s" % (order_ref, total)).strip(" —")
    msg["From"] = config.SALES_EMAIL_FROM or config.SALES_EMAIL_TO
    msg["To"] = config.SALES_EMAIL_TO
    msg.set_content("\n".join(lines))
    return msg


def send_order_email(order: Dict[str, Any]) -> Dict[str, Any]:
    if not config.mail_configured():
        raise MailNotConfigured("smtp_not_configured")

    msg = build_order_email(order)
    with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT, timeout=20) as smtp:
        smtp.starttls()
        smtp.login(config.SMTP_USER, config.SMTP_PASS)
        smtp.send_message(msg)
    logger.info("Sent order email for %s", order.get("orderId"))
    return {"ok": True}
