"""
Server-side cart handling.

The cart lives in the browser until checkout; here it is sanitised and
re-priced from the products collection so totals never trust client prices.
"""
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId

import config
from database import is_object_id


class CartError(Exception):
    def __init__(self, code: str, message: str, status: int = 400):
        super().__init__(message)
        self.code = code
        self.status = status


def money(value: Any) -> float:
    try:
        return round(float(value), 2)
    except (TypeError, ValueError):
        return 0.0


def normalize_lines(items: Iterable[Any]) -> List[Dict[str, Any]]:
    """Sanitise raw cart lines and merge duplicates by id (order kept)."""
    merged: Dict[str, Dict[str, Any]] = {}
    for raw in items or []:
        if hasattr(raw, "model_dump"):
            raw = raw.model_dump()
        if not isinstance(raw, dict):
            continue
        line_id = str(raw.get("id") or raw.get("sku") or "").strip()
        if not line_id:
            continue
        try:
            qty = max(1, int(raw.get("qty") or raw.get("quantity") or 1))
        except (TypeError, ValueError):
            qty = 1
        if line_id in merged:
            merged[line_id]["qty"] += qty
            continue
        merged[line_id] = {
            "id": line_id,
            "name": str(raw.get("name") or "Item")[:127],
            "price": money(raw.get("price") or 0),
            "qty": qty,
            "imageUrl": raw.get("imageUrl"),
        }
    return list(merged.values())


def product_lookup(line_id: str) -> Dict[str, Any]:
    """Filter selecting the product a cart line points at."""
    if line_id.isdigit():
        return {"inventoryId": int(line_id)}
    if is_object_id(line_id):
        return {"_id": ObjectId(line_id)}
    return {"itemNo": line_id}


def price_cart(db, items: Iterable[Any]) -> List[Dict[str, Any]]:
    """Re-price cart lines from the database. Raises CartError."""
    lines = normalize_lines(items)
    if not lines:
        raise CartError("cart_empty", "Cart is empty")

    products = db[config.PRODUCTS_COLLECTION]
    priced = []
    for line in lines:
        prod = products.find_one(product_lookup(line["id"]))
        if not prod:
            raise CartError("product_not_found", "Product %s not found" % line["id"], status=404)
        available = int(prod.get("qty") or 0)
        if available < line["qty"]:
            raise CartError(
                "insufficient_stock",
                "Insufficient stock for %s" % (prod.get("name") or line["id"]),
            )
        priced.append({
            "id": line["id"],
            "itemNo": prod.get("itemNo"),
            "name": str(prod.get("name") or prod.get("itemNo") or line["name"])[:127],
            "price": money(prod.get("price") or 0),
            "qty": line["qty"],
            "imageUrl": prod.get("imageUrl") or line.get("imageUrl"),
        })
    return priced


def resolve_postage(postage_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not postage_id:
        return None
    option = config.POSTAGE_OPTIONS.get(postage_id)
    if option is None:
        raise CartError("unknown_postage", "Unknown postage option %s" % postage_id, status=404)
    return {"id": postage_id, "label": option.get("label") or "Shipping", "price": money(option.get("price") or 0)}


def cart_totals(lines: Iterable[Dict[str, Any]], postage: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    items_total = money(sum(line["price"] * line["qty"] for line in lines))
    shipping = money(postage["price"]) if postage else 0.0
    return {
        "itemsTotal": items_total,
        "postage": shipping,
        "grandTotal": money(items_total + shipping),
        "currency": config.CURRENCY,
    }


def items_count(lines: Iterable[Dict[str, Any]]) -> int:
    return sum(int(line.get("qty") or 0) for line in lines)
